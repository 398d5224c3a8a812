"""Lead intake application package."""
