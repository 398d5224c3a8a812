# config/__init__.py
"""
Configuration package: environment-specific Flask settings.
"""

from .base import Config, DevelopmentConfig, ProductionConfig, TestingConfig

__all__ = ["Config", "DevelopmentConfig", "ProductionConfig", "TestingConfig"]
