"""
Adapter registry.

Adapters register metadata here so configuration validation can occur before
any source is read.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence, Tuple


@dataclass(frozen=True)
class AdapterDescriptor:
    """Metadata describing an importer adapter."""

    name: str
    title: str
    source_types: Tuple[str, ...] = ()
    summary: str | None = None

    def as_dict(self) -> dict:
        return {
            "name": self.name,
            "title": self.title,
            "source_types": list(self.source_types),
            "summary": self.summary,
        }


def get_adapter_registry() -> Mapping[str, AdapterDescriptor]:
    """Return the registry of supported adapters keyed by name."""
    return OrderedDict(
        (
            (
                "csv",
                AdapterDescriptor(
                    name="csv",
                    title="CSV Flat File",
                    source_types=("csv",),
                    summary="Load leads from pasted CSV text or CSV uploads.",
                ),
            ),
            (
                "google_sheets",
                AdapterDescriptor(
                    name="google_sheets",
                    title="Google Sheets",
                    source_types=("csv", "google_sheets"),
                    summary="Fetch leads from a public share link or an authorized spreadsheet.",
                ),
            ),
        )
    )


def resolve_adapters(
    configured: Sequence[str],
    registry: Mapping[str, AdapterDescriptor] | None = None,
) -> Iterable[AdapterDescriptor]:
    """
    Map configured adapter names to registry descriptors, raising on unknowns.
    """
    registry = registry or get_adapter_registry()
    unknown = sorted({adapter for adapter in configured if adapter not in registry})
    if unknown:
        raise ValueError(
            "Unknown importer adapters configured: "
            + ", ".join(unknown)
            + ". Update IMPORTER_ADAPTERS to a subset of: "
            + ", ".join(registry)
            + "."
        )
    return tuple(registry[adapter] for adapter in configured)
