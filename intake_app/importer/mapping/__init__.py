"""Header-to-field mapping: auto-suggestion, validation, and YAML mapping files."""

from __future__ import annotations

import hashlib
import json
from collections import OrderedDict
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Sequence

import yaml

from ..contracts import (
    LEAD_FIELD_NAMES,
    compact_header,
    get_contained_aliases,
    get_lead_alias_map,
    normalize_header,
)
from ..errors import MappingConflict, MappingLoadError

FieldMapping = Dict[str, str]

MAPPING_FILE_VERSION = 1


def suggest_mapping(headers: Sequence[str]) -> FieldMapping:
    """
    Propose a mapping from raw headers using the canonical alias table.

    Exact alias matches are taken first. Headers with no exact match then fall
    back to the longest alias they contain as whole words, so "Borrower Email"
    maps to ``home_email``. Each canonical field is suggested at most once
    (first header wins) so the result always passes ``validate_mapping``.
    Unrecognized headers are left out.
    """

    alias_map = get_lead_alias_map()
    matches: dict[str, str] = {}
    claimed: set[str] = set()
    inexact: list[str] = []
    for header in headers:
        target = alias_map.get(compact_header(header))
        if target is None:
            inexact.append(header)
            continue
        if target not in claimed:
            matches[header] = target
            claimed.add(target)

    for header in inexact:
        padded = f" {normalize_header(header)} "
        for alias, target in get_contained_aliases():
            if target not in claimed and f" {alias} " in padded:
                matches[header] = target
                claimed.add(target)
                break

    return OrderedDict((header, matches[header]) for header in headers if header in matches)


def validate_mapping(
    mapping: Mapping[str, Any] | None,
    canonical_fields: Iterable[str] = LEAD_FIELD_NAMES,
) -> FieldMapping:
    """
    Return a clean mapping or raise ``MappingConflict``.

    Targets outside the canonical field set (including empty "do not import"
    markers) are dropped. Two headers pointing at one field is a conflict.
    """

    allowed = set(canonical_fields)
    cleaned: FieldMapping = OrderedDict()
    targets: dict[str, list[str]] = {}
    for raw_header, raw_target in (mapping or {}).items():
        if raw_header is None or raw_target is None:
            continue
        target = str(raw_target).strip()
        if target not in allowed:
            continue
        header = str(raw_header)
        cleaned[header] = target
        targets.setdefault(target, []).append(header)

    duplicates = {target: headers for target, headers in targets.items() if len(headers) > 1}
    if duplicates:
        raise MappingConflict(duplicates)
    return cleaned


def overlay_mapping(base: Mapping[str, str], overrides: Mapping[str, str], headers: Sequence[str]) -> FieldMapping:
    """
    Layer ``overrides`` (e.g. a saved profile) on ``base`` for headers present in the source.

    An override that claims a field already suggested for a different header
    takes the field over, so the result stays conflict-free.
    """

    present = set(headers)
    merged: FieldMapping = OrderedDict((h, t) for h, t in base.items() if h in present)
    for header, target in overrides.items():
        if header not in present or target not in LEAD_FIELD_NAMES:
            continue
        for other_header, other_target in list(merged.items()):
            if other_target == target and other_header != header:
                del merged[other_header]
        merged[header] = target
    return merged


def mapping_checksum(mapping: Mapping[str, str]) -> str:
    payload = json.dumps(dict(mapping), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def load_mapping_file(path: str | Path) -> tuple[str | None, FieldMapping]:
    """
    Load a YAML mapping file and return ``(name, mapping)``.

    Expected shape::

        version: 1
        name: Zillow export
        fields:
          - source: E-Mail
            target: home_email
    """

    path = Path(path)
    if not path.exists():
        raise MappingLoadError(f"Mapping file not found at {path}")

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise MappingLoadError(f"Failed to parse mapping YAML at {path}: {exc}") from exc

    if not isinstance(raw, Mapping):
        raise MappingLoadError(f"Mapping file {path} must contain a YAML mapping.")

    try:
        version = int(raw.get("version", MAPPING_FILE_VERSION))
        fields_payload = raw["fields"]
    except KeyError as exc:
        raise MappingLoadError(f"Missing required mapping attribute: {exc}") from exc
    except (TypeError, ValueError) as exc:
        raise MappingLoadError(f"Invalid mapping attribute: {exc}") from exc

    if version != MAPPING_FILE_VERSION:
        raise MappingLoadError(f"Unsupported mapping file version {version}; expected {MAPPING_FILE_VERSION}.")
    if not isinstance(fields_payload, list):
        raise MappingLoadError("Mapping 'fields' must be a list of {source, target} entries.")

    mapping: FieldMapping = OrderedDict()
    for entry in fields_payload:
        if not isinstance(entry, Mapping):
            raise MappingLoadError(f"Field definition must be a mapping, got {entry!r}")
        source = entry.get("source")
        target = entry.get("target")
        if not source:
            raise MappingLoadError(f"Field entry missing 'source': {entry!r}")
        if not target:
            continue
        target = str(target).strip()
        if target not in LEAD_FIELD_NAMES:
            raise MappingLoadError(f"Unknown lead field '{target}' for column '{source}'.")
        mapping[str(source).strip()] = target

    name = raw.get("name")
    return (str(name).strip() if name else None), validate_mapping(mapping)


def dump_mapping_file(mapping: Mapping[str, str], path: str | Path, *, name: str | None = None) -> Path:
    """Write ``mapping`` as a YAML mapping file readable by ``load_mapping_file``."""

    path = Path(path)
    document: dict[str, Any] = {"version": MAPPING_FILE_VERSION}
    if name:
        document["name"] = name
    document["fields"] = [{"source": header, "target": target} for header, target in mapping.items()]
    path.write_text(yaml.safe_dump(document, sort_keys=False, allow_unicode=True), encoding="utf-8")
    return path


__all__ = [
    "FieldMapping",
    "MappingConflict",
    "MappingLoadError",
    "dump_mapping_file",
    "load_mapping_file",
    "mapping_checksum",
    "overlay_mapping",
    "suggest_mapping",
    "validate_mapping",
]
