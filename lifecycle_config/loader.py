"""
Catalog Loader (``lifecycle_config.loader``).

Responsibility
--------------
Loads the stage catalog YAML file and parses it into the frozen
``lifecycle_config.schema`` dataclasses.  This is internal tooling; the
single public entry point for runtime config is
``lifecycle_config.get_active_catalog()``.

Invariants enforced
-------------------
* Missing required keys raise ``KeyError``; no silent defaults for them.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the parsed
  document for configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Wrong shapes (e.g. stages not a list)  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from lifecycle_config.schema import CatalogSource, UnitTypeSource


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _as_list(value: Any, where: str) -> list:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"{where} must be a list, got {type(value).__name__}")
    return value


def _as_mapping(value: Any, where: str) -> dict:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{where} must be a mapping, got {type(value).__name__}")
    return value


def parse_unit_type(name: str, data: dict[str, Any]) -> UnitTypeSource:
    """Parse one entry of ``unit_types``."""
    data = _as_mapping(data, f"unit_types.{name}")
    stages = tuple(str(s) for s in _as_list(data["stages"], f"unit_types.{name}.stages"))
    terminal = _as_mapping(data.get("terminal"), f"unit_types.{name}.terminal")
    checkpoints = _as_mapping(data.get("checkpoints"), f"unit_types.{name}.checkpoints")
    planned_hours = _as_mapping(data.get("planned_hours"), f"unit_types.{name}.planned_hours")
    return UnitTypeSource(
        name=str(name),
        stages=stages,
        terminal=tuple((str(k), str(v)) for k, v in terminal.items()),
        checkpoints=tuple(
            (str(stage), tuple(str(c) for c in _as_list(names, f"unit_types.{name}.checkpoints.{stage}")))
            for stage, names in checkpoints.items()
        ),
        planned_hours=tuple((str(k), v) for k, v in planned_hours.items()),
        description=str(data.get("description", "")),
    )


def parse_catalog(data: dict[str, Any], source_path: str | None = None) -> CatalogSource:
    """
    Parse a catalog document.

    Raises:
        KeyError: ``version`` or ``unit_types`` is missing.
        ValueError: a section has the wrong shape.
    """
    unit_types = _as_mapping(data["unit_types"], "unit_types")
    return CatalogSource(
        version=str(data["version"]),
        unit_types=tuple(parse_unit_type(name, body) for name, body in unit_types.items()),
        over_consumption=str(data.get("over_consumption", "warn")),
        command_timeout_seconds=data.get("command_timeout_seconds", 30),
        recent_window_hours=data.get("recent_window_hours", 24),
        checksum=compute_checksum(data),
        source_path=source_path,
    )


def load_catalog(path: Path) -> CatalogSource:
    return parse_catalog(load_yaml_file(path), source_path=str(path))
