"""
Stage catalog source schema.

Defines the human-authored, reviewable source artifact for lifecycle
configuration.  YAML is parsed into these types by the loader, checked by
the validator, and translated into the kernel's ``StageCatalog`` by the
bridge.

Key distinction:
  CatalogSource = source artifact (human-authored, versioned, may be invalid)
  StageCatalog  = runtime artifact (validated, frozen, kernel-side)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class UnitTypeSource:
    """One unit type as written in the catalog."""

    name: str
    stages: tuple[str, ...]
    terminal: tuple[tuple[str, str], ...] = ()  # (terminal stage, unit status)
    checkpoints: tuple[tuple[str, tuple[str, ...]], ...] = ()
    planned_hours: tuple[tuple[str, Any], ...] = ()
    description: str = ""


@dataclass(frozen=True)
class CatalogSource:
    """The whole catalog file."""

    version: str
    unit_types: tuple[UnitTypeSource, ...]
    over_consumption: str = "warn"
    command_timeout_seconds: Any = 30
    recent_window_hours: Any = 24
    checksum: str = ""
    source_path: str | None = field(default=None, compare=False)
