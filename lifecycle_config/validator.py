"""
Catalog Validator (``lifecycle_config.validator``).

Responsibility
--------------
Validates a ``CatalogSource`` before it is turned into a runtime
``StageCatalog``, so that a malformed catalog is rejected as a whole with
every problem listed rather than failing on first use.

Failure modes
-------------
* Validation errors (``ConfigValidationResult.errors``)  -> the catalog
  MUST NOT be used.
* Validation warnings (``ConfigValidationResult.warnings``)  -> usable but
  should be reviewed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

from lifecycle_config.schema import CatalogSource, UnitTypeSource

_TERMINAL_STATUSES = frozenset({"completed", "cancelled", "returned"})
_POLICIES = frozenset({"warn", "reject"})


@dataclass
class ConfigValidationResult:
    """
    Result of catalog validation.

    ``is_valid`` is True only when ``errors`` is empty.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def _positive_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return False
    return number.is_finite() and number > 0


def validate_catalog(catalog: CatalogSource) -> ConfigValidationResult:
    """Validate global settings and every unit type."""
    result = ConfigValidationResult()

    if not catalog.version.strip():
        result.add_error("version must not be empty")
    if catalog.over_consumption not in _POLICIES:
        result.add_error(
            f"over_consumption '{catalog.over_consumption}' is not one of {sorted(_POLICIES)}"
        )
    if not _positive_number(catalog.command_timeout_seconds):
        result.add_error(
            f"command_timeout_seconds must be a positive number, got {catalog.command_timeout_seconds!r}"
        )
    if (
        isinstance(catalog.recent_window_hours, bool)
        or not isinstance(catalog.recent_window_hours, int)
        or catalog.recent_window_hours <= 0
    ):
        result.add_error(
            f"recent_window_hours must be a positive integer, got {catalog.recent_window_hours!r}"
        )
    if not catalog.unit_types:
        result.add_error("at least one unit type must be defined")

    for unit_type in catalog.unit_types:
        _validate_unit_type(unit_type, result)

    return result


def _validate_unit_type(unit_type: UnitTypeSource, result: ConfigValidationResult) -> None:
    prefix = f"unit type '{unit_type.name}'"
    stages = unit_type.stages
    stage_set = set(stages)

    if not stages:
        result.add_error(f"{prefix}: stage list is empty")
    duplicates = sorted({s for s in stages if stages.count(s) > 1})
    if duplicates:
        result.add_error(f"{prefix}: duplicate stages {duplicates}")
    blank = [s for s in stages if not s.strip()]
    if blank:
        result.add_error(f"{prefix}: stage names must not be blank")

    terminal_names = [name for name, _ in unit_type.terminal]
    overlap = sorted(set(terminal_names) & stage_set)
    if overlap:
        result.add_error(f"{prefix}: terminal stages overlap production stages {overlap}")
    for name, status in unit_type.terminal:
        if status not in _TERMINAL_STATUSES:
            result.add_error(
                f"{prefix}: terminal stage '{name}' maps to unknown status '{status}'"
            )
    if "completed" not in {status for _, status in unit_type.terminal}:
        result.add_error(f"{prefix}: no terminal stage maps to 'completed'")
    if "cancelled" not in {status for _, status in unit_type.terminal}:
        result.add_warning(f"{prefix}: units of this type cannot be cancelled")

    for stage, names in unit_type.checkpoints:
        if stage not in stage_set:
            result.add_error(f"{prefix}: checkpoints reference unknown stage '{stage}'")
        if len(set(names)) != len(names):
            result.add_error(f"{prefix}: duplicate checkpoints on stage '{stage}'")
        if any(not n.strip() for n in names):
            result.add_error(f"{prefix}: checkpoint names on stage '{stage}' must not be blank")

    for stage, hours in unit_type.planned_hours:
        if stage not in stage_set:
            result.add_error(f"{prefix}: planned_hours reference unknown stage '{stage}'")
        if not _positive_number(hours):
            result.add_error(
                f"{prefix}: planned_hours for '{stage}' must be a positive number, got {hours!r}"
            )
