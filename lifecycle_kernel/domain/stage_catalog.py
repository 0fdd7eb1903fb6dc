"""
StageCatalog -- resolved per-unit-type stage sequences.

Responsibility:
    Immutable, kernel-side view of the configured stage catalog.  The
    ``lifecycle_config`` package builds one from YAML and hands it to the
    services as a value; the kernel never reads configuration files.

Architecture position:
    Kernel > Domain -- pure, no I/O.

Invariants enforced:
    - A unit type's production stages are ordered and unique.
    - Terminal stage names are disjoint from production stages and each maps
      to a terminal UnitStatus.
    - Ordering is looked up here only; services never reorder stages.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping

from lifecycle_kernel.domain.values import (
    TERMINAL_UNIT_STATUSES,
    OverConsumptionPolicy,
    UnitStatus,
)
from lifecycle_kernel.exceptions import UnknownUnitTypeError


@dataclass(frozen=True)
class UnitTypeDefinition:
    """Stage sequence and per-stage defaults for one unit-of-work type."""

    name: str
    stages: tuple[str, ...]
    terminal: Mapping[str, UnitStatus] = field(default_factory=dict)
    checkpoints: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    planned_hours: Mapping[str, Decimal] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.stages:
            raise ValueError(f"Unit type '{self.name}' has no stages")
        if len(set(self.stages)) != len(self.stages):
            raise ValueError(f"Unit type '{self.name}' has duplicate stages")
        overlap = set(self.terminal) & set(self.stages)
        if overlap:
            raise ValueError(
                f"Unit type '{self.name}' terminal names overlap stages: {sorted(overlap)}"
            )
        for status in self.terminal.values():
            if UnitStatus(status) not in TERMINAL_UNIT_STATUSES:
                raise ValueError(f"'{status}' is not a terminal unit status")
        object.__setattr__(self, "terminal", MappingProxyType(
            {k: UnitStatus(v) for k, v in self.terminal.items()}
        ))
        object.__setattr__(self, "checkpoints", MappingProxyType(
            {k: tuple(v) for k, v in self.checkpoints.items()}
        ))
        object.__setattr__(self, "planned_hours", MappingProxyType(dict(self.planned_hours)))

    @property
    def first_stage(self) -> str:
        return self.stages[0]

    @property
    def last_stage(self) -> str:
        return self.stages[-1]

    def index_of(self, stage_name: str) -> int | None:
        try:
            return self.stages.index(stage_name)
        except ValueError:
            return None

    def next_stage(self, stage_name: str | None) -> str | None:
        """Immediate successor of ``stage_name``; the first stage for None."""
        if stage_name is None:
            return self.first_stage
        idx = self.index_of(stage_name)
        if idx is None or idx + 1 >= len(self.stages):
            return None
        return self.stages[idx + 1]

    def is_terminal(self, stage_name: str) -> bool:
        return stage_name in self.terminal

    def terminal_status(self, stage_name: str) -> UnitStatus | None:
        return self.terminal.get(stage_name)

    def completion_stage(self) -> str | None:
        """Terminal stage name that marks the unit completed."""
        for name, status in self.terminal.items():
            if status == UnitStatus.COMPLETED:
                return name
        return None

    def checkpoints_for(self, stage_name: str) -> tuple[str, ...]:
        return self.checkpoints.get(stage_name, ())

    def planned_hours_for(self, stage_name: str) -> Decimal | None:
        return self.planned_hours.get(stage_name)


@dataclass(frozen=True)
class StageCatalog:
    """All configured unit types plus global lifecycle settings."""

    version: str
    unit_types: Mapping[str, UnitTypeDefinition]
    over_consumption_policy: OverConsumptionPolicy = OverConsumptionPolicy.WARN
    command_timeout_seconds: float = 30.0
    recent_window_hours: int = 24
    checksum: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "unit_types", MappingProxyType(dict(self.unit_types)))
        object.__setattr__(
            self, "over_consumption_policy", OverConsumptionPolicy(self.over_consumption_policy)
        )

    def unit_type(self, name: str) -> UnitTypeDefinition:
        """
        Resolve a unit type.

        Raises:
            UnknownUnitTypeError: If the type is not configured.
        """
        definition = self.unit_types.get(name)
        if definition is None:
            raise UnknownUnitTypeError(name, sorted(self.unit_types))
        return definition
