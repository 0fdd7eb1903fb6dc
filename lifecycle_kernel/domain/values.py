"""
Lifecycle value types.

Status enums are ``str`` subclasses so they compare equal to the raw column
values loaded from the database.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID


class StageStatus(str, Enum):
    """Status of one stage instance."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"


class UnitStatus(str, Enum):
    """Status of a unit of work."""

    ACTIVE = "active"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    RETURNED = "returned"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_UNIT_STATUSES


TERMINAL_UNIT_STATUSES = frozenset(
    {UnitStatus.COMPLETED, UnitStatus.CANCELLED, UnitStatus.RETURNED}
)

OPEN_STAGE_STATUSES = frozenset({StageStatus.IN_PROGRESS, StageStatus.ON_HOLD})


class OverConsumptionPolicy(str, Enum):
    """What the material ledger does when consumption exceeds allocation."""

    WARN = "warn"
    REJECT = "reject"


@dataclass(frozen=True)
class PlannedWindow:
    """Planned start/end for a stage.  Either bound may be unknown."""

    start: datetime | None = None
    end: datetime | None = None

    def __post_init__(self) -> None:
        for label, value in (("start", self.start), ("end", self.end)):
            if value is not None and value.tzinfo is None:
                raise ValueError(f"Planned {label} must be timezone-aware")
        if self.start is not None and self.end is not None and self.end < self.start:
            raise ValueError("Planned end precedes planned start")

    @property
    def planned_end(self) -> datetime | None:
        return self.end


def parse_unit_identifier(identifier: UUID | str) -> UUID | None:
    """Return the UUID form of ``identifier`` or None when it is a barcode."""
    if isinstance(identifier, UUID):
        return identifier
    try:
        return UUID(str(identifier))
    except ValueError:
        return None
