"""
Data transfer objects for the lifecycle kernel.

Inputs (CommandContext) and outputs (results, snapshots) are frozen
dataclasses.  Services and selectors never hand ORM instances across the
kernel boundary.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from lifecycle_kernel.domain.material import MaterialSummary, OverConsumptionWarning
from lifecycle_kernel.domain.notifications import LifecycleNotification

# ---------------------------------------------------------------------------
# Command input
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CommandContext:
    """
    Who, when, where, and how of one inbound command.

    ``occurred_at`` defaults to the service clock.  ``expected_version`` turns
    the call into a compare-and-swap against the unit's version.
    ``override_authorized`` records a supervisor override decided outside the
    engine.
    """

    operator_id: UUID
    occurred_at: datetime | None = None
    location: str | None = None
    machine_id: str | None = None
    notes: str | None = None
    late_reason: str | None = None
    cost_incurred: Decimal | None = None
    quantity_processed: Decimal | None = None
    quantity_approved: Decimal | None = None
    quantity_rejected: Decimal | None = None
    expected_version: int | None = None
    override_authorized: bool = False
    correlation_id: str | None = None

    def __post_init__(self) -> None:
        if self.occurred_at is not None and self.occurred_at.tzinfo is None:
            raise ValueError("occurred_at must be timezone-aware")


# ---------------------------------------------------------------------------
# Service results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of create_unit / start_stage / record_transition."""

    unit_id: UUID
    external_ref: str
    stage_from: str | None
    stage_to: str
    status_from: str | None
    status_to: str
    event_sequence: int | None
    occurred_at: datetime
    duration_hours: Decimal | None = None
    is_late: bool = False
    late_reason: str | None = None
    version: int = 1
    notifications: tuple[LifecycleNotification, ...] = ()


@dataclass(frozen=True)
class FreezeResult:
    unit_id: UUID
    frozen: bool
    stage_name: str | None
    late_reason: str | None = None
    version: int = 1
    notifications: tuple[LifecycleNotification, ...] = ()


@dataclass(frozen=True)
class ConsumptionResult:
    """A recorded consumption, the stage summary after it, and any warning."""

    consumption_id: UUID
    stage_name: str
    item_code: str
    quantity: Decimal
    summary: MaterialSummary
    warning: OverConsumptionWarning | None = None
    notifications: tuple[LifecycleNotification, ...] = ()


@dataclass(frozen=True)
class AllocationResult:
    allocation_id: UUID
    stage_name: str
    item_code: str
    quantity: Decimal
    summary: MaterialSummary


@dataclass(frozen=True)
class ReworkResult:
    attempt_id: UUID
    unit_id: UUID
    stage_name: str
    iteration: int
    failed_quantity: Decimal
    rework_cost: Decimal
    accumulated_cost: Decimal
    notifications: tuple[LifecycleNotification, ...] = ()


# ---------------------------------------------------------------------------
# Read-side snapshots
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CheckpointSnapshot:
    id: UUID
    name: str
    result: bool | None
    remarks: str | None = None
    checked_at: datetime | None = None
    checked_by_id: UUID | None = None


@dataclass(frozen=True)
class ReworkSnapshot:
    id: UUID
    iteration: int
    failure_reason: str
    failed_quantity: Decimal
    rework_cost: Decimal
    recorded_at: datetime
    recorded_by_id: UUID
    notes: str | None = None


@dataclass(frozen=True)
class StageSnapshot:
    id: UUID
    stage_name: str
    sequence_index: int
    status: str
    planned_start: datetime | None
    planned_end: datetime | None
    actual_start: datetime | None
    actual_end: datetime | None
    is_late: bool
    late_reason: str | None
    quality_approved: bool
    quantity_processed: Decimal | None = None
    quantity_approved: Decimal | None = None
    quantity_rejected: Decimal | None = None
    checkpoints: tuple[CheckpointSnapshot, ...] = ()
    materials: MaterialSummary = field(default_factory=MaterialSummary)
    rework: tuple[ReworkSnapshot, ...] = ()


@dataclass(frozen=True)
class TransitionRecord:
    id: UUID
    unit_id: UUID
    sequence: int
    stage_from: str | None
    stage_to: str
    status_from: str | None
    status_to: str
    occurred_at: datetime
    operator_id: UUID
    duration_hours: Decimal | None = None
    cost_incurred: Decimal | None = None
    location: str | None = None
    machine_id: str | None = None
    notes: str | None = None
    external_ref: str | None = None


@dataclass(frozen=True)
class UnitSnapshot:
    id: UUID
    external_ref: str
    unit_type: str
    order_reference: str | None
    current_stage: str | None
    status: str
    quantity: Decimal
    accumulated_cost: Decimal
    location: str | None
    estimated_delivery_at: datetime | None
    actual_completion_at: datetime | None
    review_required: bool
    version: int
    progress_percentage: int
    stage_sequence: tuple[str, ...] = ()
    stages: tuple[StageSnapshot, ...] = ()
    history: tuple[TransitionRecord, ...] = ()

    def stage(self, name: str) -> StageSnapshot | None:
        for snapshot in self.stages:
            if snapshot.stage_name == name:
                return snapshot
        return None


@dataclass(frozen=True)
class UnitSummary:
    """Light-weight unit row for listings."""

    id: UUID
    external_ref: str
    unit_type: str
    current_stage: str | None
    status: str
    quantity: Decimal
    location: str | None
    estimated_delivery_at: datetime | None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class OverdueUnit:
    id: UUID
    external_ref: str
    current_stage: str | None
    status: str
    estimated_delivery_at: datetime
    overdue_hours: Decimal


@dataclass(frozen=True)
class UnitPage:
    items: tuple[UnitSummary, ...]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        if self.limit <= 0:
            return 0
        return (self.total + self.limit - 1) // self.limit


@dataclass(frozen=True)
class DashboardSummary:
    total_units: int
    active_units: int
    completed_units: int
    on_hold_units: int
    stage_counts: dict[str, int]
    status_counts: dict[str, int]
    recent_transitions: tuple[TransitionRecord, ...]
    overdue_units: tuple[OverdueUnit, ...]
    open_stages: int = 0
    late_stages: int = 0
