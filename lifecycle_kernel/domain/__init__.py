"""
Pure domain layer.

Value types, DTOs, and decision logic with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Wall-clock time (callers pass "now" from an injected Clock)
- I/O
"""

from lifecycle_kernel.domain.checkpoint_gate import CheckpointState, GateDecision, evaluate
from lifecycle_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from lifecycle_kernel.domain.dtos import (
    CommandContext,
    DashboardSummary,
    TransitionRecord,
    TransitionResult,
    UnitSnapshot,
)
from lifecycle_kernel.domain.late_detector import is_late, late_reason, minutes_over_plan
from lifecycle_kernel.domain.material import MaterialSummary, OverConsumptionWarning
from lifecycle_kernel.domain.notifications import (
    LifecycleNotification,
    NotificationPublisher,
    NotificationType,
)
from lifecycle_kernel.domain.stage_catalog import StageCatalog, UnitTypeDefinition
from lifecycle_kernel.domain.values import (
    OverConsumptionPolicy,
    PlannedWindow,
    StageStatus,
    UnitStatus,
)

__all__ = [
    "CheckpointState",
    "Clock",
    "CommandContext",
    "DashboardSummary",
    "DeterministicClock",
    "GateDecision",
    "LifecycleNotification",
    "MaterialSummary",
    "NotificationPublisher",
    "NotificationType",
    "OverConsumptionPolicy",
    "OverConsumptionWarning",
    "PlannedWindow",
    "StageCatalog",
    "StageStatus",
    "SystemClock",
    "TransitionRecord",
    "TransitionResult",
    "UnitSnapshot",
    "UnitStatus",
    "UnitTypeDefinition",
    "evaluate",
    "is_late",
    "late_reason",
    "minutes_over_plan",
]
