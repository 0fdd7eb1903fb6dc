"""SQLAlchemy ORM models for the lifecycle kernel."""

from lifecycle_kernel.models.checkpoint import CheckpointRecord
from lifecycle_kernel.models.material import MaterialAllocation, MaterialConsumption
from lifecycle_kernel.models.rework import ReworkAttempt
from lifecycle_kernel.models.stage_instance import StageInstance
from lifecycle_kernel.models.transition_event import TransitionEvent
from lifecycle_kernel.models.unit_of_work import UnitOfWork

__all__ = [
    "CheckpointRecord",
    "MaterialAllocation",
    "MaterialConsumption",
    "ReworkAttempt",
    "StageInstance",
    "TransitionEvent",
    "UnitOfWork",
]
