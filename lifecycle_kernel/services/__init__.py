"""Services for the lifecycle kernel (write side)."""

from lifecycle_kernel.services.checkpoint_service import CheckpointService
from lifecycle_kernel.services.material_ledger import MaterialLedger
from lifecycle_kernel.services.rework_ledger import ReworkLedger
from lifecycle_kernel.services.stage_lifecycle_engine import StageLifecycleEngine

__all__ = [
    "CheckpointService",
    "MaterialLedger",
    "ReworkLedger",
    "StageLifecycleEngine",
]
