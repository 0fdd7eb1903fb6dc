"""
Module: lifecycle_kernel.models.checkpoint
Responsibility: Named quality test on a stage with a tri-state result:
    None = not checked, True = passed, False = failed.
Architecture position: Kernel > Models.

Invariants enforced:
    - Checkpoint names are unique per stage instance.
    - Records of a completed stage are frozen (CheckpointService refuses the
      edit; the immutability listener backs it up).
"""

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lifecycle_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from lifecycle_kernel.models.stage_instance import StageInstance


class CheckpointRecord(TrackedBase):
    __tablename__ = "lifecycle_checkpoints"

    __table_args__ = (
        UniqueConstraint("stage_instance_id", "name", name="uq_checkpoint_stage_name"),
    )

    stage_instance_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("lifecycle_stage_instances.id"),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    result: Mapped[bool | None] = mapped_column(
        Boolean,
        nullable=True,
    )

    remarks: Mapped[str | None] = mapped_column(
        String(1000),
        nullable=True,
    )

    checked_at: Mapped[datetime | None] = mapped_column(nullable=True)

    checked_by_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    stage: Mapped["StageInstance"] = relationship(back_populates="checkpoints")

    def __repr__(self) -> str:
        return f"<CheckpointRecord {self.name} result={self.result}>"
