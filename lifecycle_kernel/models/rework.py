"""
Module: lifecycle_kernel.models.rework
Responsibility: A recorded failed attempt within a stage.
Architecture position: Kernel > Models.

Invariants enforced:
    - iteration is 1, 2, 3, ... per stage instance with no gaps or reuse
      (unique constraint plus assignment under the unit row lock).
    - Committed attempts are immutable.  Removal happens only inside
      db.immutability.administrative_correction().
"""

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lifecycle_kernel.db.base import TrackedBase, UUIDString
from lifecycle_kernel.db.types import Money, Quantity

if TYPE_CHECKING:
    from lifecycle_kernel.models.stage_instance import StageInstance


class ReworkAttempt(TrackedBase):
    __tablename__ = "lifecycle_rework_attempts"

    __table_args__ = (
        UniqueConstraint("stage_instance_id", "iteration", name="uq_rework_stage_iteration"),
        CheckConstraint("iteration >= 1", name="ck_rework_iteration_positive"),
        CheckConstraint("failed_quantity > 0", name="ck_rework_failed_quantity_positive"),
    )

    stage_instance_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("lifecycle_stage_instances.id"),
        nullable=False,
    )

    unit_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("lifecycle_units.id"),
        nullable=False,
    )

    iteration: Mapped[int] = mapped_column(Integer, nullable=False)

    failure_reason: Mapped[str] = mapped_column(String(1000), nullable=False)

    failed_quantity: Mapped[Quantity] = mapped_column(nullable=False)

    rework_cost: Mapped[Money] = mapped_column(nullable=False, default=Decimal("0"))

    recorded_at: Mapped[datetime] = mapped_column(nullable=False)

    recorded_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    stage: Mapped["StageInstance"] = relationship(back_populates="rework_attempts")

    def __repr__(self) -> str:
        return f"<ReworkAttempt iteration={self.iteration} qty={self.failed_quantity}>"
