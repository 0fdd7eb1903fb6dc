"""
Module: lifecycle_kernel.models.material
Responsibility: Material reserved for a stage (allocation) and material
    actually used (consumption).
Architecture position: Kernel > Models.

Invariants enforced:
    - Quantities are positive Decimals.
    - MaterialConsumption is append-only: UPDATE and DELETE are rejected by
      db/immutability.py.
"""

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lifecycle_kernel.db.base import TrackedBase, UUIDString
from lifecycle_kernel.db.types import Quantity

if TYPE_CHECKING:
    from lifecycle_kernel.models.stage_instance import StageInstance


class MaterialAllocation(TrackedBase):
    """Material reserved for one stage."""

    __tablename__ = "lifecycle_material_allocations"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_allocation_positive"),
        Index("idx_allocation_stage", "stage_instance_id"),
    )

    stage_instance_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("lifecycle_stage_instances.id"),
        nullable=False,
    )

    item_code: Mapped[str] = mapped_column(String(100), nullable=False)

    quantity: Mapped[Quantity] = mapped_column(nullable=False)

    unit_of_measure: Mapped[str] = mapped_column(String(20), nullable=False)

    allocated_at: Mapped[datetime] = mapped_column(nullable=False)

    stage: Mapped["StageInstance"] = relationship(back_populates="allocations")


class MaterialConsumption(TrackedBase):
    """Material actually used on one stage.  Append-only."""

    __tablename__ = "lifecycle_material_consumptions"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_consumption_positive"),
        Index("idx_consumption_stage", "stage_instance_id"),
    )

    stage_instance_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("lifecycle_stage_instances.id"),
        nullable=False,
    )

    item_code: Mapped[str] = mapped_column(String(100), nullable=False)

    quantity: Mapped[Quantity] = mapped_column(nullable=False)

    unit_of_measure: Mapped[str] = mapped_column(String(20), nullable=False)

    consumed_at: Mapped[datetime] = mapped_column(nullable=False)

    operator_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    stage: Mapped["StageInstance"] = relationship(back_populates="consumptions")
