"""
Module: lifecycle_kernel.models.transition_event
Responsibility: Immutable history record of a unit's stage or status change.
    This log is the only history input to the Lifecycle Aggregator.
Architecture position: Kernel > Models.

Invariants enforced:
    - sequence is strictly increasing per unit (unique (unit_id, sequence)).
    - The first event of a unit has stage_from = NULL.
    - Rows are never updated or deleted (db/immutability.py).
"""

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lifecycle_kernel.db.base import TrackedBase, UUIDString
from lifecycle_kernel.db.types import Hours, Money, Quantity

if TYPE_CHECKING:
    from lifecycle_kernel.models.unit_of_work import UnitOfWork


class TransitionEvent(TrackedBase):
    __tablename__ = "lifecycle_transition_events"

    __table_args__ = (
        UniqueConstraint("unit_id", "sequence", name="uq_transition_unit_sequence"),
        Index("idx_transition_occurred_at", "occurred_at"),
        Index("idx_transition_stage_to", "stage_to"),
    )

    unit_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("lifecycle_units.id"),
        nullable=False,
    )

    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    stage_from: Mapped[str | None] = mapped_column(String(100), nullable=True)
    stage_to: Mapped[str] = mapped_column(String(100), nullable=False)

    status_from: Mapped[str | None] = mapped_column(String(20), nullable=True)
    status_to: Mapped[str] = mapped_column(String(20), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    operator_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    location: Mapped[str | None] = mapped_column(String(200), nullable=True)
    machine_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    # Hours spent in stage_from, to 0.01 h
    duration_hours: Mapped[Hours | None] = mapped_column(nullable=True)

    cost_incurred: Mapped[Money | None] = mapped_column(nullable=True)

    quantity_processed: Mapped[Quantity | None] = mapped_column(nullable=True)
    quantity_approved: Mapped[Quantity | None] = mapped_column(nullable=True)
    quantity_rejected: Mapped[Quantity | None] = mapped_column(nullable=True)

    unit: Mapped["UnitOfWork"] = relationship(back_populates="events")

    def __repr__(self) -> str:
        return f"<TransitionEvent #{self.sequence} {self.stage_from}->{self.stage_to}>"
