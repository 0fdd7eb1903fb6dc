"""
Module: lifecycle_kernel.models.stage_instance
Responsibility: One occurrence of a unit occupying one stage, with its planned
    and actual window, quality and lateness flags, and per-stage quantities.
Architecture position: Kernel > Models.

Invariants enforced:
    - One StageInstance per (unit, stage_name).
    - At most one in_progress StageInstance per unit (partial unique index on
      PostgreSQL and SQLite; the engine checks it first).
    - Lifecycle: pending -> in_progress <-> on_hold -> completed.
"""

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from lifecycle_kernel.db.base import TrackedBase, UUIDString
from lifecycle_kernel.db.types import Quantity
from lifecycle_kernel.domain.values import OPEN_STAGE_STATUSES, StageStatus

if TYPE_CHECKING:
    from lifecycle_kernel.models.checkpoint import CheckpointRecord
    from lifecycle_kernel.models.material import MaterialAllocation, MaterialConsumption
    from lifecycle_kernel.models.rework import ReworkAttempt
    from lifecycle_kernel.models.unit_of_work import UnitOfWork


class StageInstance(TrackedBase):
    """A unit's visit to one manufacturing stage."""

    __tablename__ = "lifecycle_stage_instances"

    __table_args__ = (
        UniqueConstraint("unit_id", "stage_name", name="uq_stage_unit_name"),
        Index(
            "uq_stage_single_in_progress",
            "unit_id",
            unique=True,
            postgresql_where=text("status = 'in_progress'"),
            sqlite_where=text("status = 'in_progress'"),
        ),
        Index("idx_stage_unit_sequence", "unit_id", "sequence_index"),
    )

    unit_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("lifecycle_units.id"),
        nullable=False,
    )

    stage_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    sequence_index: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=StageStatus.PENDING.value,
    )

    planned_start: Mapped[datetime | None] = mapped_column(nullable=True)
    planned_end: Mapped[datetime | None] = mapped_column(nullable=True)
    actual_start: Mapped[datetime | None] = mapped_column(nullable=True)
    actual_end: Mapped[datetime | None] = mapped_column(nullable=True)
    on_hold_since: Mapped[datetime | None] = mapped_column(nullable=True)

    quality_approved: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    is_late: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    late_reason: Mapped[str | None] = mapped_column(
        String(1000),
        nullable=True,
    )

    quantity_processed: Mapped[Quantity | None] = mapped_column(nullable=True)
    quantity_approved: Mapped[Quantity | None] = mapped_column(nullable=True)
    quantity_rejected: Mapped[Quantity | None] = mapped_column(nullable=True)

    notes: Mapped[str | None] = mapped_column(
        String(4000),
        nullable=True,
    )

    unit: Mapped["UnitOfWork"] = relationship(back_populates="stages")

    checkpoints: Mapped[list["CheckpointRecord"]] = relationship(
        back_populates="stage",
        order_by="CheckpointRecord.name",
        lazy="selectin",
        cascade="save-update, merge, delete",
    )

    allocations: Mapped[list["MaterialAllocation"]] = relationship(
        back_populates="stage",
        lazy="select",
    )

    consumptions: Mapped[list["MaterialConsumption"]] = relationship(
        back_populates="stage",
        lazy="select",
        passive_deletes="all",
    )

    rework_attempts: Mapped[list["ReworkAttempt"]] = relationship(
        back_populates="stage",
        order_by="ReworkAttempt.iteration",
        lazy="select",
        passive_deletes="all",
    )

    @validates("status")
    def _coerce_status(self, key, value):
        return StageStatus(value).value

    def __repr__(self) -> str:
        return f"<StageInstance {self.stage_name} status={self.status}>"

    @property
    def is_open(self) -> bool:
        return StageStatus(self.status) in OPEN_STAGE_STATUSES

    @property
    def is_completed(self) -> bool:
        return self.status == StageStatus.COMPLETED.value

    @property
    def is_pending(self) -> bool:
        return self.status == StageStatus.PENDING.value
