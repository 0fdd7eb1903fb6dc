"""
Module: lifecycle_kernel.models.unit_of_work
Responsibility: ORM persistence for the tracked item -- a production-order line
    or a barcoded product instance -- and its position in the stage sequence.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/values.py only.

Invariants enforced:
    - external_ref is unique; barcodes and order ids are opaque strings.
    - stage_sequence and terminal_stages are snapshotted from the catalog at
      creation, so later catalog edits never reorder an in-flight unit.
    - version is SQLAlchemy's version_id_col: every UPDATE is issued as
      ``... WHERE version = :expected`` and a lost update raises StaleDataError.
    - Units are never deleted.

Failure modes:
    - IntegrityError on duplicate external_ref.
    - StaleDataError when a concurrent transaction updated the row first.
"""

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Boolean, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from lifecycle_kernel.db.base import TrackedBase
from lifecycle_kernel.db.types import Money, Quantity
from lifecycle_kernel.domain.values import TERMINAL_UNIT_STATUSES, UnitStatus

if TYPE_CHECKING:
    from lifecycle_kernel.models.stage_instance import StageInstance
    from lifecycle_kernel.models.transition_event import TransitionEvent


class UnitOfWork(TrackedBase):
    """One unit of work moving through its stage sequence."""

    __tablename__ = "lifecycle_units"

    __table_args__ = (
        Index("idx_unit_current_stage", "current_stage"),
        Index("idx_unit_status", "status"),
        Index("idx_unit_estimated_delivery", "estimated_delivery_at"),
    )

    external_ref: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
    )

    unit_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    order_reference: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )

    # Ordered production stages, resolved at creation
    stage_sequence: Mapped[list] = mapped_column(
        JSON,
        nullable=False,
    )

    # Terminal stage name -> unit status
    terminal_stages: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
    )

    current_stage: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=UnitStatus.ACTIVE.value,
    )

    quantity: Mapped[Quantity] = mapped_column(nullable=False)

    accumulated_cost: Mapped[Money] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    location: Mapped[str | None] = mapped_column(
        String(200),
        nullable=True,
    )

    estimated_delivery_at: Mapped[datetime | None] = mapped_column(nullable=True)

    actual_completion_at: Mapped[datetime | None] = mapped_column(nullable=True)

    review_required: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    # Highest TransitionEvent.sequence written for this unit
    last_event_sequence: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    __mapper_args__ = {"version_id_col": version}

    stages: Mapped[list["StageInstance"]] = relationship(
        back_populates="unit",
        order_by="StageInstance.sequence_index",
        lazy="selectin",
    )

    events: Mapped[list["TransitionEvent"]] = relationship(
        back_populates="unit",
        order_by="TransitionEvent.sequence",
        lazy="select",
        passive_deletes="all",
    )

    @validates("status")
    def _coerce_status(self, key, value):
        return UnitStatus(value).value

    def __repr__(self) -> str:
        return f"<UnitOfWork {self.external_ref} stage={self.current_stage} status={self.status}>"

    @property
    def is_terminal(self) -> bool:
        return UnitStatus(self.status) in TERMINAL_UNIT_STATUSES

    def stage_named(self, stage_name: str) -> "StageInstance | None":
        for stage in self.stages:
            if stage.stage_name == stage_name:
                return stage
        return None

    @property
    def open_stage(self) -> "StageInstance | None":
        """The stage instance currently in_progress or on_hold, if any."""
        for stage in self.stages:
            if stage.is_open:
                return stage
        return None

    @property
    def last_completed_stage(self) -> "StageInstance | None":
        completed = [s for s in self.stages if s.is_completed]
        return completed[-1] if completed else None
