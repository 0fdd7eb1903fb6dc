"""
Module: lifecycle_kernel.selectors.lifecycle_selector
Responsibility: Read-only floor analytics -- units per stage and status,
    recent transitions, overdue units, stage listings, and the dashboard
    roll-up.  Everything is derived from the unit rows and the transition log
    at query time; nothing is cached or stored.
Architecture position: Kernel > Selectors.

Failure modes:
    - An empty database yields zero counts and empty tuples, never an error.
"""

from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from lifecycle_kernel.db.types import hours_between
from lifecycle_kernel.domain.dtos import (
    DashboardSummary,
    OverdueUnit,
    TransitionRecord,
    UnitPage,
    UnitSummary,
)
from lifecycle_kernel.domain.values import TERMINAL_UNIT_STATUSES, StageStatus, UnitStatus
from lifecycle_kernel.exceptions import InvalidQuantityError
from lifecycle_kernel.models.stage_instance import StageInstance
from lifecycle_kernel.models.transition_event import TransitionEvent
from lifecycle_kernel.models.unit_of_work import UnitOfWork
from lifecycle_kernel.selectors.base import BaseSelector
from lifecycle_kernel.selectors.unit_selector import to_transition_record

_TERMINAL_VALUES = tuple(sorted(s.value for s in TERMINAL_UNIT_STATUSES))


class LifecycleSelector(BaseSelector[TransitionEvent]):
    """
    Aggregations over all units and the transition log.

    Contract:
        Every method is a pure read.  ``now`` is passed in by the caller so
        results are reproducible under a deterministic clock.
    """

    def __init__(self, session: Session, recent_window_hours: int = 24):
        super().__init__(session)
        self._recent_window_hours = recent_window_hours

    def stage_counts(self) -> dict[str, int]:
        """Units per current stage, including terminal stages."""
        rows = self.session.execute(
            select(UnitOfWork.current_stage, func.count(UnitOfWork.id))
            .where(UnitOfWork.current_stage.is_not(None))
            .group_by(UnitOfWork.current_stage)
            .order_by(UnitOfWork.current_stage)
        ).all()
        return {stage: count for stage, count in rows}

    def status_counts(self) -> dict[str, int]:
        rows = self.session.execute(
            select(UnitOfWork.status, func.count(UnitOfWork.id))
            .group_by(UnitOfWork.status)
            .order_by(UnitOfWork.status)
        ).all()
        return {status: count for status, count in rows}

    def recent_transitions(
        self,
        now: datetime,
        window_hours: int | None = None,
        limit: int = 10,
    ) -> tuple[TransitionRecord, ...]:
        """Transitions with ``occurred_at >= now - window``, newest first."""
        hours = self._recent_window_hours if window_hours is None else window_hours
        since = now - timedelta(hours=hours)
        rows = self.session.execute(
            select(TransitionEvent, UnitOfWork.external_ref)
            .join(UnitOfWork, UnitOfWork.id == TransitionEvent.unit_id)
            .where(TransitionEvent.occurred_at >= since)
            .where(TransitionEvent.occurred_at <= now)
            .order_by(TransitionEvent.occurred_at.desc(), TransitionEvent.sequence.desc())
            .limit(limit)
        ).all()
        return tuple(to_transition_record(event, ref) for event, ref in rows)

    def overdue_units(self, now: datetime, limit: int = 10) -> tuple[OverdueUnit, ...]:
        """Non-terminal units whose estimated delivery is before ``now``, most overdue first."""
        units = self.session.execute(
            select(UnitOfWork)
            .where(UnitOfWork.estimated_delivery_at.is_not(None))
            .where(UnitOfWork.estimated_delivery_at < now)
            .where(UnitOfWork.status.not_in(_TERMINAL_VALUES))
            .order_by(UnitOfWork.estimated_delivery_at, UnitOfWork.external_ref)
            .limit(limit)
        ).scalars().all()
        return tuple(
            OverdueUnit(
                id=u.id,
                external_ref=u.external_ref,
                current_stage=u.current_stage,
                status=u.status,
                estimated_delivery_at=u.estimated_delivery_at,
                overdue_hours=hours_between(u.estimated_delivery_at, now),
            )
            for u in units
        )

    def units_in_stage(
        self,
        stage_name: str | None = None,
        status: UnitStatus | str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> UnitPage:
        """
        Paginated unit listing, filtered by current stage and/or unit status.

        Pages are 1-based and ordered by external_ref.
        """
        if page < 1:
            raise InvalidQuantityError("page", page, "must be at least 1")
        if limit < 1:
            raise InvalidQuantityError("limit", limit, "must be at least 1")

        criteria = []
        if stage_name is not None:
            criteria.append(UnitOfWork.current_stage == stage_name)
        if status is not None:
            criteria.append(UnitOfWork.status == UnitStatus(status).value)

        total = self.session.execute(
            select(func.count(UnitOfWork.id)).where(*criteria)
        ).scalar_one()
        units = self.session.execute(
            select(UnitOfWork)
            .where(*criteria)
            .order_by(UnitOfWork.external_ref)
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars().all()
        return UnitPage(
            items=tuple(
                UnitSummary(
                    id=u.id,
                    external_ref=u.external_ref,
                    unit_type=u.unit_type,
                    current_stage=u.current_stage,
                    status=u.status,
                    quantity=u.quantity,
                    location=u.location,
                    estimated_delivery_at=u.estimated_delivery_at,
                    updated_at=u.updated_at,
                )
                for u in units
            ),
            total=total,
            page=page,
            limit=limit,
        )

    def late_stage_count(self) -> int:
        return self.session.execute(
            select(func.count(StageInstance.id)).where(StageInstance.is_late.is_(True))
        ).scalar_one()

    def open_stage_count(self) -> int:
        return self.session.execute(
            select(func.count(StageInstance.id)).where(
                StageInstance.status.in_(
                    (StageStatus.IN_PROGRESS.value, StageStatus.ON_HOLD.value)
                )
            )
        ).scalar_one()

    def dashboard(self, now: datetime, limit: int = 10) -> DashboardSummary:
        status_counts = self.status_counts()
        return DashboardSummary(
            total_units=sum(status_counts.values()),
            active_units=status_counts.get(UnitStatus.ACTIVE.value, 0),
            completed_units=status_counts.get(UnitStatus.COMPLETED.value, 0),
            on_hold_units=status_counts.get(UnitStatus.ON_HOLD.value, 0),
            stage_counts=self.stage_counts(),
            status_counts=status_counts,
            recent_transitions=self.recent_transitions(now, limit=limit),
            overdue_units=self.overdue_units(now, limit=limit),
            open_stages=self.open_stage_count(),
            late_stages=self.late_stage_count(),
        )
