"""
Module: lifecycle_kernel.selectors.unit_selector
Responsibility: Point-in-time read of one unit's full state -- stages,
    checkpoints, material summaries, rework attempts, transition history,
    and version -- looked up by UUID or by scanned barcode.
Architecture position: Kernel > Selectors.

Failure modes:
    - UnitNotFoundError when neither the id nor the external_ref matches.
"""

from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from sqlalchemy import select

from lifecycle_kernel.domain.dtos import (
    CheckpointSnapshot,
    ReworkSnapshot,
    StageSnapshot,
    TransitionRecord,
    UnitSnapshot,
)
from lifecycle_kernel.domain.material import MaterialSummary
from lifecycle_kernel.domain.values import StageStatus, UnitStatus, parse_unit_identifier
from lifecycle_kernel.exceptions import UnitNotFoundError
from lifecycle_kernel.models.stage_instance import StageInstance
from lifecycle_kernel.models.transition_event import TransitionEvent
from lifecycle_kernel.models.unit_of_work import UnitOfWork
from lifecycle_kernel.selectors.base import BaseSelector


def to_transition_record(event: TransitionEvent, external_ref: str | None = None) -> TransitionRecord:
    return TransitionRecord(
        id=event.id,
        unit_id=event.unit_id,
        sequence=event.sequence,
        stage_from=event.stage_from,
        stage_to=event.stage_to,
        status_from=event.status_from,
        status_to=event.status_to,
        occurred_at=event.occurred_at,
        operator_id=event.operator_id,
        duration_hours=event.duration_hours,
        cost_incurred=event.cost_incurred,
        location=event.location,
        machine_id=event.machine_id,
        notes=event.notes,
        external_ref=external_ref,
    )


def progress_percentage(unit: UnitOfWork) -> int:
    """Completed stages over total stages, rounded half-up to a whole percent."""
    if unit.status == UnitStatus.COMPLETED.value:
        return 100
    total = len(unit.stage_sequence or ())
    if total == 0:
        return 0
    completed = sum(1 for s in unit.stages if s.status == StageStatus.COMPLETED.value)
    ratio = Decimal(completed * 100) / Decimal(total)
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class UnitSelector(BaseSelector[UnitOfWork]):
    """Read model for a single unit."""

    def find(self, identifier: UUID | str) -> UnitOfWork | None:
        unit_id = parse_unit_identifier(identifier)
        unit = None
        if unit_id is not None:
            unit = self.session.get(UnitOfWork, unit_id)
        if unit is None:
            unit = self.session.execute(
                select(UnitOfWork).where(UnitOfWork.external_ref == str(identifier))
            ).scalar_one_or_none()
        return unit

    def get_unit(self, identifier: UUID | str) -> UnitSnapshot:
        unit = self.find(identifier)
        if unit is None:
            raise UnitNotFoundError(str(identifier))
        return self.snapshot(unit)

    def snapshot(self, unit: UnitOfWork) -> UnitSnapshot:
        events = self.session.execute(
            select(TransitionEvent)
            .where(TransitionEvent.unit_id == unit.id)
            .order_by(TransitionEvent.sequence)
        ).scalars().all()
        return UnitSnapshot(
            id=unit.id,
            external_ref=unit.external_ref,
            unit_type=unit.unit_type,
            order_reference=unit.order_reference,
            current_stage=unit.current_stage,
            status=unit.status,
            quantity=unit.quantity,
            accumulated_cost=unit.accumulated_cost,
            location=unit.location,
            estimated_delivery_at=unit.estimated_delivery_at,
            actual_completion_at=unit.actual_completion_at,
            review_required=unit.review_required,
            version=unit.version,
            progress_percentage=progress_percentage(unit),
            stage_sequence=tuple(unit.stage_sequence or ()),
            stages=tuple(self._stage_snapshot(s) for s in unit.stages),
            history=tuple(to_transition_record(e, unit.external_ref) for e in events),
        )

    @staticmethod
    def _stage_snapshot(stage: StageInstance) -> StageSnapshot:
        return StageSnapshot(
            id=stage.id,
            stage_name=stage.stage_name,
            sequence_index=stage.sequence_index,
            status=stage.status,
            planned_start=stage.planned_start,
            planned_end=stage.planned_end,
            actual_start=stage.actual_start,
            actual_end=stage.actual_end,
            is_late=stage.is_late,
            late_reason=stage.late_reason,
            quality_approved=stage.quality_approved,
            quantity_processed=stage.quantity_processed,
            quantity_approved=stage.quantity_approved,
            quantity_rejected=stage.quantity_rejected,
            checkpoints=tuple(
                CheckpointSnapshot(
                    id=c.id,
                    name=c.name,
                    result=c.result,
                    remarks=c.remarks,
                    checked_at=c.checked_at,
                    checked_by_id=c.checked_by_id,
                )
                for c in stage.checkpoints
            ),
            materials=MaterialSummary.from_quantities(
                (a.quantity for a in stage.allocations),
                (c.quantity for c in stage.consumptions),
            ),
            rework=tuple(
                ReworkSnapshot(
                    id=r.id,
                    iteration=r.iteration,
                    failure_reason=r.failure_reason,
                    failed_quantity=r.failed_quantity,
                    rework_cost=r.rework_cost,
                    recorded_at=r.recorded_at,
                    recorded_by_id=r.recorded_by_id,
                    notes=r.notes,
                )
                for r in stage.rework_attempts
            ),
        )
