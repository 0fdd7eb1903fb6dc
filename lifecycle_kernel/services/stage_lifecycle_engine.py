"""
StageLifecycleEngine -- the per-unit stage state machine.

Responsibility:
    Creates units of work with their configured stage sequence and moves
    them through it.  Every transition runs the quality checkpoint gate and
    the late detector, closes the current stage, appends an immutable
    TransitionEvent, and opens the next stage or settles a terminal status.

Architecture position:
    Kernel > Services -- flush-only.  The caller (LifecycleCommandService or
    a test) owns the transaction; a raised exception leaves the session
    dirty and the caller rolls back, so every operation is all-or-nothing.

Invariants enforced:
    - Stages are entered strictly in sequence; skip-ahead is rejected with
      OutOfOrderStageError.
    - At most one in_progress stage per unit.  The current stage is closed
      and flushed before the next one opens so the partial unique index
      never sees two.
    - Completion requires every checkpoint to be exactly True.
    - A caller-supplied late reason is never overwritten.
    - TransitionEvent.sequence is strictly increasing per unit.
    - Terminal units accept no further transitions.
    - A unit frozen for review moves only with override_authorized.

State machine per StageInstance:

    pending --> in_progress <--> on_hold --> (cancel/return only)
                     |
                     v
                 completed
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import select

from lifecycle_kernel.db.types import hours_between, to_decimal
from lifecycle_kernel.domain import checkpoint_gate, late_detector
from lifecycle_kernel.domain.clock import Clock
from lifecycle_kernel.domain.dtos import CommandContext, FreezeResult, TransitionResult
from lifecycle_kernel.domain.notifications import LifecycleNotification, NotificationType
from lifecycle_kernel.domain.stage_catalog import StageCatalog, UnitTypeDefinition
from lifecycle_kernel.domain.values import PlannedWindow, StageStatus, UnitStatus
from lifecycle_kernel.exceptions import (
    CheckpointsIncompleteError,
    ConcurrentModificationError,
    DuplicateUnitError,
    InvalidQuantityError,
    InvalidStageStateError,
    MissingFieldError,
    OutOfOrderStageError,
    ReviewOverrideRequiredError,
    StageNotFoundError,
    TerminalUnitError,
)
from lifecycle_kernel.logging_config import get_logger
from lifecycle_kernel.models.checkpoint import CheckpointRecord
from lifecycle_kernel.models.stage_instance import StageInstance
from lifecycle_kernel.models.transition_event import TransitionEvent
from lifecycle_kernel.models.unit_of_work import UnitOfWork
from lifecycle_kernel.services.base import BaseService

logger = get_logger("services.stage_lifecycle_engine")

_TERMINAL_NOTIFICATIONS = {
    UnitStatus.COMPLETED: NotificationType.UNIT_COMPLETED,
    UnitStatus.CANCELLED: NotificationType.UNIT_CANCELLED,
    UnitStatus.RETURNED: NotificationType.UNIT_RETURNED,
}


@dataclass
class _ClosedStage:
    """What closing a stage produced, for the event and the result."""

    duration_hours: Decimal | None = None
    is_late: bool = False
    late_reason: str | None = None
    notifications: list[LifecycleNotification] = field(default_factory=list)


class StageLifecycleEngine(BaseService[UnitOfWork]):
    """
    Advances units of work through their stage sequence.

    Contract:
        Receives a Session, a resolved StageCatalog, and a Clock.  Writes are
        flushed, never committed.
    """

    def __init__(self, session, catalog: StageCatalog, clock: Clock | None = None):
        super().__init__(session, clock)
        self._catalog = catalog

    # ------------------------------------------------------------------
    # Unit creation
    # ------------------------------------------------------------------

    def create_unit(
        self,
        external_ref: str,
        unit_type: str,
        quantity,
        context: CommandContext,
        *,
        order_reference: str | None = None,
        estimated_delivery_at: datetime | None = None,
        schedule: Mapping[str, PlannedWindow] | None = None,
        auto_start: bool = True,
    ) -> TransitionResult:
        """
        Create a unit and materialise its stage instances.

        Planned windows come from ``schedule`` where given, otherwise they
        are chained from the catalog's default planned hours starting at the
        creation time.  With ``auto_start`` the first stage opens
        immediately; otherwise it stays pending until start_stage().

        Raises:
            MissingFieldError: external_ref is blank.
            InvalidQuantityError: quantity is not positive.
            UnknownUnitTypeError: unit_type is not configured.
            DuplicateUnitError: external_ref is already tracked.
        """
        if not external_ref or not external_ref.strip():
            raise MissingFieldError("external_ref")
        quantity = self._quantity("quantity", quantity)
        self._require_positive("quantity", quantity)
        definition = self._catalog.unit_type(unit_type)

        existing = self.session.execute(
            select(UnitOfWork.id).where(UnitOfWork.external_ref == external_ref)
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicateUnitError(external_ref)

        now = self._now(context)
        unit = UnitOfWork(
            id=uuid4(),
            external_ref=external_ref,
            unit_type=definition.name,
            order_reference=order_reference,
            stage_sequence=list(definition.stages),
            terminal_stages={name: status.value for name, status in definition.terminal.items()},
            current_stage=definition.first_stage,
            status=UnitStatus.ACTIVE,
            quantity=quantity,
            accumulated_cost=Decimal("0"),
            location=context.location,
            estimated_delivery_at=estimated_delivery_at,
            review_required=False,
            last_event_sequence=0,
            created_by_id=context.operator_id,
        )
        self.session.add(unit)

        windows = self._plan_windows(external_ref, definition, now, schedule or {})
        for index, stage_name in enumerate(definition.stages):
            window = windows[stage_name]
            stage = StageInstance(
                stage_name=stage_name,
                sequence_index=index,
                status=StageStatus.PENDING,
                planned_start=window.start,
                planned_end=window.end,
                created_by_id=context.operator_id,
            )
            for checkpoint_name in definition.checkpoints_for(stage_name):
                stage.checkpoints.append(
                    CheckpointRecord(name=checkpoint_name, created_by_id=context.operator_id)
                )
            unit.stages.append(stage)

        first = unit.stages[0]
        if auto_start:
            self._open_stage(unit, first, now)
        event = self._append_event(
            unit,
            stage_from=None,
            stage_to=first.stage_name,
            status_from=None,
            status_to=UnitStatus.ACTIVE,
            at=now,
            context=context,
        )
        self.session.flush()

        logger.info(
            "unit_created",
            extra={
                "unit_id": str(unit.id),
                "external_ref": external_ref,
                "unit_type": definition.name,
                "stage_count": len(definition.stages),
                "auto_started": auto_start,
            },
        )
        return self._result(unit, None, None, event, now)

    def _plan_windows(
        self,
        external_ref: str,
        definition: UnitTypeDefinition,
        start: datetime,
        schedule: Mapping[str, PlannedWindow],
    ) -> dict[str, PlannedWindow]:
        unknown = set(schedule) - set(definition.stages)
        if unknown:
            raise StageNotFoundError(external_ref, sorted(unknown)[0])
        windows: dict[str, PlannedWindow] = {}
        cursor = start
        for stage_name in definition.stages:
            if stage_name in schedule:
                window = schedule[stage_name]
            else:
                hours = definition.planned_hours_for(stage_name)
                if hours is None:
                    window = PlannedWindow()
                else:
                    window = PlannedWindow(
                        start=cursor,
                        end=cursor + timedelta(hours=float(hours)),
                    )
            if window.end is not None:
                cursor = window.end
            windows[stage_name] = window
        return windows

    # ------------------------------------------------------------------
    # Stage start
    # ------------------------------------------------------------------

    def start_stage(
        self,
        unit: UnitOfWork,
        stage_name: str,
        context: CommandContext,
        planned_window: PlannedWindow | None = None,
    ) -> TransitionResult:
        """
        Open ``stage_name`` if the unit has no open stage and it is the next
        stage in sequence (the first stage when none has completed).

        Raises:
            OutOfOrderStageError: Another stage is open or stage_name is not next.
            StageNotFoundError: stage_name is not in the unit's sequence.
        """
        self._guard_transition(unit, context)
        definition = self._definition(unit)
        if definition.index_of(stage_name) is None:
            raise StageNotFoundError(str(unit.id), stage_name)

        open_stage = unit.open_stage
        last_completed = unit.last_completed_stage
        expected = definition.next_stage(last_completed.stage_name if last_completed else None)
        if open_stage is not None or stage_name != expected:
            logger.warning(
                "stage_start_rejected",
                extra={
                    "unit_id": str(unit.id),
                    "requested_stage": stage_name,
                    "expected_stage": expected,
                    "open_stage": open_stage.stage_name if open_stage else None,
                },
            )
            raise OutOfOrderStageError(
                str(unit.id),
                requested_stage=stage_name,
                expected_stage=None if open_stage is not None else expected,
                current_stage=open_stage.stage_name if open_stage else unit.current_stage,
            )

        stage = self._stage(unit, stage_name)
        if planned_window is not None:
            stage.planned_start = planned_window.start
            stage.planned_end = planned_window.end

        now = self._now(context)
        previous_stage = unit.current_stage
        previous_status = unit.status
        self._open_stage(unit, stage, now)
        self._touch(unit, context)

        event = None
        if previous_stage != stage_name or previous_status != UnitStatus.ACTIVE.value:
            event = self._append_event(
                unit,
                stage_from=previous_stage,
                stage_to=stage_name,
                status_from=previous_status,
                status_to=UnitStatus.ACTIVE,
                at=now,
                context=context,
            )
        self.session.flush()

        logger.info(
            "stage_started",
            extra={
                "unit_id": str(unit.id),
                "stage_name": stage_name,
                "planned_end": stage.planned_end,
            },
        )
        return self._result(unit, previous_stage, previous_status, event, now)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def record_transition(
        self,
        unit: UnitOfWork,
        new_stage: str,
        new_status: UnitStatus | str,
        context: CommandContext,
    ) -> TransitionResult:
        """
        Move a unit to ``new_stage`` / ``new_status``.

        Recognised moves:
            - pause:   new_stage == current stage, new_status on_hold
            - resume:  new_stage == current stage, new_status active
            - advance: new_stage is the immediate successor, new_status active
            - finish:  new_stage is the completion terminal stage, entered
                       from the last production stage
            - cancel / return: new_stage is a cancelled/returned terminal
                       stage, allowed from any stage

        Raises:
            TerminalUnitError, ReviewOverrideRequiredError,
            ConcurrentModificationError, CheckpointsIncompleteError,
            OutOfOrderStageError, InvalidStageStateError,
            InvalidQuantityError
        """
        self._guard_transition(unit, context)
        new_status = UnitStatus(new_status)
        self._validate_context_quantities(context)
        definition = self._definition(unit)
        now = self._now(context)

        current = unit.open_stage
        status_from = unit.status
        stage_from = current.stage_name if current is not None else unit.current_stage

        if current is None:
            # Only a never-started unit has no open stage; it may still be abandoned
            terminal_status = definition.terminal_status(new_stage)
            if terminal_status is None or terminal_status == UnitStatus.COMPLETED:
                raise InvalidStageStateError(
                    str(unit.id), unit.current_stage or "", StageStatus.PENDING.value, "transition"
                )
            closed, event = self._enter_terminal(unit, definition, None, new_stage, new_status, now, context)
        elif new_stage == current.stage_name:
            closed, event = self._pause_or_resume(unit, current, new_status, now, context)
        elif definition.is_terminal(new_stage):
            closed, event = self._enter_terminal(unit, definition, current, new_stage, new_status, now, context)
        else:
            closed, event = self._advance(unit, definition, current, new_stage, new_status, now, context)

        if context.cost_incurred is not None:
            unit.accumulated_cost = unit.accumulated_cost + to_decimal(context.cost_incurred)
        if context.location is not None:
            unit.location = context.location
        if context.override_authorized and unit.review_required:
            unit.review_required = False
            logger.warning(
                "review_override_applied",
                extra={"unit_id": str(unit.id), "stage_name": stage_from},
            )
        self._touch(unit, context)
        self.session.flush()

        logger.info(
            "transition_recorded",
            extra={
                "unit_id": str(unit.id),
                "stage_from": stage_from,
                "stage_to": new_stage,
                "status_from": status_from,
                "status_to": unit.status,
                "event_sequence": event.sequence,
                "duration_hours": closed.duration_hours,
                "is_late": closed.is_late,
            },
        )
        return self._result(
            unit, stage_from, status_from, event, now,
            duration_hours=closed.duration_hours,
            is_late=closed.is_late,
            late_reason=closed.late_reason,
            notifications=closed.notifications,
        )

    def _pause_or_resume(self, unit, stage, new_status, now, context):
        status_from = unit.status
        if new_status == UnitStatus.ON_HOLD:
            if stage.status != StageStatus.IN_PROGRESS.value:
                raise InvalidStageStateError(str(unit.id), stage.stage_name, stage.status, "pause")
            stage.status = StageStatus.ON_HOLD
            stage.on_hold_since = now
            unit.status = UnitStatus.ON_HOLD
            logger.info(
                "stage_paused",
                extra={"unit_id": str(unit.id), "stage_name": stage.stage_name, "reason": context.notes},
            )
        elif new_status == UnitStatus.ACTIVE:
            if stage.status == StageStatus.IN_PROGRESS.value:
                # Someone else already moved the unit into this exact state
                logger.warning(
                    "transition_already_applied",
                    extra={
                        "unit_id": str(unit.id),
                        "stage_name": stage.stage_name,
                        "version": unit.version,
                    },
                )
                raise ConcurrentModificationError(
                    str(unit.id),
                    expected_version=context.expected_version,
                    actual_version=unit.version,
                )
            if stage.status != StageStatus.ON_HOLD.value:
                raise InvalidStageStateError(str(unit.id), stage.stage_name, stage.status, "resume")
            stage.status = StageStatus.IN_PROGRESS
            stage.on_hold_since = None
            unit.status = UnitStatus.ACTIVE
            logger.info("stage_resumed", extra={"unit_id": str(unit.id), "stage_name": stage.stage_name})
        else:
            definition = self._definition(unit)
            raise OutOfOrderStageError(
                str(unit.id),
                requested_stage=stage.stage_name,
                expected_stage=definition.next_stage(stage.stage_name),
                current_stage=stage.stage_name,
            )
        if context.notes:
            stage.notes = context.notes
        self.session.flush()
        event = self._append_event(
            unit,
            stage_from=stage.stage_name,
            stage_to=stage.stage_name,
            status_from=status_from,
            status_to=new_status,
            at=now,
            context=context,
        )
        return _ClosedStage(), event

    def _advance(self, unit, definition, current, new_stage, new_status, now, context):
        expected = definition.next_stage(current.stage_name)
        if new_stage != expected:
            logger.warning(
                "transition_rejected_out_of_order",
                extra={
                    "unit_id": str(unit.id),
                    "requested_stage": new_stage,
                    "expected_stage": expected,
                    "current_stage": current.stage_name,
                },
            )
            raise OutOfOrderStageError(
                str(unit.id),
                requested_stage=new_stage,
                expected_stage=expected,
                current_stage=current.stage_name,
            )
        if new_status != UnitStatus.ACTIVE:
            raise InvalidStageStateError(
                str(unit.id), new_stage, new_status.value, "enter with status"
            )
        if current.status != StageStatus.IN_PROGRESS.value:
            raise InvalidStageStateError(str(unit.id), current.stage_name, current.status, "complete")

        status_from = unit.status
        closed = self._complete_stage(unit, current, now, context)
        next_stage = self._stage(unit, new_stage)
        self._open_stage(unit, next_stage, now)
        event = self._append_event(
            unit,
            stage_from=current.stage_name,
            stage_to=new_stage,
            status_from=status_from,
            status_to=UnitStatus.ACTIVE,
            at=now,
            context=context,
            duration_hours=closed.duration_hours,
        )
        return closed, event

    def _enter_terminal(self, unit, definition, current, new_stage, new_status, now, context):
        target_status = definition.terminal_status(new_stage)
        if new_status != target_status:
            raise InvalidStageStateError(
                str(unit.id), new_stage, new_status.value, f"enter terminal stage (expects {target_status.value})"
            )
        status_from = unit.status
        last_stage = current.stage_name if current is not None else unit.current_stage

        if target_status == UnitStatus.COMPLETED:
            if current.stage_name != definition.last_stage:
                raise OutOfOrderStageError(
                    str(unit.id),
                    requested_stage=new_stage,
                    expected_stage=definition.next_stage(current.stage_name),
                    current_stage=current.stage_name,
                )
            if current.status != StageStatus.IN_PROGRESS.value:
                raise InvalidStageStateError(str(unit.id), current.stage_name, current.status, "complete")
            closed = self._complete_stage(unit, current, now, context)
        elif current is None:
            closed = _ClosedStage()
        else:
            # Abandoned mid-stage: closed without the gate, left on hold
            closed = _ClosedStage(
                duration_hours=hours_between(current.actual_start, now) if current.actual_start else None,
            )
            current.status = StageStatus.ON_HOLD
            current.on_hold_since = now
            current.actual_end = now
            if context.notes:
                current.notes = context.notes
            self.session.flush()

        unit.current_stage = new_stage
        unit.status = target_status
        unit.actual_completion_at = now
        unit.review_required = False
        closed.notifications.append(
            LifecycleNotification(
                unit_id=unit.id,
                event_type=_TERMINAL_NOTIFICATIONS[target_status],
                payload={
                    "external_ref": unit.external_ref,
                    "stage": new_stage,
                    "last_stage": last_stage,
                },
            )
        )
        event = self._append_event(
            unit,
            stage_from=last_stage,
            stage_to=new_stage,
            status_from=status_from,
            status_to=target_status,
            at=now,
            context=context,
            duration_hours=closed.duration_hours,
        )
        logger.info(
            "unit_terminated",
            extra={"unit_id": str(unit.id), "terminal_stage": new_stage, "status": target_status.value},
        )
        return closed, event

    def _complete_stage(self, unit, stage, now, context) -> _ClosedStage:
        decision = checkpoint_gate.evaluate(stage.checkpoints)
        if not decision.passed:
            logger.warning(
                "checkpoint_gate_blocked",
                extra={
                    "unit_id": str(unit.id),
                    "stage_name": stage.stage_name,
                    "blocking": [name for name, _ in decision.blocking],
                },
            )
            raise CheckpointsIncompleteError(str(unit.id), stage.stage_name, list(decision.blocking))

        closed = _ClosedStage()
        if late_detector.is_late(stage, now):
            closed.is_late = True
            closed.late_reason = (
                context.late_reason or stage.late_reason or late_detector.late_reason(stage, now)
            )
            stage.is_late = True
            stage.late_reason = closed.late_reason
            closed.notifications.append(
                LifecycleNotification(
                    unit_id=unit.id,
                    event_type=NotificationType.STAGE_LATE,
                    payload={
                        "external_ref": unit.external_ref,
                        "stage": stage.stage_name,
                        "minutes_over_plan": late_detector.minutes_over_plan(stage, now),
                        "late_reason": closed.late_reason,
                    },
                )
            )
            logger.warning(
                "stage_marked_late",
                extra={
                    "unit_id": str(unit.id),
                    "stage_name": stage.stage_name,
                    "planned_end": stage.planned_end,
                    "actual_end": now,
                    "caller_reason": context.late_reason is not None,
                },
            )

        stage.quality_approved = decision.evaluated > 0
        stage.status = StageStatus.COMPLETED
        stage.actual_end = now
        stage.on_hold_since = None
        if context.quantity_processed is not None:
            stage.quantity_processed = to_decimal(context.quantity_processed)
        if context.quantity_approved is not None:
            stage.quantity_approved = to_decimal(context.quantity_approved)
        if context.quantity_rejected is not None:
            stage.quantity_rejected = to_decimal(context.quantity_rejected)
        if context.notes:
            stage.notes = context.notes
        if stage.actual_start is not None:
            closed.duration_hours = hours_between(stage.actual_start, now)
        # Flush the close before anything else opens
        self.session.flush()
        logger.info(
            "stage_completed",
            extra={
                "unit_id": str(unit.id),
                "stage_name": stage.stage_name,
                "duration_hours": closed.duration_hours,
                "checkpoints_evaluated": decision.evaluated,
            },
        )
        return closed

    # ------------------------------------------------------------------
    # Supervisor review
    # ------------------------------------------------------------------

    def freeze_for_review(self, unit: UnitOfWork, context: CommandContext) -> FreezeResult:
        """
        Freeze a late unit pending supervisor review.

        If the open stage is past its planned end at the context time, the
        stage is marked late and put on hold, and the unit goes on_hold with
        review_required.  A unit that is on time is left untouched.
        """
        self._check_expected_version(unit, context)
        if unit.is_terminal:
            raise TerminalUnitError(str(unit.id), unit.status)
        now = self._now(context)
        stage = unit.open_stage
        if stage is None or not late_detector.is_late(stage, now):
            return FreezeResult(
                unit_id=unit.id,
                frozen=unit.review_required,
                stage_name=stage.stage_name if stage else None,
                version=unit.version,
            )
        if unit.review_required:
            return FreezeResult(
                unit_id=unit.id,
                frozen=True,
                stage_name=stage.stage_name,
                late_reason=stage.late_reason,
                version=unit.version,
            )

        reason = context.late_reason or stage.late_reason or late_detector.late_reason(stage, now)
        stage.is_late = True
        stage.late_reason = reason
        status_from = unit.status
        if stage.status != StageStatus.ON_HOLD.value:
            stage.status = StageStatus.ON_HOLD
            stage.on_hold_since = now
        unit.status = UnitStatus.ON_HOLD
        unit.review_required = True
        self._touch(unit, context)
        self.session.flush()

        if status_from != UnitStatus.ON_HOLD.value:
            self._append_event(
                unit,
                stage_from=stage.stage_name,
                stage_to=stage.stage_name,
                status_from=status_from,
                status_to=UnitStatus.ON_HOLD,
                at=now,
                context=context,
                notes=f"Frozen for review: {reason}",
            )
            self.session.flush()

        logger.warning(
            "unit_frozen_for_review",
            extra={"unit_id": str(unit.id), "stage_name": stage.stage_name, "late_reason": reason},
        )
        notifications = (
            LifecycleNotification(
                unit_id=unit.id,
                event_type=NotificationType.STAGE_LATE,
                payload={
                    "external_ref": unit.external_ref,
                    "stage": stage.stage_name,
                    "minutes_over_plan": late_detector.minutes_over_plan(stage, now),
                    "late_reason": reason,
                },
            ),
            LifecycleNotification(
                unit_id=unit.id,
                event_type=NotificationType.UNIT_FROZEN,
                payload={"external_ref": unit.external_ref, "stage": stage.stage_name},
            ),
        )
        return FreezeResult(
            unit_id=unit.id,
            frozen=True,
            stage_name=stage.stage_name,
            late_reason=reason,
            version=unit.version,
            notifications=notifications,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _definition(self, unit: UnitOfWork) -> UnitTypeDefinition:
        """Stage order as snapshotted on the unit at creation."""
        return UnitTypeDefinition(
            name=unit.unit_type,
            stages=tuple(unit.stage_sequence),
            terminal=dict(unit.terminal_stages or {}),
        )

    def _guard_transition(self, unit: UnitOfWork, context: CommandContext) -> None:
        self._check_expected_version(unit, context)
        if unit.is_terminal:
            raise TerminalUnitError(str(unit.id), unit.status)
        if unit.review_required and not context.override_authorized:
            logger.warning(
                "transition_blocked_pending_review",
                extra={"unit_id": str(unit.id), "stage_name": unit.current_stage},
            )
            raise ReviewOverrideRequiredError(str(unit.id), unit.current_stage)

    def _validate_context_quantities(self, context: CommandContext) -> None:
        values = {}
        for field_name in (
            "quantity_processed", "quantity_approved", "quantity_rejected", "cost_incurred",
        ):
            raw = getattr(context, field_name)
            if raw is None:
                continue
            value = self._quantity(field_name, raw)
            self._require_non_negative(field_name, value)
            values[field_name] = value
        processed = values.get("quantity_processed")
        if processed is not None:
            accounted = values.get("quantity_approved", Decimal("0")) + values.get(
                "quantity_rejected", Decimal("0")
            )
            if accounted > processed:
                raise InvalidQuantityError(
                    "quantity_approved",
                    accounted,
                    f"approved + rejected exceeds processed ({processed})",
                )

    def _open_stage(self, unit: UnitOfWork, stage: StageInstance, now: datetime) -> None:
        stage.status = StageStatus.IN_PROGRESS
        stage.actual_start = now
        stage.on_hold_since = None
        unit.current_stage = stage.stage_name
        unit.status = UnitStatus.ACTIVE

    def _append_event(
        self,
        unit: UnitOfWork,
        *,
        stage_from: str | None,
        stage_to: str,
        status_from,
        status_to,
        at: datetime,
        context: CommandContext,
        duration_hours: Decimal | None = None,
        notes: str | None = None,
    ) -> TransitionEvent:
        unit.last_event_sequence = (unit.last_event_sequence or 0) + 1
        event = TransitionEvent(
            unit_id=unit.id,
            sequence=unit.last_event_sequence,
            stage_from=stage_from,
            stage_to=stage_to,
            status_from=UnitStatus(status_from).value if status_from is not None else None,
            status_to=UnitStatus(status_to).value,
            occurred_at=at,
            operator_id=context.operator_id,
            location=context.location,
            machine_id=context.machine_id,
            notes=notes or context.notes,
            duration_hours=duration_hours,
            cost_incurred=to_decimal(context.cost_incurred) if context.cost_incurred is not None else None,
            quantity_processed=self._optional_decimal(context.quantity_processed),
            quantity_approved=self._optional_decimal(context.quantity_approved),
            quantity_rejected=self._optional_decimal(context.quantity_rejected),
            created_by_id=context.operator_id,
        )
        self.session.add(event)
        return event

    @staticmethod
    def _optional_decimal(value) -> Decimal | None:
        return to_decimal(value) if value is not None else None

    def _result(
        self,
        unit: UnitOfWork,
        stage_from: str | None,
        status_from: str | None,
        event: TransitionEvent | None,
        at: datetime,
        *,
        duration_hours: Decimal | None = None,
        is_late: bool = False,
        late_reason: str | None = None,
        notifications: list[LifecycleNotification] | None = None,
    ) -> TransitionResult:
        return TransitionResult(
            unit_id=unit.id,
            external_ref=unit.external_ref,
            stage_from=stage_from,
            stage_to=unit.current_stage,
            status_from=status_from,
            status_to=unit.status,
            event_sequence=event.sequence if event is not None else None,
            occurred_at=at,
            duration_hours=duration_hours,
            is_late=is_late,
            late_reason=late_reason,
            version=unit.version,
            notifications=tuple(notifications or ()),
        )
