"""
ReworkLedger -- numbered failed attempts within a stage.

Responsibility:
    Appends ReworkAttempt records and rolls their cost into the unit's
    accumulated cost.  Attempts an operator has drafted but not submitted
    never reach this service; once recorded an attempt is immutable and only
    an administrative correction may remove it.

Architecture position:
    Kernel > Services -- flush-only.

Invariants enforced:
    - iteration = highest existing iteration + 1, assigned while the caller
      holds the unit row lock.  The unique (stage, iteration) constraint is
      the backstop.  Without corrections this equals count + 1.
    - failure_reason is non-empty, failed_quantity > 0, cost >= 0.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from lifecycle_kernel.db.immutability import administrative_correction
from lifecycle_kernel.domain.dtos import CommandContext, ReworkResult
from lifecycle_kernel.domain.notifications import LifecycleNotification, NotificationType
from lifecycle_kernel.exceptions import (
    InvalidStageStateError,
    MissingFieldError,
    ReworkNotFoundError,
    TerminalUnitError,
)
from lifecycle_kernel.logging_config import get_logger
from lifecycle_kernel.models.rework import ReworkAttempt
from lifecycle_kernel.models.unit_of_work import UnitOfWork
from lifecycle_kernel.services.base import BaseService

logger = get_logger("services.rework_ledger")


class ReworkLedger(BaseService[ReworkAttempt]):
    """Numbered rework attempts per stage and their cost on the unit."""

    def record_rework(
        self,
        unit: UnitOfWork,
        stage_name: str,
        failure_reason: str,
        failed_quantity,
        cost,
        context: CommandContext,
    ) -> ReworkResult:
        """
        Record one rework iteration on a started stage.

        Raises:
            MissingFieldError: failure_reason is blank.
            InvalidQuantityError: failed_quantity <= 0 or cost < 0.
            InvalidStageStateError: the stage has not started.
        """
        self._check_expected_version(unit, context)
        if unit.is_terminal:
            raise TerminalUnitError(str(unit.id), unit.status)
        if failure_reason is None or not failure_reason.strip():
            raise MissingFieldError("failure_reason")
        failed_quantity = self._quantity("failed_quantity", failed_quantity)
        self._require_positive("failed_quantity", failed_quantity)
        cost = self._quantity("cost", cost if cost is not None else Decimal("0"))
        self._require_non_negative("cost", cost)

        stage = self._stage(unit, stage_name)
        if stage.is_pending:
            raise InvalidStageStateError(str(unit.id), stage_name, stage.status, "record rework on")

        highest = self.session.execute(
            select(func.max(ReworkAttempt.iteration)).where(
                ReworkAttempt.stage_instance_id == stage.id
            )
        ).scalar()
        iteration = (highest or 0) + 1

        attempt = ReworkAttempt(
            stage_instance_id=stage.id,
            unit_id=unit.id,
            iteration=iteration,
            failure_reason=failure_reason.strip(),
            failed_quantity=failed_quantity,
            rework_cost=cost,
            recorded_at=self._now(context),
            recorded_by_id=context.operator_id,
            notes=context.notes,
            created_by_id=context.operator_id,
        )
        stage.rework_attempts.append(attempt)
        unit.accumulated_cost = unit.accumulated_cost + cost
        self._touch(unit, context)
        self.session.flush()

        logger.info(
            "rework_recorded",
            extra={
                "unit_id": str(unit.id),
                "stage_name": stage_name,
                "iteration": iteration,
                "failed_quantity": failed_quantity,
                "rework_cost": cost,
            },
        )
        return ReworkResult(
            attempt_id=attempt.id,
            unit_id=unit.id,
            stage_name=stage_name,
            iteration=iteration,
            failed_quantity=failed_quantity,
            rework_cost=cost,
            accumulated_cost=unit.accumulated_cost,
            notifications=(
                LifecycleNotification(
                    unit_id=unit.id,
                    event_type=NotificationType.REWORK_RECORDED,
                    payload={
                        "external_ref": unit.external_ref,
                        "stage": stage_name,
                        "iteration": iteration,
                        "failed_quantity": str(failed_quantity),
                        "failure_reason": attempt.failure_reason,
                    },
                ),
            ),
        )

    def administrative_remove(
        self,
        unit: UnitOfWork,
        attempt_id: UUID,
        context: CommandContext,
        reason: str,
    ) -> None:
        """
        Remove a recorded attempt as an explicit correction.

        The attempt's cost is taken back out of the unit's accumulated cost.
        Iteration numbers of the remaining attempts are left as they are.
        """
        self._check_expected_version(unit, context)
        if reason is None or not reason.strip():
            raise MissingFieldError("reason")
        attempt = self.session.get(ReworkAttempt, attempt_id)
        if attempt is None or attempt.unit_id != unit.id:
            raise ReworkNotFoundError(str(attempt_id))

        stage = attempt.stage
        with administrative_correction(self.session, reason, context.operator_id):
            unit.accumulated_cost = unit.accumulated_cost - attempt.rework_cost
            self._touch(unit, context)
            self.session.delete(attempt)
            self.session.flush()
        self.session.expire(stage, ["rework_attempts"])

        logger.warning(
            "rework_removed_by_correction",
            extra={
                "unit_id": str(unit.id),
                "attempt_id": str(attempt_id),
                "iteration": attempt.iteration,
                "reason": reason,
            },
        )
