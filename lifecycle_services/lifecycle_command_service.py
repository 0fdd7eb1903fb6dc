"""
lifecycle_services.lifecycle_command_service -- the transactional command boundary.

Responsibility:
    Runs every inbound floor command as exactly one database transaction.
    Opens a session, row-locks the unit, invokes the kernel services, checks
    the command deadline, commits, and only then hands notifications to the
    publisher.  Any failure rolls the whole command back.

Architecture position:
    Services -- sits above ``lifecycle_kernel`` and ``lifecycle_config``.
    This is the only place in the system that calls ``session.commit()``.

Invariants enforced:
    - All-or-nothing: a raised exception (including KeyboardInterrupt)
      rolls back and closes the session.
    - Same-unit serialization: SELECT ... FOR UPDATE on the unit row plus the
      unit's version counter.  A lost update surfaces as
      ConcurrentModificationError, never as silent overwrite.
    - Deadline: if the command's timeout has elapsed before commit, the
      transaction is rolled back and OperationTimedOutError is raised.
    - Notifications are published after commit only.  A publisher failure is
      logged and does not undo the committed command.
    - No retries.  Callers decide whether to re-read and resubmit.

Failure modes:
    - Every LifecycleKernelError raised by the kernel propagates unchanged.
    - StaleDataError / IntegrityError  -> ConcurrentModificationError
      (DuplicateUnitError for create_unit).
    - Lock wait failures (PostgreSQL lock_timeout, SQLite "database is
      locked")  -> OperationTimedOutError.

Usage:
    from lifecycle_config import get_active_catalog
    from lifecycle_kernel.db import get_session_factory
    from lifecycle_services import LifecycleCommandService

    service = LifecycleCommandService(get_session_factory(), get_active_catalog())
    result = service.record_transition("BC-0001", "stitching", "active", ctx)
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, TypeVar
from uuid import UUID, uuid4

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from lifecycle_kernel.db.immutability import register_immutability_listeners
from lifecycle_kernel.domain.clock import Clock, SystemClock
from lifecycle_kernel.domain.dtos import (
    AllocationResult,
    CheckpointSnapshot,
    CommandContext,
    ConsumptionResult,
    DashboardSummary,
    FreezeResult,
    OverdueUnit,
    ReworkResult,
    TransitionRecord,
    TransitionResult,
    UnitPage,
    UnitSnapshot,
)
from lifecycle_kernel.domain.notifications import NotificationPublisher
from lifecycle_kernel.domain.stage_catalog import StageCatalog
from lifecycle_kernel.domain.values import PlannedWindow, UnitStatus, parse_unit_identifier
from lifecycle_kernel.exceptions import (
    ConcurrentModificationError,
    DuplicateUnitError,
    LifecycleKernelError,
    MissingFieldError,
    OperationTimedOutError,
)
from lifecycle_kernel.logging_config import LogContext, get_logger
from lifecycle_kernel.selectors.lifecycle_selector import LifecycleSelector
from lifecycle_kernel.selectors.unit_selector import UnitSelector
from lifecycle_kernel.services.checkpoint_service import CheckpointService
from lifecycle_kernel.services.material_ledger import MaterialLedger
from lifecycle_kernel.services.rework_ledger import ReworkLedger
from lifecycle_kernel.services.stage_lifecycle_engine import StageLifecycleEngine
from lifecycle_services.notifications import LoggingNotificationPublisher

logger = get_logger("services.command")

T = TypeVar("T")

_PG_LOCK_NOT_AVAILABLE = "55P03"


@dataclass(frozen=True)
class BulkTransitionError:
    barcode: str
    code: str
    message: str


@dataclass(frozen=True)
class BulkTransitionResult:
    """Per-barcode outcomes of a bulk transition."""

    results: tuple[TransitionResult, ...]
    errors: tuple[BulkTransitionError, ...]

    @property
    def succeeded(self) -> int:
        return len(self.results)

    @property
    def failed(self) -> int:
        return len(self.errors)


class _Kernel:
    """Kernel services bound to one session."""

    def __init__(self, session: Session, catalog: StageCatalog, clock: Clock):
        self.engine = StageLifecycleEngine(session, catalog, clock)
        self.materials = MaterialLedger(session, clock, catalog.over_consumption_policy)
        self.rework = ReworkLedger(session, clock)
        self.checkpoints = CheckpointService(session, clock)

    def lock(self, identifier: UUID | str):
        return self.engine.lock_unit(identifier)


class LifecycleCommandService:
    """
    Transactional facade over the lifecycle kernel.

    Contract:
        Receives a session factory (``sessionmaker``), a resolved
        StageCatalog, and optional Clock, NotificationPublisher and timer.
        Each public write method opens its own session and transaction.
        Constructing the service switches on the append-only guards for
        history, consumption, rework and frozen checkpoint rows.

    Non-goals:
        - Does NOT authenticate or authorize operators.
        - Does NOT retry on conflict.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        catalog: StageCatalog,
        clock: Clock | None = None,
        publisher: NotificationPublisher | None = None,
        timer: Callable[[], float] = time.monotonic,
    ):
        self._session_factory = session_factory
        self._catalog = catalog
        self._clock = clock or SystemClock()
        self._publisher = publisher or LoggingNotificationPublisher()
        self._timer = timer
        register_immutability_listeners()

    # ------------------------------------------------------------------
    # Units and transitions
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
        timeout: float | None = None,
    ) -> TransitionResult:
        return self._run(
            "create_unit",
            external_ref,
            context,
            lambda k: k.engine.create_unit(
                external_ref,
                unit_type,
                quantity,
                context,
                order_reference=order_reference,
                estimated_delivery_at=estimated_delivery_at,
                schedule=schedule,
                auto_start=auto_start,
            ),
            timeout=timeout,
            creating=True,
        )

    def start_stage(
        self,
        identifier: UUID | str,
        stage_name: str,
        context: CommandContext,
        planned_window: PlannedWindow | None = None,
        timeout: float | None = None,
    ) -> TransitionResult:
        return self._run(
            "start_stage",
            identifier,
            context,
            lambda k: k.engine.start_stage(k.lock(identifier), stage_name, context, planned_window),
            timeout=timeout,
        )

    def record_transition(
        self,
        identifier: UUID | str,
        new_stage: str,
        new_status: UnitStatus | str,
        context: CommandContext,
        timeout: float | None = None,
    ) -> TransitionResult:
        return self._run(
            "record_transition",
            identifier,
            context,
            lambda k: k.engine.record_transition(k.lock(identifier), new_stage, new_status, context),
            timeout=timeout,
        )

    def freeze_for_review(
        self,
        identifier: UUID | str,
        context: CommandContext,
        timeout: float | None = None,
    ) -> FreezeResult:
        return self._run(
            "freeze_for_review",
            identifier,
            context,
            lambda k: k.engine.freeze_for_review(k.lock(identifier), context),
            timeout=timeout,
        )

    def bulk_transition(
        self,
        barcodes: Sequence[str],
        new_stage: str,
        new_status: UnitStatus | str,
        context: CommandContext,
    ) -> BulkTransitionResult:
        """
        Apply the same transition to many units, one transaction each.

        A failure on one barcode is recorded and does not affect the others.
        ``expected_version`` does not apply across units and is ignored.
        """
        if not barcodes:
            raise MissingFieldError("barcodes")
        per_unit = replace(context, expected_version=None)
        results: list[TransitionResult] = []
        errors: list[BulkTransitionError] = []
        for barcode in barcodes:
            try:
                results.append(self.record_transition(barcode, new_stage, new_status, per_unit))
            except LifecycleKernelError as exc:
                errors.append(BulkTransitionError(barcode=barcode, code=exc.code, message=str(exc)))
        logger.info(
            "bulk_transition_finished",
            extra={
                "stage_to": new_stage,
                "requested": len(barcodes),
                "succeeded": len(results),
                "failed": len(errors),
            },
        )
        return BulkTransitionResult(results=tuple(results), errors=tuple(errors))

    # ------------------------------------------------------------------
    # Material
    # ------------------------------------------------------------------

    def allocate_material(
        self,
        identifier: UUID | str,
        stage_name: str,
        item_code: str,
        quantity,
        unit_of_measure: str,
        context: CommandContext,
        timeout: float | None = None,
    ) -> AllocationResult:
        return self._run(
            "allocate_material",
            identifier,
            context,
            lambda k: k.materials.allocate(
                k.lock(identifier), stage_name, item_code, quantity, unit_of_measure, context
            ),
            timeout=timeout,
        )

    def record_consumption(
        self,
        identifier: UUID | str,
        stage_name: str,
        item_code: str,
        quantity,
        unit_of_measure: str,
        context: CommandContext,
        timeout: float | None = None,
    ) -> ConsumptionResult:
        return self._run(
            "record_consumption",
            identifier,
            context,
            lambda k: k.materials.record_consumption(
                k.lock(identifier), stage_name, item_code, quantity, unit_of_measure, context
            ),
            timeout=timeout,
        )

    # ------------------------------------------------------------------
    # Rework
    # ------------------------------------------------------------------

    def record_rework(
        self,
        identifier: UUID | str,
        stage_name: str,
        failure_reason: str,
        failed_quantity,
        cost,
        context: CommandContext,
        timeout: float | None = None,
    ) -> ReworkResult:
        return self._run(
            "record_rework",
            identifier,
            context,
            lambda k: k.rework.record_rework(
                k.lock(identifier), stage_name, failure_reason, failed_quantity, cost, context
            ),
            timeout=timeout,
        )

    def remove_rework(
        self,
        identifier: UUID | str,
        attempt_id: UUID,
        reason: str,
        context: CommandContext,
        timeout: float | None = None,
    ) -> None:
        return self._run(
            "remove_rework",
            identifier,
            context,
            lambda k: k.rework.administrative_remove(k.lock(identifier), attempt_id, context, reason),
            timeout=timeout,
        )

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    def add_checkpoint(
        self,
        identifier: UUID | str,
        stage_name: str,
        name: str,
        context: CommandContext,
        timeout: float | None = None,
    ) -> CheckpointSnapshot:
        return self._run(
            "add_checkpoint",
            identifier,
            context,
            lambda k: k.checkpoints.add_checkpoint(k.lock(identifier), stage_name, name, context),
            timeout=timeout,
        )

    def set_checkpoint_result(
        self,
        identifier: UUID | str,
        stage_name: str,
        name: str,
        result: bool | None,
        context: CommandContext,
        remarks: str | None = None,
        timeout: float | None = None,
    ) -> CheckpointSnapshot:
        return self._run(
            "set_checkpoint_result",
            identifier,
            context,
            lambda k: k.checkpoints.set_checkpoint_result(
                k.lock(identifier), stage_name, name, result, context, remarks
            ),
            timeout=timeout,
        )

    def remove_checkpoint(
        self,
        identifier: UUID | str,
        stage_name: str,
        name: str,
        context: CommandContext,
        timeout: float | None = None,
    ) -> None:
        return self._run(
            "remove_checkpoint",
            identifier,
            context,
            lambda k: k.checkpoints.remove_checkpoint(k.lock(identifier), stage_name, name, context),
            timeout=timeout,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_unit(self, identifier: UUID | str) -> UnitSnapshot:
        return self._read(lambda s: UnitSelector(s).get_unit(identifier))

    def stage_counts(self) -> dict[str, int]:
        return self._read(lambda s: self._lifecycle(s).stage_counts())

    def status_counts(self) -> dict[str, int]:
        return self._read(lambda s: self._lifecycle(s).status_counts())

    def recent_transitions(
        self,
        now: datetime | None = None,
        window_hours: int | None = None,
        limit: int = 10,
    ) -> tuple[TransitionRecord, ...]:
        at = now or self._clock.now_utc()
        return self._read(lambda s: self._lifecycle(s).recent_transitions(at, window_hours, limit))

    def overdue_units(self, now: datetime | None = None, limit: int = 10) -> tuple[OverdueUnit, ...]:
        at = now or self._clock.now_utc()
        return self._read(lambda s: self._lifecycle(s).overdue_units(at, limit))

    def units_in_stage(
        self,
        stage_name: str | None = None,
        status: UnitStatus | str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> UnitPage:
        return self._read(lambda s: self._lifecycle(s).units_in_stage(stage_name, status, page, limit))

    def dashboard(self, now: datetime | None = None) -> DashboardSummary:
        at = now or self._clock.now_utc()
        return self._read(lambda s: self._lifecycle(s).dashboard(at))

    # ------------------------------------------------------------------
    # Transaction plumbing
    # ------------------------------------------------------------------

    def _lifecycle(self, session: Session) -> LifecycleSelector:
        return LifecycleSelector(session, recent_window_hours=self._catalog.recent_window_hours)

    def _read(self, query: Callable[[Session], T]) -> T:
        session = self._session_factory()
        try:
            return query(session)
        finally:
            session.rollback()
            session.close()

    def _run(
        self,
        operation: str,
        identifier: UUID | str,
        context: CommandContext,
        work: Callable[[_Kernel], T],
        *,
        timeout: float | None = None,
        creating: bool = False,
    ) -> T:
        limit = self._catalog.command_timeout_seconds if timeout is None else timeout
        started = self._timer()
        unit_id = None if creating else parse_unit_identifier(identifier)
        bind_fields: dict[str, Any] = {
            "correlation_id": context.correlation_id or str(uuid4()),
            "operator_id": context.operator_id,
        }
        if unit_id is not None:
            bind_fields["unit_id"] = unit_id
        else:
            bind_fields["external_ref"] = identifier

        with LogContext.bind(**bind_fields):
            session = self._session_factory()
            try:
                self._apply_lock_timeout(session, limit)
                result = work(_Kernel(session, self._catalog, self._clock))
                elapsed = self._timer() - started
                if elapsed > limit:
                    logger.warning(
                        "command_deadline_exceeded",
                        extra={
                            "operation": operation,
                            "timeout_seconds": limit,
                            "elapsed_seconds": round(elapsed, 3),
                        },
                    )
                    raise OperationTimedOutError(operation, limit, elapsed)
                session.commit()
            except StaleDataError as exc:
                session.rollback()
                self._log_failure(operation, started, "CONCURRENT_MODIFICATION")
                raise ConcurrentModificationError(str(identifier)) from exc
            except IntegrityError as exc:
                session.rollback()
                if creating:
                    self._log_failure(operation, started, DuplicateUnitError.code)
                    raise DuplicateUnitError(str(identifier)) from exc
                self._log_failure(operation, started, ConcurrentModificationError.code)
                raise ConcurrentModificationError(str(identifier)) from exc
            except OperationalError as exc:
                session.rollback()
                if self._is_lock_failure(exc):
                    self._log_failure(operation, started, OperationTimedOutError.code)
                    raise OperationTimedOutError(
                        operation, limit, self._timer() - started
                    ) from exc
                self._log_failure(operation, started, "DATABASE_ERROR", exc_info=True)
                raise
            except LifecycleKernelError as exc:
                session.rollback()
                self._log_failure(operation, started, exc.code)
                raise
            except BaseException:
                session.rollback()
                self._log_failure(operation, started, "UNEXPECTED_ERROR", exc_info=True)
                raise
            finally:
                session.close()

            logger.info(
                "command_committed",
                extra={
                    "operation": operation,
                    "duration_ms": round((self._timer() - started) * 1000, 2),
                },
            )
            self._publish(getattr(result, "notifications", ()))
        return result

    def _apply_lock_timeout(self, session: Session, limit: float) -> None:
        """Bound row-lock waits by the command deadline on PostgreSQL."""
        if session.get_bind().dialect.name != "postgresql":
            return
        millis = max(1, int(limit * 1000))
        session.execute(text(f"SET LOCAL lock_timeout = '{millis}ms'"))

    @staticmethod
    def _is_lock_failure(exc: OperationalError) -> bool:
        orig = getattr(exc, "orig", None)
        if getattr(orig, "pgcode", None) == _PG_LOCK_NOT_AVAILABLE:
            return True
        message = str(orig if orig is not None else exc).lower()
        return "database is locked" in message or "lock timeout" in message

    def _log_failure(self, operation: str, started: float, code: str, exc_info: bool = False) -> None:
        logger.warning(
            "command_rolled_back",
            exc_info=exc_info,
            extra={
                "operation": operation,
                "error_code": code,
                "duration_ms": round((self._timer() - started) * 1000, 2),
            },
        )

    def _publish(self, notifications) -> None:
        for notification in notifications or ():
            try:
                self._publisher.publish(notification)
            except Exception:
                logger.error(
                    "notification_publish_failed",
                    exc_info=True,
                    extra={
                        "event_type": notification.event_type.value,
                        "notified_unit_id": str(notification.unit_id),
                    },
                )
