"""
MaterialLedger -- allocation vs. consumption per stage.

Responsibility:
    Reserves material for a stage, appends consumption entries, and
    reconciles the two.  ``remaining = allocated - consumed`` exactly, in
    Decimal.

Architecture position:
    Kernel > Services -- flush-only.

Invariants enforced:
    - Quantities are positive.
    - Consumption entries are append-only.
    - Over-consumption is checked on the stage totals across all items.
      Under the ``warn`` policy the entry is written and an
      OverConsumptionWarning is returned; under ``reject``
      OverConsumptionError is raised and nothing is written.
"""

from collections import defaultdict
from decimal import Decimal

from lifecycle_kernel.domain.clock import Clock
from lifecycle_kernel.domain.dtos import AllocationResult, CommandContext, ConsumptionResult
from lifecycle_kernel.domain.material import MaterialSummary, check_over_consumption
from lifecycle_kernel.domain.notifications import LifecycleNotification, NotificationType
from lifecycle_kernel.domain.values import OverConsumptionPolicy
from lifecycle_kernel.exceptions import (
    InvalidStageStateError,
    MissingFieldError,
    OverConsumptionError,
    TerminalUnitError,
)
from lifecycle_kernel.logging_config import get_logger
from lifecycle_kernel.models.material import MaterialAllocation, MaterialConsumption
from lifecycle_kernel.models.stage_instance import StageInstance
from lifecycle_kernel.models.unit_of_work import UnitOfWork
from lifecycle_kernel.services.base import BaseService

logger = get_logger("services.material_ledger")


class MaterialLedger(BaseService[MaterialConsumption]):
    """Material reservation and usage for stage instances."""

    def __init__(
        self,
        session,
        clock: Clock | None = None,
        policy: OverConsumptionPolicy | str = OverConsumptionPolicy.WARN,
    ):
        super().__init__(session, clock)
        self._policy = OverConsumptionPolicy(policy)

    def allocate(
        self,
        unit: UnitOfWork,
        stage_name: str,
        item_code: str,
        quantity,
        unit_of_measure: str,
        context: CommandContext,
    ) -> AllocationResult:
        """Reserve ``quantity`` of ``item_code`` for a stage that has not completed."""
        stage = self._writable_stage(unit, stage_name, context, allow_pending=True)
        item_code = self._require_text("item_code", item_code)
        unit_of_measure = self._require_text("unit_of_measure", unit_of_measure)
        quantity = self._quantity("quantity", quantity)
        self._require_positive("quantity", quantity)

        allocation = MaterialAllocation(
            item_code=item_code,
            quantity=quantity,
            unit_of_measure=unit_of_measure,
            allocated_at=self._now(context),
            created_by_id=context.operator_id,
        )
        stage.allocations.append(allocation)
        self._touch(unit, context)
        self.session.flush()

        summary = self.summarize(stage)
        logger.info(
            "material_allocated",
            extra={
                "unit_id": str(unit.id),
                "stage_name": stage_name,
                "item_code": item_code,
                "quantity": quantity,
                "allocated_total": summary.allocated,
            },
        )
        return AllocationResult(
            allocation_id=allocation.id,
            stage_name=stage_name,
            item_code=item_code,
            quantity=quantity,
            summary=summary,
        )

    def record_consumption(
        self,
        unit: UnitOfWork,
        stage_name: str,
        item_code: str,
        quantity,
        unit_of_measure: str,
        context: CommandContext,
    ) -> ConsumptionResult:
        """
        Append a consumption entry for a started stage.

        Raises:
            OverConsumptionError: Only under the reject policy.
            InvalidStageStateError: Stage is pending or completed.
        """
        stage = self._writable_stage(unit, stage_name, context, allow_pending=False)
        item_code = self._require_text("item_code", item_code)
        unit_of_measure = self._require_text("unit_of_measure", unit_of_measure)
        quantity = self._quantity("quantity", quantity)
        self._require_positive("quantity", quantity)

        before = self.summarize(stage)
        warning = check_over_consumption(stage_name, item_code, before.with_consumption(quantity))

        if warning is not None and self._policy == OverConsumptionPolicy.REJECT:
            logger.warning(
                "material_over_consumption_rejected",
                extra={
                    "unit_id": str(unit.id),
                    "stage_name": stage_name,
                    "item_code": item_code,
                    "allocated": before.allocated,
                    "consumed": before.consumed,
                    "requested": quantity,
                },
            )
            raise OverConsumptionError(
                stage_name,
                allocated=before.allocated,
                consumed=before.consumed,
                requested=quantity,
            )

        entry = MaterialConsumption(
            item_code=item_code,
            quantity=quantity,
            unit_of_measure=unit_of_measure,
            consumed_at=self._now(context),
            operator_id=context.operator_id,
            notes=context.notes,
            created_by_id=context.operator_id,
        )
        stage.consumptions.append(entry)
        self._touch(unit, context)
        self.session.flush()

        summary = self.summarize(stage)
        notifications: tuple[LifecycleNotification, ...] = ()
        if warning is not None:
            logger.warning(
                "material_over_consumption",
                extra={
                    "unit_id": str(unit.id),
                    "stage_name": stage_name,
                    "item_code": item_code,
                    "allocated": warning.allocated,
                    "consumed": warning.consumed,
                    "excess": warning.excess,
                },
            )
            notifications = (
                LifecycleNotification(
                    unit_id=unit.id,
                    event_type=NotificationType.MATERIAL_OVER_CONSUMPTION,
                    payload={
                        "external_ref": unit.external_ref,
                        "stage": stage_name,
                        "item_code": item_code,
                        "allocated": str(warning.allocated),
                        "consumed": str(warning.consumed),
                        "by_item": {
                            code: {"allocated": str(s.allocated), "consumed": str(s.consumed)}
                            for code, s in self.summarize_by_item(stage).items()
                        },
                    },
                ),
            )
        else:
            logger.info(
                "material_consumed",
                extra={
                    "unit_id": str(unit.id),
                    "stage_name": stage_name,
                    "item_code": item_code,
                    "quantity": quantity,
                    "remaining": summary.remaining,
                },
            )
        return ConsumptionResult(
            consumption_id=entry.id,
            stage_name=stage_name,
            item_code=item_code,
            quantity=quantity,
            summary=summary,
            warning=warning,
            notifications=notifications,
        )

    def summarize(self, stage: StageInstance) -> MaterialSummary:
        """Stage totals across all items."""
        return MaterialSummary.from_quantities(
            (a.quantity for a in stage.allocations),
            (c.quantity for c in stage.consumptions),
        )

    def summarize_by_item(self, stage: StageInstance) -> dict[str, MaterialSummary]:
        allocated: dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
        consumed: dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
        for allocation in stage.allocations:
            allocated[allocation.item_code] += allocation.quantity
        for consumption in stage.consumptions:
            consumed[consumption.item_code] += consumption.quantity
        return {
            item: MaterialSummary(allocated=allocated[item], consumed=consumed[item])
            for item in sorted(set(allocated) | set(consumed))
        }

    def _writable_stage(
        self,
        unit: UnitOfWork,
        stage_name: str,
        context: CommandContext,
        *,
        allow_pending: bool,
    ) -> StageInstance:
        self._check_expected_version(unit, context)
        if unit.is_terminal:
            raise TerminalUnitError(str(unit.id), unit.status)
        stage = self._stage(unit, stage_name)
        if stage.is_completed or (not allow_pending and stage.is_pending):
            action = "allocate material to" if allow_pending else "record consumption on"
            raise InvalidStageStateError(str(unit.id), stage_name, stage.status, action)
        return stage

    @staticmethod
    def _require_text(field: str, value: str) -> str:
        if value is None or not str(value).strip():
            raise MissingFieldError(field)
        return str(value).strip()
