"""
Material reconciliation arithmetic.

remaining = allocated - consumed, exactly, in Decimal.  Over-consumption is a
warning value under the default policy, not an exception.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable


@dataclass(frozen=True)
class MaterialSummary:
    """Allocated vs. consumed totals for one stage (or one item on a stage)."""

    allocated: Decimal = Decimal("0")
    consumed: Decimal = Decimal("0")

    @property
    def remaining(self) -> Decimal:
        return self.allocated - self.consumed

    @property
    def is_over_consumed(self) -> bool:
        return self.consumed > self.allocated

    @classmethod
    def from_quantities(
        cls,
        allocations: Iterable[Decimal],
        consumptions: Iterable[Decimal],
    ) -> "MaterialSummary":
        return cls(
            allocated=sum(allocations, Decimal("0")),
            consumed=sum(consumptions, Decimal("0")),
        )

    def with_consumption(self, quantity: Decimal) -> "MaterialSummary":
        return MaterialSummary(allocated=self.allocated, consumed=self.consumed + quantity)


@dataclass(frozen=True)
class OverConsumptionWarning:
    """
    Stage consumption has passed the stage allocation; the write was kept.

    ``allocated`` and ``consumed`` are stage totals.  ``item_code`` names the
    entry being recorded when the check fired.
    """

    stage_name: str
    item_code: str
    allocated: Decimal
    consumed: Decimal

    @property
    def excess(self) -> Decimal:
        return self.consumed - self.allocated


def check_over_consumption(
    stage_name: str,
    item_code: str,
    summary: MaterialSummary,
) -> OverConsumptionWarning | None:
    if not summary.is_over_consumed:
        return None
    return OverConsumptionWarning(
        stage_name=stage_name,
        item_code=item_code,
        allocated=summary.allocated,
        consumed=summary.consumed,
    )
