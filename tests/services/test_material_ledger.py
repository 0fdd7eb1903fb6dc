"""
MaterialLedger tests.

Tests cover:
- Allocation to pending and open stages
- Consumption and exact remaining arithmetic
- Over-consumption under the warn and reject policies
- Stage state and input validation
"""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from lifecycle_kernel.domain.material import MaterialSummary
from lifecycle_kernel.domain.notifications import NotificationType
from lifecycle_kernel.exceptions import (
    ConcurrentModificationError,
    InvalidQuantityError,
    InvalidStageStateError,
    MissingFieldError,
    OverConsumptionError,
    StageNotFoundError,
    TerminalUnitError,
)
from lifecycle_kernel.models.material import MaterialConsumption
from lifecycle_kernel.services.material_ledger import MaterialLedger


@pytest.fixture
def rejecting_ledger(session, deterministic_clock):
    return MaterialLedger(session, deterministic_clock, policy="reject")


def consumption_count(session):
    return session.execute(select(func.count(MaterialConsumption.id))).scalar_one()


class TestAllocate:

    def test_allocate_to_open_stage(self, material_ledger, create_unit, ctx):
        unit = create_unit()
        result = material_ledger.allocate(unit, "cutting", "FAB-001", Decimal("25.5"), "m", ctx)

        assert result.stage_name == "cutting"
        assert result.quantity == Decimal("25.5")
        assert result.summary == MaterialSummary(allocated=Decimal("25.5"))

    def test_allocate_ahead_to_pending_stage(self, material_ledger, create_unit, ctx):
        unit = create_unit()
        result = material_ledger.allocate(unit, "stitching", "THR-RED", 3, "spool", ctx)
        assert result.summary.allocated == Decimal("3")

    def test_allocations_accumulate(self, material_ledger, create_unit, ctx):
        unit = create_unit()
        material_ledger.allocate(unit, "cutting", "FAB-001", Decimal("10"), "m", ctx)
        result = material_ledger.allocate(unit, "cutting", "FAB-001", Decimal("2.5"), "m", ctx)
        assert result.summary.allocated == Decimal("12.5")

    def test_allocate_to_completed_stage_rejected(self, lifecycle_engine, material_ledger, create_unit, ctx):
        unit = create_unit()
        lifecycle_engine.record_transition(unit, "stitching", "active", ctx)
        with pytest.raises(InvalidStageStateError):
            material_ledger.allocate(unit, "cutting", "FAB-001", 1, "m", ctx)

    def test_allocate_to_unknown_stage(self, material_ledger, create_unit, ctx):
        unit = create_unit()
        with pytest.raises(StageNotFoundError):
            material_ledger.allocate(unit, "dyeing", "FAB-001", 1, "m", ctx)

    @pytest.mark.parametrize("quantity", [0, Decimal("-1"), "lots"])
    def test_invalid_quantity(self, material_ledger, create_unit, ctx, quantity):
        unit = create_unit()
        with pytest.raises(InvalidQuantityError):
            material_ledger.allocate(unit, "cutting", "FAB-001", quantity, "m", ctx)

    @pytest.mark.parametrize("item_code, uom", [("", "m"), ("FAB-001", "  ")])
    def test_blank_codes(self, material_ledger, create_unit, ctx, item_code, uom):
        unit = create_unit()
        with pytest.raises(MissingFieldError):
            material_ledger.allocate(unit, "cutting", item_code, 1, uom, ctx)


class TestConsume:

    def test_consumption_reduces_remaining(self, material_ledger, create_unit, ctx):
        unit = create_unit()
        material_ledger.allocate(unit, "cutting", "FAB-001", Decimal("10"), "m", ctx)

        first = material_ledger.record_consumption(unit, "cutting", "FAB-001", Decimal("3.25"), "m", ctx)
        second = material_ledger.record_consumption(unit, "cutting", "FAB-001", Decimal("1.5"), "m", ctx)

        assert first.summary.remaining == Decimal("6.75")
        assert second.summary.consumed == Decimal("4.75")
        assert second.summary.remaining == Decimal("5.25")
        assert second.warning is None
        assert second.notifications == ()

    def test_consumption_on_pending_stage_rejected(self, material_ledger, create_unit, ctx):
        unit = create_unit()
        material_ledger.allocate(unit, "stitching", "THR-RED", 3, "spool", ctx)
        with pytest.raises(InvalidStageStateError):
            material_ledger.record_consumption(unit, "stitching", "THR-RED", 1, "spool", ctx)

    def test_consumption_on_terminal_unit_rejected(self, lifecycle_engine, material_ledger, create_unit, ctx):
        unit = create_unit()
        lifecycle_engine.record_transition(unit, "rejected", "cancelled", ctx)
        with pytest.raises(TerminalUnitError):
            material_ledger.record_consumption(unit, "cutting", "FAB-001", 1, "m", ctx)

    def test_stale_version_rejected(self, material_ledger, create_unit, make_context):
        unit = create_unit()
        with pytest.raises(ConcurrentModificationError):
            material_ledger.record_consumption(
                unit, "cutting", "FAB-001", 1, "m", make_context(expected_version=99)
            )

    def test_consumption_bumps_unit_version(self, material_ledger, create_unit, ctx):
        unit = create_unit()
        before = unit.version
        material_ledger.allocate(unit, "cutting", "FAB-001", 5, "m", ctx)
        material_ledger.record_consumption(unit, "cutting", "FAB-001", 1, "m", ctx)
        assert unit.version == before + 2

    def test_summarize_by_item(self, material_ledger, create_unit, ctx):
        unit = create_unit()
        material_ledger.allocate(unit, "cutting", "FAB-001", 10, "m", ctx)
        material_ledger.allocate(unit, "cutting", "BTN-004", 40, "pcs", ctx)
        material_ledger.record_consumption(unit, "cutting", "BTN-004", 38, "pcs", ctx)

        by_item = material_ledger.summarize_by_item(unit.stage_named("cutting"))
        assert list(by_item) == ["BTN-004", "FAB-001"]
        assert by_item["BTN-004"].remaining == Decimal("2")
        assert by_item["FAB-001"].consumed == Decimal("0")

    def test_summarize_totals_across_items(self, material_ledger, create_unit, ctx):
        unit = create_unit()
        material_ledger.allocate(unit, "cutting", "FAB-001", Decimal("10"), "m", ctx)
        material_ledger.allocate(unit, "cutting", "BTN-004", Decimal("40"), "pcs", ctx)
        material_ledger.record_consumption(unit, "cutting", "BTN-004", Decimal("38"), "pcs", ctx)

        summary = material_ledger.summarize(unit.stage_named("cutting"))
        assert summary.allocated == Decimal("50")
        assert summary.consumed == Decimal("38")
        assert summary.remaining == Decimal("12")


class TestOverConsumption:

    def test_warn_policy_keeps_the_entry(self, session, material_ledger, create_unit, ctx, captured_logs):
        unit = create_unit()
        material_ledger.allocate(unit, "cutting", "FAB-001", Decimal("5"), "m", ctx)

        result = material_ledger.record_consumption(unit, "cutting", "FAB-001", Decimal("7"), "m", ctx)

        assert result.warning is not None
        assert result.warning.excess == Decimal("2")
        assert result.summary.remaining == Decimal("-2")
        assert consumption_count(session) == 1
        assert [n.event_type for n in result.notifications] == [
            NotificationType.MATERIAL_OVER_CONSUMPTION
        ]
        warnings = [r for r in captured_logs() if r["message"] == "material_over_consumption"]
        assert len(warnings) == 1
        assert warnings[0]["level"] == "WARNING"

    def test_over_consumption_is_checked_on_stage_totals(self, material_ledger, create_unit, ctx):
        """An unallocated item is fine while the stage stays within its allocation."""
        unit = create_unit()
        material_ledger.allocate(unit, "cutting", "FAB-001", Decimal("10"), "m", ctx)

        result = material_ledger.record_consumption(unit, "cutting", "THR-001", Decimal("1"), "spool", ctx)

        assert result.warning is None
        assert result.notifications == ()
        assert result.summary == MaterialSummary(allocated=Decimal("10"), consumed=Decimal("1"))

    def test_stage_overrun_warning_carries_item_detail(self, material_ledger, create_unit, ctx):
        unit = create_unit()
        material_ledger.allocate(unit, "cutting", "FAB-001", Decimal("3"), "m", ctx)
        material_ledger.record_consumption(unit, "cutting", "FAB-001", Decimal("2"), "m", ctx)

        result = material_ledger.record_consumption(unit, "cutting", "THR-001", Decimal("2"), "spool", ctx)

        assert result.warning.item_code == "THR-001"
        assert result.warning.allocated == Decimal("3")
        assert result.warning.consumed == Decimal("4")
        assert result.summary.is_over_consumed is True
        payload = result.notifications[0].payload
        assert payload["by_item"]["THR-001"] == {"allocated": "0", "consumed": "2"}
        assert payload["by_item"]["FAB-001"] == {"allocated": "3", "consumed": "2"}

    def test_reject_policy_accepts_unallocated_item_within_stage_total(
        self, session, rejecting_ledger, create_unit, ctx
    ):
        unit = create_unit()
        rejecting_ledger.allocate(unit, "cutting", "FAB-001", Decimal("10"), "m", ctx)

        rejecting_ledger.record_consumption(unit, "cutting", "THR-001", Decimal("1"), "spool", ctx)

        assert consumption_count(session) == 1

    def test_reject_policy_writes_nothing(self, session, rejecting_ledger, create_unit, ctx):
        unit = create_unit()
        rejecting_ledger.allocate(unit, "cutting", "FAB-001", Decimal("5"), "m", ctx)
        rejecting_ledger.record_consumption(unit, "cutting", "FAB-001", Decimal("4"), "m", ctx)

        with pytest.raises(OverConsumptionError) as exc_info:
            rejecting_ledger.record_consumption(unit, "cutting", "FAB-001", Decimal("1.5"), "m", ctx)

        assert exc_info.value.allocated == Decimal("5")
        assert exc_info.value.consumed == Decimal("4")
        assert exc_info.value.requested == Decimal("1.5")
        assert consumption_count(session) == 1

    def test_reject_policy_allows_exact_allocation(self, rejecting_ledger, create_unit, ctx):
        unit = create_unit()
        rejecting_ledger.allocate(unit, "cutting", "FAB-001", Decimal("5"), "m", ctx)
        result = rejecting_ledger.record_consumption(unit, "cutting", "FAB-001", Decimal("5"), "m", ctx)
        assert result.summary.remaining == Decimal("0")
