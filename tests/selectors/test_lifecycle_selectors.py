"""
Read-side tests for UnitSelector and LifecycleSelector.

Covers unit snapshots by id and barcode, stage/status counts, the recent
transition window, overdue units, paginated listings and the dashboard.
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from lifecycle_kernel.domain.values import UnitStatus
from lifecycle_kernel.exceptions import InvalidQuantityError, UnitNotFoundError
from lifecycle_kernel.selectors.lifecycle_selector import LifecycleSelector
from lifecycle_kernel.selectors.unit_selector import progress_percentage


def complete(lifecycle_engine, unit, ctx):
    for stage in ("stitching", "packing"):
        lifecycle_engine.record_transition(unit, stage, "active", ctx)
    lifecycle_engine.record_transition(unit, "delivered", "completed", ctx)


# =========================================================================
# UnitSelector
# =========================================================================


class TestUnitSelector:

    def test_snapshot_by_barcode_and_id(self, unit_selector, create_unit):
        unit = create_unit("BC-001", order_reference="PO-1")
        by_ref = unit_selector.get_unit("BC-001")
        by_id = unit_selector.get_unit(unit.id)
        by_id_text = unit_selector.get_unit(str(unit.id))

        assert by_ref == by_id == by_id_text
        assert by_ref.order_reference == "PO-1"
        assert [s.stage_name for s in by_ref.stages] == ["cutting", "stitching", "packing"]

    def test_uuid_shaped_barcode(self, unit_selector, create_unit):
        barcode = str(uuid4())
        create_unit(barcode)
        assert unit_selector.get_unit(barcode).external_ref == barcode

    def test_unknown_unit(self, unit_selector, db_engine):
        with pytest.raises(UnitNotFoundError):
            unit_selector.get_unit("BC-404")
        assert unit_selector.find(uuid4()) is None

    def test_snapshot_includes_ledgers(self, unit_selector, material_ledger, rework_ledger, checkpoint_service, create_unit, ctx):
        unit = create_unit()
        material_ledger.allocate(unit, "cutting", "FAB-001", Decimal("8"), "m", ctx)
        material_ledger.record_consumption(unit, "cutting", "FAB-001", Decimal("3"), "m", ctx)
        rework_ledger.record_rework(unit, "cutting", "Frayed edge", 1, Decimal("2"), ctx)
        checkpoint_service.add_checkpoint(unit, "cutting", "pattern_alignment", ctx)

        snapshot = unit_selector.get_unit("BC-001")
        cutting = snapshot.stage("cutting")

        assert cutting.materials.allocated == Decimal("8")
        assert cutting.materials.remaining == Decimal("5")
        assert [(r.iteration, r.failure_reason) for r in cutting.rework] == [(1, "Frayed edge")]
        assert [c.name for c in cutting.checkpoints] == ["pattern_alignment"]
        assert snapshot.accumulated_cost == Decimal("2")
        assert snapshot.version == unit.version
        assert snapshot.stage("ironing") is None

    def test_history_in_sequence_order(self, unit_selector, lifecycle_engine, create_unit, ctx):
        unit = create_unit()
        complete(lifecycle_engine, unit, ctx)
        history = unit_selector.get_unit("BC-001").history
        assert [h.sequence for h in history] == [1, 2, 3, 4]
        assert history[-1].stage_to == "delivered"
        assert history[-1].status_to == UnitStatus.COMPLETED.value
        assert all(h.external_ref == "BC-001" for h in history)

    def test_progress_percentage(self, lifecycle_engine, create_unit, ctx):
        unit = create_unit()
        assert progress_percentage(unit) == 0
        lifecycle_engine.record_transition(unit, "stitching", "active", ctx)
        assert progress_percentage(unit) == 33
        lifecycle_engine.record_transition(unit, "packing", "active", ctx)
        assert progress_percentage(unit) == 67
        lifecycle_engine.record_transition(unit, "delivered", "completed", ctx)
        assert progress_percentage(unit) == 100


# =========================================================================
# LifecycleSelector
# =========================================================================


class TestCounts:

    def test_empty_database(self, lifecycle_selector, t0):
        assert lifecycle_selector.stage_counts() == {}
        assert lifecycle_selector.status_counts() == {}
        assert lifecycle_selector.recent_transitions(t0) == ()
        assert lifecycle_selector.overdue_units(t0) == ()
        dashboard = lifecycle_selector.dashboard(t0)
        assert dashboard.total_units == 0

    def test_stage_and_status_counts(self, lifecycle_selector, lifecycle_engine, create_unit, ctx):
        create_unit("BC-001")
        second = create_unit("BC-002")
        third = create_unit("BC-003")
        lifecycle_engine.record_transition(second, "stitching", "active", ctx)
        complete(lifecycle_engine, third, ctx)

        assert lifecycle_selector.stage_counts() == {
            "cutting": 1,
            "delivered": 1,
            "stitching": 1,
        }
        assert lifecycle_selector.status_counts() == {"active": 2, "completed": 1}

    def test_late_and_open_stage_counts(self, lifecycle_selector, lifecycle_engine, create_unit, ctx, deterministic_clock):
        first = create_unit("BC-001")
        create_unit("BC-002")
        deterministic_clock.advance(3 * 3600)
        lifecycle_engine.record_transition(first, "stitching", "active", ctx)

        assert lifecycle_selector.late_stage_count() == 1
        assert lifecycle_selector.open_stage_count() == 2


class TestRecentTransitions:

    def test_window_and_ordering(self, lifecycle_selector, lifecycle_engine, create_unit, ctx, deterministic_clock, t0):
        first = create_unit("BC-001")
        create_unit("BC-002")
        deterministic_clock.advance(2 * 3600)
        lifecycle_engine.record_transition(first, "stitching", "active", ctx)
        deterministic_clock.advance(3600)
        lifecycle_engine.record_transition(first, "packing", "active", ctx)

        now = t0 + timedelta(hours=3)
        recent = lifecycle_selector.recent_transitions(now, window_hours=2)
        assert [(r.stage_to, r.external_ref) for r in recent] == [
            ("packing", "BC-001"),
            ("stitching", "BC-001"),
        ]

        everything = lifecycle_selector.recent_transitions(now)
        assert len(everything) == 4
        assert everything[0].occurred_at >= everything[-1].occurred_at

    def test_limit(self, lifecycle_selector, create_unit, t0):
        for i in range(5):
            create_unit(f"BC-{i:03d}")
        assert len(lifecycle_selector.recent_transitions(t0, limit=3)) == 3

    def test_future_events_are_excluded(self, lifecycle_selector, create_unit, t0):
        create_unit("BC-001")
        assert lifecycle_selector.recent_transitions(t0 - timedelta(minutes=1)) == ()

    def test_configured_window(self, session, create_unit, t0):
        create_unit("BC-001")
        narrow = LifecycleSelector(session, recent_window_hours=1)
        assert narrow.recent_transitions(t0 + timedelta(hours=2)) == ()
        assert len(narrow.recent_transitions(t0 + timedelta(minutes=30))) == 1


class TestOverdueUnits:

    def test_overdue_ordering_and_hours(self, lifecycle_selector, create_unit, t0):
        create_unit("BC-001", estimated_delivery_at=t0 + timedelta(hours=2))
        create_unit("BC-002", estimated_delivery_at=t0 + timedelta(hours=1))
        create_unit("BC-003", estimated_delivery_at=t0 + timedelta(days=2))
        create_unit("BC-004")

        overdue = lifecycle_selector.overdue_units(t0 + timedelta(hours=4))

        assert [u.external_ref for u in overdue] == ["BC-002", "BC-001"]
        assert overdue[0].overdue_hours == Decimal("3.00")
        assert overdue[1].current_stage == "cutting"

    def test_overdue_disappears_after_completion(self, lifecycle_selector, lifecycle_engine, create_unit, ctx, t0):
        unit = create_unit("BC-001", estimated_delivery_at=t0 + timedelta(hours=1))
        now = t0 + timedelta(hours=3)
        assert [u.external_ref for u in lifecycle_selector.overdue_units(now)] == ["BC-001"]

        complete(lifecycle_engine, unit, ctx)

        assert lifecycle_selector.overdue_units(now) == ()

    def test_cancelled_units_are_not_overdue(self, lifecycle_selector, lifecycle_engine, create_unit, ctx, t0):
        unit = create_unit("BC-001", estimated_delivery_at=t0 + timedelta(hours=1))
        lifecycle_engine.record_transition(unit, "rejected", "cancelled", ctx)
        assert lifecycle_selector.overdue_units(t0 + timedelta(hours=3)) == ()


class TestUnitsInStage:

    def test_pagination(self, lifecycle_selector, create_unit):
        for i in range(5):
            create_unit(f"BC-{i:03d}")

        page = lifecycle_selector.units_in_stage("cutting", page=3, limit=2)

        assert page.total == 5
        assert page.pages == 3
        assert [u.external_ref for u in page.items] == ["BC-004"]

    def test_filters(self, lifecycle_selector, lifecycle_engine, create_unit, ctx):
        create_unit("BC-001")
        paused = create_unit("BC-002")
        lifecycle_engine.record_transition(paused, "cutting", "on_hold", ctx)

        on_hold = lifecycle_selector.units_in_stage(status=UnitStatus.ON_HOLD)
        assert [u.external_ref for u in on_hold.items] == ["BC-002"]
        everything = lifecycle_selector.units_in_stage()
        assert everything.total == 2
        assert lifecycle_selector.units_in_stage("packing").items == ()

    @pytest.mark.parametrize("page, limit", [(0, 20), (1, 0)])
    def test_invalid_paging(self, lifecycle_selector, db_engine, page, limit):
        with pytest.raises(InvalidQuantityError):
            lifecycle_selector.units_in_stage(page=page, limit=limit)


class TestDashboard:

    def test_dashboard_roll_up(self, lifecycle_selector, lifecycle_engine, create_unit, ctx, t0):
        create_unit("BC-001", estimated_delivery_at=t0 + timedelta(hours=1))
        paused = create_unit("BC-002")
        done = create_unit("BC-003", estimated_delivery_at=t0 + timedelta(hours=1))
        lifecycle_engine.record_transition(paused, "cutting", "on_hold", ctx)
        complete(lifecycle_engine, done, ctx)

        dashboard = lifecycle_selector.dashboard(t0 + timedelta(hours=2))

        assert dashboard.total_units == 3
        assert dashboard.active_units == 1
        assert dashboard.on_hold_units == 1
        assert dashboard.completed_units == 1
        assert dashboard.stage_counts == {"cutting": 2, "delivered": 1}
        assert [u.external_ref for u in dashboard.overdue_units] == ["BC-001"]
        assert len(dashboard.recent_transitions) == 7
        assert dashboard.open_stages == 2
        assert dashboard.late_stages == 0
