"""
Late detector tests.

Strictly-after comparison against the planned end, whole-minute overage
and the default late reason text.
"""

from datetime import UTC, datetime, timedelta

from lifecycle_kernel.domain import late_detector
from lifecycle_kernel.domain.values import PlannedWindow

PLANNED_END = datetime(2024, 1, 1, 14, 0, 0, tzinfo=UTC)


def window(end=PLANNED_END):
    return PlannedWindow(start=None, end=end)


class TestIsLate:

    def test_no_planned_end_is_never_late(self):
        far_future = PLANNED_END + timedelta(days=365)
        assert late_detector.is_late(window(None), far_future) is False

    def test_exactly_on_planned_end_is_on_time(self):
        assert late_detector.is_late(window(), PLANNED_END) is False

    def test_one_second_after_is_late(self):
        assert late_detector.is_late(window(), PLANNED_END + timedelta(seconds=1)) is True

    def test_before_planned_end_is_on_time(self):
        assert late_detector.is_late(window(), PLANNED_END - timedelta(hours=1)) is False


class TestLateReason:

    def test_on_time_has_no_reason(self):
        assert late_detector.late_reason(window(), PLANNED_END) is None
        assert late_detector.minutes_over_plan(window(), PLANNED_END) == 0

    def test_reason_names_minutes_over(self):
        at = PLANNED_END + timedelta(minutes=45)
        assert late_detector.minutes_over_plan(window(), at) == 45
        assert late_detector.late_reason(window(), at) == (
            "Stage exceeded planned end time by 45 minutes"
        )

    def test_minutes_round_half_up(self):
        assert late_detector.minutes_over_plan(window(), PLANNED_END + timedelta(seconds=90)) == 2
        assert late_detector.minutes_over_plan(window(), PLANNED_END + timedelta(seconds=89)) == 1

    def test_sub_minute_lateness_reports_zero_minutes(self):
        at = PLANNED_END + timedelta(seconds=20)
        assert late_detector.is_late(window(), at) is True
        assert "by 0 minutes" in late_detector.late_reason(window(), at)
