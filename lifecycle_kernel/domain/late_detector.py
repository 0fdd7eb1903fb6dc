"""
Late detector.

A stage is late iff the evaluation time is strictly after its planned end.
Equal timestamps are on time; a stage without a planned end is never late.
Pure functions only -- the caller supplies "now" from an injected Clock.
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol


class PlannedStage(Protocol):
    planned_end: datetime | None


def is_late(stage: PlannedStage, at: datetime) -> bool:
    planned_end = stage.planned_end
    if planned_end is None:
        return False
    return at > planned_end


def minutes_over_plan(stage: PlannedStage, at: datetime) -> int:
    """Whole minutes past the planned end, rounded half-up; 0 when on time."""
    if not is_late(stage, at):
        return 0
    seconds = Decimal(str((at - stage.planned_end).total_seconds()))
    return int((seconds / 60).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def late_reason(stage: PlannedStage, at: datetime) -> str | None:
    """Default lateness explanation, or None when the stage is on time."""
    if not is_late(stage, at):
        return None
    return (
        f"Stage exceeded planned end time by {minutes_over_plan(stage, at)} minutes"
    )
