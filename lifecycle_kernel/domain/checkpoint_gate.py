"""
Quality checkpoint gate.

Pure decision function: given a stage's checkpoint results, may the stage
complete?  Zero checkpoints always pass.  Otherwise every result must be
exactly True; an unchecked (None) or failed (False) checkpoint blocks.

The gate is evaluated fresh on every completing transition and never cached.
"""

from dataclasses import dataclass
from typing import Iterable, Protocol

UNCHECKED = "unchecked"
FAILED = "failed"


class CheckpointLike(Protocol):
    name: str
    result: bool | None


@dataclass(frozen=True)
class CheckpointState:
    """Plain checkpoint value accepted by the gate."""

    name: str
    result: bool | None = None


@dataclass(frozen=True)
class GateDecision:
    """Outcome of a gate evaluation."""

    passed: bool
    blocking: tuple[tuple[str, str], ...] = ()
    evaluated: int = 0

    @property
    def blocking_names(self) -> list[str]:
        return [name for name, _ in self.blocking]


def evaluate(checkpoints: Iterable[CheckpointLike]) -> GateDecision:
    """Evaluate checkpoint results in name order."""
    records = sorted(checkpoints, key=lambda c: c.name)
    blocking: list[tuple[str, str]] = []
    for record in records:
        if record.result is True:
            continue
        blocking.append((record.name, UNCHECKED if record.result is None else FAILED))
    return GateDecision(
        passed=not blocking,
        blocking=tuple(blocking),
        evaluated=len(records),
    )
