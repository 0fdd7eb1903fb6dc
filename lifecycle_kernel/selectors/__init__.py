"""Selectors for the lifecycle kernel (read side)."""

from lifecycle_kernel.selectors.lifecycle_selector import LifecycleSelector
from lifecycle_kernel.selectors.unit_selector import UnitSelector, progress_percentage

__all__ = [
    "LifecycleSelector",
    "UnitSelector",
    "progress_percentage",
]
