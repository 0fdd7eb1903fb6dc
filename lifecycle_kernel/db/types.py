"""
Module: lifecycle_kernel.db.types
Responsibility: Annotated type aliases and rounding helpers for quantity,
    cost, and duration columns.  Every model and service uses these so that
    precision is identical system-wide.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats for quantities or costs.  Inputs are coerced through
      to_decimal(), which goes via str() so binary float noise never lands
      in the ledger.
    - Durations are reported in hours quantized to 0.01.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated

from sqlalchemy import Numeric, String

# Material and piece quantities
Quantity = Annotated[Decimal, Numeric(38, 9)]

# Cost amounts
Money = Annotated[Decimal, Numeric(38, 9)]

# Hours spent in a stage
Hours = Annotated[Decimal, Numeric(18, 2)]


# Stage, checkpoint, and item identifiers
ShortCode = Annotated[str, String(100)]

# Free-form operator notes and reasons
LongText = Annotated[str, String(4000)]

HOURS_QUANTUM = Decimal("0.01")
DEFAULT_ROUNDING = ROUND_HALF_UP


def to_decimal(value) -> Decimal:
    """
    Coerce an int, str, float or Decimal into a Decimal.

    Raises:
        ValueError: If the value is not a finite number.
    """
    if isinstance(value, bool):
        raise ValueError(f"Not a numeric quantity: {value!r}")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, TypeError) as exc:
            raise ValueError(f"Not a numeric quantity: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"Not a finite quantity: {value!r}")
    return result


def hours_between(start, end) -> Decimal:
    """Elapsed hours from start to end, quantized to 0.01."""
    seconds = Decimal(str((end - start).total_seconds()))
    return (seconds / Decimal(3600)).quantize(HOURS_QUANTUM, rounding=DEFAULT_ROUNDING)
