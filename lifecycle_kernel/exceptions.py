"""
Typed Exception Hierarchy for the Lifecycle Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Shop-floor terminals, supervisor dashboards and batch scanners all call the
same engine. They need to react to a rejected transition precisely:
re-prompt for a checkpoint, reload a unit after a concurrent edit, or show
the operator which stage comes next. Parsing message strings for that is
fragile, so every failure here is:

  1. A TYPED exception class (catch by type, not message)
  2. Carrying a CODE attribute (machine-readable, API-safe)
  3. Carrying structured DATA (stage names, checkpoint names, quantities)

Example:
    try:
        engine.record_transition(unit, "stitching", UnitStatus.ACTIVE, ctx)
    except CheckpointsIncompleteError as e:
        prompt_inspector(e.stage_name, e.blocking)
    except OutOfOrderStageError as e:
        show_hint(f"Next stage is {e.expected_stage}")

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LifecycleKernelError (base)
    |
    +-- StageError
    |   +-- OutOfOrderStageError
    |   +-- InvalidStageStateError
    |   +-- StageNotFoundError
    |   +-- TerminalUnitError
    |   +-- ReviewOverrideRequiredError
    |
    +-- UnitError
    |   +-- UnitNotFoundError
    |   +-- DuplicateUnitError
    |   +-- UnknownUnitTypeError
    |
    +-- QualityError
    |   +-- CheckpointsIncompleteError
    |   +-- CheckpointNotFoundError
    |   +-- DuplicateCheckpointError
    |
    +-- MaterialError
    |   +-- OverConsumptionError
    |
    +-- ReworkError
    |   +-- ReworkNotFoundError
    |
    +-- ValidationError
    |   +-- InvalidQuantityError
    |   +-- MissingFieldError
    |
    +-- ConcurrencyError
    |   +-- ConcurrentModificationError
    |   +-- OperationTimedOutError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                      | When Raised
-------------|---------------------------|--------------------------------------------
Stage        | OUT_OF_ORDER_STAGE        | Target stage is not the next in sequence
             | INVALID_STAGE_STATE       | Stage is not in a state allowing the action
             | STAGE_NOT_FOUND           | No such stage for the unit
             | UNIT_TERMINAL             | Unit already completed/cancelled/returned
             | REVIEW_OVERRIDE_REQUIRED  | Frozen unit moved without supervisor override
-------------|---------------------------|--------------------------------------------
Unit         | UNIT_NOT_FOUND            | Unknown id or barcode
             | DUPLICATE_UNIT            | external_ref already tracked
             | UNKNOWN_UNIT_TYPE         | No stage sequence configured for the type
-------------|---------------------------|--------------------------------------------
Quality      | CHECKPOINTS_INCOMPLETE    | Unchecked or failed checkpoint blocks completion
             | CHECKPOINT_NOT_FOUND      | Named checkpoint does not exist on the stage
             | DUPLICATE_CHECKPOINT      | Checkpoint name already used on the stage
-------------|---------------------------|--------------------------------------------
Material     | OVER_CONSUMPTION          | Consumption beyond allocation (reject policy)
-------------|---------------------------|--------------------------------------------
Rework       | REWORK_NOT_FOUND          | Unknown rework attempt
-------------|---------------------------|--------------------------------------------
Validation   | INVALID_QUANTITY          | Negative/zero quantity or approved+rejected > processed
             | MISSING_FIELD             | Required text field empty
-------------|---------------------------|--------------------------------------------
Concurrency  | CONCURRENT_MODIFICATION   | Unit changed since the caller read it
             | OPERATION_TIMED_OUT       | Deadline passed or lock wait exceeded
-------------|---------------------------|--------------------------------------------
Immutability | IMMUTABILITY_VIOLATION    | Update/delete of append-only history
"""

from decimal import Decimal


class LifecycleKernelError(Exception):
    """
    Base exception for all lifecycle kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "LIFECYCLE_KERNEL_ERROR"


# Stage-related exceptions


class StageError(LifecycleKernelError):
    """Base exception for stage-related errors."""

    code: str = "STAGE_ERROR"


class OutOfOrderStageError(StageError):
    """Requested stage is not the immediate successor in the unit's sequence."""

    code: str = "OUT_OF_ORDER_STAGE"

    def __init__(
        self,
        unit_id: str,
        requested_stage: str,
        expected_stage: str | None,
        current_stage: str | None = None,
    ):
        self.unit_id = unit_id
        self.requested_stage = requested_stage
        self.expected_stage = expected_stage
        self.current_stage = current_stage
        if expected_stage is None:
            detail = "no further stage can be entered from here"
        else:
            detail = f"expected next stage '{expected_stage}'"
        super().__init__(
            f"Cannot move unit {unit_id} to '{requested_stage}' "
            f"(current: {current_stage}): {detail}"
        )


class InvalidStageStateError(StageError):
    """Stage is not in a state that allows the requested action."""

    code: str = "INVALID_STAGE_STATE"

    def __init__(self, unit_id: str, stage_name: str, status: str, action: str):
        self.unit_id = unit_id
        self.stage_name = stage_name
        self.status = status
        self.action = action
        super().__init__(
            f"Cannot {action} stage '{stage_name}' of unit {unit_id}: "
            f"stage is {status}"
        )


class StageNotFoundError(StageError):
    """Stage name is not part of the unit's sequence."""

    code: str = "STAGE_NOT_FOUND"

    def __init__(self, unit_id: str, stage_name: str):
        self.unit_id = unit_id
        self.stage_name = stage_name
        super().__init__(f"Unit {unit_id} has no stage '{stage_name}'")


class TerminalUnitError(StageError):
    """Unit already reached a terminal status."""

    code: str = "UNIT_TERMINAL"

    def __init__(self, unit_id: str, status: str):
        self.unit_id = unit_id
        self.status = status
        super().__init__(
            f"Unit {unit_id} is {status} and accepts no further transitions"
        )


class ReviewOverrideRequiredError(StageError):
    """Unit is frozen for review; a supervisor override is required."""

    code: str = "REVIEW_OVERRIDE_REQUIRED"

    def __init__(self, unit_id: str, stage_name: str | None):
        self.unit_id = unit_id
        self.stage_name = stage_name
        super().__init__(
            f"Unit {unit_id} is frozen for review at stage '{stage_name}'; "
            "transition requires supervisor override"
        )


# Unit-related exceptions


class UnitError(LifecycleKernelError):
    """Base exception for unit-of-work errors."""

    code: str = "UNIT_ERROR"


class UnitNotFoundError(UnitError):
    """No unit matches the identifier or barcode."""

    code: str = "UNIT_NOT_FOUND"

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(f"Unit not found: {identifier}")


class DuplicateUnitError(UnitError):
    """External reference is already tracked."""

    code: str = "DUPLICATE_UNIT"

    def __init__(self, external_ref: str):
        self.external_ref = external_ref
        super().__init__(f"Unit with external reference '{external_ref}' already exists")


class UnknownUnitTypeError(UnitError):
    """No stage sequence is configured for the unit type."""

    code: str = "UNKNOWN_UNIT_TYPE"

    def __init__(self, unit_type: str, known_types: list[str] | None = None):
        self.unit_type = unit_type
        self.known_types = known_types or []
        super().__init__(
            f"Unknown unit type '{unit_type}'. "
            f"Configured types: {', '.join(self.known_types) or 'none'}"
        )


# Quality-related exceptions


class QualityError(LifecycleKernelError):
    """Base exception for quality checkpoint errors."""

    code: str = "QUALITY_ERROR"


class CheckpointsIncompleteError(QualityError):
    """
    Stage cannot complete: at least one checkpoint is unchecked or failed.

    ``blocking`` holds (checkpoint_name, state) pairs where state is
    "unchecked" or "failed".
    """

    code: str = "CHECKPOINTS_INCOMPLETE"

    def __init__(
        self,
        unit_id: str,
        stage_name: str,
        blocking: list[tuple[str, str]],
    ):
        self.unit_id = unit_id
        self.stage_name = stage_name
        self.blocking = blocking
        names = ", ".join(f"{name} ({state})" for name, state in blocking)
        super().__init__(
            f"Stage '{stage_name}' of unit {unit_id} cannot complete; "
            f"blocking checkpoints: {names}"
        )

    @property
    def checkpoint_names(self) -> list[str]:
        return [name for name, _ in self.blocking]


class CheckpointNotFoundError(QualityError):
    """Named checkpoint does not exist on the stage."""

    code: str = "CHECKPOINT_NOT_FOUND"

    def __init__(self, stage_name: str, checkpoint_name: str):
        self.stage_name = stage_name
        self.checkpoint_name = checkpoint_name
        super().__init__(
            f"Checkpoint '{checkpoint_name}' not found on stage '{stage_name}'"
        )


class DuplicateCheckpointError(QualityError):
    """Checkpoint name already exists on the stage."""

    code: str = "DUPLICATE_CHECKPOINT"

    def __init__(self, stage_name: str, checkpoint_name: str):
        self.stage_name = stage_name
        self.checkpoint_name = checkpoint_name
        super().__init__(
            f"Checkpoint '{checkpoint_name}' already exists on stage '{stage_name}'"
        )


# Material-related exceptions


class MaterialError(LifecycleKernelError):
    """Base exception for material ledger errors."""

    code: str = "MATERIAL_ERROR"


class OverConsumptionError(MaterialError):
    """Consumption would exceed allocation under the reject policy."""

    code: str = "OVER_CONSUMPTION"

    def __init__(
        self,
        stage_name: str,
        allocated: Decimal,
        consumed: Decimal,
        requested: Decimal,
    ):
        self.stage_name = stage_name
        self.allocated = allocated
        self.consumed = consumed
        self.requested = requested
        super().__init__(
            f"Consuming {requested} on stage '{stage_name}' exceeds allocation: "
            f"allocated {allocated}, already consumed {consumed}"
        )


# Rework-related exceptions


class ReworkError(LifecycleKernelError):
    """Base exception for rework ledger errors."""

    code: str = "REWORK_ERROR"


class ReworkNotFoundError(ReworkError):
    """Rework attempt does not exist."""

    code: str = "REWORK_NOT_FOUND"

    def __init__(self, attempt_id: str):
        self.attempt_id = attempt_id
        super().__init__(f"Rework attempt not found: {attempt_id}")


# Validation exceptions


class ValidationError(LifecycleKernelError):
    """Base exception for input validation errors."""

    code: str = "VALIDATION_ERROR"


class InvalidQuantityError(ValidationError):
    """Quantity is negative, zero where positive is required, or inconsistent."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, field: str, value, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field} ({value}): {reason}")


class MissingFieldError(ValidationError):
    """Required field is missing or blank."""

    code: str = "MISSING_FIELD"

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Required field '{field}' is missing or empty")


class InvalidCheckpointResultError(ValidationError):
    """Checkpoint result is not True, False, or None."""

    code: str = "INVALID_CHECKPOINT_RESULT"

    def __init__(self, checkpoint_name: str, value):
        self.checkpoint_name = checkpoint_name
        self.value = value
        super().__init__(
            f"Checkpoint '{checkpoint_name}' result must be True, False, or None, got {value!r}"
        )


# Concurrency-related exceptions


class ConcurrencyError(LifecycleKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentModificationError(ConcurrencyError):
    """Unit was modified by another transaction."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(
        self,
        unit_id: str,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ):
        self.unit_id = unit_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        if expected_version is not None and actual_version is not None:
            detail = f"expected version {expected_version}, found {actual_version}"
        else:
            detail = "unit was modified by another transaction"
        super().__init__(f"Concurrent modification of unit {unit_id}: {detail}")


class OperationTimedOutError(ConcurrencyError):
    """Operation exceeded its deadline; nothing was persisted."""

    code: str = "OPERATION_TIMED_OUT"

    def __init__(self, operation: str, timeout_seconds: float, elapsed_seconds: float | None = None):
        self.operation = operation
        self.timeout_seconds = timeout_seconds
        self.elapsed_seconds = elapsed_seconds
        super().__init__(
            f"Operation '{operation}' exceeded timeout of {timeout_seconds}s"
        )


# Immutability-related exceptions


class ImmutabilityError(LifecycleKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an append-only record.

    TransitionEvent and MaterialConsumption are always immutable.
    ReworkAttempt is immutable outside an administrative correction.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
