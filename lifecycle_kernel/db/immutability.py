"""
ORM-Level Append-Only Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The transition log is the audit trail of a unit's journey through the floor
and the only input to the analytics read side.  Material consumption and
rework attempts feed cost and yield figures.  None of these may be edited
after the fact; corrections are new records, or for rework an explicit,
logged administrative correction.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database:

    session.flush()
         |
         v
    [before_update] --> _check_*_update() --> ImmutabilityViolationError
         |
         v
    [before_delete] --> _check_*_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity               | When Immutable                          | Escape hatch
---------------------|-----------------------------------------|----------------------------
TransitionEvent      | ALWAYS (from creation)                  | none
MaterialConsumption  | ALWAYS (from creation)                  | none
ReworkAttempt        | ALWAYS (from creation)                  | administrative_correction()
CheckpointRecord     | When its stage is completed             | none

===============================================================================
DESIGN DECISIONS
===============================================================================

1. updated_at / updated_by_id are audit metadata and may change on any row.
2. before_update fires for any object in session.dirty, even without net
   column changes, so checks look at attribute history first.
3. The administrative correction flag lives in ``Session.info`` and is only
   set by the ``administrative_correction`` context manager.

Usage:
    from lifecycle_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called once at startup

LifecycleCommandService registers them when it is constructed.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session, object_session

from lifecycle_kernel.exceptions import ImmutabilityViolationError
from lifecycle_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

ADMIN_CORRECTION_KEY = "lifecycle_admin_correction"

_AUDIT_METADATA_FIELDS = frozenset({"updated_at", "updated_by_id"})


@contextmanager
def administrative_correction(
    session: Session, reason: str, actor_id=None
) -> Generator[Session, None, None]:
    """
    Temporarily allow deletion of rework attempts on ``session``.

    The flag is cleared on exit whether or not the block raised.
    """
    logger.warning(
        "administrative_correction_opened",
        extra={"reason": reason, "actor_id": str(actor_id) if actor_id else None},
    )
    previous = session.info.get(ADMIN_CORRECTION_KEY, False)
    session.info[ADMIN_CORRECTION_KEY] = True
    try:
        yield session
    finally:
        session.info[ADMIN_CORRECTION_KEY] = previous
        logger.info("administrative_correction_closed", extra={"reason": reason})


def _in_admin_correction(target) -> bool:
    session = object_session(target)
    return bool(session is not None and session.info.get(ADMIN_CORRECTION_KEY, False))


def _changed_fields(target) -> list[str]:
    """Column attributes with net changes, excluding audit metadata."""
    state = inspect(target)
    changed = []
    for attr in state.mapper.column_attrs:
        if attr.key in _AUDIT_METADATA_FIELDS:
            continue
        if state.attrs[attr.key].history.has_changes():
            changed.append(attr.key)
    return changed


def _block(entity_type: str, target, operation: str, reason: str, **extra) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            **extra,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_transition_event_update(mapper, connection, target):
    changed = _changed_fields(target)
    if not changed:
        return
    _block(
        "TransitionEvent", target, "UPDATE",
        "Transition events are immutable and cannot be modified",
        fields=changed,
    )


def _check_transition_event_delete(mapper, connection, target):
    _block(
        "TransitionEvent", target, "DELETE",
        "Transition events cannot be deleted",
    )


def _check_consumption_update(mapper, connection, target):
    changed = _changed_fields(target)
    if not changed:
        return
    _block(
        "MaterialConsumption", target, "UPDATE",
        "Material consumption entries are append-only",
        fields=changed,
    )


def _check_consumption_delete(mapper, connection, target):
    _block(
        "MaterialConsumption", target, "DELETE",
        "Material consumption entries cannot be deleted",
    )


def _check_rework_update(mapper, connection, target):
    changed = _changed_fields(target)
    if not changed:
        return
    _block(
        "ReworkAttempt", target, "UPDATE",
        "Committed rework attempts are immutable",
        fields=changed,
    )


def _check_rework_delete(mapper, connection, target):
    if _in_admin_correction(target):
        return
    _block(
        "ReworkAttempt", target, "DELETE",
        "Rework attempts can only be removed by administrative correction",
    )


def _check_checkpoint_update(mapper, connection, target):
    from lifecycle_kernel.domain.values import StageStatus

    changed = _changed_fields(target)
    if not changed:
        return
    stage = target.stage
    if stage is not None and stage.status == StageStatus.COMPLETED.value:
        _block(
            "CheckpointRecord", target, "UPDATE",
            f"Checkpoints of completed stage '{stage.stage_name}' are frozen",
            fields=changed,
        )


def _check_checkpoint_delete(mapper, connection, target):
    from lifecycle_kernel.domain.values import StageStatus

    stage = target.stage
    if stage is not None and stage.status == StageStatus.COMPLETED.value:
        _block(
            "CheckpointRecord", target, "DELETE",
            f"Checkpoints of completed stage '{stage.stage_name}' are frozen",
        )


def _listener_table():
    from lifecycle_kernel.models.checkpoint import CheckpointRecord
    from lifecycle_kernel.models.material import MaterialConsumption
    from lifecycle_kernel.models.rework import ReworkAttempt
    from lifecycle_kernel.models.transition_event import TransitionEvent

    return (
        (TransitionEvent, "before_update", _check_transition_event_update),
        (TransitionEvent, "before_delete", _check_transition_event_delete),
        (MaterialConsumption, "before_update", _check_consumption_update),
        (MaterialConsumption, "before_delete", _check_consumption_delete),
        (ReworkAttempt, "before_update", _check_rework_update),
        (ReworkAttempt, "before_delete", _check_rework_delete),
        (CheckpointRecord, "before_update", _check_checkpoint_update),
        (CheckpointRecord, "before_delete", _check_checkpoint_delete),
    )


def register_immutability_listeners():
    """
    Register all append-only enforcement listeners.

    Call once after models are imported and before any database work.
    Registering twice is a no-op.
    """
    for target, event_name, listener_fn in _listener_table():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)
    logger.debug("immutability_listeners_registered")


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """Remove all append-only enforcement listeners.  Primarily for tests."""
    for target, event_name, listener_fn in _listener_table():
        _safe_remove_listener(target, event_name, listener_fn)
