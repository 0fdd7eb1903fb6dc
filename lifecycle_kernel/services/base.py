"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for every
    service in the kernel layer.  Services receive a SQLAlchemy ``Session``
    and use ``session.flush()`` -- never ``session.commit()``.  The command
    boundary in ``lifecycle_services`` owns commit and rollback.

    Also provides the unit-scoped helpers every write path shares: resolving
    and row-locking a unit, the compare-and-swap version check, and forcing a
    version bump so that any change under a unit serializes against every
    other change to that unit.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
"""

from abc import ABC
from datetime import datetime
from decimal import Decimal
from typing import Generic, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from lifecycle_kernel.db.base import Base
from lifecycle_kernel.db.types import to_decimal
from lifecycle_kernel.domain.clock import Clock, SystemClock
from lifecycle_kernel.domain.dtos import CommandContext
from lifecycle_kernel.domain.values import parse_unit_identifier
from lifecycle_kernel.exceptions import (
    ConcurrentModificationError,
    InvalidQuantityError,
    StageNotFoundError,
    UnitNotFoundError,
)
from lifecycle_kernel.models.stage_instance import StageInstance
from lifecycle_kernel.models.unit_of_work import UnitOfWork

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.

    Non-goals:
        - Does NOT provide query-only read models -- those belong in
          ``lifecycle_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self._clock = clock or SystemClock()

    def _now(self, context: CommandContext) -> datetime:
        return context.occurred_at or self._clock.now_utc()

    def lock_unit(self, identifier: UUID | str) -> UnitOfWork:
        """
        Load a unit by id or external_ref with a row lock.

        ``populate_existing`` refreshes an already-loaded instance so the
        caller sees the committed state it now holds the lock on.

        Raises:
            UnitNotFoundError: If nothing matches.
        """
        unit_id = parse_unit_identifier(identifier)
        if unit_id is not None:
            criteria = UnitOfWork.id == unit_id
        else:
            criteria = UnitOfWork.external_ref == str(identifier)
        unit = self.session.execute(
            select(UnitOfWork)
            .where(criteria)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if unit is None and unit_id is not None:
            # A UUID-shaped barcode
            unit = self.session.execute(
                select(UnitOfWork)
                .where(UnitOfWork.external_ref == str(identifier))
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
        if unit is None:
            raise UnitNotFoundError(str(identifier))
        return unit

    def _check_expected_version(self, unit: UnitOfWork, context: CommandContext) -> None:
        if context.expected_version is not None and context.expected_version != unit.version:
            raise ConcurrentModificationError(
                str(unit.id),
                expected_version=context.expected_version,
                actual_version=unit.version,
            )

    def _touch(self, unit: UnitOfWork, context: CommandContext) -> None:
        """Mark the unit row modified so the flush bumps its version."""
        unit.updated_by_id = context.operator_id
        flag_modified(unit, "updated_by_id")

    def _stage(self, unit: UnitOfWork, stage_name: str) -> StageInstance:
        stage = unit.stage_named(stage_name)
        if stage is None:
            raise StageNotFoundError(str(unit.id), stage_name)
        return stage

    @staticmethod
    def _quantity(field: str, value) -> Decimal:
        try:
            return to_decimal(value)
        except ValueError as exc:
            raise InvalidQuantityError(field, value, "must be a finite number") from exc

    @staticmethod
    def _require_positive(field: str, value) -> None:
        if value is None or value <= 0:
            raise InvalidQuantityError(field, value, "must be greater than zero")

    @staticmethod
    def _require_non_negative(field: str, value) -> None:
        if value is not None and value < 0:
            raise InvalidQuantityError(field, value, "must not be negative")
