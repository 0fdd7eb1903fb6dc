"""
CheckpointService -- validated edits to a stage's quality checkpoints.

Checkpoints are added, resolved, and removed through explicit commands
rather than free-form client edits.  A completed stage's checkpoints are
frozen.  Every edit bumps the unit version so that a checkpoint change and
a transition on the same unit serialize.
"""

from lifecycle_kernel.domain.dtos import CheckpointSnapshot, CommandContext
from lifecycle_kernel.exceptions import (
    CheckpointNotFoundError,
    DuplicateCheckpointError,
    InvalidCheckpointResultError,
    InvalidStageStateError,
    MissingFieldError,
    TerminalUnitError,
)
from lifecycle_kernel.logging_config import get_logger
from lifecycle_kernel.models.checkpoint import CheckpointRecord
from lifecycle_kernel.models.stage_instance import StageInstance
from lifecycle_kernel.models.unit_of_work import UnitOfWork
from lifecycle_kernel.services.base import BaseService

logger = get_logger("services.checkpoint")


def checkpoint_snapshot(record: CheckpointRecord) -> CheckpointSnapshot:
    return CheckpointSnapshot(
        id=record.id,
        name=record.name,
        result=record.result,
        remarks=record.remarks,
        checked_at=record.checked_at,
        checked_by_id=record.checked_by_id,
    )


class CheckpointService(BaseService[CheckpointRecord]):
    """Adds, resolves, and removes checkpoints on a unit's stages."""

    def add_checkpoint(
        self,
        unit: UnitOfWork,
        stage_name: str,
        name: str,
        context: CommandContext,
    ) -> CheckpointSnapshot:
        stage = self._editable_stage(unit, stage_name, context, "add checkpoint to")
        name = self._clean_name(name)
        if self._find(stage, name) is not None:
            raise DuplicateCheckpointError(stage_name, name)
        record = CheckpointRecord(name=name, result=None, created_by_id=context.operator_id)
        stage.checkpoints.append(record)
        self._touch(unit, context)
        self.session.flush()
        logger.info(
            "checkpoint_added",
            extra={"unit_id": str(unit.id), "stage_name": stage_name, "checkpoint": name},
        )
        return checkpoint_snapshot(record)

    def set_checkpoint_result(
        self,
        unit: UnitOfWork,
        stage_name: str,
        name: str,
        result: bool | None,
        context: CommandContext,
        remarks: str | None = None,
    ) -> CheckpointSnapshot:
        """Record pass (True), fail (False), or reset to unchecked (None)."""
        name = self._clean_name(name)
        if result is not None and not isinstance(result, bool):
            raise InvalidCheckpointResultError(name, result)
        stage = self._editable_stage(unit, stage_name, context, "check")
        record = self._find(stage, name)
        if record is None:
            raise CheckpointNotFoundError(stage_name, name)
        record.result = result
        record.remarks = remarks if remarks is not None else record.remarks
        record.checked_at = None if result is None else self._now(context)
        record.checked_by_id = None if result is None else context.operator_id
        record.updated_by_id = context.operator_id
        self._touch(unit, context)
        self.session.flush()
        logger.info(
            "checkpoint_result_recorded",
            extra={
                "unit_id": str(unit.id),
                "stage_name": stage_name,
                "checkpoint": name,
                "result": result,
            },
        )
        return checkpoint_snapshot(record)

    def remove_checkpoint(
        self,
        unit: UnitOfWork,
        stage_name: str,
        name: str,
        context: CommandContext,
    ) -> None:
        stage = self._editable_stage(unit, stage_name, context, "remove checkpoint from")
        name = self._clean_name(name)
        record = self._find(stage, name)
        if record is None:
            raise CheckpointNotFoundError(stage_name, name)
        self.session.delete(record)
        self._touch(unit, context)
        self.session.flush()
        self.session.expire(stage, ["checkpoints"])
        logger.info(
            "checkpoint_removed",
            extra={"unit_id": str(unit.id), "stage_name": stage_name, "checkpoint": name},
        )

    def _editable_stage(
        self, unit: UnitOfWork, stage_name: str, context: CommandContext, action: str
    ) -> StageInstance:
        self._check_expected_version(unit, context)
        if unit.is_terminal:
            raise TerminalUnitError(str(unit.id), unit.status)
        stage = self._stage(unit, stage_name)
        if stage.is_completed:
            raise InvalidStageStateError(str(unit.id), stage_name, stage.status, action)
        return stage

    @staticmethod
    def _clean_name(name: str) -> str:
        if name is None or not name.strip():
            raise MissingFieldError("checkpoint name")
        return name.strip()

    @staticmethod
    def _find(stage: StageInstance, name: str) -> CheckpointRecord | None:
        for record in stage.checkpoints:
            if record.name == name:
                return record
        return None
