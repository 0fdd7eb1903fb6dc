"""
Config-to-kernel bridge.

Translates a validated ``CatalogSource`` into the kernel's frozen
``StageCatalog``.  The kernel never imports ``lifecycle_config``; this is
the only place the two meet.
"""

from __future__ import annotations

from decimal import Decimal

from lifecycle_config.schema import CatalogSource, UnitTypeSource
from lifecycle_kernel.domain.stage_catalog import StageCatalog, UnitTypeDefinition
from lifecycle_kernel.domain.values import OverConsumptionPolicy, UnitStatus


def build_unit_type(source: UnitTypeSource) -> UnitTypeDefinition:
    return UnitTypeDefinition(
        name=source.name,
        stages=tuple(source.stages),
        terminal={name: UnitStatus(status) for name, status in source.terminal},
        checkpoints={stage: tuple(names) for stage, names in source.checkpoints},
        planned_hours={stage: Decimal(str(hours)) for stage, hours in source.planned_hours},
    )


def build_stage_catalog(source: CatalogSource) -> StageCatalog:
    """Precondition: ``source`` passed ``validate_catalog``."""
    return StageCatalog(
        version=source.version,
        unit_types={ut.name: build_unit_type(ut) for ut in source.unit_types},
        over_consumption_policy=OverConsumptionPolicy(source.over_consumption),
        command_timeout_seconds=float(source.command_timeout_seconds),
        recent_window_hours=int(source.recent_window_hours),
        checksum=source.checksum,
    )
