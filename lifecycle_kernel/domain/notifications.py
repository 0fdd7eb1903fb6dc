"""
Notification records and the publisher interface.

The kernel only builds ``LifecycleNotification`` values.  Delivery is an
external collaborator reached through ``NotificationPublisher``; the command
boundary publishes after commit so a rolled-back transition never notifies.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import UUID


class NotificationType(str, Enum):
    STAGE_LATE = "stage_late"
    UNIT_FROZEN = "unit_frozen"
    REWORK_RECORDED = "rework_recorded"
    MATERIAL_OVER_CONSUMPTION = "material_over_consumption"
    UNIT_COMPLETED = "unit_completed"
    UNIT_CANCELLED = "unit_cancelled"
    UNIT_RETURNED = "unit_returned"


@dataclass(frozen=True)
class LifecycleNotification:
    unit_id: UUID
    event_type: NotificationType
    payload: dict[str, Any] = field(default_factory=dict)


class NotificationPublisher(ABC):
    """Outbound notification port."""

    @abstractmethod
    def publish(self, notification: LifecycleNotification) -> None:
        ...
