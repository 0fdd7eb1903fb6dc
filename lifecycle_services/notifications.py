"""
Notification publishers.

``LoggingNotificationPublisher`` writes each notification as a structured
log line and is the default.  ``InMemoryNotificationPublisher`` collects
them for tests and for in-process consumers such as a dashboard feed.
"""

from __future__ import annotations

import threading

from lifecycle_kernel.domain.notifications import (
    LifecycleNotification,
    NotificationPublisher,
    NotificationType,
)
from lifecycle_kernel.logging_config import get_logger

logger = get_logger("services.notifications")


class LoggingNotificationPublisher(NotificationPublisher):

    def publish(self, notification: LifecycleNotification) -> None:
        logger.info(
            "lifecycle_notification",
            extra={
                "event_type": notification.event_type.value,
                "notified_unit_id": str(notification.unit_id),
                "payload": notification.payload,
            },
        )


class InMemoryNotificationPublisher(NotificationPublisher):
    """Keeps published notifications in arrival order."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._published: list[LifecycleNotification] = []

    def publish(self, notification: LifecycleNotification) -> None:
        with self._lock:
            self._published.append(notification)

    @property
    def published(self) -> tuple[LifecycleNotification, ...]:
        with self._lock:
            return tuple(self._published)

    def of_type(self, event_type: NotificationType | str) -> tuple[LifecycleNotification, ...]:
        wanted = NotificationType(event_type)
        return tuple(n for n in self.published if n.event_type == wanted)

    def clear(self) -> None:
        with self._lock:
            self._published.clear()
