"""Transactional command boundary and notification delivery."""

from lifecycle_services.lifecycle_command_service import (
    BulkTransitionError,
    BulkTransitionResult,
    LifecycleCommandService,
)
from lifecycle_services.notifications import (
    InMemoryNotificationPublisher,
    LoggingNotificationPublisher,
)

__all__ = [
    "BulkTransitionError",
    "BulkTransitionResult",
    "InMemoryNotificationPublisher",
    "LifecycleCommandService",
    "LoggingNotificationPublisher",
]
