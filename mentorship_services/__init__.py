"""
mentorship_services -- Package init and public API.

Responsibility:
    Stateful orchestration over the kernel: the WorkflowCoordinator facade,
    aggregate persistence, the HTTP payment gateway adapter, per-project
    locking and notification delivery.  This is the only layer that holds
    database sessions, network clients or locks.

Architecture position:
    Services -- above ``mentorship_kernel`` and ``mentorship_config``.
        mentorship_services/ -> mentorship_kernel/  (allowed)
        mentorship_kernel/   -> mentorship_services/ (FORBIDDEN)
"""

from mentorship_services.locking import ProjectLockRegistry
from mentorship_services.notifications import (
    LoggingNotificationChannel,
    NotificationChannel,
    NotificationDispatcher,
    RecordingNotificationChannel,
    WorkflowEvent,
)
from mentorship_services.payment_gateway import HttpPaymentGateway, gateway_from_settings
from mentorship_services.persistence import (
    InMemoryWorkflowRepository,
    SqlAlchemyWorkflowRepository,
    WorkflowRepository,
)
from mentorship_services.workflow_coordinator import (
    SYSTEM_ACTOR,
    WorkflowCoordinator,
    WorkflowSnapshot,
)

__all__ = [
    "HttpPaymentGateway",
    "InMemoryWorkflowRepository",
    "LoggingNotificationChannel",
    "NotificationChannel",
    "NotificationDispatcher",
    "ProjectLockRegistry",
    "RecordingNotificationChannel",
    "SYSTEM_ACTOR",
    "SqlAlchemyWorkflowRepository",
    "WorkflowCoordinator",
    "WorkflowEvent",
    "WorkflowRepository",
    "WorkflowSnapshot",
    "gateway_from_settings",
]
