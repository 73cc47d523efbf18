"""
Pure domain layer.

Immutable value objects and transition tables with NO dependencies on
SQLAlchemy, the database, the payment gateway or the clock.
"""

from mentorship_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from mentorship_kernel.domain.currency import CurrencyInfo, CurrencyRegistry
from mentorship_kernel.domain.escrow import (
    ESCROW_TRANSITIONS,
    TERMINAL_PAYMENT_STATUSES,
    DisputeOutcome,
    EscrowPayment,
    GatewayOperation,
    PaymentStatus,
    TransferShare,
    idempotency_reference,
)
from mentorship_kernel.domain.iteration import (
    ITERATION_TRANSITIONS,
    Iteration,
    IterationStatus,
    ReviewDecision,
)
from mentorship_kernel.domain.project import (
    PROJECT_TRANSITIONS,
    TERMINAL_PROJECT_STATUSES,
    Actor,
    ActorRole,
    Project,
    ProjectAction,
    ProjectPriority,
    ProjectStatus,
    ProjectType,
)
from mentorship_kernel.domain.records import (
    AuditEntry,
    Dispute,
    DisputeStatus,
    ProjectAggregate,
)

__all__ = [
    "Actor",
    "ActorRole",
    "AuditEntry",
    "Clock",
    "CurrencyInfo",
    "CurrencyRegistry",
    "DeterministicClock",
    "Dispute",
    "DisputeOutcome",
    "DisputeStatus",
    "ESCROW_TRANSITIONS",
    "EscrowPayment",
    "GatewayOperation",
    "ITERATION_TRANSITIONS",
    "Iteration",
    "IterationStatus",
    "PROJECT_TRANSITIONS",
    "PaymentStatus",
    "Project",
    "ProjectAction",
    "ProjectAggregate",
    "ProjectPriority",
    "ProjectStatus",
    "ProjectType",
    "ReviewDecision",
    "SystemClock",
    "TERMINAL_PAYMENT_STATUSES",
    "TERMINAL_PROJECT_STATUSES",
    "TransferShare",
    "idempotency_reference",
]
