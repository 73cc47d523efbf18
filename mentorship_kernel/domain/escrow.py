"""
Escrow domain types (``mentorship_kernel.domain.escrow``).

Responsibility
--------------
Value objects for funds held against a project's completion: the payment
status enum, its transition table and the immutable payment record.

Invariants enforced
-------------------
* ES-1: ``ESCROW_TRANSITIONS`` defines forward-only progression.  The sole
  way back is ``disputed -> <pre-dispute status>`` (reinstate).
* ES-2: ``pre_dispute_status`` is a single slot; a payment that is already
  disputed cannot be disputed again.
* ES-3: Idempotency references are derived once per logical gateway
  operation and reused verbatim on every retry.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class PaymentStatus(str, Enum):
    PENDING = "pending"
    ESCROWED = "escrowed"
    MENTOR_RELEASED = "mentor_released"
    STUDENT_RELEASED = "student_released"
    COMPLETED = "completed"
    DISPUTED = "disputed"
    REFUNDED = "refunded"


ESCROW_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({
        PaymentStatus.ESCROWED,
        PaymentStatus.DISPUTED,
    }),
    PaymentStatus.ESCROWED: frozenset({
        PaymentStatus.MENTOR_RELEASED,
        PaymentStatus.DISPUTED,
        PaymentStatus.REFUNDED,
    }),
    PaymentStatus.MENTOR_RELEASED: frozenset({
        PaymentStatus.STUDENT_RELEASED,
        PaymentStatus.DISPUTED,
    }),
    PaymentStatus.STUDENT_RELEASED: frozenset({
        PaymentStatus.COMPLETED,
        PaymentStatus.DISPUTED,
    }),
    # Reinstate targets are checked against pre_dispute_status at runtime
    PaymentStatus.DISPUTED: frozenset({
        PaymentStatus.PENDING,
        PaymentStatus.ESCROWED,
        PaymentStatus.MENTOR_RELEASED,
        PaymentStatus.STUDENT_RELEASED,
        PaymentStatus.REFUNDED,
    }),
    PaymentStatus.COMPLETED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}

TERMINAL_PAYMENT_STATUSES: frozenset[PaymentStatus] = frozenset({
    PaymentStatus.COMPLETED,
    PaymentStatus.REFUNDED,
})

# Forward order used to answer "has this target already been reached?"
PAYMENT_PROGRESSION: tuple[PaymentStatus, ...] = (
    PaymentStatus.PENDING,
    PaymentStatus.ESCROWED,
    PaymentStatus.MENTOR_RELEASED,
    PaymentStatus.STUDENT_RELEASED,
    PaymentStatus.COMPLETED,
)


def has_reached(current: PaymentStatus, target: PaymentStatus) -> bool:
    """True if ``current`` is ``target`` or further along the release path."""
    if current not in PAYMENT_PROGRESSION or target not in PAYMENT_PROGRESSION:
        return current == target
    return PAYMENT_PROGRESSION.index(current) >= PAYMENT_PROGRESSION.index(target)


class TransferShare(str, Enum):
    """Which party a payout transfer goes to."""

    MENTOR = "mentor"
    STUDENT = "student"


class DisputeOutcome(str, Enum):
    REINSTATE = "reinstate"
    REFUND = "refund"


class GatewayOperation(str, Enum):
    """Logical gateway operations, one idempotency reference each."""

    CHARGE = "charge"
    MENTOR_TRANSFER = "mentor-transfer"
    STUDENT_TRANSFER = "student-transfer"
    REFUND = "refund"


def idempotency_reference(payment_id: UUID, operation: GatewayOperation) -> str:
    """ES-3: deterministic reference for one logical gateway operation."""
    return f"esc-{payment_id.hex}-{operation.value}"


@dataclass(frozen=True)
class EscrowPayment:
    """Immutable snapshot of a project's escrow payment."""

    payment_id: UUID
    project_id: UUID
    amount: Decimal
    currency: str
    status: PaymentStatus = PaymentStatus.PENDING
    pre_dispute_status: PaymentStatus | None = None
    charge_reference: str | None = None
    mentor_transfer_reference: str | None = None
    student_transfer_reference: str | None = None
    refund_reference: str | None = None
    mentor_transfer_confirmed: bool = False
    student_transfer_confirmed: bool = False
    dispute_reason: str | None = None
    created_at: datetime | None = None
    escrowed_at: datetime | None = None
    completed_at: datetime | None = None
    refunded_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_PAYMENT_STATUSES
