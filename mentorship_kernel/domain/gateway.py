"""
Payment gateway contract (``mentorship_kernel.domain.gateway``).

The escrow ledger reaches the payment provider only through this protocol.
Every call is keyed by an idempotency reference that the ledger generates
once per logical escrow operation and reuses on retry, so a provider that
sees the same reference twice must not move money twice.

Implementations raise ``TransientGatewayError`` for failures worth one
retry (timeouts, 5xx) and return ``GatewayOutcome.FAILED`` for definitive
rejections.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Protocol, runtime_checkable


class GatewayOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    PENDING = "pending"


@dataclass(frozen=True)
class PendingReference:
    """Acknowledgement of a charge that still needs confirmation."""

    reference: str
    authorization_url: str | None = None


@runtime_checkable
class PaymentGateway(Protocol):
    def charge(self, amount: Decimal, currency: str, reference: str) -> PendingReference:
        """Start collecting ``amount`` from the client under ``reference``."""
        ...

    def confirm_charge(self, reference: str) -> GatewayOutcome:
        """Report whether the charge under ``reference`` settled."""
        ...

    def transfer(self, amount: Decimal, recipient: str, reference: str) -> GatewayOutcome:
        """Pay ``amount`` out to ``recipient`` under ``reference``."""
        ...
