"""
GatewayCaller -- bounded, retry-once wrapper around a PaymentGateway.

Responsibility:
    Every payment gateway call made while a project lock is held goes
    through here.  Each attempt is bounded by ``timeout_seconds``; a
    transient failure (``TransientGatewayError`` or an attempt timeout) is
    retried ``transient_retries`` times with the SAME idempotency
    reference.  Exhaustion raises ``GatewayFailureError`` so the caller's
    composite action rolls back.

Architecture position:
    Kernel > Services.  Used by EscrowLedger.

Failure modes:
    - GatewayFailureError after retries are exhausted.
    - Non-transient exceptions from the gateway propagate unchanged.
    - A timed-out attempt is abandoned, not interrupted: its worker thread
      stays busy until the gateway call returns.  Enough hanging calls fill
      the pool and later attempts queue behind them until they time out too.

Lifecycle:
    The caller owns the pool it creates and shuts it down in ``close()``.
    An executor passed in belongs to whoever passed it.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from decimal import Decimal
from typing import Callable, TypeVar

from mentorship_kernel.domain.gateway import GatewayOutcome, PaymentGateway, PendingReference
from mentorship_kernel.exceptions import GatewayFailureError, TransientGatewayError
from mentorship_kernel.logging_config import get_logger

logger = get_logger("services.gateway_caller")

T = TypeVar("T")


class GatewayCaller:
    """Calls a PaymentGateway with a per-attempt timeout and one retry."""

    def __init__(
        self,
        gateway: PaymentGateway,
        timeout_seconds: float = 10.0,
        transient_retries: int = 1,
        executor: ThreadPoolExecutor | None = None,
    ):
        self._gateway = gateway
        self._timeout = timeout_seconds
        self._retries = transient_retries
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=4, thread_name_prefix="gateway"
        )

    def close(self) -> None:
        """Stop the worker pool.  Queued attempts are cancelled; calls made
        after closing raise RuntimeError."""
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)

    def charge(self, amount: Decimal, currency: str, reference: str) -> PendingReference:
        return self._call(
            "charge", reference, lambda: self._gateway.charge(amount, currency, reference)
        )

    def confirm_charge(self, reference: str) -> GatewayOutcome:
        return self._call(
            "confirm_charge", reference, lambda: self._gateway.confirm_charge(reference)
        )

    def transfer(self, amount: Decimal, recipient: str, reference: str) -> GatewayOutcome:
        return self._call(
            "transfer", reference, lambda: self._gateway.transfer(amount, recipient, reference)
        )

    def _call(self, operation: str, reference: str, fn: Callable[[], T]) -> T:
        attempts = self._retries + 1
        last_reason = ""
        for attempt in range(1, attempts + 1):
            future = self._executor.submit(fn)
            try:
                return future.result(timeout=self._timeout)
            except FutureTimeoutError:
                future.cancel()
                last_reason = f"timed out after {self._timeout}s"
            except TransientGatewayError as exc:
                last_reason = exc.reason

            if attempt < attempts:
                logger.warning(
                    "gateway_retry",
                    extra={
                        "operation": operation,
                        "reference": reference,
                        "attempt": attempt,
                        "reason": last_reason,
                    },
                )

        logger.error(
            "gateway_retries_exhausted",
            extra={"operation": operation, "reference": reference, "reason": last_reason},
        )
        raise GatewayFailureError(operation, reference, last_reason)
