"""
HttpPaymentGateway -- Paystack-style REST adapter for the PaymentGateway contract.

Responsibility:
    Translates charge / confirm / transfer calls into HTTP requests:

        POST /transaction/initialize     start a charge
        GET  /transaction/verify/{ref}   poll the charge status
        POST /transfer                   pay out to a recipient code

    Amounts go over the wire in minor units (kobo, cents).  The idempotency
    reference is sent as the provider ``reference`` so a retried request is
    recognised rather than executed twice.

Failure modes:
    - TransientGatewayError: timeout, connection error or HTTP 5xx.  The
      GatewayCaller retries once with the same reference.
    - 4xx responses map to GatewayOutcome.FAILED (definitive rejection).
      On ``charge`` a rejection raises GatewayFailureError, since there is no
      outcome to return.
"""

from __future__ import annotations

import os
from decimal import Decimal
from typing import Any

import httpx

from mentorship_config.schema import GatewaySettings
from mentorship_kernel.domain.currency import CurrencyRegistry
from mentorship_kernel.domain.gateway import GatewayOutcome, PendingReference
from mentorship_kernel.exceptions import (
    ConfigurationError,
    GatewayFailureError,
    TransientGatewayError,
)
from mentorship_kernel.logging_config import get_logger

logger = get_logger("services.payment_gateway")

GATEWAY_SECRET_ENV = "MENTORSHIP_GATEWAY_SECRET"

# Provider status strings -> outcome
_CHARGE_STATUS = {
    "success": GatewayOutcome.SUCCEEDED,
    "failed": GatewayOutcome.FAILED,
    "abandoned": GatewayOutcome.FAILED,
    "reversed": GatewayOutcome.FAILED,
}
_TRANSFER_STATUS = {
    "success": GatewayOutcome.SUCCEEDED,
    "pending": GatewayOutcome.PENDING,
    "otp": GatewayOutcome.PENDING,
    "failed": GatewayOutcome.FAILED,
    "reversed": GatewayOutcome.FAILED,
}


class HttpPaymentGateway:
    """PaymentGateway over httpx."""

    def __init__(
        self,
        base_url: str,
        secret_key: str,
        timeout_seconds: float = 10.0,
        payer_email: str = "escrow@mentorship.local",
        callback_url: str | None = None,
        payout_currency: str = "KES",
        client: httpx.Client | None = None,
    ):
        self._payer_email = payer_email
        # Payouts leave the merchant balance, which is held in one currency
        self._payout_currency = CurrencyRegistry.validate(payout_currency)
        self._callback_url = callback_url
        self._client = client or httpx.Client(
            base_url=base_url,
            timeout=timeout_seconds,
        )
        self._client.headers.update({
            "Authorization": f"Bearer {secret_key}",
            "Content-Type": "application/json",
        })

    def close(self) -> None:
        self._client.close()

    def charge(self, amount: Decimal, currency: str, reference: str) -> PendingReference:
        body: dict[str, Any] = {
            "email": self._payer_email,
            "amount": CurrencyRegistry.to_minor_units(amount, currency),
            "currency": currency,
            "reference": reference,
        }
        if self._callback_url:
            body["callback_url"] = self._callback_url

        response = self._request("POST", "/transaction/initialize", "charge", json=body)
        if response.status_code >= 400:
            raise GatewayFailureError(
                "charge", reference, f"initialize rejected with HTTP {response.status_code}"
            )
        data = _data(response)
        return PendingReference(
            reference=data.get("reference") or reference,
            authorization_url=data.get("authorization_url"),
        )

    def confirm_charge(self, reference: str) -> GatewayOutcome:
        response = self._request("GET", f"/transaction/verify/{reference}", "confirm_charge")
        if response.status_code >= 400:
            return GatewayOutcome.FAILED
        status = str(_data(response).get("status", "")).strip().lower()
        return _CHARGE_STATUS.get(status, GatewayOutcome.PENDING)

    def transfer(self, amount: Decimal, recipient: str, reference: str) -> GatewayOutcome:
        body = {
            "source": "balance",
            "amount": CurrencyRegistry.to_minor_units(amount, self._payout_currency),
            "currency": self._payout_currency,
            "recipient": recipient,
            "reference": reference,
        }
        response = self._request("POST", "/transfer", "transfer", json=body)
        if response.status_code >= 400:
            logger.warning(
                "gateway_transfer_rejected",
                extra={"reference": reference, "http_status": response.status_code},
            )
            return GatewayOutcome.FAILED
        status = str(_data(response).get("status", "")).strip().lower()
        return _TRANSFER_STATUS.get(status, GatewayOutcome.PENDING)

    def _request(self, method: str, url: str, operation: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransientGatewayError(operation, f"timeout: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransientGatewayError(operation, f"transport error: {exc}") from exc

        if response.status_code >= 500:
            raise TransientGatewayError(operation, f"HTTP {response.status_code}")
        logger.debug(
            "gateway_response",
            extra={"operation": operation, "http_status": response.status_code},
        )
        return response


def _data(response: httpx.Response) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return {}
    data = payload.get("data") if isinstance(payload, dict) else None
    return data if isinstance(data, dict) else {}


def gateway_from_settings(
    settings: GatewaySettings,
    payout_currency: str = "KES",
    client: httpx.Client | None = None,
) -> HttpPaymentGateway:
    """Build the HTTP gateway; the secret key comes only from the environment."""
    secret = os.environ.get(GATEWAY_SECRET_ENV)
    if not secret:
        raise ConfigurationError(GATEWAY_SECRET_ENV, "environment variable is not set")
    return HttpPaymentGateway(
        base_url=settings.base_url,
        secret_key=secret,
        timeout_seconds=settings.timeout_seconds,
        callback_url=settings.callback_url,
        payout_currency=payout_currency,
        client=client,
    )
