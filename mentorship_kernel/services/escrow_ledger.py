"""
EscrowLedger -- lifecycle of the funds held against a project.

Responsibility:
    Funds, releases, disputes and refunds a project's escrow payment.
    Talks to the payment provider only through a GatewayCaller (bounded
    timeout, single retry).  Works on immutable EscrowPayment snapshots and
    returns the next snapshot; persisting it is the caller's job.

Architecture position:
    Kernel > Services.  Leaf component: depends on the escrow domain types,
    the project milestone sets and the gateway contract.  It never loads the
    project itself; the caller passes the project status it must gate on.

Invariants enforced:
    ES-1 -- Forward-only progression per ESCROW_TRANSITIONS; the only way
            back is reinstating a dispute to the single-slot pre-dispute
            status.
    ES-3 -- One deterministic idempotency reference per logical gateway
            operation, reused on every retry.
    ES-4 -- Idempotent under duplicate delivery: a call whose target status
            is already reached returns the current record, with no gateway
            call.
    ES-5 -- Releases are gated on project milestones: mentor share needs the
            mentor-approval milestone, student share needs the
            student-approval milestone AND a prior mentor release.

Failure modes:
    - InvalidStateError: precondition on payment status or project milestone.
    - GatewayFailureError: provider declined, or retries exhausted.  No new
      snapshot is produced, so nothing is persisted.

Audit relevance:
    Every status change logs ``escrow_status_changed`` with from/to status
    and the gateway reference used.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from uuid import NAMESPACE_URL, UUID, uuid5

from mentorship_kernel.domain.clock import Clock, SystemClock
from mentorship_kernel.domain.currency import CurrencyRegistry
from mentorship_kernel.domain.escrow import (
    ESCROW_TRANSITIONS,
    DisputeOutcome,
    EscrowPayment,
    GatewayOperation,
    PaymentStatus,
    TransferShare,
    has_reached,
    idempotency_reference,
)
from mentorship_kernel.domain.gateway import GatewayOutcome
from mentorship_kernel.domain.project import (
    MENTOR_APPROVAL_MILESTONE,
    STUDENT_APPROVAL_MILESTONE,
    ProjectStatus,
)
from mentorship_kernel.exceptions import GatewayFailureError, InvalidStateError
from mentorship_kernel.logging_config import get_logger
from mentorship_kernel.services.gateway_caller import GatewayCaller

logger = get_logger("services.escrow_ledger")

_ESCROW_NAMESPACE = uuid5(NAMESPACE_URL, "urn:mentorship:escrow")

# Pre-dispute statuses in which the client's money is actually held
_FUNDS_HELD = frozenset({
    PaymentStatus.ESCROWED,
    PaymentStatus.MENTOR_RELEASED,
    PaymentStatus.STUDENT_RELEASED,
})


def escrow_id_for(project_id: UUID) -> UUID:
    """Escrow payments are 1:1 with projects, so the id is derived from it."""
    return uuid5(_ESCROW_NAMESPACE, str(project_id))


def _invalid(payment: EscrowPayment, reason: str) -> InvalidStateError:
    return InvalidStateError(
        "EscrowPayment", str(payment.payment_id), payment.status.value, reason
    )


class EscrowLedger:
    """Escrow payment state machine backed by a payment gateway."""

    def __init__(self, gateway: GatewayCaller, clock: Clock | None = None):
        self._gateway = gateway
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Funding
    # ------------------------------------------------------------------

    def fund(
        self,
        project_id: UUID,
        amount: Decimal,
        currency: str,
        existing: EscrowPayment | None = None,
    ) -> EscrowPayment:
        """Charge the client and hold the funds.

        Idempotent: a payment already beyond ``pending`` is returned
        unchanged without contacting the gateway.  A pending payment re-uses
        its charge reference, so a client retry after a timeout never
        produces a second charge.
        """
        if existing is not None and existing.status != PaymentStatus.PENDING:
            logger.info(
                "escrow_fund_duplicate",
                extra={"project_id": str(project_id), "status": existing.status.value},
            )
            return existing

        if amount <= 0:
            raise InvalidStateError(
                "EscrowPayment", str(project_id), "unfunded", "funding amount must be positive"
            )
        try:
            currency = CurrencyRegistry.validate(currency)
        except ValueError as exc:
            raise InvalidStateError(
                "EscrowPayment", str(project_id), "unfunded", str(exc)
            ) from exc
        amount = CurrencyRegistry.quantize(amount, currency)

        if existing is None:
            payment_id = escrow_id_for(project_id)
            payment = EscrowPayment(
                payment_id=payment_id,
                project_id=project_id,
                amount=amount,
                currency=currency,
                charge_reference=idempotency_reference(payment_id, GatewayOperation.CHARGE),
                created_at=self._clock.now(),
            )
        else:
            payment = existing
            if payment.amount != amount or payment.currency != currency:
                raise _invalid(
                    payment,
                    f"pending charge is for {payment.amount} {payment.currency}, "
                    f"not {amount} {currency}",
                )

        reference = payment.charge_reference or idempotency_reference(
            payment.payment_id, GatewayOperation.CHARGE
        )
        self._gateway.charge(payment.amount, payment.currency, reference)
        outcome = self._gateway.confirm_charge(reference)
        return self._apply_charge_outcome(replace(payment, charge_reference=reference), outcome)

    def confirm_funding(self, payment: EscrowPayment) -> EscrowPayment:
        """Re-poll the gateway for a charge that was still pending."""
        if payment.status != PaymentStatus.PENDING:
            return payment
        if not payment.charge_reference:
            raise _invalid(payment, "no charge has been initiated")
        outcome = self._gateway.confirm_charge(payment.charge_reference)
        return self._apply_charge_outcome(payment, outcome)

    def _apply_charge_outcome(
        self, payment: EscrowPayment, outcome: GatewayOutcome
    ) -> EscrowPayment:
        if outcome == GatewayOutcome.FAILED:
            raise GatewayFailureError(
                "confirm_charge", payment.charge_reference or "", "charge was declined"
            )
        if outcome == GatewayOutcome.PENDING:
            # Reported state: stays pending until confirmed or resolved by an operator
            logger.info(
                "escrow_charge_pending",
                extra={
                    "project_id": str(payment.project_id),
                    "reference": payment.charge_reference,
                },
            )
            return payment
        return self._move(
            payment, PaymentStatus.ESCROWED, escrowed_at=self._clock.now()
        )

    # ------------------------------------------------------------------
    # Releases
    # ------------------------------------------------------------------

    def release_to_mentor(
        self,
        payment: EscrowPayment,
        project_status: ProjectStatus,
        amount: Decimal,
        recipient: str,
    ) -> EscrowPayment:
        """Pay the mentor share once the mentor-approval milestone is reached."""
        if has_reached(payment.status, PaymentStatus.MENTOR_RELEASED):
            return payment
        if payment.status != PaymentStatus.ESCROWED:
            raise _invalid(payment, "mentor share can only be released from escrowed funds")
        if project_status not in MENTOR_APPROVAL_MILESTONE:
            raise _invalid(
                payment,
                f"project status '{project_status.value}' has not reached mentor approval",
            )

        reference = payment.mentor_transfer_reference or idempotency_reference(
            payment.payment_id, GatewayOperation.MENTOR_TRANSFER
        )
        confirmed = self._transfer(amount, recipient, reference)
        return self._move(
            payment,
            PaymentStatus.MENTOR_RELEASED,
            mentor_transfer_reference=reference,
            mentor_transfer_confirmed=confirmed,
        )

    def release_to_student(
        self,
        payment: EscrowPayment,
        project_status: ProjectStatus,
        amount: Decimal,
        recipient: str,
    ) -> EscrowPayment:
        """Pay the student share; completes the payment once both shares are confirmed."""
        if has_reached(payment.status, PaymentStatus.STUDENT_RELEASED):
            return payment
        if payment.status != PaymentStatus.MENTOR_RELEASED:
            raise _invalid(payment, "student share requires the mentor share to be released first")
        if project_status not in STUDENT_APPROVAL_MILESTONE:
            raise _invalid(
                payment,
                f"project status '{project_status.value}' has not reached client approval",
            )

        reference = payment.student_transfer_reference or idempotency_reference(
            payment.payment_id, GatewayOperation.STUDENT_TRANSFER
        )
        confirmed = self._transfer(amount, recipient, reference)
        released = self._move(
            payment,
            PaymentStatus.STUDENT_RELEASED,
            student_transfer_reference=reference,
            student_transfer_confirmed=confirmed,
        )
        return self._complete_if_settled(released)

    def confirm_transfer(self, payment: EscrowPayment, share: TransferShare) -> EscrowPayment:
        """Record a late gateway confirmation for one payout share."""
        if share == TransferShare.MENTOR:
            if payment.mentor_transfer_reference is None:
                raise _invalid(payment, "mentor share has not been released")
            if not payment.mentor_transfer_confirmed:
                payment = replace(payment, mentor_transfer_confirmed=True)
        else:
            if payment.student_transfer_reference is None:
                raise _invalid(payment, "student share has not been released")
            if not payment.student_transfer_confirmed:
                payment = replace(payment, student_transfer_confirmed=True)
        return self._complete_if_settled(payment)

    def _complete_if_settled(self, payment: EscrowPayment) -> EscrowPayment:
        if (
            payment.status == PaymentStatus.STUDENT_RELEASED
            and payment.mentor_transfer_confirmed
            and payment.student_transfer_confirmed
        ):
            return self._move(payment, PaymentStatus.COMPLETED, completed_at=self._clock.now())
        return payment

    # ------------------------------------------------------------------
    # Disputes and refunds
    # ------------------------------------------------------------------

    def open_dispute(self, payment: EscrowPayment, reason: str) -> EscrowPayment:
        """Freeze the payment; all releases fail until the dispute is resolved."""
        if payment.status == PaymentStatus.DISPUTED:
            return payment
        if payment.is_terminal:
            raise _invalid(payment, "a settled payment cannot be disputed")
        return self._move(
            payment,
            PaymentStatus.DISPUTED,
            pre_dispute_status=payment.status,
            dispute_reason=reason,
        )

    def resolve_dispute(
        self,
        payment: EscrowPayment,
        outcome: DisputeOutcome,
        refund_amount: Decimal | None = None,
        refund_recipient: str | None = None,
    ) -> EscrowPayment:
        """Reinstate the pre-dispute status, or refund the client."""
        if outcome == DisputeOutcome.REFUND:
            if payment.status == PaymentStatus.REFUNDED:
                return payment
            if payment.status != PaymentStatus.DISPUTED:
                raise _invalid(payment, "only a disputed payment can be refunded through resolution")
            if payment.pre_dispute_status in _FUNDS_HELD:
                self._send_refund(payment, refund_amount, refund_recipient)
            return self._move(
                payment,
                PaymentStatus.REFUNDED,
                pre_dispute_status=None,
                refund_reference=idempotency_reference(payment.payment_id, GatewayOperation.REFUND)
                if payment.pre_dispute_status in _FUNDS_HELD else None,
                refunded_at=self._clock.now(),
            )

        if payment.status != PaymentStatus.DISPUTED:
            if payment.status == PaymentStatus.REFUNDED:
                raise _invalid(payment, "a refunded payment cannot be reinstated")
            return payment
        if payment.pre_dispute_status is None:
            raise _invalid(payment, "no pre-dispute status recorded")
        return self._move(
            payment,
            payment.pre_dispute_status,
            pre_dispute_status=None,
            dispute_reason=None,
        )

    def refund(
        self, payment: EscrowPayment, amount: Decimal, recipient: str
    ) -> EscrowPayment:
        """Return held funds to the client before any payout (cancellation)."""
        if payment.status == PaymentStatus.REFUNDED:
            return payment
        if payment.status != PaymentStatus.ESCROWED:
            raise _invalid(payment, "only escrowed funds can be refunded directly")
        self._send_refund(payment, amount, recipient)
        return self._move(
            payment,
            PaymentStatus.REFUNDED,
            refund_reference=idempotency_reference(payment.payment_id, GatewayOperation.REFUND),
            refunded_at=self._clock.now(),
        )

    @staticmethod
    def refundable_amount(
        payment: EscrowPayment, mentor_fee: Decimal, student_fee: Decimal
    ) -> Decimal:
        """Funds still held: the escrowed amount less any shares already paid out."""
        held_status = payment.pre_dispute_status or payment.status
        remaining = payment.amount
        if has_reached(held_status, PaymentStatus.MENTOR_RELEASED):
            remaining -= mentor_fee
        if has_reached(held_status, PaymentStatus.STUDENT_RELEASED):
            remaining -= student_fee
        return max(remaining, Decimal("0"))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _send_refund(
        self, payment: EscrowPayment, amount: Decimal | None, recipient: str | None
    ) -> None:
        if amount is None or recipient is None:
            raise _invalid(payment, "refund requires an amount and a recipient")
        if amount <= 0:
            return
        reference = payment.refund_reference or idempotency_reference(
            payment.payment_id, GatewayOperation.REFUND
        )
        self._transfer(amount, recipient, reference)

    def _transfer(self, amount: Decimal, recipient: str, reference: str) -> bool:
        """Returns True when the gateway confirmed the transfer synchronously."""
        outcome = self._gateway.transfer(amount, recipient, reference)
        if outcome == GatewayOutcome.FAILED:
            raise GatewayFailureError("transfer", reference, "transfer was rejected")
        return outcome == GatewayOutcome.SUCCEEDED

    def _move(self, payment: EscrowPayment, target: PaymentStatus, **changes) -> EscrowPayment:
        if target not in ESCROW_TRANSITIONS[payment.status]:
            raise _invalid(payment, f"cannot move to '{target.value}'")
        if (
            payment.status == PaymentStatus.DISPUTED
            and target != PaymentStatus.REFUNDED
            and target != payment.pre_dispute_status
        ):
            raise _invalid(payment, "a dispute can only be reinstated to its pre-dispute status")

        logger.info(
            "escrow_status_changed",
            extra={
                "project_id": str(payment.project_id),
                "from_status": payment.status.value,
                "to_status": target.value,
            },
        )
        return replace(payment, status=target, **changes)
