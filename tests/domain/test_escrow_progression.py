"""Escrow payment status progression and idempotency references."""

from uuid import uuid4

from mentorship_kernel.domain.escrow import (
    ESCROW_TRANSITIONS,
    PAYMENT_PROGRESSION,
    TERMINAL_PAYMENT_STATUSES,
    GatewayOperation,
    PaymentStatus,
    has_reached,
    idempotency_reference,
)


class TestEscrowTransitions:
    def test_terminal_statuses_are_dead_ends(self):
        for status in TERMINAL_PAYMENT_STATUSES:
            assert ESCROW_TRANSITIONS[status] == frozenset()

    def test_forward_only_along_release_path(self):
        for index, status in enumerate(PAYMENT_PROGRESSION):
            for previous in PAYMENT_PROGRESSION[:index]:
                assert previous not in ESCROW_TRANSITIONS[status]

    def test_refund_only_from_escrowed_or_disputed(self):
        sources = {s for s, targets in ESCROW_TRANSITIONS.items() if PaymentStatus.REFUNDED in targets}
        assert sources == {PaymentStatus.ESCROWED, PaymentStatus.DISPUTED}

    def test_every_live_status_can_be_disputed(self):
        for status in PAYMENT_PROGRESSION:
            if status in TERMINAL_PAYMENT_STATUSES:
                continue
            assert PaymentStatus.DISPUTED in ESCROW_TRANSITIONS[status]


class TestHasReached:
    def test_same_status(self):
        assert has_reached(PaymentStatus.ESCROWED, PaymentStatus.ESCROWED)

    def test_further_along(self):
        assert has_reached(PaymentStatus.COMPLETED, PaymentStatus.MENTOR_RELEASED)

    def test_not_yet(self):
        assert not has_reached(PaymentStatus.PENDING, PaymentStatus.ESCROWED)

    def test_off_path_statuses_only_match_themselves(self):
        assert has_reached(PaymentStatus.DISPUTED, PaymentStatus.DISPUTED)
        assert not has_reached(PaymentStatus.DISPUTED, PaymentStatus.ESCROWED)
        assert not has_reached(PaymentStatus.REFUNDED, PaymentStatus.PENDING)


class TestIdempotencyReference:
    def test_deterministic(self):
        payment_id = uuid4()
        assert idempotency_reference(payment_id, GatewayOperation.CHARGE) == idempotency_reference(
            payment_id, GatewayOperation.CHARGE
        )

    def test_distinct_per_operation(self):
        payment_id = uuid4()
        references = {idempotency_reference(payment_id, op) for op in GatewayOperation}
        assert len(references) == len(GatewayOperation)

    def test_format(self):
        payment_id = uuid4()
        assert idempotency_reference(payment_id, GatewayOperation.REFUND) == (
            f"esc-{payment_id.hex}-refund"
        )
