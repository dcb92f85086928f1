"""Tests for payment lifecycle operations: capture, retry, release and refund."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest
from factories import ADMIN, BUYER, SELLER, T0, deal_at_payment_pending, delivered_deal

from safe_transfer.domain import payments
from safe_transfer.domain.enums import PaymentMethod, PaymentStatus, ReleaseReason
from safe_transfer.domain.exceptions import (
    AlreadyCaptured,
    AlreadyRefunded,
    InvalidTransition,
    ValidationError,
)
from safe_transfer.domain.payments import RetryPolicy


def _submitted(method: PaymentMethod = PaymentMethod.UPI):
    deal = deal_at_payment_pending()
    payment = payments.new_payment(sequence=7, deal=deal, method=method, now=T0)
    payments.submit_to_gateway(payment, "order_7", T0)
    return payment


def _captured():
    payment = _submitted()
    payments.capture(payment, "pay_7", T0)
    return payment


class TestNewPayment:
    def test_fields(self) -> None:
        payment = _submitted()
        assert payment.payment_id == "PAY00000007"
        assert payment.payer_id == BUYER
        assert payment.payee_id == SELLER
        assert payment.status == PaymentStatus.PENDING
        assert payment.gateway.order_id == "order_7"

    def test_total_includes_every_fee(self) -> None:
        payment = _submitted()
        assert payment.fees.total_fees == Decimal("7392.70")
        assert payment.total_amount() == Decimal("257392.70")

    def test_unknown_method(self) -> None:
        with pytest.raises(ValidationError):
            payments.new_payment(
                sequence=1, deal=deal_at_payment_pending(), method="barter", now=T0
            )


class TestCapture:
    def test_capture_starts_escrow_hold(self) -> None:
        payment = _captured()
        assert payment.status == PaymentStatus.CAPTURED
        assert payment.gateway.transaction_id == "pay_7"
        assert payment.escrow.hold_start_date == T0
        assert payment.is_in_escrow()

    def test_replay_matches_existing(self) -> None:
        payment = _captured()
        with pytest.raises(AlreadyCaptured) as exc_info:
            payments.capture(payment, "pay_7", T0)
        assert exc_info.value.matches_existing is True

    def test_conflicting_capture(self) -> None:
        payment = _captured()
        with pytest.raises(AlreadyCaptured) as exc_info:
            payments.capture(payment, "pay_other", T0)
        assert exc_info.value.matches_existing is False

    def test_capture_requires_submission(self) -> None:
        deal = deal_at_payment_pending()
        payment = payments.new_payment(sequence=1, deal=deal, method="upi", now=T0)
        with pytest.raises(InvalidTransition):
            payments.capture(payment, "pay_1", T0)
        assert payment.captured_at is None


class TestRetry:
    def test_backoff_doubles_and_caps(self) -> None:
        policy = RetryPolicy()
        assert policy.backoff(0) == timedelta(minutes=5)
        assert policy.backoff(1) == timedelta(minutes=10)
        assert policy.backoff(2) == timedelta(minutes=20)
        assert policy.backoff(10) == timedelta(hours=6)

    def test_schedule_and_retry(self) -> None:
        payment = _submitted()
        payments.fail(payment, "Bank declined", "BAD_REQUEST", T0)
        due = payments.schedule_retry(payment, T0)
        assert due == T0 + timedelta(minutes=5)
        assert payment.retry_count == 1

        with pytest.raises(InvalidTransition):
            payments.retry(payment, T0 + timedelta(minutes=4))

        payments.retry(payment, due)
        assert payment.status == PaymentStatus.PENDING
        assert payment.next_retry_at is None

    def test_retries_exhausted(self) -> None:
        payment = _submitted()
        now = T0
        for _ in range(payment.max_retries):
            payments.fail(payment, "Timeout", None, now)
            now = payments.schedule_retry(payment, now)
            payments.retry(payment, now)

        payments.fail(payment, "Timeout", None, now)
        assert not payment.needs_retry(now)
        with pytest.raises(InvalidTransition):
            payments.schedule_retry(payment, now)

    @pytest.mark.parametrize(
        ("scheduled", "elapsed_minutes", "expected"),
        [
            (False, 0, True),
            (True, 5, True),
            (True, 60, True),
            (True, 4, False),
        ],
        ids=["unscheduled", "due", "overdue", "not_yet_due"],
    )
    def test_needs_retry(self, scheduled: bool, elapsed_minutes: int, expected: bool) -> None:
        payment = _submitted()
        assert not payment.needs_retry(T0)

        payments.fail(payment, "Timeout", None, T0)
        if scheduled:
            payments.schedule_retry(payment, T0)

        assert payment.retry_count < payment.max_retries
        assert payment.needs_retry(T0 + timedelta(minutes=elapsed_minutes)) is expected


class TestRelease:
    def test_release_ends_hold(self) -> None:
        payment = _captured()
        payments.release(payment, BUYER, ReleaseReason.BUYER_CONFIRMED, T0)
        assert not payment.is_in_escrow()
        assert payment.status == PaymentStatus.CAPTURED
        assert payment.escrow.release_reason == ReleaseReason.BUYER_CONFIRMED

        with pytest.raises(InvalidTransition):
            payments.release(payment, BUYER, ReleaseReason.BUYER_CONFIRMED, T0)

    def test_timeout_release_needs_elapsed_inspection(self) -> None:
        deal, payment = delivered_deal()
        with pytest.raises(InvalidTransition):
            payments.release(payment, "SYSTEM", ReleaseReason.TIMEOUT, T0, deal)
        with pytest.raises(InvalidTransition):
            payments.release(payment, "SYSTEM", ReleaseReason.TIMEOUT, T0 + timedelta(days=5))

        payments.release(payment, "SYSTEM", ReleaseReason.TIMEOUT, T0 + timedelta(days=3), deal)
        assert payment.escrow.release_date is not None

    def test_no_refund_after_release(self) -> None:
        payment = _captured()
        payments.release(payment, ADMIN, ReleaseReason.ADMIN_RELEASE, T0)
        with pytest.raises(InvalidTransition):
            payments.refund(payment, ADMIN, payment.amount, "Too late", T0)


class TestRefund:
    def test_full_refund(self) -> None:
        payment = _captured()
        assert payments.refund(payment, ADMIN, payment.amount, "Item not delivered", T0) is True
        assert payment.status == PaymentStatus.REFUNDED
        assert payment.refund.refund_amount == payment.amount

    def test_partial_refund(self) -> None:
        payment = _captured()
        assert payments.refund(payment, ADMIN, "50000", "Minor damage", T0, "rfnd_1") is False
        assert payment.status == PaymentStatus.PARTIALLY_REFUNDED

    def test_second_refund_raises(self) -> None:
        payment = _captured()
        payments.refund(payment, ADMIN, "50000", "Minor damage", T0, "rfnd_1")
        trail = len(payment.audit_trail)

        with pytest.raises(AlreadyRefunded) as exc_info:
            payments.refund(payment, ADMIN, "50000", "Minor damage", T0, "rfnd_1")
        assert exc_info.value.matches_existing is True

        with pytest.raises(AlreadyRefunded) as exc_info:
            payments.refund(payment, ADMIN, "60000", "More damage", T0, "rfnd_2")
        assert exc_info.value.matches_existing is False
        assert len(payment.audit_trail) == trail

    @pytest.mark.parametrize("amount", ["0", "-1", "250000.01"])
    def test_amount_bounds(self, amount: str) -> None:
        payment = _captured()
        with pytest.raises(ValidationError):
            payments.refund(payment, ADMIN, amount, "Bad amount", T0)
        assert payment.status == PaymentStatus.CAPTURED

    def test_refund_requires_capture(self) -> None:
        payment = _submitted()
        with pytest.raises(InvalidTransition):
            payments.refund(payment, ADMIN, "1000", "Not captured", T0)

    def test_disputed_deposit_not_refundable_until_closed(self) -> None:
        payment = _captured()
        assert payment.can_refund()

        payments.mark_disputed(payment, BUYER, T0)
        assert not payment.can_refund()
        with pytest.raises(InvalidTransition):
            payments.refund(payment, ADMIN, payment.amount, "Still disputed", T0)
        assert payment.refund.refund_date is None

        payments.close_dispute(payment, ADMIN, T0)
        assert payments.refund(payment, ADMIN, payment.amount, "Dispute upheld", T0) is True
        assert not payment.can_refund()


class TestCancel:
    def test_open_payment_cancelled(self) -> None:
        payment = _submitted()
        payments.cancel(payment, BUYER, "Switching to card", T0)
        assert payment.status == PaymentStatus.CANCELLED
        assert payment.cancelled_at == T0
        assert payment.audit_trail[-1].details == "Switching to card"

    def test_captured_payment_cannot_be_cancelled(self) -> None:
        payment = _captured()
        with pytest.raises(InvalidTransition):
            payments.cancel(payment, BUYER, "Too late", T0)
        assert payment.status == PaymentStatus.CAPTURED
