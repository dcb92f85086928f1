"""Payment lifecycle operations: capture, escrow hold, release, refund, retry.

Same contract as ``deals``: each function validates first, then mutates the
Payment in place and appends one audit entry per status change or recorded
action. Escrow release does not change the payment status; it stamps the
``escrow`` sub-record, after which ``is_in_escrow()`` turns false.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from safe_transfer.domain import audit
from safe_transfer.domain.audit import SYSTEM_ACTOR
from safe_transfer.domain.deals import has_open_dispute
from safe_transfer.domain.enums import (
    GatewayProvider,
    PaymentMethod,
    PaymentStatus,
    PaymentType,
    ReleaseReason,
)
from safe_transfer.domain.exceptions import (
    AlreadyCaptured,
    AlreadyRefunded,
    InvalidTransition,
    ValidationError,
)
from safe_transfer.domain.fees import gateway_fee, to_money
from safe_transfer.domain.models import GatewayDetails, Payment, PaymentFees, RefundDetails
from safe_transfer.domain.state_machine import PaymentStateMachine, fire

if TYPE_CHECKING:
    from datetime import datetime
    from decimal import Decimal

    from safe_transfer.domain.models import Deal

_POST_CAPTURE = frozenset(
    {
        PaymentStatus.CAPTURED,
        PaymentStatus.REFUNDED,
        PaymentStatus.PARTIALLY_REFUNDED,
        PaymentStatus.DISPUTED,
    }
)


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff without jitter: ``min(base * 2**n, max)`` seconds."""

    base_delay_seconds: int = 300
    max_delay_seconds: int = 21600

    def backoff(self, retry_count: int) -> timedelta:
        delay = min(self.base_delay_seconds * 2**retry_count, self.max_delay_seconds)
        return timedelta(seconds=delay)


def format_payment_id(sequence: int, prefix: str = "PAY", width: int = 8) -> str:
    return f"{prefix}{sequence:0{width}d}"


def _guard(payment: Payment, event: str) -> PaymentStatus:
    return PaymentStatus(fire(PaymentStateMachine, payment.status, event))


def new_payment(
    *,
    sequence: int,
    deal: Deal,
    method: PaymentMethod | str,
    now: datetime,
    provider: GatewayProvider | str = GatewayProvider.RAZORPAY,
    max_retries: int = 3,
    id_prefix: str = "PAY",
    id_width: int = 8,
) -> Payment:
    """Build the escrow deposit for ``deal``, paid by the buyer to the seller.

    Fees are the deal's frozen escrow fee plus the gateway fee for ``method``,
    so ``total_amount()`` equals ``fees.total_transaction_cost(...).total_amount``
    computed at deal creation.
    """
    try:
        method = PaymentMethod(method)
    except ValueError as err:
        raise ValidationError.for_field(
            "payment_method", f"Invalid payment method: {method!r}"
        ) from err

    processing = gateway_fee(deal.amount, method)
    payment = Payment(
        id=uuid.uuid4(),
        payment_id=format_payment_id(sequence, id_prefix, id_width),
        deal_id=deal.id,
        deal_number=deal.deal_id,
        payer_id=deal.buyer_id,
        payee_id=deal.seller_id,
        amount=deal.amount,
        payment_type=PaymentType.ESCROW_DEPOSIT,
        payment_method=method,
        initiated_at=now,
        created_at=now,
        updated_at=now,
        currency=deal.terms.currency,
        gateway=GatewayDetails(
            provider=GatewayProvider(provider),
            gateway_fee=processing.base_fee,
            gst=processing.gst,
        ),
        fees=PaymentFees(
            escrow_fee=deal.escrow_fee,
            escrow_fee_percentage=deal.escrow_fee_percentage,
            processing_fee=processing.base_fee,
            gst=deal.escrow_fee_gst + processing.gst,
            total_fees=deal.escrow_fee_total + processing.total_fee,
        ),
        max_retries=max_retries,
    )
    audit.append(
        payment,
        action="Payment initiated",
        performed_by=deal.buyer_id,
        now=now,
        details=f"₹{payment.amount} via {method}",
        new_status=PaymentStatus.INITIATED,
    )
    return payment


def submit_to_gateway(payment: Payment, order_id: str | None, now: datetime) -> None:
    new_status = _guard(payment, "submit")
    payment.gateway.order_id = order_id
    audit.change_status(
        payment,
        new_status,
        SYSTEM_ACTOR,
        now,
        action="Payment submitted to gateway",
        details=order_id or "",
    )


def mark_processing(payment: Payment, now: datetime) -> None:
    new_status = _guard(payment, "process")
    payment.processed_at = now
    audit.change_status(payment, new_status, SYSTEM_ACTOR, now, action="Payment processing")


def capture(payment: Payment, gateway_ref: str, now: datetime) -> None:
    """Record the gateway's capture confirmation and start the escrow hold.

    Raises:
        AlreadyCaptured: The payment was captured before. ``matches_existing``
            tells a webhook replay (same reference) from a conflicting one.
    """
    if payment.status in _POST_CAPTURE or payment.captured_at is not None:
        raise AlreadyCaptured(
            payment.payment_id,
            gateway_ref,
            matches_existing=gateway_ref == payment.gateway.transaction_id,
        )
    if not gateway_ref:
        raise ValidationError.for_field("gateway_ref", "Gateway reference is required")
    new_status = _guard(payment, "capture")

    payment.gateway.transaction_id = gateway_ref
    payment.captured_at = now
    if payment.payment_type == PaymentType.ESCROW_DEPOSIT:
        payment.escrow.hold_start_date = now
    audit.change_status(
        payment, new_status, SYSTEM_ACTOR, now, action="Payment captured", details=gateway_ref
    )


def fail(payment: Payment, reason: str, code: str | None, now: datetime) -> None:
    new_status = _guard(payment, "fail")
    payment.failed_at = now
    payment.failure_reason = reason
    payment.failure_code = code
    audit.change_status(
        payment,
        new_status,
        SYSTEM_ACTOR,
        now,
        action="Payment failed",
        details=f"{code}: {reason}" if code else reason,
    )


def schedule_retry(
    payment: Payment,
    now: datetime,
    policy: RetryPolicy | None = None,
) -> datetime:
    """Set ``next_retry_at`` for a failed payment and count the attempt.

    ``next_retry_at`` is advisory: an external scheduler reads it and calls
    ``retry`` once it has passed.

    Raises:
        InvalidTransition: Not failed, or retries exhausted.
    """
    policy = policy or RetryPolicy()
    if payment.status != PaymentStatus.FAILED or payment.retry_count >= payment.max_retries:
        raise InvalidTransition(payment.status, "schedule_retry")

    next_retry_at = now + policy.backoff(payment.retry_count)
    payment.retry_count += 1
    payment.next_retry_at = next_retry_at
    audit.append(
        payment,
        action="Retry scheduled",
        performed_by=SYSTEM_ACTOR,
        now=now,
        details=f"Attempt {payment.retry_count} of {payment.max_retries} "
        f"at {next_retry_at.isoformat()}",
    )
    return next_retry_at


def retry(payment: Payment, now: datetime) -> None:
    """Resubmit a failed payment whose scheduled retry has come due."""
    if (
        payment.status != PaymentStatus.FAILED
        or payment.next_retry_at is None
        or payment.next_retry_at > now
    ):
        raise InvalidTransition(payment.status, "retry")
    new_status = _guard(payment, "retry")
    payment.next_retry_at = None
    audit.change_status(
        payment,
        new_status,
        SYSTEM_ACTOR,
        now,
        action="Payment retried",
        details=f"Attempt {payment.retry_count} of {payment.max_retries}",
    )


def release(
    payment: Payment,
    actor_id: str,
    reason: ReleaseReason | str,
    now: datetime,
    deal: Deal | None = None,
) -> None:
    """Release held funds to the payee.

    A ``timeout`` release needs the owning ``deal``: it is only valid once the
    inspection period after delivery has passed with no open dispute.
    """
    try:
        reason = ReleaseReason(reason)
    except ValueError as err:
        raise ValidationError.for_field("reason", f"Invalid release reason: {reason!r}") from err
    if not payment.is_in_escrow():
        raise InvalidTransition(payment.status, "release")
    if reason == ReleaseReason.TIMEOUT and (
        deal is None
        or deal.inspection_deadline is None
        or now < deal.inspection_deadline
        or has_open_dispute(deal)
    ):
        raise InvalidTransition(payment.status, "release")

    payment.escrow.hold_end_date = now
    payment.escrow.release_date = now
    payment.escrow.released_by = actor_id
    payment.escrow.release_reason = reason
    audit.append(
        payment,
        action="Funds released from escrow",
        performed_by=actor_id,
        now=now,
        details=str(reason),
    )


def refund_matches(
    payment: Payment,
    amount: Decimal | int | str | float,
    refund_transaction_id: str | None,
) -> bool:
    """True when a recorded refund has this amount and transaction id."""
    return (
        payment.refund.refund_date is not None
        and to_money(amount) == payment.refund.refund_amount
        and refund_transaction_id == payment.refund.refund_transaction_id
    )


def refund(
    payment: Payment,
    actor_id: str,
    amount: Decimal | int | str | float,
    reason: str,
    now: datetime,
    refund_transaction_id: str | None = None,
) -> bool:
    """Refund a captured escrow deposit, fully or in part, exactly once.

    Returns True for a full refund.

    Raises:
        AlreadyRefunded: A refund was already recorded. ``matches_existing``
            is True when amount and transaction id are identical.
        ValidationError: Amount not positive or above the payment amount.
        InvalidTransition: Not a captured escrow deposit, or already released.
    """
    money = to_money(amount)
    if payment.refund.refund_date is not None:
        raise AlreadyRefunded(
            payment.payment_id,
            matches_existing=refund_matches(payment, money, refund_transaction_id),
        )
    if money <= 0 or money > payment.amount:
        raise ValidationError.for_field(
            "amount", f"Refund must be between ₹0.01 and ₹{payment.amount}"
        )
    if not payment.can_refund():
        raise InvalidTransition(payment.status, "refund")

    full = money == payment.amount
    new_status = _guard(payment, "refund_full" if full else "refund_partial")

    payment.refund = RefundDetails(
        refund_amount=money,
        refund_reason=reason,
        refund_date=now,
        refund_transaction_id=refund_transaction_id,
        refunded_by=actor_id,
    )
    payment.refunded_at = now
    payment.escrow.hold_end_date = now
    audit.change_status(
        payment,
        new_status,
        actor_id,
        now,
        action="Payment refunded" if full else "Payment partially refunded",
        details=f"₹{money}: {reason}",
    )
    return full


def mark_disputed(payment: Payment, actor_id: str, now: datetime) -> None:
    new_status = _guard(payment, "dispute")
    audit.change_status(payment, new_status, actor_id, now, action="Payment disputed")


def close_dispute(payment: Payment, actor_id: str, now: datetime) -> None:
    new_status = _guard(payment, "dispute_closed")
    audit.change_status(payment, new_status, actor_id, now, action="Payment dispute closed")


def cancel(payment: Payment, actor_id: str, reason: str, now: datetime) -> None:
    new_status = _guard(payment, "cancel")
    payment.cancelled_at = now
    audit.change_status(
        payment, new_status, actor_id, now, action="Payment cancelled", details=reason
    )
