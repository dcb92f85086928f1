"""External effects requested by a transition.

Transitions never talk to the outside world. They return ``Intent`` records
that the caller executes after the entity has been saved: notifications go
to the Notifier, payouts and refunds to whatever drives the payment gateway.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from safe_transfer.domain.enums import IntentKind, NotificationChannel

if TYPE_CHECKING:
    from decimal import Decimal

    from safe_transfer.domain.models import Payment


class Template:
    """Notification template names understood by the notifier."""

    DEAL_INVITATION = "deal_invitation"
    DEAL_ACCEPTED = "deal_accepted"
    DEAL_FULLY_ACCEPTED = "deal_fully_accepted"
    KYC_REMINDER = "kyc_reminder"
    DOCUMENT_UPLOADED = "document_uploaded"
    DOCUMENTS_COMPLETE = "documents_complete"
    CONTRACT_SIGNED = "contract_signed"
    PAYMENT_DEPOSITED = "payment_deposited"
    PAYMENT_FAILED = "payment_failed"
    ITEM_DELIVERED = "item_delivered"
    DEAL_COMPLETED = "deal_completed"
    DISPUTE_RAISED = "dispute_raised"
    DISPUTE_RESOLVED = "dispute_resolved"
    DEAL_CANCELLED = "deal_cancelled"
    NEW_MESSAGE = "new_message"
    FUNDS_RELEASED = "funds_released"
    FUNDS_REFUNDED = "funds_refunded"


DEFAULT_CHANNELS = (NotificationChannel.SMS, NotificationChannel.EMAIL)


@dataclass(frozen=True)
class Intent:
    kind: IntentKind
    deal_id: str
    template: str | None = None
    recipient_id: str | None = None
    channels: tuple[NotificationChannel, ...] = ()
    payload: dict[str, Any] = field(default_factory=dict)


def notify(recipient_id: str, template: str, deal_id: str, **payload: Any) -> Intent:
    return Intent(
        kind=IntentKind.NOTIFY,
        deal_id=deal_id,
        template=template,
        recipient_id=recipient_id,
        channels=DEFAULT_CHANNELS,
        payload=payload,
    )


def payout(payment: Payment) -> Intent:
    """Ask the gateway to pay the held amount out to the payee."""
    return Intent(
        kind=IntentKind.GATEWAY_PAYOUT,
        deal_id=payment.deal_number,
        recipient_id=payment.payee_id,
        payload={
            "payment_id": payment.payment_id,
            "amount": str(payment.amount),
            "currency": payment.currency,
            "release_reason": str(payment.escrow.release_reason),
        },
    )


def refund(payment: Payment, amount: Decimal) -> Intent:
    """Ask the gateway to return ``amount`` to the payer."""
    return Intent(
        kind=IntentKind.GATEWAY_REFUND,
        deal_id=payment.deal_number,
        recipient_id=payment.payer_id,
        payload={
            "payment_id": payment.payment_id,
            "gateway_transaction_id": payment.gateway.transaction_id,
            "amount": str(amount),
            "currency": payment.currency,
        },
    )
