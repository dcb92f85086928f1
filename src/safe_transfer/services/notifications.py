"""Notification rendering and best-effort dispatch.

The orchestrator returns intents; callers hand them to ``dispatch_intents``
after the state change has been saved. Notification failures are logged and
swallowed here, so they can never undo a transition. Gateway intents are
passed back untouched for whatever drives the payment gateway.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from safe_transfer.domain.enums import IntentKind
from safe_transfer.domain.intents import Template
from safe_transfer.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable

    from safe_transfer.domain.intents import Intent
    from safe_transfer.domain.protocols import Notifier

logger = get_logger(__name__)

MESSAGE_PREVIEW_LENGTH = 100

_TEXTS = {
    Template.DEAL_INVITATION: (
        "New escrow deal invitation from {actor} for ₹{amount}. Deal ID: {deal_id}. "
        "Login to Safe Transfer app to view details."
    ),
    Template.DEAL_ACCEPTED: (
        "Deal {deal_id} accepted by {actor}. Waiting for {waiting_for} acceptance."
    ),
    Template.DEAL_FULLY_ACCEPTED: (
        "Deal {deal_id} fully accepted! Both parties have agreed. "
        "Next step: Complete KYC verification."
    ),
    Template.KYC_REMINDER: (
        "Reminder: {actor} is waiting for you to complete KYC verification for deal "
        "{deal_id}. Please complete your KYC to proceed with the transaction."
    ),
    Template.DOCUMENT_UPLOADED: "{actor} uploaded {document} for deal {deal_id}.",
    Template.DOCUMENTS_COMPLETE: (
        "All required documents for deal {deal_id} are uploaded. Next step: {next_step}."
    ),
    Template.CONTRACT_SIGNED: "{actor} signed the contract for deal {deal_id}.",
    Template.PAYMENT_DEPOSITED: (
        "₹{amount} for deal {deal_id} is now held in escrow. Please proceed with delivery."
    ),
    Template.PAYMENT_FAILED: (
        "Payment {payment_id} for deal {deal_id} failed: {reason}. "
        "We will retry automatically."
    ),
    Template.ITEM_DELIVERED: (
        "Deal {deal_id} marked as delivered. Please inspect and confirm receipt "
        "within {inspection_days} day(s)."
    ),
    Template.DEAL_COMPLETED: "Deal {deal_id} is complete.",
    Template.DISPUTE_RAISED: "A dispute was raised on deal {deal_id}: {reason}",
    Template.DISPUTE_RESOLVED: "The dispute on deal {deal_id} was resolved: {resolution}",
    Template.DEAL_CANCELLED: "Deal {deal_id} was cancelled by {actor}.",
    Template.NEW_MESSAGE: "New message from {actor} in deal {deal_id}: {preview}",
    Template.FUNDS_RELEASED: "₹{amount} for deal {deal_id} has been released to the seller.",
    Template.FUNDS_REFUNDED: "₹{amount} for deal {deal_id} has been refunded to the buyer.",
}


class _Blank(dict):
    def __missing__(self, key: str) -> str:
        return ""


def preview(text: str) -> str:
    if len(text) <= MESSAGE_PREVIEW_LENGTH:
        return text
    return text[:MESSAGE_PREVIEW_LENGTH] + "..."


def render(intent: Intent) -> str:
    """Plain-text body for a notification intent."""
    text = _TEXTS.get(intent.template, "Update on deal {deal_id}.")
    return text.format_map(_Blank(intent.payload, deal_id=intent.deal_id))


class LoggingNotifier:
    """Notifier that writes rendered notifications to the structured log.

    Stands in where no SMS/email transport is configured.
    """

    async def send(self, intent: Intent) -> None:
        logger.info(
            "notification.sent",
            recipient=intent.recipient_id,
            template=intent.template,
            channels=[str(c) for c in intent.channels],
            text=render(intent),
        )


async def dispatch_intents(notifier: Notifier, intents: Iterable[Intent]) -> list[Intent]:
    """Send every NOTIFY intent; return the gateway intents that remain.

    Never raises because of a notifier failure.
    """
    remaining: list[Intent] = []
    for intent in intents:
        if intent.kind != IntentKind.NOTIFY:
            remaining.append(intent)
            continue
        try:
            await notifier.send(intent)
        except Exception as exc:  # noqa: BLE001 - delivery is best-effort
            logger.warning(
                "notification.dispatch_failed",
                deal_id=intent.deal_id,
                recipient=intent.recipient_id,
                template=intent.template,
                error=str(exc),
            )
    return remaining
