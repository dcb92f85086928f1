"""Escrow Orchestrator — the single entry point for deal and payment changes.

This is the application layer that coordinates between:
    - AuthorizationGate (who may do what)
    - Deal / Payment transition functions (state machine + audit trail)
    - Repositories (optimistic-versioned persistence)

Both the REST routes and any background scheduler call into this service,
ensuring a single source of truth for all business rules.

Every mutation runs as: load -> external reads (profiles, document store)
-> pure transition on a copy -> save with a version check. A lost version
check reloads and reapplies the transition, up to
``settings.concurrency_max_attempts`` times. Notifications and gateway calls
are never made here; they come back as intents in ``OrchestratorResult``.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

from safe_transfer.config import Settings, get_settings
from safe_transfer.domain import authorization, deals, intents
from safe_transfer.domain import payments as payment_ops
from safe_transfer.domain.audit import SYSTEM_ACTOR
from safe_transfer.domain.documents import find_slot
from safe_transfer.domain.enums import (
    DealAction,
    DealStatus,
    DisputeOutcome,
    PartyRole,
    PaymentStatus,
    ReleaseReason,
)
from safe_transfer.domain.exceptions import (
    AlreadyCaptured,
    AlreadyRefunded,
    ConcurrencyConflict,
    DealNotFound,
    InvalidTransition,
    PaymentNotFound,
    StaleVersionError,
    Unauthorized,
    ValidationError,
)
from safe_transfer.domain.fees import to_money
from safe_transfer.domain.intents import Template
from safe_transfer.domain.models import DocumentMeta, UserProfile
from safe_transfer.logging_config import escrow_context, get_logger
from safe_transfer.services.notifications import preview

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from safe_transfer.domain.enums import Category, DeliveryMethod, PaymentMethod
    from safe_transfer.domain.exceptions import GatewayFailure
    from safe_transfer.domain.intents import Intent
    from safe_transfer.domain.models import Deal, Payment
    from safe_transfer.domain.protocols import (
        Clock,
        DealRepository,
        DocumentStore,
        PaymentRepository,
        SequenceGenerator,
        UserDirectory,
    )

logger = get_logger(__name__)

_OPEN_PAYMENT_STATUSES = frozenset(
    {PaymentStatus.INITIATED, PaymentStatus.PENDING, PaymentStatus.PROCESSING}
)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CreateDeal:
    title: str
    description: str
    category: Category | str
    amount: Decimal | int | str
    delivery_method: DeliveryMethod | str
    inspection_period_days: int
    role: PartyRole | str
    counterparty_id: str
    subcategory: str = ""
    additional_terms: str = ""


@dataclass(frozen=True)
class AcceptDeal:
    deal_id: str


@dataclass(frozen=True)
class UploadDocument:
    """A document for one checklist slot.

    Either ``file_url`` points at an already stored file, or ``content`` is
    handed to the DocumentStore first.
    """

    deal_id: str
    slot: str
    file_name: str
    file_url: str | None = None
    content: bytes | None = None
    file_size: int | None = None
    mime_type: str | None = None


@dataclass(frozen=True)
class SignContract:
    deal_id: str


@dataclass(frozen=True)
class DepositPayment:
    deal_id: str
    method: PaymentMethod | str
    order_id: str | None = None
    gateway_ref: str | None = None


@dataclass(frozen=True)
class GatewayCaptured:
    gateway_ref: str
    payment_id: str | None = None
    order_id: str | None = None


@dataclass(frozen=True)
class GatewayFailed:
    payment_id: str
    reason: str
    code: str | None = None

    @classmethod
    def from_error(cls, payment_id: str, error: GatewayFailure) -> GatewayFailed:
        return cls(payment_id=payment_id, reason=error.message, code=error.failure_code)


@dataclass(frozen=True)
class RetryPayment:
    payment_id: str


@dataclass(frozen=True)
class CancelPayment:
    payment_id: str
    reason: str = ""


@dataclass(frozen=True)
class StartDelivery:
    deal_id: str


@dataclass(frozen=True)
class MarkDelivered:
    deal_id: str


@dataclass(frozen=True)
class ConfirmReceipt:
    deal_id: str
    rating: int | None = None
    feedback: str | None = None


@dataclass(frozen=True)
class RaiseDispute:
    deal_id: str
    reason: str
    description: str = ""


@dataclass(frozen=True)
class ResolveDispute:
    deal_id: str
    outcome: DisputeOutcome | str
    resolution: str
    refund_amount: Decimal | int | str | None = None
    refund_transaction_id: str | None = None


@dataclass(frozen=True)
class CancelDeal:
    deal_id: str
    reason: str = ""


@dataclass(frozen=True)
class PostMessage:
    deal_id: str
    text: str


@dataclass(frozen=True)
class SendKycReminder:
    deal_id: str


@dataclass(frozen=True)
class KycStatusChanged:
    deal_id: str


@dataclass(frozen=True)
class InspectionTimeout:
    deal_id: str


@dataclass(frozen=True)
class AdminRelease:
    deal_id: str


@dataclass(frozen=True)
class RefundPayment:
    deal_id: str
    amount: Decimal | int | str
    reason: str
    refund_transaction_id: str | None = None


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OrchestratorResult:
    deal: Deal
    payment: Payment | None = None
    intents: tuple[Intent, ...] = ()


@dataclass(frozen=True)
class DealView:
    """A deal as seen by one user: next step, progress and what they may do."""

    deal: Deal
    role: PartyRole | None
    next_action: deals.NextAction
    progress: int
    capabilities: dict[str, bool] = field(default_factory=dict)


_HANDLERS: dict[type, str] = {}


def _handles(command_type: type) -> Callable:
    def register(method: Callable) -> Callable:
        _HANDLERS[command_type] = method.__name__
        return method

    return register


class EscrowOrchestrator:
    """Drives deals and their payments through their lifecycles."""

    def __init__(
        self,
        *,
        deals: DealRepository,
        payments: PaymentRepository,
        users: UserDirectory,
        sequences: SequenceGenerator,
        clock: Clock,
        documents: DocumentStore | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._deals = deals
        self._payments = payments
        self._users = users
        self._sequences = sequences
        self._clock = clock
        self._documents = documents
        self._settings = settings or get_settings()
        self._retry_policy = payment_ops.RetryPolicy(
            base_delay_seconds=self._settings.retry_base_delay_seconds,
            max_delay_seconds=self._settings.retry_max_delay_seconds,
        )

    async def apply(self, command: Any, actor_id: str = SYSTEM_ACTOR) -> OrchestratorResult:
        """Dispatch a command object to its handler."""
        name = _HANDLERS.get(type(command))
        if name is None:
            raise TypeError(f"Unsupported command: {type(command).__name__}")
        with escrow_context(command, actor_id):
            return await getattr(self, name)(command, actor_id)

    # ------------------------------------------------------------------
    # Deal creation & acceptance
    # ------------------------------------------------------------------

    @_handles(CreateDeal)
    async def create_deal(self, command: CreateDeal, actor_id: str) -> OrchestratorResult:
        """Create a deal in ``created`` with its escrow fee frozen."""
        now = self._clock.now()
        initiator = await self._profile(actor_id)
        sequence = await self._sequences.next_value("deal")

        deal = deals.new_deal(
            sequence=sequence,
            initiator_id=actor_id,
            initiator_role=command.role,
            counterparty_id=command.counterparty_id,
            title=command.title,
            description=command.description,
            category=command.category,
            amount=command.amount,
            delivery_method=command.delivery_method,
            inspection_period_days=command.inspection_period_days,
            subcategory=command.subcategory,
            additional_terms=command.additional_terms,
            party_type=initiator.party_type,
            now=now,
            id_prefix=self._settings.deal_id_prefix,
            id_width=self._settings.id_sequence_width,
        )
        deal = await self._deals.add(deal)

        logger.info(
            "deal.created",
            deal_id=deal.deal_id,
            amount=str(deal.amount),
            category=str(deal.category),
            escrow_fee=str(deal.escrow_fee),
        )
        invitation = intents.notify(
            command.counterparty_id,
            Template.DEAL_INVITATION,
            deal.deal_id,
            actor=initiator.label,
            amount=str(deal.amount),
        )
        return OrchestratorResult(deal=deal, intents=(invitation,))

    @_handles(AcceptDeal)
    async def accept_deal(self, command: AcceptDeal, actor_id: str) -> OrchestratorResult:
        """Record one party's acceptance; idempotent per party."""
        now = self._clock.now()
        actor = await self._profile(actor_id)
        seller = await self._seller_of(command.deal_id)

        def change(deal: Deal) -> list[Intent]:
            if not deals.accept(deal, actor_id, now):
                return []
            counterparty = deal.counterparty_of(actor_id)
            if deal.status == DealStatus.CREATED:
                return [
                    intents.notify(
                        counterparty,
                        Template.DEAL_ACCEPTED,
                        deal.deal_id,
                        actor=actor.label,
                        waiting_for=str(deal.role_of(counterparty)),
                    )
                ]
            entered = deals.advance_gating(deal, seller.kyc_status, now)
            return [
                intents.notify(counterparty, Template.DEAL_FULLY_ACCEPTED, deal.deal_id),
                *self._gating_intents(deal, entered),
            ]

        deal, out = await self._mutate_deal(command.deal_id, change)
        logger.info(
            "deal.accepted",
            deal_id=deal.deal_id,
            actor=actor_id,
            status=str(deal.status),
            changed=bool(out),
        )
        return OrchestratorResult(deal=deal, intents=tuple(out))

    # ------------------------------------------------------------------
    # KYC & documents
    # ------------------------------------------------------------------

    @_handles(KycStatusChanged)
    async def kyc_status_changed(
        self, command: KycStatusChanged, actor_id: str
    ) -> OrchestratorResult:
        """Re-run the KYC/document gates after a seller's KYC verdict changed."""
        now = self._clock.now()
        seller = await self._seller_of(command.deal_id)

        def change(deal: Deal) -> list[Intent]:
            entered = deals.advance_gating(deal, seller.kyc_status, now)
            return self._gating_intents(deal, entered)

        deal, out = await self._mutate_deal(command.deal_id, change)
        logger.info(
            "deal.kyc_rechecked",
            deal_id=deal.deal_id,
            kyc_status=str(seller.kyc_status),
            status=str(deal.status),
        )
        return OrchestratorResult(deal=deal, intents=tuple(out))

    async def refresh_kyc_for_user(self, user_id: str) -> list[OrchestratorResult]:
        """Apply KycStatusChanged to every gated deal where ``user_id`` sells."""
        results = []
        for deal in await self._deals.list_for_user(user_id):
            if deal.seller_id == user_id and deal.status in (
                DealStatus.ACCEPTED,
                DealStatus.KYC_PENDING,
            ):
                results.append(await self.apply(KycStatusChanged(deal.deal_id)))
        return results

    @_handles(SendKycReminder)
    async def send_kyc_reminder(
        self, command: SendKycReminder, actor_id: str
    ) -> OrchestratorResult:
        now = self._clock.now()
        actor = await self._profile(actor_id)
        seller = await self._seller_of(command.deal_id)

        def change(deal: Deal) -> list[Intent]:
            deals.record_kyc_reminder(deal, actor_id, seller.kyc_status, seller.label, now)
            return [
                intents.notify(
                    deal.seller_id, Template.KYC_REMINDER, deal.deal_id, actor=actor.label
                )
            ]

        deal, out = await self._mutate_deal(command.deal_id, change)
        logger.info("deal.kyc_reminder_sent", deal_id=deal.deal_id, seller=deal.seller_id)
        return OrchestratorResult(deal=deal, intents=tuple(out))

    @_handles(UploadDocument)
    async def upload_document(self, command: UploadDocument, actor_id: str) -> OrchestratorResult:
        """Attach a document to a slot and re-run the document gate."""
        now = self._clock.now()
        actor = await self._profile(actor_id)
        current = await self._load_deal(command.deal_id)
        seller = await self._profile(current.seller_id)

        file_url = command.file_url
        file_size = command.file_size
        if command.content is not None:
            role = authorization.authorize(actor_id, current, DealAction.UPLOAD_DOCUMENT)
            if find_slot(current.category, role, command.slot) is None:
                raise ValidationError.for_field(
                    "slot", f"'{command.slot}' is not a {role} document for this deal"
                )
            if self._documents is None:
                raise ValidationError.for_field("content", "File uploads are not enabled")
            key = f"{current.deal_id}/{command.slot}/{command.file_name}"
            file_url = await self._documents.put(key, command.content, command.mime_type)
            file_size = file_size or len(command.content)

        meta = DocumentMeta(
            file_name=command.file_name,
            file_url=file_url or "",
            file_size=file_size,
            mime_type=command.mime_type,
        )

        def change(deal: Deal) -> list[Intent]:
            document = deals.record_document(deal, actor_id, command.slot, meta, now)
            entered = deals.advance_gating(deal, seller.kyc_status, now)
            return [
                intents.notify(
                    deal.counterparty_of(actor_id),
                    Template.DOCUMENT_UPLOADED,
                    deal.deal_id,
                    actor=actor.label,
                    document=document.file_name,
                ),
                *self._gating_intents(deal, entered),
            ]

        deal, out = await self._mutate_deal(command.deal_id, change)
        logger.info(
            "deal.document_uploaded",
            deal_id=deal.deal_id,
            slot=command.slot,
            status=str(deal.status),
        )
        return OrchestratorResult(deal=deal, intents=tuple(out))

    @_handles(SignContract)
    async def sign_contract(self, command: SignContract, actor_id: str) -> OrchestratorResult:
        now = self._clock.now()
        actor = await self._profile(actor_id)
        seller = await self._seller_of(command.deal_id)

        def change(deal: Deal) -> list[Intent]:
            if not deals.sign_contract(deal, actor_id, seller.kyc_status, now):
                return []
            return [
                intents.notify(
                    deal.counterparty_of(actor_id),
                    Template.CONTRACT_SIGNED,
                    deal.deal_id,
                    actor=actor.label,
                )
            ]

        deal, out = await self._mutate_deal(command.deal_id, change)
        logger.info("deal.contract_signed", deal_id=deal.deal_id, actor=actor_id)
        return OrchestratorResult(deal=deal, intents=tuple(out))

    # ------------------------------------------------------------------
    # Payment
    # ------------------------------------------------------------------

    @_handles(DepositPayment)
    async def deposit_payment(self, command: DepositPayment, actor_id: str) -> OrchestratorResult:
        """Start (or reuse) the escrow deposit; capture at once if a ref is given."""
        now = self._clock.now()
        deal = await self._load_deal(command.deal_id)
        seller = await self._profile(deal.seller_id)
        authorization.authorize(actor_id, deal, DealAction.DEPOSIT_PAYMENT, seller.kyc_status)

        # A failed deposit with retries left still belongs to this deal
        open_payments = [
            p for p in await self._payments.list_for_deal(deal.id)
            if p.status in _OPEN_PAYMENT_STATUSES
            or (p.status == PaymentStatus.FAILED and p.retry_count < p.max_retries)
        ]
        if open_payments:
            payment = open_payments[-1]
            logger.info("payment.reused", payment_id=payment.payment_id, deal_id=deal.deal_id)
            if payment.needs_retry(now) and payment.next_retry_at is not None:

                def resubmit(stale: Payment) -> list[Intent]:
                    payment_ops.retry(stale, now)
                    return []

                payment, _ = await self._mutate_payment(payment.payment_id, resubmit)
        else:
            sequence = await self._sequences.next_value("payment")
            payment = payment_ops.new_payment(
                sequence=sequence,
                deal=deal,
                method=command.method,
                now=now,
                provider=self._settings.default_gateway_provider,
                max_retries=self._settings.payment_max_retries,
                id_prefix=self._settings.payment_id_prefix,
                id_width=self._settings.id_sequence_width,
            )
            payment_ops.submit_to_gateway(payment, command.order_id, now)
            payment = await self._payments.add(payment)
            logger.info(
                "payment.initiated",
                payment_id=payment.payment_id,
                deal_id=deal.deal_id,
                amount=str(payment.amount),
                total=str(payment.total_amount()),
            )

        if command.gateway_ref:
            return await self._capture(payment.payment_id, command.gateway_ref)
        return OrchestratorResult(deal=deal, payment=payment)

    @_handles(GatewayCaptured)
    async def gateway_captured(
        self, command: GatewayCaptured, actor_id: str
    ) -> OrchestratorResult:
        """Gateway confirmed a capture. Replays of the same ref are no-ops."""
        payment_id = command.payment_id
        if payment_id is None:
            found = await self._payments.find_by_gateway_ref(
                command.order_id or command.gateway_ref
            )
            if found is None:
                raise PaymentNotFound(command.order_id or command.gateway_ref)
            payment_id = found.payment_id
        return await self._capture(payment_id, command.gateway_ref)

    @_handles(GatewayFailed)
    async def gateway_failed(self, command: GatewayFailed, actor_id: str) -> OrchestratorResult:
        """Record a failed capture and schedule a retry while attempts remain."""
        now = self._clock.now()

        def change(payment: Payment) -> list[Intent]:
            payment_ops.fail(payment, command.reason, command.code, now)
            if payment.retry_count < payment.max_retries:
                payment_ops.schedule_retry(payment, now, self._retry_policy)
            return [
                intents.notify(
                    payment.payer_id,
                    Template.PAYMENT_FAILED,
                    payment.deal_number,
                    payment_id=payment.payment_id,
                    reason=command.reason,
                )
            ]

        payment, out = await self._mutate_payment(command.payment_id, change)
        if payment.next_retry_at is None:
            logger.warning(
                "payment.retries_exhausted",
                payment_id=payment.payment_id,
                retry_count=payment.retry_count,
            )
        else:
            logger.warning(
                "payment.failed",
                payment_id=payment.payment_id,
                code=command.code,
                next_retry_at=payment.next_retry_at.isoformat(),
            )
        deal = await self._load_deal(payment.deal_number)
        return OrchestratorResult(deal=deal, payment=payment, intents=tuple(out))

    @_handles(RetryPayment)
    async def retry_payment(self, command: RetryPayment, actor_id: str) -> OrchestratorResult:
        """Put a failed payment whose retry is due back into ``pending``."""
        now = self._clock.now()

        def change(payment: Payment) -> list[Intent]:
            payment_ops.retry(payment, now)
            return []

        payment, _ = await self._mutate_payment(command.payment_id, change)
        logger.info(
            "payment.retried",
            payment_id=payment.payment_id,
            attempt=payment.retry_count,
        )
        deal = await self._load_deal(payment.deal_number)
        return OrchestratorResult(deal=deal, payment=payment)

    @_handles(CancelPayment)
    async def cancel_payment(self, command: CancelPayment, actor_id: str) -> OrchestratorResult:
        """Buyer abandons a deposit the gateway has not captured yet.

        The deal stays in ``payment_pending``; the next deposit opens a new payment.
        """
        now = self._clock.now()
        current = await self._load_payment(command.payment_id)
        if actor_id != current.payer_id:
            raise Unauthorized(actor_id, "cancel_payment", "only the payer may do this")

        def change(payment: Payment) -> list[Intent]:
            payment_ops.cancel(payment, actor_id, command.reason, now)
            return []

        payment, _ = await self._mutate_payment(command.payment_id, change)
        logger.info("payment.cancelled", payment_id=payment.payment_id, by=actor_id)
        deal = await self._load_deal(payment.deal_number)
        return OrchestratorResult(deal=deal, payment=payment)

    # ------------------------------------------------------------------
    # Delivery & completion
    # ------------------------------------------------------------------

    @_handles(StartDelivery)
    async def start_delivery(self, command: StartDelivery, actor_id: str) -> OrchestratorResult:
        now = self._clock.now()

        def change(deal: Deal) -> list[Intent]:
            deals.start_delivery(deal, actor_id, now)
            return []

        deal, _ = await self._mutate_deal(command.deal_id, change)
        logger.info("deal.delivery_started", deal_id=deal.deal_id)
        return OrchestratorResult(deal=deal)

    @_handles(MarkDelivered)
    async def mark_delivered(self, command: MarkDelivered, actor_id: str) -> OrchestratorResult:
        now = self._clock.now()

        def change(deal: Deal) -> list[Intent]:
            deals.mark_delivered(deal, actor_id, now)
            return [
                intents.notify(
                    deal.buyer_id,
                    Template.ITEM_DELIVERED,
                    deal.deal_id,
                    inspection_days=deal.terms.inspection_period_days,
                )
            ]

        deal, out = await self._mutate_deal(command.deal_id, change)
        logger.info(
            "deal.delivered",
            deal_id=deal.deal_id,
            inspection_deadline=deal.inspection_deadline.isoformat(),
        )
        return OrchestratorResult(deal=deal, intents=tuple(out))

    @_handles(ConfirmReceipt)
    async def confirm_receipt(self, command: ConfirmReceipt, actor_id: str) -> OrchestratorResult:
        """Buyer confirms receipt: complete the deal and release escrow."""
        now = self._clock.now()
        current = await self._load_deal(command.deal_id)
        authorization.authorize(actor_id, current, DealAction.CONFIRM_RECEIPT)
        held = await self._held_payment(current)

        def change(deal: Deal) -> list[Intent]:
            deals.confirm_receipt(deal, actor_id, now, command.rating, command.feedback)
            deals.record_funds_released(deal, ReleaseReason.BUYER_CONFIRMED, actor_id, now)
            return [intents.notify(deal.seller_id, Template.DEAL_COMPLETED, deal.deal_id)]

        deal, out = await self._mutate_deal(command.deal_id, change)
        payment, released = await self._release(
            held.payment_id, actor_id, ReleaseReason.BUYER_CONFIRMED, deal
        )
        logger.info("deal.completed", deal_id=deal.deal_id, reason="buyer_confirmed")
        return OrchestratorResult(deal=deal, payment=payment, intents=(*out, *released))

    @_handles(InspectionTimeout)
    async def inspection_timeout(
        self, command: InspectionTimeout, actor_id: str
    ) -> OrchestratorResult:
        """Complete and release a delivered deal whose inspection period ran out."""
        now = self._clock.now()
        current = await self._load_deal(command.deal_id)
        held = await self._held_payment(current)

        def change(deal: Deal) -> list[Intent]:
            deals.complete_on_inspection_timeout(deal, now)
            deals.record_funds_released(deal, ReleaseReason.TIMEOUT, SYSTEM_ACTOR, now)
            return [
                intents.notify(party, Template.DEAL_COMPLETED, deal.deal_id)
                for party in (deal.buyer_id, deal.seller_id)
            ]

        deal, out = await self._mutate_deal(command.deal_id, change)
        payment, released = await self._release(
            held.payment_id, SYSTEM_ACTOR, ReleaseReason.TIMEOUT, deal
        )
        logger.info("deal.completed", deal_id=deal.deal_id, reason="timeout")
        return OrchestratorResult(deal=deal, payment=payment, intents=(*out, *released))

    @_handles(AdminRelease)
    async def admin_release(self, command: AdminRelease, actor_id: str) -> OrchestratorResult:
        """Admin completes a delivered deal and releases its escrow."""
        now = self._clock.now()
        admin = await self._profile(actor_id)
        current = await self._load_deal(command.deal_id)
        authorization.authorize(admin, current, DealAction.RELEASE_FUNDS)
        held = await self._held_payment(current)

        def change(deal: Deal) -> list[Intent]:
            deals.admin_complete(deal, admin, now)
            deals.record_funds_released(deal, ReleaseReason.ADMIN_RELEASE, actor_id, now)
            return [
                intents.notify(party, Template.DEAL_COMPLETED, deal.deal_id)
                for party in (deal.buyer_id, deal.seller_id)
            ]

        deal, out = await self._mutate_deal(command.deal_id, change)
        payment, released = await self._release(
            held.payment_id, actor_id, ReleaseReason.ADMIN_RELEASE, deal
        )
        logger.info("deal.completed", deal_id=deal.deal_id, reason="admin_release")
        return OrchestratorResult(deal=deal, payment=payment, intents=(*out, *released))

    # ------------------------------------------------------------------
    # Disputes & cancellation
    # ------------------------------------------------------------------

    @_handles(RaiseDispute)
    async def raise_dispute(self, command: RaiseDispute, actor_id: str) -> OrchestratorResult:
        """Open a dispute on the deal and freeze its captured payment."""
        now = self._clock.now()

        def change(deal: Deal) -> list[Intent]:
            deals.raise_dispute(deal, actor_id, command.reason, command.description, now)
            return [
                intents.notify(
                    deal.counterparty_of(actor_id),
                    Template.DISPUTE_RAISED,
                    deal.deal_id,
                    reason=command.reason,
                )
            ]

        deal, out = await self._mutate_deal(command.deal_id, change)

        payment = await self._deposit_of(deal)
        if payment is not None and payment.status == PaymentStatus.CAPTURED:

            def freeze(p: Payment) -> list[Intent]:
                if p.status == PaymentStatus.CAPTURED:
                    payment_ops.mark_disputed(p, actor_id, now)
                return []

            payment, _ = await self._mutate_payment(payment.payment_id, freeze)

        logger.info(
            "deal.dispute_raised", deal_id=deal.deal_id, by=actor_id, reason=command.reason
        )
        return OrchestratorResult(deal=deal, payment=payment, intents=tuple(out))

    @_handles(ResolveDispute)
    async def resolve_dispute(self, command: ResolveDispute, actor_id: str) -> OrchestratorResult:
        """Admin closes a dispute: resume delivery, release or refund."""
        now = self._clock.now()
        admin = await self._profile(actor_id)
        outcome = DisputeOutcome(command.outcome)
        current = await self._load_deal(command.deal_id)
        authorization.authorize(admin, current, DealAction.RESOLVE_DISPUTE)

        payment = await self._deposit_of(current)
        refund_amount = None
        if outcome != DisputeOutcome.RESUME_DELIVERY:
            if payment is None or payment.escrow.release_date is not None:
                raise InvalidTransition(current.status, f"resolve_dispute:{outcome}")
            if outcome == DisputeOutcome.REFUND_TO_BUYER:
                refund_amount = to_money(
                    command.refund_amount if command.refund_amount is not None else payment.amount
                )
                if refund_amount <= 0 or refund_amount > payment.amount:
                    raise ValidationError.for_field(
                        "amount", f"Refund must be between ₹0.01 and ₹{payment.amount}"
                    )

        def change(deal: Deal) -> list[Intent]:
            new_status = deals.resolve_dispute(deal, admin, outcome, command.resolution, now)
            if new_status == DealStatus.COMPLETED:
                deals.record_funds_released(
                    deal, ReleaseReason.DISPUTE_RESOLVED, actor_id, now
                )
            return [
                intents.notify(
                    party, Template.DISPUTE_RESOLVED, deal.deal_id, resolution=command.resolution
                )
                for party in (deal.buyer_id, deal.seller_id)
            ]

        deal, out = await self._mutate_deal(command.deal_id, change)

        settled: list[Intent] = []
        if payment is not None:

            def settle(p: Payment) -> list[Intent]:
                if p.status == PaymentStatus.DISPUTED:
                    payment_ops.close_dispute(p, actor_id, now)
                if outcome == DisputeOutcome.RELEASE_TO_SELLER:
                    payment_ops.release(p, actor_id, ReleaseReason.DISPUTE_RESOLVED, now, deal)
                    return [
                        intents.payout(p),
                        intents.notify(
                            p.payee_id, Template.FUNDS_RELEASED, p.deal_number,
                            amount=str(p.amount),
                        ),
                    ]
                if outcome == DisputeOutcome.REFUND_TO_BUYER:
                    payment_ops.refund(
                        p,
                        actor_id,
                        refund_amount,
                        command.resolution,
                        now,
                        command.refund_transaction_id,
                    )
                    return [
                        intents.refund(p, refund_amount),
                        intents.notify(
                            p.payer_id, Template.FUNDS_REFUNDED, p.deal_number,
                            amount=str(refund_amount),
                        ),
                    ]
                return []

            payment, settled = await self._mutate_payment(payment.payment_id, settle)

        logger.info(
            "deal.dispute_resolved",
            deal_id=deal.deal_id,
            outcome=str(outcome),
            status=str(deal.status),
        )
        return OrchestratorResult(deal=deal, payment=payment, intents=(*out, *settled))

    @_handles(RefundPayment)
    async def refund_payment(self, command: RefundPayment, actor_id: str) -> OrchestratorResult:
        """Admin refund of a disputed deal's deposit, in full or in part.

        A replay identical to the recorded refund is a no-op.
        """
        admin = await self._profile(actor_id)
        if not admin.is_admin:
            raise Unauthorized(actor_id, DealAction.REFUND_PAYMENT, "admin only")
        current = await self._load_deal(command.deal_id)
        payment = await self._deposit_of(current)

        if payment is not None and payment.refund.refund_date is not None:
            if payment_ops.refund_matches(
                payment, command.amount, command.refund_transaction_id
            ):
                logger.info("payment.refund_replayed", payment_id=payment.payment_id)
                return OrchestratorResult(deal=current, payment=payment)
            raise AlreadyRefunded(payment.payment_id, matches_existing=False)

        authorization.authorize(admin, current, DealAction.REFUND_PAYMENT)
        return await self.resolve_dispute(
            ResolveDispute(
                deal_id=command.deal_id,
                outcome=DisputeOutcome.REFUND_TO_BUYER,
                resolution=command.reason,
                refund_amount=command.amount,
                refund_transaction_id=command.refund_transaction_id,
            ),
            actor_id,
        )

    @_handles(CancelDeal)
    async def cancel_deal(self, command: CancelDeal, actor_id: str) -> OrchestratorResult:
        now = self._clock.now()
        actor = await self._profile(actor_id)

        def change(deal: Deal) -> list[Intent]:
            deals.cancel(deal, actor_id, command.reason, now, actor_label=actor.label)
            return [
                intents.notify(
                    deal.counterparty_of(actor_id),
                    Template.DEAL_CANCELLED,
                    deal.deal_id,
                    actor=actor.label,
                )
            ]

        deal, out = await self._mutate_deal(command.deal_id, change)
        logger.info("deal.cancelled", deal_id=deal.deal_id, by=actor_id)
        return OrchestratorResult(deal=deal, intents=tuple(out))

    @_handles(PostMessage)
    async def post_message(self, command: PostMessage, actor_id: str) -> OrchestratorResult:
        now = self._clock.now()
        actor = await self._profile(actor_id)

        def change(deal: Deal) -> list[Intent]:
            message = deals.add_message(deal, actor_id, command.text, now)
            return [
                intents.notify(
                    deal.counterparty_of(actor_id),
                    Template.NEW_MESSAGE,
                    deal.deal_id,
                    actor=actor.label,
                    preview=preview(message.text),
                )
            ]

        deal, out = await self._mutate_deal(command.deal_id, change)
        return OrchestratorResult(deal=deal, intents=tuple(out))

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_deal(self, deal_id: str, user_id: str | None = None) -> Deal:
        """Get a deal; with ``user_id``, only for its parties and admins."""
        deal = await self._load_deal(deal_id)
        if user_id is not None and not deal.is_party(user_id):
            viewer = await self._profile(user_id)
            if not viewer.is_admin:
                raise Unauthorized(user_id, "view_deal", "not a party to this deal")
        return deal

    async def describe_deal(self, deal_id: str, user_id: str) -> DealView:
        deal = await self.get_deal(deal_id, user_id)
        viewer = await self._profile(user_id)
        seller = await self._profile(deal.seller_id)
        return DealView(
            deal=deal,
            role=deal.role_of(user_id),
            next_action=deals.next_action(deal, user_id, seller.kyc_status),
            progress=deals.progress(deal),
            capabilities={
                str(action): deals.can_perform_action(deal, viewer, action, seller.kyc_status)
                for action in DealAction
            },
        )

    async def list_deals(self, user_id: str) -> list[Deal]:
        return await self._deals.list_for_user(user_id)

    async def list_payments(self, deal_id: str, user_id: str | None = None) -> list[Payment]:
        deal = await self.get_deal(deal_id, user_id)
        return await self._payments.list_for_deal(deal.id)

    async def get_payment(self, payment_id: str) -> Payment:
        payment = await self._payments.get(payment_id)
        if payment is None:
            raise PaymentNotFound(payment_id)
        return payment

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _profile(self, user_id: str) -> UserProfile:
        profile = await self._users.get(user_id)
        return profile if profile is not None else UserProfile(user_id=user_id)

    async def _seller_of(self, deal_id: str) -> UserProfile:
        deal = await self._load_deal(deal_id)
        return await self._profile(deal.seller_id)

    async def _load_deal(self, deal_id: str) -> Deal:
        deal = await self._deals.get(deal_id)
        if deal is None:
            raise DealNotFound(deal_id)
        return deal

    async def _load_payment(self, payment_id: str) -> Payment:
        return await self.get_payment(payment_id)

    async def _deposit_of(self, deal: Deal) -> Payment | None:
        """The captured escrow deposit recorded on the deal, if any."""
        payment_id = deal.workflow.payment_deposited.payment_id
        if payment_id is None:
            return None
        return await self._payments.get(payment_id)

    async def _held_payment(self, deal: Deal) -> Payment:
        payment = await self._deposit_of(deal)
        if payment is None or not payment.is_in_escrow():
            raise InvalidTransition(
                payment.status if payment is not None else deal.status, "release"
            )
        return payment

    async def _capture(self, payment_id: str, gateway_ref: str) -> OrchestratorResult:
        now = self._clock.now()
        # The deal may be funded by one payment only; check before writing either.
        pending = await self._load_payment(payment_id)
        owner = await self._load_deal(pending.deal_number)
        funded_by = owner.workflow.payment_deposited.payment_id
        if (funded_by and funded_by != payment_id) or (
            not funded_by and owner.status != DealStatus.PAYMENT_PENDING
        ):
            logger.warning(
                "payment.capture_rejected",
                payment_id=payment_id,
                deal_id=owner.deal_id,
                deal_status=str(owner.status),
                funded_by=funded_by,
            )
            raise InvalidTransition(owner.status, "payment_captured")

        def capture(payment: Payment) -> list[Intent]:
            try:
                payment_ops.capture(payment, gateway_ref, now)
            except AlreadyCaptured as exc:
                if not exc.matches_existing:
                    raise
                logger.info(
                    "payment.capture_replayed",
                    payment_id=payment.payment_id,
                    gateway_ref=gateway_ref,
                )
            return []

        payment, _ = await self._mutate_payment(payment_id, capture)

        def fund(deal: Deal) -> list[Intent]:
            if deal.workflow.payment_deposited.payment_id == payment.payment_id:
                return []
            deals.record_payment_captured(
                deal, payment.payment_id, gateway_ref, payment.payment_method, now
            )
            return [
                intents.notify(
                    deal.seller_id,
                    Template.PAYMENT_DEPOSITED,
                    deal.deal_id,
                    amount=str(deal.amount),
                )
            ]

        deal, out = await self._mutate_deal(payment.deal_number, fund)
        logger.info(
            "payment.captured",
            payment_id=payment.payment_id,
            deal_id=deal.deal_id,
            gateway_ref=gateway_ref,
            deal_status=str(deal.status),
        )
        return OrchestratorResult(deal=deal, payment=payment, intents=tuple(out))

    async def _release(
        self,
        payment_id: str,
        actor_id: str,
        reason: ReleaseReason,
        deal: Deal,
    ) -> tuple[Payment, list[Intent]]:
        now = self._clock.now()

        def release(payment: Payment) -> list[Intent]:
            payment_ops.release(payment, actor_id, reason, now, deal)
            return [
                intents.payout(payment),
                intents.notify(
                    payment.payee_id,
                    Template.FUNDS_RELEASED,
                    payment.deal_number,
                    amount=str(payment.amount),
                ),
            ]

        payment, out = await self._mutate_payment(payment_id, release)
        logger.info(
            "payment.released",
            payment_id=payment.payment_id,
            reason=str(reason),
            amount=str(payment.amount),
        )
        return payment, out

    def _gating_intents(self, deal: Deal, entered: list[DealStatus]) -> list[Intent]:
        if DealStatus.PAYMENT_PENDING in entered:
            next_step = "deposit payment into escrow"
        elif DealStatus.CONTRACT_PENDING in entered:
            next_step = "sign the digital contract"
        else:
            return []
        return [
            intents.notify(party, Template.DOCUMENTS_COMPLETE, deal.deal_id, next_step=next_step)
            for party in (deal.buyer_id, deal.seller_id)
        ]

    async def _mutate_deal(
        self, deal_id: str, change: Callable[[Deal], list[Intent]]
    ) -> tuple[Deal, list[Intent]]:
        return await self._mutate("deal", deal_id, self._load_deal, self._deals.save, change)

    async def _mutate_payment(
        self, payment_id: str, change: Callable[[Payment], list[Intent]]
    ) -> tuple[Payment, list[Intent]]:
        return await self._mutate(
            "payment", payment_id, self._load_payment, self._payments.save, change
        )

    async def _mutate(
        self,
        entity: str,
        key: str,
        load: Callable[[str], Awaitable[Any]],
        save: Callable[[Any], Awaitable[Any]],
        change: Callable[[Any], list[Intent]],
    ) -> tuple[Any, list[Intent]]:
        """Load, change a copy, save with version check; retry on conflict.

        A change that appends no audit entry is a no-op and is not saved.
        """
        attempts = self._settings.concurrency_max_attempts

        def log_conflict(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception()
            logger.info(
                f"{entity}.version_conflict",
                id=key,
                attempt=retry_state.attempt_number,
                expected=exc.expected,
                actual=exc.actual,
            )

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(attempts),
                retry=retry_if_exception_type(StaleVersionError),
                before_sleep=log_conflict,
                reraise=True,
            ):
                with attempt:
                    current = await load(key)
                    working = copy.deepcopy(current)
                    out = list(change(working))
                    if len(working.audit_trail) == len(current.audit_trail):
                        return current, out
                    return await save(working), out
        except StaleVersionError:
            logger.warning(f"{entity}.concurrency_conflict", id=key, attempts=attempts)
            raise ConcurrencyConflict(entity, key, attempts) from None
