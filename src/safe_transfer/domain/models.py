"""Domain records: Deal, Payment and their sub-records.

Plain dataclasses with no persistence behaviour. They are mutated only by the
transition functions in ``deals`` and ``payments``, and built only by the
``new_deal`` / ``new_payment`` factories, which compute every derived field
up front.

Cross-entity references are opaque ids (``buyer_id``, ``Payment.deal_id``);
lookups go through the injected repositories.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - resolved at runtime by pydantic TypeAdapter
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from safe_transfer.domain.enums import (
    Category,
    DealStatus,
    DeliveryMethod,
    DisputeOutcome,
    DisputeStatus,
    DocumentType,
    GatewayProvider,
    KycStatus,
    PartyRole,
    PartyType,
    PaymentMethod,
    PaymentStatus,
    PaymentType,
    ReleaseReason,
)

# ---------------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------------


@dataclass
class AuditEntry:
    """One immutable line of the compliance record."""

    action: str
    performed_by: str
    timestamp: datetime
    details: str = ""
    old_status: str | None = None
    new_status: str | None = None


@dataclass(frozen=True)
class UserProfile:
    """Read model of a user as seen by the engine.

    ``kyc_status`` is the verdict of the external KYC service.
    """

    user_id: str
    kyc_status: KycStatus = KycStatus.PENDING
    party_type: PartyType = PartyType.PERSONAL
    is_admin: bool = False
    display_name: str = ""
    phone: str | None = None
    email: str | None = None

    @property
    def label(self) -> str:
        return self.display_name or self.user_id


# ---------------------------------------------------------------------------
# Deal workflow milestones
# ---------------------------------------------------------------------------


@dataclass
class Milestone:
    completed: bool = False
    completed_at: datetime | None = None
    completed_by: str | None = None

    def mark(self, actor_id: str, now: datetime) -> bool:
        """Complete the milestone once. Returns False if it was already done."""
        if self.completed:
            return False
        self.completed = True
        self.completed_at = now
        self.completed_by = actor_id
        return True


@dataclass
class PartiesAccepted(Milestone):
    buyer_accepted: bool = False
    seller_accepted: bool = False
    buyer_accepted_at: datetime | None = None
    seller_accepted_at: datetime | None = None


@dataclass
class ContractSignatures(Milestone):
    buyer_signed: bool = False
    seller_signed: bool = False
    buyer_signed_at: datetime | None = None
    seller_signed_at: datetime | None = None


@dataclass
class PaymentDeposited(Milestone):
    payment_id: str | None = None
    transaction_id: str | None = None
    payment_method: PaymentMethod | None = None


@dataclass
class BuyerConfirmed(Milestone):
    rating: int | None = None
    feedback: str | None = None


@dataclass
class FundsReleased(Milestone):
    release_reason: ReleaseReason | None = None


@dataclass
class Workflow:
    deal_created: Milestone = field(default_factory=Milestone)
    parties_accepted: PartiesAccepted = field(default_factory=PartiesAccepted)
    kyc_completed: Milestone = field(default_factory=Milestone)
    documents_uploaded: Milestone = field(default_factory=Milestone)
    contract_signed: ContractSignatures = field(default_factory=ContractSignatures)
    payment_deposited: PaymentDeposited = field(default_factory=PaymentDeposited)
    delivered: Milestone = field(default_factory=Milestone)
    confirmed: BuyerConfirmed = field(default_factory=BuyerConfirmed)
    funds_released: FundsReleased = field(default_factory=FundsReleased)

    def milestone(self, name: str) -> Milestone:
        return getattr(self, name)


# ---------------------------------------------------------------------------
# Deal
# ---------------------------------------------------------------------------


@dataclass
class DealTerms:
    title: str
    description: str
    category: Category
    amount: Decimal
    delivery_method: DeliveryMethod
    inspection_period_days: int
    subcategory: str = ""
    additional_terms: str = ""
    currency: str = "INR"


@dataclass
class DealMessage:
    sender_id: str
    text: str
    timestamp: datetime
    is_system_message: bool = False


@dataclass
class DocumentMeta:
    """Caller-supplied description of an already stored file."""

    file_name: str
    file_url: str
    file_size: int | None = None
    mime_type: str | None = None


@dataclass
class DealDocument:
    slot: str
    document_type: DocumentType
    file_name: str
    file_url: str
    uploaded_by: str
    uploaded_at: datetime
    file_size: int | None = None
    mime_type: str | None = None
    verified: bool = False


@dataclass
class Dispute:
    raised_by: str
    raised_at: datetime
    reason: str
    description: str = ""
    status: DisputeStatus = DisputeStatus.OPEN
    resolution: str | None = None
    outcome: DisputeOutcome | None = None
    resolved_by: str | None = None
    resolved_at: datetime | None = None


@dataclass
class Deal:
    id: uuid.UUID
    deal_id: str
    buyer_id: str
    seller_id: str
    initiated_by: str
    terms: DealTerms
    escrow_fee: Decimal
    escrow_fee_percentage: Decimal
    escrow_fee_gst: Decimal
    escrow_fee_total: Decimal
    fee_party_type: PartyType
    created_at: datetime
    updated_at: datetime
    status: DealStatus = DealStatus.CREATED
    workflow: Workflow = field(default_factory=Workflow)
    messages: list[DealMessage] = field(default_factory=list)
    documents: list[DealDocument] = field(default_factory=list)
    dispute: Dispute | None = None
    audit_trail: list[AuditEntry] = field(default_factory=list)
    accepted_at: datetime | None = None
    delivered_at: datetime | None = None
    inspection_deadline: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    version: int = 0

    @property
    def category(self) -> Category:
        return self.terms.category

    @property
    def amount(self) -> Decimal:
        return self.terms.amount

    def role_of(self, user_id: str) -> PartyRole | None:
        if user_id == self.buyer_id:
            return PartyRole.BUYER
        if user_id == self.seller_id:
            return PartyRole.SELLER
        return None

    def is_party(self, user_id: str) -> bool:
        return self.role_of(user_id) is not None

    def counterparty_of(self, user_id: str) -> str | None:
        role = self.role_of(user_id)
        if role is None:
            return None
        return self.seller_id if role == PartyRole.BUYER else self.buyer_id

    def document_for(self, slot_key: str) -> DealDocument | None:
        for document in self.documents:
            if document.slot == slot_key:
                return document
        return None


# ---------------------------------------------------------------------------
# Payment
# ---------------------------------------------------------------------------


@dataclass
class GatewayDetails:
    provider: GatewayProvider = GatewayProvider.RAZORPAY
    transaction_id: str | None = None
    order_id: str | None = None
    gateway_fee: Decimal = Decimal("0")
    gst: Decimal = Decimal("0")


@dataclass
class EscrowHold:
    hold_start_date: datetime | None = None
    hold_end_date: datetime | None = None
    release_date: datetime | None = None
    released_by: str | None = None
    release_reason: ReleaseReason | None = None


@dataclass
class RefundDetails:
    refund_amount: Decimal | None = None
    refund_reason: str | None = None
    refund_date: datetime | None = None
    refund_transaction_id: str | None = None
    refunded_by: str | None = None


@dataclass
class PaymentFees:
    escrow_fee: Decimal = Decimal("0")
    escrow_fee_percentage: Decimal = Decimal("0")
    processing_fee: Decimal = Decimal("0")
    gst: Decimal = Decimal("0")
    total_fees: Decimal = Decimal("0")


@dataclass
class Payment:
    id: uuid.UUID
    payment_id: str
    deal_id: uuid.UUID
    deal_number: str
    payer_id: str
    payee_id: str
    amount: Decimal
    payment_type: PaymentType
    payment_method: PaymentMethod
    initiated_at: datetime
    created_at: datetime
    updated_at: datetime
    currency: str = "INR"
    status: PaymentStatus = PaymentStatus.INITIATED
    gateway: GatewayDetails = field(default_factory=GatewayDetails)
    fees: PaymentFees = field(default_factory=PaymentFees)
    escrow: EscrowHold = field(default_factory=EscrowHold)
    refund: RefundDetails = field(default_factory=RefundDetails)
    processed_at: datetime | None = None
    captured_at: datetime | None = None
    failed_at: datetime | None = None
    refunded_at: datetime | None = None
    cancelled_at: datetime | None = None
    failure_reason: str | None = None
    failure_code: str | None = None
    retry_count: int = 0
    max_retries: int = 3
    next_retry_at: datetime | None = None
    audit_trail: list[AuditEntry] = field(default_factory=list)
    version: int = 0

    def is_in_escrow(self) -> bool:
        return (
            self.status == PaymentStatus.CAPTURED
            and self.payment_type == PaymentType.ESCROW_DEPOSIT
            and self.escrow.release_date is None
        )

    def needs_retry(self, now: datetime) -> bool:
        return (
            self.status == PaymentStatus.FAILED
            and self.retry_count < self.max_retries
            and (self.next_retry_at is None or self.next_retry_at <= now)
        )

    def can_refund(self) -> bool:
        return (
            self.status == PaymentStatus.CAPTURED
            and self.payment_type == PaymentType.ESCROW_DEPOSIT
            and self.refund.refund_date is None
            and self.escrow.release_date is None
        )

    def total_amount(self) -> Decimal:
        return self.amount + self.fees.total_fees
