"""Domain enumerations for the SafeTransfer escrow engine.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class DealStatus(enum.StrEnum):
    """Lifecycle states of a deal.

    State transitions are enforced by the DealStateMachine guard.
    See domain/state_machine.py for the transition table.
    """

    CREATED = "created"
    ACCEPTED = "accepted"
    KYC_PENDING = "kyc_pending"
    DOCUMENTS_PENDING = "documents_pending"
    PAYMENT_PENDING = "payment_pending"
    CONTRACT_PENDING = "contract_pending"
    FUNDS_DEPOSITED = "funds_deposited"
    IN_DELIVERY = "in_delivery"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


TERMINAL_DEAL_STATUSES = frozenset(
    {DealStatus.COMPLETED, DealStatus.CANCELLED, DealStatus.REFUNDED}
)

CANCELLABLE_DEAL_STATUSES = frozenset(
    {
        DealStatus.CREATED,
        DealStatus.ACCEPTED,
        DealStatus.KYC_PENDING,
        DealStatus.DOCUMENTS_PENDING,
    }
)

DISPUTABLE_DEAL_STATUSES = frozenset(
    {DealStatus.FUNDS_DEPOSITED, DealStatus.IN_DELIVERY, DealStatus.DELIVERED}
)


class PaymentStatus(enum.StrEnum):
    """Lifecycle states of a payment (see PaymentStateMachine)."""

    INITIATED = "initiated"
    PENDING = "pending"
    PROCESSING = "processing"
    CAPTURED = "captured"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"
    DISPUTED = "disputed"


class PaymentType(enum.StrEnum):
    ESCROW_DEPOSIT = "escrow_deposit"
    ESCROW_RELEASE = "escrow_release"
    FEE_PAYMENT = "fee_payment"
    REFUND = "refund"


class PaymentMethod(enum.StrEnum):
    UPI = "upi"
    NETBANKING = "netbanking"
    DEBIT_CARD = "debit_card"
    CREDIT_CARD = "credit_card"
    WALLET = "wallet"


class GatewayProvider(enum.StrEnum):
    RAZORPAY = "razorpay"
    PAYU = "payu"
    CCAVENUE = "ccavenue"


class ReleaseReason(enum.StrEnum):
    """Enumerated causes that authorize releasing funds from escrow."""

    DEAL_COMPLETED = "deal_completed"
    BUYER_CONFIRMED = "buyer_confirmed"
    DISPUTE_RESOLVED = "dispute_resolved"
    ADMIN_RELEASE = "admin_release"
    TIMEOUT = "timeout"


class Category(enum.StrEnum):
    VEHICLE = "vehicle"
    REAL_ESTATE = "real_estate"
    DOMAIN = "domain"
    FREELANCING = "freelancing"
    OTHER = "other"


class DeliveryMethod(enum.StrEnum):
    IN_PERSON = "in_person"
    COURIER = "courier"
    DIGITAL = "digital"
    OTHER = "other"


class PartyRole(enum.StrEnum):
    BUYER = "buyer"
    SELLER = "seller"


class PartyType(enum.StrEnum):
    """Fee schedule a user is billed under."""

    PERSONAL = "personal"
    BUSINESS = "business"


class KycStatus(enum.StrEnum):
    """KYC verdict as reported by the external verification service."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    APPROVED = "approved"
    REJECTED = "rejected"


class DocumentType(enum.StrEnum):
    OWNERSHIP = "ownership"
    IDENTITY = "identity"
    AGREEMENT = "agreement"
    DELIVERY_PROOF = "delivery_proof"
    OTHER = "other"


class DisputeStatus(enum.StrEnum):
    OPEN = "open"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    ESCALATED = "escalated"


class DisputeOutcome(enum.StrEnum):
    """How an admin closes a dispute."""

    RESUME_DELIVERY = "resume_delivery"
    RELEASE_TO_SELLER = "release_to_seller"
    REFUND_TO_BUYER = "refund_to_buyer"


class DealAction(enum.StrEnum):
    """Actions gated by the AuthorizationGate."""

    ACCEPT_DEAL = "accept_deal"
    UPLOAD_DOCUMENT = "upload_document"
    SIGN_CONTRACT = "sign_contract"
    DEPOSIT_PAYMENT = "deposit_payment"
    MARK_DELIVERED = "mark_delivered"
    CONFIRM_RECEIPT = "confirm_receipt"
    RAISE_DISPUTE = "raise_dispute"
    CANCEL_DEAL = "cancel_deal"
    SEND_MESSAGE = "send_message"
    SEND_KYC_REMINDER = "send_kyc_reminder"
    RESOLVE_DISPUTE = "resolve_dispute"
    RELEASE_FUNDS = "release_funds"
    REFUND_PAYMENT = "refund_payment"


class IntentKind(enum.StrEnum):
    """Kinds of external effects the orchestrator asks its caller to perform."""

    NOTIFY = "notify"
    GATEWAY_PAYOUT = "gateway_payout"
    GATEWAY_REFUND = "gateway_refund"


class NotificationChannel(enum.StrEnum):
    SMS = "sms"
    EMAIL = "email"
    PUSH = "push"
