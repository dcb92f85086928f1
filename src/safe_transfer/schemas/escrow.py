"""Pydantic schemas for the SafeTransfer API.

These schemas define the request/response shapes for the REST API. They are
separate from the domain dataclasses to keep the HTTP contract stable while
the domain evolves; responses are read straight off the dataclasses with
``from_attributes``.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - resolved at runtime by pydantic
from datetime import datetime  # noqa: TC003 - resolved at runtime by pydantic
from decimal import Decimal
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from safe_transfer.domain.enums import (
    Category,
    DeliveryMethod,
    DisputeOutcome,
    PartyRole,
    PaymentMethod,
)

if TYPE_CHECKING:
    from safe_transfer.domain.models import Payment
    from safe_transfer.services.escrow_orchestrator import DealView, OrchestratorResult

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class CreateDealRequest(BaseModel):
    """Request body for creating a deal. The caller becomes ``role``."""

    title: str = Field(..., description="Short title, up to 200 characters")
    description: str = Field(..., description="What is being sold, up to 2000 characters")
    category: Category = Field(..., examples=["vehicle"])
    amount: Decimal = Field(
        ...,
        description="Deal amount in INR, between 1,000 and 10,00,00,000",
        examples=["250000"],
    )
    delivery_method: DeliveryMethod = Field(..., examples=["in_person"])
    inspection_period_days: int = Field(..., description="1 to 30 days", examples=[3])
    role: PartyRole = Field(..., description="The caller's side of the deal")
    counterparty_id: str = Field(..., min_length=1, max_length=64)
    subcategory: str = ""
    additional_terms: str = ""


class UploadDocumentRequest(BaseModel):
    """A document already stored elsewhere, attached to one checklist slot."""

    slot: str = Field(..., examples=["rc_book"])
    file_name: str = Field(..., min_length=1, max_length=255)
    file_url: str = Field(..., min_length=1)
    file_size: int | None = Field(default=None, ge=0)
    mime_type: str | None = None


class DepositPaymentRequest(BaseModel):
    deal_id: str
    method: PaymentMethod
    order_id: str | None = Field(default=None, description="Gateway order id")
    gateway_ref: str | None = Field(
        default=None,
        description="Gateway transaction id when the capture is already confirmed",
    )


class GatewayCapturedRequest(BaseModel):
    """Capture confirmation from the payment gateway (webhook)."""

    gateway_ref: str = Field(..., min_length=1)
    payment_id: str | None = None
    order_id: str | None = None


class GatewayFailedRequest(BaseModel):
    reason: str = Field(..., min_length=1)
    code: str | None = None


class ConfirmReceiptRequest(BaseModel):
    rating: int | None = Field(default=None, description="1 to 5 stars")
    feedback: str | None = None


class RaiseDisputeRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)
    description: str = Field(default="", max_length=2000)


class ResolveDisputeRequest(BaseModel):
    outcome: DisputeOutcome
    resolution: str = Field(..., min_length=1)
    refund_amount: Decimal | None = Field(
        default=None,
        description="Partial refund amount for refund_to_buyer; full amount when omitted",
    )


class RefundPaymentRequest(BaseModel):
    amount: Decimal
    reason: str = Field(..., min_length=1)
    refund_transaction_id: str | None = None


class CancelDealRequest(BaseModel):
    reason: str = ""


class CancelPaymentRequest(BaseModel):
    reason: str = Field("", max_length=500)


class PostMessageRequest(BaseModel):
    text: str


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class AuditEntryResponse(BaseModel):
    """One line of a deal's or payment's audit trail."""

    model_config = ConfigDict(from_attributes=True)

    action: str
    performed_by: str
    timestamp: datetime
    details: str
    old_status: str | None
    new_status: str | None


class DealTermsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    title: str
    description: str
    category: str
    subcategory: str
    amount: Decimal
    currency: str
    delivery_method: str
    inspection_period_days: int
    additional_terms: str


class DealMessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sender_id: str
    text: str
    timestamp: datetime
    is_system_message: bool


class DealDocumentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    slot: str
    document_type: str
    file_name: str
    file_url: str
    uploaded_by: str
    uploaded_at: datetime
    verified: bool


class DisputeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    raised_by: str
    raised_at: datetime
    reason: str
    description: str
    status: str
    outcome: str | None
    resolution: str | None
    resolved_at: datetime | None


class DealResponse(BaseModel):
    """Response schema for a deal."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    deal_id: str
    status: str
    buyer_id: str
    seller_id: str
    initiated_by: str
    terms: DealTermsResponse
    escrow_fee: Decimal
    escrow_fee_percentage: Decimal
    escrow_fee_gst: Decimal
    escrow_fee_total: Decimal
    documents: list[DealDocumentResponse]
    messages: list[DealMessageResponse]
    dispute: DisputeResponse | None
    created_at: datetime
    updated_at: datetime
    accepted_at: datetime | None
    delivered_at: datetime | None
    inspection_deadline: datetime | None
    completed_at: datetime | None
    cancelled_at: datetime | None
    version: int


class DealViewResponse(BaseModel):
    """A deal as seen by the caller, with their next step and permissions."""

    deal: DealResponse
    role: str | None
    next_action: str
    can_send_reminder: bool
    progress: int = Field(description="Percentage of workflow milestones completed")
    capabilities: dict[str, bool]

    @classmethod
    def from_view(cls, view: DealView) -> DealViewResponse:
        return cls(
            deal=DealResponse.model_validate(view.deal),
            role=view.role,
            next_action=view.next_action.text,
            can_send_reminder=view.next_action.can_send_reminder,
            progress=view.progress,
            capabilities=view.capabilities,
        )


class PaymentResponse(BaseModel):
    """Response schema for a payment."""

    id: uuid.UUID
    payment_id: str
    deal_id: str
    status: str
    payer_id: str
    payee_id: str
    amount: Decimal
    total_fees: Decimal
    total_amount: Decimal
    currency: str
    payment_method: str
    order_id: str | None
    transaction_id: str | None
    retry_count: int
    max_retries: int
    next_retry_at: datetime | None
    captured_at: datetime | None
    released_at: datetime | None
    release_reason: str | None
    refund_amount: Decimal | None
    version: int

    @classmethod
    def from_payment(cls, payment: Payment) -> PaymentResponse:
        return cls(
            id=payment.id,
            payment_id=payment.payment_id,
            deal_id=payment.deal_number,
            status=payment.status,
            payer_id=payment.payer_id,
            payee_id=payment.payee_id,
            amount=payment.amount,
            total_fees=payment.fees.total_fees,
            total_amount=payment.total_amount(),
            currency=payment.currency,
            payment_method=payment.payment_method,
            order_id=payment.gateway.order_id,
            transaction_id=payment.gateway.transaction_id,
            retry_count=payment.retry_count,
            max_retries=payment.max_retries,
            next_retry_at=payment.next_retry_at,
            captured_at=payment.captured_at,
            released_at=payment.escrow.release_date,
            release_reason=payment.escrow.release_reason,
            refund_amount=payment.refund.refund_amount,
            version=payment.version,
        )


class IntentResponse(BaseModel):
    """A gateway call the caller still has to make."""

    model_config = ConfigDict(from_attributes=True)

    kind: str
    deal_id: str
    payload: dict


class ActionResponse(BaseModel):
    """Result of a state-changing call."""

    deal: DealResponse
    payment: PaymentResponse | None = None
    pending_intents: list[IntentResponse] = Field(
        default_factory=list,
        description="Payout/refund instructions for the payment gateway",
    )

    @classmethod
    def from_result(cls, result: OrchestratorResult, pending: list) -> ActionResponse:
        return cls(
            deal=DealResponse.model_validate(result.deal),
            payment=PaymentResponse.from_payment(result.payment) if result.payment else None,
            pending_intents=[IntentResponse.model_validate(i) for i in pending],
        )


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"
    tables: dict[str, str] = Field(default_factory=dict, description="Row-count check per table")
    sequences: dict[str, str] = Field(
        default_factory=dict, description="Last issued value per id sequence"
    )
