"""Pydantic API schemas."""

from safe_transfer.schemas.escrow import (
    ActionResponse,
    AuditEntryResponse,
    CancelDealRequest,
    ConfirmReceiptRequest,
    CreateDealRequest,
    DealResponse,
    DealViewResponse,
    DepositPaymentRequest,
    GatewayCapturedRequest,
    GatewayFailedRequest,
    HealthResponse,
    PaymentResponse,
    PostMessageRequest,
    RaiseDisputeRequest,
    RefundPaymentRequest,
    ResolveDisputeRequest,
    UploadDocumentRequest,
)

__all__ = [
    "ActionResponse",
    "AuditEntryResponse",
    "CancelDealRequest",
    "ConfirmReceiptRequest",
    "CreateDealRequest",
    "DealResponse",
    "DealViewResponse",
    "DepositPaymentRequest",
    "GatewayCapturedRequest",
    "GatewayFailedRequest",
    "HealthResponse",
    "PaymentResponse",
    "PostMessageRequest",
    "RaiseDisputeRequest",
    "RefundPaymentRequest",
    "ResolveDisputeRequest",
    "UploadDocumentRequest",
]
