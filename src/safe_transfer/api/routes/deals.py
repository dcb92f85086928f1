"""Deal REST API routes.

Thin adapters: each endpoint builds one orchestrator command for the caller
named in the X-Actor-ID header and returns the saved deal.

Routes:
    POST   /api/v1/deals                              — Create a deal
    GET    /api/v1/deals                              — List the caller's deals
    GET    /api/v1/deals/{id}                         — Deal view (next action, progress)
    GET    /api/v1/deals/{id}/audit                   — Audit trail
    GET    /api/v1/deals/{id}/payments                — Payments for the deal
    POST   /api/v1/deals/{id}/accept                  — Accept the deal
    POST   /api/v1/deals/{id}/documents               — Attach a document
    POST   /api/v1/deals/{id}/contract/sign           — Sign the contract
    POST   /api/v1/deals/{id}/kyc/reminder            — Remind the seller about KYC
    POST   /api/v1/deals/{id}/kyc/refresh             — Re-check seller KYC
    POST   /api/v1/deals/{id}/delivery/start          — Seller starts delivery
    POST   /api/v1/deals/{id}/delivery/complete       — Seller marks delivered
    POST   /api/v1/deals/{id}/confirm                 — Buyer confirms receipt
    POST   /api/v1/deals/{id}/inspection-timeout      — Scheduler: inspection elapsed
    POST   /api/v1/deals/{id}/dispute                 — Raise a dispute
    POST   /api/v1/deals/{id}/dispute/resolve         — Admin resolves the dispute
    POST   /api/v1/deals/{id}/release                 — Admin releases escrow
    POST   /api/v1/deals/{id}/refund                  — Admin refunds escrow
    POST   /api/v1/deals/{id}/cancel                  — Cancel the deal
    POST   /api/v1/deals/{id}/messages                — Post a chat message
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from safe_transfer.api.deps import execute, get_actor_id, get_notifier, get_orchestrator
from safe_transfer.domain.audit import SYSTEM_ACTOR
from safe_transfer.domain.protocols import Notifier
from safe_transfer.logging_config import get_logger
from safe_transfer.schemas.escrow import (
    ActionResponse,
    AuditEntryResponse,
    CancelDealRequest,
    ConfirmReceiptRequest,
    CreateDealRequest,
    DealResponse,
    DealViewResponse,
    PaymentResponse,
    PostMessageRequest,
    RaiseDisputeRequest,
    RefundPaymentRequest,
    ResolveDisputeRequest,
    UploadDocumentRequest,
)
from safe_transfer.services.escrow_orchestrator import (
    AcceptDeal,
    AdminRelease,
    CancelDeal,
    ConfirmReceipt,
    CreateDeal,
    EscrowOrchestrator,
    InspectionTimeout,
    KycStatusChanged,
    MarkDelivered,
    PostMessage,
    RaiseDispute,
    RefundPayment,
    ResolveDispute,
    SendKycReminder,
    SignContract,
    StartDelivery,
    UploadDocument,
)

router = APIRouter(prefix="/api/v1/deals", tags=["Deals"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Create & read
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=ActionResponse,
    status_code=201,
    summary="Create a new deal",
)
async def create_deal(
    request: CreateDealRequest,
    actor_id: str = Depends(get_actor_id),
    orchestrator: EscrowOrchestrator = Depends(get_orchestrator),
    notifier: Notifier = Depends(get_notifier),
) -> ActionResponse:
    """Create a deal in ``created``; the counterparty is invited to accept."""
    command = CreateDeal(**request.model_dump())
    return await execute(orchestrator, notifier, command, actor_id)


@router.get("", response_model=list[DealResponse], summary="List the caller's deals")
async def list_deals(
    actor_id: str = Depends(get_actor_id),
    orchestrator: EscrowOrchestrator = Depends(get_orchestrator),
) -> list[DealResponse]:
    deals = await orchestrator.list_deals(actor_id)
    return [DealResponse.model_validate(deal) for deal in deals]


@router.get(
    "/{deal_id}",
    response_model=DealViewResponse,
    summary="Get a deal with the caller's next action",
)
async def get_deal(
    deal_id: str,
    actor_id: str = Depends(get_actor_id),
    orchestrator: EscrowOrchestrator = Depends(get_orchestrator),
) -> DealViewResponse:
    view = await orchestrator.describe_deal(deal_id, actor_id)
    return DealViewResponse.from_view(view)


@router.get(
    "/{deal_id}/audit",
    response_model=list[AuditEntryResponse],
    summary="Get the deal's audit trail",
)
async def get_audit_trail(
    deal_id: str,
    actor_id: str = Depends(get_actor_id),
    orchestrator: EscrowOrchestrator = Depends(get_orchestrator),
) -> list[AuditEntryResponse]:
    deal = await orchestrator.get_deal(deal_id, actor_id)
    return [AuditEntryResponse.model_validate(entry) for entry in deal.audit_trail]


@router.get(
    "/{deal_id}/payments",
    response_model=list[PaymentResponse],
    summary="List payments for a deal",
)
async def list_payments(
    deal_id: str,
    actor_id: str = Depends(get_actor_id),
    orchestrator: EscrowOrchestrator = Depends(get_orchestrator),
) -> list[PaymentResponse]:
    payments = await orchestrator.list_payments(deal_id, actor_id)
    return [PaymentResponse.from_payment(payment) for payment in payments]


# ---------------------------------------------------------------------------
# Acceptance, KYC, documents, contract
# ---------------------------------------------------------------------------


@router.post("/{deal_id}/accept", response_model=ActionResponse, summary="Accept the deal")
async def accept_deal(
    deal_id: str,
    actor_id: str = Depends(get_actor_id),
    orchestrator: EscrowOrchestrator = Depends(get_orchestrator),
    notifier: Notifier = Depends(get_notifier),
) -> ActionResponse:
    """Record the caller's acceptance. Accepting twice is a no-op."""
    return await execute(orchestrator, notifier, AcceptDeal(deal_id), actor_id)


@router.post(
    "/{deal_id}/documents",
    response_model=ActionResponse,
    summary="Attach a document to a checklist slot",
)
async def upload_document(
    deal_id: str,
    request: UploadDocumentRequest,
    actor_id: str = Depends(get_actor_id),
    orchestrator: EscrowOrchestrator = Depends(get_orchestrator),
    notifier: Notifier = Depends(get_notifier),
) -> ActionResponse:
    command = UploadDocument(deal_id=deal_id, **request.model_dump())
    return await execute(orchestrator, notifier, command, actor_id)


@router.post(
    "/{deal_id}/contract/sign",
    response_model=ActionResponse,
    summary="Sign the digital contract",
)
async def sign_contract(
    deal_id: str,
    actor_id: str = Depends(get_actor_id),
    orchestrator: EscrowOrchestrator = Depends(get_orchestrator),
    notifier: Notifier = Depends(get_notifier),
) -> ActionResponse:
    return await execute(orchestrator, notifier, SignContract(deal_id), actor_id)


@router.post(
    "/{deal_id}/kyc/reminder",
    response_model=ActionResponse,
    summary="Remind the seller to complete KYC",
)
async def send_kyc_reminder(
    deal_id: str,
    actor_id: str = Depends(get_actor_id),
    orchestrator: EscrowOrchestrator = Depends(get_orchestrator),
    notifier: Notifier = Depends(get_notifier),
) -> ActionResponse:
    return await execute(orchestrator, notifier, SendKycReminder(deal_id), actor_id)


@router.post(
    "/{deal_id}/kyc/refresh",
    response_model=ActionResponse,
    summary="Re-check the seller's KYC verdict",
)
async def refresh_kyc(
    deal_id: str,
    orchestrator: EscrowOrchestrator = Depends(get_orchestrator),
    notifier: Notifier = Depends(get_notifier),
) -> ActionResponse:
    """Called by the KYC service after a verdict change."""
    return await execute(orchestrator, notifier, KycStatusChanged(deal_id), SYSTEM_ACTOR)


# ---------------------------------------------------------------------------
# Delivery & completion
# ---------------------------------------------------------------------------


@router.post(
    "/{deal_id}/delivery/start",
    response_model=ActionResponse,
    summary="Seller starts delivery",
)
async def start_delivery(
    deal_id: str,
    actor_id: str = Depends(get_actor_id),
    orchestrator: EscrowOrchestrator = Depends(get_orchestrator),
    notifier: Notifier = Depends(get_notifier),
) -> ActionResponse:
    return await execute(orchestrator, notifier, StartDelivery(deal_id), actor_id)


@router.post(
    "/{deal_id}/delivery/complete",
    response_model=ActionResponse,
    summary="Seller marks the item delivered",
)
async def mark_delivered(
    deal_id: str,
    actor_id: str = Depends(get_actor_id),
    orchestrator: EscrowOrchestrator = Depends(get_orchestrator),
    notifier: Notifier = Depends(get_notifier),
) -> ActionResponse:
    """Starts the buyer's inspection period."""
    return await execute(orchestrator, notifier, MarkDelivered(deal_id), actor_id)


@router.post(
    "/{deal_id}/confirm",
    response_model=ActionResponse,
    summary="Buyer confirms receipt and releases escrow",
)
async def confirm_receipt(
    deal_id: str,
    request: ConfirmReceiptRequest,
    actor_id: str = Depends(get_actor_id),
    orchestrator: EscrowOrchestrator = Depends(get_orchestrator),
    notifier: Notifier = Depends(get_notifier),
) -> ActionResponse:
    command = ConfirmReceipt(deal_id, rating=request.rating, feedback=request.feedback)
    return await execute(orchestrator, notifier, command, actor_id)


@router.post(
    "/{deal_id}/inspection-timeout",
    response_model=ActionResponse,
    summary="Complete a deal whose inspection period elapsed",
)
async def inspection_timeout(
    deal_id: str,
    orchestrator: EscrowOrchestrator = Depends(get_orchestrator),
    notifier: Notifier = Depends(get_notifier),
) -> ActionResponse:
    """Called by the scheduler; rejected until the deadline has passed."""
    return await execute(orchestrator, notifier, InspectionTimeout(deal_id), SYSTEM_ACTOR)


@router.post(
    "/{deal_id}/release",
    response_model=ActionResponse,
    summary="Admin completes the deal and releases escrow",
)
async def admin_release(
    deal_id: str,
    actor_id: str = Depends(get_actor_id),
    orchestrator: EscrowOrchestrator = Depends(get_orchestrator),
    notifier: Notifier = Depends(get_notifier),
) -> ActionResponse:
    return await execute(orchestrator, notifier, AdminRelease(deal_id), actor_id)


# ---------------------------------------------------------------------------
# Disputes, refunds, cancellation, messages
# ---------------------------------------------------------------------------


@router.post("/{deal_id}/dispute", response_model=ActionResponse, summary="Raise a dispute")
async def raise_dispute(
    deal_id: str,
    request: RaiseDisputeRequest,
    actor_id: str = Depends(get_actor_id),
    orchestrator: EscrowOrchestrator = Depends(get_orchestrator),
    notifier: Notifier = Depends(get_notifier),
) -> ActionResponse:
    command = RaiseDispute(deal_id, reason=request.reason, description=request.description)
    return await execute(orchestrator, notifier, command, actor_id)


@router.post(
    "/{deal_id}/dispute/resolve",
    response_model=ActionResponse,
    summary="Admin resolves the open dispute",
)
async def resolve_dispute(
    deal_id: str,
    request: ResolveDisputeRequest,
    actor_id: str = Depends(get_actor_id),
    orchestrator: EscrowOrchestrator = Depends(get_orchestrator),
    notifier: Notifier = Depends(get_notifier),
) -> ActionResponse:
    command = ResolveDispute(deal_id=deal_id, **request.model_dump())
    return await execute(orchestrator, notifier, command, actor_id)


@router.post(
    "/{deal_id}/refund",
    response_model=ActionResponse,
    summary="Admin refunds the escrowed payment",
)
async def refund_payment(
    deal_id: str,
    request: RefundPaymentRequest,
    actor_id: str = Depends(get_actor_id),
    orchestrator: EscrowOrchestrator = Depends(get_orchestrator),
    notifier: Notifier = Depends(get_notifier),
) -> ActionResponse:
    """Refund in full or in part. Repeating an identical refund is a no-op."""
    command = RefundPayment(deal_id=deal_id, **request.model_dump())
    return await execute(orchestrator, notifier, command, actor_id)


@router.post("/{deal_id}/cancel", response_model=ActionResponse, summary="Cancel the deal")
async def cancel_deal(
    deal_id: str,
    request: CancelDealRequest,
    actor_id: str = Depends(get_actor_id),
    orchestrator: EscrowOrchestrator = Depends(get_orchestrator),
    notifier: Notifier = Depends(get_notifier),
) -> ActionResponse:
    command = CancelDeal(deal_id, reason=request.reason)
    return await execute(orchestrator, notifier, command, actor_id)


@router.post(
    "/{deal_id}/messages",
    response_model=ActionResponse,
    summary="Post a message to the deal chat",
)
async def post_message(
    deal_id: str,
    request: PostMessageRequest,
    actor_id: str = Depends(get_actor_id),
    orchestrator: EscrowOrchestrator = Depends(get_orchestrator),
    notifier: Notifier = Depends(get_notifier),
) -> ActionResponse:
    return await execute(orchestrator, notifier, PostMessage(deal_id, request.text), actor_id)
