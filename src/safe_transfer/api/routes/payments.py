"""Payment REST API routes.

Routes:
    POST   /api/v1/payments/deposit            — Buyer starts the escrow deposit
    GET    /api/v1/payments/{id}               — Get a payment
    POST   /api/v1/payments/webhooks/captured  — Gateway capture confirmation
    POST   /api/v1/payments/{id}/failed        — Gateway failure report
    POST   /api/v1/payments/{id}/retry         — Scheduler: retry a due payment
    POST   /api/v1/payments/{id}/cancel        — Buyer abandons an uncaptured deposit
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from safe_transfer.api.deps import execute, get_actor_id, get_notifier, get_orchestrator
from safe_transfer.domain.audit import SYSTEM_ACTOR
from safe_transfer.domain.protocols import Notifier
from safe_transfer.logging_config import get_logger
from safe_transfer.schemas.escrow import (
    ActionResponse,
    CancelPaymentRequest,
    DepositPaymentRequest,
    GatewayCapturedRequest,
    GatewayFailedRequest,
    PaymentResponse,
)
from safe_transfer.services.escrow_orchestrator import (
    CancelPayment,
    DepositPayment,
    EscrowOrchestrator,
    GatewayCaptured,
    GatewayFailed,
    RetryPayment,
)

router = APIRouter(prefix="/api/v1/payments", tags=["Payments"])
logger = get_logger(__name__)


@router.post(
    "/deposit",
    response_model=ActionResponse,
    status_code=201,
    summary="Start the escrow deposit for a deal",
)
async def deposit_payment(
    request: DepositPaymentRequest,
    actor_id: str = Depends(get_actor_id),
    orchestrator: EscrowOrchestrator = Depends(get_orchestrator),
    notifier: Notifier = Depends(get_notifier),
) -> ActionResponse:
    """Create (or reuse) the pending deposit; capture at once if ``gateway_ref`` is set."""
    command = DepositPayment(**request.model_dump())
    return await execute(orchestrator, notifier, command, actor_id)


@router.get("/{payment_id}", response_model=PaymentResponse, summary="Get a payment")
async def get_payment(
    payment_id: str,
    actor_id: str = Depends(get_actor_id),
    orchestrator: EscrowOrchestrator = Depends(get_orchestrator),
) -> PaymentResponse:
    payment = await orchestrator.get_payment(payment_id)
    # Only the deal's parties and admins may see it
    await orchestrator.get_deal(payment.deal_number, actor_id)
    return PaymentResponse.from_payment(payment)


@router.post(
    "/webhooks/captured",
    response_model=ActionResponse,
    summary="Gateway confirms a capture",
)
async def gateway_captured(
    request: GatewayCapturedRequest,
    orchestrator: EscrowOrchestrator = Depends(get_orchestrator),
    notifier: Notifier = Depends(get_notifier),
) -> ActionResponse:
    """Moves the deal to ``funds_deposited``. Replays of the same ref are no-ops."""
    logger.info("webhook.capture_received", gateway_ref=request.gateway_ref)
    command = GatewayCaptured(**request.model_dump())
    return await execute(orchestrator, notifier, command, SYSTEM_ACTOR)


@router.post(
    "/{payment_id}/failed",
    response_model=ActionResponse,
    summary="Gateway reports a failed capture",
)
async def gateway_failed(
    payment_id: str,
    request: GatewayFailedRequest,
    orchestrator: EscrowOrchestrator = Depends(get_orchestrator),
    notifier: Notifier = Depends(get_notifier),
) -> ActionResponse:
    command = GatewayFailed(payment_id, reason=request.reason, code=request.code)
    return await execute(orchestrator, notifier, command, SYSTEM_ACTOR)


@router.post(
    "/{payment_id}/retry",
    response_model=ActionResponse,
    summary="Retry a failed payment whose retry is due",
)
async def retry_payment(
    payment_id: str,
    orchestrator: EscrowOrchestrator = Depends(get_orchestrator),
    notifier: Notifier = Depends(get_notifier),
) -> ActionResponse:
    return await execute(orchestrator, notifier, RetryPayment(payment_id), SYSTEM_ACTOR)


@router.post(
    "/{payment_id}/cancel",
    response_model=ActionResponse,
    summary="Cancel a deposit the gateway has not captured",
)
async def cancel_payment(
    payment_id: str,
    request: CancelPaymentRequest,
    actor_id: str = Depends(get_actor_id),
    orchestrator: EscrowOrchestrator = Depends(get_orchestrator),
    notifier: Notifier = Depends(get_notifier),
) -> ActionResponse:
    command = CancelPayment(payment_id, reason=request.reason)
    return await execute(orchestrator, notifier, command, actor_id)
