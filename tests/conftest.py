"""Shared test fixtures for the SafeTransfer test suite.

Provides:
    - A fixed clock and in-memory adapters for every engine capability
    - An orchestrator wired to them
    - ``create_vehicle_deal``, ``ready_vehicle_deal`` and ``fund_vehicle_deal``
      to drive a deal through the orchestrator up to a given stage

State builders that work on bare domain objects live in ``factories``.
"""

from __future__ import annotations

import pytest
from factories import ADMIN, BUYER, SELLER, T0, VEHICLE_SELLER_DOCS

from safe_transfer.config import Settings
from safe_transfer.domain.enums import KycStatus
from safe_transfer.domain.models import UserProfile
from safe_transfer.infrastructure.memory import (
    FixedClock,
    InMemoryDealRepository,
    InMemoryDocumentStore,
    InMemoryPaymentRepository,
    InMemorySequenceGenerator,
    InMemoryUserDirectory,
    RecordingNotifier,
)
from safe_transfer.services.escrow_orchestrator import (
    AcceptDeal,
    CreateDeal,
    DepositPayment,
    EscrowOrchestrator,
    GatewayCaptured,
    UploadDocument,
)

# ---------------------------------------------------------------------------
# Adapters
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(T0)


@pytest.fixture
def users() -> InMemoryUserDirectory:
    return InMemoryUserDirectory(
        [
            UserProfile(BUYER, kyc_status=KycStatus.APPROVED, display_name="Asha"),
            UserProfile(SELLER, kyc_status=KycStatus.APPROVED, display_name="Ravi"),
            UserProfile(ADMIN, is_admin=True, display_name="Ops"),
        ]
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(concurrency_max_attempts=5, payment_max_retries=3)


@pytest.fixture
def deal_repo() -> InMemoryDealRepository:
    return InMemoryDealRepository()


@pytest.fixture
def payment_repo() -> InMemoryPaymentRepository:
    return InMemoryPaymentRepository()


@pytest.fixture
def document_store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


@pytest.fixture
def orchestrator(
    deal_repo: InMemoryDealRepository,
    payment_repo: InMemoryPaymentRepository,
    users: InMemoryUserDirectory,
    clock: FixedClock,
    document_store: InMemoryDocumentStore,
    settings: Settings,
) -> EscrowOrchestrator:
    return EscrowOrchestrator(
        deals=deal_repo,
        payments=payment_repo,
        users=users,
        sequences=InMemorySequenceGenerator(),
        clock=clock,
        documents=document_store,
        settings=settings,
    )


@pytest.fixture
def create_vehicle_deal(orchestrator: EscrowOrchestrator):
    """Create a ₹2,50,000 vehicle deal as the buyer; returns its deal id."""

    async def _create(amount: str = "250000") -> str:
        result = await orchestrator.apply(
            CreateDeal(
                title="Honda City 2019",
                description="Single owner, 40,000 km, full service history",
                category="vehicle",
                amount=amount,
                delivery_method="in_person",
                inspection_period_days=3,
                role="buyer",
                counterparty_id=SELLER,
            ),
            BUYER,
        )
        return result.deal.deal_id

    return _create


@pytest.fixture
def ready_vehicle_deal(orchestrator: EscrowOrchestrator, create_vehicle_deal):
    """Drive a new vehicle deal to ``payment_pending``; returns its deal id."""

    async def _ready() -> str:
        deal_id = await create_vehicle_deal()
        await orchestrator.apply(AcceptDeal(deal_id), BUYER)
        await orchestrator.apply(AcceptDeal(deal_id), SELLER)
        for slot in VEHICLE_SELLER_DOCS:
            await orchestrator.apply(
                UploadDocument(deal_id, slot, f"{slot}.pdf", file_url=f"https://f/{slot}.pdf"),
                SELLER,
            )
        return deal_id

    return _ready


@pytest.fixture
def fund_vehicle_deal(orchestrator: EscrowOrchestrator, ready_vehicle_deal):
    """Drive a new vehicle deal to ``funds_deposited``; returns (deal_id, payment_id)."""

    async def _fund() -> tuple[str, str]:
        deal_id = await ready_vehicle_deal()
        started = await orchestrator.apply(
            DepositPayment(deal_id, method="upi", order_id="order_1"), BUYER
        )
        await orchestrator.apply(GatewayCaptured("pay_1", order_id="order_1"))
        return deal_id, started.payment.payment_id

    return _fund
