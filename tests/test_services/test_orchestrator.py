"""Tests for the EscrowOrchestrator.

These tests verify that:
    1. A deal runs end to end: create, accept, documents, deposit, capture,
       delivery, confirmation, release.
    2. Concurrent transitions on one deal are serialized by the version check.
    3. Webhook and refund replays are idempotent no-ops.
    4. Failed payments schedule retries with backoff.
    5. Disputes freeze the deposit and settle it on resolution.
    6. Rejected commands change nothing.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
from factories import ADMIN, BUYER, SELLER, STRANGER, T0

from safe_transfer.config import Settings
from safe_transfer.domain import payments as payment_ops
from safe_transfer.domain.enums import (
    DealStatus,
    IntentKind,
    KycStatus,
    PaymentStatus,
    ReleaseReason,
)
from safe_transfer.domain.exceptions import (
    AlreadyCaptured,
    AlreadyRefunded,
    ConcurrencyConflict,
    DealNotFound,
    InvalidTransition,
    StaleVersionError,
    Unauthorized,
    ValidationError,
)
from safe_transfer.domain.intents import Template
from safe_transfer.domain.models import UserProfile
from safe_transfer.infrastructure.memory import (
    InMemoryDealRepository,
    InMemoryPaymentRepository,
    InMemorySequenceGenerator,
)
from safe_transfer.services.escrow_orchestrator import (
    AcceptDeal,
    AdminRelease,
    CancelDeal,
    CancelPayment,
    ConfirmReceipt,
    CreateDeal,
    DepositPayment,
    EscrowOrchestrator,
    GatewayCaptured,
    GatewayFailed,
    InspectionTimeout,
    MarkDelivered,
    PostMessage,
    RaiseDispute,
    RefundPayment,
    ResolveDispute,
    RetryPayment,
    SendKycReminder,
    UploadDocument,
)

VEHICLE_DEAL = CreateDeal(
    title="Honda City 2019",
    description="Single owner, 40,000 km",
    category="vehicle",
    amount="250000",
    delivery_method="in_person",
    inspection_period_days=3,
    role="buyer",
    counterparty_id=SELLER,
)


def _templates(result) -> list[str]:
    return [i.template for i in result.intents if i.kind == IntentKind.NOTIFY]


def _kinds(result) -> list[IntentKind]:
    return [i.kind for i in result.intents]


class TestCreateAndAccept:
    @pytest.mark.asyncio
    async def test_create_invites_counterparty(self, orchestrator, create_vehicle_deal) -> None:
        deal_id = await create_vehicle_deal()
        assert deal_id == "ST00000001"
        assert await create_vehicle_deal() == "ST00000002"

        deal = await orchestrator.get_deal(deal_id)
        assert deal.version == 1
        assert deal.escrow_fee_total == Decimal("7375.00")

    @pytest.mark.asyncio
    async def test_invitation_intent(self, orchestrator) -> None:
        result = await orchestrator.apply(
            CreateDeal(
                title="example.in domain",
                description="Premium two-letter domain with history",
                category="domain",
                amount="50000",
                delivery_method="digital",
                inspection_period_days=2,
                role="seller",
                counterparty_id=BUYER,
            ),
            SELLER,
        )
        assert result.deal.seller_id == SELLER
        [invite] = result.intents
        assert invite.recipient_id == BUYER
        assert invite.template == Template.DEAL_INVITATION
        assert invite.payload["actor"] == "Ravi"

    @pytest.mark.asyncio
    async def test_accept_is_idempotent(self, orchestrator, create_vehicle_deal) -> None:
        deal_id = await create_vehicle_deal()
        first = await orchestrator.apply(AcceptDeal(deal_id), BUYER)
        assert _templates(first) == [Template.DEAL_ACCEPTED]

        again = await orchestrator.apply(AcceptDeal(deal_id), BUYER)
        assert again.intents == ()
        assert again.deal.version == first.deal.version

    @pytest.mark.asyncio
    async def test_concurrent_accepts_both_land(self, orchestrator, create_vehicle_deal) -> None:
        deal_id = await create_vehicle_deal()
        await asyncio.gather(
            orchestrator.apply(AcceptDeal(deal_id), BUYER),
            orchestrator.apply(AcceptDeal(deal_id), SELLER),
        )

        deal = await orchestrator.get_deal(deal_id)
        accepted = deal.workflow.parties_accepted
        assert accepted.buyer_accepted and accepted.seller_accepted
        assert deal.status == DealStatus.DOCUMENTS_PENDING
        actions = [e.action for e in deal.audit_trail]
        assert "Deal accepted by buyer" in actions
        assert "Deal accepted by seller" in actions

    @pytest.mark.asyncio
    async def test_version_conflicts_run_out(self, users, clock) -> None:
        class AlwaysStale(InMemoryDealRepository):
            async def save(self, deal):
                raise StaleVersionError(deal.deal_id, deal.version, deal.version + 1)

        orchestrator = EscrowOrchestrator(
            deals=AlwaysStale(),
            payments=InMemoryPaymentRepository(),
            users=users,
            sequences=InMemorySequenceGenerator(),
            clock=clock,
            settings=Settings(concurrency_max_attempts=3),
        )
        created = await orchestrator.apply(VEHICLE_DEAL, BUYER)
        with pytest.raises(ConcurrencyConflict) as exc_info:
            await orchestrator.apply(AcceptDeal(created.deal.deal_id), BUYER)
        assert exc_info.value.attempts == 3

    @pytest.mark.asyncio
    async def test_unknown_deal(self, orchestrator) -> None:
        with pytest.raises(DealNotFound):
            await orchestrator.apply(AcceptDeal("ST99999999"), BUYER)

    @pytest.mark.asyncio
    async def test_unknown_command(self, orchestrator) -> None:
        with pytest.raises(TypeError):
            await orchestrator.apply(object(), BUYER)


class TestKycAndDocuments:
    @pytest.mark.asyncio
    async def test_seller_kyc_gates_documents(
        self, orchestrator, users, create_vehicle_deal
    ) -> None:
        users.put(UserProfile(SELLER, kyc_status=KycStatus.IN_PROGRESS, display_name="Ravi"))
        deal_id = await create_vehicle_deal()
        await orchestrator.apply(AcceptDeal(deal_id), BUYER)
        result = await orchestrator.apply(AcceptDeal(deal_id), SELLER)
        assert result.deal.status == DealStatus.KYC_PENDING

        view = await orchestrator.describe_deal(deal_id, BUYER)
        assert view.next_action.can_send_reminder
        assert view.capabilities["send_kyc_reminder"]

        reminder = await orchestrator.apply(SendKycReminder(deal_id), BUYER)
        assert [(i.recipient_id, i.template) for i in reminder.intents] == [
            (SELLER, Template.KYC_REMINDER)
        ]

        users.put(UserProfile(SELLER, kyc_status=KycStatus.APPROVED, display_name="Ravi"))
        [refreshed] = await orchestrator.refresh_kyc_for_user(SELLER)
        assert refreshed.deal.status == DealStatus.DOCUMENTS_PENDING

    @pytest.mark.asyncio
    async def test_last_document_opens_payment(self, orchestrator, create_vehicle_deal) -> None:
        deal_id = await create_vehicle_deal()
        await orchestrator.apply(AcceptDeal(deal_id), BUYER)
        await orchestrator.apply(AcceptDeal(deal_id), SELLER)

        await orchestrator.apply(
            UploadDocument(deal_id, "registration_certificate", "rc.pdf", file_url="https://f/rc"),
            SELLER,
        )
        result = await orchestrator.apply(
            UploadDocument(deal_id, "insurance_certificate", "ins.pdf", file_url="https://f/ins"),
            SELLER,
        )
        assert result.deal.status == DealStatus.PAYMENT_PENDING
        complete = [i for i in result.intents if i.template == Template.DOCUMENTS_COMPLETE]
        assert {i.recipient_id for i in complete} == {BUYER, SELLER}
        assert complete[0].payload["next_step"] == "deposit payment into escrow"

    @pytest.mark.asyncio
    async def test_binary_upload_goes_to_store(
        self, orchestrator, document_store, create_vehicle_deal
    ) -> None:
        deal_id = await create_vehicle_deal()
        result = await orchestrator.apply(
            UploadDocument(
                deal_id,
                "registration_certificate",
                "rc.pdf",
                content=b"%PDF-1.7",
                mime_type="application/pdf",
            ),
            SELLER,
        )
        key = f"{deal_id}/registration_certificate/rc.pdf"
        assert document_store.files[key] == (b"%PDF-1.7", "application/pdf")
        document = result.deal.document_for("registration_certificate")
        assert document.file_url == f"memory://documents/{key}"
        assert document.file_size == 8

    @pytest.mark.asyncio
    async def test_binary_upload_without_store(self, deal_repo, payment_repo, users, clock) -> None:
        orchestrator = EscrowOrchestrator(
            deals=deal_repo,
            payments=payment_repo,
            users=users,
            sequences=InMemorySequenceGenerator(),
            clock=clock,
            settings=Settings(),
        )
        created = await orchestrator.apply(VEHICLE_DEAL, BUYER)
        with pytest.raises(ValidationError):
            await orchestrator.apply(
                UploadDocument(
                    created.deal.deal_id, "registration_certificate", "rc.pdf", content=b"x"
                ),
                SELLER,
            )


class TestPayment:
    @pytest.mark.asyncio
    async def test_deposit_blocked_until_documents(
        self, orchestrator, create_vehicle_deal
    ) -> None:
        deal_id = await create_vehicle_deal()
        await orchestrator.apply(AcceptDeal(deal_id), BUYER)
        await orchestrator.apply(AcceptDeal(deal_id), SELLER)

        with pytest.raises(InvalidTransition):
            await orchestrator.apply(DepositPayment(deal_id, method="upi"), BUYER)
        assert await orchestrator.list_payments(deal_id) == []

    @pytest.mark.asyncio
    async def test_only_buyer_deposits(self, orchestrator, ready_vehicle_deal) -> None:
        deal_id = await ready_vehicle_deal()
        with pytest.raises(Unauthorized):
            await orchestrator.apply(DepositPayment(deal_id, method="upi"), SELLER)

    @pytest.mark.asyncio
    async def test_open_payment_is_reused(self, orchestrator, ready_vehicle_deal) -> None:
        deal_id = await ready_vehicle_deal()
        first = await orchestrator.apply(DepositPayment(deal_id, method="upi"), BUYER)
        second = await orchestrator.apply(DepositPayment(deal_id, method="upi"), BUYER)

        assert first.payment.payment_id == second.payment.payment_id == "PAY00000001"
        assert first.payment.status == PaymentStatus.PENDING
        assert len(await orchestrator.list_payments(deal_id)) == 1

    @pytest.mark.asyncio
    async def test_capture_funds_the_deal(self, orchestrator, ready_vehicle_deal) -> None:
        deal_id = await ready_vehicle_deal()
        await orchestrator.apply(DepositPayment(deal_id, "upi", order_id="order_1"), BUYER)
        result = await orchestrator.apply(GatewayCaptured("pay_1", order_id="order_1"))

        assert result.deal.status == DealStatus.FUNDS_DEPOSITED
        assert result.payment.status == PaymentStatus.CAPTURED
        assert result.deal.workflow.payment_deposited.transaction_id == "pay_1"
        assert _templates(result) == [Template.PAYMENT_DEPOSITED]
        assert result.intents[0].recipient_id == SELLER

    @pytest.mark.asyncio
    async def test_capture_replay_is_noop(self, orchestrator, fund_vehicle_deal) -> None:
        deal_id, payment_id = await fund_vehicle_deal()
        deal = await orchestrator.get_deal(deal_id)
        payment = await orchestrator.get_payment(payment_id)

        replay = await orchestrator.apply(GatewayCaptured("pay_1", order_id="order_1"))
        assert replay.intents == ()
        assert replay.deal.version == deal.version
        assert replay.payment.version == payment.version
        assert len(replay.deal.audit_trail) == len(deal.audit_trail)

    @pytest.mark.asyncio
    async def test_conflicting_capture(self, orchestrator, fund_vehicle_deal) -> None:
        _, payment_id = await fund_vehicle_deal()
        with pytest.raises(AlreadyCaptured):
            await orchestrator.apply(GatewayCaptured("pay_2", payment_id=payment_id))

    @pytest.mark.asyncio
    async def test_failure_schedules_retry(self, orchestrator, clock, ready_vehicle_deal) -> None:
        deal_id = await ready_vehicle_deal()
        started = await orchestrator.apply(DepositPayment(deal_id, "upi", "order_1"), BUYER)
        payment_id = started.payment.payment_id

        failed = await orchestrator.apply(
            GatewayFailed(payment_id, reason="Bank declined", code="BAD_REQUEST")
        )
        assert failed.payment.status == PaymentStatus.FAILED
        assert failed.payment.retry_count == 1
        assert failed.payment.next_retry_at == T0 + timedelta(minutes=5)
        [notice] = failed.intents
        assert (notice.recipient_id, notice.template) == (BUYER, Template.PAYMENT_FAILED)
        assert failed.deal.status == DealStatus.PAYMENT_PENDING

        with pytest.raises(InvalidTransition):
            await orchestrator.apply(RetryPayment(payment_id))

        clock.advance(minutes=5)
        retried = await orchestrator.apply(RetryPayment(payment_id))
        assert retried.payment.status == PaymentStatus.PENDING

        captured = await orchestrator.apply(GatewayCaptured("pay_9", order_id="order_1"))
        assert captured.deal.status == DealStatus.FUNDS_DEPOSITED

    @pytest.mark.asyncio
    async def test_deposit_after_failure_reuses_payment(
        self, orchestrator, clock, ready_vehicle_deal
    ) -> None:
        deal_id = await ready_vehicle_deal()
        started = await orchestrator.apply(DepositPayment(deal_id, "upi", "order_1"), BUYER)
        payment_id = started.payment.payment_id
        await orchestrator.apply(GatewayFailed(payment_id, reason="Bank declined"))

        again = await orchestrator.apply(DepositPayment(deal_id, "upi", "order_2"), BUYER)
        assert again.payment.payment_id == payment_id
        assert again.payment.status == PaymentStatus.FAILED

        clock.advance(minutes=5)
        funded = await orchestrator.apply(
            DepositPayment(deal_id, "upi", "order_1", gateway_ref="pay_2"), BUYER
        )
        assert funded.payment.payment_id == payment_id
        assert funded.payment.status == PaymentStatus.CAPTURED
        assert funded.deal.status == DealStatus.FUNDS_DEPOSITED
        assert len(await orchestrator.list_payments(deal_id)) == 1

    @pytest.mark.asyncio
    async def test_second_payment_cannot_fund_the_deal(
        self, orchestrator, payment_repo, fund_vehicle_deal
    ) -> None:
        deal_id, _ = await fund_vehicle_deal()
        deal = await orchestrator.get_deal(deal_id)
        stray = payment_ops.new_payment(sequence=99, deal=deal, method="upi", now=T0)
        payment_ops.submit_to_gateway(stray, "order_99", T0)
        stray = await payment_repo.add(stray)

        with pytest.raises(InvalidTransition):
            await orchestrator.apply(GatewayCaptured("pay_99", payment_id=stray.payment_id))

        unchanged = await orchestrator.get_payment(stray.payment_id)
        assert unchanged.status == PaymentStatus.PENDING
        assert unchanged.version == stray.version
        assert (await orchestrator.get_deal(deal_id)).audit_trail == deal.audit_trail

    @pytest.mark.asyncio
    async def test_buyer_cancels_open_deposit(self, orchestrator, ready_vehicle_deal) -> None:
        deal_id = await ready_vehicle_deal()
        first = await orchestrator.apply(DepositPayment(deal_id, "upi", order_id="order_1"), BUYER)

        with pytest.raises(Unauthorized):
            await orchestrator.apply(CancelPayment(first.payment.payment_id), SELLER)

        cancelled = await orchestrator.apply(
            CancelPayment(first.payment.payment_id, "Switching to card"), BUYER
        )
        assert cancelled.payment.status == PaymentStatus.CANCELLED
        assert cancelled.deal.status == DealStatus.PAYMENT_PENDING

        second = await orchestrator.apply(DepositPayment(deal_id, "debit_card"), BUYER)
        assert second.payment.payment_id != first.payment.payment_id
        assert len(await orchestrator.list_payments(deal_id)) == 2

    @pytest.mark.asyncio
    async def test_captured_deposit_cannot_be_cancelled(
        self, orchestrator, fund_vehicle_deal
    ) -> None:
        _, payment_id = await fund_vehicle_deal()
        with pytest.raises(InvalidTransition):
            await orchestrator.apply(CancelPayment(payment_id), BUYER)
        assert (await orchestrator.get_payment(payment_id)).status == PaymentStatus.CAPTURED


class TestCompletion:
    @pytest.mark.asyncio
    async def test_confirm_receipt_releases_escrow(self, orchestrator, fund_vehicle_deal) -> None:
        deal_id, payment_id = await fund_vehicle_deal()
        delivered = await orchestrator.apply(MarkDelivered(deal_id), SELLER)
        assert delivered.deal.status == DealStatus.DELIVERED
        assert delivered.intents[0].template == Template.ITEM_DELIVERED

        result = await orchestrator.apply(ConfirmReceipt(deal_id, rating=5), BUYER)

        assert result.deal.status == DealStatus.COMPLETED
        assert result.deal.workflow.funds_released.release_reason == ReleaseReason.BUYER_CONFIRMED
        assert result.payment.payment_id == payment_id
        assert not result.payment.is_in_escrow()
        [payout] = [i for i in result.intents if i.kind == IntentKind.GATEWAY_PAYOUT]
        assert payout.recipient_id == SELLER
        assert payout.payload["amount"] == "250000.00"
        assert Template.FUNDS_RELEASED in _templates(result)

        view = await orchestrator.describe_deal(deal_id, SELLER)
        assert view.progress == 100
        assert view.next_action.text == "Deal completed"

    @pytest.mark.asyncio
    async def test_inspection_timeout(self, orchestrator, clock, fund_vehicle_deal) -> None:
        deal_id, _ = await fund_vehicle_deal()
        await orchestrator.apply(MarkDelivered(deal_id), SELLER)

        with pytest.raises(InvalidTransition):
            await orchestrator.apply(InspectionTimeout(deal_id))

        clock.advance(days=3)
        result = await orchestrator.apply(InspectionTimeout(deal_id))
        assert result.deal.status == DealStatus.COMPLETED
        assert result.payment.escrow.release_reason == ReleaseReason.TIMEOUT
        assert IntentKind.GATEWAY_PAYOUT in _kinds(result)

    @pytest.mark.asyncio
    async def test_admin_release(self, orchestrator, fund_vehicle_deal) -> None:
        deal_id, _ = await fund_vehicle_deal()
        await orchestrator.apply(MarkDelivered(deal_id), SELLER)

        with pytest.raises(Unauthorized):
            await orchestrator.apply(AdminRelease(deal_id), BUYER)

        result = await orchestrator.apply(AdminRelease(deal_id), ADMIN)
        assert result.deal.status == DealStatus.COMPLETED
        assert result.payment.escrow.released_by == ADMIN

    @pytest.mark.asyncio
    async def test_cancel_after_funding_changes_nothing(
        self, orchestrator, fund_vehicle_deal
    ) -> None:
        deal_id, _ = await fund_vehicle_deal()
        before = await orchestrator.get_deal(deal_id)

        with pytest.raises(InvalidTransition):
            await orchestrator.apply(CancelDeal(deal_id, "Changed my mind"), BUYER)

        after = await orchestrator.get_deal(deal_id)
        assert after == before


class TestDisputes:
    @pytest.mark.asyncio
    async def test_dispute_freezes_and_refunds(self, orchestrator, fund_vehicle_deal) -> None:
        deal_id, _ = await fund_vehicle_deal()
        raised = await orchestrator.apply(RaiseDispute(deal_id, "Item not as described"), BUYER)
        assert raised.deal.status == DealStatus.DISPUTED
        assert raised.payment.status == PaymentStatus.DISPUTED
        assert raised.intents[0].recipient_id == SELLER

        with pytest.raises(Unauthorized):
            await orchestrator.apply(
                ResolveDispute(deal_id, "refund_to_buyer", "Refund approved"), SELLER
            )

        result = await orchestrator.apply(
            ResolveDispute(deal_id, "refund_to_buyer", "Refund approved"), ADMIN
        )
        assert result.deal.status == DealStatus.REFUNDED
        assert result.payment.status == PaymentStatus.REFUNDED
        [refund] = [i for i in result.intents if i.kind == IntentKind.GATEWAY_REFUND]
        assert refund.recipient_id == BUYER
        assert refund.payload["amount"] == "250000.00"
        assert refund.payload["gateway_transaction_id"] == "pay_1"

    @pytest.mark.asyncio
    async def test_release_to_seller(self, orchestrator, fund_vehicle_deal) -> None:
        deal_id, _ = await fund_vehicle_deal()
        await orchestrator.apply(RaiseDispute(deal_id, "Late delivery"), BUYER)
        result = await orchestrator.apply(
            ResolveDispute(deal_id, "release_to_seller", "Delivered on time per courier"), ADMIN
        )
        assert result.deal.status == DealStatus.COMPLETED
        assert result.payment.status == PaymentStatus.CAPTURED
        assert result.payment.escrow.release_reason == ReleaseReason.DISPUTE_RESOLVED
        assert IntentKind.GATEWAY_PAYOUT in _kinds(result)

    @pytest.mark.asyncio
    async def test_resume_delivery_keeps_hold(self, orchestrator, fund_vehicle_deal) -> None:
        deal_id, _ = await fund_vehicle_deal()
        await orchestrator.apply(RaiseDispute(deal_id, "Wrong colour"), BUYER)
        result = await orchestrator.apply(
            ResolveDispute(deal_id, "resume_delivery", "Seller will swap the item"), ADMIN
        )
        assert result.deal.status == DealStatus.IN_DELIVERY
        assert result.payment.is_in_escrow()

    @pytest.mark.asyncio
    async def test_partial_refund_and_replay(self, orchestrator, fund_vehicle_deal) -> None:
        deal_id, _ = await fund_vehicle_deal()
        await orchestrator.apply(RaiseDispute(deal_id, "Minor damage"), BUYER)

        command = RefundPayment(deal_id, "50000", "Repair cost", refund_transaction_id="rfnd_1")
        result = await orchestrator.apply(command, ADMIN)
        assert result.payment.status == PaymentStatus.PARTIALLY_REFUNDED
        assert result.deal.status == DealStatus.REFUNDED

        replay = await orchestrator.apply(command, ADMIN)
        assert replay.intents == ()
        assert replay.payment.version == result.payment.version

        with pytest.raises(AlreadyRefunded):
            await orchestrator.apply(
                RefundPayment(deal_id, "60000", "More damage", refund_transaction_id="rfnd_2"),
                ADMIN,
            )

    @pytest.mark.asyncio
    async def test_refund_above_amount(self, orchestrator, fund_vehicle_deal) -> None:
        deal_id, _ = await fund_vehicle_deal()
        await orchestrator.apply(RaiseDispute(deal_id, "Minor damage"), BUYER)
        with pytest.raises(ValidationError):
            await orchestrator.apply(RefundPayment(deal_id, "300000", "Too much"), ADMIN)
        deal = await orchestrator.get_deal(deal_id)
        assert deal.status == DealStatus.DISPUTED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("actor", [BUYER, SELLER, STRANGER])
    async def test_refund_replay_needs_admin(self, orchestrator, fund_vehicle_deal, actor) -> None:
        deal_id, _ = await fund_vehicle_deal()
        await orchestrator.apply(RaiseDispute(deal_id, "Minor damage"), BUYER)
        command = RefundPayment(deal_id, "50000", "Repair cost", refund_transaction_id="rfnd_1")
        await orchestrator.apply(command, ADMIN)

        with pytest.raises(Unauthorized):
            await orchestrator.apply(command, actor)
        with pytest.raises(Unauthorized):
            await orchestrator.apply(
                RefundPayment(deal_id, "60000", "More damage", refund_transaction_id="rfnd_2"),
                actor,
            )


class TestReads:
    @pytest.mark.asyncio
    async def test_stranger_cannot_view(self, orchestrator, create_vehicle_deal) -> None:
        deal_id = await create_vehicle_deal()
        with pytest.raises(Unauthorized):
            await orchestrator.get_deal(deal_id, STRANGER)
        assert (await orchestrator.get_deal(deal_id, ADMIN)).deal_id == deal_id

    @pytest.mark.asyncio
    async def test_describe_for_buyer(self, orchestrator, ready_vehicle_deal) -> None:
        deal_id = await ready_vehicle_deal()
        view = await orchestrator.describe_deal(deal_id, BUYER)
        assert view.next_action.text == "Deposit payment into escrow"
        assert view.capabilities["deposit_payment"]
        assert not view.capabilities["mark_delivered"]
        assert view.progress == 50

    @pytest.mark.asyncio
    async def test_list_deals(self, orchestrator, create_vehicle_deal) -> None:
        await create_vehicle_deal()
        await create_vehicle_deal()
        assert len(await orchestrator.list_deals(SELLER)) == 2
        assert await orchestrator.list_deals(STRANGER) == []

    @pytest.mark.asyncio
    async def test_message_notifies_counterparty(
        self, orchestrator, create_vehicle_deal
    ) -> None:
        deal_id = await create_vehicle_deal()
        result = await orchestrator.apply(PostMessage(deal_id, "Can I see it Saturday?"), BUYER)
        [notice] = result.intents
        assert notice.recipient_id == SELLER
        assert notice.payload["preview"] == "Can I see it Saturday?"
