"""Tests for deal lifecycle operations.

These tests verify that:
    1. Deal creation validates terms, assigns roles and freezes the fee.
    2. Acceptance is idempotent per party and gates on seller KYC and documents.
    3. Rejected operations leave the deal untouched.
    4. Delivery, inspection timeout and disputes move the deal correctly.
    5. Progress only ever increases.
"""

from __future__ import annotations

import copy
from datetime import timedelta
from decimal import Decimal

import pytest
from factories import (
    ADMIN,
    BUYER,
    REAL_ESTATE_SELLER_DOCS,
    SELLER,
    STRANGER,
    T0,
    delivered_deal,
    funded_deal,
    make_deal,
    upload_all,
)

from safe_transfer.domain import deals
from safe_transfer.domain.enums import (
    Category,
    DealStatus,
    DisputeOutcome,
    DisputeStatus,
    KycStatus,
    ReleaseReason,
)
from safe_transfer.domain.exceptions import InvalidTransition, Unauthorized, ValidationError
from safe_transfer.domain.models import UserProfile

ADMIN_PROFILE = UserProfile(ADMIN, is_admin=True)


class TestNewDeal:
    def test_identifier_and_roles(self) -> None:
        deal = make_deal(sequence=42)
        assert deal.deal_id == "ST00000042"
        assert deal.buyer_id == BUYER
        assert deal.seller_id == SELLER
        assert deal.initiated_by == BUYER
        assert deal.status == DealStatus.CREATED

    def test_seller_initiated(self) -> None:
        deal = make_deal(initiator_id=SELLER, initiator_role="seller", counterparty_id=BUYER)
        assert deal.buyer_id == BUYER
        assert deal.seller_id == SELLER

    def test_fee_is_frozen(self) -> None:
        deal = make_deal()
        assert deal.escrow_fee == Decimal("6250.00")
        assert deal.escrow_fee_gst == Decimal("1125.00")
        assert deal.escrow_fee_total == Decimal("7375.00")

    def test_creation_is_audited(self) -> None:
        deal = make_deal()
        assert len(deal.audit_trail) == 1
        assert deal.audit_trail[0].new_status == "created"
        assert deal.workflow.deal_created.completed

    def test_reports_every_invalid_field(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            make_deal(title="Car", description="short", inspection_period_days=31, amount=10)
        fields = {e["field"] for e in exc_info.value.errors}
        assert fields == {"title", "description", "inspection_period_days", "amount"}

    def test_counterparty_must_differ(self) -> None:
        with pytest.raises(ValidationError):
            make_deal(counterparty_id=BUYER)

    def test_unknown_category(self) -> None:
        with pytest.raises(ValidationError):
            make_deal(category="spaceship")


class TestAcceptance:
    def test_second_accept_is_noop(self) -> None:
        deal = make_deal()
        assert deals.accept(deal, BUYER, T0) is True
        trail = len(deal.audit_trail)

        assert deals.accept(deal, BUYER, T0) is False
        assert len(deal.audit_trail) == trail
        assert deal.status == DealStatus.CREATED

    def test_both_accept(self) -> None:
        deal = make_deal()
        deals.accept(deal, BUYER, T0)
        deals.accept(deal, SELLER, T0)
        assert deal.status == DealStatus.ACCEPTED
        assert deal.accepted_at == T0
        assert deal.workflow.parties_accepted.completed

    def test_stranger_cannot_accept(self) -> None:
        deal = make_deal()
        with pytest.raises(Unauthorized):
            deals.accept(deal, STRANGER, T0)


class TestGating:
    def _accepted(self):
        deal = make_deal()
        deals.accept(deal, BUYER, T0)
        deals.accept(deal, SELLER, T0)
        return deal

    def test_waits_for_seller_kyc(self) -> None:
        deal = self._accepted()
        assert deals.advance_gating(deal, KycStatus.PENDING, T0) == [DealStatus.KYC_PENDING]
        assert deals.advance_gating(deal, KycStatus.PENDING, T0) == []

        assert deals.advance_gating(deal, KycStatus.APPROVED, T0) == [
            DealStatus.DOCUMENTS_PENDING
        ]
        assert deal.workflow.kyc_completed.completed

    def test_missing_documents_block_payment(self) -> None:
        deal = self._accepted()
        deals.advance_gating(deal, KycStatus.APPROVED, T0)
        assert deal.status == DealStatus.DOCUMENTS_PENDING
        assert not deals.can_perform_action(deal, BUYER, "deposit_payment", KycStatus.APPROVED)

    def test_documents_complete(self) -> None:
        deal = self._accepted()
        deals.advance_gating(deal, KycStatus.APPROVED, T0)
        upload_all(deal)
        assert deals.advance_gating(deal, KycStatus.APPROVED, T0) == [
            DealStatus.PAYMENT_PENDING
        ]
        assert deal.messages[-1].is_system_message

    def test_real_estate_requires_contract(self) -> None:
        deal = make_deal(category=Category.REAL_ESTATE, title="2BHK flat in Pune")
        deals.accept(deal, BUYER, T0)
        deals.accept(deal, SELLER, T0)
        deals.advance_gating(deal, KycStatus.APPROVED, T0)
        upload_all(deal, REAL_ESTATE_SELLER_DOCS)
        deals.advance_gating(deal, KycStatus.APPROVED, T0)
        assert deal.status == DealStatus.CONTRACT_PENDING

        assert deals.sign_contract(deal, BUYER, KycStatus.APPROVED, T0) is True
        assert deals.sign_contract(deal, BUYER, KycStatus.APPROVED, T0) is False
        deals.sign_contract(deal, SELLER, KycStatus.APPROVED, T0)
        assert deal.status == DealStatus.PAYMENT_PENDING

    def test_wrong_role_slot_rejected(self) -> None:
        deal = self._accepted()
        with pytest.raises(ValidationError):
            upload_all(deal, ("registration_certificate",), actor=BUYER)


def _disputed_deal():
    deal, _ = delivered_deal()
    deals.raise_dispute(deal, BUYER, "Item damaged", "", T0)
    return deal


def _completed_deal():
    deal, _ = delivered_deal()
    deals.confirm_receipt(deal, BUYER, T0)
    return deal


def _cancelled_deal():
    deal = make_deal()
    deals.cancel(deal, BUYER, "", T0)
    return deal


def _refunded_deal():
    deal = _disputed_deal()
    deals.resolve_dispute(deal, ADMIN_PROFILE, DisputeOutcome.REFUND_TO_BUYER, "Refunded", T0)
    return deal


class TestCancel:
    def test_cancel_before_funding(self) -> None:
        deal = make_deal()
        deals.cancel(deal, SELLER, "Changed my mind", T0)
        assert deal.status == DealStatus.CANCELLED
        assert deal.cancelled_at == T0

    @pytest.mark.parametrize("builder", [funded_deal, delivered_deal])
    def test_cancel_after_funding_leaves_deal_untouched(self, builder) -> None:
        deal, _ = builder()
        before = copy.deepcopy(deal)
        with pytest.raises(InvalidTransition):
            deals.cancel(deal, BUYER, "Too late", T0)
        assert deal == before

    def test_stranger_cannot_cancel(self) -> None:
        deal = make_deal()
        with pytest.raises(Unauthorized):
            deals.cancel(deal, STRANGER, "", T0)

    @pytest.mark.parametrize(
        "builder", [_disputed_deal, _completed_deal, _cancelled_deal, _refunded_deal]
    )
    def test_cancel_after_close_or_dispute_rejected(self, builder) -> None:
        deal = builder()
        before = copy.deepcopy(deal)
        with pytest.raises(InvalidTransition):
            deals.cancel(deal, SELLER, "Too late", T0)
        assert deal == before


class TestDelivery:
    def test_mark_delivered_from_funded(self) -> None:
        deal, _ = funded_deal()
        trail = len(deal.audit_trail)
        deals.mark_delivered(deal, SELLER, T0)

        assert deal.status == DealStatus.DELIVERED
        assert [e.new_status for e in deal.audit_trail[trail:]] == ["in_delivery", "delivered"]
        assert deal.inspection_deadline == T0 + timedelta(days=3)

    def test_buyer_cannot_mark_delivered(self) -> None:
        deal, _ = funded_deal()
        with pytest.raises(Unauthorized):
            deals.mark_delivered(deal, BUYER, T0)

    def test_confirm_receipt_rating(self) -> None:
        deal, _ = delivered_deal()
        with pytest.raises(ValidationError):
            deals.confirm_receipt(deal, BUYER, T0, rating=6)
        deals.confirm_receipt(deal, BUYER, T0, rating=5, feedback="Smooth")
        assert deal.status == DealStatus.COMPLETED
        assert deal.workflow.confirmed.rating == 5

    def test_inspection_timeout_waits_for_deadline(self) -> None:
        deal, _ = delivered_deal()
        with pytest.raises(InvalidTransition):
            deals.complete_on_inspection_timeout(deal, T0 + timedelta(days=2))
        deals.complete_on_inspection_timeout(deal, T0 + timedelta(days=3))
        assert deal.status == DealStatus.COMPLETED

    def test_funds_released_only_once_completed(self) -> None:
        deal, _ = delivered_deal()
        with pytest.raises(InvalidTransition):
            deals.record_funds_released(deal, ReleaseReason.ADMIN_RELEASE, ADMIN, T0)
        deals.admin_complete(deal, ADMIN_PROFILE, T0)
        deals.record_funds_released(deal, ReleaseReason.ADMIN_RELEASE, ADMIN, T0)
        assert deal.workflow.funds_released.release_reason == ReleaseReason.ADMIN_RELEASE


class TestDisputes:
    def test_raise_and_resume(self) -> None:
        deal, _ = delivered_deal()
        deals.raise_dispute(deal, BUYER, "Item damaged", "Dent on the door", T0)
        assert deal.status == DealStatus.DISPUTED
        assert deals.has_open_dispute(deal)

        status = deals.resolve_dispute(
            deal, ADMIN_PROFILE, DisputeOutcome.RESUME_DELIVERY, "Seller to repair", T0
        )
        assert status == DealStatus.IN_DELIVERY
        assert deal.inspection_deadline is None
        assert deal.dispute.status == DisputeStatus.RESOLVED

    def test_only_admin_resolves(self) -> None:
        deal, _ = delivered_deal()
        deals.raise_dispute(deal, BUYER, "Item damaged", "", T0)
        with pytest.raises(Unauthorized):
            deals.resolve_dispute(deal, UserProfile(SELLER), "release_to_seller", "Fine", T0)

    def test_reason_required(self) -> None:
        deal, _ = funded_deal()
        with pytest.raises(ValidationError):
            deals.raise_dispute(deal, BUYER, "   ", "", T0)
        assert deal.status == DealStatus.FUNDS_DEPOSITED


class TestMessages:
    def test_party_message(self) -> None:
        deal = make_deal()
        message = deals.add_message(deal, SELLER, "  Is the price negotiable?  ", T0)
        assert message.text == "Is the price negotiable?"
        assert deal.messages[-1] is message

    def test_message_limits(self) -> None:
        deal = make_deal()
        with pytest.raises(ValidationError):
            deals.add_message(deal, BUYER, "", T0)
        with pytest.raises(ValidationError):
            deals.add_message(deal, BUYER, "x" * 1001, T0)

    def test_rejected_on_terminal_deal(self) -> None:
        deal = make_deal()
        deals.cancel(deal, BUYER, "", T0)
        with pytest.raises(InvalidTransition):
            deals.add_message(deal, BUYER, "Hello?", T0)


class TestDerivedViews:
    def test_buyer_can_remind_seller(self) -> None:
        deal = make_deal()
        deals.accept(deal, BUYER, T0)
        deals.accept(deal, SELLER, T0)
        deals.advance_gating(deal, KycStatus.PENDING, T0)

        action = deals.next_action(deal, BUYER, KycStatus.PENDING)
        assert action.text == "Waiting for seller KYC approval — Send reminder"
        assert action.can_send_reminder
        assert deals.next_action(deal, SELLER, KycStatus.PENDING).text == (
            "Complete KYC verification (Required for sellers)"
        )

    def test_next_action_for_stranger(self) -> None:
        assert deals.next_action(make_deal(), STRANGER).text == "Not authorized for this deal"

    def test_progress_rises_through_gating(self) -> None:
        deal = make_deal()
        seen = [deals.progress(deal)]
        deals.accept(deal, BUYER, T0)
        deals.accept(deal, SELLER, T0)
        seen.append(deals.progress(deal))
        deals.advance_gating(deal, KycStatus.APPROVED, T0)
        seen.append(deals.progress(deal))
        upload_all(deal)
        deals.advance_gating(deal, KycStatus.APPROVED, T0)
        seen.append(deals.progress(deal))

        assert seen == sorted(set(seen))
        assert seen[0] > 0

    def test_progress_does_not_drop_on_dispute(self) -> None:
        deal, _ = delivered_deal()
        delivered = deals.progress(deal)
        deals.raise_dispute(deal, BUYER, "Late", "", T0)
        assert deals.progress(deal) == delivered

        deals.resolve_dispute(deal, ADMIN_PROFILE, "release_to_seller", "Delivered", T0)
        deals.record_funds_released(deal, ReleaseReason.DISPUTE_RESOLVED, ADMIN, T0)
        assert delivered < deals.progress(deal) < 100
