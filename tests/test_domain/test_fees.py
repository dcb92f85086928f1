"""Tests for escrow and gateway fee computation."""

from __future__ import annotations

from decimal import Decimal

import pytest

from safe_transfer.domain.enums import PartyType, PaymentMethod
from safe_transfer.domain.exceptions import ValidationError
from safe_transfer.domain.fees import (
    escrow_fee,
    gateway_fee,
    to_money,
    total_transaction_cost,
    validate_deal_amount,
)


class TestEscrowFee:
    def test_personal_rate(self) -> None:
        fee = escrow_fee(Decimal("250000"), PartyType.PERSONAL)
        assert fee.percentage == Decimal("2.5")
        assert fee.base_fee == Decimal("6250.00")
        assert fee.gst == Decimal("1125.00")
        assert fee.total_fee == Decimal("7375.00")

    def test_business_rate(self) -> None:
        fee = escrow_fee(Decimal("250000"), PartyType.BUSINESS)
        assert fee.base_fee == Decimal("5000.00")
        assert fee.gst == Decimal("900.00")
        assert fee.total_fee == Decimal("5900.00")

    @pytest.mark.parametrize(
        ("amount", "party_type", "expected_base"),
        [
            ("1000", PartyType.PERSONAL, Decimal("500")),
            ("100000000", PartyType.PERSONAL, Decimal("25000")),
            ("1000", PartyType.BUSINESS, Decimal("1000")),
            ("100000000", PartyType.BUSINESS, Decimal("50000")),
        ],
    )
    def test_base_fee_is_clamped(
        self, amount: str, party_type: PartyType, expected_base: Decimal
    ) -> None:
        assert escrow_fee(amount, party_type).base_fee == expected_base

    def test_total_is_sum_of_parts(self) -> None:
        fee = escrow_fee("123456.78")
        assert fee.total_fee == fee.base_fee + fee.gst


class TestGatewayFee:
    def test_upi_is_capped(self) -> None:
        fee = gateway_fee(Decimal("250000"), PaymentMethod.UPI)
        assert fee.base_fee == Decimal("15.00")
        assert fee.gst == Decimal("2.70")
        assert fee.total_fee == Decimal("17.70")

    def test_below_cap(self) -> None:
        fee = gateway_fee(Decimal("1000"), PaymentMethod.UPI)
        assert fee.base_fee == Decimal("5.00")

    def test_unknown_method_uses_default_rate(self) -> None:
        fee = gateway_fee(Decimal("1000"), "crypto")
        assert fee.base_fee == Decimal("10.00")


class TestTotalTransactionCost:
    def test_grand_total(self) -> None:
        cost = total_transaction_cost(Decimal("250000"), PartyType.PERSONAL, PaymentMethod.UPI)
        assert cost.total_fees == Decimal("7392.70")
        assert cost.breakdown.grand_total == Decimal("257392.70")
        assert cost.total_amount == cost.breakdown.grand_total
        assert cost.breakdown.total_gst == Decimal("1127.70")


class TestAmountValidation:
    @pytest.mark.parametrize("amount", ["999.99", "100000000.01", "0", "-5"])
    def test_out_of_bounds(self, amount: str) -> None:
        with pytest.raises(ValidationError):
            validate_deal_amount(amount)

    def test_bounds_are_inclusive(self) -> None:
        assert validate_deal_amount(1000) == Decimal("1000.00")
        assert validate_deal_amount("100000000") == Decimal("100000000.00")

    def test_not_a_number(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            to_money("lots")
        assert exc_info.value.errors[0]["field"] == "amount"

    def test_rounds_to_paise(self) -> None:
        assert to_money("10.005") == Decimal("10.01")
