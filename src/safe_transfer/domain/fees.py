"""Escrow and payment-gateway fee computation.

All arithmetic is done in ``Decimal`` and every component is rounded to paise
before it is summed, so totals always equal the sum of their displayed parts.

Fee schedules are immutable module-level tables. A deal freezes its fee at
creation (see ``deals.new_deal``), so changing a schedule here never alters
an existing deal.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from types import MappingProxyType

from safe_transfer.domain.enums import PartyType, PaymentMethod
from safe_transfer.domain.exceptions import ValidationError

PAISE = Decimal("0.01")
GST_RATE = Decimal("0.18")

MIN_DEAL_AMOUNT = Decimal("1000")
MAX_DEAL_AMOUNT = Decimal("100000000")


@dataclass(frozen=True)
class FeeSchedule:
    rate: Decimal
    min_fee: Decimal
    max_fee: Decimal


@dataclass(frozen=True)
class GatewayRate:
    rate: Decimal
    cap: Decimal


FEE_SCHEDULES = MappingProxyType(
    {
        PartyType.PERSONAL: FeeSchedule(Decimal("0.025"), Decimal("500"), Decimal("25000")),
        PartyType.BUSINESS: FeeSchedule(Decimal("0.02"), Decimal("1000"), Decimal("50000")),
    }
)

GATEWAY_RATES = MappingProxyType(
    {
        PaymentMethod.UPI: GatewayRate(Decimal("0.005"), Decimal("15")),
        PaymentMethod.NETBANKING: GatewayRate(Decimal("0.009"), Decimal("25")),
        PaymentMethod.DEBIT_CARD: GatewayRate(Decimal("0.008"), Decimal("20")),
        PaymentMethod.CREDIT_CARD: GatewayRate(Decimal("0.018"), Decimal("50")),
        PaymentMethod.WALLET: GatewayRate(Decimal("0.004"), Decimal("10")),
    }
)

DEFAULT_GATEWAY_RATE = GatewayRate(Decimal("0.01"), Decimal("30"))


@dataclass(frozen=True)
class EscrowFee:
    amount: Decimal
    percentage: Decimal
    base_fee: Decimal
    gst: Decimal
    total_fee: Decimal


@dataclass(frozen=True)
class GatewayFee:
    base_fee: Decimal
    gst: Decimal
    total_fee: Decimal


@dataclass(frozen=True)
class CostBreakdown:
    amount: Decimal
    escrow_fee: Decimal
    gateway_fee: Decimal
    gst_on_escrow: Decimal
    gst_on_gateway: Decimal
    total_gst: Decimal
    grand_total: Decimal


@dataclass(frozen=True)
class TransactionCost:
    transaction_amount: Decimal
    escrow_fees: EscrowFee
    gateway_fees: GatewayFee
    total_fees: Decimal
    total_amount: Decimal
    breakdown: CostBreakdown


def to_money(value: Decimal | int | str | float) -> Decimal:
    """Coerce a numeric value to a paise-rounded Decimal."""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as err:
        raise ValidationError.for_field("amount", f"Not a number: {value!r}") from err
    if not amount.is_finite():
        raise ValidationError.for_field("amount", f"Not a finite amount: {value!r}")
    return amount.quantize(PAISE, rounding=ROUND_HALF_UP)


def validate_deal_amount(amount: Decimal | int | str | float) -> Decimal:
    """Return ``amount`` as money, or raise if it is outside the deal bounds."""
    money = to_money(amount)
    if money < MIN_DEAL_AMOUNT:
        raise ValidationError.for_field("amount", "Amount must be at least ₹1,000")
    if money > MAX_DEAL_AMOUNT:
        raise ValidationError.for_field("amount", "Amount must be at most ₹10 crores")
    return money


def escrow_fee(
    amount: Decimal | int | str | float,
    party_type: PartyType | str = PartyType.PERSONAL,
) -> EscrowFee:
    """Platform commission on ``amount`` for the given party type.

    ``base_fee = clamp(amount * rate, min_fee, max_fee)``; GST is 18% of the
    base fee.
    """
    money = validate_deal_amount(amount)
    schedule = FEE_SCHEDULES[PartyType(party_type)]

    base = min(max(money * schedule.rate, schedule.min_fee), schedule.max_fee)
    base = base.quantize(PAISE, rounding=ROUND_HALF_UP)
    gst = (base * GST_RATE).quantize(PAISE, rounding=ROUND_HALF_UP)

    return EscrowFee(
        amount=money,
        percentage=(schedule.rate * 100).normalize(),
        base_fee=base,
        gst=gst,
        total_fee=base + gst,
    )


def gateway_fee(
    amount: Decimal | int | str | float,
    method: PaymentMethod | str | None,
) -> GatewayFee:
    """Payment-gateway processing fee; unknown methods use the default rate."""
    money = to_money(amount)
    if money <= 0:
        raise ValidationError.for_field("amount", "Amount must be positive")

    try:
        rate = GATEWAY_RATES[PaymentMethod(method)]
    except ValueError:
        rate = DEFAULT_GATEWAY_RATE

    base = min(money * rate.rate, rate.cap).quantize(PAISE, rounding=ROUND_HALF_UP)
    gst = (base * GST_RATE).quantize(PAISE, rounding=ROUND_HALF_UP)
    return GatewayFee(base_fee=base, gst=gst, total_fee=base + gst)


def total_transaction_cost(
    amount: Decimal | int | str | float,
    party_type: PartyType | str,
    method: PaymentMethod | str | None,
) -> TransactionCost:
    """Full cost of funding a deal: amount + escrow fee + gateway fee."""
    escrow = escrow_fee(amount, party_type)
    gateway = gateway_fee(escrow.amount, method)
    total_fees = escrow.total_fee + gateway.total_fee
    grand_total = escrow.amount + total_fees

    return TransactionCost(
        transaction_amount=escrow.amount,
        escrow_fees=escrow,
        gateway_fees=gateway,
        total_fees=total_fees,
        total_amount=grand_total,
        breakdown=CostBreakdown(
            amount=escrow.amount,
            escrow_fee=escrow.base_fee,
            gateway_fee=gateway.base_fee,
            gst_on_escrow=escrow.gst,
            gst_on_gateway=gateway.gst,
            total_gst=escrow.gst + gateway.gst,
            grand_total=grand_total,
        ),
    )
