"""SQLAlchemy 2.0 ORM models for the SafeTransfer escrow engine.

Three tables:
    1. deals          — One row per deal; full state in a JSONB document.
    2. payments       — One row per payment, linked to its deal.
    3. user_profiles  — Read model of users (KYC verdict, party type, admin flag).

Design decisions:
    - The deal/payment dataclass is stored whole in ``document``; the scalar
      columns beside it are copies kept for indexing and CHECK constraints.
    - ``version`` is the mapper's version_id_col, so every UPDATE carries
      ``WHERE version = :expected`` and a lost race surfaces as StaleDataError.
    - Numeric(14, 2) for rupee amounts (no floating point rounding errors).
    - The audit trail lives inside ``document`` and is append-only; the
      repositories refuse any save that rewrites it.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from safe_transfer.domain.enums import DealStatus, KycStatus, PaymentStatus


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def _in_values(column: str, enum_cls: type) -> str:
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return f"{column} IN ({values})"


# ---------------------------------------------------------------------------
# Helper: auto-set updated_at on flush
# ---------------------------------------------------------------------------
def _set_updated_at(mapper, connection, target):  # noqa: ANN001
    """SQLAlchemy event listener that updates `updated_at` before flush."""
    if hasattr(target, "updated_at"):
        target.updated_at = datetime.now(UTC)


# ---------------------------------------------------------------------------
# 1. deals
# ---------------------------------------------------------------------------
class DealRecord(Base):
    """A two-party escrow deal."""

    __tablename__ = "deals"

    # --- Primary Key ---
    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
    )

    # --- Identifiers & Parties ---
    deal_id: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        unique=True,
        comment="Human-readable deal id, e.g. ST00000001",
    )
    buyer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    seller_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # --- Indexed copies of document fields ---
    status: Mapped[str] = mapped_column(
        String(24),
        nullable=False,
        comment="Current lifecycle state (guarded by DealStateMachine)",
    )
    category: Mapped[str] = mapped_column(String(24), nullable=False)
    amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        nullable=False,
        comment="Deal amount in INR",
    )

    # --- Full state ---
    document: Mapped[dict] = mapped_column(
        JSONB,
        nullable=False,
        comment="Serialized Deal dataclass, audit trail and messages included",
    )

    # --- Optimistic lock ---
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    __mapper_args__ = {"version_id_col": version}

    # --- Table Constraints & Indexes ---
    __table_args__ = (
        CheckConstraint(_in_values("status", DealStatus), name="ck_deal_valid_status"),
        CheckConstraint("amount > 0", name="ck_deal_positive_amount"),
        CheckConstraint("buyer_id <> seller_id", name="ck_deal_distinct_parties"),
        Index("idx_deal_status", "status"),
        Index("idx_deal_buyer", "buyer_id"),
        Index("idx_deal_seller", "seller_id"),
        Index("idx_deal_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<DealRecord deal_id={self.deal_id} status={self.status} v{self.version}>"


# ---------------------------------------------------------------------------
# 2. payments
# ---------------------------------------------------------------------------
class PaymentRecord(Base):
    """A payment against a deal (escrow deposit)."""

    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
    )
    payment_id: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        unique=True,
        comment="Human-readable payment id, e.g. PAY00000001",
    )
    deal_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("deals.id", ondelete="CASCADE"),
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(24),
        nullable=False,
        comment="Current lifecycle state (guarded by PaymentStateMachine)",
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    order_id: Mapped[str | None] = mapped_column(
        String(128),
        nullable=True,
        comment="Gateway order id",
    )
    transaction_id: Mapped[str | None] = mapped_column(
        String(128),
        nullable=True,
        comment="Gateway transaction id, set on capture",
    )

    document: Mapped[dict] = mapped_column(
        JSONB,
        nullable=False,
        comment="Serialized Payment dataclass",
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(_in_values("status", PaymentStatus), name="ck_payment_valid_status"),
        CheckConstraint("amount > 0", name="ck_payment_positive_amount"),
        Index("idx_payment_deal", "deal_id"),
        Index("idx_payment_status", "status"),
        Index("idx_payment_order", "order_id"),
        Index("idx_payment_transaction", "transaction_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<PaymentRecord payment_id={self.payment_id} status={self.status} "
            f"amount={self.amount} INR>"
        )


# ---------------------------------------------------------------------------
# 3. user_profiles
# ---------------------------------------------------------------------------
class UserProfileRecord(Base):
    """What the engine knows about a user. Written by the identity/KYC services."""

    __tablename__ = "user_profiles"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    kyc_status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=KycStatus.PENDING.value,
    )
    party_type: Mapped[str] = mapped_column(String(16), nullable=False, default="personal")
    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    display_name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    email: Mapped[str | None] = mapped_column(String(254), nullable=True)

    __table_args__ = (
        CheckConstraint(_in_values("kyc_status", KycStatus), name="ck_user_valid_kyc"),
    )

    def __repr__(self) -> str:
        return f"<UserProfileRecord user_id={self.user_id} kyc={self.kyc_status}>"


# ---------------------------------------------------------------------------
# Register the auto-update listener for updated_at
# ---------------------------------------------------------------------------
event.listen(DealRecord, "before_update", _set_updated_at)
event.listen(PaymentRecord, "before_update", _set_updated_at)
