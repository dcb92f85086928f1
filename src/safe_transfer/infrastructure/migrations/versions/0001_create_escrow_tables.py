"""Create deals, payments and user_profiles tables.

Revision ID: 0001
Revises:
Create Date: 2025-01-01
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

from safe_transfer.domain.enums import DealStatus, KycStatus, PaymentStatus

revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _in_values(column: str, enum_cls: type) -> str:
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return f"{column} IN ({values})"


def upgrade() -> None:
    op.create_table(
        "deals",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("deal_id", sa.String(32), nullable=False, unique=True),
        sa.Column("buyer_id", sa.String(64), nullable=False),
        sa.Column("seller_id", sa.String(64), nullable=False),
        sa.Column("status", sa.String(24), nullable=False),
        sa.Column("category", sa.String(24), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("document", JSONB, nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(_in_values("status", DealStatus), name="ck_deal_valid_status"),
        sa.CheckConstraint("amount > 0", name="ck_deal_positive_amount"),
        sa.CheckConstraint("buyer_id <> seller_id", name="ck_deal_distinct_parties"),
    )
    op.create_index("idx_deal_status", "deals", ["status"])
    op.create_index("idx_deal_buyer", "deals", ["buyer_id"])
    op.create_index("idx_deal_seller", "deals", ["seller_id"])
    op.create_index("idx_deal_created_at", "deals", ["created_at"])

    op.create_table(
        "payments",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("payment_id", sa.String(32), nullable=False, unique=True),
        sa.Column(
            "deal_id",
            sa.Uuid(),
            sa.ForeignKey("deals.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("status", sa.String(24), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("order_id", sa.String(128), nullable=True),
        sa.Column("transaction_id", sa.String(128), nullable=True),
        sa.Column("document", JSONB, nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(_in_values("status", PaymentStatus), name="ck_payment_valid_status"),
        sa.CheckConstraint("amount > 0", name="ck_payment_positive_amount"),
    )
    op.create_index("idx_payment_deal", "payments", ["deal_id"])
    op.create_index("idx_payment_status", "payments", ["status"])
    op.create_index("idx_payment_order", "payments", ["order_id"])
    op.create_index("idx_payment_transaction", "payments", ["transaction_id"])

    op.create_table(
        "user_profiles",
        sa.Column("user_id", sa.String(64), primary_key=True),
        sa.Column("kyc_status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("party_type", sa.String(16), nullable=False, server_default="personal"),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("display_name", sa.String(128), nullable=False, server_default=""),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("email", sa.String(254), nullable=True),
        sa.CheckConstraint(_in_values("kyc_status", KycStatus), name="ck_user_valid_kyc"),
    )


def downgrade() -> None:
    op.drop_table("user_profiles")
    op.drop_table("payments")
    op.drop_table("deals")
