"""Repository classes for database access.

Repositories translate between the domain dataclasses and ORM rows and
encapsulate all SQL queries. Unlike request-scoped repositories, each call
here runs in its own short transaction from the injected session factory:
a deal mutation is load -> pure transition -> save, and the save must stand
or fall on its own version check.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import or_, select
from sqlalchemy.orm.exc import StaleDataError

from safe_transfer.domain.audit import ensure_append_only
from safe_transfer.domain.enums import KycStatus, PartyType
from safe_transfer.domain.exceptions import StaleVersionError
from safe_transfer.domain.models import UserProfile
from safe_transfer.infrastructure.database.orm_models import (
    DealRecord,
    PaymentRecord,
    UserProfileRecord,
)
from safe_transfer.infrastructure.serialization import (
    audit_from_documents,
    deal_from_document,
    deal_to_document,
    payment_from_document,
    payment_to_document,
)
from safe_transfer.logging_config import get_logger

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from safe_transfer.domain.models import Deal, Payment

logger = get_logger(__name__)


def _deal_from_row(row: DealRecord) -> Deal:
    deal = deal_from_document(row.document)
    deal.version = row.version
    return deal


def _payment_from_row(row: PaymentRecord) -> Payment:
    payment = payment_from_document(row.document)
    payment.version = row.version
    return payment


class SqlDealRepository:
    """Data access for deals."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, deal_id: str) -> Deal | None:
        """Fetch a deal by its human-readable id."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(DealRecord).where(DealRecord.deal_id == deal_id)
            )
            row = result.scalar_one_or_none()
            return _deal_from_row(row) if row is not None else None

    async def add(self, deal: Deal) -> Deal:
        """Insert a new deal at version 1."""
        async with self._session_factory() as session, session.begin():
            row = DealRecord(
                id=deal.id,
                deal_id=deal.deal_id,
                buyer_id=deal.buyer_id,
                seller_id=deal.seller_id,
                status=deal.status.value,
                category=deal.category.value,
                amount=deal.amount,
                document=deal_to_document(deal),
                created_at=deal.created_at,
                updated_at=deal.updated_at,
            )
            session.add(row)
            await session.flush()
            deal.version = row.version
        return deal

    async def save(self, deal: Deal) -> Deal:
        """Store ``deal`` if the stored version still equals ``deal.version``.

        Raises:
            StaleVersionError: Another writer saved first.
            AuditTrailViolation: The audit trail was edited, not extended.
        """
        try:
            async with self._session_factory() as session, session.begin():
                result = await session.execute(
                    select(DealRecord).where(DealRecord.deal_id == deal.deal_id)
                )
                row = result.scalar_one_or_none()
                actual = row.version if row is not None else None
                if actual != deal.version:
                    raise StaleVersionError(deal.deal_id, deal.version, actual)
                ensure_append_only(
                    deal.deal_id,
                    audit_from_documents(row.document["audit_trail"]),
                    deal.audit_trail,
                )
                row.status = deal.status.value
                row.document = deal_to_document(deal)
                await session.flush()
                new_version = row.version
        except StaleDataError as exc:
            logger.debug("database.stale_deal", deal_id=deal.deal_id, expected=deal.version)
            raise StaleVersionError(deal.deal_id, deal.version, None) from exc
        deal.version = new_version
        return deal

    async def list_for_user(self, user_id: str) -> list[Deal]:
        """Fetch every deal where the user is buyer or seller, newest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(DealRecord)
                .where(or_(DealRecord.buyer_id == user_id, DealRecord.seller_id == user_id))
                .order_by(DealRecord.created_at.desc())
            )
            return [_deal_from_row(row) for row in result.scalars().all()]


class SqlPaymentRepository:
    """Data access for payments."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, payment_id: str) -> Payment | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(PaymentRecord).where(PaymentRecord.payment_id == payment_id)
            )
            row = result.scalar_one_or_none()
            return _payment_from_row(row) if row is not None else None

    async def add(self, payment: Payment) -> Payment:
        async with self._session_factory() as session, session.begin():
            row = PaymentRecord(
                id=payment.id,
                payment_id=payment.payment_id,
                deal_id=payment.deal_id,
                status=payment.status.value,
                amount=payment.amount,
                order_id=payment.gateway.order_id,
                transaction_id=payment.gateway.transaction_id,
                document=payment_to_document(payment),
                created_at=payment.created_at,
                updated_at=payment.updated_at,
            )
            session.add(row)
            await session.flush()
            payment.version = row.version
        return payment

    async def save(self, payment: Payment) -> Payment:
        """Same contract as SqlDealRepository.save."""
        try:
            async with self._session_factory() as session, session.begin():
                result = await session.execute(
                    select(PaymentRecord).where(PaymentRecord.payment_id == payment.payment_id)
                )
                row = result.scalar_one_or_none()
                actual = row.version if row is not None else None
                if actual != payment.version:
                    raise StaleVersionError(payment.payment_id, payment.version, actual)
                ensure_append_only(
                    payment.payment_id,
                    audit_from_documents(row.document["audit_trail"]),
                    payment.audit_trail,
                )
                row.status = payment.status.value
                row.order_id = payment.gateway.order_id
                row.transaction_id = payment.gateway.transaction_id
                row.document = payment_to_document(payment)
                await session.flush()
                new_version = row.version
        except StaleDataError as exc:
            logger.debug(
                "database.stale_payment", payment_id=payment.payment_id, expected=payment.version
            )
            raise StaleVersionError(payment.payment_id, payment.version, None) from exc
        payment.version = new_version
        return payment

    async def list_for_deal(self, deal_id: uuid.UUID) -> list[Payment]:
        """Fetch all payments for a deal, oldest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(PaymentRecord)
                .where(PaymentRecord.deal_id == deal_id)
                .order_by(PaymentRecord.created_at.asc())
            )
            return [_payment_from_row(row) for row in result.scalars().all()]

    async def find_by_gateway_ref(self, gateway_ref: str) -> Payment | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(PaymentRecord)
                .where(
                    or_(
                        PaymentRecord.order_id == gateway_ref,
                        PaymentRecord.transaction_id == gateway_ref,
                    )
                )
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return _payment_from_row(row) if row is not None else None


class SqlUserDirectory:
    """Reads (and, for the identity service, writes) user profiles."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, user_id: str) -> UserProfile | None:
        async with self._session_factory() as session:
            row = await session.get(UserProfileRecord, user_id)
            if row is None:
                return None
            return UserProfile(
                user_id=row.user_id,
                kyc_status=KycStatus(row.kyc_status),
                party_type=PartyType(row.party_type),
                is_admin=row.is_admin,
                display_name=row.display_name,
                phone=row.phone,
                email=row.email,
            )

    async def put(self, profile: UserProfile) -> None:
        """Insert or replace a profile."""
        async with self._session_factory() as session, session.begin():
            await session.merge(
                UserProfileRecord(
                    user_id=profile.user_id,
                    kyc_status=profile.kyc_status.value,
                    party_type=profile.party_type.value,
                    is_admin=profile.is_admin,
                    display_name=profile.display_name,
                    phone=profile.phone,
                    email=profile.email,
                )
            )
