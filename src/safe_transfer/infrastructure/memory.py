"""In-memory adapters for every engine capability.

Used by the test suite and for embedding the engine without Postgres or
Redis. Repositories store deep copies and apply the same optimistic version
check as the SQL repositories; ``get`` yields to the event loop first so
concurrent callers really do interleave between read and write.
"""

from __future__ import annotations

import asyncio
import copy
from collections import defaultdict
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from safe_transfer.domain.audit import ensure_append_only
from safe_transfer.domain.exceptions import StaleVersionError
from safe_transfer.logging_config import get_logger

if TYPE_CHECKING:
    import uuid

    from safe_transfer.domain.intents import Intent
    from safe_transfer.domain.models import Deal, Payment, UserProfile

logger = get_logger(__name__)


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(UTC)


class FixedClock:
    """A clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2025, 1, 1, 9, 0, tzinfo=UTC)

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs: float) -> datetime:
        self._now += timedelta(**kwargs)
        return self._now


class InMemorySequenceGenerator:
    def __init__(self) -> None:
        self._values: dict[str, int] = defaultdict(int)
        self._lock = asyncio.Lock()

    async def next_value(self, name: str) -> int:
        async with self._lock:
            self._values[name] += 1
            return self._values[name]


class _VersionedStore:
    """Compare-and-set storage keyed by a business id."""

    def __init__(self) -> None:
        self._items: dict[str, Deal | Payment] = {}
        self._lock = asyncio.Lock()

    async def _get(self, key: str):  # noqa: ANN202
        await asyncio.sleep(0)
        stored = self._items.get(key)
        return copy.deepcopy(stored) if stored is not None else None

    async def _add(self, key: str, item):  # noqa: ANN001, ANN202
        async with self._lock:
            if key in self._items:
                raise ValueError(f"Duplicate id: {key}")
            item.version = 1
            self._items[key] = copy.deepcopy(item)
            return item

    async def _save(self, key: str, item):  # noqa: ANN001, ANN202
        async with self._lock:
            stored = self._items.get(key)
            actual = stored.version if stored is not None else None
            if actual != item.version:
                logger.debug("memory.stale_version", id=key, expected=item.version, actual=actual)
                raise StaleVersionError(key, item.version, actual)
            ensure_append_only(key, stored.audit_trail, item.audit_trail)
            item.version += 1
            self._items[key] = copy.deepcopy(item)
            return item

    def _values(self) -> list:
        return [copy.deepcopy(item) for item in self._items.values()]


class InMemoryDealRepository(_VersionedStore):
    async def get(self, deal_id: str) -> Deal | None:
        return await self._get(deal_id)

    async def add(self, deal: Deal) -> Deal:
        return await self._add(deal.deal_id, deal)

    async def save(self, deal: Deal) -> Deal:
        return await self._save(deal.deal_id, deal)

    async def list_for_user(self, user_id: str) -> list[Deal]:
        deals = [d for d in self._values() if user_id in (d.buyer_id, d.seller_id)]
        return sorted(deals, key=lambda d: d.created_at, reverse=True)


class InMemoryPaymentRepository(_VersionedStore):
    async def get(self, payment_id: str) -> Payment | None:
        return await self._get(payment_id)

    async def add(self, payment: Payment) -> Payment:
        return await self._add(payment.payment_id, payment)

    async def save(self, payment: Payment) -> Payment:
        return await self._save(payment.payment_id, payment)

    async def list_for_deal(self, deal_id: uuid.UUID) -> list[Payment]:
        payments = [p for p in self._values() if p.deal_id == deal_id]
        return sorted(payments, key=lambda p: p.created_at)

    async def find_by_gateway_ref(self, gateway_ref: str) -> Payment | None:
        for payment in self._values():
            if gateway_ref in (payment.gateway.order_id, payment.gateway.transaction_id):
                return payment
        return None


class InMemoryUserDirectory:
    def __init__(self, profiles: list[UserProfile] | None = None) -> None:
        self._profiles = {p.user_id: p for p in profiles or []}

    def put(self, profile: UserProfile) -> None:
        self._profiles[profile.user_id] = profile

    async def get(self, user_id: str) -> UserProfile | None:
        return self._profiles.get(user_id)


class InMemoryDocumentStore:
    def __init__(self) -> None:
        self.files: dict[str, tuple[bytes, str | None]] = {}

    async def put(self, key: str, content: bytes, content_type: str | None) -> str:
        self.files[key] = (content, content_type)
        return f"memory://documents/{key}"


class RecordingNotifier:
    """Keeps every intent it is asked to send; optionally fails instead."""

    def __init__(self, error: Exception | None = None) -> None:
        self.sent: list[Intent] = []
        self.error = error

    async def send(self, intent: Intent) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append(intent)
