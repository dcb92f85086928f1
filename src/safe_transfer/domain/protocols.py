"""Capability protocols consumed by the escrow engine.

These are Protocols (structural subtyping), so adapters don't inherit from
anything; they just need to match the shape. Production adapters live in
``infrastructure/database`` and ``infrastructure/redis_client``; in-memory
ones in ``infrastructure/memory``.

The domain layer has ZERO imports from SQLAlchemy, Redis or any transport.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    import uuid
    from datetime import datetime

    from safe_transfer.domain.intents import Intent
    from safe_transfer.domain.models import Deal, Payment, UserProfile


@runtime_checkable
class Clock(Protocol):
    def now(self) -> datetime:
        """Current time as a timezone-aware UTC datetime."""
        ...


@runtime_checkable
class SequenceGenerator(Protocol):
    async def next_value(self, name: str) -> int:
        """Atomically increment and return the named counter (first value 1)."""
        ...


@runtime_checkable
class DealRepository(Protocol):
    """Deal persistence with optimistic versioning.

    ``save`` must compare the stored version with ``deal.version``, raise
    StaleVersionError on mismatch, and otherwise store the deal with the
    version incremented. It must also reject edits to the audit trail.
    """

    async def get(self, deal_id: str) -> Deal | None: ...

    async def add(self, deal: Deal) -> Deal: ...

    async def save(self, deal: Deal) -> Deal: ...

    async def list_for_user(self, user_id: str) -> list[Deal]: ...


@runtime_checkable
class PaymentRepository(Protocol):
    """Payment persistence; same versioning contract as DealRepository."""

    async def get(self, payment_id: str) -> Payment | None: ...

    async def add(self, payment: Payment) -> Payment: ...

    async def save(self, payment: Payment) -> Payment: ...

    async def list_for_deal(self, deal_id: uuid.UUID) -> list[Payment]: ...

    async def find_by_gateway_ref(self, gateway_ref: str) -> Payment | None:
        """Look a payment up by gateway order id or transaction id."""
        ...


@runtime_checkable
class UserDirectory(Protocol):
    async def get(self, user_id: str) -> UserProfile | None: ...


@runtime_checkable
class Notifier(Protocol):
    async def send(self, intent: Intent) -> None:
        """Deliver one notification intent. May raise; callers log and move on."""
        ...


@runtime_checkable
class DocumentStore(Protocol):
    async def put(self, key: str, content: bytes, content_type: str | None) -> str:
        """Store a file and return its URL."""
        ...
