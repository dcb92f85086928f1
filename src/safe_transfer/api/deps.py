"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject the orchestrator,
the notifier, the caller identity and configuration. Tests override
``get_orchestrator`` and ``get_notifier`` with in-memory wiring.
"""

from __future__ import annotations

from fastapi import Depends, Header

from safe_transfer.config import Settings, get_settings
from safe_transfer.domain.protocols import Notifier
from safe_transfer.infrastructure.database.engine import get_session_factory
from safe_transfer.infrastructure.database.repositories import (
    SqlDealRepository,
    SqlPaymentRepository,
    SqlUserDirectory,
)
from safe_transfer.infrastructure.memory import SystemClock
from safe_transfer.infrastructure.redis_client import RedisSequenceGenerator, get_redis
from safe_transfer.schemas.escrow import ActionResponse
from safe_transfer.services.escrow_orchestrator import EscrowOrchestrator
from safe_transfer.services.notifications import LoggingNotifier, dispatch_intents

_notifier = LoggingNotifier()


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()


def get_orchestrator(settings: Settings = Depends(get_app_settings)) -> EscrowOrchestrator:
    """Provide an orchestrator wired to PostgreSQL and Redis."""
    factory = get_session_factory()
    return EscrowOrchestrator(
        deals=SqlDealRepository(factory),
        payments=SqlPaymentRepository(factory),
        users=SqlUserDirectory(factory),
        sequences=RedisSequenceGenerator(get_redis(), settings.redis_sequence_prefix),
        clock=SystemClock(),
        settings=settings,
    )


def get_notifier() -> Notifier:
    """Provide the notifier used for post-commit notification dispatch."""
    return _notifier


def get_actor_id(x_actor_id: str = Header(..., min_length=1, max_length=64)) -> str:
    """The authenticated caller, as forwarded by the upstream gateway."""
    return x_actor_id


async def execute(
    orchestrator: EscrowOrchestrator,
    notifier: Notifier,
    command: object,
    actor_id: str,
) -> ActionResponse:
    """Apply a command, send its notifications, and build the response.

    Notifications go out only after the change is saved; gateway intents are
    handed back to the caller in ``pending_intents``.
    """
    result = await orchestrator.apply(command, actor_id)
    pending = await dispatch_intents(notifier, result.intents)
    return ActionResponse.from_result(result, pending)
