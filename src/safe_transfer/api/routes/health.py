"""Health check endpoint.

Reports whether each escrow table answers a row count and where the deal
and payment id sequences stand in Redis. Any failing check marks the
service ``degraded``; the endpoint itself always answers 200.
"""

from __future__ import annotations

from fastapi import APIRouter
from sqlalchemy import func, select

from safe_transfer import __version__
from safe_transfer.config import get_settings
from safe_transfer.infrastructure.database.engine import get_session_factory
from safe_transfer.infrastructure.database.orm_models import (
    DealRecord,
    PaymentRecord,
    UserProfileRecord,
)
from safe_transfer.infrastructure.redis_client import RedisSequenceGenerator, get_redis
from safe_transfer.logging_config import get_logger
from safe_transfer.schemas.escrow import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)

_TABLES = (DealRecord, PaymentRecord, UserProfileRecord)
_SEQUENCES = ("deal", "payment")


async def _check_tables() -> dict[str, str]:
    try:
        factory = get_session_factory()
        counts = {}
        async with factory() as session:
            for record in _TABLES:
                rows = await session.scalar(select(func.count()).select_from(record))
                counts[record.__tablename__] = f"healthy ({rows} rows)"
        return counts
    except Exception as exc:
        logger.error("health.db_check_failed", error=str(exc))
        return {record.__tablename__: f"unhealthy: {exc}" for record in _TABLES}


async def _check_sequences() -> dict[str, str]:
    try:
        sequences = RedisSequenceGenerator(get_redis(), get_settings().redis_sequence_prefix)
        return {name: str(await sequences.current_value(name)) for name in _SEQUENCES}
    except Exception as exc:
        logger.error("health.redis_check_failed", error=str(exc))
        return {name: f"unhealthy: {exc}" for name in _SEQUENCES}


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Escrow table reachability and id sequence positions.",
)
async def health_check() -> HealthResponse:
    tables = await _check_tables()
    sequences = await _check_sequences()

    db_ok = all(state.startswith("healthy") for state in tables.values())
    redis_ok = not any(state.startswith("unhealthy") for state in sequences.values())

    return HealthResponse(
        status="ok" if db_ok and redis_ok else "degraded",
        version=__version__,
        database="healthy" if db_ok else "unhealthy",
        redis="healthy" if redis_ok else "unhealthy",
        tables=tables,
        sequences=sequences,
    )
