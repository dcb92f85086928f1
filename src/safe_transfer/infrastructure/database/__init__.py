"""Database infrastructure — engine, ORM models, and repositories."""

from safe_transfer.infrastructure.database.engine import (
    close_db,
    get_session_factory,
    init_db,
)
from safe_transfer.infrastructure.database.orm_models import (
    Base,
    DealRecord,
    PaymentRecord,
    UserProfileRecord,
)
from safe_transfer.infrastructure.database.repositories import (
    SqlDealRepository,
    SqlPaymentRepository,
    SqlUserDirectory,
)

__all__ = [
    "Base",
    "DealRecord",
    "PaymentRecord",
    "UserProfileRecord",
    "SqlDealRepository",
    "SqlPaymentRepository",
    "SqlUserDirectory",
    "get_session_factory",
    "init_db",
    "close_db",
]
