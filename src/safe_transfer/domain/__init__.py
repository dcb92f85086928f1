"""Domain layer — pure business logic with zero framework dependencies."""

from safe_transfer.domain.enums import (
    Category,
    DealAction,
    DealStatus,
    KycStatus,
    PartyRole,
    PartyType,
    PaymentMethod,
    PaymentStatus,
)
from safe_transfer.domain.exceptions import (
    ConcurrencyConflict,
    InvalidTransition,
    SafeTransferError,
    Unauthorized,
    ValidationError,
)
from safe_transfer.domain.models import Deal, Payment, UserProfile
from safe_transfer.domain.state_machine import DealStateMachine, PaymentStateMachine

__all__ = [
    "Category",
    "DealAction",
    "DealStatus",
    "KycStatus",
    "PartyRole",
    "PartyType",
    "PaymentMethod",
    "PaymentStatus",
    "ConcurrencyConflict",
    "InvalidTransition",
    "SafeTransferError",
    "Unauthorized",
    "ValidationError",
    "Deal",
    "Payment",
    "UserProfile",
    "DealStateMachine",
    "PaymentStateMachine",
]
