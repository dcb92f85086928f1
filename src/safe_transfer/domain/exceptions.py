"""Domain exceptions for the SafeTransfer escrow engine.

These exceptions are framework-agnostic and represent business rule violations.
They are caught and translated to HTTP responses by the API layer's middleware.

Every state-changing operation raises before it mutates anything, so a raised
exception always leaves the deal or payment unchanged.
"""

from __future__ import annotations


class SafeTransferError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "SAFE_TRANSFER_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- Input Errors ---


class ValidationError(SafeTransferError):
    """Raised when input is malformed or out of bounds.

    Carries a list of ``{"field": ..., "message": ...}`` dicts so callers can
    report every problem at once.
    """

    def __init__(self, message: str, errors: list[dict] | None = None) -> None:
        super().__init__(message=message, code="VALIDATION_ERROR")
        self.errors = errors or []

    @classmethod
    def for_field(cls, field: str, message: str) -> ValidationError:
        return cls(message, errors=[{"field": field, "message": message}])


# --- Authorization Errors ---


class Unauthorized(SafeTransferError):
    """Raised when the actor is not a party to the deal, lacks the admin role,
    or attempts a KYC-gated action before KYC approval."""

    def __init__(self, actor_id: str, action: str, reason: str = "") -> None:
        detail = f": {reason}" if reason else ""
        super().__init__(
            message=f"Actor {actor_id} may not perform {action}{detail}",
            code="UNAUTHORIZED",
        )
        self.actor_id = actor_id
        self.action = action
        self.reason = reason


# --- State Machine Errors ---


class InvalidTransition(SafeTransferError):
    """Raised when an action is not legal from the current state.

    Example: cancelling a deal after funds have been deposited.
    """

    def __init__(self, current_state: str, attempted: str) -> None:
        super().__init__(
            message=f"Invalid transition: {attempted} not allowed from {current_state}",
            code="INVALID_TRANSITION",
        )
        self.current_state = current_state
        self.attempted = attempted


# --- Concurrency Errors ---


class ConcurrencyConflict(SafeTransferError):
    """Raised when optimistic-lock retries are exhausted. The caller may retry."""

    def __init__(self, entity: str, entity_id: str, attempts: int) -> None:
        super().__init__(
            message=f"Concurrent modification of {entity} {entity_id} "
            f"after {attempts} attempts",
            code="CONCURRENCY_CONFLICT",
        )
        self.entity = entity
        self.entity_id = entity_id
        self.attempts = attempts


class StaleVersionError(Exception):
    """Raised by repositories when a save loses the version check.

    Internal to the persistence seam; the orchestrator retries on it and
    surfaces ConcurrencyConflict once attempts run out.
    """

    def __init__(self, entity_id: str, expected: int, actual: int | None) -> None:
        super().__init__(
            f"Stale version for {entity_id}: expected {expected}, found {actual}"
        )
        self.entity_id = entity_id
        self.expected = expected
        self.actual = actual


class AuditTrailViolation(SafeTransferError):
    """Raised when a save would edit or drop an existing audit entry."""

    def __init__(self, entity_id: str) -> None:
        super().__init__(
            message=f"Audit trail of {entity_id} is append-only",
            code="AUDIT_TRAIL_VIOLATION",
        )
        self.entity_id = entity_id


# --- Duplicate Terminal Operations ---


class AlreadyCaptured(SafeTransferError):
    """Raised when capturing a payment that is already captured.

    ``matches_existing`` is True when the duplicate carries the same gateway
    reference as the recorded capture (a webhook replay); callers treat that
    case as an idempotent no-op.
    """

    def __init__(self, payment_id: str, gateway_ref: str, matches_existing: bool) -> None:
        super().__init__(
            message=f"Payment already captured: {payment_id} (ref {gateway_ref})",
            code="ALREADY_CAPTURED",
        )
        self.payment_id = payment_id
        self.gateway_ref = gateway_ref
        self.matches_existing = matches_existing


class AlreadyRefunded(SafeTransferError):
    """Raised on a second refund against the same payment.

    ``matches_existing`` is True when the duplicate is identical to the
    recorded refund; callers treat that case as an idempotent no-op.
    """

    def __init__(self, payment_id: str, matches_existing: bool = False) -> None:
        super().__init__(
            message=f"Payment already refunded: {payment_id}",
            code="ALREADY_REFUNDED",
        )
        self.payment_id = payment_id
        self.matches_existing = matches_existing


# --- Gateway Errors ---


class GatewayFailure(SafeTransferError):
    """Raised when an external capture/refund call failed.

    Feeds retry scheduling; never swallowed.
    """

    def __init__(self, message: str, failure_code: str | None = None) -> None:
        super().__init__(message=message, code="GATEWAY_FAILURE")
        self.failure_code = failure_code


# --- Lookup Errors ---


class DealNotFound(SafeTransferError):
    """Raised when a deal id does not exist."""

    def __init__(self, deal_id: str) -> None:
        super().__init__(message=f"Deal not found: {deal_id}", code="DEAL_NOT_FOUND")
        self.deal_id = deal_id


class PaymentNotFound(SafeTransferError):
    """Raised when a payment id does not exist."""

    def __init__(self, payment_id: str) -> None:
        super().__init__(
            message=f"Payment not found: {payment_id}",
            code="PAYMENT_NOT_FOUND",
        )
        self.payment_id = payment_id
