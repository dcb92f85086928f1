"""FastAPI middleware for request tracing, error handling, and CORS.

Middleware stack (applied bottom-up):
    1. RequestIDMiddleware — injects X-Request-ID into every request/response
    2. ErrorHandlerMiddleware — catches domain exceptions -> structured JSON errors
    3. CORSMiddleware — handles browser clients
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from safe_transfer.domain.exceptions import (
    AlreadyCaptured,
    AlreadyRefunded,
    AuditTrailViolation,
    ConcurrencyConflict,
    DealNotFound,
    GatewayFailure,
    InvalidTransition,
    PaymentNotFound,
    SafeTransferError,
    Unauthorized,
    ValidationError,
)

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger(__name__)


def _error(status_code: int, exc: SafeTransferError, **extra: object) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.code, "message": exc.message, **extra},
    )


# ---------------------------------------------------------------------------
# 1. Request ID Middleware
# ---------------------------------------------------------------------------
class RequestIDMiddleware(BaseHTTPMiddleware):
    """Inject a unique X-Request-ID into every request for log correlation."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        # Use client-provided ID or generate one
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        # Bind to structlog context for all log entries in this request
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


# ---------------------------------------------------------------------------
# 2. Error Handler Middleware
# ---------------------------------------------------------------------------
class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Catch domain exceptions and return structured JSON error responses."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except ValidationError as exc:
            logger.info("request.invalid", error=exc.message, errors=exc.errors)
            return _error(422, exc, errors=exc.errors)
        except Unauthorized as exc:
            logger.warning("authorization.denied", actor=exc.actor_id, action=exc.action)
            return _error(403, exc)
        except (DealNotFound, PaymentNotFound) as exc:
            logger.warning("entity.not_found", error=exc.message)
            return _error(404, exc)
        except InvalidTransition as exc:
            logger.warning(
                "state_machine.invalid_transition",
                current=exc.current_state,
                attempted=exc.attempted,
            )
            return _error(409, exc)
        except ConcurrencyConflict as exc:
            logger.warning("concurrency.conflict", entity=exc.entity, id=exc.entity_id)
            return _error(409, exc)
        except (AlreadyCaptured, AlreadyRefunded) as exc:
            logger.warning("payment.duplicate", error=exc.message)
            return _error(409, exc)
        except AuditTrailViolation as exc:
            logger.error("audit.violation", id=exc.entity_id)
            return _error(409, exc)
        except GatewayFailure as exc:
            logger.error("gateway.failure", error=exc.message, failure_code=exc.failure_code)
            return _error(502, exc)
        except SafeTransferError as exc:
            logger.error("domain.error", error=exc.message, code=exc.code)
            return _error(400, exc)
        except Exception as exc:
            logger.exception("unhandled.error", error=str(exc))
            return JSONResponse(
                status_code=500,
                content={
                    "error": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred",
                },
            )


# ---------------------------------------------------------------------------
# Setup function
# ---------------------------------------------------------------------------
def setup_middleware(app: FastAPI) -> None:
    """Register all middleware on the FastAPI application.

    Order matters — middleware is applied bottom-up, so the last added
    middleware runs first.
    """
    # CORS (runs first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Tighten in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Error handling (runs second)
    app.add_middleware(ErrorHandlerMiddleware)

    # Request ID (runs last = outermost)
    app.add_middleware(RequestIDMiddleware)
