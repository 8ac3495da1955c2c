"""Error taxonomy shared by services and the HTTP layer.

Every ``MarketplaceError`` carries the status code the API answers with. The
handlers installed by ``install_error_handlers`` render all failures as
``{"success": false, "error": "<message>"}``.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DBAPIError
from starlette.exceptions import HTTPException

logger = logging.getLogger(__name__)


class MarketplaceError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(MarketplaceError):
    status_code = 400


class NotFoundError(MarketplaceError):
    status_code = 404


class ForbiddenError(MarketplaceError):
    status_code = 403


class ConflictError(MarketplaceError):
    """Concurrent state change; the client may retry."""

    status_code = 409


class ExternalServiceError(MarketplaceError):
    """The payment gateway failed or disagrees with local state."""

    def __init__(self, message: str, caller_fixable: bool = True):
        super().__init__(message)
        self.status_code = 400 if caller_fixable else 500


class PaymentNotFound(ExternalServiceError):
    def __init__(self, payment_intent_id: str):
        super().__init__(f"Payment {payment_intent_id} could not be retrieved")
        self.payment_intent_id = payment_intent_id


class PaymentIncomplete(ExternalServiceError):
    def __init__(self, status: str):
        super().__init__(f"Payment has not succeeded (status: {status})")
        self.payment_status = status


class PaymentAmountMismatch(ExternalServiceError):
    def __init__(self, expected_cents: int, actual_cents: int):
        super().__init__(
            f"Payment amount {actual_cents} does not match proposal amount {expected_cents}"
        )
        self.expected_cents = expected_cents
        self.actual_cents = actual_cents


class PaymentGatewayUnconfigured(ExternalServiceError):
    def __init__(self):
        super().__init__("Payment system not configured", caller_fixable=False)


class SchemaDriftError(Exception):
    """An expected column is missing; a migration has not been applied."""


_LOCK_MARKERS = ("lock wait timeout", "deadlock", "database is locked", "could not obtain lock")


def is_lock_conflict(exc: BaseException) -> bool:
    """True for store errors caused by lock waits or deadlocks."""
    if not isinstance(exc, DBAPIError):
        return False
    text = str(exc.orig if exc.orig is not None else exc).lower()
    return any(marker in text for marker in _LOCK_MARKERS)


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(MarketplaceError)
    async def _marketplace_error(request: Request, exc: MarketplaceError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return _error_response(exc.status_code, exc.message)

    @app.exception_handler(HTTPException)
    async def _http_error(request: Request, exc: HTTPException):
        return _error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def _request_validation_error(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{loc}: {first.get('msg', 'invalid input')}" if loc else first.get("msg", "invalid input")
        return _error_response(400, message)
