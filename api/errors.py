"""Global exception handlers for FastAPI."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from clients.postgres_client import PersistenceError
from clients.stripe_client import WebhookSignatureError
from core.exceptions import (
    BadRequestError,
    ExternalServiceError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Billing exception -> (HTTP status, error code). Checked in order.
_BILLING_ERRORS = (
    (ValidationError, 400, ErrorCodes.VALIDATION_ERROR),
    (BadRequestError, 400, ErrorCodes.INVALID_REQUEST),
    (NotFoundError, 404, ErrorCodes.NOT_FOUND),
    (ForbiddenError, 403, ErrorCodes.FORBIDDEN),
    (ExternalServiceError, 502, ErrorCodes.EXTERNAL_SERVICE_ERROR),
)


def _json_error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_response(code, message, detail).model_dump(mode="json"),
    )


def _format_validation_errors(errors) -> str:
    parts = []
    for error in errors:
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        message = error.get("msg", "invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or "Invalid request"


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the app."""

    for exc_type, status_code, code in _BILLING_ERRORS:

        def make_handler(status_code=status_code, code=code):
            async def handler(request: Request, exc: Exception):
                return _json_error(status_code, code, str(exc))
            return handler

        app.add_exception_handler(exc_type, make_handler())

    @app.exception_handler(WebhookSignatureError)
    async def webhook_signature_handler(request: Request, exc: WebhookSignatureError):
        logger.warning(f"Webhook rejected: {exc}")
        return _json_error(400, ErrorCodes.INVALID_SIGNATURE, str(exc))

    @app.exception_handler(PersistenceError)
    async def persistence_error_handler(request: Request, exc: PersistenceError):
        logger.error(f"Persistence failure: {exc}")
        return _json_error(
            500, ErrorCodes.PERSISTENCE_ERROR, "A database error occurred", detail=str(exc)
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return _json_error(400, ErrorCodes.INVALID_REQUEST, str(exc))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return _json_error(
            400, ErrorCodes.VALIDATION_ERROR, _format_validation_errors(exc.errors())
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        return _json_error(500, ErrorCodes.INTERNAL_ERROR, "An internal error occurred")
