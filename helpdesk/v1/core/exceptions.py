"""
Application exceptions and the JSON envelopes the API renders them in.

Every response carries ``ok``, ``request_id`` and ``timestamp``; successes
add ``data``/``message``, failures add ``error{message, code, details}``.
"""

import uuid
from datetime import UTC, datetime
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from helpdesk.config.logging import add_request_context, get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class HelpdeskException(Exception):
    """Base exception carrying an HTTP status and structured details."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(HelpdeskException):
    """Input (request body, job payload, rule definition) failed validation."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, details=details)


class NotFoundError(HelpdeskException):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, details=details)


class UnauthorizedError(HelpdeskException):
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(
        self, message: str = "Unauthorized", details: dict[str, Any] | None = None
    ):
        super().__init__(message, details=details)


class ForbiddenError(HelpdeskException):
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "Forbidden", details: dict[str, Any] | None = None):
        super().__init__(message, details=details)


def _now() -> str:
    return datetime.now(UTC).isoformat()


def create_error_response(
    status_code: int,
    message: str,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    """Create standardized error response envelope."""
    return {
        "ok": False,
        "error": {
            "message": message,
            "code": status_code,
            "details": details or {},
        },
        "request_id": request_id,
        "timestamp": _now(),
    }


def create_success_response(
    data: Any, message: str | None = None, request_id: str | None = None
) -> dict[str, Any]:
    """Create standardized success response envelope."""
    return {
        "ok": True,
        "data": data,
        "message": message,
        "request_id": request_id,
        "timestamp": _now(),
    }


def jsonable_errors(errors: Any) -> list[dict[str, Any]]:
    """Keep only the serialisable parts (loc, msg, type) of pydantic errors."""
    return [
        {
            "loc": list(error.get("loc", ())),
            "msg": error.get("msg"),
            "type": error.get("type"),
        }
        for error in errors
    ]


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


def _error_json(
    request: Request,
    status_code: int,
    message: str,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=create_error_response(
            status_code=status_code,
            message=message,
            details=details,
            request_id=_request_id(request),
        ),
    )


async def helpdesk_exception_handler(
    request: Request, exc: HelpdeskException
) -> JSONResponse:
    # 4xx are caller mistakes; only 5xx are logged as errors
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "Application exception",
        exception=exc.__class__.__name__,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
    )
    return _error_json(request, exc.status_code, exc.message, exc.details)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    logger.warning("HTTP exception", status_code=exc.status_code, detail=exc.detail)
    return _error_json(request, exc.status_code, str(exc.detail))


async def request_validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render request body/query validation failures in the standard envelope."""
    errors = jsonable_errors(exc.errors())
    logger.warning("Request validation failed", errors=errors)
    return _error_json(
        request,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Request validation failed",
        {"errors": errors},
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled exception",
        exception=exc.__class__.__name__,
        message=str(exc),
        exc_info=True,
    )
    return _error_json(
        request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error"
    )


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind a correlation ID to the request, its log lines and its response.

    An ``X-Request-ID`` sent by the caller (e.g. a cron runner hitting
    ``/v1/jobs/process``) is reused so both sides log the same ID.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id

        add_request_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
