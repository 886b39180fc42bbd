"""
API error taxonomy and the uniform error envelope.

Every failure leaves the service as:

    {"error": {"code", "message", "details"?, "docUrl"},
     "meta":  {"requestId", "timestamp"}}

ApiError is raised at the HTTP boundary only. Services return typed
results; the pipeline/routers translate them into ApiError.
"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from workout_api.core.config import settings
from workout_api.core.database import utcnow
from workout_api.services.usage_logger import generate_request_id



class ErrorCode:
    """Stable, documented error codes."""

    MISSING_API_KEY = "MISSING_API_KEY"
    INVALID_API_KEY = "INVALID_API_KEY"
    EXPIRED_API_KEY = "EXPIRED_API_KEY"
    SUBSCRIPTION_INACTIVE = "SUBSCRIPTION_INACTIVE"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


ERROR_STATUS: dict[str, int] = {
    ErrorCode.MISSING_API_KEY: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.INVALID_API_KEY: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.EXPIRED_API_KEY: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.SUBSCRIPTION_INACTIVE: status.HTTP_402_PAYMENT_REQUIRED,
    ErrorCode.RATE_LIMIT_EXCEEDED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorCode.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorCode.INTERNAL_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCode.SERVICE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}

DEFAULT_MESSAGES: dict[str, str] = {
    ErrorCode.MISSING_API_KEY: (
        "API key is required. Include it in the Authorization header as: "
        "Bearer YOUR_API_KEY"
    ),
    ErrorCode.INVALID_API_KEY: "The provided API key is invalid or has been revoked",
    ErrorCode.EXPIRED_API_KEY: "Your API key has expired. Please generate a new one",
    ErrorCode.SUBSCRIPTION_INACTIVE: (
        "Your subscription is inactive. Please update your payment method"
    ),
    ErrorCode.RATE_LIMIT_EXCEEDED: "Rate limit exceeded",
    ErrorCode.VALIDATION_ERROR: "Validation failed",
    ErrorCode.NOT_FOUND: "Resource not found",
    ErrorCode.UNAUTHORIZED: "Authentication required",
    ErrorCode.FORBIDDEN: "You do not have permission to perform this action",
    ErrorCode.INTERNAL_ERROR: "An unexpected error occurred. Our team has been notified",
    ErrorCode.SERVICE_UNAVAILABLE: "Service temporarily unavailable. Please try again later",
}

# Plain HTTPExceptions (404 route, 405 method, …) map onto the taxonomy.
_STATUS_TO_CODE: dict[int, str] = {
    status.HTTP_400_BAD_REQUEST: ErrorCode.VALIDATION_ERROR,
    status.HTTP_401_UNAUTHORIZED: ErrorCode.UNAUTHORIZED,
    status.HTTP_403_FORBIDDEN: ErrorCode.FORBIDDEN,
    status.HTTP_404_NOT_FOUND: ErrorCode.NOT_FOUND,
    status.HTTP_503_SERVICE_UNAVAILABLE: ErrorCode.SERVICE_UNAVAILABLE,
}


class ApiError(Exception):
    """An error surfaced to the client with a stable code."""

    def __init__(
        self,
        code: str,
        message: str | None = None,
        *,
        details: Any = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.code = code
        self.status_code = ERROR_STATUS.get(code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.message = message or DEFAULT_MESSAGES.get(code, "Error")
        self.details = details
        self.headers = headers or {}
        super().__init__(self.message)


def doc_url(code: str) -> str:
    return f"{settings.DOCS_BASE_URL}#{code.lower().replace('_', '-')}"


def error_response(
    code: str,
    message: str,
    status_code: int,
    request_id: str,
    *,
    details: Any = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Build the JSON error envelope."""
    error: dict[str, Any] = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    error["docUrl"] = doc_url(code)

    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({
            "error": error,
            "meta": {"requestId": request_id, "timestamp": utcnow().isoformat()},
        }),
        headers=headers,
    )


def request_id_for(request: Request) -> str:
    """The request's correlation id, minted on first use."""
    request_id = getattr(request.state, "request_id", None)
    if request_id is None:
        request_id = generate_request_id()
        request.state.request_id = request_id
    return request_id


# ── Exception handlers ──────────────────────────────────────
async def _handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    return error_response(
        exc.code,
        exc.message,
        exc.status_code,
        request_id_for(request),
        details=exc.details,
        headers=exc.headers,
    )


async def _handle_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return error_response(
        ErrorCode.VALIDATION_ERROR,
        DEFAULT_MESSAGES[ErrorCode.VALIDATION_ERROR],
        status.HTTP_400_BAD_REQUEST,
        request_id_for(request),
        details=exc.errors(),
    )


async def _handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    code = _STATUS_TO_CODE.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    message = exc.detail if isinstance(exc.detail, str) else DEFAULT_MESSAGES[code]
    return error_response(
        code,
        message,
        exc.status_code,
        request_id_for(request),
        headers=getattr(exc, "headers", None),
    )


def internal_error_response(request: Request) -> JSONResponse:
    """500 envelope for exceptions that escaped every handler."""
    return error_response(
        ErrorCode.INTERNAL_ERROR,
        DEFAULT_MESSAGES[ErrorCode.INTERNAL_ERROR],
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        request_id_for(request),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, _handle_api_error)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, _handle_http_exception)  # type: ignore[arg-type]
