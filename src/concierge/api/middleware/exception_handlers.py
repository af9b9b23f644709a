"""Application exceptions and their translation into JSON error responses.

Services raise ``AppException`` subclasses carrying an ``ErrorCode``; the
handlers registered here turn those, plus framework, provider and database
errors, into the ``{"error": {...}}`` envelope with the matching status.
Failures after a turn's stream has started never reach these handlers;
they become error chunks inside the stream instead.
"""

from __future__ import annotations

import traceback

from typing import Any

import asyncpg

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from openai import APIError as OpenAIAPIError, RateLimitError as OpenAIRateLimitError
from pydantic import ValidationError

from concierge.api.middleware.request_context import get_request_id
from concierge.core.constants import get_settings
from concierge.models.error_models import ErrorCode, ErrorDetail, ErrorResponse, get_status_code
from concierge.utils.logger import logger

# =============================================================================
# Exceptions
# =============================================================================


class AppException(Exception):
    """An error with a client-facing code and message."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details
        self.cause = cause


class AuthenticationError(AppException):
    def __init__(
        self,
        message: str = "Authentication required",
        code: ErrorCode = ErrorCode.AUTH_REQUIRED,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(code, message, details)


class PermissionDeniedError(AppException):
    """The caller is authenticated but the chat belongs to someone else."""

    def __init__(self, message: str = "You do not have permission to access this chat"):
        super().__init__(ErrorCode.AUTH_INSUFFICIENT_PERMISSIONS, message)


class ResourceNotFoundError(AppException):
    def __init__(
        self,
        resource: str,
        resource_id: str | None = None,
        code: ErrorCode = ErrorCode.RESOURCE_NOT_FOUND,
        message: str | None = None,
    ):
        if message is None:
            message = f"{resource} not found" if resource_id is None else f"{resource} '{resource_id}' not found"
        super().__init__(code, message, {"resource": resource, "id": resource_id})


class ChatNotFoundError(ResourceNotFoundError):
    def __init__(self, chat_id: str, message: str | None = None):
        super().__init__("Chat", chat_id, code=ErrorCode.CHAT_NOT_FOUND, message=message)


class ValidationException(AppException):
    def __init__(
        self,
        message: str = "Validation error",
        errors: list[ErrorDetail] | None = None,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ):
        self.errors = errors or []
        details = {"errors": [e.model_dump() for e in self.errors]} if self.errors else None
        super().__init__(code, message, details)


class ConfigurationError(AppException):
    """Operator configuration is missing or wrong: credentials, webhook URLs, tool wiring."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(ErrorCode.INTERNAL_CONFIGURATION_ERROR, message, details)


class ExternalServiceError(AppException):
    """An upstream call failed; ``message`` is prefixed with the service name."""

    def __init__(
        self,
        service: str,
        message: str,
        code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_ERROR,
        cause: Exception | None = None,
    ):
        super().__init__(code, f"{service}: {message}", {"service": service}, cause)
        self.service = service


class DatabaseError(AppException):
    def __init__(
        self,
        message: str = "Database error",
        code: ErrorCode = ErrorCode.DATABASE_ERROR,
        cause: Exception | None = None,
    ):
        super().__init__(code, message, cause=cause)


# =============================================================================
# Rendering
# =============================================================================

#: Error code for an ``HTTPException`` raised with a bare status.
HTTP_STATUS_CODES: dict[int, ErrorCode] = {
    400: ErrorCode.VALIDATION_MISSING_FIELD,
    401: ErrorCode.AUTH_REQUIRED,
    403: ErrorCode.AUTH_INSUFFICIENT_PERMISSIONS,
    404: ErrorCode.RESOURCE_NOT_FOUND,
    409: ErrorCode.RESOURCE_ALREADY_EXISTS,
    422: ErrorCode.VALIDATION_ERROR,
    429: ErrorCode.EXTERNAL_RATE_LIMITED,
    502: ErrorCode.EXTERNAL_SERVICE_ERROR,
    503: ErrorCode.EXTERNAL_TIMEOUT,
}


def _render(
    request: Request,
    exc: Exception,
    code: ErrorCode,
    message: str,
    *,
    status_code: int | None = None,
    details: list[ErrorDetail] | None = None,
    debug: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Log the failure and build the enveloped response."""
    status_code = status_code or get_status_code(code)
    if status_code >= 500:
        logger.error(f"{code.value}: {exc}", exc_info=True, error_code=code.value, status_code=status_code)
    else:
        logger.warning(f"{code.value}: {exc}", error_code=code.value, status_code=status_code)

    include_debug = get_settings().debug
    body = ErrorResponse(
        code=code,
        message=message,
        request_id=get_request_id(),
        path=request.url.path,
        details=details,
        debug=debug if include_debug else None,
    )
    return JSONResponse(status_code=status_code, content=body.to_dict(include_debug), headers=headers)


def _field_errors(errors: list[Any]) -> list[ErrorDetail]:
    return [
        ErrorDetail(field=".".join(str(part) for part in e["loc"]), message=e["msg"], code=e["type"]) for e in errors
    ]


# =============================================================================
# Handlers
# =============================================================================


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    details: list[ErrorDetail] | None = None
    if isinstance(exc, ValidationException):
        details = exc.errors or None
    elif exc.details:
        details = [ErrorDetail(field=key, message=str(value)) for key, value in exc.details.items()]

    debug = {"exception_type": type(exc).__name__, "cause": str(exc.cause) if exc.cause else None}
    return _render(request, exc, exc.code, exc.message, details=details, debug=debug)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    code = HTTP_STATUS_CODES.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return _render(request, exc, code, message, status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _render(
        request,
        exc,
        ErrorCode.VALIDATION_ERROR,
        "Request validation failed",
        details=_field_errors(list(exc.errors())),
    )


async def pydantic_exception_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return _render(
        request,
        exc,
        ErrorCode.VALIDATION_ERROR,
        "Data validation failed",
        details=_field_errors(list(exc.errors())),
    )


async def openai_exception_handler(request: Request, exc: OpenAIAPIError) -> JSONResponse:
    """Provider errors raised before a stream opens, e.g. while titling a new chat."""
    if isinstance(exc, OpenAIRateLimitError):
        code, message = ErrorCode.EXTERNAL_RATE_LIMITED, "Model provider rate limit exceeded"
    else:
        code, message = ErrorCode.OPENAI_ERROR, "Model provider error"
    debug = {"openai_error_type": type(exc).__name__, "openai_error_code": getattr(exc, "code", None)}
    return _render(request, exc, code, message, debug=debug)


async def asyncpg_exception_handler(request: Request, exc: asyncpg.PostgresError) -> JSONResponse:
    debug = {"pg_error_code": getattr(exc, "sqlstate", None), "pg_error_class": type(exc).__name__}
    return _render(request, exc, ErrorCode.DATABASE_ERROR, "Database operation failed", debug=debug)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    debug = {
        "exception_type": type(exc).__name__,
        "exception_message": str(exc),
        "traceback": traceback.format_exc(),
    }
    return _render(request, exc, ErrorCode.INTERNAL_UNEXPECTED, "An unexpected error occurred", debug=debug)


def register_exception_handlers(app: FastAPI) -> None:
    # Starlette types handlers as taking Exception; the narrower ones work at runtime
    handlers: list[tuple[type[Exception], Any]] = [
        (AppException, app_exception_handler),
        (HTTPException, http_exception_handler),
        (RequestValidationError, validation_exception_handler),
        (ValidationError, pydantic_exception_handler),
        (OpenAIAPIError, openai_exception_handler),
        (asyncpg.PostgresError, asyncpg_exception_handler),
        (Exception, generic_exception_handler),
    ]
    for exc_class, handler in handlers:
        app.add_exception_handler(exc_class, handler)


__all__ = [
    "AppException",
    "AuthenticationError",
    "ChatNotFoundError",
    "ConfigurationError",
    "DatabaseError",
    "ExternalServiceError",
    "PermissionDeniedError",
    "ResourceNotFoundError",
    "ValidationException",
    "register_exception_handlers",
]
