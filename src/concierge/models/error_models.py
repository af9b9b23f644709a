"""Error envelope returned by every non-streaming failure.

REST failures render as ``{"error": {...}}`` with a stable ``code`` that
clients branch on. The numeric block of a code names its family:
1xxx auth, 2xxx request validation, 3xxx missing resources, 7xxx upstream
services, 8xxx database, 9xxx internal.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ErrorCode(str, Enum):
    AUTH_REQUIRED = "AUTH_1001"
    AUTH_INVALID_TOKEN = "AUTH_1002"
    AUTH_EXPIRED_TOKEN = "AUTH_1003"
    AUTH_INSUFFICIENT_PERMISSIONS = "AUTH_1004"
    AUTH_USER_NOT_FOUND = "AUTH_1005"

    VALIDATION_ERROR = "VAL_2001"
    VALIDATION_MISSING_FIELD = "VAL_2002"
    VALIDATION_INVALID_FORMAT = "VAL_2003"
    VALIDATION_UNKNOWN_MODEL = "VAL_2004"

    RESOURCE_NOT_FOUND = "RES_3001"
    RESOURCE_ALREADY_EXISTS = "RES_3002"
    CHAT_NOT_FOUND = "RES_3003"

    EXTERNAL_SERVICE_ERROR = "EXT_7001"
    EXTERNAL_TIMEOUT = "EXT_7002"
    EXTERNAL_RATE_LIMITED = "EXT_7003"
    OPENAI_ERROR = "EXT_7010"
    SEARCH_PROVIDER_ERROR = "EXT_7020"
    WORKFLOW_ERROR = "EXT_7030"

    DATABASE_ERROR = "DB_8001"
    DATABASE_CONNECTION_FAILED = "DB_8002"
    DATABASE_QUERY_FAILED = "DB_8003"

    INTERNAL_ERROR = "INT_9001"
    INTERNAL_CONFIGURATION_ERROR = "INT_9002"
    INTERNAL_TIMEOUT = "INT_9003"
    INTERNAL_UNEXPECTED = "INT_9999"


#: Status per code family, keyed by the code prefix.
_FAMILY_STATUS: dict[str, int] = {
    "AUTH": 401,
    "VAL": 422,
    "RES": 404,
    "EXT": 502,
    "DB": 500,
    "INT": 500,
}

#: Codes whose status differs from their family's.
_STATUS_OVERRIDES: dict[ErrorCode, int] = {
    ErrorCode.AUTH_INSUFFICIENT_PERMISSIONS: 403,
    ErrorCode.VALIDATION_MISSING_FIELD: 400,
    ErrorCode.RESOURCE_ALREADY_EXISTS: 409,
    ErrorCode.EXTERNAL_TIMEOUT: 503,
    ErrorCode.EXTERNAL_RATE_LIMITED: 429,
    ErrorCode.INTERNAL_TIMEOUT: 504,
}

ERROR_CODE_TO_STATUS: dict[ErrorCode, int] = {
    code: _STATUS_OVERRIDES.get(code, _FAMILY_STATUS[code.value.split("_", 1)[0]]) for code in ErrorCode
}


def get_status_code(error_code: ErrorCode) -> int:
    return ERROR_CODE_TO_STATUS.get(error_code, 500)


class ErrorDetail(BaseModel):
    """One field-level problem, e.g. a request validation failure."""

    field: str | None = None
    message: str
    code: str | None = None
    # Offending input; kept for logs, never serialized to clients
    value: Any | None = Field(default=None, exclude=True)


class ErrorResponse(BaseModel):
    """Body of an error response.

    Example::

        {"error": {"code": "RES_3003",
                   "message": "Chat not found or you do not have permission",
                   "request_id": "req_9f2c4e1a0b7d3c55",
                   "timestamp": "2026-10-19T09:00:00+00:00",
                   "path": "/api/chat"}}
    """

    code: ErrorCode
    message: str
    request_id: str | None = None
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    details: list[ErrorDetail] | None = None
    path: str | None = None
    debug: dict[str, Any] | None = Field(default=None, exclude=True)

    def to_dict(self, include_debug: bool = False) -> dict[str, Any]:
        """Wrap in the ``error`` envelope; ``debug`` only when asked (DEBUG=true)."""
        body = self.model_dump(mode="json", exclude_none=True)
        if include_debug and self.debug:
            body["debug"] = self.debug
        return {"error": body}


__all__ = [
    "ERROR_CODE_TO_STATUS",
    "ErrorCode",
    "ErrorDetail",
    "ErrorResponse",
    "get_status_code",
]
