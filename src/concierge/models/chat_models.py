"""
Chat API schemas and stored records.

Provides request/response models for the turn, delete and workflow callback
endpoints, plus the typed views of "Chat" and "Message_v2" rows.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from concierge.core.constants import DEFAULT_CHAT_MODEL

Visibility = Literal["public", "private", "unlisted"]
Role = Literal["user", "assistant", "system", "tool"]

# =============================================================================
# Request Models
# =============================================================================


class UserInfo(BaseModel):
    """Authenticated principal resolved to a profile row."""

    id: str = Field(..., description="Internal account id (User_Profiles.id)")
    external_id: str = Field(..., description="Identity provider subject")
    email: str | None = None


class IncomingMessage(BaseModel):
    """User message carried by a turn request."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1, description="Client-generated message id")
    role: Literal["user"] = "user"
    parts: list[dict[str, Any]] = Field(..., min_length=1, description="Ordered content parts")
    attachments: list[dict[str, Any]] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC), alias="createdAt")

    @field_validator("parts")
    @classmethod
    def validate_parts(cls, v: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Every part must carry a type discriminant."""
        for part in v:
            if not isinstance(part.get("type"), str):
                raise ValueError("every message part needs a string 'type'")
        return v

    @property
    def text(self) -> str:
        """Text parts joined with newlines."""
        return "\n".join(p.get("text", "") for p in self.parts if p.get("type") == "text")


class ChatRequest(BaseModel):
    """Request body for one chat turn."""

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "id": "abc",
                "message": {
                    "id": "msg-1",
                    "role": "user",
                    "parts": [{"type": "text", "text": "find a hotel in Lisbon next week"}],
                    "createdAt": "2025-06-15T10:30:00Z",
                },
                "selectedChatModel": "chat-model",
                "selectedVisibilityType": "private",
            }
        },
    )

    id: str = Field(..., min_length=1, description="Chat id (stable across turns)")
    message: IncomingMessage
    selected_chat_model: str = Field(default=DEFAULT_CHAT_MODEL, alias="selectedChatModel")
    selected_visibility_type: Visibility = Field(default="private", alias="selectedVisibilityType")


class WorkflowCallbackRequest(BaseModel):
    """Assistant reply posted back by an external workflow."""

    model_config = ConfigDict(populate_by_name=True)

    chat_id: str = Field(..., min_length=1, alias="chatId")
    response_message: str = Field(..., alias="responseMessage")
    parts: list[dict[str, Any]] | None = None

    def resolved_parts(self) -> list[dict[str, Any]]:
        """Parts to store, defaulting to a single text part."""
        return self.parts or [{"type": "text", "text": self.response_message}]


# =============================================================================
# Response Models
# =============================================================================


class DeleteChatResponse(BaseModel):
    """Response body for a deleted chat."""

    id: str


class WorkflowCallbackResponse(BaseModel):
    """Response body for an accepted workflow callback."""

    ok: bool = True
    message: str = "Assistant message saved successfully"


class DatabaseHealth(BaseModel):
    """Database connection pool health."""

    healthy: bool = Field(..., description="Database is accessible")
    pool_size: int = Field(default=0, ge=0, description="Total pool size")
    free_connections: int = Field(default=0, ge=0, description="Available connections")
    used_connections: int = Field(default=0, ge=0, description="Active connections")


class HealthResponse(BaseModel):
    """Service health summary."""

    status: Literal["healthy", "unhealthy"]
    version: str
    database: DatabaseHealth


# =============================================================================
# Stored Records
# =============================================================================


class ChatRecord(BaseModel):
    """Row of the "Chat" table."""

    id: str
    user_id: str
    title: str
    visibility: Visibility = "private"
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class StoredMessage(BaseModel):
    """Row of the "Message_v2" table."""

    id: str
    chat_id: str
    role: Role
    parts: list[dict[str, Any]] = Field(default_factory=list)
    attachments: list[dict[str, Any]] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def text(self) -> str:
        """Text parts joined with newlines."""
        return "\n".join(p.get("text", "") for p in self.parts if p.get("type") == "text")

    @property
    def tool_invocations(self) -> list[dict[str, Any]]:
        """Embedded tool-invocation records."""
        return [p["toolInvocation"] for p in self.parts if p.get("type") == "tool-invocation" and "toolInvocation" in p]


__all__ = [
    "ChatRecord",
    "ChatRequest",
    "DatabaseHealth",
    "DeleteChatResponse",
    "HealthResponse",
    "IncomingMessage",
    "Role",
    "StoredMessage",
    "UserInfo",
    "Visibility",
    "WorkflowCallbackRequest",
    "WorkflowCallbackResponse",
]
