"""
Typed chunks of the streamed turn protocol.

Each chunk serializes to one JSON line. The ``type`` field is the
discriminant the client switches on.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from concierge.core.constants import (
    CHUNK_ERROR,
    CHUNK_TEXT_DELTA,
    CHUNK_TOOL_CALL,
    CHUNK_TOOL_RESULT,
)


class StreamChunk(BaseModel):
    """Base class for every outbound chunk."""

    type: str

    def to_line(self) -> str:
        """Serialize as one newline-terminated JSON line."""
        return self.model_dump_json(exclude_none=True, by_alias=True) + "\n"


class TextDelta(StreamChunk):
    """Incremental model text."""

    type: Literal["text-delta"] = CHUNK_TEXT_DELTA
    text: str


class ToolCall(StreamChunk):
    """Model committed to a tool invocation."""

    type: Literal["tool-call"] = CHUNK_TOOL_CALL
    tool_call_id: str = Field(..., serialization_alias="toolCallId")
    tool_name: str = Field(..., serialization_alias="toolName")
    args: dict[str, Any] = Field(default_factory=dict)


class ToolResult(StreamChunk):
    """A tool invocation settled."""

    type: Literal["tool-result"] = CHUNK_TOOL_RESULT
    tool_call_id: str = Field(..., serialization_alias="toolCallId")
    tool_name: str = Field(..., serialization_alias="toolName")
    result: Any = None


class ProgressContent(BaseModel):
    """Payload of a progress chunk."""

    stage: str
    message: str
    current: int | None = None
    total: int | None = None
    destination: str | None = None
    website: str | None = None


class Progress(StreamChunk):
    """Ephemeral tool progress, ``type`` is ``<domain>-progress``."""

    content: ProgressContent


class ErrorChunk(StreamChunk):
    """Terminal error for the turn."""

    type: Literal["error"] = CHUNK_ERROR
    message: str


__all__ = [
    "ErrorChunk",
    "Progress",
    "ProgressContent",
    "StreamChunk",
    "TextDelta",
    "ToolCall",
    "ToolResult",
]
