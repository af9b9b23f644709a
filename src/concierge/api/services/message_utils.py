"""Shared message utilities for API services.

Converts database rows to typed records and stored messages to the
role/content list handed to the model.
"""

from __future__ import annotations

import json

from typing import Any, Protocol

from concierge.models.chat_models import ChatRecord, StoredMessage


class Row(Protocol):
    """Protocol for database row access."""

    def get(self, key: str) -> Any: ...

    def __getitem__(self, key: str) -> Any: ...


def _load_json_list(value: Any) -> list[dict[str, Any]]:
    """Decode a jsonb column returned as text."""
    if value is None:
        return []
    if isinstance(value, str):
        value = json.loads(value)
    return list(value)


def row_to_chat(row: Row) -> ChatRecord:
    """Convert a "Chat" row to a ChatRecord."""
    return ChatRecord(
        id=str(row["id"]),
        user_id=str(row["userId"]),
        title=row["title"],
        visibility=row.get("visibility") or "private",
        created_at=row["createdAt"],
    )


def row_to_message(row: Row) -> StoredMessage:
    """Convert a "Message_v2" row to a StoredMessage."""
    return StoredMessage(
        id=str(row["id"]),
        chat_id=str(row["chatId"]),
        role=row["role"],
        parts=_load_json_list(row["parts"]),
        attachments=_load_json_list(row.get("attachments")),
        created_at=row["createdAt"],
    )


def _render_tool_invocations(invocations: list[dict[str, Any]]) -> str:
    """Render resolved tool invocations as replayable context text."""
    blocks = []
    for inv in invocations:
        result = inv.get("result")
        if not isinstance(result, str):
            result = json.dumps(result, default=str)
        blocks.append(f"[{inv.get('toolName', 'tool')} result]\n{result}")
    return "\n\n".join(blocks)


def normalize_history(messages: list[StoredMessage]) -> list[dict[str, Any]]:
    """Build the role/content list for the model from stored messages.

    Text parts are joined with newlines. Tool invocation records embedded in
    assistant (or legacy tool) messages are kept as replayable text so the
    model sees prior results. Other part types (files, reasoning) are dropped.
    Messages with no remaining content are skipped.

    Returns:
        Input items in the ``{"role", "content"}`` shape accepted by the
        agents Runner.
    """
    normalized: list[dict[str, Any]] = []
    for message in messages:
        content = message.text
        if message.role in ("assistant", "tool") and message.tool_invocations:
            rendered = _render_tool_invocations(message.tool_invocations)
            content = f"{content}\n\n{rendered}" if content else rendered

        if not content:
            continue

        # The Runner has no standalone tool role without a matching call id
        role = "assistant" if message.role == "tool" else message.role
        normalized.append({"role": role, "content": content})
    return normalized
