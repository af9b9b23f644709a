"""Unit tests for row conversion and history normalization."""

from __future__ import annotations

from datetime import UTC, datetime

from concierge.api.services.message_utils import normalize_history, row_to_chat, row_to_message
from concierge.models.chat_models import StoredMessage

CREATED = datetime(2026, 10, 19, 9, 0, tzinfo=UTC)


def _message(role: str, parts: list[dict], message_id: str = "m") -> StoredMessage:
    return StoredMessage(id=message_id, chat_id="abc", role=role, parts=parts)  # type: ignore[arg-type]


def test_row_to_chat_defaults_visibility() -> None:
    chat = row_to_chat({"id": "abc", "userId": "user-1", "title": "Trip", "visibility": None, "createdAt": CREATED})

    assert chat.visibility == "private"
    assert chat.user_id == "user-1"


def test_row_to_message_decodes_json_text() -> None:
    message = row_to_message(
        {
            "id": "m1",
            "chatId": "abc",
            "role": "assistant",
            "parts": '[{"type": "text", "text": "Hi"}]',
            "attachments": None,
            "createdAt": CREATED,
        }
    )

    assert message.parts == [{"type": "text", "text": "Hi"}]
    assert message.attachments == []
    assert message.text == "Hi"


def test_text_parts_are_joined() -> None:
    history = [_message("user", [{"type": "text", "text": "one"}, {"type": "file", "url": "x"}, {"type": "text", "text": "two"}])]

    assert normalize_history(history) == [{"role": "user", "content": "one\ntwo"}]


def test_tool_invocations_are_replayed_as_text() -> None:
    history = [
        _message(
            "assistant",
            [
                {
                    "type": "tool-invocation",
                    "toolInvocation": {
                        "state": "result",
                        "toolCallId": "call_1",
                        "toolName": "search_hotels",
                        "args": {"query": "Lisbon"},
                        "result": "# Accommodation Options",
                    },
                },
                {
                    "type": "tool-invocation",
                    "toolInvocation": {"toolName": "get_user_context", "result": {"success": True}},
                },
            ],
        )
    ]

    assert normalize_history(history) == [
        {
            "role": "assistant",
            "content": '[search_hotels result]\n# Accommodation Options\n\n[get_user_context result]\n{"success": true}',
        }
    ]


def test_legacy_tool_messages_become_assistant_and_empty_messages_are_dropped() -> None:
    history = [
        _message("tool", [{"type": "tool-invocation", "toolInvocation": {"toolName": "find_gifts", "result": "ok"}}]),
        _message("assistant", [{"type": "reasoning", "text": "hmm"}]),
        _message("user", []),
    ]

    assert normalize_history(history) == [{"role": "assistant", "content": "[find_gifts result]\nok"}]
