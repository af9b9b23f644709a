"""
Event handlers for Agent/Runner streaming.

Maps SDK stream events to outbound turn chunks. Only token-level text deltas
become chunks here: tool-call and tool-result chunks are written by the tool
wrappers themselves so they stay ordered relative to tool progress. Run item
and agent events are logged for diagnostics.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from concierge.core.constants import (
    AGENT_UPDATED_STREAM_EVENT,
    RAW_RESPONSE_EVENT,
    RESPONSE_OUTPUT_TEXT_DELTA,
    RUN_ITEM_STREAM_EVENT,
    TOOL_CALL_ITEM,
    TOOL_CALL_OUTPUT_ITEM,
)
from concierge.models.stream_models import StreamChunk, TextDelta
from concierge.utils.logger import logger

EventHandler = Callable[[Any], StreamChunk | None]


def handle_raw_response(event: Any) -> StreamChunk | None:
    """Handle token-level events; only text deltas are forwarded."""
    data = getattr(event, "data", None)
    if getattr(data, "type", None) != RESPONSE_OUTPUT_TEXT_DELTA:
        return None
    delta = getattr(data, "delta", None)
    if not delta:
        return None
    return TextDelta(text=delta)


def handle_run_item(event: Any) -> StreamChunk | None:
    """Log tool call lifecycle items reported by the SDK."""
    item = getattr(event, "item", None)
    item_type = getattr(item, "type", None)
    if item_type == TOOL_CALL_ITEM:
        raw = getattr(item, "raw_item", None)
        logger.debug("Model requested tool", tool=getattr(raw, "name", None))
    elif item_type == TOOL_CALL_OUTPUT_ITEM:
        logger.debug("Tool output returned to model")
    return None


def handle_agent_updated(event: Any) -> StreamChunk | None:
    agent = getattr(event, "new_agent", None)
    logger.debug(f"Agent updated: {getattr(agent, 'name', 'unknown')}")
    return None


def build_event_handlers() -> dict[str, EventHandler]:
    """Registry of event handlers keyed by stream event type."""
    return {
        RAW_RESPONSE_EVENT: handle_raw_response,
        RUN_ITEM_STREAM_EVENT: handle_run_item,
        AGENT_UPDATED_STREAM_EVENT: handle_agent_updated,
    }


_HANDLERS = build_event_handlers()


def event_to_chunk(event: Any) -> StreamChunk | None:
    """Convert one SDK stream event to a chunk, or None when it produces none."""
    handler = _HANDLERS.get(getattr(event, "type", ""))
    if handler is None:
        return None
    return handler(event)


__all__ = [
    "EventHandler",
    "build_event_handlers",
    "event_to_chunk",
    "handle_agent_updated",
    "handle_raw_response",
    "handle_run_item",
]
