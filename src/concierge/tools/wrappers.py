"""
Turn-bound tool wrappers for the Agent/Runner framework.

The Runner has no built-in way to pass per-turn state to tools, so each turn
builds ``FunctionTool`` wrappers that close over its ``ToolContext``. The
wrapper writes the tool-call chunk before execution and the tool-result chunk
after it into the same channel the tool's progress goes to, which keeps the
three ordered. Settled invocations are collected for persistence.
"""

from __future__ import annotations

import json
import uuid

from typing import Any

from agents import FunctionTool

from concierge.models.stream_models import ToolCall, ToolResult
from concierge.tools.base import Tool, ToolContext, result_to_text

#: Settled invocation records in ``toolInvocation`` part shape
InvocationLog = list[dict[str, Any]]


def _decode_args(raw_args: str) -> dict[str, Any]:
    try:
        decoded = json.loads(raw_args or "{}")
    except ValueError:
        return {}
    return decoded if isinstance(decoded, dict) else {}


def bind_tool(tool: Tool, ctx: ToolContext, invocations: InvocationLog) -> FunctionTool:
    """Wrap one tool for the Runner, bound to the turn context."""

    async def on_invoke_tool(run_ctx: Any, raw_args: str) -> str:
        call_id = getattr(run_ctx, "tool_call_id", None) or f"call_{uuid.uuid4().hex[:24]}"
        args = _decode_args(raw_args)

        if ctx.emitter is not None:
            ctx.emitter.send(ToolCall(tool_call_id=call_id, tool_name=tool.name, args=args))

        result = await tool.invoke(raw_args, ctx)

        invocations.append({"toolCallId": call_id, "toolName": tool.name, "args": args, "result": result})
        if ctx.emitter is not None:
            ctx.emitter.send(ToolResult(tool_call_id=call_id, tool_name=tool.name, result=result))
        return result_to_text(result)

    return FunctionTool(
        name=tool.name,
        description=tool.description,
        params_json_schema=tool.params_schema(),
        on_invoke_tool=on_invoke_tool,
        strict_json_schema=False,
    )


def build_function_tools(tools: list[Tool], ctx: ToolContext, invocations: InvocationLog) -> list[FunctionTool]:
    """Create Agent-compatible wrappers for every enabled tool.

    Example:
        ```python
        invocations: InvocationLog = []
        ctx = ToolContext(user_id=user.id, chat_id=chat_id, emitter=emitter)
        agent_tools = build_function_tools(registry.enabled_tools(), ctx, invocations)
        ```
    """
    return [bind_tool(tool, ctx, invocations) for tool in tools]


def invocation_parts(invocations: InvocationLog) -> list[dict[str, Any]]:
    """Message parts embedding settled invocations in the assistant message."""
    return [{"type": "tool-invocation", "toolInvocation": {"state": "result", **record}} for record in invocations]
