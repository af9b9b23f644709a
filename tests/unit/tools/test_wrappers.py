"""Unit tests for the turn-bound tool wrappers."""

from __future__ import annotations

import json

from types import SimpleNamespace
from typing import Any, ClassVar

import pytest

from concierge.core.streaming import ProgressEmitter
from concierge.models.stream_models import Progress, StreamChunk, ToolCall, ToolResult
from concierge.tools.base import Tool, ToolContext, ToolParams
from concierge.tools.wrappers import InvocationLog, build_function_tools, invocation_parts


class LookupParams(ToolParams):
    city: str


class LookupTool(Tool):
    name = "lookup_city"
    description = "Look up a city"
    params_model = LookupParams
    progress_type = "lookup-progress"
    stages: ClassVar[tuple[str, ...]] = ("searching",)
    failure_message = "Lookup failed"

    async def execute(self, params: LookupParams, ctx: ToolContext) -> Any:
        self.emit_progress(ctx, "searching", f"Looking up {params.city}...")
        if params.city == "Atlantis":
            return {"error": "No such city"}
        return f"{params.city} is lovely"


@pytest.fixture
def sent() -> list[StreamChunk]:
    return []


@pytest.fixture
def invocations() -> InvocationLog:
    return []


@pytest.fixture
def function_tool(sent: list[StreamChunk], invocations: InvocationLog) -> Any:
    ctx = ToolContext(user_id="user-1", chat_id="abc", emitter=ProgressEmitter(sent.append))
    (tool,) = build_function_tools([LookupTool()], ctx, invocations)
    return tool


def test_function_tool_advertises_schema(function_tool: Any) -> None:
    assert function_tool.name == "lookup_city"
    assert function_tool.description == "Look up a city"
    assert function_tool.params_json_schema["required"] == ["city"]


@pytest.mark.asyncio
async def test_call_progress_and_result_are_ordered(
    function_tool: Any, sent: list[StreamChunk], invocations: InvocationLog
) -> None:
    output = await function_tool.on_invoke_tool(SimpleNamespace(tool_call_id="call_7"), '{"city": "Lisbon"}')

    assert output == "Lisbon is lovely"
    assert [type(c) for c in sent] == [ToolCall, Progress, ToolResult]
    assert sent[0].model_dump(by_alias=True) == {
        "type": "tool-call",
        "toolCallId": "call_7",
        "toolName": "lookup_city",
        "args": {"city": "Lisbon"},
    }
    assert isinstance(sent[2], ToolResult)
    assert sent[2].result == "Lisbon is lovely"
    assert invocations == [
        {"toolCallId": "call_7", "toolName": "lookup_city", "args": {"city": "Lisbon"}, "result": "Lisbon is lovely"}
    ]


@pytest.mark.asyncio
async def test_error_results_are_returned_as_json(function_tool: Any, invocations: InvocationLog) -> None:
    output = await function_tool.on_invoke_tool(SimpleNamespace(tool_call_id="call_8"), '{"city": "Atlantis"}')

    assert json.loads(output) == {"error": "No such city"}
    assert invocations[0]["result"] == {"error": "No such city"}


@pytest.mark.asyncio
async def test_malformed_arguments_still_settle(
    function_tool: Any, sent: list[StreamChunk], invocations: InvocationLog
) -> None:
    output = await function_tool.on_invoke_tool(SimpleNamespace(), "not json")

    assert "Invalid arguments for lookup_city" in output
    call = sent[0]
    assert isinstance(call, ToolCall)
    assert call.args == {}
    assert call.tool_call_id.startswith("call_")
    assert invocations[0]["toolCallId"] == call.tool_call_id


def test_invocation_parts_shape() -> None:
    parts = invocation_parts(
        [{"toolCallId": "call_1", "toolName": "search_hotels", "args": {"query": "Lisbon"}, "result": "# Hotels"}]
    )

    assert parts == [
        {
            "type": "tool-invocation",
            "toolInvocation": {
                "state": "result",
                "toolCallId": "call_1",
                "toolName": "search_hotels",
                "args": {"query": "Lisbon"},
                "result": "# Hotels",
            },
        }
    ]
