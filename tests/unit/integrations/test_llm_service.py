"""Unit tests for the language model service and stream event mapping."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from pydantic import BaseModel

from concierge.core.constants import Settings
from concierge.integrations.event_handlers import event_to_chunk
from concierge.integrations.llm_service import LLMService, StructuredOutputError
from concierge.models.stream_models import TextDelta


class Destination(BaseModel):
    city: str
    nights: int


def _completion(content: str | None) -> Any:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def _service(settings: Settings, *contents: str | None) -> tuple[LLMService, AsyncMock]:
    client = MagicMock()
    create = AsyncMock(side_effect=[_completion(c) for c in contents])
    client.chat.completions.create = create
    return LLMService(client, settings), create


@pytest.mark.asyncio
async def test_generate_text_sends_system_and_model(settings: Settings) -> None:
    service, create = _service(settings, "Lisbon weekend")

    text = await service.generate_text("Plan a trip", system="Be brief", model="gpt-4.1-nano")

    assert text == "Lisbon weekend"
    kwargs = create.await_args.kwargs
    assert kwargs["model"] == "gpt-4.1-nano"
    assert kwargs["messages"] == [
        {"role": "system", "content": "Be brief"},
        {"role": "user", "content": "Plan a trip"},
    ]


@pytest.mark.asyncio
async def test_generate_text_defaults_to_formatting_model(settings: Settings) -> None:
    service, create = _service(settings, None)

    assert await service.generate_text("Format this") == ""
    assert create.await_args.kwargs["model"] == settings.formatting_model


@pytest.mark.asyncio
async def test_generate_text_without_choices_is_empty(settings: Settings) -> None:
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=SimpleNamespace(choices=[]))

    assert await LLMService(client, settings).generate_text("Title this") == ""


@pytest.mark.asyncio
async def test_generate_object_first_pass(settings: Settings) -> None:
    service, create = _service(settings, '```json\n{"city": "Lisbon", "nights": 4}\n```')

    result = await service.generate_object("Parse: Lisbon for 4 nights", Destination)

    assert result == Destination(city="Lisbon", nights=4)
    assert create.await_count == 1
    kwargs = create.await_args.kwargs
    assert kwargs["model"] == settings.parsing_model
    assert kwargs["response_format"] == {"type": "json_object"}


@pytest.mark.asyncio
async def test_generate_object_repairs_once(settings: Settings) -> None:
    service, create = _service(settings, '{"city": "Lisbon"}', '{"city": "Lisbon", "nights": 4}')

    result = await service.generate_object("Parse: Lisbon for 4 nights", Destination)

    assert result.nights == 4
    assert create.await_count == 2
    repair = create.await_args_list[1].kwargs
    assert repair["model"] == settings.repair_model
    assert '{"city": "Lisbon"}' in repair["messages"][-1]["content"]


@pytest.mark.asyncio
async def test_generate_object_fails_after_repair(settings: Settings) -> None:
    service, create = _service(settings, "not json", '{"city": 7}')

    with pytest.raises(StructuredOutputError) as exc_info:
        await service.generate_object("Parse", Destination)

    assert exc_info.value.raw_output == '{"city": 7}'
    assert create.await_count == 2


def test_text_delta_events_become_chunks() -> None:
    event = SimpleNamespace(
        type="raw_response_event", data=SimpleNamespace(type="response.output_text.delta", delta="Hel")
    )

    assert event_to_chunk(event) == TextDelta(text="Hel")


def test_other_events_produce_nothing() -> None:
    empty_delta = SimpleNamespace(
        type="raw_response_event", data=SimpleNamespace(type="response.output_text.delta", delta="")
    )
    tool_item = SimpleNamespace(
        type="run_item_stream_event",
        item=SimpleNamespace(type="tool_call_item", raw_item=SimpleNamespace(name="search_hotels")),
    )
    agent = SimpleNamespace(type="agent_updated_stream_event", new_agent=SimpleNamespace(name="Concierge"))

    assert event_to_chunk(empty_delta) is None
    assert event_to_chunk(tool_item) is None
    assert event_to_chunk(agent) is None
    assert event_to_chunk(SimpleNamespace(type="unknown")) is None
