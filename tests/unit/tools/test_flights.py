"""Unit tests for the flight search tool."""

from __future__ import annotations

from typing import Any

import pytest

from fakes import FakeChatStore, FakeLLMService, FakeSerpApi

from concierge.core.streaming import ProgressEmitter
from concierge.integrations.serpapi_client import SearchProviderError
from concierge.models.stream_models import Progress, StreamChunk
from concierge.tools.base import ToolContext
from concierge.tools.flights import FlightQuery, FlightSearchTool, build_search_params, render_fallback

SFO_NRT = FlightQuery(
    departure_id="SFO",
    arrival_id="NRT",
    outbound_date="2026-11-10",
    return_date="2026-11-20",
    max_price="null",
)


def _itinerary(number: str, price: int, token: str | None = None) -> dict[str, Any]:
    flight: dict[str, Any] = {
        "flights": [
            {
                "airline": "ANA",
                "flight_number": number,
                "airline_logo": "https://logo.example.com/nh.png",
                "departure_airport": {"id": "SFO", "time": "2026-11-10 11:00"},
                "arrival_airport": {"id": "NRT", "time": "2026-11-11 15:00"},
                "duration": 660,
            }
        ],
        "total_duration": 660,
        "price": price,
    }
    if token:
        flight["booking_token"] = token
    return flight


def _booking(number: str, price: int) -> dict[str, Any]:
    return {
        "booking_options": [
            {
                "together": {
                    "book_with": "ANA",
                    "price": price,
                    "booking_request": {"url": "https://book.example.com/ana", "post_data": f"flight={number}"},
                    "baggage_prices": ["1 free carry-on"],
                }
            }
        ]
    }


@pytest.fixture
def sent() -> list[StreamChunk]:
    return []


@pytest.fixture
def ctx(sent: list[StreamChunk]) -> ToolContext:
    return ToolContext(user_id="user-1", chat_id="abc", emitter=ProgressEmitter(sent.append))


@pytest.fixture
def tool(store: FakeChatStore, llm: FakeLLMService, serpapi: FakeSerpApi) -> FlightSearchTool:
    return FlightSearchTool(store, llm, serpapi)  # type: ignore[arg-type]


def test_build_search_params_drops_unset_fields() -> None:
    params = build_search_params(SFO_NRT)

    assert params["engine"] == "google_flights"
    assert params["departure_id"] == "SFO"
    assert params["return_date"] == "2026-11-20"
    assert "max_price" not in params
    assert "include_airlines" not in params


def test_render_fallback() -> None:
    text = render_fallback([{**_itinerary("NH 7", 1450), "booking_url": "https://book.example.com/ana"}])

    assert text.splitlines()[0] == "## ANA • $1450"
    assert "* NH 7 • SFO - NRT • 2026-11-10 11:00 - 2026-11-11 15:00 (11h 0m)" in text
    assert "* **Total Duration: 11h 0m**" in text
    assert text.endswith("* https://book.example.com/ana")


@pytest.mark.asyncio
async def test_no_flights_returns_apology(
    tool: FlightSearchTool, llm: FakeLLMService, serpapi: FakeSerpApi, ctx: ToolContext
) -> None:
    llm.object_handler = lambda prompt, schema: SFO_NRT
    serpapi.handler = lambda params: {"best_flights": [], "other_flights": []}

    result = await tool.invoke({"query": "SFO to Tokyo next month"}, ctx)

    assert result.startswith("I couldn't find any flights from SFO to NRT.")
    assert llm.text_calls == []


@pytest.mark.asyncio
async def test_booking_options_merge_back_by_index(
    tool: FlightSearchTool, llm: FakeLLMService, serpapi: FakeSerpApi, ctx: ToolContext, sent: list[StreamChunk]
) -> None:
    """Only the top three are enriched; a failed lookup keeps the original itinerary."""
    llm.object_handler = lambda prompt, schema: SFO_NRT

    def handler(params: dict[str, Any]) -> Any:
        token = params.get("booking_token")
        if token is None:
            return {
                "best_flights": [_itinerary("NH 7", 1450, "t1"), _itinerary("JL 1", 1380, "t2")],
                "other_flights": [_itinerary("UA 837", 1200, "t3"), _itinerary("ZG 25", 900, "t4")],
                "search_metadata": {"google_flights_url": "https://www.google.com/travel/flights?q=SFO"},
            }
        if token == "t2":
            return SearchProviderError("booking lookup failed")
        return _booking({"t1": "NH 7", "t3": "UA 837"}[token], 1500)

    serpapi.handler = handler

    result = await tool.invoke({"query": "SFO to Tokyo next month"}, ctx)

    lookups = [c for c in serpapi.calls if "booking_token" in c]
    assert sorted(c["booking_token"] for c in lookups) == ["t1", "t2", "t3"]
    assert all(c["departure_id"] == "SFO" and c["outbound_date"] == "2026-11-10" for c in lookups)

    # Fallback rendering: the itineraries with booking links are ranked first
    headings = [line for line in result.splitlines() if line.startswith("## ANA")]
    assert headings == ["## ANA • $1500", "## ANA • $1500", "## ANA • $1380", "## ANA • $900"]
    assert "* https://book.example.com/ana?flight=NH 7" in result
    assert "* https://book.example.com/ana?flight=UA 837" in result
    assert result.endswith("## Google Flights Search Results URL\nhttps://www.google.com/travel/flights?q=SFO")

    booking = [c.content for c in sent if isinstance(c, Progress) and c.content.stage == "booking"]
    assert booking[0].total == 3
    assert booking[0].destination == "SFO to NRT"


@pytest.mark.asyncio
async def test_formatting_prompt_omits_tokens_and_logos(
    tool: FlightSearchTool, llm: FakeLLMService, serpapi: FakeSerpApi, ctx: ToolContext
) -> None:
    llm.object_handler = lambda prompt, schema: SFO_NRT
    llm.text_handler = lambda prompt, system, model: "## Best option: ANA NH 7"
    serpapi.handler = lambda params: {"best_flights": [_itinerary("NH 7", 1450)]}

    result = await tool.invoke({"query": "SFO to Tokyo"}, ctx)

    prompt = llm.text_calls[-1]["prompt"]
    assert "flights.0.flight_number: NH 7" in prompt
    assert "airline_logo" not in prompt
    assert result.startswith("# Flights\n\n## Flight Options\n## Best option: ANA NH 7")
