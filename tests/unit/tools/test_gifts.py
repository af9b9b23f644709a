"""Unit tests for the gift finder."""

from __future__ import annotations

from typing import Any

import pytest

from fakes import FakeChatStore, FakeLLMService, FakeSerpApi

from concierge.core.streaming import ProgressEmitter
from concierge.integrations.llm_service import StructuredOutputError
from concierge.integrations.serpapi_client import SearchProviderError
from concierge.models.chat_models import StoredMessage
from concierge.models.stream_models import Progress, StreamChunk
from concierge.tools.base import ToolContext
from concierge.tools.gifts import GiftFinderTool, GiftIdea, GiftIdeas, apology, shopping_search_url, site_query_target

PRODUCTS = [
    "Walnut Desk Organizer",
    "Fossil Leather Wallet",
    "Ceramic Pour Over Set",
    "Merino Wool Throw",
    "Bluetooth Meat Thermometer",
    "Hand Forged Chef Knife",
    "Botanical Print Poster",
    "Cold Brew Coffee Maker",
]

FAILING_SITES = ("nymag.com/strategist", "kit.co", "alexkwa.com")


def _site_from_query(query: str) -> str:
    return query.rsplit("site:", 1)[1]


class ScriptedGiftSources:
    """Search and extraction stand-ins keyed by the queried site."""

    def __init__(self, failing: tuple[str, ...] = ()) -> None:
        self.failing = failing
        self.sites: list[str] = []

    def search(self, params: dict[str, Any]) -> Any:
        site = _site_from_query(params["q"])
        self.sites.append(site)
        if site in self.failing:
            return SearchProviderError(f"{site} unavailable")
        return {"organic_results": [{"title": f"Result on {site}", "link": f"https://{site}/item", "snippet": "..."}]}

    def extract(self, prompt: str, schema: type) -> GiftIdeas:
        index = len(self.sites) - 1
        return GiftIdeas(
            ideas=[
                GiftIdea(
                    name=PRODUCTS[index],
                    description="A thoughtful pick",
                    price="$45",
                    url=f"https://shop.example.com/{index}",
                    recipient_suitability="Loves coffee and design",
                )
            ]
        )


@pytest.fixture
def sent() -> list[StreamChunk]:
    return []


@pytest.fixture
def ctx(sent: list[StreamChunk]) -> ToolContext:
    return ToolContext(user_id="user-1", chat_id="abc", emitter=ProgressEmitter(sent.append))


@pytest.fixture
def tool(store: FakeChatStore, llm: FakeLLMService, serpapi: FakeSerpApi) -> GiftFinderTool:
    return GiftFinderTool(store, llm, serpapi)  # type: ignore[arg-type]


def _progress(sent: list[StreamChunk]) -> list[Progress]:
    return [c for c in sent if isinstance(c, Progress)]


def test_site_query_target() -> None:
    assert site_query_target("https://nymag.com/strategist/") == "nymag.com/strategist"
    assert site_query_target("https://kit.co") == "kit.co"


@pytest.mark.asyncio
async def test_failed_sources_are_skipped(
    tool: GiftFinderTool,
    llm: FakeLLMService,
    serpapi: FakeSerpApi,
    ctx: ToolContext,
    sent: list[StreamChunk],
) -> None:
    """3 of 8 sources failing still yields a list built from the other 5."""
    sources = ScriptedGiftSources(failing=FAILING_SITES)
    serpapi.handler = sources.search
    llm.object_handler = sources.extract
    llm.text_handler = lambda prompt, system, model: prompt

    result = await tool.invoke({"recipient": "Meghan", "query": "coffee lover birthday gift"}, ctx)

    assert isinstance(result, str)
    assert len(sources.sites) == 8
    assert len(llm.object_calls) == 5
    for index, product in enumerate(PRODUCTS):
        if sources.sites[index] in FAILING_SITES:
            assert product not in result
        else:
            assert product in result

    searching = [p.content for p in _progress(sent) if p.content.stage == "searching"]
    assert [(s.current, s.total) for s in searching] == [(i, 8) for i in range(1, 9)]
    assert searching[1].website == "nymag.com"


@pytest.mark.asyncio
async def test_stage_order(
    tool: GiftFinderTool, llm: FakeLLMService, serpapi: FakeSerpApi, ctx: ToolContext, sent: list[StreamChunk]
) -> None:
    sources = ScriptedGiftSources()
    serpapi.handler = sources.search
    llm.object_handler = sources.extract

    await tool.invoke({"recipient": "Meghan", "query": "birthday gift"}, ctx)

    stages = list(dict.fromkeys(p.content.stage for p in _progress(sent)))
    assert stages == ["context", "deduplication", "parsing", "searching", "formatting"]
    assert all(p.type == "gift-progress" for p in _progress(sent))


@pytest.mark.asyncio
async def test_every_source_failing_returns_apology(
    tool: GiftFinderTool, llm: FakeLLMService, serpapi: FakeSerpApi, ctx: ToolContext, sent: list[StreamChunk]
) -> None:
    serpapi.handler = lambda params: SearchProviderError("down")

    result = await tool.invoke({"recipient": "Meghan", "query": "birthday gift"}, ctx)

    assert result == apology("Meghan")
    assert "Meghan" in result
    assert llm.text_calls == []
    assert "formatting" not in {p.content.stage for p in _progress(sent)}


@pytest.mark.asyncio
async def test_previously_suggested_gifts_are_excluded(
    tool: GiftFinderTool, llm: FakeLLMService, serpapi: FakeSerpApi, sent: list[StreamChunk]
) -> None:
    sources = ScriptedGiftSources()
    serpapi.handler = sources.search
    llm.object_handler = sources.extract
    llm.text_handler = lambda prompt, system, model: prompt
    history = [
        StoredMessage(
            id="m1",
            chat_id="abc",
            role="assistant",
            parts=[
                {
                    "type": "tool-invocation",
                    "toolInvocation": {
                        "state": "result",
                        "toolCallId": "call_0",
                        "toolName": "find_gifts",
                        "args": {},
                        "result": "# Gift Ideas for Meghan\n\n## 1. Walnut Desk Organiser\n\n## 2. Fossil Leather Wallet",
                    },
                }
            ],
        )
    ]
    ctx = ToolContext(user_id="user-1", chat_id="abc", emitter=ProgressEmitter(sent.append), history=history)

    result = await tool.invoke({"recipient": "Meghan", "query": "birthday gift"}, ctx)

    assert "Walnut Desk Organizer" not in result
    assert "Fossil Leather Wallet" not in result
    assert "Ceramic Pour Over Set" in result
    assert "Walnut Desk Organiser" in llm.object_calls[0]["prompt"]


@pytest.mark.asyncio
async def test_only_duplicates_returns_apology(
    tool: GiftFinderTool, llm: FakeLLMService, serpapi: FakeSerpApi, ctx: ToolContext
) -> None:
    serpapi.handler = lambda params: {"organic_results": [{"title": "t", "link": "https://x.example.com"}]}
    llm.object_handler = lambda prompt, schema: GiftIdeas(
        ideas=[GiftIdea(name="Fossil Leather Wallet", url="https://shop.example.com/wallet")]
    )

    result = await tool.invoke({"recipient": "Sam", "query": "wallet"}, ctx)

    # The first site's idea is kept, every later copy is a duplicate
    assert result != apology("Sam")
    assert llm.text_calls[0]["prompt"].count("Fossil Leather Wallet") == 1


@pytest.mark.asyncio
async def test_formatting_failure_falls_back_to_plain_list(
    tool: GiftFinderTool, llm: FakeLLMService, serpapi: FakeSerpApi, ctx: ToolContext
) -> None:
    sources = ScriptedGiftSources()
    serpapi.handler = sources.search
    llm.object_handler = sources.extract
    llm.text_handler = lambda prompt, system, model: ""

    result = await tool.invoke({"recipient": "Meghan", "query": "birthday gift"}, ctx)

    assert result.startswith("# Gift Ideas for Meghan")
    assert "## 1. Walnut Desk Organizer" in result
    assert "[Buy Now](https://shop.example.com/0)" in result


def test_shopping_search_url() -> None:
    assert shopping_search_url("gift for a coffee & tea lover") == (
        "https://www.google.com/search?tbm=shop&q=gift+for+a+coffee+%26+tea+lover"
    )


@pytest.mark.asyncio
async def test_gift_list_ends_with_shopping_link(
    tool: GiftFinderTool, llm: FakeLLMService, serpapi: FakeSerpApi, ctx: ToolContext
) -> None:
    sources = ScriptedGiftSources()
    serpapi.handler = sources.search
    llm.object_handler = sources.extract
    formatted = "## 1. Walnut Desk Organizer\n**$45** • [Buy Now](https://shop.example.com/0)"
    llm.text_handler = lambda prompt, system, model: formatted

    result = await tool.invoke({"recipient": "Meghan", "query": "coffee lover birthday gift"}, ctx)

    assert result.startswith("# Gift Ideas for Meghan\n\n## Suggestions\n## 1. Walnut Desk Organizer")
    assert result.endswith(
        "## Google Shopping Search Results\nhttps://www.google.com/search?tbm=shop&q=coffee+lover+birthday+gift"
    )


@pytest.mark.asyncio
async def test_each_site_is_parsed_after_its_search(
    tool: GiftFinderTool, llm: FakeLLMService, serpapi: FakeSerpApi, ctx: ToolContext, sent: list[StreamChunk]
) -> None:
    sources = ScriptedGiftSources()
    serpapi.handler = sources.search

    def extract(prompt: str, schema: type) -> Any:
        # The second site's results cannot be read; its search still counts
        if len(sources.sites) == 2:
            return StructuredOutputError("unreadable")
        return sources.extract(prompt, schema)

    llm.object_handler = extract

    result = await tool.invoke({"recipient": "Meghan", "query": "birthday gift"}, ctx)

    per_site = [
        (p.content.stage, p.content.website)
        for p in _progress(sent)
        if p.content.stage in ("searching", "parsing") and p.content.website
    ]
    assert per_site[:4] == [
        ("searching", "thingtesting.com"),
        ("parsing", "thingtesting.com"),
        ("searching", "nymag.com"),
        ("parsing", "nymag.com"),
    ]
    assert len(per_site) == 16
    assert PRODUCTS[1] not in result
    assert PRODUCTS[2] in result
