"""Unit tests for the search provider and workflow webhook clients."""

from __future__ import annotations

import json

from collections.abc import Callable

import httpx
import pytest

from concierge.integrations.serpapi_client import SearchProviderError, SerpApiClient
from concierge.integrations.workflow_client import WorkflowClient, WorkflowDispatchError
from concierge.models.error_models import ErrorCode


def _http(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_search_sends_cleaned_params_and_key() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"properties": [{"name": "Memmo Alfama"}]})

    async with _http(handler) as http:
        client = SerpApiClient(http, api_key="serp-test-key")
        body = await client.search(
            {"engine": "google_hotels", "q": "Lisbon", "vacation_rentals": True, "max_price": None, "children": ""}
        )

    assert body == {"properties": [{"name": "Memmo Alfama"}]}
    params = dict(seen[0].url.params)
    assert params == {"engine": "google_hotels", "q": "Lisbon", "vacation_rentals": "true", "api_key": "serp-test-key"}
    assert seen[0].url.path == "/search.json"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, text="upstream"),
        httpx.Response(200, json={"error": "Invalid API key"}),
        httpx.Response(200, text="<html>"),
    ],
)
async def test_search_failures_raise_provider_error(response: httpx.Response) -> None:
    async with _http(lambda request: response) as http:
        client = SerpApiClient(http, api_key="serp-test-key")
        with pytest.raises(SearchProviderError) as exc_info:
            await client.search({"engine": "google", "q": "gifts"})

    assert exc_info.value.code == ErrorCode.SEARCH_PROVIDER_ERROR
    assert exc_info.value.message.startswith("SerpAPI: ")


@pytest.mark.asyncio
async def test_transport_error_raises_provider_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with _http(handler) as http:
        with pytest.raises(SearchProviderError) as exc_info:
            await SerpApiClient(http, api_key="serp-test-key").search({"engine": "google"})

    assert isinstance(exc_info.value.cause, httpx.ConnectError)


@pytest.mark.asyncio
async def test_fetch_follows_provider_link() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"reviews_breakdown": []})

    async with _http(handler) as http:
        client = SerpApiClient(http, api_key="serp-test-key")
        await client.fetch("https://serpapi.com/search.json?engine=google_hotels&property_token=abc")

    params = dict(seen[0].url.params)
    assert params["property_token"] == "abc"
    assert params["api_key"] == "serp-test-key"


@pytest.mark.asyncio
async def test_workflow_dispatch_posts_payload_with_secret() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ok": True})

    async with _http(handler) as http:
        client = WorkflowClient(http, secret="callback-secret")
        await client.dispatch("https://hooks.example.com/assistant", {"chatId": "abc", "userMessage": "hi"})

    assert seen[0].method == "POST"
    assert seen[0].headers["Authorization"] == "Bearer callback-secret"
    assert json.loads(seen[0].content) == {"chatId": "abc", "userMessage": "hi"}


@pytest.mark.asyncio
async def test_workflow_dispatch_without_secret_sends_no_authorization() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(204)

    async with _http(handler) as http:
        await WorkflowClient(http).dispatch("https://hooks.example.com/assistant", {"chatId": "abc"})

    assert "Authorization" not in seen[0].headers


@pytest.mark.asyncio
async def test_workflow_dispatch_error_status() -> None:
    async with _http(lambda request: httpx.Response(502)) as http:
        with pytest.raises(WorkflowDispatchError) as exc_info:
            await WorkflowClient(http).dispatch("https://hooks.example.com/assistant", {"chatId": "abc"})

    assert exc_info.value.code == ErrorCode.WORKFLOW_ERROR
    assert "502" in exc_info.value.message
