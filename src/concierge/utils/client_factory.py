"""Outbound HTTP clients.

Every external call (model provider, SerpAPI, workflow webhooks) goes through
an ``httpx.AsyncClient`` built here, so timeouts are uniform and request
logging can be switched on in one place with ``HTTP_REQUEST_LOGGING``.
"""

from __future__ import annotations

import json

from typing import Any

import httpx

from openai import AsyncOpenAI

from concierge.utils.logger import logger

#: Model streams can stall for a long time between tokens.
DEFAULT_READ_TIMEOUT = 600.0
DEFAULT_CONNECT_TIMEOUT = 30.0
DEFAULT_WRITE_TIMEOUT = 30.0
DEFAULT_POOL_TIMEOUT = 30.0

#: Query parameters masked in logged URLs (SerpAPI takes its key as ``api_key``).
SECRET_PARAMS = frozenset({"api_key", "key", "token"})
#: Headers masked down to their last four characters.
SECRET_HEADERS = frozenset({"authorization", "api-key", "x-api-key", "x-webhook-secret"})


def masked_url(url: httpx.URL) -> str:
    if not url.params:
        return str(url)
    params = [(k, "***" if k.lower() in SECRET_PARAMS else v) for k, v in url.params.multi_items()]
    return str(url.copy_with(params=params))


def masked_headers(headers: httpx.Headers) -> dict[str, str]:
    masked = {}
    for name, value in headers.items():
        if name.lower() in SECRET_HEADERS:
            value = "***" + value[-4:] if len(value) > 4 else "***"
        masked[name] = value
    return masked


def _json_or_note(raw: bytes | str) -> Any:
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError):
        return {"_note": "non-JSON body"}


async def _log_request(request: httpx.Request) -> None:
    try:
        payload = _json_or_note(request.content)
    except httpx.RequestNotRead:
        payload = {"_note": "streamed body"}
    logger.info(
        f"HTTP {request.method} {masked_url(request.url)}",
        http_request=True,
        headers=masked_headers(request.headers),
        payload=payload,
    )


async def _log_response(response: httpx.Response) -> None:
    try:
        body = _json_or_note(response.content)
    except httpx.ResponseNotRead:
        body = {"_note": "streamed body"}
    request = response.request
    logger.info(
        f"HTTP {response.status_code} {request.method} {masked_url(request.url)}",
        http_response=True,
        status_code=response.status_code,
        body=body,
    )


def create_http_client(enable_logging: bool = False, read_timeout: float | None = None) -> httpx.AsyncClient:
    """Async client with the shared timeouts, optionally logging every exchange."""
    timeout = httpx.Timeout(
        connect=DEFAULT_CONNECT_TIMEOUT,
        read=DEFAULT_READ_TIMEOUT if read_timeout is None else read_timeout,
        write=DEFAULT_WRITE_TIMEOUT,
        pool=DEFAULT_POOL_TIMEOUT,
    )
    hooks: dict[str, list[Any]] = {}
    if enable_logging:
        hooks = {"request": [_log_request], "response": [_log_response]}
    return httpx.AsyncClient(timeout=timeout, event_hooks=hooks)


def create_openai_client(
    api_key: str,
    base_url: str | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> AsyncOpenAI:
    """``AsyncOpenAI`` for the chat and title models; ``base_url`` allows compatible gateways."""
    if base_url:
        return AsyncOpenAI(api_key=api_key, base_url=base_url, http_client=http_client)
    return AsyncOpenAI(api_key=api_key, http_client=http_client)
