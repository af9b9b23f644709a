"""
SerpAPI search provider client.

Thin async wrapper over ``GET /search.json`` used by the flight, hotel and
gift tools. The api key is injected at construction and never logged.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import parse_qsl, urlsplit, urlunsplit

import httpx

from concierge.api.middleware.exception_handlers import ExternalServiceError
from concierge.models.error_models import ErrorCode
from concierge.utils.logger import logger

SERVICE_NAME = "SerpAPI"


class SearchProviderError(ExternalServiceError):
    """Search provider returned a non-2xx status or an ``error`` field."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(SERVICE_NAME, message, code=ErrorCode.SEARCH_PROVIDER_ERROR, cause=cause)


def _drop_empty(params: dict[str, Any]) -> dict[str, Any]:
    """Drop None and empty-string values; booleans become lowercase strings."""
    cleaned: dict[str, Any] = {}
    for key, value in params.items():
        if value is None or value == "":
            continue
        cleaned[key] = str(value).lower() if isinstance(value, bool) else value
    return cleaned


class SerpApiClient:
    """Search provider access for google, google_flights and google_hotels engines."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_key: str,
        base_url: str = "https://serpapi.com/search.json",
        timeout: float = 60.0,
    ):
        self.http_client = http_client
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout

    async def search(self, params: dict[str, Any]) -> dict[str, Any]:
        """Run a search with the given engine parameters.

        Raises:
            SearchProviderError: On transport errors, non-2xx responses or an
                ``error`` field in the body.
        """
        return await self._get(self.base_url, _drop_empty(params))

    async def fetch(self, url: str) -> dict[str, Any]:
        """Follow a provider-issued link such as ``serpapi_property_details_link``."""
        parts = urlsplit(url)
        base = urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))
        return await self._get(base, dict(parse_qsl(parts.query)))

    async def _get(self, url: str, params: dict[str, Any]) -> dict[str, Any]:
        engine = params.get("engine", "unknown")
        logger.debug(f"SerpAPI request: engine={engine}")
        try:
            response = await self.http_client.get(
                url,
                params={**params, "api_key": self.api_key},
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            raise SearchProviderError(f"request failed: {exc}", cause=exc) from exc

        if response.status_code >= 400:
            logger.error(
                f"SerpAPI request failed with status {response.status_code}",
                engine=engine,
                body=response.text[:500],
            )
            raise SearchProviderError(f"request failed with status {response.status_code}")

        try:
            body: dict[str, Any] = response.json()
        except ValueError as exc:
            raise SearchProviderError("response is not valid JSON", cause=exc) from exc

        if body.get("error"):
            raise SearchProviderError(str(body["error"]))
        return body
