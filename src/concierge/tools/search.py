"""
Shared stages of the multi-stage search tools.

Every search tool walks the same pipeline: load the user's preference context,
parse the request into provider parameters, search, enrich the top results,
then format. The pieces that do not depend on the provider live here.
"""

from __future__ import annotations

import asyncio
import json
import re

from collections.abc import Awaitable, Callable, Hashable, Mapping
from datetime import datetime
from typing import TYPE_CHECKING, Any, ClassVar, TypeVar

import asyncpg

from openai import OpenAIError

from concierge.api.middleware.exception_handlers import ConfigurationError
from concierge.core.constants import (
    PLACEHOLDER_LINK_MARKER,
    RESULT_CAP_MAX,
    RESULT_CAP_MIN,
)
from concierge.tools.base import Tool, ToolContext, tool_error
from concierge.utils.db_utils import PoolError
from concierge.utils.logger import logger
from concierge.utils.metrics import search_source_failures_total
from concierge.utils.text_utils import strip_code_fences

if TYPE_CHECKING:
    from concierge.api.services.chat_store import ChatStore
    from concierge.core.constants import Settings
    from concierge.integrations.llm_service import LLMService, StructuredOutputError
    from concierge.integrations.serpapi_client import SerpApiClient
    from concierge.models.chat_models import StoredMessage

R = TypeVar("R")

NO_CONTEXT = "No context provided."

_HEADING = re.compile(r"^#{2,3}\s+(.+?)\s*$", re.MULTILINE)
_NAME_FIELD = re.compile(r"^\s*[-*]?\s*\"?name\"?\s*:\s*\"?(.+?)\"?,?\s*$", re.MULTILINE)
_NUMBERING = re.compile(r"^\d+[.)]\s*")


class SearchTool(Tool):
    """Base for tools backed by the search provider."""

    #: Subject noun used in user-facing messages ("flight", "hotel", "gift")
    subject: ClassVar[str]
    #: Profile columns holding this tool's preference context
    context_columns: ClassVar[tuple[str, ...]] = ()

    def __init__(self, store: ChatStore, llm: LLMService, search: SerpApiClient | None):
        self.store = store
        self.llm = llm
        self.search = search

    def configuration_problems(self, settings: Settings) -> list[str]:
        if not settings.serpapi_api_key:
            return ["serpapi_api_key is not set"]
        return []

    @property
    def provider(self) -> SerpApiClient:
        if self.search is None:
            raise ConfigurationError(f"{self.name} requires a search provider client")
        return self.search

    async def load_context(self, ctx: ToolContext) -> str | None:
        """Preference context from the profile, or None for an unpersonalized search."""
        try:
            row = await self.store.get_user_context(ctx.user_id, list(self.context_columns))
        except (asyncpg.PostgresError, OSError, PoolError) as exc:
            logger.warning(f"Could not load {self.subject} context: {exc}", tool=self.name)
            return None

        if not row:
            return None
        values = [str(row[c]) for c in self.context_columns if row.get(c)]
        return "\n\n".join(values) or None

    def parse_failure(self, exc: StructuredOutputError) -> dict[str, Any]:
        logger.warning(f"Could not parse {self.subject} request: {exc}", tool=self.name)
        return tool_error(f"Could not understand the {self.subject} request", str(exc))

    async def format_or_fallback(self, prompt: str, fallback: Callable[[], str]) -> str:
        """Render with the text service; fall back to a deterministic rendering."""
        try:
            text = strip_code_fences(await self.llm.generate_text(prompt))
        except OpenAIError as exc:
            logger.warning(f"Formatting {self.subject} results failed, using fallback: {exc}", tool=self.name)
            return fallback()
        return text or fallback()

    async def enrich_top(
        self,
        records: list[R],
        limit: int,
        enrich: Callable[[R], Awaitable[R]],
    ) -> list[R]:
        """Enrich the first ``limit`` records concurrently.

        Results are merged back by original index. A failed enrichment keeps
        the record as it was.
        """
        head = records[:limit]
        outcomes = await asyncio.gather(*(enrich(r) for r in head), return_exceptions=True)
        merged = list(records)
        for index, outcome in enumerate(outcomes):
            if isinstance(outcome, BaseException):
                logger.warning(f"Booking lookup {index + 1} failed: {outcome}", tool=self.name)
                search_source_failures_total.labels(tool_name=self.name, stage="booking").inc()
                continue
            merged[index] = outcome
        return merged


def current_datetime() -> str:
    return datetime.now().astimezone().strftime("%A, %B %d, %Y %H:%M %Z")


def context_or_default(context: str | None) -> str:
    return context or NO_CONTEXT


def dedup_by(records: list[R], key: Callable[[R], Hashable]) -> list[R]:
    """Drop later records whose key was already seen. Empty keys are kept."""
    seen: set[Hashable] = set()
    unique = []
    for record in records:
        k = key(record)
        if k:
            if k in seen:
                continue
            seen.add(k)
        unique.append(record)
    return unique


def has_real_link(url: Any) -> bool:
    return isinstance(url, str) and url.startswith("http") and PLACEHOLDER_LINK_MARKER not in url


def rank_real_links_first(records: list[R], is_real: Callable[[R], bool]) -> list[R]:
    """Stable reorder putting records with a real purchase/booking link first."""
    return sorted(records, key=lambda r: not is_real(r))


def cap(records: list[R], limit: int) -> list[R]:
    """Keep at most ``limit`` records, with the limit bounded to the allowed range."""
    return records[: max(RESULT_CAP_MIN, min(limit, RESULT_CAP_MAX))]


def compose_response(title: str, sections: list[tuple[str, str | None]]) -> str:
    """``# title`` followed by ``## heading`` sections; empty sections are skipped."""
    blocks = [f"# {title}"]
    blocks.extend(f"## {heading}\n{body}" for heading, body in sections if body)
    return "\n\n".join(blocks)


def _titles_from_text(text: str) -> list[str]:
    titles = [_NUMBERING.sub("", m.strip()) for m in _HEADING.findall(text)]
    titles.extend(m.strip() for m in _NAME_FIELD.findall(text))
    return [t for t in titles if t]


def _titles_from_value(value: Any) -> list[str]:
    if isinstance(value, str):
        return _titles_from_text(value)
    if isinstance(value, Mapping):
        titles = []
        for key, nested in value.items():
            if key == "name" and isinstance(nested, str):
                titles.append(nested)
            else:
                titles.extend(_titles_from_value(nested))
        return titles
    if isinstance(value, list):
        return [t for item in value for t in _titles_from_value(item)]
    return []


def prior_result_titles(history: list[StoredMessage]) -> list[str]:
    """Titles already suggested in this chat.

    Collects ``##``/``###`` headings and ``name`` values from the tool results
    embedded in prior assistant messages.
    """
    titles: list[str] = []
    for message in history:
        if message.role != "assistant":
            continue
        for invocation in message.tool_invocations:
            result = invocation.get("result")
            if isinstance(result, str) and result.lstrip().startswith(("{", "[")):
                try:
                    result = json.loads(result)
                except ValueError:
                    pass
            titles.extend(_titles_from_value(result))
    return list(dict.fromkeys(titles))
