"""
Gift finder.

Stages: context, deduplication, then one searching and parsing pass per
retailer site (the parse extracts ideas from that site's results), then
formatting. A site that fails is skipped; the search only fails as a whole
when no site produced an idea. The list ends with a Google Shopping link for
the same request.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import quote_plus, urlparse

from openai import OpenAIError
from pydantic import BaseModel, Field

from concierge.core.constants import (
    DUPLICATE_SIMILARITY_THRESHOLD,
    ENGINE_GOOGLE,
    GIFT_CONTEXT_COLUMNS,
    GIFT_IDEAS_PER_SITE,
    GIFT_PROGRESS,
    GIFT_RESULT_CAP,
    GIFT_SITES,
    GIFT_STAGES,
    GOOGLE_SHOPPING_SEARCH_URL,
    PLACEHOLDER_LINK_MARKER,
)
from concierge.core.prompts import GIFT_FORMAT_PROMPT, GIFT_PARSE_PROMPT
from concierge.integrations.llm_service import StructuredOutputError
from concierge.integrations.serpapi_client import SearchProviderError
from concierge.tools.base import ToolContext, ToolParams
from concierge.tools.projection import RecordProjection
from concierge.tools.search import (
    SearchTool,
    cap,
    compose_response,
    context_or_default,
    has_real_link,
    prior_result_titles,
    rank_real_links_first,
)
from concierge.utils.logger import logger
from concierge.utils.metrics import search_source_failures_total
from concierge.utils.text_utils import is_duplicate, site_name

#: Organic results per site handed to the extraction model
ORGANIC_RESULTS_PER_SITE = 10

GIFT_PROJECTION = RecordProjection()


class GiftFinderParams(ToolParams):
    recipient: str = Field(..., min_length=1, description="The name of the person receiving the gift.")
    query: str = Field(
        ...,
        min_length=1,
        description='The gift request, e.g. "birthday gift" or "something for someone who loves to cook".',
    )


class GiftIdea(BaseModel):
    name: str = Field(..., description="The name of the gift product.")
    description: str = Field(default="", description="A brief description of the gift.")
    price: str = Field(default="", description="The price of the gift, with currency.")
    url: str = Field(..., description="A direct link to purchase the gift.")
    recipient_suitability: str = Field(
        default="", description="Why this gift suits the recipient based on their profile."
    )


class GiftIdeas(BaseModel):
    ideas: list[GiftIdea] = Field(default_factory=list)


def site_query_target(site: str) -> str:
    """``site:`` operand for a retailer URL: host plus path, no scheme."""
    parts = urlparse(site)
    return f"{parts.netloc}{parts.path}".rstrip("/")


def is_real_idea(idea: GiftIdea) -> bool:
    return has_real_link(idea.url) and PLACEHOLDER_LINK_MARKER not in idea.description


def apology(recipient: str) -> str:
    return (
        f"I wasn't able to find any gift ideas for {recipient}. If you tell me a little more about what they like, "
        "I can try again! Or, I can help you find a gift for someone else."
    )


def shopping_search_url(query: str) -> str:
    return GOOGLE_SHOPPING_SEARCH_URL + quote_plus(query)


def render_fallback(recipient: str, ideas: list[GiftIdea]) -> str:
    """Plain markdown for gifts when the formatting model is unavailable."""
    blocks = []
    for index, idea in enumerate(ideas, start=1):
        link = "Buy Now" if is_real_idea(idea) else "Visit Website"
        block = f"## {index}. {idea.name}\n**{idea.price or 'Price not listed'}** • [{link}]({idea.url})"
        if idea.description:
            block += f"\n\n{idea.description}"
        if idea.recipient_suitability:
            block += f"\n\n**Why this works for {recipient}:** {idea.recipient_suitability}"
        blocks.append(block)
    return "\n\n---\n\n".join(blocks)


class GiftFinderTool(SearchTool):
    name = "find_gifts"
    description = (
        "Get personalized gift recommendations for a specific person. The tool uses the recipient's known "
        "preferences and past gifts to find ideas with real prices and purchase links. Provide the recipient's "
        'name and the occasion or general request, e.g. recipient "Meghan", query "birthday gift". '
        "Returns a markdown list of suggestions."
    )
    params_model = GiftFinderParams
    progress_type = GIFT_PROGRESS
    stages = GIFT_STAGES
    failure_message = "Failed to find gifts"
    subject = "gift"
    context_columns = GIFT_CONTEXT_COLUMNS

    async def execute(self, params: GiftFinderParams, ctx: ToolContext) -> Any:
        recipient, query = params.recipient, params.query

        self.emit_progress(ctx, "context", f"Getting {recipient}'s past gift preferences and purchase history...")
        context = await self.load_context(ctx)
        if context:
            self.emit_progress(
                ctx, "context", f"Found {recipient}'s gift preferences from past purchases. Personalizing search..."
            )
        else:
            self.emit_progress(ctx, "context", "No previous gift data found. Searching for general recommendations...")

        self.emit_progress(ctx, "deduplication", "Checking gifts already suggested in this chat...")
        previous = prior_result_titles(ctx.history)

        self.emit_progress(ctx, "parsing", f"Analyzing what {recipient} might like based on the request...")

        candidates: list[GiftIdea] = []
        total = len(GIFT_SITES)
        for index, site in enumerate(GIFT_SITES, start=1):
            website = site_name(site)
            self.emit_progress(
                ctx,
                "searching",
                f"Searching for gifts on {website}...",
                current=index,
                total=total,
                website=website,
            )
            try:
                organic = await self._search_site(site, query)
            except SearchProviderError as exc:
                logger.warning(f"Gift search on {website} failed: {exc}", tool=self.name)
                search_source_failures_total.labels(tool_name=self.name, stage="searching").inc()
                continue
            if not organic:
                continue

            self.emit_progress(ctx, "parsing", f"Picking gift ideas for {recipient} from {website}...", website=website)
            try:
                ideas = await self._parse_site(site, organic, query, recipient, context, previous)
            except (StructuredOutputError, OpenAIError) as exc:
                logger.warning(f"Reading gift results from {website} failed: {exc}", tool=self.name)
                search_source_failures_total.labels(tool_name=self.name, stage="parsing").inc()
                continue
            logger.debug(f"Found {len(ideas)} ideas on {website}", tool=self.name)
            candidates.extend(ideas)

        kept: list[GiftIdea] = []
        seen = list(previous)
        for idea in candidates:
            if is_duplicate(idea.name, seen, DUPLICATE_SIMILARITY_THRESHOLD):
                continue
            kept.append(idea)
            seen.append(idea.name)

        if not kept:
            logger.info(
                f"No new gift ideas ({len(candidates)} candidates, {len(previous)} already suggested)",
                tool=self.name,
            )
            return apology(recipient)

        self.emit_progress(ctx, "formatting", "Putting together your personalized gift list...")
        ideas = cap(rank_real_links_first(kept, is_real_idea), GIFT_RESULT_CAP)

        prompt = GIFT_FORMAT_PROMPT.format(
            recipient=recipient,
            count=len(ideas),
            options=GIFT_PROJECTION.render([i.model_dump() for i in ideas], title="Idea"),
        )
        body = await self.format_or_fallback(prompt, lambda: render_fallback(recipient, ideas))
        return compose_response(
            f"Gift Ideas for {recipient}",
            [
                ("Suggestions", body),
                ("Google Shopping Search Results", shopping_search_url(query)),
            ],
        )

    async def _search_site(self, site: str, query: str) -> list[dict[str, Any]]:
        target = site_query_target(site)
        response = await self.provider.search({"engine": ENGINE_GOOGLE, "q": f"{query} site:{target}"})
        return (response.get("organic_results") or [])[:ORGANIC_RESULTS_PER_SITE]

    async def _parse_site(
        self,
        site: str,
        organic: list[dict[str, Any]],
        query: str,
        recipient: str,
        context: str | None,
        previous: list[str],
    ) -> list[GiftIdea]:
        results = "\n\n".join(
            f"- {r.get('title', '')}\n\t{r.get('link', '')}\n\t{r.get('snippet', '')}" for r in organic
        )
        prompt = GIFT_PARSE_PROMPT.format(
            limit=GIFT_IDEAS_PER_SITE,
            recipient=recipient,
            website=site_query_target(site),
            exclusions=", ".join(previous) or "none",
            query=query,
            context=context_or_default(context),
            results=results,
        )
        parsed = await self.llm.generate_object(prompt, GiftIdeas)
        return parsed.ideas[:GIFT_IDEAS_PER_SITE]
