"""
Hotel and vacation rental search.

Stages: preferences, parsing, searching, booking (property details and review
summaries for the top results), formatting.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

from openai import OpenAIError
from pydantic import BaseModel, Field

from concierge.core.constants import (
    BOOKING_TOP_N,
    ENGINE_GOOGLE_HOTELS,
    GOOGLE_MAPS_SEARCH_URL,
    HOTEL_CLASSES,
    HOTEL_CONTEXT_COLUMNS,
    HOTEL_MIN_RATING,
    HOTEL_PROGRESS,
    HOTEL_PROPERTY_TYPES,
    HOTEL_RESULT_CAP,
    HOTEL_SEARCH_LIMIT,
    HOTEL_STAGES,
    VACATION_RENTAL_PROPERTY_TYPES,
)
from concierge.core.prompts import HOTEL_FORMAT_PROMPT, HOTEL_PARSE_PROMPT, HOTEL_REVIEW_SUMMARY_PROMPT
from concierge.integrations.llm_service import StructuredOutputError
from concierge.integrations.serpapi_client import SearchProviderError
from concierge.tools.base import ToolContext, ToolParams
from concierge.tools.projection import RecordProjection
from concierge.tools.search import (
    SearchTool,
    cap,
    compose_response,
    context_or_default,
    current_datetime,
    dedup_by,
    has_real_link,
    rank_real_links_first,
)
from concierge.utils.logger import logger

NO_REVIEW_DATA = "No review data available."
REVIEW_SUMMARY_FAILED = "Could not summarize reviews."

#: Individual reviews passed to the summarizer per property
MAX_REVIEWS_SUMMARIZED = 24

_PRICE_NOISE = (
    "logo",
    "remarks",
    "original_rate_per_night",
    "rate_per_night.before_taxes_fees",
    "rate_per_night.extracted_before_taxes_fees",
    "total_rate.before_taxes_fees",
    "total_rate.extracted_before_taxes_fees",
)


def _lowest(record: dict[str, Any], field: str) -> Any:
    value = record.get(field)
    return value.get("extracted_lowest") if isinstance(value, dict) else None


def maps_link(record: dict[str, Any]) -> str | None:
    name = record.get("name")
    if not name:
        return None
    address = record.get("address") or ""
    return GOOGLE_MAPS_SEARCH_URL + quote(f"{name}+{address}", safe="")


HOTEL_PROJECTION = RecordProjection(
    exclude=(
        "message",
        "index",
        "logprobs",
        "finish_reason",
        "rate_per_night",
        "total_rate",
        "deal",
        "deal_description",
        "nearby_places",
        "images",
        "serpapi_property_details_link",
        "search_metadata",
        "search_parameters",
        "reviews_breakdown",
        "other_reviews",
        "property_token",
        *(f"prices.{f}" for f in _PRICE_NOISE),
        *(f"featured_prices.{f}" for f in _PRICE_NOISE),
        "featured_prices.rooms.images",
        *(f"featured_prices.rooms.{f}" for f in _PRICE_NOISE),
    ),
    computed={
        "reviews_summary": lambda r: r.get("reviews_summary") or NO_REVIEW_DATA,
        "rate_per_night_lowest_usd": lambda r: _lowest(r, "rate_per_night"),
        "total_rate_lowest_usd": lambda r: _lowest(r, "total_rate"),
        "google_maps_link": maps_link,
    },
)


class HotelSearchParams(ToolParams):
    query: str = Field(
        ...,
        min_length=1,
        description="The hotel or vacation rental request, including location, dates and any requirements",
    )


class HotelQuery(BaseModel):
    """Provider parameters parsed from the user's request."""

    q: str = Field(..., description="What would be typed into the hotels.google.com search box")
    check_in_date: str = Field(..., description="YYYY-MM-DD")
    check_out_date: str = Field(..., description="YYYY-MM-DD")
    vacation_rentals: bool | None = Field(default=False, description="True only for vacation rental requests")
    adults: int = 1
    children: int = 0


def build_search_params(parsed: HotelQuery) -> dict[str, Any]:
    params: dict[str, Any] = {
        "engine": ENGINE_GOOGLE_HOTELS,
        "q": " ".join(parsed.q.replace(",", " ").split()),
        "check_in_date": parsed.check_in_date,
        "check_out_date": parsed.check_out_date,
        "adults": parsed.adults or 1,
        "children": parsed.children or 0,
        "rating": HOTEL_MIN_RATING,
    }
    if parsed.vacation_rentals:
        params["vacation_rentals"] = True
        params["property_types"] = VACATION_RENTAL_PROPERTY_TYPES
    else:
        params["hotel_class"] = HOTEL_CLASSES
        params["property_types"] = HOTEL_PROPERTY_TYPES
    return params


def _percent(part: Any, whole: Any) -> str:
    try:
        return f"{part / whole * 100:.1f}%"
    except (TypeError, ZeroDivisionError):
        return "n/a"


def review_summary_prompt(record: dict[str, Any]) -> str:
    reviews = record.get("reviews")
    ratings = "\n".join(
        f"\t- {r.get('stars')}/5 Stars: {r.get('count')}/{reviews} ({_percent(r.get('count'), reviews)})"
        for r in record.get("ratings") or []
    )
    breakdown = "\n".join(
        f"- {b.get('description')}: \n\tMentions: {b.get('total_mentioned')}"
        f" \n\tPositive: {b.get('positive')} ({_percent(b.get('positive'), b.get('total_mentioned'))})"
        f" \n\tNegative: {b.get('negative')} ({_percent(b.get('negative'), b.get('total_mentioned'))})"
        f" \n\tNeutral: {b.get('neutral')} ({_percent(b.get('neutral'), b.get('total_mentioned'))})"
        for b in record.get("reviews_breakdown") or []
    )
    individual = []
    for index, item in enumerate((record.get("other_reviews") or [])[:MAX_REVIEWS_SUMMARIZED], start=1):
        review = item.get("user_review") or {}
        rating = review.get("rating") or {}
        individual.append(
            f"Review {index} \n\tDate: {review.get('date')} \n\tScore: {rating.get('score')}/{rating.get('max_score')}"
            f" \n\tReview: {review.get('comment')} \n\tSource: {item.get('source')}"
        )
    return HOTEL_REVIEW_SUMMARY_PROMPT.format(
        name=record.get("name"),
        reviews=reviews,
        overall_rating=record.get("overall_rating"),
        ratings=ratings or "Not available.",
        breakdown=breakdown or "Not available.",
        individual_reviews="\n\n".join(individual) or "Not available.",
    )


def render_fallback(records: list[dict[str, Any]]) -> str:
    """Plain markdown for hotels when the formatting model is unavailable."""
    blocks = []
    for record in records:
        lines = [f"## {record.get('name', 'Unnamed property')}"]
        if record.get("link"):
            lines.append(f"* [Website]({record['link']})")
        if record.get("address") or record.get("name"):
            lines.append(f"* [{record.get('address') or 'Map'}]({maps_link(record)})")
        lines.append(f"* {record.get('reviews_summary') or NO_REVIEW_DATA}")
        if record.get("overall_rating") is not None:
            lines.append(f"* {record['overall_rating']} ({record.get('reviews', 0)} reviews)")
        nightly = _lowest(record, "rate_per_night")
        if nightly is not None:
            lines.append(f"* From ${nightly}/night")
        for price in (record.get("prices") or [])[:2]:
            rate = _lowest(price, "rate_per_night")
            amount = f"${rate}/night" if rate is not None else "Price not available"
            lines.append(f"* [{price.get('source', 'Book')}]({price.get('link', '')}) - {amount}")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


class HotelSearchTool(SearchTool):
    name = "search_hotels"
    description = (
        "Search for hotels and vacation rentals. The tool already knows the user's accommodation preferences; "
        "pass a detailed query with the destination, dates and any specific requirements. Returns markdown with "
        "properties, prices, review summaries and booking links, followed by a Google Hotels results link. "
        "The user cannot see the tool output: include the options and links in your reply. "
        "You cannot book hotels on the user's behalf."
    )
    params_model = HotelSearchParams
    progress_type = HOTEL_PROGRESS
    stages = HOTEL_STAGES
    failure_message = "Hotel search failed"
    subject = "hotel"
    context_columns = HOTEL_CONTEXT_COLUMNS

    async def execute(self, params: HotelSearchParams, ctx: ToolContext) -> Any:
        query = params.query

        self.emit_progress(ctx, "preferences", "Getting your hotel preferences...")
        context = await self.load_context(ctx)

        self.emit_progress(ctx, "parsing", "Parsing your search request...")
        prompt = HOTEL_PARSE_PROMPT.format(now=current_datetime(), context=context_or_default(context), query=query)
        try:
            parsed = await self.llm.generate_object(prompt, HotelQuery)
        except StructuredOutputError as exc:
            return self.parse_failure(exc)

        search_params = build_search_params(parsed)
        destination = search_params["q"]
        self.emit_progress(ctx, "searching", f"Searching hotels in {destination}...", destination=destination)
        response = await self.provider.search(search_params)
        properties = list(response.get("properties") or [])[:HOTEL_SEARCH_LIMIT]

        if not properties:
            logger.info("Hotel search returned no properties", tool=self.name)
            return (
                f'I couldn\'t find any hotels matching "{destination}". '
                "Try adjusting your dates, destination, or budget and I'll search again."
            )

        top = min(BOOKING_TOP_N, len(properties))
        self.emit_progress(
            ctx, "booking", f"Getting details and reviews for the top {top} options...", current=0, total=top
        )
        properties = await self.enrich_top(properties, BOOKING_TOP_N, self._enrich_property)

        self.emit_progress(ctx, "formatting", "Applying your preferences and ranking options...")
        records = dedup_by(properties, key=lambda r: r.get("name"))
        records = rank_real_links_first(records, lambda r: has_real_link(r.get("link")))
        records = cap(records, HOTEL_RESULT_CAP)

        format_prompt = HOTEL_FORMAT_PROMPT.format(
            count=len(records),
            options=HOTEL_PROJECTION.render(records),
            context=context_or_default(context),
            query=query,
        )
        body = await self.format_or_fallback(format_prompt, lambda: render_fallback(records))

        metadata = response.get("search_metadata") or {}
        results_link = metadata.get("google_hotels_url") or metadata.get("prettify_html_file")
        return compose_response(
            "Accommodation Options",
            [
                ("Options", body),
                ("Accommodation Preferences", context_or_default(context)),
                ("Current Accommodation Query", query),
                ("Google Hotels Search Results Page", results_link or "Search results not available"),
            ],
        )

    async def _enrich_property(self, record: dict[str, Any]) -> dict[str, Any]:
        merged = dict(record)
        details_link = record.get("serpapi_property_details_link")
        if details_link:
            try:
                merged.update(await self.provider.fetch(details_link))
            except SearchProviderError as exc:
                logger.warning(f"Property details for {record.get('name')} unavailable: {exc}", tool=self.name)
        merged["reviews_summary"] = await self._summarize_reviews(merged)
        return merged

    async def _summarize_reviews(self, record: dict[str, Any]) -> str:
        if not record.get("reviews_breakdown") and not record.get("other_reviews"):
            return NO_REVIEW_DATA
        try:
            summary = await self.llm.generate_text(review_summary_prompt(record))
        except OpenAIError as exc:
            logger.warning(f"Review summary for {record.get('name')} failed: {exc}", tool=self.name)
            return REVIEW_SUMMARY_FAILED
        return summary.strip() or REVIEW_SUMMARY_FAILED
