"""
Flight search.

Stages: preferences, parsing, searching, booking (booking options for the top
results), formatting.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from concierge.core.constants import (
    BOOKING_TOP_N,
    ENGINE_GOOGLE_FLIGHTS,
    FLIGHT_CONTEXT_COLUMNS,
    FLIGHT_PROGRESS,
    FLIGHT_RESULT_CAP,
    FLIGHT_STAGES,
)
from concierge.core.prompts import FLIGHT_FORMAT_PROMPT, FLIGHT_PARSE_PROMPT
from concierge.integrations.llm_service import StructuredOutputError
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

#: Search parameters repeated on the booking options lookup
BOOKING_LOOKUP_FIELDS = (
    "departure_id",
    "arrival_id",
    "type",
    "outbound_date",
    "return_date",
    "travel_class",
    "show_hidden",
    "stops",
)

FLIGHT_PROJECTION = RecordProjection(
    exclude=(
        "airline_logo",
        "flights.airline_logo",
        "booking_token",
        "departure_token",
        "carbon_emissions",
    ),
)


class FlightSearchParams(ToolParams):
    query: str = Field(
        ...,
        min_length=1,
        description=(
            'The flight request, e.g. "round trip from SFO to Tokyo next month" or '
            '"one way from NYC to London in business class"'
        ),
    )


class FlightQuery(BaseModel):
    """Provider parameters parsed from the user's request."""

    departure_id: str = Field(..., description='Departure airport code(s), e.g. "SFO"')
    arrival_id: str = Field(..., description='Arrival airport code(s), e.g. "NRT"')
    type: str = Field(default="1", description='"1" round trip, "2" one way, "3" multi-city')
    outbound_date: str = Field(..., description="YYYY-MM-DD")
    return_date: str | None = Field(default=None, description="YYYY-MM-DD, required for round trips")
    travel_class: str = Field(default="1", description='"1" economy to "4" first')
    stops: str = Field(default="0", description='"0" any, "1" nonstop, "2" one stop or fewer, "3" two or fewer')
    show_hidden: str | None = None
    adults: str = "1"
    children: str = "0"
    infants_in_seat: str = "0"
    infants_on_lap: str = "0"
    bags: str = "1"
    max_price: str | None = None
    outbound_times: str | None = None
    return_times: str | None = None
    layover_duration: str | None = None
    exclude_conns: str | None = None
    max_duration: str | None = None
    exclude_airlines: str | None = None
    include_airlines: str | None = None
    multi_city_json: str | None = None

    @property
    def route(self) -> str:
        return f"{self.departure_id} to {self.arrival_id}"


def build_search_params(parsed: FlightQuery) -> dict[str, Any]:
    """Engine parameters with unset fields dropped."""
    fields = {k: v for k, v in parsed.model_dump().items() if v not in (None, "", "null")}
    return {"engine": ENGINE_GOOGLE_FLIGHTS, **fields}


def _itinerary_key(record: dict[str, Any]) -> str:
    legs = record.get("flights") or []
    return " ".join(str(leg.get("flight_number", "")) for leg in legs if isinstance(leg, dict))


def _duration(minutes: Any) -> str:
    if not isinstance(minutes, int):
        return "n/a"
    return f"{minutes // 60}h {minutes % 60}m"


def render_fallback(records: list[dict[str, Any]]) -> str:
    """Plain markdown for flights when the formatting model is unavailable."""
    blocks = []
    for record in records:
        legs = [leg for leg in record.get("flights") or [] if isinstance(leg, dict)]
        airlines = ", ".join(dict.fromkeys(str(leg.get("airline", "")) for leg in legs if leg.get("airline")))
        price = record.get("price_usd") or record.get("price")
        lines = [f"## {airlines or 'Flight'} • ${price if price is not None else 'n/a'}"]
        for leg in legs:
            dep = leg.get("departure_airport") or {}
            arr = leg.get("arrival_airport") or {}
            lines.append(
                f"* {leg.get('flight_number', '')} • {dep.get('id', '')} - {arr.get('id', '')} • "
                f"{dep.get('time', '')} - {arr.get('time', '')} ({_duration(leg.get('duration'))})"
            )
        for layover in record.get("layovers") or []:
            lines.append(f"* Layover: {layover.get('name', '')} ({_duration(layover.get('duration'))})")
        lines.append(f"* **Total Duration: {_duration(record.get('total_duration'))}**")
        if record.get("booking_url"):
            lines.append(f"* {record['booking_url']}")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


class FlightSearchTool(SearchTool):
    name = "search_flights"
    description = (
        "Search for flights. The tool already knows the user's flight preferences (airlines, class, budget), "
        "so pass only trip-specific details: origin, destination, dates and passengers. Returns the best options "
        "in markdown with booking links and a Google Flights results link. The user cannot see the tool output: "
        "include the options and links in your reply, shortening very long links as markdown link text. "
        "You cannot book flights on the user's behalf."
    )
    params_model = FlightSearchParams
    progress_type = FLIGHT_PROGRESS
    stages = FLIGHT_STAGES
    failure_message = "Flight search failed"
    subject = "flight"
    context_columns = FLIGHT_CONTEXT_COLUMNS

    async def execute(self, params: FlightSearchParams, ctx: ToolContext) -> Any:
        query = params.query

        self.emit_progress(ctx, "preferences", "Getting your flight preferences...")
        context = await self.load_context(ctx)

        self.emit_progress(ctx, "parsing", "Parsing your search request...")
        prompt = FLIGHT_PARSE_PROMPT.format(context=context_or_default(context), now=current_datetime(), query=query)
        try:
            parsed = await self.llm.generate_object(prompt, FlightQuery)
        except StructuredOutputError as exc:
            return self.parse_failure(exc)

        destination = parsed.route
        self.emit_progress(ctx, "searching", f"Searching flights from {destination}...", destination=destination)
        search_params = build_search_params(parsed)
        response = await self.provider.search(search_params)
        flights = [
            f for f in [*(response.get("best_flights") or []), *(response.get("other_flights") or [])] if f
        ]

        if not flights:
            logger.info("Flight search returned no options", tool=self.name)
            return (
                f"I couldn't find any flights from {parsed.departure_id} to {parsed.arrival_id}. "
                "Try different dates or nearby airports and I'll search again."
            )

        top = min(BOOKING_TOP_N, len(flights))
        self.emit_progress(
            ctx, "booking", "Getting booking options...", current=0, total=top, destination=destination
        )
        flights = await self.enrich_top(
            flights, BOOKING_TOP_N, lambda flight: self._booking_options(search_params, flight)
        )

        self.emit_progress(ctx, "formatting", "Applying flight preferences and re-ranking...")
        records = dedup_by(flights, key=_itinerary_key)
        records = rank_real_links_first(records, lambda r: has_real_link(r.get("booking_url")))
        records = cap(records, FLIGHT_RESULT_CAP)

        format_prompt = FLIGHT_FORMAT_PROMPT.format(
            count=len(records),
            options=FLIGHT_PROJECTION.render(records),
            context=context_or_default(context),
            query=query,
        )
        body = await self.format_or_fallback(format_prompt, lambda: render_fallback(records))

        metadata = response.get("search_metadata") or {}
        return compose_response(
            "Flights",
            [
                ("Flight Options", body),
                ("Context", context_or_default(context)),
                ("Google Flights Search Results URL", metadata.get("google_flights_url") or ""),
            ],
        )

    async def _booking_options(self, search_params: dict[str, Any], flight: dict[str, Any]) -> dict[str, Any]:
        token = flight.get("booking_token")
        if not token:
            return flight

        lookup = {k: search_params[k] for k in BOOKING_LOOKUP_FIELDS if k in search_params}
        response = await self.provider.search({"engine": ENGINE_GOOGLE_FLIGHTS, **lookup, "booking_token": token})
        options = response.get("booking_options") or []
        if not options:
            return flight

        option = options[0]
        together = option.get("together") or {}
        merged = dict(flight)
        selected = option.get("selected_flights") or []
        if selected and selected[0].get("flights"):
            merged["flights"] = selected[0]["flights"]

        request = together.get("booking_request") or {}
        if request.get("url"):
            post_data = request.get("post_data")
            merged["booking_url"] = f"{request['url']}?{post_data}" if post_data else request["url"]
        if together.get("book_with"):
            merged["book_with"] = together["book_with"]
        if together.get("price") is not None:
            merged["price_usd"] = together["price"]
        baggage = together.get("baggage_prices") or []
        if baggage:
            merged["baggage"] = baggage[0]
        return merged
