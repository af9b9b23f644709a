"""
User context tool.

Reads selected profile columns and returns them as one markdown document.
Columns come from the requested context types, or are picked by the text
service from the query when no type is given.
"""

from __future__ import annotations

import json

from typing import TYPE_CHECKING, Any, Literal

from openai import OpenAIError
from pydantic import Field

from concierge.core.constants import (
    CHARS_PER_TOKEN,
    USER_CONTEXT_COLUMNS,
    USER_CONTEXT_FALLBACK_COLUMNS,
    USER_CONTEXT_MAX_CHARS,
    USER_CONTEXT_TYPE_COLUMNS,
)
from concierge.core.prompts import USER_CONTEXT_COLUMN_SELECTION_PROMPT
from concierge.tools.base import Tool, ToolContext, ToolParams, tool_error
from concierge.utils.logger import logger
from concierge.utils.text_utils import extract_json

if TYPE_CHECKING:
    from concierge.api.services.chat_store import ChatStore
    from concierge.integrations.llm_service import LLMService

ContextType = Literal[
    "personal",
    "professional",
    "preferences",
    "intelligence",
    "network",
    "purchases",
    "communication",
    "all",
]


class UserContextParams(ToolParams):
    query: str = Field(
        ...,
        description=(
            "Your specific query or the user's request that needs context. "
            "Used to select the most relevant information."
        ),
    )
    context_types: list[ContextType] | None = Field(
        default=None,
        description="Optional context types to retrieve. When omitted, columns are selected from the query.",
    )


def columns_for_types(context_types: list[str]) -> list[str]:
    """Map context types to profile columns; ``all`` is the union of every type."""
    if "all" in context_types:
        selected = [c for columns in USER_CONTEXT_TYPE_COLUMNS.values() for c in columns]
    else:
        selected = [c for t in context_types for c in USER_CONTEXT_TYPE_COLUMNS.get(t, ())]
    return list(dict.fromkeys(selected))


def parse_column_selection(text: str) -> list[str]:
    """Column names from a JSON array or a ``{"columns": [...]}`` object.

    Raises:
        ValueError: If the text holds neither.
    """
    parsed = extract_json(text)
    if isinstance(parsed, dict):
        parsed = parsed.get("columns")
    if not isinstance(parsed, list) or not all(isinstance(c, str) for c in parsed):
        raise ValueError("column selection is not a list of names")
    return parsed


def format_value(value: Any) -> str:
    if isinstance(value, dict | list):
        return json.dumps(value, indent=2, default=str)
    return str(value)


class UserContextTool(Tool):
    name = "get_user_context"
    description = (
        "Retrieve information about the current user from their profile, past conversations, research and "
        "connected applications: personal and professional details, communication style, travel and purchase "
        "preferences, calendar patterns, network, recent activity and deep research reports. Use it to "
        "personalize recommendations, match the user's writing style, or ground business answers in their "
        "company and industry. Relevant fields are selected from the query unless context types are given."
    )
    params_model = UserContextParams
    failure_message = "Failed to retrieve user context"

    def __init__(self, store: ChatStore, llm: LLMService):
        self.store = store
        self.llm = llm

    async def execute(self, params: UserContextParams, ctx: ToolContext) -> Any:
        query = params.query
        logger.info("Fetching user context", tool=self.name, user_id=ctx.user_id)

        if params.context_types:
            selected = columns_for_types(list(params.context_types))
        else:
            selected = await self._select_columns(query)

        profile = await self.store.get_user_context(ctx.user_id, selected)
        if profile is None:
            logger.warning("User profile not found", tool=self.name, user_id=ctx.user_id)
            return tool_error("User profile not found")

        sections = [
            f"# {column}:\n\n{format_value(profile[column])}"
            for column in selected
            if profile.get(column) not in (None, "")
        ]
        context = "\n\n---\n\n".join(sections)[:USER_CONTEXT_MAX_CHARS]
        token_estimate = round(len(context) / CHARS_PER_TOKEN)
        logger.info(
            f"Retrieved {len(sections)} context fields",
            tool=self.name,
            chars=len(context),
            token_estimate=token_estimate,
        )

        return {
            "success": True,
            "context": context,
            "selectedColumns": selected,
            "message": f'Retrieved context for query: "{query}"',
            "tokenEstimate": token_estimate,
        }

    async def _select_columns(self, query: str) -> list[str]:
        system = USER_CONTEXT_COLUMN_SELECTION_PROMPT.format(columns="\n".join(f"- {c}" for c in USER_CONTEXT_COLUMNS))
        try:
            text = await self.llm.generate_text(f'User Query: "{query}"', system=system)
            columns = parse_column_selection(text)
        except (OpenAIError, ValueError) as exc:
            logger.warning(f"Column selection failed, using fallback columns: {exc}", tool=self.name)
            return list(USER_CONTEXT_FALLBACK_COLUMNS)

        known = [c for c in columns if c in USER_CONTEXT_COLUMNS]
        return known or list(USER_CONTEXT_FALLBACK_COLUMNS)
