"""
Tool registry.

Holds every constructed tool by name. The registry is built and validated at
application startup so a misconfigured tool fails the boot, not a user turn.
"""

from __future__ import annotations

import re

from typing import TYPE_CHECKING

from concierge.api.middleware.exception_handlers import ConfigurationError
from concierge.core.constants import TOOL_NAME_PATTERN
from concierge.tools.base import Tool
from concierge.utils.logger import logger

if TYPE_CHECKING:
    from concierge.api.services.chat_store import ChatStore
    from concierge.core.constants import Settings
    from concierge.integrations.llm_service import LLMService
    from concierge.integrations.serpapi_client import SerpApiClient

_NAME_RE = re.compile(TOOL_NAME_PATTERN)


class ToolRegistry:
    """Name to tool mapping with startup validation."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}
        self._enabled: list[str] | None = None

    def register(self, tool: Tool) -> Tool:
        """Add a tool.

        Raises:
            ValueError: If the name is invalid or already registered.
        """
        if not _NAME_RE.match(tool.name):
            raise ValueError(f"Invalid tool name {tool.name!r}: must match {TOOL_NAME_PATTERN}")
        if tool.name in self._tools:
            raise ValueError(f"Tool {tool.name!r} is already registered")
        self._tools[tool.name] = tool
        return tool

    def get(self, name: str) -> Tool:
        try:
            return self._tools[name]
        except KeyError:
            raise KeyError(f"Unknown tool: {name}") from None

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def validate(self, enabled_names: list[str], settings: Settings) -> list[Tool]:
        """Check the enabled tools exist and are configured.

        Remembers the validated selection for ``enabled_tools``.

        Raises:
            ConfigurationError: Listing every unknown or misconfigured tool.
        """
        unknown = [n for n in enabled_names if n not in self._tools]
        problems: dict[str, list[str]] = {}
        for name in enabled_names:
            if name in self._tools:
                issues = self._tools[name].configuration_problems(settings)
                if issues:
                    problems[name] = issues

        if unknown or problems:
            parts = []
            if unknown:
                parts.append(f"unknown tools {unknown}")
            for name, issues in problems.items():
                parts.append(f"{name}: {', '.join(issues)}")
            raise ConfigurationError(
                f"Invalid tool configuration: {'; '.join(parts)}",
                details={"unknown": unknown, "misconfigured": problems},
            )

        self._enabled = list(dict.fromkeys(enabled_names))
        logger.info(f"Tool registry validated: {self._enabled}")
        return [self._tools[n] for n in self._enabled]

    def enabled_tools(self) -> list[Tool]:
        """Tools selected by the last successful ``validate``, else all."""
        names = self._enabled if self._enabled is not None else self.names
        return [self._tools[n] for n in names]


def build_default_registry(
    store: ChatStore,
    llm: LLMService,
    search: SerpApiClient | None,
) -> ToolRegistry:
    """Construct every built-in tool with its clients injected."""
    from concierge.tools.flights import FlightSearchTool
    from concierge.tools.gifts import GiftFinderTool
    from concierge.tools.hotels import HotelSearchTool
    from concierge.tools.user_context import UserContextTool

    registry = ToolRegistry()
    registry.register(UserContextTool(store, llm))
    registry.register(FlightSearchTool(store, llm, search))
    registry.register(HotelSearchTool(store, llm, search))
    registry.register(GiftFinderTool(store, llm, search))
    return registry
