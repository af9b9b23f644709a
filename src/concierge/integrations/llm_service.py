"""
Language model access for the orchestrator and the search tools.

Three capabilities over one dependency-injected ``AsyncOpenAI`` client:

- ``generate_text``: a single completion (titles, column selection, result
  formatting, review summaries)
- ``generate_object``: a completion parsed into a pydantic model, with one
  repair pass on a cheaper model when the first output does not validate
- ``stream_turn``: an Agent/Runner streamed turn with tools bound, yielding
  text delta chunks
"""

from __future__ import annotations

import json

from collections.abc import AsyncIterator
from typing import Any, TypeVar

from agents import Agent, FunctionTool, RunConfig, Runner
from agents.models.openai_provider import OpenAIProvider
from openai import AsyncOpenAI
from pydantic import BaseModel, ValidationError

from concierge.core.constants import AGENT_NAME, MAX_AGENT_TURNS, Settings
from concierge.core.prompts import JSON_OUTPUT_INSTRUCTIONS, JSON_REPAIR_PROMPT
from concierge.integrations.event_handlers import event_to_chunk
from concierge.models.stream_models import StreamChunk
from concierge.utils.logger import logger
from concierge.utils.metrics import structured_output_repairs_total
from concierge.utils.text_utils import extract_json, truncate

M = TypeVar("M", bound=BaseModel)


class StructuredOutputError(Exception):
    """Model output could not be parsed into the requested schema, even after repair."""

    def __init__(self, message: str, raw_output: str | None = None):
        self.raw_output = raw_output
        super().__init__(message)


class LLMService:
    """Text, structured and streamed generation."""

    def __init__(self, client: AsyncOpenAI, settings: Settings):
        self.client = client
        self.settings = settings
        # Per-service provider so concurrent turns never share a default client
        self._provider = OpenAIProvider(openai_client=client)

    async def generate_text(
        self,
        prompt: str,
        *,
        system: str | None = None,
        model: str | None = None,
    ) -> str:
        """Single non-streamed completion. Returns the text, possibly empty."""
        messages: list[dict[str, Any]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        response = await self.client.chat.completions.create(
            model=model or self.settings.formatting_model,
            messages=messages,  # type: ignore[arg-type]
        )
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    async def generate_object(
        self,
        prompt: str,
        schema: type[M],
        *,
        system: str | None = None,
        model: str | None = None,
    ) -> M:
        """Generate an object validating against ``schema``.

        The first pass runs on the parsing model. If its output is not valid
        JSON or fails validation, the raw output and the error are sent once to
        the repair model.

        Raises:
            StructuredOutputError: If the repaired output is still invalid.
        """
        schema_json = json.dumps(schema.model_json_schema())
        first_prompt = f"{prompt}\n\n{JSON_OUTPUT_INSTRUCTIONS.format(schema=schema_json)}"
        raw = await self._complete_json(first_prompt, system, model or self.settings.parsing_model)

        try:
            return self._parse(raw, schema)
        except (json.JSONDecodeError, ValidationError) as exc:
            first_error = str(exc)

        logger.warning(
            f"Structured output for {schema.__name__} failed validation, attempting repair",
            error=truncate(first_error, 500),
        )
        repair_prompt = JSON_REPAIR_PROMPT.format(error=first_error, schema=schema_json, output=raw)
        repaired = await self._complete_json(repair_prompt, None, self.settings.repair_model)

        try:
            result = self._parse(repaired, schema)
        except (json.JSONDecodeError, ValidationError) as exc:
            structured_output_repairs_total.labels(outcome="failed").inc()
            raise StructuredOutputError(
                f"Model output is not a valid {schema.__name__}: {truncate(str(exc), 300)}",
                raw_output=repaired,
            ) from exc

        structured_output_repairs_total.labels(outcome="repaired").inc()
        return result

    async def _complete_json(self, prompt: str, system: str | None, model: str) -> str:
        messages: list[dict[str, Any]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        response = await self.client.chat.completions.create(
            model=model,
            messages=messages,  # type: ignore[arg-type]
            response_format={"type": "json_object"},
        )
        return response.choices[0].message.content or ""

    @staticmethod
    def _parse(raw: str, schema: type[M]) -> M:
        return schema.model_validate(extract_json(raw))

    async def stream_turn(
        self,
        *,
        model: str,
        instructions: str,
        messages: list[dict[str, Any]],
        tools: list[FunctionTool],
    ) -> AsyncIterator[StreamChunk]:
        """Run one streamed agent turn and yield its text chunks.

        Tool invocations happen inside the run; the bound tools write their own
        chunks to the turn channel.
        """
        agent = Agent(
            name=AGENT_NAME,
            model=model,
            instructions=instructions,
            tools=list(tools),
        )
        run_config = RunConfig(model_provider=self._provider, tracing_disabled=True)
        stream = Runner.run_streamed(
            agent,
            input=messages,  # type: ignore[arg-type]  # SDK accepts dict messages
            run_config=run_config,
            max_turns=MAX_AGENT_TURNS,
        )

        try:
            async for event in stream.stream_events():
                chunk = event_to_chunk(event)
                if chunk is not None:
                    yield chunk
        finally:
            if not stream.is_complete:
                stream.cancel()
