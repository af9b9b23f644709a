"""
Tool contract for model-invocable capabilities.

A tool is a named, schema-validated capability. Tools are constructed once at
startup with their clients injected; everything that varies per turn (user,
chat, progress emitter, prior messages) arrives through ``ToolContext``.

Failures never escape ``invoke``: invalid arguments and execution errors come
back as ``{"error", "details"}`` results the model can verbalize.
"""

from __future__ import annotations

import json
import time

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import BaseModel, ConfigDict, ValidationError

from concierge.utils.logger import logger
from concierge.utils.metrics import tool_call_duration_seconds, tool_calls_total

if TYPE_CHECKING:
    from concierge.core.constants import Settings
    from concierge.core.streaming import ProgressEmitter
    from concierge.models.chat_models import StoredMessage


class ToolArgumentsError(ValueError):
    """Raw tool arguments failed schema validation."""


class ToolParams(BaseModel):
    """Base for tool parameter models: unknown keys rejected, no type coercion."""

    model_config = ConfigDict(extra="forbid", strict=True)


@dataclass
class ToolContext:
    """Per-turn state handed to every tool invocation."""

    user_id: str
    chat_id: str
    emitter: ProgressEmitter | None = None
    history: list[StoredMessage] = field(default_factory=list)


def tool_error(error: str, details: str | None = None) -> dict[str, Any]:
    """Structured error result returned to the model."""
    result: dict[str, Any] = {"error": error}
    if details is not None:
        result["details"] = details
    return result


def is_error_result(result: Any) -> bool:
    return isinstance(result, dict) and "error" in result


class Tool(ABC):
    """Base class for every tool the model may call."""

    name: ClassVar[str]
    description: ClassVar[str]
    params_model: ClassVar[type[ToolParams]]
    #: ``<domain>-progress`` chunk type, or None for tools without progress
    progress_type: ClassVar[str | None] = None
    #: Closed set of progress stages in emission order
    stages: ClassVar[tuple[str, ...]] = ()
    #: Error message used when execution fails unexpectedly
    failure_message: ClassVar[str] = "Tool execution failed"

    @abstractmethod
    async def execute(self, params: Any, ctx: ToolContext) -> Any:
        """Run the tool with validated parameters."""

    def configuration_problems(self, settings: Settings) -> list[str]:
        """Reasons this tool cannot run under ``settings``; empty when ready."""
        return []

    def params_schema(self) -> dict[str, Any]:
        """JSON schema of the parameters, as advertised to the model."""
        return self.params_model.model_json_schema()

    def validate(self, raw_args: str | dict[str, Any]) -> ToolParams:
        """Validate raw arguments against the params model.

        Raises:
            ToolArgumentsError: Describing every offending field.
        """
        try:
            if isinstance(raw_args, str):
                return self.params_model.model_validate_json(raw_args or "{}")
            return self.params_model.model_validate(raw_args)
        except ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}" for err in exc.errors()
            )
            raise ToolArgumentsError(problems) from exc

    async def invoke(self, raw_args: str | dict[str, Any], ctx: ToolContext) -> Any:
        """Validate and execute, containing every failure in the result."""
        start = time.perf_counter()
        status = "success"
        try:
            try:
                params = self.validate(raw_args)
            except ToolArgumentsError as exc:
                status = "invalid_args"
                logger.warning(f"Invalid arguments for {self.name}: {exc}", tool=self.name)
                return tool_error(f"Invalid arguments for {self.name}", str(exc))

            try:
                result = await self.execute(params, ctx)
            except Exception as exc:
                status = "error"
                logger.error(f"Tool {self.name} failed: {exc}", exc_info=True, tool=self.name)
                return tool_error(self.failure_message, str(exc) or type(exc).__name__)

            if is_error_result(result):
                status = "error"
            logger.log_tool_call(self.name, params.model_dump(), result)
            return result
        finally:
            tool_calls_total.labels(tool_name=self.name, status=status).inc()
            tool_call_duration_seconds.labels(tool_name=self.name).observe(time.perf_counter() - start)

    def emit_progress(
        self,
        ctx: ToolContext,
        stage: str,
        message: str,
        *,
        current: int | None = None,
        total: int | None = None,
        destination: str | None = None,
        website: str | None = None,
    ) -> None:
        """Send a progress event for this tool if the turn has an emitter."""
        if stage not in self.stages:
            raise ValueError(f"{self.name} has no progress stage {stage!r}")
        if ctx.emitter is None or self.progress_type is None:
            return
        ctx.emitter.emit(
            self.progress_type,
            stage,
            message,
            current=current,
            total=total,
            destination=destination,
            website=website,
        )


def result_to_text(result: Any) -> str:
    """Render a tool result as the string handed back to the model."""
    if isinstance(result, str):
        return result
    return json.dumps(result, default=str)
