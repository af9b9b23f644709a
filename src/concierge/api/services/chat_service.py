"""
Chat turn orchestration.

One turn: authenticate (done by the route), resolve or create the chat,
persist the user message, then either hand the turn to an external workflow
or stream the model's reply with tools bound. The streamed reply is one
ordered channel of text, tool and progress chunks passed through the
tool-call filter; the assistant message is persisted once the stream ends.
"""

from __future__ import annotations

import asyncio
import uuid

from collections.abc import AsyncIterator
from datetime import UTC, datetime
from typing import Any


from concierge.api.middleware.exception_handlers import (
    ConfigurationError,
    PermissionDeniedError,
    ValidationException,
)
from concierge.api.middleware.request_context import update_request_context
from concierge.api.services.chat_store import ChatStore
from concierge.api.services.message_utils import normalize_history
from concierge.core.constants import (
    GENERATION_FAILED_MESSAGE,
    MODEL_CONFIGS_BY_ID,
    PERSISTENCE_FAILED_MESSAGE,
    TITLE_MAX_LENGTH,
    TURN_TIMEOUT_MESSAGE,
    ChatModelConfig,
    Settings,
)
from concierge.core.prompts import SYSTEM_INSTRUCTIONS, TITLE_GENERATION_PROMPT
from concierge.core.streaming import ProgressEmitter, TurnChannel, filter_until_tool_call
from concierge.integrations.llm_service import LLMService
from concierge.integrations.workflow_client import WorkflowClient, WorkflowDispatchError
from concierge.models.chat_models import ChatRecord, ChatRequest, StoredMessage, UserInfo
from concierge.models.error_models import ErrorCode
from concierge.models.stream_models import ErrorChunk, TextDelta
from concierge.tools.base import ToolContext
from concierge.tools.registry import ToolRegistry
from concierge.tools.wrappers import InvocationLog, build_function_tools, invocation_parts
from concierge.utils.logger import logger
from concierge.utils.metrics import turn_duration_seconds, turns_total

DEFAULT_TITLE = "New chat"


class ChatService:
    """Orchestrates chat turns over the store, the model and the workflows."""

    def __init__(
        self,
        store: ChatStore,
        llm: LLMService,
        registry: ToolRegistry,
        workflow: WorkflowClient,
        settings: Settings,
    ):
        self.store = store
        self.llm = llm
        self.registry = registry
        self.workflow = workflow
        self.settings = settings
        # Strong references so fire-and-forget notifications are not collected mid-flight
        self._background_tasks: set[asyncio.Task[None]] = set()

    async def handle_turn(self, request: ChatRequest, user: UserInfo) -> AsyncIterator[str] | None:
        """Run one turn.

        Returns:
            An async iterator of NDJSON lines for a model turn, or None when the
            turn was handed to a workflow (the reply arrives by callback).

        Raises:
            ValidationException: Unknown model selector.
            ConfigurationError: Workflow selector without a webhook URL.
            PermissionDeniedError: The chat belongs to another user.
        """
        config = MODEL_CONFIGS_BY_ID.get(request.selected_chat_model)
        if config is None:
            raise ValidationException(
                message=f"Unknown chat model: {request.selected_chat_model}",
                code=ErrorCode.VALIDATION_UNKNOWN_MODEL,
            )

        webhook_url: str | None = None
        if config.is_workflow:
            webhook_url = self.settings.workflow_webhook_urls.get(config.id)
            if not webhook_url:
                raise ConfigurationError(
                    "Assistant configuration error",
                    details={"selector": config.id},
                )

        update_request_context(chat_id=request.id)
        chat = await self._resolve_chat(request, user)

        user_message = StoredMessage(
            id=request.message.id,
            chat_id=chat.id,
            role="user",
            parts=request.message.parts,
            attachments=request.message.attachments,
            created_at=request.message.created_at,
        )
        await self.store.save_messages([user_message])

        if webhook_url is not None:
            self._dispatch_workflow(webhook_url, request, user)
            turns_total.labels(target="workflow", outcome="ok").inc()
            return None

        history = [m for m in await self.store.get_messages_by_chat_id(chat.id) if m.id != user_message.id]
        return self._stream_model_turn(config, user, chat, request.message.text, history)

    async def delete_chat(self, chat_id: str, user: UserInfo) -> ChatRecord | None:
        """Delete a chat the user owns; None when not found or not owned."""
        deleted = await self.store.delete_chat_by_id(chat_id, user.id)
        if deleted is None:
            logger.info("Chat delete refused: not found or not owned", chat_id=chat_id)
        else:
            logger.info("Chat deleted", chat_id=chat_id)
        return deleted

    async def save_workflow_reply(self, chat_id: str, parts: list[dict[str, Any]]) -> StoredMessage | None:
        """Append an assistant message posted back by a workflow; None for an unknown chat."""
        chat = await self.store.get_chat_by_id(chat_id)
        if chat is None:
            return None
        message = StoredMessage(id=str(uuid.uuid4()), chat_id=chat_id, role="assistant", parts=parts)
        await self.store.save_messages([message])
        await self.store.invalidate_messages(chat_id)
        logger.info("Workflow reply saved", chat_id=chat_id)
        return message

    # ------------------------------------------------------------------
    # Chat resolution
    # ------------------------------------------------------------------

    async def _resolve_chat(self, request: ChatRequest, user: UserInfo) -> ChatRecord:
        chat = await self.store.get_chat_by_id(request.id)

        if chat is None:
            title = await self._generate_title(request.message.text)
            chat = ChatRecord(
                id=request.id,
                user_id=user.id,
                title=title,
                visibility=request.selected_visibility_type,
            )
            await self.store.save_chat(chat)
            logger.info("Chat created", chat_id=chat.id)
            return chat

        if chat.user_id != user.id:
            logger.warning("Turn refused: chat owned by another user", chat_id=chat.id)
            raise PermissionDeniedError()

        if chat.visibility != request.selected_visibility_type:
            await self.store.update_chat_visibility(chat.id, request.selected_visibility_type)
            chat = chat.model_copy(update={"visibility": request.selected_visibility_type})
        return chat

    async def _generate_title(self, text: str) -> str:
        """Best-effort title; falls back to the start of the user text."""
        fallback = " ".join(text.split())[:TITLE_MAX_LENGTH] or DEFAULT_TITLE
        if not text.strip():
            return fallback
        try:
            generated = await self.llm.generate_text(
                text,
                system=TITLE_GENERATION_PROMPT,
                model=self.settings.title_model,
            )
        except Exception as exc:
            # A title is cosmetic; the turn goes ahead with the fallback
            logger.warning(f"Title generation failed, using message text: {exc!r}")
            return fallback

        title = generated.strip().strip("\"'").strip()
        return title[:TITLE_MAX_LENGTH] or fallback

    # ------------------------------------------------------------------
    # Workflow path
    # ------------------------------------------------------------------

    def _dispatch_workflow(self, url: str, request: ChatRequest, user: UserInfo) -> None:
        payload = {
            "chatId": request.id,
            "userId": user.id,
            "messageId": request.message.id,
            "userMessage": request.message.text,
            "userMessageParts": request.message.parts,
            "userMessageDatetime": request.message.created_at.isoformat(),
            "history": [],
        }
        task = asyncio.create_task(self._notify_workflow(url, payload))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _notify_workflow(self, url: str, payload: dict[str, Any]) -> None:
        try:
            await self.workflow.dispatch(url, payload)
        except WorkflowDispatchError as exc:
            logger.error(f"Workflow notification failed: {exc}", chat_id=payload["chatId"])

    async def wait_for_background_tasks(self, timeout: float) -> None:
        """Give in-flight workflow notifications a chance to finish on shutdown."""
        if not self._background_tasks:
            return
        _, pending = await asyncio.wait(self._background_tasks, timeout=timeout)
        for task in pending:
            task.cancel()

    # ------------------------------------------------------------------
    # Model path
    # ------------------------------------------------------------------

    async def _stream_model_turn(
        self,
        config: ChatModelConfig,
        user: UserInfo,
        chat: ChatRecord,
        user_text: str,
        history: list[StoredMessage],
    ) -> AsyncIterator[str]:
        loop = asyncio.get_running_loop()
        started = loop.time()
        deadline = started + self.settings.turn_timeout_seconds

        def remaining() -> float:
            return max(deadline - loop.time(), 0.0)

        channel = TurnChannel()
        invocations: InvocationLog = []
        text_parts: list[str] = []
        failures: list[Exception] = []

        ctx = ToolContext(user_id=user.id, chat_id=chat.id, emitter=ProgressEmitter(channel.put), history=history)
        tools = build_function_tools(self.registry.enabled_tools(), ctx, invocations)
        messages = [*normalize_history(history), {"role": "user", "content": user_text}]

        async def pump() -> None:
            try:
                async for chunk in self.llm.stream_turn(
                    model=config.provider_model or config.id,
                    instructions=SYSTEM_INSTRUCTIONS,
                    messages=messages,
                    tools=tools,
                ):
                    if isinstance(chunk, TextDelta):
                        text_parts.append(chunk.text)
                    channel.put(chunk)
            except Exception as exc:
                logger.error(f"Generation failed: {exc}", exc_info=True, chat_id=chat.id)
                failures.append(exc)
            finally:
                channel.close()

        task = asyncio.create_task(pump())
        outcome = "cancelled"
        try:
            try:
                async for chunk in filter_until_tool_call(
                    channel.drain(deadline),
                    release_on_finish=self.settings.stream_release_text_without_tool_call,
                ):
                    yield chunk.to_line()
            except TimeoutError:
                outcome = "timeout"
                logger.warning(
                    f"Turn exceeded {self.settings.turn_timeout_seconds:.0f}s, cancelling generation",
                    chat_id=chat.id,
                )
                task.cancel()
                yield ErrorChunk(message=TURN_TIMEOUT_MESSAGE).to_line()
                return

            try:
                await asyncio.wait_for(task, timeout=remaining())
            except TimeoutError:
                outcome = "timeout"
                logger.warning("Generation did not finish before the turn deadline", chat_id=chat.id)
                yield ErrorChunk(message=TURN_TIMEOUT_MESSAGE).to_line()
                return
            if failures:
                outcome = "error"
                yield ErrorChunk(message=GENERATION_FAILED_MESSAGE).to_line()
                return

            assistant_message = self._assistant_message(chat.id, invocations, text_parts)
            try:
                await asyncio.wait_for(self.store.save_messages([assistant_message]), timeout=remaining())
            except TimeoutError:
                outcome = "persist_failed"
                logger.error("Saving the assistant message ran past the turn deadline", chat_id=chat.id)
                yield ErrorChunk(message=PERSISTENCE_FAILED_MESSAGE).to_line()
                return
            except Exception as exc:
                outcome = "persist_failed"
                logger.error(f"Failed to save assistant message: {exc}", exc_info=True, chat_id=chat.id)
                yield ErrorChunk(message=PERSISTENCE_FAILED_MESSAGE).to_line()
                return

            outcome = "ok"
            logger.log_turn(
                chat.id,
                user_text,
                "".join(text_parts),
                tool_names=[i["toolName"] for i in invocations] or None,
                duration_ms=(loop.time() - started) * 1000,
            )
        finally:
            if not task.done():
                task.cancel()
            turns_total.labels(target="model", outcome=outcome).inc()
            turn_duration_seconds.observe(loop.time() - started)

    @staticmethod
    def _assistant_message(chat_id: str, invocations: InvocationLog, text_parts: list[str]) -> StoredMessage:
        """Tool-invocation parts when any tool ran, else one text part."""
        if invocations:
            parts = invocation_parts(invocations)
        else:
            parts = [{"type": "text", "text": "".join(text_parts)}]
        return StoredMessage(
            id=str(uuid.uuid4()),
            chat_id=chat_id,
            role="assistant",
            parts=parts,
            created_at=datetime.now(UTC),
        )
