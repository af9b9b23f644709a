"""
Chat endpoints.

POST streams one turn as newline-delimited JSON chunks (or returns 204 when a
workflow will answer by callback). DELETE removes a chat the caller owns.
"""

from __future__ import annotations

from fastapi import APIRouter, Query, Response
from fastapi.responses import StreamingResponse

from concierge.api.dependencies import Chats
from concierge.api.middleware.auth import CurrentUser
from concierge.api.middleware.exception_handlers import ChatNotFoundError, ValidationException
from concierge.api.middleware.request_context import update_request_context
from concierge.core.constants import STREAM_MEDIA_TYPE
from concierge.models.chat_models import ChatRequest, DeleteChatResponse
from concierge.models.error_models import ErrorCode

router = APIRouter()


@router.post(
    "/chat",
    summary="Run a chat turn",
    description=(
        "Persist the user message and stream the assistant reply as NDJSON chunks "
        "(text-delta, tool-call, tool-result, progress, error). Workflow-backed "
        "selectors return 204 and answer through the workflow callback."
    ),
    responses={
        200: {"description": "Streamed turn", "content": {STREAM_MEDIA_TYPE: {}}},
        204: {"description": "Turn handed to an external workflow"},
        400: {"description": "Malformed request"},
        401: {"description": "Not authenticated"},
        403: {"description": "Chat belongs to another user"},
        422: {"description": "Unknown chat model"},
    },
)
async def post_chat(request: ChatRequest, user: CurrentUser, chats: Chats) -> Response:
    """Run one chat turn for the authenticated user."""
    stream = await chats.handle_turn(request, user)
    if stream is None:
        return Response(status_code=204)
    return StreamingResponse(stream, media_type=STREAM_MEDIA_TYPE)


@router.delete(
    "/chat",
    response_model=DeleteChatResponse,
    summary="Delete chat",
    description="Delete a chat and its messages. Only the owner can delete a chat.",
    responses={
        200: {
            "description": "Chat deleted",
            "content": {"application/json": {"example": {"id": "9b2f0c1e-6d1a-4d43-9f3e-2c5b7a8e1f00"}}},
        },
        400: {"description": "Missing chat ID"},
        404: {"description": "Chat not found or not owned by the caller"},
    },
)
async def delete_chat(
    user: CurrentUser,
    chats: Chats,
    chat_id: str | None = Query(default=None, alias="id", description="Chat identifier"),
) -> DeleteChatResponse:
    """Delete a chat owned by the caller."""
    if not chat_id:
        raise ValidationException(message="Missing chat ID", code=ErrorCode.VALIDATION_MISSING_FIELD)

    update_request_context(chat_id=chat_id)
    deleted = await chats.delete_chat(chat_id, user)
    if deleted is None:
        raise ChatNotFoundError(chat_id, message="Chat not found or you do not have permission")
    return DeleteChatResponse(id=deleted.id)
