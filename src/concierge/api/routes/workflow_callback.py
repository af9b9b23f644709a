"""
Workflow callback endpoint.

External workflows answer delegated turns here. When a callback secret is
configured the caller must present it as a bearer token.
"""

from __future__ import annotations

import secrets

from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.security import HTTPAuthorizationCredentials

from concierge.api.dependencies import AppSettings, Chats
from concierge.api.middleware.auth import bearer_scheme
from concierge.api.middleware.exception_handlers import AuthenticationError, ChatNotFoundError
from concierge.api.middleware.request_context import update_request_context
from concierge.models.chat_models import WorkflowCallbackRequest, WorkflowCallbackResponse
from concierge.models.error_models import ErrorCode

router = APIRouter()


@router.post(
    "/workflow-callback",
    response_model=WorkflowCallbackResponse,
    summary="Workflow reply",
    description="Append an assistant message produced by an external workflow to a chat.",
    responses={
        200: {
            "description": "Reply saved",
            "content": {
                "application/json": {"example": {"ok": True, "message": "Assistant message saved successfully"}}
            },
        },
        401: {"description": "Callback secret missing or wrong"},
        404: {"description": "Chat not found"},
    },
)
async def workflow_callback(
    body: WorkflowCallbackRequest,
    chats: Chats,
    settings: AppSettings,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> WorkflowCallbackResponse:
    """Persist a workflow's reply as an assistant message."""
    expected = settings.workflow_callback_secret
    if expected:
        presented = credentials.credentials if credentials else ""
        if not secrets.compare_digest(presented.encode(), expected.encode()):
            raise AuthenticationError(message="Invalid callback secret", code=ErrorCode.AUTH_INVALID_TOKEN)

    update_request_context(chat_id=body.chat_id)
    saved = await chats.save_workflow_reply(body.chat_id, body.resolved_parts())
    if saved is None:
        raise ChatNotFoundError(body.chat_id)
    return WorkflowCallbackResponse()
