"""
Outbound notifications to external automation workflows.

A workflow-routed turn is handed off with one POST to the selector's webhook.
The reply arrives later through the workflow callback endpoint; the two are
correlated only by chat id.
"""

from __future__ import annotations

from typing import Any

import httpx

from concierge.api.middleware.exception_handlers import ExternalServiceError
from concierge.models.error_models import ErrorCode
from concierge.utils.logger import logger

SERVICE_NAME = "Workflow"


class WorkflowDispatchError(ExternalServiceError):
    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(SERVICE_NAME, message, code=ErrorCode.WORKFLOW_ERROR, cause=cause)


class WorkflowClient:
    """Posts turn payloads to workflow webhooks."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        secret: str | None = None,
        timeout: float = 30.0,
    ):
        self.http_client = http_client
        self.secret = secret
        self.timeout = timeout

    async def dispatch(self, url: str, payload: dict[str, Any]) -> None:
        """POST the payload to ``url``.

        Raises:
            WorkflowDispatchError: On transport errors or a non-2xx response.
        """
        headers = {"Content-Type": "application/json"}
        if self.secret:
            headers["Authorization"] = f"Bearer {self.secret}"

        try:
            response = await self.http_client.post(url, json=payload, headers=headers, timeout=self.timeout)
        except httpx.HTTPError as exc:
            raise WorkflowDispatchError(f"request failed: {exc}", cause=exc) from exc

        if response.status_code >= 400:
            raise WorkflowDispatchError(f"webhook responded with status {response.status_code}")

        logger.info("Workflow notified", chat_id=payload.get("chatId"), status=response.status_code)
