"""FastAPI dependencies resolving services built in the lifespan.

Tests swap any of these through ``app.dependency_overrides``.
"""

from __future__ import annotations

from typing import Annotated

import asyncpg

from fastapi import Depends, Request

from concierge.api.services.chat_service import ChatService
from concierge.api.services.chat_store import ChatStore
from concierge.core.constants import Settings, get_settings


def get_app_settings() -> Settings:
    return get_settings()


async def get_db(request: Request) -> asyncpg.Pool:
    return request.app.state.db_pool


async def get_store(request: Request) -> ChatStore:
    return request.app.state.chat_store


async def get_chat_service(request: Request) -> ChatService:
    return request.app.state.chat_service


DB = Annotated[asyncpg.Pool, Depends(get_db)]
Store = Annotated[ChatStore, Depends(get_store)]
AppSettings = Annotated[Settings, Depends(get_app_settings)]
Chats = Annotated[ChatService, Depends(get_chat_service)]
