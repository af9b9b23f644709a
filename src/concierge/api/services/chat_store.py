"""Persistent store for chats, messages and user profiles.

The store owns durability of chats and messages. The user message and the
assistant message of a turn are two independent appends: there is no
transaction spanning them.
"""

from __future__ import annotations

import json

from typing import Any

import asyncpg

from concierge.api.services.message_utils import row_to_chat, row_to_message
from concierge.core.constants import READABLE_PROFILE_COLUMNS
from concierge.models.chat_models import ChatRecord, StoredMessage, UserInfo, Visibility
from concierge.utils.cache import HistoryCache
from concierge.utils.db_utils import with_retry
from concierge.utils.logger import logger
from concierge.utils.metrics import db_query_duration_seconds


class ChatStore:
    """Chat and message persistence backed by PostgreSQL."""

    def __init__(self, pool: asyncpg.Pool, cache: HistoryCache | None = None):
        self.pool = pool
        self.cache = cache or HistoryCache()

    # ------------------------------------------------------------------
    # Chats
    # ------------------------------------------------------------------

    @with_retry()
    async def get_chat_by_id(self, chat_id: str) -> ChatRecord | None:
        with db_query_duration_seconds.labels("select").time():
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow('SELECT * FROM "Chat" WHERE id = $1', chat_id)
        return row_to_chat(row) if row else None

    async def save_chat(self, chat: ChatRecord) -> None:
        with db_query_duration_seconds.labels("insert").time():
            async with self.pool.acquire() as conn:
                await conn.execute(
                    """
                    INSERT INTO "Chat" (id, "userId", title, visibility, "createdAt")
                    VALUES ($1, $2, $3, $4, $5)
                    """,
                    chat.id,
                    chat.user_id,
                    chat.title,
                    chat.visibility,
                    chat.created_at,
                )

    async def update_chat_visibility(self, chat_id: str, visibility: Visibility) -> None:
        with db_query_duration_seconds.labels("update").time():
            async with self.pool.acquire() as conn:
                await conn.execute('UPDATE "Chat" SET visibility = $2 WHERE id = $1', chat_id, visibility)

    async def delete_chat_by_id(self, chat_id: str, user_id: str) -> ChatRecord | None:
        """Delete a chat owned by ``user_id``.

        Returns:
            The deleted chat, or None when no chat with that id is owned by
            the user. Nothing is modified in that case.
        """
        with db_query_duration_seconds.labels("delete").time():
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    'DELETE FROM "Chat" WHERE id = $1 AND "userId" = $2 RETURNING *',
                    chat_id,
                    user_id,
                )
        if not row:
            return None
        # Messages go with the chat (ON DELETE CASCADE)
        await self.invalidate_messages(chat_id)
        return row_to_chat(row)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    @with_retry()
    async def get_messages_by_chat_id(self, chat_id: str) -> list[StoredMessage]:
        """Messages of a chat in creation order."""
        cached = await self.cache.get(chat_id)
        if cached is not None:
            return cached

        version = self.cache.version(chat_id)
        with db_query_duration_seconds.labels("select").time():
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    'SELECT * FROM "Message_v2" WHERE "chatId" = $1 ORDER BY "createdAt" ASC',
                    chat_id,
                )
        messages = [row_to_message(r) for r in rows]
        await self.cache.put(chat_id, messages, version)
        return list(messages)

    async def save_messages(self, messages: list[StoredMessage]) -> None:
        """Append messages. Re-sending an already stored id is a no-op."""
        if not messages:
            return
        with db_query_duration_seconds.labels("insert").time():
            async with self.pool.acquire() as conn:
                await conn.executemany(
                    """
                    INSERT INTO "Message_v2" (id, "chatId", role, parts, attachments, "createdAt")
                    VALUES ($1, $2, $3, $4, $5, $6)
                    ON CONFLICT (id) DO NOTHING
                    """,
                    [
                        (
                            m.id,
                            m.chat_id,
                            m.role,
                            json.dumps(m.parts, default=str),
                            json.dumps(m.attachments, default=str),
                            m.created_at,
                        )
                        for m in messages
                    ],
                )
        for chat_id in {m.chat_id for m in messages}:
            await self.invalidate_messages(chat_id)

    async def invalidate_messages(self, chat_id: str) -> None:
        """Drop cached history so live pollers see new messages."""
        await self.cache.invalidate(chat_id)

    # ------------------------------------------------------------------
    # User profiles
    # ------------------------------------------------------------------

    @with_retry()
    async def get_user_by_external_id(self, external_id: str) -> UserInfo | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                'SELECT id, clerk_id, email FROM "User_Profiles" WHERE clerk_id = $1',
                external_id,
            )
        if not row:
            return None
        return UserInfo(id=str(row["id"]), external_id=row["clerk_id"], email=row.get("email"))

    @with_retry()
    async def get_user_context(self, user_id: str, columns: list[str]) -> dict[str, Any] | None:
        """Read named profile columns for an account.

        Unknown column names are ignored.

        Returns:
            Mapping of column name to value, or None if the profile does not exist.
        """
        selected = [c for c in dict.fromkeys(columns) if c in READABLE_PROFILE_COLUMNS]
        dropped = set(columns) - set(selected)
        if dropped:
            logger.warning(f"Ignoring unknown profile columns: {sorted(dropped)}")

        column_sql = ", ".join(f'"{c}"' for c in selected) or "id"
        with db_query_duration_seconds.labels("select").time():
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    f'SELECT {column_sql} FROM "User_Profiles" WHERE id = $1',  # noqa: S608 - whitelisted
                    user_id,
                )
        if row is None:
            return None
        return {c: row[c] for c in selected}
