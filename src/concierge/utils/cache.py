"""Per-chat message history cache.

Histories are read on every turn and on every client poll, but only change
when a message is appended. Entries expire after a short TTL and the least
recently read chat is evicted first. Single-process only: a second replica
would serve stale history until its own entry expires.

Every ``invalidate`` bumps the chat's version. A reader takes the version
before querying and hands it back to ``put``, which drops the snapshot if a
write landed in between.
"""

from __future__ import annotations

import asyncio
import time

from collections import OrderedDict, defaultdict
from typing import TYPE_CHECKING

from concierge.utils.metrics import history_cache_lookups_total

if TYPE_CHECKING:
    from concierge.models.chat_models import StoredMessage


class HistoryCache:
    """LRU map of chat id to its ordered messages, with expiry."""

    def __init__(self, max_chats: int = 500, ttl: float = 30.0) -> None:
        self.max_chats = max_chats
        self.ttl = ttl
        self._entries: OrderedDict[str, tuple[float, tuple[StoredMessage, ...]]] = OrderedDict()
        self._versions: defaultdict[str, int] = defaultdict(int)
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def version(self, chat_id: str) -> int:
        return self._versions.get(chat_id, 0)

    async def get(self, chat_id: str) -> list[StoredMessage] | None:
        """Cached history of a chat, or None on a miss or an expired entry."""
        async with self._lock:
            entry = self._entries.get(chat_id)
            if entry is not None and entry[0] < time.monotonic():
                del self._entries[chat_id]
                entry = None
            if entry is None:
                history_cache_lookups_total.labels(result="miss").inc()
                return None
            self._entries.move_to_end(chat_id)
        history_cache_lookups_total.labels(result="hit").inc()
        return list(entry[1])

    async def put(self, chat_id: str, messages: list[StoredMessage], version: int | None = None) -> bool:
        """Store a snapshot read at ``version``; False when a newer write made it stale."""
        async with self._lock:
            if version is not None and version != self.version(chat_id):
                return False
            self._entries.pop(chat_id, None)
            while len(self._entries) >= self.max_chats:
                self._entries.popitem(last=False)
            self._entries[chat_id] = (time.monotonic() + self.ttl, tuple(messages))
            return True

    async def invalidate(self, chat_id: str) -> None:
        """Forget a chat's history; the next read goes to the database."""
        async with self._lock:
            self._versions[chat_id] += 1
            self._entries.pop(chat_id, None)
