"""
Turn streaming primitives.

A turn has exactly one outbound ordered channel. The model pump writes text
chunks into it, tools write tool-call, progress and tool-result chunks into
it, and the HTTP response drains it through the tool-call filter.
"""

from __future__ import annotations

import asyncio

from collections.abc import AsyncIterator, Callable

from concierge.core.constants import CHUNK_TOOL_CALL
from concierge.models.stream_models import Progress, ProgressContent, StreamChunk

_CLOSED = object()


class TurnChannel:
    """Single ordered queue of chunks for one turn."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def put(self, chunk: StreamChunk) -> None:
        """Enqueue a chunk. Chunks written after close are discarded."""
        if not self._closed:
            self._queue.put_nowait(chunk)

    def close(self) -> None:
        """Mark the end of the turn's chunk sequence."""
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    async def drain(self, deadline: float) -> AsyncIterator[StreamChunk]:
        """Yield chunks in emission order until closed.

        Args:
            deadline: Event loop time (``loop.time()``) by which the channel
                must be closed.

        Raises:
            TimeoutError: If the deadline passes before the channel closes.
        """
        loop = asyncio.get_running_loop()
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise TimeoutError("turn deadline exceeded")
            item = await asyncio.wait_for(self._queue.get(), timeout=remaining)
            if item is _CLOSED:
                return
            assert isinstance(item, StreamChunk)
            yield item


class ProgressEmitter:
    """Serializes tagged progress events into the turn channel.

    Progress is ephemeral: it is never persisted and only the latest event of
    a kind matters to the client.
    """

    def __init__(self, sink: Callable[[StreamChunk], None]):
        self._sink = sink

    def emit(
        self,
        progress_type: str,
        stage: str,
        message: str,
        current: int | None = None,
        total: int | None = None,
        destination: str | None = None,
        website: str | None = None,
    ) -> None:
        self._sink(
            Progress(
                type=progress_type,
                content=ProgressContent(
                    stage=stage,
                    message=message,
                    current=current,
                    total=total,
                    destination=destination,
                    website=website,
                ),
            )
        )

    def send(self, chunk: StreamChunk) -> None:
        """Forward an already-typed chunk (tool call or result)."""
        self._sink(chunk)


async def filter_until_tool_call(
    chunks: AsyncIterator[StreamChunk],
    release_on_finish: bool = False,
) -> AsyncIterator[StreamChunk]:
    """Drop everything before the first tool-call chunk.

    The triggering tool-call chunk and every chunk after it are forwarded in
    order. When no tool call ever appears nothing is forwarded, unless
    ``release_on_finish`` is set, in which case the held chunks are released
    once the input ends.
    """
    seen_tool_call = False
    held: list[StreamChunk] = []

    async for chunk in chunks:
        if chunk.type == CHUNK_TOOL_CALL:
            seen_tool_call = True
            held.clear()
        if seen_tool_call:
            yield chunk
        elif release_on_finish:
            held.append(chunk)

    if not seen_tool_call:
        for chunk in held:
            yield chunk


__all__ = ["ProgressEmitter", "TurnChannel", "filter_until_tool_call"]
