"""Answer streaming primitives."""
from __future__ import annotations

import asyncio
from typing import AsyncIterator, Optional

from .errors import GenerationCancelled
from .schemas import AnswerChunk


class CancellationToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise GenerationCancelled("Answer generation was cancelled")


class AnswerChannel:
    """Single-producer, single-consumer queue of :class:`AnswerChunk` events."""

    _CLOSED = object()

    def __init__(self, maxsize: int = 256) -> None:
        self._queue: "asyncio.Queue[object]" = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, event: AnswerChunk) -> None:
        if self._closed:
            return
        await self._queue.put(event)

    async def close(self) -> None:
        """Mark the end of the stream once the consumer has room for it."""

        if self._closed:
            return
        self._closed = True
        await self._queue.put(self._CLOSED)

    def abort(self) -> None:
        """Close without waiting. Only for cancellation, when nobody reads the backlog."""

        self._closed = True
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(self._CLOSED)

    def __aiter__(self) -> AsyncIterator[AnswerChunk]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[AnswerChunk]:
        while True:
            item = await self._queue.get()
            if item is self._CLOSED:
                return
            yield item  # type: ignore[misc]


class NullChannel(AnswerChannel):
    """Channel for non-streaming callers; events are discarded."""

    async def send(self, event: AnswerChunk) -> None:
        return None


class AnswerStream:
    """Consumer handle for a running answer task.

    Iterate to receive events; call :meth:`cancel` when the client goes away.
    """

    def __init__(self, trace_id: str, channel: AnswerChannel, token: CancellationToken) -> None:
        self.trace_id = trace_id
        self.channel = channel
        self.token = token
        self.task: Optional["asyncio.Task[None]"] = None

    def attach(self, task: "asyncio.Task[None]") -> None:
        self.task = task

    async def cancel(self) -> None:
        self.token.cancel()
        if self.task is not None and not self.task.done():
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
        self.channel.abort()

    def __aiter__(self) -> AsyncIterator[AnswerChunk]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[AnswerChunk]:
        try:
            async for event in self.channel:
                yield event
        finally:
            if self.task is not None and not self.task.done():
                await self.cancel()
