"""
Progressive delivery over Server-Sent Events.

An EventChannel is a single-writer queue of JSON payloads drained by one SSE
response. Writers await a lock, so concurrent producers (fan-out tasks, token
callbacks) never interleave frames. A channel accepts exactly one terminal
payload; after it, or after close(), further writes raise StreamClosedError.

ProgressEmitter layers the {type, data, timestamp} event shape used by the
workflow endpoints on top of a channel. The node test endpoint writes the
looser {chunk, fullText} / {done, text, usage} / {error} payloads straight to
a plain channel.

A channel holds at most `max_pending` undelivered payloads. Past that, send()
waits until the consumer catches up, so a slow client slows the producer
down. close() does not take a slot, so it is never held up by a full channel.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Awaitable, Callable

from workflows_ai.errors import StreamClosedError
from workflows_ai.models.results import EventType, ProgressEvent

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}

_CLOSE = object()

# Undelivered payloads a channel holds before send() waits for the consumer
DEFAULT_MAX_PENDING = 256


def encode_sse(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, default=str)}\n\n"


class EventChannel:
    def __init__(self, max_pending: int = DEFAULT_MAX_PENDING) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        # one slot per undelivered payload; the close marker takes none
        self._slots = asyncio.Semaphore(max_pending)
        self._lock = asyncio.Lock()
        self._terminal_sent = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def terminal_sent(self) -> bool:
        return self._terminal_sent

    async def send(self, payload: dict[str, Any], terminal: bool = False) -> None:
        async with self._lock:
            if self._closed:
                raise StreamClosedError("Stream is already closed")
            if self._terminal_sent:
                raise StreamClosedError("Terminal event already sent")
            await self._slots.acquire()
            if terminal:
                self._terminal_sent = True
            self._queue.put_nowait(payload)

    async def close(self) -> None:
        async with self._lock:
            if self._closed:
                raise StreamClosedError("Stream is already closed")
            self._closed = True
            self._queue.put_nowait(_CLOSE)

    async def close_quietly(self) -> None:
        try:
            await self.close()
        except StreamClosedError:
            logger.debug("Stream already closed")

    async def payloads(self) -> AsyncIterator[dict[str, Any]]:
        while True:
            item = await self._queue.get()
            if item is _CLOSE:
                return
            self._slots.release()
            yield item

    async def frames(self) -> AsyncIterator[str]:
        async for payload in self.payloads():
            yield encode_sse(payload)


class ProgressEmitter:
    """Typed lifecycle events for one workflow run."""

    def __init__(self, channel: EventChannel | None = None) -> None:
        self.channel = channel or EventChannel()

    @property
    def finished(self) -> bool:
        return self.channel.terminal_sent or self.channel.closed

    async def emit(self, type: EventType, data: dict[str, Any] | None = None) -> ProgressEvent:
        event = ProgressEvent(type=type, data=data or {})
        await self.channel.send(event.model_dump(), terminal=event.is_terminal)
        return event

    async def start(self, **data: Any) -> ProgressEvent:
        return await self.emit("start", data)

    async def progress(self, **data: Any) -> ProgressEvent:
        return await self.emit("progress", data)

    async def partial(self, **data: Any) -> ProgressEvent:
        return await self.emit("partial", data)

    async def complete(self, **data: Any) -> ProgressEvent:
        return await self.emit("complete", data)

    async def error(self, message: str, **data: Any) -> ProgressEvent:
        return await self.emit("error", {"error": message, **data})

    async def ensure_terminal(self, message: str) -> None:
        """Send an error terminal unless one was already sent. Never raises."""
        if self.finished:
            return
        try:
            await self.error(message)
        except StreamClosedError as e:
            logger.warning("Could not send error event to client: %s", e)


async def stream_channel(
    producer: Callable[[], Awaitable[Any]],
    channel: EventChannel,
    on_failure: Callable[[BaseException], Awaitable[None]],
) -> AsyncIterator[str]:
    """
    Run producer in the background and yield its frames as they are queued.

    The channel is always closed by the producer side once it finishes; a
    producer exception is routed to on_failure first so the client still gets
    a terminal frame. If the consumer goes away, the producer task is
    cancelled and awaited.
    """

    async def run() -> None:
        try:
            await producer()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Streaming producer failed: %s", e)
            await on_failure(e)
        finally:
            await channel.close_quietly()

    task = asyncio.create_task(run())
    try:
        async for frame in channel.frames():
            yield frame
    finally:
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


def stream_workflow(
    run: Callable[[ProgressEmitter], Awaitable[Any]],
    emitter: ProgressEmitter | None = None,
) -> AsyncIterator[str]:
    """SSE frames for a workflow run with the exactly-one-terminal guarantee."""
    emitter = emitter or ProgressEmitter()

    async def producer() -> None:
        await run(emitter)
        await emitter.ensure_terminal("Workflow ended without a result")

    async def on_failure(e: BaseException) -> None:
        await emitter.ensure_terminal(str(e) or "Internal server error")

    return stream_channel(producer, emitter.channel, on_failure)
