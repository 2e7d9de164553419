"""Server-Sent Events stream for one generation.

Per connection:
- a job that is already terminal gets its terminal event and the stream ends
- otherwise the stream subscribes to the job's channel, re-checks the job
  (an event published between the first check and the subscription would
  otherwise be lost), emits ``connected`` and forwards events until a
  terminal one
- idle connections get a ``: heartbeat`` comment; on idle ticks the job
  record is polled so a terminal state the bus never delivered still ends
  the stream
- the subscription is released in ``finally``, whether the generation
  finished, the client disconnected or the response task was cancelled

If the bus cannot subscribe, the stream keeps working in polling mode.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Any

import structlog
from fastapi.responses import StreamingResponse

from src.streaming.bus import EventBus, EventBusError, Unsubscribe, channel_for
from src.streaming.events import (
    DROPPABLE_EVENT_TYPES,
    StreamEvent,
    StreamEventType,
    make_event,
)

log = structlog.get_logger(__name__)

HEARTBEAT = ": heartbeat\n\n"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}

TerminalCheck = Callable[[], Awaitable[StreamEvent | None]]
DisconnectCheck = Callable[[], Awaitable[bool]]


class SubscriberBuffer:
    """Bounded, non-blocking queue between the bus and one connection.

    ``push`` never blocks the publisher. When full, the oldest
    ``block_delta``/``image_progress`` event is dropped first, then the
    oldest other non-terminal event. Terminal events are never dropped.
    """

    def __init__(self, maxsize: int = 256) -> None:
        self._maxsize = maxsize
        self._events: deque[StreamEvent] = deque()
        self._ready = asyncio.Event()
        self.dropped = 0

    def __len__(self) -> int:
        return len(self._events)

    def _make_room(self, incoming: StreamEvent) -> bool:
        for queued in self._events:
            if queued.type in DROPPABLE_EVENT_TYPES:
                self._events.remove(queued)
                return True
        if incoming.type in DROPPABLE_EVENT_TYPES:
            return False
        for queued in self._events:
            if not queued.is_terminal:
                self._events.remove(queued)
                return True
        # Only terminal events queued; a terminal event may overflow the bound.
        return incoming.is_terminal

    def push(self, event: StreamEvent) -> None:
        if len(self._events) >= self._maxsize:
            if not self._make_room(event):
                self.dropped += 1
                return
            if len(self._events) < self._maxsize:
                self.dropped += 1
        self._events.append(event)
        self._ready.set()

    async def get(self, timeout: float) -> StreamEvent | None:
        """Next event, or None if nothing arrived within ``timeout`` seconds."""
        if not self._events:
            self._ready.clear()
            try:
                await asyncio.wait_for(self._ready.wait(), timeout=timeout)
            except TimeoutError:
                return None
        return self._events.popleft() if self._events else None


async def generation_event_stream(
    generation_id: str,
    *,
    bus: EventBus,
    check_terminal: TerminalCheck,
    is_disconnected: DisconnectCheck,
    heartbeat_seconds: float = 15.0,
    poll_seconds: float = 5.0,
    buffer_size: int = 256,
) -> AsyncGenerator[str, None]:
    """Yield SSE frames for one generation until it ends or the client leaves.

    Args:
        generation_id: Job id; also names the bus channel
        bus: Event bus to subscribe on
        check_terminal: Returns the synthetic terminal event when the job
            record is terminal, else None
        is_disconnected: Returns True once the client has gone away
        heartbeat_seconds: Maximum silence before a keepalive comment
        poll_seconds: How often an idle stream re-checks the job record
        buffer_size: Per-connection event buffer bound
    """
    terminal = await check_terminal()
    if terminal is not None:
        log.info("stream.replayed_terminal", generation_id=generation_id, type=terminal.type)
        yield terminal.to_sse()
        return

    buffer = SubscriberBuffer(buffer_size)
    unsubscribe: Unsubscribe | None = None
    channel = channel_for(generation_id)
    try:
        unsubscribe = await bus.subscribe(channel, buffer.push)
    except EventBusError as exc:
        log.warning("stream.bus_unavailable", generation_id=generation_id, error=str(exc))

    forwarded = 0
    tick = min(heartbeat_seconds, poll_seconds)
    try:
        terminal = await check_terminal()
        if terminal is not None:
            yield terminal.to_sse()
            return

        yield make_event(
            StreamEventType.CONNECTED,
            generation_id,
            stage="polling" if unsubscribe is None else "streaming",
        ).to_sse()
        last_write = time.monotonic()

        while True:
            if await is_disconnected():
                log.info("stream.client_disconnected", generation_id=generation_id)
                return

            event = await buffer.get(timeout=tick)
            if event is not None:
                yield event.to_sse()
                forwarded += 1
                last_write = time.monotonic()
                if event.is_terminal:
                    return
                continue

            terminal = await check_terminal()
            if terminal is not None:
                log.info("stream.terminal_from_poll", generation_id=generation_id)
                yield terminal.to_sse()
                return

            if time.monotonic() - last_write >= heartbeat_seconds:
                yield HEARTBEAT
                last_write = time.monotonic()

    except asyncio.CancelledError:
        log.info("stream.cancelled", generation_id=generation_id)
        raise

    finally:
        if unsubscribe is not None:
            await unsubscribe()
        log.info(
            "stream.closed",
            generation_id=generation_id,
            forwarded=forwarded,
            dropped=buffer.dropped,
        )


def sse_response(generator: AsyncGenerator[str, None], **kwargs: Any) -> StreamingResponse:
    """FastAPI StreamingResponse configured for SSE."""
    return StreamingResponse(
        generator,
        media_type="text/event-stream",
        headers=SSE_HEADERS,
        **kwargs,
    )
