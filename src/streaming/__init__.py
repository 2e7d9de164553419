"""Live generation events: vocabulary, transport, SSE framing and client reducer."""

from __future__ import annotations

from src.streaming.bus import (
    EventBus,
    EventBusError,
    InMemoryEventBus,
    RedisEventBus,
    channel_for,
    create_event_bus,
)
from src.streaming.events import (
    StreamEvent,
    StreamEventData,
    StreamEventType,
    completed_event,
    failed_event,
    make_event,
)
from src.streaming.reducer import GenerationView, reduce, view_from_poll

__all__ = [
    "EventBus",
    "EventBusError",
    "GenerationView",
    "InMemoryEventBus",
    "RedisEventBus",
    "StreamEvent",
    "StreamEventData",
    "StreamEventType",
    "channel_for",
    "completed_event",
    "create_event_bus",
    "failed_event",
    "make_event",
    "reduce",
    "view_from_poll",
]
