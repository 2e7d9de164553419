"""Publish/subscribe transport between the worker and stream endpoints.

Defines the EventBus ABC and two implementations:
- InMemoryEventBus: single process, for dev and tests
- RedisEventBus: Redis pub/sub, for a worker and API in separate processes

Delivery is at-most-once to subscribers connected at publish time. Nothing
is persisted or replayed; the job record is the source of truth and the
stream endpoint compensates for missed events by checking it.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

import redis.asyncio as aioredis
import structlog
from pydantic import ValidationError

from src.config import Backend, Settings
from src.streaming.events import StreamEvent

log = structlog.get_logger(__name__)

EventHandler = Callable[[StreamEvent], Awaitable[None] | None]
Unsubscribe = Callable[[], Awaitable[None]]


class EventBusError(Exception):
    """The transport failed to publish or subscribe."""


def channel_for(generation_id: str) -> str:
    return f"generation:{generation_id}"


async def _dispatch(handler: EventHandler, event: StreamEvent, channel: str) -> None:
    try:
        result = handler(event)
        if inspect.isawaitable(result):
            await result
    except Exception as exc:
        log.warning(
            "event_bus.handler_failed",
            channel=channel,
            event_type=event.type.value,
            error=str(exc),
        )


class EventBus(ABC):
    """Abstract interface all event bus backends implement."""

    @abstractmethod
    async def publish(self, channel: str, event: StreamEvent) -> None:
        """Deliver ``event`` to current subscribers of ``channel``.

        Raises:
            EventBusError: if the transport is unavailable
        """

    @abstractmethod
    async def subscribe(self, channel: str, handler: EventHandler) -> Unsubscribe:
        """Register ``handler`` and return a coroutine function that removes it.

        Calling the returned function more than once is harmless.
        """

    @abstractmethod
    async def ping(self) -> bool:
        """Return True if the transport is reachable."""

    async def close(self) -> None:
        """Release connections. The bus must not be used afterwards."""


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class InMemoryEventBus(EventBus):
    """Dict-of-handlers bus for a single process.

    Handlers run inline in ``publish`` in subscription order, so events on a
    channel are seen in publish order. A failing handler is logged and
    skipped without affecting the others.
    """

    def __init__(self) -> None:
        self._channels: dict[str, dict[int, EventHandler]] = {}
        self._ids = itertools.count(1)

    async def publish(self, channel: str, event: StreamEvent) -> None:
        for handler in list(self._channels.get(channel, {}).values()):
            await _dispatch(handler, event, channel)

    async def subscribe(self, channel: str, handler: EventHandler) -> Unsubscribe:
        token = next(self._ids)
        self._channels.setdefault(channel, {})[token] = handler

        async def unsubscribe() -> None:
            handlers = self._channels.get(channel)
            if handlers is None:
                return
            handlers.pop(token, None)
            if not handlers:
                del self._channels[channel]

        return unsubscribe

    def subscriber_count(self, channel: str) -> int:
        return len(self._channels.get(channel, {}))

    @property
    def channel_count(self) -> int:
        return len(self._channels)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._channels.clear()


# ---------------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------------


class RedisEventBus(EventBus):
    """Redis pub/sub bus.

    Publishing goes through one shared client. Each subscription gets its
    own pub/sub connection and listener task, torn down by its unsubscribe
    function, so an abandoned stream never leaves a channel subscribed.
    """

    def __init__(self, redis_url: str, *, client: Any = None) -> None:
        self._redis_url = redis_url
        self._client: Any = client
        self._subscriptions: set[asyncio.Task[None]] = set()

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = aioredis.from_url(
                self._redis_url, encoding="utf-8", decode_responses=True
            )
        return self._client

    async def publish(self, channel: str, event: StreamEvent) -> None:
        try:
            await self._get_client().publish(channel, event.to_json())
        except aioredis.RedisError as exc:
            raise EventBusError(f"Publish to {channel} failed: {exc}") from exc

    async def subscribe(self, channel: str, handler: EventHandler) -> Unsubscribe:
        pubsub = self._get_client().pubsub()
        try:
            await pubsub.subscribe(channel)
        except aioredis.RedisError as exc:
            await pubsub.aclose()
            raise EventBusError(f"Subscribe to {channel} failed: {exc}") from exc

        task = asyncio.create_task(self._listen(pubsub, channel, handler))
        self._subscriptions.add(task)
        done = False

        async def unsubscribe() -> None:
            nonlocal done
            if done:
                return
            done = True
            task.cancel()
            self._subscriptions.discard(task)
            try:
                await pubsub.unsubscribe(channel)
            except aioredis.RedisError as exc:
                log.warning("event_bus.unsubscribe_failed", channel=channel, error=str(exc))
            finally:
                await pubsub.aclose()

        return unsubscribe

    async def _listen(self, pubsub: Any, channel: str, handler: EventHandler) -> None:
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    event = StreamEvent.from_json(message["data"])
                except ValidationError as exc:
                    log.warning("event_bus.bad_message", channel=channel, error=str(exc))
                    continue
                await _dispatch(handler, event, channel)
        except asyncio.CancelledError:
            raise
        except aioredis.RedisError as exc:
            log.warning("event_bus.listener_failed", channel=channel, error=str(exc))

    async def ping(self) -> bool:
        try:
            return bool(await self._get_client().ping())
        except aioredis.RedisError as exc:
            log.warning("event_bus.ping_failed", error=str(exc))
            return False

    async def close(self) -> None:
        for task in list(self._subscriptions):
            task.cancel()
        self._subscriptions.clear()
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def create_event_bus(settings: Settings) -> EventBus:
    if settings.event_bus_backend == Backend.REDIS:
        return RedisEventBus(settings.redis_url)
    return InMemoryEventBus()
