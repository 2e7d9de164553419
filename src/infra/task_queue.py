"""Task queue between the API (producer) and generation workers (consumers).

Defines the TaskQueue ABC and two implementations:
- InMemoryTaskQueue: asyncio.Queue, single process
- RedisTaskQueue: reliable queue pattern. ``dequeue`` atomically moves a
  task into the consumer's own processing list (BLMOVE) and ``ack``
  removes it (LREM). Each consumer keeps a lease alive; tasks held by a
  consumer whose lease expired are put back on the queue by ``recover()``.

A task only names a job; the job record carries everything else.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import Any

import redis.asyncio as aioredis
import structlog

from src.config import Backend, Settings

log = structlog.get_logger(__name__)

# Puts a job abandoned by a dead consumer back into a claimable state.
Release = Callable[[str], Awaitable[None]]


@dataclass(frozen=True)
class QueuedTask:
    job_id: str
    attempt: int = 1
    # Exact payload as stored in Redis; LREM needs it byte for byte.
    raw: str | None = None

    def to_json(self) -> str:
        return json.dumps({"job_id": self.job_id, "attempt": self.attempt})

    @classmethod
    def from_json(cls, raw: str) -> QueuedTask:
        data = json.loads(raw)
        return cls(job_id=str(data["job_id"]), attempt=int(data.get("attempt", 1)), raw=raw)

    def next_attempt(self) -> QueuedTask:
        return replace(self, attempt=self.attempt + 1, raw=None)


class TaskQueue(ABC):
    # Seconds between heartbeat() calls; None when the queue needs none.
    heartbeat_interval: float | None = None

    @abstractmethod
    async def enqueue(self, task: QueuedTask) -> None: ...

    @abstractmethod
    async def dequeue(self, timeout: float = 1.0) -> QueuedTask | None:
        """Next task, or None when nothing arrived within ``timeout`` seconds."""

    @abstractmethod
    async def ack(self, task: QueuedTask) -> None:
        """Forget a task that has been handled (successfully or not)."""

    @abstractmethod
    async def dead_letter(self, task: QueuedTask, error: str) -> None:
        """Park a task that exhausted its attempts."""

    async def recover(self, release: Release | None = None) -> int:
        """Requeue tasks abandoned by dead consumers. Returns how many.

        ``release`` is awaited for each task's job before it is requeued.
        """
        return 0

    async def heartbeat(self) -> None:
        """Keep this consumer's lease alive."""

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        """Release connections."""


class InMemoryTaskQueue(TaskQueue):
    def __init__(self) -> None:
        self._queue: asyncio.Queue[QueuedTask] = asyncio.Queue()
        self.dead: list[tuple[QueuedTask, str]] = []

    async def enqueue(self, task: QueuedTask) -> None:
        await self._queue.put(task)

    async def dequeue(self, timeout: float = 1.0) -> QueuedTask | None:
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except TimeoutError:
            return None

    async def ack(self, task: QueuedTask) -> None:
        self._queue.task_done()

    async def dead_letter(self, task: QueuedTask, error: str) -> None:
        self.dead.append((task, error))

    def qsize(self) -> int:
        return self._queue.qsize()


class RedisTaskQueue(TaskQueue):
    """Reliable Redis queue with one processing list per consumer.

    Keys (``name`` defaults to "generation"):
        <name>:queue                  pending tasks (LPUSH in, BLMOVE out)
        <name>:processing:<consumer>  tasks held by one consumer process
        <name>:consumer:<consumer>    lease, refreshed by ``heartbeat()``
        <name>:dead                   dead-lettered tasks

    ``recover()`` only touches processing lists whose lease has expired, so
    tasks held by live consumers in other processes are never redelivered.
    """

    def __init__(
        self,
        redis_url: str,
        *,
        name: str = "generation",
        consumer_id: str | None = None,
        lease_seconds: float = 30.0,
        client: Any = None,
    ) -> None:
        self._redis_url = redis_url
        self._client: Any = client
        self._name = name
        self.consumer_id = consumer_id or uuid.uuid4().hex[:12]
        self.lease_seconds = lease_seconds
        self.heartbeat_interval = max(lease_seconds / 3, 0.01)
        self.queue_key = f"{name}:queue"
        self.processing_key = self._processing_key(self.consumer_id)
        self.lease_key = self._lease_key(self.consumer_id)
        self.dead_key = f"{name}:dead"

    def _processing_key(self, consumer_id: str) -> str:
        return f"{self._name}:processing:{consumer_id}"

    def _lease_key(self, consumer_id: str) -> str:
        return f"{self._name}:consumer:{consumer_id}"

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = aioredis.from_url(
                self._redis_url, encoding="utf-8", decode_responses=True
            )
        return self._client

    async def enqueue(self, task: QueuedTask) -> None:
        await self._get_client().lpush(self.queue_key, task.to_json())
        log.debug("task_queue.enqueued", job_id=task.job_id, attempt=task.attempt)

    async def dequeue(self, timeout: float = 1.0) -> QueuedTask | None:
        raw = await self._get_client().blmove(
            self.queue_key, self.processing_key, timeout, "RIGHT", "LEFT"
        )
        if raw is None:
            return None
        try:
            return QueuedTask.from_json(raw)
        except (ValueError, KeyError, TypeError) as exc:
            log.error("task_queue.bad_payload", payload=str(raw)[:200], error=str(exc))
            await self._get_client().lrem(self.processing_key, 1, raw)
            await self._get_client().lpush(self.dead_key, raw)
            return None

    async def ack(self, task: QueuedTask) -> None:
        await self._get_client().lrem(self.processing_key, 1, task.raw or task.to_json())

    async def dead_letter(self, task: QueuedTask, error: str) -> None:
        entry = json.dumps({"job_id": task.job_id, "attempt": task.attempt, "error": error})
        await self._get_client().lpush(self.dead_key, entry)

    async def heartbeat(self) -> None:
        await self._get_client().set(self.lease_key, "1", px=int(self.lease_seconds * 1000))

    async def recover(self, release: Release | None = None) -> int:
        client = self._get_client()
        await self.heartbeat()

        abandoned = []
        async for key in client.scan_iter(match=self._processing_key("*")):
            consumer_id = key.rsplit(":", 1)[-1]
            if consumer_id == self.consumer_id:
                continue
            if not await client.exists(self._lease_key(consumer_id)):
                abandoned.append(key)

        moved = 0
        for key in abandoned:
            # Take ownership first: if this process dies mid-way, the task
            # sits in a list that the next recovery reclaims again.
            while raw := await client.lmove(key, self.processing_key, "RIGHT", "LEFT"):
                try:
                    job_id = QueuedTask.from_json(raw).job_id
                except (ValueError, KeyError, TypeError):
                    log.error("task_queue.bad_payload", payload=str(raw)[:200])
                    await client.lpush(self.dead_key, raw)
                    await client.lrem(self.processing_key, 1, raw)
                    continue
                if release is not None:
                    try:
                        await release(job_id)
                    except Exception as exc:
                        log.warning("task_queue.release_failed", job_id=job_id, error=str(exc))
                        await client.rpush(key, raw)
                        await client.lrem(self.processing_key, 1, raw)
                        break
                await client.lpush(self.queue_key, raw)
                await client.lrem(self.processing_key, 1, raw)
                moved += 1
        if moved:
            log.warning("task_queue.recovered", count=moved, consumers=len(abandoned))
        return moved

    async def ping(self) -> bool:
        try:
            return bool(await self._get_client().ping())
        except aioredis.RedisError as exc:
            log.warning("task_queue.ping_failed", error=str(exc))
            return False

    async def close(self) -> None:
        if self._client is not None:
            await self._client.delete(self.lease_key)
            await self._client.aclose()
            self._client = None


def create_task_queue(settings: Settings) -> TaskQueue:
    if settings.task_queue_backend == Backend.REDIS:
        return RedisTaskQueue(settings.redis_url, lease_seconds=settings.worker_lease_seconds)
    return InMemoryTaskQueue()
