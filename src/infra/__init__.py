"""
Infrastructure for background generation.

This package contains:
- Task queue between the API and the workers (in-memory or Redis)
- Asyncio worker pool running the generation pipeline with crash retries
"""

from __future__ import annotations

from src.infra.background_worker import GenerationWorkerPool, JobRunner
from src.infra.task_queue import (
    InMemoryTaskQueue,
    QueuedTask,
    RedisTaskQueue,
    TaskQueue,
    create_task_queue,
)

__all__ = [
    # Worker pool
    "GenerationWorkerPool",
    "JobRunner",
    # Task queue
    "InMemoryTaskQueue",
    "QueuedTask",
    "RedisTaskQueue",
    "TaskQueue",
    "create_task_queue",
]
