"""
Background worker pool for presentation generation.

Worker coroutines pull job ids from the task queue and run the generation
pipeline for each, one job per worker at a time.

Key features:
- Configurable concurrency (max_workers)
- Queue-level retries with exponential backoff for unexpected crashes
- Dead letter list for jobs that crash on every attempt
- Lease renewal and periodic reclaim of tasks held by dead consumers
- Graceful shutdown with in-flight draining

Failure handling:
- PipelineError never reaches the pool; the pipeline marks the job failed
  itself, so those failures are final and are not retried
- any other exception is a crash: the job is released back to queued and
  the task is requeued after ``retry_base_delay * 2 ** (attempt - 1)``
  seconds until ``max_attempts`` is reached, then the job is failed with
  MAX_RETRIES
- queue errors (Redis unreachable) are logged and retried after
  ``error_backoff``; they never stop a worker
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Protocol

import structlog

from src.generation.errors import ErrorCode
from src.infra.task_queue import QueuedTask, TaskQueue
from src.telemetry.logging import clear_context

log = structlog.get_logger(__name__)


class JobRunner(Protocol):
    async def run(self, job_id: str) -> None: ...

    async def release(self, job_id: str) -> None: ...

    async def fail(self, job_id: str, code: ErrorCode, message: str) -> None: ...


class GenerationWorkerPool:
    """
    Asyncio worker pool consuming generation tasks.

    Example usage:
        pool = GenerationWorkerPool(queue, pipeline, max_workers=2)
        await pool.start()
        await pool.submit(job_id)
        await pool.shutdown()
    """

    def __init__(
        self,
        queue: TaskQueue,
        runner: JobRunner,
        *,
        max_workers: int = 2,
        max_attempts: int = 3,
        retry_base_delay: float = 2.0,
        poll_timeout: float = 1.0,
        error_backoff: float = 1.0,
    ) -> None:
        """
        Initialize the worker pool.

        Args:
            queue: Task queue to consume
            runner: Runs, releases and fails jobs (the generation pipeline)
            max_workers: Maximum number of concurrent worker coroutines
            max_attempts: Attempts per job before it is dead-lettered
            retry_base_delay: First backoff delay in seconds (doubles per attempt)
            poll_timeout: How long one dequeue waits before re-checking shutdown
            error_backoff: Pause after a queue error before the worker tries again
        """
        self._queue = queue
        self._runner = runner
        self._max_workers = max_workers
        self._max_attempts = max_attempts
        self._retry_base_delay = retry_base_delay
        self._poll_timeout = poll_timeout
        self._error_backoff = error_backoff
        self._workers: list[asyncio.Task[None]] = []
        self._retries: set[asyncio.Task[None]] = set()
        self._lease_task: asyncio.Task[None] | None = None
        self._shutdown_event = asyncio.Event()
        self._running = False
        self.completed = 0
        self.crashed = 0

        log.info(
            "worker_pool.initialized",
            max_workers=max_workers,
            max_attempts=max_attempts,
        )

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Requeue abandoned tasks and start worker coroutines."""
        if self._running:
            log.warning("worker_pool.already_running")
            return

        await self._queue.recover(self._runner.release)
        self._running = True
        self._shutdown_event.clear()

        for i in range(self._max_workers):
            worker = asyncio.create_task(self._worker_loop(worker_id=i))
            self._workers.append(worker)

        interval = self._queue.heartbeat_interval
        if interval is not None:
            self._lease_task = asyncio.create_task(self._lease_loop(interval))

        log.info("worker_pool.started", worker_count=self._max_workers)

    async def submit(self, job_id: str) -> None:
        await self._queue.enqueue(QueuedTask(job_id=job_id))
        log.info("worker_pool.task_submitted", job_id=job_id)

    async def shutdown(self, *, drain: bool = True) -> None:
        """
        Shutdown the worker pool.

        Args:
            drain: If True, let in-flight jobs finish. If False, cancel
                   workers immediately; their tasks stay unacked and are
                   reclaimed once this consumer's lease lapses (Redis).
        """
        if not self._running:
            return

        log.info("worker_pool.shutdown_initiated", drain=drain)
        self._running = False
        self._shutdown_event.set()

        for retry in self._retries:
            retry.cancel()

        if not drain:
            for worker in self._workers:
                worker.cancel()

        await asyncio.gather(*self._workers, *self._retries, return_exceptions=True)

        if self._lease_task is not None:
            self._lease_task.cancel()
            await asyncio.gather(self._lease_task, return_exceptions=True)
            self._lease_task = None

        self._workers.clear()
        self._retries.clear()
        log.info(
            "worker_pool.shutdown_complete",
            jobs_completed=self.completed,
            jobs_crashed=self.crashed,
        )

    async def _worker_loop(self, worker_id: int) -> None:
        log.info("worker.started", worker_id=worker_id)

        while not self._shutdown_event.is_set():
            try:
                task = await self._queue.dequeue(timeout=self._poll_timeout)
            except Exception as exc:
                self._log_loop_error(worker_id, "dequeue", exc)
                await self._pause(self._error_backoff)
                continue
            if task is None:
                continue

            try:
                await self._execute_task(task, worker_id=worker_id)
                await self._queue.ack(task)
            except Exception as exc:
                # An unacked task stays in this consumer's processing list.
                self._log_loop_error(worker_id, "task", exc, job_id=task.job_id)
                await self._pause(self._error_backoff)
            finally:
                clear_context()

        log.info("worker.stopped", worker_id=worker_id)

    def _log_loop_error(
        self, worker_id: int, stage: str, exc: Exception, job_id: str | None = None
    ) -> None:
        log.error(
            "worker.loop_error",
            worker_id=worker_id,
            stage=stage,
            job_id=job_id,
            error=str(exc),
            error_type=type(exc).__name__,
        )

    async def _pause(self, seconds: float) -> None:
        """Sleep for ``seconds`` or until shutdown starts, whichever comes first."""
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=seconds)

    async def _lease_loop(self, interval: float) -> None:
        while not self._shutdown_event.is_set():
            await self._pause(interval)
            if self._shutdown_event.is_set():
                return
            try:
                await self._queue.heartbeat()
                await self._queue.recover(self._runner.release)
            except Exception as exc:
                log.warning(
                    "worker_pool.lease_error", error=str(exc), error_type=type(exc).__name__
                )

    async def _execute_task(self, task: QueuedTask, worker_id: int) -> None:
        log.info(
            "worker.task_started",
            worker_id=worker_id,
            job_id=task.job_id,
            attempt=task.attempt,
        )

        try:
            await self._runner.run(task.job_id)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.crashed += 1
            log.error(
                "worker.task_failed",
                worker_id=worker_id,
                job_id=task.job_id,
                error=str(exc),
                error_type=type(exc).__name__,
                attempt=task.attempt,
                max_attempts=self._max_attempts,
                exc_info=True,
            )
            await self._handle_crash(task, exc)
            return

        self.completed += 1
        log.info("worker.task_completed", worker_id=worker_id, job_id=task.job_id)

    async def _handle_crash(self, task: QueuedTask, exc: Exception) -> None:
        if task.attempt < self._max_attempts:
            # The retry must be able to claim the job again.
            await self._runner.release(task.job_id)
            delay = self._retry_base_delay * 2 ** (task.attempt - 1)
            retry = asyncio.create_task(self._requeue_later(task.next_attempt(), delay))
            self._retries.add(retry)
            retry.add_done_callback(self._retries.discard)
            log.info("worker.task_requeued", job_id=task.job_id, delay_s=delay)
            return

        await self._queue.dead_letter(task, str(exc))
        log.error("worker.task_dead_letter", job_id=task.job_id, error=str(exc))
        await self._runner.fail(
            task.job_id,
            ErrorCode.MAX_RETRIES,
            f"Generation failed after {task.attempt} attempts",
        )

    async def _requeue_later(self, task: QueuedTask, delay: float) -> None:
        await asyncio.sleep(delay)
        await self._queue.enqueue(task)
