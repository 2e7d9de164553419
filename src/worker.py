"""Standalone generation worker process.

Runs the worker pool without the HTTP API, for deployments that set
WORKER_ENABLED=false on the API and scale workers separately:

    python -m src.worker

Needs shared backends (STORAGE_BACKEND=sql, Redis event bus and task queue)
so the API and the workers see the same jobs, events and tasks.
"""

from __future__ import annotations

import asyncio
import contextlib
import signal
from pathlib import Path

import structlog

from src.config import Settings, get_settings
from src.services.container import Services, build_services
from src.telemetry.logging import configure_logging

log = structlog.get_logger(__name__)


async def run_worker(
    settings: Settings | None = None,
    *,
    services: Services | None = None,
    stop: asyncio.Event | None = None,
) -> None:
    """Consume generation tasks until ``stop`` is set or SIGINT/SIGTERM arrives."""
    settings = settings or get_settings()
    configure_logging(
        json_logs=settings.is_prod,
        log_level="DEBUG" if settings.debug else "INFO",
    )
    Path(settings.image_storage_dir).mkdir(parents=True, exist_ok=True)

    owned = services is None
    if services is None:
        services = build_services(settings)
    stop = stop or asyncio.Event()

    loop = asyncio.get_running_loop()
    handled: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, stop.set)
            handled.append(sig)

    try:
        await services.workers.start()
        log.info(
            "worker_process.started",
            concurrency=settings.background_worker_concurrency,
            task_queue=settings.task_queue_backend.value,
        )
        await stop.wait()
        log.info("worker_process.stopping")
    finally:
        for sig in handled:
            loop.remove_signal_handler(sig)
        if owned:
            await services.close()
        else:
            await services.workers.shutdown(drain=True)
    log.info("worker_process.stopped")


def main() -> None:
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
