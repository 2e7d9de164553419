"""Process-wide wiring of stores, transports, models and workers.

``build_services(settings)`` picks an implementation for every seam from
settings (storage, event bus, task queue, model clients) and connects
them. The API process keeps the result on ``app.state.services``; route
handlers reach it through ``get_services``.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog
from fastapi import Request
from sqlalchemy import text

from src.agent.images import ImageClient, ImageModel
from src.agent.llm import JSONModel, LLMClient
from src.config import Backend, Settings
from src.database import close_db, get_engine, get_session_factory, init_db
from src.generation.pipeline import GenerationPipeline
from src.infra.background_worker import GenerationWorkerPool
from src.infra.task_queue import TaskQueue, create_task_queue
from src.services.generation_jobs import GenerationService
from src.services.stores import (
    DeckStore,
    InMemoryDeckStore,
    InMemoryJobStore,
    JobStore,
    SqlDeckStore,
    SqlJobStore,
)
from src.storage.object_store import LocalObjectStore
from src.streaming.bus import EventBus, create_event_bus
from src.testing.mock_llm import MockImageClient, MockLLMClient

log = structlog.get_logger(__name__)


def create_llm_client(settings: Settings) -> JSONModel:
    if settings.fake_llm:
        log.warning("llm.fake_mode", message="Using deterministic offline model")
        return MockLLMClient(chunk_delay=0.02 if settings.is_dev else 0.0)
    return LLMClient(settings)


def create_image_model(settings: Settings) -> ImageModel:
    if settings.fake_llm:
        return MockImageClient()
    return ImageClient(settings)


def create_stores(settings: Settings) -> tuple[JobStore, DeckStore]:
    if settings.storage_backend == Backend.SQL:
        factory = get_session_factory()
        return SqlJobStore(factory), SqlDeckStore(factory)
    return InMemoryJobStore(), InMemoryDeckStore()


@dataclass
class Services:
    settings: Settings
    jobs: JobStore
    decks: DeckStore
    bus: EventBus
    queue: TaskQueue
    pipeline: GenerationPipeline
    workers: GenerationWorkerPool
    generations: GenerationService

    async def start(self) -> None:
        if not self.settings.worker_enabled:
            log.info("services.workers_disabled")
            return
        await self.workers.start()

    async def close(self) -> None:
        await self.workers.shutdown(drain=True)
        await self.queue.close()
        await self.bus.close()
        if self.settings.storage_backend == Backend.SQL:
            await close_db()

    async def readiness(self) -> dict[str, str]:
        """Per-dependency status: "ok" or an error string."""
        checks: dict[str, str] = {}
        if self.settings.storage_backend == Backend.SQL:
            try:
                async with get_engine().connect() as conn:
                    await conn.execute(text("SELECT 1"))
                checks["database"] = "ok"
            except Exception as exc:
                checks["database"] = f"error: {exc}"
        checks["event_bus"] = "ok" if await self.bus.ping() else "error: unreachable"
        checks["task_queue"] = "ok" if await self.queue.ping() else "error: unreachable"
        return checks


def build_services(
    settings: Settings,
    *,
    llm: JSONModel | None = None,
    image_model: ImageModel | None = None,
) -> Services:
    """Wire every component. ``llm``/``image_model`` override the configured clients."""
    if settings.storage_backend == Backend.SQL:
        init_db(settings)

    jobs, decks = create_stores(settings)
    bus = create_event_bus(settings)
    queue = create_task_queue(settings)
    pipeline = GenerationPipeline(
        jobs=jobs,
        decks=decks,
        bus=bus,
        llm=llm or create_llm_client(settings),
        image_model=image_model or create_image_model(settings),
        object_store=LocalObjectStore(
            settings.image_storage_dir, public_base_url=settings.public_base_url
        ),
        settings=settings,
    )
    workers = GenerationWorkerPool(
        queue,
        pipeline,
        max_workers=settings.background_worker_concurrency,
        max_attempts=settings.job_max_attempts,
        retry_base_delay=settings.job_retry_base_delay_seconds,
        error_backoff=settings.worker_error_backoff_seconds,
    )
    log.info(
        "services.built",
        storage=settings.storage_backend.value,
        event_bus=settings.event_bus_backend.value,
        task_queue=settings.task_queue_backend.value,
        fake_llm=settings.fake_llm,
    )
    return Services(
        settings=settings,
        jobs=jobs,
        decks=decks,
        bus=bus,
        queue=queue,
        pipeline=pipeline,
        workers=workers,
        generations=GenerationService(jobs, workers.submit),
    )


def get_services(request: Request) -> Services:
    """FastAPI dependency returning the services built at startup."""
    return request.app.state.services  # type: ignore[no-any-return]
