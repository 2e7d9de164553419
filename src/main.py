"""FastAPI application entrypoint.

Application startup order:
1. Load settings (from environment)
2. Configure structured logging
3. Build services (stores, event bus, task queue, model clients, pipeline)
4. Start the generation worker pool, unless WORKER_ENABLED is false and
   workers run separately (``python -m src.worker``)
5. Register middleware, error handlers and routers

Shutdown order:
1. Drain the worker pool
2. Close the task queue, event bus and DB connection pool
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from src.api.errors import install_error_handlers
from src.api.router import api_v1_router, public_router
from src.config import Settings, get_settings
from src.services.container import Services, build_services
from src.telemetry.logging import RequestIdMiddleware, configure_logging

log = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings

    # Configure structured logging first (before any log calls)
    configure_logging(
        json_logs=settings.is_prod,
        log_level="DEBUG" if settings.debug else "INFO",
    )

    log.info(
        "app.starting",
        environment=settings.environment,
        storage=settings.storage_backend.value,
        fake_llm=settings.fake_llm,
        worker_enabled=settings.worker_enabled,
    )

    Path(settings.image_storage_dir).mkdir(parents=True, exist_ok=True)

    services: Services | None = getattr(app.state, "services", None)
    if services is None:
        services = build_services(settings)
        app.state.services = services

    await services.start()
    log.info("app.ready")
    yield

    await services.close()
    log.info("app.shutdown")


def create_app(settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    """Application factory.

    Args:
        settings: Overrides the environment-loaded settings
        services: Pre-built services (tests); built in the lifespan otherwise
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Deck Generator",
        description=(
            "Generates presentation decks from text: outline, slide content, "
            "validation and repair, images, with live progress over SSE."
        ),
        version="0.1.0",
        docs_url="/docs" if settings.is_dev else None,
        redoc_url="/redoc" if settings.is_dev else None,
        openapi_url="/openapi.json" if settings.is_dev else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    if services is not None:
        app.state.services = services

    # ------------------------------------------------------------------ #
    # Middleware (added in reverse order - last added = first executed)
    # ------------------------------------------------------------------ #

    # In dev mode, allow all origins for easier development
    cors_origins = ["*"] if settings.is_dev else settings.cors_allowed_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=settings.is_prod,
        allow_methods=["*"],
        allow_headers=["Authorization", "Content-Type", "Idempotency-Key"],
        expose_headers=["x-request-id"],
    )

    # Unique request ID for log correlation
    app.add_middleware(RequestIdMiddleware)

    install_error_handlers(app)

    # ------------------------------------------------------------------ #
    # Routers
    # ------------------------------------------------------------------ #
    app.include_router(public_router)
    app.include_router(api_v1_router)

    # Generated images (local object store)
    app.mount(
        "/images",
        StaticFiles(directory=settings.image_storage_dir, check_dir=False),
        name="images",
    )

    return app


# Module-level app instance for uvicorn
app = create_app()
