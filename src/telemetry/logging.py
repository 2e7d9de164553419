"""Structured logging configuration.

Configures structlog once per process (API server or worker):
- JSON-formatted logs in production, human-readable console output in dev
- ISO8601 UTC timestamps
- Request ID propagation through RequestIdMiddleware
- generation_id / workspace_id bound by the worker for every pipeline log

Log format (production):
    {
        "timestamp": "2026-10-18T10:30:45.123456Z",
        "level": "info",
        "event": "pipeline.slide_done",
        "logger": "src.generation.pipeline",
        "request_id": "req_789...",
        "generation_id": "4a1f...",
        "workspace_id": "ws_123",
        "slide_index": 3
    }
"""

from __future__ import annotations

import logging
import sys
import uuid
from typing import Any

import structlog
from structlog.types import Processor


def configure_logging(
    *,
    json_logs: bool = False,
    log_level: str = "INFO",
) -> None:
    """Configure structured logging for the application.

    Args:
        json_logs: Use JSON format (True for production, False for dev)
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_logs:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ------------------------------------------------------------------ #
# Request ID Middleware
# ------------------------------------------------------------------ #


class RequestIdMiddleware:
    """ASGI middleware that generates and propagates request IDs.

    The id is bound into structlog's context variables for the duration of
    the request and echoed back as the ``x-request-id`` response header.
    An incoming ``x-request-id`` header is reused so that a client can
    correlate its own retries.
    """

    def __init__(self, app: Any) -> None:
        self.app = app

    async def __call__(self, scope: dict[str, Any], receive: Any, send: Any) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = _incoming_request_id(scope) or f"req_{uuid.uuid4().hex[:16]}"

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        async def send_with_request_id(message: dict[str, Any]) -> None:
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", []))
                headers.append((b"x-request-id", request_id.encode()))
                message["headers"] = headers
            await send(message)

        await self.app(scope, receive, send_with_request_id)


def _incoming_request_id(scope: dict[str, Any]) -> str | None:
    for name, value in scope.get("headers", []):
        if name == b"x-request-id":
            decoded = value.decode("latin-1").strip()
            # Only accept short printable ids; anything else gets replaced.
            if decoded and len(decoded) <= 64 and decoded.isprintable():
                return decoded
    return None


# ------------------------------------------------------------------ #
# Context Binding Helpers
# ------------------------------------------------------------------ #


def bind_workspace_context(workspace_id: str) -> None:
    """Bind the caller's workspace id to the log context for this request."""
    structlog.contextvars.bind_contextvars(workspace_id=str(workspace_id))


def bind_generation_context(
    generation_id: str | uuid.UUID, workspace_id: str | None = None
) -> None:
    """Bind generation context for a worker running one job.

    Args:
        generation_id: GenerationJob id
        workspace_id: Owning workspace, when known
    """
    context: dict[str, str] = {"generation_id": str(generation_id)}
    if workspace_id:
        context["workspace_id"] = workspace_id
    structlog.contextvars.bind_contextvars(**context)


def clear_context() -> None:
    """Clear all context variables (between jobs, and in tests)."""
    structlog.contextvars.clear_contextvars()
