"""Telemetry package: structured logging and request/job log context."""

from __future__ import annotations

from src.telemetry.logging import (
    RequestIdMiddleware,
    bind_generation_context,
    bind_workspace_context,
    clear_context,
    configure_logging,
)

__all__ = [
    "RequestIdMiddleware",
    "bind_generation_context",
    "bind_workspace_context",
    "clear_context",
    "configure_logging",
]
