"""Generation job endpoints.

Endpoints:
- POST /api/v1/generations               - create a job (idempotent per key)
- GET  /api/v1/generations               - recent jobs in the caller's workspace
- GET  /api/v1/generations/{id}          - poll status and progress
- GET  /api/v1/generations/{id}/stream   - live events (SSE)
- POST /api/v1/generations/{id}/cancel   - stop at the next checkpoint

Jobs belonging to another workspace answer 404, never 403, so ids cannot
be probed across workspaces.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, Header, Query, Request, status
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import Field

from src.api.errors import ApiError, not_found
from src.auth.dependencies import Caller, get_current_caller
from src.generation.errors import ApiErrorCode
from src.schemas.base import CamelModel
from src.schemas.deck import GenerationRequest
from src.services.container import Services, get_services
from src.services.generation_jobs import poll_payload, terminal_event
from src.services.stores import JobRecord
from src.streaming.events import StreamEvent
from src.streaming.sse import generation_event_stream, sse_response

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/generations", tags=["generations"])

_STREAM_POLL_SECONDS = 5.0


# ---------------------------------------------------------------------------
# Request/Response models
# ---------------------------------------------------------------------------


class CreateGenerationBody(GenerationRequest):
    """Generation request plus an optional idempotency key.

    The ``Idempotency-Key`` header wins when both are sent.
    """

    idempotency_key: str | None = Field(default=None, min_length=1, max_length=200)


class GenerationAccepted(CamelModel):
    generation_id: str
    status: str
    replayed: bool = False


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _job_or_404(services: Services, generation_id: str, caller: Caller) -> JobRecord:
    job = await services.generations.get(generation_id, caller.workspace_id)
    if job is None:
        raise not_found("Generation")
    return job


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("", status_code=status.HTTP_202_ACCEPTED)
async def create_generation(
    body: CreateGenerationBody,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key", max_length=200),
    caller: Caller = Depends(get_current_caller),
    services: Services = Depends(get_services),
) -> JSONResponse:
    """Queue a generation.

    202 with the new job, or 200 with the existing one when the key was
    already used in this workspace.
    """
    key = idempotency_key or body.idempotency_key
    request = GenerationRequest.model_validate(body.model_dump(exclude={"idempotency_key"}))
    job, created = await services.generations.create(
        caller.workspace_id, request, idempotency_key=key
    )
    accepted = GenerationAccepted(
        generation_id=job.id,
        status=job.status.value,
        replayed=not created,
    )
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED if created else status.HTTP_200_OK,
        content=accepted.to_wire(),
    )


@router.get("")
async def list_generations(
    limit: int = Query(default=20, ge=1, le=100),
    caller: Caller = Depends(get_current_caller),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    jobs = await services.generations.list_recent(caller.workspace_id, limit=limit)
    base_url = services.settings.public_base_url
    return {"generations": [poll_payload(job, base_url=base_url) for job in jobs]}


@router.get("/{generation_id}")
async def get_generation(
    generation_id: str,
    caller: Caller = Depends(get_current_caller),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    job = await _job_or_404(services, generation_id, caller)
    return poll_payload(job, base_url=services.settings.public_base_url)


@router.get("/{generation_id}/stream", response_class=StreamingResponse)
async def stream_generation(
    generation_id: str,
    request: Request,
    caller: Caller = Depends(get_current_caller),
    services: Services = Depends(get_services),
) -> StreamingResponse:
    job = await _job_or_404(services, generation_id, caller)
    settings = services.settings

    async def check_terminal() -> StreamEvent | None:
        return terminal_event(
            await services.jobs.get(job.id), base_url=settings.public_base_url
        )

    log.info("stream.opened", generation_id=job.id, status=job.status.value)
    return sse_response(
        generation_event_stream(
            job.id,
            bus=services.bus,
            check_terminal=check_terminal,
            is_disconnected=request.is_disconnected,
            heartbeat_seconds=settings.stream_heartbeat_seconds,
            poll_seconds=min(_STREAM_POLL_SECONDS, settings.stream_heartbeat_seconds),
            buffer_size=settings.stream_buffer_size,
        )
    )


@router.post("/{generation_id}/cancel", status_code=status.HTTP_202_ACCEPTED)
async def cancel_generation(
    generation_id: str,
    caller: Caller = Depends(get_current_caller),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    job = await _job_or_404(services, generation_id, caller)
    if job.is_terminal:
        raise ApiError(
            ApiErrorCode.CONFLICT,
            f"Generation is already {job.status.value}",
            details={"status": job.status.value},
        )
    job = await services.generations.cancel(job)
    return poll_payload(job, base_url=services.settings.public_base_url)
