"""Generation job lifecycle as seen from the API.

Creating a job stores it and hands its id to the worker queue; everything
after that happens in the pipeline. This module also builds what readers
get back: the poll payload and, for jobs that already ended, the
synthetic terminal event the stream sends instead of live events.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from src.generation.errors import ErrorCode
from src.models.generation import JobStatus
from src.schemas.deck import GenerationRequest
from src.services.stores import JobRecord, JobStore, view_url_for
from src.streaming.events import StreamEvent, completed_event, failed_event

log = structlog.get_logger(__name__)

Submit = Callable[[str], Awaitable[None]]


def _iso(value: Any) -> str | None:
    return value.isoformat() if value is not None else None


def poll_payload(job: JobRecord, *, base_url: str) -> dict[str, Any]:
    """camelCase body of ``GET /generations/{id}``."""
    payload: dict[str, Any] = {
        "generationId": job.id,
        "status": job.status.value,
        "progress": job.progress,
        "deckId": job.deck_id,
        "createdAt": _iso(job.created_at),
        "startedAt": _iso(job.started_at),
        "completedAt": _iso(job.completed_at),
    }
    if job.status == JobStatus.COMPLETED and job.deck_id:
        payload["viewUrl"] = view_url_for(base_url, job.deck_id)
    if job.status == JobStatus.FAILED:
        payload["error"] = {
            "code": job.error_code or ErrorCode.INTERNAL.value,
            "message": job.error_message or "Generation failed",
        }
    if job.cancel_requested and not job.is_terminal:
        payload["cancelRequested"] = True
    return payload


def terminal_event(job: JobRecord | None, *, base_url: str) -> StreamEvent | None:
    """The terminal event a finished job would have published, else None."""
    if job is None or not job.is_terminal:
        return None
    if job.status == JobStatus.COMPLETED:
        view_url = view_url_for(base_url, job.deck_id) if job.deck_id else None
        return completed_event(job.id, deck_id=job.deck_id, view_url=view_url)
    return failed_event(
        job.id,
        code=job.error_code or ErrorCode.INTERNAL.value,
        message=job.error_message or "Generation failed",
        progress=job.progress,
        deck_id=job.deck_id,
    )


class GenerationService:
    """Workspace-scoped access to generation jobs."""

    def __init__(self, jobs: JobStore, submit: Submit) -> None:
        self._jobs = jobs
        self._submit = submit

    async def create(
        self,
        workspace_id: str,
        request: GenerationRequest,
        *,
        idempotency_key: str | None = None,
    ) -> tuple[JobRecord, bool]:
        """Store a job and queue it.

        A repeated ``idempotency_key`` in the same workspace returns the
        existing job without queueing anything.

        Returns:
            ``(job, created)``
        """
        job, created = await self._jobs.create(
            workspace_id,
            request.to_wire(),
            idempotency_key=idempotency_key,
        )
        if not created:
            log.info(
                "generation.replayed",
                generation_id=job.id,
                status=job.status.value,
                idempotency_key=idempotency_key,
            )
            return job, False

        try:
            await self._submit(job.id)
        except Exception as exc:
            log.error("generation.enqueue_failed", generation_id=job.id, error=str(exc))
            await self._jobs.fail(job.id, ErrorCode.INTERNAL.value, "Could not queue generation")
            raise

        log.info(
            "generation.created",
            generation_id=job.id,
            num_slides=request.num_slides,
            image_mode=request.image_mode.value,
            input_chars=len(request.input_text),
        )
        return job, True

    async def get(self, job_id: str, workspace_id: str) -> JobRecord | None:
        """The job, or None when it is missing or belongs to another workspace."""
        job = await self._jobs.get(job_id)
        if job is None or job.workspace_id != workspace_id:
            return None
        return job

    async def list_recent(self, workspace_id: str, *, limit: int = 20) -> list[JobRecord]:
        return await self._jobs.list_for_workspace(workspace_id, limit=limit)

    async def cancel(self, job: JobRecord) -> JobRecord:
        """Ask the pipeline to stop at its next checkpoint."""
        updated = await self._jobs.request_cancel(job.id)
        log.info("generation.cancel_requested", generation_id=job.id)
        return updated or job
