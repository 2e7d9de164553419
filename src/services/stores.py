"""Job and deck storage used by the pipeline and the API.

Defines the JobStore/DeckStore ABCs and two implementations of each:
- InMemory*: single process, for dev without PostgreSQL and for tests
- Sql*: SQLAlchemy 2.0 async; every call runs in its own short
  transaction so pollers see progress and new slides immediately

Stores hand out plain records, never ORM objects, so callers cannot
depend on a live session.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.database import session_scope
from src.models.generation import Deck, DeckSlide, GenerationJob, JobStatus
from src.schemas.deck import GenerationRequest

log = structlog.get_logger(__name__)

_TERMINAL = (JobStatus.COMPLETED, JobStatus.FAILED)


def _now() -> datetime:
    return datetime.now(UTC)


def view_url_for(base_url: str, deck_id: str) -> str:
    return f"{base_url.rstrip('/')}/deck/{deck_id}"


# ------------------------------------------------------------------ #
# Records
# ------------------------------------------------------------------ #


@dataclass
class JobRecord:
    id: str
    workspace_id: str
    request: dict[str, Any]
    status: JobStatus = JobStatus.QUEUED
    progress: int = 0
    idempotency_key: str | None = None
    outline: dict[str, Any] | None = None
    deck_id: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    cancel_requested: bool = False
    attempts: int = 0
    created_at: datetime = field(default_factory=_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    updated_at: datetime = field(default_factory=_now)

    @property
    def is_terminal(self) -> bool:
        return self.status in _TERMINAL

    def generation_request(self) -> GenerationRequest:
        return GenerationRequest.model_validate(self.request)


@dataclass
class DeckRecord:
    id: str
    workspace_id: str
    title: str
    theme_id: str
    language: str = "no"
    brand_kit: dict[str, Any] | None = None
    slides: list[dict[str, Any]] = field(default_factory=list)
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)


# ------------------------------------------------------------------ #
# Interfaces
# ------------------------------------------------------------------ #


class JobStore(ABC):
    @abstractmethod
    async def create(
        self,
        workspace_id: str,
        request: dict[str, Any],
        *,
        idempotency_key: str | None = None,
    ) -> tuple[JobRecord, bool]:
        """Create a queued job, or return the one already holding the key.

        Returns:
            ``(job, created)``; ``created`` is False on an idempotent replay
        """

    @abstractmethod
    async def get(self, job_id: str) -> JobRecord | None: ...

    @abstractmethod
    async def list_for_workspace(self, workspace_id: str, *, limit: int = 20) -> list[JobRecord]:
        """Newest first."""

    @abstractmethod
    async def mark_running(self, job_id: str) -> JobRecord | None:
        """Claim a queued job: set ``running`` and ``started_at`` and count the attempt.

        Returns None when the job is missing or not ``queued``, so only one
        run at a time can own a job.
        """

    @abstractmethod
    async def release(self, job_id: str) -> bool:
        """Put a ``running`` job back to ``queued`` so a retry can claim it.

        Returns False when the job is missing or not running.
        """

    @abstractmethod
    async def update_progress(self, job_id: str, progress: int) -> None:
        """Raise progress to ``progress``; lower values are ignored."""

    @abstractmethod
    async def set_outline(self, job_id: str, outline: dict[str, Any]) -> None: ...

    @abstractmethod
    async def set_deck(self, job_id: str, deck_id: str) -> None: ...

    @abstractmethod
    async def complete(self, job_id: str) -> None: ...

    @abstractmethod
    async def fail(self, job_id: str, code: str, message: str) -> None:
        """Mark failed. A job that is already terminal is left untouched."""

    @abstractmethod
    async def request_cancel(self, job_id: str) -> JobRecord | None: ...


class DeckStore(ABC):
    @abstractmethod
    async def create(
        self,
        workspace_id: str,
        *,
        title: str,
        theme_id: str,
        language: str = "no",
        brand_kit: dict[str, Any] | None = None,
    ) -> DeckRecord: ...

    @abstractmethod
    async def get(self, deck_id: str) -> DeckRecord | None:
        """Deck with its slides ordered by position."""

    @abstractmethod
    async def clear_slides(self, deck_id: str) -> None: ...

    @abstractmethod
    async def append_slide(self, deck_id: str, slide: dict[str, Any]) -> int:
        """Append one slide and return its position."""

    @abstractmethod
    async def replace_slide(self, deck_id: str, position: int, slide: dict[str, Any]) -> None: ...


# ------------------------------------------------------------------ #
# In-memory
# ------------------------------------------------------------------ #


class InMemoryJobStore(JobStore):
    """Dict-backed job store. Returned records are copies."""

    def __init__(self) -> None:
        self._jobs: dict[str, JobRecord] = {}
        self._keys: dict[tuple[str, str], str] = {}

    async def create(
        self,
        workspace_id: str,
        request: dict[str, Any],
        *,
        idempotency_key: str | None = None,
    ) -> tuple[JobRecord, bool]:
        if idempotency_key is not None:
            existing = self._keys.get((workspace_id, idempotency_key))
            if existing is not None:
                return replace(self._jobs[existing]), False

        job = JobRecord(
            id=str(uuid.uuid4()),
            workspace_id=workspace_id,
            request=request,
            idempotency_key=idempotency_key,
        )
        self._jobs[job.id] = job
        if idempotency_key is not None:
            self._keys[(workspace_id, idempotency_key)] = job.id
        return replace(job), True

    async def get(self, job_id: str) -> JobRecord | None:
        job = self._jobs.get(job_id)
        return replace(job) if job is not None else None

    async def list_for_workspace(self, workspace_id: str, *, limit: int = 20) -> list[JobRecord]:
        jobs = [j for j in self._jobs.values() if j.workspace_id == workspace_id]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return [replace(j) for j in jobs[:limit]]

    def _live(self, job_id: str) -> JobRecord | None:
        job = self._jobs.get(job_id)
        if job is None or job.is_terminal:
            return None
        return job

    async def mark_running(self, job_id: str) -> JobRecord | None:
        job = self._jobs.get(job_id)
        if job is None or job.status != JobStatus.QUEUED:
            return None
        job.status = JobStatus.RUNNING
        job.started_at = job.started_at or _now()
        job.attempts += 1
        job.updated_at = _now()
        return replace(job)

    async def release(self, job_id: str) -> bool:
        job = self._jobs.get(job_id)
        if job is None or job.status != JobStatus.RUNNING:
            return False
        job.status = JobStatus.QUEUED
        job.updated_at = _now()
        return True

    async def update_progress(self, job_id: str, progress: int) -> None:
        job = self._live(job_id)
        if job is not None and progress > job.progress:
            job.progress = progress
            job.updated_at = _now()

    async def set_outline(self, job_id: str, outline: dict[str, Any]) -> None:
        job = self._jobs.get(job_id)
        if job is not None:
            job.outline = outline
            job.updated_at = _now()

    async def set_deck(self, job_id: str, deck_id: str) -> None:
        job = self._jobs.get(job_id)
        if job is not None:
            job.deck_id = deck_id
            job.updated_at = _now()

    async def complete(self, job_id: str) -> None:
        job = self._live(job_id)
        if job is None:
            return
        job.status = JobStatus.COMPLETED
        job.progress = 100
        job.completed_at = job.updated_at = _now()

    async def fail(self, job_id: str, code: str, message: str) -> None:
        job = self._live(job_id)
        if job is None:
            return
        job.status = JobStatus.FAILED
        job.error_code = code
        job.error_message = message
        job.completed_at = job.updated_at = _now()

    async def request_cancel(self, job_id: str) -> JobRecord | None:
        job = self._jobs.get(job_id)
        if job is None:
            return None
        if not job.is_terminal:
            job.cancel_requested = True
            job.updated_at = _now()
        return replace(job)


class InMemoryDeckStore(DeckStore):
    def __init__(self) -> None:
        self._decks: dict[str, DeckRecord] = {}

    async def create(
        self,
        workspace_id: str,
        *,
        title: str,
        theme_id: str,
        language: str = "no",
        brand_kit: dict[str, Any] | None = None,
    ) -> DeckRecord:
        deck = DeckRecord(
            id=str(uuid.uuid4()),
            workspace_id=workspace_id,
            title=title,
            theme_id=theme_id,
            language=language,
            brand_kit=brand_kit,
        )
        self._decks[deck.id] = deck
        return replace(deck, slides=[])

    async def get(self, deck_id: str) -> DeckRecord | None:
        deck = self._decks.get(deck_id)
        return replace(deck, slides=list(deck.slides)) if deck is not None else None

    async def clear_slides(self, deck_id: str) -> None:
        deck = self._decks.get(deck_id)
        if deck is not None:
            deck.slides.clear()

    async def append_slide(self, deck_id: str, slide: dict[str, Any]) -> int:
        deck = self._decks[deck_id]
        deck.slides.append(slide)
        deck.updated_at = _now()
        return len(deck.slides) - 1

    async def replace_slide(self, deck_id: str, position: int, slide: dict[str, Any]) -> None:
        deck = self._decks[deck_id]
        deck.slides[position] = slide
        deck.updated_at = _now()


# ------------------------------------------------------------------ #
# SQLAlchemy
# ------------------------------------------------------------------ #


def _job_record(job: GenerationJob) -> JobRecord:
    return JobRecord(
        id=str(job.id),
        workspace_id=job.workspace_id,
        request=dict(job.request),
        status=JobStatus(job.status),
        progress=job.progress,
        idempotency_key=job.idempotency_key,
        outline=job.outline,
        deck_id=str(job.deck_id) if job.deck_id else None,
        error_code=job.error_code,
        error_message=job.error_message,
        cancel_requested=job.cancel_requested,
        attempts=job.attempts,
        created_at=job.created_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
        updated_at=job.updated_at,
    )


def _uuid(value: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(value)
    except (TypeError, ValueError):
        return None


class SqlJobStore(JobStore):
    def __init__(self, factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._factory = factory

    async def create(
        self,
        workspace_id: str,
        request: dict[str, Any],
        *,
        idempotency_key: str | None = None,
    ) -> tuple[JobRecord, bool]:
        async with session_scope(self._factory) as session:
            now = _now()
            stmt = (
                pg_insert(GenerationJob)
                .values(
                    id=uuid.uuid4(),
                    workspace_id=workspace_id,
                    idempotency_key=idempotency_key,
                    status=JobStatus.QUEUED,
                    progress=0,
                    request=request,
                    cancel_requested=False,
                    attempts=0,
                    created_at=now,
                    updated_at=now,
                )
                .on_conflict_do_nothing(constraint="uq_generation_jobs_workspace_idempotency")
                .returning(GenerationJob.id)
            )
            new_id = (await session.execute(stmt)).scalar_one_or_none()

            if new_id is not None:
                job = await session.get(GenerationJob, new_id)
                return _job_record(job), True

            # Lost the insert race (or a plain replay): the key already has a job.
            existing = await session.scalar(
                select(GenerationJob).where(
                    GenerationJob.workspace_id == workspace_id,
                    GenerationJob.idempotency_key == idempotency_key,
                )
            )
            log.info(
                "jobs.idempotent_replay",
                workspace_id=workspace_id,
                job_id=str(existing.id),
            )
            return _job_record(existing), False

    async def get(self, job_id: str) -> JobRecord | None:
        key = _uuid(job_id)
        if key is None:
            return None
        async with session_scope(self._factory) as session:
            job = await session.get(GenerationJob, key)
            return _job_record(job) if job is not None else None

    async def list_for_workspace(self, workspace_id: str, *, limit: int = 20) -> list[JobRecord]:
        async with session_scope(self._factory) as session:
            rows = await session.scalars(
                select(GenerationJob)
                .where(GenerationJob.workspace_id == workspace_id)
                .order_by(GenerationJob.created_at.desc())
                .limit(limit)
            )
            return [_job_record(job) for job in rows]

    async def _update_live(self, job_id: str, **values: Any) -> bool:
        key = _uuid(job_id)
        if key is None:
            return False
        async with session_scope(self._factory) as session:
            result = await session.execute(
                update(GenerationJob)
                .where(GenerationJob.id == key, GenerationJob.status.not_in(_TERMINAL))
                .values(updated_at=_now(), **values)
            )
            return result.rowcount > 0

    async def mark_running(self, job_id: str) -> JobRecord | None:
        key = _uuid(job_id)
        if key is None:
            return None
        now = _now()
        async with session_scope(self._factory) as session:
            # Conditional transition: of two concurrent claims only one matches.
            job = (
                await session.scalars(
                    update(GenerationJob)
                    .where(GenerationJob.id == key, GenerationJob.status == JobStatus.QUEUED)
                    .values(
                        status=JobStatus.RUNNING,
                        started_at=func.coalesce(GenerationJob.started_at, now),
                        attempts=GenerationJob.attempts + 1,
                        updated_at=now,
                    )
                    .returning(GenerationJob)
                )
            ).one_or_none()
            return _job_record(job) if job is not None else None

    async def release(self, job_id: str) -> bool:
        key = _uuid(job_id)
        if key is None:
            return False
        async with session_scope(self._factory) as session:
            result = await session.execute(
                update(GenerationJob)
                .where(GenerationJob.id == key, GenerationJob.status == JobStatus.RUNNING)
                .values(status=JobStatus.QUEUED, updated_at=_now())
            )
            return result.rowcount > 0

    async def update_progress(self, job_id: str, progress: int) -> None:
        key = _uuid(job_id)
        if key is None:
            return
        async with session_scope(self._factory) as session:
            await session.execute(
                update(GenerationJob)
                .where(
                    GenerationJob.id == key,
                    GenerationJob.status.not_in(_TERMINAL),
                    GenerationJob.progress < progress,
                )
                .values(progress=progress, updated_at=_now())
            )

    async def set_outline(self, job_id: str, outline: dict[str, Any]) -> None:
        await self._update_live(job_id, outline=outline)

    async def set_deck(self, job_id: str, deck_id: str) -> None:
        await self._update_live(job_id, deck_id=uuid.UUID(deck_id))

    async def complete(self, job_id: str) -> None:
        await self._update_live(
            job_id, status=JobStatus.COMPLETED, progress=100, completed_at=_now()
        )

    async def fail(self, job_id: str, code: str, message: str) -> None:
        updated = await self._update_live(
            job_id,
            status=JobStatus.FAILED,
            error_code=code,
            error_message=message,
            completed_at=_now(),
        )
        if not updated:
            log.info("jobs.fail_ignored", job_id=job_id, code=code)

    async def request_cancel(self, job_id: str) -> JobRecord | None:
        await self._update_live(job_id, cancel_requested=True)
        return await self.get(job_id)


def _deck_record(deck: Deck, slides: list[DeckSlide]) -> DeckRecord:
    return DeckRecord(
        id=str(deck.id),
        workspace_id=deck.workspace_id,
        title=deck.title,
        theme_id=deck.theme_id,
        language=deck.language,
        brand_kit=deck.brand_kit,
        slides=[dict(s.content) for s in slides],
        created_at=deck.created_at,
        updated_at=deck.updated_at,
    )


class SqlDeckStore(DeckStore):
    def __init__(self, factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._factory = factory

    async def create(
        self,
        workspace_id: str,
        *,
        title: str,
        theme_id: str,
        language: str = "no",
        brand_kit: dict[str, Any] | None = None,
    ) -> DeckRecord:
        async with session_scope(self._factory) as session:
            deck = Deck(
                id=uuid.uuid4(),
                workspace_id=workspace_id,
                title=title[:200],
                theme_id=theme_id,
                language=language,
                brand_kit=brand_kit,
            )
            session.add(deck)
            await session.flush()
            return _deck_record(deck, [])

    async def get(self, deck_id: str) -> DeckRecord | None:
        key = _uuid(deck_id)
        if key is None:
            return None
        async with session_scope(self._factory) as session:
            deck = await session.get(Deck, key)
            if deck is None:
                return None
            slides = await session.scalars(
                select(DeckSlide).where(DeckSlide.deck_id == key).order_by(DeckSlide.position)
            )
            return _deck_record(deck, list(slides))

    async def clear_slides(self, deck_id: str) -> None:
        async with session_scope(self._factory) as session:
            await session.execute(delete(DeckSlide).where(DeckSlide.deck_id == uuid.UUID(deck_id)))

    async def append_slide(self, deck_id: str, slide: dict[str, Any]) -> int:
        key = uuid.UUID(deck_id)
        async with session_scope(self._factory) as session:
            position = await session.scalar(
                select(func.coalesce(func.max(DeckSlide.position) + 1, 0)).where(
                    DeckSlide.deck_id == key
                )
            )
            session.add(DeckSlide(deck_id=key, position=position, content=slide))
            await session.execute(update(Deck).where(Deck.id == key).values(updated_at=_now()))
            return int(position)

    async def replace_slide(self, deck_id: str, position: int, slide: dict[str, Any]) -> None:
        key = uuid.UUID(deck_id)
        async with session_scope(self._factory) as session:
            await session.execute(
                update(DeckSlide)
                .where(DeckSlide.deck_id == key, DeckSlide.position == position)
                .values(content=slide)
            )
