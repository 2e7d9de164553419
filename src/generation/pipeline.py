"""Generation pipeline: outline → content → validate/repair → images.

``GenerationPipeline.run(job_id)`` executes one queued job end to end. The
job record is the source of truth: status, progress, outline and deck id
are persisted as the run goes, and every step is mirrored as a stream
event on the job's bus channel. Publishing is best effort; a bus outage
never fails a job, because pollers can rebuild everything from the
record.

Progress:
    outline complete        10
    slide i of n            10 + (i + 1) / n * 75
    images                  85 → 98
    complete               100

A run that raises ``PipelineError`` ends ``failed`` with the error's code.
Anything else propagates to the worker, which decides whether to retry.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import structlog

from src.agent.images import ImageModel
from src.agent.llm import JSONModel, LLMError
from src.config import Settings
from src.generation.analysis import ContentAnalysis, analyze_content
from src.generation.composer import (
    compose_deck,
    enforce_exact_slide_count,
    enforce_outline_distribution,
)
from src.generation.content import ContentGenerator
from src.generation.draft import SlideDraft
from src.generation.errors import ErrorCode, PipelineError
from src.generation.images import ImageGenerator, with_image
from src.generation.layout import LayoutContext, apply_layout_context
from src.generation.outline import OutlineGenerator
from src.generation.repair import SlideRepairer
from src.generation.retry import RetryPolicies
from src.schemas.block import BlockKind
from src.schemas.deck import GenerationRequest, ImageMode
from src.schemas.slide import Outline, OutlineSlide, Slide, SlideType
from src.services.stores import DeckRecord, DeckStore, JobRecord, JobStore, view_url_for
from src.storage.object_store import ObjectStore
from src.streaming.bus import EventBus, EventBusError, channel_for
from src.streaming.events import (
    StreamEvent,
    StreamEventType,
    completed_event,
    failed_event,
    make_event,
)
from src.telemetry.logging import bind_generation_context

log = structlog.get_logger(__name__)

OUTLINE_PROGRESS = 10
CONTENT_PROGRESS_SPAN = 75
IMAGES_PROGRESS_START = 85
IMAGES_PROGRESS_END = 98


def slide_progress(index: int, total: int) -> int:
    """Progress after slide ``index`` (0-based) of ``total`` is done."""
    if total <= 0:
        return IMAGES_PROGRESS_START
    return OUTLINE_PROGRESS + round((index + 1) / total * CONTENT_PROGRESS_SPAN)


def image_progress(done: int, total: int) -> int:
    if total <= 0:
        return IMAGES_PROGRESS_END
    span = IMAGES_PROGRESS_END - IMAGES_PROGRESS_START
    return IMAGES_PROGRESS_START + round(done / total * span)


class ProgressTracker:
    """Monotonic progress for one job, persisted with debouncing.

    Intermediate values are written at most once per ``debounce_seconds``;
    milestones are always written. ``value`` never decreases.
    """

    def __init__(
        self,
        jobs: JobStore,
        job_id: str,
        *,
        debounce_seconds: float = 0.5,
        initial: int = 0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._jobs = jobs
        self._job_id = job_id
        self._debounce = debounce_seconds
        self._clock = clock
        self.value = initial
        self._written = initial
        self._last_write: float | None = None

    async def set(self, value: int, *, milestone: bool = False) -> int:
        self.value = max(self.value, min(100, value))
        now = self._clock()
        due = self._last_write is None or now - self._last_write >= self._debounce
        if self.value > self._written and (milestone or due):
            await self._jobs.update_progress(self._job_id, self.value)
            self._written = self.value
            self._last_write = now
        return self.value

    async def flush(self) -> None:
        if self.value > self._written:
            await self._jobs.update_progress(self._job_id, self.value)
            self._written = self.value
            self._last_write = self._clock()


@dataclass
class _Run:
    job: JobRecord
    request: GenerationRequest
    progress: ProgressTracker
    deck_id: str | None = None
    view_url: str | None = None


def fallback_draft(outline_slide: OutlineSlide) -> SlideDraft:
    """A title-and-hints slide used when content generation gave up."""
    blocks: list[dict[str, Any]] = [{"kind": BlockKind.TITLE.value, "text": outline_slide.title}]
    hints = [h for h in outline_slide.hints if h.strip()]
    if not hints:
        return SlideDraft(type=SlideType.SECTION_HEADER, blocks=blocks)
    blocks.append({"kind": BlockKind.BULLETS.value, "items": hints})
    return SlideDraft(type=SlideType.BULLETS, blocks=blocks)


class GenerationPipeline:
    def __init__(
        self,
        *,
        jobs: JobStore,
        decks: DeckStore,
        bus: EventBus,
        llm: JSONModel,
        image_model: ImageModel,
        object_store: ObjectStore,
        settings: Settings,
    ) -> None:
        self._jobs = jobs
        self._decks = decks
        self._bus = bus
        self._settings = settings

        policies = RetryPolicies.from_settings(settings)
        self.outline = OutlineGenerator(llm, policies.outline)
        self.content = ContentGenerator(llm, policies.content)
        self.repairer = SlideRepairer(
            llm, policies.repair, max_attempts=settings.max_repair_attempts
        )
        self.images = ImageGenerator(image_model, object_store, policies.image)

    # ------------------------------------------------------------------ #
    # Entry points
    # ------------------------------------------------------------------ #

    async def run(self, job_id: str) -> None:
        """Run one job to a terminal state.

        A missing or terminal job is a no-op, and so is a job another run
        has already claimed, so a task delivered twice never gets a second
        writer.

        Raises:
            Exception: anything other than ``PipelineError``; the job stays
                ``running`` until the worker releases it for a retry or fails it
        """
        job = await self._jobs.get(job_id)
        if job is None:
            log.warning("pipeline.job_missing", generation_id=job_id)
            return
        if job.is_terminal:
            log.info("pipeline.already_terminal", generation_id=job_id, status=job.status)
            return

        job = await self._jobs.mark_running(job_id)
        if job is None:
            log.info("pipeline.claim_lost", generation_id=job_id)
            return

        bind_generation_context(job.id, job.workspace_id)
        run = _Run(
            job=job,
            request=job.generation_request(),
            progress=ProgressTracker(
                self._jobs,
                job.id,
                debounce_seconds=self._settings.progress_debounce_seconds,
                initial=job.progress,
            ),
        )
        started = time.monotonic()
        log.info("pipeline.started", attempt=job.attempts)

        try:
            await self._execute(run)
        except PipelineError as exc:
            await self._finish_failed(run, exc.code, exc.message)
            return

        log.info(
            "pipeline.completed",
            deck_id=run.deck_id,
            duration_s=round(time.monotonic() - started, 2),
        )

    async def release(self, job_id: str) -> None:
        """Hand a crashed or abandoned run back to the queue for another attempt."""
        if await self._jobs.release(job_id):
            log.info("pipeline.released", generation_id=job_id)

    async def fail(self, job_id: str, code: ErrorCode, message: str) -> None:
        """Fail a job from outside a run (the worker gave up on it)."""
        job = await self._jobs.get(job_id)
        if job is None or job.is_terminal:
            return
        await self._jobs.fail(job_id, code.value, message)
        await self.publish(
            failed_event(
                job_id,
                code=code.value,
                message=message,
                progress=job.progress,
                deck_id=job.deck_id,
            )
        )

    async def publish(self, event: StreamEvent) -> None:
        try:
            await self._bus.publish(channel_for(event.generation_id), event)
        except EventBusError as exc:
            log.warning(
                "event_bus.publish_failed",
                generation_id=event.generation_id,
                event_type=event.type.value,
                error=str(exc),
            )

    # ------------------------------------------------------------------ #
    # Steps
    # ------------------------------------------------------------------ #

    async def _emit(self, run: _Run, event_type: StreamEventType, **data: Any) -> None:
        if run.deck_id is not None:
            data.setdefault("deck_id", run.deck_id)
        await self.publish(make_event(event_type, run.job.id, **data))

    async def _check_cancel(self, run: _Run) -> None:
        job = await self._jobs.get(run.job.id)
        if job is not None and job.cancel_requested:
            log.info("pipeline.cancelled", progress=run.progress.value)
            raise PipelineError(ErrorCode.CANCELLED, "Generation was cancelled")

    async def _execute(self, run: _Run) -> None:
        request = run.request
        await self._emit(
            run,
            StreamEventType.GENERATION_STARTED,
            stage="outline",
            status="running",
            progress=run.progress.value,
        )

        analysis = analyze_content(request.input_text)
        outline = await self._build_outline(run, analysis)
        await self._jobs.set_outline(run.job.id, outline.model_dump(mode="json"))
        progress = await run.progress.set(OUTLINE_PROGRESS, milestone=True)
        await self._emit(
            run,
            StreamEventType.OUTLINE_COMPLETE,
            stage="content",
            progress=progress,
            title=outline.title,
            total_slides=len(outline.slides),
            requested_slides=request.num_slides,
            actual_slides=len(outline.slides),
            outline=outline.to_wire(),
        )

        await self._check_cancel(run)
        deck = await self._open_deck(run, outline)
        await self._emit(
            run,
            StreamEventType.DECK_CREATED,
            view_url=run.view_url,
            title=deck.title,
            total_slides=len(outline.slides),
        )

        slides = await self._generate_slides(run, outline)

        if request.image_mode == ImageMode.AI:
            await self._generate_images(run, slides, outline.title, analysis)

        await self._check_cancel(run)
        await self._jobs.complete(run.job.id)
        run.progress.value = 100
        await self.publish(completed_event(run.job.id, deck_id=run.deck_id, view_url=run.view_url))

    async def _build_outline(self, run: _Run, analysis: ContentAnalysis) -> Outline:
        request = run.request
        if run.job.outline:
            log.info("pipeline.outline_reused")
            return Outline.model_validate(run.job.outline)

        outline = await self.outline.generate(request, analysis)
        target = request.num_slides
        if target is None or len(outline.slides) != target:
            outline = compose_deck(outline)
        if target is not None:
            outline = enforce_exact_slide_count(outline, target, analysis)
        return enforce_outline_distribution(outline, analysis, audience=request.audience)

    async def _open_deck(self, run: _Run, outline: Outline) -> DeckRecord:
        request = run.request
        deck: DeckRecord | None = None
        if run.job.deck_id is not None:
            deck = await self._decks.get(run.job.deck_id)
            if deck is not None:
                await self._decks.clear_slides(deck.id)
                log.info("pipeline.deck_reused", deck_id=deck.id)

        if deck is None:
            deck = await self._decks.create(
                run.job.workspace_id,
                title=outline.title,
                theme_id=request.theme_id.value,
                language=request.language,
                brand_kit=(
                    request.brand_kit.model_dump(mode="json") if request.brand_kit else None
                ),
            )
            await self._jobs.set_deck(run.job.id, deck.id)

        run.deck_id = deck.id
        run.view_url = view_url_for(self._settings.public_base_url, deck.id)
        return deck

    async def _generate_slides(self, run: _Run, outline: Outline) -> list[Slide]:
        total = len(outline.slides)
        slides: list[Slide] = []
        layout = LayoutContext()
        from_model = 0

        for index, outline_slide in enumerate(outline.slides):
            await self._check_cancel(run)
            position = len(slides)
            await self._emit(
                run,
                StreamEventType.SLIDE_STARTED,
                stage="content",
                slide_index=position,
                total_slides=total,
                title=outline_slide.title,
                progress=run.progress.value,
            )

            async def on_block(
                event_type: StreamEventType, data: dict[str, Any], position: int = position
            ) -> None:
                await self._emit(run, event_type, slide_index=position, **data)

            try:
                draft = await self.content.generate(
                    outline_slide,
                    run.request,
                    index=index,
                    total=total,
                    on_block=on_block,
                )
            except (LLMError, TimeoutError) as exc:
                log.warning(
                    "pipeline.slide_fallback",
                    slide_index=index,
                    error=type(exc).__name__,
                    detail=str(exc)[:200],
                )
                fallback = fallback_draft(outline_slide)
                finished = self.repairer.finish(fallback, fallback_title=outline_slide.title)
                new_slides = [finished.model_copy(update={"flagged": True})]
            else:
                from_model += 1
                outcome = await self.repairer.validate_and_repair(
                    draft, slide_index=index, fallback_title=outline_slide.title
                )
                new_slides = outcome.slides

            progress = await run.progress.set(slide_progress(index, total))
            for slide in new_slides:
                variant = apply_layout_context(slide.type, slide.layout_variant, layout)
                slide = slide.model_copy(update={"layout_variant": variant})
                wire = slide.to_wire()
                position = await self._decks.append_slide(run.deck_id, wire)
                slides.append(slide)

                await self._emit(
                    run,
                    StreamEventType.SLIDE_VALIDATED,
                    slide_index=position,
                    flagged=slide.flagged,
                    violations=[v.to_wire() for v in slide.violations],
                )
                await self._emit(
                    run,
                    StreamEventType.SLIDE_CONTENT,
                    slide_index=position,
                    total_slides=total,
                    slide=wire,
                    progress=progress,
                )
            log.info("pipeline.slide_done", slide_index=index, slides=len(new_slides))

        if from_model == 0:
            raise PipelineError(ErrorCode.CONTENT_FAILED, "No slide content could be generated")
        await run.progress.set(IMAGES_PROGRESS_START, milestone=True)
        return slides

    async def _generate_images(
        self,
        run: _Run,
        slides: list[Slide],
        deck_title: str,
        analysis: ContentAnalysis,
    ) -> None:
        targets = self.images.eligible(slides)
        if not targets:
            return

        total = len(targets)
        await self._emit(
            run,
            StreamEventType.IMAGE_STARTED,
            stage="images",
            total_images=total,
            progress=run.progress.value,
        )

        failed = 0
        for done, slide_index in enumerate(targets, start=1):
            await self._check_cancel(run)
            await self._emit(
                run,
                StreamEventType.IMAGE_PROGRESS,
                stage="images",
                slide_index=slide_index,
                image_index=done,
                total_images=total,
                progress=run.progress.value,
            )

            result = await self.images.generate(
                slides[slide_index],
                slide_index=slide_index,
                deck_id=run.deck_id,
                deck_title=deck_title,
                analysis=analysis,
                request=run.request,
            )
            slide_wire = None
            if result.success:
                slides[slide_index] = with_image(slides[slide_index], result.url)
                slide_wire = slides[slide_index].to_wire()
                await self._decks.replace_slide(run.deck_id, slide_index, slide_wire)
            else:
                failed += 1

            progress = await run.progress.set(image_progress(done, total))
            await self._emit(
                run,
                StreamEventType.IMAGE_COMPLETE,
                stage="images",
                slide_index=slide_index,
                image_index=done,
                total_images=total,
                image_url=result.url,
                success=result.success,
                slide=slide_wire,
                progress=progress,
            )

        await run.progress.flush()
        log.info("pipeline.images_done", total=total, failed=failed)

    async def _finish_failed(self, run: _Run, code: ErrorCode, message: str) -> None:
        log.warning("pipeline.failed", code=code.value, message=message)
        await run.progress.flush()
        await self._jobs.fail(run.job.id, code.value, message)
        await self.publish(
            failed_event(
                run.job.id,
                code=code.value,
                message=message,
                progress=run.progress.value,
                deck_id=run.deck_id,
            )
        )
