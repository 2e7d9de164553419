"""End-to-end tests for the generation pipeline over in-memory services."""

import asyncio

import pytest
import pytest_asyncio

from src.agent.llm import LLMResponseError
from src.generation.errors import ErrorCode
from src.generation.pipeline import (
    GenerationPipeline,
    ProgressTracker,
    fallback_draft,
    image_progress,
    slide_progress,
)
from src.models.generation import JobStatus
from src.schemas.slide import Outline, OutlineSlide, SlideType
from src.storage.object_store import LocalObjectStore
from src.streaming.bus import EventBusError, InMemoryEventBus, channel_for
from src.streaming.events import StreamEventType
from src.testing.mock_llm import MockImageClient, MockLLMClient
from tests.conftest import WORKSPACE_A, make_request


class EventLog:
    def __init__(self):
        self.events = []

    def __call__(self, event):
        self.events.append(event)

    def of(self, event_type):
        return [e for e in self.events if e.type == event_type]

    @property
    def types(self):
        return [e.type for e in self.events]


async def _create_job(services, **overrides):
    job, _ = await services.generations.create(WORKSPACE_A, make_request(**overrides))
    return job


async def _listen(services, job_id):
    log = EventLog()
    await services.bus.subscribe(channel_for(job_id), log)
    return log


def _pipeline(services, *, llm=None, images=None, bus=None):
    return GenerationPipeline(
        jobs=services.jobs,
        decks=services.decks,
        bus=bus or services.bus,
        llm=llm or MockLLMClient(),
        image_model=images or MockImageClient(),
        object_store=LocalObjectStore(
            services.settings.image_storage_dir, public_base_url="http://testserver"
        ),
        settings=services.settings,
    )


class TestProgressHelpers:
    def test_slide_progress(self):
        assert slide_progress(0, 4) == 29
        assert slide_progress(3, 4) == 85
        assert slide_progress(0, 0) == 85

    def test_image_progress(self):
        assert image_progress(0, 2) == 85
        assert image_progress(2, 2) == 98
        assert image_progress(0, 0) == 98


class TestProgressTracker:
    @pytest.mark.asyncio
    async def test_debounces_and_stays_monotonic(self):
        written = []

        class Jobs:
            async def update_progress(self, job_id, progress):
                written.append((job_id, progress))

        times = iter([0.0, 0.5, 0.6, 0.7, 0.8, 0.9])
        tracker = ProgressTracker(
            Jobs(), "job-1", debounce_seconds=1.0, clock=lambda: next(times)
        )

        assert await tracker.set(20) == 20
        assert await tracker.set(30) == 30
        assert await tracker.set(25) == 30
        assert await tracker.set(40, milestone=True) == 40
        assert await tracker.set(50) == 50
        await tracker.flush()

        assert written == [("job-1", 20), ("job-1", 40), ("job-1", 50)]

    @pytest.mark.asyncio
    async def test_caps_at_one_hundred(self):
        class Jobs:
            async def update_progress(self, job_id, progress):
                pass

        tracker = ProgressTracker(Jobs(), "job-1", debounce_seconds=0)
        assert await tracker.set(140) == 100


class TestFallbackDraft:
    def test_without_hints_is_a_section_header(self):
        draft = fallback_draft(OutlineSlide(title="Veien videre"))
        assert draft.type == SlideType.SECTION_HEADER
        assert draft.title() == "Veien videre"

    def test_hints_become_bullets(self):
        draft = fallback_draft(OutlineSlide(title="Mål", hints=["Vekst", " ", "Lønnsomhet"]))
        assert draft.type == SlideType.BULLETS
        assert draft.blocks[1]["items"] == ["Vekst", "Lønnsomhet"]


class TestGenerationPipeline:
    @pytest.mark.asyncio
    async def test_completes_a_job(self, services):
        job = await _create_job(services)
        events = await _listen(services, job.id)

        await services.pipeline.run(job.id)

        done = await services.jobs.get(job.id)
        assert done.status == JobStatus.COMPLETED
        assert done.progress == 100
        assert done.attempts == 1
        assert done.outline is not None

        deck = await services.decks.get(done.deck_id)
        slide_events = events.of(StreamEventType.SLIDE_CONTENT)
        assert len(deck.slides) == len(slide_events) >= 6
        assert [e.data.slide_index for e in slide_events] == list(range(len(deck.slides)))
        assert [e.data.slide for e in slide_events] == deck.slides

        assert events.types[0] == StreamEventType.GENERATION_STARTED
        assert events.types[1] == StreamEventType.OUTLINE_COMPLETE
        assert events.types[2] == StreamEventType.DECK_CREATED
        assert events.types[-1] == StreamEventType.GENERATION_COMPLETE
        assert events.events[-1].data.view_url == f"http://testserver/deck/{done.deck_id}"

    @pytest.mark.asyncio
    async def test_outline_event_reports_counts(self, services):
        job = await _create_job(services, num_slides=6)
        events = await _listen(services, job.id)

        await services.pipeline.run(job.id)

        outline = events.of(StreamEventType.OUTLINE_COMPLETE)[0].data
        assert outline.total_slides == 6
        assert outline.requested_slides == 6
        assert outline.actual_slides == 6
        assert outline.progress == 10
        assert len(outline.outline["slides"]) == 6

    @pytest.mark.asyncio
    async def test_progress_never_decreases(self, services):
        job = await _create_job(services, image_mode="ai")
        events = await _listen(services, job.id)

        await services.pipeline.run(job.id)

        values = [e.data.progress for e in events.events if e.data.progress is not None]
        assert values == sorted(values)
        assert values[-1] == 100

    @pytest.mark.asyncio
    async def test_every_block_opens_and_closes_within_its_slide(self, services):
        job = await _create_job(services)
        events = await _listen(services, job.id)

        await services.pipeline.run(job.id)

        open_blocks = set()
        for event in events.events:
            key = (event.data.slide_index, event.data.block_index)
            if event.type == StreamEventType.BLOCK_STARTED:
                open_blocks.add(key)
            elif event.type == StreamEventType.BLOCK_COMPLETE:
                open_blocks.remove(key)
            elif event.type == StreamEventType.SLIDE_CONTENT:
                assert not any(s == event.data.slide_index for s, _ in open_blocks)
        assert events.of(StreamEventType.BLOCK_DELTA)

    @pytest.mark.asyncio
    async def test_generates_images(self, services, mock_images):
        job = await _create_job(services, image_mode="ai")
        events = await _listen(services, job.id)

        await services.pipeline.run(job.id)

        done = await services.jobs.get(job.id)
        assert done.status == JobStatus.COMPLETED
        started = events.of(StreamEventType.IMAGE_STARTED)
        completed = events.of(StreamEventType.IMAGE_COMPLETE)
        assert len(started) == 1
        assert len(completed) == started[0].data.total_images > 0
        assert all(e.data.success for e in completed)
        assert len(mock_images.prompts) == len(completed)

        deck = await services.decks.get(done.deck_id)
        with_urls = [
            s for s in deck.slides
            if any(b["kind"] == "image" and b.get("url") for b in s["blocks"])
        ]
        assert len(with_urls) == len(completed)

    @pytest.mark.asyncio
    async def test_image_failures_do_not_fail_the_job(self, services):
        job = await _create_job(services, image_mode="ai")
        pipeline = _pipeline(services, images=MockImageClient(fail=True))
        events = await _listen(services, job.id)

        await pipeline.run(job.id)

        assert (await services.jobs.get(job.id)).status == JobStatus.COMPLETED
        completed = events.of(StreamEventType.IMAGE_COMPLETE)
        assert completed
        assert not any(e.data.success for e in completed)

    @pytest.mark.asyncio
    async def test_no_images_without_image_mode(self, services, mock_images):
        job = await _create_job(services)
        events = await _listen(services, job.id)

        await services.pipeline.run(job.id)

        assert events.of(StreamEventType.IMAGE_STARTED) == []
        assert mock_images.prompts == []

    @pytest.mark.asyncio
    async def test_outline_failure_fails_the_job(self, services):
        job = await _create_job(services)
        pipeline = _pipeline(services, llm=MockLLMClient(fail_first=100))
        events = await _listen(services, job.id)

        await pipeline.run(job.id)

        failed = await services.jobs.get(job.id)
        assert failed.status == JobStatus.FAILED
        assert failed.error_code == ErrorCode.OUTLINE_FAILED
        assert events.types[-1] == StreamEventType.GENERATION_FAILED
        assert events.events[-1].data.error.code == "OUTLINE_FAILED"

    @pytest.mark.asyncio
    async def test_all_slides_failing_fails_the_job(self, services):
        outline = Outline(
            title="Plan",
            slides=[OutlineSlide(title="Mål", hints=["Vekst"]), OutlineSlide(title="Tiltak")],
        )
        job = await _create_job(services, num_slides=None, outline=outline)
        pipeline = _pipeline(services, llm=MockLLMClient(fail_first=100))

        await pipeline.run(job.id)

        failed = await services.jobs.get(job.id)
        assert failed.status == JobStatus.FAILED
        assert failed.error_code == ErrorCode.CONTENT_FAILED
        deck = await services.decks.get(failed.deck_id)
        assert deck.slides
        assert all(s["flagged"] for s in deck.slides)

    @pytest.mark.asyncio
    async def test_one_failing_slide_becomes_a_flagged_fallback(self, services):
        class FlakyLLM(MockLLMClient):
            def _answer(self, system, user):
                if 'Title: "Del 2' in system:
                    self.calls.append((system, user))
                    raise LLMResponseError("unusable")
                return super()._answer(system, user)

        job = await _create_job(services)
        pipeline = _pipeline(services, llm=FlakyLLM())

        await pipeline.run(job.id)

        done = await services.jobs.get(job.id)
        assert done.status == JobStatus.COMPLETED
        deck = await services.decks.get(done.deck_id)
        flagged = [s for s in deck.slides if s["flagged"]]
        assert len(flagged) >= 1
        assert any(s["blocks"][0]["text"].startswith("Del 2") for s in flagged)

    @pytest.mark.asyncio
    async def test_cancelled_job_stops_at_checkpoint(self, services):
        job = await _create_job(services)
        await services.jobs.request_cancel(job.id)
        events = await _listen(services, job.id)

        await services.pipeline.run(job.id)

        cancelled = await services.jobs.get(job.id)
        assert cancelled.status == JobStatus.FAILED
        assert cancelled.error_code == ErrorCode.CANCELLED
        assert events.of(StreamEventType.SLIDE_STARTED) == []
        assert events.types[-1] == StreamEventType.GENERATION_FAILED

    @pytest.mark.asyncio
    async def test_terminal_and_missing_jobs_are_noops(self, services):
        job = await _create_job(services)
        await services.pipeline.run(job.id)
        events = await _listen(services, job.id)

        await services.pipeline.run(job.id)
        await services.pipeline.run("does-not-exist")

        assert events.events == []
        assert (await services.jobs.get(job.id)).attempts == 1

    @pytest.mark.asyncio
    async def test_retry_reuses_outline_and_deck(self, services, mock_llm):
        job = await _create_job(services)
        await services.pipeline.run(job.id)
        first = await services.jobs.get(job.id)

        # Simulate a crashed earlier attempt that recorded outline and deck.
        retry, _ = await services.jobs.create(WORKSPACE_A, first.request)
        await services.jobs.set_outline(retry.id, first.outline)
        await services.jobs.set_deck(retry.id, first.deck_id)
        calls_before = len(mock_llm.calls)

        await services.pipeline.run(retry.id)

        again = await services.jobs.get(retry.id)
        assert again.status == JobStatus.COMPLETED
        assert again.deck_id == first.deck_id
        new_calls = mock_llm.calls[calls_before:]
        assert not any("presentation outline generator" in s for s, _ in new_calls)
        deck = await services.decks.get(first.deck_id)
        assert len(deck.slides) == len(Outline.model_validate(first.outline).slides)

    @pytest.mark.asyncio
    async def test_bus_outage_does_not_fail_the_job(self, services):
        class BrokenBus(InMemoryEventBus):
            async def publish(self, channel, event):
                raise EventBusError("redis down")

        job = await _create_job(services)

        await _pipeline(services, bus=BrokenBus()).run(job.id)

        assert (await services.jobs.get(job.id)).status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_fail_from_outside_a_run(self, services):
        job = await _create_job(services)
        events = await _listen(services, job.id)

        await services.pipeline.fail(job.id, ErrorCode.MAX_RETRIES, "gave up")

        failed = await services.jobs.get(job.id)
        assert failed.error_code == "MAX_RETRIES"
        assert events.events[0].data.error.message == "gave up"

    @pytest.mark.asyncio
    async def test_short_growth_summary_with_three_slides(self, services):
        job = await _create_job(
            services, input_text="Q1 growth 45%, Q2 growth 60%, Q3 launch", num_slides=3
        )
        events = await _listen(services, job.id)

        await services.pipeline.run(job.id)

        done = await services.jobs.get(job.id)
        assert done.status == JobStatus.COMPLETED
        assert done.progress == 100
        slide_events = events.of(StreamEventType.SLIDE_CONTENT)
        assert [e.data.slide_index for e in slide_events] == [0, 1, 2]
        assert events.types[-1] == StreamEventType.GENERATION_COMPLETE
        assert events.events[-1].data.progress == 100
        deck = await services.decks.get(done.deck_id)
        assert len(deck.slides) == 3

    @pytest.mark.asyncio
    async def test_redelivered_job_does_not_run_twice(self, services):
        job = await _create_job(services, num_slides=4)
        events = await _listen(services, job.id)
        pipeline = _pipeline(services, llm=MockLLMClient(chunk_delay=0.005))

        first = asyncio.create_task(pipeline.run(job.id))
        while (await services.jobs.get(job.id)).status != JobStatus.RUNNING:
            await asyncio.sleep(0.001)
        await pipeline.run(job.id)
        await first

        done = await services.jobs.get(job.id)
        assert done.status == JobStatus.COMPLETED
        assert done.attempts == 1
        deck = await services.decks.get(done.deck_id)
        assert len(deck.slides) == len(Outline.model_validate(done.outline).slides) == 4
        assert len(events.of(StreamEventType.GENERATION_STARTED)) == 1
        assert len(events.of(StreamEventType.GENERATION_COMPLETE)) == 1

    @pytest.mark.asyncio
    async def test_released_job_can_be_run_again(self, services):
        job = await _create_job(services)
        # A run that crashed after claiming the job.
        await services.jobs.mark_running(job.id)

        await services.pipeline.run(job.id)
        assert (await services.jobs.get(job.id)).status == JobStatus.RUNNING

        await services.pipeline.release(job.id)
        await services.pipeline.run(job.id)

        done = await services.jobs.get(job.id)
        assert done.status == JobStatus.COMPLETED
        assert done.attempts == 2


@pytest_asyncio.fixture
async def completed_job(services):
    job = await _create_job(services)
    await services.pipeline.run(job.id)
    return await services.jobs.get(job.id)


class TestCompletedDeck:
    @pytest.mark.asyncio
    async def test_deck_metadata_follows_request(self, services, completed_job):
        deck = await services.decks.get(completed_job.deck_id)
        assert deck.workspace_id == WORKSPACE_A
        assert deck.theme_id == "nordic_light"
        assert deck.language == "no"
        assert deck.title == completed_job.outline["title"]

    @pytest.mark.asyncio
    async def test_first_slide_is_the_cover(self, services, completed_job):
        deck = await services.decks.get(completed_job.deck_id)
        assert deck.slides[0]["type"] == "cover"
