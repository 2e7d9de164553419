"""Tests for the in-memory job and deck stores.

The SQL stores implement the same contract; they are exercised against
PostgreSQL in tests/integration/test_sql_stores.py.
"""

import pytest

from src.models.generation import JobStatus
from src.services.stores import InMemoryDeckStore, InMemoryJobStore, view_url_for

REQUEST = {"inputText": "Kvartalsrapport", "numSlides": 5}


@pytest.fixture
def jobs():
    return InMemoryJobStore()


@pytest.fixture
def decks():
    return InMemoryDeckStore()


class TestJobStore:
    @pytest.mark.asyncio
    async def test_create_queues_a_job(self, jobs):
        job, created = await jobs.create("ws-1", REQUEST)

        assert created
        assert job.status == JobStatus.QUEUED
        assert job.progress == 0
        assert job.attempts == 0
        assert (await jobs.get(job.id)).request == REQUEST

    @pytest.mark.asyncio
    async def test_idempotency_key_is_scoped_to_workspace(self, jobs):
        first, _ = await jobs.create("ws-1", REQUEST, idempotency_key="k")
        replay, created = await jobs.create("ws-1", {"inputText": "x"}, idempotency_key="k")
        other, other_created = await jobs.create("ws-2", REQUEST, idempotency_key="k")

        assert not created
        assert replay.id == first.id
        assert replay.request == REQUEST
        assert other_created
        assert other.id != first.id

    @pytest.mark.asyncio
    async def test_records_are_copies(self, jobs):
        job, _ = await jobs.create("ws-1", REQUEST)
        job.progress = 99

        assert (await jobs.get(job.id)).progress == 0

    @pytest.mark.asyncio
    async def test_list_is_scoped_and_limited(self, jobs):
        for _ in range(3):
            await jobs.create("ws-1", REQUEST)
        await jobs.create("ws-2", REQUEST)

        assert len(await jobs.list_for_workspace("ws-1")) == 3
        assert len(await jobs.list_for_workspace("ws-1", limit=2)) == 2
        assert all(j.workspace_id == "ws-2" for j in await jobs.list_for_workspace("ws-2"))

    @pytest.mark.asyncio
    async def test_mark_running_claims_once(self, jobs):
        job, _ = await jobs.create("ws-1", REQUEST)

        first = await jobs.mark_running(job.id)
        second = await jobs.mark_running(job.id)

        assert first.status == JobStatus.RUNNING
        assert first.attempts == 1
        assert second is None
        assert (await jobs.get(job.id)).attempts == 1

    @pytest.mark.asyncio
    async def test_release_makes_job_claimable_again(self, jobs):
        job, _ = await jobs.create("ws-1", REQUEST)
        first = await jobs.mark_running(job.id)

        assert await jobs.release(job.id)
        assert (await jobs.get(job.id)).status == JobStatus.QUEUED

        second = await jobs.mark_running(job.id)
        assert second.attempts == 2
        assert second.started_at == first.started_at

    @pytest.mark.asyncio
    async def test_release_ignores_jobs_that_are_not_running(self, jobs):
        queued, _ = await jobs.create("ws-1", REQUEST)
        done, _ = await jobs.create("ws-1", REQUEST)
        await jobs.mark_running(done.id)
        await jobs.fail(done.id, "INTERNAL", "boom")

        assert not await jobs.release(queued.id)
        assert not await jobs.release(done.id)
        assert not await jobs.release("missing")
        assert (await jobs.get(done.id)).status == JobStatus.FAILED

    @pytest.mark.asyncio
    async def test_progress_only_moves_forward(self, jobs):
        job, _ = await jobs.create("ws-1", REQUEST)
        await jobs.update_progress(job.id, 40)
        await jobs.update_progress(job.id, 30)

        assert (await jobs.get(job.id)).progress == 40

    @pytest.mark.asyncio
    async def test_complete(self, jobs):
        job, _ = await jobs.create("ws-1", REQUEST)
        await jobs.set_outline(job.id, {"title": "T", "slides": []})
        await jobs.set_deck(job.id, "deck-1")
        await jobs.complete(job.id)

        done = await jobs.get(job.id)
        assert done.status == JobStatus.COMPLETED
        assert done.progress == 100
        assert done.completed_at is not None
        assert done.deck_id == "deck-1"
        assert done.is_terminal

    @pytest.mark.asyncio
    async def test_terminal_jobs_are_frozen(self, jobs):
        job, _ = await jobs.create("ws-1", REQUEST)
        await jobs.complete(job.id)

        await jobs.fail(job.id, "INTERNAL", "late failure")
        await jobs.update_progress(job.id, 100)
        assert await jobs.mark_running(job.id) is None

        done = await jobs.get(job.id)
        assert done.status == JobStatus.COMPLETED
        assert done.error_code is None

    @pytest.mark.asyncio
    async def test_fail_records_error(self, jobs):
        job, _ = await jobs.create("ws-1", REQUEST)
        await jobs.fail(job.id, "OUTLINE_FAILED", "no outline")

        failed = await jobs.get(job.id)
        assert failed.status == JobStatus.FAILED
        assert (failed.error_code, failed.error_message) == ("OUTLINE_FAILED", "no outline")

    @pytest.mark.asyncio
    async def test_request_cancel(self, jobs):
        live, _ = await jobs.create("ws-1", REQUEST)
        done, _ = await jobs.create("ws-1", REQUEST)
        await jobs.complete(done.id)

        assert (await jobs.request_cancel(live.id)).cancel_requested
        assert not (await jobs.request_cancel(done.id)).cancel_requested
        assert await jobs.request_cancel("missing") is None


class TestDeckStore:
    @pytest.mark.asyncio
    async def test_slides_append_in_order(self, decks):
        deck = await decks.create("ws-1", title="Plan", theme_id="nordic_light")

        assert await decks.append_slide(deck.id, {"n": 0}) == 0
        assert await decks.append_slide(deck.id, {"n": 1}) == 1

        stored = await decks.get(deck.id)
        assert stored.slides == [{"n": 0}, {"n": 1}]
        assert stored.language == "no"

    @pytest.mark.asyncio
    async def test_replace_and_clear(self, decks):
        deck = await decks.create("ws-1", title="Plan", theme_id="nordic_light")
        await decks.append_slide(deck.id, {"n": 0})

        await decks.replace_slide(deck.id, 0, {"n": "new"})
        assert (await decks.get(deck.id)).slides == [{"n": "new"}]

        await decks.clear_slides(deck.id)
        assert (await decks.get(deck.id)).slides == []

    @pytest.mark.asyncio
    async def test_returned_slide_list_is_a_copy(self, decks):
        deck = await decks.create("ws-1", title="Plan", theme_id="nordic_light")
        snapshot = await decks.get(deck.id)
        snapshot.slides.append({"n": 0})

        assert (await decks.get(deck.id)).slides == []

    @pytest.mark.asyncio
    async def test_missing_deck(self, decks):
        assert await decks.get("missing") is None


def test_view_url_for_strips_trailing_slash():
    assert view_url_for("https://app.example.no/", "d1") == "https://app.example.no/deck/d1"
