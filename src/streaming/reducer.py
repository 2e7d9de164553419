"""Client-side view of a generation, rebuilt from events or from a poll.

``reduce(view, event)`` is a pure function with one handler per event
type, so a consumer never switches on raw type strings. The same view can
be rebuilt from the poll endpoint alone (``view_from_poll``), which is what
makes polling a full substitute for the stream.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Any

from src.streaming.events import StreamEvent, StreamEventType


@dataclass(frozen=True)
class GenerationView:
    generation_id: str
    status: str = "queued"
    stage: str | None = None
    progress: int = 0
    connected: bool = False
    title: str | None = None
    total_slides: int | None = None
    requested_slides: int | None = None
    deck_id: str | None = None
    view_url: str | None = None
    slides: dict[int, dict[str, Any]] = field(default_factory=dict)
    flagged_slides: frozenset[int] = frozenset()
    current_slide: int | None = None
    # Text streamed so far per (slide index, block index); cleared when the slide lands.
    drafts: dict[tuple[int, int], str] = field(default_factory=dict)
    total_images: int = 0
    images_done: int = 0
    images_failed: int = 0
    error_code: str | None = None
    error_message: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in ("completed", "failed")

    def ordered_slides(self) -> list[dict[str, Any]]:
        return [self.slides[i] for i in sorted(self.slides)]


Handler = Callable[[GenerationView, StreamEvent], GenerationView]


def _progress(view: GenerationView, event: StreamEvent) -> int:
    if event.data.progress is None:
        return view.progress
    return max(view.progress, event.data.progress)


def _deck_id(view: GenerationView, event: StreamEvent) -> str | None:
    return event.data.deck_id or view.deck_id


def _on_connected(view: GenerationView, event: StreamEvent) -> GenerationView:
    return replace(view, connected=True)


def _on_started(view: GenerationView, event: StreamEvent) -> GenerationView:
    return replace(view, status="running", stage="outline", progress=_progress(view, event))


def _on_outline(view: GenerationView, event: StreamEvent) -> GenerationView:
    return replace(
        view,
        status="running",
        stage="content",
        progress=_progress(view, event),
        title=event.data.title or view.title,
        total_slides=event.data.total_slides,
        requested_slides=event.data.requested_slides,
    )


def _on_deck_created(view: GenerationView, event: StreamEvent) -> GenerationView:
    return replace(
        view,
        deck_id=_deck_id(view, event),
        view_url=event.data.view_url or view.view_url,
    )


def _on_slide_started(view: GenerationView, event: StreamEvent) -> GenerationView:
    return replace(view, current_slide=event.data.slide_index, progress=_progress(view, event))


def _on_block_started(view: GenerationView, event: StreamEvent) -> GenerationView:
    if event.data.slide_index is None or event.data.block_index is None:
        return view
    key = (event.data.slide_index, event.data.block_index)
    return replace(view, drafts={**view.drafts, key: ""})


def _on_block_delta(view: GenerationView, event: StreamEvent) -> GenerationView:
    if event.data.slide_index is None or event.data.block_index is None:
        return view
    key = (event.data.slide_index, event.data.block_index)
    text = view.drafts.get(key, "") + (event.data.delta or "")
    return replace(view, drafts={**view.drafts, key: text})


def _on_block_complete(view: GenerationView, event: StreamEvent) -> GenerationView:
    return view


def _on_slide_content(view: GenerationView, event: StreamEvent) -> GenerationView:
    index = event.data.slide_index
    if index is None or event.data.slide is None:
        return replace(view, progress=_progress(view, event))
    drafts = {k: v for k, v in view.drafts.items() if k[0] != index}
    flagged = set(view.flagged_slides)
    if event.data.slide.get("flagged"):
        flagged.add(index)
    return replace(
        view,
        slides={**view.slides, index: event.data.slide},
        drafts=drafts,
        flagged_slides=frozenset(flagged),
        progress=_progress(view, event),
        deck_id=_deck_id(view, event),
    )


def _on_slide_validated(view: GenerationView, event: StreamEvent) -> GenerationView:
    if event.data.slide_index is None or not event.data.flagged:
        return view
    return replace(view, flagged_slides=view.flagged_slides | {event.data.slide_index})


def _on_image_started(view: GenerationView, event: StreamEvent) -> GenerationView:
    return replace(
        view,
        stage="images",
        total_images=event.data.total_images or 0,
        progress=_progress(view, event),
    )


def _on_image_progress(view: GenerationView, event: StreamEvent) -> GenerationView:
    return replace(view, progress=_progress(view, event))


def _on_image_complete(view: GenerationView, event: StreamEvent) -> GenerationView:
    failed = view.images_failed + (0 if event.data.success else 1)
    return replace(
        view,
        images_done=view.images_done + 1,
        images_failed=failed,
        progress=_progress(view, event),
    )


def _on_complete(view: GenerationView, event: StreamEvent) -> GenerationView:
    return replace(
        view,
        status="completed",
        stage="complete",
        progress=100,
        current_slide=None,
        drafts={},
        deck_id=_deck_id(view, event),
        view_url=event.data.view_url or view.view_url,
    )


def _on_failed(view: GenerationView, event: StreamEvent) -> GenerationView:
    error = event.data.error
    return replace(
        view,
        status="failed",
        stage="failed",
        current_slide=None,
        drafts={},
        deck_id=_deck_id(view, event),
        error_code=error.code if error else "INTERNAL_ERROR",
        error_message=error.message if error else None,
    )


HANDLERS: dict[StreamEventType, Handler] = {
    StreamEventType.CONNECTED: _on_connected,
    StreamEventType.GENERATION_STARTED: _on_started,
    StreamEventType.OUTLINE_COMPLETE: _on_outline,
    StreamEventType.DECK_CREATED: _on_deck_created,
    StreamEventType.SLIDE_STARTED: _on_slide_started,
    StreamEventType.BLOCK_STARTED: _on_block_started,
    StreamEventType.BLOCK_DELTA: _on_block_delta,
    StreamEventType.BLOCK_COMPLETE: _on_block_complete,
    StreamEventType.SLIDE_CONTENT: _on_slide_content,
    StreamEventType.SLIDE_VALIDATED: _on_slide_validated,
    StreamEventType.GENERATION_COMPLETE: _on_complete,
    StreamEventType.GENERATION_FAILED: _on_failed,
    StreamEventType.IMAGE_STARTED: _on_image_started,
    StreamEventType.IMAGE_PROGRESS: _on_image_progress,
    StreamEventType.IMAGE_COMPLETE: _on_image_complete,
}


def reduce(view: GenerationView, event: StreamEvent) -> GenerationView:
    """Apply one event. Events for other generations and late events are ignored."""
    if event.generation_id != view.generation_id:
        return view
    if view.is_terminal:
        return view
    return HANDLERS[event.type](view, event)


_POLL_STAGES = {"completed": "complete", "failed": "failed"}


def view_from_poll(
    payload: dict[str, Any], previous: GenerationView | None = None
) -> GenerationView:
    """Rebuild a view from a ``GET /generations/{id}`` body.

    Slides already received over the stream are kept; progress never moves
    backwards.
    """
    generation_id = payload["generationId"]
    base = previous or GenerationView(generation_id=generation_id)
    error = payload.get("error") or {}
    status = payload.get("status", base.status)
    return replace(
        base,
        status=status,
        progress=max(base.progress, int(payload.get("progress") or 0)),
        deck_id=payload.get("deckId") or base.deck_id,
        view_url=payload.get("viewUrl") or base.view_url,
        error_code=error.get("code", base.error_code),
        error_message=error.get("message", base.error_message),
        stage=_POLL_STAGES.get(status, base.stage),
    )
