"""Stream events published by the generation pipeline.

The vocabulary is closed: ``StreamEventType`` lists every event a client
can receive and ``StreamEvent`` is the only envelope. On the wire an event
is camelCase JSON:

    {"type": "slide_content", "generationId": "...", "timestamp": 1717000000000,
     "data": {"slideIndex": 2, "progress": 47, "slide": {...}, "deckId": "..."}}

and over SSE it is framed as::

    event: slide_content
    data: {...}

Only the two terminal types are ever reconstructed after the fact (from
the job record); everything else is best-effort and may be missed.
"""

from __future__ import annotations

import json
import time
from enum import StrEnum
from typing import Any

from pydantic import Field

from src.schemas.base import CamelModel, FrozenCamelModel


class StreamEventType(StrEnum):
    CONNECTED = "connected"
    GENERATION_STARTED = "generation_started"
    OUTLINE_COMPLETE = "outline_complete"
    DECK_CREATED = "deck_created"
    SLIDE_STARTED = "slide_started"
    BLOCK_STARTED = "block_started"
    BLOCK_DELTA = "block_delta"
    BLOCK_COMPLETE = "block_complete"
    SLIDE_CONTENT = "slide_content"
    SLIDE_VALIDATED = "slide_validated"
    GENERATION_COMPLETE = "generation_complete"
    GENERATION_FAILED = "generation_failed"
    IMAGE_STARTED = "image_started"
    IMAGE_PROGRESS = "image_progress"
    IMAGE_COMPLETE = "image_complete"


TERMINAL_EVENT_TYPES = frozenset(
    {StreamEventType.GENERATION_COMPLETE, StreamEventType.GENERATION_FAILED}
)

# Events a slow subscriber can lose without its view becoming wrong:
# the next slide_content / image_complete carries the full state.
DROPPABLE_EVENT_TYPES = frozenset({StreamEventType.BLOCK_DELTA, StreamEventType.IMAGE_PROGRESS})


class StreamError(FrozenCamelModel):
    code: str
    message: str


class StreamEventData(CamelModel):
    """Payload fields; each event type fills the subset it needs."""

    stage: str | None = None
    status: str | None = None
    progress: int | None = None
    slide_index: int | None = None
    total_slides: int | None = None
    requested_slides: int | None = None
    actual_slides: int | None = None
    title: str | None = None
    slide: dict[str, Any] | None = None
    outline: dict[str, Any] | None = None
    flagged: bool | None = None
    violations: list[dict[str, Any]] | None = None
    deck_id: str | None = None
    view_url: str | None = None
    error: StreamError | None = None
    block_index: int | None = None
    block_kind: str | None = None
    delta: str | None = None
    total_images: int | None = None
    image_index: int | None = None
    image_url: str | None = None
    success: bool | None = None


def now_ms() -> int:
    return int(time.time() * 1000)


class StreamEvent(CamelModel):
    type: StreamEventType
    generation_id: str
    timestamp_ms: int = Field(default_factory=now_ms, alias="timestamp")
    data: StreamEventData = Field(default_factory=StreamEventData)

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENT_TYPES

    def to_json(self) -> str:
        return json.dumps(self.to_wire(), ensure_ascii=False, separators=(",", ":"))

    def to_sse(self) -> str:
        return f"event: {self.type.value}\ndata: {self.to_json()}\n\n"

    @classmethod
    def from_json(cls, raw: str | bytes) -> StreamEvent:
        """Parse a published event (raises pydantic.ValidationError on garbage)."""
        return cls.model_validate_json(raw)


def make_event(event_type: StreamEventType, generation_id: str, **data: Any) -> StreamEvent:
    """Build an event; ``data`` takes snake_case field names of ``StreamEventData``."""
    return StreamEvent(
        type=event_type,
        generation_id=generation_id,
        data=StreamEventData(**data),
    )


def completed_event(
    generation_id: str, *, deck_id: str | None, view_url: str | None
) -> StreamEvent:
    return make_event(
        StreamEventType.GENERATION_COMPLETE,
        generation_id,
        stage="complete",
        status="completed",
        progress=100,
        deck_id=deck_id,
        view_url=view_url,
    )


def failed_event(
    generation_id: str,
    *,
    code: str,
    message: str,
    progress: int | None = None,
    deck_id: str | None = None,
) -> StreamEvent:
    return make_event(
        StreamEventType.GENERATION_FAILED,
        generation_id,
        stage="failed",
        status="failed",
        progress=progress,
        deck_id=deck_id,
        error=StreamError(code=code, message=message),
    )
