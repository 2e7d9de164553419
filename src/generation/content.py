"""Slide content generation: one streamed model call per outline slide."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from src.agent.llm import JSONModel, LLMResponseError
from src.generation.analysis import classify_slide
from src.generation.draft import SlideDraft
from src.generation.layout import assign_layout_variant
from src.generation.prompts import content_prompt
from src.generation.retry import RetryPolicy
from src.schemas.block import BlockKind, block_text
from src.schemas.deck import GenerationRequest
from src.schemas.slide import OutlineSlide, SlideType
from src.streaming.events import StreamEventType

log = structlog.get_logger(__name__)

BlockSink = Callable[[StreamEventType, dict[str, Any]], Awaitable[None]]

_KINDS = frozenset(k.value for k in BlockKind)


class BlockStreamTracker:
    """Turns successive partial parses of a slide into block events.

    A block is announced (``block_started``) once its kind is known, grows
    through ``block_delta`` events carrying only the new characters, and is
    closed (``block_complete``) when the next block appears or the slide
    is done.
    """

    def __init__(self, sink: BlockSink) -> None:
        self._sink = sink
        self._sent: list[str] = []
        self._kinds: list[str] = []
        self._closed = 0

    def reset(self) -> None:
        self._sent.clear()
        self._kinds.clear()
        self._closed = 0

    async def _emit(
        self, event_type: StreamEventType, index: int, delta: str | None = None
    ) -> None:
        data: dict[str, Any] = {"block_index": index, "block_kind": self._kinds[index]}
        if delta is not None:
            data["delta"] = delta
        await self._sink(event_type, data)

    async def update(self, partial: dict[str, Any]) -> None:
        raw_blocks = partial.get("blocks")
        if not isinstance(raw_blocks, list):
            return
        blocks = [b for b in raw_blocks if isinstance(b, dict)]

        for index, block in enumerate(blocks):
            if index < self._closed:
                continue
            if index >= len(self._sent):
                if block.get("kind") not in _KINDS:
                    return
                self._sent.append("")
                self._kinds.append(str(block["kind"]))
                await self._emit(StreamEventType.BLOCK_STARTED, index)

            text = block_text(block)
            sent = self._sent[index]
            if len(text) > len(sent) and text.startswith(sent):
                self._sent[index] = text
                await self._emit(StreamEventType.BLOCK_DELTA, index, text[len(sent):])

            if index < len(blocks) - 1:
                await self._emit(StreamEventType.BLOCK_COMPLETE, index)
                self._closed = index + 1

    async def finish(self) -> None:
        for index in range(self._closed, len(self._sent)):
            await self._emit(StreamEventType.BLOCK_COMPLETE, index)
        self._closed = len(self._sent)


class ContentGenerator:
    def __init__(self, llm: JSONModel, policy: RetryPolicy) -> None:
        self._llm = llm
        self._policy = policy

    @staticmethod
    def resolve_type(outline_slide: OutlineSlide) -> SlideType:
        """The outline's suggestion wins; the classifier only fills a gap."""
        if outline_slide.suggested_type is not None:
            return outline_slide.suggested_type
        return classify_slide(outline_slide) or SlideType.BULLETS

    async def generate(
        self,
        outline_slide: OutlineSlide,
        request: GenerationRequest,
        *,
        index: int,
        total: int,
        on_block: BlockSink | None = None,
    ) -> SlideDraft:
        """Generate one slide's draft.

        The draft is not validated here; the repair loop owns that.

        Raises:
            LLMError: when every attempt failed
            TimeoutError: when the last attempt timed out
        """
        slide_type = self.resolve_type(outline_slide)
        system, user = content_prompt(outline_slide, slide_type, request, index=index, total=total)
        tracker = BlockStreamTracker(on_block) if on_block is not None else None

        async def on_retry(attempt: int, error: BaseException) -> None:
            nonlocal user
            if isinstance(error, LLMResponseError):
                user = (
                    f"{user}\n\nYour previous answer was rejected ({str(error)[:300]}). "
                    "Return one JSON object with a non-empty \"blocks\" array."
                )
            log.info("content.retry", slide_index=index, attempt=attempt)

        async def attempt(_: int) -> SlideDraft:
            if tracker is None:
                raw = await self._llm.generate_json(system=system, user=user)
            else:
                tracker.reset()
                raw = await self._llm.stream_json(
                    system=system, user=user, on_partial=tracker.update
                )
            draft = SlideDraft.from_raw(raw, fallback_type=slide_type)
            if not draft.blocks:
                raise LLMResponseError("Slide answer contained no blocks")
            if tracker is not None:
                await tracker.finish()
            return draft

        draft = await self._policy.run(attempt, on_retry=on_retry)
        draft.type = slide_type
        draft.layout_variant = assign_layout_variant(slide_type, draft.blocks)
        log.debug(
            "content.generated",
            slide_index=index,
            slide_type=slide_type.value,
            blocks=len(draft.blocks),
        )
        return draft
