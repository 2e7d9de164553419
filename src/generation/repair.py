"""Validate-and-repair loop for generated slides.

A draft is validated, then repaired by the model at most
``max_attempts`` times:

- ``split`` violations (too many bullets, items or table rows) ask the
  model to turn the slide into 2-4 focused slides
- everything else repairable sends only the offending blocks back for a
  rewrite, merged into the draft by block index

Whatever is left after the last attempt is truncated deterministically.
A slide that still violates its limits is kept with ``flagged=True``.
Repair never fails a job: model errors here only cost the attempt.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

import structlog

from src.agent.llm import JSONModel, LLMError
from src.generation.draft import SlideDraft, finalize_slide
from src.generation.layout import assign_layout_variant
from src.generation.prompts import repair_prompt, split_prompt
from src.generation.retry import RetryPolicy
from src.generation.validation import (
    ITEM_FIELDS,
    REPAIRABLE_ACTIONS,
    needs_repair,
    offending_blocks,
    should_split,
    validate_slide,
)
from src.schemas.block import BlockKind
from src.schemas.slide import Slide, SlideType, Violation, ViolationAction
from src.schemas.text import truncate_at_word_boundary

log = structlog.get_logger(__name__)

MIN_SPLIT_SLIDES = 2
MAX_SPLIT_SLIDES = 4

_INDEXED_FIELD = re.compile(r"^(\w+)\[(\d+)\]$")


@dataclass
class RepairOutcome:
    """Result of repairing one draft.

    ``slides`` holds one slide, or 2-4 when the draft was split.
    """

    slides: list[Slide] = field(default_factory=list)
    attempts: int = 0
    split: bool = False

    @property
    def flagged(self) -> bool:
        return any(s.flagged for s in self.slides)

    @property
    def violations(self) -> list[Violation]:
        return [v for s in self.slides for v in s.violations]


def _repairable_count(violations: list[Violation]) -> int:
    return sum(1 for v in violations if v.action in REPAIRABLE_ACTIONS)


# ------------------------------------------------------------------ #
# Deterministic truncation
# ------------------------------------------------------------------ #


def _text_target(
    slide_type: SlideType, block: dict[str, Any], violation: Violation
) -> tuple[Any, Any] | None:
    """Return ``(container, key)`` holding the text a shorten violation names."""
    indexed = _INDEXED_FIELD.match(violation.field)
    if indexed is None:
        if violation.field in ("title", "subtitle", "text"):
            return block, "text"
        return None

    name, position = indexed.group(1), int(indexed.group(2))
    if name == "columns":
        return block, "text"
    if block.get("kind") == BlockKind.BULLETS:
        items = block.get("items")
        if isinstance(items, list) and position < len(items):
            return items, position
        return None
    if name == "items" and slide_type in ITEM_FIELDS:
        return block, ITEM_FIELDS[slide_type][1]
    return None


def truncate_violations(draft: SlideDraft, violations: list[Violation]) -> SlideDraft:
    """Cut overlong text and surplus table columns down to their limits.

    Only ``shorten`` violations with a known limit are touched; the draft is
    copied, never modified.
    """
    fixed = draft.copy()
    for violation in violations:
        if violation.action != ViolationAction.SHORTEN or violation.limit is None:
            continue
        if violation.block_index is None or violation.block_index >= len(fixed.blocks):
            continue
        block = fixed.blocks[violation.block_index]

        if violation.field == "tableColumns":
            limit = violation.limit
            if isinstance(block.get("columns"), list):
                block["columns"] = block["columns"][:limit]
            if isinstance(block.get("rows"), list):
                block["rows"] = [r[:limit] for r in block["rows"] if isinstance(r, list)]
            continue

        target = _text_target(fixed.type, block, violation)
        if target is None:
            continue
        container, key = target
        value = container[key] if isinstance(container, list) else container.get(key)
        if isinstance(value, str):
            container[key] = truncate_at_word_boundary(value, violation.limit)
    return fixed


# ------------------------------------------------------------------ #
# Repairer
# ------------------------------------------------------------------ #


class SlideRepairer:
    def __init__(self, llm: JSONModel, policy: RetryPolicy, *, max_attempts: int = 2) -> None:
        self._llm = llm
        self._policy = policy
        self._max_attempts = max_attempts

    async def validate_and_repair(
        self,
        draft: SlideDraft,
        *,
        slide_index: int | None = None,
        fallback_title: str = "",
    ) -> RepairOutcome:
        """Validate ``draft`` and repair it until clean or out of attempts."""
        current = draft.copy()
        violations = validate_slide(current)
        attempts = 0

        while needs_repair(violations) and attempts < self._max_attempts:
            attempts += 1

            if should_split(violations):
                parts = await self._split(current, violations, slide_index=slide_index)
                if parts is not None:
                    slides = [self.finish(p, fallback_title=fallback_title) for p in parts]
                    log.info(
                        "repair.split",
                        slide_index=slide_index,
                        parts=len(slides),
                        attempts=attempts,
                    )
                    return RepairOutcome(slides=slides, attempts=attempts, split=True)
                continue

            repaired = await self._rewrite(current, violations, slide_index=slide_index)
            if repaired is None:
                continue
            repaired_violations = validate_slide(repaired)
            if _repairable_count(repaired_violations) > _repairable_count(violations):
                log.info("repair.rejected_worse", slide_index=slide_index, attempt=attempts)
                continue
            current, violations = repaired, repaired_violations

        slide = self.finish(current, fallback_title=fallback_title)
        if slide.flagged:
            log.warning(
                "repair.flagged",
                slide_index=slide_index,
                attempts=attempts,
                violations=len(slide.violations),
            )
        return RepairOutcome(slides=[slide], attempts=attempts)

    @staticmethod
    def finish(draft: SlideDraft, *, fallback_title: str = "") -> Slide:
        """Truncate, coerce into a valid slide and record what is still wrong."""
        truncated = truncate_violations(draft, validate_slide(draft))
        slide = finalize_slide(truncated, fallback_title=fallback_title)
        remaining = validate_slide(SlideDraft.from_slide(slide))
        return slide.model_copy(
            update={
                "violations": remaining,
                "flagged": slide.flagged or needs_repair(remaining),
            }
        )

    async def _call(self, system: str, user: str) -> dict[str, Any]:
        return await self._policy.run(
            lambda _: self._llm.generate_json(system=system, user=user)
        )

    async def _rewrite(
        self,
        draft: SlideDraft,
        violations: list[Violation],
        *,
        slide_index: int | None,
    ) -> SlideDraft | None:
        indices = [i for i in offending_blocks(violations) if i < len(draft.blocks)]
        if not indices:
            return None

        payload = {str(i): draft.blocks[i] for i in indices}
        system, user = repair_prompt(draft.type, payload, violations)
        try:
            raw = await self._call(system, user)
        except (LLMError, TimeoutError) as exc:
            log.warning("repair.call_failed", slide_index=slide_index, error=str(exc))
            return None

        answer = raw.get("blocks")
        if not isinstance(answer, dict):
            log.warning("repair.bad_answer", slide_index=slide_index)
            return None

        repaired = draft.copy()
        replaced = 0
        for key, block in answer.items():
            if key not in payload or not isinstance(block, dict):
                continue
            index = int(key)
            original_kind = repaired.blocks[index].get("kind")
            if block.get("kind", original_kind) != original_kind:
                continue
            repaired.blocks[index] = {**block, "kind": original_kind}
            replaced += 1

        log.debug("repair.rewritten", slide_index=slide_index, blocks=replaced)
        return repaired if replaced else None

    async def _split(
        self,
        draft: SlideDraft,
        violations: list[Violation],
        *,
        slide_index: int | None,
    ) -> list[SlideDraft] | None:
        system, user = split_prompt(draft.title(), draft.to_wire(), violations)
        try:
            raw = await self._call(system, user)
        except (LLMError, TimeoutError) as exc:
            log.warning("repair.split_failed", slide_index=slide_index, error=str(exc))
            return None

        parts = [
            SlideDraft.from_raw(part, fallback_type=draft.type)
            for part in raw.get("slides") or []
            if isinstance(part, dict)
        ]
        parts = [p for p in parts if p.blocks]
        if len(parts) < MIN_SPLIT_SLIDES:
            log.warning("repair.split_too_small", slide_index=slide_index, parts=len(parts))
            return None

        parts = parts[:MAX_SPLIT_SLIDES]
        for part in parts:
            part.layout_variant = assign_layout_variant(part.type, part.blocks)
        return parts
