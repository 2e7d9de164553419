"""Slide drafts: model output before it is trusted.

Model and repair calls return loosely shaped JSON. Drafts keep the blocks
as plain dicts so validation can report every problem (oversized text,
unknown kinds, missing fields) and repair can rewrite them, before
``finalize_slide`` turns the result into a schema-valid ``Slide``.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any

import structlog
from pydantic import ValidationError

from src.schemas.block import BlockKind, parse_block
from src.schemas.slide import Slide, SlideType, Violation
from src.schemas.text import truncate_at_word_boundary

log = structlog.get_logger(__name__)

_MAX_COERCION_PASSES = 3


@dataclass
class SlideDraft:
    type: SlideType
    blocks: list[dict[str, Any]] = field(default_factory=list)
    layout_variant: str = "default"

    @classmethod
    def from_raw(cls, raw: dict[str, Any], *, fallback_type: SlideType) -> SlideDraft:
        """Build a draft from a model's ``{"type", "blocks"}`` object.

        Unknown slide types fall back to ``fallback_type``; anything in
        ``blocks`` that is not an object is discarded.
        """
        raw_type = raw.get("type")
        try:
            slide_type = SlideType(raw_type) if raw_type else fallback_type
        except ValueError:
            slide_type = fallback_type
        blocks = [dict(b) for b in raw.get("blocks") or [] if isinstance(b, dict)]
        return cls(type=slide_type, blocks=blocks)

    @classmethod
    def from_slide(cls, slide: Slide) -> SlideDraft:
        return cls(
            type=slide.type,
            blocks=[b.model_dump(mode="json", exclude_none=True) for b in slide.blocks],
            layout_variant=slide.layout_variant,
        )

    def copy(self) -> SlideDraft:
        return SlideDraft(
            type=self.type, blocks=copy.deepcopy(self.blocks), layout_variant=self.layout_variant
        )

    def title(self) -> str:
        for block in self.blocks:
            if block.get("kind") == BlockKind.TITLE and isinstance(block.get("text"), str):
                return block["text"]
        return ""

    def to_wire(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "layoutVariant": self.layout_variant,
            "blocks": self.blocks,
        }


# ------------------------------------------------------------------ #
# Finalization
# ------------------------------------------------------------------ #


def _container(block: dict[str, Any], loc: tuple[Any, ...]) -> tuple[Any, Any] | None:
    """Return ``(parent, key)`` addressing ``loc`` inside ``block``."""
    node: Any = block
    for part in loc[:-1]:
        try:
            node = node[part]
        except (KeyError, IndexError, TypeError):
            return None
    return node, loc[-1]


def _loc_key(error: dict[str, Any]) -> list[tuple[int, int, str]]:
    return [(0, p, "") if isinstance(p, int) else (1, 0, str(p)) for p in error.get("loc") or ()]


def _coerce(block: dict[str, Any], errors: list[dict[str, Any]]) -> bool:
    """Fix what can be fixed deterministically. Returns False to drop the block."""
    for error in errors:
        loc = tuple(error.get("loc") or ())
        ctx = error.get("ctx") or {}
        kind = error.get("type")
        target = _container(block, loc) if loc else None
        if target is None:
            return False
        parent, key = target

        if kind == "string_too_long":
            parent[key] = truncate_at_word_boundary(str(parent[key]), int(ctx["max_length"]))
        elif kind == "too_long":
            parent[key] = list(parent[key])[: int(ctx["max_length"])]
        elif kind == "less_than_equal":
            parent[key] = ctx["le"]
        elif kind == "greater_than_equal":
            parent[key] = ctx["ge"]
        elif kind == "string_too_short" and isinstance(parent, list):
            # An empty bullet or cell; drop the entry, keep the block.
            del parent[key]
        else:
            return False
    return True


def coerce_block(raw: dict[str, Any]) -> dict[str, Any] | None:
    """Return a copy of ``raw`` that satisfies its kind's schema, or None.

    Overlong strings are truncated at a word boundary, overlong lists are
    cut, out-of-range numbers are clamped. Blocks with an unknown kind or a
    missing required field cannot be fixed and yield None.
    """
    block = copy.deepcopy(raw)
    for _ in range(_MAX_COERCION_PASSES):
        try:
            parsed = parse_block(block)
        except ValidationError as exc:
            # Apply deepest locations first so list deletions keep indices valid.
            errors = sorted(exc.errors(include_url=False), key=_loc_key, reverse=True)
            if not _coerce(block, errors):
                return None
            continue
        except ValueError:
            return None
        return parsed.model_dump(mode="json", exclude_none=True)
    return None


def finalize_slide(
    draft: SlideDraft,
    *,
    violations: list[Violation] | None = None,
    flagged: bool = False,
    fallback_title: str = "",
) -> Slide:
    """Turn a draft into a schema-valid slide.

    Every block goes through ``coerce_block``; blocks that cannot be fixed
    are dropped and the slide is flagged. A slide left without blocks gets
    a title block built from ``fallback_title``.
    """
    blocks: list[dict[str, Any]] = []
    dropped = 0
    for raw in draft.blocks:
        fixed = coerce_block(raw)
        if fixed is None:
            dropped += 1
            continue
        blocks.append(fixed)

    if dropped:
        log.warning("draft.blocks_dropped", slide_type=draft.type.value, dropped=dropped)
        flagged = True

    if not blocks:
        title = truncate_at_word_boundary(fallback_title.strip() or "Slide", 120)
        blocks.append({"kind": BlockKind.TITLE.value, "text": title})
        flagged = True

    return Slide(
        type=draft.type,
        layout_variant=draft.layout_variant,
        blocks=blocks,
        violations=list(violations or []),
        flagged=flagged,
    )
