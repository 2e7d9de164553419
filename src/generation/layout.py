"""Layout variant assignment.

A variant is picked from the shape of a slide's content (how many bullets,
stats, steps or cards it holds and how long its text is), then adjusted
across the deck so consecutive slides of the same type do not all look
alike: image slides alternate sides, other types avoid repeating the two
most recently used variants.
"""

from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any

from src.schemas.block import BlockKind
from src.schemas.slide import Slide, SlideType

LAYOUT_VARIANTS: dict[SlideType, list[str]] = {
    SlideType.COVER: ["default", "centered", "bottom_aligned"],
    SlideType.AGENDA: ["default", "numbered", "icons"],
    SlideType.SECTION_HEADER: ["default", "large", "subtle"],
    SlideType.BULLETS: ["default", "compact", "expanded", "two_columns"],
    SlideType.TWO_COLUMN_TEXT: ["default", "text_left", "text_right", "equal"],
    SlideType.TEXT_PLUS_IMAGE: ["default", "image_left", "image_right", "image_background"],
    SlideType.DECISIONS_LIST: ["default", "numbered", "icons"],
    SlideType.ACTION_ITEMS_TABLE: ["default", "compact", "detailed"],
    SlideType.SUMMARY_NEXT_STEPS: ["default", "numbered", "timeline"],
    SlideType.QUOTE_CALLOUT: ["default", "large", "subtle", "centered"],
    SlideType.TIMELINE_ROADMAP: ["default", "vertical", "horizontal", "compact"],
    SlideType.NUMBERED_GRID: ["default", "2x2", "3x1", "4x1"],
    SlideType.ICON_CARDS_WITH_IMAGE: ["default", "cards_left", "cards_right", "cards_top"],
    SlideType.SUMMARY_WITH_STATS: ["default", "stats_bottom", "stats_right", "stats_inline"],
    SlideType.HERO_STATS: ["default", "hero_top", "hero_background", "hero_split"],
    SlideType.SPLIT_WITH_CALLOUTS: ["default", "image_left", "image_right"],
    SlideType.PERSON_SPOTLIGHT: ["default", "centered", "side_by_side"],
}

ALTERNATING_TYPES = frozenset(
    {SlideType.TEXT_PLUS_IMAGE, SlideType.SPLIT_WITH_CALLOUTS, SlideType.ICON_CARDS_WITH_IMAGE}
)

OPPOSITE_VARIANTS = {
    "image_left": "image_right",
    "image_right": "image_left",
    "cards_left": "cards_right",
    "cards_right": "cards_left",
    "text_left": "text_right",
    "text_right": "text_left",
}


# ------------------------------------------------------------------ #
# Content shape
# ------------------------------------------------------------------ #


def _of_kind(blocks: list[dict[str, Any]], kind: BlockKind) -> list[dict[str, Any]]:
    return [b for b in blocks if b.get("kind") == kind]


def _first_text(blocks: list[dict[str, Any]]) -> str:
    texts = _of_kind(blocks, BlockKind.TEXT)
    return str(texts[0].get("text") or "") if texts else ""


def _bullets(blocks: list[dict[str, Any]]) -> list[str]:
    lists = _of_kind(blocks, BlockKind.BULLETS)
    return [str(i) for i in lists[0].get("items") or []] if lists else []


def _total_chars(blocks: list[dict[str, Any]]) -> int:
    total = 0
    for block in blocks:
        kind = block.get("kind")
        if kind in (BlockKind.TITLE, BlockKind.TEXT, BlockKind.CALLOUT):
            total += len(str(block.get("text") or ""))
        elif kind == BlockKind.BULLETS:
            total += sum(len(str(i)) for i in block.get("items") or [])
        elif kind == BlockKind.TABLE:
            total += sum(len(str(cell)) for row in block.get("rows") or [] for cell in row)
    return total


def assign_layout_variant(slide_type: SlideType, blocks: list[dict[str, Any]]) -> str:
    """Pick a variant from the content shape alone."""
    total = _total_chars(blocks)
    bullets = _bullets(blocks)
    has_image = bool(_of_kind(blocks, BlockKind.IMAGE))
    long_bullets = bool(bullets) and sum(len(b) for b in bullets) / len(bullets) > 50

    if slide_type == SlideType.COVER:
        subtitle = len(_first_text(blocks))
        if subtitle > 80:
            return "bottom_aligned"
        if total < 50 and subtitle == 0:
            return "centered"
    elif slide_type == SlideType.AGENDA:
        if len(bullets) > 5:
            return "numbered"
    elif slide_type == SlideType.SECTION_HEADER:
        if total < 40:
            return "large"
        if total > 100:
            return "subtle"
    elif slide_type == SlideType.BULLETS:
        if len(bullets) >= 6 or total > 500:
            return "two_columns"
        if len(bullets) <= 3 and not long_bullets:
            return "compact"
        if long_bullets:
            return "expanded"
    elif slide_type == SlideType.TWO_COLUMN_TEXT:
        return "equal"
    elif slide_type == SlideType.TEXT_PLUS_IMAGE:
        if len(_first_text(blocks)) > 400:
            return "image_left"
        if has_image:
            return "image_right"
    elif slide_type == SlideType.DECISIONS_LIST:
        return "numbered" if len(bullets) > 3 else "icons"
    elif slide_type == SlideType.ACTION_ITEMS_TABLE:
        tables = _of_kind(blocks, BlockKind.TABLE)
        rows = len(tables[0].get("rows") or []) if tables else 0
        if rows <= 4:
            return "compact"
        if rows >= 7:
            return "detailed"
    elif slide_type == SlideType.SUMMARY_NEXT_STEPS:
        return "timeline" if len(bullets) >= 4 else "numbered"
    elif slide_type == SlideType.QUOTE_CALLOUT:
        if total < 100:
            return "large"
        if total < 200:
            return "centered"
    elif slide_type == SlideType.TIMELINE_ROADMAP:
        steps = len(_of_kind(blocks, BlockKind.TIMELINE_STEP))
        if steps <= 3:
            return "horizontal"
        return "compact" if steps >= 6 else "vertical"
    elif slide_type == SlideType.NUMBERED_GRID:
        cards = len(_of_kind(blocks, BlockKind.NUMBERED_CARD))
        return {4: "2x2", 3: "3x1"}.get(cards, "4x1")
    elif slide_type == SlideType.ICON_CARDS_WITH_IMAGE:
        return "cards_left" if has_image else "cards_top"
    elif slide_type in (SlideType.SUMMARY_WITH_STATS, SlideType.HERO_STATS):
        stats = len(_of_kind(blocks, BlockKind.STAT_BLOCK))
        if slide_type == SlideType.HERO_STATS:
            if stats >= 4:
                return "hero_split"
            return "hero_background" if stats <= 2 else "hero_top"
        if stats <= 2:
            return "stats_inline"
        return "stats_bottom" if stats >= 4 else "stats_right"
    elif slide_type == SlideType.SPLIT_WITH_CALLOUTS:
        return "image_left" if has_image else "image_right"
    elif slide_type == SlideType.PERSON_SPOTLIGHT:
        if _of_kind(blocks, BlockKind.BULLETS) and total > 300:
            return "side_by_side"
        return "centered"
    return "default"


# ------------------------------------------------------------------ #
# Deck-level variation
# ------------------------------------------------------------------ #


@dataclass
class LayoutContext:
    """Variants used so far in a deck, carried from slide to slide."""

    recent: dict[SlideType, deque[str]] = field(
        default_factory=lambda: defaultdict(lambda: deque(maxlen=2))
    )
    previous_type: SlideType | None = None
    previous_variant: str | None = None

    def record(self, slide_type: SlideType, variant: str) -> None:
        self.recent[slide_type].append(variant)
        self.previous_type = slide_type
        self.previous_variant = variant


def apply_layout_context(
    slide_type: SlideType, content_choice: str, context: LayoutContext
) -> str:
    """Adjust ``content_choice`` for variety and record the result in ``context``."""
    candidates = LAYOUT_VARIANTS.get(slide_type, ["default"])
    variant = content_choice

    flipped = None
    if slide_type in ALTERNATING_TYPES and context.previous_type == slide_type:
        opposite = OPPOSITE_VARIANTS.get(context.previous_variant or "")
        if opposite in candidates:
            flipped = opposite

    if flipped is not None:
        variant = flipped
    elif content_choice in context.recent[slide_type]:
        fresh = [v for v in candidates if v not in context.recent[slide_type]]
        if fresh:
            variant = fresh[0]

    context.record(slide_type, variant)
    return variant


def assign_deck_layouts(slides: list[Slide]) -> list[Slide]:
    """Reassign variants across a finished deck in order."""
    context = LayoutContext()
    result = []
    for slide in slides:
        blocks = [b.model_dump(mode="json") for b in slide.blocks]
        variant = apply_layout_context(
            slide.type, assign_layout_variant(slide.type, blocks), context
        )
        result.append(slide.model_copy(update={"layout_variant": variant}))
    return result
