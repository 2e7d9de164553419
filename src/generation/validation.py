"""Slide validation.

``validate_slide`` combines four checks on a draft:

1. block schema (does every block parse into a known kind?)
2. per-slide-type constraints (src.generation.constraints)
3. title/count consistency ("Fem steg" with four steps)
4. content density (informational only)

Every violation names the block it concerns, so the repairer can rewrite
only the offending blocks.
"""

from __future__ import annotations

from typing import Any

from src.generation.constraints import (
    Located,
    SlideContent,
    check_constraints,
    extract_number_from_title,
)
from src.generation.draft import SlideDraft
from src.schemas.block import BlockKind, block_errors
from src.schemas.slide import Slide, SlideType, Violation, ViolationAction

COUNTABLE_SLIDE_TYPES: frozenset[SlideType] = frozenset(
    {
        SlideType.BULLETS,
        SlideType.DECISIONS_LIST,
        SlideType.ICON_CARDS_WITH_IMAGE,
        SlideType.NUMBERED_GRID,
        SlideType.TIMELINE_ROADMAP,
        SlideType.SPLIT_WITH_CALLOUTS,
        SlideType.SUMMARY_NEXT_STEPS,
        SlideType.AGENDA,
    }
)

# Approximate character capacity of each layout.
LAYOUT_CAPACITY: dict[SlideType, int] = {
    SlideType.COVER: 180,
    SlideType.AGENDA: 500,
    SlideType.SECTION_HEADER: 160,
    SlideType.BULLETS: 600,
    SlideType.TWO_COLUMN_TEXT: 700,
    SlideType.TEXT_PLUS_IMAGE: 500,
    SlideType.DECISIONS_LIST: 600,
    SlideType.ACTION_ITEMS_TABLE: 500,
    SlideType.SUMMARY_NEXT_STEPS: 550,
    SlideType.QUOTE_CALLOUT: 400,
    SlideType.TIMELINE_ROADMAP: 500,
    SlideType.NUMBERED_GRID: 480,
    SlideType.ICON_CARDS_WITH_IMAGE: 480,
    SlideType.SUMMARY_WITH_STATS: 500,
    SlideType.HERO_STATS: 400,
    SlideType.SPLIT_WITH_CALLOUTS: 450,
    SlideType.PERSON_SPOTLIGHT: 400,
}

MIN_DENSITY = 0.35
IMAGE_DENSITY_BONUS = 150

# Actions the repairer acts on. ``expand`` is advice for the next rewrite,
# never a reason to make one.
REPAIRABLE_ACTIONS: frozenset[ViolationAction] = frozenset(
    {
        ViolationAction.SHORTEN,
        ViolationAction.SPLIT,
        ViolationAction.ADJUST_TITLE,
        ViolationAction.INVALID,
    }
)

ITEM_FIELDS: dict[SlideType, tuple[BlockKind, str]] = {
    SlideType.ICON_CARDS_WITH_IMAGE: (BlockKind.ICON_CARD, "text"),
    SlideType.SPLIT_WITH_CALLOUTS: (BlockKind.ICON_CARD, "text"),
    SlideType.NUMBERED_GRID: (BlockKind.NUMBERED_CARD, "text"),
    SlideType.TIMELINE_ROADMAP: (BlockKind.TIMELINE_STEP, "title"),
    SlideType.SUMMARY_WITH_STATS: (BlockKind.STAT_BLOCK, "label"),
    SlideType.HERO_STATS: (BlockKind.STAT_BLOCK, "label"),
}


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def extract_slide_content(slide_type: SlideType, blocks: list[dict[str, Any]]) -> SlideContent:
    """Group a slide's text by role for the constraint checks."""
    content = SlideContent()
    texts: list[Located] = []

    for index, block in enumerate(blocks):
        kind = block.get("kind")
        if kind == BlockKind.TITLE and content.title is None:
            content.title = Located(index, _str(block.get("text")))
        elif kind == BlockKind.TEXT:
            texts.append(Located(index, _str(block.get("text"))))
        elif kind == BlockKind.BULLETS and content.bullets_block is None:
            content.bullets_block = index
            items = block.get("items")
            if isinstance(items, list):
                content.bullets = [Located(index, _str(item)) for item in items]
        elif kind == BlockKind.TABLE and content.table_block is None:
            content.table_block = index
            rows = block.get("rows")
            if isinstance(rows, list):
                content.table_rows = [
                    [_str(cell) for cell in row] for row in rows if isinstance(row, list)
                ]
        elif kind == BlockKind.CALLOUT and content.text is None and not texts:
            content.text = Located(index, _str(block.get("text")))

    if slide_type == SlideType.TWO_COLUMN_TEXT:
        content.columns = texts
    elif len(texts) == 1:
        if slide_type in (SlideType.COVER, SlideType.SECTION_HEADER):
            content.subtitle = texts[0]
        else:
            content.text = texts[0]
    elif len(texts) > 1:
        content.text = Located(texts[0].block_index, " ".join(t.text for t in texts))

    if slide_type == SlideType.DECISIONS_LIST:
        content.items = content.bullets
        content.bullets = []
        content.bullets_block = None
    elif slide_type in ITEM_FIELDS:
        kind, attr = ITEM_FIELDS[slide_type]
        content.items = [
            Located(i, _str(b.get(attr))) for i, b in enumerate(blocks) if b.get("kind") == kind
        ]

    return content


def validate_slide_schema(blocks: list[dict[str, Any]]) -> list[Violation]:
    """Report blocks that do not parse into their kind's schema."""
    if not blocks:
        return [
            Violation(field="blocks", message="Slide has no blocks", action=ViolationAction.INVALID)
        ]

    violations: list[Violation] = []
    for index, block in enumerate(blocks):
        for error in block_errors(block):
            loc = ".".join(str(p) for p in error.get("loc") or ())
            kind = error.get("type")
            action = (
                ViolationAction.SHORTEN
                if kind in ("string_too_long", "too_long")
                else ViolationAction.INVALID
            )
            ctx = error.get("ctx") or {}
            violations.append(
                Violation(
                    block_index=index,
                    field=f"blocks[{index}].{loc}" if loc else f"blocks[{index}]",
                    message=f"{block.get('kind', 'block')}: {error.get('msg', 'invalid')}",
                    limit=ctx.get("max_length") if isinstance(ctx.get("max_length"), int) else None,
                    action=action,
                )
            )
    return violations


def check_title_count(slide_type: SlideType, content: SlideContent) -> Violation | None:
    if slide_type not in COUNTABLE_SLIDE_TYPES or content.title is None:
        return None
    promised = extract_number_from_title(content.title.text)
    actual = content.countable()
    if promised is None or actual == 0 or promised == actual:
        return None
    return Violation(
        block_index=content.title.block_index,
        field="title_count_mismatch",
        message=f"Title mentions {promised} items but slide has {actual}",
        current=actual,
        limit=promised,
        action=ViolationAction.ADJUST_TITLE,
    )


def content_density(slide_type: SlideType, blocks: list[dict[str, Any]]) -> float:
    """Fraction of the layout's text capacity the slide fills (may exceed 1)."""
    content = extract_slide_content(slide_type, blocks)
    has_image = any(b.get("kind") == BlockKind.IMAGE and b.get("url") for b in blocks)
    total = content.total_chars() + (IMAGE_DENSITY_BONUS if has_image else 0)
    return total / LAYOUT_CAPACITY.get(slide_type, 400)


def check_density(slide_type: SlideType, blocks: list[dict[str, Any]]) -> Violation | None:
    density = content_density(slide_type, blocks)
    if density >= MIN_DENSITY:
        return None
    filled = round(density * 100)
    minimum = round(MIN_DENSITY * 100)
    return Violation(
        field="content_density",
        message=f"Slide appears sparse ({filled}% filled, recommend at least {minimum}%)",
        current=filled,
        limit=minimum,
        action=ViolationAction.EXPAND,
    )


def validate_slide(draft: SlideDraft, *, check_sparse: bool = True) -> list[Violation]:
    """Return every violation on ``draft``; an empty list means it is clean."""
    violations = validate_slide_schema(draft.blocks)
    content = extract_slide_content(draft.type, draft.blocks)
    violations.extend(check_constraints(draft.type, content))

    mismatch = check_title_count(draft.type, content)
    if mismatch is not None:
        violations.append(mismatch)

    if check_sparse:
        sparse = check_density(draft.type, draft.blocks)
        if sparse is not None:
            violations.append(sparse)

    return violations


def validate_deck(slides: list[Slide]) -> dict[int, list[Violation]]:
    """Validate finished slides, keyed by slide index; clean slides are omitted."""
    results: dict[int, list[Violation]] = {}
    for index, slide in enumerate(slides):
        violations = validate_slide(SlideDraft.from_slide(slide))
        if violations:
            results[index] = violations
    return results


def needs_repair(violations: list[Violation]) -> bool:
    return any(v.action in REPAIRABLE_ACTIONS for v in violations)


def should_split(violations: list[Violation]) -> bool:
    return any(v.action == ViolationAction.SPLIT for v in violations)


def offending_blocks(violations: list[Violation]) -> list[int]:
    """Sorted indices of blocks named by repairable violations."""
    return sorted(
        {
            v.block_index
            for v in violations
            if v.block_index is not None and v.action in REPAIRABLE_ACTIONS
        }
    )


def parse_slide(raw: dict[str, Any]) -> Slide:
    """Strictly parse a finished slide (raises pydantic.ValidationError)."""
    return Slide.model_validate(raw)


def describe_violations(violations: list[Violation]) -> str:
    """Render violations as prompt lines for a repair call."""
    lines = []
    for v in violations:
        where = f"block {v.block_index}" if v.block_index is not None else "slide"
        bound = f" (current {v.current}, limit {v.limit})" if v.limit is not None else ""
        lines.append(f"- [{v.action.value}] {where}, {v.field}: {v.message}{bound}")
    return "\n".join(lines)
