"""Slide, violation and outline schemas.

Outlines come in two flavours:

- ``LenientOutline`` accepts the slightly oversized output models routinely
  produce (long titles, too many hints, up to 50 slides).
- ``Outline`` is the strict shape the rest of the pipeline relies on.

``sanitize_outline`` converts the former into the latter deterministically.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated

from pydantic import Field, field_validator

from src.schemas.base import CamelModel, FrozenCamelModel
from src.schemas.block import Block
from src.schemas.text import truncate_at_word_boundary


class SlideType(StrEnum):
    COVER = "cover"
    AGENDA = "agenda"
    SECTION_HEADER = "section_header"
    BULLETS = "bullets"
    TWO_COLUMN_TEXT = "two_column_text"
    TEXT_PLUS_IMAGE = "text_plus_image"
    DECISIONS_LIST = "decisions_list"
    ACTION_ITEMS_TABLE = "action_items_table"
    SUMMARY_NEXT_STEPS = "summary_next_steps"
    QUOTE_CALLOUT = "quote_callout"
    TIMELINE_ROADMAP = "timeline_roadmap"
    NUMBERED_GRID = "numbered_grid"
    ICON_CARDS_WITH_IMAGE = "icon_cards_with_image"
    SUMMARY_WITH_STATS = "summary_with_stats"
    HERO_STATS = "hero_stats"
    SPLIT_WITH_CALLOUTS = "split_with_callouts"
    PERSON_SPOTLIGHT = "person_spotlight"


class ViolationAction(StrEnum):
    """Repair strategy a violation asks for."""

    SHORTEN = "shorten"
    SPLIT = "split"
    ADJUST_TITLE = "adjust_title"
    EXPAND = "expand"
    INVALID = "invalid"


class Violation(FrozenCamelModel):
    """One constraint or schema violation on a slide.

    ``block_index`` names the offending block; it is None for slide-level
    findings such as content density.
    """

    block_index: int | None = None
    field: str
    message: str
    current: int | None = None
    limit: int | None = None
    action: ViolationAction


class Slide(CamelModel):
    """A finished slide. Blocks always satisfy their kind's schema."""

    type: SlideType
    layout_variant: str = "default"
    blocks: list[Block] = Field(min_length=1)
    violations: list[Violation] = Field(default_factory=list)
    flagged: bool = False


# ------------------------------------------------------------------ #
# Outline
# ------------------------------------------------------------------ #

OUTLINE_TITLE_MAX = 100
OUTLINE_HINTS_MAX = 3
OUTLINE_HINT_LENGTH_MAX = 100
OUTLINE_SLIDES_MAX = 30


class OutlineSlide(FrozenCamelModel):
    title: str = Field(min_length=1, max_length=OUTLINE_TITLE_MAX)
    hints: list[Annotated[str, Field(max_length=OUTLINE_HINT_LENGTH_MAX)]] = Field(
        default_factory=list, max_length=OUTLINE_HINTS_MAX
    )
    suggested_type: SlideType | None = None


class Outline(FrozenCamelModel):
    title: str = Field(min_length=1, max_length=OUTLINE_TITLE_MAX)
    slides: list[OutlineSlide] = Field(min_length=1, max_length=OUTLINE_SLIDES_MAX)


class LenientOutlineSlide(CamelModel):
    title: str = Field(min_length=1, max_length=200)
    hints: list[Annotated[str, Field(max_length=200)]] = Field(default_factory=list, max_length=10)
    suggested_type: SlideType | None = None

    @field_validator("suggested_type", mode="before")
    @classmethod
    def _drop_unknown_type(cls, value: object) -> object:
        if isinstance(value, str) and value not in {t.value for t in SlideType}:
            return None
        return value


class LenientOutline(CamelModel):
    title: str = Field(min_length=1, max_length=200)
    slides: list[LenientOutlineSlide] = Field(min_length=1, max_length=50)


def sanitize_outline(raw: LenientOutline) -> Outline:
    """Truncate a lenient outline to the strict bounds.

    Titles are cut at a word boundary, hints are limited in count and
    length (empty hints are dropped), and slides beyond the maximum are
    discarded.
    """
    slides = [
        OutlineSlide(
            title=truncate_at_word_boundary(
                s.title.strip() or raw.title.strip() or "Slide", OUTLINE_TITLE_MAX
            ),
            hints=[
                truncate_at_word_boundary(h.strip(), OUTLINE_HINT_LENGTH_MAX)
                for h in s.hints
                if h.strip()
            ][:OUTLINE_HINTS_MAX],
            suggested_type=s.suggested_type,
        )
        for s in raw.slides[:OUTLINE_SLIDES_MAX]
    ]
    return Outline(
        title=truncate_at_word_boundary(raw.title.strip() or "Presentation", OUTLINE_TITLE_MAX),
        slides=slides,
    )
