"""Outline post-processing: deck structure, exact slide count, type mix.

Runs between the outline call and content generation, in this order:

1. ``compose_deck``: cover first, agenda after the cover for longer decks,
   a summary last. Idempotent.
2. ``enforce_exact_slide_count``: trim or pad to the requested count.
3. ``enforce_outline_distribution``: retype slides only, never changes
   the count.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from src.generation.analysis import ContentAnalysis
from src.schemas.slide import (
    OUTLINE_HINT_LENGTH_MAX,
    OUTLINE_HINTS_MAX,
    OUTLINE_SLIDES_MAX,
    OUTLINE_TITLE_MAX,
    Outline,
    OutlineSlide,
    SlideType,
)
from src.schemas.text import truncate_at_word_boundary

log = structlog.get_logger(__name__)

SUMMARY_TYPES = frozenset({SlideType.SUMMARY_NEXT_STEPS, SlideType.QUOTE_CALLOUT})
AGENDA_THRESHOLD = 5


def _type(slide: OutlineSlide) -> SlideType:
    return slide.suggested_type or SlideType.BULLETS


def _stub(title: str, slide_type: SlideType, hints: list[str]) -> OutlineSlide:
    return OutlineSlide(
        title=truncate_at_word_boundary(title, OUTLINE_TITLE_MAX),
        suggested_type=slide_type,
        hints=[truncate_at_word_boundary(h, OUTLINE_HINT_LENGTH_MAX) for h in hints if h][
            :OUTLINE_HINTS_MAX
        ],
    )


def _retype(slide: OutlineSlide, slide_type: SlideType) -> OutlineSlide:
    return slide.model_copy(update={"suggested_type": slide_type})


# ------------------------------------------------------------------ #
# Structure
# ------------------------------------------------------------------ #

_STRUCTURAL_FOR_AGENDA = frozenset(
    {SlideType.COVER, SlideType.AGENDA, SlideType.SUMMARY_NEXT_STEPS, SlideType.SECTION_HEADER}
)


def _agenda_stub(slides: list[OutlineSlide]) -> OutlineSlide:
    hints = [s.title for s in slides if _type(s) not in _STRUCTURAL_FOR_AGENDA][:3]
    return _stub("Agenda", SlideType.AGENDA, hints or ["Oversikt over presentasjonen"])


def compose_deck(
    outline: Outline,
    *,
    ensure_cover: bool = True,
    ensure_agenda: bool = True,
    ensure_summary: bool = True,
) -> Outline:
    """Give the outline a professional frame; calling it twice changes nothing.

    Structural slides are detected anywhere in the outline and moved into
    place rather than duplicated.
    """
    slides = list(outline.slides)

    if ensure_cover:
        cover_at = next((i for i, s in enumerate(slides) if _type(s) == SlideType.COVER), None)
        if cover_at is None:
            slides.insert(
                0, _stub(outline.title, SlideType.COVER, ["Hovedtittel", "Undertittel eller dato"])
            )
        elif cover_at > 0:
            slides.insert(0, slides.pop(cover_at))

    if (
        ensure_agenda
        and len(slides) > AGENDA_THRESHOLD
        and not any(_type(s) == SlideType.AGENDA for s in slides)
    ):
        slides.insert(1, _agenda_stub(slides))

    if ensure_summary:
        summary_at = next((i for i, s in enumerate(slides) if _type(s) in SUMMARY_TYPES), None)
        if summary_at is None:
            slides.append(
                _stub(
                    "Oppsummering og neste steg",
                    SlideType.SUMMARY_NEXT_STEPS,
                    ["Hovedkonklusjoner", "Neste steg", "Ansvarlige"],
                )
            )
        elif summary_at < len(slides) - 1:
            slides.append(slides.pop(summary_at))

    return Outline(title=outline.title, slides=slides[:OUTLINE_SLIDES_MAX])


# ------------------------------------------------------------------ #
# Exact count
# ------------------------------------------------------------------ #

_PROTECTED_FROM_TRIM = frozenset(
    {
        SlideType.COVER,
        SlideType.AGENDA,
        SlideType.SUMMARY_NEXT_STEPS,
        SlideType.SECTION_HEADER,
        SlideType.QUOTE_CALLOUT,
    }
)


def _trim(slides: list[OutlineSlide], target: int) -> list[OutlineSlide]:
    excess = len(slides) - target
    removable = [
        i for i in reversed(range(len(slides))) if _type(slides[i]) not in _PROTECTED_FROM_TRIM
    ]
    drop = set(removable[:excess])
    slides = [s for i, s in enumerate(slides) if i not in drop]

    # Still too long: only structure is left, keep the cover and cut from the end.
    while len(slides) > target:
        slides.pop(-1 if len(slides) > 1 else 0)
    return slides


def _padding(analysis: ContentAnalysis, count: int) -> list[OutlineSlide]:
    extra: list[OutlineSlide] = []
    if len(analysis.features) >= 2:
        extra.append(
            _stub(
                "Nøkkelfunksjoner",
                SlideType.ICON_CARDS_WITH_IMAGE,
                [f.title for f in analysis.features[:3]],
            )
        )
    if len(analysis.statistics) >= 2:
        extra.append(_stub("Viktige tall", SlideType.SUMMARY_WITH_STATS, analysis.statistics[:3]))
    if len(analysis.sequential_process) >= 3:
        extra.append(
            _stub(
                "Prosess og milepæler",
                SlideType.TIMELINE_ROADMAP,
                [s.text[:60] for s in analysis.sequential_process[:3]],
            )
        )
    if analysis.comparisons:
        extra.append(
            _stub("Sammenligning", SlideType.TWO_COLUMN_TEXT, ["Alternativ A", "Alternativ B"])
        )
    while len(extra) < count:
        extra.append(
            _stub(
                f"Utdypende informasjon {len(extra) + 1}",
                SlideType.TEXT_PLUS_IMAGE,
                ["Detaljer", "Kontekst", "Eksempler"],
            )
        )
    return extra[:count]


def enforce_exact_slide_count(
    outline: Outline, target: int, analysis: ContentAnalysis
) -> Outline:
    """Trim or pad ``outline`` to exactly ``target`` slides (capped at the outline maximum).

    Trimming removes content slides from the end and keeps structure;
    padding inserts analysis-driven slides before a trailing summary.
    """
    target = max(1, min(target, OUTLINE_SLIDES_MAX))
    slides = list(outline.slides)

    if len(slides) > target:
        slides = _trim(slides, target)
    elif len(slides) < target:
        insert_at = len(slides)
        if slides and _type(slides[-1]) in SUMMARY_TYPES:
            insert_at -= 1
        slides[insert_at:insert_at] = _padding(analysis, target - len(slides))

    if len(slides) != len(outline.slides):
        log.info("outline.count_enforced", before=len(outline.slides), after=len(slides))
    return Outline(title=outline.title, slides=slides)


# ------------------------------------------------------------------ #
# Type distribution
# ------------------------------------------------------------------ #

UPGRADEABLE_TYPES = frozenset({SlideType.BULLETS, SlideType.AGENDA, SlideType.DECISIONS_LIST})

VISUAL_BULLET_TYPES = frozenset(
    {
        SlideType.BULLETS,
        SlideType.AGENDA,
        SlideType.DECISIONS_LIST,
        SlideType.ACTION_ITEMS_TABLE,
        SlideType.SUMMARY_NEXT_STEPS,
    }
)

PREMIUM_TYPES = frozenset(
    {
        SlideType.ICON_CARDS_WITH_IMAGE,
        SlideType.SUMMARY_WITH_STATS,
        SlideType.TIMELINE_ROADMAP,
        SlideType.HERO_STATS,
        SlideType.NUMBERED_GRID,
        SlideType.SPLIT_WITH_CALLOUTS,
        SlideType.PERSON_SPOTLIGHT,
        SlideType.TEXT_PLUS_IMAGE,
    }
)

PROTECTED_TYPES = frozenset(
    {
        SlideType.COVER,
        SlideType.SECTION_HEADER,
        SlideType.SUMMARY_NEXT_STEPS,
        SlideType.QUOTE_CALLOUT,
        SlideType.ACTION_ITEMS_TABLE,
    }
)

MAX_BULLET_LIKE = 2


@dataclass
class ScoringContext:
    position: int
    total: int
    recent: list[SlideType] = field(default_factory=list)
    audience: str | None = None


def audience_kind(audience: str | None) -> str | None:
    """Bucket a free-text audience into 'executives', 'technical' or None."""
    if not audience:
        return None
    lowered = audience.lower()
    if any(w in lowered for w in ("leder", "ledelse", "styre", "executive", "c-level")):
        return "executives"
    if any(w in lowered for w in ("teknisk", "technical", "utvikler", "developer", "ingeniør")):
        return "technical"
    return None


def _score(slide_type: SlideType, base: float, ctx: ScoringContext) -> float:
    score = base
    if slide_type in ctx.recent:
        score *= 0.8
    if ctx.position <= 2 and slide_type in PREMIUM_TYPES:
        score *= 0.7
    if ctx.audience == "executives" and slide_type in (
        SlideType.SUMMARY_WITH_STATS,
        SlideType.HERO_STATS,
    ):
        score *= 1.3
    elif ctx.audience == "technical" and slide_type in (
        SlideType.TIMELINE_ROADMAP,
        SlideType.NUMBERED_GRID,
    ):
        score *= 1.2
    if ctx.position >= ctx.total - 3 and slide_type in PREMIUM_TYPES:
        score *= 1.1
    return score


def select_premium_type(
    analysis: ContentAnalysis, used: set[SlideType], ctx: ScoringContext
) -> SlideType:
    """Pick the premium type the input content supports best."""
    steps = analysis.sequential_process
    signals: list[tuple[SlideType, float, bool]] = [
        (SlideType.SUMMARY_WITH_STATS, 100, len(analysis.statistics) >= 2),
        (SlideType.TIMELINE_ROADMAP, 90, len(steps) >= 3),
        (SlideType.ICON_CARDS_WITH_IMAGE, 85, len(analysis.features) >= 2),
        (
            SlideType.NUMBERED_GRID,
            75,
            2 <= len(steps) <= 4 and sum(len(s.text) for s in steps) / max(len(steps), 1) < 60,
        ),
        (SlideType.TWO_COLUMN_TEXT, 70, bool(analysis.comparisons)),
        (SlideType.QUOTE_CALLOUT, 60, bool(analysis.quotes)),
    ]
    candidates = [
        (_score(t, base, ctx), t) for t, base, present in signals if present and t not in used
    ]
    if candidates:
        return max(candidates, key=lambda c: c[0])[1]

    for fallback in (
        SlideType.TEXT_PLUS_IMAGE,
        SlideType.NUMBERED_GRID,
        SlideType.ICON_CARDS_WITH_IMAGE,
    ):
        if fallback not in used:
            return fallback
    return SlideType.TEXT_PLUS_IMAGE


def enforce_outline_distribution(
    outline: Outline, analysis: ContentAnalysis, *, audience: str | None = None
) -> Outline:
    """Limit list-like slides and make sure longer decks get a visual slide.

    - at most two slides that read as bullet lists; extra upgradeable ones
      (from the end) are retyped to premium types
    - decks of five or more slides get at least one premium slide,
      preferring the middle of the deck
    """
    slides = list(outline.slides)
    if len(slides) < 4:
        return outline

    kind = audience_kind(audience)
    used = {_type(s) for s in slides}
    recent = [_type(s) for s in slides]
    changes: list[str] = []

    def context(position: int) -> ScoringContext:
        return ScoringContext(
            position=position, total=len(slides), recent=recent[-3:], audience=kind
        )

    bullet_like = [i for i, s in enumerate(slides) if _type(s) in VISUAL_BULLET_TYPES]
    excess = len(bullet_like) - MAX_BULLET_LIKE
    if excess > 0:
        upgradeable = [i for i, s in enumerate(slides) if _type(s) in UPGRADEABLE_TYPES and i != 0]
        for idx in upgradeable[-excess:]:
            new_type = select_premium_type(analysis, used, context(idx))
            changes.append(f"{idx}:{_type(slides[idx]).value}->{new_type.value}")
            slides[idx] = _retype(slides[idx], new_type)
            used.add(new_type)
            recent.append(new_type)

    if len(slides) >= 5 and not any(_type(s) in PREMIUM_TYPES for s in slides):
        middle = len(slides) // 2
        for idx in (middle, middle - 1, middle + 1):
            if not 0 < idx < len(slides) - 1:
                continue
            current = _type(slides[idx])
            if current in PROTECTED_TYPES or current in PREMIUM_TYPES:
                continue
            new_type = select_premium_type(analysis, used, context(idx))
            changes.append(f"{idx}:{current.value}->{new_type.value}")
            slides[idx] = _retype(slides[idx], new_type)
            used.add(new_type)
            break

    if changes:
        log.info("outline.distribution_enforced", changes=changes)
    return Outline(title=outline.title, slides=slides)
