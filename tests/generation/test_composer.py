"""Tests for outline composition, exact slide counts and type distribution."""

from src.generation.analysis import ContentAnalysis, analyze_content
from src.generation.composer import (
    PREMIUM_TYPES,
    VISUAL_BULLET_TYPES,
    audience_kind,
    compose_deck,
    enforce_exact_slide_count,
    enforce_outline_distribution,
)
from src.schemas.slide import Outline, OutlineSlide, SlideType


def _outline(*types, title="Plan"):
    return Outline(
        title=title,
        slides=[
            OutlineSlide(title=f"Lysbilde {i + 1}", suggested_type=t) for i, t in enumerate(types)
        ],
    )


def _types(outline):
    return [s.suggested_type for s in outline.slides]


class TestComposeDeck:
    def test_adds_cover_agenda_and_summary(self):
        outline = _outline(*[SlideType.BULLETS] * 5)

        composed = compose_deck(outline)

        types = _types(composed)
        assert types[0] == SlideType.COVER
        assert types[1] == SlideType.AGENDA
        assert types[-1] == SlideType.SUMMARY_NEXT_STEPS
        assert len(composed.slides) == 8
        assert composed.slides[0].title == "Plan"

    def test_short_decks_get_no_agenda(self):
        composed = compose_deck(_outline(SlideType.BULLETS, SlideType.TEXT_PLUS_IMAGE))
        assert SlideType.AGENDA not in _types(composed)

    def test_existing_structure_is_moved_not_duplicated(self):
        outline = _outline(
            SlideType.SUMMARY_NEXT_STEPS, SlideType.BULLETS, SlideType.COVER, SlideType.HERO_STATS
        )

        composed = compose_deck(outline)

        types = _types(composed)
        assert types == [
            SlideType.COVER,
            SlideType.BULLETS,
            SlideType.HERO_STATS,
            SlideType.SUMMARY_NEXT_STEPS,
        ]

    def test_is_idempotent(self):
        once = compose_deck(_outline(*[SlideType.BULLETS] * 6))
        assert compose_deck(once) == once


class TestEnforceExactSlideCount:
    def test_trims_content_and_keeps_structure(self):
        outline = _outline(
            SlideType.COVER,
            SlideType.BULLETS,
            SlideType.HERO_STATS,
            SlideType.NUMBERED_GRID,
            SlideType.TEXT_PLUS_IMAGE,
            SlideType.SUMMARY_NEXT_STEPS,
        )

        trimmed = enforce_exact_slide_count(outline, 3, ContentAnalysis())

        assert _types(trimmed) == [
            SlideType.COVER,
            SlideType.BULLETS,
            SlideType.SUMMARY_NEXT_STEPS,
        ]

    def test_pads_before_trailing_summary(self):
        outline = _outline(SlideType.COVER, SlideType.BULLETS, SlideType.SUMMARY_NEXT_STEPS)

        padded = enforce_exact_slide_count(outline, 6, ContentAnalysis())

        assert len(padded.slides) == 6
        assert padded.slides[-1].suggested_type == SlideType.SUMMARY_NEXT_STEPS
        assert [s.title for s in padded.slides[2:5]] == [
            "Utdypende informasjon 1",
            "Utdypende informasjon 2",
            "Utdypende informasjon 3",
        ]
        assert all(s.suggested_type == SlideType.TEXT_PLUS_IMAGE for s in padded.slides[2:5])

    def test_padding_uses_the_analysis(self):
        analysis = analyze_content("Salget økte med 12 %. Vi har 40 kunder og 300 brukere.")
        outline = _outline(SlideType.COVER, SlideType.SUMMARY_NEXT_STEPS)

        padded = enforce_exact_slide_count(outline, 3, analysis)

        assert padded.slides[1].suggested_type == SlideType.SUMMARY_WITH_STATS
        assert padded.slides[1].title == "Viktige tall"

    def test_matching_count_is_unchanged(self):
        outline = _outline(SlideType.COVER, SlideType.BULLETS)
        assert enforce_exact_slide_count(outline, 2, ContentAnalysis()) == outline


class TestEnforceOutlineDistribution:
    def test_limits_bullet_like_slides(self):
        outline = _outline(
            SlideType.COVER, *[SlideType.BULLETS] * 4, SlideType.SUMMARY_NEXT_STEPS
        )

        result = enforce_outline_distribution(outline, ContentAnalysis())

        types = _types(result)
        assert len(types) == 6
        assert sum(1 for t in types if t in VISUAL_BULLET_TYPES) == 2
        assert types[1] == SlideType.BULLETS
        assert all(t in PREMIUM_TYPES for t in types[2:5])
        assert [s.title for s in result.slides] == [s.title for s in outline.slides]

    def test_longer_decks_get_a_premium_slide(self):
        outline = _outline(
            SlideType.COVER,
            SlideType.SECTION_HEADER,
            SlideType.TWO_COLUMN_TEXT,
            SlideType.TWO_COLUMN_TEXT,
            SlideType.SUMMARY_NEXT_STEPS,
        )

        result = enforce_outline_distribution(outline, ContentAnalysis())

        assert _types(result)[2] == SlideType.TEXT_PLUS_IMAGE

    def test_statistics_pick_the_stats_slide(self):
        outline = _outline(SlideType.COVER, *[SlideType.BULLETS] * 3, SlideType.QUOTE_CALLOUT)
        analysis = analyze_content("Salget økte med 12 %. Vi har 40 kunder og 300 brukere.")

        result = enforce_outline_distribution(outline, analysis)

        assert SlideType.SUMMARY_WITH_STATS in _types(result)

    def test_short_outlines_are_left_alone(self):
        outline = _outline(*[SlideType.BULLETS] * 3)
        assert enforce_outline_distribution(outline, ContentAnalysis()) == outline


class TestAudienceKind:
    def test_buckets(self):
        assert audience_kind("Ledergruppen") == "executives"
        assert audience_kind("Tekniske utviklere") == "technical"
        assert audience_kind("Alle ansatte") is None
        assert audience_kind(None) is None
