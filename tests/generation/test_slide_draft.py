"""Tests for slide drafts, block coercion and finalization."""

from src.generation.draft import SlideDraft, coerce_block, finalize_slide
from src.schemas.slide import SlideType


class TestSlideDraft:
    def test_from_raw_falls_back_on_unknown_type(self):
        draft = SlideDraft.from_raw(
            {"type": "hologram", "blocks": [{"kind": "title", "text": "Hei"}, "noise", 3]},
            fallback_type=SlideType.BULLETS,
        )
        assert draft.type == SlideType.BULLETS
        assert draft.blocks == [{"kind": "title", "text": "Hei"}]

    def test_copy_is_deep(self):
        draft = SlideDraft(
            type=SlideType.BULLETS, blocks=[{"kind": "bullets", "items": ["a", "b"]}]
        )
        clone = draft.copy()
        clone.blocks[0]["items"].append("c")
        assert draft.blocks[0]["items"] == ["a", "b"]

    def test_title_and_wire(self):
        draft = SlideDraft(
            type=SlideType.COVER,
            blocks=[{"kind": "text", "text": "Under"}, {"kind": "title", "text": "Over"}],
            layout_variant="centered",
        )
        assert draft.title() == "Over"
        assert draft.to_wire()["layoutVariant"] == "centered"
        assert draft.to_wire()["type"] == "cover"


class TestCoerceBlock:
    def test_overlong_title_is_truncated(self):
        block = coerce_block({"kind": "title", "text": "Ord " * 60})
        assert block is not None
        assert len(block["text"]) <= 120
        assert block["text"].endswith("...")

    def test_surplus_bullets_are_cut(self):
        block = coerce_block({"kind": "bullets", "items": [f"Punkt {i}" for i in range(10)]})
        assert block["items"] == [f"Punkt {i}" for i in range(8)]

    def test_empty_bullets_are_dropped(self):
        block = coerce_block({"kind": "bullets", "items": ["", "Behold", ""]})
        assert block["items"] == ["Behold"]

    def test_numbers_are_clamped(self):
        block = coerce_block({"kind": "timeline_step", "step": 15, "title": "Lansering"})
        assert block["step"] == 10
        low = coerce_block({"kind": "numbered_card", "number": 0, "text": "Første"})
        assert low["number"] == 1

    def test_unknown_kind_cannot_be_fixed(self):
        assert coerce_block({"kind": "video", "src": "x"}) is None

    def test_missing_required_field_cannot_be_fixed(self):
        assert coerce_block({"kind": "text"}) is None

    def test_input_is_not_modified(self):
        raw = {"kind": "callout", "text": "c" * 400}
        coerce_block(raw)
        assert len(raw["text"]) == 400


class TestFinalizeSlide:
    def test_valid_draft_is_not_flagged(self):
        slide = finalize_slide(
            SlideDraft(type=SlideType.BULLETS, blocks=[{"kind": "title", "text": "Mål"}])
        )
        assert slide.flagged is False
        assert slide.blocks[0].text == "Mål"

    def test_unfixable_block_is_dropped_and_flagged(self):
        slide = finalize_slide(
            SlideDraft(
                type=SlideType.BULLETS,
                blocks=[{"kind": "title", "text": "Mål"}, {"kind": "video"}],
            )
        )
        assert len(slide.blocks) == 1
        assert slide.flagged is True

    def test_empty_slide_gets_fallback_title(self):
        slide = finalize_slide(
            SlideDraft(type=SlideType.BULLETS, blocks=[{"kind": "video"}]),
            fallback_title="Reserveplan",
        )
        assert slide.blocks[0].kind == "title"
        assert slide.blocks[0].text == "Reserveplan"
        assert slide.flagged is True

    def test_blank_fallback_title_uses_default(self):
        slide = finalize_slide(SlideDraft(type=SlideType.BULLETS, blocks=[]))
        assert slide.blocks[0].text == "Slide"
