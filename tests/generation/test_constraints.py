"""Tests for per-slide-type presentation constraints."""

import pytest

from src.generation.constraints import (
    SLIDE_CONSTRAINTS,
    check_constraints,
    extract_number_from_title,
)
from src.generation.validation import extract_slide_content
from src.schemas.slide import SlideType, ViolationAction


def _check(slide_type, blocks):
    return check_constraints(slide_type, extract_slide_content(slide_type, blocks))


def _bullets(n, text="Et konkret punkt om resultatene"):
    return {"kind": "bullets", "items": [f"{text} {i}" for i in range(n)]}


class TestExtractNumberFromTitle:
    @pytest.mark.parametrize(
        "title,expected",
        [
            ("5 tips for bedre møter", 5),
            ("Tre steg til suksess", 3),
            ("De fire viktigste punktene", 4),
            ("Våre seks hovedpunkter", 6),
            ("Agenda", None),
            ("", None),
        ],
    )
    def test_extracts_promised_count(self, title, expected):
        assert extract_number_from_title(title) == expected


class TestCheckConstraints:
    def test_every_slide_type_has_constraints(self):
        assert set(SLIDE_CONSTRAINTS) == set(SlideType)

    def test_clean_bullets_slide_has_no_violations(self):
        blocks = [{"kind": "title", "text": "Status"}, _bullets(4)]
        assert _check(SlideType.BULLETS, blocks) == []

    def test_long_title_asks_for_shorten(self):
        blocks = [{"kind": "title", "text": "x" * 71}, _bullets(4)]

        violations = _check(SlideType.BULLETS, blocks)

        assert len(violations) == 1
        v = violations[0]
        assert (v.field, v.block_index, v.limit, v.current) == ("title", 0, 70, 71)
        assert v.action == ViolationAction.SHORTEN

    def test_too_many_bullets_asks_for_split(self):
        blocks = [{"kind": "title", "text": "Status"}, _bullets(7)]

        violations = _check(SlideType.BULLETS, blocks)

        assert [(v.field, v.action) for v in violations] == [("bullets", ViolationAction.SPLIT)]
        assert violations[0].block_index == 1

    def test_too_few_bullets_asks_for_expand(self):
        blocks = [{"kind": "title", "text": "Status"}, _bullets(2)]
        violations = _check(SlideType.BULLETS, blocks)
        assert [v.action for v in violations] == [ViolationAction.EXPAND]

    def test_long_bullet_is_reported_by_position(self):
        bullets = _bullets(3)
        bullets["items"][2] = "y" * 130
        violations = _check(SlideType.BULLETS, [{"kind": "title", "text": "T"}, bullets])
        assert [v.field for v in violations] == ["bullets[2]"]

    def test_table_limits(self):
        table = {
            "kind": "table",
            "columns": ["Hva", "Hvem", "Når", "Status"],
            "rows": [["a", "b", "c", "d"]] * 9,
        }
        title = {"kind": "title", "text": "Tiltak"}
        violations = _check(SlideType.ACTION_ITEMS_TABLE, [title, table])

        by_field = {v.field: v for v in violations}
        assert by_field["tableRows"].action == ViolationAction.SPLIT
        assert by_field["tableColumns"].action == ViolationAction.SHORTEN
        assert by_field["tableColumns"].current == 4

    def test_short_numbered_card_asks_for_expand(self):
        blocks = [
            {"kind": "title", "text": "Satsinger"},
            {"kind": "numbered_card", "number": 1, "text": "Kort"},
            {"kind": "numbered_card", "number": 2, "text": "En lengre beskrivelse av satsingen"},
        ]

        violations = _check(SlideType.NUMBERED_GRID, blocks)

        assert [(v.field, v.block_index, v.action) for v in violations] == [
            ("items[0]", 1, ViolationAction.EXPAND)
        ]

    def test_two_column_text_checks_each_column(self):
        blocks = [
            {"kind": "title", "text": "Før og etter"},
            {"kind": "text", "text": "Kort venstre kolonne"},
            {"kind": "text", "text": "z" * 400},
        ]
        violations = _check(SlideType.TWO_COLUMN_TEXT, blocks)
        assert [(v.field, v.block_index) for v in violations] == [("columns[1]", 2)]

    def test_cover_text_counts_as_subtitle(self):
        blocks = [{"kind": "title", "text": "Årsrapport"}, {"kind": "text", "text": "s" * 121}]
        violations = _check(SlideType.COVER, blocks)
        assert [v.field for v in violations] == ["subtitle"]
