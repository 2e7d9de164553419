"""Per-slide-type presentation constraints.

These limits are tighter than the block schema bounds: a bullets block may
hold 8 items of 150 characters, but a ``bullets`` slide only looks right
with 3-6 bullets of at most 120. Violating them never makes a slide
unparseable, it makes it ugly, so violations feed the repair loop rather
than rejecting output.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from src.schemas.slide import SlideType, Violation, ViolationAction


@dataclass(frozen=True)
class CountLimit:
    min: int
    max: int
    max_chars: int
    min_chars: int | None = None


@dataclass(frozen=True)
class TableLimit:
    max_rows: int
    max_columns: int


@dataclass(frozen=True)
class SlideConstraints:
    title: int | None = None
    subtitle: int | None = None
    text: int | None = None
    column_chars: int | None = None
    bullets: CountLimit | None = None
    items: CountLimit | None = None
    table: TableLimit | None = None


SLIDE_CONSTRAINTS: dict[SlideType, SlideConstraints] = {
    SlideType.COVER: SlideConstraints(title=60, subtitle=120),
    SlideType.AGENDA: SlideConstraints(title=50, bullets=CountLimit(2, 8, 80)),
    SlideType.SECTION_HEADER: SlideConstraints(title=60, subtitle=100),
    SlideType.BULLETS: SlideConstraints(title=70, bullets=CountLimit(3, 6, 120)),
    SlideType.TWO_COLUMN_TEXT: SlideConstraints(title=70, column_chars=350),
    SlideType.TEXT_PLUS_IMAGE: SlideConstraints(title=70, text=450),
    SlideType.DECISIONS_LIST: SlideConstraints(title=70, items=CountLimit(3, 7, 140)),
    SlideType.ACTION_ITEMS_TABLE: SlideConstraints(title=70, table=TableLimit(8, 3)),
    SlideType.SUMMARY_NEXT_STEPS: SlideConstraints(title=70, bullets=CountLimit(3, 6, 120)),
    SlideType.QUOTE_CALLOUT: SlideConstraints(text=300, subtitle=80),
    SlideType.TIMELINE_ROADMAP: SlideConstraints(title=80, items=CountLimit(1, 10, 100)),
    SlideType.NUMBERED_GRID: SlideConstraints(title=80, items=CountLimit(2, 6, 120, min_chars=30)),
    SlideType.ICON_CARDS_WITH_IMAGE: SlideConstraints(
        title=80, items=CountLimit(2, 6, 120, min_chars=30)
    ),
    SlideType.SUMMARY_WITH_STATS: SlideConstraints(title=80, text=400, items=CountLimit(1, 4, 60)),
    SlideType.HERO_STATS: SlideConstraints(title=80, items=CountLimit(1, 4, 60)),
    SlideType.SPLIT_WITH_CALLOUTS: SlideConstraints(
        title=80, items=CountLimit(2, 5, 100, min_chars=25)
    ),
    SlideType.PERSON_SPOTLIGHT: SlideConstraints(title=80, text=200, bullets=CountLimit(1, 6, 100)),
}


# ------------------------------------------------------------------ #
# Extracted content
# ------------------------------------------------------------------ #


@dataclass
class Located:
    """A piece of slide text together with the block it came from."""

    block_index: int
    text: str


@dataclass
class SlideContent:
    """Slide text grouped by role, as the constraint table sees it."""

    title: Located | None = None
    subtitle: Located | None = None
    text: Located | None = None
    columns: list[Located] = field(default_factory=list)
    bullets: list[Located] = field(default_factory=list)
    bullets_block: int | None = None
    items: list[Located] = field(default_factory=list)
    table_rows: list[list[str]] | None = None
    table_block: int | None = None

    def countable(self) -> int:
        return len(self.bullets) or len(self.items)

    def total_chars(self) -> int:
        total = 0
        for loc in (self.title, self.subtitle, self.text):
            if loc is not None:
                total += len(loc.text)
        total += sum(len(x.text) for x in self.columns + self.bullets + self.items)
        if self.table_rows:
            total += sum(len(cell) for row in self.table_rows for cell in row)
        return total


# ------------------------------------------------------------------ #
# Title numbers
# ------------------------------------------------------------------ #

NORWEGIAN_NUMBERS: dict[str, int] = {
    "en": 1,
    "ett": 1,
    "én": 1,
    "to": 2,
    "tre": 3,
    "fire": 4,
    "fem": 5,
    "seks": 6,
    "syv": 7,
    "sju": 7,
    "åtte": 8,
    "ni": 9,
    "ti": 10,
}

_LEADING_DIGIT = re.compile(r"^(\d+)\s+")
_COUNT_NOUNS = (
    r"viktigste|beste|største|hovedpunkter?|punkter?|steg|trinn|tips|grunner?|"
    r"fordeler?|usp|elementer?"
)


def extract_number_from_title(title: str) -> int | None:
    """Return the count a title promises ("5 tips", "Tre steg"), if any."""
    if not title:
        return None

    lowered = title.lower().strip()

    match = _LEADING_DIGIT.match(lowered)
    if match:
        return int(match.group(1))

    for word, number in NORWEGIAN_NUMBERS.items():
        if re.match(rf"^{word}\s+", lowered):
            return number

    # "De fire viktigste ...", "Våre tre hovedpunkter"
    for word, number in NORWEGIAN_NUMBERS.items():
        if re.search(rf"\b{word}\s+({_COUNT_NOUNS})\b", lowered):
            return number

    return None


# ------------------------------------------------------------------ #
# Checks
# ------------------------------------------------------------------ #


def _too_long(name: str, loc: Located, limit: int, label: str) -> Violation:
    return Violation(
        block_index=loc.block_index,
        field=name,
        message=f"{label} exceeds {limit} characters",
        current=len(loc.text),
        limit=limit,
        action=ViolationAction.SHORTEN,
    )


def _count_checks(
    name: str,
    entries: list[Located],
    limit: CountLimit,
    *,
    block_index: int | None,
    label: str,
) -> list[Violation]:
    violations: list[Violation] = []
    if len(entries) < limit.min:
        violations.append(
            Violation(
                block_index=block_index,
                field=name,
                message=f"Needs at least {limit.min} {label}",
                current=len(entries),
                limit=limit.min,
                action=ViolationAction.EXPAND,
            )
        )
    if len(entries) > limit.max:
        violations.append(
            Violation(
                block_index=block_index,
                field=name,
                message=f"Exceeds maximum {limit.max} {label}",
                current=len(entries),
                limit=limit.max,
                action=ViolationAction.SPLIT,
            )
        )
    for i, entry in enumerate(entries):
        if len(entry.text) > limit.max_chars:
            violations.append(_too_long(f"{name}[{i}]", entry, limit.max_chars, f"Entry {i + 1}"))
        if limit.min_chars and len(entry.text) < limit.min_chars:
            violations.append(
                Violation(
                    block_index=entry.block_index,
                    field=f"{name}[{i}]",
                    message=f"Entry {i + 1} is too short (minimum {limit.min_chars} characters)",
                    current=len(entry.text),
                    limit=limit.min_chars,
                    action=ViolationAction.EXPAND,
                )
            )
    return violations


def check_constraints(slide_type: SlideType, content: SlideContent) -> list[Violation]:
    """Check extracted slide content against the slide type's limits.

    Overflowing text asks for ``shorten``, too many entries or table rows
    ask for ``split`` and too few entries ask for ``expand``.
    """
    rules = SLIDE_CONSTRAINTS[slide_type]
    violations: list[Violation] = []

    if rules.title and content.title and len(content.title.text) > rules.title:
        violations.append(_too_long("title", content.title, rules.title, "Title"))
    if rules.subtitle and content.subtitle and len(content.subtitle.text) > rules.subtitle:
        violations.append(_too_long("subtitle", content.subtitle, rules.subtitle, "Subtitle"))
    if rules.text and content.text and len(content.text.text) > rules.text:
        violations.append(_too_long("text", content.text, rules.text, "Text"))

    if rules.bullets and content.bullets_block is not None:
        violations.extend(
            _count_checks(
                "bullets",
                content.bullets,
                rules.bullets,
                block_index=content.bullets_block,
                label="bullet points",
            )
        )

    if rules.items:
        violations.extend(
            _count_checks(
                "items",
                content.items,
                rules.items,
                block_index=content.items[0].block_index if content.items else None,
                label="items",
            )
        )

    if rules.table and content.table_rows is not None:
        if len(content.table_rows) > rules.table.max_rows:
            violations.append(
                Violation(
                    block_index=content.table_block,
                    field="tableRows",
                    message=f"Exceeds maximum {rules.table.max_rows} rows",
                    current=len(content.table_rows),
                    limit=rules.table.max_rows,
                    action=ViolationAction.SPLIT,
                )
            )
        widest = max((len(row) for row in content.table_rows), default=0)
        if widest > rules.table.max_columns:
            violations.append(
                Violation(
                    block_index=content.table_block,
                    field="tableColumns",
                    message=f"Exceeds maximum {rules.table.max_columns} columns",
                    current=widest,
                    limit=rules.table.max_columns,
                    action=ViolationAction.SHORTEN,
                )
            )

    if rules.column_chars:
        for i, column in enumerate(content.columns):
            if len(column.text) > rules.column_chars:
                violations.append(
                    _too_long(f"columns[{i}]", column, rules.column_chars, f"Column {i + 1}")
                )

    return violations
