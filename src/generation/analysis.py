"""Deterministic content analysis of the raw input text.

Runs without any model call. Regex heuristics pick out statistics, quotes,
decisions, action items, sequential steps, comparisons and features; the
result is summarized into prompts and used to nudge slide types.

The patterns target Norwegian and English business prose.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from enum import StrEnum

from src.schemas.slide import OutlineSlide, SlideType


@dataclass(frozen=True)
class ProcessStep:
    order: int
    text: str


@dataclass(frozen=True)
class Comparison:
    left: str
    right: str
    basis: str | None = None


@dataclass(frozen=True)
class Feature:
    title: str
    description: str


@dataclass
class ContentAnalysis:
    key_messages: list[str] = field(default_factory=list)
    quotes: list[str] = field(default_factory=list)
    decisions: list[str] = field(default_factory=list)
    action_items: list[str] = field(default_factory=list)
    statistics: list[str] = field(default_factory=list)
    topics: list[str] = field(default_factory=list)
    word_count: int = 0
    suggested_slide_count: int = 4
    sequential_process: list[ProcessStep] = field(default_factory=list)
    comparisons: list[Comparison] = field(default_factory=list)
    features: list[Feature] = field(default_factory=list)
    has_roadmap: bool = False


def _unique(values: list[str]) -> list[str]:
    return list(dict.fromkeys(values))


# ------------------------------------------------------------------ #
# Extractors
# ------------------------------------------------------------------ #


def _key_messages(text: str) -> list[str]:
    paragraphs = [p for p in re.split(r"\n\n+", text) if len(p.strip()) > 20]
    firsts = [re.split(r"[.!?]", p)[0].strip() for p in paragraphs]
    return [s for s in firsts if len(s) > 10][:5]


_QUOTE = re.compile(r"[\"«“']([^\"»”“']+)[\"»”']")


def _quotes(text: str) -> list[str]:
    found = [m.group(1).strip() for m in _QUOTE.finditer(text)]
    return [q for q in found if 10 < len(q) < 200][:3]


_DECISION_PATTERNS = [
    re.compile(
        r"(?:besluttet|vedtatt|godkjent|bestemt|valgt|konkludert)\s*(?:å|at|med)?\s*([^.!?\n]+)",
        re.IGNORECASE,
    ),
    re.compile(r"beslutning:\s*([^.!?\n]+)", re.IGNORECASE),
    re.compile(r"vedtak:\s*([^.!?\n]+)", re.IGNORECASE),
    re.compile(r"konklusjon:\s*([^.!?\n]+)", re.IGNORECASE),
]


def _decisions(text: str) -> list[str]:
    found = [m.group(1).strip() for p in _DECISION_PATTERNS for m in p.finditer(text)]
    return [d for d in _unique(found) if 5 < len(d) < 150][:5]


_ACTION_PATTERNS = [
    re.compile(r"(?:må|skal|bør|vil|trenger å)\s+([^.!?\n]+)", re.IGNORECASE),
    re.compile(r"(?:action|oppgave|todo|aksjonspunkt):\s*([^.!?\n]+)", re.IGNORECASE),
    re.compile(r"^[-•*]\s*([A-ZÆØÅ][^.!?\n]+)$", re.MULTILINE),
]


def _action_items(text: str) -> list[str]:
    found = [m.group(1).strip() for p in _ACTION_PATTERNS for m in p.finditer(text)]
    return [i for i in _unique(found) if 5 < len(i) < 100][:6]


_STAT_PATTERNS = [
    re.compile(r"\d+(?:[,.]\d+)?\s*(?:%|prosent)", re.IGNORECASE),
    re.compile(
        r"\d+(?:[,.]\d+)?\s*"
        r"(?:MNOK|BNOK|millioner?(?:\s+kroner)?|milliarder?(?:\s+kroner)?|kr|NOK)",
        re.IGNORECASE,
    ),
    re.compile(
        r"(?:USD|EUR|€|\$)\s*\d+(?:[,.]\d+)?(?:\s*(?:million|billion|M|B))?", re.IGNORECASE
    ),
    re.compile(
        r"(?:økte?|redusert?|vokste?|falt?|steg|gikk (?:opp|ned))\s*"
        r"(?:med\s*)?\d+(?:[,.]\d+)?(?:\s*%)?",
        re.IGNORECASE,
    ),
    re.compile(
        r"\d+(?:\s*\d{3})?\s*(?:ansatte|brukere|kunder|enheter|medlemmer|deltakere)",
        re.IGNORECASE,
    ),
    re.compile(r"(?:Q[1-4]|H[12])\s*\d{4}", re.IGNORECASE),
]


def _statistics(text: str) -> list[str]:
    found = [m.group(0).strip() for p in _STAT_PATTERNS for m in p.finditer(text)]
    return _unique(found)[:8]


_TOPIC_PATTERNS = [
    re.compile(r"^#{1,3}\s*(.+)$", re.MULTILINE),
    re.compile(r"^([A-ZÆØÅ][A-Za-zæøåÆØÅ\s-]{5,50})$", re.MULTILINE),
    re.compile(r"^\d+\.\s*([A-ZÆØÅ][^.!?\n]{5,50})$", re.MULTILINE),
]


def _topics(text: str) -> list[str]:
    found = [m.group(1).strip() for p in _TOPIC_PATTERNS for m in p.finditer(text)]
    return [t for t in _unique(found) if "http" not in t and 3 < len(t) < 60][:5]


def estimate_slide_count(word_count: int) -> int:
    """Roughly 120 words per content slide, plus cover and summary, within 4-15."""
    return max(4, min(15, math.ceil(word_count / 120) + 2))


_NUMBERED = re.compile(r"^(\d+)\.\s*(.+)$", re.MULTILINE)
_PHASE = re.compile(r"(?:fase|phase|steg|step)\s*(\d+)\s*[:\-–]\s*(.+)", re.IGNORECASE)
_ORDINALS = [
    (re.compile(r"(?:først|for det første)[,:\s]+([^.!?\n]+)", re.IGNORECASE), 1),
    (re.compile(r"(?:deretter|dernest|for det andre)[,:\s]+([^.!?\n]+)", re.IGNORECASE), 2),
    (
        re.compile(
            r"(?:til slutt|endelig|for det tredje|avslutningsvis)[,:\s]+([^.!?\n]+)",
            re.IGNORECASE,
        ),
        3,
    ),
]


def _sequential_process(text: str) -> list[ProcessStep]:
    steps: list[ProcessStep] = []

    def add(order: int, step_text: str, *, dedupe: bool) -> None:
        if not 5 < len(step_text) < 150:
            return
        if dedupe and any(s.order == order for s in steps):
            return
        steps.append(ProcessStep(order, step_text))

    for m in _NUMBERED.finditer(text):
        add(int(m.group(1)), m.group(2).strip(), dedupe=False)
    for m in _PHASE.finditer(text):
        add(int(m.group(1)), re.split(r"[.!?\n]", m.group(2).strip())[0], dedupe=True)
    for pattern, order in _ORDINALS:
        for m in pattern.finditer(text):
            add(order, m.group(1).strip(), dedupe=True)

    return sorted(steps, key=lambda s: s.order)[:8]


_VERSUS = re.compile(
    r"([A-Za-zÆØÅæøå\s]{5,40})\s+(?:vs\.?|versus|kontra|mot)\s+"
    r"([A-Za-zÆØÅæøå\s]{5,40})",
    re.IGNORECASE,
)
_BEFORE_AFTER = re.compile(
    r"(?:før|tidligere|gammel|nåværende)[:\s]+([^.!?\n]+?)\s+"
    r"(?:etter|nå|ny|fremtidig|planlagt)[:\s]+([^.!?\n]+)",
    re.IGNORECASE,
)


def _comparisons(text: str) -> list[Comparison]:
    found = [Comparison(m.group(1).strip(), m.group(2).strip()) for m in _VERSUS.finditer(text)]
    found.extend(
        Comparison(m.group(1).strip()[:50], m.group(2).strip()[:50], basis="tid")
        for m in _BEFORE_AFTER.finditer(text)
    )
    return found[:4]


_FEATURE_PATTERNS = [
    re.compile(r"^[-•*]\s*([^:\n]{5,40}):\s*(.{10,150})$", re.MULTILINE),
    re.compile(r"^[-•*]\s*([^-\n]{5,40})\s*[-–]\s*(.{10,150})$", re.MULTILINE),
    re.compile(r"([A-ZÆØÅ][a-zæøå\s]{3,30})\s*\(([^)]{10,100})\)"),
]


def _features(text: str) -> list[Feature]:
    features: list[Feature] = []
    for pattern in _FEATURE_PATTERNS:
        for m in pattern.finditer(text):
            title = m.group(1).strip()
            if not any(f.title == title for f in features):
                features.append(Feature(title, m.group(2).strip()))
    return features[:6]


_ROADMAP = re.compile(
    r"roadmap|tidslinje|tidsplan|milepæl|milestone|fase\s*\d|phase\s*\d|Q[1-4]\s*\d{4}|"
    r"H[12]\s*\d{4}|sprint\s*\d|lanseringsplan|implementeringsplan|prosjektplan|"
    r"project\s*plan|\d{4}\s*[-–]\s*\d{4}",
    re.IGNORECASE,
)


def analyze_content(input_text: str) -> ContentAnalysis:
    text = input_text.strip()
    word_count = len(text.split())
    return ContentAnalysis(
        key_messages=_key_messages(text),
        quotes=_quotes(text),
        decisions=_decisions(text),
        action_items=_action_items(text),
        statistics=_statistics(text),
        topics=_topics(text),
        word_count=word_count,
        suggested_slide_count=estimate_slide_count(word_count),
        sequential_process=_sequential_process(text),
        comparisons=_comparisons(text),
        features=_features(text),
        has_roadmap=bool(_ROADMAP.search(text)),
    )


def format_analysis_for_prompt(
    analysis: ContentAnalysis, *, max_length: int = 500, include_slide_count: bool = True
) -> str:
    parts: list[str] = []
    if analysis.statistics:
        parts.append(f"Statistics: {', '.join(analysis.statistics[:4])}")
    if analysis.quotes:
        parts.append(f'Quotes: "{analysis.quotes[0]}"')
    if analysis.decisions:
        parts.append(f"Decisions: {'; '.join(analysis.decisions[:2])}")
    if analysis.action_items:
        parts.append(f"Actions: {'; '.join(analysis.action_items[:3])}")
    if analysis.topics:
        parts.append(f"Topics: {', '.join(analysis.topics[:3])}")
    if include_slide_count:
        parts.append(f"Suggested slides: {analysis.suggested_slide_count}")

    result = "\n".join(parts)
    if len(result) > max_length:
        result = result[: max_length - 3] + "..."
    return result


# ------------------------------------------------------------------ #
# Slide type recommendations
# ------------------------------------------------------------------ #


class Confidence(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class SlideTypeRecommendation:
    type: SlideType
    confidence: Confidence
    reason: str


def recommend_slide_types(analysis: ContentAnalysis) -> list[SlideTypeRecommendation]:
    """Map detected content patterns to slide types, in rule order."""
    recs: list[SlideTypeRecommendation] = []
    steps = analysis.sequential_process

    if len(analysis.statistics) >= 2:
        recs.append(
            SlideTypeRecommendation(
                SlideType.SUMMARY_WITH_STATS,
                Confidence.HIGH if len(analysis.statistics) >= 4 else Confidence.MEDIUM,
                f"Found {len(analysis.statistics)} statistics",
            )
        )
    if len(steps) >= 3 or analysis.has_roadmap:
        recs.append(
            SlideTypeRecommendation(
                SlideType.TIMELINE_ROADMAP,
                Confidence.HIGH if len(steps) >= 4 else Confidence.MEDIUM,
                "Roadmap/timeline keywords detected"
                if analysis.has_roadmap
                else f"Found {len(steps)} sequential steps",
            )
        )
    if len(analysis.features) >= 2:
        recs.append(
            SlideTypeRecommendation(
                SlideType.ICON_CARDS_WITH_IMAGE,
                Confidence.HIGH if len(analysis.features) >= 3 else Confidence.MEDIUM,
                f"Found {len(analysis.features)} feature descriptions",
            )
        )
    if analysis.comparisons:
        recs.append(
            SlideTypeRecommendation(
                SlideType.TWO_COLUMN_TEXT,
                Confidence.MEDIUM,
                f"Found {len(analysis.comparisons)} comparison(s)",
            )
        )
    if len(analysis.decisions) >= 2:
        recs.append(
            SlideTypeRecommendation(
                SlideType.DECISIONS_LIST,
                Confidence.HIGH,
                f"Found {len(analysis.decisions)} decisions",
            )
        )
    if len(analysis.action_items) >= 3:
        recs.append(
            SlideTypeRecommendation(
                SlideType.ACTION_ITEMS_TABLE,
                Confidence.HIGH,
                f"Found {len(analysis.action_items)} action items",
            )
        )
    if analysis.quotes:
        recs.append(
            SlideTypeRecommendation(
                SlideType.QUOTE_CALLOUT,
                Confidence.MEDIUM,
                f"Found {len(analysis.quotes)} quote(s)",
            )
        )
    # Short numbered concepts read as principles rather than a process.
    if 2 <= len(steps) <= 4 and not analysis.has_roadmap:
        if sum(len(s.text) for s in steps) / len(steps) < 60:
            recs.append(
                SlideTypeRecommendation(
                    SlideType.NUMBERED_GRID,
                    Confidence.MEDIUM,
                    f"Found {len(steps)} short numbered concepts",
                )
            )
    return recs


def top_recommendation(
    recommendations: list[SlideTypeRecommendation],
) -> SlideTypeRecommendation | None:
    for confidence in (Confidence.HIGH, Confidence.MEDIUM):
        for rec in recommendations:
            if rec.confidence == confidence:
                return rec
    return recommendations[0] if recommendations else None


def format_recommendations_for_prompt(recommendations: list[SlideTypeRecommendation]) -> str:
    lines = [
        f'- Consider "{r.type.value}": {r.reason}'
        for r in recommendations
        if r.confidence != Confidence.LOW
    ]
    if not lines:
        return ""
    return (
        "CONTENT-BASED SLIDE SUGGESTIONS:\n"
        + "\n".join(lines)
        + "\n\nUse these suggestions to improve slide type selection where appropriate."
    )


# Title keywords strong enough to pick a type on their own.
_TITLE_HINTS: list[tuple[str, SlideType]] = [
    (r"\b(agenda|innhold|oversikt)\b", SlideType.AGENDA),
    (r"\b(neste steg|next steps|oppsummering|summary)\b", SlideType.SUMMARY_NEXT_STEPS),
    (r"\b(tidslinje|roadmap|timeline|milepæler|Q[1-4])\b", SlideType.TIMELINE_ROADMAP),
    (r"\b(vs\.?|versus|kontra|før og etter)\b", SlideType.TWO_COLUMN_TEXT),
    (r"\b(beslutning(er)?|vedtak|decisions?)\b", SlideType.DECISIONS_LIST),
    (r"\b(tiltak|aksjonspunkter|action items|oppgaver)\b", SlideType.ACTION_ITEMS_TABLE),
    (r"\b(nøkkeltall|key figures|resultater)\b", SlideType.SUMMARY_WITH_STATS),
]


def classify_slide(outline_slide: OutlineSlide) -> SlideType | None:
    """Suggest a slide type for an outline entry that has none.

    Looks at the entry's own title and hints: first for explicit title
    keywords, then for content patterns in the hints. Returns None when
    nothing stands out.
    """
    for pattern, slide_type in _TITLE_HINTS:
        if re.search(pattern, outline_slide.title, re.IGNORECASE):
            return slide_type

    local = analyze_content("\n".join([outline_slide.title, *outline_slide.hints]))
    top = top_recommendation(recommend_slide_types(local))
    return top.type if top is not None else None
