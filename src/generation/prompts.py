"""Prompt builders for outline, slide content, repair and split calls.

Every builder returns a ``(system, user)`` pair of plain strings. Prompts
ask for a single JSON object; the examples are Norwegian to steer the
model towards Norwegian output when the deck language is "no".
"""

from __future__ import annotations

import json
from typing import Any

from src.generation.analysis import (
    ContentAnalysis,
    format_analysis_for_prompt,
    format_recommendations_for_prompt,
    recommend_slide_types,
)
from src.generation.constraints import SLIDE_CONSTRAINTS
from src.generation.validation import describe_violations
from src.schemas.deck import Amount, GenerationRequest, TextMode
from src.schemas.slide import (
    OUTLINE_HINT_LENGTH_MAX,
    OUTLINE_HINTS_MAX,
    OUTLINE_TITLE_MAX,
    OutlineSlide,
    SlideType,
    Violation,
    ViolationAction,
)

_SENTENCE_CASE = """NORSK GRAMMATIKK - KAPITALISERING:
- Bruk sentence case for alle titler: kun første ord har stor bokstav
- FEIL: "Fem Viktige Punkter For Suksess" RIKTIG: "Fem viktige punkter for suksess"
- Unntak: egennavn (Norge, Microsoft, Oslo) og forkortelser (AI, GDPR)"""

_JSON_ONLY = "Return ONLY one valid JSON object, no markdown and no commentary."


def language_name(language: str) -> str:
    return "Norwegian (Bokmål)" if language in ("no", "nb") else language


# ------------------------------------------------------------------ #
# Outline
# ------------------------------------------------------------------ #

_OUTLINE_MODES = {
    TextMode.GENERATE: "Create original, engaging content based on the topic provided.",
    TextMode.CONDENSE: (
        "Summarize and structure the provided notes into clear, digestible slides. "
        "Extract key points and organize logically."
    ),
    TextMode.PRESERVE: (
        "Structure the provided content into slides while preserving the original "
        "phrasing. Do not rewrite or paraphrase significantly."
    ),
}

_SLIDE_TYPE_GUIDE = """Structure slides:
- cover: title slide, always first
- agenda: overview, only for decks with 6+ slides
- section_header: divider between major topic changes

Basic content (use sparingly, at most 2 per deck):
- bullets: plain bullet list, only when nothing else fits
- two_column_text: side-by-side comparison
- decisions_list: decisions that were made
- action_items_table: tasks with owner and deadline

Visual slides (prefer these):
- text_plus_image: main content with a large image
- icon_cards_with_image: features or benefits as cards
- summary_with_stats: key numbers with context
- hero_stats: impressive numbers over a hero image
- timeline_roadmap: sequential steps, phases or roadmaps
- numbered_grid: 3-4 numbered key points
- split_with_callouts: image with callout boxes
- person_spotlight: a named person
- quote_callout: a memorable statement
- summary_next_steps: conclusion, usually last"""


def _slide_count_guidance(request: GenerationRequest) -> str:
    if request.num_slides:
        low = max(request.num_slides - 3, 3)
        high = max(request.num_slides - 2, 4)
        return (
            f"Target approximately {low}-{high} content slides. Cover, agenda and summary "
            f"are added automatically if missing; the final deck will have exactly "
            f"{request.num_slides} slides."
        )
    if request.amount == Amount.BRIEF:
        return "Create 3-5 content slides for a concise presentation."
    if request.amount == Amount.DETAILED:
        return "Create 8-12 content slides for a comprehensive presentation."
    return "Create 5-8 content slides for a balanced presentation."


def outline_prompt(
    request: GenerationRequest, analysis: ContentAnalysis | None = None
) -> tuple[str, str]:
    """Build the outline generation prompt."""
    instructions = [
        _OUTLINE_MODES[request.text_mode],
        _slide_count_guidance(request),
        f"Language: {language_name(request.language)}",
    ]
    if request.tone:
        instructions.append(f"Use a {request.tone} tone throughout.")
    if request.audience:
        instructions.append(f"The target audience is: {request.audience}.")

    system = f"""You are a presentation outline generator for a Norwegian presentation platform.

TASK: Generate a presentation outline.

INSTRUCTIONS:
{chr(10).join(f"- {line}" for line in instructions)}

AVAILABLE SLIDE TYPES:
{_SLIDE_TYPE_GUIDE}

OUTPUT FORMAT:
{{
  "title": "Presentation title (max {OUTLINE_TITLE_MAX} chars)",
  "slides": [
    {{"title": "Slide title", "suggestedType": "one of the types above", "hints": ["..."]}}
  ]
}}

LIMITS:
- title: max {OUTLINE_TITLE_MAX} characters
- hints: at most {OUTLINE_HINTS_MAX} per slide, each max {OUTLINE_HINT_LENGTH_MAX} characters
- Hints carry concrete data points, names and figures from the input, never filler

DISTRIBUTION RULES:
1. Never use "bullets" more than twice
2. Never use the same slide type more than twice in a row
3. Numbers or statistics in the input call for summary_with_stats or hero_stats
4. Three or more sequential steps call for timeline_roadmap
5. A named person calls for person_spotlight

{_JSON_ONLY}"""

    if analysis is not None:
        system += (
            "\n\nPRE-EXTRACTED CONTENT ANALYSIS:\n"
            + format_analysis_for_prompt(analysis, include_slide_count=not request.num_slides)
        )
        recommendations = format_recommendations_for_prompt(recommend_slide_types(analysis))
        if recommendations:
            system += "\n" + recommendations

    if request.additional_instructions:
        system += (
            "\n\nUSER'S ADDITIONAL INSTRUCTIONS (MUST FOLLOW):\n"
            f"{request.additional_instructions}"
        )

    return system, request.input_text


def outline_corrective_prompt(
    request: GenerationRequest,
    analysis: ContentAnalysis | None,
    error: BaseException,
) -> tuple[str, str]:
    """Outline prompt for a retry, naming what was wrong with the last answer."""
    system, user = outline_prompt(request, analysis)
    system += (
        "\n\nYOUR PREVIOUS ANSWER WAS REJECTED:\n"
        f"{str(error)[:500]}\n"
        "Answer again with a single JSON object that has a non-empty \"title\" and a "
        "non-empty \"slides\" array, respecting every limit above."
    )
    return system, user


# ------------------------------------------------------------------ #
# Slide content
# ------------------------------------------------------------------ #

_CONTENT_MODES = {
    TextMode.GENERATE: "Create engaging, original content that fits the slide theme.",
    TextMode.CONDENSE: "Extract and summarize the most relevant information for this slide.",
    TextMode.PRESERVE: "Use the original text as much as possible. Restructure, do not rewrite.",
}

BLOCK_EXAMPLES: dict[SlideType, list[dict[str, Any]]] = {
    SlideType.COVER: [
        {"kind": "title", "text": "Hovedtittel"},
        {"kind": "text", "text": "Undertittel eller dato"},
    ],
    SlideType.AGENDA: [
        {"kind": "title", "text": "Agenda"},
        {"kind": "bullets", "items": ["Punkt 1", "Punkt 2", "Punkt 3"]},
    ],
    SlideType.SECTION_HEADER: [
        {"kind": "title", "text": "Seksjonstittel"},
        {"kind": "text", "text": "Valgfri undertittel"},
    ],
    SlideType.BULLETS: [
        {"kind": "title", "text": "Slidetittel"},
        {"kind": "bullets", "items": ["Punkt 1", "Punkt 2", "Punkt 3"]},
    ],
    SlideType.TWO_COLUMN_TEXT: [
        {"kind": "title", "text": "Slidetittel"},
        {"kind": "text", "text": "Venstre kolonne"},
        {"kind": "text", "text": "Høyre kolonne"},
    ],
    SlideType.TEXT_PLUS_IMAGE: [
        {"kind": "title", "text": "Slidetittel"},
        {"kind": "text", "text": "Hovedtekst"},
        {"kind": "image", "alt": "Bildebeskrivelse for AI-generering"},
    ],
    SlideType.DECISIONS_LIST: [
        {"kind": "title", "text": "Beslutninger"},
        {"kind": "bullets", "items": ["Beslutning 1: ...", "Beslutning 2: ..."]},
    ],
    SlideType.ACTION_ITEMS_TABLE: [
        {"kind": "title", "text": "Oppgaveliste"},
        {
            "kind": "table",
            "columns": ["Oppgave", "Ansvarlig", "Frist"],
            "rows": [["Oppgave 1", "Person", "Dato"]],
        },
    ],
    SlideType.SUMMARY_NEXT_STEPS: [
        {"kind": "title", "text": "Neste steg"},
        {"kind": "bullets", "items": ["Steg 1", "Steg 2", "Steg 3"]},
    ],
    SlideType.QUOTE_CALLOUT: [
        {"kind": "callout", "text": "Sitat eller viktig budskap", "style": "quote"},
        {"kind": "text", "text": "Kilde eller referanse"},
    ],
    SlideType.TIMELINE_ROADMAP: [
        {"kind": "title", "text": "Prosjektplan"},
        {
            "kind": "timeline_step",
            "step": 1,
            "title": "Fase 1: Planlegging",
            "description": "Kartlegging og forberedelser",
            "status": "completed",
        },
        {
            "kind": "timeline_step",
            "step": 2,
            "title": "Fase 2: Utvikling",
            "description": "Implementering av løsningen",
            "status": "current",
        },
    ],
    SlideType.NUMBERED_GRID: [
        {"kind": "title", "text": "Våre kjerneverdier"},
        {
            "kind": "numbered_card",
            "number": 1,
            "text": "Første konsept",
            "description": "Beskrivelse med konkret innhold",
        },
        {
            "kind": "numbered_card",
            "number": 2,
            "text": "Andre konsept",
            "description": "Beskrivelse med konkret innhold",
        },
    ],
    SlideType.ICON_CARDS_WITH_IMAGE: [
        {"kind": "title", "text": "Plattformfunksjoner"},
        {
            "kind": "icon_card",
            "icon": "zap",
            "text": "Lynrask",
            "description": "Under 100 ms responstid for alle brukere",
            "bgColor": "pink",
        },
        {
            "kind": "icon_card",
            "icon": "shield",
            "text": "Sikkerhet",
            "description": "SOC2-sertifisert drift med full logging",
            "bgColor": "purple",
        },
        {"kind": "image", "alt": "Plattform-dashboard"},
    ],
    SlideType.SUMMARY_WITH_STATS: [
        {"kind": "title", "text": "Resultater 2024"},
        {"kind": "text", "text": "Kort kontekst for tallene"},
        {
            "kind": "stat_block",
            "value": "127%",
            "label": "Omsetningsvekst",
            "sublabel": "År over år",
        },
        {"kind": "stat_block", "value": "4,8M", "label": "Aktive brukere"},
    ],
    SlideType.HERO_STATS: [
        {"kind": "image", "alt": "Heltebilde for AI-generering"},
        {"kind": "title", "text": "Vår veksthistorie"},
        {"kind": "stat_block", "value": "250%", "label": "Omsetningsvekst"},
        {"kind": "stat_block", "value": "45", "label": "Land"},
    ],
    SlideType.SPLIT_WITH_CALLOUTS: [
        {"kind": "title", "text": "Hvorfor velge oss"},
        {"kind": "image", "alt": "Profesjonelt bilde av produkt eller team"},
        {
            "kind": "icon_card",
            "icon": "heart",
            "text": "Kundefokus",
            "description": "Dedikert support hele døgnet",
            "bgColor": "cyan",
        },
    ],
    SlideType.PERSON_SPOTLIGHT: [
        {"kind": "title", "text": "Møt vår leder"},
        {"kind": "image", "alt": "Profesjonelt portrett"},
        {"kind": "text", "text": "Ola Nordmann, CEO og medgründer"},
        {"kind": "bullets", "items": ["15+ års erfaring", "Tidligere VP hos Google"]},
    ],
}


def constraints_description(slide_type: SlideType) -> str:
    """Human readable limits for one slide type, one per line."""
    c = SLIDE_CONSTRAINTS[slide_type]
    parts: list[str] = []
    if c.title:
        parts.append(f"- Title: max {c.title} characters")
    if c.subtitle:
        parts.append(f"- Subtitle: max {c.subtitle} characters")
    if c.text:
        parts.append(f"- Text: max {c.text} characters")
    if c.bullets:
        parts.append(
            f"- Bullets: {c.bullets.min}-{c.bullets.max} items, "
            f"each max {c.bullets.max_chars} characters"
        )
    if c.items:
        line = f"- Items: {c.items.min}-{c.items.max}, each max {c.items.max_chars} characters"
        if c.items.min_chars:
            line += f" and at least {c.items.min_chars}"
        parts.append(line)
    if c.column_chars:
        parts.append(f"- Each column: max {c.column_chars} characters")
    if c.table:
        parts.append(f"- Table: max {c.table.max_rows} rows, {c.table.max_columns} columns")
    return "\n".join(parts)


def content_prompt(
    outline_slide: OutlineSlide,
    slide_type: SlideType,
    request: GenerationRequest,
    *,
    index: int,
    total: int,
) -> tuple[str, str]:
    """Build the prompt for one slide's content."""
    hints = ", ".join(outline_slide.hints) or "None"
    example = json.dumps(BLOCK_EXAMPLES[slide_type], ensure_ascii=False, indent=2)
    tone = f"\n- Tone: {request.tone}" if request.tone else ""

    system = f"""You are a presentation slide content generator.

TASK: Generate content for slide {index + 1} of {total}.

SLIDE INFO:
- Title: "{outline_slide.title}"
- Type: {slide_type.value}
- Hints: {hints}

INSTRUCTIONS:
- {_CONTENT_MODES[request.text_mode]}
- Language: {language_name(request.language)}{tone}

CONSTRAINTS FOR {slide_type.value.upper()}:
{constraints_description(slide_type)}

REQUIRED BLOCK STRUCTURE:
{example}

OUTPUT FORMAT:
{{"type": "{slide_type.value}", "layoutVariant": "default", "blocks": [...]}}

RULES:
- Stay within the character limits; this is critical
- Use the hints, they carry the key information
- Use specific numbers and facts from the input, avoid generic headlines
- Write descriptive alt text for images so an image model can use it
- Never use placeholder text like "Lorem ipsum", "TODO" or "[SETT INN]"
- For icon_card blocks always set "bgColor", rotating pink, purple, blue, cyan, green, orange

{_SENTENCE_CASE}

{_JSON_ONLY}"""

    if request.additional_instructions:
        system += (
            "\n\nUSER'S ADDITIONAL INSTRUCTIONS (MUST FOLLOW):\n"
            f"{request.additional_instructions}"
        )

    user = f"Original input/context:\n{request.input_text}\n\nGenerate content for this slide:\n"
    user += f"Title: {outline_slide.title}"
    if outline_slide.hints:
        user += f"\nKey points to include: {hints}"
    return system, user


# ------------------------------------------------------------------ #
# Repair
# ------------------------------------------------------------------ #

_NORWEGIAN_NUMBER_WORDS = {
    1: "Ett",
    2: "To",
    3: "Tre",
    4: "Fire",
    5: "Fem",
    6: "Seks",
    7: "Syv",
    8: "Åtte",
    9: "Ni",
    10: "Ti",
}


def _action_instructions(violations: list[Violation]) -> str:
    actions = {v.action for v in violations}
    sections: list[str] = []

    if ViolationAction.ADJUST_TITLE in actions:
        mismatch = next(v for v in violations if v.action == ViolationAction.ADJUST_TITLE)
        actual = mismatch.current or 0
        word = _NORWEGIAN_NUMBER_WORDS.get(actual, str(actual))
        sections.append(
            "ADJUST TITLE: the title names a number that does not match the item count.\n"
            f'- Replace the number with "{word}" or "{actual}", or remove the number\n'
            "- Do not add or remove items"
        )
    if ViolationAction.SHORTEN in actions:
        sections.append(
            "SHORTEN: compress the named fields to fit their limits.\n"
            "- Remove filler words, use shorter synonyms, combine related points\n"
            "- Keep the key facts; do not just cut mid-sentence"
        )
    if ViolationAction.INVALID in actions:
        sections.append(
            "FIX STRUCTURE: the named blocks do not match the block schema.\n"
            "- Keep each block's kind and supply every required field"
        )
    return "\n\n".join(sections)


def repair_prompt(
    slide_type: SlideType,
    blocks: dict[str, dict[str, Any]],
    violations: list[Violation],
) -> tuple[str, str]:
    """Ask the model to rewrite only the offending blocks.

    ``blocks`` maps to the blocks named by the violations, keyed by their
    index in the slide; the answer must use the same keys.
    """
    system = f"""You are a presentation slide repair assistant.

TASK: Fix the constraint violations in a slide without losing essential meaning.

VIOLATIONS:
{describe_violations(violations)}

ALL CONSTRAINTS FOR {slide_type.value.upper()}:
{constraints_description(slide_type)}

{_action_instructions(violations)}

RULES:
- Rewrite only the blocks you are given and keep each block's kind
- Never add new content, only fix the listed issues

{_SENTENCE_CASE}

OUTPUT FORMAT:
{{"blocks": {{"<block index>": {{...repaired block...}}}}}}
{_JSON_ONLY}"""

    user = "Blocks to repair, keyed by block index:\n" + json.dumps(
        blocks, ensure_ascii=False, indent=2
    )
    return system, user


def split_prompt(
    title: str,
    slide: dict[str, Any],
    violations: list[Violation],
) -> tuple[str, str]:
    """Ask the model to turn one overloaded slide into 2-4 focused slides."""
    system = f"""You are an expert presentation designer who excels at organizing content.

TASK: Transform one overloaded slide into 2-4 focused, standalone slides.

ORIGINAL TOPIC: "{title}"

TITLES:
- Every new slide gets its own descriptive title reflecting what it covers
- Never reuse the original title with "(fortsettelse)", "(del 2)" or similar suffixes

CONTENT:
- Reorganize by theme, do not just cut the content in half
- You may use a different slide type per new slide when it fits better
- Each new slide must respect the limits of its type

{_SENTENCE_CASE}

OUTPUT FORMAT:
{{"slides": [{{"type": "...", "layoutVariant": "default", "blocks": [...]}}, ...]}}
{_JSON_ONLY}"""

    user = (
        "This slide exceeds its limits:\n"
        f"{describe_violations(violations)}\n\n"
        "Slide to split:\n"
        f"{json.dumps(slide, ensure_ascii=False, indent=2)}"
    )
    return system, user
