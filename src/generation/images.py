"""Image phase: one generated picture per eligible slide.

Prompts are built from the slide's own text, keywords from the content
analysis and the requested style, and always end with an instruction not
to render text. Image bytes go through the object store; the returned URL
is written into the slide's image block (appended for types that always
carry an image).
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

import structlog

from src.agent.images import ImageError, ImageModel
from src.generation.analysis import ContentAnalysis
from src.generation.retry import RetryPolicy
from src.schemas.block import BlockKind, block_text
from src.schemas.deck import GenerationRequest, ImageStyle
from src.schemas.slide import Slide, SlideType
from src.storage.object_store import ObjectStore, ObjectStoreError

log = structlog.get_logger(__name__)

IMAGE_ELIGIBLE_TYPES = frozenset(
    {
        SlideType.COVER,
        SlideType.SECTION_HEADER,
        SlideType.TEXT_PLUS_IMAGE,
        SlideType.SUMMARY_NEXT_STEPS,
        SlideType.HERO_STATS,
        SlideType.SPLIT_WITH_CALLOUTS,
        SlideType.PERSON_SPOTLIGHT,
        SlideType.ICON_CARDS_WITH_IMAGE,
        SlideType.TWO_COLUMN_TEXT,
        SlideType.TIMELINE_ROADMAP,
        SlideType.NUMBERED_GRID,
    }
)

# Types that get an image block appended when the model did not write one.
ALWAYS_NEEDS_IMAGE = frozenset(
    {
        SlideType.COVER,
        SlideType.TEXT_PLUS_IMAGE,
        SlideType.HERO_STATS,
        SlideType.SPLIT_WITH_CALLOUTS,
        SlideType.PERSON_SPOTLIGHT,
        SlideType.ICON_CARDS_WITH_IMAGE,
    }
)

STYLE_MODIFIERS: dict[ImageStyle | None, str] = {
    ImageStyle.PHOTO: "Ultra-realistic photograph, high resolution, professional lighting",
    ImageStyle.ILLUSTRATION: "Digital illustration, clean lines, modern flat design",
    ImageStyle.ABSTRACT: "Abstract composition, simple shapes, limited color palette",
    ImageStyle.ICON: "Isometric 3D illustration, clean geometric shapes, modern tech aesthetic",
    None: "Professional business image, clean and modern, suitable for presentations",
}

NO_TEXT_INSTRUCTION = (
    "CRITICAL: The image must NOT contain any text, words, letters or numbers, "
    "signs, labels, banners, watermarks, UI elements or logos with readable text."
)

MAX_PROMPT_CHARS = 1000
MAX_KEYWORDS = 5

_STOPWORDS = frozenset(
    {"og", "med", "for", "til", "fra", "som", "det", "den", "de", "en", "et", "i", "på", "av"}
)

_TYPE_SCENES: dict[SlideType, str] = {
    SlideType.COVER: (
        "Cinematic, modern, visually stunning background. High-end corporate aesthetic "
        "with dramatic lighting."
    ),
    SlideType.SECTION_HEADER: (
        "Abstract geometric shapes or gradients representing the concept. Subtle depth."
    ),
    SlideType.TEXT_PLUS_IMAGE: "Image that clearly illustrates this concept.",
    SlideType.TWO_COLUMN_TEXT: "Visual showing comparison or contrast between two elements.",
    SlideType.SUMMARY_NEXT_STEPS: (
        "Achievement and forward momentum. Aspirational imagery with warm lighting."
    ),
    SlideType.PERSON_SPOTLIGHT: (
        "Corporate headshot portrait in a modern office. Natural lighting, soft bokeh."
    ),
    SlideType.HERO_STATS: (
        "Wide cinematic shot suitable for overlaying statistics. Dramatic lighting."
    ),
    SlideType.SPLIT_WITH_CALLOUTS: "Architectural or business interior with clean lines.",
    SlideType.ICON_CARDS_WITH_IMAGE: "Clean aesthetic that complements icon cards.",
    SlideType.TIMELINE_ROADMAP: "Imagery suggesting a journey, phases or progression.",
    SlideType.NUMBERED_GRID: "Abstract business imagery that complements numbered cards.",
}


def _title(slide: Slide) -> str:
    for block in slide.blocks:
        if block.kind == BlockKind.TITLE:
            return block.text
    return ""


def _image_block_index(slide: Slide) -> int | None:
    for index, block in enumerate(slide.blocks):
        if block.kind == BlockKind.IMAGE:
            return index
    return None


def needs_image(slide: Slide) -> bool:
    """True for eligible slides whose image block has no URL yet."""
    if slide.type not in IMAGE_ELIGIBLE_TYPES:
        return False
    index = _image_block_index(slide)
    if index is None:
        return slide.type in ALWAYS_NEEDS_IMAGE
    url = slide.blocks[index].url or ""
    return not url or "placeholder" in url


def extract_keywords(
    slide: Slide,
    analysis: ContentAnalysis | None = None,
    extra: str | None = None,
) -> list[str]:
    """Up to five short keywords from the slide title, the analysis and the user."""
    keywords = [
        word
        for word in _title(slide).split()
        if len(word) > 3 and word.lower() not in _STOPWORDS
    ][:3]

    if extra:
        keywords.extend(k.strip() for k in extra.split(",") if k.strip())
    if analysis is not None:
        keywords.extend(analysis.statistics[:2])
        keywords.extend(f.title for f in analysis.features[:3])
        keywords.extend(analysis.topics[:2])
        if len(analysis.sequential_process) >= 3:
            keywords.append(analysis.sequential_process[0].text[:30])

    return [k[:40] for k in dict.fromkeys(keywords)][:MAX_KEYWORDS]


def build_image_prompt(
    slide: Slide,
    *,
    deck_title: str | None = None,
    analysis: ContentAnalysis | None = None,
    request: GenerationRequest | None = None,
) -> str:
    title = _title(slide)
    if slide.type == SlideType.PERSON_SPOTLIGHT:
        keywords: list[str] = []
    else:
        keywords = extract_keywords(
            slide, analysis, request.image_keywords if request is not None else None
        )

    content = ". ".join(
        text
        for text in (
            block_text(b.model_dump(mode="json"))
            for b in slide.blocks
            if b.kind not in (BlockKind.TITLE, BlockKind.IMAGE)
        )
        if text
    )[:200]

    parts = [f'Professional presentation image for "{title}".']
    if slide.type == SlideType.COVER and deck_title and deck_title != title:
        parts.append(f"Topic: {deck_title}.")
    if keywords:
        parts.append(f"Key concepts: {', '.join(keywords)}.")
    elif content:
        parts.append(f"Context: {content}.")
    if slide.type == SlideType.HERO_STATS and analysis is not None and analysis.statistics:
        parts.append(f"Key metrics: {', '.join(analysis.statistics[:3])}.")
    parts.append(_TYPE_SCENES.get(slide.type, "Modern, sophisticated corporate aesthetic."))

    style = request.image_style if request is not None else None
    parts.append(STYLE_MODIFIERS[style] + ".")
    if request is not None and request.image_art_style:
        parts.append(f"Art style: {request.image_art_style}.")

    parts.append(NO_TEXT_INSTRUCTION)
    return " ".join(parts)[:MAX_PROMPT_CHARS]


def with_image(slide: Slide, url: str) -> Slide:
    """Return ``slide`` with ``url`` set on its image block, adding one if needed."""
    blocks = [b.model_dump(mode="json", exclude_none=True) for b in slide.blocks]
    index = _image_block_index(slide)
    if index is not None:
        blocks[index]["url"] = url
    else:
        blocks.append(
            {
                "kind": BlockKind.IMAGE.value,
                "url": url,
                "alt": f"AI-generated image for {_title(slide) or 'slide'}"[:200],
                "crop_mode": "cover",
            }
        )
    return Slide.model_validate(
        {
            "type": slide.type,
            "layout_variant": slide.layout_variant,
            "blocks": blocks,
            "violations": slide.violations,
            "flagged": slide.flagged,
        }
    )


@dataclass(frozen=True)
class ImageResult:
    slide_index: int
    url: str | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.url is not None


class ImageGenerator:
    def __init__(self, images: ImageModel, store: ObjectStore, policy: RetryPolicy) -> None:
        self._images = images
        self._store = store
        self._policy = policy

    @staticmethod
    def eligible(slides: list[Slide]) -> list[int]:
        return [i for i, slide in enumerate(slides) if needs_image(slide)]

    async def generate(
        self,
        slide: Slide,
        *,
        slide_index: int,
        deck_id: str,
        deck_title: str | None = None,
        analysis: ContentAnalysis | None = None,
        request: GenerationRequest | None = None,
    ) -> ImageResult:
        """Generate and store one slide image. Failures are returned, never raised."""
        prompt = build_image_prompt(
            slide, deck_title=deck_title, analysis=analysis, request=request
        )
        try:
            data = await self._policy.run(lambda _: self._images.generate(prompt))
            key = f"{deck_id}/slide-{slide_index}-{uuid.uuid4().hex[:8]}.png"
            url = await self._store.put(key, data, content_type="image/png")
        except (ImageError, ObjectStoreError, TimeoutError) as exc:
            log.warning(
                "images.failed",
                slide_index=slide_index,
                deck_id=deck_id,
                error=str(exc) or type(exc).__name__,
            )
            return ImageResult(slide_index=slide_index, error=str(exc) or type(exc).__name__)

        log.info("images.stored", slide_index=slide_index, deck_id=deck_id, url=url)
        return ImageResult(slide_index=slide_index, url=url)
