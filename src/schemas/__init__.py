"""Structured vocabulary shared by the pipeline, the API and the stream."""

from src.schemas.block import Block, BlockKind, parse_block
from src.schemas.deck import (
    Amount,
    BrandKit,
    Deck,
    DeckMeta,
    GenerationRequest,
    ImageMode,
    TextMode,
    ThemeId,
)
from src.schemas.slide import (
    LenientOutline,
    Outline,
    OutlineSlide,
    Slide,
    SlideType,
    Violation,
    ViolationAction,
    sanitize_outline,
)

__all__ = [
    "Amount",
    "Block",
    "BlockKind",
    "BrandKit",
    "Deck",
    "DeckMeta",
    "GenerationRequest",
    "ImageMode",
    "LenientOutline",
    "Outline",
    "OutlineSlide",
    "Slide",
    "SlideType",
    "TextMode",
    "ThemeId",
    "Violation",
    "ViolationAction",
    "parse_block",
    "sanitize_outline",
]
