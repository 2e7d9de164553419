"""Deck and generation request schemas."""

from __future__ import annotations

from enum import StrEnum

from pydantic import Field, field_validator

from src.schemas.base import CamelModel, FrozenCamelModel
from src.schemas.slide import Outline, Slide
from src.schemas.text import strip_null_bytes


class ThemeId(StrEnum):
    NORDIC_MINIMALISM = "nordic_minimalism"
    NORDIC_LIGHT = "nordic_light"
    NORDIC_DARK = "nordic_dark"
    CORPORATE_BLUE = "corporate_blue"
    MINIMAL_WARM = "minimal_warm"
    MODERN_CONTRAST = "modern_contrast"


class TextMode(StrEnum):
    GENERATE = "generate"
    CONDENSE = "condense"
    PRESERVE = "preserve"


class Amount(StrEnum):
    BRIEF = "brief"
    MEDIUM = "medium"
    DETAILED = "detailed"


class ImageMode(StrEnum):
    NONE = "none"
    AI = "ai"


class ImageStyle(StrEnum):
    PHOTO = "photo"
    ILLUSTRATION = "illustration"
    ABSTRACT = "abstract"
    ICON = "icon"


class ExportFormat(StrEnum):
    PDF = "pdf"
    PPTX = "pptx"


_HEX_COLOR = r"^#[0-9a-fA-F]{6}$"


class BrandKit(FrozenCamelModel):
    logo_url: str | None = None
    primary_color: str | None = Field(default=None, pattern=_HEX_COLOR)
    secondary_color: str | None = Field(default=None, pattern=_HEX_COLOR)


class DeckMeta(CamelModel):
    title: str = Field(min_length=1, max_length=200)
    language: str = Field(default="no", min_length=2, max_length=10)
    theme_id: ThemeId = ThemeId.NORDIC_LIGHT
    brand_kit: BrandKit | None = None


class Deck(CamelModel):
    """A deck as readers see it: metadata plus the slides appended so far."""

    id: str | None = None
    deck: DeckMeta
    slides: list[Slide] = Field(default_factory=list)


class GenerationRequest(FrozenCamelModel):
    """Everything a generation job needs. Immutable once the job exists."""

    input_text: str = Field(min_length=1, max_length=50_000)
    text_mode: TextMode = TextMode.GENERATE
    language: str = Field(default="no", min_length=2, max_length=10)
    tone: str | None = Field(default=None, max_length=100)
    audience: str | None = Field(default=None, max_length=200)
    amount: Amount = Amount.MEDIUM
    num_slides: int | None = Field(default=None, ge=1, le=50)
    theme_id: ThemeId = ThemeId.NORDIC_LIGHT
    brand_kit: BrandKit | None = None
    image_mode: ImageMode = ImageMode.NONE
    image_style: ImageStyle | None = None
    image_art_style: str | None = Field(default=None, max_length=100)
    image_keywords: str | None = Field(default=None, max_length=200)
    additional_instructions: str | None = Field(default=None, max_length=1000)
    export_as: ExportFormat | None = None
    template_id: str | None = Field(default=None, max_length=100)
    outline: Outline | None = None

    @field_validator("input_text", "additional_instructions", mode="before")
    @classmethod
    def _strip_nul(cls, value: object) -> object:
        if isinstance(value, str):
            return strip_null_bytes(value)
        return value

    @field_validator("input_text")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("inputText must contain non-whitespace characters")
        return value
