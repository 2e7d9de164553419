"""Content block schemas.

A block is the smallest typed unit of slide content. Blocks are
discriminated by ``kind`` and are immutable value objects: a model call or
a repair call returns a block whole, it is never patched field by field.

Bounds here are the hard schema limits. The tighter, per-slide-type
presentation limits live in src.generation.constraints.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import Field, TypeAdapter, ValidationError

from src.schemas.base import FrozenCamelModel


class BlockKind(StrEnum):
    TITLE = "title"
    TEXT = "text"
    BULLETS = "bullets"
    IMAGE = "image"
    TABLE = "table"
    CALLOUT = "callout"
    STAT_BLOCK = "stat_block"
    TIMELINE_STEP = "timeline_step"
    ICON_CARD = "icon_card"
    NUMBERED_CARD = "numbered_card"


class TitleBlock(FrozenCamelModel):
    kind: Literal["title"] = "title"
    text: str = Field(min_length=1, max_length=120)


class TextBlock(FrozenCamelModel):
    kind: Literal["text"] = "text"
    text: str = Field(min_length=1, max_length=500)


class BulletsBlock(FrozenCamelModel):
    kind: Literal["bullets"] = "bullets"
    items: list[Annotated[str, Field(min_length=1, max_length=150)]] = Field(
        min_length=1, max_length=8
    )


class ImageBlock(FrozenCamelModel):
    kind: Literal["image"] = "image"
    # Absent until the image phase stores a generated asset.
    url: str | None = None
    alt: str = Field(default="", max_length=200)
    crop_mode: Literal["cover", "contain", "fill"] = "cover"
    prompt: str | None = Field(default=None, max_length=500)


class TableBlock(FrozenCamelModel):
    kind: Literal["table"] = "table"
    columns: list[Annotated[str, Field(max_length=50)]] = Field(min_length=1, max_length=5)
    rows: list[list[Annotated[str, Field(max_length=100)]]] = Field(min_length=1, max_length=10)


class CalloutBlock(FrozenCamelModel):
    kind: Literal["callout"] = "callout"
    text: str = Field(min_length=1, max_length=300)
    style: Literal["info", "warning", "success", "quote"] = "info"
    cite: str | None = Field(default=None, max_length=100)


class StatBlock(FrozenCamelModel):
    kind: Literal["stat_block"] = "stat_block"
    value: str = Field(min_length=1, max_length=20)
    label: str = Field(min_length=1, max_length=50)
    sublabel: str | None = Field(default=None, max_length=100)


class TimelineStepBlock(FrozenCamelModel):
    kind: Literal["timeline_step"] = "timeline_step"
    step: int = Field(ge=1, le=10)
    title: str = Field(min_length=1, max_length=80)
    description: str | None = Field(default=None, max_length=200)
    status: Literal["completed", "current", "upcoming"] | None = None


class IconCardBlock(FrozenCamelModel):
    kind: Literal["icon_card"] = "icon_card"
    icon: str = Field(min_length=1, max_length=30)
    text: str = Field(min_length=1, max_length=60)
    description: str | None = Field(default=None, max_length=150)
    bg_color: str | None = Field(default=None, max_length=20)


class NumberedCardBlock(FrozenCamelModel):
    kind: Literal["numbered_card"] = "numbered_card"
    number: int = Field(ge=1, le=99)
    text: str = Field(min_length=1, max_length=60)
    description: str | None = Field(default=None, max_length=150)


Block = Annotated[
    TitleBlock
    | TextBlock
    | BulletsBlock
    | ImageBlock
    | TableBlock
    | CalloutBlock
    | StatBlock
    | TimelineStepBlock
    | IconCardBlock
    | NumberedCardBlock,
    Field(discriminator="kind"),
]

BLOCK_ADAPTER: TypeAdapter[Block] = TypeAdapter(Block)

BLOCK_MODELS: dict[str, type[FrozenCamelModel]] = {
    BlockKind.TITLE: TitleBlock,
    BlockKind.TEXT: TextBlock,
    BlockKind.BULLETS: BulletsBlock,
    BlockKind.IMAGE: ImageBlock,
    BlockKind.TABLE: TableBlock,
    BlockKind.CALLOUT: CalloutBlock,
    BlockKind.STAT_BLOCK: StatBlock,
    BlockKind.TIMELINE_STEP: TimelineStepBlock,
    BlockKind.ICON_CARD: IconCardBlock,
    BlockKind.NUMBERED_CARD: NumberedCardBlock,
}


def parse_block(raw: dict[str, Any]) -> Block:
    """Strictly parse one raw block dict.

    Raises:
        ValueError: if the kind is unknown
        pydantic.ValidationError: if a field is missing or out of bounds
    """
    kind = raw.get("kind")
    model = BLOCK_MODELS.get(kind) if isinstance(kind, str) else None
    if model is None:
        raise ValueError(f"Unknown block kind: {kind!r}")
    return model.model_validate(raw)  # type: ignore[return-value]


def block_errors(raw: dict[str, Any]) -> list[dict[str, Any]]:
    """Return pydantic error dicts for a raw block (empty when it parses).

    Unknown kinds are reported as a single synthetic ``unknown_kind`` error.
    """
    try:
        parse_block(raw)
    except ValidationError as exc:
        return exc.errors(include_url=False)
    except ValueError as exc:
        return [{"type": "unknown_kind", "loc": ("kind",), "msg": str(exc), "ctx": {}}]
    return []


def block_text(block: dict[str, Any]) -> str:
    """Flatten the human readable text of a raw or dumped block."""
    kind = block.get("kind")
    if kind in (BlockKind.TITLE, BlockKind.TEXT, BlockKind.CALLOUT):
        return str(block.get("text") or "")
    if kind == BlockKind.BULLETS:
        return ". ".join(str(item) for item in block.get("items") or [])
    if kind == BlockKind.TABLE:
        return ", ".join(str(col) for col in block.get("columns") or [])
    if kind == BlockKind.STAT_BLOCK:
        return " ".join(str(block.get(k) or "") for k in ("value", "label")).strip()
    if kind == BlockKind.TIMELINE_STEP:
        return str(block.get("title") or "")
    if kind in (BlockKind.ICON_CARD, BlockKind.NUMBERED_CARD):
        return str(block.get("text") or "")
    return ""
