"""Deck read endpoint.

GET /api/v1/decks/{id} returns the deck as far as it has been generated:
metadata plus slides ordered by position. While a job is running the
slide list only grows; positions are never reordered.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from src.api.errors import not_found
from src.auth.dependencies import Caller, get_current_caller
from src.schemas.deck import BrandKit, DeckMeta
from src.services.container import Services, get_services

router = APIRouter(prefix="/decks", tags=["decks"])


@router.get("/{deck_id}")
async def get_deck(
    deck_id: str,
    caller: Caller = Depends(get_current_caller),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    deck = await services.decks.get(deck_id)
    if deck is None or deck.workspace_id != caller.workspace_id:
        raise not_found("Deck")

    meta = DeckMeta(
        title=deck.title,
        language=deck.language,
        theme_id=deck.theme_id,
        brand_kit=BrandKit.model_validate(deck.brand_kit) if deck.brand_kit else None,
    )
    return {
        "id": deck.id,
        "deck": meta.to_wire(),
        "slides": deck.slides,
        "slideCount": len(deck.slides),
        "updatedAt": deck.updated_at.isoformat(),
    }
