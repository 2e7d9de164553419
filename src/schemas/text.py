"""Deterministic text helpers shared by the schema and repair layers."""

from __future__ import annotations

ELLIPSIS = "..."


def truncate_at_word_boundary(text: str, max_length: int) -> str:
    """Shorten ``text`` to at most ``max_length`` characters.

    Cuts to ``max_length - 3``, backs up to the last space when that space
    sits past half of the target, and appends an ellipsis. Text that already
    fits is returned unchanged. Limits too small for an ellipsis get a hard
    cut.
    """
    if len(text) <= max_length:
        return text
    if max_length <= len(ELLIPSIS):
        return text[:max_length]

    target = max_length - len(ELLIPSIS)
    cut = text[:target]
    last_space = cut.rfind(" ")
    if last_space > target * 0.5:
        cut = cut[:last_space]
    return cut.rstrip(" ,;:-") + ELLIPSIS


def strip_null_bytes(text: str) -> str:
    """Remove NUL characters, which PostgreSQL text columns reject."""
    return text.replace("\x00", "")
