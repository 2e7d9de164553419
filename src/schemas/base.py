"""Shared pydantic base for wire-format models.

The public API, the stream events and the model prompts all speak
camelCase JSON; Python code uses snake_case attributes.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """BaseModel serialized with camelCase aliases, accepting either form on input."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_wire(self) -> dict:
        """Dump to a JSON-compatible dict with camelCase keys, omitting None."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class FrozenCamelModel(CamelModel):
    """Immutable value object variant of CamelModel."""

    model_config = ConfigDict(frozen=True)
