"""Image generation through LiteLLM.

Returns raw image bytes; storing them is the object store's job.
"""

from __future__ import annotations

import base64
from typing import Any, Protocol

import httpx
import litellm
import structlog

from src.config import Settings, get_settings

log = structlog.get_logger(__name__)


class ImageError(Exception):
    """Image generation failed.

    ``retryable`` is False for failures another attempt will not fix, such
    as a prompt rejected by the provider's content policy.
    """

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class ImageModel(Protocol):
    async def generate(self, prompt: str, *, size: str = "1792x1024") -> bytes: ...


class ImageClient:
    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()

    async def generate(self, prompt: str, *, size: str = "1792x1024") -> bytes:
        """Generate one image and return its bytes.

        Raises:
            ImageError: on provider or download failure
        """
        model = self._settings.litellm_image_model
        log.debug("image.request", model=model, prompt_chars=len(prompt), size=size)

        try:
            response = await litellm.aimage_generation(
                model=model,
                prompt=prompt,
                n=1,
                size=size,
                api_base=self._settings.litellm_base_url,
                api_key=self._settings.litellm_api_key.get_secret_value(),
                timeout=self._settings.model_timeout_seconds,
            )
        except litellm.exceptions.ContentPolicyViolationError as exc:
            raise ImageError(f"Prompt rejected by content policy: {exc}", retryable=False) from exc
        except litellm.exceptions.BadRequestError as exc:
            raise ImageError(f"Image request rejected: {exc}", retryable=False) from exc
        except Exception as exc:
            raise ImageError(f"Image generation failed: {exc}") from exc

        return await self._read_image(response)

    async def _read_image(self, response: Any) -> bytes:
        try:
            item = response.data[0]
        except (AttributeError, IndexError, TypeError) as exc:
            raise ImageError("Image response contained no data") from exc

        b64 = getattr(item, "b64_json", None)
        if b64:
            return base64.b64decode(b64)

        url = getattr(item, "url", None)
        if not url:
            raise ImageError("Image response had neither data nor URL")

        try:
            async with httpx.AsyncClient(timeout=self._settings.model_timeout_seconds) as client:
                resp = await client.get(url)
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise ImageError(f"Image download failed: {exc}") from exc
        return resp.content
