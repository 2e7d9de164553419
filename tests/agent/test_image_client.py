"""Tests for the LiteLLM image client."""

import base64
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import httpx
import litellm
import pytest

from src.agent.images import ImageClient, ImageError

PNG = b"\x89PNG\r\n\x1a\nfake"


def _response(**item) -> SimpleNamespace:
    return SimpleNamespace(data=[SimpleNamespace(**item)])


@pytest.fixture
def images(fake_settings) -> ImageClient:
    return ImageClient(fake_settings)


class TestImageClient:
    @pytest.mark.asyncio
    async def test_base64_payload(self, images: ImageClient) -> None:
        encoded = base64.b64encode(PNG).decode()
        with patch(
            "src.agent.images.litellm.aimage_generation",
            new_callable=AsyncMock,
            return_value=_response(b64_json=encoded, url=None),
        ) as mock_call:
            data = await images.generate("a fjord at dawn", size="1024x1024")

        assert data == PNG
        kwargs = mock_call.call_args.kwargs
        assert kwargs["model"] == "openai/dall-e-3"
        assert kwargs["size"] == "1024x1024"
        assert kwargs["n"] == 1

    @pytest.mark.asyncio
    async def test_url_payload_is_downloaded(self, images: ImageClient) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(200, content=PNG))
        real_client = httpx.AsyncClient

        with patch(
            "src.agent.images.litellm.aimage_generation",
            new_callable=AsyncMock,
            return_value=_response(b64_json=None, url="https://cdn.example/img.png"),
        ), patch(
            "src.agent.images.httpx.AsyncClient",
            lambda **kwargs: real_client(transport=transport, **kwargs),
        ):
            data = await images.generate("prompt")

        assert data == PNG

    @pytest.mark.asyncio
    async def test_failed_download(self, images: ImageClient) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(404))
        real_client = httpx.AsyncClient

        with patch(
            "src.agent.images.litellm.aimage_generation",
            new_callable=AsyncMock,
            return_value=_response(b64_json=None, url="https://cdn.example/gone.png"),
        ), patch(
            "src.agent.images.httpx.AsyncClient",
            lambda **kwargs: real_client(transport=transport, **kwargs),
        ):
            with pytest.raises(ImageError, match="download failed") as exc_info:
                await images.generate("prompt")

        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response", [SimpleNamespace(data=[]), _response(b64_json=None, url=None)]
    )
    async def test_empty_response(self, images: ImageClient, response) -> None:
        with patch(
            "src.agent.images.litellm.aimage_generation",
            new_callable=AsyncMock,
            return_value=response,
        ):
            with pytest.raises(ImageError):
                await images.generate("prompt")

    @pytest.mark.asyncio
    async def test_content_policy_is_not_retryable(self, images: ImageClient) -> None:
        rejected = litellm.exceptions.ContentPolicyViolationError(
            message="blocked", model="dall-e-3", llm_provider="openai"
        )
        with patch(
            "src.agent.images.litellm.aimage_generation",
            new_callable=AsyncMock,
            side_effect=rejected,
        ):
            with pytest.raises(ImageError) as exc_info:
                await images.generate("prompt")

        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_provider_outage_is_retryable(self, images: ImageClient) -> None:
        with patch(
            "src.agent.images.litellm.aimage_generation",
            new_callable=AsyncMock,
            side_effect=ConnectionError("refused"),
        ):
            with pytest.raises(ImageError) as exc_info:
                await images.generate("prompt")

        assert exc_info.value.retryable is True
