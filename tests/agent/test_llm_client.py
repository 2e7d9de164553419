"""Tests for the LiteLLM JSON wrapper."""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import litellm
import pytest

from src.agent.llm import (
    LLMClient,
    LLMError,
    LLMRateLimitError,
    LLMResponseError,
    LLMTimeoutError,
    LLMUnavailableError,
    parse_json_object,
    parse_partial_json,
    strip_code_fence,
)


def _response(content: str) -> SimpleNamespace:
    usage = SimpleNamespace(prompt_tokens=100, completion_tokens=50, total_tokens=150)
    message = SimpleNamespace(content=content)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)], usage=usage)


def _chunk(text: str) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=text))])


async def _stream(*parts: str, fail_after: int | None = None):
    for i, part in enumerate(parts):
        if fail_after is not None and i == fail_after:
            raise ConnectionError("stream dropped")
        yield _chunk(part)


@pytest.fixture
def llm(fake_settings) -> LLMClient:
    return LLMClient(fake_settings)


class TestJsonHelpers:
    def test_strip_code_fence(self) -> None:
        assert strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_code_fence('  {"a": 1}  ') == '{"a": 1}'

    def test_parse_json_object(self) -> None:
        assert parse_json_object('```\n{"title": "Mål"}\n```') == {"title": "Mål"}

    @pytest.mark.parametrize("text", ["", "   ", "{not json", "[1, 2]", '"text"'])
    def test_parse_json_object_rejects(self, text: str) -> None:
        with pytest.raises(LLMResponseError):
            parse_json_object(text)

    def test_partial_keeps_unterminated_strings(self) -> None:
        text = '{"type": "bullets", "blocks": [{"kind": "title", "text": "Kva'
        partial = parse_partial_json(text)
        assert partial == {
            "type": "bullets",
            "blocks": [{"kind": "title", "text": "Kva"}],
        }

    @pytest.mark.parametrize("text", ["", "Here is", "[1, 2"])
    def test_partial_without_object(self, text: str) -> None:
        assert parse_partial_json(text) is None


class TestGenerateJson:
    @pytest.mark.asyncio
    async def test_returns_parsed_object(self, llm: LLMClient) -> None:
        with patch(
            "src.agent.llm.litellm.acompletion",
            new_callable=AsyncMock,
            return_value=_response('{"title": "Plan"}'),
        ) as mock_call:
            result = await llm.generate_json(system="sys", user="usr", temperature=0.2)

        assert result == {"title": "Plan"}
        kwargs = mock_call.call_args.kwargs
        assert kwargs["model"] == "openai/gpt-4o"
        assert kwargs["temperature"] == 0.2
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["timeout"] == 10.0
        assert [m["role"] for m in kwargs["messages"]] == ["system", "user"]

    @pytest.mark.asyncio
    async def test_default_temperature_from_settings(self, llm: LLMClient) -> None:
        with patch(
            "src.agent.llm.litellm.acompletion",
            new_callable=AsyncMock,
            return_value=_response("{}"),
        ) as mock_call:
            await llm.generate_json(system="s", user="u")

        assert mock_call.call_args.kwargs["temperature"] == 0.7

    @pytest.mark.asyncio
    async def test_malformed_answer(self, llm: LLMClient) -> None:
        with patch(
            "src.agent.llm.litellm.acompletion",
            new_callable=AsyncMock,
            return_value=_response("Sorry, I cannot do that."),
        ):
            with pytest.raises(LLMResponseError):
                await llm.generate_json(system="s", user="u")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "raised, expected",
        [
            (
                litellm.exceptions.RateLimitError(
                    message="slow down", llm_provider="openai", model="gpt-4o"
                ),
                LLMRateLimitError,
            ),
            (
                litellm.exceptions.Timeout(message="late", model="gpt-4o", llm_provider="openai"),
                LLMTimeoutError,
            ),
            (ConnectionError("refused"), LLMUnavailableError),
            (RuntimeError("weird"), LLMError),
        ],
    )
    async def test_errors_are_mapped(self, llm: LLMClient, raised, expected) -> None:
        with patch(
            "src.agent.llm.litellm.acompletion", new_callable=AsyncMock, side_effect=raised
        ):
            with pytest.raises(expected):
                await llm.generate_json(system="s", user="u")


class TestStreamJson:
    @pytest.mark.asyncio
    async def test_reports_growing_partials(self, llm: LLMClient) -> None:
        text = json.dumps({"type": "bullets", "blocks": [{"kind": "title", "text": "Vekst"}]})
        parts = [text[i : i + 10] for i in range(0, len(text), 10)]
        partials = []

        async def on_partial(partial):
            partials.append(partial)

        with patch(
            "src.agent.llm.litellm.acompletion",
            new_callable=AsyncMock,
            return_value=_stream(*parts),
        ) as mock_call:
            result = await llm.stream_json(system="s", user="u", on_partial=on_partial)

        assert result == json.loads(text)
        assert partials[-1] == result
        assert len(partials) > 1
        assert all(a != b for a, b in zip(partials, partials[1:]))
        assert mock_call.call_args.kwargs["stream"] is True

    @pytest.mark.asyncio
    async def test_dropped_stream_falls_back_to_one_call(self, llm: LLMClient) -> None:
        on_partial = AsyncMock()
        mock_call = AsyncMock(
            side_effect=[_stream('{"a": ', "1}", fail_after=1), _response('{"a": 1}')]
        )

        with patch("src.agent.llm.litellm.acompletion", mock_call):
            result = await llm.stream_json(system="s", user="u", on_partial=on_partial)

        assert result == {"a": 1}
        assert mock_call.await_count == 2
        assert mock_call.call_args.kwargs["stream"] is False

    @pytest.mark.asyncio
    async def test_unusable_streamed_answer_is_not_retried_here(self, llm: LLMClient) -> None:
        with patch(
            "src.agent.llm.litellm.acompletion",
            new_callable=AsyncMock,
            return_value=_stream("no json at all"),
        ) as mock_call:
            with pytest.raises(LLMResponseError):
                await llm.stream_json(system="s", user="u", on_partial=AsyncMock())

        assert mock_call.await_count == 1
