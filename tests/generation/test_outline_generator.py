"""Tests for outline generation."""

import pytest

from src.agent.llm import LLMResponseError
from src.generation.errors import ErrorCode, PipelineError
from src.generation.outline import OutlineGenerator, parse_outline
from src.generation.retry import RetryPolicy
from src.schemas.slide import Outline, OutlineSlide, SlideType
from src.testing.mock_llm import MockLLMClient
from tests.conftest import make_request


@pytest.fixture
def policy():
    return RetryPolicy(name="outline", max_attempts=3, base_delay=0, max_delay=0)


class TestOutlineGenerator:
    @pytest.mark.asyncio
    async def test_supplied_outline_skips_the_model(self, policy):
        llm = MockLLMClient()
        supplied = Outline(title="Egen plan", slides=[OutlineSlide(title="Start")])

        outline = await OutlineGenerator(llm, policy).generate(make_request(outline=supplied))

        assert outline == supplied
        assert llm.calls == []

    @pytest.mark.asyncio
    async def test_generates_requested_number_of_slides(self, policy):
        outline = await OutlineGenerator(MockLLMClient(), policy).generate(
            make_request(num_slides=6)
        )

        assert len(outline.slides) == 6
        assert outline.slides[0].suggested_type == SlideType.COVER
        assert outline.slides[-1].suggested_type == SlideType.SUMMARY_NEXT_STEPS

    @pytest.mark.asyncio
    async def test_retry_uses_corrective_prompt(self, policy):
        llm = MockLLMClient(fail_first=1)

        outline = await OutlineGenerator(llm, policy).generate(make_request())

        assert outline.slides
        assert len(llm.calls) == 2
        assert "YOUR PREVIOUS ANSWER WAS REJECTED" not in llm.calls[0][0]
        assert "YOUR PREVIOUS ANSWER WAS REJECTED" in llm.calls[1][0]

    @pytest.mark.asyncio
    async def test_exhausted_attempts_fail_the_outline(self, policy):
        llm = MockLLMClient(fail_first=10)

        with pytest.raises(PipelineError) as exc_info:
            await OutlineGenerator(llm, policy).generate(make_request())

        assert exc_info.value.code == ErrorCode.OUTLINE_FAILED
        assert len(llm.calls) == 3


class TestParseOutline:
    def test_rejects_answer_without_slides(self):
        with pytest.raises(LLMResponseError):
            parse_outline({"title": "Tom"})

    def test_oversized_answer_is_truncated_not_rejected(self):
        raw = {
            "title": "Veldig lang tittel " * 8,
            "slides": [
                {"title": f"Lysbilde {i}", "hints": ["a", "b", "c", "d"]} for i in range(35)
            ],
        }

        outline = parse_outline(raw)

        assert len(outline.slides) == 30
        assert len(outline.title) <= 100
        assert outline.slides[0].hints == ["a", "b", "c"]
