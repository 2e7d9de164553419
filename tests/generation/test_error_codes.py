"""Tests for error codes, API mapping and localized messages."""

import pytest

from src.generation.errors import (
    API_ERROR_STATUS,
    ApiErrorCode,
    ErrorCode,
    PipelineError,
    api_code_for,
    user_message,
)


class TestApiCodeFor:
    @pytest.mark.parametrize(
        "code",
        [ErrorCode.OUTLINE_FAILED, ErrorCode.CONTENT_FAILED, ErrorCode.MAX_RETRIES],
    )
    def test_model_failures(self, code):
        assert api_code_for(code) == ApiErrorCode.MODEL_ERROR

    def test_rate_limit_message_wins(self):
        assert api_code_for("OUTLINE_FAILED", "Rate limit from upstream LLM") == (
            ApiErrorCode.RATE_LIMITED
        )

    def test_cancelled_and_unknown_are_internal(self):
        assert api_code_for(ErrorCode.CANCELLED) == ApiErrorCode.INTERNAL_ERROR
        assert api_code_for("SOMETHING_ELSE") == ApiErrorCode.INTERNAL_ERROR

    def test_every_api_code_has_a_status(self):
        assert set(API_ERROR_STATUS) == set(ApiErrorCode)
        assert API_ERROR_STATUS[ApiErrorCode.CONFLICT] == 409


class TestUserMessage:
    @pytest.mark.parametrize("language", ["no", "nn", "nb", "nb-NO"])
    def test_norwegian_variants_use_bokmal(self, language):
        assert user_message(ErrorCode.OUTLINE_FAILED, language).title == "Kunne ikke lage outline"

    def test_english(self):
        assert user_message(ErrorCode.CANCELLED, "en").title == "Generation cancelled"

    def test_unknown_language_falls_back_to_bokmal(self):
        assert user_message(ErrorCode.CANCELLED, "de").title == "Generering avbrutt"

    def test_unknown_code_gets_generic_message(self):
        message = user_message("NOPE", "en")
        assert message.title == "Something went wrong"
        assert message.is_temporary is True


def test_pipeline_error_carries_code():
    error = PipelineError(ErrorCode.CONTENT_FAILED, "no slides")
    assert error.code == ErrorCode.CONTENT_FAILED
    assert str(error) == "no slides"
