"""LiteLLM wrapper for structured (JSON) model calls.

LiteLLM provides a unified interface for 100+ LLM providers. We proxy
all calls through a LiteLLM proxy server to:
1. Keep API keys out of the application code
2. Enable model routing, fallbacks, and cost tracking at the proxy level
3. Support swapping models without code changes (just config)

This module:
- Wraps litellm.acompletion() in JSON mode, plain and streaming
- Parses partial JSON while a response streams in
- Normalizes errors to our domain exceptions
- Logs token usage for billing/monitoring

Retries are not done here: callers wrap calls in a RetryPolicy
(src.generation.retry) so every model call has one bounded retry budget.
"""

from __future__ import annotations

import json
import re
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import litellm
import pydantic_core
import structlog

from src.config import Settings, get_settings

log = structlog.get_logger(__name__)

OnPartial = Callable[[dict[str, Any]], Awaitable[None]]


class LLMError(Exception):
    """Base exception for all LLM call failures."""

    retryable = True


class LLMRateLimitError(LLMError):
    """Upstream LLM rate limit exceeded."""


class LLMUnavailableError(LLMError):
    """LLM service is unavailable."""


class LLMTimeoutError(LLMError):
    """The provider did not answer in time."""


class LLMResponseError(LLMError):
    """The model answered, but not with a usable JSON object."""


class JSONModel(Protocol):
    """What the generation pipeline needs from a text model."""

    async def generate_json(
        self, *, system: str, user: str, temperature: float | None = None
    ) -> dict[str, Any]: ...

    async def stream_json(
        self,
        *,
        system: str,
        user: str,
        on_partial: OnPartial,
        temperature: float | None = None,
    ) -> dict[str, Any]: ...


# ------------------------------------------------------------------ #
# JSON helpers
# ------------------------------------------------------------------ #

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def strip_code_fence(text: str) -> str:
    return _FENCE.sub("", text.strip())


def parse_json_object(text: str) -> dict[str, Any]:
    """Parse a complete model response into a JSON object.

    Raises:
        LLMResponseError: if the text is not a JSON object
    """
    cleaned = strip_code_fence(text)
    if not cleaned:
        raise LLMResponseError("Model returned an empty response")
    try:
        value = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise LLMResponseError(f"Model returned malformed JSON: {exc.msg}") from exc
    if not isinstance(value, dict):
        raise LLMResponseError(f"Expected a JSON object, got {type(value).__name__}")
    return value


def parse_partial_json(text: str) -> dict[str, Any] | None:
    """Best-effort parse of an incomplete JSON object, None if nothing usable yet.

    Unterminated strings are kept so text can be shown while it streams.
    """
    cleaned = strip_code_fence(text)
    start = cleaned.find("{")
    if start < 0:
        return None
    try:
        value = pydantic_core.from_json(cleaned[start:], allow_partial="trailing-strings")
    except ValueError:
        return None
    return value if isinstance(value, dict) else None


def _map_error(exc: Exception) -> LLMError:
    if isinstance(exc, LLMError):
        return exc
    if isinstance(exc, litellm.exceptions.RateLimitError):
        return LLMRateLimitError(f"Rate limit from upstream LLM: {exc}")
    if isinstance(exc, litellm.exceptions.Timeout):
        return LLMTimeoutError(f"LLM call timed out: {exc}")
    if isinstance(exc, litellm.exceptions.ServiceUnavailableError | ConnectionError):
        return LLMUnavailableError(f"LLM service unavailable: {exc}")
    return LLMError(f"LLM completion failed: {exc}")


class LLMClient:
    """Thin wrapper around LiteLLM with JSON parsing and structured logging."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        # Configure LiteLLM to route through our proxy
        litellm.api_base = self._settings.litellm_base_url
        litellm.api_key = self._settings.litellm_api_key.get_secret_value()

    def _messages(self, system: str, user: str) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]

    async def complete(
        self,
        *,
        messages: list[dict[str, str]],
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int = 4096,
        stream: bool = False,
        **kwargs: Any,
    ) -> Any:
        """Send a chat completion request via LiteLLM.

        Args:
            messages: List of role/content dicts (OpenAI format)
            model: Model identifier. Falls back to LITELLM_DEFAULT_MODEL.
            temperature: Sampling temperature. Falls back to LLM_TEMPERATURE.
            max_tokens: Maximum output tokens
            stream: Return an async iterator of chunks instead of a response
            **kwargs: Additional kwargs passed to litellm.acompletion()

        Raises:
            LLMRateLimitError: Upstream rate limit
            LLMUnavailableError: Service unavailable
            LLMTimeoutError: Provider timeout
            LLMError: Any other LLM failure
        """
        effective_model = model or self._settings.litellm_default_model

        log.debug(
            "llm.completion_request",
            model=effective_model,
            message_count=len(messages),
            max_tokens=max_tokens,
            stream=stream,
        )

        try:
            response = await litellm.acompletion(
                model=effective_model,
                messages=messages,
                temperature=(
                    self._settings.llm_temperature if temperature is None else temperature
                ),
                max_tokens=max_tokens,
                stream=stream,
                timeout=self._settings.model_timeout_seconds,
                response_format={"type": "json_object"},
                **kwargs,
            )
        except Exception as exc:
            raise _map_error(exc) from exc

        if not stream:
            usage = getattr(response, "usage", None)
            if usage:
                log.info(
                    "llm.completion_done",
                    model=effective_model,
                    prompt_tokens=usage.prompt_tokens,
                    completion_tokens=usage.completion_tokens,
                    total_tokens=usage.total_tokens,
                )

        return response

    async def generate_json(
        self, *, system: str, user: str, temperature: float | None = None
    ) -> dict[str, Any]:
        """One non-streaming call, returning the parsed JSON object."""
        response = await self.complete(
            messages=self._messages(system, user), temperature=temperature
        )
        return parse_json_object(self.extract_text(response))

    async def stream_json(
        self,
        *,
        system: str,
        user: str,
        on_partial: OnPartial,
        temperature: float | None = None,
    ) -> dict[str, Any]:
        """Stream a JSON object, reporting each new partial parse.

        ``on_partial`` is awaited whenever the accumulated text parses to a
        different object than last time. If the stream fails, the call is
        repeated without streaming.
        """
        buffer: list[str] = []
        last: dict[str, Any] | None = None
        try:
            chunks = await self.complete(
                messages=self._messages(system, user), temperature=temperature, stream=True
            )
            async for chunk in chunks:
                delta = self.extract_delta(chunk)
                if not delta:
                    continue
                buffer.append(delta)
                partial = parse_partial_json("".join(buffer))
                if partial is not None and partial != last:
                    last = partial
                    await on_partial(partial)
        except LLMResponseError:
            raise
        except Exception as exc:
            log.warning(
                "llm.stream_fallback",
                error=type(exc).__name__,
                received_chars=sum(len(b) for b in buffer),
            )
            return await self.generate_json(system=system, user=user, temperature=temperature)

        return parse_json_object("".join(buffer))

    def extract_text(self, response: Any) -> str:
        """Extract the assistant text content from a completion response."""
        try:
            return response.choices[0].message.content or ""
        except (AttributeError, IndexError, KeyError):
            return ""

    def extract_delta(self, chunk: Any) -> str:
        """Extract the text delta from one streaming chunk."""
        try:
            return chunk.choices[0].delta.content or ""
        except (AttributeError, IndexError, KeyError):
            return ""
