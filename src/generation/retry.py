"""Bounded retry for model calls.

Outline, content, repair and image calls share one combinator instead of
four hand-written loops. A policy bounds the attempts, backs off
exponentially, puts a hard timeout on every attempt and only retries the
exception types it is told to.

    policy = RetryPolicy(name="outline", max_attempts=3, timeout=90)
    outline = await policy.run(call_model, on_retry=use_corrective_prompt)

``fn`` receives the 1-based attempt number; ``on_retry`` is awaited before
every attempt after the first with the previous attempt's error, which is
how callers switch to a stricter prompt.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from src.agent.images import ImageError
from src.agent.llm import LLMError
from src.config import Settings

log = structlog.get_logger(__name__)

T = TypeVar("T")

OnRetry = Callable[[int, BaseException], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    name: str
    max_attempts: int
    base_delay: float = 1.0
    max_delay: float = 10.0
    timeout: float | None = None
    retry_on: tuple[type[BaseException], ...] = (LLMError,)

    def is_retryable(self, exc: BaseException) -> bool:
        """Timeouts and listed types retry, unless the error says it is permanent."""
        if isinstance(exc, TimeoutError):
            return True
        return isinstance(exc, self.retry_on) and getattr(exc, "retryable", True)

    def _log_retry(self, state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        log.warning(
            "retry.scheduled",
            policy=self.name,
            attempt=state.attempt_number,
            max_attempts=self.max_attempts,
            error=type(exc).__name__ if exc else None,
            detail=str(exc)[:200] if exc else None,
        )

    async def _attempt(self, fn: Callable[[int], Awaitable[T]], number: int) -> T:
        if self.timeout is None:
            return await fn(number)
        async with asyncio.timeout(self.timeout):
            return await fn(number)

    async def run(
        self,
        fn: Callable[[int], Awaitable[T]],
        *,
        on_retry: OnRetry | None = None,
    ) -> T:
        """Call ``fn`` until it succeeds or the attempts run out.

        Raises:
            The last error once attempts are exhausted, or immediately for
            errors outside ``retry_on`` (and ``TimeoutError``).
        """
        last_error: BaseException | None = None
        result: T | None = None

        async for attempt in AsyncRetrying(
            retry=retry_if_exception(self.is_retryable),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.base_delay, min=self.base_delay, max=self.max_delay
            ),
            before_sleep=self._log_retry,
            reraise=True,
        ):
            with attempt:
                number = attempt.retry_state.attempt_number
                if last_error is not None and on_retry is not None:
                    await on_retry(number, last_error)
                try:
                    result = await self._attempt(fn, number)
                except Exception as exc:
                    last_error = exc
                    raise

        return result  # type: ignore[return-value]


@dataclass(frozen=True)
class RetryPolicies:
    """The four model-call policies, built from settings."""

    outline: RetryPolicy
    content: RetryPolicy
    repair: RetryPolicy
    image: RetryPolicy

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicies:
        def build(name: str, attempts: int, **kwargs: object) -> RetryPolicy:
            return RetryPolicy(
                name=name,
                max_attempts=attempts,
                base_delay=settings.model_retry_base_delay_seconds,
                max_delay=settings.model_retry_max_delay_seconds,
                timeout=settings.model_timeout_seconds,
                **kwargs,  # type: ignore[arg-type]
            )

        return cls(
            outline=build("outline", settings.outline_max_attempts),
            content=build("content", settings.content_max_attempts),
            repair=build("repair", 1),
            image=build("image", settings.image_max_attempts, retry_on=(ImageError,)),
        )
