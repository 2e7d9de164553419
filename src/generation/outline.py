"""Outline generation: one model call, parsed leniently, then sanitized."""

from __future__ import annotations

import structlog
from pydantic import ValidationError

from src.agent.llm import JSONModel, LLMError, LLMResponseError
from src.generation.analysis import ContentAnalysis
from src.generation.errors import ErrorCode, PipelineError
from src.generation.prompts import outline_corrective_prompt, outline_prompt
from src.generation.retry import RetryPolicy
from src.schemas.deck import GenerationRequest
from src.schemas.slide import LenientOutline, Outline, sanitize_outline

log = structlog.get_logger(__name__)


class OutlineGenerator:
    """Produces a strict ``Outline`` for a generation request.

    Model output is parsed with the lenient schema and truncated to the
    strict bounds, so an answer that is merely too long never costs a
    retry. Malformed answers are retried with a corrective prompt that
    quotes the validation error.
    """

    def __init__(self, llm: JSONModel, policy: RetryPolicy) -> None:
        self._llm = llm
        self._policy = policy

    async def generate(
        self, request: GenerationRequest, analysis: ContentAnalysis | None = None
    ) -> Outline:
        """Return the outline for ``request``.

        A request that already carries an outline skips the model call.

        Raises:
            PipelineError: ``OUTLINE_FAILED`` when every attempt failed
        """
        if request.outline is not None:
            log.info("outline.supplied", slides=len(request.outline.slides))
            return request.outline

        prompt = outline_prompt(request, analysis)

        async def corrective(attempt: int, error: BaseException) -> None:
            nonlocal prompt
            if isinstance(error, LLMResponseError):
                prompt = outline_corrective_prompt(request, analysis, error)
            log.info(
                "outline.retry",
                attempt=attempt,
                corrective=isinstance(error, LLMResponseError),
            )

        async def attempt(_: int) -> Outline:
            system, user = prompt
            raw = await self._llm.generate_json(system=system, user=user)
            return parse_outline(raw)

        try:
            outline = await self._policy.run(attempt, on_retry=corrective)
        except (LLMError, TimeoutError) as exc:
            log.warning("outline.failed", error=type(exc).__name__, detail=str(exc)[:200])
            raise PipelineError(
                ErrorCode.OUTLINE_FAILED, f"Outline generation failed: {exc}"
            ) from exc

        log.info("outline.generated", title=outline.title, slides=len(outline.slides))
        return outline


def parse_outline(raw: dict) -> Outline:
    """Parse a model answer into a strict outline.

    Raises:
        LLMResponseError: when the answer does not fit even the lenient schema
    """
    try:
        lenient = LenientOutline.model_validate(raw)
    except ValidationError as exc:
        raise LLMResponseError(f"Outline did not match the schema: {exc}") from exc
    return sanitize_outline(lenient)
