"""Error codes for generation jobs and their user-facing messages.

Codes are stable and machine readable: they are persisted on the job,
sent in ``generation_failed`` events and returned by the poll endpoint.
Human readable text in the user's language is a separate layer
(``user_message``) so API consumers can branch on codes without parsing
prose.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class ErrorCode(StrEnum):
    OUTLINE_FAILED = "OUTLINE_FAILED"
    CONTENT_FAILED = "CONTENT_FAILED"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    REPAIR_FAILED = "REPAIR_FAILED"
    MAX_RETRIES = "MAX_RETRIES"
    CANCELLED = "CANCELLED"
    INTERNAL = "INTERNAL_ERROR"


class ApiErrorCode(StrEnum):
    INVALID_REQUEST = "INVALID_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    RATE_LIMITED = "RATE_LIMITED"
    MODEL_ERROR = "MODEL_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


API_ERROR_STATUS: dict[ApiErrorCode, int] = {
    ApiErrorCode.INVALID_REQUEST: 400,
    ApiErrorCode.UNAUTHORIZED: 401,
    ApiErrorCode.FORBIDDEN: 403,
    ApiErrorCode.NOT_FOUND: 404,
    ApiErrorCode.CONFLICT: 409,
    ApiErrorCode.RATE_LIMITED: 429,
    ApiErrorCode.MODEL_ERROR: 500,
    ApiErrorCode.INTERNAL_ERROR: 500,
}

# Failures caused by the model rather than by us.
MODEL_ERROR_CODES: frozenset[ErrorCode] = frozenset(
    {
        ErrorCode.OUTLINE_FAILED,
        ErrorCode.CONTENT_FAILED,
        ErrorCode.VALIDATION_FAILED,
        ErrorCode.REPAIR_FAILED,
        ErrorCode.MAX_RETRIES,
    }
)


class PipelineError(Exception):
    """A job-fatal generation failure carrying a stable error code."""

    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __repr__(self) -> str:
        return f"PipelineError({self.code.value}, {self.message!r})"


def api_code_for(code: str, message: str = "") -> ApiErrorCode:
    """Map a persisted pipeline code onto the public API taxonomy."""
    if "rate limit" in message.lower():
        return ApiErrorCode.RATE_LIMITED
    try:
        pipeline_code = ErrorCode(code)
    except ValueError:
        return ApiErrorCode.INTERNAL_ERROR
    if pipeline_code in MODEL_ERROR_CODES:
        return ApiErrorCode.MODEL_ERROR
    return ApiErrorCode.INTERNAL_ERROR


# ------------------------------------------------------------------ #
# Localized messages
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class UserMessage:
    title: str
    message: str
    is_temporary: bool


_MESSAGES: dict[str, dict[str, UserMessage]] = {
    "nb": {
        ErrorCode.OUTLINE_FAILED: UserMessage(
            "Kunne ikke lage outline",
            "AI-en klarte ikke å lage en outline basert på teksten din. "
            "Prøv å omformulere eller forenkle.",
            False,
        ),
        ErrorCode.CONTENT_FAILED: UserMessage(
            "Kunne ikke generere innhold",
            "AI-en klarte ikke å generere innhold for presentasjonen. "
            "Prøv igjen med enklere tekst eller færre slides.",
            False,
        ),
        ErrorCode.VALIDATION_FAILED: UserMessage(
            "Valideringsfeil",
            "Det genererte innholdet oppfyller ikke kvalitetskravene.",
            True,
        ),
        ErrorCode.REPAIR_FAILED: UserMessage(
            "Kunne ikke reparere innhold",
            "AI-en klarte ikke å tilpasse innholdet til slide-formatene.",
            False,
        ),
        ErrorCode.MAX_RETRIES: UserMessage(
            "For mange forsøk",
            "Systemet har prøvd flere ganger uten å lykkes. Vent litt og prøv igjen.",
            True,
        ),
        ErrorCode.CANCELLED: UserMessage(
            "Generering avbrutt",
            "Genereringen ble avbrutt før den var ferdig.",
            False,
        ),
        ApiErrorCode.RATE_LIMITED: UserMessage(
            "For mange forespørsler",
            "Du har sendt for mange forespørsler på kort tid. Vent litt før du prøver igjen.",
            True,
        ),
        ApiErrorCode.MODEL_ERROR: UserMessage(
            "AI-tjenesten er midlertidig utilgjengelig",
            "AI-tjenesten opplevde en feil under generering. Dette er som regel midlertidig.",
            True,
        ),
        ApiErrorCode.NOT_FOUND: UserMessage(
            "Fant ikke ressursen",
            "Den forespurte ressursen finnes ikke eller har blitt slettet.",
            False,
        ),
        ApiErrorCode.INTERNAL_ERROR: UserMessage(
            "Noe gikk galt",
            "En uventet feil oppstod på serveren.",
            True,
        ),
    },
    "en": {
        ErrorCode.OUTLINE_FAILED: UserMessage(
            "Could not create an outline",
            "The AI could not build an outline from your text. Try rephrasing or simplifying it.",
            False,
        ),
        ErrorCode.CONTENT_FAILED: UserMessage(
            "Could not generate content",
            "The AI could not generate content for the presentation. "
            "Try simpler text or fewer slides.",
            False,
        ),
        ErrorCode.VALIDATION_FAILED: UserMessage(
            "Validation error",
            "The generated content does not meet the quality requirements.",
            True,
        ),
        ErrorCode.REPAIR_FAILED: UserMessage(
            "Could not repair content",
            "The AI could not fit the content to the slide formats.",
            False,
        ),
        ErrorCode.MAX_RETRIES: UserMessage(
            "Too many attempts",
            "The system tried several times without success. Wait a moment and try again.",
            True,
        ),
        ErrorCode.CANCELLED: UserMessage(
            "Generation cancelled",
            "The generation was cancelled before it finished.",
            False,
        ),
        ApiErrorCode.RATE_LIMITED: UserMessage(
            "Too many requests",
            "You have sent too many requests in a short time. Wait a little and try again.",
            True,
        ),
        ApiErrorCode.MODEL_ERROR: UserMessage(
            "The AI service is temporarily unavailable",
            "The AI service failed during generation. This is usually temporary.",
            True,
        ),
        ApiErrorCode.NOT_FOUND: UserMessage(
            "Not found",
            "The requested resource does not exist or has been deleted.",
            False,
        ),
        ApiErrorCode.INTERNAL_ERROR: UserMessage(
            "Something went wrong",
            "An unexpected server error occurred.",
            True,
        ),
    },
}

_LANGUAGE_ALIASES = {"no": "nb", "nn": "nb", "nb": "nb", "en": "en"}


def user_message(code: str, language: str = "nb") -> UserMessage:
    """Localized message for an error code; unknown codes get the generic one.

    Norwegian variants ("no", "nn", "nb-NO") map to Bokmål, everything else
    that is not English falls back to Bokmål as well.
    """
    lang = _LANGUAGE_ALIASES.get(language.lower().split("-")[0], "nb")
    table = _MESSAGES[lang]
    return table.get(code) or table[ApiErrorCode.INTERNAL_ERROR]
