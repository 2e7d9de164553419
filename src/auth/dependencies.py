"""FastAPI dependencies for authentication.

These dependencies are injected into route handlers via Depends().

- get_current_caller: validate the Bearer token -> Caller (sub + workspace)

Workspace membership itself is decided by whoever minted the token; every
job and deck lookup is scoped to ``caller.workspace_id``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog
from fastapi import Depends, Request

from src.api.errors import ApiError
from src.auth.tokens import TokenValidationError, validate_token
from src.config import Settings, get_settings
from src.generation.errors import ApiErrorCode
from src.telemetry.logging import bind_workspace_context

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Caller:
    sub: str
    workspace_id: str
    claims: dict[str, Any]


def _unauthorized(message: str) -> ApiError:
    return ApiError(
        ApiErrorCode.UNAUTHORIZED,
        message,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_caller(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> Caller:
    """Resolve the Bearer token to a Caller.

    Raises ApiError(UNAUTHORIZED) on a missing, malformed or expired token.
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise _unauthorized("Missing or invalid Authorization header")

    token = auth_header.removeprefix("Bearer ").strip()
    try:
        claims = validate_token(token, settings)
    except TokenValidationError as exc:
        log.info("auth.token_rejected", reason=str(exc))
        raise _unauthorized("Invalid or expired authentication token") from exc

    caller = Caller(sub=str(claims["sub"]), workspace_id=str(claims["workspace_id"]), claims=claims)
    bind_workspace_context(caller.workspace_id)
    return caller
