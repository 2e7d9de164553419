"""Bearer token validation.

Tokens are minted by the surrounding platform and signed with the shared
HS256 secret (JWT_SECRET). This service only checks them.

Required JWT claims:
  - sub: string - caller id
  - workspace_id: string - the workspace every job and deck is scoped to
  - exp: int - expiration timestamp
  - aud: string|list - must include JWT_AUDIENCE
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

import jwt
import structlog
from jwt.exceptions import DecodeError, InvalidTokenError

from src.config import Settings

log = structlog.get_logger(__name__)

REQUIRED_CLAIMS = ("sub", "workspace_id")


class TokenValidationError(Exception):
    """Raised when a JWT is invalid, expired, or missing claims."""


def validate_token(token: str, settings: Settings) -> dict[str, Any]:
    """Validate a JWT and return its claims.

    Raises TokenValidationError if the token is invalid, expired, or
    has an incorrect audience.
    """
    try:
        claims: dict[str, Any] = jwt.decode(
            token,
            settings.jwt_secret.get_secret_value(),
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            options={"verify_exp": True, "verify_aud": True},
        )
    except (DecodeError, InvalidTokenError) as exc:
        raise TokenValidationError(f"Token validation failed: {exc}") from exc

    _assert_required_claims(claims)
    return claims


def _assert_required_claims(claims: dict[str, Any]) -> None:
    missing = [c for c in REQUIRED_CLAIMS if not claims.get(c)]
    if missing:
        raise TokenValidationError(f"Missing required JWT claims: {missing}")


def create_dev_token(
    *,
    sub: str,
    workspace_id: str,
    secret: str,
    audience: str = "deck-generator-api",
    expires_in: int = 3600,
) -> str:
    """Create an HS256 token for local development and tests.

    Never call this in production code.
    """
    now = int(datetime.now(UTC).timestamp())
    payload = {
        "sub": sub,
        "workspace_id": workspace_id,
        "aud": audience,
        "iat": now,
        "exp": now + expires_in,
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, secret, algorithm="HS256")
