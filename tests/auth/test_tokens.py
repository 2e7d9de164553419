"""Tests for bearer token validation and the caller dependency.

Coverage:
- validate_token returns claims for a well-formed token
- Expired, wrongly signed and garbage tokens are rejected
- Wrong audience is rejected
- Missing sub / workspace_id claims are rejected
- get_current_caller builds a Caller and binds the workspace to the log context
- Missing or non-Bearer Authorization header gives UNAUTHORIZED
"""

from __future__ import annotations

import time
from unittest.mock import MagicMock

import jwt
import pytest
import structlog

from src.api.errors import ApiError
from src.auth.dependencies import Caller, get_current_caller
from src.auth.tokens import TokenValidationError, create_dev_token, validate_token
from src.generation.errors import ApiErrorCode
from tests.conftest import TEST_JWT_SECRET, WORKSPACE_A, make_token


def _raw_token(**claims) -> str:
    payload = {"aud": "deck-generator-api", "exp": int(time.time()) + 60}
    payload.update(claims)
    return jwt.encode(payload, TEST_JWT_SECRET, algorithm="HS256")


def _request(authorization: str | None) -> MagicMock:
    request = MagicMock()
    request.headers = {} if authorization is None else {"Authorization": authorization}
    return request


class TestValidateToken:
    def test_valid_token(self, fake_settings) -> None:
        claims = validate_token(make_token("user-7", WORKSPACE_A), fake_settings)

        assert claims["sub"] == "user-7"
        assert claims["workspace_id"] == WORKSPACE_A
        assert claims["jti"]

    def test_expired(self, fake_settings) -> None:
        with pytest.raises(TokenValidationError, match="expired"):
            validate_token(make_token(expires_in=-10), fake_settings)

    def test_wrong_secret(self, fake_settings) -> None:
        with pytest.raises(TokenValidationError):
            validate_token(make_token(secret="someone-elses-secret"), fake_settings)

    def test_garbage(self, fake_settings) -> None:
        with pytest.raises(TokenValidationError):
            validate_token("not.a.jwt", fake_settings)

    def test_wrong_audience(self, fake_settings) -> None:
        token = create_dev_token(
            sub="u", workspace_id=WORKSPACE_A, secret=TEST_JWT_SECRET, audience="other-api"
        )
        with pytest.raises(TokenValidationError):
            validate_token(token, fake_settings)

    @pytest.mark.parametrize(
        "claims",
        [
            {"workspace_id": WORKSPACE_A},
            {"sub": "user-1"},
            {"sub": "user-1", "workspace_id": ""},
        ],
    )
    def test_missing_claims(self, fake_settings, claims) -> None:
        with pytest.raises(TokenValidationError, match="Missing required JWT claims"):
            validate_token(_raw_token(**claims), fake_settings)


class TestGetCurrentCaller:
    @pytest.mark.asyncio
    async def test_builds_caller(self, fake_settings) -> None:
        request = _request(f"Bearer {make_token('user-9', WORKSPACE_A)}")

        caller = await get_current_caller(request, fake_settings)

        assert isinstance(caller, Caller)
        assert caller.sub == "user-9"
        assert caller.workspace_id == WORKSPACE_A
        assert structlog.contextvars.get_contextvars()["workspace_id"] == WORKSPACE_A

    @pytest.mark.asyncio
    @pytest.mark.parametrize("header", [None, "", "Basic dXNlcjpwYXNz", "Bearer garbage"])
    async def test_rejected(self, fake_settings, header) -> None:
        with pytest.raises(ApiError) as exc_info:
            await get_current_caller(_request(header), fake_settings)

        assert exc_info.value.code == ApiErrorCode.UNAUTHORIZED
        assert exc_info.value.headers == {"WWW-Authenticate": "Bearer"}
