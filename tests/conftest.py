"""
Shared test fixtures for pytest.

Provides common fixtures for all test modules:
- fake_settings: Test environment configuration (in-memory backends, fake models)
- mock_llm, mock_images: Deterministic offline model clients
- services: Fully wired in-memory services (workers not started)
- client: Async HTTP client over the FastAPI app
- auth_headers / other_workspace_headers: Bearer headers for two workspaces
- make_token: Helper to create test JWT tokens
- make_request / make_job: Builders for requests and queued jobs
"""

from __future__ import annotations

import socket
from collections.abc import AsyncGenerator
from typing import Any

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI

from src.auth.tokens import create_dev_token
from src.config import Backend, Environment, Settings, get_settings
from src.schemas.deck import GenerationRequest
from src.services.container import Services, build_services
from src.telemetry.logging import clear_context
from src.testing.mock_llm import MockImageClient, MockLLMClient

# ------------------------------------------------------------------ #
# Session-scoped: clear settings cache between test sessions
# ------------------------------------------------------------------ #


@pytest.fixture(autouse=True, scope="session")
def _clear_settings_cache():
    """Clear the lru_cache on get_settings so test overrides take effect."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def _clear_log_context():
    yield
    clear_context()


# ------------------------------------------------------------------ #
# Auto-skip integration tests when DB is unavailable
# ------------------------------------------------------------------ #


def _db_is_available() -> bool:
    """Return True if PostgreSQL is reachable on localhost:5432."""
    try:
        with socket.create_connection(("localhost", 5432), timeout=1):
            return True
    except OSError:
        return False


_DB_AVAILABLE: bool | None = None


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-skip tests marked ``@pytest.mark.integration`` when DB is down."""
    global _DB_AVAILABLE  # noqa: PLW0603
    if _DB_AVAILABLE is None:
        _DB_AVAILABLE = _db_is_available()

    if _DB_AVAILABLE:
        return

    skip_marker = pytest.mark.skip(reason="Database unavailable, skipping integration test")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_marker)


# ------------------------------------------------------------------ #
# Constants for Test JWTs
# ------------------------------------------------------------------ #

TEST_JWT_SECRET = "test-jwt-secret-for-unit-tests"
WORKSPACE_A = "ws-alpha"
WORKSPACE_B = "ws-beta"

SAMPLE_TEXT = (
    "Kvartalsrapport for Nordlys AS.\n\n"
    "Omsetningen i tredje kvartal ble rekordhøy. "
    "Kundebasen vokste jevnt gjennom hele perioden. "
    "Vi åpnet et nytt kontor i Bergen. "
    "Teamet leverte den nye plattformen i tide."
)


def make_token(
    sub: str = "user-1",
    workspace_id: str = WORKSPACE_A,
    *,
    secret: str = TEST_JWT_SECRET,
    expires_in: int = 3600,
) -> str:
    """Create a test JWT token using HS256.

    Args:
        sub: Subject claim (caller id)
        workspace_id: Workspace the caller acts in
        secret: Signing secret (pass another one to get a rejected token)
        expires_in: Seconds until expiry; negative for an expired token

    Returns:
        Encoded JWT token string
    """
    return create_dev_token(
        sub=sub, workspace_id=workspace_id, secret=secret, expires_in=expires_in
    )


def make_request(**overrides: Any) -> GenerationRequest:
    values: dict[str, Any] = {"input_text": SAMPLE_TEXT, "num_slides": 6}
    values.update(overrides)
    return GenerationRequest(**values)


# ------------------------------------------------------------------ #
# Settings & Model Fixtures
# ------------------------------------------------------------------ #


@pytest.fixture
def fake_settings(tmp_path) -> Settings:
    """Test environment settings: in-memory backends, no delays, fake models."""
    return Settings(
        environment=Environment.TEST,
        jwt_secret=TEST_JWT_SECRET,
        public_base_url="http://testserver",
        storage_backend=Backend.MEMORY,
        event_bus_backend=Backend.MEMORY,
        task_queue_backend=Backend.MEMORY,
        fake_llm=True,
        image_storage_dir=str(tmp_path / "images"),
        model_timeout_seconds=10.0,
        model_retry_base_delay_seconds=0.0,
        model_retry_max_delay_seconds=0.0,
        progress_debounce_seconds=0.0,
        job_retry_base_delay_seconds=0.0,
        stream_heartbeat_seconds=0.5,
        background_worker_concurrency=1,
    )


@pytest.fixture
def mock_llm() -> MockLLMClient:
    return MockLLMClient()


@pytest.fixture
def mock_images() -> MockImageClient:
    return MockImageClient()


# ------------------------------------------------------------------ #
# Services & App Fixtures
# ------------------------------------------------------------------ #


@pytest_asyncio.fixture
async def services(
    fake_settings: Settings, mock_llm: MockLLMClient, mock_images: MockImageClient
) -> AsyncGenerator[Services, None]:
    """In-memory services. Workers are not started; tests start them when needed."""
    built = build_services(fake_settings, llm=mock_llm, image_model=mock_images)
    yield built
    await built.close()


@pytest.fixture
def test_app(fake_settings: Settings, services: Services) -> FastAPI:
    """Create FastAPI test app instance with test settings and services.

    ASGITransport does not run the lifespan, so the injected services are
    used as they are.
    """
    from src.main import create_app

    app = create_app(fake_settings, services)
    app.dependency_overrides[get_settings] = lambda: fake_settings
    return app


# ------------------------------------------------------------------ #
# HTTP Client Fixtures
# ------------------------------------------------------------------ #


@pytest_asyncio.fixture
async def client(test_app: FastAPI) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Async HTTP client for testing the FastAPI application.

    Uses httpx.AsyncClient with ASGITransport to test the app without
    spinning up a real HTTP server.
    """
    transport = httpx.ASGITransport(app=test_app)
    async with httpx.AsyncClient(
        transport=transport,
        base_url="http://testserver",
    ) as ac:
        yield ac


@pytest.fixture
def auth_headers() -> dict[str, str]:
    """Bearer headers for a caller in workspace A."""
    return {"Authorization": f"Bearer {make_token('user-a', WORKSPACE_A)}"}


@pytest.fixture
def other_workspace_headers() -> dict[str, str]:
    """Bearer headers for a caller in workspace B."""
    return {"Authorization": f"Bearer {make_token('user-b', WORKSPACE_B)}"}
