"""Tests for the deck read endpoint and the health probes."""

import pytest

from tests.conftest import WORKSPACE_A, make_request


async def _finished_deck_id(services, **overrides):
    job, _ = await services.generations.create(WORKSPACE_A, make_request(**overrides))
    await services.pipeline.run(job.id)
    return (await services.jobs.get(job.id)).deck_id


class TestGetDeck:
    @pytest.mark.asyncio
    async def test_returns_metadata_and_ordered_slides(self, client, auth_headers, services):
        deck_id = await _finished_deck_id(services, theme_id="corporate_blue")

        response = await client.get(f"/api/v1/decks/{deck_id}", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == deck_id
        assert data["deck"]["themeId"] == "corporate_blue"
        assert data["deck"]["language"] == "no"
        assert data["slideCount"] == len(data["slides"]) >= 6
        assert data["slides"][0]["type"] == "cover"
        assert all("layoutVariant" in slide for slide in data["slides"])

    @pytest.mark.asyncio
    async def test_brand_kit_is_returned(self, client, auth_headers, services):
        deck_id = await _finished_deck_id(
            services, brand_kit={"primary_color": "#003366"}
        )

        data = (await client.get(f"/api/v1/decks/{deck_id}", headers=auth_headers)).json()

        assert data["deck"]["brandKit"]["primaryColor"] == "#003366"

    @pytest.mark.asyncio
    async def test_partial_deck_is_readable(self, client, auth_headers, services):
        deck = await services.decks.create(WORKSPACE_A, title="Utkast", theme_id="nordic_dark")
        await services.decks.append_slide(
            deck.id, {"type": "section_header", "blocks": [{"kind": "title", "text": "Intro"}]}
        )

        data = (await client.get(f"/api/v1/decks/{deck.id}", headers=auth_headers)).json()

        assert data["slideCount"] == 1
        assert data["deck"]["title"] == "Utkast"

    @pytest.mark.asyncio
    async def test_other_workspace_gets_404(self, client, other_workspace_headers, services):
        deck_id = await _finished_deck_id(services)

        response = await client.get(f"/api/v1/decks/{deck_id}", headers=other_workspace_headers)

        assert response.status_code == 404
        assert response.json()["error"]["message"] == "Deck not found"

    @pytest.mark.asyncio
    async def test_requires_auth(self, client):
        response = await client.get("/api/v1/decks/anything")
        assert response.status_code == 401


class TestHealth:
    @pytest.mark.asyncio
    async def test_liveness(self, client):
        response = await client.get("/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    @pytest.mark.asyncio
    async def test_readiness_with_memory_backends(self, client):
        response = await client.get("/health/ready")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ready"
        assert data["event_bus"] == "ok"
        assert data["task_queue"] == "ok"
        assert "database" not in data

    @pytest.mark.asyncio
    async def test_readiness_reports_unreachable_bus(self, client, services, monkeypatch):
        async def down():
            return False

        monkeypatch.setattr(services.bus, "ping", down)

        response = await client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["event_bus"].startswith("error")
