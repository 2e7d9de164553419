"""Async client for the generation API.

The stream is the fast path and polling is the guarantee: ``follow()``
reduces live events into a ``GenerationView`` and, if the stream drops or
ends without a terminal event, keeps polling ``GET /generations/{id}``
until the job is terminal. Either way the caller gets the same view.

Usage::

    async with GenerationClient("http://localhost:8000", token=token) as client:
        generation_id = await client.create({"inputText": text, "numSlides": 6})
        view = await client.follow(generation_id, on_view=print)
        deck = await client.get_deck(view.deck_id)
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Callable
from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from src.schemas.deck import GenerationRequest
from src.streaming.events import StreamEvent
from src.streaming.reducer import GenerationView, reduce, view_from_poll

log = structlog.get_logger(__name__)

OnView = Callable[[GenerationView], None]


class GenerationClientError(Exception):
    """Non-2xx answer from the API, carrying the error envelope."""

    def __init__(self, status_code: int, code: str, message: str) -> None:
        super().__init__(f"{status_code} {code}: {message}")
        self.status_code = status_code
        self.code = code
        self.message = message


async def parse_sse(lines: AsyncIterator[str]) -> AsyncIterator[StreamEvent]:
    """Turn SSE lines into events. Comments (keepalives) are skipped."""
    data: list[str] = []
    async for line in lines:
        if line.startswith(":"):
            continue
        if line.startswith("data:"):
            data.append(line[5:].lstrip())
            continue
        if line == "" and data:
            raw = "\n".join(data)
            data = []
            try:
                yield StreamEvent.from_json(raw)
            except ValidationError as exc:
                log.warning("sdk.bad_event", error=str(exc), payload=raw[:200])


class GenerationClient:
    def __init__(
        self,
        base_url: str,
        *,
        token: str,
        poll_interval: float = 2.0,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._poll_interval = poll_interval
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._headers = {"Authorization": f"Bearer {token}"}

    async def __aenter__(self) -> GenerationClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------ #
    # Plain calls
    # ------------------------------------------------------------------ #

    async def _json(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        headers = {**self._headers, **kwargs.pop("headers", {})}
        response = await self._client.request(method, path, headers=headers, **kwargs)
        if response.status_code >= 400:
            try:
                error = response.json().get("error", {})
            except json.JSONDecodeError:
                error = {}
            raise GenerationClientError(
                response.status_code,
                error.get("code", "UNKNOWN"),
                error.get("message", response.text[:200]),
            )
        return response.json()  # type: ignore[no-any-return]

    async def create(
        self,
        request: GenerationRequest | dict[str, Any],
        *,
        idempotency_key: str | None = None,
    ) -> str:
        body = request.to_wire() if isinstance(request, GenerationRequest) else request
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else {}
        payload = await self._json("POST", "/api/v1/generations", json=body, headers=headers)
        return str(payload["generationId"])

    async def poll(self, generation_id: str) -> dict[str, Any]:
        return await self._json("GET", f"/api/v1/generations/{generation_id}")

    async def cancel(self, generation_id: str) -> dict[str, Any]:
        return await self._json("POST", f"/api/v1/generations/{generation_id}/cancel")

    async def get_deck(self, deck_id: str) -> dict[str, Any]:
        return await self._json("GET", f"/api/v1/decks/{deck_id}")

    # ------------------------------------------------------------------ #
    # Following a generation
    # ------------------------------------------------------------------ #

    async def events(self, generation_id: str) -> AsyncIterator[StreamEvent]:
        """Live events until the server closes the stream."""
        async with self._client.stream(
            "GET",
            f"/api/v1/generations/{generation_id}/stream",
            headers={**self._headers, "Accept": "text/event-stream"},
            timeout=httpx.Timeout(None, connect=10.0),
        ) as response:
            if response.status_code >= 400:
                await response.aread()
                raise GenerationClientError(response.status_code, "STREAM_FAILED", response.text)
            async for event in parse_sse(response.aiter_lines()):
                yield event

    async def follow(
        self,
        generation_id: str,
        *,
        on_view: OnView | None = None,
        use_stream: bool = True,
    ) -> GenerationView:
        """Follow a generation to its end and return the final view."""
        view = GenerationView(generation_id=generation_id)

        if use_stream:
            try:
                async for event in self.events(generation_id):
                    view = reduce(view, event)
                    if on_view is not None:
                        on_view(view)
                    if view.is_terminal:
                        return view
            except httpx.HTTPError as exc:
                log.info("sdk.stream_lost", generation_id=generation_id, error=str(exc))

        while True:
            view = view_from_poll(await self.poll(generation_id), view)
            if on_view is not None:
                on_view(view)
            if view.is_terminal:
                return view
            await asyncio.sleep(self._poll_interval)
