"""Object storage for generated images.

Only a filesystem implementation ships; the API serves the directory under
``/images``. Anything exposing ``put``/``get`` can be swapped in.
"""

from __future__ import annotations

import asyncio
import re
from pathlib import Path
from typing import Protocol

import structlog

log = structlog.get_logger(__name__)

_SAFE_KEY = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._/-]*$")


class ObjectStoreError(Exception):
    """Storing or reading an object failed."""


class ObjectStore(Protocol):
    async def put(self, key: str, data: bytes, *, content_type: str = "image/png") -> str: ...

    async def get(self, key: str) -> bytes: ...


class LocalObjectStore:
    """Stores objects as files under ``root`` and returns public URLs for them."""

    def __init__(self, root: str | Path, *, public_base_url: str) -> None:
        self._root = Path(root)
        self._base_url = public_base_url.rstrip("/")

    def _path(self, key: str) -> Path:
        if not _SAFE_KEY.match(key) or ".." in key:
            raise ObjectStoreError(f"Invalid object key: {key!r}")
        return self._root / key

    def url_for(self, key: str) -> str:
        return f"{self._base_url}/images/{key}"

    async def put(self, key: str, data: bytes, *, content_type: str = "image/png") -> str:
        path = self._path(key)

        def _sync_write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, _sync_write)
        except OSError as exc:
            raise ObjectStoreError(f"Failed to store {key}: {exc}") from exc

        log.debug("object_store.put", key=key, size=len(data), content_type=content_type)
        return self.url_for(key)

    async def get(self, key: str) -> bytes:
        path = self._path(key)
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, path.read_bytes)
        except FileNotFoundError as exc:
            raise ObjectStoreError(f"No such object: {key}") from exc
