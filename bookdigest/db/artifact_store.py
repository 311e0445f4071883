"""Async key-value stores backing the artifact cache.

Stores are untyped: they hold JSON-compatible values under string keys and
know nothing about artifact kinds. Failures are raised as StoreError.
"""

import asyncio
import copy
import json
import os
import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Any, Protocol

from bookdigest.core.config import get_settings
from bookdigest.core.errors import StoreError
from bookdigest.core.logging import get_logger

logger = get_logger(__name__)


class ArtifactStore(Protocol):
    """Async get/set/remove/keys/clear contract."""

    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def remove(self, key: str) -> None: ...

    async def keys(self) -> list[str]: ...

    async def clear(self) -> None: ...


class InMemoryArtifactStore:
    """Process-local store. Values are deep-copied in and out, like a real backend."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}

    async def get(self, key: str) -> Any | None:
        value = self._data.get(key)
        return copy.deepcopy(value) if value is not None else None

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self) -> list[str]:
        return list(self._data)

    async def clear(self) -> None:
        self._data.clear()


class JsonFileArtifactStore:
    """
    Store persisted as one JSON document on disk.

    Every mutation rewrites the document through a temporary file and an
    atomic rename, so a crash mid-write leaves the previous document intact.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"Failed to read artifact store {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StoreError(f"Artifact store {self.path} does not hold a JSON object")
        return data

    def _write(self, data: dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, ensure_ascii=False)
                os.replace(tmp_path, self.path)
            except BaseException:
                Path(tmp_path).unlink(missing_ok=True)
                raise
        except (OSError, TypeError, ValueError) as e:
            raise StoreError(f"Failed to write artifact store {self.path}: {e}") from e

    async def get(self, key: str) -> Any | None:
        data = await asyncio.to_thread(self._read)
        return data.get(key)

    async def set(self, key: str, value: Any) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._read)
            data[key] = value
            await asyncio.to_thread(self._write, data)

    async def remove(self, key: str) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._read)
            if key in data:
                del data[key]
                await asyncio.to_thread(self._write, data)

    async def keys(self) -> list[str]:
        data = await asyncio.to_thread(self._read)
        return list(data)

    async def clear(self) -> None:
        async with self._lock:
            await asyncio.to_thread(self._write, {})


@lru_cache
def get_artifact_store() -> ArtifactStore:
    """
    Get the process-wide artifact store selected by CACHE_BACKEND.

    Returns:
        Store instance shared by every pipeline run
    """
    settings = get_settings()
    if settings.CACHE_BACKEND == "file":
        logger.info(f"Using file artifact store at {settings.CACHE_PATH}")
        return JsonFileArtifactStore(settings.CACHE_PATH)
    logger.info("Using in-memory artifact store")
    return InMemoryArtifactStore()
