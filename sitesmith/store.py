from __future__ import annotations

import asyncio
import hashlib
import logging
from pathlib import Path
from typing import Protocol

from vercel.cache import AsyncRuntimeCache

from sitesmith.config import Settings


logger = logging.getLogger("sitesmith.store")


class KeyValueStore(Protocol):
    async def get(self, key: str) -> bytes | None: ...

    async def set(self, key: str, value: bytes) -> None: ...


class MemoryStore:
    """Process-local store; contents vanish with the process."""

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}

    async def get(self, key: str) -> bytes | None:
        return self._data.get(key)

    async def set(self, key: str, value: bytes) -> None:
        self._data[key] = bytes(value)


class FileStore:
    """One file per key under a local directory."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:32]
        return self.directory / f"{digest}.json"

    async def get(self, key: str) -> bytes | None:
        path = self._path(key)
        if not path.exists():
            return None
        return await asyncio.to_thread(path.read_bytes)

    async def set(self, key: str, value: bytes) -> None:
        path = self._path(key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".tmp")
            tmp.write_bytes(value)
            tmp.replace(path)

        await asyncio.to_thread(_write)


class RuntimeCacheStore:
    """Store backed by the Vercel Runtime Cache (values expire after a TTL)."""

    def __init__(self, namespace: str, ttl_seconds: int) -> None:
        self._cache = AsyncRuntimeCache(namespace=namespace)
        self._ttl = ttl_seconds

    async def get(self, key: str) -> bytes | None:
        val = await self._cache.get(key)
        return val.encode("utf-8") if isinstance(val, str) else None

    async def set(self, key: str, value: bytes) -> None:
        await self._cache.set(
            key,
            value.decode("utf-8"),
            {"ttl": self._ttl, "tags": ["sitesmith:checkpoints"]},
        )


def make_store(settings: Settings) -> KeyValueStore:
    kind = settings.checkpoint_store
    if kind == "memory":
        return MemoryStore()
    if kind == "runtime-cache":
        return RuntimeCacheStore(settings.checkpoint_namespace, settings.checkpoint_ttl_seconds)
    if kind != "file":
        logger.warning("unknown CHECKPOINT_STORE %r, using file store", kind)
    return FileStore(settings.checkpoint_dir)
