"""
storage.py — Durable key-value persistence for the analytics client.

Holds the client's identity and its two bounded event lists so they survive a
process restart. Values are JSON-serializable (strings, lists of dicts).

Backends:
  - JsonFileStore  one JSON object in a file on the device (default)
  - RedisStore     redis.asyncio client, one JSON-encoded string per key

Both raise StorageError on any read/write failure; callers decide whether that
is fatal (it never is for analytics).
"""
import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Key constants
# ---------------------------------------------------------------------------
USER_ID_KEY = "userId"
BACKUP_KEY = "musicAnalytics"
RETRY_QUEUE_KEY = "failedAnalyticsEvents"

REDIS_PREFIX = "moodify:analytics"


class StorageError(Exception):
    """A key-value store could not be read or written."""


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Optional[Any]: ...

    async def set(self, key: str, value: Any) -> None: ...


# ---------------------------------------------------------------------------
# JSON file backend
# ---------------------------------------------------------------------------

class JsonFileStore:
    """
    All keys in one JSON object on disk.

    Writes go to a temp file in the same directory and are moved into place with
    os.replace, so a crash mid-write leaves the previous contents intact.
    File I/O runs in a worker thread; writes are serialized per store instance.
    """

    def __init__(self, path: str | os.PathLike):
        self.path = Path(path).expanduser()
        self._lock = asyncio.Lock()

    def _read_all(self) -> dict:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            raise StorageError(f"cannot read {self.path}: {exc}") from exc
        if not raw.strip():
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StorageError(f"corrupt store {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise StorageError(f"corrupt store {self.path}: top level is not an object")
        return data

    def _write_all(self, data: dict) -> None:
        try:
            payload = json.dumps(data)
        except (TypeError, ValueError) as exc:
            raise StorageError(f"cannot encode store contents: {exc}") from exc
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".moodify-", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp_name, self.path)
        except OSError as exc:
            raise StorageError(f"cannot write {self.path}: {exc}") from exc

    def _update(self, key: str, value: Any) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    async def get(self, key: str) -> Optional[Any]:
        data = await asyncio.to_thread(self._read_all)
        return data.get(key)

    async def set(self, key: str, value: Any) -> None:
        async with self._lock:
            await asyncio.to_thread(self._update, key, value)


# ---------------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------------

def make_redis_key(key: str) -> str:
    """Namespaced Redis key: moodify:analytics:{key}"""
    return f"{REDIS_PREFIX}:{key}"


class RedisStore:
    """Values JSON-encoded under moodify:analytics:{key}, no TTL."""

    def __init__(self, client: aioredis.Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisStore":
        client = aioredis.from_url(url, encoding="utf-8", decode_responses=True)
        logger.info("Analytics client using Redis store at %s", url)
        return cls(client)

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self.client.get(make_redis_key(key))
        except RedisError as exc:
            raise StorageError(f"redis get {key} failed: {exc}") from exc
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StorageError(f"corrupt value for {key}: {exc}") from exc

    async def set(self, key: str, value: Any) -> None:
        try:
            await self.client.set(make_redis_key(key), json.dumps(value))
        except (RedisError, TypeError, ValueError) as exc:
            raise StorageError(f"redis set {key} failed: {exc}") from exc

    async def aclose(self) -> None:
        await self.client.aclose()
