"""
buffer.py — The client's two bounded on-device event lists.

  backup store  ("musicAnalytics")         last 100 critical events, write-only audit trail
  retry queue   ("failedAnalyticsEvents")  last 20 undelivered events with retry bookkeeping

Both are whole-list read/replace operations on a KeyValueStore and trim oldest-first
to their limit. Storage failures are logged and swallowed: losing the audit or retry
trail must never break the call site that emitted the event. So are payloads that
cannot be JSON-encoded.

Read-modify-write sequences hold a lock, so concurrent emits on one buffer never
overwrite each other's appends.
"""
import asyncio
import logging
from typing import Any, Callable, List

from pydantic import ValidationError

from moodify.client.storage import BACKUP_KEY, RETRY_QUEUE_KEY, KeyValueStore, StorageError
from moodify.events import AnalyticsEvent, BufferedEventRecord

logger = logging.getLogger(__name__)

DEFAULT_BACKUP_LIMIT = 100
DEFAULT_QUEUE_LIMIT = 20


def trim_oldest(items: List[Any], limit: int) -> List[Any]:
    """Drop entries from the front until at most `limit` remain."""
    if limit <= 0:
        return []
    if len(items) > limit:
        return items[len(items) - limit:]
    return items


def _encoded(dump: Callable[[], Any]) -> Any:
    try:
        return dump()
    except (TypeError, ValueError) as exc:
        # PydanticSerializationError and UnicodeDecodeError are both ValueErrors
        raise StorageError(f"unencodable payload: {type(exc).__name__}: {exc}") from exc


class LocalDurableBuffer:
    def __init__(
        self,
        store: KeyValueStore,
        backup_limit: int = DEFAULT_BACKUP_LIMIT,
        queue_limit: int = DEFAULT_QUEUE_LIMIT,
    ):
        self.store = store
        self.backup_limit = backup_limit
        self.queue_limit = queue_limit
        self._lock = asyncio.Lock()

    async def _read_list(self, key: str) -> list:
        value = await self.store.get(key)
        return value if isinstance(value, list) else []

    # ------------------------------------------------------------------
    # Backup store
    # ------------------------------------------------------------------

    async def backup(self, event: AnalyticsEvent) -> bool:
        """Append a critical event to the audit trail. Returns False if the write failed."""
        try:
            entry = _encoded(event.to_wire)
            async with self._lock:
                entries = await self._read_list(BACKUP_KEY)
                entries = trim_oldest(entries, self.backup_limit - 1)
                entries.append(entry)
                await self.store.set(BACKUP_KEY, entries)
        except StorageError as exc:
            logger.warning("Failed to store event locally event_type=%s: %s", event.event_type, exc)
            return False
        return True

    async def backup_entries(self) -> list[dict]:
        """Raw audit trail, oldest first. For manual diagnostics only."""
        try:
            return await self._read_list(BACKUP_KEY)
        except StorageError as exc:
            logger.warning("Failed to read local event backup: %s", exc)
            return []

    # ------------------------------------------------------------------
    # Retry queue
    # ------------------------------------------------------------------

    async def enqueue(self, record: BufferedEventRecord) -> bool:
        """Append an undelivered event to the retry queue. Returns False if the write failed."""
        try:
            entry = _encoded(lambda: record.model_dump(mode="json", by_alias=True))
            async with self._lock:
                entries = await self._read_list(RETRY_QUEUE_KEY)
                entries = trim_oldest(entries, self.queue_limit - 1)
                entries.append(entry)
                await self.store.set(RETRY_QUEUE_KEY, entries)
        except StorageError as exc:
            logger.warning("Failed to queue event for retry event_type=%s: %s", record.event_type, exc)
            return False
        return True

    async def load_queue(self) -> list[BufferedEventRecord]:
        """Retry queue, oldest first. Unreadable entries are dropped with a warning."""
        try:
            raw_entries = await self._read_list(RETRY_QUEUE_KEY)
        except StorageError as exc:
            logger.warning("Failed to read retry queue: %s", exc)
            return []
        records = []
        for raw in raw_entries:
            try:
                records.append(BufferedEventRecord.model_validate(raw))
            except ValidationError as exc:
                logger.warning("Dropping unreadable retry queue entry: %s", exc)
        return records

    async def save_queue(self, records: list[BufferedEventRecord]) -> bool:
        """Replace the whole retry queue."""
        records = trim_oldest(list(records), self.queue_limit)
        try:
            entries = _encoded(lambda: [r.model_dump(mode="json", by_alias=True) for r in records])
            async with self._lock:
                await self.store.set(RETRY_QUEUE_KEY, entries)
        except StorageError as exc:
            logger.warning("Failed to save retry queue: %s", exc)
            return False
        return True
