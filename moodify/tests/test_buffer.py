"""
Tests for LocalDurableBuffer: size bounds, FIFO eviction, and storage failure handling.
"""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from moodify.client.buffer import LocalDurableBuffer, trim_oldest
from moodify.client.storage import BACKUP_KEY, RETRY_QUEUE_KEY, StorageError
from moodify.events import AnalyticsEvent, BufferedEventRecord

T0 = datetime(2026, 10, 19, 8, 0, tzinfo=timezone.utc)


def _event(n: int, event_type: str = "song_play") -> AnalyticsEvent:
    return AnalyticsEvent(
        event_type=event_type,
        user_id="user_test",
        session_id="session_1",
        timestamp=T0 + timedelta(seconds=n),
        data={"seq": n},
    )


class FailingStore:
    """A store whose every read and write fails."""

    async def get(self, key):
        raise StorageError("disk full")

    async def set(self, key, value):
        raise StorageError("disk full")


def test_trim_oldest() -> None:
    assert trim_oldest([1, 2, 3, 4], 2) == [3, 4]
    assert trim_oldest([1, 2], 5) == [1, 2]
    assert trim_oldest([1, 2], 0) == []


# ---------------------------------------------------------------------------
# Backup store
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_backup_keeps_last_hundred_fifo(kv_store) -> None:
    buffer = LocalDurableBuffer(kv_store)
    for n in range(101):
        assert await buffer.backup(_event(n)) is True

    entries = await buffer.backup_entries()
    assert len(entries) == 100
    assert entries[0]["data"]["seq"] == 1
    assert entries[-1]["data"]["seq"] == 100


@pytest.mark.asyncio
async def test_backup_entries_use_wire_keys(kv_store) -> None:
    buffer = LocalDurableBuffer(kv_store)
    await buffer.backup(_event(7))

    stored = await kv_store.get(BACKUP_KEY)
    assert stored[0]["eventType"] == "song_play"
    assert stored[0]["userId"] == "user_test"
    assert stored[0]["sessionId"] == "session_1"


@pytest.mark.asyncio
async def test_backup_failure_returns_false() -> None:
    buffer = LocalDurableBuffer(FailingStore())
    assert await buffer.backup(_event(1)) is False
    assert await buffer.backup_entries() == []


# ---------------------------------------------------------------------------
# Retry queue
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_queue_keeps_last_twenty_fifo(kv_store) -> None:
    buffer = LocalDurableBuffer(kv_store)
    for n in range(25):
        await buffer.enqueue(BufferedEventRecord.from_event(_event(n), error="offline"))

    records = await buffer.load_queue()
    assert len(records) == 20
    assert [r.data["seq"] for r in records] == list(range(5, 25))
    assert all(r.retry_count == 0 and r.last_retry_at is None for r in records)
    assert records[0].error == "offline"


@pytest.mark.asyncio
async def test_queue_round_trips_retry_bookkeeping(kv_store) -> None:
    buffer = LocalDurableBuffer(kv_store)
    record = BufferedEventRecord.from_event(_event(1))
    record.mark_failed(T0, "HTTPStatusError: 500")
    await buffer.save_queue([record])

    raw = await kv_store.get(RETRY_QUEUE_KEY)
    assert raw[0]["retryCount"] == 1
    assert raw[0]["lastRetryAt"] is not None

    [loaded] = await buffer.load_queue()
    assert loaded.retry_count == 1
    assert loaded.last_retry_at == T0
    assert loaded.error == "HTTPStatusError: 500"
    assert loaded.to_event() == _event(1)


@pytest.mark.asyncio
async def test_unreadable_queue_entries_are_dropped(kv_store) -> None:
    good = BufferedEventRecord.from_event(_event(1)).model_dump(mode="json", by_alias=True)
    await kv_store.set(RETRY_QUEUE_KEY, [{"garbage": True}, good])

    records = await LocalDurableBuffer(kv_store).load_queue()
    assert len(records) == 1
    assert records[0].data == {"seq": 1}


@pytest.mark.asyncio
async def test_queue_failures_do_not_raise() -> None:
    buffer = LocalDurableBuffer(FailingStore())
    assert await buffer.enqueue(BufferedEventRecord.from_event(_event(1))) is False
    assert await buffer.load_queue() == []
    assert await buffer.save_queue([]) is False


@pytest.mark.asyncio
async def test_unencodable_payload_is_not_written(kv_store) -> None:
    buffer = LocalDurableBuffer(kv_store)
    await buffer.enqueue(BufferedEventRecord.from_event(_event(1)))

    bad = AnalyticsEvent(event_type="song_play", data={"raw": b"\xff\xfe", "obj": object()})
    assert await buffer.enqueue(BufferedEventRecord.from_event(bad)) is False
    assert await buffer.backup(bad) is False

    assert [r.data["seq"] for r in await buffer.load_queue()] == [1]
    assert await buffer.backup_entries() == []


@pytest.mark.asyncio
async def test_concurrent_appends_are_all_kept(kv_store) -> None:
    buffer = LocalDurableBuffer(kv_store)

    await asyncio.gather(
        *(buffer.enqueue(BufferedEventRecord.from_event(_event(n))) for n in range(10)),
        *(buffer.backup(_event(n)) for n in range(10)),
    )

    assert sorted(r.data["seq"] for r in await buffer.load_queue()) == list(range(10))
    assert len(await buffer.backup_entries()) == 10
