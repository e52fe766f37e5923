"""
scheduler.py — Periodic redelivery of queued events.

Every `interval` seconds one pass runs over the retry queue:
  - entries with retry_count >= max_retries are skipped and left in place
    (only the queue's size bound ever removes them)
  - every other due entry is re-sent through the delivery primitive
      success → removed from the queue
      failure → retry_count += 1, last_retry_at = now, stays queued
  - the resulting list replaces the stored queue

With backoff_seconds > 0 an entry is only due once
backoff_seconds * 2 ** (retry_count - 1) has passed since its last retry.
The default of 0 retries every entry on every pass.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from moodify.client.buffer import LocalDurableBuffer
from moodify.client.delivery import DeliveryError
from moodify.events import AnalyticsEvent, BufferedEventRecord, utc_now

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 60.0
DEFAULT_MAX_RETRIES = 3


@dataclass
class RetryPass:
    attempted: int = 0
    delivered: int = 0
    failed: int = 0
    exhausted: int = 0
    deferred: int = 0


class RetryScheduler:
    def __init__(
        self,
        deliver: Callable[[AnalyticsEvent], Awaitable[None]],
        buffer: LocalDurableBuffer,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_seconds: float = 0.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.deliver = deliver
        self.buffer = buffer
        self.interval = interval
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.clock = clock
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def is_due(self, record: BufferedEventRecord, now: datetime) -> bool:
        if self.backoff_seconds <= 0 or record.last_retry_at is None:
            return True
        wait = timedelta(seconds=self.backoff_seconds * 2 ** max(record.retry_count - 1, 0))
        return now - record.last_retry_at >= wait

    async def run_once(self) -> RetryPass:
        """One pass over the retry queue."""
        stats = RetryPass()
        records = await self.buffer.load_queue()
        if not records:
            return stats

        now = self.clock()
        remaining: list[BufferedEventRecord] = []
        for record in records:
            if record.retry_count >= self.max_retries:
                stats.exhausted += 1
                remaining.append(record)
                continue
            if not self.is_due(record, now):
                stats.deferred += 1
                remaining.append(record)
                continue

            stats.attempted += 1
            try:
                await self.deliver(record.to_event())
            except DeliveryError as exc:
                record.mark_failed(self.clock(), str(exc))
                remaining.append(record)
                stats.failed += 1
                logger.debug(
                    "Retry failed event_type=%s retry_count=%d: %s",
                    record.event_type,
                    record.retry_count,
                    exc,
                )
            else:
                stats.delivered += 1

        await self.buffer.save_queue(remaining)
        logger.info(
            "Retry pass attempted=%d delivered=%d failed=%d exhausted=%d deferred=%d",
            stats.attempted,
            stats.delivered,
            stats.failed,
            stats.exhausted,
            stats.deferred,
        )
        return stats

    async def _run_forever(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.run_once()
            except Exception:
                # Keep the timer alive; the next pass starts from the stored queue again
                logger.error("Retry pass crashed", exc_info=True)

    def start(self) -> None:
        """Start the periodic timer on the running event loop. No-op if already running."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run_forever())
        logger.info("Retry scheduler started interval=%ss max_retries=%d", self.interval, self.max_retries)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Retry scheduler stopped")
