"""
emitter.py — AnalyticsClient, the single entry point for producing events.

Construct one per process and pass it to every call site:

    client = AnalyticsClient()
    await client.initialize()          # identity, HTTP client, retry timer
    await client.track_song_play(song)
    ...
    await client.shutdown()            # flush queue, emit session_end, stop timer

or `async with AnalyticsClient() as client: ...`.

emit() is best-effort: it never raises, whether delivery, storage or JSON encoding
of the payload fails. It returns a DeliveryResult that callers are free to ignore;
an event that cannot even be built (e.g. an empty event type) comes back DROPPED.

  online  → one POST to /analytics/track; on failure the event joins the retry queue
  offline → straight to the retry queue, no request made
  critical event types are additionally appended to the backup store either way
"""
import logging
import time
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Optional

import httpx
from pydantic import ValidationError

from moodify.client.buffer import LocalDurableBuffer
from moodify.client.context import Connectivity, DeviceContext, Identity, generate_session_id
from moodify.client.delivery import DeliveryError, DeliveryResult, DeliveryStatus, HttpDelivery
from moodify.client.scheduler import RetryScheduler
from moodify.client.storage import JsonFileStore, KeyValueStore, RedisStore
from moodify.config import ClientSettings, client_settings
from moodify.events import AnalyticsEvent, BufferedEventRecord, utc_now

logger = logging.getLogger(__name__)


def default_store(cfg: ClientSettings) -> KeyValueStore:
    if cfg.redis_url:
        return RedisStore.from_url(cfg.redis_url)
    return JsonFileStore(cfg.storage_path)


class AnalyticsClient:
    def __init__(
        self,
        api_base: Optional[str] = None,
        store: Optional[KeyValueStore] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        device: Optional[DeviceContext] = None,
        connectivity: Optional[Connectivity] = None,
        config: Optional[ClientSettings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config or client_settings
        self.api_base = (api_base or self.config.api_base).rstrip("/")
        self._owns_store = store is None
        self.store = store if store is not None else default_store(self.config)
        self._owns_http = http_client is None
        self._http = http_client
        self._delivery: Optional[HttpDelivery] = None

        self.device = device or DeviceContext()
        self.connectivity = connectivity or Connectivity()
        self.identity = Identity(self.store)
        self.buffer = LocalDurableBuffer(
            self.store,
            backup_limit=self.config.backup_limit,
            queue_limit=self.config.queue_limit,
        )
        self.clock = clock

        # Session state — new on every process start, never persisted
        self.session_id = generate_session_id(int(time.time() * 1000))
        self._session_started = time.monotonic()
        self.total_listening_time = 0   # ms
        self.current_song: Optional[dict] = None
        self._song_started: Optional[float] = None

        self.scheduler = RetryScheduler(
            self.deliver,
            self.buffer,
            interval=self.config.retry_interval_seconds,
            max_retries=self.config.max_retries,
            backoff_seconds=self.config.retry_backoff_seconds,
            clock=clock,
        )
        self._initialized = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def delivery(self) -> HttpDelivery:
        if self._delivery is None:
            if self._http is None:
                self._http = httpx.AsyncClient(timeout=self.config.request_timeout)
            self._delivery = HttpDelivery(self.api_base, self._http)
        return self._delivery

    async def initialize(self) -> None:
        """Resolve the user id and start the retry timer. Safe to call twice."""
        if self._initialized:
            return
        await self.identity.get_or_create()
        self.scheduler.start()
        self._initialized = True
        logger.info(
            "Analytics client initialized user_id=%s session_id=%s api_base=%s",
            self.identity.user_id,
            self.session_id,
            self.api_base,
        )

    async def shutdown(self) -> None:
        """Flush the retry queue, record session_end, stop the timer, release connections."""
        await self.flush_queue()
        await self.emit(
            "session_end",
            {
                "sessionDuration": self.session_duration_ms(),
                "totalListeningTime": self.total_listening_time,
            },
        )
        await self.scheduler.stop()
        if self._owns_http and self._http is not None:
            await self._http.aclose()
            self._http = None
            self._delivery = None
        if self._owns_store and isinstance(self.store, RedisStore):
            await self.store.aclose()
        self._initialized = False
        logger.info("Analytics client shut down session_id=%s", self.session_id)

    async def __aenter__(self) -> "AnalyticsClient":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()

    async def set_online(self, online: bool) -> None:
        """Report a connectivity change; coming back online flushes the retry queue."""
        if self.connectivity.update(online):
            logger.info("Connectivity restored, flushing retry queue")
            await self.flush_queue()

    def session_duration_ms(self) -> int:
        return int((time.monotonic() - self._session_started) * 1000)

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    async def deliver(self, event: AnalyticsEvent) -> None:
        """Single delivery attempt. Raises DeliveryError on failure."""
        await self.delivery.send(event)

    async def build_event(self, event_type: str, data: Optional[Mapping[str, Any]] = None) -> AnalyticsEvent:
        user_id = await self.identity.get_or_create()
        payload = dict(data or {})
        payload.update(self.device.enrichment())
        payload["sessionDuration"] = self.session_duration_ms()
        return AnalyticsEvent(
            event_type=event_type,
            user_id=user_id,
            session_id=self.session_id,
            timestamp=self.clock(),
            data=payload,
        )

    async def emit(self, event_type: str, data: Optional[Mapping[str, Any]] = None) -> DeliveryResult:
        """Build, trace, deliver or queue, and (for critical types) back up one event."""
        try:
            event = await self.build_event(event_type, data)
        except (ValidationError, TypeError, ValueError) as exc:
            logger.error("Dropping analytics event that could not be built event_type=%r: %s", event_type, exc)
            return DeliveryResult(None, DeliveryStatus.DROPPED, error=str(exc))
        logger.info(
            "Analytics event: %s user_id=%s session_id=%s",
            event.event_type,
            event.user_id,
            event.session_id,
        )

        if not self.connectivity.online:
            result = DeliveryResult(event, DeliveryStatus.QUEUED, error="offline")
        else:
            try:
                await self.deliver(event)
                result = DeliveryResult(event, DeliveryStatus.SENT)
            except DeliveryError as exc:
                logger.warning(
                    "Failed to send analytics event, queuing for later event_type=%s: %s",
                    event.event_type,
                    exc,
                )
                result = DeliveryResult(event, DeliveryStatus.QUEUED, error=str(exc))
            except Exception as exc:
                logger.error(
                    "Unexpected error sending analytics event, queuing for later event_type=%s",
                    event.event_type,
                    exc_info=True,
                )
                result = DeliveryResult(event, DeliveryStatus.QUEUED, error=f"{type(exc).__name__}: {exc}")

        if result.status is DeliveryStatus.QUEUED:
            result.queued = await self.buffer.enqueue(
                BufferedEventRecord.from_event(event, error=result.error)
            )

        if event.is_critical:
            result.backed_up = await self.buffer.backup(event)
        return result

    async def flush_queue(self) -> int:
        """
        Send the whole retry queue as one batch. Clears the queue on success.
        Returns the number of events the server accepted (0 on failure or empty queue).
        """
        records = await self.buffer.load_queue()
        if not records:
            return 0
        try:
            count = await self.delivery.send_batch(
                [r.to_event() for r in records], user_id=self.identity.user_id
            )
        except DeliveryError as exc:
            logger.warning("Failed to flush event queue size=%d: %s", len(records), exc)
            return 0
        await self.buffer.save_queue([])
        logger.info("Flushed retry queue count=%d", count)
        return count

    # ------------------------------------------------------------------
    # Playback tracking
    # ------------------------------------------------------------------

    def _listened_ms(self) -> int:
        if self._song_started is None:
            return 0
        return int((time.monotonic() - self._song_started) * 1000)

    async def track_song_play(self, song: Mapping[str, Any]) -> DeliveryResult:
        """
        song: id, name, artist, album, duration_ms, popularity, explicit,
              playlistId, playlistName, mood, goal, language
        """
        self.current_song = dict(song)
        self._song_started = time.monotonic()
        return await self.emit(
            "song_play",
            {
                "songId": song.get("id"),
                "title": song.get("name"),
                "artist": song.get("artist") or "Unknown Artist",
                "album": song.get("album") or "Unknown Album",
                "duration": song.get("duration_ms"),
                "popularity": song.get("popularity"),
                "explicit": song.get("explicit"),
                "playlistId": song.get("playlistId"),
                "playlistName": song.get("playlistName"),
                "mood": song.get("mood"),
                "goal": song.get("goal"),
                "language": song.get("language"),
                "source": "playlist_recommendation",
            },
        )

    async def track_song_pause(self, current_time: int = 0) -> Optional[DeliveryResult]:
        if self.current_song is None or self._song_started is None:
            return None
        listen_duration = self._listened_ms()
        self.total_listening_time += listen_duration
        return await self.emit(
            "song_pause",
            {
                "songId": self.current_song.get("id"),
                "title": self.current_song.get("name"),
                "listenDuration": listen_duration,
                "currentTime": current_time,
                "pauseReason": "user_action",
            },
        )

    async def track_song_resume(self, current_time: int = 0) -> Optional[DeliveryResult]:
        if self.current_song is None:
            return None
        self._song_started = time.monotonic()
        return await self.emit(
            "song_resume",
            {
                "songId": self.current_song.get("id"),
                "title": self.current_song.get("name"),
                "currentTime": current_time,
                "resumeFrom": current_time,
            },
        )

    async def track_song_skip(self, current_time: int = 0, reason: str = "user_skip") -> Optional[DeliveryResult]:
        """current_time is the playback position in ms; completion is its share of duration_ms."""
        if self.current_song is None or self._song_started is None:
            return None
        listen_duration = self._listened_ms()
        self.total_listening_time += listen_duration
        duration = self.current_song.get("duration_ms")
        completion = current_time / duration * 100 if duration else 0
        song = self.current_song
        self.current_song = None
        self._song_started = None
        return await self.emit(
            "song_skip",
            {
                "songId": song.get("id"),
                "title": song.get("name"),
                "listenDuration": listen_duration,
                "currentTime": current_time,
                "completion": completion,
                "skipReason": reason,
            },
        )

    async def track_song_complete(self) -> Optional[DeliveryResult]:
        if self.current_song is None or self._song_started is None:
            return None
        listen_duration = self._listened_ms()
        self.total_listening_time += listen_duration
        song = self.current_song
        self.current_song = None
        self._song_started = None
        return await self.emit(
            "song_complete",
            {
                "songId": song.get("id"),
                "title": song.get("name"),
                "listenDuration": listen_duration,
                "completion": 100,
                "fullListen": True,
            },
        )

    # ------------------------------------------------------------------
    # Discovery and interaction tracking
    # ------------------------------------------------------------------

    async def track_playlist_open(self, playlist: Mapping[str, Any]) -> DeliveryResult:
        return await self.emit(
            "playlist_open",
            {
                "playlistId": playlist.get("id"),
                "playlistName": playlist.get("name"),
                "playlistUrl": playlist.get("url"),
                "mood": playlist.get("mood"),
                "goal": playlist.get("goal"),
                "language": playlist.get("language"),
                "source": "mood_recommendation",
                "trackCount": playlist.get("trackCount") or 0,
            },
        )

    async def track_search_query(self, query: str, results: Iterable[Any] = ()) -> DeliveryResult:
        results = list(results)
        return await self.emit(
            "search_query",
            {
                "query": query,
                "resultCount": len(results),
                "hasResults": bool(results),
                "searchType": "mood_based",
            },
        )

    async def track_user_interaction(self, action: str, target: str, **metadata: Any) -> DeliveryResult:
        return await self.emit("user_interaction", {"action": action, "target": target, **metadata})

    async def track_error(
        self, error_type: str, error_message: str, context: Optional[Mapping[str, Any]] = None
    ) -> DeliveryResult:
        context = dict(context or {})
        return await self.emit(
            "error",
            {
                "errorType": error_type,
                "errorMessage": error_message,
                "context": context,
                "severity": context.get("severity", "medium"),
            },
        )

    async def track_song_like(
        self, song_id: str, liked: bool = True, source: str = "player_controls", **extra: Any
    ) -> DeliveryResult:
        return await self.emit(
            "song_like",
            {"songId": song_id, "liked": liked, "likeSource": source, **extra},
        )

    async def track_song_share(self, song_id: str, method: str, destination: Optional[str] = None) -> DeliveryResult:
        return await self.emit(
            "song_share",
            {"songId": song_id, "shareMethod": method, "shareDestination": destination},
        )

    async def track_volume_change(
        self, previous_volume: float, new_volume: float, change_type: str = "slider"
    ) -> DeliveryResult:
        return await self.emit(
            "volume_change",
            {
                "previousVolume": previous_volume,
                "newVolume": new_volume,
                "changeType": change_type,
                "songId": (self.current_song or {}).get("id"),
            },
        )

    async def track_seek(self, from_time: int, to_time: int, method: str = "progress_bar") -> DeliveryResult:
        return await self.emit(
            "seek",
            {
                "songId": (self.current_song or {}).get("id"),
                "fromTime": from_time,
                "toTime": to_time,
                "seekDistance": abs(to_time - from_time),
                "seekDirection": "forward" if to_time > from_time else "backward",
                "seekMethod": method,
            },
        )

    # ------------------------------------------------------------------
    # Dashboard reads
    # ------------------------------------------------------------------

    async def get_listening_stats(self, timeframe: str = "7d") -> Optional[dict]:
        """Decoded /analytics/stats response for this device's user, or None on failure."""
        user_id = await self.identity.get_or_create()
        try:
            return await self.delivery.get_json(f"analytics/stats/{user_id}", {"timeframe": timeframe})
        except DeliveryError as exc:
            logger.error("Failed to fetch listening stats: %s", exc)
            return None

    async def get_mood_trends(self, timeframe: str = "7d") -> Optional[dict]:
        user_id = await self.identity.get_or_create()
        try:
            return await self.delivery.get_json(f"analytics/mood-trends/{user_id}", {"timeframe": timeframe})
        except DeliveryError as exc:
            logger.error("Failed to fetch mood trends: %s", exc)
            return None
