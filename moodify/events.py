"""
events.py — Wire shape of an analytics event, shared by the client and the server.

Defines:
  - AnalyticsEvent       (one recorded interaction / listening occurrence)
  - BufferedEventRecord  (AnalyticsEvent + retry bookkeeping, lives in the client retry queue)

JSON keys are camelCase on the wire ({eventType, userId, sessionId, timestamp, data});
Python attributes are snake_case. Dump with `model_dump(mode="json", by_alias=True)`.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

ANONYMOUS_USER_ID = "anonymous"

# Event types that are also written to the on-device backup store, whatever the delivery outcome
CRITICAL_EVENT_TYPES = frozenset(
    {"song_play", "song_complete", "playlist_open", "song_like", "search_query"}
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AnalyticsEvent(BaseModel):
    """
    A single recorded occurrence.

    event_type: open vocabulary — song_play, song_pause, song_skip, song_complete,
                playlist_open, search_query, user_interaction, error, session_end, ...
    user_id:    stable per device; never empty (falls back to "anonymous").
    session_id: stable for one client lifetime.
    data:       payload specific to event_type plus the client's enrichment fields.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    event_type: str = Field(..., min_length=1)
    user_id: str = ANONYMOUS_USER_ID
    session_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)
    data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("user_id", mode="before")
    @classmethod
    def _default_user(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return ANONYMOUS_USER_ID
        return value

    @field_validator("timestamp")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        # Naive timestamps are taken to be UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @property
    def is_critical(self) -> bool:
        return self.event_type in CRITICAL_EVENT_TYPES

    def to_wire(self) -> dict[str, Any]:
        """The JSON body posted to /analytics/track."""
        return self.model_dump(mode="json", by_alias=True)


class BufferedEventRecord(AnalyticsEvent):
    """An undelivered event waiting in the client retry queue."""

    retry_count: int = 0
    last_retry_at: Optional[datetime] = None
    error: Optional[str] = None

    @classmethod
    def from_event(cls, event: AnalyticsEvent, error: Optional[str] = None) -> "BufferedEventRecord":
        return cls(**event.model_dump(), error=error)

    def to_event(self) -> AnalyticsEvent:
        return AnalyticsEvent.model_validate(
            self.model_dump(include={"event_type", "user_id", "session_id", "timestamp", "data"})
        )

    def mark_failed(self, when: datetime, error: Optional[str] = None) -> None:
        self.retry_count += 1
        self.last_retry_at = when
        if error is not None:
            self.error = error


__all__ = [
    "ANONYMOUS_USER_ID",
    "CRITICAL_EVENT_TYPES",
    "AnalyticsEvent",
    "BufferedEventRecord",
    "utc_now",
]
