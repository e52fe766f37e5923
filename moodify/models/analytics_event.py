"""
models/analytics_event.py — SQLAlchemy ORM for persisted analytics events.

Table: analytics_events
One row per accepted event (single or batched). Rows are insert-only: never updated,
never deleted by the application. event_data holds the client payload as an opaque
JSON blob; aggregation queries reach into it with JSON extraction.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, BigInteger, DateTime, Index, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from moodify.database import Base

# JSONB on PostgreSQL, plain JSON (TEXT + json_extract) on SQLite
JSONPayload = JSON().with_variant(JSONB(), "postgresql")

# SQLite only autoincrements INTEGER PRIMARY KEY columns
AutoIncrementId = BigInteger().with_variant(Integer(), "sqlite")


class AnalyticsEventORM(Base):
    """
    ORM model for a single persisted analytics event.

    id:         monotonic, assigned by the database.
    user_id:    "anonymous" when the client had no identity.
    event_data: the event's `data` mapping — song ids, mood/goal/language, durations.
    timestamp:  producer-side creation instant, normalized to UTC.
    """
    __tablename__ = "analytics_events"
    __table_args__ = (
        Index("ix_analytics_events_user_type_ts", "user_id", "event_type", "timestamp"),
        Index("ix_analytics_events_type_ts", "event_type", "timestamp"),
    )

    id: Mapped[int] = mapped_column(AutoIncrementId, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Stable per-device user id or 'anonymous'",
    )
    session_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        comment="Client process-lifetime session id",
    )
    event_type: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Open vocabulary: song_play, song_skip, playlist_open, ...",
    )
    event_data: Mapped[dict] = mapped_column(
        JSONPayload,
        nullable=False,
        default=dict,
        comment="Event payload, stored opaque",
    )
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
