"""
models/playlist_engagement.py — one row per playlist opened through a recommendation.

Table: playlist_engagement
Written as a side effect of single-event playlist_open ingestion.
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from moodify.database import Base
from moodify.models.analytics_event import AutoIncrementId


class PlaylistEngagementORM(Base):
    __tablename__ = "playlist_engagement"

    id: Mapped[int] = mapped_column(AutoIncrementId, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    playlist_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    playlist_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    mood: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    goal: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    language: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    opened_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
