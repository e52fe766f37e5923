"""
models/user_preference.py — per-user play counters keyed by (user, mood, language, goal).

Table: user_preferences
Maintained as a side effect of single-event song_play ingestion. Batched events
do not touch this table.
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from moodify.database import Base
from moodify.models.analytics_event import AutoIncrementId


class UserPreferenceORM(Base):
    __tablename__ = "user_preferences"
    __table_args__ = (
        UniqueConstraint("user_id", "mood", "language", "goal", name="uq_user_preferences_key"),
    )

    id: Mapped[int] = mapped_column(AutoIncrementId, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    mood: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    language: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    goal: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    play_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_played: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
