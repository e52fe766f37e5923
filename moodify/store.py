"""
store.py — Data access facade for Moodify analytics writes.

All analytics routes and side-effect handlers persist through these functions —
nothing else touches the ORM for writes.

Design principles:
  - All functions are async and accept an AsyncSession parameter
  - Uses flush() (not commit()) — the get_db() dependency owns the transaction
  - Logs only user_id / session_id / event_type — never payload values
"""
import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from moodify.events import AnalyticsEvent
from moodify.models.analytics_event import AnalyticsEventORM
from moodify.models.playlist_engagement import PlaylistEngagementORM
from moodify.models.user_preference import UserPreferenceORM

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Event rows
# ---------------------------------------------------------------------------

def _to_row(event: AnalyticsEvent) -> AnalyticsEventORM:
    return AnalyticsEventORM(
        user_id=event.user_id,
        session_id=event.session_id,
        event_type=event.event_type,
        event_data=event.data,
        timestamp=event.timestamp,
    )


async def insert_event(db: AsyncSession, event: AnalyticsEvent) -> int:
    """
    Persist one event as an analytics_events row.
    Returns the database-assigned id.
    """
    orm = _to_row(event)
    db.add(orm)
    await db.flush()
    logger.info(
        "Saved analytics event id=%s user_id=%s event_type=%s",
        orm.id,
        event.user_id,
        event.event_type,
    )
    return orm.id


async def insert_events(db: AsyncSession, events: Iterable[AnalyticsEvent]) -> int:
    """
    Persist events in order, one row each. Returns the number of rows written.
    No side effects run here — batch ingestion is insert-only.
    """
    count = 0
    for event in events:
        db.add(_to_row(event))
        await db.flush()
        count += 1
    logger.info("Saved analytics batch rows=%d", count)
    return count


# ---------------------------------------------------------------------------
# Side-effect tables
# ---------------------------------------------------------------------------

async def upsert_user_preference(
    db: AsyncSession,
    user_id: str,
    mood: Optional[str],
    language: Optional[str],
    goal: Optional[str],
    played_at: Optional[datetime] = None,
) -> int:
    """
    Increment the play counter for (user_id, mood, language, goal), creating it on
    first occurrence. Returns the new play_count.
    """
    played_at = played_at or datetime.now(timezone.utc)
    existing = await db.execute(
        select(UserPreferenceORM).where(
            UserPreferenceORM.user_id == user_id,
            UserPreferenceORM.mood.is_not_distinct_from(mood),
            UserPreferenceORM.language.is_not_distinct_from(language),
            UserPreferenceORM.goal.is_not_distinct_from(goal),
        )
    )
    orm = existing.scalar_one_or_none()

    if orm is None:
        orm = UserPreferenceORM(
            user_id=user_id,
            mood=mood,
            language=language,
            goal=goal,
            play_count=1,
            last_played=played_at,
        )
        db.add(orm)
    else:
        orm.play_count += 1
        orm.last_played = played_at

    await db.flush()
    logger.info("Updated user preference user_id=%s play_count=%d", user_id, orm.play_count)
    return orm.play_count


async def save_playlist_engagement(
    db: AsyncSession,
    user_id: str,
    data: dict,
    opened_at: Optional[datetime] = None,
) -> None:
    """Record that a user opened a recommended playlist."""
    orm = PlaylistEngagementORM(
        user_id=user_id,
        playlist_id=as_text(data.get("playlistId")),
        playlist_name=as_text(data.get("playlistName")),
        mood=as_text(data.get("mood")),
        goal=as_text(data.get("goal")),
        language=as_text(data.get("language")),
        opened_at=opened_at or datetime.now(timezone.utc),
    )
    db.add(orm)
    await db.flush()
    logger.info("Saved playlist engagement user_id=%s", user_id)


def as_text(value: object) -> Optional[str]:
    """Payload value as a text column value; None stays None."""
    return None if value is None else str(value)
