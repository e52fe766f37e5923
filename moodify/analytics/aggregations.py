"""
aggregations.py — Read-only statistics over analytics_events.

Every query is a grouped count (or sum) filtered by event_type, optionally by
user_id, and by a relative time window:
  1d / 7d / 30d / 90d → timestamp >= now - N days (UTC)
  anything else       → unbounded

Payload fields (mood, language, listenDuration) are pulled out of the JSON
event_data blob with SQLAlchemy JSON index expressions, which compile to
json_extract() on SQLite and ->> on PostgreSQL. Grouped queries select the
extracted value in a subquery and group on its column, so the same SQL works on
both dialects.

Ordering always ends on a tie-breaker column: identical inputs over an unchanged
table give identical ordered output.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional, Sequence, Union

from sqlalchemy import Select, extract, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from moodify.models.analytics_event import AnalyticsEventORM

logger = logging.getLogger(__name__)

TIMEFRAME_DAYS: dict[str, int] = {"1d": 1, "7d": 7, "30d": 30, "90d": 90}

# Event types whose payload carries listenDuration (ms)
LISTENING_EVENT_TYPES = ("song_pause", "song_complete", "song_skip")

TOP_MOODS_LIMIT = 5
GLOBAL_MOODS_LIMIT = 10

Row = AnalyticsEventORM


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def timeframe_cutoff(timeframe: Optional[str], now: Optional[datetime] = None) -> Optional[datetime]:
    """Earliest timestamp inside the window, or None for an unbounded window."""
    days = TIMEFRAME_DAYS.get(timeframe or "")
    if days is None:
        return None
    now = now or datetime.now(timezone.utc)
    return now - timedelta(days=days)


def percentage(part: int, whole: int) -> Union[str, int]:
    """part/whole as a one-decimal percentage string; 0 when whole is 0."""
    if whole <= 0:
        return 0
    return f"{part / whole * 100:.1f}"


def _filtered(stmt: Select, user_id: Optional[str], cutoff: Optional[datetime], *event_types: str) -> Select:
    if user_id is not None:
        stmt = stmt.where(Row.user_id == user_id)
    if event_types:
        stmt = stmt.where(Row.event_type.in_(event_types))
    if cutoff is not None:
        stmt = stmt.where(Row.timestamp >= cutoff)
    return stmt


def _payload_text(field: str):
    return Row.event_data[field].as_string()


def _date_key(value: Any) -> str:
    # date() comes back as a date on PostgreSQL and as 'YYYY-MM-DD' text on SQLite
    if isinstance(value, (date, datetime)):
        return value.isoformat()[:10]
    return str(value)


async def _count(
    db: AsyncSession,
    event_type: str,
    user_id: Optional[str],
    cutoff: Optional[datetime],
) -> int:
    stmt = _filtered(select(func.count(Row.id)), user_id, cutoff, event_type)
    return int((await db.execute(stmt)).scalar_one() or 0)


async def _grouped_payload_counts(
    db: AsyncSession,
    field: str,
    user_id: Optional[str],
    cutoff: Optional[datetime],
    limit: Optional[int] = None,
) -> list[dict[str, Any]]:
    """song_play rows grouped by a payload field, most frequent first."""
    inner = _filtered(
        select(_payload_text(field).label("value")), user_id, cutoff, "song_play"
    ).subquery()
    count_col = func.count().label("hits")
    stmt = (
        select(inner.c.value, count_col)
        .where(inner.c.value.is_not(None))
        .group_by(inner.c.value)
        .order_by(count_col.desc(), inner.c.value.asc())
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    rows = (await db.execute(stmt)).all()
    return [{field: row.value, "count": int(row.hits)} for row in rows]


# ---------------------------------------------------------------------------
# Per-user queries
# ---------------------------------------------------------------------------

async def total_listening_time(
    db: AsyncSession, user_id: str, cutoff: Optional[datetime]
) -> int:
    """Sum of listenDuration (ms) over pause/complete/skip events."""
    duration = Row.event_data["listenDuration"].as_float()
    stmt = _filtered(
        select(func.coalesce(func.sum(duration), 0)), user_id, cutoff, *LISTENING_EVENT_TYPES
    )
    return int((await db.execute(stmt)).scalar_one() or 0)


async def top_moods(
    db: AsyncSession,
    user_id: Optional[str],
    cutoff: Optional[datetime],
    limit: int = TOP_MOODS_LIMIT,
) -> list[dict[str, Any]]:
    return await _grouped_payload_counts(db, "mood", user_id, cutoff, limit)


async def hourly_pattern(
    db: AsyncSession, user_id: str, cutoff: Optional[datetime]
) -> list[dict[str, Any]]:
    """song_play counts by hour of day ("00".."23"), ascending."""
    inner = _filtered(
        select(extract("hour", Row.timestamp).label("hour")), user_id, cutoff, "song_play"
    ).subquery()
    stmt = (
        select(inner.c.hour, func.count().label("hits"))
        .group_by(inner.c.hour)
        .order_by(inner.c.hour.asc())
    )
    rows = (await db.execute(stmt)).all()
    return [{"hour": f"{int(row.hour):02d}", "count": int(row.hits)} for row in rows]


async def get_listening_stats(
    db: AsyncSession, user_id: str, timeframe: str = "7d"
) -> dict[str, Any]:
    """
    Listening statistics for one user within a timeframe.

    skipRate / completionRate are percentages of songPlays with one decimal place,
    reported as 0 when there were no plays.
    """
    cutoff = timeframe_cutoff(timeframe)

    song_plays = await _count(db, "song_play", user_id, cutoff)
    completed = await _count(db, "song_complete", user_id, cutoff)
    skipped = await _count(db, "song_skip", user_id, cutoff)

    stats = {
        "totalListeningTime": await total_listening_time(db, user_id, cutoff),
        "songPlays": song_plays,
        "completedSongs": completed,
        "skippedSongs": skipped,
        "skipRate": percentage(skipped, song_plays),
        "completionRate": percentage(completed, song_plays),
        "topMoods": await top_moods(db, user_id, cutoff),
        "hourlyPattern": await hourly_pattern(db, user_id, cutoff),
        "timeframe": timeframe,
    }
    logger.info("Listening stats user_id=%s timeframe=%s plays=%d", user_id, timeframe, song_plays)
    return stats


async def get_mood_trends(
    db: AsyncSession, user_id: str, timeframe: str = "7d"
) -> dict[str, list[dict[str, Any]]]:
    """
    song_play counts per (calendar date, mood), newest date first, then by count.

    Returns {"YYYY-MM-DD": [{"mood": ..., "count": ...}, ...], ...} with dates in
    descending order.
    """
    cutoff = timeframe_cutoff(timeframe)
    inner = _filtered(
        select(
            func.date(Row.timestamp).label("day"),
            _payload_text("mood").label("mood"),
        ),
        user_id,
        cutoff,
        "song_play",
    ).subquery()
    count_col = func.count().label("hits")
    stmt = (
        select(inner.c.day, inner.c.mood, count_col)
        .where(inner.c.mood.is_not(None))
        .group_by(inner.c.day, inner.c.mood)
        .order_by(inner.c.day.desc(), count_col.desc(), inner.c.mood.asc())
    )
    rows = (await db.execute(stmt)).all()

    trends: dict[str, list[dict[str, Any]]] = {}
    for row in rows:
        trends.setdefault(_date_key(row.day), []).append(
            {"mood": row.mood, "count": int(row.hits)}
        )
    logger.info("Mood trends user_id=%s timeframe=%s days=%d", user_id, timeframe, len(trends))
    return trends


# ---------------------------------------------------------------------------
# Global queries
# ---------------------------------------------------------------------------

async def event_type_counts(
    db: AsyncSession, cutoff: Optional[datetime]
) -> list[dict[str, Any]]:
    count_col = func.count(Row.id).label("hits")
    stmt = _filtered(
        select(
            Row.event_type,
            count_col,
            func.count(func.distinct(Row.user_id)).label("unique_users"),
        ),
        None,
        cutoff,
    )
    stmt = stmt.group_by(Row.event_type).order_by(count_col.desc(), Row.event_type.asc())
    rows: Sequence = (await db.execute(stmt)).all()
    return [
        {"event_type": row.event_type, "count": int(row.hits), "unique_users": int(row.unique_users)}
        for row in rows
    ]


async def get_global_stats(db: AsyncSession, timeframe: str = "30d") -> dict[str, Any]:
    """Per-event-type counts with distinct users, plus most played moods and languages."""
    cutoff = timeframe_cutoff(timeframe)
    result = {
        "globalStats": await event_type_counts(db, cutoff),
        "popularMoods": await _grouped_payload_counts(db, "mood", None, cutoff, GLOBAL_MOODS_LIMIT),
        "popularLanguages": await _grouped_payload_counts(db, "language", None, cutoff),
        "timeframe": timeframe,
    }
    logger.info("Global stats timeframe=%s event_types=%d", timeframe, len(result["globalStats"]))
    return result
