"""
routes.py — Analytics HTTP endpoints.

POST /api/analytics/track               — persist one event, then run its side-effect handler
POST /api/analytics/batch               — persist many events in one transaction (insert-only)
GET  /api/analytics/stats/{user_id}     — per-user listening statistics
GET  /api/analytics/mood-trends/{user_id} — per-user song_play counts by date and mood
GET  /api/analytics/global-stats        — event-type counts and popular moods/languages

Persistence failures answer {success: false, error} with status 500 after rolling back
the request transaction; the client treats that exactly like a network failure.
"""
import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from moodify.analytics.aggregations import get_global_stats, get_listening_stats, get_mood_trends
from moodify.analytics.handlers import dispatch
from moodify.analytics.schemas import (
    BatchTrackRequest,
    BatchTrackResponse,
    ErrorResponse,
    TrackEventRequest,
    TrackResponse,
)
from moodify.config import settings
from moodify.database import get_db
from moodify.store import insert_event, insert_events

logger = logging.getLogger(__name__)
router = APIRouter(prefix=f"{settings.api_prefix}/analytics", tags=["Analytics"])

_TIMEFRAME_HELP = "1d, 7d, 30d or 90d; any other value means no time limit"


async def _failure(db: AsyncSession, message: str) -> JSONResponse:
    await db.rollback()
    return JSONResponse(status_code=500, content=ErrorResponse(error=message).model_dump())


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------

@router.post("/track", response_model=TrackResponse)
async def track_event(
    body: TrackEventRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Persist a single event.

    After the row insert, the handler registered for body.event_type (if any) runs:
      song_play     → user_preferences counter upsert
      playlist_open → playlist_engagement row
    """
    try:
        row_id = await insert_event(db, body)
        await dispatch(db, body)
    except SQLAlchemyError:
        logger.error(
            "Failed to track event user_id=%s event_type=%s",
            body.user_id,
            body.event_type,
            exc_info=True,
        )
        return await _failure(db, "Failed to track event")

    logger.info("Analytics tracked event_type=%s user_id=%s", body.event_type, body.user_id)
    return TrackResponse(id=row_id)


@router.post("/batch", response_model=BatchTrackResponse)
async def track_batch(
    body: BatchTrackRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Persist every event in the batch, in order, within one transaction.

    All-or-nothing: if any insert fails, none of the batch is kept.
    Side-effect handlers do NOT run for batched events.
    """
    try:
        count = await insert_events(db, body.events)
    except SQLAlchemyError:
        logger.error(
            "Failed to batch track events user_id=%s size=%d",
            body.user_id,
            len(body.events),
            exc_info=True,
        )
        return await _failure(db, "Failed to batch track events")

    logger.info("Batch analytics tracked count=%d user_id=%s", count, body.user_id)
    return BatchTrackResponse(message=f"{count} events tracked", count=count)


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

@router.get("/stats/{user_id}")
async def listening_stats(
    user_id: str,
    timeframe: str = Query("7d", description=_TIMEFRAME_HELP),
    db: AsyncSession = Depends(get_db),
):
    try:
        stats = await get_listening_stats(db, user_id, timeframe)
    except SQLAlchemyError:
        logger.error("Failed to fetch stats user_id=%s", user_id, exc_info=True)
        return await _failure(db, "Failed to fetch statistics")
    return {"success": True, "stats": stats}


@router.get("/mood-trends/{user_id}")
async def mood_trends(
    user_id: str,
    timeframe: str = Query("7d", description=_TIMEFRAME_HELP),
    db: AsyncSession = Depends(get_db),
):
    try:
        trends = await get_mood_trends(db, user_id, timeframe)
    except SQLAlchemyError:
        logger.error("Failed to fetch mood trends user_id=%s", user_id, exc_info=True)
        return await _failure(db, "Failed to fetch mood trends")
    return {"success": True, "trends": trends, "timeframe": timeframe}


@router.get("/global-stats")
async def global_stats(
    timeframe: str = Query("30d", description=_TIMEFRAME_HELP),
    db: AsyncSession = Depends(get_db),
):
    """Global usage across all users — for admin/insight dashboards."""
    try:
        result = await get_global_stats(db, timeframe)
    except SQLAlchemyError:
        logger.error("Failed to fetch global stats", exc_info=True)
        return await _failure(db, "Failed to fetch global statistics")
    return {"success": True, **result}
