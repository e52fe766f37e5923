"""
handlers.py — Side effects of single-event ingestion, dispatched by event type.

EVENT_HANDLERS maps event_type → async handler(db, event). Event types without an
entry only get their analytics_events row. Register new handlers with
@register("event_type") instead of growing a conditional chain in the route.

Handlers run inside a SAVEPOINT: a failing handler is rolled back to the savepoint
and logged, and the already-inserted event row survives.
"""
import logging
from typing import Awaitable, Callable, Dict

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from moodify.events import AnalyticsEvent
from moodify.store import as_text, save_playlist_engagement, upsert_user_preference

logger = logging.getLogger(__name__)

EventHandler = Callable[[AsyncSession, AnalyticsEvent], Awaitable[None]]

EVENT_HANDLERS: Dict[str, EventHandler] = {}


def register(event_type: str) -> Callable[[EventHandler], EventHandler]:
    def decorator(func: EventHandler) -> EventHandler:
        EVENT_HANDLERS[event_type] = func
        return func
    return decorator


@register("song_play")
async def handle_song_play(db: AsyncSession, event: AnalyticsEvent) -> None:
    """Bump the user's (mood, language, goal) play counter."""
    data = event.data
    await upsert_user_preference(
        db,
        event.user_id,
        mood=as_text(data.get("mood")),
        language=as_text(data.get("language")),
        goal=as_text(data.get("goal")),
    )


@register("playlist_open")
async def handle_playlist_open(db: AsyncSession, event: AnalyticsEvent) -> None:
    await save_playlist_engagement(db, event.user_id, event.data)


async def dispatch(db: AsyncSession, event: AnalyticsEvent) -> bool:
    """
    Run the side-effect handler registered for event.event_type, if any.

    Returns True when a handler ran to completion, False when there was no handler
    or the handler failed (failure is logged, not raised).
    """
    handler = EVENT_HANDLERS.get(event.event_type)
    if handler is None:
        return False
    try:
        async with db.begin_nested():
            await handler(db, event)
    except SQLAlchemyError as exc:
        logger.warning(
            "Side effect for event_type=%s user_id=%s failed: %s",
            event.event_type,
            event.user_id,
            exc,
        )
        return False
    return True
