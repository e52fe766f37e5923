"""
API tests for POST /api/analytics/track and POST /api/analytics/batch.

Covers:
  1. Single-event insert and the song_play / playlist_open side effects
  2. Side-effect failure isolation (event row survives)
  3. Batch insert-only path (no side effects) and all-or-nothing rollback
  4. Persistence failure → 500 {success: false, error}
  5. Validation envelope for bodies without eventType
  6. Error envelope for unknown routes and wrong methods
"""
from __future__ import annotations

from datetime import datetime, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select, text
from sqlalchemy.exc import OperationalError

from moodify.analytics.handlers import EVENT_HANDLERS
from moodify.models import AnalyticsEventORM, PlaylistEngagementORM, UserPreferenceORM

SONG_PLAY = {
    "eventType": "song_play",
    "userId": "u1",
    "sessionId": "session_1",
    "timestamp": "2026-10-19T13:05:00.000Z",
    "data": {"songId": "s1", "mood": "happy", "goal": "match", "language": "english"},
}


async def _count(session_factory, model) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


async def _all(session_factory, model) -> list:
    async with session_factory() as session:
        return list((await session.execute(select(model).order_by(model.id))).scalars())


# ---------------------------------------------------------------------------
# Single event
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_track_single_event_persists_row(api: AsyncClient, session_factory) -> None:
    response = await api.post("/api/analytics/track", json=SONG_PLAY)

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["success"] is True
    assert isinstance(body["id"], int)

    rows = await _all(session_factory, AnalyticsEventORM)
    assert len(rows) == 1
    row = rows[0]
    assert row.user_id == "u1"
    assert row.session_id == "session_1"
    assert row.event_type == "song_play"
    assert row.event_data["mood"] == "happy"
    assert row.timestamp.replace(tzinfo=timezone.utc) == datetime(2026, 10, 19, 13, 5, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_song_play_upserts_preference_counter(api: AsyncClient, session_factory) -> None:
    for _ in range(3):
        response = await api.post("/api/analytics/track", json=SONG_PLAY)
        assert response.status_code == 200

    other = {**SONG_PLAY, "data": {**SONG_PLAY["data"], "mood": "sad"}}
    assert (await api.post("/api/analytics/track", json=other)).status_code == 200

    prefs = await _all(session_factory, UserPreferenceORM)
    by_mood = {p.mood: p for p in prefs}
    assert set(by_mood) == {"happy", "sad"}
    assert by_mood["happy"].play_count == 3
    assert by_mood["happy"].language == "english"
    assert by_mood["happy"].goal == "match"
    assert by_mood["sad"].play_count == 1


@pytest.mark.asyncio
async def test_song_play_without_mood_fields_still_counts(api: AsyncClient, session_factory) -> None:
    event = {**SONG_PLAY, "data": {"songId": "s9"}}
    await api.post("/api/analytics/track", json=event)
    await api.post("/api/analytics/track", json=event)

    prefs = await _all(session_factory, UserPreferenceORM)
    assert len(prefs) == 1
    assert prefs[0].mood is None
    assert prefs[0].play_count == 2


@pytest.mark.asyncio
async def test_playlist_open_records_engagement(api: AsyncClient, session_factory) -> None:
    event = {
        "eventType": "playlist_open",
        "userId": "u2",
        "sessionId": "session_2",
        "data": {
            "playlistId": "pl_42",
            "playlistName": "Sunny Mornings",
            "mood": "happy",
            "goal": "uplift",
            "language": "hindi",
        },
    }
    response = await api.post("/api/analytics/track", json=event)
    assert response.status_code == 200

    engagements = await _all(session_factory, PlaylistEngagementORM)
    assert len(engagements) == 1
    e = engagements[0]
    assert (e.user_id, e.playlist_id, e.playlist_name) == ("u2", "pl_42", "Sunny Mornings")
    assert (e.mood, e.goal, e.language) == ("happy", "uplift", "hindi")
    assert await _count(session_factory, UserPreferenceORM) == 0


@pytest.mark.asyncio
async def test_non_string_payload_values_are_stored_as_text(api: AsyncClient, session_factory) -> None:
    play = {**SONG_PLAY, "data": {"mood": "happy", "language": "english", "goal": 3}}
    opened = {
        "eventType": "playlist_open",
        "userId": "u2",
        "data": {"playlistId": 42, "playlistName": "Sunny Mornings", "mood": None},
    }
    assert (await api.post("/api/analytics/track", json=play)).status_code == 200
    assert (await api.post("/api/analytics/track", json=opened)).status_code == 200

    [pref] = await _all(session_factory, UserPreferenceORM)
    assert pref.goal == "3"
    [engagement] = await _all(session_factory, PlaylistEngagementORM)
    assert engagement.playlist_id == "42"
    assert engagement.mood is None


@pytest.mark.asyncio
async def test_other_event_types_have_no_side_effects(api: AsyncClient, session_factory) -> None:
    for event_type in ("song_pause", "search_query", "user_interaction", "volume_change"):
        response = await api.post(
            "/api/analytics/track",
            json={"eventType": event_type, "userId": "u3", "data": {}},
        )
        assert response.status_code == 200

    assert await _count(session_factory, AnalyticsEventORM) == 4
    assert await _count(session_factory, UserPreferenceORM) == 0
    assert await _count(session_factory, PlaylistEngagementORM) == 0


@pytest.mark.asyncio
async def test_missing_user_id_is_stored_as_anonymous(api: AsyncClient, session_factory) -> None:
    response = await api.post("/api/analytics/track", json={"eventType": "error", "data": {}})
    assert response.status_code == 200

    rows = await _all(session_factory, AnalyticsEventORM)
    assert rows[0].user_id == "anonymous"
    assert rows[0].session_id is None


@pytest.mark.asyncio
async def test_missing_event_type_is_a_validation_error(api: AsyncClient, session_factory) -> None:
    response = await api.post("/api/analytics/track", json={"userId": "u1", "data": {}})

    assert response.status_code == 422
    error = response.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert any(d["field"] == "eventType" for d in error["details"])
    assert await _count(session_factory, AnalyticsEventORM) == 0


@pytest.mark.asyncio
async def test_failing_side_effect_keeps_event_row(
    api: AsyncClient, session_factory, monkeypatch
) -> None:
    async def broken_handler(db, event):
        await db.execute(text("UPDATE no_such_table SET x = 1"))

    monkeypatch.setitem(EVENT_HANDLERS, "song_play", broken_handler)

    response = await api.post("/api/analytics/track", json=SONG_PLAY)

    assert response.status_code == 200
    assert await _count(session_factory, AnalyticsEventORM) == 1
    assert await _count(session_factory, UserPreferenceORM) == 0


@pytest.mark.asyncio
async def test_persistence_failure_returns_500(api: AsyncClient, monkeypatch) -> None:
    async def failing_insert(db, event):
        raise OperationalError("INSERT INTO analytics_events", {}, Exception("database is locked"))

    monkeypatch.setattr("moodify.analytics.routes.insert_event", failing_insert)

    response = await api.post("/api/analytics/track", json=SONG_PLAY)

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Failed to track event"}


# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------

def _batch_events() -> list[dict]:
    event_types = ["song_play", "song_pause", "song_skip", "playlist_open", "search_query"]
    return [
        {
            "userId": "u5",
            "sessionId": "session_5",
            "eventType": event_type,
            "data": {"mood": "calm", "language": "english", "goal": "focus", "playlistId": "pl_1"},
            "timestamp": f"2026-10-19T10:0{i}:00Z",
        }
        for i, event_type in enumerate(event_types)
    ]


@pytest.mark.asyncio
async def test_batch_inserts_rows_without_side_effects(api: AsyncClient, session_factory) -> None:
    response = await api.post("/api/analytics/batch", json={"events": _batch_events(), "userId": "u5"})

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["success"] is True
    assert body["count"] == 5
    assert body["message"] == "5 events tracked"

    rows = await _all(session_factory, AnalyticsEventORM)
    assert [r.event_type for r in rows] == [
        "song_play", "song_pause", "song_skip", "playlist_open", "search_query"
    ]
    assert await _count(session_factory, UserPreferenceORM) == 0
    assert await _count(session_factory, PlaylistEngagementORM) == 0


@pytest.mark.asyncio
async def test_empty_batch_is_accepted(api: AsyncClient) -> None:
    response = await api.post("/api/analytics/batch", json={"events": []})
    assert response.status_code == 200
    assert response.json()["count"] == 0


@pytest.mark.asyncio
async def test_batch_failure_rolls_back_every_row(
    api: AsyncClient, session_factory, monkeypatch
) -> None:
    import moodify.store as store

    real_to_row = store._to_row
    calls = {"n": 0}

    def flaky_to_row(event):
        calls["n"] += 1
        if calls["n"] == 3:
            raise OperationalError("INSERT INTO analytics_events", {}, Exception("disk I/O error"))
        return real_to_row(event)

    monkeypatch.setattr(store, "_to_row", flaky_to_row)

    response = await api.post("/api/analytics/batch", json={"events": _batch_events()})

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Failed to batch track events"}
    assert await _count(session_factory, AnalyticsEventORM) == 0


@pytest.mark.asyncio
async def test_health(api: AsyncClient) -> None:
    response = await api.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_unknown_route_uses_error_envelope(api: AsyncClient) -> None:
    response = await api.get("/api/analytics/nowhere")
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_wrong_method_uses_error_envelope(api: AsyncClient) -> None:
    response = await api.get("/api/analytics/track")
    assert response.status_code == 405
    assert response.json()["error"]["code"] == "METHOD_NOT_ALLOWED"
