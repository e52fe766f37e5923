"""
Startup tests: the real lifespan (Alembic subprocess + app engine) against the
default relative SQLite URL, run from a temporary working directory.
"""
import os

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import make_url

from moodify.config import settings
from moodify.database import absolute_database_url
from moodify.main import app


def _is_relative_sqlite(database_url: str) -> bool:
    url = make_url(database_url)
    return (
        url.drivername.startswith("sqlite")
        and bool(url.database)
        and url.database != ":memory:"
        and not os.path.isabs(url.database)
    )


# ---------------------------------------------------------------------------
# absolute_database_url
# ---------------------------------------------------------------------------

def test_relative_sqlite_path_is_anchored_to_cwd(tmp_path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)

    resolved = make_url(absolute_database_url("sqlite+aiosqlite:///./data/analytics.sqlite"))

    assert resolved.drivername == "sqlite+aiosqlite"
    assert os.path.realpath(resolved.database) == os.path.realpath(tmp_path / "data" / "analytics.sqlite")


@pytest.mark.parametrize(
    "database_url",
    [
        "sqlite+aiosqlite:///:memory:",
        "sqlite+aiosqlite:////var/lib/moodify/analytics.sqlite",
        "postgresql+asyncpg://moodify:secret@db:5432/moodify",
    ],
)
def test_other_urls_are_unchanged(database_url) -> None:
    assert absolute_database_url(database_url) == database_url


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

def test_startup_migrates_the_database_the_app_writes_to(tmp_path, monkeypatch) -> None:
    if not _is_relative_sqlite(settings.database_url):
        pytest.skip("DATABASE_URL is not a relative SQLite path")
    monkeypatch.chdir(tmp_path)
    db_file = make_url(settings.database_url).database

    with TestClient(app) as client:
        response = client.post(
            "/api/analytics/track",
            json={
                "eventType": "song_play",
                "userId": "u1",
                "sessionId": "session_1",
                "data": {"mood": "happy", "goal": "match", "language": "english"},
            },
        )
        assert response.status_code == 200, response.text
        assert response.json()["success"] is True

        stats = client.get("/api/analytics/stats/u1").json()["stats"]
        assert stats["songPlays"] == 1

    assert (tmp_path / db_file).exists()
