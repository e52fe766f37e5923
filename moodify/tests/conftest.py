"""
Test configuration for the Moodify analytics package.

The project root is put on sys.path so `from moodify...` resolves whether or not
the package is installed, and whichever directory pytest is run from.

Fixtures:
  session_factory  async sessionmaker over a fresh SQLite file per test
  api              httpx AsyncClient bound to the FastAPI app, get_db pointed at session_factory
  kv_store         JsonFileStore in the test's tmp_path
"""
import sys
from pathlib import Path

_project_root = Path(__file__).resolve().parents[2]
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402

import moodify.models  # noqa: E402,F401
from moodify.client.storage import JsonFileStore  # noqa: E402
from moodify.database import Base, enable_sqlite_savepoints, get_db  # noqa: E402
from moodify.main import app  # noqa: E402


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'analytics.sqlite'}")
    enable_sqlite_savepoints(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(bind=engine, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def api(session_factory):
    """Async httpx client using ASGI transport — no live server needed."""
    async def _get_test_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_test_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def kv_store(tmp_path):
    return JsonFileStore(tmp_path / "device" / "analytics.json")
