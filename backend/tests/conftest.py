# tests/conftest.py
import os
import tempfile
from datetime import datetime, timezone

_DB_DIR = tempfile.mkdtemp(prefix="liveclass-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'app.db')}")
os.environ.setdefault("AUTO_CREATE_TABLES", "true")
os.environ.setdefault("DEBUG", "false")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

import liveclass.models  # noqa: E402,F401
from liveclass.database import Base  # noqa: E402
from liveclass.models.meeting import Meeting, MeetingStatus  # noqa: E402

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """
    Session factory bound to a fresh SQLite file per test.

    A file (not ``:memory:``) is used so every session gets its own
    connection, the same way the store behaves against Postgres.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'live.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, class_=AsyncSession)

    await engine.dispose()


@pytest_asyncio.fixture
async def live_meeting(session_factory) -> Meeting:
    """A meeting scheduled and started at ``T0``."""
    async with session_factory() as db:
        meeting = Meeting(
            title="Algebra II",
            scheduled_start=T0,
            status=MeetingStatus.LIVE.value,
            started_at=T0,
        )
        db.add(meeting)
        await db.commit()
        await db.refresh(meeting)
        return meeting


@pytest.fixture
def client() -> TestClient:
    """
    TestClient over the application factory.

    Tables are created on startup because AUTO_CREATE_TABLES is enabled above.
    """
    from liveclass.main import create_app

    app = create_app()
    with TestClient(app) as test_client:
        yield test_client
