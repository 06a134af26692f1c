"""Shared fixtures: a fresh in-memory database per test and an HTTP client bound to it."""
import os

# Must be set before config is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("AI_PROVIDER_ENABLED", "false")

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import config
from database import build_engine, get_db, init_db
from main import app


@pytest.fixture
async def test_engine():
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    """Database session on the per-test engine."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory):
    """HTTP client talking to the app in-process."""
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    return {"X-API-Key": config.API_KEY}


def make_record(keyword="layanan", sentiment="positif", kota="Jakarta", date="2024-01-15 10:30:00", **extra):
    """A raw record in the upstream export format."""
    record = {
        "sourceData": "Survey Online",
        "employeeName": "Ahmad Budi",
        "date": date,
        "witel": "Jakarta Pusat",
        "kota": kota,
        "originalInsight": f"Feedback tentang {keyword}",
        "sentenceInsight": f"Kalimat tentang {keyword}",
        "wordInsight": keyword,
        "sentimen": sentiment,
    }
    record.update(extra)
    return record
