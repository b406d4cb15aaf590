import sys
import os

# Ensure src directory is in Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from pulse.config import Settings
from pulse.database import Base
from pulse.engine import Engine
from pulse.main import app
from pulse.store import SqlMonitorStore

from tests.factories import FakeClock, RecordingNotifier, StubPipeline


# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
test_session_factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> SqlMonitorStore:
    return SqlMonitorStore(test_session_factory)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def pipeline() -> StubPipeline:
    return StubPipeline()


@pytest_asyncio.fixture
async def engine(store, notifier, pipeline, clock):
    """Engine with real persistence, a stub probe pipeline and a fake clock. Not started."""
    eng = Engine(
        store,
        notifier=notifier,
        pipeline=pipeline,
        settings=Settings(degraded_threshold=1, down_threshold=3),
        now=clock,
    )
    yield eng
    await eng.stop()


@pytest_asyncio.fixture
async def client(engine: Engine):
    app.state._testing = True
    app.state.engine = engine
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
