import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./interview_research_test.db")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from factories import FAST_TIMEOUTS, FakeSynthesizer, healthy_gatherers
from interview_research.database import build_session_factory, create_tables
from interview_research.services.events import JobEventBus
from interview_research.services.job_store import JobStore
from interview_research.services.orchestrator import ResearchOrchestrator
from interview_research.services.persistence import ArtifactStore


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Fresh file-backed SQLite database per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'research.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture
def events():
    return JobEventBus()


@pytest.fixture
def store(session_factory, events):
    return JobStore(session_factory, events)


@pytest.fixture
def artifacts(session_factory):
    return ArtifactStore(session_factory, write_timeout=FAST_TIMEOUTS.db_write)


@pytest.fixture
def make_orchestrator(store, artifacts):
    """Build an orchestrator with healthy fakes unless overridden."""

    def factory(
        gatherers=None,
        synthesizer=None,
        artifact_store=None,
        timeouts=FAST_TIMEOUTS,
    ) -> ResearchOrchestrator:
        return ResearchOrchestrator(
            store,
            artifact_store or artifacts,
            gatherers or healthy_gatherers(),
            synthesizer or FakeSynthesizer(),
            timeouts=timeouts,
        )

    return factory
