"""
Shared fixtures.

Each test gets its own SQLite file database, a frozen clock it can move
forward, and a pipeline fake that answers like the real service without
any network.
"""
import itertools
import os
import random
import sys
import tempfile
from datetime import datetime, timedelta

import pytest

# app.db_connection refuses to import without a DATABASE_URL
os.environ.setdefault(
    "DATABASE_URL", "sqlite:///" + os.path.join(tempfile.gettempdir(), "bot-cadence-engine-tests.db")
)
os.environ.setdefault("ENGINE_SCHEDULER_ENABLED", "false")

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from sqlalchemy.orm import sessionmaker  # noqa: E402

from app.core.config import EngineSettings  # noqa: E402
from app.db_connection import build_engine  # noqa: E402
from app.models import Agent, Base  # noqa: E402
from app.services.pipeline.client import PipelineClient  # noqa: E402

# Monday, 12:00 UTC
START = datetime(2026, 3, 2, 12, 0, 0)


class FrozenClock:
    """Naive-UTC clock that only moves when told to."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakePipeline(PipelineClient):
    """
    PipelineClient with the HTTP layer replaced by canned responses.

    Everything above _post (response shaping, moderation checks) is the
    real client code.
    """

    DEFAULT_RESPONSES = {
        "/v1/generate": {"content_body": "gm from the engine", "tags": ["gm"]},
        "/v1/effects/select": {"effect": None},
        "/v1/moderate": {"approved": True},
        "/v1/posts": {"post_id": "post-1"},
        "/v1/replies/comment": {"content_body": "thanks for the comment"},
        "/v1/replies/post": {"content_body": "great post"},
        "/v1/agents/decide": {"action": "idle"},
        "/v1/agents/welcome": {"ok": True},
        "/v1/crew/interact": {"interactions": 2},
        "/v1/engagement/recalculate": {"updated": 10},
    }

    def __init__(self):
        super().__init__(
            base_url="http://pipeline.test",
            api_key="test-key",
            timeout=5,
            settings=EngineSettings(),
        )
        self.calls = []
        self.responses = {k: dict(v) for k, v in self.DEFAULT_RESPONSES.items()}
        self._failures = {}

    def fail(self, path: str, exc: Exception, times: int = 1):
        """Raise ``exc`` on the next ``times`` calls to ``path``."""
        self._failures[path] = [exc] * times

    def calls_to(self, path: str):
        return [body for p, body in self.calls if p == path]

    def _post(self, path, body):
        self.calls.append((path, body))
        pending = self._failures.get(path)
        if pending:
            raise pending.pop(0)
        return dict(self.responses.get(path, {}))


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def settings():
    return EngineSettings()


@pytest.fixture
def session_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'engine.db'}")
    Base.metadata.create_all(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def pipeline():
    return FakePipeline()


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def store(session_factory, settings, clock):
    from app.services.jobs.store import JobStore

    return JobStore(session_factory, settings, clock)


@pytest.fixture
def engine(session_factory, settings, pipeline, rng, clock):
    from app.services.engine import Engine

    return Engine(settings=settings, session_factory=session_factory, pipeline=pipeline, rng=rng, clock=clock)


@pytest.fixture
def make_agent(session_factory, clock):
    counter = itertools.count(1)

    def _make(**overrides) -> Agent:
        n = next(counter)
        fields = {
            "handle": f"bot{n}",
            "name": f"Bot {n}",
            "posting_frequency": 3,
            "is_scheduled": True,
            "is_active": True,
            "timezone": "UTC",
            "created_at": clock(),
            "updated_at": clock(),
        }
        fields.update(overrides)
        with session_factory() as db:
            agent = Agent(**fields)
            db.add(agent)
            db.commit()
        return agent

    return _make


@pytest.fixture
def load_agent(session_factory):
    def _load(agent_id: str) -> Agent:
        with session_factory() as db:
            return db.get(Agent, agent_id)

    return _load
