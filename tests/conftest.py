"""Pytest configuration and fixtures."""
from contextlib import contextmanager
from types import SimpleNamespace

import fakeredis
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base, get_db
from app.exceptions import EmbeddingError
from app.main import app
from app.redis_client import get_redis
from app.schemas.job import CsvSource, EmbeddingConfig, JobOptions
from app.services.clock import Clock
from app.services.import_log import ImportLog
from app.services.job_processor import JobProcessor
from app.services.job_queue import JobQueueService
from app.services.job_store import JobStore
from app.services.sinks import JsonExporter


class FakeClock(Clock):
    """Clock whose sleep returns immediately and can run a hook."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start
        self.sleeps = []
        self.on_sleep = None

    def time(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        if self.on_sleep:
            self.on_sleep(len(self.sleeps))


class FakeEmbedder:
    """Deterministic embedder; raises for texts listed in ``fail_on``."""

    def __init__(self, fail_on=()):
        self.fail_on = set(fail_on)
        self.calls = []

    def embed(self, payload, config):
        self.calls.append(payload)
        if payload in self.fail_on:
            raise EmbeddingError("provider unavailable")
        return [float(len(payload)), 0.5, 1.0]


class RecordingSink:
    """Vector sink that records inserts and can run a hook per insert."""

    def __init__(self):
        self.inserted = []
        self.on_insert = None

    def insert(self, set_name, element_id, vector, attributes=None):
        self.inserted.append((set_name, element_id, vector, attributes))
        if self.on_insert:
            self.on_insert(element_id)

    @property
    def element_ids(self):
        return [entry[1] for entry in self.inserted]


@pytest.fixture
def redis_client():
    """Isolated in-memory Redis."""
    client = fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    client.flushall()
    client.close()


@pytest.fixture
def store(redis_client):
    return JobStore(redis_client)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def queue(store, clock):
    return JobQueueService(store, clock)


@pytest.fixture
def embedding_config():
    return EmbeddingConfig(provider="ollama", ollama={"model_name": "nomic-embed-text"})


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def import_log(store):
    return ImportLog(store, max_entries=5)


@pytest.fixture
def exporter(tmp_path):
    return JsonExporter(str(tmp_path / "exports"))


@pytest.fixture
def create_csv_job(queue, embedding_config):
    """Create a job from CSV text and return its id."""

    def _create(content, vector_set_name="movies", **options):
        return queue.create_job(
            CsvSource(content=content, filename="movies.csv"),
            vector_set_name,
            embedding_config,
            JobOptions(**options),
        )

    return _create


@pytest.fixture
def make_processor(queue, embedder, sink, exporter, import_log, clock):
    """Build a processor wired to the in-memory fakes."""

    def _make(job_id, **kwargs):
        params = dict(
            queue=queue,
            embedder=embedder,
            vector_sink=sink,
            exporter=exporter,
            import_log=import_log,
            clock=clock,
            pause_interval=1.0,
            error_backoff=0.5,
        )
        params.update(kwargs)
        return JobProcessor(job_id, **params)

    return _make


@pytest.fixture
def test_db():
    """Create a test database for testing."""
    # Use in-memory SQLite for tests
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        try:
            db = TestingSessionLocal()
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    yield TestingSessionLocal

    Base.metadata.drop_all(bind=engine)
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def dispatched(redis_client, monkeypatch):
    """Point the API at the in-memory Redis and record task dispatches."""
    calls = []

    def override_get_redis():
        yield redis_client

    @contextmanager
    def fake_connection(url=None):
        yield redis_client

    app.dependency_overrides[get_redis] = override_get_redis
    monkeypatch.setattr("app.api.jobs.redis_connection", fake_connection)
    monkeypatch.setattr("app.api.jobs.process_import_job", SimpleNamespace(delay=calls.append))

    yield calls

    app.dependency_overrides.pop(get_redis, None)
