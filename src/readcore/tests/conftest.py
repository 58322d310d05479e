"""Test configuration."""
import os
from collections import deque
from dataclasses import replace
from datetime import datetime, timedelta, UTC
from pathlib import Path
from typing import Any, Deque, Dict, Generator, List, Optional, Tuple

import pytest
from dotenv import load_dotenv
from sqlalchemy.orm import sessionmaker

# Set test environment before any imports
os.environ["ENV"] = "test"

# Load test environment variables
test_env_path = Path(__file__).parent.parent.parent.parent / ".env.test"
load_dotenv(test_env_path)

# Import after environment setup
from readcore.config import ensure_directories
from readcore.errors import ConnectivityError, NotFoundError
from readcore.models.base import init_db, make_engine, make_session_factory
from readcore.models.progress_models import ProgressRecord, ProgressStatus, ProgressSummary, record_key
from readcore.services import optimistic
from readcore.services.connectivity import ConnectivityMonitor
from readcore.services.local_store import LocalStore
from readcore.services.remote_client import RemoteContentClient, RemoteProgressClient
from readcore.services.sync_queue import SyncQueue


@pytest.fixture(autouse=True)
def setup_test_environment():
    """Set up test environment before each test."""
    ensure_directories()
    yield


class FakeClock:
    """Settable clock, callable like ``utcnow``."""

    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime(2024, 3, 1, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeProgressClient(RemoteProgressClient):
    """In-memory backend with the server's progress semantics.

    ``online = False`` makes every call fail with ``ConnectivityError``;
    ``fail_next`` queues outcomes of the next calls, one per call: an error to
    raise, or None to let the call through.
    """

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.online = True
        self.records: Dict[str, ProgressRecord] = {}
        self.calls: List[Tuple[str, str, str]] = []
        self.fail_next: Deque[Optional[Exception]] = deque()

    def _check(self, operation: str, learner_id: str, content_id: str) -> None:
        if not self.online:
            raise ConnectivityError(f"{operation}: network unreachable")
        if self.fail_next:
            error = self.fail_next.popleft()
            if error is not None:
                raise error
        self.calls.append((operation, learner_id, content_id))

    def _save(self, record: ProgressRecord) -> ProgressRecord:
        self.records[record.id] = record
        return record

    def _existing(self, learner_id: str, content_id: str) -> Optional[ProgressRecord]:
        return self.records.get(record_key(content_id, learner_id))

    async def start_content(self, learner_id, content_id):
        self._check("start_content", learner_id, content_id)
        return self._save(optimistic.synthesize_started(
            self._existing(learner_id, content_id), learner_id, content_id, self.clock()
        ))

    async def update_progress(self, learner_id, content_id, status=None, score=None, time_spent=None):
        self._check("update_progress", learner_id, content_id)
        return self._save(optimistic.synthesize_updated(
            self._existing(learner_id, content_id),
            self.clock(),
            status=ProgressStatus.parse(status) if status else None,
            score=score,
            time_spent=time_spent,
        ))

    async def record_step(
        self,
        learner_id,
        content_id,
        step_id,
        completed,
        score=None,
        attempts=None,
        elapsed_seconds=None,
        current_step_index=None,
    ):
        self._check("record_step", learner_id, content_id)
        return self._save(optimistic.synthesize_step(
            self._existing(learner_id, content_id),
            learner_id,
            content_id,
            self.clock(),
            step_id,
            completed,
            score=score,
            attempts=attempts,
            elapsed_seconds=elapsed_seconds,
            current_step_index=current_step_index,
        ))

    async def complete_content(self, learner_id, content_id, score=None, elapsed_seconds=None):
        self._check("complete_content", learner_id, content_id)
        return self._save(optimistic.synthesize_completed(
            self._existing(learner_id, content_id),
            learner_id,
            content_id,
            self.clock(),
            score=score,
            elapsed_seconds=elapsed_seconds,
        ))

    async def get_progress(self, learner_id, content_id):
        self._check("get_progress", learner_id, content_id)
        record = self._existing(learner_id, content_id)
        if record is None:
            raise NotFoundError("Progress not found", status_code=404)
        return record

    async def list_progress(self, learner_id):
        self._check("list_progress", learner_id, "")
        return [record for record in self.records.values() if record.learner_id == learner_id]

    async def get_summary(self, learner_id):
        self._check("get_summary", learner_id, "")
        records = [record for record in self.records.values() if record.learner_id == learner_id]
        return replace(ProgressSummary.from_records(records), computed_locally=False)


class FakeContentClient(RemoteContentClient):
    """In-memory content listing."""

    def __init__(self, items: Optional[List[Dict[str, Any]]] = None):
        self.items = items or []
        self.online = True
        self.list_calls = 0

    async def list_content(self, filters=None):
        if not self.online:
            raise ConnectivityError("list_content: network unreachable")
        self.list_calls += 1
        items = self.items
        for name, value in (filters or {}).items():
            items = [item for item in items if item.get(name) == value]
        return [dict(item) for item in items]

    async def get_content(self, content_id):
        if not self.online:
            raise ConnectivityError("get_content: network unreachable")
        for item in self.items:
            if item["id"] == content_id:
                return dict(item)
        raise NotFoundError("Content not found", status_code=404)


@pytest.fixture
def session_factory() -> Generator[sessionmaker, None, None]:
    """Create a fresh in-memory database for each test."""
    engine = make_engine("sqlite://")
    init_db(engine)
    try:
        yield make_session_factory(engine)
    finally:
        engine.dispose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(session_factory: sessionmaker) -> LocalStore:
    return LocalStore(session_factory)


@pytest.fixture
def queue(session_factory: sessionmaker) -> SyncQueue:
    return SyncQueue(session_factory)


@pytest.fixture
def connectivity() -> ConnectivityMonitor:
    return ConnectivityMonitor()


@pytest.fixture
def progress_client(clock: FakeClock) -> FakeProgressClient:
    return FakeProgressClient(clock)


@pytest.fixture
def content_client() -> FakeContentClient:
    return FakeContentClient([
        {"id": "lesson-1", "title": "Short A", "subject": "phonics", "gradeLevel": "K"},
        {"id": "lesson-2", "title": "Sight Words", "subject": "reading", "gradeLevel": "1"},
        {"id": "lesson-3", "title": "Blends", "subject": "phonics", "gradeLevel": "1"},
    ])
