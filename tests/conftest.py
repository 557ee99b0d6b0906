import os
import sys
import tempfile
from pathlib import Path

# settings create their directories at import time; keep them out of $HOME
os.environ.setdefault("AGRITRACKER_DATA_DIR", tempfile.mkdtemp(prefix="agritracker-tests-"))

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from services.connectivity import ConnectivityMonitor
from services.notifications import NotificationHub
from services.remote_executor import ExecutionResult
from services.sync_queue import SyncQueue
from storage.queue_store import QueueStore


class FakeHandle:
    """Scripted executor handle: pops one result per call, then succeeds."""

    def __init__(self, results=None):
        self.results = list(results or [])
        self.calls = []

    async def execute(self, op_type, collection, payload):
        self.calls.append((op_type, collection, payload))
        result = self.results.pop(0) if self.results else ExecutionResult.ok({"id": payload.get("id")})
        if isinstance(result, BaseException):
            raise result
        return result


class FakeExecutor:
    def __init__(self, handle=None):
        self.handle = handle
        self.resolved = 0

    def resolve(self):
        self.resolved += 1
        return self.handle


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)

    def factory():
        return Session(engine)

    return factory


@pytest.fixture()
def store(session_factory):
    return QueueStore(session_factory, key="test_queue")


@pytest.fixture()
def make_queue(store):
    def _make(handle=None, *, monitor=None, hub=None, max_retries=3, retry_delay=30.0, executor=None):
        return SyncQueue(
            store,
            executor or FakeExecutor(handle),
            hub=hub if hub is not None else NotificationHub(),
            monitor=monitor if monitor is not None else ConnectivityMonitor(),
            max_retries=max_retries,
            retry_delay=retry_delay,
        )

    return _make
