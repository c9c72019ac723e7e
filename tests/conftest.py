"""
Pytest configuration and shared fixtures.
"""

import os
from collections.abc import AsyncGenerator
from datetime import datetime

# Keep transient-store retries fast in tests. Set before the settings are cached.
os.environ.setdefault("STORE_RETRY_MAX_DELAY_SECONDS", "0.01")
os.environ.setdefault("LOG_FORMAT", "console")

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from prometheus_client import CollectorRegistry

from jobqueue.api.main import create_app
from jobqueue.errors import StoreUnavailable
from jobqueue.observability.hooks import CompositeHooks, EventHooks, MetricsHooks
from jobqueue.observability.metrics import MetricsCollector
from jobqueue.queue import JobQueue
from jobqueue.reaper.main import Reaper
from jobqueue.scheduler.main import Sweeper
from jobqueue.store.memory import MemoryStore
from jobqueue.types.job import utcnow
from jobqueue.worker.handlers import HandlerRegistry, register_builtin_handlers
from jobqueue.worker.main import Dispatcher
from jobqueue.worker.retry import RetryPolicy


class FlakyStore(MemoryStore):
    """Memory store whose named operations raise ``StoreUnavailable`` a set number of times."""

    def __init__(self) -> None:
        super().__init__()
        self.failures: dict[str, int] = {}
        self.calls: dict[str, int] = {}

    def fail(self, operation: str, times: int) -> None:
        self.failures[operation] = times

    def _maybe_fail(self, operation: str) -> None:
        self.calls[operation] = self.calls.get(operation, 0) + 1
        if self.failures.get(operation, 0) > 0:
            self.failures[operation] -= 1
            raise StoreUnavailable(f"{operation}: connection refused")

    async def save_job(self, job):
        self._maybe_fail("save_job")
        return await super().save_job(job)

    async def load_job(self, job_id):
        self._maybe_fail("load_job")
        return await super().load_job(job_id)

    async def push_waiting(self, job_id):
        self._maybe_fail("push_waiting")
        return await super().push_waiting(job_id)

    async def claim_next(self, timeout, lease_duration):
        self._maybe_fail("claim_next")
        return await super().claim_next(timeout, lease_duration)

    async def move_job(self, job, source, target, score=None, lease_expires_at=None):
        self._maybe_fail("move_job")
        return await super().move_job(job, source, target, score, lease_expires_at)

    async def pop_due_scheduled(self, now):
        self._maybe_fail("pop_due_scheduled")
        return await super().pop_due_scheduled(now)


@pytest.fixture
def store() -> MemoryStore:
    """Create an empty in-memory store."""
    return MemoryStore()


@pytest.fixture
def flaky_store() -> FlakyStore:
    """Create a store that can be told to fail transiently."""
    return FlakyStore()


@pytest.fixture
def metrics() -> MetricsCollector:
    """Create a metrics collector on an isolated registry."""
    return MetricsCollector(registry=CollectorRegistry())


@pytest.fixture
def events() -> EventHooks:
    """Create an event hook that records nothing until subscribed."""
    return EventHooks()


@pytest.fixture
def recorded_events(events: EventHooks) -> list:
    """Collect every event emitted through the ``events`` hook."""
    received = []
    events.subscribe(received.append)
    return received


@pytest.fixture
def hooks(metrics: MetricsCollector, events: EventHooks) -> CompositeHooks:
    """Hooks publishing to the isolated metrics and to ``events``."""
    return CompositeHooks([MetricsHooks(metrics), events])


@pytest.fixture
def registry() -> HandlerRegistry:
    """Create a registry with the built-in handlers."""
    return register_builtin_handlers(HandlerRegistry())


@pytest.fixture
def queue(store: MemoryStore, hooks: CompositeHooks) -> JobQueue:
    """Create a queue over the memory store."""
    return JobQueue(store, default_max_attempts=3, hooks=hooks)


@pytest.fixture
def retry_policy(store: MemoryStore, hooks: CompositeHooks) -> RetryPolicy:
    """Create a retry policy without jitter."""
    return RetryPolicy(store, base_delay=1.0, max_delay=60.0, jitter=0.0, hooks=hooks)


@pytest.fixture
def dispatcher(
    store: MemoryStore,
    registry: HandlerRegistry,
    retry_policy: RetryPolicy,
    hooks: CompositeHooks,
) -> Dispatcher:
    """Create a single-slot dispatcher with short timeouts."""
    return Dispatcher(
        store,
        registry,
        concurrency=1,
        lease_duration=5.0,
        claim_timeout=0.05,
        worker_id="test-worker",
        retry_policy=retry_policy,
        hooks=hooks,
        completed_retention_seconds=3600.0,
        shutdown_timeout=1.0,
    )


@pytest.fixture
def sweeper(store: MemoryStore, hooks: CompositeHooks) -> Sweeper:
    """Create a sweeper that keeps completed jobs for an hour."""
    return Sweeper(store, interval_seconds=0.05, completed_retention_seconds=3600.0, hooks=hooks)


@pytest.fixture
def reaper(store: MemoryStore, retry_policy: RetryPolicy, hooks: CompositeHooks) -> Reaper:
    """Create a reaper sharing the retry policy."""
    return Reaper(store, retry_policy=retry_policy, interval_seconds=0.05, hooks=hooks)


@pytest.fixture
def now() -> datetime:
    """A fixed reference time."""
    return utcnow()


@pytest.fixture
def app(queue: JobQueue, dispatcher: Dispatcher) -> FastAPI:
    """Create the admin app over the test queue."""
    return create_app(queue=queue, dispatcher=dispatcher)


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Create an async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
