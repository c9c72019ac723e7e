"""
Unit tests for observability hooks, metrics, log context, spans and the store retry helper.
"""

import logging

import pytest
import structlog
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from prometheus_client import CollectorRegistry

from jobqueue.constants import Collection, JobState
from jobqueue.errors import StoreUnavailable
from jobqueue.observability import tracing
from jobqueue.observability.hooks import CompositeHooks, EventHooks, MetricsHooks, QueueHooks
from jobqueue.observability.logging import job_log_context
from jobqueue.observability.metrics import MetricsCollector
from jobqueue.store.retry import retry_store_call
from jobqueue.types.job import Job


class TestEventHooks:
    """Tests for event delivery."""

    def test_subscribe_and_unsubscribe(self):
        events = EventHooks()
        received = []
        unsubscribe = events.subscribe(received.append)

        events.on_enqueued(Job(type="echo"))
        unsubscribe()
        events.on_enqueued(Job(type="echo"))

        assert len(received) == 1
        assert received[0].event_type == "job.enqueued"

    def test_failing_listener_does_not_propagate(self):
        events = EventHooks()
        received = []

        def broken(event):
            raise RuntimeError("listener bug")

        events.subscribe(broken)
        events.subscribe(received.append)

        events.on_dead_lettered(Job(type="echo", state=JobState.DEAD_LETTERED))

        assert [event.event_type for event in received] == ["job.dead_lettered"]

    def test_failed_event_state(self):
        events = EventHooks()
        received = []
        events.subscribe(received.append)
        job = Job(type="echo", attempt_count=1)

        events.on_failed(job, "boom", will_retry=True)
        events.on_failed(job, "boom", will_retry=False)

        assert [event.state for event in received] == [JobState.SCHEDULED, JobState.FAILED]
        assert received[0].data["error"] == "boom"


class TestMetricsHooks:
    """Tests for the Prometheus bridge."""

    @pytest.fixture
    def registry(self) -> CollectorRegistry:
        return CollectorRegistry()

    def test_records_lifecycle(self, registry: CollectorRegistry):
        hooks = MetricsHooks(MetricsCollector(registry=registry))
        job = Job(type="echo")

        hooks.on_enqueued(job)
        hooks.on_claimed(job, "w1")
        hooks.on_failed(job, "boom", will_retry=True, duration_seconds=0.2)
        hooks.on_completed(job, 0.1)
        hooks.on_lease_expired(job)
        hooks.on_in_flight("w1", 2)

        assert registry.get_sample_value(
            "jobs_enqueued_total", {"job_type": "echo", "state": "waiting"}
        ) == 1
        assert registry.get_sample_value("lease_acquired_total", {"worker_id": "w1"}) == 1
        assert registry.get_sample_value(
            "jobs_failed_total", {"job_type": "echo", "will_retry": "true"}
        ) == 1
        assert registry.get_sample_value("jobs_completed_total", {"job_type": "echo"}) == 1
        assert registry.get_sample_value("lease_expired_total", {"job_type": "echo"}) == 1
        assert registry.get_sample_value("jobs_in_flight", {"worker_id": "w1"}) == 2

    def test_depth_gauge(self, registry: CollectorRegistry):
        hooks = MetricsHooks(MetricsCollector(registry=registry))

        hooks.on_depth({Collection.WAITING: 4, Collection.DEAD_LETTER: 1})

        assert registry.get_sample_value("job_queue_depth", {"collection": "waiting"}) == 4
        assert registry.get_sample_value("job_queue_depth", {"collection": "dead_letter"}) == 1

    def test_exposition_format(self, registry: CollectorRegistry):
        collector = MetricsCollector(registry=registry)
        collector.record_job_dead_lettered("echo")

        assert b"jobs_dead_lettered_total" in collector.get_metrics()
        assert collector.get_content_type().startswith("text/plain")


class TestCompositeHooks:
    """Tests for fan-out."""

    def test_fans_out_in_order(self):
        calls = []

        class Recorder(QueueHooks):
            def __init__(self, name):
                self.name = name

            def on_completed(self, job, duration_seconds):
                calls.append(self.name)

        hooks = CompositeHooks([Recorder("a"), Recorder("b")])
        hooks.on_completed(Job(type="echo"), 0.1)

        assert calls == ["a", "b"]


class TestRetryStoreCall:
    """Tests for transient store error retries."""

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        attempts = 0

        async def flaky() -> str:
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                raise StoreUnavailable("connection reset")
            return "ok"

        assert await retry_store_call(flaky, operation="flaky", attempts=5) == "ok"
        assert attempts == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_attempts(self):
        attempts = 0

        async def down() -> None:
            nonlocal attempts
            attempts += 1
            raise StoreUnavailable("connection refused")

        with pytest.raises(StoreUnavailable):
            await retry_store_call(down, attempts=2, max_delay=0.01)
        assert attempts == 2

    @pytest.mark.asyncio
    async def test_retry_log_names_operation(self, caplog):
        attempts = 0

        async def flaky() -> str:
            nonlocal attempts
            attempts += 1
            if attempts < 2:
                raise StoreUnavailable("connection reset")
            return "ok"

        with caplog.at_level(logging.WARNING, logger="jobqueue.store.retry"):
            await retry_store_call(flaky, operation="load_job", attempts=3, max_delay=0.01)

        records = [r for r in caplog.records if r.name == "jobqueue.store.retry"]
        assert len(records) == 1
        assert "load_job" in records[0].getMessage()
        assert records[0].operation == "load_job"
        assert records[0].attempt == 1
        assert "connection reset" in records[0].error

    @pytest.mark.asyncio
    async def test_other_errors_not_retried(self):
        attempts = 0

        async def broken() -> None:
            nonlocal attempts
            attempts += 1
            raise KeyError("bug")

        with pytest.raises(KeyError):
            await retry_store_call(broken)
        assert attempts == 1


class TestLogContext:
    """Tests for per-job log binding."""

    def test_fields_bound_inside_block_only(self):
        with job_log_context(job_id="job-1", attempt=2):
            bound = structlog.contextvars.get_contextvars()
            assert bound["job_id"] == "job-1"
            assert bound["attempt"] == 2

        assert "job_id" not in structlog.contextvars.get_contextvars()


class TestJobSpan:
    """Tests for queue operation spans."""

    @pytest.fixture
    def exporter(self, monkeypatch):
        exporter = InMemorySpanExporter()
        provider = TracerProvider()
        provider.add_span_processor(SimpleSpanProcessor(exporter))
        monkeypatch.setattr(tracing, "get_tracer", lambda: provider.get_tracer("test"))
        return exporter

    def test_job_attributes(self, exporter):
        job = Job(id="job-1", type="email", attempt_count=2)

        with tracing.job_span("execute_job", job, worker_id="w1", slot=None):
            pass

        (span,) = exporter.get_finished_spans()
        assert span.name == "execute_job"
        assert span.attributes["job.id"] == "job-1"
        assert span.attributes["job.type"] == "email"
        assert span.attributes["job.attempt"] == 2
        assert span.attributes["worker_id"] == "w1"
        assert "slot" not in span.attributes

    def test_without_job(self, exporter):
        with tracing.job_span("reap_leases") as span:
            span.set_attribute("expired", 3)

        (finished,) = exporter.get_finished_spans()
        assert finished.attributes == {"expired": 3}
