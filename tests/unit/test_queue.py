"""
Unit tests for the enqueue API and dead-letter operations.
"""

import math
from datetime import timedelta

import pytest

from jobqueue.constants import Collection, JobState
from jobqueue.errors import InvalidArgument, NotFound, StoreUnavailable
from jobqueue.queue import JobQueue
from jobqueue.store.memory import MemoryStore


class TestEnqueue:
    """Tests for JobQueue.enqueue."""

    @pytest.mark.asyncio
    async def test_enqueue_immediate(self, queue: JobQueue, store: MemoryStore):
        job_id = await queue.enqueue("echo", b"hello")

        job = await store.load_job(job_id)
        assert job.state == JobState.WAITING
        assert job.attempt_count == 0
        assert job.max_attempts == 3
        assert job.payload == b"hello"
        assert job.not_before == job.created_at
        assert (await store.counts())[Collection.WAITING] == 1

    @pytest.mark.asyncio
    async def test_enqueue_delayed(self, queue: JobQueue, store: MemoryStore):
        job_id = await queue.enqueue("echo", b"", delay=30)

        job = await store.load_job(job_id)
        assert job.state == JobState.SCHEDULED
        assert job.not_before == job.created_at + timedelta(seconds=30)
        assert await store.pop_due_scheduled(job.created_at) == []
        assert await store.pop_due_scheduled(job.not_before) == [job_id]

    @pytest.mark.asyncio
    async def test_enqueue_accepts_timedelta(self, queue: JobQueue, store: MemoryStore):
        job_id = await queue.enqueue("echo", b"", delay=timedelta(minutes=1))

        job = await store.load_job(job_id)
        assert job.not_before - job.created_at == timedelta(minutes=1)

    @pytest.mark.asyncio
    async def test_enqueue_ids_are_unique(self, queue: JobQueue):
        ids = {await queue.enqueue("echo", b"") for _ in range(50)}
        assert len(ids) == 50

    @pytest.mark.asyncio
    async def test_enqueue_custom_max_attempts(self, queue: JobQueue, store: MemoryStore):
        job_id = await queue.enqueue("echo", b"", max_attempts=7)
        assert (await store.load_job(job_id)).max_attempts == 7

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"type": "", "payload": b""},
            {"type": "  ", "payload": b""},
            {"type": "echo", "payload": "not bytes"},
            {"type": "echo", "payload": b"", "delay": -1},
            {"type": "echo", "payload": b"", "delay": math.inf},
            {"type": "echo", "payload": b"", "delay": timedelta(seconds=-5)},
            {"type": "echo", "payload": b"", "max_attempts": 0},
            {"type": "echo", "payload": b"", "max_attempts": 1.5},
        ],
    )
    async def test_invalid_arguments_write_nothing(self, queue: JobQueue, store: MemoryStore, kwargs):
        with pytest.raises(InvalidArgument):
            await queue.enqueue(**kwargs)

        assert sum((await store.counts()).values()) == 0

    @pytest.mark.asyncio
    async def test_enqueue_emits_event(self, queue: JobQueue, recorded_events):
        job_id = await queue.enqueue("echo", b"")

        assert len(recorded_events) == 1
        assert recorded_events[0].event_type == "job.enqueued"
        assert recorded_events[0].job_id == job_id

    @pytest.mark.asyncio
    async def test_enqueue_retries_transient_store_errors(self, flaky_store, hooks):
        flaky_store.fail("save_job", 2)
        queue = JobQueue(flaky_store, hooks=hooks)

        job_id = await queue.enqueue("echo", b"")

        assert flaky_store.calls["save_job"] == 3
        assert (await flaky_store.load_job(job_id)).state == JobState.WAITING


class TestDeadLetters:
    """Tests for dead-letter inspection and requeue."""

    async def _dead_letter(self, queue: JobQueue, store: MemoryStore, now) -> str:
        job_id = await queue.enqueue("noop-fail", b"")
        await store.claim_next(0, 30)
        await store.remove_inflight(job_id)
        job = await store.load_job(job_id)
        job.state = JobState.DEAD_LETTERED
        job.attempt_count = 3
        job.last_error = "noop-fail: intentional failure"
        job.completed_at = now
        await store.save_job(job)
        await store.push_dead_letter(job_id, now)
        return job_id

    @pytest.mark.asyncio
    async def test_list_dead_letters(self, queue: JobQueue, store: MemoryStore, now):
        job_id = await self._dead_letter(queue, store, now)

        summaries = await queue.list_dead_letters()

        assert [summary.id for summary in summaries] == [job_id]
        assert summaries[0].attempt_count == 3
        assert summaries[0].last_error == "noop-fail: intentional failure"

    @pytest.mark.asyncio
    async def test_list_dead_letters_rejects_bad_limit(self, queue: JobQueue):
        with pytest.raises(InvalidArgument):
            await queue.list_dead_letters(0)

    @pytest.mark.asyncio
    async def test_requeue_resets_attempts(self, queue: JobQueue, store: MemoryStore, now):
        job_id = await self._dead_letter(queue, store, now)

        job = await queue.requeue_dead_letter(job_id)

        assert job.state == JobState.WAITING
        assert job.attempt_count == 0
        assert job.last_error is None
        assert job.completed_at is None
        assert await store.list_dead_letters(10) == []
        assert (await store.claim_next(0, 30))[0] == job_id

    @pytest.mark.asyncio
    async def test_requeue_store_outage_keeps_dead_letter(self, flaky_store, hooks, now):
        queue = JobQueue(flaky_store, hooks=hooks)
        job_id = await self._dead_letter(queue, flaky_store, now)

        flaky_store.fail("move_job", 100)
        with pytest.raises(StoreUnavailable):
            await queue.requeue_dead_letter(job_id)

        assert await flaky_store.list_dead_letters(10) == [job_id]
        assert (await flaky_store.load_job(job_id)).state == JobState.DEAD_LETTERED

    @pytest.mark.asyncio
    async def test_requeue_unknown_job(self, queue: JobQueue):
        with pytest.raises(NotFound):
            await queue.requeue_dead_letter("missing")

    @pytest.mark.asyncio
    async def test_stats_reports_depths(self, queue: JobQueue, events, metrics):
        await queue.enqueue("echo", b"")
        await queue.enqueue("echo", b"", delay=60)

        counts = await queue.stats()

        assert counts[Collection.WAITING] == 1
        assert counts[Collection.SCHEDULED] == 1
        assert events.depths == counts
        assert metrics._registry.get_sample_value(
            "job_queue_depth", {"collection": "scheduled"}
        ) == 1
