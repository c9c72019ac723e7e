"""
Unit tests for the in-memory ordered store.
"""

import asyncio
from datetime import timedelta

import pytest

from jobqueue.constants import Collection, JobState
from jobqueue.errors import InvalidArgument, NotFound, StoreConflict
from jobqueue.store.memory import MemoryStore
from jobqueue.types.job import Job, utcnow


class TestJobBodies:
    """Tests for the job-body table."""

    @pytest.mark.asyncio
    async def test_load_missing_job(self, store: MemoryStore):
        with pytest.raises(NotFound):
            await store.load_job("missing")

    @pytest.mark.asyncio
    async def test_loaded_job_is_a_copy(self, store: MemoryStore):
        """Mutating a loaded job does not change the stored body."""
        job = Job(type="echo", payload=b"hi")
        await store.save_job(job)

        loaded = await store.load_job(job.id)
        loaded.state = JobState.COMPLETED

        assert (await store.load_job(job.id)).state == JobState.WAITING

    @pytest.mark.asyncio
    async def test_delete_job_removes_entry(self, store: MemoryStore):
        job = Job(type="echo")
        await store.save_job(job)
        await store.push_waiting(job.id)

        await store.delete_job(job.id)

        with pytest.raises(NotFound):
            await store.load_job(job.id)
        assert (await store.counts())[Collection.WAITING] == 0


class TestClaim:
    """Tests for claim_next."""

    @pytest.mark.asyncio
    async def test_claim_is_fifo(self, store: MemoryStore, now):
        for job_id in ("a", "b", "c"):
            await store.push_waiting(job_id)

        claimed = [(await store.claim_next(0, 30))[0] for _ in range(3)]

        assert claimed == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_claim_moves_to_inflight_with_lease(self, store: MemoryStore):
        await store.push_waiting("a")
        before = utcnow()

        job_id, lease = await store.claim_next(0, 30)

        assert job_id == "a"
        assert before + timedelta(seconds=30) <= lease <= utcnow() + timedelta(seconds=30)

        assert await store.scan_inflight() == [("a", lease)]
        counts = await store.counts()
        assert counts[Collection.WAITING] == 0
        assert counts[Collection.IN_FLIGHT] == 1

    @pytest.mark.asyncio
    async def test_claim_times_out_on_empty_queue(self, store: MemoryStore):
        assert await store.claim_next(0.01, 30) is None

    @pytest.mark.asyncio
    async def test_blocked_claim_wakes_on_push(self, store: MemoryStore):
        claim = asyncio.create_task(store.claim_next(1.0, 30))
        await asyncio.sleep(0.01)
        assert not claim.done()

        await store.push_waiting("late")

        job_id, _ = await asyncio.wait_for(claim, 1.0)
        assert job_id == "late"

    @pytest.mark.asyncio
    async def test_concurrent_claims_never_share_an_id(self, store: MemoryStore):
        job_ids = [f"job-{i}" for i in range(100)]
        for job_id in job_ids:
            await store.push_waiting(job_id)

        async def drain() -> list[str]:
            claimed = []
            while (claim := await store.claim_next(0.01, 30)) is not None:
                claimed.append(claim[0])
                await asyncio.sleep(0)
            return claimed

        results = await asyncio.gather(*(drain() for _ in range(10)))
        claimed = [job_id for batch in results for job_id in batch]

        assert len(claimed) == len(job_ids)
        assert set(claimed) == set(job_ids)


class TestScheduled:
    """Tests for the scheduled collection."""

    @pytest.mark.asyncio
    async def test_pop_due_in_score_order(self, store: MemoryStore, now):
        await store.push_scheduled("late", now + timedelta(seconds=2))
        await store.push_scheduled("early", now + timedelta(seconds=1))
        await store.push_scheduled("future", now + timedelta(seconds=60))

        due = await store.pop_due_scheduled(now + timedelta(seconds=5))

        assert due == ["early", "late"]
        assert (await store.counts())[Collection.SCHEDULED] == 1

    @pytest.mark.asyncio
    async def test_pop_due_includes_exact_score(self, store: MemoryStore, now):
        await store.push_scheduled("a", now)
        assert await store.pop_due_scheduled(now) == ["a"]

    @pytest.mark.asyncio
    async def test_pop_due_is_idempotent(self, store: MemoryStore, now):
        await store.push_scheduled("a", now)

        assert await store.pop_due_scheduled(now) == ["a"]
        assert await store.pop_due_scheduled(now) == []

    @pytest.mark.asyncio
    async def test_repush_updates_score(self, store: MemoryStore, now):
        await store.push_scheduled("a", now)
        await store.push_scheduled("a", now + timedelta(seconds=60))

        assert await store.pop_due_scheduled(now) == []
        assert (await store.counts())[Collection.SCHEDULED] == 1


class TestMembership:
    """Tests for the one-collection-per-id rule."""

    @pytest.mark.asyncio
    async def test_push_waiting_twice_is_noop(self, store: MemoryStore):
        await store.push_waiting("a")
        await store.push_waiting("a")

        assert (await store.counts())[Collection.WAITING] == 1

    @pytest.mark.asyncio
    async def test_push_into_other_collection_conflicts(self, store: MemoryStore, now):
        await store.push_scheduled("a", now)

        with pytest.raises(StoreConflict) as exc_info:
            await store.push_waiting("a")

        assert exc_info.value.current == Collection.SCHEDULED

    @pytest.mark.asyncio
    async def test_inflight_id_cannot_be_dead_lettered(self, store: MemoryStore, now):
        await store.push_waiting("a")
        await store.claim_next(0, 30)

        with pytest.raises(StoreConflict):
            await store.push_dead_letter("a", now)


class TestRemoveInflight:
    """Tests for the lease-guarded removal."""

    @pytest.mark.asyncio
    async def test_remove_with_matching_lease(self, store: MemoryStore):
        await store.push_waiting("a")
        _, lease = await store.claim_next(0, 30)

        await store.remove_inflight("a", lease)

        assert await store.scan_inflight() == []

    @pytest.mark.asyncio
    async def test_stale_lease_is_rejected(self, store: MemoryStore):
        await store.push_waiting("a")
        _, lease = await store.claim_next(0, 30)

        with pytest.raises(NotFound):
            await store.remove_inflight("a", lease - timedelta(seconds=1))

        assert await store.scan_inflight() == [("a", lease)]

    @pytest.mark.asyncio
    async def test_second_removal_fails(self, store: MemoryStore):
        await store.push_waiting("a")
        await store.claim_next(0, 30)
        await store.remove_inflight("a")

        with pytest.raises(NotFound):
            await store.remove_inflight("a")


class TestMoveJob:
    """Tests for the atomic move between collections."""

    @pytest.mark.asyncio
    async def test_move_saves_body_and_membership(self, store: MemoryStore, now):
        job = Job(type="echo")
        await store.save_job(job)
        await store.push_waiting(job.id)
        _, lease = await store.claim_next(0, 30)

        job.state = JobState.SCHEDULED
        await store.move_job(
            job, Collection.IN_FLIGHT, Collection.SCHEDULED, now, lease_expires_at=lease
        )

        assert (await store.load_job(job.id)).state == JobState.SCHEDULED
        assert await store.scan_inflight() == []
        assert await store.pop_due_scheduled(now) == [job.id]

    @pytest.mark.asyncio
    async def test_stale_lease_leaves_everything_unchanged(self, store: MemoryStore, now):
        job = Job(type="echo", state=JobState.IN_FLIGHT)
        await store.save_job(job)
        await store.push_waiting(job.id)
        _, lease = await store.claim_next(0, 30)

        moved = job.model_copy(update={"state": JobState.COMPLETED})
        with pytest.raises(NotFound):
            await store.move_job(
                moved,
                Collection.IN_FLIGHT,
                Collection.COMPLETED,
                now,
                lease_expires_at=lease - timedelta(seconds=1),
            )

        assert await store.scan_inflight() == [(job.id, lease)]
        assert (await store.load_job(job.id)).state == JobState.IN_FLIGHT

    @pytest.mark.asyncio
    async def test_wrong_source_is_rejected(self, store: MemoryStore, now):
        job = Job(type="echo")
        await store.save_job(job)
        await store.push_scheduled(job.id, now)

        with pytest.raises(NotFound):
            await store.move_job(job, Collection.DEAD_LETTER, Collection.WAITING)

        assert (await store.counts())[Collection.SCHEDULED] == 1

    @pytest.mark.asyncio
    async def test_scored_target_needs_score(self, store: MemoryStore, now):
        job = Job(type="echo")
        await store.save_job(job)
        await store.push_dead_letter(job.id, now)

        with pytest.raises(InvalidArgument):
            await store.move_job(job, Collection.DEAD_LETTER, Collection.SCHEDULED)

        assert await store.list_dead_letters(10) == [job.id]

    @pytest.mark.asyncio
    async def test_move_to_waiting_wakes_blocked_claim(self, store: MemoryStore, now):
        job = Job(type="echo")
        await store.save_job(job)
        await store.push_dead_letter(job.id, now)
        claim = asyncio.create_task(store.claim_next(1.0, 30))
        await asyncio.sleep(0.01)
        assert not claim.done()

        await store.move_job(job, Collection.DEAD_LETTER, Collection.WAITING)

        job_id, _ = await asyncio.wait_for(claim, 1.0)
        assert job_id == job.id


class TestTerminalCollections:
    """Tests for the dead-letter and completed collections."""

    @pytest.mark.asyncio
    async def test_dead_letters_oldest_first(self, store: MemoryStore, now):
        await store.push_dead_letter("newer", now + timedelta(seconds=1))
        await store.push_dead_letter("older", now)

        assert await store.list_dead_letters(10) == ["older", "newer"]
        assert await store.list_dead_letters(1) == ["older"]

    @pytest.mark.asyncio
    async def test_remove_dead_letter(self, store: MemoryStore, now):
        await store.push_dead_letter("a", now)

        await store.remove_dead_letter("a")

        assert await store.list_dead_letters(10) == []
        with pytest.raises(NotFound):
            await store.remove_dead_letter("a")

    @pytest.mark.asyncio
    async def test_prune_completed_deletes_bodies(self, store: MemoryStore, now):
        old, fresh = Job(type="echo"), Job(type="echo")
        for job in (old, fresh):
            await store.save_job(job)
        await store.push_completed(old.id, now - timedelta(hours=2))
        await store.push_completed(fresh.id, now)

        pruned = await store.prune_completed(now - timedelta(hours=1))

        assert pruned == 1
        with pytest.raises(NotFound):
            await store.load_job(old.id)
        assert (await store.load_job(fresh.id)).id == fresh.id

    @pytest.mark.asyncio
    async def test_counts_cover_every_collection(self, store: MemoryStore):
        counts = await store.counts()
        assert set(counts) == set(Collection)
        assert all(count == 0 for count in counts.values())
