"""
Integration tests for worker pools running against the job store.
"""

from uuid import UUID

import pytest

from jobqueue.constants import JobStatus
from jobqueue.queue import JobQueueService
from jobqueue.types.job import JobRecord
from jobqueue.worker.pool import WorkerPool
from jobqueue.worker.registry import HandlerRegistry


@pytest.fixture
def pool(queue: JobQueueService, registry: HandlerRegistry) -> WorkerPool:
    """Create a small pool with no pauses."""
    return WorkerPool(
        queue,
        registry,
        max_workers=2,
        batch_size=2,
        poll_pause_seconds=0,
        error_backoff_seconds=0.01,
    )


async def run_until_drained(pool: WorkerPool) -> None:
    await pool.start()
    await pool.join()


class TestWorkerPoolIntegration:
    """End-to-end job processing through the pool."""

    async def test_successful_jobs_are_deleted(
        self, pool: WorkerPool, queue: JobQueueService, registry: HandlerRegistry, user_id: str
    ):
        """Test that a pool drains the queue and removes completed jobs."""
        seen: list[UUID] = []

        @registry.handler("t")
        async def record(job: JobRecord) -> None:
            seen.append(job.id)

        await queue.enqueue_batch([{"user_id": user_id, "type": "t"} for _ in range(6)])

        await run_until_drained(pool)

        assert len(seen) == len(set(seen)) == 6
        assert await queue.get_stats(user_id) == {
            "pending": 0,
            "in_progress": 0,
            "done": 0,
            "failed": 0,
        }
        assert not pool.is_running

    async def test_zero_retries_fails_after_first_claim(
        self, pool: WorkerPool, queue: JobQueueService, registry: HandlerRegistry, user_id: str
    ):
        """Test that a job with max_retries=0 fails on its first handler error."""

        @registry.handler("t")
        async def fail(job: JobRecord) -> None:
            raise RuntimeError("boom")

        job = await queue.enqueue(user_id, "t", max_retries=0)

        await run_until_drained(pool)

        stored = await queue.get_job(job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.retry_count == 1
        assert stored.error == "boom"

    async def test_failing_job_is_retried_until_budget_is_spent(
        self,
        pool: WorkerPool,
        queue: JobQueueService,
        registry: HandlerRegistry,
        user_id: str,
        expire_visibility,
    ):
        """Test that a failing job runs max_retries + 1 times, then fails."""
        attempts: list[int] = []

        @registry.handler("t")
        async def fail(job: JobRecord) -> None:
            attempts.append(job.retry_count)
            raise RuntimeError("still broken")

        job = await queue.enqueue(user_id, "t", max_retries=3)

        for _ in range(3):
            await run_until_drained(pool)
            assert (await queue.get_job(job.id)).status == JobStatus.IN_PROGRESS
            await expire_visibility(job.id)

        await run_until_drained(pool)

        assert attempts == [1, 2, 3, 4]
        assert (await queue.get_stats(user_id))["failed"] == 1

        await expire_visibility(job.id)
        await run_until_drained(pool)
        assert len(attempts) == 4

    async def test_missing_handler_fails_job(
        self, pool: WorkerPool, queue: JobQueueService, user_id: str
    ):
        """Test that an unhandled job type is failed without retries."""
        job = await queue.enqueue(user_id, "no-such-type", max_retries=5)

        await run_until_drained(pool)

        stored = await queue.get_job(job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.retry_count == 1
        assert stored.error == "No handler registered for job type: no-such-type"

    async def test_last_registration_wins(
        self, pool: WorkerPool, queue: JobQueueService, registry: HandlerRegistry, user_id: str
    ):
        """Test that a re-registered type dispatches to one handler only."""
        calls: list[str] = []

        async def old(job: JobRecord) -> None:
            calls.append("old")

        async def new(job: JobRecord) -> None:
            calls.append("new")

        registry.register("t", old)
        registry.register("t", new)
        await queue.enqueue(user_id, "t")

        await run_until_drained(pool)

        assert calls == ["new"]

    async def test_echo_jobs_run_out_of_the_box(
        self, pool: WorkerPool, queue: JobQueueService, user_id: str
    ):
        """Test that the default echo handler is available after start()."""
        await queue.enqueue(user_id, "echo", {"message": "hello"})

        await run_until_drained(pool)

        assert sum((await queue.get_stats(user_id)).values()) == 0
