"""
Unit tests for the worker pool, using an in-memory queue.
"""

import asyncio
from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

import pytest

from jobqueue.constants import FairScheduling, JobStatus, WorkerState
from jobqueue.exceptions import JobNotFoundError, JobStoreError
from jobqueue.types.job import JobRecord
from jobqueue.worker.handlers import register_default_handlers
from jobqueue.worker.main import run_pool
from jobqueue.worker.pool import WorkerPool
from jobqueue.worker.registry import HandlerRegistry


def make_job(job_type: str = "test", retry_count: int = 1, max_retries: int = 3) -> JobRecord:
    now = datetime.now(UTC)
    return JobRecord(
        id=uuid4(),
        user_id="test-user",
        type=job_type,
        payload={"n": 1},
        status=JobStatus.IN_PROGRESS,
        retry_count=retry_count,
        max_retries=max_retries,
        visible_at=now,
        created_at=now,
        updated_at=now,
    )


class FakeQueue:
    """Serves pre-built batches and records acknowledgements."""

    def __init__(self, *batches: list[JobRecord] | Exception):
        self._batches = list(batches)
        self.dequeue_calls: list[dict[str, Any]] = []
        self.acked: list[tuple[UUID, bool]] = []
        self.nacked: list[tuple[UUID, str | None]] = []
        self.gate: asyncio.Event | None = None

    async def dequeue(self, **kwargs: Any) -> list[JobRecord]:
        self.dequeue_calls.append(kwargs)
        if self.gate is not None:
            await self.gate.wait()
        if not self._batches:
            return []
        batch = self._batches.pop(0)
        if isinstance(batch, Exception):
            raise batch
        return batch

    def push(self, batch: list[JobRecord]) -> None:
        self._batches.append(batch)

    async def ack(self, job_id: UUID, delete_on_complete: bool = False) -> None:
        self.acked.append((job_id, delete_on_complete))

    async def nack(self, job_id: UUID, error: str | None = None) -> None:
        self.nacked.append((job_id, error))


def make_pool(queue: FakeQueue, registry: HandlerRegistry, **kwargs: Any) -> WorkerPool:
    options = {
        "max_workers": 1,
        "batch_size": 5,
        "poll_pause_seconds": 0,
        "error_backoff_seconds": 0.01,
        "default_handlers": None,
    }
    options.update(kwargs)
    return WorkerPool(queue, registry, **options)


async def succeed(job: JobRecord) -> None:
    pass


async def fail(job: JobRecord) -> None:
    raise RuntimeError("boom")


class TestJobDispatch:
    """Tests for per-job outcomes."""

    async def test_success_acks_and_deletes(self, registry: HandlerRegistry):
        """Test that a successful job is acknowledged with deletion."""
        registry.register("test", succeed)
        job = make_job()
        queue = FakeQueue([job])
        pool = make_pool(queue, registry)

        await pool.start()
        await pool.join()

        assert queue.acked == [(job.id, True)]
        assert queue.nacked == []

    async def test_failure_with_budget_left_is_left_for_retry(self, registry: HandlerRegistry):
        """Test that a failed job with claims left is neither acked nor nacked."""
        registry.register("test", fail)
        queue = FakeQueue([make_job(retry_count=1, max_retries=3)])
        pool = make_pool(queue, registry)

        await pool.start()
        await pool.join()

        assert queue.acked == []
        assert queue.nacked == []

    async def test_failure_on_last_claim_nacks(self, registry: HandlerRegistry):
        """Test that a failed job past its budget is marked failed with the error."""
        registry.register("test", fail)
        job = make_job(retry_count=4, max_retries=3)
        queue = FakeQueue([job])
        pool = make_pool(queue, registry)

        await pool.start()
        await pool.join()

        assert queue.nacked == [(job.id, "boom")]

    async def test_zero_retries_fails_on_first_error(self, registry: HandlerRegistry):
        """Test that max_retries=0 fails the job after its only claim."""
        registry.register("test", fail)
        job = make_job(retry_count=1, max_retries=0)
        queue = FakeQueue([job])
        pool = make_pool(queue, registry)

        await pool.start()
        await pool.join()

        assert queue.nacked == [(job.id, "boom")]

    async def test_cancelled_handler_does_not_stop_worker(self, registry: HandlerRegistry):
        """Test that a handler cancelling itself only abandons its own job."""

        async def cancel(job: JobRecord) -> None:
            raise asyncio.CancelledError()

        registry.register("cancel", cancel)
        registry.register("test", succeed)
        cancelled = make_job(job_type="cancel")
        later = make_job()
        queue = FakeQueue([cancelled], [later])
        pool = make_pool(queue, registry)

        await pool.start()
        await pool.join()

        assert queue.acked == [(later.id, True)]
        assert queue.nacked == []
        assert len(queue.dequeue_calls) == 3
        assert pool.worker_states == {1: WorkerState.STOPPED}

    async def test_missing_handler_nacks_immediately(self, registry: HandlerRegistry):
        """Test that a job with no registered handler fails without retries."""
        job = make_job(job_type="unknown", retry_count=1, max_retries=3)
        queue = FakeQueue([job])
        pool = make_pool(queue, registry)

        await pool.start()
        await pool.join()

        assert queue.nacked == [(job.id, "No handler registered for job type: unknown")]
        assert queue.acked == []

    async def test_batch_runs_concurrently(self, registry: HandlerRegistry):
        """Test that jobs of one batch overlap in time."""
        running = 0
        peak = 0

        async def slow(job: JobRecord) -> None:
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1

        registry.register("test", slow)
        queue = FakeQueue([make_job(), make_job(), make_job()])
        pool = make_pool(queue, registry)

        await pool.start()
        await pool.join()

        assert peak == 3
        assert len(queue.acked) == 3

    async def test_already_settled_job_is_tolerated(self, registry: HandlerRegistry):
        """Test that a missing row on ack does not stop the worker."""
        registry.register("test", succeed)
        queue = FakeQueue([make_job()], [make_job()])
        pool = make_pool(queue, registry)

        async def gone(job_id: UUID, delete_on_complete: bool = False) -> None:
            raise JobNotFoundError(job_id)

        queue.ack = gone

        await pool.start()
        await pool.join()

        assert len(queue.dequeue_calls) == 3


class TestWorkerLoop:
    """Tests for the worker loop itself."""

    async def test_claims_with_random_scheduling(self, registry: HandlerRegistry):
        """Test that workers claim batches fairly across tenants."""
        queue = FakeQueue()
        pool = make_pool(queue, registry, batch_size=7)

        await pool.start()
        await pool.join()

        assert queue.dequeue_calls[0]["batch_size"] == 7
        assert queue.dequeue_calls[0]["fair_scheduling"] == FairScheduling.RANDOM

    async def test_exits_when_queue_is_empty(self, registry: HandlerRegistry):
        """Test that a worker stops once dequeue returns nothing."""
        registry.register("test", succeed)
        queue = FakeQueue([make_job()], [make_job()])
        pool = make_pool(queue, registry)

        await pool.start()
        await pool.join()

        assert len(queue.dequeue_calls) == 3
        assert not pool.is_running
        assert pool.worker_states == {1: WorkerState.STOPPED}

    async def test_store_error_backs_off_and_continues(self, registry: HandlerRegistry):
        """Test that a failed dequeue does not kill the worker."""
        registry.register("test", succeed)
        job = make_job()
        queue = FakeQueue(JobStoreError("connection refused"), [job])
        pool = make_pool(queue, registry)

        await pool.start()
        await pool.join()

        assert queue.acked == [(job.id, True)]
        assert len(queue.dequeue_calls) == 3

    async def test_stop_interrupts_backoff(self, registry: HandlerRegistry):
        """Test that stop() does not wait for the error back-off to elapse."""
        queue = FakeQueue(*(JobStoreError("down") for _ in range(100)))
        pool = make_pool(queue, registry, error_backoff_seconds=60)

        await pool.start()
        await asyncio.sleep(0.01)
        pool.stop()

        await asyncio.wait_for(pool.join(), timeout=1)
        assert not pool.is_running


class TestPoolLifecycle:
    """Tests for start, stop and join."""

    async def test_start_tops_up_to_max_workers(self, registry: HandlerRegistry):
        """Test that start() never exceeds max_workers."""
        queue = FakeQueue()
        queue.gate = asyncio.Event()
        pool = make_pool(queue, registry, max_workers=2)

        assert await pool.start() == 2
        assert await pool.start() == 0
        assert pool.active_worker_count == 2

        queue.gate.set()
        await pool.join()

        assert pool.active_worker_count == 0

    async def test_restart_after_drain(self, registry: HandlerRegistry):
        """Test that a drained pool can be started again."""
        pool = make_pool(FakeQueue(), registry, max_workers=2)

        await pool.start()
        await pool.join()

        assert await pool.start() == 2
        await pool.join()
        assert set(pool.worker_states) == {3, 4}

    async def test_stop_drains_running_workers(self, registry: HandlerRegistry):
        """Test worker states through a cooperative stop."""
        queue = FakeQueue()
        queue.gate = asyncio.Event()
        pool = make_pool(queue, registry, max_workers=2)

        await pool.start()
        await asyncio.sleep(0)
        assert set(pool.worker_states.values()) == {WorkerState.RUNNING}

        pool.stop()
        assert set(pool.worker_states.values()) == {WorkerState.DRAINING}
        assert pool.is_running

        queue.gate.set()
        await pool.join()

        assert set(pool.worker_states.values()) == {WorkerState.STOPPED}
        assert not pool.is_running

    async def test_stop_lets_in_flight_batch_finish(self, registry: HandlerRegistry):
        """Test that stop() never interrupts a running handler."""
        started = asyncio.Event()
        release = asyncio.Event()

        async def blocking(job: JobRecord) -> None:
            started.set()
            await release.wait()

        registry.register("test", blocking)
        job = make_job()
        queue = FakeQueue([job], [make_job()])
        pool = make_pool(queue, registry)

        await pool.start()
        await started.wait()
        pool.stop()
        release.set()
        await pool.join()

        assert queue.acked == [(job.id, True)]
        assert len(queue.dequeue_calls) == 1

    async def test_shutdown(self, registry: HandlerRegistry):
        """Test that shutdown() stops and joins."""
        queue = FakeQueue(*(JobStoreError("down") for _ in range(100)))
        pool = make_pool(queue, registry, error_backoff_seconds=60)

        await pool.start()
        await asyncio.wait_for(pool.shutdown(), timeout=1)

        assert not pool.is_running

    @pytest.mark.parametrize("job_type", ["echo", "http-request"])
    async def test_start_registers_default_handlers(
        self, registry: HandlerRegistry, job_type: str
    ):
        """Test that the built-in handlers are available after start()."""
        pool = make_pool(FakeQueue(), registry, default_handlers=register_default_handlers)
        await pool.start()
        await pool.join()

        assert job_type in registry


class TestRunPool:
    """Tests for the worker process supervision loop."""

    async def test_restarts_drained_pool_until_stopped(self, registry: HandlerRegistry):
        """Test that jobs arriving after a drain are still processed."""
        registry.register("test", succeed)
        queue = FakeQueue()
        pool = make_pool(queue, registry)
        stop_event = asyncio.Event()

        runner = asyncio.create_task(run_pool(pool, stop_event, restart_interval=0.01))
        await asyncio.sleep(0.05)

        job = make_job()
        queue.push([job])
        for _ in range(100):
            if queue.acked:
                break
            await asyncio.sleep(0.01)

        stop_event.set()
        await asyncio.wait_for(runner, timeout=1)

        assert queue.acked == [(job.id, True)]
        assert len(queue.dequeue_calls) > 2
        assert not pool.is_running
