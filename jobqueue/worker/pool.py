"""
Worker pool for executing jobs.

Each worker loop claims a batch, dispatches every job in it concurrently to
its registered handler, and acknowledges or fails it. Loops exit once the
queue is empty; call start() again to resume processing new arrivals.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from contextlib import suppress

from jobqueue.config import get_settings
from jobqueue.constants import SPAN_DISPATCH_JOB, FairScheduling, WorkerState
from jobqueue.exceptions import HandlerNotFoundError, JobNotFoundError
from jobqueue.observability.logging import bind_context
from jobqueue.observability.metrics import get_metrics
from jobqueue.observability.tracing import get_tracer
from jobqueue.queue.service import JobQueueService
from jobqueue.types.job import JobRecord
from jobqueue.worker.handlers import register_default_handlers
from jobqueue.worker.registry import HandlerRegistry, JobHandler

logger = logging.getLogger(__name__)


class WorkerPool:
    """
    A bounded set of cooperative worker loops sharing one queue.

    Features:
    - Idempotent start() that only tops up to max_workers
    - Random fair scheduling so no tenant starves the others
    - Cooperative stop(): in-flight batches finish, no new batch starts
    - join() to wait deterministically for every loop to drain
    - Fixed back-off after store errors instead of crashing
    """

    def __init__(
        self,
        queue: JobQueueService,
        registry: HandlerRegistry,
        *,
        max_workers: int | None = None,
        batch_size: int | None = None,
        poll_pause_seconds: float | None = None,
        error_backoff_seconds: float | None = None,
        default_handlers: Callable[[HandlerRegistry], None] | None = register_default_handlers,
    ):
        """
        Initialize the pool.

        Args:
            queue: The queue to claim jobs from.
            registry: Handlers to dispatch to.
            max_workers: Ceiling on concurrently running loops.
            batch_size: Jobs claimed per loop iteration.
            poll_pause_seconds: Pause between batches.
            error_backoff_seconds: Wait after a failed store round-trip.
            default_handlers: Called with the registry on every start();
                None disables default registration.
        """
        settings = get_settings()

        self.max_workers = settings.max_workers if max_workers is None else max_workers
        self.batch_size = settings.batch_size if batch_size is None else batch_size
        self.poll_pause_seconds = (
            settings.worker_poll_pause_seconds if poll_pause_seconds is None else poll_pause_seconds
        )
        self.error_backoff_seconds = (
            settings.worker_error_backoff_seconds
            if error_backoff_seconds is None
            else error_backoff_seconds
        )
        self._max_retries = settings.default_max_retries

        self._queue = queue
        self._registry = registry
        self._default_handlers = default_handlers

        self._stop_event = asyncio.Event()
        self._tasks: dict[int, asyncio.Task] = {}
        self._states: dict[int, WorkerState] = {}
        self._last_worker_id = 0
        self._metrics = get_metrics()

    @property
    def active_worker_count(self) -> int:
        """Number of worker loops that have not finished."""
        return sum(1 for task in self._tasks.values() if not task.done())

    @property
    def is_running(self) -> bool:
        """Check if any worker loop is still running."""
        return self.active_worker_count > 0

    @property
    def worker_states(self) -> dict[int, WorkerState]:
        """Snapshot of each known worker loop's state."""
        return dict(self._states)

    async def start(self) -> int:
        """
        Launch worker loops up to max_workers.

        Default handlers are (re)registered on every call. Calling start()
        while loops are running only tops the pool up; it never exceeds
        max_workers.

        Returns:
            Number of loops launched.
        """
        if self._default_handlers is not None:
            self._default_handlers(self._registry)

        to_start = max(0, self.max_workers - self.active_worker_count)
        if to_start == 0:
            return 0

        self._stop_event.clear()
        self._states = {
            worker_id: state
            for worker_id, state in self._states.items()
            if state != WorkerState.STOPPED
        }

        for _ in range(to_start):
            self._last_worker_id += 1
            worker_id = self._last_worker_id
            self._states[worker_id] = WorkerState.IDLE
            task = asyncio.create_task(
                self._run_worker(worker_id),
                name=f"jobqueue-worker-{worker_id}",
            )
            task.add_done_callback(lambda _task, worker_id=worker_id: self._forget(worker_id))
            self._tasks[worker_id] = task

        self._metrics.set_active_workers(self.active_worker_count)
        logger.info(
            f"Started {to_start} workers",
            extra={"active_workers": self.active_worker_count, "batch_size": self.batch_size},
        )
        return to_start

    def stop(self) -> None:
        """
        Ask every loop to stop after its current batch.

        Non-preemptive: running handlers are not interrupted.
        """
        logger.info("Worker pool stopping", extra={"active_workers": self.active_worker_count})
        self._stop_event.set()
        for worker_id, state in self._states.items():
            if state in (WorkerState.IDLE, WorkerState.RUNNING):
                self._states[worker_id] = WorkerState.DRAINING

    async def join(self) -> None:
        """Wait until every launched loop has finished."""
        while True:
            pending = [task for task in self._tasks.values() if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def shutdown(self) -> None:
        """Stop the pool and wait for it to drain."""
        self.stop()
        await self.join()

    def _forget(self, worker_id: int) -> None:
        self._tasks.pop(worker_id, None)
        self._states[worker_id] = WorkerState.STOPPED
        self._metrics.set_active_workers(self.active_worker_count)

    async def _run_worker(self, worker_id: int) -> None:
        """
        Claim and process batches until the queue is empty or stop() is called.
        """
        bind_context(worker_id=worker_id)
        logger.info("Worker started", extra={"worker_id": worker_id})

        try:
            while not self._stop_event.is_set():
                self._states[worker_id] = WorkerState.RUNNING
                try:
                    jobs = await self._queue.dequeue(
                        batch_size=self.batch_size,
                        max_retries=self._max_retries,
                        fair_scheduling=FairScheduling.RANDOM,
                    )

                    if not jobs:
                        logger.info("Queue empty, worker exiting", extra={"worker_id": worker_id})
                        break

                    await self._process_batch(jobs)

                    await asyncio.sleep(self.poll_pause_seconds)

                except Exception as e:
                    logger.exception(
                        f"Error in worker loop: {e}",
                        extra={"worker_id": worker_id},
                    )
                    await self._backoff()
        finally:
            self._states[worker_id] = WorkerState.STOPPED
            logger.info("Worker stopped", extra={"worker_id": worker_id})

    async def _backoff(self) -> None:
        """Wait out the error back-off, returning early if stop() is called."""
        with suppress(TimeoutError):
            await asyncio.wait_for(self._stop_event.wait(), timeout=self.error_backoff_seconds)

    async def _process_batch(self, jobs: list[JobRecord]) -> None:
        """
        Dispatch a batch concurrently.

        Handler failures never escape _process_job; anything that does is a
        store failure, re-raised once the whole batch has finished. A handler
        that cancels itself only loses its own job, which stays in_progress
        until the visibility timeout lapses.
        """
        results = await asyncio.gather(
            *(self._process_job(job) for job in jobs),
            return_exceptions=True,
        )
        for job, result in zip(jobs, results):
            if isinstance(result, asyncio.CancelledError):
                logger.warning(
                    "Job handler was cancelled",
                    extra={"job_id": str(job.id), "job_type": job.type},
                )

        errors = [result for result in results if isinstance(result, Exception)]
        if errors:
            raise errors[0]

    def _resolve_handler(self, job: JobRecord) -> JobHandler:
        handler = self._registry.get(job.type)
        if handler is None:
            raise HandlerNotFoundError(job.type)
        return handler

    async def _process_job(self, job: JobRecord) -> bool:
        """
        Run one job through its handler.

        Handles the full lifecycle:
        1. No handler: fail the job immediately
        2. Handler succeeded: acknowledge and delete the job
        3. Handler failed: fail the job if its retry budget is spent,
           otherwise leave it for the visibility timeout to release

        Returns:
            True if the job succeeded.
        """
        try:
            handler = self._resolve_handler(job)
        except HandlerNotFoundError as e:
            logger.error(e.message, extra={"job_id": str(job.id)})
            await self._settle(job, self._queue.nack(job.id, error=e.message))
            return False

        start_time = time.monotonic()

        with get_tracer().start_as_current_span(SPAN_DISPATCH_JOB) as span:
            span.set_attribute("job_id", str(job.id))
            span.set_attribute("job_type", job.type)
            span.set_attribute("user_id", job.user_id)
            span.set_attribute("retry_count", job.retry_count)

            try:
                await handler(job)
            except Exception as e:
                duration = time.monotonic() - start_time
                error = str(e) or e.__class__.__name__
                exhausted = job.retries_exhausted

                span.record_exception(e)
                logger.warning(
                    "Job failed",
                    extra={
                        "job_id": str(job.id),
                        "job_type": job.type,
                        "error": error,
                        "retry_count": job.retry_count,
                        "max_retries": job.max_retries,
                        "will_retry": not exhausted,
                    },
                )
                self._metrics.record_handler_run(
                    job.type, "failed" if exhausted else "retry", duration
                )

                if exhausted:
                    await self._settle(job, self._queue.nack(job.id, error=error))
                # Otherwise the visibility timeout makes the job claimable again
                return False

        duration = time.monotonic() - start_time
        self._metrics.record_handler_run(job.type, "succeeded", duration)
        logger.info(
            "Job completed successfully",
            extra={"job_id": str(job.id), "duration": f"{duration:.2f}s"},
        )

        await self._settle(job, self._queue.ack(job.id, delete_on_complete=True))
        return True

    async def _settle(self, job: JobRecord, outcome: Awaitable[None]) -> None:
        """
        Await an ack or nack.

        A missing row means another claimant already settled the job after
        its visibility timeout lapsed; that is expected under at-least-once
        delivery and is only logged.
        """
        try:
            await outcome
        except JobNotFoundError:
            logger.warning(
                "Job already settled by another worker",
                extra={"job_id": str(job.id)},
            )
