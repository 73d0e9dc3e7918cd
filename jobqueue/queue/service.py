"""
Job queue service.

The public API over the job store: enqueue, dequeue, acknowledge, fail,
clean up and report. Every call validates its input, runs in its own
transaction and returns detached JobRecord snapshots.
"""

import logging
from collections.abc import AsyncGenerator, Mapping, Sequence
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, TypeVar
from uuid import UUID

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobqueue.constants import (
    DEFAULT_CLEANUP_LIMIT,
    DEFAULT_CLEANUP_OLDER_THAN_DAYS,
    DEFAULT_DEQUEUE_BATCH_SIZE,
    DEFAULT_MAX_RETRIES,
    SPAN_DEQUEUE_JOBS,
    SPAN_ENQUEUE_JOBS,
    TERMINAL_STATUSES,
    FairScheduling,
    JobStatus,
)
from jobqueue.db.connection import get_session_context
from jobqueue.db.repository import JobRepository
from jobqueue.exceptions import JobNotFoundError, JobStoreError, JobValidationError
from jobqueue.observability.metrics import get_metrics
from jobqueue.observability.tracing import get_tracer
from jobqueue.types.job import JobRecord
from jobqueue.types.queue import (
    AckBatchRequest,
    AckRequest,
    CleanupRequest,
    DequeueRequest,
    EnqueueBatchRequest,
    EnqueueRequest,
    JobLookupRequest,
    NackRequest,
    StatsRequest,
)

logger = logging.getLogger(__name__)

RequestT = TypeVar("RequestT", bound=BaseModel)


def _validate(model: type[RequestT], **data: Any) -> RequestT:
    """Build a request model, turning pydantic errors into JobValidationError."""
    try:
        return model(**data)
    except PydanticValidationError as e:
        raise JobValidationError(
            f"Invalid {model.__name__}: {e.error_count()} validation error(s)",
            {"errors": e.errors(include_url=False)},
        ) from e


def _empty_counts() -> dict[str, int]:
    return {status.value: 0 for status in JobStatus}


class JobQueueService:
    """
    Job queue with support for concurrent workers.

    Features:
    - At-least-once delivery with retries
    - Visibility timeout for crash recovery
    - Lock-free concurrency (FOR UPDATE SKIP LOCKED)
    - Per-tenant filtering and fair (random) scheduling
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        visibility_timeout_seconds: int | None = None,
    ):
        """
        Initialize the service.

        Args:
            session_factory: Factory for store sessions. Defaults to the
                process-wide factory created by init_db().
            visibility_timeout_seconds: Overrides the configured visibility
                timeout applied to claimed jobs.
        """
        self._session_factory = session_factory
        self._visibility_timeout_seconds = visibility_timeout_seconds
        self._metrics = get_metrics()

    @asynccontextmanager
    async def _repository(self) -> AsyncGenerator[JobRepository]:
        """Open a transaction and wrap store failures in JobStoreError."""
        try:
            async with get_session_context(self._session_factory) as session:
                yield JobRepository(session, self._visibility_timeout_seconds)
        except SQLAlchemyError as e:
            raise JobStoreError(f"Job store operation failed: {e}") from e

    async def enqueue(
        self,
        user_id: str,
        job_type: str,
        payload: Any = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> JobRecord:
        """
        Enqueue a new job.

        Duplicates are allowed; deduplication is up to the producer.

        Example:
            job = await queue.enqueue(
                user_id="user-123",
                job_type="send-email",
                payload={"to": "user@example.com"},
            )

        Raises:
            JobValidationError: If any argument is malformed.
        """
        request = _validate(
            EnqueueRequest,
            user_id=user_id,
            type=job_type,
            payload=payload,
            max_retries=max_retries,
        )

        async with self._repository() as repo:
            job = await repo.create_job(
                user_id=request.user_id,
                job_type=request.type,
                payload=request.payload,
                max_retries=request.max_retries,
            )
            record = JobRecord.model_validate(job)

        self._metrics.record_jobs_enqueued()
        return record

    async def enqueue_batch(
        self,
        jobs: Sequence[EnqueueRequest | Mapping[str, Any]],
    ) -> int:
        """
        Enqueue many jobs in a single transaction.

        Either every job is inserted or none is.

        Args:
            jobs: EnqueueRequest instances or mappings with user_id, type,
                and optionally payload and max_retries.

        Returns:
            Number of jobs inserted.

        Raises:
            JobValidationError: If the list is empty or any entry is malformed.
        """
        request = _validate(
            EnqueueBatchRequest,
            jobs=[job if isinstance(job, EnqueueRequest) else dict(job) for job in jobs],
        )

        with get_tracer().start_as_current_span(SPAN_ENQUEUE_JOBS) as span:
            span.set_attribute("job_count", len(request.jobs))

            async with self._repository() as repo:
                count = await repo.create_jobs(
                    job.model_dump() for job in request.jobs
                )

        self._metrics.record_jobs_enqueued(count)
        return count

    async def dequeue(
        self,
        batch_size: int = DEFAULT_DEQUEUE_BATCH_SIZE,
        max_retries: int = DEFAULT_MAX_RETRIES,
        user_id: str | None = None,
        job_type: str | None = None,
        fair_scheduling: FairScheduling | str = FairScheduling.FIFO,
    ) -> list[JobRecord]:
        """
        Claim jobs for processing.

        Selected jobs are marked in_progress, hidden for the visibility
        timeout and have their retry_count incremented, all in one atomic
        statement. Eligibility is governed by each job's own max_retries;
        the max_retries argument is validated for callers that pass it.

        Example:
            # Random selection prevents one tenant's backlog starving others
            jobs = await queue.dequeue(batch_size=10, fair_scheduling="random")

            # One tenant's jobs of one type
            jobs = await queue.dequeue(user_id="user-123", job_type="process-image")

        Returns:
            The claimed jobs; an empty list when nothing is claimable.

        Raises:
            JobValidationError: If any argument is malformed.
        """
        request = _validate(
            DequeueRequest,
            batch_size=batch_size,
            max_retries=max_retries,
            user_id=user_id,
            type=job_type,
            fair_scheduling=fair_scheduling,
        )

        with get_tracer().start_as_current_span(SPAN_DEQUEUE_JOBS) as span:
            span.set_attribute("batch_size", request.batch_size)
            span.set_attribute("fair_scheduling", request.fair_scheduling.value)

            async with self._repository() as repo:
                jobs = await repo.claim_jobs(
                    batch_size=request.batch_size,
                    user_id=request.user_id,
                    job_type=request.type,
                    fair_scheduling=request.fair_scheduling,
                )
                records = [JobRecord.model_validate(job) for job in jobs]

            span.set_attribute("job_count", len(records))

        if records:
            self._metrics.record_jobs_claimed(request.fair_scheduling.value, len(records))
        return records

    async def ack(self, job_id: UUID | str, delete_on_complete: bool = False) -> None:
        """
        Acknowledge a job as successfully completed.

        Args:
            job_id: The job to acknowledge.
            delete_on_complete: Delete the row instead of keeping it as done.

        Raises:
            JobValidationError: If job_id is not a UUID.
            JobNotFoundError: If no such job exists.
        """
        request = _validate(AckRequest, job_id=job_id, delete_on_complete=delete_on_complete)

        async with self._repository() as repo:
            if request.delete_on_complete:
                count = await repo.delete_jobs([request.job_id])
            else:
                count = await repo.mark_done([request.job_id])
            if count == 0:
                raise JobNotFoundError(request.job_id)

        logger.info(
            "Job acknowledged",
            extra={"job_id": str(request.job_id), "deleted": request.delete_on_complete},
        )
        self._metrics.record_jobs_acked(1, request.delete_on_complete)

    async def ack_batch(
        self,
        job_ids: Sequence[UUID | str],
        delete_on_complete: bool = False,
    ) -> int:
        """
        Acknowledge several jobs at once.

        Unknown ids are skipped.

        Returns:
            Number of jobs acknowledged.

        Raises:
            JobValidationError: If the list is empty or holds a malformed id.
        """
        request = _validate(
            AckBatchRequest,
            job_ids=list(job_ids),
            delete_on_complete=delete_on_complete,
        )

        async with self._repository() as repo:
            if request.delete_on_complete:
                count = await repo.delete_jobs(request.job_ids)
            else:
                count = await repo.mark_done(request.job_ids)

        if count < len(request.job_ids):
            logger.warning(
                "Some acknowledged jobs were not found",
                extra={"requested": len(request.job_ids), "acknowledged": count},
            )
        self._metrics.record_jobs_acked(count, request.delete_on_complete)
        return count

    async def nack(self, job_id: UUID | str, error: str | None = None) -> None:
        """
        Mark a job as failed (negative acknowledgment).

        The failure is terminal and immediate, unlike letting the
        visibility timeout lapse, which makes the job claimable again.

        Raises:
            JobValidationError: If job_id is not a UUID.
            JobNotFoundError: If no such job exists.
        """
        request = _validate(NackRequest, job_id=job_id, error=error)

        async with self._repository() as repo:
            count = await repo.mark_failed(request.job_id, request.error)
            if count == 0:
                raise JobNotFoundError(request.job_id)

        self._metrics.record_job_nacked()

    async def cleanup(
        self,
        older_than_days: int = DEFAULT_CLEANUP_OLDER_THAN_DAYS,
        statuses: Sequence[JobStatus | str] = TERMINAL_STATUSES,
        limit: int = DEFAULT_CLEANUP_LIMIT,
    ) -> int:
        """
        Delete old terminal jobs.

        Meant to be called periodically or opportunistically; at most
        limit rows are removed per call.

        Returns:
            Number of jobs deleted.
        """
        request = _validate(
            CleanupRequest,
            older_than_days=older_than_days,
            statuses=list(statuses),
            limit=limit,
        )

        async with self._repository() as repo:
            count = await repo.delete_terminal_jobs(
                older_than=timedelta(days=request.older_than_days),
                statuses=request.statuses,
                limit=request.limit,
            )

        self._metrics.record_jobs_cleaned(count)
        return count

    async def get_stats(
        self,
        user_id: str,
        group_by_type: bool = False,
    ) -> dict[str, int] | dict[str, dict[str, int]]:
        """
        Count a tenant's jobs per status.

        Example:
            await queue.get_stats("user-123")
            # {"pending": 5, "in_progress": 2, "done": 100, "failed": 3}

            await queue.get_stats("user-123", group_by_type=True)
            # {"send-email": {"pending": 2, ...}, "process-image": {...}}
        """
        request = _validate(StatsRequest, user_id=user_id, group_by_type=group_by_type)

        async with self._repository() as repo:
            if request.group_by_type:
                by_type = await repo.count_by_type_and_status(request.user_id)
            else:
                by_status = await repo.count_by_status(request.user_id)

        if request.group_by_type:
            stats: dict[str, dict[str, int]] = {}
            for job_type, counts in by_type.items():
                stats[job_type] = _empty_counts()
                for status, count in counts.items():
                    stats[job_type][status.value] = count
            return stats

        totals = _empty_counts()
        for status, count in by_status.items():
            totals[status.value] = count
        return totals

    async def get_job(self, job_id: UUID | str) -> JobRecord:
        """
        Fetch one job, e.g. to read the error of a failed job.

        Raises:
            JobValidationError: If job_id is not a UUID.
            JobNotFoundError: If no such job exists.
        """
        request = _validate(JobLookupRequest, job_id=job_id)

        async with self._repository() as repo:
            job = await repo.get_job(request.job_id)
            if job is None:
                raise JobNotFoundError(request.job_id)
            return JobRecord.model_validate(job)
