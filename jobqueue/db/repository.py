"""
Job repository for database operations.
Implements the core data access patterns for the job queue.
"""

import logging
from collections.abc import Iterable, Mapping, Sequence
from datetime import timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import and_, delete, func, insert, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.config import get_settings
from jobqueue.constants import FairScheduling, JobStatus
from jobqueue.db.models import Job, db_now

logger = logging.getLogger(__name__)


class JobRepository:
    """
    Repository for job database operations.

    Implements atomic operations for:
    - Job submission, single and batched
    - Claiming with FOR UPDATE SKIP LOCKED
    - Acknowledgement and failure transitions
    - Cleanup of terminal jobs

    The repository never commits; the caller owns the transaction.
    """

    def __init__(self, session: AsyncSession, visibility_timeout_seconds: int | None = None):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
            visibility_timeout_seconds: How long a claimed job stays hidden.
                Defaults to the configured visibility timeout.
        """
        self._session = session
        if visibility_timeout_seconds is None:
            visibility_timeout_seconds = get_settings().visibility_timeout_seconds
        self._visibility_timeout_seconds = visibility_timeout_seconds

    async def create_job(
        self,
        user_id: str,
        job_type: str,
        payload: Any = None,
        max_retries: int = 3,
    ) -> Job:
        """
        Insert one pending job.

        Args:
            user_id: The owning tenant.
            job_type: Selects the handler.
            payload: Opaque handler input.
            max_retries: Claim ceiling for the job.

        Returns:
            The created Job.
        """
        stmt = (
            insert(Job)
            .values(
                user_id=user_id,
                type=job_type,
                payload=payload,
                max_retries=max_retries,
                status=JobStatus.PENDING,
                retry_count=0,
                visible_at=db_now(),
                created_at=db_now(),
                updated_at=db_now(),
            )
            .returning(Job)
        )
        job = (await self._session.execute(stmt)).scalar_one()

        logger.info(
            "Created new job",
            extra={"job_id": str(job.id), "user_id": user_id, "job_type": job_type},
        )
        return job

    async def create_jobs(self, jobs: Iterable[Mapping[str, Any]]) -> int:
        """
        Insert many pending jobs in a single statement.

        Args:
            jobs: Mappings with user_id, type, payload and max_retries keys.

        Returns:
            Number of rows inserted.
        """
        # visible_at, created_at and updated_at come from the column defaults
        rows = [
            {
                "user_id": job["user_id"],
                "type": job["type"],
                "payload": job.get("payload"),
                "max_retries": job["max_retries"],
                "status": JobStatus.PENDING,
                "retry_count": 0,
            }
            for job in jobs
        ]
        if not rows:
            return 0

        await self._session.execute(insert(Job), rows)

        logger.info("Created job batch", extra={"job_count": len(rows)})
        return len(rows)

    async def get_job(self, job_id: UUID) -> Job | None:
        """
        Get a job by ID.

        Args:
            job_id: The job UUID.

        Returns:
            The Job or None if not found.
        """
        stmt = select(Job).where(Job.id == job_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def claim_jobs(
        self,
        batch_size: int,
        user_id: str | None = None,
        job_type: str | None = None,
        fair_scheduling: FairScheduling = FairScheduling.FIFO,
    ) -> Sequence[Job]:
        """
        Claim up to batch_size claimable jobs in one atomic statement.

        This is the critical path for job distribution. The selection runs
        FOR UPDATE SKIP LOCKED inside the UPDATE, so concurrent callers never
        claim the same row.

        Args:
            batch_size: Maximum number of jobs to claim.
            user_id: Optional tenant filter.
            job_type: Optional job type filter.
            fair_scheduling: FIFO orders by creation time, RANDOM shuffles.

        Returns:
            The claimed jobs, in creation order for FIFO.
        """
        now = db_now()

        filters = [
            Job.retry_count <= Job.max_retries,
            or_(
                Job.status == JobStatus.PENDING,
                and_(Job.status == JobStatus.IN_PROGRESS, Job.visible_at <= now),
            ),
        ]
        if user_id is not None:
            filters.append(Job.user_id == user_id)
        if job_type is not None:
            filters.append(Job.type == job_type)

        if fair_scheduling == FairScheduling.RANDOM:
            order_by = func.random()
        else:
            order_by = Job.created_at.asc()

        claimable = (
            select(Job.id)
            .where(and_(*filters))
            .order_by(order_by)
            .limit(batch_size)
            .with_for_update(skip_locked=True)
        )

        stmt = (
            update(Job)
            .where(Job.id.in_(claimable))
            .values(
                status=JobStatus.IN_PROGRESS,
                visible_at=db_now(self._visibility_timeout_seconds),
                retry_count=Job.retry_count + 1,
                updated_at=now,
            )
            .returning(Job)
            .execution_options(synchronize_session=False, populate_existing=True)
        )

        result = await self._session.execute(stmt)
        jobs = list(result.scalars().all())

        # RETURNING does not preserve the subquery order
        if fair_scheduling == FairScheduling.FIFO:
            jobs.sort(key=lambda job: job.created_at)

        if jobs:
            logger.info(
                f"Claimed {len(jobs)} jobs",
                extra={
                    "job_count": len(jobs),
                    "user_id": user_id,
                    "job_type": job_type,
                    "fair_scheduling": fair_scheduling.value,
                },
            )

        return jobs

    async def mark_done(self, job_ids: Sequence[UUID]) -> int:
        """
        Mark jobs as done.

        Returns:
            Number of rows updated.
        """
        stmt = (
            update(Job)
            .where(Job.id.in_(job_ids))
            .values(status=JobStatus.DONE, updated_at=db_now())
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount

    async def delete_jobs(self, job_ids: Sequence[UUID]) -> int:
        """
        Delete jobs outright.

        Returns:
            Number of rows deleted.
        """
        stmt = (
            delete(Job)
            .where(Job.id.in_(job_ids))
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount

    async def mark_failed(self, job_id: UUID, error: str | None) -> int:
        """
        Mark a job as failed with its error message.

        Returns:
            Number of rows updated.
        """
        stmt = (
            update(Job)
            .where(Job.id == job_id)
            .values(status=JobStatus.FAILED, error=error, updated_at=db_now())
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        count = result.rowcount

        if count:
            logger.warning(
                "Job marked as failed",
                extra={"job_id": str(job_id), "error": error},
            )

        return count

    async def delete_terminal_jobs(
        self,
        older_than: timedelta,
        statuses: Sequence[JobStatus],
        limit: int,
    ) -> int:
        """
        Delete terminal jobs last updated before the database's now - older_than.

        Oldest rows go first; at most limit rows are removed per call.

        Returns:
            Number of rows deleted.
        """
        cutoff = db_now(-int(older_than.total_seconds()))

        expired = (
            select(Job.id)
            .where(
                and_(
                    Job.status.in_(list(statuses)),
                    Job.updated_at < cutoff,
                )
            )
            .order_by(Job.updated_at.asc())
            .limit(limit)
        )
        stmt = (
            delete(Job)
            .where(Job.id.in_(expired))
            .execution_options(synchronize_session=False)
        )

        result = await self._session.execute(stmt)
        count = result.rowcount

        if count > 0:
            logger.info(f"Deleted {count} terminal jobs", extra={"job_count": count})

        return count

    async def count_by_status(self, user_id: str) -> dict[JobStatus, int]:
        """
        Count a tenant's jobs per status.

        Args:
            user_id: The tenant identifier.

        Returns:
            Dictionary of status -> count, for statuses that have rows.
        """
        stmt = (
            select(Job.status, func.count())
            .where(Job.user_id == user_id)
            .group_by(Job.status)
        )
        result = await self._session.execute(stmt)
        return {JobStatus(status): count for status, count in result.all()}

    async def count_by_type_and_status(
        self,
        user_id: str,
    ) -> dict[str, dict[JobStatus, int]]:
        """
        Count a tenant's jobs per type and status.

        Args:
            user_id: The tenant identifier.

        Returns:
            Dictionary of type -> status -> count.
        """
        stmt = (
            select(Job.type, Job.status, func.count())
            .where(Job.user_id == user_id)
            .group_by(Job.type, Job.status)
        )
        result = await self._session.execute(stmt)

        counts: dict[str, dict[JobStatus, int]] = {}
        for job_type, status, count in result.all():
            counts.setdefault(job_type, {})[JobStatus(status)] = count
        return counts
