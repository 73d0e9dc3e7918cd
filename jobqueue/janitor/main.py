"""
Janitor for deleting old terminal jobs.

Runs one cleanup pass and exits; schedule it externally (cron, a k8s
CronJob, ...). Each cleanup call deletes at most cleanup_limit rows; the
pass keeps calling until one deletes fewer rows than the limit.
"""

import asyncio
import logging

from jobqueue.config import get_settings
from jobqueue.constants import TERMINAL_STATUSES
from jobqueue.db import close_db, init_db
from jobqueue.observability.logging import setup_logging
from jobqueue.queue import JobQueueService

logger = logging.getLogger(__name__)


class Janitor:
    """
    Deletes done and failed jobs older than the configured age.
    """

    def __init__(
        self,
        queue: JobQueueService,
        older_than_days: int | None = None,
        limit: int | None = None,
    ):
        """
        Initialize the janitor.

        Args:
            queue: The queue to clean.
            older_than_days: Minimum age of deleted jobs.
            limit: Maximum rows deleted per cleanup call.
        """
        settings = get_settings()
        self._queue = queue
        self.older_than_days = older_than_days or settings.cleanup_older_than_days
        self.limit = limit or settings.cleanup_limit

    async def run_once(self) -> int:
        """
        Delete expired terminal jobs in bounded batches.

        Returns:
            Total number of jobs deleted.
        """
        total = 0
        while True:
            deleted = await self._queue.cleanup(
                older_than_days=self.older_than_days,
                statuses=TERMINAL_STATUSES,
                limit=self.limit,
            )
            total += deleted
            if deleted < self.limit:
                break

        logger.info(
            f"Cleanup removed {total} jobs",
            extra={"older_than_days": self.older_than_days, "job_count": total},
        )
        return total


async def run_async() -> None:
    """Run one cleanup pass asynchronously."""
    setup_logging("cleanup")
    await init_db()

    try:
        await Janitor(JobQueueService()).run_once()
    finally:
        await close_db()


def run() -> None:
    """Run one cleanup pass."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
