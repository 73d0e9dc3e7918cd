"""
Exception hierarchy for the job queue.
"""

from typing import Any


class JobQueueError(Exception):
    """Base exception for the job queue."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class JobValidationError(JobQueueError):
    """Raised when queue operation arguments fail validation."""


class JobNotFoundError(JobQueueError):
    """Raised when a job id does not match any stored job."""

    def __init__(self, job_id: Any):
        super().__init__(f"Job not found: {job_id}", {"job_id": str(job_id)})
        self.job_id = job_id


class HandlerNotFoundError(JobQueueError):
    """Raised when a dequeued job has no registered handler."""

    def __init__(self, job_type: str):
        super().__init__(
            f"No handler registered for job type: {job_type}",
            {"job_type": job_type},
        )
        self.job_type = job_type


class JobStoreError(JobQueueError):
    """Raised when the backing store fails during a queue operation."""
