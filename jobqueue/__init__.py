"""
Durable Job Queue

A multi-tenant background job queue backed by a relational store, with a
concurrent worker pool, visibility-timeout crash recovery, lock-free claims
(FOR UPDATE SKIP LOCKED), retry accounting and fair scheduling across tenants.
"""

__version__ = "1.0.0"

from jobqueue.constants import FairScheduling, JobStatus, WorkerState  # noqa: E402
from jobqueue.exceptions import (  # noqa: E402
    HandlerNotFoundError,
    JobNotFoundError,
    JobQueueError,
    JobStoreError,
    JobValidationError,
)
from jobqueue.queue import JobQueueService  # noqa: E402
from jobqueue.types import EnqueueRequest, JobRecord  # noqa: E402
from jobqueue.worker import HandlerRegistry, WorkerPool  # noqa: E402

__all__ = [
    "__version__",
    "JobQueueService",
    "WorkerPool",
    "HandlerRegistry",
    "JobRecord",
    "EnqueueRequest",
    "JobStatus",
    "FairScheduling",
    "WorkerState",
    "JobQueueError",
    "JobValidationError",
    "JobNotFoundError",
    "HandlerNotFoundError",
    "JobStoreError",
]
