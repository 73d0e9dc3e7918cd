"""
Type definitions for the job queue.
Contains input/output type definitions for queue operations.
"""

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

__all__ = [
    # Job types
    "JobRecord",
    # Queue operation inputs
    "EnqueueRequest",
    "EnqueueBatchRequest",
    "DequeueRequest",
    "AckRequest",
    "AckBatchRequest",
    "NackRequest",
    "JobLookupRequest",
    "CleanupRequest",
    "StatsRequest",
]
