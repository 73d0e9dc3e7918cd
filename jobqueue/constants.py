"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobStatus(StrEnum):
    """
    Job lifecycle states.

    State transitions:
    - PENDING -> IN_PROGRESS (claimed by dequeue)
    - IN_PROGRESS -> IN_PROGRESS (visibility timeout elapsed, claimed again)
    - PENDING | IN_PROGRESS -> DONE (ack)
    - PENDING | IN_PROGRESS -> FAILED (nack)

    DONE and FAILED are terminal.
    """

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    FAILED = "failed"


class FairScheduling(StrEnum):
    """Ordering policy applied when selecting jobs to claim."""

    FIFO = "fifo"
    RANDOM = "random"


class WorkerState(StrEnum):
    """
    Worker loop states.

    IDLE -> RUNNING -> STOPPED (queue drained)
    IDLE -> RUNNING -> DRAINING -> STOPPED (stop requested)
    """

    IDLE = "idle"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


TERMINAL_STATUSES: tuple[JobStatus, ...] = (JobStatus.DONE, JobStatus.FAILED)

# Default values
DEFAULT_MAX_RETRIES = 3
DEFAULT_DEQUEUE_BATCH_SIZE = 10
DEFAULT_CLEANUP_OLDER_THAN_DAYS = 7
DEFAULT_CLEANUP_LIMIT = 1000
MAX_JOB_TYPE_LENGTH = 255

# Metrics names
METRIC_JOBS_ENQUEUED = "jobs_enqueued_total"
METRIC_JOBS_CLAIMED = "jobs_claimed_total"
METRIC_JOBS_ACKED = "jobs_acked_total"
METRIC_JOBS_NACKED = "jobs_nacked_total"
METRIC_JOBS_CLEANED = "jobs_cleaned_up_total"
METRIC_HANDLER_DURATION = "job_handler_duration_seconds"
METRIC_ACTIVE_WORKERS = "job_active_workers"

# Trace span names
SPAN_ENQUEUE_JOBS = "enqueue_jobs"
SPAN_DEQUEUE_JOBS = "dequeue_jobs"
SPAN_DISPATCH_JOB = "dispatch_job"
