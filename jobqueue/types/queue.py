"""
Input schemas for queue operations.

Every JobQueueService operation validates its arguments against one of
these models before touching the store.
"""

from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, JsonValue, field_validator

from jobqueue.constants import (
    DEFAULT_CLEANUP_LIMIT,
    DEFAULT_CLEANUP_OLDER_THAN_DAYS,
    DEFAULT_DEQUEUE_BATCH_SIZE,
    DEFAULT_MAX_RETRIES,
    MAX_JOB_TYPE_LENGTH,
    TERMINAL_STATUSES,
    FairScheduling,
    JobStatus,
)


class _QueueRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")


class EnqueueRequest(_QueueRequest):
    """A single job submission."""

    user_id: str = Field(..., min_length=1, max_length=255, description="Owning tenant")
    type: str = Field(..., min_length=1, max_length=MAX_JOB_TYPE_LENGTH, description="Handler selector")
    payload: JsonValue = Field(default=None, description="Opaque JSON handler input")
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0, description="Claim ceiling")


class EnqueueBatchRequest(_QueueRequest):
    """Many job submissions inserted together."""

    jobs: list[EnqueueRequest] = Field(..., min_length=1)


class DequeueRequest(_QueueRequest):
    """Parameters of a claim."""

    batch_size: int = Field(default=DEFAULT_DEQUEUE_BATCH_SIZE, ge=1)
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0)
    user_id: str | None = Field(default=None, min_length=1)
    type: str | None = Field(default=None, min_length=1, max_length=MAX_JOB_TYPE_LENGTH)
    fair_scheduling: FairScheduling = FairScheduling.FIFO


class AckRequest(_QueueRequest):
    job_id: UUID
    delete_on_complete: bool = False


class AckBatchRequest(_QueueRequest):
    job_ids: list[UUID] = Field(..., min_length=1)
    delete_on_complete: bool = False


class NackRequest(_QueueRequest):
    job_id: UUID
    error: str | None = None


class JobLookupRequest(_QueueRequest):
    job_id: UUID


class CleanupRequest(_QueueRequest):
    """Which terminal jobs to delete and how many at most."""

    older_than_days: int = Field(default=DEFAULT_CLEANUP_OLDER_THAN_DAYS, ge=1)
    statuses: list[JobStatus] = Field(default_factory=lambda: list(TERMINAL_STATUSES), min_length=1)
    limit: int = Field(default=DEFAULT_CLEANUP_LIMIT, ge=1)

    @field_validator("statuses")
    @classmethod
    def only_terminal(cls, statuses: list[JobStatus]) -> list[JobStatus]:
        invalid = [status.value for status in statuses if status not in TERMINAL_STATUSES]
        if invalid:
            raise ValueError(f"Only terminal statuses can be cleaned up, got: {invalid}")
        return statuses


class StatsRequest(_QueueRequest):
    user_id: str = Field(..., min_length=1, max_length=255)
    group_by_type: bool = False
