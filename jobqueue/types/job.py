"""
Job-related type definitions for internal use.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from jobqueue.constants import JobStatus


class JobRecord(BaseModel):
    """
    Snapshot of a job row.

    Returned by every queue operation and handed to job handlers. Frozen so
    handlers treat it as read-only input.
    """

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: UUID
    user_id: str
    type: str
    payload: Any = None
    status: JobStatus
    retry_count: int
    max_retries: int
    visible_at: datetime
    error: str | None = None
    created_at: datetime
    updated_at: datetime

    @property
    def retries_exhausted(self) -> bool:
        """Check if this claim used up the retry budget."""
        return self.retry_count > self.max_retries
