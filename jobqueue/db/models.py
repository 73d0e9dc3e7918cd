"""
SQLAlchemy database models.
Defines the job table.
"""

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
    literal_column,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql.functions import FunctionElement

from jobqueue.constants import MAX_JOB_TYPE_LENGTH, JobStatus


class db_now(FunctionElement):
    """
    The database server's current time, optionally shifted by whole seconds.

    Every claim, visibility and cleanup comparison uses this clock, so
    worker hosts with skewed clocks still agree on when a job is visible.

    Example:
        update(Job).values(visible_at=db_now(60))
    """

    type = DateTime(timezone=True)
    name = "db_now"
    inherit_cache = True

    def __init__(self, offset_seconds: int = 0):
        super().__init__(literal_column(str(int(offset_seconds))))


def _offset(element: db_now, compiler, **kw) -> str:
    return compiler.process(element.clauses, **kw)


@compiles(db_now)
def _compile_db_now(element: db_now, compiler, **kw) -> str:
    return f"(now() + ({_offset(element, compiler, **kw)}) * interval '1 second')"


@compiles(db_now, "sqlite")
def _compile_db_now_sqlite(element: db_now, compiler, **kw) -> str:
    # SQLite keeps millisecond precision and stores UTC text timestamps
    return f"strftime('%Y-%m-%d %H:%M:%f', 'now', '{_offset(element, compiler, **kw)} seconds')"


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Job(Base):
    """
    Job model representing a unit of work in the queue.

    This is the authoritative source of truth for job state.

    Key rules:
    - a row is claimable iff retry_count <= max_retries and it is pending,
      or in_progress with visible_at in the past
    - only a claim increments retry_count
    - user_id and type never change after insert
    """

    __tablename__ = "job"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
        nullable=False,
    )

    # Tenant and handler selector
    user_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )
    type: Mapped[str] = mapped_column(
        String(MAX_JOB_TYPE_LENGTH),
        nullable=False,
        index=True,
    )

    payload: Mapped[Any] = mapped_column(
        JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql"),
        nullable=True,
    )

    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, name="job_status", create_constraint=True, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=JobStatus.PENDING,
    )

    # Retry tracking
    retry_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    max_retries: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=3,
    )

    # Visibility timeout
    visible_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=db_now(),
        server_default=func.now(),
    )

    error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    # Timestamps come from the database clock, never from a worker host
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=db_now(),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=db_now(),
        onupdate=db_now(),
        server_default=func.now(),
    )

    __table_args__ = (
        # Index for efficient queue polling
        Index(
            "ix_job_poll",
            "status",
            "visible_at",
            postgresql_where=(
                Column("status").in_([JobStatus.PENDING.value, JobStatus.IN_PROGRESS.value])
            ),
        ),
        # Index for cleanup of terminal rows
        Index("ix_job_status_updated_at", "status", "updated_at"),
        CheckConstraint("retry_count >= 0", name="ck_job_retry_count_non_negative"),
        CheckConstraint("max_retries >= 0", name="ck_job_max_retries_non_negative"),
    )

    def __repr__(self) -> str:
        return (
            f"Job(id={self.id}, user={self.user_id}, type={self.type}, "
            f"status={self.status}, retries={self.retry_count}/{self.max_retries})"
        )
