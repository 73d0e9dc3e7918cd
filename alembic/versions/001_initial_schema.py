"""Initial schema with job table

Revision ID: 001
Revises: 
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create enum using raw SQL with IF NOT EXISTS
    op.execute("""
        DO $$ BEGIN
            CREATE TYPE job_status AS ENUM ('pending', 'in_progress', 'done', 'failed');
        EXCEPTION
            WHEN duplicate_object THEN null;
        END $$;
    """)

    op.create_table(
        "job",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("type", sa.String(255), nullable=False),
        sa.Column("payload", postgresql.JSONB, nullable=True),
        sa.Column(
            "status",
            postgresql.ENUM("pending", "in_progress", "done", "failed", name="job_status", create_type=False),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("retry_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_retries", sa.Integer, nullable=False, server_default="3"),
        sa.Column(
            "visible_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("retry_count >= 0", name="ck_job_retry_count_non_negative"),
        sa.CheckConstraint("max_retries >= 0", name="ck_job_max_retries_non_negative"),
    )

    op.create_index("ix_job_user_id", "job", ["user_id"])
    op.create_index("ix_job_type", "job", ["type"])
    op.create_index("ix_job_status_updated_at", "job", ["status", "updated_at"])

    # Partial index for queue polling
    op.execute("""
        CREATE INDEX ix_job_poll
        ON job (status, visible_at)
        WHERE status IN ('pending', 'in_progress')
    """)


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS ix_job_poll")
    op.drop_index("ix_job_status_updated_at")
    op.drop_index("ix_job_type")
    op.drop_index("ix_job_user_id")

    op.drop_table("job")

    op.execute("DROP TYPE IF EXISTS job_status")
