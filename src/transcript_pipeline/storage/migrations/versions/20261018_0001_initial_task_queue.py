"""Create transcription jobs and the lease-based task queue."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "transcription_jobs",
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("original_filename", sa.String(), nullable=False),
        sa.Column("storage_path", sa.String(), nullable=False),
        sa.Column("preferred_language", sa.String(), nullable=True),
        sa.Column("proofreading_context", sa.Text(), nullable=True),
        sa.Column("segments_count", sa.Integer(), nullable=True),
        sa.Column("final_result", sa.Text(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("job_id"),
    )
    op.create_index(
        "ix_transcription_jobs_status",
        "transcription_jobs",
        ["status"],
        unique=False,
    )

    op.create_table(
        "task_queue",
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("task_type", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("input_data_json", sa.Text(), nullable=False),
        sa.Column("output_data_json", sa.Text(), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("locked_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("locked_by", sa.String(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("max_retries", sa.Integer(), nullable=False, server_default=sa.text("3")),
        sa.Column("parent_task_id", sa.String(), nullable=True),
        sa.Column("sequence_order", sa.Integer(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["job_id"],
            ["transcription_jobs.job_id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("task_id"),
    )
    op.create_index("ix_task_queue_job_id", "task_queue", ["job_id"], unique=False)
    op.create_index("ix_task_queue_task_type", "task_queue", ["task_type"], unique=False)
    op.create_index("ix_task_queue_status", "task_queue", ["status"], unique=False)
    op.create_index(
        "idx_task_queue_claim",
        "task_queue",
        ["status", "priority", "created_at"],
        unique=False,
    )
    op.create_index(
        "idx_task_queue_siblings",
        "task_queue",
        ["job_id", "task_type", "parent_task_id"],
        unique=False,
    )
    # At most one merge task per fan-out parent.
    op.execute(
        sa.text(
            """
            CREATE UNIQUE INDEX IF NOT EXISTS uq_task_queue_merge_parent
            ON task_queue (task_type, parent_task_id)
            WHERE task_type IN ('MERGE_TRANSCRIPTIONS', 'MERGE_PROOFREADS')
            """,
        ),
    )


def downgrade() -> None:
    op.execute(sa.text("DROP INDEX IF EXISTS uq_task_queue_merge_parent"))
    op.drop_index("idx_task_queue_siblings", table_name="task_queue")
    op.drop_index("idx_task_queue_claim", table_name="task_queue")
    op.drop_index("ix_task_queue_status", table_name="task_queue")
    op.drop_index("ix_task_queue_task_type", table_name="task_queue")
    op.drop_index("ix_task_queue_job_id", table_name="task_queue")
    op.drop_table("task_queue")
    op.drop_index("ix_transcription_jobs_status", table_name="transcription_jobs")
    op.drop_table("transcription_jobs")
