"""SQLModel ORM tables for jobs, the task queue and its audit trail."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text, text
from sqlmodel import Field, SQLModel

MERGE_TASK_TYPES_SQL = "task_type IN ('MERGE_TRANSCRIPTIONS', 'MERGE_PROOFREADS')"


class TranscriptionJob(SQLModel, table=True):
    __tablename__ = "transcription_jobs"  # type: ignore[bad-override]

    job_id: str = Field(primary_key=True)
    status: str = Field(index=True)
    original_filename: str
    storage_path: str
    preferred_language: str | None = None
    proofreading_context: str | None = Field(default=None, sa_column=Column(Text))
    segments_count: int | None = None
    final_result: str | None = Field(default=None, sa_column=Column(Text))
    error: str | None = Field(default=None, sa_column=Column(Text))
    metadata_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class QueueTask(SQLModel, table=True):
    __tablename__ = "task_queue"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_task_queue_claim", "status", "priority", "created_at"),
        Index("idx_task_queue_siblings", "job_id", "task_type", "parent_task_id"),
        Index(
            "uq_task_queue_merge_parent",
            "task_type",
            "parent_task_id",
            unique=True,
            sqlite_where=text(MERGE_TASK_TYPES_SQL),
        ),
    )

    task_id: str = Field(primary_key=True)
    job_id: str = Field(
        sa_column=Column(
            ForeignKey("transcription_jobs.job_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    task_type: str = Field(index=True)
    status: str = Field(index=True)
    input_data_json: str = Field(sa_column=Column(Text, nullable=False))
    output_data_json: str | None = Field(default=None, sa_column=Column(Text))
    priority: int = Field(default=0)
    locked_until: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    locked_by: str | None = None
    retry_count: int = Field(default=0)
    max_retries: int = Field(default=3)
    parent_task_id: str | None = None
    sequence_order: int | None = None
    error: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TaskEvent(SQLModel, table=True):
    __tablename__ = "task_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_task_events_task_time", "task_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("task_queue.task_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    job_id: str = Field(index=True)
    event_type: str = Field(index=True)
    status_from: str | None = None
    status_to: str | None = None
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
