"""Domain models for the job/task queue."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    """Aggregate job lifecycle states, derived from task states."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskStatus(str, Enum):
    """Durable task lifecycle states."""

    PENDING = "pending"
    LOCKED = "locked"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_TASK_STATUSES


TERMINAL_TASK_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED})


class TaskType(str, Enum):
    """Pipeline stages, in dependency order."""

    SAVE_FILE = "SAVE_FILE"
    CONVERT_AUDIO = "CONVERT_AUDIO"
    SPLIT_AUDIO = "SPLIT_AUDIO"
    TRANSCRIBE = "TRANSCRIBE"
    MERGE_TRANSCRIPTIONS = "MERGE_TRANSCRIPTIONS"
    SPLIT_TEXT = "SPLIT_TEXT"
    PROOFREAD = "PROOFREAD"
    MERGE_PROOFREADS = "MERGE_PROOFREADS"
    CLEANUP = "CLEANUP"


MERGE_TASK_TYPES = frozenset({TaskType.MERGE_TRANSCRIPTIONS, TaskType.MERGE_PROOFREADS})

MAX_RETRIES_EXCEEDED = "Max retries exceeded"
JOB_FAILED_ERROR = "One or more tasks failed"


@dataclass(slots=True)
class TaskCreate:
    """Input payload for enqueuing one task."""

    job_id: str
    task_type: TaskType
    input_data: dict[str, Any] = field(default_factory=dict)
    task_id: str | None = None
    priority: int = 0
    max_retries: int = 3
    parent_task_id: str | None = None
    sequence_order: int | None = None


@dataclass(slots=True)
class JobCreate:
    """Input payload for creating a job record."""

    original_filename: str
    storage_path: str
    job_id: str | None = None
    status: JobStatus = JobStatus.PROCESSING
    preferred_language: str | None = None
    proofreading_context: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class JobView:
    """Readable job record."""

    job_id: str
    status: JobStatus
    original_filename: str
    storage_path: str
    preferred_language: str | None
    proofreading_context: str | None
    segments_count: int | None
    final_result: str | None
    error: str | None
    metadata: dict[str, Any]
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class TaskView:
    """Readable task view for dispatcher, reaper and inspection."""

    task_id: str
    job_id: str
    task_type: TaskType
    status: TaskStatus
    input_data: dict[str, Any]
    output_data: dict[str, Any] | None
    priority: int
    locked_until: datetime | None
    locked_by: str | None
    retry_count: int
    max_retries: int
    parent_task_id: str | None
    sequence_order: int | None
    error: str | None
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    updated_at: datetime


@dataclass(slots=True)
class JobUpdate:
    """Descriptive job fields written alongside a task completion."""

    segments_count: int | None = None
    final_result: str | None = None


@dataclass(slots=True)
class TaskEventView:
    """Task event entry for audit trail."""

    event_id: int
    task_id: str
    job_id: str
    event_type: str
    status_from: TaskStatus | None
    status_to: TaskStatus | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TaskDetails:
    """Task details with event stream."""

    task: TaskView
    events: list[TaskEventView]


def derive_job_status(statuses: list[TaskStatus]) -> JobStatus | None:
    """Return the terminal job status implied by task states, or None while work remains."""

    if not statuses or not all(status.is_terminal for status in statuses):
        return None
    if any(status == TaskStatus.FAILED for status in statuses):
        return JobStatus.FAILED
    return JobStatus.COMPLETED
