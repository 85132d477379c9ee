"""Exceptions shared by the pipeline, its handlers and its entrypoints."""

from __future__ import annotations


class InvalidRequestError(ValueError):
    """Request-shape error reported to the caller, never persisted as a task failure."""


class JobNotFoundError(LookupError):
    """Unknown job id."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class BlobNotFoundError(FileNotFoundError):
    """Blob key does not exist in storage."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Blob not found: {path}")
        self.path = path


class AudioProcessingError(RuntimeError):
    """ffmpeg/ffprobe failure."""


class ProviderError(RuntimeError):
    """External provider error with retryability hint."""

    def __init__(self, message: str, *, transient: bool, status_code: int | None = None) -> None:
        super().__init__(message)
        self.transient = transient
        self.status_code = status_code


class TaskExecutionError(RuntimeError):
    """Handler failure for a claimed task; the task stays locked until its lease expires."""

    def __init__(self, task_id: str, message: str) -> None:
        super().__init__(message)
        self.task_id = task_id
