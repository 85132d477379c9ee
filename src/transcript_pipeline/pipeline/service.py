"""Upload intake and job status reporting."""

from __future__ import annotations

import logging
import re
import time
from typing import Any
from uuid import uuid4

from transcript_pipeline.blobs import BlobStorage
from transcript_pipeline.errors import InvalidRequestError, JobNotFoundError
from transcript_pipeline.queue.models import (
    JobCreate,
    JobStatus,
    TaskCreate,
    TaskStatus,
    TaskType,
    TaskView,
)
from transcript_pipeline.queue.repository import TaskRepository

logger = logging.getLogger(__name__)

PHASE_LABELS: dict[TaskType, str] = {
    TaskType.SAVE_FILE: "Saving file",
    TaskType.CONVERT_AUDIO: "Converting audio",
    TaskType.SPLIT_AUDIO: "Splitting audio",
    TaskType.TRANSCRIBE: "Transcribing",
    TaskType.MERGE_TRANSCRIPTIONS: "Merging transcriptions",
    TaskType.SPLIT_TEXT: "Preparing for proofreading",
    TaskType.PROOFREAD: "Proofreading",
    TaskType.MERGE_PROOFREADS: "Finalizing",
    TaskType.CLEANUP: "Cleaning up",
}
PHASE_COMPLETED = "completed"
PHASE_FALLBACK = "Processing"

_UNSAFE_FILENAME_CHARS = re.compile(r"[^\w.\- ]+")


def current_phase(tasks: list[TaskView]) -> str:
    """Label of the earliest-created task still pending or locked."""

    outstanding = [task for task in tasks if not task.status.is_terminal]
    if not outstanding:
        return PHASE_COMPLETED
    return PHASE_LABELS.get(outstanding[0].task_type, PHASE_FALLBACK)


def safe_filename(filename: str) -> str:
    """Keep the base name only, with characters that are safe in a blob key."""

    base = filename.replace("\\", "/").rsplit("/", 1)[-1]
    return _UNSAFE_FILENAME_CHARS.sub("_", base).strip(" .")


class PipelineService:
    """Creates jobs from uploads and reports their progress."""

    def __init__(
        self,
        *,
        repository: TaskRepository,
        blobs: BlobStorage,
        max_retries: int = 3,
    ) -> None:
        self.repository = repository
        self.blobs = blobs
        self.max_retries = max_retries

    def submit_upload(  # noqa: PLR0913
        self,
        *,
        filename: str | None,
        data: bytes,
        language: str | None = None,
        context: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, str]:
        """Store the upload and create its job with the first SAVE_FILE task."""

        name = safe_filename(filename or "")
        if not name:
            raise InvalidRequestError("No file provided")
        if not data:
            raise InvalidRequestError("Uploaded file is empty")

        # The job id keeps prefixes unique; CLEANUP deletes everything under it.
        job_id = str(uuid4())
        prefix = f"jobs/{int(time.time() * 1000)}-{job_id}-{name}"
        storage_path = f"{prefix}/original"
        self.blobs.write(storage_path, data)

        job, task = self.repository.create_job(
            JobCreate(
                job_id=job_id,
                original_filename=filename or name,
                storage_path=storage_path,
                status=JobStatus.PROCESSING,
                preferred_language=language or None,
                proofreading_context=context or None,
                metadata={"file_size": len(data), **(metadata or {})},
            ),
            first_task=TaskCreate(
                job_id=job_id,
                task_type=TaskType.SAVE_FILE,
                input_data={"file_path": storage_path, "storage_prefix": prefix},
                max_retries=self.max_retries,
            ),
        )
        logger.info(
            "Accepted upload %s (%d bytes) as job %s, first task %s",
            job.original_filename,
            len(data),
            job.job_id,
            task.task_id,
        )
        return {"jobId": job.job_id, "status": "accepted"}

    def job_status(self, job_id: str | None) -> dict[str, Any]:
        if not job_id:
            raise InvalidRequestError("No job ID provided")
        job = self.repository.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        tasks = self.repository.list_job_tasks(job_id)
        return {
            "jobId": job.job_id,
            "status": job.status.value,
            "progress": {
                "totalSegments": job.segments_count or 0,
                "completedTranscriptions": _completed(tasks, TaskType.TRANSCRIBE),
                "completedProofreads": _completed(tasks, TaskType.PROOFREAD),
                "currentPhase": current_phase(tasks),
            },
            "result": job.final_result,
            "error": job.error,
        }


def _completed(tasks: list[TaskView], task_type: TaskType) -> int:
    return sum(
        1 for task in tasks if task.task_type == task_type and task.status == TaskStatus.COMPLETED
    )
