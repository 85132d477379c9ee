"""Terminal stage: drop every blob stored for the job."""

from __future__ import annotations

from typing import Any

from transcript_pipeline.blobs import BlobStorage
from transcript_pipeline.queue.models import TaskType


class CleanupHandler:
    """Idempotent: a second run finds nothing and reports zero deletions."""

    task_type = TaskType.CLEANUP

    def __init__(self, *, blobs: BlobStorage) -> None:
        self.blobs = blobs

    def execute(self, input_data: dict[str, Any]) -> dict[str, Any]:
        return {"deleted_objects": self.blobs.delete_prefix(input_data["storage_prefix"])}
