"""HTTP routes: upload, job status, dispatcher trigger, reaper sweep and task inspection."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, File, Form, Query, Request, UploadFile
from fastapi.responses import JSONResponse

from transcript_pipeline.pipeline.runtime import PipelineRuntime
from transcript_pipeline.queue.models import TaskDetails

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def _runtime(request: Request) -> PipelineRuntime:
    return request.app.state.runtime


@router.post("/transcribe")
def submit_transcription(
    request: Request,
    file: UploadFile | None = File(default=None),
    preferred_language: str | None = Form(default=None, alias="preferredLanguage"),
    proofreading_context: str | None = Form(default=None, alias="proofreadingContext"),
) -> dict[str, str]:
    data = file.file.read() if file is not None else b""
    return _runtime(request).service.submit_upload(
        filename=file.filename if file is not None else None,
        data=data,
        language=preferred_language,
        context=proofreading_context,
        metadata={"mime_type": file.content_type} if file is not None else None,
    )


@router.get("/transcribe")
def transcription_status(
    request: Request,
    job_id: str | None = Query(default=None, alias="jobId"),
) -> dict[str, Any]:
    return _runtime(request).service.job_status(job_id)


@router.post("/tasks/process")
def process_next_task(request: Request) -> dict[str, Any]:
    return _runtime(request).dispatcher.run_once().to_dict()


@router.post("/tasks/reap")
def reap_stuck_tasks(request: Request) -> dict[str, Any]:
    return _runtime(request).reaper.sweep().to_dict()


@router.get("/tasks/{task_id}", response_model=None)
def inspect_task(request: Request, task_id: str) -> dict[str, Any] | JSONResponse:
    details = _runtime(request).repository.get_task_details(task_id)
    if details is None:
        return JSONResponse(status_code=404, content={"error": f"Task not found: {task_id}"})
    return task_details_payload(details)


def task_details_payload(details: TaskDetails) -> dict[str, Any]:
    task = details.task
    return {
        "task_id": task.task_id,
        "job_id": task.job_id,
        "task_type": task.task_type.value,
        "status": task.status.value,
        "priority": task.priority,
        "retry_count": task.retry_count,
        "max_retries": task.max_retries,
        "parent_task_id": task.parent_task_id,
        "sequence_order": task.sequence_order,
        "locked_by": task.locked_by,
        "locked_until": _iso(task.locked_until),
        "error": task.error,
        "input_data": task.input_data,
        "output_data": task.output_data,
        "created_at": _iso(task.created_at),
        "started_at": _iso(task.started_at),
        "completed_at": _iso(task.completed_at),
        "events": [
            {
                "event_type": event.event_type,
                "status_from": event.status_from.value if event.status_from else None,
                "status_to": event.status_to.value if event.status_to else None,
                "created_at": _iso(event.created_at),
                "details": event.details,
            }
            for event in details.events
        ],
    }


def _iso(value: Any) -> str | None:
    return value.isoformat() if value is not None else None
