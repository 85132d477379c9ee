from __future__ import annotations

import re

import allure
import pytest

from transcript_pipeline.errors import InvalidRequestError, JobNotFoundError
from transcript_pipeline.pipeline.runtime import PipelineRuntime
from transcript_pipeline.pipeline.service import (
    PHASE_COMPLETED,
    current_phase,
    safe_filename,
)
from transcript_pipeline.queue.models import JobStatus, TaskCreate, TaskStatus, TaskType

pytestmark = [
    allure.epic("Pipeline"),
    allure.feature("Upload & Status"),
]


def test_submit_upload_stores_blob_and_creates_job(runtime: PipelineRuntime) -> None:
    accepted = runtime.service.submit_upload(
        filename="lecture 01.mp3",
        data=b"ID3-audio",
        language="he",
        context="physics",
        metadata={"mime_type": "audio/mpeg"},
    )

    assert accepted["status"] == "accepted"
    job = runtime.repository.get_job(accepted["jobId"])
    assert job is not None
    assert job.status == JobStatus.PROCESSING
    assert job.original_filename == "lecture 01.mp3"
    assert re.fullmatch(
        rf"jobs/\d+-{job.job_id}-lecture 01\.mp3/original",
        job.storage_path,
    )
    assert job.preferred_language == "he"
    assert job.proofreading_context == "physics"
    assert job.metadata == {"file_size": 9, "mime_type": "audio/mpeg"}
    assert runtime.blobs.read(job.storage_path) == b"ID3-audio"

    (task,) = runtime.repository.list_job_tasks(job.job_id)
    assert task.task_type == TaskType.SAVE_FILE
    assert task.status == TaskStatus.PENDING
    assert task.max_retries == runtime.settings.queue.max_retries
    assert task.input_data == {
        "file_path": job.storage_path,
        "storage_prefix": job.storage_path.removesuffix("/original"),
    }


@pytest.mark.parametrize(
    ("filename", "data", "message"),
    [(None, b"x", "No file provided"), ("", b"x", "No file provided"), ("a.wav", b"", "empty")],
)
def test_submit_upload_rejects_missing_file(
    runtime: PipelineRuntime,
    filename: str | None,
    data: bytes,
    message: str,
) -> None:
    with pytest.raises(InvalidRequestError, match=message):
        runtime.service.submit_upload(filename=filename, data=data)

    assert runtime.repository.list_tasks() == []


def test_same_name_uploads_in_one_millisecond_get_separate_prefixes(
    runtime: PipelineRuntime,
    monkeypatch,
) -> None:
    monkeypatch.setattr("transcript_pipeline.pipeline.service.time.time", lambda: 1_700_000_000.0)

    first_id = runtime.service.submit_upload(filename="rec.m4a", data=b"first")["jobId"]
    second_id = runtime.service.submit_upload(filename="rec.m4a", data=b"second")["jobId"]

    first = runtime.repository.get_job(first_id)
    second = runtime.repository.get_job(second_id)
    assert first is not None and second is not None
    assert first.storage_path != second.storage_path
    assert runtime.blobs.read(first.storage_path) == b"first"
    assert runtime.blobs.read(second.storage_path) == b"second"

    runtime.blobs.delete_prefix(first.storage_path.removesuffix("/original"))

    assert runtime.blobs.read(second.storage_path) == b"second"


def test_job_status_requires_known_job(runtime: PipelineRuntime) -> None:
    with pytest.raises(InvalidRequestError, match="No job ID provided"):
        runtime.service.job_status(None)
    with pytest.raises(JobNotFoundError, match="Job not found: nope"):
        runtime.service.job_status("nope")


def test_job_status_reports_initial_progress(runtime: PipelineRuntime) -> None:
    job_id = runtime.service.submit_upload(filename="a.wav", data=b"x")["jobId"]

    assert runtime.service.job_status(job_id) == {
        "jobId": job_id,
        "status": "processing",
        "progress": {
            "totalSegments": 0,
            "completedTranscriptions": 0,
            "completedProofreads": 0,
            "currentPhase": "Saving file",
        },
        "result": None,
        "error": None,
    }


def test_current_phase_follows_earliest_outstanding_task(runtime: PipelineRuntime) -> None:
    job_id = runtime.service.submit_upload(filename="a.wav", data=b"x")["jobId"]
    runtime.dispatcher.run_once()
    runtime.repository.enqueue_task(TaskCreate(job_id=job_id, task_type=TaskType.CLEANUP))

    tasks = runtime.repository.list_job_tasks(job_id)

    assert current_phase(tasks) == "Converting audio"
    assert current_phase([task for task in tasks if task.status.is_terminal]) == PHASE_COMPLETED


@pytest.mark.parametrize(
    ("filename", "expected"),
    [
        ("talk.wav", "talk.wav"),
        ("C:\\Users\\me\\talk.wav", "talk.wav"),
        ("../../etc/passwd", "passwd"),
        ("שיעור 1.mp3", "שיעור 1.mp3"),
        ("a?b*c.wav", "a_b_c.wav"),
        ("..", ""),
    ],
)
def test_safe_filename(filename: str, expected: str) -> None:
    assert safe_filename(filename) == expected
