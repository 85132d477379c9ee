from __future__ import annotations

from typing import Any

import allure
import pytest

from transcript_pipeline.errors import TaskExecutionError
from transcript_pipeline.handlers import HandlerRegistry
from transcript_pipeline.pipeline.runtime import PipelineRuntime
from transcript_pipeline.queue.flow import SuccessorResolver
from transcript_pipeline.queue.models import TaskStatus, TaskType
from transcript_pipeline.queue.repository import TaskRepository
from transcript_pipeline.queue.worker import LEASE_LOST, NO_PENDING_TASKS, TaskDispatcher

pytestmark = [
    allure.epic("Task Queue"),
    allure.feature("Dispatcher"),
]


class LeaseStealingSaveHandler:
    """Simulates the reaper reclaiming the lease while the handler is still running."""

    task_type = TaskType.SAVE_FILE

    def __init__(self, repository: TaskRepository) -> None:
        self.repository = repository

    def execute(self, input_data: dict[str, Any]) -> dict[str, Any]:
        (task,) = self.repository.list_tasks(status=TaskStatus.LOCKED)
        assert self.repository.reset_for_retry(task)
        return {"file_path": input_data["file_path"]}


def _submit(runtime: PipelineRuntime) -> str:
    accepted = runtime.service.submit_upload(filename="talk.wav", data=b"RIFF-audio")
    return accepted["jobId"]


def test_run_once_reports_empty_queue(runtime: PipelineRuntime) -> None:
    result = runtime.dispatcher.run_once()

    assert not result.processed
    assert result.to_dict() == {"message": NO_PENDING_TASKS}


def test_run_once_completes_task_and_enqueues_successor(runtime: PipelineRuntime) -> None:
    job_id = _submit(runtime)

    result = runtime.dispatcher.run_once()

    assert result.processed
    assert result.task_type == TaskType.SAVE_FILE
    payload = result.to_dict()
    assert payload["success"] is True
    assert payload["task_id"] == result.task_id
    assert payload["result"]["file_path"].endswith("-talk.wav/original")

    tasks = runtime.repository.list_job_tasks(job_id)
    assert [(task.task_type, task.status) for task in tasks] == [
        (TaskType.SAVE_FILE, TaskStatus.COMPLETED),
        (TaskType.CONVERT_AUDIO, TaskStatus.PENDING),
    ]
    assert tasks[1].input_data["file_path"] == payload["result"]["file_path"]


def test_handler_failure_leaves_task_locked_with_error(runtime: PipelineRuntime) -> None:
    job_id = _submit(runtime)
    runtime.blobs.delete_prefix("jobs")

    with pytest.raises(TaskExecutionError, match="Blob not found") as raised:
        runtime.dispatcher.run_once()

    task = runtime.repository.get_task(raised.value.task_id)
    assert task is not None
    assert task.status == TaskStatus.LOCKED
    assert task.error is not None and task.error.startswith("Blob not found")
    assert task.locked_by is not None and task.locked_by.startswith("dispatcher:")
    details = runtime.repository.get_task_details(task.task_id)
    assert details is not None
    assert [event.event_type for event in details.events][-1] == "handler_failed"

    job = runtime.repository.get_job(job_id)
    assert job is not None and job.status.value == "processing"
    # The failed task is still leased, so nothing else is claimable.
    assert not runtime.dispatcher.run_once().processed


def test_lost_lease_discards_output(runtime: PipelineRuntime) -> None:
    job_id = _submit(runtime)
    handlers = HandlerRegistry(
        [LeaseStealingSaveHandler(runtime.repository)]
        + [
            runtime.dispatcher.handlers.get(task_type)
            for task_type in TaskType
            if task_type != TaskType.SAVE_FILE
        ],
    )
    dispatcher = TaskDispatcher(
        repository=runtime.repository,
        handlers=handlers,
        resolver=SuccessorResolver(),
        worker_id="w-test",
        lease_seconds=60,
    )

    result = dispatcher.run_once()

    assert result.lease_lost
    assert result.to_dict()["success"] is False
    assert result.to_dict()["error"] == LEASE_LOST
    tasks = runtime.repository.list_job_tasks(job_id)
    assert [(task.task_type, task.status, task.retry_count) for task in tasks] == [
        (TaskType.SAVE_FILE, TaskStatus.PENDING, 1),
    ]


def test_run_until_idle_respects_max_tasks(runtime: PipelineRuntime) -> None:
    _submit(runtime)

    summary = runtime.dispatcher.run_until_idle(max_tasks=2)

    assert summary.processed == 2
    assert summary.succeeded == 2
    assert summary.failed == 0
    assert summary.idle_polls == 0


def test_run_until_idle_counts_failures_and_stops_when_idle(runtime: PipelineRuntime) -> None:
    _submit(runtime)
    runtime.blobs.delete_prefix("jobs")

    summary = runtime.dispatcher.run_until_idle()

    assert summary.processed == 1
    assert summary.failed == 1
    assert summary.idle_polls == 1
    assert len(summary.failed_task_ids) == 1
