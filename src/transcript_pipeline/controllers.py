"""Controllers for pipeline CLI commands."""

from __future__ import annotations

import json
from collections.abc import Callable
from contextlib import AbstractContextManager
from dataclasses import dataclass
from pathlib import Path

from transcript_pipeline.config import Settings
from transcript_pipeline.errors import InvalidRequestError, JobNotFoundError, TaskExecutionError
from transcript_pipeline.pipeline.runtime import PipelineRuntime, open_runtime
from transcript_pipeline.queue.models import TaskStatus

RuntimeFactory = Callable[[Settings], AbstractContextManager[PipelineRuntime]]


@dataclass(slots=True)
class SubmitCommand:
    """CLI input for uploading a local audio file."""

    db_path: Path | None
    file_path: Path
    language: str | None
    context: str | None


@dataclass(slots=True)
class DispatchCommand:
    """CLI input for dispatcher invocations."""

    db_path: Path | None
    drain: bool
    max_tasks: int | None


@dataclass(slots=True)
class ReapCommand:
    db_path: Path | None


@dataclass(slots=True)
class JobStatusCommand:
    db_path: Path | None
    job_id: str


@dataclass(slots=True)
class ListTasksCommand:
    """CLI input for task listing."""

    db_path: Path | None
    status: str | None
    job_id: str | None
    limit: int


@dataclass(slots=True)
class InspectTaskCommand:
    """CLI input for task inspection."""

    db_path: Path | None
    task_id: str


@dataclass(slots=True)
class CommandResult:
    """Lines to render plus whether the command should exit non-zero."""

    lines: list[str]
    success: bool = True


class PipelineCliController:
    """Coordinates upload, dispatch, reaper and inspection CLI operations."""

    def __init__(self, runtime_factory: RuntimeFactory | None = None) -> None:
        self.runtime_factory: RuntimeFactory = runtime_factory or open_runtime

    def submit(self, command: SubmitCommand) -> CommandResult:
        settings = Settings.from_env(db_path=command.db_path)
        with self.runtime_factory(settings) as runtime:
            try:
                accepted = runtime.service.submit_upload(
                    filename=command.file_path.name,
                    data=command.file_path.read_bytes(),
                    language=command.language,
                    context=command.context,
                    metadata={"source": "cli"},
                )
            except InvalidRequestError as error:
                return CommandResult(lines=[f"Upload rejected: {error}"], success=False)
        return CommandResult(
            lines=[f"Job accepted: job_id={accepted['jobId']} status={accepted['status']}"],
        )

    def dispatch(self, command: DispatchCommand) -> CommandResult:
        settings = Settings.from_env(db_path=command.db_path)
        with self.runtime_factory(settings) as runtime:
            if command.drain:
                summary = runtime.dispatcher.run_until_idle(max_tasks=command.max_tasks)
                lines = [
                    "Dispatch summary: "
                    f"processed={summary.processed} succeeded={summary.succeeded} "
                    f"failed={summary.failed} lease_lost={summary.lease_lost} "
                    f"idle_polls={summary.idle_polls}",
                ]
                lines.extend(
                    f"  failed task_id={task_id} (left locked for the reaper)"
                    for task_id in summary.failed_task_ids
                )
                return CommandResult(lines=lines, success=summary.failed == 0)

            try:
                result = runtime.dispatcher.run_once()
            except TaskExecutionError as error:
                return CommandResult(
                    lines=[f"Task failed: task_id={error.task_id} error={error}"],
                    success=False,
                )
        if not result.processed:
            return CommandResult(lines=[f"Dispatch: {result.message}"])
        task_type = result.task_type.value if result.task_type else "-"
        if result.lease_lost:
            return CommandResult(
                lines=[f"Lease lost: task_id={result.task_id} type={task_type}"],
                success=False,
            )
        return CommandResult(lines=[f"Task completed: task_id={result.task_id} type={task_type}"])

    def reap(self, command: ReapCommand) -> CommandResult:
        settings = Settings.from_env(db_path=command.db_path)
        with self.runtime_factory(settings) as runtime:
            report = runtime.reaper.sweep()
        lines = [f"Reaper: processed={report.processed}"]
        for entry in report.results:
            extra = " ".join(
                f"{key}={value}"
                for key, value in entry.items()
                if key not in {"task_id", "action"}
            )
            lines.append(f"  task_id={entry['task_id']} action={entry['action']} {extra}".rstrip())
        return CommandResult(lines=lines)

    def status(self, command: JobStatusCommand) -> CommandResult:
        settings = Settings.from_env(db_path=command.db_path)
        with self.runtime_factory(settings) as runtime:
            try:
                payload = runtime.service.job_status(command.job_id)
            except JobNotFoundError as error:
                return CommandResult(lines=[str(error)], success=False)
        progress = payload["progress"]
        lines = [
            f"Job: {payload['jobId']}",
            f"Status: {payload['status']}",
            f"Phase: {progress['currentPhase']}",
            "Progress: "
            f"segments={progress['totalSegments']} "
            f"transcribed={progress['completedTranscriptions']} "
            f"proofread={progress['completedProofreads']}",
        ]
        if payload["error"]:
            lines.append(f"Error: {payload['error']}")
        if payload["result"]:
            lines.extend(["Result:", payload["result"]])
        return CommandResult(lines=lines)

    def list_tasks(self, command: ListTasksCommand) -> CommandResult:
        settings = Settings.from_env(db_path=command.db_path)
        try:
            status = TaskStatus(command.status.strip().lower()) if command.status else None
        except ValueError:
            return CommandResult(lines=[f"Unknown task status: {command.status}"], success=False)
        with self.runtime_factory(settings) as runtime:
            tasks = runtime.repository.list_tasks(
                status=status,
                job_id=command.job_id,
                limit=command.limit,
            )
        lines = [f"Tasks: {len(tasks)}"]
        for task in tasks:
            lines.append(
                "  "
                f"{task.task_id} job={task.job_id} type={task.task_type.value} "
                f"status={task.status.value} retries={task.retry_count}/{task.max_retries} "
                f"seq={task.sequence_order if task.sequence_order is not None else '-'} "
                f"error={task.error or '-'}",
            )
        return CommandResult(lines=lines)

    def inspect_task(self, command: InspectTaskCommand) -> CommandResult:
        settings = Settings.from_env(db_path=command.db_path)
        with self.runtime_factory(settings) as runtime:
            details = runtime.repository.get_task_details(command.task_id)
        if details is None:
            return CommandResult(lines=[f"Task not found: {command.task_id}"], success=False)

        task = details.task
        lines = [
            f"Task: {task.task_id}",
            f"Job: {task.job_id}",
            f"Type: {task.task_type.value}",
            f"Status: {task.status.value}",
            f"Retries: {task.retry_count}/{task.max_retries}",
            f"Parent: {task.parent_task_id or '-'} seq={task.sequence_order}",
            f"Locked by: {task.locked_by or '-'} until={task.locked_until or '-'}",
            f"Error: {task.error or '-'}",
            f"Input: {json.dumps(task.input_data, ensure_ascii=False)}",
            f"Output: {json.dumps(task.output_data, ensure_ascii=False)}",
            "Events:",
        ]
        for event in details.events:
            status_from = event.status_from.value if event.status_from else "-"
            status_to = event.status_to.value if event.status_to else "-"
            lines.append(
                f"  {event.created_at.isoformat()} {event.event_type} "
                f"{status_from}->{status_to} {json.dumps(event.details, ensure_ascii=False)}",
            )
        return CommandResult(lines=lines)
