"""Single-claim dispatcher: claim one task, run its handler, persist successors."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from transcript_pipeline.errors import TaskExecutionError
from transcript_pipeline.handlers.base import HandlerRegistry
from transcript_pipeline.queue.flow import SuccessorResolver
from transcript_pipeline.queue.models import TaskType
from transcript_pipeline.queue.repository import TaskRepository

logger = logging.getLogger(__name__)

NO_PENDING_TASKS = "no pending tasks"
LEASE_LOST = "lease expired before completion"


@dataclass(slots=True)
class DispatchResult:
    """Outcome of one dispatcher invocation."""

    task_id: str | None = None
    task_type: TaskType | None = None
    result: dict[str, Any] | None = None
    message: str | None = None
    lease_lost: bool = False

    @property
    def processed(self) -> bool:
        return self.task_id is not None

    def to_dict(self) -> dict[str, Any]:
        if self.task_id is None:
            return {"message": self.message or NO_PENDING_TASKS}
        payload: dict[str, Any] = {
            "success": not self.lease_lost,
            "task_id": self.task_id,
            "result": self.result,
        }
        if self.lease_lost:
            payload["error"] = LEASE_LOST
        return payload


@dataclass(slots=True)
class DispatchSummary:
    """Aggregate counters for drain runs."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    lease_lost: int = 0
    idle_polls: int = 0
    failed_task_ids: list[str] = field(default_factory=list)


class TaskDispatcher:
    """Processes at most one task per ``run_once`` call.

    A handler exception leaves the task locked with its error recorded; the
    reaper decides between retry and terminal failure once the lease expires.
    """

    def __init__(
        self,
        *,
        repository: TaskRepository,
        handlers: HandlerRegistry,
        resolver: SuccessorResolver,
        worker_id: str,
        lease_seconds: int,
    ) -> None:
        self.repository = repository
        self.handlers = handlers
        self.resolver = resolver
        self.worker_id = worker_id
        self.lease_seconds = lease_seconds

    def run_once(self, *, now: datetime | None = None) -> DispatchResult:
        lease_owner = f"{self.worker_id}:{uuid4().hex[:12]}"
        task = self.repository.claim_next(
            worker_id=lease_owner,
            lease_seconds=self.lease_seconds,
            now=now,
        )
        if task is None:
            return DispatchResult(message=NO_PENDING_TASKS)

        logger.info(
            "Claimed task %s (%s) of job %s as %s",
            task.task_id,
            task.task_type.value,
            task.job_id,
            lease_owner,
        )
        handler = self.handlers.get(task.task_type)
        try:
            output = handler.execute(task.input_data)
        except Exception as error:
            message = str(error) or error.__class__.__name__
            logger.exception(
                "Task %s (%s) failed; left locked until lease expiry",
                task.task_id,
                task.task_type.value,
            )
            self.repository.record_handler_error(
                task.task_id,
                lease_owner=lease_owner,
                error=message,
            )
            raise TaskExecutionError(task.task_id, message) from error

        job = self.repository.get_job(task.job_id)
        if job is None:
            raise TaskExecutionError(task.task_id, f"Job not found: {task.job_id}")
        plan = self.resolver.plan(task, output, job)
        outcome = self.repository.complete_task(
            task.task_id,
            lease_owner=lease_owner,
            output_data=output,
            successors=plan.successors,
            job_update=plan.job_update,
            merge_builder=plan.merge_builder,
        )
        if outcome is None:
            logger.warning(
                "Lease on task %s was lost before completion; output discarded",
                task.task_id,
            )
            return DispatchResult(
                task_id=task.task_id,
                task_type=task.task_type,
                result=output,
                lease_lost=True,
            )

        if outcome.successors:
            logger.info(
                "Task %s completed; enqueued %d successor(s)",
                task.task_id,
                len(outcome.successors),
            )
        if outcome.merge_task is not None:
            logger.info(
                "All siblings of %s done; created %s %s",
                task.parent_task_id,
                outcome.merge_task.task_type.value,
                outcome.merge_task.task_id,
            )
        self.repository.recompute_job_status(task.job_id)
        return DispatchResult(task_id=task.task_id, task_type=task.task_type, result=output)

    def run_until_idle(self, *, max_tasks: int | None = None) -> DispatchSummary:
        """Call ``run_once`` until the queue is empty or ``max_tasks`` were processed."""

        summary = DispatchSummary()
        while max_tasks is None or summary.processed < max_tasks:
            try:
                result = self.run_once()
            except TaskExecutionError as error:
                summary.processed += 1
                summary.failed += 1
                summary.failed_task_ids.append(error.task_id)
                continue
            if not result.processed:
                summary.idle_polls += 1
                break
            summary.processed += 1
            if result.lease_lost:
                summary.lease_lost += 1
            else:
                summary.succeeded += 1
        return summary
