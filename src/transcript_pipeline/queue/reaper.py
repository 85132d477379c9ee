"""Stuck-task reaper: reclaims expired leases and finalizes exhausted retries."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from transcript_pipeline.queue.flow import SuccessorResolver
from transcript_pipeline.queue.models import MAX_RETRIES_EXCEEDED
from transcript_pipeline.queue.repository import TaskRepository
from transcript_pipeline.storage.common import utc_now

logger = logging.getLogger(__name__)

MARKED_FAILED = "marked_failed"
RESET_FOR_RETRY = "reset_for_retry"


@dataclass(slots=True)
class ReaperReport:
    processed: int = 0
    results: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"processed": self.processed, "results": self.results}


class StuckTaskReaper:
    """One sweep per call; safe to run concurrently with dispatchers and other reapers.

    A fan-out child that fails terminally can be the last sibling to finish, so
    the failure runs the same fan-in check as a completion.
    """

    def __init__(
        self,
        *,
        repository: TaskRepository,
        resolver: SuccessorResolver | None = None,
    ) -> None:
        self.repository = repository
        self.resolver = resolver or SuccessorResolver()

    def sweep(self, *, now: datetime | None = None) -> ReaperReport:
        now = now or utc_now()
        report = ReaperReport()
        for task in self.repository.list_expired_leases(now=now):
            if task.retry_count >= task.max_retries:
                outcome = self.repository.fail_task(
                    task,
                    error=MAX_RETRIES_EXCEEDED,
                    now=now,
                    merge_builder=self.resolver.merge_builder_for(task),
                )
                if outcome is None:
                    continue
                logger.warning(
                    "Task %s (%s) failed after %d retries: %s",
                    task.task_id,
                    task.task_type.value,
                    task.retry_count,
                    task.error or "lease expired",
                )
                if outcome.merge_task is not None:
                    logger.info(
                        "Last sibling of %s failed; created %s %s",
                        task.parent_task_id,
                        outcome.merge_task.task_type.value,
                        outcome.merge_task.task_id,
                    )
                report.results.append(
                    {
                        "task_id": task.task_id,
                        "action": MARKED_FAILED,
                        "reason": "max_retries_exceeded",
                    },
                )
                self.repository.recompute_job_status(task.job_id)
            else:
                if not self.repository.reset_for_retry(task, now=now):
                    continue
                logger.warning(
                    "Task %s (%s) lease expired; retry %d/%d",
                    task.task_id,
                    task.task_type.value,
                    task.retry_count + 1,
                    task.max_retries,
                )
                report.results.append(
                    {
                        "task_id": task.task_id,
                        "action": RESET_FOR_RETRY,
                        "retry_count": task.retry_count + 1,
                    },
                )
            report.processed += 1
        return report
