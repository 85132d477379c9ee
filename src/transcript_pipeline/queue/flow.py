"""Static task graph and successor resolution.

The graph is two fan-out/fan-in diamonds in series::

    SAVE_FILE -> CONVERT_AUDIO -> SPLIT_AUDIO => TRANSCRIBE x N => MERGE_TRANSCRIPTIONS
    -> SPLIT_TEXT => PROOFREAD x M => MERGE_PROOFREADS -> CLEANUP
"""

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass, field
from functools import partial
from typing import Any

from transcript_pipeline.queue.models import (
    JobUpdate,
    JobView,
    TaskCreate,
    TaskStatus,
    TaskType,
    TaskView,
)
from transcript_pipeline.queue.repository import MergeBuilder

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FanOut:
    """One fan-out edge: the handler output list that becomes child tasks."""

    child_type: TaskType
    items_key: str
    merge_type: TaskType


FLOW: dict[TaskType, TaskType | None] = {
    TaskType.SAVE_FILE: TaskType.CONVERT_AUDIO,
    TaskType.CONVERT_AUDIO: TaskType.SPLIT_AUDIO,
    TaskType.SPLIT_AUDIO: None,
    TaskType.TRANSCRIBE: None,
    TaskType.MERGE_TRANSCRIPTIONS: TaskType.SPLIT_TEXT,
    TaskType.SPLIT_TEXT: None,
    TaskType.PROOFREAD: None,
    TaskType.MERGE_PROOFREADS: TaskType.CLEANUP,
    TaskType.CLEANUP: None,
}

FAN_OUT: dict[TaskType, FanOut] = {
    TaskType.SPLIT_AUDIO: FanOut(
        child_type=TaskType.TRANSCRIBE,
        items_key="segments",
        merge_type=TaskType.MERGE_TRANSCRIPTIONS,
    ),
    TaskType.SPLIT_TEXT: FanOut(
        child_type=TaskType.PROOFREAD,
        items_key="chunks",
        merge_type=TaskType.MERGE_PROOFREADS,
    ),
}

FAN_IN: dict[TaskType, TaskType] = {
    TaskType.TRANSCRIBE: TaskType.MERGE_TRANSCRIPTIONS,
    TaskType.PROOFREAD: TaskType.MERGE_PROOFREADS,
}


@dataclass(slots=True)
class SuccessorPlan:
    """Downstream work derived from one completed task."""

    successors: list[TaskCreate] = field(default_factory=list)
    job_update: JobUpdate | None = None
    merge_builder: MergeBuilder | None = None


def storage_prefix(job: JobView) -> str:
    """Per-job blob prefix: the directory holding the uploaded original."""

    return posixpath.dirname(job.storage_path)


class SuccessorResolver:
    """Turns a completed task and its output into successor tasks."""

    def __init__(self, *, max_retries: int = 3) -> None:
        self.max_retries = max_retries

    def plan(self, task: TaskView, output: dict[str, Any], job: JobView) -> SuccessorPlan:
        result = SuccessorPlan()
        fan_out = FAN_OUT.get(task.task_type)
        if fan_out is not None:
            result.successors = self._fan_out(task=task, output=output, job=job, fan_out=fan_out)
        else:
            next_type = FLOW[task.task_type]
            if next_type is not None:
                result.successors = [
                    self._task(
                        task=task,
                        task_type=next_type,
                        input_data=_next_input(next_type, output=output, job=job),
                    ),
                ]

        result.merge_builder = self.merge_builder_for(task)

        if task.task_type == TaskType.SPLIT_AUDIO:
            result.job_update = JobUpdate(segments_count=len(output.get("segments", [])))
        elif task.task_type == TaskType.MERGE_PROOFREADS:
            result.job_update = JobUpdate(final_result=str(output.get("final_text", "")))
        return result

    def merge_builder_for(self, task: TaskView) -> MergeBuilder | None:
        """Fan-in check to run when ``task`` turns terminal, for fan-out children only."""

        if task.task_type not in FAN_IN:
            return None
        return partial(self.build_merge, task)

    def build_merge(self, completed: TaskView, siblings: list[TaskView]) -> TaskCreate | None:
        """Return the merge task once every sibling is terminal.

        Failed siblings still count as terminal; their parts carry ``failed``
        and no text, and the merge handlers skip them.
        """

        if any(not sibling.status.is_terminal for sibling in siblings):
            return None
        failed = [sibling.task_id for sibling in siblings if sibling.status == TaskStatus.FAILED]
        if failed:
            logger.warning(
                "Fan-out group %s of job %s merges without failed children %s",
                completed.parent_task_id,
                completed.job_id,
                ", ".join(failed),
            )
        parts = [_merge_part(sibling) for sibling in siblings]
        return self._task(
            task=completed,
            task_type=FAN_IN[completed.task_type],
            input_data={"parts": parts},
            parent_task_id=completed.parent_task_id,
            sequence_order=0,
        )

    def _fan_out(
        self,
        *,
        task: TaskView,
        output: dict[str, Any],
        job: JobView,
        fan_out: FanOut,
    ) -> list[TaskCreate]:
        items = list(output.get(fan_out.items_key, []))
        if not items:
            logger.warning(
                "Task %s produced no %s; creating %s directly",
                task.task_id,
                fan_out.items_key,
                fan_out.merge_type.value,
            )
            return [
                self._task(
                    task=task,
                    task_type=fan_out.merge_type,
                    input_data={"parts": []},
                    parent_task_id=task.task_id,
                    sequence_order=0,
                ),
            ]
        return [
            self._task(
                task=task,
                task_type=fan_out.child_type,
                input_data=_child_input(
                    fan_out.child_type,
                    item=item,
                    index=index,
                    total=len(items),
                    job=job,
                ),
                parent_task_id=task.task_id,
                sequence_order=index,
            )
            for index, item in enumerate(items)
        ]

    def _task(  # noqa: PLR0913
        self,
        *,
        task: TaskView,
        task_type: TaskType,
        input_data: dict[str, Any],
        parent_task_id: str | None = None,
        sequence_order: int | None = None,
    ) -> TaskCreate:
        return TaskCreate(
            job_id=task.job_id,
            task_type=task_type,
            input_data=input_data,
            priority=task.priority,
            max_retries=self.max_retries,
            parent_task_id=parent_task_id,
            sequence_order=sequence_order,
        )


def _merge_part(sibling: TaskView) -> dict[str, Any]:
    if sibling.status == TaskStatus.FAILED:
        return {"sequence_order": sibling.sequence_order, "text": "", "failed": True}
    output = sibling.output_data or {}
    part: dict[str, Any] = {
        "sequence_order": sibling.sequence_order,
        "text": str(output.get("text", "")),
    }
    if "usage" in output:
        part["usage"] = output["usage"]
    return part


def _next_input(task_type: TaskType, *, output: dict[str, Any], job: JobView) -> dict[str, Any]:
    if task_type in (TaskType.CONVERT_AUDIO, TaskType.SPLIT_AUDIO):
        return {"file_path": output["file_path"], "storage_prefix": storage_prefix(job)}
    if task_type == TaskType.SPLIT_TEXT:
        return {"text": output["merged_text"]}
    if task_type == TaskType.CLEANUP:
        return {"storage_prefix": storage_prefix(job)}
    raise ValueError(f"No 1:1 input contract for {task_type.value}")


def _child_input(
    task_type: TaskType,
    *,
    item: Any,
    index: int,
    total: int,
    job: JobView,
) -> dict[str, Any]:
    if task_type == TaskType.TRANSCRIBE:
        return {
            "segment_path": item["path"],
            "segment_index": index,
            "total_segments": total,
            "start": item.get("start", 0.0),
            "language": job.preferred_language,
        }
    if task_type == TaskType.PROOFREAD:
        return {
            "text": str(item),
            "chunk_index": index,
            "total_chunks": total,
            "context": job.proofreading_context,
        }
    raise ValueError(f"{task_type.value} is not a fan-out child type")
