"""Handler contract and registry keyed by task type."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any, Protocol

from transcript_pipeline.queue.models import TaskType


class TaskHandler(Protocol):
    """Executes one task type: input payload in, output payload out.

    Handlers raise on failure; the dispatcher owns all queue state changes.
    """

    task_type: TaskType

    def execute(self, input_data: dict[str, Any]) -> dict[str, Any]:
        """Run the stage and return its output payload."""
        raise NotImplementedError


class HandlerRegistry:
    """One handler per task type, checked for completeness at construction."""

    def __init__(self, handlers: Iterable[TaskHandler]) -> None:
        self._handlers: dict[TaskType, TaskHandler] = {}
        for handler in handlers:
            if handler.task_type in self._handlers:
                raise ValueError(f"Duplicate handler for {handler.task_type.value}")
            self._handlers[handler.task_type] = handler
        missing = [task_type.value for task_type in TaskType if task_type not in self._handlers]
        if missing:
            raise ValueError(f"Missing handlers for: {', '.join(missing)}")

    def get(self, task_type: TaskType) -> TaskHandler:
        return self._handlers[task_type]

    def __contains__(self, task_type: object) -> bool:
        return task_type in self._handlers
