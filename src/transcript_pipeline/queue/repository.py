"""Persistent queue repository for jobs and tasks."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from transcript_pipeline.queue.models import (
    JOB_FAILED_ERROR,
    MERGE_TASK_TYPES,
    JobCreate,
    JobStatus,
    JobUpdate,
    JobView,
    TaskCreate,
    TaskDetails,
    TaskEventView,
    TaskStatus,
    TaskType,
    TaskView,
    derive_job_status,
)
from transcript_pipeline.storage.alembic_runner import upgrade_head
from transcript_pipeline.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from transcript_pipeline.storage.models import QueueTask, TaskEvent, TranscriptionJob

logger = logging.getLogger(__name__)

MergeBuilder = Callable[[list[TaskView]], TaskCreate | None]


@dataclass(slots=True)
class CompletionOutcome:
    """Rows created in the same transaction that completed a task."""

    successors: list[TaskView] = field(default_factory=list)
    merge_task: TaskView | None = None


class TaskRepository:
    """Queue persistence facade backed by SQLModel + SQLite.

    Every state change is a conditional UPDATE guarded by the status the caller
    observed; a rowcount other than one means another invocation won the race
    and the caller treats the operation as a no-op.
    """

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def create_job(self, payload: JobCreate, *, first_task: TaskCreate) -> tuple[JobView, TaskView]:
        """Create a job together with its first task in one transaction."""

        job_id = payload.job_id or first_task.job_id
        if first_task.job_id != job_id:
            raise ValueError(
                f"First task belongs to job {first_task.job_id!r}, expected {job_id!r}.",
            )
        now = utc_now()
        with Session(self.engine) as session:
            job = TranscriptionJob(
                job_id=job_id,
                status=payload.status.value,
                original_filename=payload.original_filename,
                storage_path=payload.storage_path,
                preferred_language=payload.preferred_language,
                proofreading_context=payload.proofreading_context,
                metadata_json=_dump_json(payload.metadata) if payload.metadata else None,
                created_at=now,
                updated_at=now,
            )
            session.add(job)
            session.flush()
            task = _new_task_row(first_task, now=now)
            session.add(task)
            self._add_event(
                session=session,
                task_id=task.task_id,
                job_id=job_id,
                event_type="enqueued",
                status_from=None,
                status_to=TaskStatus.PENDING,
                details={"task_type": first_task.task_type.value},
            )
            job_view = _to_job_view(job)
            task_view = _to_task_view(task)
            session.commit()
        return job_view, task_view

    def get_job(self, job_id: str) -> JobView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(TranscriptionJob).where(TranscriptionJob.job_id == job_id),
            ).one_or_none()
            return _to_job_view(row) if row is not None else None

    def enqueue_task(self, payload: TaskCreate) -> TaskView:
        """Create a pending task."""

        now = utc_now()
        with Session(self.engine) as session:
            row = _new_task_row(payload, now=now)
            session.add(row)
            self._add_event(
                session=session,
                task_id=row.task_id,
                job_id=row.job_id,
                event_type="enqueued",
                status_from=None,
                status_to=TaskStatus.PENDING,
                details=_enqueue_details(payload),
            )
            view = _to_task_view(row)
            session.commit()
        return view

    def insert_if_absent(self, payload: TaskCreate) -> TaskView | None:
        """Insert a task unless a uniqueness rule (one merge per parent) already holds one."""

        now = utc_now()
        with Session(self.engine) as session:
            row = _new_task_row(payload, now=now)
            session.add(row)
            self._add_event(
                session=session,
                task_id=row.task_id,
                job_id=row.job_id,
                event_type=_insert_event_type(payload),
                status_from=None,
                status_to=TaskStatus.PENDING,
                details=_enqueue_details(payload),
            )
            view = _to_task_view(row)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                logger.debug(
                    "Task %s for parent %s already exists",
                    payload.task_type.value,
                    payload.parent_task_id,
                )
                return None
        return view

    def claim_next(
        self,
        *,
        worker_id: str,
        lease_seconds: int,
        now: datetime | None = None,
    ) -> TaskView | None:
        """Lease the highest-priority, oldest pending task.

        Returns None when the queue is empty or another caller claimed the
        candidate first; losing the race is not retried.
        """

        now = now or utc_now()
        with Session(self.engine) as session:
            candidate = session.exec(
                select(QueueTask)
                .where(QueueTask.status == TaskStatus.PENDING.value)
                .order_by(
                    col(QueueTask.priority).desc(),
                    col(QueueTask.created_at).asc(),
                    col(QueueTask.sequence_order).asc(),
                )
                .limit(1),
            ).one_or_none()
            if candidate is None:
                return None

            locked_until = now + timedelta(seconds=lease_seconds)
            result = session.exec(
                sa_update(QueueTask)
                .where(
                    col(QueueTask.task_id) == candidate.task_id,
                    col(QueueTask.status) == TaskStatus.PENDING.value,
                )
                .values(
                    status=TaskStatus.LOCKED.value,
                    locked_until=to_db_datetime(locked_until),
                    locked_by=worker_id,
                    started_at=to_db_datetime(now),
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                logger.debug("Lost claim race for task %s", candidate.task_id)
                return None

            claimed = session.exec(
                select(QueueTask).where(QueueTask.task_id == candidate.task_id),
            ).one()
            self._add_event(
                session=session,
                task_id=claimed.task_id,
                job_id=claimed.job_id,
                event_type="claimed",
                status_from=TaskStatus.PENDING,
                status_to=TaskStatus.LOCKED,
                details={
                    "worker_id": worker_id,
                    "retry_count": claimed.retry_count,
                    "locked_until": to_utc_aware_datetime(locked_until).isoformat(),
                },
            )
            view = _to_task_view(claimed)
            session.commit()
        return view

    def update_task(  # noqa: PLR0913
        self,
        task_id: str,
        *,
        expected_status: TaskStatus,
        values: dict[str, Any],
        event_type: str,
        expected_locked_by: str | None = None,
        expected_retry_count: int | None = None,
        details: dict[str, object] | None = None,
    ) -> bool:
        """Apply a patch only if the task is still in the observed state."""

        with Session(self.engine) as session:
            updated = self._conditional_update(
                session=session,
                task_id=task_id,
                expected_status=expected_status,
                values=values,
                expected_locked_by=expected_locked_by,
                expected_retry_count=expected_retry_count,
            )
            if not updated:
                session.rollback()
                return False
            row = session.exec(select(QueueTask).where(QueueTask.task_id == task_id)).one()
            self._add_event(
                session=session,
                task_id=task_id,
                job_id=row.job_id,
                event_type=event_type,
                status_from=expected_status,
                status_to=TaskStatus(row.status),
                details=details or {},
            )
            session.commit()
            return True

    def complete_task(  # noqa: PLR0913
        self,
        task_id: str,
        *,
        lease_owner: str,
        output_data: dict[str, Any],
        successors: Iterable[TaskCreate] = (),
        job_update: JobUpdate | None = None,
        merge_builder: MergeBuilder | None = None,
    ) -> CompletionOutcome | None:
        """Complete a leased task and create its downstream tasks atomically.

        When ``merge_builder`` is given, the completed task's siblings are read
        inside the same write transaction and the returned merge task (if any)
        goes through the one-merge-per-parent unique index.
        Returns None if the lease was lost before completion.
        """

        now = utc_now()
        with Session(self.engine) as session:
            updated = self._conditional_update(
                session=session,
                task_id=task_id,
                expected_status=TaskStatus.LOCKED,
                expected_locked_by=lease_owner,
                values={
                    "status": TaskStatus.COMPLETED.value,
                    "output_data_json": _dump_json(output_data),
                    "locked_until": None,
                    "error": None,
                    "completed_at": to_db_datetime(now),
                    "updated_at": to_db_datetime(now),
                },
            )
            if not updated:
                session.rollback()
                return None

            row = session.exec(select(QueueTask).where(QueueTask.task_id == task_id)).one()
            self._add_event(
                session=session,
                task_id=task_id,
                job_id=row.job_id,
                event_type="completed",
                status_from=TaskStatus.LOCKED,
                status_to=TaskStatus.COMPLETED,
                details={"lease_owner": lease_owner},
            )

            outcome = CompletionOutcome()
            for payload in successors:
                successor = _new_task_row(payload, now=now)
                session.add(successor)
                self._add_event(
                    session=session,
                    task_id=successor.task_id,
                    job_id=successor.job_id,
                    event_type="enqueued",
                    status_from=None,
                    status_to=TaskStatus.PENDING,
                    details=_enqueue_details(payload),
                )
                outcome.successors.append(_to_task_view(successor))

            children = [item for item in outcome.successors if item.parent_task_id == task_id]
            if children:
                self._add_event(
                    session=session,
                    task_id=task_id,
                    job_id=row.job_id,
                    event_type="fan_out",
                    status_from=None,
                    status_to=None,
                    details={
                        "children": len(children),
                        "task_types": sorted({item.task_type.value for item in children}),
                    },
                )

            if job_update is not None:
                self._apply_job_update(
                    session=session,
                    job_id=row.job_id,
                    job_update=job_update,
                    now=now,
                )

            if merge_builder is not None:
                outcome.merge_task = self._run_fan_in(
                    session=session,
                    task=_to_task_view(row),
                    merge_builder=merge_builder,
                    now=now,
                )

            session.commit()
        return outcome

    def record_handler_error(self, task_id: str, *, lease_owner: str, error: str) -> bool:
        """Store a handler failure on a task that stays locked until its lease expires."""

        return self.update_task(
            task_id,
            expected_status=TaskStatus.LOCKED,
            expected_locked_by=lease_owner,
            values={"error": error, "updated_at": to_db_datetime(utc_now())},
            event_type="handler_failed",
            details={"error": error},
        )

    def list_siblings(
        self,
        *,
        job_id: str,
        task_type: TaskType,
        parent_task_id: str | None,
    ) -> list[TaskView]:
        """List one fan-out group ordered by sequence_order."""

        with Session(self.engine) as session:
            return self._list_siblings(
                session=session,
                job_id=job_id,
                task_type=task_type,
                parent_task_id=parent_task_id,
            )

    def list_expired_leases(self, *, now: datetime | None = None) -> list[TaskView]:
        """Locked tasks whose lease ended before ``now``."""

        now = now or utc_now()
        with Session(self.engine) as session:
            rows = session.exec(
                select(QueueTask)
                .where(
                    QueueTask.status == TaskStatus.LOCKED.value,
                    col(QueueTask.locked_until).is_not(None),
                    col(QueueTask.locked_until) < to_db_datetime(now),
                )
                .order_by(col(QueueTask.locked_until).asc()),
            ).all()
        return [_to_task_view(row) for row in rows]

    def reset_for_retry(self, task: TaskView, *, now: datetime | None = None) -> bool:
        """Return an expired lease to the pending pool with one more retry counted."""

        now = now or utc_now()
        return self.update_task(
            task.task_id,
            expected_status=TaskStatus.LOCKED,
            expected_retry_count=task.retry_count,
            values={
                "status": TaskStatus.PENDING.value,
                "retry_count": task.retry_count + 1,
                "locked_until": None,
                "locked_by": None,
                "started_at": None,
                "error": None,
                "updated_at": to_db_datetime(now),
            },
            event_type="retry_scheduled",
            details={
                "retry_count": task.retry_count + 1,
                "max_retries": task.max_retries,
                "expired_lease_owner": task.locked_by,
                "last_error": task.error,
            },
        )

    def fail_task(
        self,
        task: TaskView,
        *,
        error: str,
        now: datetime | None = None,
        merge_builder: MergeBuilder | None = None,
    ) -> CompletionOutcome | None:
        """Mark an expired lease as terminally failed.

        A failed fan-out child is terminal too, so ``merge_builder`` runs the
        same fan-in check as ``complete_task`` inside this transaction.
        Returns None if another invocation changed the task first.
        """

        now = now or utc_now()
        with Session(self.engine) as session:
            updated = self._conditional_update(
                session=session,
                task_id=task.task_id,
                expected_status=TaskStatus.LOCKED,
                expected_retry_count=task.retry_count,
                values={
                    "status": TaskStatus.FAILED.value,
                    "error": error,
                    "locked_until": None,
                    "completed_at": to_db_datetime(now),
                    "updated_at": to_db_datetime(now),
                },
            )
            if not updated:
                session.rollback()
                return None

            self._add_event(
                session=session,
                task_id=task.task_id,
                job_id=task.job_id,
                event_type="failed_terminal",
                status_from=TaskStatus.LOCKED,
                status_to=TaskStatus.FAILED,
                details={
                    "error": error,
                    "retry_count": task.retry_count,
                    "last_error": task.error,
                },
            )
            outcome = CompletionOutcome()
            if merge_builder is not None:
                outcome.merge_task = self._run_fan_in(
                    session=session,
                    task=task,
                    merge_builder=merge_builder,
                    now=now,
                )
            session.commit()
        return outcome

    def recompute_job_status(self, job_id: str) -> JobView | None:
        """Roll the job status up from its tasks; unchanged while any task is outstanding."""

        now = utc_now()
        with Session(self.engine) as session:
            job = session.exec(
                select(TranscriptionJob).where(TranscriptionJob.job_id == job_id),
            ).one_or_none()
            if job is None:
                return None
            statuses = session.exec(
                select(QueueTask.status).where(QueueTask.job_id == job_id),
            ).all()
            derived = derive_job_status([TaskStatus(value) for value in statuses])
            if derived is not None and job.status != derived.value:
                result = session.exec(
                    sa_update(TranscriptionJob)
                    .where(
                        col(TranscriptionJob.job_id) == job_id,
                        col(TranscriptionJob.status) != derived.value,
                    )
                    .values(
                        status=derived.value,
                        error=JOB_FAILED_ERROR if derived == JobStatus.FAILED else None,
                        updated_at=to_db_datetime(now),
                    ),
                )
                session.commit()
                if result.rowcount == 1:
                    logger.info("Job %s rolled up to %s", job_id, derived.value)
            refreshed = session.exec(
                select(TranscriptionJob).where(TranscriptionJob.job_id == job_id),
            ).one()
            return _to_job_view(refreshed)

    def list_job_tasks(self, job_id: str) -> list[TaskView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(QueueTask)
                .where(QueueTask.job_id == job_id)
                .order_by(
                    col(QueueTask.created_at).asc(),
                    col(QueueTask.sequence_order).asc(),
                ),
            ).all()
        return [_to_task_view(row) for row in rows]

    def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        job_id: str | None = None,
        limit: int = 50,
    ) -> list[TaskView]:
        """List recent tasks, optionally filtered by status and job."""

        with Session(self.engine) as session:
            statement = select(QueueTask).order_by(col(QueueTask.created_at).desc()).limit(limit)
            if status is not None:
                statement = statement.where(QueueTask.status == status.value)
            if job_id is not None:
                statement = statement.where(QueueTask.job_id == job_id)
            rows = session.exec(statement).all()
        return [_to_task_view(row) for row in rows]

    def get_task(self, task_id: str) -> TaskView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(QueueTask).where(QueueTask.task_id == task_id),
            ).one_or_none()
            return _to_task_view(row) if row is not None else None

    def get_task_details(self, task_id: str) -> TaskDetails | None:
        """Return task details with event stream."""

        with Session(self.engine) as session:
            task = session.exec(
                select(QueueTask).where(QueueTask.task_id == task_id),
            ).one_or_none()
            if task is None:
                return None
            event_rows = session.exec(
                select(TaskEvent)
                .where(TaskEvent.task_id == task_id)
                .order_by(col(TaskEvent.created_at).asc(), col(TaskEvent.id).asc()),
            ).all()
            task_view = _to_task_view(task)

        events = [
            TaskEventView(
                event_id=row.id or 0,
                task_id=row.task_id,
                job_id=row.job_id,
                event_type=row.event_type,
                status_from=TaskStatus(row.status_from) if row.status_from is not None else None,
                status_to=TaskStatus(row.status_to) if row.status_to is not None else None,
                created_at=to_utc_aware_datetime(row.created_at),
                details=_load_json(row.details_json) or {},
            )
            for row in event_rows
        ]
        return TaskDetails(task=task_view, events=events)

    def _conditional_update(  # noqa: PLR0913
        self,
        *,
        session: Session,
        task_id: str,
        expected_status: TaskStatus,
        values: dict[str, Any],
        expected_locked_by: str | None = None,
        expected_retry_count: int | None = None,
    ) -> bool:
        conditions = [
            col(QueueTask.task_id) == task_id,
            col(QueueTask.status) == expected_status.value,
        ]
        if expected_locked_by is not None:
            conditions.append(col(QueueTask.locked_by) == expected_locked_by)
        if expected_retry_count is not None:
            conditions.append(col(QueueTask.retry_count) == expected_retry_count)
        result = session.exec(sa_update(QueueTask).where(*conditions).values(**values))
        return result.rowcount == 1

    def _list_siblings(
        self,
        *,
        session: Session,
        job_id: str,
        task_type: TaskType,
        parent_task_id: str | None,
    ) -> list[TaskView]:
        parent_condition = (
            col(QueueTask.parent_task_id).is_(None)
            if parent_task_id is None
            else col(QueueTask.parent_task_id) == parent_task_id
        )
        rows = session.exec(
            select(QueueTask)
            .where(
                QueueTask.job_id == job_id,
                QueueTask.task_type == task_type.value,
                parent_condition,
            )
            .order_by(col(QueueTask.sequence_order).asc()),
        ).all()
        return [_to_task_view(row) for row in rows]

    def _run_fan_in(
        self,
        *,
        session: Session,
        task: TaskView,
        merge_builder: MergeBuilder,
        now: datetime,
    ) -> TaskView | None:
        siblings = self._list_siblings(
            session=session,
            job_id=task.job_id,
            task_type=task.task_type,
            parent_task_id=task.parent_task_id,
        )
        merge_payload = merge_builder(siblings)
        if merge_payload is None:
            return None
        return self._insert_if_absent(session=session, payload=merge_payload, now=now)

    def _insert_if_absent(
        self,
        *,
        session: Session,
        payload: TaskCreate,
        now: datetime,
    ) -> TaskView | None:
        row = _new_task_row(payload, now=now)
        savepoint = session.begin_nested()
        try:
            session.add(row)
            session.flush()
        except IntegrityError:
            savepoint.rollback()
            logger.debug(
                "Task %s for parent %s already exists",
                payload.task_type.value,
                payload.parent_task_id,
            )
            return None
        savepoint.commit()
        self._add_event(
            session=session,
            task_id=row.task_id,
            job_id=row.job_id,
            event_type=_insert_event_type(payload),
            status_from=None,
            status_to=TaskStatus.PENDING,
            details=_enqueue_details(payload),
        )
        return _to_task_view(row)

    def _apply_job_update(
        self,
        *,
        session: Session,
        job_id: str,
        job_update: JobUpdate,
        now: datetime,
    ) -> None:
        values: dict[str, Any] = {"updated_at": to_db_datetime(now)}
        if job_update.segments_count is not None:
            values["segments_count"] = job_update.segments_count
        if job_update.final_result is not None:
            values["final_result"] = job_update.final_result
        session.exec(
            sa_update(TranscriptionJob)
            .where(col(TranscriptionJob.job_id) == job_id)
            .values(**values),
        )

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        task_id: str,
        job_id: str,
        event_type: str,
        status_from: TaskStatus | None,
        status_to: TaskStatus | None,
        details: dict[str, object],
    ) -> None:
        session.add(
            TaskEvent(
                task_id=task_id,
                job_id=job_id,
                event_type=event_type,
                status_from=status_from.value if status_from is not None else None,
                status_to=status_to.value if status_to is not None else None,
                details_json=_dump_json(details) if details else None,
                created_at=utc_now(),
            ),
        )


def _new_task_row(payload: TaskCreate, *, now: datetime) -> QueueTask:
    return QueueTask(
        task_id=payload.task_id or str(uuid4()),
        job_id=payload.job_id,
        task_type=payload.task_type.value,
        status=TaskStatus.PENDING.value,
        input_data_json=_dump_json(payload.input_data),
        priority=payload.priority,
        retry_count=0,
        max_retries=payload.max_retries,
        parent_task_id=payload.parent_task_id,
        sequence_order=payload.sequence_order,
        created_at=now,
        updated_at=now,
    )


def _insert_event_type(payload: TaskCreate) -> str:
    return "merge_created" if payload.task_type in MERGE_TASK_TYPES else "enqueued"


def _enqueue_details(payload: TaskCreate) -> dict[str, object]:
    details: dict[str, object] = {"task_type": payload.task_type.value}
    if payload.parent_task_id is not None:
        details["parent_task_id"] = payload.parent_task_id
    if payload.sequence_order is not None:
        details["sequence_order"] = payload.sequence_order
    return details


def _dump_json(value: object) -> str:
    return json.dumps(value, ensure_ascii=False, sort_keys=True)


def _load_json(value: str | None) -> dict[str, Any] | None:
    if not value:
        return None
    parsed = json.loads(value)
    return parsed if isinstance(parsed, dict) else None


def _to_job_view(row: TranscriptionJob) -> JobView:
    return JobView(
        job_id=row.job_id,
        status=JobStatus(row.status),
        original_filename=row.original_filename,
        storage_path=row.storage_path,
        preferred_language=row.preferred_language,
        proofreading_context=row.proofreading_context,
        segments_count=row.segments_count,
        final_result=row.final_result,
        error=row.error,
        metadata=_load_json(row.metadata_json) or {},
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _to_task_view(row: QueueTask) -> TaskView:
    return TaskView(
        task_id=row.task_id,
        job_id=row.job_id,
        task_type=TaskType(row.task_type),
        status=TaskStatus(row.status),
        input_data=_load_json(row.input_data_json) or {},
        output_data=_load_json(row.output_data_json),
        priority=row.priority,
        locked_until=(
            to_utc_aware_datetime(row.locked_until) if row.locked_until is not None else None
        ),
        locked_by=row.locked_by,
        retry_count=row.retry_count,
        max_retries=row.max_retries,
        parent_task_id=row.parent_task_id,
        sequence_order=row.sequence_order,
        error=row.error,
        created_at=to_utc_aware_datetime(row.created_at),
        started_at=to_utc_aware_datetime(row.started_at) if row.started_at is not None else None,
        completed_at=(
            to_utc_aware_datetime(row.completed_at) if row.completed_at is not None else None
        ),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
