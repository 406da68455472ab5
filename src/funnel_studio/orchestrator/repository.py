"""Persistent task state store for generation jobs."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from funnel_studio.orchestrator.errors import (
    InvalidTransitionError,
    JobNotFoundError,
    TaskNotFoundError,
)
from funnel_studio.orchestrator.models import (
    FailureClass,
    JobRequest,
    JobView,
    TaskDetails,
    TaskEventView,
    TaskKind,
    TaskSpec,
    TaskStatus,
    TaskView,
)
from funnel_studio.orchestrator.retry_policy import RetryPolicy
from funnel_studio.storage.alembic_runner import upgrade_head
from funnel_studio.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from funnel_studio.storage.sqlmodel_models import (
    DEFAULT_USER_ID,
    AppSetting,
    AppUser,
    GenerationJob,
    GenerationTask,
    GenerationTaskEvent,
)

logger = logging.getLogger(__name__)

_ALLOWED_SOURCES: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.QUEUED}),
    TaskStatus.COMPLETED: frozenset({TaskStatus.IN_PROGRESS}),
    TaskStatus.QUEUED: frozenset({TaskStatus.IN_PROGRESS}),
    TaskStatus.FAILED: frozenset({TaskStatus.IN_PROGRESS}),
}
_IDEMPOTENT_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED})
_EVENT_TYPES: dict[TaskStatus, str] = {
    TaskStatus.IN_PROGRESS: "attempt_started",
    TaskStatus.COMPLETED: "completed",
    TaskStatus.QUEUED: "retry_scheduled",
    TaskStatus.FAILED: "failed",
}
_RETRY_SETTING_PREFIX = "retry_attempt_"
_MAX_ATTEMPTS_SETTING = "max_retry_attempts"


class OrchestratorRepository:
    """Job/task persistence facade backed by SQLModel + SQLite."""

    def __init__(
        self,
        db_path: Path,
        *,
        user_id: str = DEFAULT_USER_ID,
        user_name: str = "Default User",
        sqlite_busy_timeout_ms: int = 5_000,
    ) -> None:
        self.db_path = db_path
        self.user_id = user_id
        self.user_name = user_name
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations and ensure actor context exists."""

        upgrade_head(self.db_path)
        self._ensure_actor_context()

    def _ensure_actor_context(self) -> None:
        with Session(self.engine) as session:
            user = session.exec(
                select(AppUser).where(AppUser.user_id == self.user_id),
            ).one_or_none()
            if user is not None:
                return
            session.add(
                AppUser(
                    user_id=self.user_id,
                    display_name=self.user_name,
                    created_at=to_db_datetime(utc_now()),
                ),
            )
            session.commit()

    # Jobs

    def create_job(
        self,
        *,
        job_id: str,
        request: JobRequest,
        policy: RetryPolicy,
        specs: Sequence[TaskSpec],
    ) -> JobView:
        """Create a job with its policy snapshot and all of its queued tasks."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            session.add(
                GenerationJob(
                    job_id=job_id,
                    user_id=self.user_id,
                    job_kind=request.job_kind,
                    total_tasks=0,
                    test_mode=request.test_mode,
                    request_json=_dump_json(request.to_dict()),
                    retry_policy_json=_dump_json(policy.to_dict()),
                    created_at=now,
                    updated_at=now,
                ),
            )
            session.flush()
            self._insert_tasks(
                session=session,
                job_id=job_id,
                specs=specs,
                max_attempts=policy.max_attempts,
                first_sequence=1,
            )
            session.commit()
        logger.info("Created job %s with %d tasks", job_id, len(specs))
        job = self.get_job(job_id=job_id)
        if job is None:  # pragma: no cover - just inserted
            raise JobNotFoundError(job_id)
        return job

    def create_tasks(self, *, job_id: str, specs: Sequence[TaskSpec]) -> list[str]:
        """Append queued tasks to an existing job, continuing its sequence numbers."""

        with Session(self.engine) as session:
            job = self._get_job_row(session=session, job_id=job_id)
            policy = RetryPolicy.from_dict(json.loads(job.retry_policy_json))
            last_sequence = session.exec(
                select(GenerationTask.sequence)
                .where(GenerationTask.job_id == job_id)
                .order_by(col(GenerationTask.sequence).desc())
                .limit(1),
            ).one_or_none()
            task_ids = self._insert_tasks(
                session=session,
                job_id=job_id,
                specs=specs,
                max_attempts=policy.max_attempts,
                first_sequence=(last_sequence or 0) + 1,
            )
            session.commit()
        return task_ids

    def get_job(self, *, job_id: str) -> JobView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(GenerationJob).where(
                    GenerationJob.job_id == job_id,
                    GenerationJob.user_id == self.user_id,
                ),
            ).one_or_none()
            if row is None:
                return None
            return _to_job_view(row)

    def list_jobs(self, *, limit: int = 50) -> list[JobView]:
        """List recent jobs for the current user."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(GenerationJob)
                .where(GenerationJob.user_id == self.user_id)
                .order_by(col(GenerationJob.created_at).desc())
                .limit(limit),
            ).all()
            return [_to_job_view(row) for row in rows]

    # Tasks

    def get_task(self, *, task_id: str) -> TaskView | None:
        with Session(self.engine) as session:
            row = self._find_task_row(session=session, task_id=task_id)
            return _to_task_view(row) if row is not None else None

    def list_by_job(
        self,
        *,
        job_id: str,
        status: TaskStatus | None = None,
    ) -> list[TaskView]:
        """All tasks of a job in scheduler order."""

        with Session(self.engine) as session:
            self._get_job_row(session=session, job_id=job_id)
            statement = (
                select(GenerationTask)
                .where(GenerationTask.job_id == job_id)
                .order_by(col(GenerationTask.sequence).asc())
            )
            if status is not None:
                statement = statement.where(GenerationTask.status == status.value)
            rows = session.exec(statement).all()
            return [_to_task_view(row) for row in rows]

    def set_status(
        self,
        *,
        task_id: str,
        status: TaskStatus,
        error: str | None = None,
    ) -> bool:
        """Apply one status transition.

        Returns False when the task already holds the requested terminal
        status (repeat writes are no-ops). Raises `InvalidTransitionError`
        for any transition outside queued -> in_progress -> {completed,
        queued, failed}, and for `failed` while attempts remain.
        """

        return self._apply_transition(task_id=task_id, status_to=status, error=error)

    def complete_task(
        self,
        *,
        task_id: str,
        result: dict[str, Any],
        fallback_fields: Sequence[str] = (),
    ) -> bool:
        """Mark an in-progress task completed and store its output."""

        return self._apply_transition(
            task_id=task_id,
            status_to=TaskStatus.COMPLETED,
            extra_values={
                "result_json": _dump_json(result),
                "fallback_fields": ",".join(fallback_fields) or None,
            },
            details={"fallback_fields": list(fallback_fields)} if fallback_fields else None,
        )

    def schedule_retry(
        self,
        *,
        task_id: str,
        error: str,
        failure_class: FailureClass,
        next_attempt_at: datetime,
        details: dict[str, object] | None = None,
    ) -> bool:
        """Requeue an in-progress task; the next attempt may not start before `next_attempt_at`."""

        return self._apply_transition(
            task_id=task_id,
            status_to=TaskStatus.QUEUED,
            error=error,
            extra_values={
                "failure_class": failure_class.value,
                "next_attempt_at": to_db_datetime(next_attempt_at),
            },
            details={
                "next_attempt_at": to_utc_aware_datetime(next_attempt_at).isoformat(),
                **(details or {}),
            },
        )

    def fail_task(
        self,
        *,
        task_id: str,
        error: str,
        failure_class: FailureClass,
        details: dict[str, object] | None = None,
    ) -> bool:
        """Mark an in-progress task definitively failed (attempts exhausted)."""

        return self._apply_transition(
            task_id=task_id,
            status_to=TaskStatus.FAILED,
            error=error,
            extra_values={"failure_class": failure_class.value},
            details=details,
        )

    def reset_to_queued(self, *, task_id: str) -> None:
        """Manual operator retry: failed -> queued, clearing the error but keeping attempts."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = self._get_task_row(session=session, task_id=task_id)
            if row.status != TaskStatus.FAILED.value:
                raise InvalidTransitionError(
                    f"Only failed tasks can be reset to queued, got {row.status} "
                    f"(task_id={task_id}).",
                )
            result = session.exec(
                sa_update(GenerationTask)
                .where(
                    col(GenerationTask.task_id) == task_id,
                    col(GenerationTask.status) == TaskStatus.FAILED.value,
                )
                .values(
                    status=TaskStatus.QUEUED.value,
                    last_error=None,
                    failure_class=None,
                    next_attempt_at=None,
                    manual_retry_count=row.manual_retry_count + 1,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                raise InvalidTransitionError(
                    "Task state changed concurrently while resetting; "
                    f"please retry command (task_id={task_id}).",
                )
            self._bump_job_counters(session=session, job_id=row.job_id, failed=-1, now=now)
            self._add_event(
                session=session,
                task_id=task_id,
                job_id=row.job_id,
                event_type="manual_retry",
                status_from=TaskStatus.FAILED,
                status_to=TaskStatus.QUEUED,
                details={"attempt_count": row.attempt_count},
            )
            session.commit()
        logger.info("Task %s reset to queued by operator", task_id)

    def recover_stale_tasks(self, *, job_id: str, stale_before: datetime) -> list[str]:
        """Release in-progress tasks whose attempt started before `stale_before`.

        Such an attempt was cut off with its host window, so it counts as a
        failed attempt: the task is requeued, or failed when it was the last one.
        """

        with Session(self.engine) as session:
            self._get_job_row(session=session, job_id=job_id)
            rows = session.exec(
                select(GenerationTask).where(
                    GenerationTask.job_id == job_id,
                    GenerationTask.status == TaskStatus.IN_PROGRESS.value,
                    col(GenerationTask.last_attempt_at) < to_db_datetime(stale_before),
                ),
            ).all()
            stale = [(row.task_id, row.attempt_count, row.max_attempts) for row in rows]

        recovered: list[str] = []
        error = "Attempt interrupted before completion"
        for task_id, attempt_count, max_attempts in stale:
            details: dict[str, object] = {"stale_recovery": True}
            if attempt_count >= max_attempts:
                changed = self.fail_task(
                    task_id=task_id,
                    error=error,
                    failure_class=FailureClass.TIMEOUT,
                    details=details,
                )
            else:
                changed = self.schedule_retry(
                    task_id=task_id,
                    error=error,
                    failure_class=FailureClass.TIMEOUT,
                    next_attempt_at=utc_now(),
                    details=details,
                )
            if changed:
                recovered.append(task_id)
        if recovered:
            logger.warning("Recovered %d stale task(s) in job %s", len(recovered), job_id)
        return recovered

    def get_task_details(self, *, task_id: str) -> TaskDetails | None:
        """Return task details with event stream."""

        with Session(self.engine) as session:
            task = self._find_task_row(session=session, task_id=task_id)
            if task is None:
                return None
            event_rows = session.exec(
                select(GenerationTaskEvent)
                .where(GenerationTaskEvent.task_id == task_id)
                .order_by(col(GenerationTaskEvent.id).asc()),
            ).all()
            task_view = _to_task_view(task)

        events: list[TaskEventView] = []
        for row in event_rows:
            details = {}
            if row.details_json:
                parsed = json.loads(row.details_json)
                if isinstance(parsed, dict):
                    details = parsed
            events.append(
                TaskEventView(
                    event_id=row.id or 0,
                    task_id=row.task_id,
                    event_type=row.event_type,
                    status_from=(
                        TaskStatus(row.status_from) if row.status_from is not None else None
                    ),
                    status_to=TaskStatus(row.status_to) if row.status_to is not None else None,
                    created_at=to_utc_aware_datetime(row.created_at),
                    details=details,
                ),
            )
        return TaskDetails(task=task_view, events=events)

    def add_task_event(
        self,
        *,
        task_id: str,
        event_type: str,
        details: dict[str, object] | None = None,
    ) -> None:
        """Append a non-transition audit event (classifier output, fallbacks)."""

        with Session(self.engine) as session:
            row = self._get_task_row(session=session, task_id=task_id)
            status = TaskStatus(row.status)
            self._add_event(
                session=session,
                task_id=task_id,
                job_id=row.job_id,
                event_type=event_type,
                status_from=status,
                status_to=status,
                details=details or {},
            )
            session.commit()

    # Retry policy settings

    def load_retry_policy(self, *, default: RetryPolicy) -> RetryPolicy:
        """Administrator overrides from app_settings layered on `default`."""

        with Session(self.engine) as session:
            rows = session.exec(select(AppSetting)).all()
            settings = {row.key: row.value for row in rows}
        return RetryPolicy.from_settings(settings, default=default)

    def save_retry_policy(self, policy: RetryPolicy) -> None:
        """Replace stored retry overrides. Affects only jobs created afterwards."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            existing = session.exec(select(AppSetting)).all()
            for row in existing:
                if row.key.startswith(_RETRY_SETTING_PREFIX) or row.key == _MAX_ATTEMPTS_SETTING:
                    session.delete(row)
            session.flush()
            for key, value in policy.to_settings().items():
                session.add(AppSetting(key=key, value=value, updated_at=now))
            session.commit()
        logger.info(
            "Retry policy updated: delays=%s max_attempts=%d",
            list(policy.delays),
            policy.max_attempts,
        )

    # Internals

    def _apply_transition(  # noqa: PLR0913
        self,
        *,
        task_id: str,
        status_to: TaskStatus,
        error: str | None = None,
        extra_values: dict[str, object] | None = None,
        details: dict[str, object] | None = None,
    ) -> bool:
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = self._get_task_row(session=session, task_id=task_id)
            status_from = TaskStatus(row.status)
            if status_from == status_to and status_to in _IDEMPOTENT_STATUSES:
                return False
            if status_from not in _ALLOWED_SOURCES[status_to]:
                raise InvalidTransitionError(
                    f"Task {task_id} cannot move from {status_from.value} to {status_to.value}.",
                )
            if status_to == TaskStatus.FAILED and row.attempt_count < row.max_attempts:
                raise InvalidTransitionError(
                    f"Task {task_id} has attempts left ({row.attempt_count}/{row.max_attempts}); "
                    "a failure must requeue it.",
                )

            values = _transition_values(row=row, status_to=status_to, error=error, now=now)
            values.update(extra_values or {})
            result = session.exec(
                sa_update(GenerationTask)
                .where(
                    col(GenerationTask.task_id) == task_id,
                    col(GenerationTask.status) == status_from.value,
                    col(GenerationTask.attempt_count) == row.attempt_count,
                )
                .values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                current = self._get_task_row(session=session, task_id=task_id)
                if current.status == status_to.value and status_to in _IDEMPOTENT_STATUSES:
                    return False
                raise InvalidTransitionError(
                    "Task state changed concurrently; "
                    f"expected {status_from.value}, found {current.status} (task_id={task_id}).",
                )

            if status_to == TaskStatus.COMPLETED:
                self._bump_job_counters(session=session, job_id=row.job_id, completed=1, now=now)
            elif status_to == TaskStatus.FAILED:
                self._bump_job_counters(session=session, job_id=row.job_id, failed=1, now=now)

            event_details: dict[str, object] = {"attempt_count": values["attempt_count"]}
            if error is not None:
                event_details["error"] = error
            event_details.update(details or {})
            self._add_event(
                session=session,
                task_id=task_id,
                job_id=row.job_id,
                event_type=_EVENT_TYPES[status_to],
                status_from=status_from,
                status_to=status_to,
                details=event_details,
            )
            session.commit()
            return True

    def _insert_tasks(
        self,
        *,
        session: Session,
        job_id: str,
        specs: Sequence[TaskSpec],
        max_attempts: int,
        first_sequence: int,
    ) -> list[str]:
        now = to_db_datetime(utc_now())
        task_ids: list[str] = []
        for offset, spec in enumerate(specs):
            task_id = str(uuid4())
            session.add(
                GenerationTask(
                    task_id=task_id,
                    job_id=job_id,
                    sequence=first_sequence + offset,
                    task_kind=spec.task_kind.value,
                    category=spec.category,
                    variation=spec.variation,
                    position=spec.position,
                    payload_json=_dump_json(spec.payload),
                    status=TaskStatus.QUEUED.value,
                    attempt_count=0,
                    max_attempts=max_attempts,
                    created_at=now,
                    updated_at=now,
                ),
            )
            task_ids.append(task_id)
        session.flush()
        for offset, task_id in enumerate(task_ids):
            self._add_event(
                session=session,
                task_id=task_id,
                job_id=job_id,
                event_type="created",
                status_from=None,
                status_to=TaskStatus.QUEUED,
                details={"sequence": first_sequence + offset},
            )
        session.exec(
            sa_update(GenerationJob)
            .where(col(GenerationJob.job_id) == job_id)
            .values(
                total_tasks=col(GenerationJob.total_tasks) + len(task_ids),
                updated_at=now,
            ),
        )
        return task_ids

    def _bump_job_counters(
        self,
        *,
        session: Session,
        job_id: str,
        now: datetime,
        completed: int = 0,
        failed: int = 0,
    ) -> None:
        session.exec(
            sa_update(GenerationJob)
            .where(col(GenerationJob.job_id) == job_id)
            .values(
                completed_tasks=col(GenerationJob.completed_tasks) + completed,
                failed_tasks=col(GenerationJob.failed_tasks) + failed,
                updated_at=now,
            ),
        )

    def _get_job_row(self, *, session: Session, job_id: str) -> GenerationJob:
        row = session.exec(
            select(GenerationJob).where(
                GenerationJob.job_id == job_id,
                GenerationJob.user_id == self.user_id,
            ),
        ).one_or_none()
        if row is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        return row

    def _find_task_row(self, *, session: Session, task_id: str) -> GenerationTask | None:
        return session.exec(
            select(GenerationTask)
            .join(GenerationJob, col(GenerationJob.job_id) == col(GenerationTask.job_id))
            .where(
                GenerationTask.task_id == task_id,
                GenerationJob.user_id == self.user_id,
            ),
        ).one_or_none()

    def _get_task_row(self, *, session: Session, task_id: str) -> GenerationTask:
        row = self._find_task_row(session=session, task_id=task_id)
        if row is None:
            raise TaskNotFoundError(f"Task not found: {task_id}")
        return row

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
            GenerationTaskEvent(
                task_id=task_id,
                job_id=job_id,
                event_type=event_type,
                status_from=status_from.value if status_from is not None else None,
                status_to=status_to.value if status_to is not None else None,
                details_json=_dump_json(details) if details else None,
                created_at=to_db_datetime(utc_now()),
            ),
        )


def _transition_values(
    *,
    row: GenerationTask,
    status_to: TaskStatus,
    error: str | None,
    now: datetime,
) -> dict[str, object]:
    values: dict[str, object] = {
        "status": status_to.value,
        "attempt_count": row.attempt_count,
        "updated_at": now,
    }
    if status_to == TaskStatus.IN_PROGRESS:
        # Capped so an operator-granted attempt never pushes the count past the bound.
        values["attempt_count"] = min(row.attempt_count + 1, row.max_attempts)
        values["last_attempt_at"] = now
        values["next_attempt_at"] = None
    elif status_to == TaskStatus.COMPLETED:
        values["completed_at"] = now
        values["last_error"] = None
        values["failure_class"] = None
    else:
        values["last_error"] = error
    return values


def _dump_json(payload: object) -> str:
    return json.dumps(payload, ensure_ascii=False, sort_keys=True)


def _to_job_view(row: GenerationJob) -> JobView:
    return JobView(
        job_id=row.job_id,
        user_id=row.user_id,
        job_kind=row.job_kind,
        total_tasks=row.total_tasks,
        completed_tasks=row.completed_tasks,
        failed_tasks=row.failed_tasks,
        test_mode=row.test_mode,
        request=JobRequest.from_dict(json.loads(row.request_json)),
        retry_policy=json.loads(row.retry_policy_json),
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _to_task_view(row: GenerationTask) -> TaskView:
    return TaskView(
        task_id=row.task_id,
        job_id=row.job_id,
        sequence=row.sequence,
        task_kind=TaskKind(row.task_kind),
        category=row.category,
        variation=row.variation,
        position=row.position,
        payload=json.loads(row.payload_json),
        status=TaskStatus(row.status),
        attempt_count=row.attempt_count,
        max_attempts=row.max_attempts,
        manual_retry_count=row.manual_retry_count,
        last_error=row.last_error,
        failure_class=FailureClass(row.failure_class) if row.failure_class is not None else None,
        last_attempt_at=(
            to_utc_aware_datetime(row.last_attempt_at) if row.last_attempt_at is not None else None
        ),
        next_attempt_at=(
            to_utc_aware_datetime(row.next_attempt_at) if row.next_attempt_at is not None else None
        ),
        result=json.loads(row.result_json) if row.result_json else None,
        fallback_fields=tuple(row.fallback_fields.split(",")) if row.fallback_fields else (),
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
        completed_at=(
            to_utc_aware_datetime(row.completed_at) if row.completed_at is not None else None
        ),
    )
