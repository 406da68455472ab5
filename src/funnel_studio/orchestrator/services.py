"""Use-case services exposed to callers of the orchestrator."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from uuid import uuid4

from funnel_studio.orchestrator.decomposer import decompose
from funnel_studio.orchestrator.errors import TaskFailedError, TaskNotFoundError
from funnel_studio.orchestrator.models import (
    JobClassification,
    JobRequest,
    ProgressSnapshot,
)
from funnel_studio.orchestrator.progress import compute_progress
from funnel_studio.orchestrator.repository import OrchestratorRepository
from funnel_studio.orchestrator.resume import classify_job, is_resumable, select_resubmittable
from funnel_studio.orchestrator.retry_policy import RetryPolicy
from funnel_studio.orchestrator.worker import CancellationToken, RetryCoordinator, RunSummary
from funnel_studio.storage.common import utc_now

logger = logging.getLogger(__name__)

_TERMINAL_CLASSIFICATIONS = frozenset({JobClassification.COMPLETED, JobClassification.FAILED})


@dataclass(slots=True)
class JobAccepted:
    job_id: str
    total_tasks: int
    created: bool


@dataclass(slots=True)
class ResumeCheck:
    job_id: str
    classification: JobClassification
    progress: ProgressSnapshot

    @property
    def resumable(self) -> bool:
        return is_resumable(self.classification)


@dataclass(slots=True)
class ResumeAccepted:
    """Tasks handed back to the coordinator, in the order it will run them."""

    job_id: str
    task_ids: tuple[str, ...]
    recovered_task_ids: tuple[str, ...] = ()


class OrchestratorService:
    """Start, observe, resume, and retry generation jobs."""

    def __init__(
        self,
        *,
        repository: OrchestratorRepository,
        default_policy: RetryPolicy,
        coordinator: RetryCoordinator | None = None,
        stale_attempt_seconds: int = 900,
    ) -> None:
        self.repository = repository
        self.default_policy = default_policy
        self.coordinator = coordinator
        self.stale_attempt_seconds = stale_attempt_seconds

    def start_job(self, job_id: str | None, request: JobRequest) -> JobAccepted:
        """Plan and persist all tasks as queued; a repeated job id is accepted as-is."""

        resolved_job_id = job_id or str(uuid4())
        existing = self.repository.get_job(job_id=resolved_job_id)
        if existing is not None:
            logger.info("Job %s already exists; start request ignored", resolved_job_id)
            return JobAccepted(
                job_id=resolved_job_id,
                total_tasks=existing.total_tasks,
                created=False,
            )

        specs = decompose(request)
        policy = self.repository.load_retry_policy(default=self.default_policy)
        job = self.repository.create_job(
            job_id=resolved_job_id,
            request=request,
            policy=policy,
            specs=specs,
        )
        return JobAccepted(job_id=job.job_id, total_tasks=job.total_tasks, created=True)

    def get_progress(self, job_id: str) -> ProgressSnapshot:
        return compute_progress(self.repository.list_by_job(job_id=job_id))

    def check_resumability(self, job_id: str) -> ResumeCheck:
        tasks = self.repository.list_by_job(job_id=job_id)
        return ResumeCheck(
            job_id=job_id,
            classification=classify_job(tasks),
            progress=compute_progress(tasks),
        )

    def resume_job(self, job_id: str) -> ResumeAccepted:
        """Release stale in-progress tasks and list the queued ones to re-submit."""

        recovered = self.repository.recover_stale_tasks(
            job_id=job_id,
            stale_before=utc_now() - timedelta(seconds=self.stale_attempt_seconds),
        )
        selected = select_resubmittable(self.repository.list_by_job(job_id=job_id))
        logger.info("Job %s resume accepted with %d queued task(s)", job_id, len(selected))
        return ResumeAccepted(
            job_id=job_id,
            task_ids=tuple(task.task_id for task in selected),
            recovered_task_ids=tuple(recovered),
        )

    def retry_task(self, job_id: str, task_id: str) -> ResumeAccepted:
        """Operator reset of one failed task, then resume of its job."""

        task = self.repository.get_task(task_id=task_id)
        if task is None or task.job_id != job_id:
            raise TaskNotFoundError(f"Task {task_id} not found in job {job_id}")
        self.repository.reset_to_queued(task_id=task_id)
        return self.resume_job(job_id)

    def run_job(
        self,
        job_id: str,
        *,
        handle_signals: bool = False,
        raise_on_failure: bool = False,
    ) -> RunSummary:
        """Drive the coordinator for one execution window."""

        if self.coordinator is None:
            raise RuntimeError("OrchestratorService was built without a coordinator.")
        summary = self.coordinator.run_job(job_id, handle_signals=handle_signals)
        if raise_on_failure and summary.failed_task_ids:
            failed_task_id = summary.failed_task_ids[0]
            task = self.repository.get_task(task_id=failed_task_id)
            raise TaskFailedError(failed_task_id, task.last_error if task is not None else None)
        return summary


class ProgressPoller:
    """Delivers a fresh snapshot to a subscriber at a fixed interval.

    Stopping the poller is purely observational: it never touches queued
    tasks or the coordinator.
    """

    def __init__(
        self,
        *,
        service: OrchestratorService,
        job_id: str,
        interval_seconds: float = 2.0,
        token: CancellationToken | None = None,
    ) -> None:
        self.service = service
        self.job_id = job_id
        self.interval_seconds = interval_seconds
        self.token = token or CancellationToken()

    def subscribe(
        self,
        callback: Callable[[ResumeCheck], None],
        *,
        max_polls: int | None = None,
    ) -> ResumeCheck:
        """Poll until the job is terminal, the token is cancelled, or `max_polls` is reached."""

        polls = 0
        while True:
            check = self.service.check_resumability(self.job_id)
            callback(check)
            polls += 1
            if check.classification in _TERMINAL_CLASSIFICATIONS:
                return check
            if max_polls is not None and polls >= max_polls:
                return check
            if self.token.wait(self.interval_seconds):
                return check
