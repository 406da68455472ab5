"""Retry coordinator that executes one job's tasks against a generation backend."""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from funnel_studio.orchestrator.backend import GenerationBackend, GenerationRequest
from funnel_studio.orchestrator.errors import (
    JobNotFoundError,
    MalformedOutputError,
    TaskNotFoundError,
    TransientCollaboratorError,
)
from funnel_studio.orchestrator.failure_classifier import classify_collaborator_failure
from funnel_studio.orchestrator.models import TaskStatus, TaskView
from funnel_studio.orchestrator.output_fallback import FallbackResult, apply_output_fallbacks
from funnel_studio.orchestrator.repository import OrchestratorRepository
from funnel_studio.orchestrator.resume import select_resubmittable
from funnel_studio.orchestrator.retry_policy import RetryPolicy
from funnel_studio.storage.common import to_utc_aware_datetime, utc_now

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative stop flag shared by retry sleeps, pollers, and signal handlers."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
        self._event.set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to `seconds`; True when woken by cancellation."""

        if seconds <= 0:
            return self._event.is_set()
        return self._event.wait(timeout=seconds)


@dataclass(slots=True)
class TaskOutcome:
    """Result of one `execute_task` call."""

    task_id: str
    status: TaskStatus
    error: str | None = None
    fallback_fields: tuple[str, ...] = ()
    cancelled: bool = False

    @property
    def retried(self) -> bool:
        return self.status == TaskStatus.QUEUED and not self.cancelled


@dataclass(slots=True)
class RunSummary:
    """Aggregate coordinator counters for CLI reporting."""

    job_id: str
    processed: int = 0
    succeeded: int = 0
    retried: int = 0
    failed: int = 0
    fallbacks: int = 0
    recovered_stale: int = 0
    cancelled: bool = False
    window_exhausted: bool = False
    stopped_on_failure: bool = False
    blocked_by_in_flight: bool = False
    failed_task_ids: list[str] = field(default_factory=list)

    def record(self, outcome: TaskOutcome) -> None:
        if outcome.cancelled:
            self.cancelled = True
            return
        self.processed += 1
        if outcome.status == TaskStatus.COMPLETED:
            self.succeeded += 1
            if outcome.fallback_fields:
                self.fallbacks += 1
        elif outcome.status == TaskStatus.FAILED:
            self.failed += 1
            self.failed_task_ids.append(outcome.task_id)
        elif outcome.retried:
            self.retried += 1


class RetryCoordinator:
    """Runs a job's queued tasks in sequence order with bounded, delayed re-attempts.

    Waits are always re-derived from the stored `next_attempt_at`, so a process
    that dies mid-delay resumes with the remaining wait rather than restarting it.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: OrchestratorRepository,
        backend: GenerationBackend,
        request_timeout_seconds: float = 60.0,
        execution_window_seconds: float | None = None,
        stale_attempt_seconds: int = 900,
        stop_on_failure: bool = True,
        token: CancellationToken | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.repository = repository
        self.backend = backend
        self.request_timeout_seconds = request_timeout_seconds
        self.execution_window_seconds = execution_window_seconds
        self.stale_attempt_seconds = stale_attempt_seconds
        self.stop_on_failure = stop_on_failure
        self.token = token or CancellationToken()
        self._clock = clock
        self._window_deadline: float | None = None

    def run_job(self, job_id: str, *, handle_signals: bool = False) -> RunSummary:
        """Execute queued tasks until the job settles, the window closes, or a stop is requested."""

        job = self.repository.get_job(job_id=job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        policy = RetryPolicy.from_dict(job.retry_policy)
        summary = RunSummary(job_id=job_id)
        self._window_deadline = (
            self._clock() + self.execution_window_seconds
            if self.execution_window_seconds is not None
            else None
        )

        with self._signal_handlers(enabled=handle_signals):
            summary.recovered_stale = len(self._recover_stale_tasks(job_id))
            while True:
                if self.token.cancelled:
                    summary.cancelled = True
                    break
                tasks = self.repository.list_by_job(job_id=job_id)
                in_flight = [
                    task.task_id for task in tasks if task.status == TaskStatus.IN_PROGRESS
                ]
                if in_flight:
                    logger.info(
                        "Job %s has an attempt in flight (%s); leaving queued tasks for later",
                        job_id,
                        in_flight[0],
                    )
                    summary.blocked_by_in_flight = True
                    break
                pending = select_resubmittable(tasks)
                if not pending:
                    break
                task = pending[0]
                if not self._fits_window(task):
                    logger.info(
                        "Execution window exhausted for job %s; %d task(s) left queued",
                        job_id,
                        len(pending),
                    )
                    summary.window_exhausted = True
                    break

                outcome = self.execute_task(task, policy)
                summary.record(outcome)
                if outcome.cancelled:
                    break
                if outcome.status == TaskStatus.FAILED and self.stop_on_failure:
                    summary.stopped_on_failure = True
                    break

        logger.info(
            "Job %s run finished: processed=%d succeeded=%d retried=%d failed=%d",
            job_id,
            summary.processed,
            summary.succeeded,
            summary.retried,
            summary.failed,
        )
        return summary

    def execute_task(self, task: TaskView, policy: RetryPolicy) -> TaskOutcome:
        """Run one attempt of a queued task, waiting out its scheduled delay first."""

        wait_seconds = _seconds_until(task.next_attempt_at)
        if wait_seconds > 0:
            logger.info(
                "Task %s waiting %.1fs before attempt %d",
                task.task_id,
                wait_seconds,
                task.attempt_count + 1,
            )
        if self.token.wait(wait_seconds) or self.token.cancelled:
            logger.info("Task %s left queued: %s", task.task_id, self.token.reason)
            return TaskOutcome(task_id=task.task_id, status=TaskStatus.QUEUED, cancelled=True)

        self.repository.set_status(task_id=task.task_id, status=TaskStatus.IN_PROGRESS)
        claimed = self.repository.get_task(task_id=task.task_id)
        if claimed is None:  # pragma: no cover - deleted with its job mid-run
            raise TaskNotFoundError(f"Task not found: {task.task_id}")

        try:
            recovered = self._generate(claimed)
        except TransientCollaboratorError as error:
            return self._handle_retry_or_fail(task=claimed, policy=policy, error=error)

        self.repository.complete_task(
            task_id=claimed.task_id,
            result=recovered.output,
            fallback_fields=recovered.fallback_fields,
        )
        if recovered.fallback_fields:
            logger.info(
                "Task %s completed with fallback values for: %s",
                claimed.task_id,
                ", ".join(recovered.fallback_fields),
            )
        return TaskOutcome(
            task_id=claimed.task_id,
            status=TaskStatus.COMPLETED,
            fallback_fields=recovered.fallback_fields,
        )

    def _generate(self, task: TaskView) -> FallbackResult:
        request = GenerationRequest.from_task(task, timeout_seconds=self.request_timeout_seconds)
        try:
            output = self.backend.generate(request).output
        except MalformedOutputError as error:
            logger.warning("Task %s returned malformed output: %s", task.task_id, error)
            output = error.output
            self.repository.add_task_event(
                task_id=task.task_id,
                event_type="malformed_output",
                details={"error": str(error), "received_fields": sorted(output)},
            )
        return apply_output_fallbacks(task=task, output=output)

    def _handle_retry_or_fail(
        self,
        *,
        task: TaskView,
        policy: RetryPolicy,
        error: TransientCollaboratorError,
    ) -> TaskOutcome:
        message = str(error)
        classification = classify_collaborator_failure(message, status_code=error.status_code)
        details = classification.to_event_details()

        if task.attempt_count < task.max_attempts:
            delay_seconds = policy.delay_before_attempt(task.attempt_count + 1)
            self.repository.schedule_retry(
                task_id=task.task_id,
                error=message,
                failure_class=classification.failure_class,
                next_attempt_at=utc_now() + timedelta(seconds=delay_seconds),
                details={**details, "delay_seconds": delay_seconds},
            )
            logger.warning(
                "Task %s attempt %d/%d failed (%s); retrying in %ss: %s",
                task.task_id,
                task.attempt_count,
                task.max_attempts,
                classification.failure_class.value,
                delay_seconds,
                message,
            )
            return TaskOutcome(task_id=task.task_id, status=TaskStatus.QUEUED, error=message)

        self.repository.fail_task(
            task_id=task.task_id,
            error=message,
            failure_class=classification.failure_class,
            details=details,
        )
        logger.error(
            "Task %s failed after %d attempts (%s): %s",
            task.task_id,
            task.attempt_count,
            classification.failure_class.value,
            message,
        )
        return TaskOutcome(task_id=task.task_id, status=TaskStatus.FAILED, error=message)

    def _recover_stale_tasks(self, job_id: str) -> list[str]:
        if self.stale_attempt_seconds <= 0:
            return []
        return self.repository.recover_stale_tasks(
            job_id=job_id,
            stale_before=utc_now() - timedelta(seconds=self.stale_attempt_seconds),
        )

    def _fits_window(self, task: TaskView) -> bool:
        if self._window_deadline is None:
            return True
        remaining = self._window_deadline - self._clock()
        if remaining <= 0:
            return False
        # The wait and the bounded backend call must both finish inside the window.
        return _seconds_until(task.next_attempt_at) + self.request_timeout_seconds <= remaining

    @contextmanager
    def _signal_handlers(self, *, enabled: bool) -> Iterator[None]:
        if not enabled or not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            logger.warning("Received %s; stopping after the current attempt", name)
            self.token.cancel(reason=name)

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            yield
            return
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)


def _seconds_until(moment: datetime | None) -> float:
    if moment is None:
        return 0.0
    return max(0.0, (to_utc_aware_datetime(moment) - utc_now()).total_seconds())
