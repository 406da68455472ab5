"""Controllers for orchestrator CLI commands."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from funnel_studio.config import Settings
from funnel_studio.orchestrator.backend import (
    EchoBackend,
    GenerationBackend,
    HttpGenerationBackend,
)
from funnel_studio.orchestrator.errors import InvalidInputError
from funnel_studio.orchestrator.models import JobRequest, ProgressSnapshot, TaskStatus
from funnel_studio.orchestrator.repository import OrchestratorRepository
from funnel_studio.orchestrator.retry_policy import RetryPolicy
from funnel_studio.orchestrator.services import (
    OrchestratorService,
    ProgressPoller,
    ResumeAccepted,
    ResumeCheck,
)
from funnel_studio.orchestrator.worker import CancellationToken, RetryCoordinator, RunSummary


@dataclass(slots=True)
class JobStartCommand:
    """CLI input for job creation."""

    db_path: Path | None
    job_id: str | None
    content: bool
    slides: int
    video_slide: bool
    video_source: str | None
    pins: int
    pin_weights: tuple[str, ...]
    test_mode: bool
    context: tuple[str, ...]
    run: bool = False


@dataclass(slots=True)
class JobRunCommand:
    """CLI input for one coordinator run."""

    db_path: Path | None
    job_id: str
    fail_on_task_failure: bool = False


@dataclass(slots=True)
class JobRefCommand:
    """CLI input for commands addressing one job."""

    db_path: Path | None
    job_id: str


@dataclass(slots=True)
class JobWatchCommand:
    """CLI input for progress polling."""

    db_path: Path | None
    job_id: str
    interval_seconds: float | None
    max_polls: int | None


@dataclass(slots=True)
class JobResumeCommand:
    """CLI input for resume, optionally running the coordinator right away."""

    db_path: Path | None
    job_id: str
    run: bool = False


@dataclass(slots=True)
class TaskRetryCommand:
    """CLI input for manual retry of a failed task."""

    db_path: Path | None
    job_id: str
    task_id: str
    run: bool = False


@dataclass(slots=True)
class JobTasksCommand:
    """CLI input for task listing."""

    db_path: Path | None
    job_id: str
    status: str | None


@dataclass(slots=True)
class TaskInspectCommand:
    """CLI input for task inspection."""

    db_path: Path | None
    task_id: str


@dataclass(slots=True)
class RetrySettingsCommand:
    """CLI input for retry policy display/update."""

    db_path: Path | None
    delays: tuple[float, ...] = ()
    max_attempts: int | None = None


class OrchestratorCliController:
    """Coordinates job, coordinator, and inspection CLI operations."""

    def start_job(self, command: JobStartCommand) -> list[str]:
        settings = _settings(command.db_path)
        request = JobRequest(
            content=command.content,
            slides=command.slides,
            video_slide=command.video_slide,
            video_source=command.video_source,
            pins=command.pins,
            pin_weights=_parse_weights(command.pin_weights),
            test_mode=command.test_mode,
            context=_parse_context(command.context),
        )
        with _service(settings) as service:
            accepted = service.start_job(command.job_id, request)
            lines = [
                ("Job accepted: " if accepted.created else "Job already exists: ")
                + f"job_id={accepted.job_id} tasks={accepted.total_tasks}",
            ]
            if command.run:
                lines.extend(_summary_lines(service.run_job(accepted.job_id, handle_signals=True)))
                lines.append(_progress_line(service.get_progress(accepted.job_id)))
        return lines

    def run_job(self, command: JobRunCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _service(settings) as service:
            summary = service.run_job(
                command.job_id,
                handle_signals=True,
                raise_on_failure=command.fail_on_task_failure,
            )
            progress = service.get_progress(command.job_id)
        return [*_summary_lines(summary), _progress_line(progress)]

    def progress(self, command: JobRefCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _service(settings) as service:
            progress = service.get_progress(command.job_id)
        return [_progress_line(progress)]

    def watch(self, command: JobWatchCommand, *, emit: Callable[[str], None]) -> list[str]:
        """Stream progress lines through `emit` until the job settles."""

        settings = _settings(command.db_path)
        interval = command.interval_seconds or settings.orchestrator.poll_interval_seconds
        with _repository(settings) as repository:
            service = OrchestratorService(
                repository=repository,
                default_policy=settings.retry.to_policy(),
                stale_attempt_seconds=settings.orchestrator.stale_attempt_seconds,
            )
            poller = ProgressPoller(
                service=service,
                job_id=command.job_id,
                interval_seconds=interval,
            )
            final = poller.subscribe(
                lambda check: emit(_progress_line(check.progress)),
                max_polls=command.max_polls,
            )
        return [f"Status: {final.classification.value}"]

    def status(self, command: JobRefCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _service(settings) as service:
            check = service.check_resumability(command.job_id)
        return _check_lines(check)

    def resume_job(self, command: JobResumeCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _service(settings) as service:
            accepted = service.resume_job(command.job_id)
            lines = _resume_lines(accepted)
            if command.run:
                lines.extend(_summary_lines(service.run_job(command.job_id, handle_signals=True)))
                lines.append(_progress_line(service.get_progress(command.job_id)))
        return lines

    def retry_task(self, command: TaskRetryCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _service(settings) as service:
            accepted = service.retry_task(command.job_id, command.task_id)
            lines = [f"Task re-queued: {command.task_id}", *_resume_lines(accepted)]
            if command.run:
                lines.extend(_summary_lines(service.run_job(command.job_id, handle_signals=True)))
        return lines

    def list_tasks(self, command: JobTasksCommand) -> list[str]:
        settings = _settings(command.db_path)
        status_filter = _parse_status(command.status)
        with _repository(settings) as repository:
            tasks = repository.list_by_job(job_id=command.job_id, status=status_filter)

        lines = [f"Tasks: {len(tasks)}"]
        for task in tasks:
            position = f" position={task.position}" if task.position is not None else ""
            lines.append(
                f"  #{task.sequence} {task.task_id} kind={task.task_kind.value} "
                f"category={task.category} variation={task.variation}{position} "
                f"status={task.status.value} attempt={task.attempt_count}/{task.max_attempts}",
            )
        return lines

    def inspect_task(self, command: TaskInspectCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            details = repository.get_task_details(task_id=command.task_id)
        if details is None:
            return [f"Task not found: {command.task_id}"]

        task = details.task
        lines = [
            f"Task: {task.task_id}",
            f"Job: {task.job_id}",
            f"Kind: {task.task_kind.value}",
            f"Category: {task.category} (variation {task.variation})",
            f"Status: {task.status.value}",
            f"Attempt: {task.attempt_count}/{task.max_attempts}",
            f"Manual retries: {task.manual_retry_count}",
            f"Failure class: {task.failure_class.value if task.failure_class else '-'}",
            f"Error: {task.last_error or '-'}",
            f"Next attempt: {task.next_attempt_at.isoformat() if task.next_attempt_at else '-'}",
            f"Fallback fields: {', '.join(task.fallback_fields) or '-'}",
            f"Events: {len(details.events)}",
        ]
        for event in details.events:
            lines.append(
                f"  {event.created_at.isoformat()} {event.event_type} "
                f"{event.status_from.value if event.status_from else '-'} -> "
                f"{event.status_to.value if event.status_to else '-'}",
            )
        return lines

    def show_retry_policy(self, command: RetrySettingsCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            policy = repository.load_retry_policy(default=settings.retry.to_policy())
        return _policy_lines(policy)

    def set_retry_policy(self, command: RetrySettingsCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            current = repository.load_retry_policy(default=settings.retry.to_policy())
            policy = RetryPolicy(
                delays=command.delays or current.delays,
                max_attempts=(
                    command.max_attempts
                    if command.max_attempts is not None
                    else current.max_attempts
                ),
            )
            repository.save_retry_policy(policy)
        return ["Retry policy saved (applies to jobs started from now on).", *_policy_lines(policy)]


def _settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


def _parse_status(value: str | None) -> TaskStatus | None:
    if value is None:
        return None
    return TaskStatus(value.strip().lower())


def _parse_weights(values: tuple[str, ...]) -> tuple[tuple[str, float], ...] | None:
    if not values:
        return None
    weights: list[tuple[str, float]] = []
    for value in values:
        if "=" not in value:
            raise InvalidInputError(
                f"Invalid pin weight: {value!r}. Expected format '<category>=<weight>'.",
            )
        category, weight_raw = value.rsplit("=", 1)
        try:
            weight = float(weight_raw)
        except ValueError as error:
            raise InvalidInputError(
                f"Invalid pin weight for {category!r}: {weight_raw!r}",
            ) from error
        weights.append((category.strip(), weight))
    return tuple(weights)


def _parse_context(values: tuple[str, ...]) -> dict[str, str]:
    context: dict[str, str] = {}
    for value in values:
        if "=" not in value:
            raise InvalidInputError(
                f"Invalid context entry: {value!r}. Expected format '<key>=<value>'.",
            )
        key, item = value.split("=", 1)
        context[key.strip()] = item.strip()
    return context


def _progress_line(progress: ProgressSnapshot) -> str:
    return (
        f"Progress: {progress.completed}/{progress.total} ({progress.percentage}%) "
        f"in_progress={progress.in_progress} failed={progress.failed} "
        f"pending={progress.pending}"
    )


def _check_lines(check: ResumeCheck) -> list[str]:
    return [
        f"Job: {check.job_id}",
        f"Status: {check.classification.value}",
        f"Resumable: {'yes' if check.resumable else 'no'}",
        _progress_line(check.progress),
    ]


def _resume_lines(accepted: ResumeAccepted) -> list[str]:
    lines = [f"Resume accepted: job_id={accepted.job_id} queued={len(accepted.task_ids)}"]
    if accepted.recovered_task_ids:
        lines.append(f"Recovered stale tasks: {len(accepted.recovered_task_ids)}")
    return lines


def _summary_lines(summary: RunSummary) -> list[str]:
    lines = [
        "Run summary: "
        f"processed={summary.processed} succeeded={summary.succeeded} "
        f"retried={summary.retried} failed={summary.failed} fallbacks={summary.fallbacks}",
    ]
    if summary.recovered_stale:
        lines.append(f"Recovered stale tasks: {summary.recovered_stale}")
    if summary.blocked_by_in_flight:
        lines.append("Stopped: another attempt is still in flight; run again once it settles.")
    if summary.window_exhausted:
        lines.append("Stopped: execution window exhausted; resume to continue.")
    if summary.stopped_on_failure:
        lines.append("Stopped: a task failed; use `jobs retry` after fixing the cause.")
    if summary.cancelled:
        lines.append("Stopped: cancelled; remaining tasks stay queued.")
    return lines


def _policy_lines(policy: RetryPolicy) -> list[str]:
    lines = [f"Max attempts: {policy.max_attempts}"]
    for attempt in range(2, policy.max_attempts + 1):
        lines.append(f"  attempt {attempt}: wait {policy.delay_before_attempt(attempt):g}s")
    return lines


@contextmanager
def _backend(settings: Settings) -> Iterator[GenerationBackend]:
    if settings.backend.kind == "http" and settings.backend.base_url:
        http_backend = HttpGenerationBackend(
            base_url=settings.backend.base_url,
            api_key=settings.backend.api_key,
            timeout_seconds=settings.orchestrator.request_timeout_seconds,
        )
        try:
            yield http_backend
        finally:
            http_backend.close()
        return
    yield EchoBackend()


@contextmanager
def _service(settings: Settings) -> Iterator[OrchestratorService]:
    with _repository(settings) as repository, _backend(settings) as backend:
        coordinator = RetryCoordinator(
            repository=repository,
            backend=backend,
            request_timeout_seconds=settings.orchestrator.request_timeout_seconds,
            execution_window_seconds=settings.orchestrator.execution_window_seconds,
            stale_attempt_seconds=settings.orchestrator.stale_attempt_seconds,
            stop_on_failure=settings.orchestrator.stop_on_failure,
            token=CancellationToken(),
        )
        yield OrchestratorService(
            repository=repository,
            default_policy=settings.retry.to_policy(),
            coordinator=coordinator,
            stale_attempt_seconds=settings.orchestrator.stale_attempt_seconds,
        )


@contextmanager
def _repository(settings: Settings) -> Iterator[OrchestratorRepository]:
    repository = OrchestratorRepository(
        db_path=settings.db_path,
        user_id=settings.user_context.user_id,
        user_name=settings.user_context.user_name,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
