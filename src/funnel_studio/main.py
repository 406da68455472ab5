"""CLI entrypoint for funnel-studio."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import rich_click as click
from rich.logging import RichHandler

from funnel_studio import __version__
from funnel_studio.orchestrator.controllers import (
    JobRefCommand,
    JobResumeCommand,
    JobRunCommand,
    JobStartCommand,
    JobTasksCommand,
    JobWatchCommand,
    OrchestratorCliController,
    RetrySettingsCommand,
    TaskInspectCommand,
    TaskRetryCommand,
)
from funnel_studio.orchestrator.decomposer import SLIDE_TYPES
from funnel_studio.orchestrator.errors import InvalidTransitionError, TaskFailedError

click.rich_click.TEXT_MARKUP = "markdown"
ORCHESTRATOR_CONTROLLER = OrchestratorCliController()


@click.group()
@click.version_option(version=__version__, prog_name="funnel-studio")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
def funnel_studio(verbose: bool) -> None:
    """Generation job orchestrator CLI."""

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=verbose)],
    )


@funnel_studio.group()
def jobs() -> None:
    """Generation job commands."""


@jobs.command("start")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--job-id", default=None, help="Job id. Generated when omitted.")
@click.option("--content/--no-content", default=False, show_default=True, help="Funnel content.")
@click.option(
    "--slides",
    type=click.IntRange(min=0, max=len(SLIDE_TYPES)),
    default=0,
    show_default=True,
    help="Number of listing slides.",
)
@click.option("--video-slide", is_flag=True, default=False, help="Convert one slide to video.")
@click.option(
    "--video-source",
    type=click.Choice(list(SLIDE_TYPES)),
    default=None,
    help="Slide type converted to video (default: the first slide).",
)
@click.option(
    "--pins",
    type=click.IntRange(min=0),
    default=0,
    show_default=True,
    help="Number of pins.",
)
@click.option(
    "--pin-weight",
    "pin_weights",
    multiple=True,
    help="Weighted pin category as `category=weight`. Can be repeated; order matters.",
)
@click.option("--test-mode", is_flag=True, default=False, help="One task per enabled kind.")
@click.option(
    "--context",
    "context",
    multiple=True,
    help="Generation parameter as `key=value` (e.g. `product_title=...`). Can be repeated.",
)
@click.option("--run", is_flag=True, default=False, help="Run the coordinator right away.")
def jobs_start(  # noqa: PLR0913
    db_path: Path | None,
    job_id: str | None,
    content: bool,
    slides: int,
    video_slide: bool,
    video_source: str | None,
    pins: int,
    pin_weights: tuple[str, ...],
    test_mode: bool,
    context: tuple[str, ...],
    run: bool,
) -> None:
    """Plan a job and store its tasks as queued."""

    with _cli_errors():
        _emit_lines(
            ORCHESTRATOR_CONTROLLER.start_job(
                JobStartCommand(
                    db_path=db_path,
                    job_id=job_id,
                    content=content,
                    slides=slides,
                    video_slide=video_slide,
                    video_source=video_source,
                    pins=pins,
                    pin_weights=pin_weights,
                    test_mode=test_mode,
                    context=context,
                    run=run,
                ),
            ),
        )


@jobs.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--job-id", required=True, help="Job id.")
@click.option(
    "--fail-on-task-failure",
    is_flag=True,
    default=False,
    help="Exit with an error when a task ends up failed.",
)
def jobs_run(db_path: Path | None, job_id: str, fail_on_task_failure: bool) -> None:
    """Execute queued tasks for one execution window."""

    with _cli_errors():
        _emit_lines(
            ORCHESTRATOR_CONTROLLER.run_job(
                JobRunCommand(
                    db_path=db_path,
                    job_id=job_id,
                    fail_on_task_failure=fail_on_task_failure,
                ),
            ),
        )


@jobs.command("progress")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--job-id", required=True, help="Job id.")
def jobs_progress(db_path: Path | None, job_id: str) -> None:
    """Print one progress snapshot."""

    with _cli_errors():
        _emit_lines(ORCHESTRATOR_CONTROLLER.progress(JobRefCommand(db_path=db_path, job_id=job_id)))


@jobs.command("watch")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--job-id", required=True, help="Job id.")
@click.option(
    "--interval",
    "interval_seconds",
    type=click.FloatRange(min=0.1),
    default=None,
    help="Seconds between polls (default: FUNNEL_STUDIO_POLL_INTERVAL_SECONDS).",
)
@click.option(
    "--max-polls",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after this many polls.",
)
def jobs_watch(
    db_path: Path | None,
    job_id: str,
    interval_seconds: float | None,
    max_polls: int | None,
) -> None:
    """Poll progress until the job completes or fails."""

    with _cli_errors():
        _emit_lines(
            ORCHESTRATOR_CONTROLLER.watch(
                JobWatchCommand(
                    db_path=db_path,
                    job_id=job_id,
                    interval_seconds=interval_seconds,
                    max_polls=max_polls,
                ),
                emit=click.echo,
            ),
        )


@jobs.command("status")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--job-id", required=True, help="Job id.")
def jobs_status(db_path: Path | None, job_id: str) -> None:
    """Classify a job from its stored tasks and report whether it can be resumed."""

    with _cli_errors():
        _emit_lines(ORCHESTRATOR_CONTROLLER.status(JobRefCommand(db_path=db_path, job_id=job_id)))


@jobs.command("resume")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--job-id", required=True, help="Job id.")
@click.option("--run", is_flag=True, default=False, help="Run the coordinator right away.")
def jobs_resume(db_path: Path | None, job_id: str, run: bool) -> None:
    """Re-submit the job's incomplete tasks."""

    with _cli_errors():
        _emit_lines(
            ORCHESTRATOR_CONTROLLER.resume_job(
                JobResumeCommand(db_path=db_path, job_id=job_id, run=run),
            ),
        )


@jobs.command("retry")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--job-id", required=True, help="Job id.")
@click.option("--task-id", required=True, help="Failed task id.")
@click.option("--run", is_flag=True, default=False, help="Run the coordinator right away.")
def jobs_retry(db_path: Path | None, job_id: str, task_id: str, run: bool) -> None:
    """Manually re-queue a failed task and resume its job."""

    with _cli_errors():
        _emit_lines(
            ORCHESTRATOR_CONTROLLER.retry_task(
                TaskRetryCommand(db_path=db_path, job_id=job_id, task_id=task_id, run=run),
            ),
        )


@jobs.command("tasks")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--job-id", required=True, help="Job id.")
@click.option(
    "--status",
    type=click.Choice(["queued", "in_progress", "completed", "failed"], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
def jobs_tasks(db_path: Path | None, job_id: str, status: str | None) -> None:
    """List a job's tasks in execution order."""

    with _cli_errors():
        _emit_lines(
            ORCHESTRATOR_CONTROLLER.list_tasks(
                JobTasksCommand(db_path=db_path, job_id=job_id, status=status),
            ),
        )


@jobs.command("inspect")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Task id.")
def jobs_inspect(db_path: Path | None, task_id: str) -> None:
    """Inspect one task with event history."""

    with _cli_errors():
        _emit_lines(
            ORCHESTRATOR_CONTROLLER.inspect_task(
                TaskInspectCommand(db_path=db_path, task_id=task_id),
            ),
        )


@funnel_studio.group()
def settings() -> None:
    """Administrator settings."""


@settings.command("retry-show")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def settings_retry_show(db_path: Path | None) -> None:
    """Show the retry policy new jobs will snapshot."""

    with _cli_errors():
        _emit_lines(
            ORCHESTRATOR_CONTROLLER.show_retry_policy(RetrySettingsCommand(db_path=db_path)),
        )


@settings.command("retry-set")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--delay",
    "delays",
    type=click.FloatRange(min=0),
    multiple=True,
    help="Wait before attempt 2, 3, ... in seconds. Repeat in attempt order.",
)
@click.option(
    "--max-attempts",
    type=click.IntRange(min=1),
    default=None,
    help="Attempt bound per task.",
)
def settings_retry_set(
    db_path: Path | None,
    delays: tuple[float, ...],
    max_attempts: int | None,
) -> None:
    """Update the retry policy for jobs started from now on."""

    if not delays and max_attempts is None:
        raise click.UsageError("Pass at least one --delay or --max-attempts.")
    with _cli_errors():
        _emit_lines(
            ORCHESTRATOR_CONTROLLER.set_retry_policy(
                RetrySettingsCommand(db_path=db_path, delays=delays, max_attempts=max_attempts),
            ),
        )


@contextmanager
def _cli_errors() -> Iterator[None]:
    try:
        yield
    except (ValueError, LookupError, InvalidTransitionError, TaskFailedError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    funnel_studio()
