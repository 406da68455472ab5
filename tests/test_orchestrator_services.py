from __future__ import annotations

import allure
import pytest

from funnel_studio.orchestrator.backend import EchoBackend, GenerationRequest, GenerationResult
from funnel_studio.orchestrator.errors import (
    InvalidInputError,
    JobNotFoundError,
    TaskFailedError,
    TaskNotFoundError,
    TransientCollaboratorError,
)
from funnel_studio.orchestrator.models import JobClassification, JobRequest, TaskStatus
from funnel_studio.orchestrator.repository import OrchestratorRepository
from funnel_studio.orchestrator.retry_policy import RetryPolicy
from funnel_studio.orchestrator.services import OrchestratorService, ProgressPoller, ResumeCheck
from funnel_studio.orchestrator.worker import CancellationToken, RetryCoordinator

pytestmark = [
    allure.epic("Task Execution"),
    allure.feature("Orchestrator Service"),
]


class RecordingBackend:
    def __init__(self, *, failures: int = 0) -> None:
        self.failures = failures
        self.task_ids: list[str] = []
        self._echo = EchoBackend()

    def generate(self, request: GenerationRequest) -> GenerationResult:
        self.task_ids.append(request.task_id)
        if self.failures:
            self.failures -= 1
            raise TransientCollaboratorError("Generation backend returned HTTP 500: boom")
        return self._echo.generate(request)


def _service(
    repository: OrchestratorRepository,
    backend: RecordingBackend | None = None,
    *,
    policy: RetryPolicy | None = None,
) -> OrchestratorService:
    coordinator = RetryCoordinator(
        repository=repository,
        backend=backend or RecordingBackend(),
        stale_attempt_seconds=0,
    )
    return OrchestratorService(
        repository=repository,
        default_policy=policy or RetryPolicy(delays=(0,), max_attempts=2),
        coordinator=coordinator,
    )


def _pins_request(pins: int) -> JobRequest:
    return JobRequest(pins=pins, pin_weights=(("quote", 1), ("desk", 1)))


def test_start_job_is_idempotent_per_job_id(repository: OrchestratorRepository) -> None:
    service = _service(repository)

    first = service.start_job("job-1", _pins_request(4))
    second = service.start_job("job-1", _pins_request(9))

    assert (first.created, first.total_tasks) == (True, 4)
    assert (second.created, second.total_tasks) == (False, 4)
    assert len(repository.list_by_job(job_id="job-1")) == 4


def test_start_job_generates_id_when_missing(repository: OrchestratorRepository) -> None:
    accepted = _service(repository).start_job(None, _pins_request(2))

    assert accepted.created is True
    assert repository.get_job(job_id=accepted.job_id) is not None


def test_invalid_request_creates_no_job(repository: OrchestratorRepository) -> None:
    service = _service(repository)

    with pytest.raises(InvalidInputError):
        service.start_job("job-1", JobRequest())

    assert repository.get_job(job_id="job-1") is None


def test_policy_change_does_not_affect_started_job(repository: OrchestratorRepository) -> None:
    service = _service(repository)
    service.start_job("job-1", _pins_request(2))

    repository.save_retry_policy(RetryPolicy(delays=(9,), max_attempts=5))
    service.start_job("job-2", _pins_request(2))

    job_1 = repository.get_job(job_id="job-1")
    job_2 = repository.get_job(job_id="job-2")
    assert job_1 is not None
    assert job_2 is not None
    assert job_1.retry_policy == {"delays": [0], "max_attempts": 2}
    assert job_2.retry_policy["max_attempts"] == 5
    assert {task.max_attempts for task in repository.list_by_job(job_id="job-1")} == {2}


def test_progress_and_classification_follow_task_state(
    repository: OrchestratorRepository,
) -> None:
    service = _service(repository)
    service.start_job("job-1", _pins_request(4))

    check = service.check_resumability("job-1")
    assert check.classification == JobClassification.NOT_STARTED
    assert check.resumable is True

    service.run_job("job-1")

    progress = service.get_progress("job-1")
    assert (progress.completed, progress.total, progress.percentage) == (4, 4, 100)
    final = service.check_resumability("job-1")
    assert final.classification == JobClassification.COMPLETED
    assert final.resumable is False


def test_resume_resubmits_only_unfinished_tasks(repository: OrchestratorRepository) -> None:
    service = _service(repository)
    service.start_job("job-1", _pins_request(10))
    tasks = repository.list_by_job(job_id="job-1")
    for task in tasks[:5]:
        repository.set_status(task_id=task.task_id, status=TaskStatus.IN_PROGRESS)
        repository.complete_task(task_id=task.task_id, result={"image_url": "done"})

    check = service.check_resumability("job-1")
    accepted = service.resume_job("job-1")

    assert check.classification == JobClassification.INTERRUPTED
    assert check.progress.percentage == 50
    assert list(accepted.task_ids) == [task.task_id for task in tasks[5:]]

    backend = RecordingBackend()
    _service(repository, backend).run_job("job-1")

    assert backend.task_ids == list(accepted.task_ids)
    assert service.get_progress("job-1").percentage == 100


def test_retry_task_requeues_failed_task(repository: OrchestratorRepository) -> None:
    failing = RecordingBackend(failures=2)
    service = _service(repository, failing)
    service.start_job("job-1", _pins_request(2))

    with pytest.raises(TaskFailedError, match="HTTP 500"):
        service.run_job("job-1", raise_on_failure=True)

    failed_task = repository.list_by_job(job_id="job-1", status=TaskStatus.FAILED)[0]
    assert service.check_resumability("job-1").classification == JobClassification.FAILED

    accepted = service.retry_task("job-1", failed_task.task_id)
    assert accepted.task_ids[0] == failed_task.task_id

    summary = service.run_job("job-1")
    assert summary.succeeded == 2
    assert service.check_resumability("job-1").classification == JobClassification.COMPLETED


def test_retry_task_rejects_task_from_other_job(repository: OrchestratorRepository) -> None:
    service = _service(repository)
    service.start_job("job-1", _pins_request(1))
    service.start_job("job-2", _pins_request(1))
    other_task = repository.list_by_job(job_id="job-2")[0]

    with pytest.raises(TaskNotFoundError):
        service.retry_task("job-1", other_task.task_id)


def test_unknown_job_raises(repository: OrchestratorRepository) -> None:
    service = _service(repository)

    with pytest.raises(JobNotFoundError):
        service.get_progress("missing")
    with pytest.raises(JobNotFoundError):
        service.resume_job("missing")


def test_run_job_requires_coordinator(repository: OrchestratorRepository) -> None:
    service = OrchestratorService(repository=repository, default_policy=RetryPolicy())

    with pytest.raises(RuntimeError, match="without a coordinator"):
        service.run_job("job-1")


def test_poller_stops_on_terminal_job(repository: OrchestratorRepository) -> None:
    service = _service(repository)
    service.start_job("job-1", _pins_request(2))
    service.run_job("job-1")
    seen: list[ResumeCheck] = []

    final = ProgressPoller(service=service, job_id="job-1", interval_seconds=0.01).subscribe(
        seen.append,
    )

    assert len(seen) == 1
    assert final.classification == JobClassification.COMPLETED


def test_poller_respects_max_polls(repository: OrchestratorRepository) -> None:
    service = _service(repository)
    service.start_job("job-1", _pins_request(2))
    seen: list[ResumeCheck] = []

    ProgressPoller(service=service, job_id="job-1", interval_seconds=0.01).subscribe(
        seen.append,
        max_polls=2,
    )

    assert len(seen) == 2
    assert all(check.progress.completed == 0 for check in seen)


def test_cancelled_poller_leaves_tasks_queued(repository: OrchestratorRepository) -> None:
    service = _service(repository)
    service.start_job("job-1", _pins_request(2))
    token = CancellationToken()
    token.cancel("closed")
    seen: list[ResumeCheck] = []

    ProgressPoller(service=service, job_id="job-1", interval_seconds=5, token=token).subscribe(
        seen.append,
    )

    assert len(seen) == 1
    statuses = {task.status for task in repository.list_by_job(job_id="job-1")}
    assert statuses == {TaskStatus.QUEUED}
