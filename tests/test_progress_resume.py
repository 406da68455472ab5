from __future__ import annotations

import allure
import pytest

from funnel_studio.orchestrator.models import JobClassification, TaskStatus
from funnel_studio.orchestrator.progress import compute_progress
from funnel_studio.orchestrator.resume import (
    classify_job,
    is_resumable,
    select_resubmittable,
)

pytestmark = [
    allure.epic("Task Execution"),
    allure.feature("Progress and Resume"),
]

Q = TaskStatus.QUEUED
P = TaskStatus.IN_PROGRESS
C = TaskStatus.COMPLETED
F = TaskStatus.FAILED


def _tasks(task_factory, statuses, *, attempt_count: int = 0):
    return [
        task_factory(index + 1, status=status, attempt_count=attempt_count)
        for index, status in enumerate(statuses)
    ]


def test_progress_counts_and_percentage(task_factory) -> None:
    tasks = _tasks(task_factory, [C] * 9 + [P] + [Q] * 4)

    progress = compute_progress(tasks)

    assert progress.to_dict() == {
        "total": 14,
        "completed": 9,
        "in_progress": 1,
        "failed": 0,
        "pending": 4,
        "percentage": 64,
    }


def test_progress_rounds_half_up(task_factory) -> None:
    tasks = _tasks(task_factory, [C] + [Q] * 7)

    assert compute_progress(tasks).percentage == 13


def test_progress_of_empty_job_is_zero() -> None:
    progress = compute_progress([])

    assert progress.total == 0
    assert progress.percentage == 0
    assert progress.pending == 0


def test_progress_counts_failed_separately(task_factory) -> None:
    progress = compute_progress(_tasks(task_factory, [C, F, Q]))

    assert (progress.completed, progress.failed, progress.pending) == (1, 1, 1)
    assert progress.percentage == 33


@pytest.mark.parametrize(
    ("statuses", "attempt_count", "expected"),
    [
        ([C, C, C], 1, JobClassification.COMPLETED),
        ([C, P, Q], 1, JobClassification.IN_PROGRESS),
        ([C, F, Q], 1, JobClassification.FAILED),
        ([C, C, Q], 0, JobClassification.INTERRUPTED),
        ([Q, Q, Q], 0, JobClassification.NOT_STARTED),
        ([Q, Q, Q], 2, JobClassification.INTERRUPTED),
        ([], 0, JobClassification.NOT_STARTED),
    ],
)
def test_classify_job(
    task_factory,
    statuses: list[TaskStatus],
    attempt_count: int,
    expected: JobClassification,
) -> None:
    tasks = _tasks(task_factory, statuses, attempt_count=attempt_count)

    assert classify_job(tasks) == expected


def test_in_progress_wins_over_failed(task_factory) -> None:
    assert classify_job(_tasks(task_factory, [F, P])) == JobClassification.IN_PROGRESS


@pytest.mark.parametrize(
    ("classification", "expected"),
    [
        (JobClassification.INTERRUPTED, True),
        (JobClassification.NOT_STARTED, True),
        (JobClassification.IN_PROGRESS, False),
        (JobClassification.COMPLETED, False),
        (JobClassification.FAILED, False),
    ],
)
def test_resumable_classifications(classification: JobClassification, expected: bool) -> None:
    assert is_resumable(classification) is expected


def test_select_resubmittable_keeps_queued_in_sequence_order(task_factory) -> None:
    tasks = [
        task_factory(4, status=Q),
        task_factory(1, status=C),
        task_factory(3, status=F),
        task_factory(2, status=Q),
        task_factory(5, status=P),
    ]

    selected = select_resubmittable(tasks)

    assert [task.sequence for task in selected] == [2, 4]
