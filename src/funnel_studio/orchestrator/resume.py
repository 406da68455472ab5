"""Job classification and resubmission selection after an interruption.

Everything here is derived from the stored task rows alone, so a fresh process
(or a reloaded page) reaches the same answer as the one that was interrupted.
"""

from __future__ import annotations

from collections.abc import Sequence

from funnel_studio.orchestrator.models import JobClassification, TaskStatus, TaskView


def classify_job(tasks: Sequence[TaskView]) -> JobClassification:
    if not tasks:
        return JobClassification.NOT_STARTED

    statuses = [task.status for task in tasks]
    completed = statuses.count(TaskStatus.COMPLETED)
    if completed == len(tasks):
        return JobClassification.COMPLETED
    if TaskStatus.IN_PROGRESS in statuses:
        return JobClassification.IN_PROGRESS
    if TaskStatus.FAILED in statuses:
        return JobClassification.FAILED
    if completed > 0:
        return JobClassification.INTERRUPTED
    # All queued: a job that already spent attempts was cut off mid-retry.
    if any(task.attempt_count > 0 for task in tasks):
        return JobClassification.INTERRUPTED
    return JobClassification.NOT_STARTED


def is_resumable(classification: JobClassification) -> bool:
    return classification in {JobClassification.INTERRUPTED, JobClassification.NOT_STARTED}


def select_resubmittable(tasks: Sequence[TaskView]) -> list[TaskView]:
    """Queued tasks in sequence order; completed and failed tasks are never picked."""

    return sorted(
        (task for task in tasks if task.status == TaskStatus.QUEUED),
        key=lambda task: task.sequence,
    )
