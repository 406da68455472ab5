"""Job progress aggregation over persisted task state."""

from __future__ import annotations

from collections.abc import Iterable

from funnel_studio.orchestrator.distribution import round_half_up
from funnel_studio.orchestrator.models import ProgressSnapshot, TaskStatus, TaskView


def compute_progress(tasks: Iterable[TaskView]) -> ProgressSnapshot:
    """Count tasks by status; percentage is completed/total rounded half-up."""

    total = completed = in_progress = failed = 0
    for task in tasks:
        total += 1
        if task.status == TaskStatus.COMPLETED:
            completed += 1
        elif task.status == TaskStatus.IN_PROGRESS:
            in_progress += 1
        elif task.status == TaskStatus.FAILED:
            failed += 1

    percentage = round_half_up(completed / total * 100) if total else 0
    return ProgressSnapshot(
        total=total,
        completed=completed,
        in_progress=in_progress,
        failed=failed,
        pending=total - completed - in_progress - failed,
        percentage=percentage,
    )
