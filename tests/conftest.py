"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest

from funnel_studio.orchestrator.models import TaskKind, TaskStatus, TaskView
from funnel_studio.orchestrator.repository import OrchestratorRepository


@pytest.fixture()
def repository(tmp_path: Path) -> Iterator[OrchestratorRepository]:
    """Migrated repository on a throwaway SQLite file."""

    repo = OrchestratorRepository(tmp_path / "orchestrator.db")
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture()
def task_factory() -> Callable[..., TaskView]:
    """Build detached TaskView values for pure-function tests."""

    created_at = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)

    def _make(  # noqa: PLR0913
        sequence: int = 1,
        *,
        status: TaskStatus = TaskStatus.QUEUED,
        task_kind: TaskKind = TaskKind.PIN,
        category: str = "quote",
        variation: int = 1,
        attempt_count: int = 0,
        payload: dict[str, Any] | None = None,
    ) -> TaskView:
        return TaskView(
            task_id=f"task-{sequence}",
            job_id="job-1",
            sequence=sequence,
            task_kind=task_kind,
            category=category,
            variation=variation,
            position=None,
            payload=payload or {},
            status=status,
            attempt_count=attempt_count,
            max_attempts=7,
            manual_retry_count=0,
            last_error=None,
            failure_class=None,
            last_attempt_at=None,
            next_attempt_at=None,
            result=None,
            fallback_fields=(),
            created_at=created_at,
            updated_at=created_at,
            completed_at=None,
        )

    return _make
