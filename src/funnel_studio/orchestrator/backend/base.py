"""Backend interface for generation task execution."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from funnel_studio.orchestrator.models import TaskKind, TaskView


@dataclass(slots=True)
class GenerationRequest:
    """Inputs required to execute one task attempt."""

    task_id: str
    job_id: str
    task_kind: TaskKind
    category: str
    variation: int
    attempt: int
    timeout_seconds: float
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_task(cls, task: TaskView, *, timeout_seconds: float) -> GenerationRequest:
        return cls(
            task_id=task.task_id,
            job_id=task.job_id,
            task_kind=task.task_kind,
            category=task.category,
            variation=task.variation,
            attempt=task.attempt_count,
            timeout_seconds=timeout_seconds,
            payload=dict(task.payload),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "job_id": self.job_id,
            "task_kind": self.task_kind.value,
            "category": self.category,
            "variation": self.variation,
            "attempt": self.attempt,
            "payload": self.payload,
        }


@dataclass(slots=True)
class GenerationResult:
    """Structured output returned by a backend."""

    output: dict[str, Any]


class GenerationBackend(Protocol):
    """Protocol implemented by generation backends.

    Implementations raise `TransientCollaboratorError` when the request could
    not be serviced at all and `MalformedOutputError` when a response arrived
    but could not be read as a complete result.
    """

    def generate(self, request: GenerationRequest) -> GenerationResult:
        """Run one generation attempt."""
