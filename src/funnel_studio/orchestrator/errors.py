"""Error taxonomy for planning, execution, and task state transitions."""

from __future__ import annotations


class InvalidInputError(ValueError):
    """Bad distribution or decomposition parameters. Fatal, never retried."""


class TransientCollaboratorError(RuntimeError):
    """Generation backend could not service the request (network, timeout, rate limit)."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MalformedOutputError(RuntimeError):
    """Backend answered but some fields are missing or unusable.

    Carries whatever partial output was received so the coordinator can
    substitute documented fallback values instead of spending an attempt.
    """

    def __init__(self, message: str, *, output: dict[str, object] | None = None) -> None:
        super().__init__(message)
        self.output = dict(output or {})


class TaskFailedError(RuntimeError):
    """Task exhausted its attempts; carries the last recorded error."""

    def __init__(self, task_id: str, last_error: str | None) -> None:
        super().__init__(f"Task {task_id} failed: {last_error or 'unknown error'}")
        self.task_id = task_id
        self.last_error = last_error


class InvalidTransitionError(RuntimeError):
    """Requested status change is not allowed from the task's current status."""


class JobNotFoundError(LookupError):
    """Unknown job id for the current user scope."""


class TaskNotFoundError(LookupError):
    """Unknown task id for the current user scope."""
