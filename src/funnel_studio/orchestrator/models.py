"""Domain models for generation jobs, tasks, and progress views."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class TaskStatus(str, Enum):
    """Durable task lifecycle states."""

    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskKind(str, Enum):
    """What a task produces."""

    CONTENT_CHUNK = "content_chunk"
    IMAGE_SLIDE = "image_slide"
    VIDEO_SLIDE = "video_slide"
    PIN = "pin"


class JobClassification(str, Enum):
    """Overall job status derived from persisted task state."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    INTERRUPTED = "interrupted"


class FailureClass(str, Enum):
    """Normalized collaborator failure classes recorded on retried/failed tasks."""

    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    NETWORK = "network"
    ACCESS_OR_AUTH = "access_or_auth"
    BILLING_OR_QUOTA = "billing_or_quota"
    OUTPUT_UNUSABLE = "output_unusable"
    BACKEND_TRANSIENT = "backend_transient"


@dataclass(slots=True)
class JobRequest:
    """One user-initiated generation request."""

    content: bool = False
    slides: int = 0
    video_slide: bool = False
    video_source: str | None = None
    pins: int = 0
    pin_weights: tuple[tuple[str, float], ...] | None = None
    test_mode: bool = False
    context: dict[str, Any] = field(default_factory=dict)

    @property
    def job_kind(self) -> str:
        if self.content and (self.slides or self.pins):
            return "funnel_with_assets"
        if self.content:
            return "funnel"
        return "asset_set"

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "slides": self.slides,
            "video_slide": self.video_slide,
            "video_source": self.video_source,
            "pins": self.pins,
            "pin_weights": (
                [[category, weight] for category, weight in self.pin_weights]
                if self.pin_weights is not None
                else None
            ),
            "test_mode": self.test_mode,
            "context": dict(self.context),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> JobRequest:
        raw_weights = payload.get("pin_weights")
        return cls(
            content=bool(payload.get("content", False)),
            slides=int(payload.get("slides", 0)),
            video_slide=bool(payload.get("video_slide", False)),
            video_source=payload.get("video_source"),
            pins=int(payload.get("pins", 0)),
            pin_weights=(
                tuple((str(category), float(weight)) for category, weight in raw_weights)
                if raw_weights is not None
                else None
            ),
            test_mode=bool(payload.get("test_mode", False)),
            context=dict(payload.get("context") or {}),
        )


@dataclass(slots=True)
class TaskSpec:
    """Planned unit of work before it has any persisted state."""

    task_kind: TaskKind
    category: str
    variation: int = 1
    position: int | None = None
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TaskView:
    """Readable task view for CLI, coordinator, and progress logic."""

    task_id: str
    job_id: str
    sequence: int
    task_kind: TaskKind
    category: str
    variation: int
    position: int | None
    payload: dict[str, Any]
    status: TaskStatus
    attempt_count: int
    max_attempts: int
    manual_retry_count: int
    last_error: str | None
    failure_class: FailureClass | None
    last_attempt_at: datetime | None
    next_attempt_at: datetime | None
    result: dict[str, Any] | None
    fallback_fields: tuple[str, ...]
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None


@dataclass(slots=True)
class JobView:
    """Stored job with its policy snapshot."""

    job_id: str
    user_id: str
    job_kind: str
    total_tasks: int
    completed_tasks: int
    failed_tasks: int
    test_mode: bool
    request: JobRequest
    retry_policy: dict[str, Any]
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class TaskEventView:
    """Task event entry for audit trail."""

    event_id: int
    task_id: str
    event_type: str
    status_from: TaskStatus | None
    status_to: TaskStatus | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TaskDetails:
    """Task details with event stream."""

    task: TaskView
    events: list[TaskEventView]


@dataclass(slots=True, frozen=True)
class ProgressSnapshot:
    """Aggregate counts polled by callers."""

    total: int
    completed: int
    in_progress: int
    failed: int
    pending: int
    percentage: int

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "completed": self.completed,
            "in_progress": self.in_progress,
            "failed": self.failed,
            "pending": self.pending,
            "percentage": self.percentage,
        }
