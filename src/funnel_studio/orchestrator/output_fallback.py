"""Documented fallback values for recoverable backend output.

Only fields the pipeline can sensibly default live here. A result that lacks
the generated artefact itself (text, image, or video) cannot be recovered and
is treated as a transient failure by the coordinator.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from funnel_studio.orchestrator.decomposer import PIN_ASPECT_RATIO, SLIDE_ASPECT_RATIO
from funnel_studio.orchestrator.errors import TransientCollaboratorError
from funnel_studio.orchestrator.models import TaskKind, TaskView

DEFAULT_VIDEO_DURATION_SECONDS = 6

_REQUIRED_FIELDS: dict[TaskKind, str] = {
    TaskKind.CONTENT_CHUNK: "content",
    TaskKind.IMAGE_SLIDE: "image_url",
    TaskKind.VIDEO_SLIDE: "video_url",
    TaskKind.PIN: "image_url",
}

_Fallback = Callable[[TaskView], Any]


def _product_title(task: TaskView) -> str:
    context = task.payload.get("context") or {}
    return str(context.get("product_title") or "Digital product")


_FALLBACKS: dict[TaskKind, dict[str, _Fallback]] = {
    TaskKind.CONTENT_CHUNK: {
        "title": lambda task: str(task.payload.get("description") or task.category),
    },
    TaskKind.IMAGE_SLIDE: {
        "aspect_ratio": lambda _: SLIDE_ASPECT_RATIO,
        "alt_text": lambda task: f"{_product_title(task)} {task.category} slide",
        "variation": lambda task: task.variation,
    },
    TaskKind.VIDEO_SLIDE: {
        "aspect_ratio": lambda _: SLIDE_ASPECT_RATIO,
        "duration_seconds": lambda _: DEFAULT_VIDEO_DURATION_SECONDS,
        "variation": lambda task: task.variation,
    },
    TaskKind.PIN: {
        "aspect_ratio": lambda _: PIN_ASPECT_RATIO,
        "alt_text": lambda task: (
            f"{_product_title(task)} {task.category} pin - digital planner mockup"
        ),
        "variation": lambda task: task.variation,
    },
}


@dataclass(slots=True)
class FallbackResult:
    """Output after fallback substitution and the fields that were filled in."""

    output: dict[str, Any]
    fallback_fields: tuple[str, ...]


def apply_output_fallbacks(*, task: TaskView, output: dict[str, Any]) -> FallbackResult:
    """Fill empty defaultable fields; raise if the required artefact is missing."""

    required = _REQUIRED_FIELDS[task.task_kind]
    if _is_empty(output.get(required)):
        raise TransientCollaboratorError(
            f"Missing required field {required!r} in {task.task_kind.value} output",
        )

    recovered = dict(output)
    filled: list[str] = []
    for field_name, fallback in _FALLBACKS[task.task_kind].items():
        if _is_empty(recovered.get(field_name)):
            recovered[field_name] = fallback(task)
            filled.append(field_name)
    return FallbackResult(output=recovered, fallback_fields=tuple(filled))


def _is_empty(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False
