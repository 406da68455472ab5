"""Split one generation request into independently executable task specs."""

from __future__ import annotations

from typing import Any

from funnel_studio.orchestrator.distribution import plan_distribution, validate_weights
from funnel_studio.orchestrator.errors import InvalidInputError
from funnel_studio.orchestrator.models import JobRequest, TaskKind, TaskSpec
from funnel_studio.orchestrator.scheduler import interleave

# Chunk boundaries are sized by expected backend latency, not by content
# length: each one has to finish inside the short synchronous host window.
FUNNEL_CONTENT_TASKS: tuple[tuple[str, str], ...] = (
    ("lead_magnet_part_1", "Lead Magnet: Cover + Chapters 1-3"),
    ("lead_magnet_part_2", "Lead Magnet: Chapters 4-5 + Bridge + CTA"),
    ("frontend_part_1", "Front-End: Cover + Chapters 1-3"),
    ("frontend_part_2", "Front-End: Chapters 4-6 + Bridge + CTA"),
    ("bump_full", "Bump: Full product (short)"),
    ("upsell1_part_1", "Upsell 1: Cover + First half"),
    ("upsell1_part_2", "Upsell 1: Second half + Bridge + CTA"),
    ("upsell2_part_1", "Upsell 2: Cover + First half"),
    ("upsell2_part_2", "Upsell 2: Second half + Bridge + CTA"),
    ("all_tldrs", "All 5 product TLDRs"),
    ("marketplace_batch_1", "Marketplace: Lead Magnet + Front-End + Bump"),
    ("marketplace_batch_2", "Marketplace: Upsell 1 + Upsell 2"),
    ("all_emails", "All 6 emails"),
    ("bundle_listing", "Bundle listing"),
)

SLIDE_TYPES: tuple[str, ...] = (
    "hero",
    "detail",
    "feature",
    "cascading",
    "book",
    "index",
    "cover_options",
    "features_layout",
    "floating",
    "library",
)

DEFAULT_PIN_WEIGHTS: tuple[tuple[str, float], ...] = (
    ("quote", 27),
    ("lifestyle", 26),
    ("desk", 16),
    ("mood", 14),
    ("planner_hands", 10),
    ("flatlay", 8),
)

SLIDE_ASPECT_RATIO = "4:5"
PIN_ASPECT_RATIO = "9:16"


def decompose(request: JobRequest) -> list[TaskSpec]:
    """Plan the ordered task list: content chunks, then slides, then pins."""

    _validate(request)
    if request.test_mode:
        return _decompose_test_mode(request)

    specs: list[TaskSpec] = []
    if request.content:
        specs.extend(_content_spec(request, index) for index in range(len(FUNNEL_CONTENT_TASKS)))
    if request.slides:
        specs.extend(_slide_specs(request, limit_images=None))
    if request.pins:
        specs.extend(_pin_specs(request))
    return specs


def _decompose_test_mode(request: JobRequest) -> list[TaskSpec]:
    specs: list[TaskSpec] = []
    if request.content:
        specs.append(_content_spec(request, 0))
    if request.slides:
        specs.extend(_slide_specs(request, limit_images=1))
    if request.pins:
        category, _ = _pin_weights(request)[0]
        specs.append(_pin_spec(request, category=category, variation=1))
    return specs


def _validate(request: JobRequest) -> None:
    if not (request.content or request.slides or request.pins):
        raise InvalidInputError("Job request enables no task kinds.")
    if not 0 <= request.slides <= len(SLIDE_TYPES):
        raise InvalidInputError(
            f"Slide count must be between 0 and {len(SLIDE_TYPES)}, got {request.slides}.",
        )
    if request.video_slide and not request.slides:
        raise InvalidInputError("Video slide conversion requires at least one slide.")
    if request.video_source is not None and (
        request.video_source not in SLIDE_TYPES[: request.slides]
    ):
        raise InvalidInputError(
            f"Video source {request.video_source!r} is not one of the requested slides.",
        )
    if request.pins < 0:
        raise InvalidInputError(f"Pin count must be >= 0, got {request.pins}.")
    if request.pins:
        _pin_weights(request)


def _content_spec(request: JobRequest, index: int) -> TaskSpec:
    name, description = FUNNEL_CONTENT_TASKS[index]
    return TaskSpec(
        task_kind=TaskKind.CONTENT_CHUNK,
        category=name,
        payload=_payload(
            request,
            chunk=name,
            description=description,
            chunk_index=index + 1,
            chunk_total=len(FUNNEL_CONTENT_TASKS),
        ),
    )


def _slide_specs(request: JobRequest, *, limit_images: int | None) -> list[TaskSpec]:
    slide_types = list(SLIDE_TYPES[: request.slides])
    specs: list[TaskSpec] = []
    if request.video_slide:
        source = request.video_source or slide_types[0]
        specs.append(
            TaskSpec(
                task_kind=TaskKind.VIDEO_SLIDE,
                category=source,
                position=1,
                payload=_payload(
                    request,
                    slide_type=source,
                    position=1,
                    aspect_ratio=SLIDE_ASPECT_RATIO,
                ),
            ),
        )
        slide_types.remove(source)

    if limit_images is not None:
        slide_types = slide_types[:limit_images]

    # Positions stay a contiguous 1..N run after the video takes slot 1.
    first_position = len(specs) + 1
    for position, slide_type in enumerate(slide_types, start=first_position):
        specs.append(
            TaskSpec(
                task_kind=TaskKind.IMAGE_SLIDE,
                category=slide_type,
                position=position,
                payload=_payload(
                    request,
                    slide_type=slide_type,
                    position=position,
                    aspect_ratio=SLIDE_ASPECT_RATIO,
                ),
            ),
        )
    return specs


def _pin_specs(request: JobRequest) -> list[TaskSpec]:
    counts = plan_distribution(request.pins, _pin_weights(request))
    return [
        _pin_spec(request, category=item.category, variation=item.variation)
        for item in interleave(counts)
    ]


def _pin_spec(request: JobRequest, *, category: str, variation: int) -> TaskSpec:
    return TaskSpec(
        task_kind=TaskKind.PIN,
        category=category,
        variation=variation,
        payload=_payload(
            request,
            category=category,
            variation=variation,
            aspect_ratio=PIN_ASPECT_RATIO,
        ),
    )


def _pin_weights(request: JobRequest) -> tuple[tuple[str, float], ...]:
    weights = request.pin_weights if request.pin_weights is not None else DEFAULT_PIN_WEIGHTS
    validate_weights(weights)
    return weights


def _payload(request: JobRequest, **fields: Any) -> dict[str, Any]:
    return {**fields, "context": dict(request.context)}
