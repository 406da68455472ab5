from __future__ import annotations

import allure
import pytest

from funnel_studio.orchestrator.errors import TransientCollaboratorError
from funnel_studio.orchestrator.models import TaskKind
from funnel_studio.orchestrator.output_fallback import (
    DEFAULT_VIDEO_DURATION_SECONDS,
    apply_output_fallbacks,
)

pytestmark = [
    allure.epic("Task Execution"),
    allure.feature("Output Fallbacks"),
]


def test_pin_output_gets_documented_fallbacks(task_factory) -> None:
    task = task_factory(
        task_kind=TaskKind.PIN,
        category="quote",
        variation=3,
        payload={"context": {"product_title": "Budget Planner"}},
    )
    output = {"image_url": "https://cdn.example.com/pin.png", "alt_text": "  "}

    recovered = apply_output_fallbacks(task=task, output=output)

    assert recovered.fallback_fields == ("aspect_ratio", "alt_text", "variation")
    assert recovered.output == {
        "image_url": "https://cdn.example.com/pin.png",
        "aspect_ratio": "9:16",
        "alt_text": "Budget Planner quote pin - digital planner mockup",
        "variation": 3,
    }
    assert output["alt_text"] == "  "


def test_complete_output_is_left_untouched(task_factory) -> None:
    task = task_factory(task_kind=TaskKind.IMAGE_SLIDE, category="hero")
    output = {
        "image_url": "https://cdn.example.com/hero.png",
        "aspect_ratio": "4:5",
        "alt_text": "Hero slide",
        "variation": 1,
    }

    recovered = apply_output_fallbacks(task=task, output=output)

    assert recovered.fallback_fields == ()
    assert recovered.output == output


def test_slide_alt_text_uses_generic_title_without_context(task_factory) -> None:
    task = task_factory(task_kind=TaskKind.IMAGE_SLIDE, category="detail")

    recovered = apply_output_fallbacks(
        task=task,
        output={"image_url": "https://cdn.example.com/detail.png"},
    )

    assert recovered.output["alt_text"] == "Digital product detail slide"
    assert recovered.output["aspect_ratio"] == "4:5"


def test_video_duration_defaults(task_factory) -> None:
    task = task_factory(task_kind=TaskKind.VIDEO_SLIDE, category="hero")

    recovered = apply_output_fallbacks(
        task=task,
        output={"video_url": "https://cdn.example.com/hero.mp4", "aspect_ratio": "4:5"},
    )

    assert recovered.output["duration_seconds"] == DEFAULT_VIDEO_DURATION_SECONDS
    assert recovered.fallback_fields == ("duration_seconds", "variation")


def test_content_title_falls_back_to_chunk_description(task_factory) -> None:
    task = task_factory(
        task_kind=TaskKind.CONTENT_CHUNK,
        category="bump_full",
        payload={"description": "Bump: Full product (short)"},
    )

    recovered = apply_output_fallbacks(task=task, output={"content": "Body text"})

    assert recovered.output["title"] == "Bump: Full product (short)"
    assert recovered.fallback_fields == ("title",)


@pytest.mark.parametrize(
    ("task_kind", "output", "field"),
    [
        (TaskKind.PIN, {"alt_text": "x"}, "image_url"),
        (TaskKind.IMAGE_SLIDE, {"image_url": ""}, "image_url"),
        (TaskKind.VIDEO_SLIDE, {"image_url": "https://cdn.example.com/x.png"}, "video_url"),
        (TaskKind.CONTENT_CHUNK, {"title": "t", "content": None}, "content"),
    ],
)
def test_missing_artefact_is_a_transient_failure(
    task_factory,
    task_kind: TaskKind,
    output: dict,
    field: str,
) -> None:
    task = task_factory(task_kind=task_kind)

    with pytest.raises(TransientCollaboratorError, match=f"Missing required field '{field}'"):
        apply_output_fallbacks(task=task, output=output)
