"""Deterministic local backend for test mode, demos, and CLI integration tests."""

from __future__ import annotations

from typing import Any

from funnel_studio.orchestrator.backend.base import GenerationRequest, GenerationResult
from funnel_studio.orchestrator.models import TaskKind


class EchoBackend:
    """Builds placeholder output from the request itself; never fails."""

    def __init__(self, *, url_prefix: str = "echo://assets") -> None:
        self.url_prefix = url_prefix.rstrip("/")

    def generate(self, request: GenerationRequest) -> GenerationResult:
        return GenerationResult(output=self._output(request))

    def _output(self, request: GenerationRequest) -> dict[str, Any]:
        asset = f"{self.url_prefix}/{request.job_id}/{request.category}-v{request.variation}"
        if request.task_kind == TaskKind.CONTENT_CHUNK:
            description = str(request.payload.get("description") or request.category)
            return {
                "title": description,
                "content": f"[{request.category}] {description}",
            }
        if request.task_kind == TaskKind.VIDEO_SLIDE:
            return {
                "video_url": f"{asset}.mp4",
                "aspect_ratio": request.payload.get("aspect_ratio"),
                "variation": request.variation,
            }
        return {
            "image_url": f"{asset}.png",
            "aspect_ratio": request.payload.get("aspect_ratio"),
            "variation": request.variation,
        }
