"""Generation backend implementations."""

from funnel_studio.orchestrator.backend.base import (
    GenerationBackend,
    GenerationRequest,
    GenerationResult,
)
from funnel_studio.orchestrator.backend.echo_backend import EchoBackend
from funnel_studio.orchestrator.backend.http_backend import HttpGenerationBackend

__all__ = [
    "EchoBackend",
    "GenerationBackend",
    "GenerationRequest",
    "GenerationResult",
    "HttpGenerationBackend",
]
