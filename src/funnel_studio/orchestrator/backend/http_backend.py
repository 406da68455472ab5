"""HTTP generation backend with a bounded per-call timeout."""

from __future__ import annotations

import logging

import httpx

from funnel_studio.orchestrator.backend.base import GenerationRequest, GenerationResult
from funnel_studio.orchestrator.errors import MalformedOutputError, TransientCollaboratorError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_USER_AGENT = "funnel-studio/0.1"


class HttpGenerationBackend:
    """POSTs one task to `<base_url>/generate` and reads the `output` object back."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        headers = {"User-Agent": DEFAULT_USER_AGENT}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers=headers,
            transport=transport,
        )

    def generate(self, request: GenerationRequest) -> GenerationResult:
        try:
            response = self._client.post(
                "/generate",
                json=request.to_dict(),
                timeout=request.timeout_seconds,
            )
        except httpx.TimeoutException as error:
            logger.warning("Timeout generating task %s", request.task_id)
            raise TransientCollaboratorError(
                f"Generation request timed out after {request.timeout_seconds}s",
            ) from error
        except httpx.HTTPError as error:
            logger.warning("HTTP error generating task %s: %s", request.task_id, error)
            raise TransientCollaboratorError(f"Network error: {error}") from error

        if not response.is_success:
            raise TransientCollaboratorError(
                f"Generation backend returned HTTP {response.status_code}: "
                f"{response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as error:
            raise TransientCollaboratorError(
                "Invalid JSON in generation response",
                status_code=response.status_code,
            ) from error

        if not isinstance(body, dict):
            raise TransientCollaboratorError(
                "Invalid JSON in generation response: expected an object",
                status_code=response.status_code,
            )
        output = body.get("output")
        if not isinstance(output, dict):
            raise MalformedOutputError("Generation response has no output object", output={})
        return GenerationResult(output=output)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpGenerationBackend:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
