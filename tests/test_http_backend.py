from __future__ import annotations

import json

import allure
import httpx
import pytest

from funnel_studio.orchestrator.backend import GenerationRequest, HttpGenerationBackend
from funnel_studio.orchestrator.errors import MalformedOutputError, TransientCollaboratorError
from funnel_studio.orchestrator.models import TaskKind

pytestmark = [
    allure.epic("Task Execution"),
    allure.feature("Generation Backends"),
]


def _request() -> GenerationRequest:
    return GenerationRequest(
        task_id="task-1",
        job_id="job-1",
        task_kind=TaskKind.PIN,
        category="quote",
        variation=2,
        attempt=1,
        timeout_seconds=5.0,
        payload={"aspect_ratio": "9:16"},
    )


def _backend(handler) -> HttpGenerationBackend:
    return HttpGenerationBackend(
        base_url="https://gen.example.com/api/",
        api_key="secret",
        transport=httpx.MockTransport(handler),
    )


def test_successful_response_returns_output() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"output": {"image_url": "https://cdn/x.png"}})

    with _backend(handler) as backend:
        result = backend.generate(_request())

    assert result.output == {"image_url": "https://cdn/x.png"}
    assert str(seen[0].url) == "https://gen.example.com/api/generate"
    assert seen[0].headers["Authorization"] == "Bearer secret"
    body = json.loads(seen[0].content)
    assert body["task_kind"] == "pin"
    assert body["variation"] == 2
    assert body["payload"] == {"aspect_ratio": "9:16"}


def test_error_status_is_transient_with_status_code() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="overloaded")

    with pytest.raises(TransientCollaboratorError, match="HTTP 503: overloaded") as caught:
        _backend(handler).generate(_request())

    assert caught.value.status_code == 503


@pytest.mark.parametrize(
    ("exception", "message"),
    [
        (httpx.ReadTimeout, "timed out after 5.0s"),
        (httpx.ConnectError, "Network error"),
    ],
)
def test_transport_failures_are_transient(
    exception: type[httpx.TransportError],
    message: str,
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise exception("boom", request=request)

    with pytest.raises(TransientCollaboratorError, match=message) as caught:
        _backend(handler).generate(_request())

    assert caught.value.status_code is None


def test_invalid_json_is_transient() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>oops</html>")

    with pytest.raises(TransientCollaboratorError, match="Invalid JSON"):
        _backend(handler).generate(_request())


def test_missing_output_object_is_malformed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"status": "ok"})

    with pytest.raises(MalformedOutputError) as caught:
        _backend(handler).generate(_request())

    assert caught.value.output == {}
