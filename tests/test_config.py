from __future__ import annotations

from pathlib import Path

import allure
import pytest

from funnel_studio.config import BackendSettings, OrchestratorSettings, Settings
from funnel_studio.orchestrator.retry_policy import RetryPolicy

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Environment Settings"),
]

_ENV_NAMES = (
    "FUNNEL_STUDIO_DB_PATH",
    "FUNNEL_STUDIO_RETRY_DELAYS",
    "FUNNEL_STUDIO_MAX_ATTEMPTS",
    "FUNNEL_STUDIO_EXECUTION_WINDOW_SECONDS",
    "FUNNEL_STUDIO_STOP_ON_FAILURE",
    "FUNNEL_STUDIO_BACKEND",
    "FUNNEL_STUDIO_BACKEND_URL",
    "FUNNEL_STUDIO_USER_ID",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def test_defaults_are_valid_for_local_development() -> None:
    settings = Settings.from_env()

    settings.validate()
    assert settings.db_path == Path(".funnel_studio.db")
    assert settings.retry.to_policy() == RetryPolicy()
    assert settings.orchestrator.execution_window_seconds is None
    assert settings.orchestrator.stop_on_failure is True
    assert settings.backend.kind == "echo"
    assert settings.user_context.user_id == "default_user"


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("FUNNEL_STUDIO_DB_PATH", str(tmp_path / "jobs.db"))
    monkeypatch.setenv("FUNNEL_STUDIO_RETRY_DELAYS", "1, 2.5,")
    monkeypatch.setenv("FUNNEL_STUDIO_MAX_ATTEMPTS", "3")
    monkeypatch.setenv("FUNNEL_STUDIO_EXECUTION_WINDOW_SECONDS", "280")
    monkeypatch.setenv("FUNNEL_STUDIO_STOP_ON_FAILURE", "off")
    monkeypatch.setenv("FUNNEL_STUDIO_BACKEND", " HTTP ")
    monkeypatch.setenv("FUNNEL_STUDIO_BACKEND_URL", "https://gen.example.com/api")
    monkeypatch.setenv("FUNNEL_STUDIO_USER_ID", "studio")

    settings = Settings.from_env()

    settings.validate()
    assert settings.db_path == tmp_path / "jobs.db"
    assert settings.retry.to_policy() == RetryPolicy(delays=(1.0, 2.5), max_attempts=3)
    assert settings.orchestrator.execution_window_seconds == 280.0
    assert settings.orchestrator.stop_on_failure is False
    assert settings.backend.kind == "http"
    assert settings.user_context.user_id == "studio"


def test_explicit_db_path_wins_over_environment(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    monkeypatch.setenv("FUNNEL_STUDIO_DB_PATH", "ignored.db")

    assert Settings.from_env(db_path=tmp_path / "cli.db").db_path == tmp_path / "cli.db"


def test_invalid_boolean_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FUNNEL_STUDIO_STOP_ON_FAILURE", "sometimes")

    with pytest.raises(ValueError, match="Invalid boolean value"):
        Settings.from_env()


def test_invalid_delay_entry_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FUNNEL_STUDIO_RETRY_DELAYS", "5,soon")

    with pytest.raises(ValueError, match="Invalid FUNNEL_STUDIO_RETRY_DELAYS entry"):
        Settings.from_env()


def test_window_must_outlast_request_timeout() -> None:
    settings = Settings(
        orchestrator=OrchestratorSettings(
            request_timeout_seconds=60.0,
            execution_window_seconds=60.0,
        ),
    )

    with pytest.raises(ValueError, match="EXECUTION_WINDOW_SECONDS must be greater"):
        settings.validate()


@pytest.mark.parametrize(
    ("backend", "message"),
    [
        (BackendSettings(kind="grpc"), "Unsupported FUNNEL_STUDIO_BACKEND"),
        (BackendSettings(kind="http"), "FUNNEL_STUDIO_BACKEND_URL is required"),
        (
            BackendSettings(kind="http", base_url="gen.example.com"),
            "Invalid FUNNEL_STUDIO_BACKEND_URL",
        ),
    ],
)
def test_backend_validation(backend: BackendSettings, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        Settings(backend=backend).validate_backend()


def test_non_positive_max_attempts_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FUNNEL_STUDIO_MAX_ATTEMPTS", "0")

    with pytest.raises(ValueError, match="MAX_ATTEMPTS must be >= 1"):
        Settings.from_env().validate()
