"""Runtime configuration for the generation orchestrator."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

from funnel_studio.orchestrator.retry_policy import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_RETRY_DELAYS_SECONDS,
    RetryPolicy,
)

SUPPORTED_BACKENDS = ("echo", "http")


@dataclass(slots=True)
class RetrySettings:
    """Environment defaults for the retry policy of new jobs."""

    delays_seconds: tuple[float, ...] = DEFAULT_RETRY_DELAYS_SECONDS
    max_attempts: int = DEFAULT_MAX_ATTEMPTS

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(delays=self.delays_seconds, max_attempts=self.max_attempts)


@dataclass(slots=True)
class OrchestratorSettings:
    """Coordinator execution settings."""

    poll_interval_seconds: float = 2.0
    request_timeout_seconds: float = 60.0
    execution_window_seconds: float | None = None
    stale_attempt_seconds: int = 900
    stop_on_failure: bool = True


@dataclass(slots=True)
class BackendSettings:
    """Generation backend selection."""

    kind: str = "echo"
    base_url: str | None = None
    api_key: str | None = None


@dataclass(slots=True)
class UserContextSettings:
    """User context settings."""

    user_id: str = "default_user"
    user_name: str = "Default User"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".funnel_studio.db")
    sqlite_busy_timeout_ms: int = 5_000
    retry: RetrySettings = field(default_factory=RetrySettings)
    orchestrator: OrchestratorSettings = field(default_factory=OrchestratorSettings)
    backend: BackendSettings = field(default_factory=BackendSettings)
    user_context: UserContextSettings = field(default_factory=UserContextSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("FUNNEL_STUDIO_DB_PATH", ".funnel_studio.db")),
            sqlite_busy_timeout_ms=int(
                os.getenv("FUNNEL_STUDIO_SQLITE_BUSY_TIMEOUT_MS", "5000"),
            ),
            retry=RetrySettings(
                delays_seconds=_env_float_list(
                    "FUNNEL_STUDIO_RETRY_DELAYS",
                    default=DEFAULT_RETRY_DELAYS_SECONDS,
                ),
                max_attempts=int(
                    os.getenv("FUNNEL_STUDIO_MAX_ATTEMPTS", str(DEFAULT_MAX_ATTEMPTS)),
                ),
            ),
            orchestrator=OrchestratorSettings(
                poll_interval_seconds=float(
                    os.getenv("FUNNEL_STUDIO_POLL_INTERVAL_SECONDS", "2.0"),
                ),
                request_timeout_seconds=float(
                    os.getenv("FUNNEL_STUDIO_REQUEST_TIMEOUT_SECONDS", "60.0"),
                ),
                execution_window_seconds=_env_optional_float(
                    "FUNNEL_STUDIO_EXECUTION_WINDOW_SECONDS",
                ),
                stale_attempt_seconds=int(
                    os.getenv("FUNNEL_STUDIO_STALE_ATTEMPT_SECONDS", "900"),
                ),
                stop_on_failure=_env_bool("FUNNEL_STUDIO_STOP_ON_FAILURE", default=True),
            ),
            backend=BackendSettings(
                kind=os.getenv("FUNNEL_STUDIO_BACKEND", "echo").strip().lower(),
                base_url=os.getenv("FUNNEL_STUDIO_BACKEND_URL") or None,
                api_key=os.getenv("FUNNEL_STUDIO_BACKEND_API_KEY") or None,
            ),
            user_context=UserContextSettings(
                user_id=os.getenv("FUNNEL_STUDIO_USER_ID", "default_user"),
                user_name=os.getenv("FUNNEL_STUDIO_USER_NAME", "Default User"),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error on out-of-range or inconsistent values."""

        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("FUNNEL_STUDIO_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if self.retry.max_attempts < 1:
            raise ValueError("FUNNEL_STUDIO_MAX_ATTEMPTS must be >= 1.")
        if any(delay < 0 for delay in self.retry.delays_seconds):
            raise ValueError("FUNNEL_STUDIO_RETRY_DELAYS values must be >= 0.")
        if self.orchestrator.poll_interval_seconds <= 0:
            raise ValueError("FUNNEL_STUDIO_POLL_INTERVAL_SECONDS must be > 0.")
        if self.orchestrator.request_timeout_seconds <= 0:
            raise ValueError("FUNNEL_STUDIO_REQUEST_TIMEOUT_SECONDS must be > 0.")
        window = self.orchestrator.execution_window_seconds
        if window is not None and window <= self.orchestrator.request_timeout_seconds:
            raise ValueError(
                "FUNNEL_STUDIO_EXECUTION_WINDOW_SECONDS must be greater than "
                "FUNNEL_STUDIO_REQUEST_TIMEOUT_SECONDS so a hung call cannot outlive the window.",
            )
        if self.orchestrator.stale_attempt_seconds < 0:
            raise ValueError("FUNNEL_STUDIO_STALE_ATTEMPT_SECONDS must be >= 0.")
        self.validate_backend()

    def validate_backend(self) -> None:
        if self.backend.kind not in SUPPORTED_BACKENDS:
            raise ValueError(
                f"Unsupported FUNNEL_STUDIO_BACKEND: {self.backend.kind!r}. "
                f"Expected one of: {', '.join(SUPPORTED_BACKENDS)}.",
            )
        if self.backend.kind != "http":
            return
        if not self.backend.base_url:
            raise ValueError("FUNNEL_STUDIO_BACKEND_URL is required for the http backend.")
        parsed = urlparse(self.backend.base_url)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError(
                "Invalid FUNNEL_STUDIO_BACKEND_URL: "
                f"{self.backend.base_url!r}. Expected an absolute http(s) URL.",
            )


def _env_float_list(name: str, *, default: tuple[float, ...]) -> tuple[float, ...]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    values: list[float] = []
    for part in raw.split(","):
        token = part.strip()
        if not token:
            continue
        try:
            values.append(float(token))
        except ValueError as error:
            raise ValueError(f"Invalid {name} entry: {token!r}") from error
    return tuple(values)


def _env_optional_float(name: str) -> float | None:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    return float(raw)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
