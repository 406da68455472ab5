"""Backoff schedule value object and its job-level snapshot format."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

DEFAULT_RETRY_DELAYS_SECONDS: tuple[float, ...] = (5, 30, 120, 300, 300, 300)
DEFAULT_MAX_ATTEMPTS = 7


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Per-attempt delays (attempt 2 onward) and the attempt bound.

    `delays[0]` is the wait before attempt 2. Attempt 1 is never delayed and
    attempts beyond the configured list reuse the last delay.
    """

    delays: tuple[float, ...] = DEFAULT_RETRY_DELAYS_SECONDS
    max_attempts: int = DEFAULT_MAX_ATTEMPTS

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}.")
        if any(delay < 0 for delay in self.delays):
            raise ValueError("Retry delays must be >= 0.")

    def delay_before_attempt(self, attempt: int) -> float:
        if attempt <= 1 or not self.delays:
            return 0.0
        index = min(attempt - 2, len(self.delays) - 1)
        return float(self.delays[index])

    def to_dict(self) -> dict[str, Any]:
        return {"delays": list(self.delays), "max_attempts": self.max_attempts}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> RetryPolicy:
        return cls(
            delays=tuple(float(value) for value in payload.get("delays", ())),
            max_attempts=int(payload.get("max_attempts", DEFAULT_MAX_ATTEMPTS)),
        )

    def to_settings(self) -> dict[str, str]:
        """Serialize as app_settings rows (`retry_attempt_<n>_delay`, `max_retry_attempts`)."""

        rows = {
            f"retry_attempt_{index}_delay": _format_seconds(delay)
            for index, delay in enumerate(self.delays, start=2)
        }
        rows["max_retry_attempts"] = str(self.max_attempts)
        return rows

    @classmethod
    def from_settings(cls, rows: Mapping[str, str], *, default: RetryPolicy) -> RetryPolicy:
        """Overlay app_settings rows on top of `default`; unknown keys are ignored."""

        max_attempts = int(rows.get("max_retry_attempts", default.max_attempts))
        attempt_delays: dict[int, float] = {}
        for key, value in rows.items():
            if not (key.startswith("retry_attempt_") and key.endswith("_delay")):
                continue
            attempt_raw = key.removeprefix("retry_attempt_").removesuffix("_delay")
            if not attempt_raw.isdigit():
                continue
            attempt_delays[int(attempt_raw)] = float(value)
        if not attempt_delays:
            return cls(delays=default.delays, max_attempts=max_attempts)

        last_attempt = max(max(attempt_delays), len(default.delays) + 1)
        delays = tuple(
            attempt_delays.get(attempt, default.delay_before_attempt(attempt))
            for attempt in range(2, last_attempt + 1)
        )
        return cls(delays=delays, max_attempts=max_attempts)


def _format_seconds(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)
