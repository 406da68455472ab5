"""Deterministic collaborator failure classification for retry bookkeeping."""

from __future__ import annotations

from dataclasses import dataclass

from funnel_studio.orchestrator.models import FailureClass

FAILURE_CLASSIFIER_VERSION = 1

_TIMEOUT_PATTERNS: tuple[str, ...] = (
    "timeout",
    "timed out",
    "deadline exceeded",
)
_RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "too many requests",
    "rate limit",
    "429",
    "please retry",
    "try again later",
)
_BILLING_OR_QUOTA_PATTERNS: tuple[str, ...] = (
    "quota",
    "resource_exhausted",
    "billing",
    "payment",
    "credits",
)
_ACCESS_OR_AUTH_PATTERNS: tuple[str, ...] = (
    "unauthorized",
    "forbidden",
    "permission denied",
    "invalid api key",
    "authentication",
    "401",
    "403",
)
_NETWORK_PATTERNS: tuple[str, ...] = (
    "connection reset",
    "connection refused",
    "network error",
    "could not resolve host",
    "temporarily unavailable",
    "dns",
)
_OUTPUT_UNUSABLE_PATTERNS: tuple[str, ...] = (
    "invalid json",
    "no image data",
    "no video data",
    "empty content",
    "missing required field",
)

_RULES: tuple[tuple[str, FailureClass, tuple[str, ...]], ...] = (
    ("billing_or_quota", FailureClass.BILLING_OR_QUOTA, _BILLING_OR_QUOTA_PATTERNS),
    ("rate_limited", FailureClass.RATE_LIMITED, _RATE_LIMIT_PATTERNS),
    ("access_or_auth", FailureClass.ACCESS_OR_AUTH, _ACCESS_OR_AUTH_PATTERNS),
    ("timeout", FailureClass.TIMEOUT, _TIMEOUT_PATTERNS),
    ("network", FailureClass.NETWORK, _NETWORK_PATTERNS),
    ("output_unusable", FailureClass.OUTPUT_UNUSABLE, _OUTPUT_UNUSABLE_PATTERNS),
)


@dataclass(slots=True)
class FailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    matched_rule: str
    matched_pattern: str | None

    def to_event_details(self) -> dict[str, object]:
        """Serialize classifier diagnostics for task events."""

        return {
            "classifier_version": FAILURE_CLASSIFIER_VERSION,
            "failure_class": self.failure_class.value,
            "matched_rule": self.matched_rule,
            "matched_pattern": self.matched_pattern,
        }


def classify_collaborator_failure(
    message: str,
    *,
    status_code: int | None = None,
) -> FailureClassification:
    """Classify a transient collaborator failure from its message and HTTP status."""

    haystack = f"{message}\n{status_code if status_code is not None else ''}".lower()
    for rule, failure_class, patterns in _RULES:
        pattern = _first_match(haystack, patterns)
        if pattern is not None:
            return FailureClassification(
                failure_class=failure_class,
                matched_rule=rule,
                matched_pattern=pattern,
            )

    return FailureClassification(
        failure_class=FailureClass.BACKEND_TRANSIENT,
        matched_rule="fallback_transient",
        matched_pattern=None,
    )


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
