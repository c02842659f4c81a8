"""Deterministic provider failure classification for logging and diagnostics."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

PROVIDER_FAILURE_CLASSIFIER_VERSION = 1


class FailureClass(str, Enum):
    """Normalized provider failure classes."""

    TIMEOUT = "timeout"
    BACKEND_TRANSIENT = "backend_transient"
    BACKEND_NON_RETRYABLE = "backend_non_retryable"
    BILLING_OR_QUOTA = "billing_or_quota"
    ACCESS_OR_AUTH = "access_or_auth"
    MODEL_NOT_AVAILABLE = "model_not_available"


_BILLING_OR_QUOTA_PATTERNS: tuple[str, ...] = (
    "quota",
    "resource_exhausted",
    "insufficient",
    "billing",
    "payment",
    "credits",
    "usage limit",
)
_ACCESS_OR_AUTH_PATTERNS: tuple[str, ...] = (
    "unauthorized",
    "forbidden",
    "permission denied",
    "invalid api key",
    "authentication",
    "not logged in",
)
_MODEL_NOT_AVAILABLE_PATTERNS: tuple[str, ...] = (
    "model not found",
    "unknown model",
    "unsupported model",
    "invalid model",
    "model is not available",
)
_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "too many requests",
    "rate limit",
    "429",
    "try again later",
    "temporarily unavailable",
    "connection reset",
    "network error",
    "could not resolve host",
)
_RULES: tuple[tuple[str, FailureClass, tuple[str, ...]], ...] = (
    ("billing_or_quota", FailureClass.BILLING_OR_QUOTA, _BILLING_OR_QUOTA_PATTERNS),
    ("access_or_auth", FailureClass.ACCESS_OR_AUTH, _ACCESS_OR_AUTH_PATTERNS),
    ("model_not_available", FailureClass.MODEL_NOT_AVAILABLE, _MODEL_NOT_AVAILABLE_PATTERNS),
    ("transient", FailureClass.BACKEND_TRANSIENT, _TRANSIENT_PATTERNS),
)


@dataclass(slots=True)
class ProviderFailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    reason_code: str
    matched_rule: str
    matched_pattern: str | None

    @property
    def transient(self) -> bool:
        return self.failure_class in {FailureClass.BACKEND_TRANSIENT, FailureClass.TIMEOUT}


def classify_provider_failure(
    *,
    provider: str,
    exit_code: int,
    stdout: str,
    stderr: str,
    transient_exit_codes: tuple[int, ...] = (137, 143),
) -> ProviderFailureClassification:
    """Classify a non-zero provider exit; first matching rule wins."""

    haystack = f"{stderr}\n{stdout}".lower()
    for rule, failure_class, patterns in _RULES:
        pattern = _first_match(haystack, patterns)
        if pattern is not None:
            return ProviderFailureClassification(
                failure_class=failure_class,
                reason_code=f"{provider}_{rule}",
                matched_rule=rule,
                matched_pattern=pattern,
            )

    if exit_code in transient_exit_codes:
        return ProviderFailureClassification(
            failure_class=FailureClass.BACKEND_TRANSIENT,
            reason_code=f"{provider}_transient",
            matched_rule="transient_exit_code",
            matched_pattern=None,
        )
    return ProviderFailureClassification(
        failure_class=FailureClass.BACKEND_NON_RETRYABLE,
        reason_code=f"{provider}_backend_non_retryable",
        matched_rule="fallback_non_retryable",
        matched_pattern=None,
    )


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
