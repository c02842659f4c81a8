from __future__ import annotations

import allure

from persevere.extraction.failure_classifier import (
    PROVIDER_FAILURE_CLASSIFIER_VERSION,
    FailureClass,
    classify_provider_failure,
)

pytestmark = [
    allure.epic("Structured Extraction"),
    allure.feature("Provider Failures"),
]


def test_classifier_version_is_stable() -> None:
    assert PROVIDER_FAILURE_CLASSIFIER_VERSION == 1


def test_classifier_prefers_billing_over_transient_exit_code() -> None:
    classified = classify_provider_failure(
        provider="gemini",
        exit_code=137,
        stdout="",
        stderr="Quota exceeded for this project",
    )
    assert classified.failure_class == FailureClass.BILLING_OR_QUOTA
    assert classified.matched_rule == "billing_or_quota"
    assert classified.matched_pattern == "quota"
    assert not classified.transient


def test_classifier_maps_model_unavailable() -> None:
    classified = classify_provider_failure(
        provider="claude",
        exit_code=1,
        stdout="",
        stderr="Invalid model requested",
    )
    assert classified.failure_class == FailureClass.MODEL_NOT_AVAILABLE
    assert classified.reason_code == "claude_model_not_available"


def test_classifier_maps_rate_limit_to_transient() -> None:
    classified = classify_provider_failure(
        provider="codex",
        exit_code=1,
        stdout="",
        stderr="HTTP 429 too many requests, please retry",
    )
    assert classified.failure_class == FailureClass.BACKEND_TRANSIENT
    assert classified.transient


def test_classifier_uses_transient_exit_codes_when_output_is_silent() -> None:
    classified = classify_provider_failure(provider="codex", exit_code=143, stdout="", stderr="")
    assert classified.failure_class == FailureClass.BACKEND_TRANSIENT
    assert classified.matched_rule == "transient_exit_code"


def test_classifier_falls_back_to_non_retryable() -> None:
    classified = classify_provider_failure(
        provider="codex",
        exit_code=2,
        stdout="fatal: unsupported syntax in prompt template",
        stderr="",
    )
    assert classified.failure_class == FailureClass.BACKEND_NON_RETRYABLE
    assert classified.matched_rule == "fallback_non_retryable"
