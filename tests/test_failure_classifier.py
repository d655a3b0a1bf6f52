from __future__ import annotations

import asyncio

import pytest

from layerbridge.core.errors import (
    FAILURE_CLASSIFIER_VERSION,
    AllBackendsFailedError,
    BackendAuthError,
    BackendTimeoutError,
    BackendUnavailableError,
    BridgeError,
    FailureKind,
    PlanValidationError,
    QuotaExceededError,
    StepResultInvalidError,
    TransientBackendError,
    classify_failure,
    failure_kind_of,
    is_retryable,
    to_bridge_error,
)


@pytest.mark.parametrize(
    ("message", "kind"),
    [
        ("Quota exceeded for project", FailureKind.QUOTA),
        ("RESOURCE_EXHAUSTED: try later", FailureKind.QUOTA),
        ("401 Unauthorized", FailureKind.AUTH),
        ("Request timed out", FailureKind.TIMEOUT),
        ("503 Service Unavailable", FailureKind.TRANSIENT),
        ("rate limit exceeded", FailureKind.TRANSIENT),
        ("model not found", FailureKind.UNAVAILABLE),
        ("something odd happened", FailureKind.NON_RETRYABLE),
        (None, FailureKind.NON_RETRYABLE),
    ],
)
def test_classify_failure(message, kind: FailureKind) -> None:
    assert classify_failure(message).kind is kind


def test_classification_details_are_versioned() -> None:
    details = classify_failure("401 Unauthorized").to_details()

    assert details["classifier_version"] == FAILURE_CLASSIFIER_VERSION
    assert details["matched_rule"] == "auth"
    assert details["matched_pattern"] == "unauthorized"


def test_to_bridge_error_conversions() -> None:
    timeout = to_bridge_error(asyncio.TimeoutError(), backend="claude")
    network = to_bridge_error(ConnectionResetError("reset by peer"), backend="gemini")
    auth = to_bridge_error(ValueError("invalid api key"), backend="aistudio")
    original = PlanValidationError("bad plan")

    assert isinstance(timeout, BackendTimeoutError) and timeout.backend == "claude"
    assert isinstance(network, TransientBackendError)
    assert isinstance(auth, BackendAuthError)
    assert auth.details["failure_kind"] == "auth"
    assert to_bridge_error(original, backend="claude") is original
    assert original.backend == "claude"


@pytest.mark.parametrize(
    ("exc", "error_type", "kind"),
    [
        (FileNotFoundError("claude: command not found"), BackendUnavailableError, FailureKind.UNAVAILABLE),
        (PermissionError("permission denied: /usr/bin/gemini"), BackendAuthError, FailureKind.AUTH),
        (OSError("disk quota exceeded"), QuotaExceededError, FailureKind.QUOTA),
        (OSError("weird descriptor state"), BridgeError, FailureKind.NON_RETRYABLE),
        (BrokenPipeError("broken pipe"), TransientBackendError, FailureKind.TRANSIENT),
        (TimeoutError(), BackendTimeoutError, FailureKind.TIMEOUT),
    ],
)
def test_os_errors_are_not_blanket_transient(exc: OSError, error_type: type, kind: FailureKind) -> None:
    error = to_bridge_error(exc, backend="claude")

    assert isinstance(error, error_type)
    assert failure_kind_of(error) is kind
    assert is_retryable(error) is (kind in (FailureKind.TRANSIENT, FailureKind.TIMEOUT))


def test_only_transient_errors_are_retryable() -> None:
    assert is_retryable(BackendTimeoutError("slow")) is True
    assert is_retryable(TransientBackendError("503")) is True
    assert is_retryable(BackendUnavailableError("down")) is False
    assert is_retryable(QuotaExceededError("quota")) is False
    assert is_retryable(StepResultInvalidError("empty")) is False


@pytest.mark.parametrize(
    ("error", "kind"),
    [
        (QuotaExceededError("q"), FailureKind.QUOTA),
        (BackendAuthError("a"), FailureKind.AUTH),
        (BackendUnavailableError("u"), FailureKind.UNAVAILABLE),
        (BackendTimeoutError("t"), FailureKind.TIMEOUT),
        (TransientBackendError("t"), FailureKind.TRANSIENT),
        (StepResultInvalidError("e"), FailureKind.INVALID_RESULT),
        (BridgeError("x"), FailureKind.NON_RETRYABLE),
    ],
)
def test_failure_kind_of(error: BridgeError, kind: FailureKind) -> None:
    assert failure_kind_of(error) is kind


def test_all_backends_failed_message_names_every_attempt() -> None:
    error = AllBackendsFailedError("claude", ["claude", "gemini", "aistudio"], last_error="boom")

    assert str(error) == "All backends failed. Primary: claude, Fallbacks: gemini, aistudio. Last error: boom"
    assert error.to_dict()["details"]["attempts"] == ["claude", "gemini", "aistudio"]
    assert error.code == "all_backends_failed"


def test_quota_error_payload_carries_retry_after() -> None:
    error = QuotaExceededError("Quota exceeded", backend="aistudio", retry_after=12.5)

    assert error.to_dict() == {
        "code": "quota_exceeded",
        "message": "Quota exceeded",
        "backend": "aistudio",
        "retry_after": 12.5,
    }
