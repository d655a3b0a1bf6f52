from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping

FAILURE_CLASSIFIER_VERSION = 1


class BridgeError(RuntimeError):
    """Base class for routing and orchestration failures."""

    code = "bridge_error"

    def __init__(
        self,
        message: str,
        *,
        backend: str | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.backend = backend
        self.details: dict[str, Any] = dict(details or {})

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.backend is not None:
            payload["backend"] = self.backend
        if self.details:
            payload["details"] = dict(self.details)
        return payload


class PlanValidationError(BridgeError):
    """Raised when a plan is malformed, cyclic, or names an unknown workflow kind."""

    code = "validation"


class BackendUnavailableError(BridgeError):
    """Raised when a backend cannot serve requests at all."""

    code = "backend_unavailable"


class BackendAuthError(BackendUnavailableError):
    """Raised when a backend rejects credentials or permissions."""

    code = "backend_auth"


class TransientBackendError(BridgeError):
    """Raised for failures that may succeed on retry (network, 5xx, rate limits)."""

    code = "transient"


class BackendTimeoutError(TransientBackendError):
    """Raised when a backend call exceeds its deadline."""

    code = "timeout"


class QuotaExceededError(BridgeError):
    """Raised when admission control rejects a call for the current quota window."""

    code = "quota_exceeded"

    def __init__(
        self,
        message: str,
        *,
        backend: str | None = None,
        retry_after: float | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message, backend=backend, details=details)
        self.retry_after = retry_after

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        if self.retry_after is not None:
            payload["retry_after"] = self.retry_after
        return payload


class StepResultInvalidError(BridgeError):
    """Raised when a backend reports success with an empty payload."""

    code = "invalid_result"


class WorkflowTimeoutError(BridgeError):
    """Raised when the outer workflow deadline fires before all steps finish."""

    code = "workflow_timeout"


class AllBackendsFailedError(BridgeError):
    """Raised when the primary backend and every fallback candidate failed."""

    code = "all_backends_failed"

    def __init__(self, primary: str, attempts: Iterable[str], *, last_error: str | None = None) -> None:
        self.primary = primary
        self.attempts = list(attempts)
        fallbacks = [name for name in self.attempts if name != primary]
        message = (
            "All backends failed. "
            f"Primary: {primary}, Fallbacks: {', '.join(fallbacks) if fallbacks else 'none'}"
        )
        if last_error:
            message = f"{message}. Last error: {last_error}"
        super().__init__(
            message,
            backend=primary,
            details={"attempts": list(self.attempts), "last_error": last_error},
        )


class FailureKind(str, Enum):
    QUOTA = "quota"
    AUTH = "auth"
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"
    TRANSIENT = "transient"
    INVALID_RESULT = "invalid_result"
    NON_RETRYABLE = "non_retryable"


_QUOTA_PATTERNS: tuple[str, ...] = (
    "quota",
    "resource_exhausted",
    "resource exhausted",
    "billing",
    "usage limit",
    "insufficient credits",
)
_AUTH_PATTERNS: tuple[str, ...] = (
    "unauthorized",
    "forbidden",
    "permission denied",
    "invalid api key",
    "api key not valid",
    "authentication",
    "401",
    "403",
)
_UNAVAILABLE_PATTERNS: tuple[str, ...] = (
    "not available",
    "unavailable",
    "not initialized",
    "not installed",
    "command not found",
    "model not found",
    "unknown model",
)
_TIMEOUT_PATTERNS: tuple[str, ...] = (
    "timed out",
    "timeout",
    "deadline exceeded",
)
_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "too many requests",
    "rate limit",
    "429",
    "500",
    "502",
    "503",
    "504",
    "internal server error",
    "bad gateway",
    "temporarily",
    "try again",
    "connection reset",
    "connection refused",
    "network",
    "econnreset",
    "etimedout",
)


@dataclass(slots=True)
class FailureClassification:
    """Normalized failure classification result."""

    kind: FailureKind
    matched_rule: str
    matched_pattern: str | None

    def to_details(self) -> dict[str, Any]:
        return {
            "classifier_version": FAILURE_CLASSIFIER_VERSION,
            "failure_kind": self.kind.value,
            "matched_rule": self.matched_rule,
            "matched_pattern": self.matched_pattern,
        }


def classify_failure(message: str | None) -> FailureClassification:
    """Classify raw backend error text into a deterministic failure kind."""

    haystack = (message or "").lower()
    ordered: tuple[tuple[FailureKind, str, tuple[str, ...]], ...] = (
        (FailureKind.QUOTA, "quota", _QUOTA_PATTERNS),
        (FailureKind.AUTH, "auth", _AUTH_PATTERNS),
        (FailureKind.TIMEOUT, "timeout", _TIMEOUT_PATTERNS),
        (FailureKind.TRANSIENT, "transient", _TRANSIENT_PATTERNS),
        (FailureKind.UNAVAILABLE, "unavailable", _UNAVAILABLE_PATTERNS),
    )
    for kind, rule, patterns in ordered:
        pattern = _first_match(haystack, patterns)
        if pattern is not None:
            return FailureClassification(kind=kind, matched_rule=rule, matched_pattern=pattern)
    return FailureClassification(
        kind=FailureKind.NON_RETRYABLE,
        matched_rule="fallback_non_retryable",
        matched_pattern=None,
    )


def error_for_kind(
    kind: FailureKind,
    message: str,
    *,
    backend: str | None = None,
    details: Mapping[str, Any] | None = None,
) -> BridgeError:
    if kind is FailureKind.QUOTA:
        return QuotaExceededError(message, backend=backend, details=details)
    if kind is FailureKind.AUTH:
        return BackendAuthError(message, backend=backend, details=details)
    if kind is FailureKind.UNAVAILABLE:
        return BackendUnavailableError(message, backend=backend, details=details)
    if kind is FailureKind.TIMEOUT:
        return BackendTimeoutError(message, backend=backend, details=details)
    if kind is FailureKind.TRANSIENT:
        return TransientBackendError(message, backend=backend, details=details)
    if kind is FailureKind.INVALID_RESULT:
        return StepResultInvalidError(message, backend=backend, details=details)
    return BridgeError(message, backend=backend, details=details)


def to_bridge_error(exc: BaseException, *, backend: str | None = None) -> BridgeError:
    """Convert any exception raised around a backend call into the bridge taxonomy."""

    if isinstance(exc, BridgeError):
        if exc.backend is None and backend is not None:
            exc.backend = backend
        return exc
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return BackendTimeoutError("Backend call timed out", backend=backend)
    message = str(exc) or exc.__class__.__name__
    if isinstance(exc, ConnectionError):
        return TransientBackendError(message, backend=backend)
    if isinstance(exc, PermissionError):
        return BackendAuthError(message, backend=backend)
    if isinstance(exc, FileNotFoundError):
        return BackendUnavailableError(message, backend=backend)
    classification = classify_failure(message)
    return error_for_kind(classification.kind, message, backend=backend, details=classification.to_details())


def failure_kind_of(error: BaseException) -> FailureKind:
    if isinstance(error, QuotaExceededError):
        return FailureKind.QUOTA
    if isinstance(error, BackendAuthError):
        return FailureKind.AUTH
    if isinstance(error, BackendUnavailableError):
        return FailureKind.UNAVAILABLE
    if isinstance(error, BackendTimeoutError):
        return FailureKind.TIMEOUT
    if isinstance(error, TransientBackendError):
        return FailureKind.TRANSIENT
    if isinstance(error, StepResultInvalidError):
        return FailureKind.INVALID_RESULT
    return FailureKind.NON_RETRYABLE


def is_retryable(error: BaseException) -> bool:
    return isinstance(error, TransientBackendError)


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None


__all__ = [
    "AllBackendsFailedError",
    "BackendAuthError",
    "BackendTimeoutError",
    "BackendUnavailableError",
    "BridgeError",
    "FAILURE_CLASSIFIER_VERSION",
    "FailureClassification",
    "FailureKind",
    "PlanValidationError",
    "QuotaExceededError",
    "StepResultInvalidError",
    "TransientBackendError",
    "WorkflowTimeoutError",
    "classify_failure",
    "error_for_kind",
    "failure_kind_of",
    "is_retryable",
    "to_bridge_error",
]
