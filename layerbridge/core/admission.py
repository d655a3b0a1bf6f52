from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque

from .config import QuotaRule, QuotaSettings
from .logging import get_logger
from .metrics import record_admission_rejection

logger = get_logger(name=__name__)

MINUTE_SECONDS = 60.0
DAY_SECONDS = 86_400.0


@dataclass(slots=True)
class AdmissionDecision:
    allowed: bool
    reason: str | None = None
    retry_after: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"allowed": self.allowed, "reason": self.reason, "retry_after": self.retry_after}


@dataclass(slots=True)
class _UsageWindow:
    minute: Deque[tuple[float, int]] = field(default_factory=deque)
    day: Deque[tuple[float, int]] = field(default_factory=deque)

    def prune(self, now: float) -> None:
        minute_boundary = now - MINUTE_SECONDS
        while self.minute and self.minute[0][0] <= minute_boundary:
            self.minute.popleft()
        day_boundary = now - DAY_SECONDS
        while self.day and self.day[0][0] <= day_boundary:
            self.day.popleft()

    def counts(self) -> tuple[int, int, int, int]:
        return (
            len(self.minute),
            len(self.day),
            sum(tokens for _, tokens in self.minute),
            sum(tokens for _, tokens in self.day),
        )


class QuotaMonitor:
    """Rolling minute/day admission control per backend.

    Counters are updated from the event loop only, so no locking is needed.
    Backends without a configured rule are always admitted.
    """

    def __init__(
        self,
        settings: QuotaSettings | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings or QuotaSettings()
        self._clock = clock
        self._windows: dict[str, _UsageWindow] = {}

    @property
    def enabled(self) -> bool:
        return self._settings.enabled

    def rule_for(self, backend: str) -> QuotaRule:
        return self._settings.rules.get(str(backend), QuotaRule())

    def can_proceed(self, backend: str, estimated_tokens: int | None = None) -> AdmissionDecision:
        if not self._settings.enabled:
            return AdmissionDecision(allowed=True)
        key = str(backend)
        rule = self.rule_for(key)
        tokens = self._settings.default_estimated_tokens if estimated_tokens is None else estimated_tokens
        window = self._window(key)
        now = self._clock()
        window.prune(now)
        rpm, rpd, tpm, tpd = window.counts()

        decision: AdmissionDecision | None = None
        if rule.requests_per_day is not None and rpd >= rule.requests_per_day:
            decision = AdmissionDecision(
                allowed=False,
                reason="daily_request_limit",
                retry_after=self._retry_after(window.day, now, DAY_SECONDS),
            )
        elif rule.tokens_per_day is not None and tpd + tokens > rule.tokens_per_day:
            decision = AdmissionDecision(
                allowed=False,
                reason="daily_token_limit",
                retry_after=self._retry_after(window.day, now, DAY_SECONDS),
            )
        elif rule.requests_per_minute is not None and rpm >= rule.requests_per_minute:
            decision = AdmissionDecision(
                allowed=False,
                reason="minute_request_limit",
                retry_after=self._retry_after(window.minute, now, MINUTE_SECONDS),
            )
        elif rule.tokens_per_minute is not None and tpm + tokens > rule.tokens_per_minute:
            decision = AdmissionDecision(
                allowed=False,
                reason="minute_token_limit",
                retry_after=self._retry_after(window.minute, now, MINUTE_SECONDS),
            )

        if decision is None:
            return AdmissionDecision(allowed=True)
        logger.warning(
            "admission_rejected",
            backend=key,
            reason=decision.reason,
            retry_after=decision.retry_after,
        )
        record_admission_rejection(backend=key, reason=decision.reason or "unknown")
        return decision

    def record(self, backend: str, tokens: int = 0) -> None:
        key = str(backend)
        window = self._window(key)
        now = self._clock()
        window.prune(now)
        entry = (now, max(int(tokens), 0))
        window.minute.append(entry)
        window.day.append(entry)

    def usage_stats(self, backend: str) -> dict[str, Any]:
        key = str(backend)
        rule = self.rule_for(key)
        window = self._window(key)
        window.prune(self._clock())
        rpm, rpd, tpm, tpd = window.counts()
        return {
            "requests_this_minute": rpm,
            "requests_today": rpd,
            "tokens_this_minute": tpm,
            "tokens_today": tpd,
            "limits": rule.model_dump(),
            "daily_usage_ratio": _ratio(rpd, rule.requests_per_day),
            "minute_usage_ratio": _ratio(rpm, rule.requests_per_minute),
        }

    def quota_status(self, backend: str) -> str:
        """Return ``healthy``, ``warning`` or ``critical`` for the backend's current usage."""
        stats = self.usage_stats(backend)
        daily = stats["daily_usage_ratio"]
        minute = stats["minute_usage_ratio"]
        critical = self._settings.critical_ratio
        warning = self._settings.warning_ratio
        if daily >= critical or minute >= min(critical + 0.05, 1.0):
            return "critical"
        if daily >= warning or minute >= min(warning + 0.1, 1.0):
            return "warning"
        return "healthy"

    def reset(self, backend: str | None = None) -> None:
        if backend is None:
            self._windows.clear()
            return
        self._windows.pop(str(backend), None)

    def _window(self, backend: str) -> _UsageWindow:
        window = self._windows.get(backend)
        if window is None:
            window = _UsageWindow()
            self._windows[backend] = window
        return window

    @staticmethod
    def _retry_after(entries: Deque[tuple[float, int]], now: float, period: float) -> float:
        if not entries:
            return 0.0
        return max((entries[0][0] + period) - now, 0.0)


def _ratio(used: int, limit: int | None) -> float:
    if not limit:
        return 0.0
    return used / limit


__all__ = ["AdmissionDecision", "QuotaMonitor"]
