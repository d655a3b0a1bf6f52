from __future__ import annotations

import pytest

from layerbridge.core.admission import QuotaMonitor
from layerbridge.core.config import QuotaRule, QuotaSettings
from tests.helpers.stubs import FakeClock


def _monitor(rule: QuotaRule, **overrides) -> tuple[QuotaMonitor, FakeClock]:
    clock = FakeClock()
    settings = QuotaSettings(rules={"aistudio": rule}, **overrides)
    return QuotaMonitor(settings, clock=clock), clock


def test_minute_request_limit_and_window_roll() -> None:
    monitor, clock = _monitor(QuotaRule(requests_per_minute=2))

    monitor.record("aistudio", 10)
    clock.advance(5)
    monitor.record("aistudio", 10)
    clock.advance(5)
    decision = monitor.can_proceed("aistudio", 10)

    assert decision.allowed is False
    assert decision.reason == "minute_request_limit"
    assert decision.retry_after == pytest.approx(50.0)

    clock.advance(51)
    assert monitor.can_proceed("aistudio", 10).allowed is True


def test_daily_token_limit_counts_the_estimate() -> None:
    monitor, _ = _monitor(QuotaRule(tokens_per_day=100))

    monitor.record("aistudio", 90)

    assert monitor.can_proceed("aistudio", 10).allowed is True
    decision = monitor.can_proceed("aistudio", 20)
    assert decision.allowed is False
    assert decision.reason == "daily_token_limit"


def test_daily_limits_are_checked_before_minute_limits() -> None:
    monitor, _ = _monitor(QuotaRule(requests_per_minute=1, requests_per_day=1))

    monitor.record("aistudio")

    assert monitor.can_proceed("aistudio").reason == "daily_request_limit"


def test_default_estimate_applies_when_tokens_unknown() -> None:
    monitor, _ = _monitor(QuotaRule(tokens_per_minute=500), default_estimated_tokens=1000)

    assert monitor.can_proceed("aistudio").allowed is False
    assert monitor.can_proceed("aistudio", 100).allowed is True


def test_unconfigured_backends_and_disabled_monitor_always_admit() -> None:
    monitor, _ = _monitor(QuotaRule(requests_per_minute=1))
    disabled, _ = _monitor(QuotaRule(requests_per_minute=1), enabled=False)

    for _ in range(5):
        monitor.record("claude")
        disabled.record("aistudio")

    assert monitor.can_proceed("claude").allowed is True
    assert disabled.can_proceed("aistudio").allowed is True


def test_usage_stats_and_quota_status() -> None:
    monitor, _ = _monitor(QuotaRule(requests_per_day=10))

    assert monitor.quota_status("aistudio") == "healthy"
    for _ in range(8):
        monitor.record("aistudio", 5)
    assert monitor.quota_status("aistudio") == "warning"
    monitor.record("aistudio", 5)
    assert monitor.quota_status("aistudio") == "critical"

    stats = monitor.usage_stats("aistudio")
    assert stats["requests_today"] == 9
    assert stats["tokens_today"] == 45
    assert stats["daily_usage_ratio"] == pytest.approx(0.9)
    assert stats["limits"]["requests_per_day"] == 10


def test_reset_clears_usage() -> None:
    monitor, _ = _monitor(QuotaRule(requests_per_minute=1))

    monitor.record("aistudio")
    monitor.reset("aistudio")

    assert monitor.can_proceed("aistudio").allowed is True
    assert monitor.usage_stats("aistudio")["requests_this_minute"] == 0


def test_default_rules_limit_the_multimodal_backend() -> None:
    rules = QuotaSettings().rules

    assert rules["aistudio"].requests_per_minute == 15
    assert rules["aistudio"].tokens_per_day == 50_000
    assert rules["claude"].requests_per_minute is None
