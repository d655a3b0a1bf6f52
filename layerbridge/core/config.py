from __future__ import annotations

from functools import lru_cache
from typing import Any, Literal, Mapping

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PlanningSettings(BaseModel):
    max_steps: int = Field(50, ge=1, description="Hard cap on the number of steps a single plan may contain.")
    max_concurrent_per_level: int = Field(
        5,
        ge=1,
        description="Maximum number of steps grouped into one parallel dependency level.",
    )


class SchedulingSettings(BaseModel):
    max_concurrency: int = Field(3, ge=1, description="Concurrent backend calls allowed inside one level.")
    batch_delay_seconds: float = Field(
        0.2,
        ge=0.0,
        description="Pacing delay injected between parallel levels to respect backend rate limits.",
    )
    default_step_timeout_seconds: float = Field(300.0, gt=0.0)
    workflow_timeout_seconds: float = Field(600.0, gt=0.0)
    abort_on_first_error: bool = Field(False, description="Stop sequential runs after the first terminal failure.")
    default_mode: Literal["sequential", "parallel", "adaptive"] = "adaptive"


class RetrySettings(BaseModel):
    max_attempts: int = Field(3, ge=1, description="Attempts per backend call, including the first one.")
    base_backoff_seconds: float = Field(1.0, ge=0.0)
    backoff_multiplier: float = Field(2.0, ge=1.0)
    max_backoff_seconds: float = Field(10.0, ge=0.0)


class CacheSettings(BaseModel):
    enabled: bool = Field(True)
    ttl_seconds: float = Field(1800.0, gt=0.0)
    max_entries: int = Field(1000, ge=1)
    similarity_threshold: float = Field(0.8, ge=0.0, le=1.0)
    cacheable_actions: tuple[str, ...] = Field(
        (
            "search",
            "web_search",
            "grounded_search",
            "analyze_with_grounding",
            "text_processing",
        ),
        description="Read-only, search-like actions whose results may be served from cache.",
    )


class QuotaRule(BaseModel):
    requests_per_minute: int | None = Field(None, ge=1)
    requests_per_day: int | None = Field(None, ge=1)
    tokens_per_minute: int | None = Field(None, ge=1)
    tokens_per_day: int | None = Field(None, ge=1)


def _default_quota_rules() -> dict[str, QuotaRule]:
    return {
        "claude": QuotaRule(),
        "gemini": QuotaRule(),
        "aistudio": QuotaRule(
            requests_per_minute=15,
            requests_per_day=1500,
            tokens_per_minute=32_000,
            tokens_per_day=50_000,
        ),
    }


class QuotaSettings(BaseModel):
    enabled: bool = Field(True)
    default_estimated_tokens: int = Field(1000, ge=0)
    warning_ratio: float = Field(0.8, ge=0.0, le=1.0)
    critical_ratio: float = Field(0.9, ge=0.0, le=1.0)
    rules: dict[str, QuotaRule] = Field(default_factory=_default_quota_rules)


class FastPathSettings(BaseModel):
    enabled: bool = Field(True)
    max_prompt_chars: int = Field(1000, ge=1)
    complex_keywords: tuple[str, ...] = Field(
        (
            "workflow",
            "orchestrate",
            "generate image",
            "convert",
            "analyze multiple",
        )
    )


class ObservabilitySettings(BaseModel):
    prometheus_enabled: bool = Field(True)
    metrics_port: int | None = Field(None, ge=1, le=65535, description="Port for the standalone /metrics exporter.")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"


class Settings(BaseSettings):
    environment: Literal["local", "test", "production"] = Field("local")

    planning: PlanningSettings = Field(default_factory=PlanningSettings)  # type: ignore[arg-type]
    scheduling: SchedulingSettings = Field(default_factory=SchedulingSettings)  # type: ignore[arg-type]
    retry: RetrySettings = Field(default_factory=RetrySettings)  # type: ignore[arg-type]
    cache: CacheSettings = Field(default_factory=CacheSettings)  # type: ignore[arg-type]
    quota: QuotaSettings = Field(default_factory=QuotaSettings)  # type: ignore[arg-type]
    fast_path: FastPathSettings = Field(default_factory=FastPathSettings)  # type: ignore[arg-type]
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)  # type: ignore[arg-type]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )


@lru_cache(maxsize=1)
def _get_cached_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]


def get_settings(overrides: Mapping[str, Any] | None = None) -> Settings:
    """Return settings, using cached defaults unless overrides are provided."""
    if overrides:
        materialized = dict(overrides)
        allowed_keys = set(Settings.model_fields)
        filtered = {key: value for key, value in materialized.items() if key in allowed_keys}
        if filtered:
            return Settings(**filtered)
    return _get_cached_settings()
