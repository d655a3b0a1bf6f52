from __future__ import annotations

import asyncio
import math
import time
from dataclasses import dataclass
from typing import Any, Mapping

from pydantic import ValidationError
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from ..backends.base import Backend
from ..backends.registry import BackendRegistry
from ..core.admission import QuotaMonitor
from ..core.config import RetrySettings, SchedulingSettings
from ..core.errors import (
    BackendTimeoutError,
    BridgeError,
    QuotaExceededError,
    StepResultInvalidError,
    classify_failure,
    error_for_kind,
    failure_kind_of,
    is_retryable,
    to_bridge_error,
)
from ..core.logging import get_logger, preview
from ..core.metrics import observe_backend_call
from ..routing import lexicons
from ..schemas.tasks import BackendKind, FileRef, LayerResult, Task
from ..schemas.workflow import WorkflowStep
from ..services.cache import SearchCache

logger = get_logger(name=__name__)

_PROMPT_KEYS: tuple[str, ...] = (
    "prompt",
    "instructions",
    "original_prompt",
    "requirements",
    "generation_goals",
    "extraction_requirements",
    "conversion_instructions",
    "target_format",
)


@dataclass(slots=True)
class RetryPolicy:
    max_attempts: int
    base_backoff_seconds: float
    backoff_multiplier: float
    max_backoff_seconds: float

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            base_backoff_seconds=settings.base_backoff_seconds,
            backoff_multiplier=settings.backoff_multiplier,
            max_backoff_seconds=settings.max_backoff_seconds,
        )

    def retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(max(self.max_attempts, 1)),
            wait=wait_exponential(
                multiplier=self.base_backoff_seconds,
                exp_base=self.backoff_multiplier,
                max=self.max_backoff_seconds,
            ),
            retry=retry_if_exception(is_retryable),
            reraise=True,
        )


def action_task_type(action: str) -> str:
    return lexicons.ACTION_TASK_TYPES.get(action, lexicons.DEFAULT_TASK_TYPE)


def estimate_tokens(task: Task) -> int:
    return math.ceil(len(task.prompt) / 4) + len(task.files) * 100


def _coerce_files(raw: Any) -> tuple[FileRef, ...]:
    if not isinstance(raw, (list, tuple)):
        return ()
    try:
        return tuple(item if isinstance(item, FileRef) else FileRef.model_validate(item) for item in raw)
    except ValidationError:
        return ()


def build_step_task(step: WorkflowStep, resolved_input: Mapping[str, Any], timeout: float | None = None) -> Task:
    """Translate a workflow step and its resolved input into a backend task."""
    prompt = ""
    for key in _PROMPT_KEYS:
        value = resolved_input.get(key)
        if isinstance(value, str) and value:
            prompt = value
            break
    options = resolved_input.get("options")
    return Task(
        prompt=prompt,
        files=_coerce_files(resolved_input.get("files")),
        options=dict(options) if isinstance(options, Mapping) else {},
        type=action_task_type(step.action),
        action=step.action,
        timeout=timeout,
        payload=dict(resolved_input),
    )


def _is_empty(data: Any) -> bool:
    if data is None:
        return True
    if isinstance(data, str):
        return not data.strip()
    if isinstance(data, (Mapping, list, tuple, set)):
        return len(data) == 0
    return False


def _cache_scope(task: Task) -> str:
    return f"use_search={task.options.get('use_search')}"


class StepExecutor:
    """Dispatches one task to one backend: initialization, cache, admission, retry, normalization.

    Failures never escape :meth:`execute`; they come back as a failed
    :class:`LayerResult` whose metadata carries the failure kind.
    """

    def __init__(
        self,
        registry: BackendRegistry,
        *,
        scheduling: SchedulingSettings | None = None,
        retry: RetrySettings | None = None,
        cache: SearchCache | None = None,
        admission: QuotaMonitor | None = None,
    ) -> None:
        self._registry = registry
        self._scheduling = scheduling or SchedulingSettings()
        self._retry = RetryPolicy.from_settings(retry or RetrySettings())
        self._cache = cache
        self._admission = admission

    @property
    def registry(self) -> BackendRegistry:
        return self._registry

    async def execute(
        self,
        backend_kind: BackendKind | str,
        task: Task,
        *,
        step_id: str | None = None,
        timeout: float | None = None,
    ) -> LayerResult:
        kind = BackendKind(backend_kind)
        effective_timeout = timeout or task.timeout or self._scheduling.default_step_timeout_seconds
        started = time.perf_counter()
        attempts = 0
        try:
            backend = await self._ready(kind, effective_timeout)

            cache_query = self._cache_query(kind, task)
            cache_scope = _cache_scope(task)
            if cache_query is not None and self._cache is not None:
                entry = await self._cache.get(cache_query, kind.value, scope=cache_scope)
                if entry is not None:
                    return LayerResult.ok(
                        entry.content,
                        backend=kind.value,
                        duration=time.perf_counter() - started,
                        cost=0.0,
                        cached=True,
                        sources=list(entry.sources),
                        step_id=step_id,
                        model=task.action,
                    )

            result: LayerResult | None = None
            async for attempt in self._retry.retrying():
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    result = await self._call_once(backend, kind, task, effective_timeout, step_id, attempts)
            if result is None:
                raise StepResultInvalidError(f"Backend '{kind.value}' produced no result", backend=kind.value)

            if _is_empty(result.data):
                raise StepResultInvalidError(
                    f"Backend '{kind.value}' reported success with an empty payload",
                    backend=kind.value,
                )

            duration = time.perf_counter() - started
            metadata = dict(result.metadata)
            metadata.setdefault("model", task.action)
            metadata.setdefault("cost", float(backend.cost(task)))
            metadata.update(backend=kind.value, duration=duration, attempts=attempts, step_id=step_id)
            if cache_query is not None and self._cache is not None:
                await self._cache.set(cache_query, result.data, kind.value, latency=duration, scope=cache_scope)
            return LayerResult(success=True, data=result.data, metadata=metadata)
        except Exception as exc:  # noqa: BLE001 - every failure becomes a failed result
            error = to_bridge_error(exc, backend=kind.value)
            duration = time.perf_counter() - started
            logger.warning(
                "backend_task_failed",
                backend=kind.value,
                step_id=step_id,
                action=task.action,
                error=error.message,
                error_code=error.code,
                attempts=attempts,
            )
            failure_metadata: dict[str, Any] = {
                "backend": kind.value,
                "duration": duration,
                "cost": 0.0,
                "attempts": attempts,
                "step_id": step_id,
                "model": task.action,
                "error_kind": failure_kind_of(error).value,
                "error_code": error.code,
            }
            if isinstance(error, QuotaExceededError) and error.retry_after is not None:
                failure_metadata["retry_after"] = error.retry_after
            return LayerResult(success=False, error=error.message, metadata=failure_metadata)

    async def _ready(self, kind: BackendKind, timeout: float) -> Backend:
        try:
            return await asyncio.wait_for(self._registry.ensure_ready(kind), timeout=timeout)
        except asyncio.TimeoutError as exc:
            observe_backend_call(backend=kind.value, outcome="timeout", latency=timeout)
            raise BackendTimeoutError(
                f"Backend '{kind.value}' timed out after {timeout:g}s while initializing",
                backend=kind.value,
            ) from exc

    async def _call_once(
        self,
        backend: Backend,
        kind: BackendKind,
        task: Task,
        timeout: float,
        step_id: str | None,
        attempt: int,
    ) -> LayerResult:
        tokens = estimate_tokens(task)
        if self._admission is not None:
            decision = self._admission.can_proceed(kind.value, tokens)
            if not decision.allowed:
                raise QuotaExceededError(
                    f"Quota exceeded for backend '{kind.value}' ({decision.reason})",
                    backend=kind.value,
                    retry_after=decision.retry_after,
                )

        logger.debug(
            "backend_call_started",
            backend=kind.value,
            step_id=step_id,
            action=task.action,
            attempt=attempt,
            prompt=preview(task.prompt),
        )
        started = time.perf_counter()
        outcome = "success"
        try:
            raw = await asyncio.wait_for(backend.execute(task), timeout=timeout)
        except asyncio.TimeoutError as exc:
            outcome = "timeout"
            raise BackendTimeoutError(
                f"Backend '{kind.value}' timed out after {timeout:g}s",
                backend=kind.value,
            ) from exc
        except BridgeError:
            outcome = "failure"
            raise
        except Exception as exc:
            outcome = "failure"
            raise to_bridge_error(exc, backend=kind.value) from exc
        finally:
            if self._admission is not None:
                self._admission.record(kind.value, tokens)
            observe_backend_call(backend=kind.value, outcome=outcome, latency=time.perf_counter() - started)

        result = raw if isinstance(raw, LayerResult) else LayerResult.ok(raw)
        if not result.success:
            message = result.error or f"Backend '{kind.value}' reported failure"
            classification = classify_failure(message)
            raise error_for_kind(classification.kind, message, backend=kind.value, details=classification.to_details())
        return result

    def _cache_query(self, kind: BackendKind, task: Task) -> str | None:
        if self._cache is None or kind is not BackendKind.GEMINI:
            return None
        action = task.action or task.type or "search"
        if not self._cache.is_cacheable(action) or not task.prompt.strip() or task.files:
            return None
        return f"{action} {task.prompt}"


__all__ = ["RetryPolicy", "StepExecutor", "action_task_type", "build_step_task", "estimate_tokens"]
