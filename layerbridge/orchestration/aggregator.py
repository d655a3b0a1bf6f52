from __future__ import annotations

from typing import Any, Mapping

from ..schemas.tasks import LayerResult
from ..schemas.workflow import WorkflowResult


def summarize(results: Mapping[str, LayerResult]) -> str:
    total = len(results)
    completed = sum(1 for result in results.values() if result.success)
    return f"{completed}/{total} steps completed, {total - completed} failed"


def aggregate(
    results: Mapping[str, LayerResult],
    *,
    duration: float | None = None,
    execution_mode: str | None = None,
    extra_metadata: Mapping[str, Any] | None = None,
) -> WorkflowResult:
    """Merge per-step outcomes into one workflow result.

    ``success`` holds only when no step failed; a step recovered through its
    fallback counts as successful. When ``duration`` is omitted the per-step
    durations are summed.
    """
    ordered = dict(results)
    failed = {step_id: result for step_id, result in ordered.items() if not result.success}
    completed = len(ordered) - len(failed)

    backends_used: list[str] = []
    for result in ordered.values():
        backend = result.backend
        if backend and backend not in backends_used:
            backends_used.append(backend)

    if failed and completed == 0:
        status = "failed"
    elif failed:
        status = "partial"
    else:
        status = "success"

    metadata: dict[str, Any] = {
        "duration": duration if duration is not None else sum(result.duration for result in ordered.values()),
        "steps_completed": completed,
        "steps_failed": len(failed),
        "cost": sum(result.cost for result in ordered.values()),
        "backends_used": backends_used,
        "status": status,
        "errors": {step_id: result.error or "unknown error" for step_id, result in failed.items()},
    }
    if execution_mode is not None:
        metadata["execution_mode"] = execution_mode
    if extra_metadata:
        metadata.update(extra_metadata)

    return WorkflowResult(
        success=not failed,
        results=ordered,
        summary=summarize(ordered),
        metadata=metadata,
    )


__all__ = ["aggregate", "summarize"]
