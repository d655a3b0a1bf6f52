"""Resolution of ``"@<step_id>.<dotted.path>"`` step inputs.

Only top-level string values are treated as references. A reference never
raises: failed producers resolve to a ``failed`` sentinel, unknown or not yet
finished producers to a ``missing`` sentinel, and traversal through a
non-mapping yields ``None``.
"""

from __future__ import annotations

from typing import Any, Mapping

from ..core.logging import get_logger
from ..schemas.tasks import LayerResult
from ..schemas.workflow import STEP_REFERENCE_PREFIX

logger = get_logger(name=__name__)


def parse_reference(value: Any) -> tuple[str, list[str]] | None:
    if not isinstance(value, str) or not value.startswith(STEP_REFERENCE_PREFIX):
        return None
    body = value[len(STEP_REFERENCE_PREFIX) :]
    if not body:
        return None
    step_id, *path = body.split(".")
    return step_id, [part for part in path if part]


def failed_sentinel(step_id: str, error: str | None) -> dict[str, Any]:
    return {"failed": True, "step_id": step_id, "error": error or "step failed"}


def missing_sentinel(step_id: str, hint: str) -> dict[str, Any]:
    return {"missing": True, "step_id": step_id, "hint": hint}


def _traverse(root: Any, path: list[str]) -> Any:
    current = root
    for part in path:
        if isinstance(current, Mapping):
            current = current.get(part)
        else:
            return None
    return current


def resolve_reference(value: str, results: Mapping[str, LayerResult], known_steps: set[str] | None = None) -> Any:
    parsed = parse_reference(value)
    if parsed is None:
        return value
    step_id, path = parsed
    result = results.get(step_id)
    if result is None:
        if known_steps is not None and step_id not in known_steps:
            hint = f"Unknown step '{step_id}' referenced by {value}"
        else:
            hint = f"Step '{step_id}' has not completed; reference {value} is unresolved"
        logger.warning("step_reference_missing", step_id=step_id, reference=value)
        return missing_sentinel(step_id, hint)
    if not result.success:
        return failed_sentinel(step_id, result.error)
    return _traverse({"output": result.data}, path)


def resolve_step_input(
    step_input: Mapping[str, Any],
    results: Mapping[str, LayerResult],
    base_input: Mapping[str, Any] | None = None,
    known_steps: set[str] | None = None,
) -> dict[str, Any]:
    """Merge ``base_input`` with the step's own input, resolving references."""
    resolved: dict[str, Any] = dict(base_input or {})
    for key, value in step_input.items():
        if parse_reference(value) is not None:
            resolved[key] = resolve_reference(value, results, known_steps)
        else:
            resolved[key] = value
    return resolved


__all__ = [
    "failed_sentinel",
    "missing_sentinel",
    "parse_reference",
    "resolve_reference",
    "resolve_step_input",
]
