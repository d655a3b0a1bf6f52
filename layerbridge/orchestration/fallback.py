from __future__ import annotations

from typing import Any, Mapping

from ..core.logging import get_logger
from ..core.metrics import record_fallback_activation
from ..schemas.tasks import BackendKind, Complexity, LayerResult
from ..schemas.workflow import ExecutionPlan, WorkflowStep, fallback_key
from .executor import StepExecutor, build_step_task
from .references import resolve_step_input

logger = get_logger(name=__name__)


def backend_fallback_order(
    primary: BackendKind,
    *,
    has_files: bool,
    complexity: Complexity,
) -> list[BackendKind]:
    """Fixed per-backend fallback order for ad hoc task execution."""
    if primary is BackendKind.CLAUDE:
        return [BackendKind.AISTUDIO, BackendKind.GEMINI] if has_files else [BackendKind.GEMINI, BackendKind.AISTUDIO]
    if primary is BackendKind.GEMINI:
        if complexity is Complexity.HIGH:
            return [BackendKind.CLAUDE, BackendKind.AISTUDIO]
        return [BackendKind.AISTUDIO, BackendKind.CLAUDE]
    if complexity is Complexity.HIGH:
        return [BackendKind.CLAUDE, BackendKind.GEMINI]
    return [BackendKind.GEMINI, BackendKind.CLAUDE]


class FallbackResolver:
    """Runs the declared substitute for a failed workflow step, at most once."""

    def __init__(self, executor: StepExecutor) -> None:
        self._executor = executor

    @staticmethod
    def substitute_for(plan: ExecutionPlan, step: WorkflowStep) -> WorkflowStep | None:
        strategy = plan.fallback_strategies.get(fallback_key(step.backend))
        if strategy is None or strategy.replace != step.id:
            return None
        return strategy.step

    async def recover(
        self,
        plan: ExecutionPlan,
        step: WorkflowStep,
        failed_input: Mapping[str, Any],
        failure: LayerResult,
        *,
        timeout: float | None = None,
    ) -> LayerResult | None:
        """Return the substitute's successful result, or None when the original failure stands."""
        substitute = self.substitute_for(plan, step)
        if substitute is None:
            return None

        logger.info(
            "fallback_activated",
            step_id=step.id,
            failed_backend=step.backend.value,
            substitute_id=substitute.id,
            substitute_backend=substitute.backend.value,
            error=failure.error,
        )
        # Substitutes see the failed step's own input, never other steps' outputs.
        substitute_input = resolve_step_input(substitute.input, {}, base_input=failed_input)
        task = build_step_task(substitute, substitute_input, timeout=substitute.timeout or timeout)
        result = await self._executor.execute(
            substitute.backend,
            task,
            step_id=substitute.id,
            timeout=substitute.timeout or timeout,
        )
        if not result.success:
            record_fallback_activation(backend=step.backend.value, outcome="failed")
            logger.warning(
                "fallback_failed",
                step_id=step.id,
                substitute_id=substitute.id,
                error=result.error,
            )
            return None

        record_fallback_activation(backend=step.backend.value, outcome="recovered")
        metadata = dict(result.metadata)
        metadata.update(
            fallback_used=True,
            fallback_step_id=substitute.id,
            original_backend=step.backend.value,
            original_error=failure.error,
            step_id=step.id,
        )
        return LayerResult(success=True, data=result.data, metadata=metadata)


__all__ = ["FallbackResolver", "backend_fallback_order"]
