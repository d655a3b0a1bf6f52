from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Sequence

from ..core.config import SchedulingSettings
from ..core.logging import get_logger
from ..core.metrics import record_step_outcome
from ..routing import lexicons
from ..routing.lexicons import matches
from ..schemas.tasks import BackendKind, Complexity, LayerResult
from ..schemas.workflow import WorkflowStep, WorkloadAnalysis
from .compiler import CompiledPlan
from .enums import ExecutionMode, StepStatus
from .executor import StepExecutor, build_step_task
from .fallback import FallbackResolver
from .references import resolve_step_input

logger = get_logger(name=__name__)

_DOCUMENT_SUFFIXES: tuple[str, ...] = (".pdf", ".docx", ".doc", ".txt")


@dataclass(slots=True)
class ExecutionContext:
    """Mutable state for one workflow run. Each step writes its own result slot once."""

    compiled: CompiledPlan
    input_data: dict[str, Any] = field(default_factory=dict)
    results: dict[str, LayerResult] = field(default_factory=dict)
    statuses: dict[str, StepStatus] = field(default_factory=dict)
    mode: ExecutionMode | None = None
    analysis: WorkloadAnalysis | None = None

    def __post_init__(self) -> None:
        for step in self.compiled.steps:
            self.statuses.setdefault(step.id, StepStatus.PENDING)

    @property
    def known_steps(self) -> set[str]:
        return {step.id for step in self.compiled.steps}

    def ordered_results(self) -> dict[str, LayerResult]:
        return {step.id: self.results[step.id] for step in self.compiled.order if step.id in self.results}


class WorkflowScheduler:
    """Base policy: owns the per-step run (resolve, execute, fall back, record)."""

    mode: ExecutionMode = ExecutionMode.SEQUENTIAL

    def __init__(
        self,
        executor: StepExecutor,
        *,
        fallback: FallbackResolver | None = None,
        settings: SchedulingSettings | None = None,
    ) -> None:
        self._executor = executor
        self._fallback = fallback or FallbackResolver(executor)
        self._settings = settings or SchedulingSettings()

    async def run(self, context: ExecutionContext) -> dict[str, LayerResult]:
        raise NotImplementedError

    async def run_step(self, context: ExecutionContext, step: WorkflowStep) -> LayerResult:
        context.statuses[step.id] = StepStatus.RUNNING
        timeout = step.timeout or self._settings.default_step_timeout_seconds
        resolved = resolve_step_input(step.input, context.results, context.input_data, context.known_steps)
        task = build_step_task(step, resolved, timeout=timeout)
        logger.info("step_started", step_id=step.id, backend=step.backend.value, action=step.action)

        result = await self._executor.execute(step.backend, task, step_id=step.id, timeout=timeout)
        status = StepStatus.SUCCEEDED
        if not result.success:
            recovered = await self._fallback.recover(context.compiled.plan, step, resolved, result, timeout=timeout)
            if recovered is not None:
                result = recovered
                status = StepStatus.FAILED_RECOVERED
            else:
                status = StepStatus.FAILED_TERMINAL

        result.metadata["status"] = status.value
        result.metadata.setdefault("step_id", step.id)
        context.results[step.id] = result
        context.statuses[step.id] = status
        record_step_outcome(backend=step.backend.value, status=status.value)
        if status is StepStatus.FAILED_TERMINAL:
            logger.warning("step_failed", step_id=step.id, backend=step.backend.value, error=result.error)
        else:
            logger.info(
                "step_completed",
                step_id=step.id,
                backend=result.backend or step.backend.value,
                status=status.value,
                duration=result.duration,
            )
        return result

    async def _run_levels(self, context: ExecutionContext, levels: Sequence[Sequence[WorkflowStep]]) -> None:
        semaphore = asyncio.Semaphore(self._settings.max_concurrency)

        async def gated(step: WorkflowStep) -> LayerResult:
            async with semaphore:
                return await self.run_step(context, step)

        for index, level in enumerate(levels):
            if not level:
                continue
            if index > 0 and self._settings.batch_delay_seconds > 0:
                await asyncio.sleep(self._settings.batch_delay_seconds)
            logger.debug("level_started", level=index, steps=[step.id for step in level])
            await asyncio.gather(*(gated(step) for step in level))


class SequentialScheduler(WorkflowScheduler):
    mode = ExecutionMode.SEQUENTIAL

    def __init__(self, *args: Any, abort_on_first_error: bool | None = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._abort = self._settings.abort_on_first_error if abort_on_first_error is None else abort_on_first_error

    async def run(self, context: ExecutionContext) -> dict[str, LayerResult]:
        order = context.compiled.order
        for index, step in enumerate(order):
            result = await self.run_step(context, step)
            if not result.success and self._abort:
                for skipped in order[index + 1 :]:
                    context.results[skipped.id] = LayerResult.failure(
                        f"Skipped after step '{step.id}' failed",
                        backend=skipped.backend.value,
                        duration=0.0,
                        cost=0.0,
                        step_id=skipped.id,
                        status=StepStatus.FAILED_TERMINAL.value,
                        error_kind="skipped",
                    )
                    context.statuses[skipped.id] = StepStatus.FAILED_TERMINAL
                logger.warning("sequential_run_aborted", failed_step=step.id, skipped=len(order) - index - 1)
                break
        return context.ordered_results()


class ParallelScheduler(WorkflowScheduler):
    mode = ExecutionMode.PARALLEL

    async def run(self, context: ExecutionContext) -> dict[str, LayerResult]:
        await self._run_levels(context, context.compiled.levels)
        return context.ordered_results()


class HybridScheduler(WorkflowScheduler):
    """Runs the recommended backend's steps (and what they depend on) first, the rest after."""

    mode = ExecutionMode.HYBRID

    async def run(self, context: ExecutionContext) -> dict[str, LayerResult]:
        analysis = context.analysis or WorkloadAnalyzer().analyze(context.compiled.steps, context.input_data)
        first, rest = self.partition(context.compiled, analysis.recommended_backend)
        logger.info(
            "hybrid_partition",
            recommended_backend=analysis.recommended_backend.value,
            priority_steps=sorted(first),
            remaining_steps=len(rest),
        )
        await self._run_levels(context, _filter_levels(context.compiled.levels, first))
        await self._run_levels(context, _filter_levels(context.compiled.levels, rest))
        return context.ordered_results()

    @staticmethod
    def partition(compiled: CompiledPlan, recommended: BackendKind) -> tuple[set[str], set[str]]:
        priority = {step.id for step in compiled.steps if step.backend is recommended}
        first = priority | compiled.ancestors(priority)
        rest = {step.id for step in compiled.steps} - first
        return first, rest


class AdaptiveScheduler(WorkflowScheduler):
    """Chooses sequential, parallel or hybrid execution from a workload analysis."""

    mode = ExecutionMode.ADAPTIVE

    def __init__(self, *args: Any, analyzer: WorkloadAnalyzer | None = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._analyzer = analyzer or WorkloadAnalyzer()

    def choose(self, analysis: WorkloadAnalysis) -> ExecutionMode:
        if analysis.requires_complex_reasoning:
            return ExecutionMode.SEQUENTIAL
        if analysis.estimated_complexity is Complexity.LOW:
            return ExecutionMode.PARALLEL
        return ExecutionMode.HYBRID

    async def run(self, context: ExecutionContext) -> dict[str, LayerResult]:
        analysis = self._analyzer.analyze(context.compiled.steps, context.input_data)
        context.analysis = analysis
        chosen = self.choose(analysis)
        context.mode = chosen
        logger.info(
            "adaptive_mode_selected",
            mode=chosen.value,
            complexity=analysis.estimated_complexity.value,
            recommended_backend=analysis.recommended_backend.value,
        )
        delegate_cls: type[WorkflowScheduler] = {
            ExecutionMode.SEQUENTIAL: SequentialScheduler,
            ExecutionMode.PARALLEL: ParallelScheduler,
            ExecutionMode.HYBRID: HybridScheduler,
        }[chosen]
        delegate = delegate_cls(self._executor, fallback=self._fallback, settings=self._settings)
        return await delegate.run(context)


class WorkloadAnalyzer:
    """Heuristic workload profile used by adaptive and hybrid scheduling."""

    def analyze(self, steps: Sequence[WorkflowStep], input_data: Mapping[str, Any]) -> WorkloadAnalysis:
        prompt = input_data.get("prompt")
        prompt = prompt if isinstance(prompt, str) else ""
        text = prompt.lower()
        files = input_data.get("files")
        file_paths = _file_paths(files)

        has_files = bool(file_paths)
        has_complex_prompt = len(prompt) > lexicons.COMPLEX_PROMPT_CHARS
        multiple_steps = len(steps) > lexicons.MULTI_STEP_THRESHOLD

        generation_words = bool(matches("generation", text)) if prompt else False
        workflow_generates = any(
            "generate" in step.action or "create" in step.action or step.backend is BackendKind.AISTUDIO
            for step in steps
        )
        is_generation_request = bool(prompt) and (generation_words or workflow_generates)
        is_image_generation = generation_words and bool(matches("image", text))
        is_audio_generation = generation_words and bool(matches("audio", text))
        is_document_processing = bool(prompt) and (
            bool(matches("document", text)) or any(path.lower().endswith(_DOCUMENT_SUFFIXES) for path in file_paths)
        )

        requires_complex_reasoning = has_complex_prompt or multiple_steps
        requires_multimodal = has_files or is_generation_request
        requires_grounding = bool(matches("current_info", text)) if prompt else False

        if multiple_steps and has_files:
            complexity = Complexity.HIGH
        elif has_complex_prompt or has_files or multiple_steps or is_generation_request:
            complexity = Complexity.MEDIUM
        else:
            complexity = Complexity.LOW

        if requires_grounding and not has_files:
            recommended = BackendKind.GEMINI
        elif is_image_generation or is_audio_generation or is_generation_request:
            recommended = BackendKind.AISTUDIO
        elif is_document_processing:
            recommended = BackendKind.AISTUDIO
        elif requires_complex_reasoning:
            recommended = BackendKind.CLAUDE
        elif requires_multimodal:
            recommended = BackendKind.AISTUDIO
        else:
            recommended = BackendKind.GEMINI

        analysis = WorkloadAnalysis(
            has_files=has_files,
            has_complex_prompt=has_complex_prompt,
            multiple_steps=multiple_steps,
            is_generation_request=is_generation_request,
            is_image_generation=is_image_generation,
            is_audio_generation=is_audio_generation,
            is_document_processing=is_document_processing,
            requires_complex_reasoning=requires_complex_reasoning,
            requires_multimodal_processing=requires_multimodal,
            requires_grounding=requires_grounding,
            estimated_complexity=complexity,
            recommended_backend=recommended,
        )
        logger.debug("workload_analyzed", **analysis.model_dump(mode="json"))
        return analysis


def _file_paths(files: Any) -> list[str]:
    if not isinstance(files, (list, tuple)):
        return []
    paths: list[str] = []
    for item in files:
        if isinstance(item, str):
            paths.append(item)
        elif isinstance(item, Mapping) and item.get("path"):
            paths.append(str(item["path"]))
        elif getattr(item, "path", None):
            paths.append(str(item.path))
    return paths


def _filter_levels(levels: Iterable[Sequence[WorkflowStep]], keep: set[str]) -> list[list[WorkflowStep]]:
    filtered = [[step for step in level if step.id in keep] for level in levels]
    return [level for level in filtered if level]


SCHEDULERS: Mapping[ExecutionMode, type[WorkflowScheduler]] = {
    ExecutionMode.SEQUENTIAL: SequentialScheduler,
    ExecutionMode.PARALLEL: ParallelScheduler,
    ExecutionMode.HYBRID: HybridScheduler,
    ExecutionMode.ADAPTIVE: AdaptiveScheduler,
}


__all__ = [
    "AdaptiveScheduler",
    "ExecutionContext",
    "HybridScheduler",
    "ParallelScheduler",
    "SCHEDULERS",
    "SequentialScheduler",
    "WorkflowScheduler",
    "WorkloadAnalyzer",
]
