from __future__ import annotations

import asyncio
import time
from typing import Any, Iterable, Mapping, Sequence

from ..backends.base import Backend, profile_for
from ..backends.registry import BackendRegistry
from ..core.admission import QuotaMonitor
from ..core.config import Settings, get_settings
from ..core.errors import AllBackendsFailedError, PlanValidationError, WorkflowTimeoutError
from ..core.logging import get_logger, preview
from ..core.metrics import observe_workflow_run, record_classification
from ..routing.classifier import (
    TaskClassifier,
    detect_workflow_kind,
    is_fast_path_eligible,
    search_strategy,
)
from ..schemas.tasks import BackendKind, FileRef, LayerResult, Task, TaskAnalysis
from ..schemas.workflow import ExecutionPlan, WorkflowResult, WorkflowStep
from ..services.cache import SearchCache
from .aggregator import aggregate
from .compiler import CompiledPlan, PlanCompiler
from .enums import ExecutionMode, WorkflowKind
from .executor import StepExecutor
from .fallback import FallbackResolver, backend_fallback_order
from .scheduler import SCHEDULERS, ExecutionContext
from .templates import TemplateContext, resolve_kind

logger = get_logger(name=__name__)

FAST_PATH_STEP_ID = "fast_path"
FAST_PATH_ACTION = "analyze_with_grounding"


class LayerRouter:
    """Entry point: classify ad hoc tasks, or compile and run multi-step workflows."""

    def __init__(
        self,
        backends: BackendRegistry | Iterable[Backend],
        *,
        settings: Settings | None = None,
        cache: SearchCache | None = None,
        admission: QuotaMonitor | None = None,
        classifier: TaskClassifier | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._registry = backends if isinstance(backends, BackendRegistry) else BackendRegistry(backends)
        self._cache = cache if cache is not None else SearchCache(self._settings.cache)
        self._admission = admission if admission is not None else QuotaMonitor(self._settings.quota)
        self._classifier = classifier or TaskClassifier()
        self._compiler = PlanCompiler(self._settings.planning)
        self._executor = StepExecutor(
            self._registry,
            scheduling=self._settings.scheduling,
            retry=self._settings.retry,
            cache=self._cache,
            admission=self._admission,
        )
        self._fallback = FallbackResolver(self._executor)

    @property
    def registry(self) -> BackendRegistry:
        return self._registry

    @property
    def cache(self) -> SearchCache:
        return self._cache

    @property
    def admission(self) -> QuotaMonitor:
        return self._admission

    @property
    def compiler(self) -> PlanCompiler:
        return self._compiler

    def analyze_task(self, task: Task, override: BackendKind | str | None = None) -> TaskAnalysis:
        analysis = self._classifier.classify(task, override)
        record_classification(backend=analysis.backend.value, complexity=analysis.complexity.value)
        logger.info(
            "task_classified",
            backend=analysis.backend.value,
            complexity=analysis.complexity.value,
            rule=analysis.rule,
            reasoning=analysis.reasoning,
            prompt=preview(task.prompt),
        )
        return analysis

    async def execute_with_optimal_layer(
        self,
        task: Task,
        override: BackendKind | str | None = None,
    ) -> LayerResult:
        analysis = self.analyze_task(task, override)
        primary = analysis.backend
        result = await self._executor.execute(primary, self._prepare_task(primary, task))
        if result.success:
            result.metadata.update(routing_reason=analysis.reasoning, fallback_used=False)
            return result

        attempts = [primary.value]
        primary_error = last_error = result.error
        candidates = backend_fallback_order(primary, has_files=analysis.has_files, complexity=analysis.complexity)
        for candidate in candidates:
            if not await self._registry.check_available(candidate):
                logger.info("fallback_backend_skipped", backend=candidate.value, primary=primary.value)
                continue
            attempts.append(candidate.value)
            logger.info("fallback_backend_attempt", backend=candidate.value, primary=primary.value, error=last_error)
            result = await self._executor.execute(candidate, self._prepare_task(candidate, task))
            if result.success:
                result.metadata.update(
                    routing_reason=analysis.reasoning,
                    fallback_used=True,
                    primary_backend=primary.value,
                    original_error=primary_error,
                )
                return result
            last_error = result.error

        logger.error("all_backends_failed", primary=primary.value, attempts=attempts, error=last_error)
        raise AllBackendsFailedError(primary.value, attempts, last_error=last_error)

    async def process_multimodal(
        self,
        prompt: str,
        files: Sequence[FileRef | str | Mapping[str, Any]] | None = None,
        workflow_kind: WorkflowKind | str | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> WorkflowResult:
        options = dict(options or {})
        file_refs = Task(prompt=prompt, files=files or ()).files
        kind = resolve_kind(workflow_kind) if workflow_kind else WorkflowKind(detect_workflow_kind(prompt))

        if kind is WorkflowKind.ANALYSIS and is_fast_path_eligible(prompt, file_refs, self._settings.fast_path):
            fast = await self._run_fast_path(prompt, options)
            if fast is not None:
                return fast

        compiled = self._compiler.compile_template(
            kind,
            TemplateContext(prompt=prompt, files=file_refs, options=options),
        )
        input_data = {"prompt": prompt, "files": [ref.model_dump(mode="json") for ref in file_refs]}
        return await self.execute_workflow(
            compiled,
            input_data,
            mode=options.get("execution_mode"),
            timeout=options.get("timeout"),
            workflow=kind.value,
        )

    async def analyze_documents(
        self,
        documents: Sequence[str],
        analysis_type: str,
        output_requirements: str | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> WorkflowResult:
        options = dict(options or {})
        logger.info(
            "document_analysis_started",
            analysis_type=analysis_type,
            documents=len(documents),
        )
        compiled = self._compiler.compile_template(
            WorkflowKind.DOCUMENT_ANALYSIS,
            TemplateContext(
                documents=list(documents),
                analysis_type=analysis_type,
                output_requirements=output_requirements,
                options=options,
            ),
        )
        return await self.execute_workflow(
            compiled,
            {"documents": list(documents), "analysis_type": analysis_type},
            mode=options.get("execution_mode") or ExecutionMode.SEQUENTIAL,
            timeout=options.get("timeout"),
            workflow=WorkflowKind.DOCUMENT_ANALYSIS.value,
        )

    async def execute_workflow(
        self,
        plan: CompiledPlan | ExecutionPlan | Sequence[WorkflowStep | Mapping[str, Any]],
        input_data: Mapping[str, Any] | None = None,
        *,
        mode: ExecutionMode | str | None = None,
        timeout: float | None = None,
        workflow: str | None = None,
    ) -> WorkflowResult:
        compiled = plan if isinstance(plan, CompiledPlan) else self._compiler.compile(plan)
        requested = self._resolve_mode(mode)
        deadline = float(timeout) if timeout else self._settings.scheduling.workflow_timeout_seconds
        scheduler = SCHEDULERS[requested](self._executor, fallback=self._fallback, settings=self._settings.scheduling)
        context = ExecutionContext(compiled=compiled, input_data=dict(input_data or {}))

        logger.info(
            "workflow_started",
            steps=len(compiled.order),
            mode=requested.value,
            workflow=workflow,
            timeout=deadline,
        )
        started = time.perf_counter()
        try:
            await asyncio.wait_for(scheduler.run(context), timeout=deadline)
        except asyncio.TimeoutError as exc:
            elapsed = time.perf_counter() - started
            observe_workflow_run(mode=requested.value, status="timeout", latency=elapsed)
            logger.error(
                "workflow_timeout",
                mode=requested.value,
                timeout=deadline,
                completed_steps=sorted(context.results),
            )
            raise WorkflowTimeoutError(
                f"Workflow exceeded its {deadline:g}s deadline",
                details={"completed_steps": sorted(context.results), "timeout": deadline},
            ) from exc

        duration = time.perf_counter() - started
        effective = context.mode or requested
        estimate = compiled.estimated_total
        extra: dict[str, Any] = {
            "requested_mode": requested.value,
            "estimated_duration": estimate.duration,
            "estimated_cost": estimate.cost,
            "recommended_mode": compiled.recommended_mode.value,
        }
        if workflow is not None:
            extra["workflow"] = workflow
        if context.analysis is not None:
            extra["workload"] = context.analysis.model_dump(mode="json")
        result = aggregate(
            context.ordered_results(),
            duration=duration,
            execution_mode=effective.value,
            extra_metadata=extra,
        )
        observe_workflow_run(mode=effective.value, status=result.metadata["status"], latency=duration)
        logger.info(
            "workflow_completed",
            mode=effective.value,
            success=result.success,
            summary=result.summary,
            duration=duration,
        )
        return result

    async def backend_status(self) -> dict[str, Any]:
        backends: dict[str, Any] = {}
        availability = await self._registry.availability()
        for kind in BackendKind:
            profile = profile_for(kind)
            backends[kind.value] = {
                "role": profile.role,
                "capabilities": list(profile.capabilities),
                "registered": kind in self._registry,
                "available": availability.get(kind.value, False),
                "initialized": kind in self._registry and self._registry.is_initialized(kind),
                "quota": self._admission.usage_stats(kind.value),
                "quota_status": self._admission.quota_status(kind.value),
            }
        return {"backends": backends, "cache": self._cache.stats()}

    async def _run_fast_path(self, prompt: str, options: Mapping[str, Any]) -> WorkflowResult | None:
        use_search = search_strategy(prompt)
        task = Task(
            prompt=prompt,
            options={**options, "use_search": True if use_search is None else use_search},
            type="text_processing",
            action=FAST_PATH_ACTION,
        )
        logger.info("fast_path_selected", prompt=preview(prompt), use_search=task.options["use_search"])
        result = await self._executor.execute(BackendKind.GEMINI, task, step_id=FAST_PATH_STEP_ID)
        if not result.success:
            logger.warning("fast_path_failed", error=result.error)
            return None
        result.metadata["status"] = "succeeded"
        workflow_result = aggregate(
            {FAST_PATH_STEP_ID: result},
            duration=result.duration,
            execution_mode=ExecutionMode.FAST.value,
            extra_metadata={"workflow": WorkflowKind.ANALYSIS.value, "optimization": "fast-path-bypass"},
        )
        observe_workflow_run(mode=ExecutionMode.FAST.value, status="success", latency=result.duration)
        return workflow_result

    def _prepare_task(self, kind: BackendKind, task: Task) -> Task:
        if kind is not BackendKind.GEMINI or "use_search" in task.options:
            return task
        use_search = search_strategy(task.prompt)
        return task.with_updates(options={**task.options, "use_search": True if use_search is None else use_search})

    def _resolve_mode(self, mode: ExecutionMode | str | None) -> ExecutionMode:
        value = mode or self._settings.scheduling.default_mode
        try:
            resolved = ExecutionMode(value)
        except ValueError as exc:
            raise PlanValidationError(f"Unknown execution mode: {value}") from exc
        if resolved not in SCHEDULERS:
            raise PlanValidationError(f"Execution mode '{resolved.value}' cannot run a workflow")
        return resolved


__all__ = ["LayerRouter"]
