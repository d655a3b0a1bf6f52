from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Sequence

from pydantic import ValidationError

from ..backends.base import profile_for
from ..core.config import PlanningSettings, Settings, get_settings
from ..core.errors import PlanValidationError
from ..core.logging import get_logger
from ..routing import lexicons
from ..schemas.tasks import BackendKind
from ..schemas.workflow import FALLBACK_KEY_SUFFIX, ExecutionPlan, FallbackStrategy, WorkflowStep
from .enums import ExecutionMode, WorkflowKind
from .references import parse_reference
from .templates import TemplateContext, build_template

logger = get_logger(name=__name__)

SEQUENTIAL_STEP_LIMIT = 3
SEQUENTIAL_DURATION_LIMIT = 60.0


@dataclass(slots=True, frozen=True)
class ResourceEstimate:
    duration: float
    cost: float

    def __add__(self, other: ResourceEstimate) -> ResourceEstimate:
        return ResourceEstimate(duration=self.duration + other.duration, cost=self.cost + other.cost)


def estimate_step(step: WorkflowStep) -> ResourceEstimate:
    """Static per-step estimate keyed by backend and action; reported, never enforced."""
    profile = profile_for(step.backend)
    duration, cost = profile.base_duration, profile.base_cost
    action = step.action.lower()
    if any(marker in action for marker in lexicons.HEAVY_ACTION_MARKERS):
        duration *= lexicons.HEAVY_ACTION_DURATION_FACTOR
        cost *= lexicons.HEAVY_ACTION_COST_FACTOR
    return ResourceEstimate(duration=duration, cost=cost)


@dataclass(slots=True)
class CompiledPlan:
    plan: ExecutionPlan
    order: list[WorkflowStep]
    levels: list[list[WorkflowStep]]
    estimates: dict[str, ResourceEstimate] = field(default_factory=dict)
    recommended_mode: ExecutionMode = ExecutionMode.SEQUENTIAL

    @property
    def steps(self) -> list[WorkflowStep]:
        return self.plan.steps

    @property
    def fallback_strategies(self) -> dict[str, FallbackStrategy]:
        return self.plan.fallback_strategies

    @property
    def step_ids(self) -> list[str]:
        return [step.id for step in self.order]

    @property
    def estimated_total(self) -> ResourceEstimate:
        total = ResourceEstimate(duration=0.0, cost=0.0)
        for estimate in self.estimates.values():
            total = total + estimate
        return total

    def ancestors(self, step_ids: Iterable[str]) -> set[str]:
        by_id = {step.id: step for step in self.plan.steps}
        seen: set[str] = set()
        pending = list(step_ids)
        while pending:
            current = pending.pop()
            step = by_id.get(current)
            if step is None:
                continue
            for dependency in step.depends_on:
                if dependency not in seen:
                    seen.add(dependency)
                    pending.append(dependency)
        return seen

    def summary(self) -> dict[str, Any]:
        total = self.estimated_total
        return {
            "steps": len(self.order),
            "levels": [[step.id for step in level] for level in self.levels],
            "estimated_duration": total.duration,
            "estimated_cost": total.cost,
            "recommended_mode": self.recommended_mode.value,
        }


class PlanCompiler:
    """Validates a step graph and derives its sequential order and parallel levels."""

    def __init__(self, settings: PlanningSettings | Settings | None = None) -> None:
        if isinstance(settings, Settings):
            settings = settings.planning
        self._settings = settings or get_settings().planning

    def compile_template(self, kind: WorkflowKind | str, context: TemplateContext) -> CompiledPlan:
        return self.compile(build_template(kind, context))

    def compile(
        self,
        steps: ExecutionPlan | Sequence[WorkflowStep | Mapping[str, Any]],
        fallback_strategies: Mapping[str, FallbackStrategy | Mapping[str, Any]] | None = None,
    ) -> CompiledPlan:
        plan = self._with_reference_dependencies(self._coerce_plan(steps, fallback_strategies))
        self._validate(plan)
        order = self._topological_order(plan.steps)
        levels = self._dependency_levels(plan.steps)
        estimates = {step.id: estimate_step(step) for step in plan.steps}
        compiled = CompiledPlan(plan=plan, order=order, levels=levels, estimates=estimates)
        compiled.recommended_mode = self._recommend_mode(compiled)
        logger.debug(
            "plan_compiled",
            steps=len(order),
            levels=len(levels),
            recommended_mode=compiled.recommended_mode.value,
        )
        return compiled

    def _coerce_plan(
        self,
        steps: ExecutionPlan | Sequence[WorkflowStep | Mapping[str, Any]],
        fallback_strategies: Mapping[str, FallbackStrategy | Mapping[str, Any]] | None,
    ) -> ExecutionPlan:
        if isinstance(steps, ExecutionPlan):
            if fallback_strategies:
                return steps.model_copy(
                    update={"fallback_strategies": {**steps.fallback_strategies, **self._coerce_fallbacks(fallback_strategies)}}
                )
            return steps
        coerced = [self._coerce_step(index, raw) for index, raw in enumerate(steps or [])]
        return ExecutionPlan(steps=coerced, fallback_strategies=self._coerce_fallbacks(fallback_strategies or {}))

    @staticmethod
    def _with_reference_dependencies(plan: ExecutionPlan) -> ExecutionPlan:
        """Treat every top-level input reference to a known step as a dependency on it."""
        known = {step.id for step in plan.steps}
        steps: list[WorkflowStep] = []
        changed = False
        for step in plan.steps:
            implied = [
                parsed[0]
                for parsed in (parse_reference(value) for value in step.input.values())
                if parsed is not None and parsed[0] in known and parsed[0] not in step.depends_on
            ]
            if implied:
                changed = True
                step = step.model_copy(update={"depends_on": [*step.depends_on, *dict.fromkeys(implied)]})
            steps.append(step)
        return plan.model_copy(update={"steps": steps}) if changed else plan

    @staticmethod
    def _coerce_step(index: int, raw: WorkflowStep | Mapping[str, Any]) -> WorkflowStep:
        if isinstance(raw, WorkflowStep):
            return raw
        if not isinstance(raw, Mapping):
            raise PlanValidationError(f"Step at position {index} must be a mapping", details={"index": index})
        missing = [name for name in ("id", "action") if not raw.get(name)]
        if not raw.get("backend") and not raw.get("layer"):
            missing.append("backend")
        if missing:
            raise PlanValidationError(
                f"Step at position {index} is missing required fields: {', '.join(missing)}",
                details={"index": index, "missing": missing},
            )
        try:
            return WorkflowStep.model_validate(dict(raw))
        except ValidationError as exc:
            raise PlanValidationError(
                f"Invalid step '{raw.get('id')}': {exc.errors()[0].get('msg', 'validation error')}",
                details={"index": index, "step_id": raw.get("id")},
            ) from exc

    @staticmethod
    def _coerce_fallbacks(raw: Mapping[str, FallbackStrategy | Mapping[str, Any]]) -> dict[str, FallbackStrategy]:
        strategies: dict[str, FallbackStrategy] = {}
        for key, value in raw.items():
            if isinstance(value, FallbackStrategy):
                strategies[key] = value
                continue
            try:
                strategies[key] = FallbackStrategy.model_validate(dict(value))
            except (ValidationError, TypeError, ValueError) as exc:
                raise PlanValidationError(f"Invalid fallback strategy '{key}'", details={"key": key}) from exc
        return strategies

    def _validate(self, plan: ExecutionPlan) -> None:
        steps = plan.steps
        if not steps:
            raise PlanValidationError("Workflow must contain at least one step")
        if len(steps) > self._settings.max_steps:
            raise PlanValidationError(
                f"Workflow exceeds the maximum of {self._settings.max_steps} steps",
                details={"steps": len(steps), "max_steps": self._settings.max_steps},
            )

        seen: set[str] = set()
        for step in steps:
            if step.id in seen:
                raise PlanValidationError(f"Duplicate step id: {step.id}", details={"step_id": step.id})
            seen.add(step.id)

        for step in steps:
            for dependency in step.depends_on:
                if dependency not in seen:
                    raise PlanValidationError(
                        f"Step '{step.id}' depends on undefined step '{dependency}'",
                        details={"step_id": step.id, "dependency": dependency},
                    )

        offender = self._find_cycle(steps)
        if offender is not None:
            raise PlanValidationError(
                f"Circular dependency detected involving step: {offender}",
                details={"step_id": offender},
            )

        for key, strategy in plan.fallback_strategies.items():
            if not key.endswith(FALLBACK_KEY_SUFFIX):
                raise PlanValidationError(f"Invalid fallback key '{key}'", details={"key": key})
            backend_name = key[: -len(FALLBACK_KEY_SUFFIX)]
            if backend_name not in {kind.value for kind in BackendKind}:
                raise PlanValidationError(f"Fallback key '{key}' names an unknown backend", details={"key": key})
            if strategy.replace not in seen:
                raise PlanValidationError(
                    f"Fallback '{key}' replaces undefined step '{strategy.replace}'",
                    details={"key": key, "replace": strategy.replace},
                )

    @staticmethod
    def _find_cycle(steps: Sequence[WorkflowStep]) -> str | None:
        graph = {step.id: list(step.depends_on) for step in steps}
        visited: set[str] = set()
        on_stack: set[str] = set()

        def visit(node: str) -> str | None:
            if node in on_stack:
                return node
            if node in visited:
                return None
            visited.add(node)
            on_stack.add(node)
            for dependency in graph.get(node, ()):
                offender = visit(dependency)
                if offender is not None:
                    return offender
            on_stack.discard(node)
            return None

        for step in steps:
            offender = visit(step.id)
            if offender is not None:
                return offender
        return None

    @staticmethod
    def _topological_order(steps: Sequence[WorkflowStep]) -> list[WorkflowStep]:
        position = {step.id: index for index, step in enumerate(steps)}
        indegree = {step.id: len(set(step.depends_on)) for step in steps}
        dependents: dict[str, list[str]] = defaultdict(list)
        for step in steps:
            for dependency in dict.fromkeys(step.depends_on):
                dependents[dependency].append(step.id)

        ready = [step.id for step in steps if indegree[step.id] == 0]
        ordered: list[str] = []
        while ready:
            ready.sort(key=position.__getitem__)
            current = ready.pop(0)
            ordered.append(current)
            for neighbor in dependents.get(current, []):
                indegree[neighbor] -= 1
                if indegree[neighbor] == 0:
                    ready.append(neighbor)

        by_id = {step.id: step for step in steps}
        return [by_id[step_id] for step_id in ordered]

    def _dependency_levels(self, steps: Sequence[WorkflowStep]) -> list[list[WorkflowStep]]:
        by_id = {step.id: step for step in steps}
        depth: dict[str, int] = {}

        def compute(step_id: str) -> int:
            if step_id in depth:
                return depth[step_id]
            dependencies = by_id[step_id].depends_on
            depth[step_id] = 0 if not dependencies else 1 + max(compute(dep) for dep in dependencies)
            return depth[step_id]

        grouped: dict[int, list[WorkflowStep]] = defaultdict(list)
        for step in steps:
            grouped[compute(step.id)].append(step)

        cap = self._settings.max_concurrent_per_level
        levels: list[list[WorkflowStep]] = []
        for index in sorted(grouped):
            members = grouped[index]
            for start in range(0, len(members), cap):
                levels.append(members[start : start + cap])
        return levels

    @staticmethod
    def _recommend_mode(compiled: CompiledPlan) -> ExecutionMode:
        total = compiled.estimated_total
        if len(compiled.order) <= SEQUENTIAL_STEP_LIMIT or total.duration < SEQUENTIAL_DURATION_LIMIT:
            return ExecutionMode.SEQUENTIAL
        if max(len(level) for level in compiled.levels) > 1:
            return ExecutionMode.PARALLEL
        return ExecutionMode.HYBRID


__all__ = ["CompiledPlan", "PlanCompiler", "ResourceEstimate", "estimate_step"]
