"""
Orchestration Package

Workflow components for routing work across the execution backends:
- Canned workflow templates and the plan compiler
- Step input reference resolution
- Step execution with retry, admission control and caching
- Sequential, parallel and adaptive/hybrid scheduling
- Declared fallback substitution
- Result aggregation and the router entry points
"""

from .aggregator import aggregate, summarize
from .compiler import CompiledPlan, PlanCompiler, ResourceEstimate, estimate_step
from .enums import ExecutionMode, StepStatus, WorkflowKind
from .executor import RetryPolicy, StepExecutor, action_task_type, build_step_task
from .fallback import FallbackResolver, backend_fallback_order
from .references import resolve_reference, resolve_step_input
from .router import LayerRouter
from .scheduler import (
    AdaptiveScheduler,
    ExecutionContext,
    HybridScheduler,
    ParallelScheduler,
    SequentialScheduler,
    WorkflowScheduler,
    WorkloadAnalyzer,
)
from .templates import TemplateContext, build_template

__all__ = [
    # Planning
    "CompiledPlan",
    "PlanCompiler",
    "ResourceEstimate",
    "TemplateContext",
    "build_template",
    "estimate_step",
    # Execution
    "RetryPolicy",
    "StepExecutor",
    "action_task_type",
    "build_step_task",
    "resolve_reference",
    "resolve_step_input",
    # Scheduling
    "AdaptiveScheduler",
    "ExecutionContext",
    "HybridScheduler",
    "ParallelScheduler",
    "SequentialScheduler",
    "WorkflowScheduler",
    "WorkloadAnalyzer",
    # Fallback and results
    "FallbackResolver",
    "aggregate",
    "backend_fallback_order",
    "summarize",
    # Enums and entry point
    "ExecutionMode",
    "LayerRouter",
    "StepStatus",
    "WorkflowKind",
]
