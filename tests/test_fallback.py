from __future__ import annotations

import pytest

from layerbridge.core.config import PlanningSettings
from layerbridge.orchestration.compiler import PlanCompiler
from layerbridge.orchestration.enums import StepStatus
from layerbridge.orchestration.fallback import FallbackResolver, backend_fallback_order
from layerbridge.orchestration.scheduler import ExecutionContext, ParallelScheduler, SequentialScheduler
from layerbridge.schemas.tasks import BackendKind, Complexity, LayerResult
from tests.helpers.stubs import FakeBackend, build_executor, fast_scheduling

STEPS = [
    {"id": "pre", "backend": "claude", "action": "analyze_requirements", "input": {"prompt": "plan"}},
    {
        "id": "mm",
        "backend": "aistudio",
        "action": "process_multimodal",
        "input": {"instructions": "describe", "files": []},
        "depends_on": ["pre"],
    },
    {
        "id": "syn",
        "backend": "claude",
        "action": "synthesize_results",
        "input": {"analysis": "@mm.output"},
        "depends_on": ["mm"],
    },
]


def _fallbacks(replace: str = "mm") -> dict:
    return {
        "aistudio_unavailable": {
            "replace": replace,
            "with": {
                "id": "fb",
                "backend": "gemini",
                "action": "analyze_with_grounding",
                "input": {"prompt": "fallback prompt"},
            },
        }
    }


def _compile(fallbacks):
    return PlanCompiler(PlanningSettings()).compile(STEPS, fallbacks)


@pytest.mark.asyncio
async def test_substitute_runs_once_and_fills_the_failed_slot() -> None:
    claude = FakeBackend("claude")
    aistudio = FakeBackend("aistudio", [RuntimeError("aistudio backend not available")])
    gemini = FakeBackend("gemini", [{"answer": "from fallback"}])
    scheduler = SequentialScheduler(build_executor(claude, aistudio, gemini), settings=fast_scheduling())
    context = ExecutionContext(compiled=_compile(_fallbacks()))

    await scheduler.run(context)

    recovered = context.results["mm"]
    assert len(gemini.calls) == 1
    assert recovered.success is True
    assert recovered.data == {"answer": "from fallback"}
    assert recovered.metadata["fallback_used"] is True
    assert recovered.metadata["fallback_step_id"] == "fb"
    assert recovered.metadata["original_backend"] == "aistudio"
    assert recovered.metadata["original_error"] == "aistudio backend not available"
    assert context.statuses["mm"] is StepStatus.FAILED_RECOVERED
    assert gemini.calls[0].payload["instructions"] == "describe"
    assert gemini.calls[0].prompt == "fallback prompt"
    assert claude.calls[-1].payload["analysis"] == {"answer": "from fallback"}


@pytest.mark.asyncio
async def test_fallback_applies_under_parallel_scheduling() -> None:
    aistudio = FakeBackend("aistudio", [LayerResult.failure("503 Service Unavailable")])
    gemini = FakeBackend("gemini", [{"answer": "parallel fallback"}])
    scheduler = ParallelScheduler(
        build_executor(FakeBackend("claude"), aistudio, gemini),
        settings=fast_scheduling(),
    )
    context = ExecutionContext(compiled=_compile(_fallbacks()))

    await scheduler.run(context)

    assert context.results["mm"].data == {"answer": "parallel fallback"}
    assert len(gemini.calls) == 1


@pytest.mark.asyncio
async def test_fallback_only_triggers_for_the_declared_step() -> None:
    aistudio = FakeBackend("aistudio", [RuntimeError("aistudio backend not available")])
    gemini = FakeBackend("gemini")
    misdirected = _fallbacks(replace="pre")
    scheduler = SequentialScheduler(
        build_executor(FakeBackend("claude"), aistudio, gemini),
        settings=fast_scheduling(),
    )
    context = ExecutionContext(compiled=_compile(misdirected))

    await scheduler.run(context)

    assert gemini.calls == []
    assert context.results["mm"].success is False
    assert context.statuses["mm"] is StepStatus.FAILED_TERMINAL


@pytest.mark.asyncio
async def test_failing_substitute_leaves_original_failure() -> None:
    aistudio = FakeBackend("aistudio", [RuntimeError("aistudio backend not available")])
    gemini = FakeBackend("gemini", [RuntimeError("gemini exploded too")])
    scheduler = SequentialScheduler(
        build_executor(FakeBackend("claude"), aistudio, gemini),
        settings=fast_scheduling(),
    )
    context = ExecutionContext(compiled=_compile(_fallbacks()))

    await scheduler.run(context)

    assert len(gemini.calls) == 1
    assert context.results["mm"].success is False
    assert context.results["mm"].error == "aistudio backend not available"


def test_substitute_lookup() -> None:
    compiled = _compile(_fallbacks())

    assert FallbackResolver.substitute_for(compiled.plan, compiled.plan.step("mm")).id == "fb"
    assert FallbackResolver.substitute_for(compiled.plan, compiled.plan.step("pre")) is None


@pytest.mark.parametrize(
    ("primary", "has_files", "complexity", "expected"),
    [
        (BackendKind.CLAUDE, True, Complexity.LOW, [BackendKind.AISTUDIO, BackendKind.GEMINI]),
        (BackendKind.CLAUDE, False, Complexity.LOW, [BackendKind.GEMINI, BackendKind.AISTUDIO]),
        (BackendKind.GEMINI, False, Complexity.HIGH, [BackendKind.CLAUDE, BackendKind.AISTUDIO]),
        (BackendKind.GEMINI, False, Complexity.LOW, [BackendKind.AISTUDIO, BackendKind.CLAUDE]),
        (BackendKind.AISTUDIO, True, Complexity.HIGH, [BackendKind.CLAUDE, BackendKind.GEMINI]),
        (BackendKind.AISTUDIO, True, Complexity.MEDIUM, [BackendKind.GEMINI, BackendKind.CLAUDE]),
    ],
)
def test_backend_fallback_order(primary, has_files, complexity, expected) -> None:
    assert backend_fallback_order(primary, has_files=has_files, complexity=complexity) == expected
