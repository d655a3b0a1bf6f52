from __future__ import annotations

import pytest

from layerbridge.core.errors import AllBackendsFailedError, PlanValidationError, WorkflowTimeoutError
from layerbridge.orchestration import LayerRouter
from layerbridge.schemas.tasks import BackendKind, FileKind, Task
from tests.helpers.stubs import FakeBackend, fake_backends, fast_settings


def _router(**backends: FakeBackend) -> LayerRouter:
    return LayerRouter(fake_backends(**backends), settings=fast_settings())


def test_analyze_task_honours_override() -> None:
    router = _router()

    assert router.analyze_task(Task(prompt="hello"), "aistudio").backend is BackendKind.AISTUDIO
    assert router.analyze_task(Task(prompt="generate an image of a sunset")).rule == "generation"


@pytest.mark.asyncio
async def test_primary_backend_success() -> None:
    claude = FakeBackend("claude", [{"answer": "refactored"}])
    router = _router(claude=claude)

    result = await router.execute_with_optimal_layer(Task(prompt="Please refactor this function"))

    assert result.success is True
    assert result.backend == "claude"
    assert result.metadata["fallback_used"] is False
    assert "Complex reasoning" in result.metadata["routing_reason"]


@pytest.mark.asyncio
async def test_ad_hoc_fallback_uses_fixed_order() -> None:
    claude = FakeBackend("claude", [RuntimeError("model exploded")])
    gemini = FakeBackend("gemini", [{"answer": "from search"}])
    aistudio = FakeBackend("aistudio")
    router = _router(claude=claude, gemini=gemini, aistudio=aistudio)

    result = await router.execute_with_optimal_layer(Task(prompt="Please refactor this function"))

    assert result.success is True
    assert result.backend == "gemini"
    assert result.metadata["fallback_used"] is True
    assert result.metadata["primary_backend"] == "claude"
    assert result.metadata["original_error"] == "model exploded"
    assert gemini.calls[0].options["use_search"] is True
    assert aistudio.calls == []


@pytest.mark.asyncio
async def test_unavailable_fallback_candidates_are_skipped() -> None:
    claude = FakeBackend("claude", [RuntimeError("model exploded")])
    gemini = FakeBackend("gemini", available=False)
    aistudio = FakeBackend("aistudio", [{"answer": "multimodal"}])
    router = _router(claude=claude, gemini=gemini, aistudio=aistudio)

    result = await router.execute_with_optimal_layer(Task(prompt="Please refactor this function"))

    assert result.backend == "aistudio"
    assert gemini.calls == []


@pytest.mark.asyncio
async def test_exhausted_fallbacks_raise_terminal_error() -> None:
    router = _router(
        claude=FakeBackend("claude", [RuntimeError("model exploded")]),
        gemini=FakeBackend("gemini", [RuntimeError("search exploded")]),
        aistudio=FakeBackend("aistudio", [RuntimeError("studio exploded")]),
    )

    with pytest.raises(AllBackendsFailedError, match="Primary: claude, Fallbacks: gemini, aistudio") as info:
        await router.execute_with_optimal_layer(Task(prompt="Please refactor this function"))

    assert info.value.attempts == ["claude", "gemini", "aistudio"]
    assert "studio exploded" in str(info.value)


@pytest.mark.asyncio
async def test_simple_prompt_takes_the_fast_path() -> None:
    claude = FakeBackend("claude")
    gemini = FakeBackend("gemini", [{"answer": "Paris"}])
    router = _router(claude=claude, gemini=gemini)

    result = await router.process_multimodal("What is the capital of France?")

    assert result.success is True
    assert list(result.results) == ["fast_path"]
    assert result.metadata["execution_mode"] == "fast"
    assert result.metadata["optimization"] == "fast-path-bypass"
    assert gemini.calls[0].action == "analyze_with_grounding"
    assert gemini.calls[0].options["use_search"] is True
    assert claude.calls == []


@pytest.mark.asyncio
async def test_failed_fast_path_falls_back_to_the_analysis_template() -> None:
    gemini = FakeBackend("gemini", [RuntimeError("model exploded")])
    router = _router(gemini=gemini)

    result = await router.process_multimodal("What is the capital of France?")

    assert result.success is True
    assert list(result.results) == ["preprocess", "multimodal_analysis", "synthesis"]
    assert result.metadata["workflow"] == "analysis"


@pytest.mark.asyncio
async def test_conversion_workflow_with_files() -> None:
    aistudio = FakeBackend("aistudio")
    router = _router(aistudio=aistudio)

    result = await router.process_multimodal(
        "Turn this into a pdf",
        files=["scan.png"],
        workflow_kind="conversion",
        options={"execution_mode": "sequential"},
    )

    assert result.success is True
    assert list(result.results) == ["format_analysis", "file_conversion", "quality_check"]
    assert result.metadata["execution_mode"] == "sequential"
    assert result.metadata["workflow"] == "conversion"
    assert aistudio.calls[0].file_kinds == [FileKind.IMAGE]


@pytest.mark.asyncio
async def test_workflow_kind_is_detected_when_omitted() -> None:
    router = _router()

    result = await router.process_multimodal("Extract the totals from invoice.pdf", files=["invoice.pdf"])

    assert list(result.results) == ["extraction_planning", "data_extraction", "structure_data"]


@pytest.mark.asyncio
async def test_unknown_workflow_kind_is_rejected() -> None:
    with pytest.raises(PlanValidationError, match="Unknown workflow kind"):
        await _router().process_multimodal("anything", workflow_kind="poetry")


@pytest.mark.asyncio
async def test_document_analysis_recovers_through_declared_fallback() -> None:
    aistudio = FakeBackend("aistudio", [RuntimeError("aistudio backend not available")])
    gemini = FakeBackend("gemini", [{"analysis": "two documents"}])
    router = _router(aistudio=aistudio, gemini=gemini)

    result = await router.analyze_documents(["doc one", "doc two"], "summary", "bullet points")

    processing = result.results["document_processing"]
    assert result.success is True
    assert result.metadata["execution_mode"] == "sequential"
    assert processing.metadata["fallback_used"] is True
    assert processing.data == {"analysis": "two documents"}
    assert gemini.calls[0].action == "analyze_documents"
    assert gemini.calls[0].payload["documents"] == ["doc one", "doc two"]


@pytest.mark.asyncio
async def test_execute_workflow_reports_estimates() -> None:
    router = _router()

    result = await router.execute_workflow(
        [
            {"id": "a", "backend": "claude", "action": "analyze_requirements", "input": {"prompt": "x"}},
            {"id": "b", "backend": "gemini", "action": "lookup", "input": {"prompt": "y"}},
        ],
        mode="parallel",
    )

    assert result.success is True
    assert result.metadata["requested_mode"] == "parallel"
    assert result.metadata["execution_mode"] == "parallel"
    assert result.metadata["estimated_duration"] == pytest.approx(90.0)
    assert result.metadata["recommended_mode"] == "sequential"
    assert result.metadata["backends_used"] == ["claude", "gemini"]


@pytest.mark.asyncio
async def test_workflow_deadline_surfaces_timeout() -> None:
    router = _router(claude=FakeBackend("claude", delay=0.5))

    with pytest.raises(WorkflowTimeoutError) as info:
        await router.execute_workflow(
            [{"id": "slow", "backend": "claude", "action": "think"}],
            mode="sequential",
            timeout=0.05,
        )

    assert info.value.details["completed_steps"] == []


@pytest.mark.asyncio
@pytest.mark.parametrize("mode", ["fast", "turbo"])
async def test_invalid_modes_are_rejected(mode: str) -> None:
    with pytest.raises(PlanValidationError):
        await _router().execute_workflow([{"id": "a", "backend": "claude", "action": "think"}], mode=mode)


@pytest.mark.asyncio
async def test_cyclic_plan_runs_nothing() -> None:
    claude = FakeBackend("claude")
    router = _router(claude=claude)

    with pytest.raises(PlanValidationError, match="Circular dependency"):
        await router.execute_workflow(
            [
                {"id": "a", "backend": "claude", "action": "think", "depends_on": ["b"]},
                {"id": "b", "backend": "claude", "action": "think", "depends_on": ["a"]},
            ]
        )

    assert claude.calls == []


@pytest.mark.asyncio
async def test_backend_status_reports_availability_quota_and_cache() -> None:
    router = _router(gemini=FakeBackend("gemini", available=False))

    status = await router.backend_status()

    assert set(status["backends"]) == {"claude", "gemini", "aistudio"}
    assert status["backends"]["claude"]["available"] is True
    assert status["backends"]["claude"]["initialized"] is True
    assert status["backends"]["gemini"]["available"] is False
    assert status["backends"]["gemini"]["role"] == "search-grounded"
    assert "image_generation" in status["backends"]["aistudio"]["capabilities"]
    assert status["backends"]["aistudio"]["quota_status"] == "healthy"
    assert status["backends"]["aistudio"]["quota"]["limits"]["requests_per_minute"] == 15
    assert status["cache"]["entries"] == 0
