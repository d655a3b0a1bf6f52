from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .tasks import BackendKind, Complexity, LayerResult

STEP_REFERENCE_PREFIX = "@"
FALLBACK_KEY_SUFFIX = "_unavailable"


class WorkflowStep(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1)
    backend: BackendKind = Field(..., validation_alias=AliasChoices("backend", "layer"))
    action: str = Field(..., min_length=1)
    input: dict[str, Any] = Field(default_factory=dict)
    depends_on: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("depends_on", "dependsOn"),
    )
    timeout: float | None = Field(default=None, gt=0)


class FallbackStrategy(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    replace: str = Field(..., min_length=1)
    step: WorkflowStep = Field(..., validation_alias=AliasChoices("with", "step"))


class ExecutionPlan(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    steps: list[WorkflowStep] = Field(default_factory=list)
    fallback_strategies: dict[str, FallbackStrategy] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("fallback_strategies", "fallbackStrategies"),
    )
    timeout: float | None = Field(default=None, gt=0)

    def step(self, step_id: str) -> WorkflowStep | None:
        for candidate in self.steps:
            if candidate.id == step_id:
                return candidate
        return None


class WorkloadAnalysis(BaseModel):
    has_files: bool = False
    has_complex_prompt: bool = False
    multiple_steps: bool = False
    is_generation_request: bool = False
    is_image_generation: bool = False
    is_audio_generation: bool = False
    is_document_processing: bool = False
    requires_complex_reasoning: bool = False
    requires_multimodal_processing: bool = False
    requires_grounding: bool = False
    estimated_complexity: Complexity = Complexity.LOW
    recommended_backend: BackendKind = BackendKind.GEMINI


class WorkflowResult(BaseModel):
    success: bool
    results: dict[str, LayerResult] = Field(default_factory=dict)
    summary: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def failed_steps(self) -> list[str]:
        return [step_id for step_id, result in self.results.items() if not result.success]


def fallback_key(backend: BackendKind | str) -> str:
    value = backend.value if isinstance(backend, BackendKind) else str(backend)
    return f"{value}{FALLBACK_KEY_SUFFIX}"


__all__ = [
    "ExecutionPlan",
    "FALLBACK_KEY_SUFFIX",
    "FallbackStrategy",
    "STEP_REFERENCE_PREFIX",
    "WorkflowResult",
    "WorkflowStep",
    "WorkloadAnalysis",
    "fallback_key",
]
