from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Sequence

from ..core.errors import PlanValidationError
from ..schemas.tasks import BackendKind, FileRef
from ..schemas.workflow import ExecutionPlan, FallbackStrategy, WorkflowStep, fallback_key
from .enums import WorkflowKind

GENERATION_PRIORITY_MODELS: Mapping[str, str] = {
    "image": "imagen-3",
    "video": "veo-2",
    "audio": "text-to-speech",
}


@dataclass(slots=True)
class TemplateContext:
    prompt: str = ""
    files: Sequence[FileRef] = ()
    options: dict[str, Any] = field(default_factory=dict)
    documents: Sequence[str] = ()
    analysis_type: str | None = None
    output_requirements: str | None = None

    @property
    def file_payload(self) -> list[dict[str, Any]]:
        return [ref.model_dump(mode="json") for ref in self.files]


def _step(
    step_id: str,
    backend: BackendKind,
    action: str,
    input_data: dict[str, Any],
    depends_on: Sequence[str] = (),
) -> WorkflowStep:
    return WorkflowStep(id=step_id, backend=backend, action=action, input=input_data, depends_on=list(depends_on))


def analysis_plan(context: TemplateContext) -> ExecutionPlan:
    files = context.file_payload
    return ExecutionPlan(
        steps=[
            _step(
                "preprocess",
                BackendKind.CLAUDE,
                "analyze_requirements",
                {"prompt": context.prompt, "files": files, "analysis_type": "multimodal_analysis"},
            ),
            _step(
                "multimodal_analysis",
                BackendKind.AISTUDIO,
                "process_multimodal",
                {"files": files, "instructions": context.prompt, "options": dict(context.options)},
                depends_on=("preprocess",),
            ),
            _step(
                "synthesis",
                BackendKind.CLAUDE,
                "synthesize_results",
                {"analysis_results": "@multimodal_analysis.output", "original_prompt": context.prompt},
                depends_on=("multimodal_analysis",),
            ),
        ],
        fallback_strategies={
            fallback_key(BackendKind.AISTUDIO): FallbackStrategy(
                replace="multimodal_analysis",
                step=_step(
                    "fallback_analysis",
                    BackendKind.GEMINI,
                    "analyze_with_grounding",
                    {"prompt": context.prompt, "files": files},
                ),
            )
        },
    )


def conversion_plan(context: TemplateContext) -> ExecutionPlan:
    files = context.file_payload
    return ExecutionPlan(
        steps=[
            _step(
                "format_analysis",
                BackendKind.CLAUDE,
                "analyze_conversion_requirements",
                {"files": files, "target_format": context.prompt},
            ),
            _step(
                "file_conversion",
                BackendKind.AISTUDIO,
                "convert_files",
                {"files": files, "conversion_instructions": context.prompt, "options": dict(context.options)},
                depends_on=("format_analysis",),
            ),
            _step(
                "quality_check",
                BackendKind.GEMINI,
                "validate_conversion",
                {"original_files": files, "converted_results": "@file_conversion.output"},
                depends_on=("file_conversion",),
            ),
        ]
    )


def extraction_plan(context: TemplateContext) -> ExecutionPlan:
    files = context.file_payload
    return ExecutionPlan(
        steps=[
            _step(
                "extraction_planning",
                BackendKind.CLAUDE,
                "plan_extraction",
                {"files": files, "extraction_requirements": context.prompt},
            ),
            _step(
                "data_extraction",
                BackendKind.AISTUDIO,
                "extract_data",
                {"files": files, "extraction_plan": "@extraction_planning.output", "options": dict(context.options)},
                depends_on=("extraction_planning",),
            ),
            _step(
                "structure_data",
                BackendKind.CLAUDE,
                "structure_extracted_data",
                {"raw_data": "@data_extraction.output", "requirements": context.prompt},
                depends_on=("data_extraction",),
            ),
        ]
    )


def generation_plan(context: TemplateContext) -> ExecutionPlan:
    files = context.file_payload
    return ExecutionPlan(
        steps=[
            _step(
                "content_analysis",
                BackendKind.AISTUDIO,
                "analyze_source_content",
                {"files": files, "generation_goals": context.prompt},
            ),
            _step(
                "generation_strategy",
                BackendKind.CLAUDE,
                "develop_generation_strategy",
                {"content_analysis": "@content_analysis.output", "requirements": context.prompt},
                depends_on=("content_analysis",),
            ),
            _step(
                "content_generation",
                BackendKind.AISTUDIO,
                "generate_content",
                {
                    "strategy": "@generation_strategy.output",
                    "source_files": files,
                    "prompt": context.prompt,
                    "options": {
                        "generation_type": "auto_detect",
                        "priority_models": dict(GENERATION_PRIORITY_MODELS),
                    },
                },
                depends_on=("generation_strategy",),
            ),
        ]
    )


def document_analysis_plan(context: TemplateContext) -> ExecutionPlan:
    documents = list(context.documents)
    return ExecutionPlan(
        steps=[
            _step(
                "preprocess",
                BackendKind.CLAUDE,
                "analyze_requirements",
                {
                    "documents": documents,
                    "analysis_type": context.analysis_type,
                    "output_requirements": context.output_requirements,
                },
            ),
            _step(
                "document_processing",
                BackendKind.AISTUDIO,
                "process_documents",
                {"documents": documents, "analysis_type": context.analysis_type},
                depends_on=("preprocess",),
            ),
            _step(
                "synthesis",
                BackendKind.CLAUDE,
                "synthesize_analysis",
                {"analysis_results": "@document_processing.output", "requirements": context.output_requirements},
                depends_on=("document_processing",),
            ),
        ],
        fallback_strategies={
            fallback_key(BackendKind.AISTUDIO): FallbackStrategy(
                replace="document_processing",
                step=_step(
                    "fallback_processing",
                    BackendKind.GEMINI,
                    "analyze_documents",
                    {"documents": documents, "analysis_type": context.analysis_type},
                ),
            )
        },
    )


TEMPLATES: Mapping[WorkflowKind, Callable[[TemplateContext], ExecutionPlan]] = {
    WorkflowKind.ANALYSIS: analysis_plan,
    WorkflowKind.CONVERSION: conversion_plan,
    WorkflowKind.EXTRACTION: extraction_plan,
    WorkflowKind.GENERATION: generation_plan,
    WorkflowKind.DOCUMENT_ANALYSIS: document_analysis_plan,
}


def resolve_kind(kind: WorkflowKind | str) -> WorkflowKind:
    try:
        return WorkflowKind(kind)
    except ValueError as exc:
        raise PlanValidationError(f"Unknown workflow kind: {kind}") from exc


def build_template(kind: WorkflowKind | str, context: TemplateContext) -> ExecutionPlan:
    return TEMPLATES[resolve_kind(kind)](context)


__all__ = [
    "GENERATION_PRIORITY_MODELS",
    "TEMPLATES",
    "TemplateContext",
    "analysis_plan",
    "build_template",
    "conversion_plan",
    "document_analysis_plan",
    "extraction_plan",
    "generation_plan",
    "resolve_kind",
]
