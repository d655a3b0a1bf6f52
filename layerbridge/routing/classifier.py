from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from ..core.config import FastPathSettings
from ..core.errors import PlanValidationError
from ..schemas.tasks import BackendKind, Complexity, FileKind, FileRef, Task, TaskAnalysis
from . import lexicons
from .lexicons import matches

_MEDIA_TABLES: tuple[tuple[str, str], ...] = (("image", "image"), ("audio", "audio"), ("video", "video"))
_DOCUMENT_KINDS = frozenset({FileKind.PDF, FileKind.DOCUMENT})
_MEDIA_KINDS = frozenset({FileKind.IMAGE, FileKind.AUDIO, FileKind.VIDEO})


@dataclass(slots=True)
class PromptSignals:
    """Lexicon hits for one prompt, computed once per classification."""

    code: list[str] = field(default_factory=list)
    current_info: list[str] = field(default_factory=list)
    generation: list[str] = field(default_factory=list)
    media: list[str] = field(default_factory=list)
    complexity: list[str] = field(default_factory=list)
    code_pattern: bool = False

    @property
    def is_code_related(self) -> bool:
        return bool(self.code) or self.code_pattern

    @property
    def needs_current_info(self) -> bool:
        return bool(self.current_info)

    @property
    def is_generation_request(self) -> bool:
        return bool(self.generation) and bool(self.media)


def scan_prompt(prompt: str) -> PromptSignals:
    text = prompt.lower()
    media: list[str] = []
    for table, label in _MEDIA_TABLES:
        if matches(table, text):
            media.append(label)
    return PromptSignals(
        code=matches("code", text),
        current_info=matches("current_info", text),
        generation=matches("generation", text),
        media=media,
        complexity=matches("complexity", text),
        code_pattern=any(pattern.search(prompt) for pattern in lexicons.CODE_PATTERNS),
    )


def complexity_score(task: Task, signals: PromptSignals | None = None) -> int:
    signals = signals or scan_prompt(task.prompt)
    score = 0
    length = len(task.prompt)
    for bound, weight in lexicons.PROMPT_LENGTH_TIERS:
        if length > bound:
            score += weight
            break
    file_count = len(task.files)
    for bound, weight in lexicons.FILE_COUNT_TIERS:
        if file_count > bound:
            score += weight
            break
    if task.type == "workflow" or task.action == "orchestrate":
        score += lexicons.WORKFLOW_MARKER_WEIGHT
    if task.type == "analysis" and file_count > 0:
        score += lexicons.ANALYSIS_WITH_FILES_WEIGHT
    score += len(signals.complexity)
    return score


def complexity_for_score(score: int) -> Complexity:
    if score >= lexicons.HIGH_COMPLEXITY_SCORE:
        return Complexity.HIGH
    if score >= lexicons.MEDIUM_COMPLEXITY_SCORE:
        return Complexity.MEDIUM
    return Complexity.LOW


def assess_complexity(task: Task) -> Complexity:
    return complexity_for_score(complexity_score(task))


def _resolve_override(override: BackendKind | str | None) -> BackendKind | None:
    if override is None:
        return None
    if isinstance(override, BackendKind):
        return override
    value = str(override).strip().lower()
    if not value or value in {"adaptive", "auto"}:
        return None
    try:
        return BackendKind(value)
    except ValueError as exc:
        raise PlanValidationError(f"Unknown backend override '{override}'") from exc


def _source_files(files: Iterable[FileRef]) -> list[str]:
    return [ref.path for ref in files if lexicons.file_extension(ref.path) in lexicons.SOURCE_EXTENSIONS]


class TaskClassifier:
    """Deterministic priority ladder that picks one backend for an ad hoc task."""

    def classify(self, task: Task, override: BackendKind | str | None = None) -> TaskAnalysis:
        signals = scan_prompt(task.prompt)
        score = complexity_score(task, signals)
        complexity = complexity_for_score(score)
        kinds = task.file_kinds
        backend, rule, reasoning = self._select(task, override, signals, complexity, kinds)
        return TaskAnalysis(
            backend=backend,
            complexity=complexity,
            complexity_score=score,
            reasoning=reasoning,
            rule=rule,
            has_files=bool(task.files),
            file_kinds=kinds,
            is_code_related=signals.is_code_related,
            needs_current_info=signals.needs_current_info,
            is_generation_request=signals.is_generation_request,
            estimated_tokens=math.ceil(len(task.prompt) / 4) + len(task.files) * 100,
        )

    def _select(
        self,
        task: Task,
        override: BackendKind | str | None,
        signals: PromptSignals,
        complexity: Complexity,
        kinds: Sequence[FileKind],
    ) -> tuple[BackendKind, str, str]:
        forced = _resolve_override(override)
        if forced is not None:
            return forced, "override", f"Explicit backend override: {forced.value}"

        source_files = _source_files(task.files)
        if source_files:
            return (
                BackendKind.AISTUDIO,
                "source_files",
                f"Source/config/markup files attached ({', '.join(source_files)}) require multimodal file processing",
            )

        media = sorted({kind.value for kind in kinds if kind in _MEDIA_KINDS})
        if media:
            return (
                BackendKind.AISTUDIO,
                "media_files",
                f"Multimodal files ({', '.join(media)}) require the multimodal backend",
            )

        if any(kind in _DOCUMENT_KINDS for kind in kinds):
            return (
                BackendKind.AISTUDIO,
                "document_files",
                "Document/PDF files require OCR and structured extraction on the multimodal backend",
            )

        if signals.is_generation_request:
            return (
                BackendKind.AISTUDIO,
                "generation",
                "Generation intent detected "
                f"({', '.join(signals.generation)}) for {', '.join(signals.media)} content; "
                "multimodal backend handles media generation",
            )

        if signals.needs_current_info:
            return (
                BackendKind.GEMINI,
                "current_info",
                f"Current information required ({', '.join(signals.current_info)}); search-grounded backend",
            )

        length = len(task.prompt)
        if complexity is Complexity.HIGH or signals.is_code_related or length > lexicons.LONG_PROMPT_CHARS:
            if complexity is Complexity.HIGH:
                detail = "high complexity"
            elif signals.is_code_related:
                detail = "code-related prompt"
            else:
                detail = f"prompt longer than {lexicons.LONG_PROMPT_CHARS} characters"
            return BackendKind.CLAUDE, "deep_reasoning", f"Complex reasoning or code analysis ({detail}); deep-reasoning backend"

        if complexity is Complexity.LOW and length < lexicons.SHORT_PROMPT_CHARS:
            return BackendKind.GEMINI, "simple", "Simple, short task; search-grounded backend is fastest"

        return BackendKind.AISTUDIO, "default", "No specific signal matched; defaulting to the multimodal backend"


_default_classifier = TaskClassifier()


def classify(task: Task, override: BackendKind | str | None = None) -> TaskAnalysis:
    return _default_classifier.classify(task, override)


def search_strategy(prompt: str) -> bool | None:
    """Return False when search is clearly unnecessary, True when clearly needed, else None."""
    stripped = prompt.lower().strip()
    if any(pattern.search(stripped) for pattern in lexicons.SEARCH_DISABLE_PATTERNS):
        return False
    text = prompt.lower()
    if matches("search_temporal", text) or matches("search_web", text):
        return True
    if lexicons.YEAR_PATTERN.search(prompt):
        return True
    if matches("search_question", text) and len(prompt) > lexicons.QUESTION_MIN_CHARS:
        return True
    return None


def extract_file_references(prompt: str) -> list[str]:
    found: list[str] = []
    for pattern in lexicons.FILE_REFERENCE_PATTERNS:
        for match in pattern.finditer(prompt):
            reference = match.group(0)
            if reference.startswith("@"):
                reference = reference[1:]
            if reference not in found:
                found.append(reference)
    return found


def detect_workflow_kind(prompt: str) -> str:
    text = prompt.lower()
    for kind, keywords in lexicons.WORKFLOW_KIND_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return kind
    return "analysis"


def is_fast_path_eligible(prompt: str, files: Sequence[object] | None, settings: FastPathSettings) -> bool:
    if not settings.enabled:
        return False
    if len(prompt) >= settings.max_prompt_chars:
        return False
    if files:
        return False
    if any(keyword in prompt for keyword in settings.complex_keywords):
        return False
    return not extract_file_references(prompt)


__all__ = [
    "PromptSignals",
    "TaskClassifier",
    "assess_complexity",
    "classify",
    "complexity_for_score",
    "complexity_score",
    "detect_workflow_kind",
    "extract_file_references",
    "is_fast_path_eligible",
    "scan_prompt",
    "search_strategy",
]
