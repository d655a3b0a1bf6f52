from __future__ import annotations

import pytest

from layerbridge.core.config import FastPathSettings
from layerbridge.core.errors import PlanValidationError
from layerbridge.routing import lexicons
from layerbridge.routing.classifier import (
    TaskClassifier,
    assess_complexity,
    classify,
    detect_workflow_kind,
    extract_file_references,
    is_fast_path_eligible,
    search_strategy,
)
from layerbridge.schemas.tasks import BackendKind, Complexity, FileKind, Task


def test_generation_request_selects_multimodal_backend() -> None:
    analysis = classify(Task(prompt="generate an image of a sunset", files=[]))

    assert analysis.backend is BackendKind.AISTUDIO
    assert analysis.rule == "generation"
    assert "Generation intent" in analysis.reasoning
    assert analysis.is_generation_request is True


def test_generation_verb_without_media_is_not_a_generation_request() -> None:
    analysis = classify(Task(prompt="Generate a summary of the meeting"))

    assert analysis.is_generation_request is False
    assert analysis.backend is BackendKind.GEMINI
    assert analysis.rule == "simple"


def test_classification_is_deterministic() -> None:
    task = Task(prompt="Compare the latest releases of two databases", files=["notes.txt"])
    classifier = TaskClassifier()

    first = classifier.classify(task)
    second = classifier.classify(task)

    assert (first.backend, first.reasoning) == (second.backend, second.reasoning)


def test_override_wins_over_every_signal() -> None:
    analysis = classify(Task(prompt="generate an image of a cat", files=["a.png"]), "claude")

    assert analysis.backend is BackendKind.CLAUDE
    assert analysis.rule == "override"


@pytest.mark.parametrize("override", [None, "", "auto", "adaptive"])
def test_adaptive_override_falls_through_to_ladder(override) -> None:
    analysis = classify(Task(prompt="hi there"), override)

    assert analysis.rule != "override"


def test_unknown_override_is_rejected() -> None:
    with pytest.raises(PlanValidationError):
        classify(Task(prompt="hi"), "gpt")


def test_source_files_route_to_multimodal_backend() -> None:
    analysis = classify(Task(prompt="review this", files=["src/main.py"]))

    assert analysis.backend is BackendKind.AISTUDIO
    assert analysis.rule == "source_files"
    assert "src/main.py" in analysis.reasoning


def test_media_files_route_to_multimodal_backend() -> None:
    analysis = classify(Task(prompt="what is in this picture", files=["photo.png"]))

    assert analysis.backend is BackendKind.AISTUDIO
    assert analysis.rule == "media_files"
    assert analysis.file_kinds == [FileKind.IMAGE]


def test_document_files_route_to_multimodal_backend() -> None:
    analysis = classify(Task(prompt="summarize", files=[{"path": "report.pdf"}]))

    assert analysis.backend is BackendKind.AISTUDIO
    assert analysis.rule == "document_files"


def test_current_information_routes_to_search_backend() -> None:
    analysis = classify(Task(prompt="What is the latest news about AI?"))

    assert analysis.backend is BackendKind.GEMINI
    assert analysis.rule == "current_info"
    assert analysis.needs_current_info is True


def test_japanese_current_information_keywords() -> None:
    analysis = classify(Task(prompt="最新のニュースを教えて"))

    assert analysis.backend is BackendKind.GEMINI
    assert analysis.rule == "current_info"


@pytest.mark.parametrize(
    "prompt",
    [
        "Please refactor this function for readability",
        "Fix the bug in utils.py",
        "```\nprint('x')\n```",
    ],
)
def test_code_prompts_route_to_reasoning_backend(prompt: str) -> None:
    analysis = classify(Task(prompt=prompt))

    assert analysis.backend is BackendKind.CLAUDE
    assert analysis.rule == "deep_reasoning"
    assert analysis.is_code_related is True


def test_code_keywords_match_whole_words_only() -> None:
    analysis = classify(Task(prompt="Define the term entropy"))

    assert analysis.is_code_related is False
    assert analysis.backend is BackendKind.GEMINI


def test_long_prompt_routes_to_reasoning_backend() -> None:
    analysis = classify(Task(prompt="word " * 450))

    assert analysis.complexity is Complexity.MEDIUM
    assert analysis.backend is BackendKind.CLAUDE
    assert "prompt longer than" in analysis.reasoning


def test_unmatched_medium_prompt_defaults_to_multimodal_backend() -> None:
    analysis = classify(Task(prompt="lorem " * 100))

    assert analysis.backend is BackendKind.AISTUDIO
    assert analysis.rule == "default"


def test_complexity_scoring_tiers() -> None:
    assert assess_complexity(Task(prompt="short")) is Complexity.LOW
    assert assess_complexity(Task(prompt="x" * 2100)) is Complexity.MEDIUM
    assert assess_complexity(Task(prompt="x" * 2100, type="workflow")) is Complexity.HIGH
    assert (
        assess_complexity(Task(prompt="analyze", type="analysis", files=[f"{n}.png" for n in range(6)]))
        is Complexity.HIGH
    )


def test_estimated_tokens_counts_prompt_and_files() -> None:
    analysis = classify(Task(prompt="abcd" * 10, files=["a.png", "b.png"]))

    assert analysis.estimated_tokens == 10 + 200


@pytest.mark.parametrize(
    ("prompt", "expected"),
    [
        ("Hello there", False),
        ("Summarize this paragraph", False),
        ("calculate 2 + 2", False),
        ("latest stock price for ACME", True),
        ("Who won the 2024 election?", True),
        ("How does photosynthesis work in plants?", True),
        ("History of Rome", None),
        ("Tell me a joke", None),
    ],
)
def test_search_strategy(prompt: str, expected) -> None:
    assert search_strategy(prompt) is expected


def test_extract_file_references() -> None:
    prompt = "Compare @notes/plan.md with report.pdf and file:///tmp/a.txt"

    assert extract_file_references(prompt) == ["notes/plan.md", "file:///tmp/a.txt", "report.pdf"]


@pytest.mark.parametrize(
    ("prompt", "expected"),
    [
        ("Convert these PDFs to markdown", "conversion"),
        ("Generate a poster for the event", "generation"),
        ("Create and convert a logo", "generation"),
        ("Extract the tables from the scan", "extraction"),
        ("What does this chart say?", "analysis"),
    ],
)
def test_detect_workflow_kind(prompt: str, expected: str) -> None:
    assert detect_workflow_kind(prompt) == expected


def test_fast_path_eligibility() -> None:
    settings = FastPathSettings()

    assert is_fast_path_eligible("What is the capital of France?", [], settings) is True
    assert is_fast_path_eligible("What is in this?", ["a.png"], settings) is False
    assert is_fast_path_eligible("Please orchestrate the release", [], settings) is False
    assert is_fast_path_eligible("Look at report.pdf", [], settings) is False
    assert is_fast_path_eligible("x" * 1000, [], settings) is False
    assert is_fast_path_eligible("hi", [], FastPathSettings(enabled=False)) is False


def test_lexicon_tables_are_versioned_data() -> None:
    assert lexicons.LEXICON_VERSION >= 1
    assert lexicons.matches("code", "please define it") == []
    assert lexicons.matches("generation", "it was generated") == ["generate"]
