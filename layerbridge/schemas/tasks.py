from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..routing.lexicons import detect_file_kind


class BackendKind(str, Enum):
    CLAUDE = "claude"
    GEMINI = "gemini"
    AISTUDIO = "aistudio"


class FileKind(str, Enum):
    IMAGE = "image"
    AUDIO = "audio"
    PDF = "pdf"
    DOCUMENT = "document"
    TEXT = "text"
    VIDEO = "video"
    UNKNOWN = "unknown"


class Complexity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class FileRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str = Field(..., min_length=1)
    type: FileKind = FileKind.UNKNOWN
    size: int | None = Field(default=None, ge=0)
    encoding: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _infer_type(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"path": value, "type": detect_file_kind(value)}
        if isinstance(value, dict) and value.get("path") and not value.get("type"):
            return {**value, "type": detect_file_kind(str(value["path"]))}
        return value


class Task(BaseModel):
    """One ad hoc request. Immutable for the duration of an execution attempt."""

    model_config = ConfigDict(frozen=True)

    prompt: str = ""
    files: tuple[FileRef, ...] = ()
    options: dict[str, Any] = Field(default_factory=dict)
    type: str | None = None
    action: str | None = None
    timeout: float | None = Field(default=None, gt=0)
    payload: dict[str, Any] = Field(default_factory=dict)

    @field_validator("files", mode="before")
    @classmethod
    def _coerce_files(cls, value: Any) -> Any:
        if value is None:
            return ()
        return tuple(value)

    @property
    def file_kinds(self) -> list[FileKind]:
        return [ref.type for ref in self.files]

    def with_updates(self, **changes: Any) -> Task:
        return self.model_copy(update=changes)


class LayerResult(BaseModel):
    success: bool
    data: Any = None
    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def ok(cls, data: Any, **metadata: Any) -> LayerResult:
        return cls(success=True, data=data, metadata=metadata)

    @classmethod
    def failure(cls, error: str, **metadata: Any) -> LayerResult:
        return cls(success=False, error=error, metadata=metadata)

    @property
    def backend(self) -> str | None:
        value = self.metadata.get("backend")
        return str(value) if value is not None else None

    @property
    def duration(self) -> float:
        return float(self.metadata.get("duration") or 0.0)

    @property
    def cost(self) -> float:
        return float(self.metadata.get("cost") or 0.0)


class TaskAnalysis(BaseModel):
    backend: BackendKind
    complexity: Complexity
    complexity_score: int = 0
    reasoning: str
    rule: str
    has_files: bool = False
    file_kinds: list[FileKind] = Field(default_factory=list)
    is_code_related: bool = False
    needs_current_info: bool = False
    is_generation_request: bool = False
    estimated_tokens: int = 0


__all__ = [
    "BackendKind",
    "Complexity",
    "FileKind",
    "FileRef",
    "LayerResult",
    "Task",
    "TaskAnalysis",
]
