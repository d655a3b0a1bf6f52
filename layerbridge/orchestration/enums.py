from __future__ import annotations

from enum import Enum


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED_RECOVERED = "failed_recovered"
    FAILED_TERMINAL = "failed_terminal"

    @property
    def is_terminal(self) -> bool:
        return self in {StepStatus.SUCCEEDED, StepStatus.FAILED_RECOVERED, StepStatus.FAILED_TERMINAL}

    @property
    def is_success(self) -> bool:
        return self in {StepStatus.SUCCEEDED, StepStatus.FAILED_RECOVERED}


class ExecutionMode(str, Enum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    ADAPTIVE = "adaptive"
    HYBRID = "hybrid"
    FAST = "fast"


class WorkflowKind(str, Enum):
    ANALYSIS = "analysis"
    CONVERSION = "conversion"
    EXTRACTION = "extraction"
    GENERATION = "generation"
    DOCUMENT_ANALYSIS = "document_analysis"


__all__ = ["ExecutionMode", "StepStatus", "WorkflowKind"]
