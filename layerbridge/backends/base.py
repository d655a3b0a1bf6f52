"""Uniform contract for the interchangeable execution backends."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Protocol, Sequence, runtime_checkable

from ..routing.lexicons import BACKEND_BASE_ESTIMATES
from ..schemas.tasks import BackendKind, LayerResult, Task


@runtime_checkable
class Backend(Protocol):
    """Protocol implemented by every concrete backend."""

    kind: BackendKind

    async def initialize(self) -> None:
        """Prepare the backend (credentials, processes, clients)."""

    async def is_available(self) -> bool:
        """Report whether the backend can currently accept work."""

    async def execute(self, task: Task) -> LayerResult:
        """Run one task and return a normalized result."""

    def capabilities(self) -> Sequence[str]:
        """Return the capability names this backend supports."""

    def cost(self, task: Task) -> float:
        """Estimated monetary cost of running ``task``."""

    def estimated_duration(self, task: Task) -> float:
        """Estimated wall-clock seconds for ``task``."""


@dataclass(slots=True, frozen=True)
class BackendProfile:
    kind: BackendKind
    role: str
    capabilities: tuple[str, ...]
    base_duration: float
    base_cost: float


BACKEND_PROFILES: Mapping[BackendKind, BackendProfile] = {
    BackendKind.CLAUDE: BackendProfile(
        kind=BackendKind.CLAUDE,
        role="deep-reasoning",
        capabilities=("reasoning", "code_analysis", "synthesis", "planning"),
        base_duration=BACKEND_BASE_ESTIMATES["claude"][0],
        base_cost=BACKEND_BASE_ESTIMATES["claude"][1],
    ),
    BackendKind.GEMINI: BackendProfile(
        kind=BackendKind.GEMINI,
        role="search-grounded",
        capabilities=("grounded_search", "current_information", "fast_text"),
        base_duration=BACKEND_BASE_ESTIMATES["gemini"][0],
        base_cost=BACKEND_BASE_ESTIMATES["gemini"][1],
    ),
    BackendKind.AISTUDIO: BackendProfile(
        kind=BackendKind.AISTUDIO,
        role="multimodal",
        capabilities=(
            "image_analysis",
            "audio_analysis",
            "video_analysis",
            "document_processing",
            "image_generation",
            "audio_generation",
            "video_generation",
        ),
        base_duration=BACKEND_BASE_ESTIMATES["aistudio"][0],
        base_cost=BACKEND_BASE_ESTIMATES["aistudio"][1],
    ),
}


def profile_for(kind: BackendKind) -> BackendProfile:
    return BACKEND_PROFILES[BackendKind(kind)]


__all__ = ["BACKEND_PROFILES", "Backend", "BackendProfile", "profile_for"]
