from __future__ import annotations

import asyncio
from typing import Dict, Iterable, Iterator

from ..core.errors import BackendUnavailableError, BridgeError, to_bridge_error
from ..core.logging import get_logger
from ..schemas.tasks import BackendKind
from .base import Backend

logger = get_logger(name=__name__)


class BackendRegistry:
    """Single map from backend identity to instance, with memoized initialization.

    The first caller of :meth:`ensure_ready` starts ``initialize()``; concurrent
    callers await the same in-flight task through a shield, so a caller that
    gives up on its own deadline leaves initialization running for the rest.
    A failed initialization is forgotten so a later call can try again.
    """

    def __init__(self, backends: Iterable[Backend] | None = None) -> None:
        self._backends: Dict[BackendKind, Backend] = {}
        self._ready: Dict[BackendKind, asyncio.Task[None]] = {}
        for backend in backends or ():
            self.register(backend)

    def register(self, backend: Backend) -> None:
        kind = BackendKind(backend.kind)
        self._backends[kind] = backend
        self._ready.pop(kind, None)

    def get(self, kind: BackendKind | str) -> Backend:
        key = BackendKind(kind)
        backend = self._backends.get(key)
        if backend is None:
            raise BackendUnavailableError(f"Backend '{key.value}' is not registered", backend=key.value)
        return backend

    def __contains__(self, kind: object) -> bool:
        try:
            return BackendKind(kind) in self._backends  # type: ignore[arg-type]
        except ValueError:
            return False

    def __iter__(self) -> Iterator[BackendKind]:
        return iter(self._backends)

    def kinds(self) -> list[BackendKind]:
        return list(self._backends)

    def is_initialized(self, kind: BackendKind | str) -> bool:
        task = self._ready.get(BackendKind(kind))
        return task is not None and task.done() and not task.cancelled() and task.exception() is None

    async def ensure_ready(self, kind: BackendKind | str) -> Backend:
        backend = self.get(kind)
        key = BackendKind(kind)
        task = self._ready.get(key)
        if task is None:
            task = asyncio.ensure_future(self._initialize(key, backend))
            self._ready[key] = task
        await asyncio.shield(task)
        return backend

    async def _initialize(self, key: BackendKind, backend: Backend) -> None:
        try:
            await backend.initialize()
        except Exception as exc:  # noqa: BLE001 - surfaced to every waiter on the shared task
            error = to_bridge_error(exc, backend=key.value)
            if not isinstance(error, BackendUnavailableError):
                error = BackendUnavailableError(
                    f"Backend '{key.value}' failed to initialize: {error.message}",
                    backend=key.value,
                )
            if self._ready.get(key) is asyncio.current_task():
                del self._ready[key]
            logger.warning("backend_initialization_failed", backend=key.value, error=str(exc))
            raise error from exc
        logger.info("backend_initialized", backend=key.value)

    async def check_available(self, kind: BackendKind | str) -> bool:
        if kind not in self:
            return False
        key = BackendKind(kind)
        try:
            backend = await self.ensure_ready(key)
            return bool(await backend.is_available())
        except BridgeError as exc:
            logger.warning("backend_unavailable", backend=key.value, error=exc.message)
            return False
        except Exception as exc:  # noqa: BLE001 - availability checks never raise
            logger.warning("backend_availability_check_failed", backend=key.value, error=str(exc))
            return False

    async def availability(self) -> dict[str, bool]:
        kinds = self.kinds()
        flags = await asyncio.gather(*(self.check_available(kind) for kind in kinds))
        return {kind.value: flag for kind, flag in zip(kinds, flags)}


__all__ = ["BackendRegistry"]
