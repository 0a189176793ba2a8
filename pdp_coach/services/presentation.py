"""Process-wide presentation resources (audio output, display wake lock).

Resources are acquired together on the athlete's first gesture and released
in reverse order on every exit path, including errors.
"""
from __future__ import annotations

import typing

from pdp_coach.core.logging import get_logger

logger = get_logger(__name__)


class PresentationResource(typing.Protocol):
    name: str

    async def acquire(self) -> None:
        ...

    async def release(self) -> None:
        ...


class HeldResource:
    """A resource that only tracks whether it is held; the UI owns the real handle."""

    def __init__(self, name: str):
        self.name = name
        self.held = False

    async def acquire(self) -> None:
        self.held = True

    async def release(self) -> None:
        self.held = False


def default_resources() -> list[HeldResource]:
    return [HeldResource("audio_context"), HeldResource("wake_lock")]


class PresentationScope:
    """Async context manager acquiring every resource or none."""

    def __init__(self, resources: list[PresentationResource]):
        self._resources = list(resources)
        self._acquired: list[PresentationResource] = []

    @property
    def active(self) -> bool:
        return bool(self._acquired)

    async def __aenter__(self) -> "PresentationScope":
        try:
            for resource in self._resources:
                await resource.acquire()
                self._acquired.append(resource)
        except Exception:
            await self._release_all()
            raise
        logger.debug("Presentation resources acquired", resources=[r.name for r in self._acquired])
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self._release_all()
        return False

    async def _release_all(self) -> None:
        while self._acquired:
            resource = self._acquired.pop()
            try:
                await resource.release()
            except Exception as e:
                logger.warning("Failed to release presentation resource", resource=resource.name, error=str(e))
