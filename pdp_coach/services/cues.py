"""Timer cue events and their fire-and-forget delivery."""
from __future__ import annotations

import asyncio
import inspect
from datetime import datetime
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, Field

from pdp_coach.core.logging import get_logger
from pdp_coach.core.metrics import track_cue
from pdp_coach.models.enums import CueType

logger = get_logger(__name__)


class Cue(BaseModel):
    """An audio/visual prompt raised by a protocol timer."""

    type: CueType
    step_index: int | None = None
    remaining: int | None = None
    round: int | None = None
    value: int | None = None  # countdown digit
    emitted_at: datetime = Field(default_factory=datetime.utcnow)


CueSink = Callable[[Cue], "Awaitable[Any] | None"]


class CueDispatcher:
    """Delivers cues to registered sinks without ever blocking the tick loop.

    Inside a running event loop every sink call is scheduled with
    ``call_soon``; coroutine sinks become tasks. Outside a loop sinks are
    called inline. Sink failures are logged and dropped.
    """

    def __init__(self, sinks: list[CueSink] | None = None):
        self._sinks: list[CueSink] = list(sinks or [])
        self._pending: set[asyncio.Task] = set()
        self.history: list[Cue] = []

    def emit(self, cue: Cue) -> None:
        self.history.append(cue)
        track_cue(cue.type.value)
        logger.debug(
            "Cue emitted",
            cue=cue.type.value,
            step_index=cue.step_index,
            remaining=cue.remaining,
            round=cue.round,
        )

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        for sink in list(self._sinks):
            if loop is None:
                self._deliver(sink, cue)
            else:
                loop.call_soon(self._deliver, sink, cue)

    def _deliver(self, sink: CueSink, cue: Cue) -> None:
        try:
            result = sink(cue)
        except Exception as e:
            logger.warning("Cue sink failed", cue=cue.type.value, error=str(e))
            return

        if inspect.isawaitable(result):
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                if inspect.iscoroutine(result):
                    result.close()
                logger.warning("Async cue sink called outside an event loop", cue=cue.type.value)
                return
            task = asyncio.ensure_future(result)
            self._pending.add(task)
            task.add_done_callback(self._on_sink_done)

    def _on_sink_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning("Cue sink failed", error=str(error))

    def cancel_pending(self) -> None:
        for task in list(self._pending):
            task.cancel()
        self._pending.clear()
