"""Cancellable asyncio task delivering one tick per interval to a protocol timer."""
from __future__ import annotations

import asyncio
from typing import Callable

from pdp_coach.config.settings import get_settings
from pdp_coach.core.logging import get_logger
from pdp_coach.services.protocol_timer import ProtocolTimer

logger = get_logger(__name__)


class TimerDriver:
    """Owns the tick task of the active WORK step.

    Pausing cancels the task while the timer sleeps between ticks, so the
    timer value is preserved exactly; resuming starts a fresh task from it.
    """

    def __init__(
        self,
        timer: ProtocolTimer,
        *,
        interval: float | None = None,
        on_tick: Callable[[ProtocolTimer], None] | None = None,
        on_complete: Callable[[ProtocolTimer], None] | None = None,
    ):
        self.timer = timer
        self.interval = interval if interval is not None else get_settings().tick_interval_seconds
        self._on_tick = on_tick
        self._on_complete = on_complete
        self._task: asyncio.Task | None = None

    @property
    def is_active(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> bool:
        """Start (or resume) ticking. Idempotent."""
        if self.is_active:
            return True
        if not self.timer.start():
            return False

        self._task = asyncio.create_task(self._tick_loop())
        logger.info(
            "Timer started",
            protocol=self.timer.protocol.value,
            step_index=self.timer.step_index,
            elapsed=self.timer.elapsed,
            remaining=self.timer.remaining,
        )
        return True

    async def pause(self) -> None:
        """Halt tick delivery, keeping the timer's value. Idempotent."""
        self.timer.pause()
        await self._cancel_task()
        logger.info(
            "Timer paused",
            protocol=self.timer.protocol.value,
            step_index=self.timer.step_index,
            elapsed=self.timer.elapsed,
            remaining=self.timer.remaining,
        )

    async def reset(self) -> None:
        await self._cancel_task()
        self.timer.reset()

    async def stop(self) -> None:
        """Hard stop used on step exit and session exit."""
        self.timer.pause()
        await self._cancel_task()

    async def _cancel_task(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _tick_loop(self) -> None:
        while self.timer.running:
            try:
                await asyncio.sleep(self.interval)
            except asyncio.CancelledError:
                break

            self.timer.tick()
            if self._on_tick is not None:
                try:
                    self._on_tick(self.timer)
                except Exception as e:
                    logger.error("Error in timer tick callback", exc_info=e)

            if self.timer.is_complete():
                logger.info(
                    "Timer completed",
                    protocol=self.timer.protocol.value,
                    step_index=self.timer.step_index,
                    elapsed=self.timer.elapsed,
                )
                if self._on_complete is not None:
                    try:
                        self._on_complete(self.timer)
                    except Exception as e:
                        logger.error("Error in timer completion callback", exc_info=e)
                break
