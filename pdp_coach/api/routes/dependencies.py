"""Shared dependencies for API routes."""
from __future__ import annotations

from typing import Callable

from pdp_coach.config.settings import get_settings
from pdp_coach.core.exceptions import NotFoundError
from pdp_coach.core.logging import get_logger
from pdp_coach.db.database import get_session_maker
from pdp_coach.schemas.runs import RunCreate
from pdp_coach.services.collaborators import (
    SqlHistoryLookup,
    SqlLogWriter,
    SqlNotificationDispatcher,
    SqlScheduleUpdater,
)
from pdp_coach.services.session_runner import SessionRunner

logger = get_logger(__name__)

RunnerFactory = Callable[[RunCreate], SessionRunner]


class RunRegistry:
    """In-process map of active session runs, keyed by run id."""

    def __init__(self):
        self._runs: dict[str, SessionRunner] = {}

    def __len__(self) -> int:
        return len(self._runs)

    def __contains__(self, run_id: str) -> bool:
        return run_id in self._runs

    def add(self, runner: SessionRunner) -> None:
        self._runs[runner.run_id] = runner

    def get(self, run_id: str) -> SessionRunner:
        runner = self._runs.get(run_id)
        if runner is None:
            raise NotFoundError("run", f"Session run {run_id} not found")
        return runner

    def remove(self, run_id: str) -> SessionRunner | None:
        return self._runs.pop(run_id, None)

    async def close_all(self) -> None:
        """Exit every run; called on application shutdown."""
        for run_id in list(self._runs):
            runner = self._runs.pop(run_id)
            try:
                await runner.exit()
            except Exception as e:
                logger.warning("Failed to exit session run", run_id=run_id, error=str(e))


_registry = RunRegistry()


def get_run_registry() -> RunRegistry:
    return _registry


def sql_runner_factory(payload: RunCreate) -> SessionRunner:
    """Build a runner wired to the SQL-backed collaborators."""
    settings = get_settings()
    session_maker = get_session_maker()
    user_id = payload.user_id or settings.default_user_id
    return SessionRunner(
        payload.session,
        override=payload.override,
        user_id=user_id,
        schedule_task_id=payload.schedule_task_id,
        scheduled_date=payload.scheduled_date,
        history_lookup=SqlHistoryLookup(session_maker, user_id),
        log_writer=SqlLogWriter(session_maker),
        schedule_updater=SqlScheduleUpdater(session_maker),
        notifier=SqlNotificationDispatcher(session_maker),
        settings=settings,
    )


def get_runner_factory() -> RunnerFactory:
    return sql_runner_factory
