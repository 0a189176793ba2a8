"""
External collaborators of a session run.

The runner depends only on the capability protocols below. The SQL-backed
adapters implement them over an ``async_sessionmaker``; each call runs in
its own transaction.
"""
from __future__ import annotations

import typing
from datetime import date
from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pdp_coach.core.logging import get_logger
from pdp_coach.models.coach_notification import CoachNotification
from pdp_coach.models.enums import LogStatus, LogType, NotificationPriority
from pdp_coach.models.workout_log import WorkoutLog
from pdp_coach.repositories.notification_repository import NotificationRepository
from pdp_coach.repositories.schedule_repository import ScheduleRepository
from pdp_coach.repositories.workout_log_repository import WorkoutLogRepository
from pdp_coach.schemas.analysis import SessionAnalysis
from pdp_coach.schemas.results import (
    ExerciseAdjustment,
    HistoricalLog,
    SessionFeedback,
    WorkResult,
)

logger = get_logger(__name__)


class BlockLogEntry(BaseModel):
    user_id: str
    session_id: str
    run_id: str
    schedule_task_id: int | None = None
    scheduled_date: date | None = None
    result: WorkResult


class SessionFeedbackEntry(BaseModel):
    user_id: str
    session_id: str
    run_id: str
    schedule_task_id: int | None = None
    scheduled_date: date | None = None
    feedback: SessionFeedback | None = None
    analysis: SessionAnalysis
    # step index -> adjustments produced for that block
    adjustments: dict[int, list[ExerciseAdjustment]] = Field(default_factory=dict)


class CoachNotice(BaseModel):
    recipient: str
    athlete_id: str
    title: str
    message: str
    priority: NotificationPriority = NotificationPriority.NORMAL
    data: dict[str, Any] = Field(default_factory=dict)


class HistoryLookup(typing.Protocol):
    async def latest(self, module_stable_id: str) -> HistoricalLog | None:
        ...


class LogWriter(typing.Protocol):
    async def write_block(self, entry: BlockLogEntry) -> Any:
        ...

    async def write_session_feedback(self, entry: SessionFeedbackEntry) -> Any:
        ...


class ScheduleUpdater(typing.Protocol):
    async def mark_completed(
        self, task_id: int, summary: str, results: dict[str, Any] | None = None
    ) -> Any:
        ...


class NotificationDispatcher(typing.Protocol):
    async def dispatch(self, notice: CoachNotice) -> Any:
        ...


# -- SQLAlchemy adapters -----------------------------------------------


class SqlHistoryLookup:
    """Latest confirmed-or-pending block log for a module, as a HistoricalLog."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession], user_id: str):
        self._session_maker = session_maker
        self._user_id = user_id

    async def latest(self, module_stable_id: str) -> HistoricalLog | None:
        async with self._session_maker() as session:
            log = await WorkoutLogRepository(session).latest_block_log(
                self._user_id, module_stable_id
            )
            if log is None:
                return None
            return HistoricalLog(
                module_stable_id=module_stable_id,
                result=WorkResult.model_validate(log.results),
                adjustments=[ExerciseAdjustment.model_validate(a) for a in (log.adjustments or [])],
                recorded_at=log.created_at,
            )


class SqlLogWriter:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def write_block(self, entry: BlockLogEntry) -> int:
        result = entry.result
        async with self._session_maker() as session:
            async with session.begin():
                log = await WorkoutLogRepository(session).create(
                    WorkoutLog(
                        log_type=LogType.BLOCK.value,
                        user_id=entry.user_id,
                        session_id=entry.session_id,
                        schedule_task_id=entry.schedule_task_id,
                        scheduled_date=entry.scheduled_date,
                        module_id=result.module_id,
                        module_stable_id=result.module_stable_id,
                        block_type=result.block_type.value if result.block_type else None,
                        protocol=result.protocol.value if result.protocol else None,
                        step_index=result.step_index,
                        results=result.model_dump(mode="json"),
                        feedback=result.feedback.model_dump(mode="json") if result.feedback else None,
                        run_id=entry.run_id,
                        status=LogStatus.PENDING.value,
                    )
                )
            return log.id

    async def write_session_feedback(self, entry: SessionFeedbackEntry) -> int:
        """Write the feedback record and confirm the run's block logs in one transaction."""
        async with self._session_maker() as session:
            async with session.begin():
                repo = WorkoutLogRepository(session)
                for log in await repo.list_for_run(entry.run_id):
                    adjustments = entry.adjustments.get(log.step_index)
                    if log.log_type == LogType.BLOCK.value and adjustments:
                        log.adjustments = [a.model_dump(mode="json") for a in adjustments]
                await repo.confirm_pending(entry.run_id)

                log = await repo.create(
                    WorkoutLog(
                        log_type=LogType.SESSION_FEEDBACK.value,
                        user_id=entry.user_id,
                        session_id=entry.session_id,
                        schedule_task_id=entry.schedule_task_id,
                        scheduled_date=entry.scheduled_date,
                        results={},
                        feedback=entry.feedback.model_dump(mode="json") if entry.feedback else None,
                        analysis=[i.model_dump(mode="json") for i in entry.analysis.insights],
                        metrics=entry.analysis.metrics.model_dump(mode="json"),
                        run_id=entry.run_id,
                        notes=entry.feedback.notes if entry.feedback else None,
                        status=LogStatus.CONFIRMED.value,
                    )
                )
            return log.id


class SqlScheduleUpdater:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def mark_completed(
        self, task_id: int, summary: str, results: dict[str, Any] | None = None
    ) -> bool:
        async with self._session_maker() as session:
            async with session.begin():
                task = await ScheduleRepository(session).mark_completed(task_id, summary, results)
        if task is None:
            logger.warning("Scheduled task not found", task_id=task_id)
        return task is not None


class SqlNotificationDispatcher:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def dispatch(self, notice: CoachNotice) -> int:
        async with self._session_maker() as session:
            async with session.begin():
                notification = await NotificationRepository(session).create(
                    CoachNotification(
                        recipient=notice.recipient,
                        athlete_id=notice.athlete_id,
                        type="session_finished",
                        title=notice.title,
                        message=notice.message,
                        priority=notice.priority.value,
                        data=notice.data,
                    )
                )
            return notification.id
