"""Repository for the append-only workout log."""
from __future__ import annotations

from typing import Optional

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from pdp_coach.models.enums import LogStatus, LogType
from pdp_coach.models.workout_log import WorkoutLog


class WorkoutLogRepository:
    """Block logs and session feedback logs."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: Async SQLAlchemy session
        """
        self._session = session

    async def create(self, log: WorkoutLog) -> WorkoutLog:
        """Append a log row.

        Args:
            log: WorkoutLog instance to persist

        Returns:
            Created log with generated ID
        """
        self._session.add(log)
        await self._session.flush()
        await self._session.refresh(log)
        return log

    async def get_by_id(self, log_id: int) -> Optional[WorkoutLog]:
        result = await self._session.execute(
            select(WorkoutLog).where(WorkoutLog.id == log_id)
        )
        return result.scalar_one_or_none()

    async def latest_block_log(self, user_id: str, module_stable_id: str) -> Optional[WorkoutLog]:
        """Most recent non-skipped block log for a module.

        Args:
            user_id: Athlete identifier
            module_stable_id: Cross-session module identity

        Returns:
            Latest matching WorkoutLog or None
        """
        result = await self._session.execute(
            select(WorkoutLog)
            .where(
                WorkoutLog.user_id == user_id,
                WorkoutLog.module_stable_id == module_stable_id,
                WorkoutLog.log_type == LogType.BLOCK.value,
            )
            .order_by(desc(WorkoutLog.created_at), desc(WorkoutLog.id))
        )
        for log in result.scalars():
            if not (log.results or {}).get("skipped"):
                return log
        return None

    async def list_for_session(self, user_id: str, session_id: str) -> list[WorkoutLog]:
        result = await self._session.execute(
            select(WorkoutLog)
            .where(WorkoutLog.user_id == user_id, WorkoutLog.session_id == session_id)
            .order_by(WorkoutLog.id)
        )
        return list(result.scalars())

    async def list_for_run(self, run_id: str) -> list[WorkoutLog]:
        result = await self._session.execute(
            select(WorkoutLog).where(WorkoutLog.run_id == run_id).order_by(WorkoutLog.id)
        )
        return list(result.scalars())

    async def confirm_pending(self, run_id: str) -> int:
        """Mark every pending log of a session attempt as confirmed."""
        logs = await self.list_for_run(run_id)
        confirmed = 0
        for log in logs:
            if log.status == LogStatus.PENDING.value:
                log.status = LogStatus.CONFIRMED.value
                confirmed += 1
        await self._session.flush()
        return confirmed
