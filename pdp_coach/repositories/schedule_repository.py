"""Repository for daily schedule entries."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pdp_coach.models.enums import TaskStatus
from pdp_coach.models.scheduled_task import ScheduledTask


class ScheduleRepository:
    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, task: ScheduledTask) -> ScheduledTask:
        self._session.add(task)
        await self._session.flush()
        await self._session.refresh(task)
        return task

    async def get_by_id(self, task_id: int) -> Optional[ScheduledTask]:
        result = await self._session.execute(
            select(ScheduledTask).where(ScheduledTask.id == task_id)
        )
        return result.scalar_one_or_none()

    async def mark_completed(
        self,
        task_id: int,
        summary: str,
        results: dict[str, Any] | None = None,
    ) -> Optional[ScheduledTask]:
        """Mark a task completed with a short human-readable summary.

        Returns:
            Updated task, or None when the task does not exist
        """
        task = await self.get_by_id(task_id)
        if task is None:
            return None
        task.status = TaskStatus.COMPLETED.value
        task.summary = summary
        task.results = results
        task.completed_at = datetime.utcnow()
        await self._session.flush()
        return task
