"""Repository for coach notifications."""
from __future__ import annotations

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from pdp_coach.models.coach_notification import CoachNotification


class NotificationRepository:
    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, notification: CoachNotification) -> CoachNotification:
        self._session.add(notification)
        await self._session.flush()
        await self._session.refresh(notification)
        return notification

    async def list_for_recipient(self, recipient: str, limit: int = 50) -> list[CoachNotification]:
        result = await self._session.execute(
            select(CoachNotification)
            .where(CoachNotification.recipient == recipient)
            .order_by(desc(CoachNotification.created_at), desc(CoachNotification.id))
            .limit(limit)
        )
        return list(result.scalars())
