"""Coach-facing notification generated when an athlete finishes a session."""
from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text

from pdp_coach.db.database import Base
from pdp_coach.models.enums import NotificationPriority


class CoachNotification(Base):
    __tablename__ = "coach_notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    recipient = Column(String(100), nullable=False, index=True)
    athlete_id = Column(String(100), nullable=False, index=True)
    type = Column(String(50), nullable=False, default="session_finished")
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    priority = Column(String(16), nullable=False, default=NotificationPriority.NORMAL.value)
    data = Column(JSON, nullable=True)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<CoachNotification(id={self.id}, recipient={self.recipient}, priority={self.priority})>"
