"""Daily schedule entry pointing at a session, with optional overrides."""
from datetime import datetime

from sqlalchemy import JSON, Column, Date, DateTime, Integer, String, Text

from pdp_coach.db.database import Base
from pdp_coach.models.enums import TaskStatus


class ScheduledTask(Base):
    __tablename__ = "scheduled_tasks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(100), nullable=False, index=True)
    scheduled_date = Column(Date, nullable=False, index=True)
    session_id = Column(String(100), nullable=False)
    status = Column(String(16), nullable=False, default=TaskStatus.SCHEDULED.value)
    summary = Column(Text, nullable=True)
    results = Column(JSON, nullable=True)
    overrides = Column(JSON, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<ScheduledTask(id={self.id}, session={self.session_id}, status={self.status})>"
