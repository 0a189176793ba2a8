"""Append-only workout log: one row per finalized block and per session feedback."""
from datetime import datetime

from sqlalchemy import JSON, Column, Date, DateTime, Index, Integer, String, Text

from pdp_coach.db.database import Base
from pdp_coach.models.enums import LogStatus, LogType


class WorkoutLog(Base):
    """A finalized WorkResult (BLOCK) or the end-of-session feedback record.

    Block rows are looked up by ``module_stable_id`` to seed weights and
    detect stagnation in later sessions.
    """

    __tablename__ = "workout_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    log_type = Column(String(32), nullable=False, default=LogType.BLOCK.value, index=True)

    user_id = Column(String(100), nullable=False, index=True)
    session_id = Column(String(100), nullable=False, index=True)
    run_id = Column(String(64), nullable=True, index=True)
    schedule_task_id = Column(Integer, nullable=True)
    scheduled_date = Column(Date, nullable=True)

    module_id = Column(String(100), nullable=True)
    module_stable_id = Column(String(200), nullable=True, index=True)
    block_type = Column(String(16), nullable=True)
    protocol = Column(String(16), nullable=True)
    step_index = Column(Integer, nullable=True)

    results = Column(JSON, nullable=False, default=dict)
    feedback = Column(JSON, nullable=True)
    adjustments = Column(JSON, nullable=True)  # [{exercise_stable_id, exercise_index, adjustment}]
    analysis = Column(JSON, nullable=True)
    metrics = Column(JSON, nullable=True)
    notes = Column(Text, nullable=True)

    status = Column(String(16), nullable=False, default=LogStatus.PENDING.value)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    __table_args__ = (
        Index("idx_workout_logs_user_module", "user_id", "module_stable_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<WorkoutLog(id={self.id}, type={self.log_type}, "
            f"module={self.module_stable_id}, status={self.status})>"
        )
