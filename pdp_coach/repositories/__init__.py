"""Repositories package."""
from pdp_coach.repositories.notification_repository import NotificationRepository
from pdp_coach.repositories.schedule_repository import ScheduleRepository
from pdp_coach.repositories.workout_log_repository import WorkoutLogRepository

__all__ = [
    "NotificationRepository",
    "ScheduleRepository",
    "WorkoutLogRepository",
]
