"""Request and response models for session runs."""
from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from pdp_coach.models.enums import RoundOutcome, StepType
from pdp_coach.schemas.analysis import SessionAnalysis
from pdp_coach.schemas.results import BlockFeedback, SessionFeedback, WorkResult
from pdp_coach.schemas.session import Override, SessionDefinition
from pdp_coach.schemas.timeline import Timeline


class StepStatus(str, Enum):
    NEEDS_CONFIRMATION = "needs_confirmation"
    ADVANCED = "advanced"


class StepOutcome(BaseModel):
    status: StepStatus
    step_index: int
    next_index: int | None = None
    result: WorkResult | None = None


class FinishOutcome(BaseModel):
    summary: str
    feedback_logged: bool = True
    schedule_updated: bool = False
    notification_sent: bool = False
    analysis: SessionAnalysis


# -- API payloads ------------------------------------------------------


class RunCreate(BaseModel):
    session: SessionDefinition
    override: Override | None = None
    user_id: str | None = None
    schedule_task_id: int | None = None
    scheduled_date: date | None = None


class PlanUpdate(BaseModel):
    module_id: str
    exercise_index: int = Field(ge=0)
    weight: float | str | None = None


class RepsUpdate(BaseModel):
    exercise_index: int = Field(ge=0)
    reps: int | None = Field(default=None, ge=0)
    delta: int | None = None


class WeightUpdate(BaseModel):
    exercise_index: int = Field(ge=0)
    weight: float | str | None = None
    delta: float | None = None


class EmomRoundUpdate(BaseModel):
    round: int = Field(ge=1)
    outcome: RoundOutcome | None = None
    toggle: bool = True


class LibreSetCreate(BaseModel):
    exercise_index: int = Field(ge=0)
    reps: int | None = Field(default=None, ge=0)
    weight: float | str | None = None
    start_rest: bool = True


class LibreSetUpdate(BaseModel):
    reps: int | None = Field(default=None, ge=0)
    weight: float | str | None = None


class LibreRoundCreate(BaseModel):
    """One round of a superset group, by position in the timer's groups."""
    group_index: int = Field(ge=0)
    rest_seconds: int | None = Field(default=None, ge=0)


class HeartRateUpdate(BaseModel):
    exercise_index: int = Field(ge=0)
    bpm: int | None = None


class ExerciseNoteUpdate(BaseModel):
    exercise_index: int = Field(ge=0)
    note: str = ""


class StepCompletion(BaseModel):
    feedback: BlockFeedback | None = None
    confirm_empty: bool = False


class StepSkip(BaseModel):
    feedback: BlockFeedback | None = None


class SessionFinish(BaseModel):
    feedback: SessionFeedback | None = None


class RunState(BaseModel):
    """Snapshot of a run for the UI."""

    run_id: str
    session_id: str
    current_index: int
    current_type: StepType
    timeline: Timeline
    draft: dict[str, Any] | None = None
    timer: dict[str, Any] | None = None
    finalized_steps: list[int] = Field(default_factory=list)
    pending_writes: list[int] = Field(default_factory=list)
    analysis: SessionAnalysis | None = None
    finished: bool = False
