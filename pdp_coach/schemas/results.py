"""Draft-free result records: finalized work results, feedback and history."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from pdp_coach.models.enums import BlockType, Protocol, RoundOutcome


class BlockFeedback(BaseModel):
    """Block-level feedback captured before a step is finalized."""

    rpe: int | None = Field(default=None, ge=0, le=10)
    notes: str = ""
    exercise_notes: dict[int, str] = Field(default_factory=dict)


class CardioRecord(BaseModel):
    """Whole-session cardio record for pure-cardio sessions."""

    duration_minutes: int | None = None
    distance_km: float | None = None
    pace: str | None = None  # "m:ss" per km
    avg_hr: int | None = None
    max_hr: int | None = None
    notes: str = ""


class WorkResult(BaseModel):
    """Finalized result of one WORK step. Immutable."""

    model_config = ConfigDict(frozen=True)

    step_index: int
    module_id: str | None = None
    module_stable_id: str | None = None
    protocol: Protocol | None = None
    block_type: BlockType | None = None
    offset: int = 0
    reps: dict[int, int] = Field(default_factory=dict)
    planned_weights: dict[int, float | None] = Field(default_factory=dict)
    actual_weights: dict[int, float | None] = Field(default_factory=dict)
    elapsed_seconds: int = 0
    planned_rounds: int | None = None
    emom_results: dict[int, RoundOutcome | None] = Field(default_factory=dict)
    heart_rates: dict[int, int] = Field(default_factory=dict)
    exercise_notes: dict[int, str] = Field(default_factory=dict)
    libre_set_reps: dict[int, list[int]] = Field(default_factory=dict)
    libre_set_weights: dict[int, list[float | None]] = Field(default_factory=dict)
    feedback: BlockFeedback | None = None
    skipped: bool = False
    cardio: CardioRecord | None = None
    finalized_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def successful_rounds(self) -> int:
        return sum(1 for outcome in self.emom_results.values() if outcome == RoundOutcome.SUCCESS)

    @property
    def failed_rounds(self) -> int:
        return sum(1 for outcome in self.emom_results.values() if outcome == RoundOutcome.FAIL)


class ExerciseAdjustment(BaseModel):
    exercise_id: str | None = None
    exercise_stable_id: str | None = None
    exercise_index: int | None = None
    adjustment: float = 0.0


class HistoricalLog(BaseModel):
    """The latest finalized result for a module plus the adjustments it produced."""

    module_stable_id: str
    result: WorkResult
    adjustments: list[ExerciseAdjustment] = Field(default_factory=list)
    recorded_at: datetime | None = None

    def adjustment_for(self, exercise_stable_id: str | None, exercise_index: int) -> float:
        for item in self.adjustments:
            if exercise_stable_id and item.exercise_stable_id == exercise_stable_id:
                return item.adjustment
        for item in self.adjustments:
            if item.exercise_stable_id is None and item.exercise_index == exercise_index:
                return item.adjustment
        return 0.0


class SessionFeedback(BaseModel):
    """End-of-session feedback captured on the summary step."""

    rpe: int | None = Field(default=None, ge=0, le=10)
    notes: str = ""
    duration_minutes: int | None = Field(default=None, ge=0)
    avg_hr: int | None = None
