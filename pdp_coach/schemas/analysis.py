"""Coaching insights and aggregate metrics."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from pdp_coach.models.enums import BlockType, InsightKind, InsightType


class Insight(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: InsightType
    kind: InsightKind = InsightKind.ADJUSTMENT
    step_index: int | None = None
    module_id: str | None = None
    module_stable_id: str | None = None
    block_type: BlockType | None = None
    exercise_id: str | None = None
    exercise_stable_id: str | None = None
    exercise_index: int | None = None
    exercise_name: str | None = None
    athlete_message: str
    coach_message: str
    adjustment: float = 0.0
    is_stagnation: bool = False


class SessionMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_volume: int = 0
    completed_exercise_count: int = 0
    efficiency_percent: int = 0
    avg_hr: int | None = None
    max_hr: int | None = None
    cardio_pace: str | None = None


class SessionAnalysis(BaseModel):
    model_config = ConfigDict(frozen=True)

    insights: list[Insight] = Field(default_factory=list)
    metrics: SessionMetrics = Field(default_factory=SessionMetrics)
    generated_at: datetime = Field(default_factory=datetime.utcnow)

    def coach_lines(self) -> list[str]:
        """Coach-facing lines, one per insight that carries a direction."""
        lines = []
        for insight in self.insights:
            if insight.type in (InsightType.UP, InsightType.DOWN):
                prefix = "⚠️" if insight.type == InsightType.DOWN else "✅"
                lines.append(f"{prefix} {insight.coach_message}")
        return lines

    @property
    def has_directional_insights(self) -> bool:
        return any(i.type in (InsightType.UP, InsightType.DOWN) for i in self.insights)
