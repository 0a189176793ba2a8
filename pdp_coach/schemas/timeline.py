"""Timeline steps produced once per session attempt."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from pdp_coach.models.enums import BlockType, Protocol, StepType
from pdp_coach.schemas.session import Module, WarmupDefinition


class TimelineStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int
    type: StepType
    module: Module | None = None  # set on WORK steps only
    block_type: BlockType | None = None
    modules: list[Module] = Field(default_factory=list)  # PLANNING aggregates every module
    warmup: WarmupDefinition | None = None
    part_label: str | None = None
    offset: int = 0  # exercise offset into the original module for split blocks

    @property
    def is_work(self) -> bool:
        return self.type == StepType.WORK

    @property
    def protocol(self) -> Protocol | None:
        return self.module.protocol if self.module else None


class Timeline(BaseModel):
    model_config = ConfigDict(frozen=True)

    session_id: str
    is_cardio: bool = False
    steps: list[TimelineStep] = Field(default_factory=list)

    def __len__(self) -> int:
        return len(self.steps)

    def __getitem__(self, index: int) -> TimelineStep:
        return self.steps[index]

    @property
    def last_index(self) -> int:
        return len(self.steps) - 1

    def work_steps(self) -> list[TimelineStep]:
        return [step for step in self.steps if step.is_work]
