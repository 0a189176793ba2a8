"""Read-only session, module and exercise definitions consumed by the engine."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

from pdp_coach.models.enums import ExerciseQuality, Protocol

CARDIO_KEYWORDS = (
    "ciclismo", "carrera", "running", "bike", "elíptica", "eliptica", "remo",
    "row", "natación", "swim", "cardio", "walking",
)


def normalize_protocol(value: Any) -> Protocol | None:
    """Map raw protocol tags ('PDP-T', 't', 'MIX', ...) onto Protocol.

    Unknown tags become LIBRE; an empty tag stays unset so the session's
    global protocol can decide.
    """
    if value is None or value == "":
        return None
    if isinstance(value, Protocol):
        return value
    tag = str(value).upper().replace("PDP-", "").strip()
    if tag in ("T", "R", "E"):
        return Protocol(tag)
    return Protocol.LIBRE


class SetScheme(BaseModel):
    """One prescribed set of an exercise."""
    reps: float | None = None
    weight: float | None = None
    rest: int | None = None
    time: int | None = None
    distance: float | None = None
    rir: str | None = None
    volume: float | None = None
    vol_type: str | None = None
    intensity: str | None = None
    int_type: str | None = None


class ExerciseConfig(BaseModel):
    sets: list[SetScheme] = Field(default_factory=list)
    vol_type: str | None = None  # REPS, TIME, METROS, DISTANCE, KM, KCAL
    int_type: str | None = None  # PESO, RIR, RPE, %, WATTS, BPM, RITMO, NIVEL
    is_emom: bool = False
    is_loadable: bool | None = None
    force_cardio: bool = False
    rest_seconds: int | None = None


class Exercise(BaseModel):
    id: str
    stable_id: str | None = None
    name: str = ""
    loadable: bool = False
    target_reps: int | None = None
    manifestation: str = ""
    quality: str = ExerciseQuality.STRENGTH.value
    grouped: bool = False  # joins the previous exercise's superset (LIBRE)
    notes: str | None = None
    config: ExerciseConfig = Field(default_factory=ExerciseConfig)

    @property
    def identity(self) -> str:
        """Cross-session identity: survives program edits."""
        return self.stable_id or self.id

    @property
    def is_energy(self) -> bool:
        return str(self.quality).upper() in ("E", "ENERGÍA", "ENERGIA", "CARDIO", "RESISTENCIA")

    @property
    def is_cardio(self) -> bool:
        name = self.name.lower()
        return self.is_energy or self.config.force_cardio or any(kw in name for kw in CARDIO_KEYWORDS)

    @property
    def is_loadable(self) -> bool:
        """External load counts toward volume; cardio and energy work never do."""
        if self.is_cardio:
            return False
        if self.config.is_loadable is not None:
            return self.config.is_loadable
        return self.loadable


class Targeting(BaseModel):
    """A target slot of a module; the first slot drives the timer."""
    time_cap: int | None = None  # seconds
    volume: float | None = None
    metric: str | None = None
    instruction: str = ""
    intensity: str | None = None
    intensity_type: str | None = None
    rest_seconds: int | None = None


class EmomParams(BaseModel):
    duration_minutes: int | None = None
    density: str = "normal"


class ModuleParams(BaseModel):
    time_cap: int | None = None
    rounds: int | None = None
    emom_minutes: int | None = None


class Module(BaseModel):
    id: str
    stable_id: str | None = None
    name: str = ""
    protocol: Protocol | None = None
    description: str = ""
    exercises: list[Exercise] = Field(default_factory=list)
    targeting: list[Targeting] = Field(default_factory=list)
    emom: EmomParams | None = None
    params: ModuleParams = Field(default_factory=ModuleParams)

    @field_validator("protocol", mode="before")
    @classmethod
    def _normalize_protocol(cls, v: Any) -> Protocol | None:
        return normalize_protocol(v)

    @property
    def identity(self) -> str:
        return self.stable_id or self.id

    @property
    def primary_target(self) -> Targeting:
        return self.targeting[0] if self.targeting else Targeting()

    @property
    def is_cardio_block(self) -> bool:
        return any(ex.is_cardio for ex in self.exercises)

    def target_reps_for(self, index: int, default: int = 0) -> int:
        """Per-exercise target, falling back to the module volume target."""
        if 0 <= index < len(self.exercises) and self.exercises[index].target_reps:
            return int(self.exercises[index].target_reps)
        volume = self.primary_target.volume
        if volume and self.primary_target.metric in (None, "reps"):
            return int(volume)
        return default


class WarmupDefinition(BaseModel):
    description: str = ""
    duration_minutes: int | None = None
    exercises: list[Exercise] = Field(default_factory=list)


class SessionDefinition(BaseModel):
    id: str
    name: str = ""
    type: str = "MIX"
    description: str = ""
    is_cardio: bool = False
    modules: list[Module] = Field(default_factory=list)
    warmup: list[WarmupDefinition] = Field(default_factory=list)


class Override(BaseModel):
    """Per-occurrence patch attached to a scheduled session."""
    duration: float | None = None  # minutes
    distance: float | None = None  # km
    notes: str | None = None
    vol_val: float | None = None
    vol_unit: str | None = None  # TIME, KM, METROS, KCAL, REPS
    int_val: str | None = None
    int_unit: str | None = None
    sets: list[Override] | None = None  # positional overrides for cardio blocks
