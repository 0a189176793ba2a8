"""Per-exercise set scheme resolution for free-form (LIBRE) blocks."""
from __future__ import annotations

from dataclasses import dataclass, field

from pdp_coach.config.protocol_rules_loader import LibreRules
from pdp_coach.schemas.session import Exercise, Module

TIME_TYPES = ("TIME",)
DISTANCE_UNITS = {"METROS": "m", "DISTANCE": "m", "KM": "km"}


@dataclass
class LibreExerciseConfig:
    target_sets: int
    reps_per_set: list[float] = field(default_factory=list)
    rest_seconds: int = 90

    @property
    def target_reps(self) -> float:
        return self.reps_per_set[0] if self.reps_per_set else 0

    def reps_for_set(self, set_number: int) -> float:
        if 0 <= set_number < len(self.reps_per_set):
            return self.reps_per_set[set_number]
        return self.target_reps


def _unit_for(vol_type: str, exercise: Exercise) -> str:
    if vol_type in TIME_TYPES or any((s.time or 0) > 0 for s in exercise.config.sets[:1]):
        return "seg"
    if vol_type in DISTANCE_UNITS:
        return DISTANCE_UNITS[vol_type]
    if vol_type == "KCAL":
        return "kcal"
    return "reps"


def libre_config(exercise: Exercise, module: Module | None, rules: LibreRules) -> LibreExerciseConfig:
    """Resolve target sets, reps per set and rest for one exercise."""
    config = exercise.config
    sets = config.sets
    vol_type = (config.vol_type or "REPS").upper()
    unit = _unit_for(vol_type, exercise)
    fallback_reps = exercise.target_reps or rules.default_reps

    target_sets = len(sets) or rules.default_sets
    if sets:
        reps_per_set = []
        for scheme in sets:
            if unit == "seg":
                value = scheme.reps if config.vol_type and scheme.reps else scheme.time
            elif unit in ("m", "km"):
                value = scheme.reps if config.vol_type and scheme.reps else scheme.distance
            else:
                value = scheme.reps or fallback_reps
            reps_per_set.append(value or 0)
    else:
        reps_per_set = [0 if unit != "reps" else fallback_reps] * target_sets

    first = sets[0] if sets else None
    module_rest = module.primary_target.rest_seconds if module else None
    rest_seconds = (
        (first.rest if first else None)
        or config.rest_seconds
        or module_rest
        or rules.default_rest_seconds
    )

    return LibreExerciseConfig(
        target_sets=target_sets,
        reps_per_set=reps_per_set,
        rest_seconds=int(rest_seconds),
    )


def prescribed_weight(exercise: Exercise) -> float | None:
    """Weight of the first prescribed set; zero counts as unset."""
    sets = exercise.config.sets
    return (sets[0].weight or None) if sets else None


def superset_groups(exercises: list[Exercise]) -> list[list[int]]:
    """Group exercise indexes; a ``grouped`` exercise joins the previous group."""
    groups: list[list[int]] = []
    for idx, exercise in enumerate(exercises):
        if exercise.grouped and groups:
            groups[-1].append(idx)
        else:
            groups.append([idx])
    return groups
