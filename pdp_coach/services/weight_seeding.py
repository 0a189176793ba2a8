"""Weight seeding for a WORK step: history + adjustment, then plan, then prescribed set weight."""
from __future__ import annotations

from typing import Any, Mapping

from pdp_coach.models.enums import Protocol
from pdp_coach.schemas.results import HistoricalLog
from pdp_coach.schemas.session import Module
from pdp_coach.services.libre_config import prescribed_weight


def parse_weight(value: Any) -> float | None:
    """Normalize user input ('12,5', ' 40 ', 40) to a float; blanks become None."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return max(0.0, float(value))
    text = str(value).strip().replace(",", ".")
    if not text:
        return None
    try:
        return max(0.0, float(text))
    except ValueError:
        return None


def round_weight(value: float) -> float:
    return round(value, 1)


def _history_weight(history: HistoricalLog, exercise_index: int) -> float | None:
    result = history.result
    series = [w for w in result.libre_set_weights.get(exercise_index, []) if w]
    if series:
        return series[-1]
    weight = result.actual_weights.get(exercise_index)
    return weight if weight else None


def seed_weight(
    module: Module,
    exercise_index: int,
    *,
    history: HistoricalLog | None = None,
    plan_value: float | None = None,
) -> float | None:
    """Seed one exercise's weight.

    Priority: (1) latest history weight scaled by its pending adjustment,
    (2) the pre-session plan value, (3) for LIBRE blocks the weight of the
    first prescribed set, (4) empty.
    """
    if history is not None:
        base = _history_weight(history, exercise_index)
        if base is not None:
            exercise = module.exercises[exercise_index]
            adjustment = history.adjustment_for(exercise.stable_id, exercise_index)
            return round_weight(base * (1 + adjustment))
    if plan_value is not None:
        return round_weight(plan_value)
    if (module.protocol or Protocol.LIBRE) == Protocol.LIBRE:
        prescribed = prescribed_weight(module.exercises[exercise_index])
        if prescribed is not None:
            return round_weight(prescribed)
    return None


def seed_weights(
    module: Module,
    *,
    history: HistoricalLog | None = None,
    plans: Mapping[int, float | None] | None = None,
    offset: int = 0,
) -> dict[int, float | None]:
    """Seed every exercise of a (possibly split) module.

    ``plans`` is keyed by exercise index in the unsplit module, hence ``offset``.
    """
    plans = plans or {}
    return {
        idx: seed_weight(module, idx, history=history, plan_value=plans.get(offset + idx))
        for idx in range(len(module.exercises))
    }
