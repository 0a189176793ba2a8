"""
Performance Recorder

Keeps one mutable draft per WORK step and turns it into an immutable
WorkResult once block feedback is confirmed or the step is skipped.
Finalized results are the only data the analysis engine ever sees.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from pdp_coach.config.protocol_rules_loader import ProtocolRules, get_protocol_rules
from pdp_coach.core.exceptions import ConflictError, NotFoundError, ValidationError
from pdp_coach.models.enums import BlockType, Protocol, RoundOutcome
from pdp_coach.schemas.results import BlockFeedback, CardioRecord, WorkResult
from pdp_coach.schemas.session import Module
from pdp_coach.services.libre_config import libre_config
from pdp_coach.services.weight_seeding import parse_weight, round_weight

logger = logging.getLogger(__name__)

# unset -> success -> fail -> unset
NEXT_ROUND_OUTCOME: dict[RoundOutcome | None, RoundOutcome | None] = {
    None: RoundOutcome.SUCCESS,
    RoundOutcome.SUCCESS: RoundOutcome.FAIL,
    RoundOutcome.FAIL: None,
}


@dataclass
class DraftResult:
    """Mutable, unfinalized state of one WORK step."""
    step_index: int
    module: Module
    block_type: BlockType | None = None
    offset: int = 0
    reps: dict[int, int] = field(default_factory=dict)
    weights: dict[int, float | None] = field(default_factory=dict)
    planned_weights: dict[int, float | None] = field(default_factory=dict)
    touched_weights: set[int] = field(default_factory=set)
    elapsed_seconds: int = 0
    emom_results: dict[int, RoundOutcome | None] = field(default_factory=dict)
    heart_rates: dict[int, int] = field(default_factory=dict)
    exercise_notes: dict[int, str] = field(default_factory=dict)
    libre_set_reps: dict[int, list[int]] = field(default_factory=dict)
    libre_set_weights: dict[int, list[float | None]] = field(default_factory=dict)
    cardio: CardioRecord | None = None

    @property
    def protocol(self) -> Protocol:
        return self.module.protocol or Protocol.LIBRE

    @property
    def planned_rounds(self) -> int | None:
        if self.protocol != Protocol.EMOM:
            return None
        return self.module.emom.duration_minutes if self.module.emom else None

    def sets_done(self) -> dict[int, int]:
        return {idx: len(reps) for idx, reps in self.libre_set_reps.items()}

    def is_empty(self) -> bool:
        """True when nothing worth keeping has been logged."""
        return not (
            any(r > 0 for r in self.reps.values())
            or self.elapsed_seconds > 0
            or any(outcome is not None for outcome in self.emom_results.values())
            or any(self.libre_set_reps.values())
            or self.cardio is not None
        )


def coerce_feedback(feedback: BlockFeedback | dict[str, Any] | None) -> BlockFeedback | None:
    if feedback is None or isinstance(feedback, BlockFeedback):
        return feedback
    try:
        return BlockFeedback.model_validate(feedback)
    except PydanticValidationError as e:
        raise ValidationError("rpe", "RPE must be between 0 and 10", {"errors": e.errors()})


class PerformanceRecorder:
    """Drafts and finalized results of one session attempt, keyed by step index."""

    def __init__(self, rules: ProtocolRules | None = None):
        self.rules = rules or get_protocol_rules()
        self._drafts: dict[int, DraftResult] = {}
        self._finalized: dict[int, WorkResult] = {}

    # -- lifecycle ------------------------------------------------------

    def open_draft(
        self,
        step_index: int,
        module: Module,
        *,
        block_type: BlockType | None = None,
        offset: int = 0,
        weights: dict[int, float | None] | None = None,
    ) -> DraftResult:
        if step_index in self._finalized:
            raise ConflictError(
                f"Step {step_index} is already finalized",
                code="CF_STEP_001",
                details={"step_index": step_index},
            )
        if step_index in self._drafts:
            return self._drafts[step_index]

        seeded = dict(weights or {})
        draft = DraftResult(
            step_index=step_index,
            module=module,
            block_type=block_type,
            offset=offset,
            weights=dict(seeded),
            planned_weights=dict(seeded),
        )
        self._drafts[step_index] = draft
        return draft

    def draft(self, step_index: int) -> DraftResult:
        if step_index not in self._drafts:
            raise NotFoundError("draft", f"No open draft for step {step_index}")
        return self._drafts[step_index]

    def has_draft(self, step_index: int) -> bool:
        return step_index in self._drafts

    def is_finalized(self, step_index: int) -> bool:
        return step_index in self._finalized

    @property
    def finalized_results(self) -> dict[int, WorkResult]:
        return dict(self._finalized)

    def discard_all(self) -> None:
        self._drafts.clear()

    # -- draft mutations ------------------------------------------------

    def _exercise_index(self, draft: DraftResult, exercise_index: int) -> int:
        if not 0 <= exercise_index < len(draft.module.exercises):
            raise ValidationError(
                "exercise_index",
                f"{exercise_index} is out of range",
                {"field": "exercise_index", "exercises": len(draft.module.exercises)},
            )
        return exercise_index

    def set_reps(self, step_index: int, exercise_index: int, reps: int) -> int:
        draft = self.draft(step_index)
        idx = self._exercise_index(draft, exercise_index)
        if reps < 0:
            raise ValidationError("reps", "must be >= 0")
        draft.reps[idx] = int(reps)
        return draft.reps[idx]

    def increment_reps(self, step_index: int, exercise_index: int, delta: int = 1) -> int:
        draft = self.draft(step_index)
        idx = self._exercise_index(draft, exercise_index)
        draft.reps[idx] = max(0, draft.reps.get(idx, 0) + delta)
        return draft.reps[idx]

    def set_weight(self, step_index: int, exercise_index: int, value: Any) -> float | None:
        draft = self.draft(step_index)
        idx = self._exercise_index(draft, exercise_index)
        draft.weights[idx] = parse_weight(value)
        draft.touched_weights.add(idx)
        return draft.weights[idx]

    def adjust_weight(self, step_index: int, exercise_index: int, delta: float) -> float:
        draft = self.draft(step_index)
        idx = self._exercise_index(draft, exercise_index)
        current = draft.weights.get(idx) or 0.0
        draft.weights[idx] = round_weight(max(0.0, current + delta))
        draft.touched_weights.add(idx)
        return draft.weights[idx]

    def reseed_weights(self, step_index: int, seeded: dict[int, float | None]) -> list[int]:
        """Apply late history seeding to weights the athlete has not edited."""
        draft = self._drafts.get(step_index)
        if draft is None:
            return []
        applied = []
        for idx, weight in seeded.items():
            if idx in draft.touched_weights or weight is None:
                continue
            draft.weights[idx] = weight
            draft.planned_weights[idx] = weight
            applied.append(idx)
        return applied

    def set_elapsed(self, step_index: int, seconds: int) -> None:
        self.draft(step_index).elapsed_seconds = max(0, int(seconds))

    def _round_number(self, draft: DraftResult, round_number: int) -> int:
        total = draft.planned_rounds or self.rules.emom.default_minutes
        if not 1 <= round_number <= total:
            raise ValidationError(
                "round", f"{round_number} is outside 1..{total}", {"field": "round"}
            )
        return round_number

    def toggle_emom_round(self, step_index: int, round_number: int) -> RoundOutcome | None:
        draft = self.draft(step_index)
        rnd = self._round_number(draft, round_number)
        draft.emom_results[rnd] = NEXT_ROUND_OUTCOME[draft.emom_results.get(rnd)]
        return draft.emom_results[rnd]

    def set_emom_round(
        self, step_index: int, round_number: int, outcome: RoundOutcome | None
    ) -> RoundOutcome | None:
        draft = self.draft(step_index)
        draft.emom_results[self._round_number(draft, round_number)] = outcome
        return outcome

    def set_heart_rate(self, step_index: int, exercise_index: int, bpm: int | None) -> None:
        draft = self.draft(step_index)
        idx = self._exercise_index(draft, exercise_index)
        if bpm is None:
            draft.heart_rates.pop(idx, None)
            return
        if not 20 <= bpm <= 250:
            raise ValidationError("heart_rate", "must be between 20 and 250 bpm")
        draft.heart_rates[idx] = int(bpm)

    def set_exercise_note(self, step_index: int, exercise_index: int, note: str) -> None:
        draft = self.draft(step_index)
        idx = self._exercise_index(draft, exercise_index)
        if note:
            draft.exercise_notes[idx] = note
        else:
            draft.exercise_notes.pop(idx, None)

    def set_cardio(self, step_index: int, record: CardioRecord) -> None:
        self.draft(step_index).cardio = record

    # -- LIBRE sets -----------------------------------------------------

    def complete_libre_set(
        self,
        step_index: int,
        exercise_index: int,
        reps: int | None = None,
        weight: Any = None,
    ) -> int:
        """Log the next set of an exercise. Returns the set count."""
        draft = self.draft(step_index)
        idx = self._exercise_index(draft, exercise_index)
        config = libre_config(draft.module.exercises[idx], draft.module, self.rules.libre)
        set_reps = draft.libre_set_reps.setdefault(idx, [])
        set_weights = draft.libre_set_weights.setdefault(idx, [])

        if reps is None:
            reps = int(config.reps_for_set(len(set_reps)) or 0)
        if reps < 0:
            raise ValidationError("reps", "must be >= 0")
        set_weight = parse_weight(weight) if weight is not None else draft.weights.get(idx)

        set_reps.append(int(reps))
        set_weights.append(set_weight)
        return len(set_reps)

    def complete_libre_round(self, step_index: int, exercise_indexes: list[int]) -> dict[int, int]:
        """Log one set for each exercise of a superset still short of its target."""
        draft = self.draft(step_index)
        counts = {}
        for idx in exercise_indexes:
            self._exercise_index(draft, idx)
            config = libre_config(draft.module.exercises[idx], draft.module, self.rules.libre)
            if len(draft.libre_set_reps.get(idx, [])) < config.target_sets:
                self.complete_libre_set(step_index, idx)
            counts[idx] = len(draft.libre_set_reps.get(idx, []))
        return counts

    def update_libre_set(
        self,
        step_index: int,
        exercise_index: int,
        set_index: int,
        reps: int | None = None,
        weight: Any = None,
    ) -> None:
        draft = self.draft(step_index)
        idx = self._exercise_index(draft, exercise_index)
        set_reps = draft.libre_set_reps.get(idx, [])
        if not 0 <= set_index < len(set_reps):
            raise NotFoundError("set", f"Exercise {idx} has no set {set_index}")
        if reps is not None:
            if reps < 0:
                raise ValidationError("reps", "must be >= 0")
            set_reps[set_index] = int(reps)
        if weight is not None:
            draft.libre_set_weights[idx][set_index] = parse_weight(weight)

    def undo_libre_set(self, step_index: int, exercise_index: int, set_index: int | None = None) -> int:
        """Remove a logged set (the last one by default). Returns the set count."""
        draft = self.draft(step_index)
        idx = self._exercise_index(draft, exercise_index)
        set_reps = draft.libre_set_reps.get(idx, [])
        if not set_reps:
            return 0
        position = len(set_reps) - 1 if set_index is None else set_index
        if not 0 <= position < len(set_reps):
            raise NotFoundError("set", f"Exercise {idx} has no set {position}")
        set_reps.pop(position)
        draft.libre_set_weights[idx].pop(position)
        return len(set_reps)

    # -- finalization ---------------------------------------------------

    def is_empty(self, step_index: int) -> bool:
        return self.draft(step_index).is_empty()

    def finalize(
        self,
        step_index: int,
        feedback: BlockFeedback | dict[str, Any] | None = None,
        *,
        skipped: bool = False,
    ) -> WorkResult:
        """Freeze a draft into a WorkResult and drop the draft."""
        if step_index in self._finalized:
            raise ConflictError(
                f"Step {step_index} is already finalized",
                code="CF_STEP_001",
                details={"step_index": step_index},
            )
        draft = self.draft(step_index)
        feedback = coerce_feedback(feedback)

        notes = dict(draft.exercise_notes)
        if feedback is not None:
            notes.update(feedback.exercise_notes)

        base = {
            "step_index": step_index,
            "module_id": draft.module.id,
            "module_stable_id": draft.module.identity,
            "protocol": draft.protocol,
            "block_type": draft.block_type,
            "offset": draft.offset,
            "planned_rounds": draft.planned_rounds,
            "exercise_notes": notes,
            "feedback": feedback,
        }
        if skipped:
            result = WorkResult(skipped=True, **base)
        else:
            result = WorkResult(
                reps=self._final_reps(draft),
                planned_weights=dict(draft.planned_weights),
                actual_weights=self._final_weights(draft),
                elapsed_seconds=draft.elapsed_seconds,
                emom_results=dict(draft.emom_results),
                heart_rates=dict(draft.heart_rates),
                libre_set_reps={k: list(v) for k, v in draft.libre_set_reps.items() if v},
                libre_set_weights={k: list(v) for k, v in draft.libre_set_weights.items() if v},
                cardio=draft.cardio,
                **base,
            )

        self._finalized[step_index] = result
        del self._drafts[step_index]
        logger.info(
            f"Finalized step {step_index} ({draft.protocol.value}) skipped={skipped}"
        )
        return result

    def skip(self, step_index: int, feedback: BlockFeedback | dict[str, Any] | None = None) -> WorkResult:
        return self.finalize(step_index, feedback, skipped=True)

    def _final_reps(self, draft: DraftResult) -> dict[int, int]:
        if draft.protocol == Protocol.EMOM:
            successes = sum(1 for o in draft.emom_results.values() if o == RoundOutcome.SUCCESS)
            default = self.rules.emom.default_reps_per_round
            return {
                idx: successes * draft.module.target_reps_for(idx, default)
                for idx in range(len(draft.module.exercises))
            }
        if draft.protocol == Protocol.LIBRE and any(draft.libre_set_reps.values()):
            reps = dict(draft.reps)
            for idx, series in draft.libre_set_reps.items():
                if series:
                    reps[idx] = sum(series)
            return reps
        return dict(draft.reps)

    def _final_weights(self, draft: DraftResult) -> dict[int, float | None]:
        weights = dict(draft.weights)
        for idx, series in draft.libre_set_weights.items():
            logged = [w for w in series if w is not None]
            if logged:
                weights[idx] = logged[-1]
        return weights
