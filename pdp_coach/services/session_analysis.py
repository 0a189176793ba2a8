"""
Session Analysis Engine

Pure function over finalized results, the timeline and the latest history
per module. Produces coaching insights (each with an athlete-facing and a
coach-facing message) and aggregate session metrics.

Rules by protocol:
- T: rep bands per block type; stagnation against the prior session wins
  over the band check.
- R: elapsed time against the block's efficiency and cap thresholds.
- E: round outcomes; any fail lowers the load, a clean sweep raises it.
- LIBRE: volume only, plus heart-rate cautions on energy work.

Non-loadable or zero-weight exercises are classified the same way with the
adjustment forced to 0. Malformed steps are skipped, never raised.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Mapping

from pdp_coach.config.protocol_rules_loader import ProtocolRules, get_protocol_rules
from pdp_coach.models.enums import BlockType, InsightKind, InsightType, Protocol, RoundOutcome
from pdp_coach.schemas.analysis import Insight, SessionAnalysis, SessionMetrics
from pdp_coach.schemas.results import CardioRecord, HistoricalLog, WorkResult
from pdp_coach.schemas.session import Exercise
from pdp_coach.schemas.timeline import Timeline, TimelineStep

logger = logging.getLogger(__name__)


@dataclass
class _Tally:
    insights: list[Insight] = field(default_factory=list)
    total_volume: float = 0.0
    completed: int = 0
    hr_samples: list[int] = field(default_factory=list)
    cardio_pace: str | None = None


@dataclass
class _StepContext:
    step: TimelineStep
    result: WorkResult
    history: HistoricalLog | None
    rules: ProtocolRules
    tally: _Tally

    @property
    def block_type(self) -> BlockType:
        return self.step.block_type or BlockType.BASE

    @property
    def exercises(self) -> list[Exercise]:
        return self.step.module.exercises if self.step.module else []

    def weight(self, idx: int) -> float:
        return float(self.result.actual_weights.get(idx) or 0)

    def reps(self, idx: int) -> int:
        return int(self.result.reps.get(idx) or 0)

    def prior_reps(self, idx: int) -> int | None:
        if self.history is None:
            return None
        return self.history.result.reps.get(idx)

    def carries_load(self, idx: int) -> bool:
        return self.exercises[idx].is_loadable and self.weight(idx) > 0

    def add(
        self,
        insight_type: InsightType,
        idx: int | None,
        athlete_message: str,
        coach_message: str,
        adjustment: float = 0.0,
        *,
        kind: InsightKind = InsightKind.ADJUSTMENT,
        is_stagnation: bool = False,
    ) -> None:
        module = self.step.module
        exercise = self.exercises[idx] if idx is not None else None
        self.tally.insights.append(
            Insight(
                type=insight_type,
                kind=kind,
                step_index=self.step.index,
                module_id=module.id if module else None,
                module_stable_id=module.identity if module else None,
                block_type=self.step.block_type,
                exercise_id=exercise.id if exercise else None,
                exercise_stable_id=exercise.identity if exercise else None,
                exercise_index=idx,
                exercise_name=exercise.name if exercise else None,
                athlete_message=athlete_message,
                coach_message=coach_message,
                adjustment=adjustment,
                is_stagnation=is_stagnation,
            )
        )


def format_adjustment(adjustment: float) -> str:
    return f"{adjustment * 100:+.0f}% ({adjustment:+.2f})"


def _accumulate(ctx: _StepContext, idx: int, reps: int) -> None:
    if reps <= 0:
        return
    ctx.tally.completed += 1
    if ctx.exercises[idx].is_loadable:
        ctx.tally.total_volume += reps * ctx.weight(idx)


def _collect_heart_rates(ctx: _StepContext) -> None:
    ctx.tally.hr_samples.extend(int(hr) for hr in ctx.result.heart_rates.values() if hr)


# -- per-protocol handlers ---------------------------------------------


def _analyze_time_capped(ctx: _StepContext) -> None:
    step_size = ctx.rules.adjustment_step
    band = ctx.rules.rep_band(ctx.block_type.value)
    tolerance = ctx.rules.time_capped.stagnation_tolerance_reps

    for idx, exercise in enumerate(ctx.exercises):
        reps = ctx.reps(idx)
        if reps <= 0:
            continue
        _accumulate(ctx, idx, reps)
        loaded = ctx.carries_load(idx)
        name = exercise.name or f"exercise {idx + 1}"

        prior = ctx.prior_reps(idx)
        if prior is not None and abs(reps - prior) <= tolerance:
            adjustment = -step_size if loaded else 0.0
            ctx.add(
                InsightType.DOWN,
                idx,
                "Solid, steady effort. We'll drop the load a little to restart your progress."
                if loaded else
                "Same numbers as last time. Your coach will refresh this exercise.",
                f"Stagnation on {name}: {reps} reps vs {prior} last session. "
                + (f"Lower load {format_adjustment(adjustment)} to restart progression."
                   if loaded else "Bodyweight: change variant or rep scheme."),
                adjustment,
                is_stagnation=True,
            )
            continue

        if band is None:
            continue
        if reps > band.ceiling:
            adjustment = step_size if loaded else 0.0
            ctx.add(
                InsightType.UP,
                idx,
                f"Outstanding intensity on {name}! Next time we go heavier."
                if loaded else f"Total control of {name}. Time for a harder variant.",
                f"Ceiling exceeded (> {band.ceiling} reps, did {reps}). "
                + (f"Raise load {format_adjustment(adjustment)} on {name}."
                   if loaded else "Bodyweight: progress to a harder variant."),
                adjustment,
            )
        elif reps < band.floor:
            adjustment = -step_size if loaded else 0.0
            ctx.add(
                InsightType.DOWN,
                idx,
                "Demanding block. A lighter load will help your technique."
                if loaded else "This one was very demanding. Your coach will adjust it.",
                f"Below floor (< {band.floor} reps, did {reps}). "
                + (f"Lower load {format_adjustment(adjustment)} on {name}."
                   if loaded else "Bodyweight: consider an easier regression."),
                adjustment,
            )
        else:
            ctx.add(
                InsightType.KEEP,
                idx,
                f"Ideal load and pace on {name}.",
                f"Within the optimal band [{band.floor}, {band.ceiling}] with {reps} reps. "
                f"Keep load {format_adjustment(0.0)}.",
                0.0,
            )


def _analyze_rep_based(ctx: _StepContext) -> None:
    step_size = ctx.rules.adjustment_step
    threshold = ctx.rules.time_threshold(ctx.block_type.value)
    elapsed = ctx.result.elapsed_seconds
    worked = any(ctx.reps(i) > 0 for i in range(len(ctx.exercises))) or elapsed > 0

    for idx in range(len(ctx.exercises)):
        _accumulate(ctx, idx, ctx.reps(idx))
    if not worked or threshold is None:
        return

    minutes = f"{threshold.efficiency_seconds // 60}:{threshold.efficiency_seconds % 60:02d}"
    for idx, exercise in enumerate(ctx.exercises):
        loaded = ctx.carries_load(idx)
        name = exercise.name or f"exercise {idx + 1}"
        if elapsed < threshold.efficiency_seconds:
            adjustment = step_size if loaded else 0.0
            ctx.add(
                InsightType.UP,
                idx,
                "You owned the clock! Next time we go heavier."
                if loaded else "Great speed with your own bodyweight!",
                f"Finished in {elapsed}s, under the {minutes} efficiency mark. "
                + (f"Raise load {format_adjustment(adjustment)} on {name}."
                   if loaded else "Bodyweight: progress to a harder variant."),
                adjustment,
            )
        elif elapsed >= threshold.cap_seconds:
            adjustment = -step_size if loaded else 0.0
            ctx.add(
                InsightType.DOWN,
                idx,
                "That took longer than planned. A lighter load will help you move faster."
                if loaded else "This challenge took longer than planned. Your coach will adjust it.",
                f"Over the {threshold.cap_seconds}s time cap ({elapsed}s). "
                + (f"Lower load {format_adjustment(adjustment)} on {name}."
                   if loaded else "Bodyweight: consider an easier regression."),
                adjustment,
            )
        else:
            ctx.add(
                InsightType.KEEP,
                idx,
                f"Good technique and timing on {name}.",
                f"Execution time {elapsed}s within range. Keep load {format_adjustment(0.0)}.",
                0.0,
            )


def _analyze_emom(ctx: _StepContext) -> None:
    rules = ctx.rules
    outcomes = ctx.result.emom_results.values()
    failed = sum(1 for o in outcomes if o == RoundOutcome.FAIL)
    success = sum(1 for o in outcomes if o == RoundOutcome.SUCCESS)
    module = ctx.step.module
    planned = (
        ctx.result.planned_rounds
        or (module.emom.duration_minutes if module and module.emom else None)
        or rules.emom.default_minutes
    )

    for idx, exercise in enumerate(ctx.exercises):
        reps = ctx.reps(idx)
        if reps <= 0 and success > 0:
            reps = success * module.target_reps_for(idx, rules.emom.default_reps_per_round)
        _accumulate(ctx, idx, reps)
        loaded = ctx.carries_load(idx)
        name = exercise.name or f"exercise {idx + 1}"

        if failed > 0:
            adjustment = -rules.adjustment_step if loaded else 0.0
            ctx.add(
                InsightType.DOWN,
                idx,
                "Tough EMOM. A lighter load will help you clear every round."
                if loaded else "Challenging EMOM. We'll keep building consistency.",
                f"{failed} failed EMOM round(s) of {planned}. "
                + (f"Lower load {format_adjustment(adjustment)} on {name}."
                   if loaded else "Bodyweight: suggest a regression or fewer reps."),
                adjustment,
            )
        elif success >= planned:
            adjustment = rules.adjustment_step if loaded else 0.0
            ctx.add(
                InsightType.UP,
                idx,
                "Flawless EMOM! Next time we go heavier."
                if loaded else "Perfect EMOM! Your coach will review your level.",
                f"All {planned} EMOM rounds completed. "
                + (f"Raise load {format_adjustment(adjustment)} on {name}."
                   if loaded else "Bodyweight: progress to a harder variant."),
                adjustment,
            )
        elif success > 0:
            ctx.add(
                InsightType.KEEP,
                idx,
                f"Steady rounds on {name}. Keep it up.",
                f"{success}/{planned} EMOM rounds completed, no fails. "
                f"Keep load {format_adjustment(0.0)}.",
                0.0,
            )

        hr = ctx.result.heart_rates.get(idx)
        if hr and hr > rules.heart_rate.emom_caution_bpm:
            ctx.add(
                InsightType.DOWN,
                idx,
                "Your heart rate ran high. Take your recovery seriously.",
                f"Heart rate {hr} bpm above {rules.heart_rate.emom_caution_bpm} on {name}. "
                f"Monitor recovery (adjustment {format_adjustment(0.0)}).",
                0.0,
                kind=InsightKind.HEART_RATE,
            )


def _analyze_libre(ctx: _StepContext) -> None:
    caution = ctx.rules.heart_rate.energy_caution_bpm
    result = ctx.result

    for idx, exercise in enumerate(ctx.exercises):
        series = result.libre_set_reps.get(idx)
        if series:
            weights = result.libre_set_weights.get(idx, [])
            if any(r > 0 for r in series):
                ctx.tally.completed += 1
            if exercise.is_loadable:
                ctx.tally.total_volume += sum(
                    r * float(weights[i] or 0) if i < len(weights) else 0
                    for i, r in enumerate(series)
                )
        else:
            _accumulate(ctx, idx, ctx.reps(idx))

        hr = result.heart_rates.get(idx)
        if exercise.is_energy and hr and hr > caution:
            name = exercise.name or f"exercise {idx + 1}"
            ctx.add(
                InsightType.DOWN,
                idx,
                "High intensity on your conditioning work. Keep an eye on recovery.",
                f"Heart rate {hr} bpm above {caution} on energy work ({name}). "
                f"Review intensity (adjustment {format_adjustment(0.0)}).",
                0.0,
                kind=InsightKind.HEART_RATE,
            )


PROTOCOL_HANDLERS: dict[Protocol, Callable[[_StepContext], None]] = {
    Protocol.TIME_CAPPED: _analyze_time_capped,
    Protocol.REP_BASED: _analyze_rep_based,
    Protocol.EMOM: _analyze_emom,
    Protocol.LIBRE: _analyze_libre,
}


# -- cardio and skipped ------------------------------------------------


def format_pace(duration_minutes: float | None, distance_km: float | None) -> str | None:
    """Minutes per km as 'm:ss'."""
    if not duration_minutes or not distance_km:
        return None
    pace = duration_minutes / distance_km
    minutes = int(pace)
    seconds = int(round((pace - minutes) * 60))
    if seconds == 60:
        minutes, seconds = minutes + 1, 0
    return f"{minutes}:{seconds:02d}"


def _analyze_cardio(ctx: _StepContext, record: CardioRecord) -> None:
    hr_rules = ctx.rules.heart_rate
    if record.duration_minutes or record.distance_km:
        ctx.tally.completed += 1
    for sample in (record.avg_hr, record.max_hr):
        if sample:
            ctx.tally.hr_samples.append(int(sample))

    avg = record.avg_hr
    if avg:
        if avg > hr_rules.cardio_caution_bpm:
            ctx.add(
                InsightType.DOWN,
                None,
                "Your heart rate stayed very high. Ease the pace next time.",
                f"Average HR {avg} bpm above {hr_rules.cardio_caution_bpm}: high-intensity zone. "
                f"Review pacing (adjustment {format_adjustment(0.0)}).",
                0.0,
                kind=InsightKind.CARDIO,
            )
        elif avg >= hr_rules.cardio_aerobic_floor_bpm:
            ctx.add(
                InsightType.UP,
                None,
                "Great aerobic work. Your engine is getting more efficient.",
                f"Average HR {avg} bpm in the aerobic efficiency zone "
                f"({hr_rules.cardio_aerobic_floor_bpm}-{hr_rules.cardio_caution_bpm}).",
                0.0,
                kind=InsightKind.CARDIO,
            )
        else:
            ctx.add(
                InsightType.KEEP,
                None,
                "Nice easy session building your aerobic base.",
                f"Average HR {avg} bpm below {hr_rules.cardio_aerobic_floor_bpm}: base aerobic zone.",
                0.0,
                kind=InsightKind.CARDIO,
            )

    pace = record.pace or format_pace(record.duration_minutes, record.distance_km)
    if pace:
        ctx.tally.cardio_pace = pace
        ctx.add(
            InsightType.KEEP,
            None,
            f"Average pace: {pace} min/km.",
            f"Pace {pace} min/km over {record.distance_km or 0} km "
            f"in {record.duration_minutes or 0} min.",
            0.0,
            kind=InsightKind.CARDIO,
        )


def _analyze_skipped(ctx: _StepContext) -> None:
    module = ctx.step.module
    label = ctx.block_type.value if ctx.step.block_type else (module.name if module else "")
    ctx.add(
        InsightType.SKIPPED,
        None,
        f"Block {label} skipped.",
        f"Block {label} skipped by the athlete (adjustment {format_adjustment(0.0)}).",
        0.0,
        kind=InsightKind.SKIPPED,
    )


# -- entry point -------------------------------------------------------


def _efficiency(insights: list[Insight], completed: int) -> int:
    scored = [i for i in insights if i.kind == InsightKind.ADJUSTMENT]
    if scored:
        favorable = sum(1 for i in scored if i.type in (InsightType.UP, InsightType.KEEP))
        return round(favorable / len(scored) * 100)
    return 100 if completed > 0 else 0


def analyze_session(
    results: Mapping[int, WorkResult],
    timeline: Timeline,
    history: Mapping[str, HistoricalLog] | None = None,
    *,
    rules: ProtocolRules | None = None,
) -> SessionAnalysis:
    """Turn finalized results into insights and metrics.

    Args:
        results: Finalized WorkResults keyed by step index
        timeline: The timeline the results were recorded against
        history: Latest HistoricalLog per module stable id
        rules: Protocol thresholds (defaults to the loaded rule set)

    Returns:
        SessionAnalysis with insights in step order and session metrics
    """
    rules = rules or get_protocol_rules()
    history = history or {}
    tally = _Tally()

    for step_index in sorted(results):
        result = results[step_index]
        if not 0 <= step_index < len(timeline):
            logger.warning(f"Result for unknown step {step_index} ignored")
            continue
        step = timeline[step_index]
        if not step.is_work or step.module is None:
            continue

        ctx = _StepContext(
            step=step,
            result=result,
            history=history.get(step.module.identity),
            rules=rules,
            tally=tally,
        )
        try:
            if result.skipped:
                _analyze_skipped(ctx)
            elif result.cardio is not None:
                _analyze_cardio(ctx, result.cardio)
            else:
                handler = PROTOCOL_HANDLERS.get(step.module.protocol or Protocol.LIBRE, _analyze_libre)
                handler(ctx)
                _collect_heart_rates(ctx)
        except (KeyError, IndexError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed result for step {step_index}: {e}")

    samples = tally.hr_samples
    metrics = SessionMetrics(
        total_volume=round(tally.total_volume),
        completed_exercise_count=tally.completed,
        efficiency_percent=_efficiency(tally.insights, tally.completed),
        avg_hr=round(sum(samples) / len(samples)) if samples else None,
        max_hr=max(samples) if samples else None,
        cardio_pace=tally.cardio_pace,
    )
    return SessionAnalysis(insights=tally.insights, metrics=metrics)
