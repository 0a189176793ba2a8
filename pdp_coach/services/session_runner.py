"""
Session Runner

Owns one ``SessionRunState`` for a single attempt at a session and wires the
timeline, protocol timers, performance recorder and analysis engine to the
external collaborators (history lookup, log writer, schedule updater,
notification dispatcher, presentation resources).

Lifecycle:
    PLANNING -> WARMUP(s) -> WORK... -> SUMMARY -> finish_session() -> exit()

Exiting at any point stops the timer task, cancels history lookups,
releases presentation resources and discards unfinalized drafts.
"""
from __future__ import annotations

import asyncio
import uuid
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from pdp_coach.config.protocol_rules_loader import ProtocolRules, get_protocol_rules
from pdp_coach.config.settings import Settings, get_settings
from pdp_coach.core.exceptions import (
    BusinessRuleError,
    ConflictError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from pdp_coach.core.logging import get_logger
from pdp_coach.core.metrics import (
    active_runs,
    track_insight,
    track_persistence_failure,
    track_step_finalized,
)
from pdp_coach.models.enums import (
    InsightKind,
    InsightType,
    NotificationPriority,
    RoundOutcome,
    StepType,
)
from pdp_coach.schemas.analysis import SessionAnalysis
from pdp_coach.schemas.results import (
    BlockFeedback,
    CardioRecord,
    ExerciseAdjustment,
    HistoricalLog,
    SessionFeedback,
    WorkResult,
)
from pdp_coach.schemas.runs import FinishOutcome, StepOutcome, StepStatus
from pdp_coach.schemas.session import Module, Override, SessionDefinition
from pdp_coach.schemas.timeline import Timeline, TimelineStep
from pdp_coach.services.collaborators import (
    BlockLogEntry,
    CoachNotice,
    HistoryLookup,
    LogWriter,
    NotificationDispatcher,
    ScheduleUpdater,
    SessionFeedbackEntry,
)
from pdp_coach.services.cues import CueDispatcher
from pdp_coach.services.performance_recorder import DraftResult, PerformanceRecorder
from pdp_coach.services.presentation import (
    PresentationResource,
    PresentationScope,
    default_resources,
)
from pdp_coach.services.protocol_timer import (
    LibreTimer,
    ProtocolTimer,
    RepBasedTimer,
    create_timer,
)
from pdp_coach.services.session_analysis import analyze_session, format_pace
from pdp_coach.services.timeline_builder import build_timeline
from pdp_coach.services.timer_driver import TimerDriver
from pdp_coach.services.weight_seeding import parse_weight, round_weight, seed_weights

logger = get_logger(__name__)


@dataclass
class SessionRunState:
    """Every piece of mutable state of one session attempt."""

    run_id: str
    session: SessionDefinition
    timeline: Timeline
    user_id: str
    recorder: PerformanceRecorder
    override: Override | None = None
    schedule_task_id: int | None = None
    scheduled_date: date | None = None
    current_index: int = 0
    # module id -> exercise index -> planned weight
    plans: dict[str, dict[int, float | None]] = field(default_factory=dict)
    timer: ProtocolTimer | None = None
    driver: TimerDriver | None = None
    history: dict[str, HistoricalLog] = field(default_factory=dict)
    history_tasks: dict[int, asyncio.Task] = field(default_factory=dict)
    pending_writes: dict[int, WorkResult] = field(default_factory=dict)
    session_feedback: SessionFeedback | None = None
    analysis: SessionAnalysis | None = None
    started_at: datetime = field(default_factory=datetime.utcnow)
    finished: bool = False
    exited: bool = False

    @property
    def current_step(self) -> TimelineStep:
        return self.timeline[self.current_index]

    @property
    def active_draft(self) -> DraftResult | None:
        if self.recorder.has_draft(self.current_index):
            return self.recorder.draft(self.current_index)
        return None


def build_summary(
    duration_minutes: int | None,
    rpe: int | None,
    pace: str | None,
    avg_hr: int | None,
) -> str:
    """Short schedule summary: '45 min • RPE 7 • 5:10 min/km • 150 bpm'."""
    parts = []
    if duration_minutes:
        parts.append(f"{duration_minutes} min")
    if rpe is not None:
        parts.append(f"RPE {rpe}")
    if pace:
        parts.append(f"{pace} min/km")
    if avg_hr:
        parts.append(f"{avg_hr} bpm")
    return " • ".join(parts)


def adjustments_by_step(analysis: SessionAnalysis) -> dict[int, list[ExerciseAdjustment]]:
    """Load adjustments per block, stored with the block logs for the next session."""
    grouped: dict[int, list[ExerciseAdjustment]] = {}
    for insight in analysis.insights:
        if insight.kind != InsightKind.ADJUSTMENT or insight.step_index is None:
            continue
        grouped.setdefault(insight.step_index, []).append(
            ExerciseAdjustment(
                exercise_id=insight.exercise_id,
                exercise_stable_id=insight.exercise_stable_id,
                exercise_index=insight.exercise_index,
                adjustment=insight.adjustment,
            )
        )
    return grouped


class SessionRunner:
    """Drives one session attempt from PLANNING to SUMMARY."""

    def __init__(
        self,
        session: SessionDefinition,
        *,
        override: Override | None = None,
        user_id: str | None = None,
        schedule_task_id: int | None = None,
        scheduled_date: date | None = None,
        history_lookup: HistoryLookup | None = None,
        log_writer: LogWriter | None = None,
        schedule_updater: ScheduleUpdater | None = None,
        notifier: NotificationDispatcher | None = None,
        presentation: list[PresentationResource] | None = None,
        cues: CueDispatcher | None = None,
        rules: ProtocolRules | None = None,
        settings: Settings | None = None,
        run_id: str | None = None,
    ):
        self.settings = settings or get_settings()
        self.rules = rules or get_protocol_rules()
        self.cues = cues or CueDispatcher()
        self._history_lookup = history_lookup
        self._log_writer = log_writer
        self._schedule_updater = schedule_updater
        self._notifier = notifier
        self._presentation = PresentationScope(
            presentation if presentation is not None else default_resources()
        )
        self._exit_stack = AsyncExitStack()

        timeline = build_timeline(
            session,
            override,
            split_burn_blocks=self.settings.split_burn_blocks,
            default_time_cap_seconds=self.settings.default_time_cap_seconds,
            default_emom_minutes=self.settings.default_emom_minutes,
        )
        self.state = SessionRunState(
            run_id=run_id or uuid.uuid4().hex,
            session=session,
            timeline=timeline,
            user_id=user_id or self.settings.default_user_id,
            recorder=PerformanceRecorder(self.rules),
            override=override,
            schedule_task_id=schedule_task_id,
            scheduled_date=scheduled_date,
        )
        self._log = logger.bind(run_id=self.state.run_id, session_id=session.id)
        active_runs.inc()
        self._log.info("Session run created", steps=len(timeline))

    async def __aenter__(self) -> "SessionRunner":
        await self.begin()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.exit()
        return False

    # -- read access ----------------------------------------------------

    @property
    def run_id(self) -> str:
        return self.state.run_id

    @property
    def timeline(self) -> Timeline:
        return self.state.timeline

    @property
    def current_index(self) -> int:
        return self.state.current_index

    @property
    def current_step(self) -> TimelineStep:
        return self.state.current_step

    @property
    def draft(self) -> DraftResult | None:
        return self.state.active_draft

    @property
    def timer(self) -> ProtocolTimer | None:
        return self.state.timer

    @property
    def presentation_active(self) -> bool:
        return self._presentation.active

    # -- guards ---------------------------------------------------------

    def _require_active(self) -> None:
        if self.state.exited:
            raise BusinessRuleError("Session run has been exited", code="BR_RUN_EXITED")

    def _require_work_step(self) -> TimelineStep:
        self._require_active()
        step = self.state.current_step
        if not step.is_work:
            raise BusinessRuleError(
                f"Current step is {step.type.value}, not WORK",
                code="BR_RUN_NOT_WORK",
                details={"current_index": step.index},
            )
        return step

    def _require_no_pending_write(self) -> None:
        if self.state.current_index in self.state.pending_writes:
            raise BusinessRuleError(
                "The finalized result of this step has not been saved yet; retry the pending write",
                code="BR_RUN_PENDING_WRITE",
                details={"step_index": self.state.current_index},
            )

    # -- navigation -----------------------------------------------------

    async def begin(self) -> None:
        """Enter the first step (the timeline may start directly at SUMMARY)."""
        self._require_active()
        await self._enter_step(self.state.current_index)

    def update_plan(self, module_id: str, exercise_index: int, weight: Any) -> float | None:
        """Pre-session planned weight for an exercise of a module."""
        self._require_active()
        module = next((m for m in self.state.session.modules if m.id == module_id), None)
        if module is None:
            raise NotFoundError("module", f"Module {module_id} not found in session")
        if not 0 <= exercise_index < len(module.exercises):
            raise NotFoundError("exercise", f"Module {module_id} has no exercise {exercise_index}")
        value = parse_weight(weight)
        self.state.plans.setdefault(module_id, {})[exercise_index] = value
        return value

    async def advance(self) -> TimelineStep:
        """Move forward from a PLANNING or WARMUP step."""
        self._require_active()
        step = self.state.current_step
        if step.type not in (StepType.PLANNING, StepType.WARMUP):
            raise BusinessRuleError(
                f"Cannot advance from a {step.type.value} step",
                code="BR_RUN_ADVANCE",
                details={"current_index": step.index},
            )
        await self._enter_step(step.index + 1)
        return self.state.current_step

    async def _enter_step(self, index: int) -> None:
        state = self.state
        state.current_index = index
        step = state.current_step
        self._log.info("Step entered", step_index=index, step_type=step.type.value)
        if not step.is_work or step.module is None:
            return

        module = step.module
        history = state.history.get(module.identity)
        plans = state.plans.get(module.id, {})
        state.recorder.open_draft(
            index,
            module,
            block_type=step.block_type,
            offset=step.offset,
            weights=seed_weights(module, history=history, plans=plans, offset=step.offset),
        )

        timer = create_timer(module, rules=self.rules, emit=self.cues.emit, step_index=index)
        state.timer = timer
        state.driver = TimerDriver(
            timer,
            interval=self.settings.tick_interval_seconds,
            on_complete=self._on_timer_complete,
        )

        if history is None and self._history_lookup is not None and index not in state.history_tasks:
            state.history_tasks[index] = asyncio.create_task(self._load_history(index, module))

    async def _load_history(self, step_index: int, module: Module) -> None:
        """One-shot lookup; re-seeds weights the athlete has not touched."""
        try:
            history = await asyncio.wait_for(
                self._history_lookup.latest(module.identity),
                timeout=self.settings.history_lookup_timeout_seconds,
            )
        except Exception as e:
            self._log.warning(
                "History lookup failed, falling back to plan weights",
                step_index=step_index,
                module_stable_id=module.identity,
                error=str(e) or type(e).__name__,
            )
            return

        if history is None:
            self._log.info("No history for module", module_stable_id=module.identity)
            return

        self.state.history[module.identity] = history
        step = self.state.timeline[step_index]
        seeded = seed_weights(
            module,
            history=history,
            plans=self.state.plans.get(module.id, {}),
            offset=step.offset,
        )
        applied = self.state.recorder.reseed_weights(step_index, seeded)
        self._log.info("History loaded", module_stable_id=module.identity, reseeded=applied)

    async def wait_for_history(self) -> None:
        """Await outstanding history lookups; seeding and the stagnation check both read them."""
        tasks = [t for t in self.state.history_tasks.values() if not t.done()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _on_timer_complete(self, timer: ProtocolTimer) -> None:
        draft = self.state.active_draft
        if draft is not None and draft.step_index == timer.step_index:
            draft.elapsed_seconds = timer.elapsed

    # -- timer control --------------------------------------------------

    async def _acquire_presentation(self) -> None:
        if not self._presentation.active:
            await self._exit_stack.enter_async_context(self._presentation)

    async def start_timer(self) -> bool:
        """Start or resume the active timer; the first call acquires presentation resources."""
        self._require_work_step()
        await self._acquire_presentation()
        if isinstance(self.state.timer, RepBasedTimer) and self.draft is not None:
            self.state.timer.update_reps(self.draft.reps)
        return await self.state.driver.start()

    async def pause_timer(self) -> None:
        self._require_work_step()
        await self.state.driver.pause()
        self._sync_elapsed()

    async def reset_timer(self) -> None:
        self._require_work_step()
        await self.state.driver.reset()
        self._sync_elapsed()

    def _sync_elapsed(self) -> None:
        draft = self.draft
        if draft is not None and self.state.timer is not None:
            draft.elapsed_seconds = self.state.timer.elapsed

    # -- draft mutations ------------------------------------------------

    def set_reps(self, exercise_index: int, reps: int) -> int:
        step = self._require_work_step()
        value = self.state.recorder.set_reps(step.index, exercise_index, reps)
        self._after_reps_change()
        return value

    def increment_reps(self, exercise_index: int, delta: int = 1) -> int:
        step = self._require_work_step()
        value = self.state.recorder.increment_reps(step.index, exercise_index, delta)
        self._after_reps_change()
        return value

    def _after_reps_change(self) -> None:
        timer = self.state.timer
        if isinstance(timer, RepBasedTimer):
            if timer.update_reps(self.draft.reps):
                self._sync_elapsed()

    def set_weight(self, exercise_index: int, weight: Any) -> float | None:
        step = self._require_work_step()
        return self.state.recorder.set_weight(step.index, exercise_index, weight)

    def adjust_weight(self, exercise_index: int, delta: float) -> float:
        step = self._require_work_step()
        return self.state.recorder.adjust_weight(step.index, exercise_index, round_weight(delta))

    def toggle_emom_round(self, round_number: int) -> RoundOutcome | None:
        step = self._require_work_step()
        return self.state.recorder.toggle_emom_round(step.index, round_number)

    def set_emom_round(self, round_number: int, outcome: RoundOutcome | None) -> RoundOutcome | None:
        step = self._require_work_step()
        return self.state.recorder.set_emom_round(step.index, round_number, outcome)

    def set_heart_rate(self, exercise_index: int, bpm: int | None) -> None:
        step = self._require_work_step()
        self.state.recorder.set_heart_rate(step.index, exercise_index, bpm)

    def set_exercise_note(self, exercise_index: int, note: str) -> None:
        step = self._require_work_step()
        self.state.recorder.set_exercise_note(step.index, exercise_index, note)

    async def complete_libre_set(
        self,
        exercise_index: int,
        reps: int | None = None,
        weight: Any = None,
        *,
        start_rest: bool = True,
    ) -> int:
        """Log the next set; starts the rest countdown while sets remain."""
        step = self._require_work_step()
        count = self.state.recorder.complete_libre_set(step.index, exercise_index, reps, weight)
        timer = self.state.timer
        if isinstance(timer, LibreTimer):
            done = timer.update_sets(self.draft.sets_done())
            target = timer.configs[exercise_index].target_sets
            if start_rest and not done and count < target:
                await self._start_rest(timer, timer.rest_seconds_for(exercise_index))
        return count

    async def complete_libre_round(self, group_index: int, rest_seconds: int | None = None) -> dict[int, int]:
        """Log one set for every exercise of a superset group, then start the round rest."""
        step = self._require_work_step()
        timer = self.state.timer
        if not isinstance(timer, LibreTimer):
            raise BusinessRuleError(
                "Superset rounds only apply to LIBRE blocks",
                code="BR_RUN_NOT_LIBRE",
                details={"current_index": step.index},
            )
        if not 0 <= group_index < len(timer.groups):
            raise ValidationError(
                "group_index",
                f"{group_index} is out of range",
                {"field": "group_index", "groups": len(timer.groups)},
            )
        counts = self.state.recorder.complete_libre_round(step.index, timer.groups[group_index])
        if not timer.update_sets(self.draft.sets_done()):
            await self._start_rest(timer, rest_seconds, round_rest=True)
        return counts

    async def _start_rest(self, timer: LibreTimer, seconds: int | None, *, round_rest: bool = False) -> None:
        await self.state.driver.stop()
        timer.start_rest(seconds, round_rest=round_rest)
        if timer.resting:
            await self._acquire_presentation()
            await self.state.driver.start()

    async def skip_rest(self) -> None:
        self._require_work_step()
        if isinstance(self.state.timer, LibreTimer):
            await self.state.driver.stop()
            self.state.timer.skip_rest()

    def update_libre_set(
        self, exercise_index: int, set_index: int, reps: int | None = None, weight: Any = None
    ) -> None:
        step = self._require_work_step()
        self.state.recorder.update_libre_set(step.index, exercise_index, set_index, reps, weight)

    def undo_libre_set(self, exercise_index: int, set_index: int | None = None) -> int:
        step = self._require_work_step()
        count = self.state.recorder.undo_libre_set(step.index, exercise_index, set_index)
        if isinstance(self.state.timer, LibreTimer):
            self.state.timer.update_sets(self.draft.sets_done())
        return count

    def record_cardio(self, record: CardioRecord) -> None:
        """Attach a whole-session cardio record to the current WORK step."""
        step = self._require_work_step()
        self.state.recorder.set_cardio(step.index, record)

    # -- completion -----------------------------------------------------

    async def complete_step(
        self,
        feedback: BlockFeedback | dict[str, Any] | None = None,
        *,
        confirm_empty: bool = False,
    ) -> StepOutcome:
        """Finalize the current WORK step, persist it and advance.

        Returns a NEEDS_CONFIRMATION outcome, without side effects, when
        nothing was logged and ``confirm_empty`` is not set.

        Raises:
            PersistenceError: The block log could not be written. The result
                stays finalized and pending; call ``retry_pending_writes``.
        """
        step = self._require_work_step()
        self._require_no_pending_write()
        self._sync_elapsed()

        if self.state.recorder.is_empty(step.index) and not confirm_empty:
            return StepOutcome(status=StepStatus.NEEDS_CONFIRMATION, step_index=step.index)

        await self.state.driver.stop()
        self._sync_elapsed()
        result = self.state.recorder.finalize(step.index, feedback)
        track_step_finalized(result.protocol.value if result.protocol else "none", "completed")
        self._log.info(
            "Step finalized",
            step_index=step.index,
            protocol=result.protocol.value if result.protocol else None,
            elapsed=result.elapsed_seconds,
        )
        return await self._persist_and_advance(result)

    async def skip_step(self, feedback: BlockFeedback | dict[str, Any] | None = None) -> StepOutcome:
        """Skip the current WORK step: numeric data is discarded, ``skipped`` is set."""
        step = self._require_work_step()
        self._require_no_pending_write()
        await self.state.driver.stop()
        result = self.state.recorder.skip(step.index, feedback)
        track_step_finalized(result.protocol.value if result.protocol else "none", "skipped")
        self._log.info("Step skipped", step_index=step.index)
        return await self._persist_and_advance(result)

    async def _persist_and_advance(self, result: WorkResult) -> StepOutcome:
        state = self.state
        state.pending_writes[result.step_index] = result
        await self._write_block(result)
        del state.pending_writes[result.step_index]

        await self._enter_step(result.step_index + 1)
        return StepOutcome(
            status=StepStatus.ADVANCED,
            step_index=result.step_index,
            next_index=state.current_index,
            result=result,
        )

    async def _write_block(self, result: WorkResult) -> None:
        if self._log_writer is None:
            return
        entry = BlockLogEntry(
            user_id=self.state.user_id,
            session_id=self.state.session.id,
            run_id=self.state.run_id,
            schedule_task_id=self.state.schedule_task_id,
            scheduled_date=self.state.scheduled_date,
            result=result,
        )
        try:
            await self._log_writer.write_block(entry)
        except Exception as e:
            track_persistence_failure("block_log")
            self._log.error("Failed to write block log", step_index=result.step_index, error=str(e))
            raise PersistenceError(
                "block_log",
                f"Could not save the result of step {result.step_index}",
                {"step_index": result.step_index},
            ) from e

    async def retry_pending_writes(self) -> StepOutcome | None:
        """Retry failed block writes; advances past the current step once saved."""
        self._require_active()
        outcome = None
        for step_index in sorted(self.state.pending_writes):
            result = self.state.pending_writes[step_index]
            await self._write_block(result)
            del self.state.pending_writes[step_index]
            self._log.info("Pending block log written", step_index=step_index)
            if step_index == self.state.current_index:
                await self._enter_step(step_index + 1)
                outcome = StepOutcome(
                    status=StepStatus.ADVANCED,
                    step_index=step_index,
                    next_index=self.state.current_index,
                    result=result,
                )
        return outcome

    # -- summary --------------------------------------------------------

    def analyze(self) -> SessionAnalysis:
        """Run the analysis engine once, on the SUMMARY step."""
        self._require_active()
        if self.state.current_step.type != StepType.SUMMARY:
            raise BusinessRuleError(
                "Analysis runs on the SUMMARY step",
                code="BR_RUN_NOT_SUMMARY",
                details={"current_index": self.state.current_index},
            )
        if self.state.analysis is not None:
            return self.state.analysis

        analysis = analyze_session(
            self.state.recorder.finalized_results,
            self.state.timeline,
            self.state.history,
            rules=self.rules,
        )
        for insight in analysis.insights:
            track_insight(insight.type.value, insight.kind.value)
        self.state.analysis = analysis
        self._log.info(
            "Session analyzed",
            insights=len(analysis.insights),
            efficiency=analysis.metrics.efficiency_percent,
            total_volume=analysis.metrics.total_volume,
        )
        return analysis

    def _duration_minutes(self, feedback: SessionFeedback | None) -> int:
        if feedback is not None and feedback.duration_minutes:
            return feedback.duration_minutes
        results = self.state.recorder.finalized_results.values()
        cardio = next((r.cardio for r in results if r.cardio and r.cardio.duration_minutes), None)
        if cardio is not None:
            return cardio.duration_minutes
        seconds = (datetime.utcnow() - self.state.started_at).total_seconds()
        return max(1, round(seconds / 60))

    def _notice(self, analysis: SessionAnalysis, summary: str) -> CoachNotice:
        session = self.state.session
        lines = analysis.coach_lines()
        feedback = self.state.session_feedback
        message_parts = [summary] if summary else []
        if feedback is not None and feedback.notes:
            message_parts.append(f"Athlete notes: {feedback.notes}")
        message_parts.extend(lines or ["Session completed with no load changes."])
        return CoachNotice(
            recipient=self.settings.coach_recipient,
            athlete_id=self.state.user_id,
            title=f"{self.state.user_id} finished {session.name or session.id}",
            message="\n".join(message_parts),
            priority=(
                NotificationPriority.HIGH
                if analysis.has_directional_insights
                else NotificationPriority.NORMAL
            ),
            data={
                "session_id": session.id,
                "run_id": self.state.run_id,
                "metrics": analysis.metrics.model_dump(mode="json"),
                "insights": [i.coach_message for i in analysis.insights],
                "feedback": feedback.model_dump(mode="json") if feedback else None,
            },
        )

    async def finish_session(
        self,
        analysis: SessionAnalysis | None = None,
        feedback: SessionFeedback | None = None,
    ) -> FinishOutcome:
        """Persist the session feedback, update the schedule, notify the coach, exit.

        Raises:
            BusinessRuleError: Not on SUMMARY, or block writes still pending.
            ConflictError: The session was already finished.
            PersistenceError: The feedback record could not be written; the
                analysis is kept and the call may be retried.
        """
        state = self.state
        if state.finished:
            raise ConflictError("Session already finished", code="CF_RUN_001")
        self._require_active()
        if state.current_step.type != StepType.SUMMARY:
            raise BusinessRuleError(
                "The session can only be finished from the SUMMARY step",
                code="BR_RUN_NOT_SUMMARY",
                details={"current_index": state.current_index},
            )
        if state.pending_writes:
            raise BusinessRuleError(
                "Finalized results are still waiting to be saved",
                code="BR_RUN_PENDING_WRITE",
                details={"pending_steps": sorted(state.pending_writes)},
            )
        if analysis is None:
            await self.wait_for_history()
            analysis = self.analyze()
        state.analysis = analysis
        if feedback is not None:
            state.session_feedback = feedback
        feedback = state.session_feedback

        if self._log_writer is not None:
            entry = SessionFeedbackEntry(
                user_id=state.user_id,
                session_id=state.session.id,
                run_id=state.run_id,
                schedule_task_id=state.schedule_task_id,
                scheduled_date=state.scheduled_date,
                feedback=feedback,
                analysis=analysis,
                adjustments=adjustments_by_step(analysis),
            )
            try:
                await self._log_writer.write_session_feedback(entry)
            except Exception as e:
                track_persistence_failure("session_feedback")
                self._log.error("Failed to write session feedback", error=str(e))
                raise PersistenceError(
                    "session_feedback", "Could not save the session feedback"
                ) from e

        metrics = analysis.metrics
        cardio = next(
            (r.cardio for r in state.recorder.finalized_results.values() if r.cardio), None
        )
        pace = metrics.cardio_pace or (
            format_pace(cardio.duration_minutes, cardio.distance_km) if cardio else None
        )
        summary = build_summary(
            self._duration_minutes(feedback),
            feedback.rpe if feedback else None,
            pace,
            (feedback.avg_hr if feedback and feedback.avg_hr else metrics.avg_hr),
        )

        schedule_updated = False
        if self._schedule_updater is not None and state.schedule_task_id is not None:
            try:
                await self._schedule_updater.mark_completed(
                    state.schedule_task_id,
                    summary,
                    {"metrics": metrics.model_dump(mode="json"), "run_id": state.run_id},
                )
                schedule_updated = True
            except Exception as e:
                track_persistence_failure("schedule_update")
                self._log.warning("Failed to update schedule", task_id=state.schedule_task_id, error=str(e))

        notification_sent = False
        if self._notifier is not None:
            try:
                await self._notifier.dispatch(self._notice(analysis, summary))
                notification_sent = True
            except Exception as e:
                track_persistence_failure("notification")
                self._log.warning("Failed to notify coach", error=str(e))

        state.finished = True
        self._log.info(
            "Session finished",
            summary=summary,
            schedule_updated=schedule_updated,
            notification_sent=notification_sent,
            up=sum(1 for i in analysis.insights if i.type == InsightType.UP),
            down=sum(1 for i in analysis.insights if i.type == InsightType.DOWN),
        )
        await self.exit()
        return FinishOutcome(
            summary=summary,
            feedback_logged=self._log_writer is not None,
            schedule_updated=schedule_updated,
            notification_sent=notification_sent,
            analysis=analysis,
        )

    # -- cancellation ---------------------------------------------------

    async def exit(self) -> None:
        """Hard cancellation boundary. Idempotent."""
        state = self.state
        if state.exited:
            return
        state.exited = True

        if state.driver is not None:
            await state.driver.stop()
        tasks = [t for t in state.history_tasks.values() if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        state.history_tasks.clear()
        self.cues.cancel_pending()
        await self._exit_stack.aclose()
        state.recorder.discard_all()
        active_runs.dec()
        self._log.info("Session run exited", finished=state.finished, step_index=state.current_index)

    def snapshot(self) -> dict[str, Any]:
        """Plain view of the run for the UI."""
        state = self.state
        draft = state.active_draft
        draft_view = None
        if draft is not None:
            draft_view = {
                "step_index": draft.step_index,
                "protocol": draft.protocol.value,
                "reps": draft.reps,
                "weights": draft.weights,
                "planned_weights": draft.planned_weights,
                "elapsed_seconds": draft.elapsed_seconds,
                "emom_results": {k: (v.value if v else None) for k, v in draft.emom_results.items()},
                "heart_rates": draft.heart_rates,
                "exercise_notes": draft.exercise_notes,
                "libre_set_reps": draft.libre_set_reps,
                "libre_set_weights": draft.libre_set_weights,
                "cardio": draft.cardio.model_dump() if draft.cardio else None,
            }
        return {
            "run_id": state.run_id,
            "session_id": state.session.id,
            "current_index": state.current_index,
            "current_type": state.current_step.type,
            "timeline": state.timeline,
            "draft": draft_view,
            "timer": state.timer.snapshot() if state.timer and state.current_step.is_work else None,
            "finalized_steps": sorted(state.recorder.finalized_results),
            "pending_writes": sorted(state.pending_writes),
            "analysis": state.analysis,
            "finished": state.finished,
        }
