"""Tests for the workout log, schedule and notification repositories and their SQL adapters."""
from datetime import date

import pytest

from pdp_coach.models.enums import (
    BlockType,
    InsightType,
    LogStatus,
    LogType,
    NotificationPriority,
    Protocol,
    TaskStatus,
)
from pdp_coach.models.scheduled_task import ScheduledTask
from pdp_coach.models.workout_log import WorkoutLog
from pdp_coach.repositories import NotificationRepository, ScheduleRepository, WorkoutLogRepository
from pdp_coach.schemas.analysis import Insight, SessionAnalysis, SessionMetrics
from pdp_coach.schemas.results import ExerciseAdjustment, SessionFeedback, WorkResult
from pdp_coach.services.collaborators import (
    BlockLogEntry,
    CoachNotice,
    SessionFeedbackEntry,
    SqlHistoryLookup,
    SqlLogWriter,
    SqlNotificationDispatcher,
    SqlScheduleUpdater,
)
from pdp_coach.services.session_runner import SessionRunner
from tests.factories import FakeResource, make_module, make_session


def _block(user_id="athlete-1", module_stable_id="stable-m1", run_id="run-1", skipped=False, step_index=1):
    return WorkoutLog(
        log_type=LogType.BLOCK.value,
        user_id=user_id,
        session_id="session-1",
        run_id=run_id,
        module_stable_id=module_stable_id,
        step_index=step_index,
        results={"step_index": step_index, "reps": {"0": 40}, "skipped": skipped},
    )


class TestWorkoutLogRepository:
    @pytest.mark.asyncio
    async def test_create_and_get(self, session_maker):
        async with session_maker() as session:
            repo = WorkoutLogRepository(session)
            log = await repo.create(_block())

            assert log.id is not None
            assert log.status == LogStatus.PENDING.value
            assert (await repo.get_by_id(log.id)).module_stable_id == "stable-m1"
            assert await repo.get_by_id(9999) is None

    @pytest.mark.asyncio
    async def test_latest_block_log_skips_skipped_results(self, session_maker):
        async with session_maker() as session:
            repo = WorkoutLogRepository(session)
            kept = await repo.create(_block())
            await repo.create(_block(run_id="run-2", skipped=True))

            latest = await repo.latest_block_log("athlete-1", "stable-m1")

            assert latest.id == kept.id

    @pytest.mark.asyncio
    async def test_latest_block_log_is_per_user_and_module(self, session_maker):
        async with session_maker() as session:
            repo = WorkoutLogRepository(session)
            await repo.create(_block(user_id="someone-else"))
            await repo.create(_block(module_stable_id="stable-m2"))

            assert await repo.latest_block_log("athlete-1", "stable-m1") is None

    @pytest.mark.asyncio
    async def test_confirm_pending(self, session_maker):
        async with session_maker() as session:
            repo = WorkoutLogRepository(session)
            await repo.create(_block(step_index=1))
            await repo.create(_block(step_index=2))
            await repo.create(_block(run_id="run-2"))

            assert await repo.confirm_pending("run-1") == 2
            assert await repo.confirm_pending("run-1") == 0

            statuses = [log.status for log in await repo.list_for_run("run-1")]
            assert statuses == [LogStatus.CONFIRMED.value] * 2

    @pytest.mark.asyncio
    async def test_list_for_session(self, session_maker):
        async with session_maker() as session:
            repo = WorkoutLogRepository(session)
            await repo.create(_block(step_index=1))
            await repo.create(_block(step_index=2))

            logs = await repo.list_for_session("athlete-1", "session-1")

            assert [log.step_index for log in logs] == [1, 2]


class TestScheduleRepository:
    @pytest.mark.asyncio
    async def test_mark_completed(self, session_maker):
        async with session_maker() as session:
            repo = ScheduleRepository(session)
            task = await repo.create(
                ScheduledTask(user_id="athlete-1", scheduled_date=date(2024, 5, 1), session_id="session-1")
            )

            updated = await repo.mark_completed(task.id, "45 min • RPE 7", {"run_id": "run-1"})

            assert updated.status == TaskStatus.COMPLETED.value
            assert updated.summary == "45 min • RPE 7"
            assert updated.results == {"run_id": "run-1"}
            assert updated.completed_at is not None

    @pytest.mark.asyncio
    async def test_missing_task(self, session_maker):
        async with session_maker() as session:
            assert await ScheduleRepository(session).mark_completed(404, "x") is None


class TestSqlAdapters:
    def _result(self, **kwargs):
        return WorkResult(
            step_index=1,
            module_id="m1",
            module_stable_id="stable-m1",
            protocol=Protocol.TIME_CAPPED,
            block_type=BlockType.BUILD,
            reps={0: 55},
            actual_weights={0: 40.0},
            **kwargs,
        )

    def _analysis(self):
        insight = Insight(
            type=InsightType.UP,
            step_index=1,
            exercise_stable_id="stable-ex-0",
            exercise_index=0,
            athlete_message="Increase the load",
            coach_message="Exercise 0: 55 reps, increase +5%",
            adjustment=0.05,
        )
        return SessionAnalysis(insights=[insight], metrics=SessionMetrics(total_volume=2200))

    @pytest.mark.asyncio
    async def test_history_round_trip(self, session_maker):
        writer = SqlLogWriter(session_maker)
        await writer.write_block(
            BlockLogEntry(user_id="athlete-1", session_id="session-1", run_id="run-1", result=self._result())
        )
        await writer.write_session_feedback(
            SessionFeedbackEntry(
                user_id="athlete-1",
                session_id="session-1",
                run_id="run-1",
                feedback=SessionFeedback(rpe=7, notes="solid"),
                analysis=self._analysis(),
                adjustments={
                    1: [ExerciseAdjustment(exercise_stable_id="stable-ex-0", exercise_index=0, adjustment=0.05)]
                },
            )
        )

        history = await SqlHistoryLookup(session_maker, "athlete-1").latest("stable-m1")

        assert history.result.reps == {0: 55}
        assert history.result.actual_weights == {0: 40.0}
        assert history.result.protocol == Protocol.TIME_CAPPED
        assert history.adjustments[0].adjustment == pytest.approx(0.05)
        assert history.recorded_at is not None

    @pytest.mark.asyncio
    async def test_feedback_confirms_block_logs(self, session_maker):
        writer = SqlLogWriter(session_maker)
        await writer.write_block(
            BlockLogEntry(user_id="athlete-1", session_id="session-1", run_id="run-1", result=self._result())
        )
        await writer.write_session_feedback(
            SessionFeedbackEntry(
                user_id="athlete-1", session_id="session-1", run_id="run-1", analysis=self._analysis()
            )
        )

        async with session_maker() as session:
            logs = await WorkoutLogRepository(session).list_for_run("run-1")

        assert [log.log_type for log in logs] == [LogType.BLOCK.value, LogType.SESSION_FEEDBACK.value]
        assert all(log.status == LogStatus.CONFIRMED.value for log in logs)
        assert logs[1].metrics["total_volume"] == 2200
        assert logs[1].analysis[0]["type"] == "up"

    @pytest.mark.asyncio
    async def test_unknown_module_has_no_history(self, session_maker):
        assert await SqlHistoryLookup(session_maker, "athlete-1").latest("nope") is None

    @pytest.mark.asyncio
    async def test_schedule_updater(self, session_maker):
        async with session_maker() as session:
            async with session.begin():
                task = await ScheduleRepository(session).create(
                    ScheduledTask(user_id="athlete-1", scheduled_date=date(2024, 5, 1), session_id="session-1")
                )
        updater = SqlScheduleUpdater(session_maker)

        assert await updater.mark_completed(task.id, "30 min") is True
        assert await updater.mark_completed(task.id + 100, "30 min") is False

    @pytest.mark.asyncio
    async def test_notification_dispatcher(self, session_maker):
        dispatcher = SqlNotificationDispatcher(session_maker)
        await dispatcher.dispatch(
            CoachNotice(
                recipient="admin",
                athlete_id="athlete-1",
                title="athlete-1 finished Lower body",
                message="✅ Exercise 0: increase",
                priority=NotificationPriority.HIGH,
            )
        )

        async with session_maker() as session:
            [notification] = await NotificationRepository(session).list_for_recipient("admin")

        assert notification.priority == "high"
        assert notification.type == "session_finished"
        assert not notification.read


class TestRunnerWithDatabase:
    @pytest.mark.asyncio
    async def test_second_session_seeds_from_first(self, session_maker, fast_settings, rules):
        session = make_session(make_module("m1", protocol="T", name="Build", time_cap=240))

        async def run_once(weight=None, reps=55):
            runner = SessionRunner(
                session,
                settings=fast_settings,
                rules=rules,
                history_lookup=SqlHistoryLookup(session_maker, "athlete-1"),
                log_writer=SqlLogWriter(session_maker),
                notifier=SqlNotificationDispatcher(session_maker),
                presentation=[FakeResource("audio_context")],
                user_id="athlete-1",
            )
            await runner.begin()
            await runner.advance()
            await runner.wait_for_history()
            seeded = runner.draft.weights[0]
            if weight is not None:
                runner.set_weight(0, weight)
            runner.set_reps(0, reps)
            await runner.complete_step()
            await runner.finish_session(feedback=SessionFeedback(duration_minutes=20))
            return seeded

        assert await run_once(weight=40) is None
        assert await run_once() == pytest.approx(42.0)
