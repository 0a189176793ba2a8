"""Tests for the protocol timer state machine (T, R, E and LIBRE)."""
import pytest

from pdp_coach.models.enums import CueType, Protocol
from pdp_coach.services.protocol_timer import (
    EmomTimer,
    LibreTimer,
    RepBasedTimer,
    TimeCappedTimer,
    create_timer,
)
from tests.factories import libre_exercise, make_exercise, make_module


def _tick(timer, times: int) -> None:
    for _ in range(times):
        timer.tick()


def _types(cues) -> list[CueType]:
    return [c.type for c in cues]


class TestTimeCappedTimer:
    def _timer(self, rules, cap=240):
        cues = []
        timer = TimeCappedTimer(
            make_module("m1", protocol="T", time_cap=cap), rules=rules, emit=cues.append, step_index=2
        )
        return timer, cues

    def test_counts_down_from_cap(self, rules):
        timer, _ = self._timer(rules)

        assert timer.start() is True
        _tick(timer, 10)

        assert timer.remaining == 230
        assert timer.elapsed == 10

    def test_pause_holds_value(self, rules):
        timer, _ = self._timer(rules)
        timer.start()
        _tick(timer, 143)
        assert timer.remaining == 97

        timer.pause()
        _tick(timer, 10)
        assert timer.remaining == 97

        timer.start()
        timer.tick()
        assert timer.remaining == 96

    def test_cue_sequence(self, rules):
        timer, cues = self._timer(rules)
        timer.start()
        _tick(timer, 240)

        assert _types(cues) == [
            CueType.HALFWAY,
            CueType.MINUTE_WARNING,
            CueType.COUNTDOWN,
            CueType.COUNTDOWN,
            CueType.COUNTDOWN,
            CueType.TERMINAL,
        ]
        assert cues[0].remaining == 120
        assert [c.value for c in cues if c.type == CueType.COUNTDOWN] == [3, 2, 1]
        assert all(c.step_index == 2 for c in cues)

    def test_stops_at_zero(self, rules):
        timer, cues = self._timer(rules, cap=5)
        timer.start()
        _tick(timer, 10)

        assert timer.remaining == 0
        assert timer.is_complete()
        assert not timer.running
        assert timer.elapsed == 5
        assert _types(cues).count(CueType.TERMINAL) == 1

    def test_no_minute_warning_for_short_caps(self, rules):
        timer, cues = self._timer(rules, cap=60)
        timer.start()
        _tick(timer, 60)

        assert CueType.MINUTE_WARNING not in _types(cues)
        assert CueType.HALFWAY in _types(cues)

    def test_start_after_completion_refused(self, rules):
        timer, _ = self._timer(rules, cap=2)
        timer.start()
        _tick(timer, 2)

        assert timer.start() is False

    def test_reset(self, rules):
        timer, _ = self._timer(rules, cap=30)
        timer.start()
        _tick(timer, 30)

        timer.reset()

        assert timer.remaining == 30
        assert timer.elapsed == 0
        assert not timer.running
        assert not timer.is_complete()

    def test_snapshot(self, rules):
        timer, _ = self._timer(rules)
        timer.start()
        timer.tick()

        snapshot = timer.snapshot()

        assert snapshot["protocol"] == "T"
        assert snapshot["running"] is True
        assert snapshot["remaining"] == 239
        assert snapshot["elapsed"] == 1


class TestRepBasedTimer:
    def _timer(self, rules, targets=(10, 10)):
        cues = []
        exercises = [make_exercise(i, target_reps=t) for i, t in enumerate(targets)]
        timer = RepBasedTimer(
            make_module("m2", protocol="R", exercises=exercises), rules=rules, emit=cues.append
        )
        return timer, cues

    def test_counts_up(self, rules):
        timer, _ = self._timer(rules)
        timer.start()
        _tick(timer, 42)

        assert timer.elapsed == 42
        assert timer.remaining is None

    def test_completes_when_all_targets_reached(self, rules):
        timer, cues = self._timer(rules)
        timer.start()
        _tick(timer, 90)

        assert timer.update_reps({0: 10, 1: 9}) is False
        assert timer.update_reps({0: 10, 1: 10}) is True

        assert not timer.running
        assert _types(cues) == [CueType.SUCCESS]
        _tick(timer, 5)
        assert timer.elapsed == 90

    def test_paused_timer_does_not_complete_until_resumed(self, rules):
        timer, cues = self._timer(rules)

        assert timer.update_reps({0: 10, 1: 10}) is False
        assert cues == []

        timer.start()
        assert timer.is_complete()
        assert _types(cues) == [CueType.SUCCESS]

    def test_zero_target_never_completes(self, rules):
        timer, _ = self._timer(rules, targets=(None,))
        timer.start()

        assert timer.update_reps({0: 100}) is False

    def test_module_volume_is_fallback_target(self, rules):
        from pdp_coach.schemas.session import Targeting

        module = make_module(
            "m2", protocol="R", exercises=[make_exercise(0)], targeting=[Targeting(volume=50, metric="reps")]
        )
        timer = RepBasedTimer(module, rules=rules)

        assert timer.targets == {0: 50}


class TestEmomTimer:
    def _timer(self, rules, minutes=2):
        cues = []
        timer = EmomTimer(
            make_module("m3", protocol="E", emom={"duration_minutes": minutes}), rules=rules, emit=cues.append
        )
        return timer, cues

    def test_round_rollover(self, rules):
        timer, cues = self._timer(rules)
        timer.start()
        _tick(timer, 60)

        assert timer.current_round == 2
        assert timer.remaining == 60
        assert _types(cues) == [
            CueType.HALFWAY,
            CueType.COUNTDOWN,
            CueType.COUNTDOWN,
            CueType.COUNTDOWN,
            CueType.ROUND_START,
        ]

    def test_terminal_after_last_round(self, rules):
        timer, cues = self._timer(rules)
        timer.start()
        _tick(timer, 125)

        assert timer.is_complete()
        assert timer.elapsed == 120
        assert timer.total_rounds == 2
        assert _types(cues)[-1] == CueType.TERMINAL
        assert _types(cues).count(CueType.ROUND_START) == 1

    def test_default_minutes(self, rules):
        module = make_module("m3", protocol="E")
        timer = EmomTimer(module, rules=rules)

        assert timer.total_rounds == rules.emom.default_minutes

    def test_reset_returns_to_round_one(self, rules):
        timer, _ = self._timer(rules)
        timer.start()
        _tick(timer, 75)

        timer.reset()

        assert timer.current_round == 1
        assert timer.remaining == 60


class TestLibreTimer:
    def _timer(self, rules, **kwargs):
        cues = []
        module = make_module(
            "m4",
            protocol="LIBRE",
            exercises=[libre_exercise(0, sets=2, rest=45), libre_exercise(1, sets=2, rest=45, grouped=True)],
        )
        return LibreTimer(module, rules=rules, emit=cues.append, **kwargs), cues

    def test_no_clock_without_rest(self, rules):
        timer, _ = self._timer(rules)

        assert timer.start() is False
        assert timer.remaining is None

    def test_rest_countdown(self, rules):
        timer, cues = self._timer(rules)
        timer.start_rest(timer.rest_seconds_for(0))

        assert timer.rest_seconds_for(0) == 45
        assert timer.resting
        _tick(timer, 45)

        assert not timer.resting
        assert not timer.running
        assert _types(cues) == [CueType.REST_OVER]

    def test_round_rest_default(self, rules):
        timer, _ = self._timer(rules)
        timer.start_rest(round_rest=True)

        assert timer.remaining == rules.libre.default_round_rest_seconds
        assert timer.is_round_rest

    def test_skip_rest(self, rules):
        timer, cues = self._timer(rules)
        timer.start_rest(30)
        _tick(timer, 5)

        timer.skip_rest()

        assert not timer.resting
        assert cues == []

    def test_completion_from_sets(self, rules):
        timer, _ = self._timer(rules)

        assert timer.update_sets({0: 2, 1: 1}) is False
        assert timer.update_sets({0: 2, 1: 2}) is True
        assert timer.is_complete()

    def test_superset_groups(self, rules):
        timer, _ = self._timer(rules)

        assert timer.groups == [[0, 1]]


class TestCreateTimer:
    @pytest.mark.parametrize(
        "tag,timer_cls",
        [
            ("T", TimeCappedTimer),
            ("R", RepBasedTimer),
            ("E", EmomTimer),
            ("LIBRE", LibreTimer),
            (None, LibreTimer),
        ],
    )
    def test_dispatch_by_protocol(self, rules, tag, timer_cls):
        timer = create_timer(make_module("m1", protocol=tag), rules=rules, step_index=3)

        assert isinstance(timer, timer_cls)
        assert timer.step_index == 3

    def test_protocol_attribute(self, rules):
        timer = create_timer(make_module("m1", protocol="E"), rules=rules)

        assert timer.protocol == Protocol.EMOM
