"""Tests for the timeline builder: step order, block classification, defaults and overrides."""
import pytest

from pdp_coach.models.enums import BlockType, Protocol, StepType
from pdp_coach.schemas.session import (
    Exercise,
    ExerciseConfig,
    Override,
    SetScheme,
    normalize_protocol,
)
from pdp_coach.services.timeline_builder import (
    apply_override,
    build_timeline,
    classify_block_type,
    global_protocol,
)
from tests.factories import make_exercise, make_module, make_session, mix_session


def _build(session, override=None, **kwargs):
    kwargs.setdefault("split_burn_blocks", False)
    kwargs.setdefault("default_time_cap_seconds", 240)
    kwargs.setdefault("default_emom_minutes", 4)
    return build_timeline(session, override, **kwargs)


class TestStepOrder:
    """PLANNING -> WARMUP(s) -> WORK -> SUMMARY."""

    def test_mix_session_order(self):
        timeline = _build(mix_session())

        assert [s.type for s in timeline.steps] == [
            StepType.PLANNING,
            StepType.WARMUP,
            StepType.WORK,
            StepType.WORK,
            StepType.WORK,
            StepType.WORK,
            StepType.SUMMARY,
        ]
        assert [s.index for s in timeline.steps] == list(range(7))
        assert timeline.last_index == 6

    def test_planning_aggregates_every_module(self):
        timeline = _build(mix_session())

        assert [m.id for m in timeline[0].modules] == ["m1", "m2", "m3", "m4"]

    def test_work_steps_follow_module_order(self):
        timeline = _build(mix_session())

        assert [s.module.id for s in timeline.work_steps()] == ["m1", "m2", "m3", "m4"]

    def test_session_without_modules_is_summary_only(self):
        timeline = _build(make_session())

        assert len(timeline) == 1
        assert timeline[0].type == StepType.SUMMARY

    def test_session_without_warmup(self):
        timeline = _build(make_session(make_module("m1")))

        assert [s.type for s in timeline.steps] == [StepType.PLANNING, StepType.WORK, StepType.SUMMARY]

    def test_builder_is_deterministic(self):
        session = mix_session()

        assert _build(session) == _build(session)


class TestBlockClassification:
    """Name keywords win; position decides otherwise."""

    @pytest.mark.parametrize(
        "name,position,expected",
        [
            ("Burn finisher", 0, BlockType.BURN),
            ("build strength", 5, BlockType.BUILD),
            ("", 0, BlockType.BOOST),
            ("", 1, BlockType.BASE),
            ("", 2, BlockType.BUILD),
            ("", 3, BlockType.BUILD),
            ("", 4, BlockType.BURN),
            ("", 9, BlockType.BASE),
            (None, 0, BlockType.BOOST),
        ],
    )
    def test_classify(self, name, position, expected):
        assert classify_block_type(name, position) == expected

    def test_block_types_on_timeline(self):
        timeline = _build(mix_session())

        assert [s.block_type for s in timeline.work_steps()] == [
            BlockType.BOOST,
            BlockType.BASE,
            BlockType.BUILD,
            BlockType.BURN,
        ]


class TestProtocolResolution:
    def test_protocol_tags_normalized(self):
        assert normalize_protocol("PDP-T") == Protocol.TIME_CAPPED
        assert normalize_protocol("r") == Protocol.REP_BASED
        assert normalize_protocol("E") == Protocol.EMOM
        assert normalize_protocol("MIX") == Protocol.LIBRE
        assert normalize_protocol("") is None

    def test_mix_session_keeps_module_protocols(self):
        timeline = _build(mix_session())

        assert [s.protocol for s in timeline.work_steps()] == [
            Protocol.TIME_CAPPED,
            Protocol.REP_BASED,
            Protocol.EMOM,
            Protocol.LIBRE,
        ]

    def test_global_session_type_forces_protocol(self):
        session = make_session(
            make_module("m1", protocol="E"),
            make_module("m2", protocol=None),
            type="PDP-R",
        )

        timeline = _build(session)

        assert global_protocol("PDP-R") == Protocol.REP_BASED
        assert all(s.protocol == Protocol.REP_BASED for s in timeline.work_steps())

    def test_untagged_module_defaults_to_libre(self):
        timeline = _build(make_session(make_module("m1", protocol=None)))

        assert timeline.work_steps()[0].protocol == Protocol.LIBRE


class TestDefaults:
    def test_missing_cap_falls_back_to_default(self):
        timeline = _build(make_session(make_module("m1", protocol="T")), default_time_cap_seconds=240)

        assert timeline.work_steps()[0].module.primary_target.time_cap == 240

    def test_cap_taken_from_first_time_set(self):
        exercise = make_exercise(
            0, config=ExerciseConfig(sets=[SetScheme(vol_type="TIME", volume=300)])
        )
        timeline = _build(make_session(make_module("m1", exercises=[exercise])))

        assert timeline.work_steps()[0].module.primary_target.time_cap == 300

    def test_emom_minutes_default(self):
        timeline = _build(make_session(make_module("m1", protocol="E")), default_emom_minutes=4)

        assert timeline.work_steps()[0].module.emom.duration_minutes == 4

    def test_emom_minutes_from_emom_sets(self):
        exercise = make_exercise(
            0, config=ExerciseConfig(is_emom=True, sets=[SetScheme(reps=5) for _ in range(6)])
        )
        timeline = _build(make_session(make_module("m1", protocol="E", exercises=[exercise])))

        assert timeline.work_steps()[0].module.emom.duration_minutes == 6

    def test_emom_minutes_from_params(self):
        timeline = _build(make_session(make_module("m1", protocol="E", emom_minutes=10)))

        assert timeline.work_steps()[0].module.emom.duration_minutes == 10


class TestOverrides:
    def test_duration_forces_time_capped(self):
        session = make_session(make_module("m1", protocol="E", emom_minutes=4))

        timeline = _build(session, Override(duration=30))

        module = timeline.work_steps()[0].module
        assert module.protocol == Protocol.TIME_CAPPED
        assert module.primary_target.time_cap == 1800
        assert module.emom.duration_minutes == 30

    def test_time_volume_unit_acts_as_duration(self):
        module = apply_override(make_module("m1"), Override(vol_val=20, vol_unit="TIME"))

        assert module.protocol == Protocol.TIME_CAPPED
        assert module.primary_target.time_cap == 1200

    def test_distance_sets_volume(self):
        module = apply_override(make_module("m1"), Override(distance=5.0, notes="Easy pace"))

        assert module.primary_target.volume == 5.0
        assert module.primary_target.metric == "km"
        assert module.primary_target.instruction == "Easy pace"

    def test_intensity_override(self):
        module = apply_override(make_module("m1"), Override(int_val="145", int_unit="BPM"))

        assert module.primary_target.intensity == "145"
        assert module.primary_target.intensity_type == "BPM"

    def test_positional_overrides_apply_to_cardio_blocks_only(self):
        run = make_exercise(0, name="Running", loadable=False)
        session = make_session(
            make_module("strength", protocol="T"),
            make_module("cardio-1", protocol="LIBRE", exercises=[run]),
            make_module("cardio-2", protocol="LIBRE", exercises=[run]),
        )
        override = Override(sets=[Override(duration=20), Override(distance=3.0)])

        timeline = _build(session, override)

        strength, first, second = [s.module for s in timeline.work_steps()]
        assert strength.protocol == Protocol.TIME_CAPPED
        assert strength.primary_target.time_cap == 240
        assert first.primary_target.time_cap == 1200
        assert second.primary_target.volume == 3.0

    def test_no_override_leaves_module_untouched(self):
        module = make_module("m1")

        assert apply_override(module, None) is module


class TestBurnSplitting:
    def _burn_session(self, count: int):
        exercises = [make_exercise(i) for i in range(count)]
        return make_session(make_module("burn", protocol="T", name="Burn", exercises=exercises))

    def test_split_into_parts_of_two(self):
        timeline = _build(self._burn_session(5), split_burn_blocks=True)

        parts = timeline.work_steps()
        assert [len(s.module.exercises) for s in parts] == [2, 2, 1]
        assert [s.part_label for s in parts] == ["Part 1", "Part 2", "Part 3"]
        assert [s.offset for s in parts] == [0, 2, 4]
        assert [s.module.identity for s in parts] == [
            "stable-burn::part-1",
            "stable-burn::part-2",
            "stable-burn::part-3",
        ]

    def test_split_disabled(self):
        timeline = _build(self._burn_session(5), split_burn_blocks=False)

        assert len(timeline.work_steps()) == 1

    def test_small_burn_not_split(self):
        timeline = _build(self._burn_session(2), split_burn_blocks=True)

        assert len(timeline.work_steps()) == 1
        assert timeline.work_steps()[0].part_label is None


def test_exercise_identity_prefers_stable_id():
    assert Exercise(id="a", stable_id="b").identity == "b"
    assert Exercise(id="a").identity == "a"
