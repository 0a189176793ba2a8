"""Builders for session definitions and fake collaborators used across tests."""
from __future__ import annotations

import asyncio

from pdp_coach.schemas.session import (
    Exercise,
    ExerciseConfig,
    Module,
    SessionDefinition,
    SetScheme,
    Targeting,
    WarmupDefinition,
)


def make_exercise(idx: int, *, loadable: bool = True, **kwargs) -> Exercise:
    return Exercise(
        id=kwargs.pop("id", f"ex-{idx}"),
        stable_id=kwargs.pop("stable_id", f"stable-ex-{idx}"),
        name=kwargs.pop("name", f"Exercise {idx}"),
        loadable=loadable,
        **kwargs,
    )


def libre_exercise(idx: int, sets: int = 3, reps: int = 10, rest: int = 60, **kwargs) -> Exercise:
    return make_exercise(
        idx,
        config=ExerciseConfig(sets=[SetScheme(reps=reps, rest=rest) for _ in range(sets)]),
        **kwargs,
    )


def make_module(
    module_id: str = "m1",
    *,
    protocol: str | None = "T",
    name: str = "",
    exercises: list[Exercise] | None = None,
    time_cap: int | None = None,
    emom_minutes: int | None = None,
    **kwargs,
) -> Module:
    targeting = kwargs.pop("targeting", [Targeting(time_cap=time_cap)] if time_cap else [])
    params = {"emom_minutes": emom_minutes} if emom_minutes else {}
    return Module(
        id=module_id,
        stable_id=kwargs.pop("stable_id", f"stable-{module_id}"),
        name=name,
        protocol=protocol,
        exercises=exercises if exercises is not None else [make_exercise(0)],
        targeting=targeting,
        params=params,
        **kwargs,
    )


def make_session(*modules: Module, session_id: str = "session-1", **kwargs) -> SessionDefinition:
    return SessionDefinition(id=session_id, name=kwargs.pop("name", "Test session"), modules=list(modules), **kwargs)


def mix_session() -> SessionDefinition:
    """MIX session: BOOST (T), BASE (R), BUILD (E) and BURN (LIBRE) plus one warmup."""
    return SessionDefinition(
        id="session-1",
        name="Lower body",
        type="MIX",
        warmup=[WarmupDefinition(description="Joint prep", duration_minutes=5)],
        modules=[
            make_module("m1", protocol="PDP-T", name="Boost", time_cap=240),
            make_module("m2", protocol="R", name="Base"),
            make_module("m3", protocol="E", name="Build", emom_minutes=4),
            make_module(
                "m4",
                protocol="LIBRE",
                name="Burn",
                exercises=[libre_exercise(0), libre_exercise(1)],
            ),
        ],
    )


# -- fake collaborators ------------------------------------------------


class FakeHistoryLookup:
    def __init__(self, logs=None, *, error: Exception | None = None, delay: float = 0):
        self.logs = logs or {}
        self.error = error
        self.delay = delay
        self.calls: list[str] = []

    async def latest(self, module_stable_id):
        self.calls.append(module_stable_id)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.logs.get(module_stable_id)


class FakeLogWriter:
    def __init__(self, *, fail_blocks: int = 0, fail_feedback: bool = False):
        self.blocks = []
        self.feedback = []
        self.fail_blocks = fail_blocks
        self.fail_feedback = fail_feedback

    async def write_block(self, entry):
        if self.fail_blocks > 0:
            self.fail_blocks -= 1
            raise ConnectionError("database unavailable")
        self.blocks.append(entry)
        return len(self.blocks)

    async def write_session_feedback(self, entry):
        if self.fail_feedback:
            raise ConnectionError("database unavailable")
        self.feedback.append(entry)
        return len(self.feedback)


class FakeScheduleUpdater:
    def __init__(self, *, fail: bool = False):
        self.fail = fail
        self.completed = []

    async def mark_completed(self, task_id, summary, results=None):
        if self.fail:
            raise ConnectionError("schedule store unavailable")
        self.completed.append((task_id, summary, results))
        return True


class FakeNotifier:
    def __init__(self, *, fail: bool = False):
        self.fail = fail
        self.notices = []

    async def dispatch(self, notice):
        if self.fail:
            raise ConnectionError("notification store unavailable")
        self.notices.append(notice)
        return len(self.notices)


class FakeResource:
    def __init__(self, name: str, *, fail_acquire: bool = False, fail_release: bool = False):
        self.name = name
        self.held = False
        self.fail_acquire = fail_acquire
        self.fail_release = fail_release
        self.acquire_count = 0
        self.release_count = 0

    async def acquire(self):
        if self.fail_acquire:
            raise RuntimeError(f"{self.name} unavailable")
        self.acquire_count += 1
        self.held = True

    async def release(self):
        self.release_count += 1
        self.held = False
        if self.fail_release:
            raise RuntimeError(f"{self.name} release failed")
