"""
Protocol Timer State Machine

One timer handles the clock and round logic of the active WORK step. Every
protocol implements the same contract (start, pause, reset, tick,
is_complete) and is selected from the module's protocol tag by
``create_timer``:

- T (time-capped): counts down from the cap, cues at halfway, one minute
  left and 3-2-1, stops at zero.
- R (rep-based, for time): counts up until every exercise reaches its
  target reps.
- E (EMOM): 60-second rounds, one per configured minute.
- LIBRE: no clock of its own; an optional rest countdown between sets.

Timers are driven by ``tick()`` calls, one per logical second. They hold no
task of their own; see ``timer_driver.TimerDriver``.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Mapping

from pdp_coach.config.protocol_rules_loader import ProtocolRules, get_protocol_rules
from pdp_coach.models.enums import CueType, Protocol
from pdp_coach.schemas.session import Module
from pdp_coach.services.cues import Cue
from pdp_coach.services.libre_config import libre_config, superset_groups

CueEmitter = Callable[[Cue], None]


class ProtocolTimer(ABC):
    """Shared contract of the per-protocol timers."""

    protocol: Protocol

    def __init__(
        self,
        module: Module,
        *,
        rules: ProtocolRules | None = None,
        emit: CueEmitter | None = None,
        step_index: int | None = None,
    ):
        self.module = module
        self.rules = rules or get_protocol_rules()
        self.step_index = step_index
        self._emit_cb = emit
        self.running = False
        self.completed = False
        self.elapsed = 0

    # -- contract -------------------------------------------------------

    def start(self) -> bool:
        """Start or resume ticking. Returns False when already complete."""
        if self.completed:
            return False
        self.running = True
        return True

    def pause(self) -> None:
        self.running = False

    def reset(self) -> None:
        self.running = False
        self.completed = False
        self.elapsed = 0
        self._reset_state()

    def tick(self) -> None:
        """Advance one logical second; ignored while paused or complete."""
        if not self.running or self.completed:
            return
        self.elapsed += 1
        self._on_tick()

    def is_complete(self) -> bool:
        return self.completed

    # -- read access ----------------------------------------------------

    @property
    def remaining(self) -> int | None:
        return None

    @property
    def current_round(self) -> int | None:
        return None

    @property
    def total_rounds(self) -> int | None:
        return None

    def snapshot(self) -> dict[str, Any]:
        return {
            "protocol": self.protocol.value,
            "running": self.running,
            "completed": self.completed,
            "elapsed": self.elapsed,
            "remaining": self.remaining,
            "round": self.current_round,
            "total_rounds": self.total_rounds,
        }

    # -- hooks ----------------------------------------------------------

    @abstractmethod
    def _on_tick(self) -> None:
        ...

    def _reset_state(self) -> None:
        pass

    def _emit(self, cue_type: CueType, value: int | None = None) -> None:
        if self._emit_cb is None:
            return
        self._emit_cb(
            Cue(
                type=cue_type,
                step_index=self.step_index,
                remaining=self.remaining,
                round=self.current_round,
                value=value,
            )
        )

    def _finish(self, cue_type: CueType) -> None:
        self.running = False
        self.completed = True
        self._emit(cue_type)


class TimeCappedTimer(ProtocolTimer):
    protocol = Protocol.TIME_CAPPED

    def __init__(self, module: Module, **kwargs):
        super().__init__(module, **kwargs)
        rules = self.rules.time_capped
        self.cap = module.primary_target.time_cap or rules.default_cap_seconds
        self._remaining = self.cap

    @property
    def remaining(self) -> int:
        return self._remaining

    def _reset_state(self) -> None:
        self._remaining = self.cap

    def start(self) -> bool:
        if self._remaining <= 0:
            self.completed = True
        return super().start()

    def _on_tick(self) -> None:
        rules = self.rules.time_capped
        self._remaining = max(0, self._remaining - 1)
        remaining = self._remaining

        if remaining == 0:
            self._finish(CueType.TERMINAL)
            return
        if rules.halfway_cue and remaining == self.cap // 2:
            self._emit(CueType.HALFWAY)
        if remaining == rules.minute_warning_seconds and self.cap > rules.minute_warning_seconds:
            self._emit(CueType.MINUTE_WARNING)
        if remaining <= rules.countdown_from:
            self._emit(CueType.COUNTDOWN, value=remaining)


class RepBasedTimer(ProtocolTimer):
    protocol = Protocol.REP_BASED

    def __init__(self, module: Module, **kwargs):
        super().__init__(module, **kwargs)
        self.targets = {
            idx: module.target_reps_for(idx) for idx in range(len(module.exercises))
        }
        self._reps: dict[int, int] = {}

    def update_reps(self, reps: Mapping[int, int]) -> bool:
        """Feed the latest logged reps; stops with a success cue once every target is met."""
        self._reps = dict(reps)
        if self.running and not self.completed and self.targets_reached():
            self._finish(CueType.SUCCESS)
        return self.completed

    def targets_reached(self) -> bool:
        if not self.targets or any(t <= 0 for t in self.targets.values()):
            return False
        return all(self._reps.get(idx, 0) >= target for idx, target in self.targets.items())

    def start(self) -> bool:
        started = super().start()
        if started and self.targets_reached():
            self._finish(CueType.SUCCESS)
        return started

    def _on_tick(self) -> None:
        pass


class EmomTimer(ProtocolTimer):
    protocol = Protocol.EMOM

    def __init__(self, module: Module, **kwargs):
        super().__init__(module, **kwargs)
        rules = self.rules.emom
        minutes = module.emom.duration_minutes if module.emom else None
        self.round_seconds = rules.round_seconds
        self._total_rounds = max(1, minutes or rules.default_minutes)
        self._round = 1
        self._remaining = self.round_seconds

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def current_round(self) -> int:
        return self._round

    @property
    def total_rounds(self) -> int:
        return self._total_rounds

    def _reset_state(self) -> None:
        self._round = 1
        self._remaining = self.round_seconds

    def _on_tick(self) -> None:
        countdown_from = self.rules.emom.countdown_from
        self._remaining -= 1

        if self._remaining <= 0:
            if self._round >= self._total_rounds:
                self._remaining = 0
                self._finish(CueType.TERMINAL)
                return
            self._round += 1
            self._remaining = self.round_seconds
            self._emit(CueType.ROUND_START)
            return
        if self._remaining == self.round_seconds // 2:
            self._emit(CueType.HALFWAY)
        if self._remaining <= countdown_from:
            self._emit(CueType.COUNTDOWN, value=self._remaining)


class LibreTimer(ProtocolTimer):
    """Free-form sets: the only clock is an optional rest countdown."""

    protocol = Protocol.LIBRE

    def __init__(self, module: Module, **kwargs):
        super().__init__(module, **kwargs)
        self.configs = [
            libre_config(ex, module, self.rules.libre) for ex in module.exercises
        ]
        self.groups = superset_groups(module.exercises)
        self.rest_remaining = 0
        self.rest_duration = 0
        self.is_round_rest = False
        self._sets_done: dict[int, int] = {}

    @property
    def remaining(self) -> int | None:
        return self.rest_remaining if self.rest_duration else None

    @property
    def resting(self) -> bool:
        return self.rest_remaining > 0

    def rest_seconds_for(self, exercise_index: int) -> int:
        if 0 <= exercise_index < len(self.configs):
            return self.configs[exercise_index].rest_seconds
        return self.rules.libre.default_rest_seconds

    def start_rest(self, seconds: int | None = None, *, round_rest: bool = False) -> None:
        """Begin a rest countdown; a superset round defaults to the round rest."""
        if seconds is None:
            seconds = (
                self.rules.libre.default_round_rest_seconds
                if round_rest
                else self.rules.libre.default_rest_seconds
            )
        self.rest_duration = max(0, int(seconds))
        self.rest_remaining = self.rest_duration
        self.is_round_rest = round_rest
        self.running = self.rest_remaining > 0

    def skip_rest(self) -> None:
        self.rest_remaining = 0
        self.running = False

    def start(self) -> bool:
        if self.completed or not self.resting:
            return False
        self.running = True
        return True

    def update_sets(self, sets_done: Mapping[int, int]) -> bool:
        """Completion: every exercise has logged its target set count."""
        self._sets_done = dict(sets_done)
        self.completed = bool(self.configs) and all(
            self._sets_done.get(idx, 0) >= cfg.target_sets
            for idx, cfg in enumerate(self.configs)
        )
        if self.completed:
            self.skip_rest()
        return self.completed

    def _reset_state(self) -> None:
        self.rest_remaining = 0
        self.rest_duration = 0
        self.is_round_rest = False
        self._sets_done = {}

    def tick(self) -> None:
        if not self.running or not self.resting:
            return
        self.elapsed += 1
        self._on_tick()

    def _on_tick(self) -> None:
        self.rest_remaining -= 1
        if self.rest_remaining <= 0:
            self.rest_remaining = 0
            self.running = False
            self._emit(CueType.REST_OVER)

    def snapshot(self) -> dict[str, Any]:
        data = super().snapshot()
        data["resting"] = self.resting
        data["round_rest"] = self.is_round_rest
        data["groups"] = self.groups
        return data


TIMERS_BY_PROTOCOL: dict[Protocol, type[ProtocolTimer]] = {
    Protocol.TIME_CAPPED: TimeCappedTimer,
    Protocol.REP_BASED: RepBasedTimer,
    Protocol.EMOM: EmomTimer,
    Protocol.LIBRE: LibreTimer,
}


def create_timer(
    module: Module,
    *,
    rules: ProtocolRules | None = None,
    emit: CueEmitter | None = None,
    step_index: int | None = None,
) -> ProtocolTimer:
    """Select the timer variant for a module's protocol (LIBRE when unset)."""
    timer_cls = TIMERS_BY_PROTOCOL.get(module.protocol or Protocol.LIBRE, LibreTimer)
    return timer_cls(module, rules=rules, emit=emit, step_index=step_index)
