"""
Timeline Builder

Turns a session definition plus an optional per-occurrence override into the
ordered list of steps an athlete walks through:

    PLANNING -> WARMUP(s) -> WORK (one per module) -> SUMMARY

The builder is pure: same inputs, same timeline. It never raises for missing
module config; safe defaults (240 s cap, 4-minute EMOM) fill the gaps.
"""
from __future__ import annotations

import logging

from pdp_coach.config.settings import get_settings
from pdp_coach.models.enums import BlockType, Protocol, StepType
from pdp_coach.schemas.session import (
    EmomParams,
    Module,
    Override,
    SessionDefinition,
    Targeting,
)
from pdp_coach.schemas.timeline import Timeline, TimelineStep

logger = logging.getLogger(__name__)

# Block type by position when the module name carries no block keyword.
POSITIONAL_BLOCK_TYPES = (
    BlockType.BOOST,
    BlockType.BASE,
    BlockType.BUILD,
    BlockType.BUILD,
    BlockType.BURN,
    BlockType.BURN,
)

SESSION_TYPE_PROTOCOLS = {
    "PDP-T": Protocol.TIME_CAPPED,
    "PDP-R": Protocol.REP_BASED,
    "PDP-E": Protocol.EMOM,
}

VOLUME_UNITS = ("KM", "METROS", "KCAL", "REPS")
BURN_PART_SIZE = 2


def classify_block_type(name: str | None, position: int = 0) -> BlockType:
    """Classify a module into BASE/BUILD/BURN/BOOST.

    The name wins when it contains a block keyword; otherwise the module's
    position in the session decides, and BASE covers everything past it.
    """
    upper = (name or "").upper()
    for block_type in (BlockType.BOOST, BlockType.BASE, BlockType.BUILD, BlockType.BURN):
        if block_type.value in upper:
            return block_type
    if 0 <= position < len(POSITIONAL_BLOCK_TYPES):
        return POSITIONAL_BLOCK_TYPES[position]
    return BlockType.BASE


def global_protocol(session_type: str | None) -> Protocol | None:
    """Protocol imposed by the session type; None for MIX sessions."""
    return SESSION_TYPE_PROTOCOLS.get((session_type or "").upper())


def resolve_emom_minutes(module: Module, default: int) -> int:
    if module.emom and module.emom.duration_minutes:
        return module.emom.duration_minutes
    if module.params.emom_minutes:
        return module.params.emom_minutes
    if module.exercises:
        first = module.exercises[0].config
        if first.is_emom and first.sets:
            return len(first.sets)
    return default


def _primary_target(module: Module, default_cap: int) -> Targeting:
    """First targeting slot, inferred from params or the first set when absent."""
    if module.targeting:
        target = module.targeting[0].model_copy()
    else:
        target = Targeting(
            time_cap=module.params.time_cap or None,
            volume=float(module.params.rounds) if module.params.rounds else None,
            instruction=module.description,
        )
        if module.exercises:
            first = module.exercises[0]
            scheme = first.config.sets[0] if first.config.sets else None
            if scheme is not None and not target.time_cap and not target.volume:
                vol_type = (scheme.vol_type or first.config.vol_type or "").upper()
                if vol_type == "TIME" and scheme.volume:
                    target.time_cap = int(scheme.volume)
                    target.metric = "time"
                elif vol_type in VOLUME_UNITS and scheme.volume:
                    target.volume = scheme.volume
                    target.metric = vol_type.lower()
            if scheme is not None and scheme.intensity:
                target.intensity = scheme.intensity
                target.intensity_type = scheme.int_type or "RPE"
            if not target.instruction and first.notes:
                target.instruction = first.notes
    if not target.time_cap and module.params.time_cap:
        target.time_cap = module.params.time_cap
    if target.time_cap is None or target.time_cap <= 0:
        target.time_cap = default_cap
    return target


def apply_override(module: Module, override: Override | None) -> Module:
    """Merge a per-occurrence override into a resolved module.

    A duration always forces the time-capped protocol: the cap becomes
    duration x 60 seconds and any EMOM minute-count follows the duration.
    """
    if override is None:
        return module

    targeting = [t.model_copy() for t in module.targeting] or [Targeting()]
    first = targeting[0]
    updates: dict = {}

    duration = override.duration
    vol_unit = (override.vol_unit or "").upper()
    if duration is None and vol_unit == "TIME" and override.vol_val:
        duration = override.vol_val

    if duration:
        first.time_cap = int(round(duration * 60))
        first.metric = first.metric or "time"
        updates["protocol"] = Protocol.TIME_CAPPED
        updates["emom"] = EmomParams(
            duration_minutes=int(round(duration)),
            density=module.emom.density if module.emom else "normal",
        )

    if override.distance:
        first.volume = override.distance
        first.metric = "km"
    elif vol_unit in VOLUME_UNITS and override.vol_val:
        first.volume = override.vol_val
        first.metric = vol_unit.lower()

    if override.int_val:
        first.intensity = override.int_val
        first.intensity_type = override.int_unit or first.intensity_type or "RPE"

    if override.notes:
        first.instruction = override.notes

    targeting[0] = first
    updates["targeting"] = targeting
    return module.model_copy(update=updates)


def resolve_module(
    module: Module,
    session_protocol: Protocol | None,
    default_cap: int,
    default_emom_minutes: int,
) -> Module:
    """Fill protocol, targeting and EMOM minute-count with safe defaults."""
    protocol = session_protocol or module.protocol or Protocol.LIBRE
    targeting = [_primary_target(module, default_cap)] + [
        t.model_copy() for t in module.targeting[1:]
    ]
    emom = EmomParams(
        duration_minutes=resolve_emom_minutes(module, default_emom_minutes),
        density=module.emom.density if module.emom else "normal",
    )
    return module.model_copy(
        update={"protocol": protocol, "targeting": targeting, "emom": emom}
    )


def _override_for(
    module: Module,
    override: Override | None,
    cardio_position: int | None,
) -> Override | None:
    if override is None:
        return None
    if override.sets:
        if cardio_position is None or cardio_position >= len(override.sets):
            return None
        return override.sets[cardio_position]
    return override


def _split_burn(module: Module) -> list[tuple[Module, str | None, int]]:
    parts = []
    for offset in range(0, len(module.exercises), BURN_PART_SIZE):
        number = offset // BURN_PART_SIZE + 1
        part = module.model_copy(
            update={
                "exercises": module.exercises[offset:offset + BURN_PART_SIZE],
                "stable_id": f"{module.identity}::part-{number}",
            }
        )
        parts.append((part, f"Part {number}", offset))
    return parts


def build_timeline(
    session: SessionDefinition,
    override: Override | None = None,
    *,
    split_burn_blocks: bool | None = None,
    default_time_cap_seconds: int | None = None,
    default_emom_minutes: int | None = None,
) -> Timeline:
    """Build the ordered step list for one session attempt.

    Args:
        session: Read-only session definition
        override: Optional patch attached to the scheduled occurrence
        split_burn_blocks: Split BURN modules with more than two exercises
            into parts of two (defaults to settings)
        default_time_cap_seconds: Cap used when a module defines none
        default_emom_minutes: Minute-count used when an EMOM defines none

    Returns:
        Timeline whose steps are indexed in order
    """
    settings = get_settings()
    if split_burn_blocks is None:
        split_burn_blocks = settings.split_burn_blocks
    default_cap = default_time_cap_seconds or settings.default_time_cap_seconds
    default_minutes = default_emom_minutes or settings.default_emom_minutes

    session_protocol = global_protocol(session.type)
    if not session.modules:
        return Timeline(
            session_id=session.id,
            is_cardio=session.is_cardio,
            steps=[TimelineStep(index=0, type=StepType.SUMMARY)],
        )

    resolved: list[tuple[Module, BlockType]] = []
    cardio_position = 0
    for position, raw in enumerate(session.modules):
        module = resolve_module(raw, session_protocol, default_cap, default_minutes)
        if module.is_cardio_block or session.is_cardio:
            module = apply_override(module, _override_for(module, override, cardio_position))
            cardio_position += 1
        else:
            module = apply_override(module, _override_for(module, override, None))
        resolved.append((module, classify_block_type(module.name, position)))

    step_fields: list[dict] = [{"type": StepType.PLANNING, "modules": [m for m, _ in resolved]}]
    for warmup in session.warmup:
        step_fields.append({"type": StepType.WARMUP, "warmup": warmup})

    for module, block_type in resolved:
        if (
            split_burn_blocks
            and block_type == BlockType.BURN
            and len(module.exercises) > BURN_PART_SIZE
        ):
            for part, label, offset in _split_burn(module):
                step_fields.append({
                    "type": StepType.WORK,
                    "module": part,
                    "block_type": block_type,
                    "part_label": label,
                    "offset": offset,
                })
        else:
            step_fields.append({"type": StepType.WORK, "module": module, "block_type": block_type})

    step_fields.append({"type": StepType.SUMMARY})
    steps = [TimelineStep(index=i, **fields) for i, fields in enumerate(step_fields)]

    logger.debug(
        f"Built timeline for session {session.id}: {len(steps)} steps, "
        f"protocol={session_protocol.value if session_protocol else 'MIX'}"
    )
    return Timeline(session_id=session.id, is_cardio=session.is_cardio, steps=steps)
