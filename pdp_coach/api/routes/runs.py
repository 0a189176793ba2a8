"""API routes driving a session run step by step."""
from fastapi import APIRouter, Depends, Request, Response, status

from pdp_coach.api.routes.dependencies import (
    RunnerFactory,
    RunRegistry,
    get_run_registry,
    get_runner_factory,
)
from pdp_coach.core.logging import get_logger
from pdp_coach.schemas.analysis import SessionAnalysis
from pdp_coach.schemas.base import APIResponse, ResponseMeta
from pdp_coach.schemas.results import CardioRecord
from pdp_coach.schemas.runs import (
    EmomRoundUpdate,
    ExerciseNoteUpdate,
    FinishOutcome,
    HeartRateUpdate,
    LibreRoundCreate,
    LibreSetCreate,
    LibreSetUpdate,
    PlanUpdate,
    RepsUpdate,
    RunCreate,
    RunState,
    SessionFinish,
    StepCompletion,
    StepOutcome,
    StepSkip,
    WeightUpdate,
)
from pdp_coach.services.session_runner import SessionRunner

router = APIRouter()
logger = get_logger(__name__)


def _meta(request: Request) -> ResponseMeta:
    return ResponseMeta(request_id=getattr(request.state, "request_id", None))


def _state(request: Request, runner: SessionRunner) -> APIResponse[RunState]:
    return APIResponse[RunState](
        data=RunState.model_validate(runner.snapshot()),
        meta=_meta(request),
    )


def _runner(run_id: str, registry: RunRegistry = Depends(get_run_registry)) -> SessionRunner:
    return registry.get(run_id)


@router.post("", response_model=APIResponse[RunState], status_code=status.HTTP_201_CREATED)
async def create_run(
    payload: RunCreate,
    request: Request,
    registry: RunRegistry = Depends(get_run_registry),
    factory: RunnerFactory = Depends(get_runner_factory),
):
    """Build the timeline for a session and enter its first step."""
    runner = factory(payload)
    try:
        await runner.begin()
    except Exception:
        await runner.exit()
        raise
    registry.add(runner)
    logger.info("Run created", run_id=runner.run_id, session_id=payload.session.id)
    return _state(request, runner)


@router.get("/{run_id}", response_model=APIResponse[RunState])
async def get_run(request: Request, runner: SessionRunner = Depends(_runner)):
    return _state(request, runner)


@router.post("/{run_id}/advance", response_model=APIResponse[RunState])
async def advance(request: Request, runner: SessionRunner = Depends(_runner)):
    """Move on from PLANNING or a WARMUP step."""
    await runner.advance()
    return _state(request, runner)


@router.post("/{run_id}/plan", response_model=APIResponse[RunState])
async def update_plan(payload: PlanUpdate, request: Request, runner: SessionRunner = Depends(_runner)):
    runner.update_plan(payload.module_id, payload.exercise_index, payload.weight)
    return _state(request, runner)


# -- timer ---------------------------------------------------------------


@router.post("/{run_id}/timer/start", response_model=APIResponse[RunState])
async def start_timer(request: Request, runner: SessionRunner = Depends(_runner)):
    await runner.start_timer()
    return _state(request, runner)


@router.post("/{run_id}/timer/pause", response_model=APIResponse[RunState])
async def pause_timer(request: Request, runner: SessionRunner = Depends(_runner)):
    await runner.pause_timer()
    return _state(request, runner)


@router.post("/{run_id}/timer/reset", response_model=APIResponse[RunState])
async def reset_timer(request: Request, runner: SessionRunner = Depends(_runner)):
    await runner.reset_timer()
    return _state(request, runner)


@router.post("/{run_id}/rest/skip", response_model=APIResponse[RunState])
async def skip_rest(request: Request, runner: SessionRunner = Depends(_runner)):
    await runner.skip_rest()
    return _state(request, runner)


# -- draft ---------------------------------------------------------------


@router.post("/{run_id}/reps", response_model=APIResponse[RunState])
async def update_reps(payload: RepsUpdate, request: Request, runner: SessionRunner = Depends(_runner)):
    """Set reps, or increment them by ``delta`` (default +1)."""
    if payload.reps is not None:
        runner.set_reps(payload.exercise_index, payload.reps)
    else:
        runner.increment_reps(payload.exercise_index, payload.delta if payload.delta is not None else 1)
    return _state(request, runner)


@router.post("/{run_id}/weights", response_model=APIResponse[RunState])
async def update_weight(payload: WeightUpdate, request: Request, runner: SessionRunner = Depends(_runner)):
    if payload.delta is not None:
        runner.adjust_weight(payload.exercise_index, payload.delta)
    else:
        runner.set_weight(payload.exercise_index, payload.weight)
    return _state(request, runner)


@router.post("/{run_id}/emom-rounds", response_model=APIResponse[RunState])
async def update_emom_round(payload: EmomRoundUpdate, request: Request, runner: SessionRunner = Depends(_runner)):
    if payload.toggle:
        runner.toggle_emom_round(payload.round)
    else:
        runner.set_emom_round(payload.round, payload.outcome)
    return _state(request, runner)


@router.post("/{run_id}/libre-sets", response_model=APIResponse[RunState])
async def complete_libre_set(payload: LibreSetCreate, request: Request, runner: SessionRunner = Depends(_runner)):
    await runner.complete_libre_set(
        payload.exercise_index,
        payload.reps,
        payload.weight,
        start_rest=payload.start_rest,
    )
    return _state(request, runner)


@router.post("/{run_id}/libre-rounds", response_model=APIResponse[RunState])
async def complete_libre_round(payload: LibreRoundCreate, request: Request, runner: SessionRunner = Depends(_runner)):
    """Log one set for each exercise of a superset group and start the round rest."""
    await runner.complete_libre_round(payload.group_index, payload.rest_seconds)
    return _state(request, runner)


@router.patch("/{run_id}/libre-sets/{exercise_index}/{set_index}", response_model=APIResponse[RunState])
async def update_libre_set(
    exercise_index: int,
    set_index: int,
    payload: LibreSetUpdate,
    request: Request,
    runner: SessionRunner = Depends(_runner),
):
    runner.update_libre_set(exercise_index, set_index, payload.reps, payload.weight)
    return _state(request, runner)


@router.delete("/{run_id}/libre-sets/{exercise_index}", response_model=APIResponse[RunState])
async def undo_libre_set(
    exercise_index: int,
    request: Request,
    set_index: int | None = None,
    runner: SessionRunner = Depends(_runner),
):
    runner.undo_libre_set(exercise_index, set_index)
    return _state(request, runner)


@router.post("/{run_id}/heart-rate", response_model=APIResponse[RunState])
async def update_heart_rate(payload: HeartRateUpdate, request: Request, runner: SessionRunner = Depends(_runner)):
    runner.set_heart_rate(payload.exercise_index, payload.bpm)
    return _state(request, runner)


@router.post("/{run_id}/notes", response_model=APIResponse[RunState])
async def update_note(payload: ExerciseNoteUpdate, request: Request, runner: SessionRunner = Depends(_runner)):
    runner.set_exercise_note(payload.exercise_index, payload.note)
    return _state(request, runner)


@router.post("/{run_id}/cardio", response_model=APIResponse[RunState])
async def record_cardio(payload: CardioRecord, request: Request, runner: SessionRunner = Depends(_runner)):
    runner.record_cardio(payload)
    return _state(request, runner)


# -- completion ------------------------------------------------------------


@router.post("/{run_id}/complete", response_model=APIResponse[StepOutcome])
async def complete_step(payload: StepCompletion, request: Request, runner: SessionRunner = Depends(_runner)):
    """Finalize the current WORK step.

    An empty draft returns ``needs_confirmation`` until the request is
    repeated with ``confirm_empty``.
    """
    outcome = await runner.complete_step(payload.feedback, confirm_empty=payload.confirm_empty)
    return APIResponse[StepOutcome](data=outcome, meta=_meta(request))


@router.post("/{run_id}/skip", response_model=APIResponse[StepOutcome])
async def skip_step(payload: StepSkip, request: Request, runner: SessionRunner = Depends(_runner)):
    outcome = await runner.skip_step(payload.feedback)
    return APIResponse[StepOutcome](data=outcome, meta=_meta(request))


@router.post("/{run_id}/retry", response_model=APIResponse[RunState])
async def retry_pending_writes(request: Request, runner: SessionRunner = Depends(_runner)):
    await runner.retry_pending_writes()
    return _state(request, runner)


@router.post("/{run_id}/analysis", response_model=APIResponse[SessionAnalysis])
async def analyze(request: Request, runner: SessionRunner = Depends(_runner)):
    await runner.wait_for_history()
    return APIResponse[SessionAnalysis](data=runner.analyze(), meta=_meta(request))


@router.post("/{run_id}/finish", response_model=APIResponse[FinishOutcome])
async def finish_session(
    payload: SessionFinish,
    request: Request,
    runner: SessionRunner = Depends(_runner),
    registry: RunRegistry = Depends(get_run_registry),
):
    """Save the session feedback, update the schedule and notify the coach."""
    outcome = await runner.finish_session(feedback=payload.feedback)
    registry.remove(runner.run_id)
    meta = _meta(request)
    if not outcome.schedule_updated and runner.state.schedule_task_id is not None:
        meta.warnings.append("Schedule could not be updated")
    if not outcome.notification_sent:
        meta.warnings.append("Coach was not notified")
    return APIResponse[FinishOutcome](data=outcome, meta=meta)


@router.delete("/{run_id}", status_code=status.HTTP_204_NO_CONTENT)
async def exit_run(run_id: str, registry: RunRegistry = Depends(get_run_registry)):
    """Abandon a run: stops timers and discards unfinalized drafts."""
    runner = registry.get(run_id)
    await runner.exit()
    registry.remove(run_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
