"""
Workout logging API endpoints.

Coaches log workouts on behalf of their athletes (proxy logging) and
athletes log their own. Either way, the workout and the athlete's
personal records are saved together or not at all.

Read endpoints expose the records for progress charts.

Handlers are sync functions: store calls and retry backoff block, so they
run in FastAPI's threadpool.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, Field

from ...core.records.models import (
    ExerciseObservation,
    ExerciseRecordState,
    RecordMilestone,
)
from ..dependencies import AuthenticatedUser, SubmitterId, WorkoutLoggerDep
from ..errors import HANDLED_ERRORS, to_http_exception

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------

class ObservationItem(BaseModel):
    """One exercise result reported in a workout."""
    id: str = Field(description="Exercise identifier, e.g. 'squat'", min_length=1)
    name: str = Field(default="", description="Display name, e.g. 'Back Squat'")
    value: float = Field(description="Record metric for this workout (usually top weight)")


class LogWorkoutRequest(BaseModel):
    """Request to log a workout."""
    exercises: list[ObservationItem] = Field(
        description="Exercises performed, processed in the given order",
        min_length=1,
    )
    payload: dict[str, Any] = Field(
        default_factory=dict,
        description="Free-form workout details (sets, reps, notes)",
    )
    is_proxy: bool = Field(
        default=False,
        description="True when a coach logs the workout on the athlete's behalf",
    )


class LogWorkoutResponse(BaseModel):
    """Response after a workout was logged."""
    logged: bool = Field(description="Whether the workout was saved")
    workout_id: str = Field(description="Identifier of the new workout")
    is_proxy: bool = Field(description="Whether it was logged by a coach")


class MilestoneItem(BaseModel):
    """A personal-record milestone."""
    timestamp: Optional[datetime] = Field(None, description="When the record was set")
    value: float = Field(description="Record value")


class ExerciseRecordResponse(BaseModel):
    """Current personal record for an exercise."""
    exercise_id: str
    exercise_name: str
    current_best: Optional[float] = None
    last_workout_ref: Optional[str] = None
    history: list[MilestoneItem] = Field(default_factory=list)


class ProgressionResponse(BaseModel):
    """Record milestones for charting."""
    exercise_id: str
    history: list[MilestoneItem]


class WorkoutItem(BaseModel):
    """A logged workout."""
    workout_id: str
    logged_by: str
    is_proxy: bool
    timestamp: Optional[datetime] = None
    exercises: list[ObservationItem]
    payload: dict[str, Any]


class WorkoutListResponse(BaseModel):
    workouts: list[WorkoutItem]
    total: int


def _milestones(history: list[RecordMilestone]) -> list[MilestoneItem]:
    return [MilestoneItem(timestamp=m.timestamp, value=m.value) for m in history]


def _record_response(state: ExerciseRecordState) -> ExerciseRecordResponse:
    return ExerciseRecordResponse(
        exercise_id=state.exercise_id,
        exercise_name=state.exercise_name,
        current_best=state.current_best,
        last_workout_ref=state.last_workout_ref,
        history=_milestones(state.history),
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/{athlete_id}/workouts",
    response_model=LogWorkoutResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Log a workout",
    description="Save a workout and update the athlete's personal records atomically",
)
def log_workout(
    athlete_id: str,
    request: LogWorkoutRequest,
    submitter_id: SubmitterId,
    api_key: AuthenticatedUser,
    workout_logger: WorkoutLoggerDep,
) -> LogWorkoutResponse:
    """
    Log a workout for an athlete.

    The submitter comes from X-User-Id. When it differs from the athlete,
    the request must set is_proxy (a coach logging on their behalf).

    Returns 409 if the workout kept colliding with concurrent updates and
    503 if the store is unreachable. In both cases nothing was saved.
    """
    logger.info(
        "Logging workout",
        extra={
            "athlete_id": athlete_id,
            "submitter_id": submitter_id,
            "is_proxy": request.is_proxy,
            "exercise_count": len(request.exercises),
        }
    )

    try:
        observations = [
            ExerciseObservation(exercise_id=item.id, exercise_name=item.name, value=item.value)
            for item in request.exercises
        ]

        workout_id = workout_logger.log_workout(
            athlete_id=athlete_id,
            submitter_id=submitter_id,
            payload=request.payload,
            observations=observations,
            is_proxy=request.is_proxy,
        )
    except HANDLED_ERRORS as e:
        raise to_http_exception(e, "log workout")

    return LogWorkoutResponse(logged=True, workout_id=workout_id, is_proxy=request.is_proxy)


@router.get(
    "/{athlete_id}/workouts",
    response_model=WorkoutListResponse,
    status_code=status.HTTP_200_OK,
    summary="List recent workouts",
)
def list_workouts(
    athlete_id: str,
    api_key: AuthenticatedUser,
    workout_logger: WorkoutLoggerDep,
    limit: int = Query(default=50, ge=1, le=200),
) -> WorkoutListResponse:
    """Most recent workouts first."""
    try:
        workouts = workout_logger.list_workouts(athlete_id, limit=limit)
    except HANDLED_ERRORS as e:
        raise to_http_exception(e, "list workouts")

    items = [
        WorkoutItem(
            workout_id=workout.id,
            logged_by=workout.logged_by,
            is_proxy=workout.is_proxy,
            timestamp=workout.timestamp,
            exercises=[
                ObservationItem(id=obs.exercise_id, name=obs.exercise_name, value=obs.value)
                for obs in workout.exercises
            ],
            payload=workout.payload,
        )
        for workout in workouts
    ]
    return WorkoutListResponse(workouts=items, total=len(items))


@router.get(
    "/{athlete_id}/exercises/{exercise_id}",
    response_model=ExerciseRecordResponse,
    status_code=status.HTTP_200_OK,
    summary="Get personal record",
    description="Current best and record history for one exercise",
)
def get_exercise_record(
    athlete_id: str,
    exercise_id: str,
    api_key: AuthenticatedUser,
    workout_logger: WorkoutLoggerDep,
) -> ExerciseRecordResponse:
    try:
        state = workout_logger.get_exercise_record(athlete_id, exercise_id)
    except HANDLED_ERRORS as e:
        raise to_http_exception(e, "load exercise record")

    if state is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No record for this exercise yet",
        )

    return _record_response(state)


@router.get(
    "/{athlete_id}/exercises/{exercise_id}/progression",
    response_model=ProgressionResponse,
    status_code=status.HTTP_200_OK,
    summary="Get record progression",
    description="Record milestones in chronological order (empty if none)",
)
def get_progression(
    athlete_id: str,
    exercise_id: str,
    api_key: AuthenticatedUser,
    workout_logger: WorkoutLoggerDep,
) -> ProgressionResponse:
    try:
        history = workout_logger.get_progression(athlete_id, exercise_id)
    except HANDLED_ERRORS as e:
        raise to_http_exception(e, "load progression")

    return ProgressionResponse(exercise_id=exercise_id, history=_milestones(history))
