"""
Domain models for workout logging, personal records and credits.

These models represent the core business concepts. They know how to turn
themselves into plain documents (dicts) and back, but nothing about where
those documents are stored.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

from .store import SERVER_TIMESTAMP

# Longest personal-record history kept per exercise. Oldest entries go first.
HISTORY_CAP = 50

Timestamp = Union[datetime, Any]  # datetime once committed, SERVER_TIMESTAMP while staged


class RecordValidationError(ValueError):
    """Raised when a request is rejected before touching the store."""
    pass


class CreditCounter(Enum):
    """Consumable credits kept as fields on the athlete profile."""
    SESSIONS = "sessionsRemaining"
    CONTROL_VISITS = "controlVisitsRemaining"


class SubscriptionStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


_STATUS_VALUES = {status.value for status in SubscriptionStatus}


# Role given to athletes when their subscription is approved
ATHLETE_ROLE = "user"

USERS_COLLECTION = "users"


# ---------------------------------------------------------------------------
# Document paths
# ---------------------------------------------------------------------------

def validate_identifier(value: Optional[str], label: str) -> str:
    """Identifiers become path segments, so they can't be empty or contain '/'."""
    if not value or not value.strip():
        raise RecordValidationError(f"{label} is required")
    if "/" in value:
        raise RecordValidationError(f"{label} cannot contain '/'")
    return value


def athlete_path(athlete_id: str) -> str:
    return f"{USERS_COLLECTION}/{athlete_id}"


def workouts_collection(athlete_id: str) -> str:
    return f"users/{athlete_id}/workouts"


def workout_path(athlete_id: str, workout_id: str) -> str:
    return f"{workouts_collection(athlete_id)}/{workout_id}"


def exercise_stats_path(athlete_id: str, exercise_id: str) -> str:
    return f"users/{athlete_id}/exercise_stats/{exercise_id}"


def parse_timestamp(value: Any) -> Timestamp:
    """Stores may hand back ISO strings for timestamps (e.g. JSON columns)."""
    if isinstance(value, str):
        return datetime.fromisoformat(value)
    return value


# ---------------------------------------------------------------------------
# Workouts
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ExerciseObservation:
    """
    One exercise reported in a workout, e.g. squat at 120 kg.

    The value is whatever the coach tracks as the record metric for
    the exercise (usually the heaviest weight lifted).
    """
    exercise_id: str
    exercise_name: str
    value: float

    def __post_init__(self) -> None:
        validate_identifier(self.exercise_id, "exercise_id")
        # bool is an int subclass but never a meaningful lift
        if isinstance(self.value, bool) or not isinstance(self.value, (int, float)):
            raise RecordValidationError("Observation value must be a number")
        if not math.isfinite(self.value):
            raise RecordValidationError("Observation value must be finite")

    def to_document(self) -> dict[str, Any]:
        return {"id": self.exercise_id, "name": self.exercise_name, "value": self.value}

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> "ExerciseObservation":
        return cls(
            exercise_id=data["id"],
            exercise_name=data.get("name", ""),
            value=data["value"],
        )


@dataclass
class WorkoutRecord:
    """
    A logged training session.

    Created exactly once and never modified afterwards. The timestamp is
    assigned by the store when the logging transaction commits.
    """
    id: str
    athlete_id: str
    logged_by: str
    is_proxy: bool
    payload: dict[str, Any] = field(default_factory=dict)
    exercises: list[ExerciseObservation] = field(default_factory=list)
    timestamp: Timestamp = SERVER_TIMESTAMP

    def to_document(self) -> dict[str, Any]:
        return {
            "payload": self.payload,
            "exercises": [obs.to_document() for obs in self.exercises],
            "athleteId": self.athlete_id,
            "loggedBy": self.logged_by,
            "isProxy": self.is_proxy,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_document(cls, workout_id: str, data: dict[str, Any]) -> "WorkoutRecord":
        return cls(
            id=workout_id,
            athlete_id=data["athleteId"],
            logged_by=data["loggedBy"],
            is_proxy=bool(data.get("isProxy", False)),
            payload=data.get("payload") or {},
            exercises=[ExerciseObservation.from_document(obs) for obs in data.get("exercises", [])],
            timestamp=parse_timestamp(data.get("timestamp")),
        )


# ---------------------------------------------------------------------------
# Personal records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RecordMilestone:
    """A point where the athlete beat their previous best."""
    timestamp: Timestamp
    value: float

    def to_document(self) -> dict[str, Any]:
        return {"timestamp": self.timestamp, "value": self.value}

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> "RecordMilestone":
        return cls(timestamp=parse_timestamp(data.get("timestamp")), value=data["value"])


@dataclass
class ExerciseRecordState:
    """
    Personal-record tracking for one athlete and one exercise.

    current_best is always the largest value in history. History is
    append-only and capped at HISTORY_CAP entries (oldest evicted first).
    """
    exercise_id: str
    exercise_name: str
    current_best: Optional[float] = None
    history: list[RecordMilestone] = field(default_factory=list)
    last_workout_ref: Optional[str] = None

    def to_document(self) -> dict[str, Any]:
        return {
            "name": self.exercise_name,
            "currentBest": self.current_best,
            "history": [milestone.to_document() for milestone in self.history],
            "lastWorkoutRef": self.last_workout_ref,
        }

    @classmethod
    def from_document(cls, exercise_id: str, data: dict[str, Any]) -> "ExerciseRecordState":
        return cls(
            exercise_id=exercise_id,
            exercise_name=data.get("name", ""),
            current_best=data.get("currentBest"),
            history=[RecordMilestone.from_document(entry) for entry in data.get("history") or []],
            last_workout_ref=data.get("lastWorkoutRef"),
        )


@dataclass(frozen=True)
class RecordEvaluation:
    """Outcome of evaluating one observation against the existing record."""
    state: ExerciseRecordState
    is_new_record: bool


# ---------------------------------------------------------------------------
# Credits
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ConsumeResult:
    """
    Result of consuming one credit.

    An empty counter is an expected outcome, not an error, so callers
    must check is_empty before treating the credit as used.
    """
    counter: CreditCounter
    remaining: int
    is_empty: bool = False

    @classmethod
    def consumed(cls, counter: CreditCounter, remaining: int) -> "ConsumeResult":
        return cls(counter=counter, remaining=remaining)

    @classmethod
    def empty(cls, counter: CreditCounter) -> "ConsumeResult":
        return cls(counter=counter, remaining=0, is_empty=True)


def counter_value(data: Optional[dict[str, Any]], counter: CreditCounter) -> int:
    """Missing profile or missing field both mean no credits."""
    if not data:
        return 0
    value = data.get(counter.value)
    if isinstance(value, bool) or not isinstance(value, int):
        return 0
    return value


@dataclass
class AthleteProfile:
    """An athlete as the coach panel lists them."""
    athlete_id: str
    status: Optional[SubscriptionStatus] = None
    role: Optional[str] = None
    credits: dict[CreditCounter, int] = field(default_factory=dict)

    @classmethod
    def from_document(cls, athlete_id: str, data: dict[str, Any]) -> "AthleteProfile":
        status = data.get("status")
        return cls(
            athlete_id=athlete_id,
            status=SubscriptionStatus(status) if status in _STATUS_VALUES else None,
            role=data.get("role"),
            credits={counter: counter_value(data, counter) for counter in CreditCounter},
        )

