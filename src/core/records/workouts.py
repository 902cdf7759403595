"""
Workout logging with personal-record updates.

Logging a workout touches several documents: the workout itself and one
exercise record per reported exercise. They are written in a single
optimistic transaction so a workout never exists without its record
updates, and a record never reflects a workout that wasn't saved.

Two writers commonly race here: a coach logging on an athlete's behalf
and the athlete logging from their own device. The loser of a race
re-reads and re-evaluates instead of overwriting the winner's record.
"""

import logging
from typing import Any, Optional, Sequence

from ..events import EVENT_WORKOUT_LOGGED, EventBus
from .models import (
    ExerciseObservation,
    ExerciseRecordState,
    RecordMilestone,
    RecordValidationError,
    WorkoutRecord,
    exercise_stats_path,
    validate_identifier,
    workout_path,
    workouts_collection,
)
from .store import SERVER_TIMESTAMP, DocumentStore, Transaction, run_transaction
from .tracker import PersonalRecordTracker

logger = logging.getLogger(__name__)


class WorkoutLogger:
    """
    Coordinates storing a workout and updating exercise records.

    Stateless apart from its dependencies; safe to share between
    requests and threads.
    """

    def __init__(
        self,
        store: DocumentStore,
        tracker: Optional[PersonalRecordTracker] = None,
        max_attempts: int = 5,
        backoff_seconds: float = 0.0,
        events: Optional[EventBus] = None,
    ) -> None:
        self._store = store
        self._tracker = tracker or PersonalRecordTracker()
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds
        self._events = events

    def log_workout(
        self,
        athlete_id: str,
        submitter_id: str,
        payload: dict[str, Any],
        observations: Sequence[ExerciseObservation],
        is_proxy: bool,
    ) -> str:
        """
        Store a workout and update the athlete's personal records.

        Args:
            athlete_id: Athlete who owns the workout
            submitter_id: Who submitted it (the athlete, or a coach as proxy)
            payload: Free-form workout details as submitted
            observations: Per-exercise values, processed in the given order
            is_proxy: True when a coach logs on the athlete's behalf

        Returns:
            The new workout's identifier

        Raises:
            RecordValidationError: Invalid input, nothing was read or written
            TransactionAbortedError: Kept conflicting with concurrent writers
            StoreUnavailableError: The store could not be reached
        """
        self._validate(athlete_id, submitter_id, observations, is_proxy)

        # Generated once so every retry writes the same workout document
        workout_id = self._store.new_id()
        workout = WorkoutRecord(
            id=workout_id,
            athlete_id=athlete_id,
            logged_by=submitter_id,
            is_proxy=is_proxy,
            payload=dict(payload or {}),
            exercises=list(observations),
        )

        def body(transaction: Transaction) -> int:
            transaction.create(workout_path(athlete_id, workout_id), workout.to_document())

            states: dict[str, Optional[ExerciseRecordState]] = {}
            new_records = 0

            for observation in observations:
                path = exercise_stats_path(athlete_id, observation.exercise_id)

                if observation.exercise_id not in states:
                    snapshot = transaction.get(path)
                    states[observation.exercise_id] = (
                        ExerciseRecordState.from_document(observation.exercise_id, snapshot.data)
                        if snapshot.exists else None
                    )

                evaluation = self._tracker.evaluate(
                    states[observation.exercise_id],
                    observation,
                    occurred_at=SERVER_TIMESTAMP,
                    workout_ref=workout_id,
                )
                states[observation.exercise_id] = evaluation.state
                if evaluation.is_new_record:
                    new_records += 1

            for exercise_id, state in states.items():
                transaction.set(exercise_stats_path(athlete_id, exercise_id), state.to_document())

            return new_records

        new_records = run_transaction(
            self._store,
            body,
            max_attempts=self._max_attempts,
            backoff_seconds=self._backoff_seconds,
        )

        logger.info(
            "Workout logged",
            extra={
                "athlete_id": athlete_id,
                "workout_id": workout_id,
                "is_proxy": is_proxy,
                "exercise_count": len(observations),
                "new_records": new_records,
            }
        )

        if self._events:
            self._events.emit(
                EVENT_WORKOUT_LOGGED,
                athlete_id=athlete_id,
                workout_id=workout_id,
                is_proxy=is_proxy,
            )

        return workout_id

    def get_exercise_record(
        self,
        athlete_id: str,
        exercise_id: str,
    ) -> Optional[ExerciseRecordState]:
        """Current personal record for an exercise, or None if never logged."""
        validate_identifier(athlete_id, "athlete_id")
        validate_identifier(exercise_id, "exercise_id")

        snapshot = self._store.read(exercise_stats_path(athlete_id, exercise_id))
        if not snapshot.exists:
            return None
        return ExerciseRecordState.from_document(exercise_id, snapshot.data)

    def get_progression(self, athlete_id: str, exercise_id: str) -> list[RecordMilestone]:
        """Record milestones in chronological order, ready for charting."""
        state = self.get_exercise_record(athlete_id, exercise_id)
        return list(state.history) if state else []

    def list_workouts(self, athlete_id: str, limit: int = 50) -> list[WorkoutRecord]:
        """Most recent workouts first."""
        validate_identifier(athlete_id, "athlete_id")
        if limit < 1:
            raise RecordValidationError("limit must be positive")

        snapshots = self._store.list_collection(
            workouts_collection(athlete_id),
            order_by="timestamp",
            descending=True,
            limit=limit,
        )
        return [
            WorkoutRecord.from_document(snapshot.path.rsplit("/", 1)[-1], snapshot.data)
            for snapshot in snapshots
        ]

    # -----------------------------------------------------------------------
    # Private Methods
    # -----------------------------------------------------------------------

    def _validate(
        self,
        athlete_id: str,
        submitter_id: str,
        observations: Sequence[ExerciseObservation],
        is_proxy: bool,
    ) -> None:
        validate_identifier(athlete_id, "athlete_id")
        validate_identifier(submitter_id, "submitter_id")

        if not observations:
            raise RecordValidationError("A workout must report at least one exercise")

        # The flag is explicit; the identities only have to agree with it
        if is_proxy and submitter_id == athlete_id:
            raise RecordValidationError("An athlete cannot log a proxy workout for themselves")
        if not is_proxy and submitter_id != athlete_id:
            raise RecordValidationError("Workouts submitted for another athlete must be marked as proxy")
