"""
Personal-record (1RM) policy.

Decides whether an observation is a new record and what the exercise
record looks like afterwards. Pure: no I/O, no mutation of its inputs.
The workout logger reads the existing state and persists the result.
"""

from typing import Optional

from .models import (
    HISTORY_CAP,
    ExerciseObservation,
    ExerciseRecordState,
    RecordEvaluation,
    RecordMilestone,
    Timestamp,
)


class PersonalRecordTracker:
    """
    Evaluates observations against an athlete's best for an exercise.

    Only strictly greater values count as records; a tie leaves the
    history alone. When history grows past the cap the oldest milestone
    is dropped, even if it was an important early record.
    """

    def __init__(self, history_cap: int = HISTORY_CAP) -> None:
        if history_cap < 1:
            raise ValueError("history_cap must be at least 1")
        self._history_cap = history_cap

    @property
    def history_cap(self) -> int:
        return self._history_cap

    def evaluate(
        self,
        existing: Optional[ExerciseRecordState],
        observation: ExerciseObservation,
        occurred_at: Timestamp,
        workout_ref: str,
    ) -> RecordEvaluation:
        value = observation.value

        if existing is None:
            state = ExerciseRecordState(
                exercise_id=observation.exercise_id,
                exercise_name=observation.exercise_name,
                current_best=value,
                history=[RecordMilestone(timestamp=occurred_at, value=value)],
                last_workout_ref=workout_ref,
            )
            return RecordEvaluation(state=state, is_new_record=True)

        if existing.current_best is None or value > existing.current_best:
            history = existing.history + [RecordMilestone(timestamp=occurred_at, value=value)]
            if len(history) > self._history_cap:
                history = history[-self._history_cap:]

            state = ExerciseRecordState(
                exercise_id=existing.exercise_id,
                exercise_name=existing.exercise_name,
                current_best=value,
                history=history,
                last_workout_ref=workout_ref,
            )
            return RecordEvaluation(state=state, is_new_record=True)

        state = ExerciseRecordState(
            exercise_id=existing.exercise_id,
            exercise_name=existing.exercise_name,
            current_best=existing.current_best,
            history=list(existing.history),
            last_workout_ref=workout_ref,
        )
        return RecordEvaluation(state=state, is_new_record=False)
