"""
Unit tests for the record domain models.

These tests verify the core business objects without touching
external services (no database, no network, no file system).

Testing philosophy:
- Test behavior, not implementation
- Each test should have a clear "given/when/then" structure
- Use descriptive names that explain what we're testing
- Prefer real objects over mocks where practical
"""

from datetime import datetime, timezone

import pytest

from src.core.records.models import (
    ConsumeResult,
    CreditCounter,
    ExerciseObservation,
    ExerciseRecordState,
    RecordMilestone,
    RecordValidationError,
    WorkoutRecord,
    athlete_path,
    exercise_stats_path,
    validate_identifier,
    workout_path,
)
from src.core.records.store import SERVER_TIMESTAMP


# ---------------------------------------------------------------------------
# Observation Tests
# ---------------------------------------------------------------------------

class TestExerciseObservation:
    """Tests for the ExerciseObservation value object."""

    def test_accepts_integer_and_float_values(self):
        """Weights come in as ints or floats depending on the client."""
        assert ExerciseObservation("squat", "Squat", 100).value == 100
        assert ExerciseObservation("bench", "Bench", 82.5).value == 82.5

    def test_rejects_empty_exercise_id(self):
        with pytest.raises(RecordValidationError, match="exercise_id"):
            ExerciseObservation("", "Squat", 100)

    def test_rejects_exercise_id_with_slash(self):
        """Ids become document path segments."""
        with pytest.raises(RecordValidationError, match="cannot contain"):
            ExerciseObservation("squat/front", "Front Squat", 100)

    def test_rejects_non_finite_value(self):
        with pytest.raises(RecordValidationError, match="finite"):
            ExerciseObservation("squat", "Squat", float("nan"))

    def test_rejects_boolean_value(self):
        """True is an int in Python but never a lift."""
        with pytest.raises(RecordValidationError, match="number"):
            ExerciseObservation("squat", "Squat", True)


# ---------------------------------------------------------------------------
# Document Mapping Tests
# ---------------------------------------------------------------------------

class TestDocumentMapping:
    """Tests for translating models to and from stored documents."""

    def test_exercise_record_document_uses_stored_field_names(self):
        """The stored shape is what other clients of the database read."""
        when = datetime(2024, 5, 1, tzinfo=timezone.utc)
        state = ExerciseRecordState(
            exercise_id="squat",
            exercise_name="Squat",
            current_best=120,
            history=[RecordMilestone(timestamp=when, value=120)],
            last_workout_ref="w1",
        )

        document = state.to_document()

        assert document == {
            "name": "Squat",
            "currentBest": 120,
            "history": [{"timestamp": when, "value": 120}],
            "lastWorkoutRef": "w1",
        }

    def test_exercise_record_parses_iso_timestamps(self):
        """JSON-backed stores hand timestamps back as strings."""
        state = ExerciseRecordState.from_document("squat", {
            "name": "Squat",
            "currentBest": 100,
            "history": [{"timestamp": "2024-05-01T10:00:00+00:00", "value": 100}],
            "lastWorkoutRef": "w1",
        })

        assert state.history[0].timestamp == datetime(2024, 5, 1, 10, tzinfo=timezone.utc)
        assert state.current_best == 100

    def test_new_workout_timestamp_is_server_assigned(self):
        """Until commit, the workout carries the server timestamp placeholder."""
        workout = WorkoutRecord(id="w1", athlete_id="a1", logged_by="coach", is_proxy=True)

        assert workout.to_document()["timestamp"] is SERVER_TIMESTAMP

    def test_workout_document_keeps_submitter_and_proxy_flag(self):
        workout = WorkoutRecord(
            id="w1",
            athlete_id="a1",
            logged_by="coach-7",
            is_proxy=True,
            payload={"notes": "heavy day"},
            exercises=[ExerciseObservation("squat", "Squat", 140)],
        )

        restored = WorkoutRecord.from_document("w1", workout.to_document())

        assert restored.logged_by == "coach-7"
        assert restored.is_proxy is True
        assert restored.payload == {"notes": "heavy day"}
        assert restored.exercises == [ExerciseObservation("squat", "Squat", 140)]


# ---------------------------------------------------------------------------
# Path and Result Tests
# ---------------------------------------------------------------------------

class TestPaths:
    """Tests for document path construction."""

    def test_paths_are_scoped_under_the_athlete(self):
        assert athlete_path("a1") == "users/a1"
        assert workout_path("a1", "w1") == "users/a1/workouts/w1"
        assert exercise_stats_path("a1", "squat") == "users/a1/exercise_stats/squat"

    @pytest.mark.parametrize("value", ["", "   ", None])
    def test_blank_identifiers_are_rejected(self, value):
        with pytest.raises(RecordValidationError, match="required"):
            validate_identifier(value, "athlete_id")


class TestConsumeResult:
    """Tests for the credit consumption result."""

    def test_empty_result_has_nothing_remaining(self):
        result = ConsumeResult.empty(CreditCounter.SESSIONS)

        assert result.is_empty
        assert result.remaining == 0

    def test_consumed_result_reports_remaining(self):
        result = ConsumeResult.consumed(CreditCounter.CONTROL_VISITS, 3)

        assert not result.is_empty
        assert result.remaining == 3
        assert result.counter is CreditCounter.CONTROL_VISITS
