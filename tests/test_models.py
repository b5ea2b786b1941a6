import datetime
import os
import sqlite3
import sys

import pytest
from pydantic import ValidationError

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from errors import ConstraintViolation, StorageUnavailable, translate_sqlite_error
from models import (
    PersonalRecord,
    RecordType,
    TemplateExercise,
    Workout,
    WorkoutExercise,
    WorkoutSet,
    WorkoutTemplate,
    from_iso,
    merge_duplicate_exercises,
    split_list,
    to_iso,
)


def _exercise(eid, *weights, notes=None):
    return WorkoutExercise(
        exercise_id=eid,
        exercise_name=eid.title(),
        notes=notes,
        sets=[WorkoutSet(weight=w, reps=5) for w in weights],
    )


def test_merge_duplicates_keeps_first_occurrence():
    original = [_exercise("bench", 60), _exercise("row", 50, notes="slow"), _exercise("bench", 70, 75, notes="paused")]
    merged = merge_duplicate_exercises(original)
    assert [e.exercise_id for e in merged] == ["bench", "row"]
    assert [e.order_index for e in merged] == [0, 1]
    assert [s.weight for s in merged[0].sets] == [60, 70, 75]
    assert [s.set_number for s in merged[0].sets] == [1, 2, 3]
    assert merged[0].notes == "paused"
    assert merged[1].notes == "slow"
    assert len(original[0].sets) == 1


def test_merge_without_duplicates_only_renumbers():
    merged = merge_duplicate_exercises([_exercise("a", 10), _exercise("b", 20)])
    assert [(e.exercise_id, e.order_index) for e in merged] == [("a", 0), ("b", 1)]
    assert merge_duplicate_exercises([]) == []


def test_set_validation():
    with pytest.raises(ValidationError):
        WorkoutSet(weight=-1, reps=5)
    with pytest.raises(ValidationError):
        WorkoutSet(weight=10, reps=0)
    assert WorkoutSet(weight=0, reps=10).volume == 0


def test_template_rep_range():
    with pytest.raises(ValidationError):
        TemplateExercise(exercise_id="x", exercise_name="X", suggested_reps_min=12, suggested_reps_max=8)


def test_template_to_workout():
    template = WorkoutTemplate(
        owner_id="system_templates",
        name="Legs",
        exercises=[TemplateExercise(exercise_id="squat", exercise_name="Squat", body_parts=["upper legs"])],
    )
    workout = template.to_workout("u1")
    assert workout.owner_id == "u1"
    assert workout.name == "Legs"
    assert workout.planned_duration_minutes == 45
    assert workout.exercises[0].sets == []
    assert template.is_system


def test_naive_timestamps_are_utc():
    naive = datetime.datetime(2024, 1, 1, 12, 0)
    workout = Workout(owner_id="u1", name="W", created_at=naive)
    assert workout.created_at.tzinfo == datetime.timezone.utc
    assert to_iso(naive) == "2024-01-01T12:00:00.000000+00:00"
    assert from_iso(to_iso(naive)) == workout.created_at
    assert from_iso(None) is None


def test_record_from_set():
    s = WorkoutSet(weight=100, reps=5)
    reps = PersonalRecord.from_set(s, RecordType.REPS, "bench", "Bench", "u1")
    assert (reps.value, reps.secondary_value) == (5.0, 100.0)
    volume = PersonalRecord.from_set(s, RecordType.VOLUME, "bench", "Bench", "u1")
    assert (volume.value, volume.secondary_value) == (500.0, None)


def test_split_list():
    assert split_list("chest| shoulders||") == ["chest", "shoulders"]
    assert split_list(None) == []


def test_sqlite_error_translation():
    assert isinstance(translate_sqlite_error(sqlite3.IntegrityError("dup")), ConstraintViolation)
    assert isinstance(translate_sqlite_error(sqlite3.OperationalError("locked")), StorageUnavailable)
