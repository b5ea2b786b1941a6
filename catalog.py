from __future__ import annotations

from typing import Dict, Iterable, List, Protocol

from pydantic import BaseModel, Field


class ExerciseInfo(BaseModel):
    """Catalog metadata snapshotted into workouts and templates."""

    id: str
    name: str
    body_parts: List[str] = Field(default_factory=list)
    equipment: List[str] = Field(default_factory=list)


class ExerciseCatalog(Protocol):
    def lookup_by_ids(self, ids: Iterable[str]) -> List[ExerciseInfo]:
        ...


class InMemoryExerciseCatalog:
    """Dictionary backed catalog. Unknown ids are skipped."""

    def __init__(self, exercises: Iterable[ExerciseInfo] = ()) -> None:
        self._by_id: Dict[str, ExerciseInfo] = {e.id: e for e in exercises}

    def add(self, exercise: ExerciseInfo) -> None:
        self._by_id[exercise.id] = exercise

    def lookup_by_ids(self, ids: Iterable[str]) -> List[ExerciseInfo]:
        return [self._by_id[i] for i in ids if i in self._by_id]


DEFAULT_EXERCISES = [
    ExerciseInfo(id="bench_press", name="Bench Press", body_parts=["chest", "shoulders", "upper arms"], equipment=["barbell"]),
    ExerciseInfo(id="incline_dumbbell_press", name="Incline Dumbbell Press", body_parts=["chest", "shoulders"], equipment=["dumbbell"]),
    ExerciseInfo(id="push_up", name="Push Up", body_parts=["chest", "upper arms"], equipment=["body weight"]),
    ExerciseInfo(id="squat", name="Barbell Squat", body_parts=["upper legs"], equipment=["barbell"]),
    ExerciseInfo(id="romanian_deadlift", name="Romanian Deadlift", body_parts=["upper legs", "back"], equipment=["barbell"]),
    ExerciseInfo(id="lunge", name="Walking Lunge", body_parts=["upper legs"], equipment=["dumbbell"]),
    ExerciseInfo(id="calf_raise", name="Standing Calf Raise", body_parts=["lower legs"], equipment=["machine"]),
    ExerciseInfo(id="pull_up", name="Pull Up", body_parts=["back", "upper arms"], equipment=["body weight"]),
    ExerciseInfo(id="barbell_row", name="Barbell Row", body_parts=["back"], equipment=["barbell"]),
    ExerciseInfo(id="lat_pulldown", name="Lat Pulldown", body_parts=["back"], equipment=["cable"]),
    ExerciseInfo(id="overhead_press", name="Overhead Press", body_parts=["shoulders", "upper arms"], equipment=["barbell"]),
    ExerciseInfo(id="lateral_raise", name="Lateral Raise", body_parts=["shoulders"], equipment=["dumbbell"]),
    ExerciseInfo(id="face_pull", name="Face Pull", body_parts=["shoulders", "back"], equipment=["cable"]),
    ExerciseInfo(id="barbell_curl", name="Barbell Curl", body_parts=["upper arms"], equipment=["barbell"]),
    ExerciseInfo(id="triceps_pushdown", name="Triceps Pushdown", body_parts=["upper arms"], equipment=["cable"]),
    ExerciseInfo(id="hammer_curl", name="Hammer Curl", body_parts=["upper arms", "lower arms"], equipment=["dumbbell"]),
]


def default_catalog() -> InMemoryExerciseCatalog:
    return InMemoryExerciseCatalog(DEFAULT_EXERCISES)
