from __future__ import annotations

import datetime
import uuid
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

SYSTEM_OWNER_ID = "system_templates"
DEFAULT_USER_ID = "local_user"


def new_id(prefix: str) -> str:
    """Return a collision-resistant identifier such as ``workout_<hex>``."""
    return f"{prefix}_{uuid.uuid4().hex}"


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def as_utc(value: datetime.datetime) -> datetime.datetime:
    """Return ``value`` as an aware UTC datetime, treating naive values as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


def to_iso(value: Optional[datetime.datetime]) -> Optional[str]:
    if value is None:
        return None
    return as_utc(value).isoformat(timespec="microseconds")


def from_iso(text: Optional[str]) -> Optional[datetime.datetime]:
    if not text:
        return None
    return as_utc(datetime.datetime.fromisoformat(text))


def join_list(items: List[str]) -> str:
    return "|".join(items)


def split_list(text: Optional[str]) -> List[str]:
    if not text:
        return []
    return [item.strip() for item in text.split("|") if item.strip()]


class _Model(BaseModel):
    @field_validator(
        "created_at",
        "started_at",
        "completed_at",
        "updated_at",
        "last_used_at",
        "achieved_at",
        check_fields=False,
    )
    @classmethod
    def _normalise_timestamp(cls, value):
        if isinstance(value, datetime.datetime):
            return as_utc(value)
        return value


class WorkoutStatus(str, Enum):
    PLANNED = "planned"
    IN_PROGRESS = "inProgress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TemplateDifficulty(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class TemplateCategory(str, Enum):
    CUSTOM = "custom"
    STRENGTH = "strength"
    CARDIO = "cardio"
    FULL_BODY = "fullBody"
    UPPER_BODY = "upperBody"
    LOWER_BODY = "lowerBody"
    PUSH = "push"
    PULL = "pull"
    LEGS = "legs"


class RecordType(str, Enum):
    WEIGHT = "weight"
    VOLUME = "volume"
    REPS = "reps"


class WorkoutSet(_Model):
    weight: float = Field(ge=0)
    reps: int = Field(gt=0)
    set_number: int = Field(default=1, ge=1)
    is_completed: bool = False
    completed_at: Optional[datetime.datetime] = None
    notes: Optional[str] = None
    rest_time_seconds: Optional[int] = Field(default=None, ge=0)

    @property
    def volume(self) -> float:
        return self.weight * self.reps


class WorkoutExercise(_Model):
    id: Optional[str] = None
    exercise_id: str = Field(min_length=1)
    exercise_name: str
    body_parts: List[str] = Field(default_factory=list)
    notes: Optional[str] = None
    order_index: int = Field(default=0, ge=0)
    sets: List[WorkoutSet] = Field(default_factory=list)

    @property
    def total_volume(self) -> float:
        return sum(s.volume for s in self.sets)

    @property
    def completed_sets(self) -> int:
        return sum(1 for s in self.sets if s.is_completed)

    @property
    def is_completed(self) -> bool:
        return bool(self.sets) and all(s.is_completed for s in self.sets)


class Workout(_Model):
    id: str = Field(default_factory=lambda: new_id("workout"))
    owner_id: str
    name: str
    target_body_parts: List[str] = Field(default_factory=list)
    planned_duration_minutes: int = Field(default=45, ge=0)
    status: WorkoutStatus = WorkoutStatus.PLANNED
    created_at: datetime.datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime.datetime] = None
    completed_at: Optional[datetime.datetime] = None
    notes: Optional[str] = None
    exercises: List[WorkoutExercise] = Field(default_factory=list)

    @property
    def total_volume(self) -> float:
        return sum(e.total_volume for e in self.exercises)

    @property
    def total_sets(self) -> int:
        return sum(len(e.sets) for e in self.exercises)

    @property
    def actual_duration(self) -> datetime.timedelta:
        if self.started_at is not None and self.completed_at is not None:
            return self.completed_at - self.started_at
        return datetime.timedelta(0)


class TemplateExercise(_Model):
    id: Optional[str] = None
    exercise_id: str = Field(min_length=1)
    exercise_name: str
    body_parts: List[str] = Field(default_factory=list)
    order_index: int = Field(default=0, ge=0)
    suggested_sets: int = Field(default=3, ge=1)
    suggested_reps_min: int = Field(default=8, ge=1)
    suggested_reps_max: int = Field(default=12, ge=1)
    suggested_weight: Optional[float] = Field(default=None, ge=0)
    rest_time_seconds: int = Field(default=90, ge=0)
    notes: Optional[str] = None

    @model_validator(mode="after")
    def _check_rep_range(self) -> "TemplateExercise":
        if self.suggested_reps_min > self.suggested_reps_max:
            raise ValueError("suggested_reps_min must not exceed suggested_reps_max")
        return self

    def to_workout_exercise(self) -> WorkoutExercise:
        return WorkoutExercise(
            exercise_id=self.exercise_id,
            exercise_name=self.exercise_name,
            body_parts=list(self.body_parts),
            notes=self.notes,
            order_index=self.order_index,
        )


class WorkoutTemplate(_Model):
    id: str = Field(default_factory=lambda: new_id("template"))
    owner_id: str
    name: str
    description: Optional[str] = None
    target_body_parts: List[str] = Field(default_factory=list)
    estimated_duration_minutes: Optional[int] = Field(default=None, ge=0)
    difficulty: TemplateDifficulty = TemplateDifficulty.BEGINNER
    category: TemplateCategory = TemplateCategory.CUSTOM
    is_favorite: bool = False
    usage_count: int = Field(default=0, ge=0)
    last_used_at: Optional[datetime.datetime] = None
    created_at: datetime.datetime = Field(default_factory=utcnow)
    updated_at: datetime.datetime = Field(default_factory=utcnow)
    exercises: List[TemplateExercise] = Field(default_factory=list)

    @property
    def is_system(self) -> bool:
        return self.owner_id == SYSTEM_OWNER_ID

    def to_workout(self, owner_id: str, name: str | None = None) -> Workout:
        """Instantiate a planned workout whose exercises have no sets yet."""
        return Workout(
            owner_id=owner_id,
            name=name or self.name,
            target_body_parts=list(self.target_body_parts),
            planned_duration_minutes=self.estimated_duration_minutes or 45,
            exercises=[e.to_workout_exercise() for e in self.exercises],
        )


class PersonalRecord(_Model):
    id: str = Field(default_factory=lambda: new_id("record"))
    owner_id: str
    exercise_id: str
    exercise_name: str
    record_type: RecordType
    value: float
    secondary_value: Optional[float] = None
    workout_id: Optional[str] = None
    achieved_at: datetime.datetime = Field(default_factory=utcnow)

    @classmethod
    def from_set(
        cls,
        workout_set: WorkoutSet,
        record_type: RecordType,
        exercise_id: str,
        exercise_name: str,
        owner_id: str,
        workout_id: str | None = None,
        achieved_at: datetime.datetime | None = None,
    ) -> "PersonalRecord":
        secondary = None
        if record_type is RecordType.WEIGHT:
            value = workout_set.weight
        elif record_type is RecordType.VOLUME:
            value = workout_set.volume
        else:
            value = float(workout_set.reps)
            secondary = workout_set.weight
        return cls(
            owner_id=owner_id,
            exercise_id=exercise_id,
            exercise_name=exercise_name,
            record_type=record_type,
            value=value,
            secondary_value=secondary,
            workout_id=workout_id,
            achieved_at=achieved_at or utcnow(),
        )


class UserPreferences(_Model):
    weight_unit: str = "kg"
    default_rest_seconds: int = Field(default=90, ge=0)
    favorite_body_parts: List[str] = Field(default_factory=list)
    sound_enabled: bool = True
    vibration_enabled: bool = True


class User(_Model):
    user_id: str
    name: str
    created_at: datetime.datetime = Field(default_factory=utcnow)
    last_active_at: datetime.datetime = Field(default_factory=utcnow)
    preferences: UserPreferences = Field(default_factory=UserPreferences)


def merge_duplicate_exercises(exercises: List[WorkoutExercise]) -> List[WorkoutExercise]:
    """Collapse exercises sharing an ``exercise_id`` into their first occurrence.

    Sets of later duplicates are appended to the first occurrence in list
    order. The result has dense order indices (0..n-1) and dense set numbers
    (1..m) per exercise. The input list is left untouched.
    """
    merged: dict[str, WorkoutExercise] = {}
    for exercise in exercises:
        existing = merged.get(exercise.exercise_id)
        if existing is None:
            merged[exercise.exercise_id] = exercise.model_copy(deep=True)
            continue
        existing.sets.extend(s.model_copy() for s in exercise.sets)
        if exercise.notes and not existing.notes:
            existing.notes = exercise.notes
    result = list(merged.values())
    for index, exercise in enumerate(result):
        exercise.order_index = index
        for number, workout_set in enumerate(exercise.sets, start=1):
            workout_set.set_number = number
    return result
