from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from catalog import ExerciseCatalog, ExerciseInfo, default_catalog
from db import TemplateRepository, WorkoutRepository
from errors import ConstraintViolation, NotFoundError
from models import (
    TemplateCategory,
    TemplateDifficulty,
    TemplateExercise,
    Workout,
    WorkoutExercise,
    WorkoutStatus,
    WorkoutTemplate,
)

logger = logging.getLogger(__name__)

# (template id, name, description, body parts, category, exercise ids)
DEFAULT_TEMPLATES = [
    (
        "chest_template",
        "Chest Focus",
        "Complete chest development with compound and isolation movements",
        ["chest", "shoulders", "upper arms"],
        TemplateCategory.PUSH,
        ["bench_press", "incline_dumbbell_press", "push_up"],
    ),
    (
        "upper_legs_template",
        "Upper Legs Power",
        "Build powerful legs with quad and hamstring focused movements",
        ["upper legs"],
        TemplateCategory.LEGS,
        ["squat", "romanian_deadlift", "lunge"],
    ),
    (
        "back_template",
        "Back Builder",
        "Develop a strong back with rows and pulldowns",
        ["back", "upper arms"],
        TemplateCategory.PULL,
        ["pull_up", "barbell_row", "lat_pulldown"],
    ),
    (
        "shoulders_template",
        "Shoulder Sculptor",
        "Sculpt strong shoulders with presses and raises",
        ["shoulders", "upper arms"],
        TemplateCategory.UPPER_BODY,
        ["overhead_press", "lateral_raise", "face_pull"],
    ),
    (
        "arms_template",
        "Arm Destroyer",
        "Biceps, triceps and forearms in one session",
        ["upper arms", "lower arms"],
        TemplateCategory.UPPER_BODY,
        ["barbell_curl", "triceps_pushdown", "hammer_curl"],
    ),
    (
        "push_template",
        "Push Day",
        "Chest, shoulders and triceps pressing session",
        ["chest", "shoulders", "upper arms"],
        TemplateCategory.PUSH,
        ["bench_press", "overhead_press", "triceps_pushdown"],
    ),
    (
        "pull_template",
        "Pull Day",
        "Back and biceps pulling session",
        ["back", "upper arms", "lower arms"],
        TemplateCategory.PULL,
        ["barbell_row", "pull_up", "hammer_curl"],
    ),
]

_HEAVY = ("squat", "deadlift", "bench press")
_ISOLATION = ("curl", "extension", "raise")


def suggested_sets(exercise_name: str) -> int:
    name = exercise_name.lower()
    if any(k in name for k in _HEAVY) or "row" in name:
        return 4
    return 3


def suggested_rep_range(exercise_name: str) -> tuple[int, int]:
    name = exercise_name.lower()
    if any(k in name for k in _HEAVY):
        return 6, 8
    if any(k in name for k in _ISOLATION):
        return 10, 15
    return 8, 12


class PlannerService:
    """Builds workouts from the catalog and converts between workouts and templates."""

    def __init__(
        self,
        workout_repo: WorkoutRepository,
        template_repo: TemplateRepository,
        catalog: ExerciseCatalog | None = None,
    ) -> None:
        self.workouts = workout_repo
        self.templates = template_repo
        self.catalog = catalog or default_catalog()

    def _lookup(self, exercise_ids: List[str]) -> List[ExerciseInfo]:
        found = {info.id: info for info in self.catalog.lookup_by_ids(exercise_ids)}
        missing = [i for i in exercise_ids if i not in found]
        if missing:
            raise NotFoundError(f"unknown exercises: {', '.join(missing)}")
        return [found[i] for i in exercise_ids]

    def build_workout(
        self,
        owner_id: str,
        name: str,
        exercise_ids: Iterable[str],
        planned_duration_minutes: int = 45,
        notes: str | None = None,
    ) -> Workout:
        """Create and store a planned workout from catalog exercises.

        Exercise names and body parts are copied into the workout, so later
        catalog changes do not alter it.
        """
        infos = self._lookup(list(exercise_ids))
        target: List[str] = []
        for info in infos:
            for part in info.body_parts:
                if part not in target:
                    target.append(part)
        workout = Workout(
            owner_id=owner_id,
            name=name,
            target_body_parts=target,
            planned_duration_minutes=planned_duration_minutes,
            notes=notes,
            exercises=[
                WorkoutExercise(
                    exercise_id=info.id,
                    exercise_name=info.name,
                    body_parts=list(info.body_parts),
                    order_index=index,
                )
                for index, info in enumerate(infos)
            ],
        )
        self.workouts.save(workout)
        return workout

    def create_workout_from_template(
        self, template_id: str, owner_id: str, name: str | None = None
    ) -> Workout:
        template = self.templates.get(template_id)
        if template is None:
            raise NotFoundError(f"template {template_id} not found")
        workout = template.to_workout(owner_id, name)
        self.workouts.save(workout)
        self.templates.record_usage(template_id)
        logger.info("workout %s created from template %s", workout.id, template_id)
        return workout

    def create_template_from_workout(
        self,
        workout_id: str,
        name: str,
        description: str | None = None,
        category: TemplateCategory = TemplateCategory.CUSTOM,
        difficulty: TemplateDifficulty = TemplateDifficulty.BEGINNER,
    ) -> WorkoutTemplate:
        """Store a template whose suggestions come from the workout's completed sets."""
        workout = self.workouts.get(workout_id)
        if workout is None:
            raise NotFoundError(f"workout {workout_id} not found")
        exercises = []
        for index, exercise in enumerate(workout.exercises):
            done = [s for s in exercise.sets if s.is_completed]
            item = TemplateExercise(
                exercise_id=exercise.exercise_id,
                exercise_name=exercise.exercise_name,
                body_parts=list(exercise.body_parts),
                order_index=index,
                notes=exercise.notes,
            )
            if done:
                item.suggested_sets = len(done)
                item.suggested_reps_min = min(s.reps for s in done)
                item.suggested_reps_max = max(s.reps for s in done)
                item.suggested_weight = max(s.weight for s in done)
                rests = [s.rest_time_seconds for s in done if s.rest_time_seconds is not None]
                if rests:
                    item.rest_time_seconds = round(sum(rests) / len(rests))
            exercises.append(item)
        duration: Optional[int] = workout.planned_duration_minutes
        if workout.status is WorkoutStatus.COMPLETED and workout.actual_duration.total_seconds() > 0:
            duration = round(workout.actual_duration.total_seconds() / 60)
        template = WorkoutTemplate(
            owner_id=workout.owner_id,
            name=name,
            description=description,
            target_body_parts=list(workout.target_body_parts),
            estimated_duration_minutes=duration,
            difficulty=difficulty,
            category=category,
            exercises=exercises,
        )
        self.templates.save(template)
        return template

    def seed_default_templates(self) -> List[str]:
        """Store the built-in templates that are not stored yet; return their ids."""
        created = []
        owner = self.templates.system_owner_id
        for template_id, name, description, parts, category, exercise_ids in DEFAULT_TEMPLATES:
            if self.templates.get(template_id) is not None:
                continue
            infos = self.catalog.lookup_by_ids(exercise_ids)
            exercises = []
            for index, info in enumerate(infos):
                low, high = suggested_rep_range(info.name)
                exercises.append(
                    TemplateExercise(
                        exercise_id=info.id,
                        exercise_name=info.name,
                        body_parts=list(info.body_parts),
                        order_index=index,
                        suggested_sets=suggested_sets(info.name),
                        suggested_reps_min=low,
                        suggested_reps_max=high,
                    )
                )
            template = WorkoutTemplate(
                id=template_id,
                owner_id=owner,
                name=name,
                description=description,
                target_body_parts=parts,
                estimated_duration_minutes=45,
                difficulty=TemplateDifficulty.INTERMEDIATE,
                category=category,
                exercises=exercises,
            )
            try:
                self.templates.save(template)
            except ConstraintViolation:
                # another caller stored it first
                continue
            created.append(template_id)
        if created:
            logger.info("seeded %d default templates", len(created))
        return created
