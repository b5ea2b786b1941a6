import datetime
import os
import shutil
import sqlite3
import sys
import tempfile
import unittest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import WorkoutRepository
from errors import ConstraintViolation, InvalidStateTransition, NotFoundError
from models import Workout, WorkoutExercise, WorkoutSet, WorkoutStatus

UTC = datetime.timezone.utc


def make_workout(owner="u1", name="Push", created_at=None, **kwargs):
    exercises = kwargs.pop(
        "exercises",
        [
            WorkoutExercise(
                exercise_id="bench",
                exercise_name="Bench Press",
                body_parts=["chest", "shoulders"],
                sets=[
                    WorkoutSet(weight=80, reps=10, is_completed=True),
                    WorkoutSet(weight=80, reps=8),
                ],
            ),
            WorkoutExercise(
                exercise_id="ohp",
                exercise_name="Overhead Press",
                body_parts=["shoulders"],
                notes="strict",
                sets=[WorkoutSet(weight=40, reps=6, rest_time_seconds=120)],
            ),
        ],
    )
    data = dict(owner_id=owner, name=name, exercises=exercises, **kwargs)
    if created_at is not None:
        data["created_at"] = created_at
    return Workout(**data)


class WorkoutStoreTest(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.mkdtemp()
        self.db = os.path.join(self.tmp, "workouts.db")
        self.repo = WorkoutRepository(self.db)

    def tearDown(self) -> None:
        shutil.rmtree(self.tmp, ignore_errors=True)

    def _count(self, table: str) -> int:
        conn = sqlite3.connect(self.db)
        try:
            return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
        finally:
            conn.close()

    def test_round_trip(self) -> None:
        workout = make_workout(target_body_parts=["chest"], notes="felt good")
        wid = self.repo.save(workout)
        loaded = self.repo.get(wid)
        self.assertEqual(loaded.id, workout.id)
        self.assertEqual(loaded.name, "Push")
        self.assertEqual(loaded.notes, "felt good")
        self.assertEqual(loaded.target_body_parts, ["chest"])
        self.assertEqual(loaded.status, WorkoutStatus.PLANNED)
        self.assertEqual(loaded.created_at, workout.created_at)
        self.assertEqual([e.exercise_id for e in loaded.exercises], ["bench", "ohp"])
        bench = loaded.exercises[0]
        self.assertEqual(bench.id, f"{wid}_bench")
        self.assertEqual(bench.body_parts, ["chest", "shoulders"])
        self.assertEqual([(s.weight, s.reps) for s in bench.sets], [(80.0, 10), (80.0, 8)])
        self.assertTrue(bench.sets[0].is_completed)
        self.assertEqual(loaded.exercises[1].notes, "strict")
        self.assertEqual(loaded.exercises[1].sets[0].rest_time_seconds, 120)
        self.assertEqual(loaded.total_volume, workout.total_volume)

    def test_get_unknown_returns_none(self) -> None:
        self.assertIsNone(self.repo.get("missing"))

    def test_order_is_dense(self) -> None:
        workout = make_workout()
        workout.exercises[0].order_index = 7
        workout.exercises[0].sets[0].set_number = 5
        workout.exercises[0].sets[1].set_number = 9
        wid = self.repo.save(workout)
        loaded = self.repo.get(wid)
        self.assertEqual([e.order_index for e in loaded.exercises], [0, 1])
        self.assertEqual([s.set_number for s in loaded.exercises[0].sets], [1, 2])

    def test_cascade_delete(self) -> None:
        wid = self.repo.save(make_workout())
        self.repo.delete(wid)
        self.assertIsNone(self.repo.get(wid))
        self.assertEqual(self._count("workout_exercises"), 0)
        self.assertEqual(self._count("workout_sets"), 0)
        self.repo.delete(wid)

    def test_update_replaces_subtree(self) -> None:
        workout = make_workout()
        wid = self.repo.save(workout)
        workout.name = "Push Day"
        workout.exercises = [
            WorkoutExercise(
                exercise_id="dips",
                exercise_name="Dips",
                body_parts=["chest"],
                sets=[WorkoutSet(weight=0, reps=12)],
            )
        ]
        self.repo.update(workout)
        loaded = self.repo.get(wid)
        self.assertEqual(loaded.name, "Push Day")
        self.assertEqual([e.exercise_id for e in loaded.exercises], ["dips"])
        self.assertEqual(self._count("workout_exercises"), 1)
        self.assertEqual(self._count("workout_sets"), 1)

    def test_update_unknown_raises(self) -> None:
        with self.assertRaises(NotFoundError):
            self.repo.update(make_workout())

    def test_update_cannot_change_status(self) -> None:
        workout = make_workout()
        self.repo.save(workout)
        changed = workout.model_copy(update={"status": WorkoutStatus.COMPLETED})
        with self.assertRaises(InvalidStateTransition):
            self.repo.update(changed)

    def test_update_keeps_stored_stamps(self) -> None:
        workout = make_workout()
        wid = self.repo.save(workout)
        started = datetime.datetime(2024, 3, 1, 10, 0, tzinfo=UTC)
        self.repo.start(wid, at=started)
        current = self.repo.get(wid)
        current.notes = "edited"
        current.started_at = None
        self.repo.update(current)
        loaded = self.repo.get(wid)
        self.assertEqual(loaded.notes, "edited")
        self.assertEqual(loaded.started_at, started)

    def test_duplicate_exercise_rejected(self) -> None:
        dup = make_workout(
            exercises=[
                WorkoutExercise(exercise_id="bench", exercise_name="Bench", sets=[WorkoutSet(weight=60, reps=5)]),
                WorkoutExercise(exercise_id="bench", exercise_name="Bench", sets=[WorkoutSet(weight=70, reps=3)]),
            ]
        )
        with self.assertRaises(ConstraintViolation):
            self.repo.save(dup)
        self.assertIsNone(self.repo.get(dup.id))

    def test_duplicate_exercise_merged(self) -> None:
        dup = make_workout(
            exercises=[
                WorkoutExercise(exercise_id="bench", exercise_name="Bench", sets=[WorkoutSet(weight=60, reps=5)]),
                WorkoutExercise(exercise_id="row", exercise_name="Row", sets=[WorkoutSet(weight=50, reps=8)]),
                WorkoutExercise(exercise_id="bench", exercise_name="Bench", sets=[WorkoutSet(weight=70, reps=3)]),
            ]
        )
        wid = self.repo.save(dup, merge_duplicates=True)
        loaded = self.repo.get(wid)
        self.assertEqual([e.exercise_id for e in loaded.exercises], ["bench", "row"])
        self.assertEqual([(s.weight, s.set_number) for s in loaded.exercises[0].sets], [(60.0, 1), (70.0, 2)])
        self.assertEqual(len(dup.exercises), 3)

    def test_save_requires_owner(self) -> None:
        with self.assertRaises(ConstraintViolation):
            self.repo.save(make_workout(owner=""))

    def test_save_validates_status_stamps(self) -> None:
        with self.assertRaises(ConstraintViolation):
            self.repo.save(make_workout(status=WorkoutStatus.COMPLETED))
        started = datetime.datetime(2024, 3, 1, 10, 0, tzinfo=UTC)
        with self.assertRaises(ConstraintViolation):
            self.repo.save(
                make_workout(
                    status=WorkoutStatus.COMPLETED,
                    started_at=started,
                    completed_at=started - datetime.timedelta(minutes=5),
                )
            )
        wid = self.repo.save(
            make_workout(
                status=WorkoutStatus.COMPLETED,
                started_at=started,
                completed_at=started + datetime.timedelta(minutes=40),
            )
        )
        self.assertEqual(self.repo.get(wid).actual_duration, datetime.timedelta(minutes=40))

        with self.assertRaises(ConstraintViolation):
            self.repo.save(make_workout(status=WorkoutStatus.PLANNED, started_at=started))
        with self.assertRaises(ConstraintViolation):
            self.repo.save(make_workout(status=WorkoutStatus.PLANNED, completed_at=started))
        with self.assertRaises(ConstraintViolation):
            self.repo.save(
                make_workout(
                    status=WorkoutStatus.IN_PROGRESS,
                    started_at=started,
                    completed_at=started + datetime.timedelta(minutes=40),
                )
            )
        running = self.repo.save(make_workout(status=WorkoutStatus.IN_PROGRESS, started_at=started))
        self.assertIsNone(self.repo.get(running).completed_at)
        self.assertEqual(len(self.repo.list("u1")), 2)

    def test_failed_save_leaves_nothing(self) -> None:
        first = make_workout()
        self.repo.save(first)
        again = make_workout(name="Copy")
        again.id = first.id
        with self.assertRaises(ConstraintViolation):
            self.repo.save(again)
        self.assertEqual(self._count("workouts"), 1)
        self.assertEqual(self._count("workout_exercises"), 2)

    def test_list_ordering_and_paging(self) -> None:
        base = datetime.datetime(2024, 1, 1, tzinfo=UTC)
        ids = []
        for day in range(4):
            w = make_workout(name=f"W{day}", created_at=base + datetime.timedelta(days=day))
            ids.append(self.repo.save(w))
        self.repo.save(make_workout(owner="u2", created_at=base))
        listed = self.repo.list("u1")
        self.assertEqual([w.id for w in listed], list(reversed(ids)))
        self.assertEqual(len(listed[0].exercises), 2)
        page = self.repo.list("u1", limit=2, offset=1)
        self.assertEqual([w.id for w in page], [ids[2], ids[1]])
        self.assertEqual([w.id for w in self.repo.list("u1", offset=3)], [ids[0]])

    def test_list_by_status(self) -> None:
        a = self.repo.save(make_workout(name="A"))
        b = self.repo.save(make_workout(name="B"))
        self.repo.start(b)
        self.assertEqual([w.id for w in self.repo.list("u1", status=WorkoutStatus.PLANNED)], [a])
        self.assertEqual([w.id for w in self.repo.list("u1", status="inProgress")], [b])

    def test_list_by_date_range_is_inclusive(self) -> None:
        jan = self.repo.save(make_workout(created_at=datetime.datetime(2024, 1, 31, 23, 0, tzinfo=UTC)))
        feb = self.repo.save(make_workout(created_at=datetime.datetime(2024, 2, 1, 0, 0, tzinfo=UTC)))
        self.repo.save(make_workout(created_at=datetime.datetime(2024, 3, 1, tzinfo=UTC)))
        found = self.repo.list_by_date_range("u1", datetime.date(2024, 1, 31), datetime.date(2024, 2, 1))
        self.assertEqual([w.id for w in found], [feb, jan])
        exact = self.repo.list_by_date_range(
            "u1",
            datetime.datetime(2024, 2, 1, tzinfo=UTC),
            datetime.datetime(2024, 2, 1, tzinfo=UTC),
        )
        self.assertEqual([w.id for w in exact], [feb])

    def test_search(self) -> None:
        wid = self.repo.save(make_workout(name="Heavy Legs", notes="squat focus"))
        self.repo.save(make_workout(name="Push"))
        self.assertEqual(self.repo.search("u1", "legs"), [(wid, "Heavy Legs")])
        self.assertEqual(self.repo.search("u1", "SQUAT"), [(wid, "Heavy Legs")])
        self.assertEqual(self.repo.search("u2", "legs"), [])


if __name__ == "__main__":
    unittest.main()
