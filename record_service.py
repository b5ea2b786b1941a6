from __future__ import annotations

import datetime
import logging
from typing import List, Optional

from db import PersonalRecordRepository
from models import PersonalRecord, RecordType, WorkoutSet, utcnow

logger = logging.getLogger(__name__)


class PersonalRecordService:
    """Detect and store personal records for logged sets."""

    def __init__(self, record_repo: PersonalRecordRepository) -> None:
        self.records = record_repo

    def check_and_record(
        self,
        workout_set: WorkoutSet,
        exercise_id: str,
        exercise_name: str,
        owner_id: str,
        workout_id: str | None = None,
    ) -> List[PersonalRecord]:
        """Return the records ``workout_set`` sets, storing each of them.

        A record is new when its value is strictly greater than the stored one
        or when nothing is stored yet. The reps record holds the set weight as
        its secondary value.
        """
        achieved_at = workout_set.completed_at or utcnow()
        candidates = [
            PersonalRecord.from_set(
                workout_set,
                record_type,
                exercise_id,
                exercise_name,
                owner_id,
                workout_id=workout_id,
                achieved_at=achieved_at,
            )
            for record_type in RecordType
        ]
        new_records = self.records.record_if_better(candidates)
        for record in new_records:
            logger.info(
                "new %s record for %s on %s: %s",
                record.record_type.value,
                owner_id,
                exercise_id,
                record.value,
            )
        return new_records

    def list_recent(self, owner_id: str, n: int = 10) -> List[PersonalRecord]:
        return self.records.fetch_recent(owner_id, n)

    def stats(self, owner_id: str, now: datetime.datetime | None = None) -> dict:
        """Return record totals, records set this month and exercises covered."""
        now = now or utcnow()
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        counts = self.records.counts(owner_id, month_start)
        return {
            "total": counts["total"],
            "this_month": counts["since"],
            "unique_exercises": counts["unique_exercises"],
        }

    def records_for_exercise(self, owner_id: str, exercise_id: str) -> List[PersonalRecord]:
        return self.records.fetch_for_exercise(owner_id, exercise_id)

    def current(
        self, owner_id: str, exercise_id: str, record_type: RecordType | str
    ) -> Optional[PersonalRecord]:
        return self.records.current(owner_id, exercise_id, record_type)

    def delete(self, record_id: str) -> None:
        self.records.delete(record_id)
