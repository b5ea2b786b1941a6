from __future__ import annotations

import datetime
import logging
from typing import Dict, Optional

from db import WorkoutRepository
from models import WorkoutStatus, utcnow

logger = logging.getLogger(__name__)


class StatisticsService:
    """Compute workout statistics for one owner at a time."""

    def __init__(self, workout_repo: WorkoutRepository) -> None:
        self.workouts = workout_repo

    @staticmethod
    def _parse_timestamp(ts: Optional[str]) -> Optional[datetime.datetime]:
        if not ts:
            return None
        value = datetime.datetime.fromisoformat(ts)
        if value.tzinfo is None:
            value = value.replace(tzinfo=datetime.timezone.utc)
        return value

    def stats(self, owner_id: str) -> Dict[str, float | int]:
        """Return workout counts, completion rate, total volume and mean duration.

        Volume covers every set of every workout regardless of status or set
        completion. Duration is averaged in minutes over completed workouts
        that carry both timestamps.
        """
        headers, volumes = self.workouts.fetch_stats_rows(owner_id)
        total = len(headers)
        completed = 0
        durations: list[float] = []
        for _wid, status, started, finished in headers:
            if status != WorkoutStatus.COMPLETED.value:
                continue
            completed += 1
            start = self._parse_timestamp(started)
            end = self._parse_timestamp(finished)
            if start is not None and end is not None:
                durations.append((end - start).total_seconds() / 60.0)
        total_volume = sum((volume for _wid, _parts, volume in volumes), 0.0)
        result = {
            "total_workouts": total,
            "completed_workouts": completed,
            "completion_rate": completed / total if total else 0.0,
            "total_volume": round(total_volume, 2),
            "average_duration_minutes": (
                round(sum(durations) / len(durations), 2) if durations else 0.0
            ),
        }
        logger.debug("stats for %s: %s", owner_id, result)
        return result

    def volume_by_body_part(self, owner_id: str) -> Dict[str, float]:
        """Split each exercise's volume evenly across its body parts."""
        usage: Dict[str, float] = {}
        for _wid, parts, volume in self.workouts.fetch_exercise_volumes(owner_id):
            if not parts:
                continue
            share = volume / len(parts)
            for part in parts:
                usage[part] = usage.get(part, 0.0) + share
        return {part: round(value, 2) for part, value in sorted(usage.items())}

    def body_part_heat_map(self, owner_id: str) -> Dict[str, float]:
        """Body part volume scaled to [0, 1] by the busiest body part."""
        usage = self.volume_by_body_part(owner_id)
        peak = max(usage.values(), default=0.0)
        if peak <= 0:
            return {part: 0.0 for part in usage}
        return {part: round(value / peak, 4) for part, value in usage.items()}

    @staticmethod
    def _streaks(days: list[datetime.date], today: datetime.date) -> tuple[int, int]:
        longest = run = 0
        previous = None
        for day in days:
            run = run + 1 if previous is not None and (day - previous).days == 1 else 1
            longest = max(longest, run)
            previous = day
        if previous is None or (today - previous).days > 1:
            return 0, longest
        return run, longest

    @staticmethod
    def _change(current: float, previous: float) -> float:
        if previous == 0:
            return 100.0 if current > 0 else 0.0
        return round((current - previous) / previous * 100, 2)

    def _comparison(
        self,
        daily: Dict[datetime.date, list],
        start: datetime.date,
        previous_start: datetime.date,
        today: datetime.date,
    ) -> Dict[str, float | int]:
        current_volume = previous_volume = 0.0
        current_workouts = previous_workouts = 0
        for day, (volume, count) in daily.items():
            if start <= day <= today:
                current_volume += volume
                current_workouts += count
            elif previous_start <= day < start:
                previous_volume += volume
                previous_workouts += count
        return {
            "current_volume": round(current_volume, 2),
            "previous_volume": round(previous_volume, 2),
            "current_workouts": current_workouts,
            "previous_workouts": previous_workouts,
            "volume_change_percent": self._change(current_volume, previous_volume),
            "workout_change_percent": self._change(current_workouts, previous_workouts),
        }

    def progress(self, owner_id: str, today: Optional[datetime.date] = None) -> dict:
        """Dashboard figures over the completed workouts of ``owner_id``.

        Workouts are bucketed by the UTC day of ``completed_at``. A streak is
        a run of consecutive workout days; the current streak is zero once a
        full day has passed without a workout. Weeks start on Monday and the
        current week or month runs up to and including ``today``.
        """
        today = today or utcnow().date()
        daily: Dict[datetime.date, list] = {}
        total_volume = 0.0
        total_sets = 0
        durations: list[float] = []
        last = None
        sessions = self.workouts.fetch_completed_sessions(owner_id)
        for _wid, started, finished, volume, set_count in sessions:
            total_volume += volume
            total_sets += set_count
            start = self._parse_timestamp(started)
            end = self._parse_timestamp(finished)
            if end is None:
                continue
            if start is not None:
                durations.append((end - start).total_seconds() / 60.0)
            bucket = daily.setdefault(end.date(), [0.0, 0])
            bucket[0] += volume
            bucket[1] += 1
            if last is None or end > last:
                last = end

        current, longest = self._streaks(sorted(daily), today)
        week_start = today - datetime.timedelta(days=today.weekday())
        month_start = today.replace(day=1)
        previous_month_start = (month_start - datetime.timedelta(days=1)).replace(day=1)
        result = {
            "total_workouts": len(sessions),
            "total_volume": round(total_volume, 2),
            "total_sets": total_sets,
            "total_time_minutes": round(sum(durations, 0.0), 2),
            "average_duration_minutes": (
                round(sum(durations) / len(durations), 2) if durations else 0.0
            ),
            "current_streak": current,
            "longest_streak": longest,
            "last_workout_date": last,
            "weekly": self._comparison(
                daily, week_start, week_start - datetime.timedelta(days=7), today
            ),
            "monthly": self._comparison(daily, month_start, previous_month_start, today),
        }
        logger.debug("progress for %s: %s", owner_id, result)
        return result
