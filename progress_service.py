from __future__ import annotations
import datetime
import logging
from typing import Dict, Iterable, List, Optional

from db import (
    AsyncExerciseRepository,
    AsyncWorkoutSessionRepository,
    AsyncWorkoutSetRepository,
)
from errors import InvalidRangeError, ValidationError
from tools import DateTools, MathTools

logger = logging.getLogger(__name__)


class ProgressService:
    """Turn a user's logged sets into per-exercise progress summaries."""

    METRICS = ("weight", "reps", "volume")
    DEFAULT_LIMIT = 1000

    def __init__(
        self,
        set_repo: AsyncWorkoutSetRepository,
        exercise_repo: AsyncExerciseRepository | None = None,
        session_repo: AsyncWorkoutSessionRepository | None = None,
    ) -> None:
        self.sets = set_repo
        self.exercises = exercise_repo
        self.sessions = session_repo

    async def progress(
        self,
        user_id: str,
        start_date: str,
        end_date: str,
        exercise_ids: Optional[List[str]] = None,
        limit: int = DEFAULT_LIMIT,
    ) -> List[dict]:
        """Return one progress summary per exercise with sets in the range."""
        if not user_id:
            raise ValidationError("userId is required")
        try:
            start = DateTools.parse_date(start_date)
            end = DateTools.parse_date(end_date)
        except ValueError as e:
            raise ValidationError(f"Invalid date: {e}") from e
        if start > end:
            raise InvalidRangeError()
        rows = await self.sets.fetch_progress_rows(
            user_id,
            start.isoformat(),
            end.isoformat(),
            exercise_ids or None,
            limit,
        )
        logger.debug("Fetched %d progress rows for %s", len(rows), user_id)
        return self.summarize(rows)

    @classmethod
    def summarize(cls, rows: Iterable[tuple]) -> List[dict]:
        """Group progress rows by exercise and compute records, trends and stats."""
        grouped: Dict[str, List[dict]] = {}
        for row in rows:
            point = cls.data_point(row)
            grouped.setdefault(point["exerciseId"], []).append(point)

        results = []
        for exercise_id, points in grouped.items():
            marked, records = cls.personal_records(points)
            results.append(
                {
                    "exerciseId": exercise_id,
                    "exerciseName": points[0]["exerciseName"] or "Unknown Exercise",
                    "dataPoints": marked,
                    "personalRecords": records,
                    "trends": cls.trends(marked),
                    "statistics": cls.statistics(marked),
                }
            )
        return results

    @staticmethod
    def data_point(row: tuple) -> dict:
        (
            set_id,
            session_id,
            exercise_id,
            set_number,
            weight,
            reps,
            _created,
            exercise_name,
            date,
        ) = row
        return {
            "id": set_id,
            "date": date,
            "exerciseId": exercise_id,
            "exerciseName": exercise_name,
            "weight": weight,
            "reps": reps,
            "volume": MathTools.set_volume(weight, reps),
            "isPersonalRecord": False,
            "sessionId": session_id,
            "setNumber": set_number,
        }

    @staticmethod
    def personal_records(points: List[dict]) -> tuple[List[dict], dict]:
        """Mark record-setting points in one chronological pass.

        Returns the marked copies and the final record holder per metric.
        """
        max_weight: dict | None = None
        max_reps: dict | None = None
        max_volume: dict | None = None
        ordered = sorted(points, key=lambda p: DateTools.parse_date(p["date"]))
        marked = []
        for point in ordered:
            current = dict(point)
            weight = current["weight"]
            reps = current["reps"]
            if weight and (max_weight is None or weight > (max_weight["weight"] or 0)):
                max_weight = current
                current["isPersonalRecord"] = True
            # ties on reps go to the heavier set
            if reps and weight and (
                max_reps is None
                or reps > (max_reps["reps"] or 0)
                or (reps == max_reps["reps"] and weight > (max_reps["weight"] or 0))
            ):
                max_reps = current
                current["isPersonalRecord"] = True
            if current["volume"] > 0 and (
                max_volume is None or current["volume"] > max_volume["volume"]
            ):
                max_volume = current
                current["isPersonalRecord"] = True
            marked.append(current)
        return marked, {
            "maxWeight": max_weight,
            "maxReps": max_reps,
            "maxVolume": max_volume,
        }

    @staticmethod
    def observations(points: List[dict], metric: str) -> List[float]:
        """Present, non-zero values of ``metric`` in point order."""
        return [p[metric] for p in points if p[metric]]

    @classmethod
    def trends(cls, points: List[dict]) -> Dict[str, str]:
        return {
            metric: MathTools.trend_direction(cls.observations(points, metric))
            for metric in cls.METRICS
        }

    @classmethod
    def statistics(cls, points: List[dict]) -> dict:
        weights = cls.observations(points, "weight")
        reps = cls.observations(points, "reps")
        volumes = cls.observations(points, "volume")
        return {
            "totalWorkouts": len({p["date"] for p in points}),
            "averageWeight": MathTools.mean(weights),
            "averageReps": MathTools.mean(reps),
            "totalVolume": sum(p["volume"] for p in points),
            "improvementPercentage": MathTools.improvement_percentage(volumes),
        }

    async def user_exercises(self, user_id: str) -> List[dict]:
        """Exercises the user has logged, sorted by name."""
        if self.exercises is None:
            return []
        return await self.exercises.fetch_for_user(user_id)

    async def date_range(self, user_id: str) -> Optional[Dict[str, str]]:
        """Earliest and latest workout dates of the user."""
        if self.sessions is None:
            return None
        return await self.sessions.date_range(user_id)

    @staticmethod
    def default_range(
        days: int = 90, today: datetime.date | None = None
    ) -> tuple[str, str]:
        start, end = DateTools.trailing_window(days + 1, today)
        return start.isoformat(), end.isoformat()
