from __future__ import annotations
import datetime
import logging
from typing import Dict, List

from db import AsyncWorkoutSessionRepository, AsyncWorkoutSetRepository
from errors import InvalidRangeError, ValidationError
from tools import DateTools, MathTools

logger = logging.getLogger(__name__)


class CalendarService:
    """Daily workout summaries and streak statistics for calendar views.

    Per-day entries cover the requested window only, while streaks, weekly
    frequency, last workout and month count are computed over the user's
    whole session history.
    """

    INTENSE_SETS = 15
    INTENSE_VOLUME = 5000
    MODERATE_SETS = 8
    MODERATE_VOLUME = 2500
    DEFAULT_WINDOW_DAYS = 30

    def __init__(
        self,
        session_repo: AsyncWorkoutSessionRepository,
        set_repo: AsyncWorkoutSetRepository,
        frequency_weeks: int = 4,
    ) -> None:
        self.sessions = session_repo
        self.sets = set_repo
        self.frequency_weeks = frequency_weeks

    def resolve_range(
        self,
        start: str | None = None,
        end: str | None = None,
        today: datetime.date | None = None,
        window_days: int = DEFAULT_WINDOW_DAYS,
    ) -> tuple[datetime.date, datetime.date]:
        """Return the window to report; explicit bounds need both ends."""
        if start and end:
            try:
                first = DateTools.parse_date(start)
                last = DateTools.parse_date(end)
            except ValueError as e:
                raise ValidationError(f"Invalid date: {e}") from e
            if first > last:
                raise InvalidRangeError()
            return first, last
        return DateTools.trailing_window(window_days, today)

    async def calendar_data(
        self,
        user_id: str,
        start: str | None = None,
        end: str | None = None,
        today: datetime.date | None = None,
        window_days: int = DEFAULT_WINDOW_DAYS,
    ) -> dict:
        if not user_id:
            raise ValidationError("userId is required")
        today = today or datetime.date.today()
        first, last = self.resolve_range(start, end, today, window_days)
        sessions = await self.sessions.fetch_in_range(
            user_id, first.isoformat(), last.isoformat()
        )

        days: Dict[str, dict] = {}
        for session_id, _user, _name, date, start_time, end_time, _notes in sessions:
            sets = await self.sets.fetch_for_session(session_id)
            key = DateTools.parse_date(date).isoformat()
            day = days.setdefault(
                key,
                {
                    "workoutCount": 0,
                    "totalSets": 0,
                    "totalVolume": 0.0,
                    "exercises": set(),
                    "sessionIds": [],
                    "duration": None,
                },
            )
            day["workoutCount"] += 1
            day["totalSets"] += len(sets)
            day["totalVolume"] += MathTools.volume((s["reps"], s["weight"]) for s in sets)
            day["exercises"].update(s["exercise_id"] for s in sets)
            day["sessionIds"].append(session_id)
            minutes = DateTools.duration_minutes(start_time, end_time)
            if minutes is not None:
                day["duration"] = (day["duration"] or 0) + minutes

        data = []
        for current in DateTools.date_range(first, last):
            key = current.isoformat()
            if key in days:
                data.append(self.day_entry(key, days[key]))
            else:
                data.append(self.empty_day(key))

        dates = await self.sessions.fetch_dates(user_id)
        summary = {
            "totalWorkouts": len(sessions),
            "totalVolume": sum(day["totalVolume"] for day in days.values()),
            "averageWorkoutsPerWeek": self.average_per_week(
                dates, self.frequency_weeks, today
            ),
            "longestStreak": self.longest_streak(dates),
            "currentStreak": self.current_streak(dates, today),
            "lastWorkoutDate": max(dates) if dates else None,
            "workoutsThisMonth": self.workouts_this_month(dates, today),
        }
        return {
            "data": data,
            "summary": summary,
            "dateRange": {"start": first.isoformat(), "end": last.isoformat()},
        }

    @classmethod
    def day_entry(cls, date: str, day: dict) -> dict:
        entry = {
            "date": date,
            "hasWorkout": True,
            "workoutCount": day["workoutCount"],
            "totalSets": day["totalSets"],
            "totalVolume": day["totalVolume"],
            "exerciseCount": len(day["exercises"]),
            "sessionIds": list(day["sessionIds"]),
            "intensity": cls.intensity(day["totalSets"], day["totalVolume"]),
        }
        if day["duration"] is not None:
            entry["duration"] = day["duration"]
        return entry

    @staticmethod
    def empty_day(date: str) -> dict:
        return {
            "date": date,
            "hasWorkout": False,
            "workoutCount": 0,
            "totalSets": 0,
            "totalVolume": 0,
            "exerciseCount": 0,
            "sessionIds": [],
            "intensity": "light",
        }

    @staticmethod
    def empty_summary() -> dict:
        return {
            "totalWorkouts": 0,
            "totalVolume": 0,
            "averageWorkoutsPerWeek": 0,
            "longestStreak": 0,
            "currentStreak": 0,
            "lastWorkoutDate": None,
            "workoutsThisMonth": 0,
        }

    @classmethod
    def intensity(cls, total_sets: int, total_volume: float) -> str:
        if total_sets >= cls.INTENSE_SETS or total_volume >= cls.INTENSE_VOLUME:
            return "intense"
        if total_sets >= cls.MODERATE_SETS or total_volume >= cls.MODERATE_VOLUME:
            return "moderate"
        return "light"

    @staticmethod
    def _distinct_days(dates: List[str]) -> List[datetime.date]:
        return sorted({DateTools.parse_date(d) for d in dates})

    @classmethod
    def current_streak(
        cls, dates: List[str], today: datetime.date | None = None
    ) -> int:
        """Consecutive workout days ending today, or yesterday if today is empty."""
        today = today or datetime.date.today()
        days = [d for d in cls._distinct_days(dates) if d <= today]
        if not days or (today - days[-1]).days > 1:
            return 0
        streak = 0
        expected = days[-1]
        for day in reversed(days):
            if day != expected:
                break
            streak += 1
            expected = day - datetime.timedelta(days=1)
        return streak

    @classmethod
    def longest_streak(cls, dates: List[str]) -> int:
        days = cls._distinct_days(dates)
        if not days:
            return 0
        longest = current = 1
        for previous, day in zip(days, days[1:]):
            if (day - previous).days == 1:
                current += 1
                longest = max(longest, current)
            else:
                current = 1
        return longest

    @staticmethod
    def average_per_week(
        dates: List[str], weeks: int = 4, today: datetime.date | None = None
    ) -> float:
        """Sessions dated after ``today - weeks`` divided by ``weeks``."""
        if not dates or weeks <= 0:
            return 0
        today = today or datetime.date.today()
        cutoff = today - datetime.timedelta(weeks=weeks)
        recent = [d for d in dates if DateTools.parse_date(d) > cutoff]
        return round(len(recent) / weeks, 1)

    @staticmethod
    def workouts_this_month(
        dates: List[str], today: datetime.date | None = None
    ) -> int:
        today = today or datetime.date.today()
        count = 0
        for d in dates:
            day = DateTools.parse_date(d)
            if day.year == today.year and day.month == today.month:
                count += 1
        return count

    async def workout_details(self, user_id: str, date: str) -> List[dict]:
        """Sessions of ``user_id`` on ``date`` with their sets."""
        if not user_id:
            raise ValidationError("userId is required")
        if not date:
            raise ValidationError("date is required")
        try:
            day = DateTools.parse_date(date).isoformat()
        except ValueError as e:
            raise ValidationError(f"Invalid date: {e}") from e
        sessions = await self.sessions.fetch_in_range(user_id, day, day)
        details = []
        for session_id, owner, name, session_date, start_time, end_time, notes in sessions:
            sets = await self.sets.fetch_for_session(session_id)
            details.append(
                {
                    "id": session_id,
                    "userId": owner,
                    "name": name,
                    "date": session_date,
                    "duration": DateTools.duration_minutes(start_time, end_time),
                    "notes": notes,
                    "sets": [
                        {
                            "id": s["id"],
                            "sessionId": s["session_id"],
                            "exerciseId": s["exercise_id"],
                            "exerciseName": s["exercise_name"],
                            "setNumber": s["set_number"],
                            "reps": s["reps"] or 0,
                            "weight": s["weight"] or 0,
                            "restTime": s["rest_time"],
                            "notes": s["notes"],
                        }
                        for s in sets
                    ],
                    "totalVolume": MathTools.volume(
                        (s["reps"], s["weight"]) for s in sets
                    ),
                    "exerciseCount": len({s["exercise_id"] for s in sets}),
                }
            )
        return details

