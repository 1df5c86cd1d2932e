import datetime
from typing import Iterable, List, Optional


class MathTools:
    """Provides essential mathematical utilities for workout calculations."""

    TREND_THRESHOLD: float = 0.05

    @staticmethod
    def set_volume(weight: Optional[float], reps: Optional[int]) -> float:
        """Return ``weight * reps`` treating missing values as zero."""
        return float(weight or 0) * float(reps or 0)

    @staticmethod
    def volume(sets: Iterable[tuple[Optional[int], Optional[float]]]) -> float:
        """Compute training volume as the sum of reps times weight."""
        vol = 0.0
        for reps, weight in sets:
            vol += MathTools.set_volume(weight, reps)
        return vol

    @staticmethod
    def mean(values: List[float]) -> Optional[float]:
        """Return the arithmetic mean or ``None`` for an empty list."""
        if not values:
            return None
        return sum(values) / len(values)

    @staticmethod
    def relative_change(previous: float, current: float) -> float:
        """Return ``(current - previous) / previous``.

        A zero baseline has no defined change and yields ``0.0``.
        """
        if previous == 0:
            return 0.0
        return (current - previous) / previous

    @classmethod
    def trend_direction(
        cls, values: List[float], threshold: float | None = None
    ) -> str:
        """Classify a series as ``up``, ``down`` or ``stable``.

        The series is split at ``len(values) // 2`` and the mean of the
        second half is compared with the mean of the first half.
        """
        if threshold is None:
            threshold = cls.TREND_THRESHOLD
        if len(values) < 2:
            return "stable"
        mid = len(values) // 2
        first = cls.mean(values[:mid])
        second = cls.mean(values[mid:])
        change = cls.relative_change(first, second)
        if change > threshold:
            return "up"
        if change < -threshold:
            return "down"
        return "stable"

    @classmethod
    def improvement_percentage(cls, values: List[float]) -> float:
        """Percent change from the first to the last value, two decimals."""
        if len(values) < 2:
            return 0.0
        return round(cls.relative_change(values[0], values[-1]) * 100, 2)


class DateTools:
    """Date parsing and range helpers shared by the analytics services."""

    @staticmethod
    def parse_date(value: str | datetime.date) -> datetime.date:
        """Return the calendar date of an ISO date or datetime string."""
        if isinstance(value, datetime.datetime):
            return value.date()
        if isinstance(value, datetime.date):
            return value
        text = value.strip()
        if len(text) > 10:
            text = text.replace("Z", "+00:00")
            return datetime.datetime.fromisoformat(text).date()
        return datetime.date.fromisoformat(text)

    @staticmethod
    def is_iso_date(value: str) -> bool:
        """True only for the ``YYYY-MM-DD`` form stored in the database."""
        if not isinstance(value, str) or len(value) != 10:
            return False
        try:
            datetime.datetime.strptime(value, "%Y-%m-%d")
        except ValueError:
            return False
        return True

    @staticmethod
    def date_range(
        start: datetime.date, end: datetime.date
    ) -> List[datetime.date]:
        """Return every date from ``start`` to ``end`` inclusive."""
        days = (end - start).days
        return [start + datetime.timedelta(days=i) for i in range(days + 1)]

    @staticmethod
    def trailing_window(
        days: int, end: datetime.date | None = None
    ) -> tuple[datetime.date, datetime.date]:
        """Return the ``days``-long window ending on ``end`` (today by default)."""
        if days <= 0:
            raise ValueError("days must be positive")
        end = end or datetime.date.today()
        return end - datetime.timedelta(days=days - 1), end

    @staticmethod
    def parse_timestamp(ts: str) -> datetime.datetime:
        """Return ``ts`` as timezone-aware datetime in UTC."""
        dt = datetime.datetime.fromisoformat(ts.replace("Z", "+00:00"))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=datetime.timezone.utc)
        return dt

    @staticmethod
    def now_iso() -> str:
        return datetime.datetime.now(datetime.timezone.utc).isoformat()

    @classmethod
    def duration_minutes(cls, start: Optional[str], end: Optional[str]) -> Optional[int]:
        """Whole minutes between two ISO timestamps, ``None`` if incomplete."""
        if not start or not end:
            return None
        t0 = cls.parse_timestamp(start)
        t1 = cls.parse_timestamp(end)
        return round((t1 - t0).total_seconds() / 60)
