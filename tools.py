from __future__ import annotations
import datetime
import math
from typing import Iterable, List

import numpy as np


class MathTools:
    """Provides essential mathematical utilities for training and nutrition."""

    TDEE_FACTOR: float = 1.35
    LOSS_DEFICIT: int = 500
    GAIN_SURPLUS: int = 300
    PROTEIN_PER_KG: float = 2.0

    @staticmethod
    def clamp(value: float, min_value: float, max_value: float) -> float:
        """Clamp ``value`` to the inclusive range [min_value, max_value]."""
        if min_value > max_value:
            raise ValueError("min_value must not exceed max_value")
        return max(min_value, min(value, max_value))

    @staticmethod
    def percent_change(current: float, previous: float) -> float | None:
        """Return the change from ``previous`` to ``current`` in percent.

        ``None`` when ``previous`` is zero; callers show a placeholder.
        """
        if previous == 0:
            return None
        return (current - previous) / previous * 100

    @staticmethod
    def mean(values: Iterable[float]) -> float | None:
        arr = np.asarray(list(values), dtype=float)
        if arr.size == 0:
            return None
        return float(arr.mean())

    @staticmethod
    def set_metric(weight: float, reps: float) -> float:
        """Weight when loaded, otherwise reps (bodyweight or timed sets)."""
        return float(weight) if weight > 0 else float(reps)

    @staticmethod
    def age(birth_year: int, today: datetime.date | None = None) -> int:
        today = today or datetime.date.today()
        return today.year - int(birth_year)

    @staticmethod
    def derive_goal(current_weight: float, goal_weight: float) -> str:
        if goal_weight < current_weight:
            return "loss"
        if goal_weight > current_weight:
            return "gain"
        return "maintain"

    @classmethod
    def daily_targets(
        cls,
        weight_kg: float,
        height_cm: float,
        age: int,
        gender: str,
        goal: str,
    ) -> dict[str, int]:
        """Return calorie and protein targets from the Mifflin-St Jeor BMR."""
        if weight_kg <= 0 or height_cm <= 0:
            raise ValueError("weight and height must be positive")
        bmr = 10 * weight_kg + 6.25 * height_cm - 5 * age
        bmr += 5 if gender == "male" else -161
        tdee = round(bmr * cls.TDEE_FACTOR)
        calories = tdee
        if goal == "loss":
            calories -= cls.LOSS_DEFICIT
        elif goal == "gain":
            calories += cls.GAIN_SURPLUS
        return {
            "calories": int(calories),
            "protein": int(round(weight_kg * cls.PROTEIN_PER_KG)),
            "tdee": int(tdee),
        }


class DateTools:
    """Conversions between local calendar dates and epoch milliseconds."""

    DAY_MS = 24 * 60 * 60 * 1000
    END_OF_DAY = datetime.time(23, 59, 59, 999000)

    @staticmethod
    def to_millis(moment: datetime.datetime) -> int:
        return int(round(moment.timestamp() * 1000))

    @staticmethod
    def from_millis(ms: float) -> datetime.datetime:
        """Local naive datetime for an epoch timestamp in milliseconds."""
        return datetime.datetime.fromtimestamp(ms / 1000)

    @classmethod
    def now_millis(cls) -> int:
        return cls.to_millis(datetime.datetime.now())

    @classmethod
    def local_date(cls, ms: float) -> datetime.date:
        return cls.from_millis(ms).date()

    @staticmethod
    def day_key(day: datetime.date) -> str:
        return day.isoformat()

    @staticmethod
    def parse_day(value: str | datetime.date | datetime.datetime) -> datetime.date:
        if isinstance(value, datetime.datetime):
            return value.date()
        if isinstance(value, datetime.date):
            return value
        return datetime.date.fromisoformat(value)

    @staticmethod
    def start_of_day(day: datetime.date) -> datetime.datetime:
        return datetime.datetime.combine(day, datetime.time.min)

    @classmethod
    def end_of_day(cls, day: datetime.date) -> datetime.datetime:
        return datetime.datetime.combine(day, cls.END_OF_DAY)

    @classmethod
    def day_bounds(cls, day: datetime.date) -> tuple[int, int]:
        """Epoch ms of 00:00:00.000 and 23:59:59.999 local time on ``day``."""
        return (
            cls.to_millis(cls.start_of_day(day)),
            cls.to_millis(cls.end_of_day(day)),
        )

    @staticmethod
    def weekday_index(day: datetime.date) -> int:
        """Day of week with Sunday as 0 and Saturday as 6."""
        return (day.weekday() + 1) % 7

    @classmethod
    def backlog_timestamp(
        cls, day: datetime.date, now: datetime.datetime | None = None
    ) -> int:
        """Timestamp on ``day`` carrying the current time of day."""
        now = now or datetime.datetime.now()
        moment = datetime.datetime.combine(day, now.time().replace(microsecond=0))
        return cls.to_millis(moment)

    @classmethod
    def month_range(
        cls, day: datetime.date, offset: int = 0
    ) -> tuple[datetime.datetime, datetime.datetime]:
        """Calendar month containing ``day`` shifted by ``offset`` months."""
        index = day.year * 12 + (day.month - 1) + offset
        first = datetime.date(index // 12, index % 12 + 1, 1)
        nxt = index + 1
        last = datetime.date(nxt // 12, nxt % 12 + 1, 1) - datetime.timedelta(days=1)
        return cls.start_of_day(first), cls.end_of_day(last)

    @classmethod
    def year_range(
        cls, day: datetime.date, offset: int = 0
    ) -> tuple[datetime.datetime, datetime.datetime]:
        year = day.year + offset
        return (
            cls.start_of_day(datetime.date(year, 1, 1)),
            cls.end_of_day(datetime.date(year, 12, 31)),
        )

    @staticmethod
    def previous_range(
        start: datetime.datetime, end: datetime.datetime
    ) -> tuple[datetime.datetime, datetime.datetime]:
        """Window of the same length ending just before ``start``."""
        length = end - start
        prev_end = start - datetime.timedelta(milliseconds=1)
        return prev_end - length, prev_end

    @staticmethod
    def days_between(start: datetime.date, end: datetime.date) -> List[datetime.date]:
        return [
            start + datetime.timedelta(days=i) for i in range((end - start).days + 1)
        ]

    @staticmethod
    def months_between(start: datetime.date, end: datetime.date) -> List[datetime.date]:
        months: list[datetime.date] = []
        current = datetime.date(start.year, start.month, 1)
        while current <= end:
            months.append(current)
            index = current.year * 12 + current.month
            current = datetime.date(index // 12, index % 12 + 1, 1)
        return months


class MetricsEngine:
    """Pure aggregations over snapshots of the store's collections.

    Every function accepts empty or ``None`` collections and then returns
    zero-valued results instead of failing.
    """

    PLATEAU_WEEKS: int = 4
    PLATEAU_MIN_WEEKS: int = 3
    PLATEAU_THRESHOLD: float = 1.01

    @staticmethod
    def _in_range(
        sets: Iterable[dict] | None, start_ms: int, end_ms: int
    ) -> list[dict]:
        return [s for s in sets or [] if start_ms <= s["timestamp"] <= end_ms]

    @staticmethod
    def _categories(exercises: Iterable[dict] | None) -> dict[int, str]:
        return {e["id"]: e["category"] for e in exercises or []}

    @classmethod
    def period_metrics(
        cls,
        sets: Iterable[dict] | None,
        exercises: Iterable[dict] | None,
        start: datetime.datetime,
        end: datetime.datetime,
        now: datetime.datetime | None = None,
    ) -> dict[str, float]:
        """Attendance and volume for sets logged between ``start`` and ``end``."""
        now = now or datetime.datetime.now()
        range_sets = cls._in_range(
            sets, DateTools.to_millis(start), DateTools.to_millis(end)
        )
        days_worked_out = len({DateTools.local_date(s["timestamp"]) for s in range_sets})

        if start <= now <= end:
            elapsed = now - start
        else:
            elapsed = end - start
        potential_days = max(math.ceil(elapsed.total_seconds() / 86400), 1)
        attendance = round(days_worked_out / potential_days * 100)
        attendance_rate = int(MathTools.clamp(attendance, 0, 100))

        strength_volume = 0.0
        cardio_distance = 0.0
        if exercises is not None:
            categories = cls._categories(exercises)
            for s in range_sets:
                if categories.get(s["exercise_id"]) == "cardio":
                    cardio_distance += s["weight"]
                else:
                    strength_volume += s["weight"] * max(s["reps"], 1)
        return {
            "days_worked_out": days_worked_out,
            "potential_days": potential_days,
            "attendance_rate": attendance_rate,
            "strength_volume": round(strength_volume, 2),
            "cardio_distance": round(cardio_distance, 2),
        }

    @classmethod
    def compare_periods(
        cls,
        sets: Iterable[dict] | None,
        exercises: Iterable[dict] | None,
        start: datetime.datetime,
        end: datetime.datetime,
        now: datetime.datetime | None = None,
        previous: tuple[datetime.datetime, datetime.datetime] | None = None,
    ) -> dict[str, dict]:
        """Metrics for a period, the one before it, and percent deltas."""
        sets = list(sets or [])
        prev_start, prev_end = previous or DateTools.previous_range(start, end)
        current = cls.period_metrics(sets, exercises, start, end, now)
        prior = cls.period_metrics(sets, exercises, prev_start, prev_end, now)
        keys = ("days_worked_out", "attendance_rate", "strength_volume", "cardio_distance")
        delta = {k: MathTools.percent_change(current[k], prior[k]) for k in keys}
        return {"current": current, "previous": prior, "delta": delta}

    @staticmethod
    def nutrition_compliance(
        daily_logs: Iterable[dict] | None,
        profile: dict | None,
        start: datetime.date,
        end: datetime.date,
    ) -> dict[str, int]:
        """Count days meeting the calorie and protein targets."""
        if profile is None:
            return {"calorie_wins": 0, "protein_wins": 0, "logged_days": 0}
        start_day = DateTools.parse_day(start)
        end_day = DateTools.parse_day(end)
        logs = [
            log
            for log in daily_logs or []
            if start_day <= DateTools.parse_day(log["date"]) <= end_day
        ]
        calorie_target = profile["daily_calorie_target"]
        protein_target = profile["daily_protein_target"]
        calorie_wins = 0
        protein_wins = 0
        for log in logs:
            calories = log["calories"] or 0
            if profile["goal"] == "loss":
                if 0 < calories <= calorie_target:
                    calorie_wins += 1
            elif calories >= calorie_target:
                calorie_wins += 1
            if (log["protein"] or 0) >= protein_target:
                protein_wins += 1
        return {
            "calorie_wins": calorie_wins,
            "protein_wins": protein_wins,
            "logged_days": len(logs),
        }

    @classmethod
    def plateau(
        cls,
        sets: Iterable[dict] | None,
        exercise_id: int,
        now: datetime.datetime | None = None,
        weeks: int | None = None,
        min_weeks: int | None = None,
        threshold: float | None = None,
    ) -> dict | None:
        """Detect stalled progress over the trailing weeks.

        Returns ``None`` while fewer than ``min_weeks`` ISO weeks hold data.
        """
        now = now or datetime.datetime.now()
        weeks = weeks or cls.PLATEAU_WEEKS
        min_weeks = min_weeks or cls.PLATEAU_MIN_WEEKS
        threshold = threshold or cls.PLATEAU_THRESHOLD
        cutoff = DateTools.to_millis(now - datetime.timedelta(weeks=weeks))
        weekly: dict[tuple[int, int], float] = {}
        for s in sets or []:
            if s["exercise_id"] != exercise_id or s["timestamp"] < cutoff:
                continue
            iso = DateTools.local_date(s["timestamp"]).isocalendar()
            key = (iso[0], iso[1])
            metric = MathTools.set_metric(s["weight"], s["reps"])
            weekly[key] = max(weekly.get(key, metric), metric)
        peaks = [weekly[k] for k in sorted(weekly)]
        if len(peaks) < min_weeks:
            return None
        first, latest = peaks[0], peaks[-1]
        return {
            "detected": latest <= first * threshold,
            "metric": latest,
            "duration": len(peaks),
        }

    @classmethod
    def trend_series(
        cls,
        sets: Iterable[dict] | None,
        exercise_id: int,
        start: datetime.datetime,
        end: datetime.datetime,
        view: str = "month",
        mode: str = "peak",
    ) -> list[dict]:
        """Chart buckets per day (``month`` view) or per month (``year`` view).

        ``peak`` stores the best set metric as ``value``; ``average`` stores
        the mean ``weight`` and mean ``reps`` separately. Buckets without
        sets hold ``None``.
        """
        if view not in ("month", "year"):
            raise ValueError("view must be 'month' or 'year'")
        if mode not in ("peak", "average"):
            raise ValueError("mode must be 'peak' or 'average'")
        range_sets = [
            s
            for s in cls._in_range(
                sets, DateTools.to_millis(start), DateTools.to_millis(end)
            )
            if s["exercise_id"] == exercise_id
        ]
        grouped: dict[datetime.date, list[dict]] = {}
        for s in range_sets:
            day = DateTools.local_date(s["timestamp"])
            key = day if view == "month" else day.replace(day=1)
            grouped.setdefault(key, []).append(s)

        if view == "month":
            keys = DateTools.days_between(start.date(), end.date())
        else:
            keys = DateTools.months_between(start.date(), end.date())

        series = []
        for key in keys:
            bucket = grouped.get(key, [])
            label = f"{key.day} {key:%b}" if view == "month" else f"{key:%b}"
            item: dict = {"date": key.isoformat(), "label": label, "sets": len(bucket)}
            if mode == "peak":
                item["value"] = (
                    max(MathTools.set_metric(s["weight"], s["reps"]) for s in bucket)
                    if bucket
                    else None
                )
            else:
                item["weight"] = MathTools.mean(s["weight"] for s in bucket)
                item["reps"] = MathTools.mean(s["reps"] for s in bucket)
            series.append(item)
        return series

    @staticmethod
    def history(
        sets: Iterable[dict] | None, exercises: Iterable[dict] | None
    ) -> list[dict]:
        """Sets grouped by local day, newest day first."""
        names = {e["id"]: e["name"] for e in exercises or []}
        days: dict[datetime.date, list[dict]] = {}
        for s in sorted(sets or [], key=lambda x: x["timestamp"], reverse=True):
            days.setdefault(DateTools.local_date(s["timestamp"]), []).append(s)
        result = []
        for day, day_sets in days.items():
            by_exercise: dict[int, list[dict]] = {}
            for s in day_sets:
                by_exercise.setdefault(s["exercise_id"], []).append(s)
            result.append(
                {
                    "date": day.isoformat(),
                    "sets": len(day_sets),
                    "volume": round(sum(s["weight"] * s["reps"] for s in day_sets)),
                    "exercises": [
                        {
                            "exercise_id": ex_id,
                            "name": names.get(ex_id, "Unknown Exercise"),
                            "sets": [
                                {"id": s["id"], "weight": s["weight"], "reps": s["reps"]}
                                for s in ex_sets
                            ],
                        }
                        for ex_id, ex_sets in by_exercise.items()
                    ],
                }
            )
        return result
