from __future__ import annotations
import datetime
import logging
from typing import Optional

from db import Store
from settings_schema import SettingsSchema
from tools import DateTools, MetricsEngine

logger = logging.getLogger(__name__)


class StatisticsService:
    """Compute dashboard statistics from store snapshots.

    Every method only reads through the repositories, so each one can be
    passed straight to :meth:`live_query.LiveQuery.observe`.
    """

    def __init__(self, store: Store, settings: SettingsSchema | None = None) -> None:
        self.store = store
        self.settings = settings or SettingsSchema()

    def _period(
        self, view: str, day: datetime.date, offset: int = 0
    ) -> tuple[datetime.datetime, datetime.datetime]:
        if view == "month":
            return DateTools.month_range(day, offset)
        if view == "year":
            return DateTools.year_range(day, offset)
        raise ValueError("view must be 'month' or 'year'")

    async def compare(
        self,
        start: datetime.datetime,
        end: datetime.datetime,
        now: datetime.datetime | None = None,
        previous: tuple[datetime.datetime, datetime.datetime] | None = None,
    ) -> dict:
        prev_start, prev_end = previous or DateTools.previous_range(start, end)
        sets = await self.store.sets.between(
            DateTools.to_millis(min(start, prev_start)),
            DateTools.to_millis(max(end, prev_end)),
        )
        exercises = await self.store.exercises.to_array()
        return MetricsEngine.compare_periods(
            sets, exercises, start, end, now, previous=(prev_start, prev_end)
        )

    async def overview(
        self,
        view: str = "month",
        day: datetime.date | None = None,
        now: datetime.datetime | None = None,
    ) -> dict:
        """Calendar month or year containing ``day`` against the one before."""
        now = now or datetime.datetime.now()
        day = day or now.date()
        start, end = self._period(view, day)
        previous = self._period(view, day, -1)
        result = await self.compare(start, end, now, previous)
        result["view"] = view
        result["start"] = start.date().isoformat()
        result["end"] = end.date().isoformat()
        return result

    async def nutrition(
        self, start: datetime.date, end: datetime.date
    ) -> dict[str, int]:
        start_day = DateTools.parse_day(start)
        end_day = DateTools.parse_day(end)
        logs = await self.store.daily_logs.between(
            DateTools.day_key(start_day), DateTools.day_key(end_day)
        )
        profile = await self.store.profile.current()
        return MetricsEngine.nutrition_compliance(logs, profile, start_day, end_day)

    async def plateau(
        self, exercise_id: int, now: datetime.datetime | None = None
    ) -> Optional[dict]:
        sets = await self.store.sets.for_exercise(exercise_id)
        result = MetricsEngine.plateau(
            sets,
            exercise_id,
            now,
            weeks=self.settings.plateau_weeks,
            min_weeks=self.settings.plateau_min_weeks,
            threshold=self.settings.plateau_threshold,
        )
        if result and result["detected"]:
            logger.debug("plateau on exercise %s over %s weeks", exercise_id, result["duration"])
        return result

    async def trend(
        self,
        exercise_id: int,
        view: str = "month",
        day: datetime.date | None = None,
        mode: str | None = None,
    ) -> list[dict]:
        day = day or datetime.date.today()
        start, end = self._period(view, day)
        sets = await self.store.sets.between(
            DateTools.to_millis(start), DateTools.to_millis(end)
        )
        return MetricsEngine.trend_series(
            sets, exercise_id, start, end, view, mode or self.settings.trend_mode
        )

    async def history(self) -> list[dict]:
        sets = await self.store.sets.ordered(descending=True)
        exercises = await self.store.exercises.to_array()
        return MetricsEngine.history(sets, exercises)

    async def personal_record(
        self, exercise_id: int, before: int | None = None
    ) -> Optional[float]:
        """Heaviest weight logged for ``exercise_id`` before timestamp ``before``."""
        sets = await self.store.sets.for_exercise(exercise_id)
        weights = [
            s["weight"]
            for s in sets
            if not s["is_warmup"] and (before is None or s["timestamp"] < before)
        ]
        return max(weights) if weights else None
