from __future__ import annotations
import datetime
import logging
from typing import List, Optional, Tuple

from db import Store
from tools import DateTools

logger = logging.getLogger(__name__)


class PlannerService:
    """Resolves which routine applies to a day and tracks its completion."""

    def __init__(self, store: Store) -> None:
        self.store = store

    async def _routine(self, routine_id: Optional[int]) -> Optional[dict]:
        if routine_id is None:
            return None
        return await self.store.routines.get(routine_id)

    async def scheduled_routine(self, day: datetime.date) -> Optional[dict]:
        """Routine scheduled on the weekday of ``day``; ``None`` for rest days."""
        entry = await self.store.schedule.for_day(DateTools.weekday_index(day))
        if entry is None:
            return None
        return await self._routine(entry["routine_id"])

    async def resolve(
        self,
        day: datetime.date,
        override: Optional[dict] = None,
        today: datetime.date | None = None,
    ) -> Optional[dict]:
        """Routine for ``day``. ``override`` only applies to days other than today."""
        day = DateTools.parse_day(day)
        today = today or datetime.date.today()
        if override is not None and day != today:
            return override
        return await self.scheduled_routine(day)

    async def missed_day(self, today: datetime.date | None = None) -> Optional[dict]:
        """Yesterday's routine when nothing was logged yesterday."""
        today = today or datetime.date.today()
        yesterday = today - datetime.timedelta(days=1)
        routine = await self.scheduled_routine(yesterday)
        if routine is None:
            return None
        start_ms, end_ms = DateTools.day_bounds(yesterday)
        if await self.store.sets.count_between(start_ms, end_ms):
            return None
        return routine

    async def display_exercises(self, routine: Optional[dict]) -> List[dict]:
        exercises = await self.store.exercises.to_array()
        if routine is None:
            return exercises
        by_id = {e["id"]: e for e in exercises}
        return [
            by_id[el["exercise_id"]]
            for el in routine["elements"]
            if el["exercise_id"] in by_id
        ]

    async def day_status(
        self, day: datetime.date, routine: Optional[dict]
    ) -> dict:
        """Per-exercise set counts against the routine's targets for ``day``."""
        day = DateTools.parse_day(day)
        exercises = await self.display_exercises(routine)
        sets = await self.store.sets.for_day(day)
        targets = {}
        if routine is not None:
            for el in routine["elements"]:
                targets.setdefault(el["exercise_id"], el["target_sets"])
        items = []
        for ex in exercises:
            done = sum(1 for s in sets if s["exercise_id"] == ex["id"])
            target = targets.get(ex["id"])
            items.append(
                {
                    "exercise_id": ex["id"],
                    "name": ex["name"],
                    "sets_done": done,
                    "target_sets": target,
                    "complete": target is not None and done >= target,
                }
            )
        return {
            "date": day.isoformat(),
            "routine_id": routine["id"] if routine else None,
            "exercises": items,
            "complete": bool(items) and all(i["complete"] for i in items),
        }

    async def week(self) -> List[Tuple[int, Optional[dict]]]:
        rows = {row["day_index"]: row for row in await self.store.schedule.week()}
        result = []
        for day in range(7):
            row = rows.get(day)
            result.append((day, await self._routine(row["routine_id"]) if row else None))
        return result

    async def assign(self, day_index: int, routine_id: Optional[int]) -> int:
        return await self.store.schedule.assign(day_index, routine_id)

    async def log_set(
        self,
        exercise_id: int,
        weight: float,
        reps: float,
        date: datetime.date | None = None,
        **kwargs,
    ) -> int:
        """Log a set, backdated to ``date`` when it is given."""
        return await self.store.sets.log(exercise_id, weight, reps, date=date, **kwargs)


class ActiveDay:
    """The date being trained and the routine override chosen for it."""

    def __init__(self, planner: PlannerService, today: datetime.date | None = None) -> None:
        self.planner = planner
        self.today = today or datetime.date.today()
        self.active_date = self.today
        self.override: Optional[dict] = None
        self.prompt: Optional[dict] = None
        self._prompted = False

    @property
    def is_today(self) -> bool:
        return self.active_date == self.today

    async def check_missed(self) -> Optional[dict]:
        """Offer yesterday's routine once per session when it was skipped."""
        if self._prompted:
            return self.prompt
        self._prompted = True
        self.prompt = await self.planner.missed_day(self.today)
        if self.prompt is not None:
            logger.info("missed routine %s yesterday", self.prompt["name"])
        return self.prompt

    def accept(self) -> None:
        """Switch to yesterday and train the missed routine."""
        if self.prompt is None:
            return
        self.active_date = self.today - datetime.timedelta(days=1)
        self.override = self.prompt
        self.prompt = None

    def skip(self) -> None:
        self.prompt = None

    def back_to_today(self) -> None:
        self.active_date = self.today
        self.override = None

    async def routine(self) -> Optional[dict]:
        return await self.planner.resolve(self.active_date, self.override, self.today)

    async def log_set(self, exercise_id: int, weight: float, reps: float, **kwargs) -> int:
        """Log into the active date; backdated when it is not today."""
        date = None if self.is_today else self.active_date
        return await self.planner.log_set(exercise_id, weight, reps, date=date, **kwargs)
