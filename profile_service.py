from __future__ import annotations
import datetime
import logging
from typing import Optional

from db import Store
from tools import DateTools, MathTools

logger = logging.getLogger(__name__)


class ProfileService:
    """Onboarding, body weight check-ins and daily nutrition logging."""

    def __init__(self, store: Store) -> None:
        self.store = store

    async def onboard(
        self,
        name: str,
        gender: str,
        birth_year: int,
        height: float,
        weight: float,
        goal_weight: float,
        today: datetime.date | None = None,
    ) -> dict:
        """Create the profile with targets derived from the body measurements."""
        if height <= 0 or weight <= 0 or goal_weight <= 0:
            raise ValueError("height and weights must be positive")
        goal = MathTools.derive_goal(weight, goal_weight)
        targets = MathTools.daily_targets(
            weight, height, MathTools.age(birth_year, today), gender, goal
        )
        record = {
            "name": name,
            "gender": gender,
            "birth_year": birth_year,
            "height": height,
            "starting_weight": weight,
            "current_weight": weight,
            "goal_weight": goal_weight,
            "goal": goal,
            "daily_calorie_target": targets["calories"],
            "daily_protein_target": targets["protein"],
            "onboarding_complete": True,
        }
        record["id"] = await self.store.profile.save(record)
        logger.info("onboarded %s with goal %s", name or "user", goal)
        return record

    async def is_onboarded(self) -> bool:
        profile = await self.store.profile.current()
        return bool(profile and profile["onboarding_complete"])

    async def check_in_weight(
        self, weight: float, day: datetime.date | None = None
    ) -> Optional[dict]:
        """Record today's body weight on the profile and in the daily log."""
        if weight <= 0:
            raise ValueError("weight must be positive")
        day = DateTools.parse_day(day or datetime.date.today())
        profile = await self.store.profile.current()
        if profile is not None:
            await self.store.profile.update(profile["id"], {"current_weight": weight})
        await self.store.daily_logs.upsert(DateTools.day_key(day), logged_weight=weight)
        return await self.store.profile.current()

    async def log_nutrition(
        self,
        day: datetime.date,
        calories: float,
        protein: float,
    ) -> dict:
        key = DateTools.day_key(DateTools.parse_day(day))
        await self.store.daily_logs.upsert(key, calories=calories, protein=protein)
        return await self.store.daily_logs.for_date(key)
