import os
import sys
import datetime
import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import Store
from planner_service import ActiveDay, PlannerService
from tools import DateTools

TODAY = datetime.date(2024, 3, 12)  # a Tuesday
YESTERDAY = TODAY - datetime.timedelta(days=1)


@pytest.fixture
def store(tmp_path):
    return Store(str(tmp_path / "ironlog.db"))


async def make_routine(store, name="Push", elements=None):
    if elements is None:
        elements = [
            {"exercise_id": 1, "target_sets": 2},
            {"exercise_id": 4, "target_sets": 1},
        ]
    rid = await store.routines.add({"name": name, "elements": elements})
    return await store.routines.get(rid)


@pytest.mark.asyncio
async def test_resolve_uses_weekday_schedule(store):
    planner = PlannerService(store)
    routine = await make_routine(store)
    await planner.assign(DateTools.weekday_index(TODAY), routine["id"])
    assert (await planner.resolve(TODAY, today=TODAY))["name"] == "Push"
    assert await planner.resolve(YESTERDAY, today=TODAY) is None


@pytest.mark.asyncio
async def test_dangling_schedule_is_rest_day(store):
    planner = PlannerService(store)
    await planner.assign(DateTools.weekday_index(TODAY), 999)
    assert await planner.resolve(TODAY, today=TODAY) is None


@pytest.mark.asyncio
async def test_override_ignored_on_today(store):
    planner = PlannerService(store)
    scheduled = await make_routine(store, "Scheduled")
    other = await make_routine(store, "Other")
    await planner.assign(DateTools.weekday_index(TODAY), scheduled["id"])
    assert (await planner.resolve(TODAY, other, today=TODAY))["name"] == "Scheduled"
    assert (await planner.resolve(YESTERDAY, other, today=TODAY))["name"] == "Other"


@pytest.mark.asyncio
async def test_missed_day(store):
    planner = PlannerService(store)
    routine = await make_routine(store)
    assert await planner.missed_day(TODAY) is None
    await planner.assign(DateTools.weekday_index(YESTERDAY), routine["id"])
    assert (await planner.missed_day(TODAY))["id"] == routine["id"]
    await store.sets.log(1, 60, 10, date=YESTERDAY, now=datetime.datetime(2024, 3, 12, 23, 59, 59))
    assert await planner.missed_day(TODAY) is None


@pytest.mark.asyncio
async def test_missed_day_ignores_sets_outside_yesterday(store):
    planner = PlannerService(store)
    routine = await make_routine(store)
    await planner.assign(DateTools.weekday_index(YESTERDAY), routine["id"])
    await store.sets.add({"exercise_id": 1, "weight": 60, "reps": 10, "timestamp": DateTools.to_millis(datetime.datetime(2024, 3, 12, 0, 0))})
    assert await planner.missed_day(TODAY) is not None


@pytest.mark.asyncio
async def test_active_day_backlogs_into_yesterday(store):
    planner = PlannerService(store)
    routine = await make_routine(store)
    await planner.assign(DateTools.weekday_index(YESTERDAY), routine["id"])
    active = ActiveDay(planner, today=TODAY)
    assert (await active.check_missed())["id"] == routine["id"]
    active.accept()
    assert not active.is_today
    assert active.active_date == YESTERDAY
    assert (await active.routine())["id"] == routine["id"]

    set_id = await active.log_set(1, 60, 10)
    logged = await store.sets.get(set_id)
    start, end = DateTools.day_bounds(YESTERDAY)
    assert start <= logged["timestamp"] <= end

    active.back_to_today()
    assert active.is_today
    assert active.override is None


@pytest.mark.asyncio
async def test_active_day_skip(store):
    planner = PlannerService(store)
    routine = await make_routine(store)
    await planner.assign(DateTools.weekday_index(YESTERDAY), routine["id"])
    active = ActiveDay(planner, today=TODAY)
    await active.check_missed()
    active.skip()
    assert active.prompt is None
    assert active.is_today
    assert await active.check_missed() is None


@pytest.mark.asyncio
async def test_display_exercises_follow_routine_order(store):
    planner = PlannerService(store)
    routine = await make_routine(
        store,
        elements=[{"exercise_id": 3}, {"exercise_id": 999}, {"exercise_id": 1}],
    )
    names = [e["name"] for e in await planner.display_exercises(routine)]
    assert names == ["Deadlift", "Bench Press"]
    assert len(await planner.display_exercises(None)) == 7


@pytest.mark.asyncio
async def test_day_status_completion(store):
    planner = PlannerService(store)
    routine = await make_routine(store)
    now = datetime.datetime(2024, 3, 12, 18, 0)
    await store.sets.log(1, 100, 5, now=now)
    await store.sets.log(1, 100, 5, now=now)
    status = await planner.day_status(TODAY, routine)
    assert [e["sets_done"] for e in status["exercises"]] == [2, 0]
    assert status["exercises"][0]["complete"]
    assert not status["complete"]

    await store.sets.log(4, 40, 8, now=now)
    status = await planner.day_status(TODAY, routine)
    assert status["complete"]

    free = await planner.day_status(TODAY, None)
    assert len(free["exercises"]) == 7
    assert not any(e["complete"] for e in free["exercises"])
    assert not free["complete"]


@pytest.mark.asyncio
async def test_empty_routine_is_never_complete(store):
    planner = PlannerService(store)
    routine = await make_routine(store, elements=[])
    status = await planner.day_status(TODAY, routine)
    assert status["exercises"] == []
    assert not status["complete"]


@pytest.mark.asyncio
async def test_week(store):
    planner = PlannerService(store)
    routine = await make_routine(store)
    await planner.assign(2, routine["id"])
    week = await planner.week()
    assert [day for day, _ in week] == list(range(7))
    assert week[2][1]["name"] == "Push"
    assert week[0][1] is None
