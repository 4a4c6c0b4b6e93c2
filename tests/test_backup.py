import os
import sys
import json
import datetime
import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from backup_service import BackupService, InvalidBackupError
from db import Store
from profile_service import ProfileService

NOW = datetime.datetime(2024, 3, 12, 9, 30)


async def filled_store(path):
    store = Store(path)
    await ProfileService(store).onboard("Sam", "male", 1994, 180, 85, 80, today=NOW.date())
    rid = await store.routines.add(
        {"name": "Push", "elements": [{"exercise_id": 1, "target_sets": 3, "target_weight": 80}]}
    )
    await store.schedule.assign(1, rid)
    await store.sets.log(1, 80, 8, now=NOW)
    await store.sets.log(6, 3.5, 30, now=NOW)
    await store.daily_logs.upsert("2024-03-12", calories=2100, protein=170)
    return store


@pytest.mark.asyncio
async def test_export_envelope(tmp_path):
    store = await filled_store(str(tmp_path / "a.db"))
    data = await BackupService(store).export(NOW)
    assert list(data) == [
        "version",
        "timestamp",
        "exercises",
        "sets",
        "profile",
        "routines",
        "schedule",
        "dailyLogs",
    ]
    assert data["version"] == 1
    assert len(data["profile"]) == 1
    assert data["profile"][0]["dailyCalorieTarget"] > 0
    assert data["routines"][0]["elements"][0]["exerciseId"] == 1
    assert "isWarmup" in data["sets"][0]
    assert data["schedule"][1]["routineId"] is not None


@pytest.mark.asyncio
async def test_round_trip_preserves_ids(tmp_path):
    source = await filled_store(str(tmp_path / "a.db"))
    await source.exercises.delete(2)
    text = await BackupService(source).dumps(NOW)

    target = Store(str(tmp_path / "b.db"))
    await target.exercises.add({"name": "Will be replaced"})
    assert await BackupService(target).restore(text)
    assert await target.snapshot() == await source.snapshot()
    assert await target.exercises.get(2) is None


@pytest.mark.asyncio
async def test_declined_restore_leaves_store(tmp_path):
    source = await filled_store(str(tmp_path / "a.db"))
    text = await BackupService(source).dumps(NOW)
    target = Store(str(tmp_path / "b.db"))
    before = await target.snapshot()
    seen = []

    def decline(created):
        seen.append(created)
        return False

    assert not await BackupService(target).restore(text, confirm=decline)
    assert seen == [NOW]
    assert await target.snapshot() == before


@pytest.mark.asyncio
async def test_missing_schedule_rows_are_filled(tmp_path):
    store = Store(str(tmp_path / "a.db"))
    data = await BackupService(store).export(NOW)
    data["schedule"] = data["schedule"][:3]
    await BackupService(store).restore(json.dumps(data))
    assert await store.schedule.count() == 7


@pytest.mark.parametrize(
    "text",
    [
        "not json",
        "[]",
        json.dumps({"version": 1}),
        json.dumps({"version": 1, "timestamp": 0, "exercises": [], "sets": [], "profile": [], "routines": [], "schedule": [], "dailyLogs": [], "extra": []}),
        json.dumps({"version": 2, "timestamp": 0, "exercises": [], "sets": [], "profile": [], "routines": [], "schedule": [], "dailyLogs": []}),
        json.dumps({"version": 1, "timestamp": 0, "exercises": {}, "sets": [], "profile": [], "routines": [], "schedule": [], "dailyLogs": []}),
        json.dumps({"version": 1, "timestamp": 0, "exercises": [{"id": 1, "name": ""}], "sets": [], "profile": [], "routines": [], "schedule": [], "dailyLogs": []}),
    ],
)
def test_parse_rejects_invalid(text):
    with pytest.raises(InvalidBackupError):
        BackupService.parse(text)


@pytest.mark.asyncio
async def test_restore_failure_rolls_back(tmp_path):
    store = Store(str(tmp_path / "a.db"))
    before = await store.snapshot()
    data = await BackupService(store).export(NOW)
    data["exercises"].append(dict(data["exercises"][0]))
    with pytest.raises(InvalidBackupError):
        await BackupService(store).restore(json.dumps(data))
    assert await store.snapshot() == before


@pytest.mark.asyncio
async def test_two_profiles_rejected(tmp_path):
    store = await filled_store(str(tmp_path / "a.db"))
    data = await BackupService(store).export(NOW)
    data["profile"].append(dict(data["profile"][0], id=2))
    with pytest.raises(InvalidBackupError):
        await BackupService(store).restore(json.dumps(data))


@pytest.mark.asyncio
async def test_write_uses_dated_filename(tmp_path):
    store = Store(str(tmp_path / "a.db"))
    service = BackupService(store)
    assert service.filename(datetime.date(2024, 3, 12)) == "ironlog_backup_2024-03-12.json"
    path = await service.write(str(tmp_path), NOW)
    assert os.path.basename(path) == "ironlog_backup_2024-03-12.json"
    with open(path, encoding="utf-8") as f:
        assert json.load(f)["version"] == 1
