import asyncio
import datetime
import logging
from typing import Dict, Optional

from fastapi import APIRouter, Body, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect

from backup_service import BackupService, InvalidBackupError
from config import load_settings
from db import CollectionRepository, Store, StoreWriteError
from planner_service import PlannerService
from profile_service import ProfileService
from stats_service import StatisticsService
from tools import DateTools

logger = logging.getLogger(__name__)


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, StoreWriteError):
        return HTTPException(status_code=409, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


def _day(value: Optional[str]) -> datetime.date:
    if value is None:
        return datetime.date.today()
    try:
        return DateTools.parse_day(value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


class IronLogAPI:
    """Provides REST endpoints over the local fitness store."""

    def __init__(
        self,
        db_path: str | None = None,
        yaml_path: str = "settings.yaml",
    ) -> None:
        self.settings = load_settings(yaml_path)
        self.db_path = db_path or self.settings.db_path
        self.store = Store(self.db_path)
        self.planner = PlannerService(self.store)
        self.profiles = ProfileService(self.store)
        self.statistics = StatisticsService(self.store, self.settings)
        self.backups = BackupService(self.store, self.settings.app_name)
        self.watchers: list[WebSocket] = []
        self._tasks: set[asyncio.Task] = set()
        self.store.bus.subscribe(self._on_change)
        self.app = FastAPI(title="IronLog API")
        self._setup_routes()

    def _on_change(self, tables: frozenset[str]) -> None:
        self._broadcast_event({"event": "changed", "collections": sorted(tables)})

    async def _broadcast(self, event: dict) -> None:
        for ws in list(self.watchers):
            try:
                await ws.send_json(event)
            except (RuntimeError, WebSocketDisconnect) as e:
                logger.info("dropping websocket watcher: %s", e)
                if ws in self.watchers:
                    self.watchers.remove(ws)

    def _broadcast_event(self, event: dict) -> None:
        if not self.watchers:
            return
        task = asyncio.get_running_loop().create_task(self._broadcast(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _collection_router(
        self, name: str, repo: CollectionRepository, include_add: bool = True
    ) -> APIRouter:
        router = APIRouter(prefix=f"/{name}", tags=[name.replace("_", " ").title()])

        @router.get("")
        async def list_records():
            return await repo.to_array()

        @router.get("/{record_id}")
        async def get_record(record_id: int):
            record = await repo.get(record_id)
            if record is None:
                raise HTTPException(status_code=404, detail=f"{name} {record_id} not found")
            return record

        if include_add:

            @router.post("")
            async def add_record(record: Dict = Body(...)):
                try:
                    return {"id": await repo.add(record)}
                except (ValueError, StoreWriteError) as e:
                    raise _http_error(e)

        @router.patch("/{record_id}")
        async def update_record(record_id: int, changes: Dict = Body(...)):
            try:
                updated = await repo.update(record_id, changes)
            except (ValueError, StoreWriteError) as e:
                raise _http_error(e)
            if not updated:
                raise HTTPException(status_code=404, detail=f"{name} {record_id} not found")
            return {"status": "updated"}

        @router.delete("/{record_id}")
        async def delete_record(record_id: int):
            try:
                await repo.delete(record_id)
            except StoreWriteError as e:
                raise _http_error(e)
            return {"status": "deleted"}

        return router

    def _setup_routes(self) -> None:
        @self.app.get("/health")
        async def health():
            """Return API and database connection status."""
            return {"status": "ok", "exercises": await self.store.exercises.count()}

        @self.app.websocket("/ws/updates")
        async def updates_socket(ws: WebSocket):
            self.watchers.append(ws)
            await ws.accept()
            try:
                while True:
                    await ws.receive_text()
            except WebSocketDisconnect:
                logger.debug("websocket watcher disconnected")
            finally:
                if ws in self.watchers:
                    self.watchers.remove(ws)

        @self.app.get("/sets/range")
        async def sets_in_range(start: int, end: int):
            return await self.store.sets.between(start, end)

        @self.app.post("/sets")
        async def log_set(
            exercise_id: int = Body(...),
            weight: float = Body(0),
            reps: float = Body(0),
            calories: Optional[float] = Body(None),
            is_warmup: bool = Body(False),
            date: Optional[str] = Body(None),
        ):
            day = _day(date) if date else None
            try:
                set_id = await self.planner.log_set(
                    exercise_id,
                    weight,
                    reps,
                    date=day,
                    calories=calories,
                    is_warmup=is_warmup,
                )
            except (ValueError, StoreWriteError) as e:
                raise _http_error(e)
            return {"id": set_id}

        @self.app.get("/schedule")
        async def list_schedule():
            return await self.store.schedule.week()

        @self.app.get("/schedule/week")
        async def schedule_week():
            return [
                {"day_index": day, "routine": routine}
                for day, routine in await self.planner.week()
            ]

        @self.app.put("/schedule/{day_index}")
        async def assign_day(day_index: int, routine_id: Optional[int] = Body(None, embed=True)):
            try:
                await self.planner.assign(day_index, routine_id)
            except (ValueError, StoreWriteError) as e:
                raise _http_error(e)
            return await self.store.schedule.for_day(day_index)

        @self.app.get("/profile")
        async def get_profile():
            profile = await self.store.profile.current()
            if profile is None:
                raise HTTPException(status_code=404, detail="no profile")
            return profile

        @self.app.put("/profile")
        async def save_profile(record: Dict = Body(...)):
            try:
                await self.store.profile.save(record)
            except (ValueError, StoreWriteError) as e:
                raise _http_error(e)
            return await self.store.profile.current()

        @self.app.post("/profile/onboard")
        async def onboard(
            name: str = Body(...),
            gender: str = Body(...),
            birth_year: int = Body(...),
            height: float = Body(...),
            weight: float = Body(...),
            goal_weight: float = Body(...),
        ):
            try:
                return await self.profiles.onboard(
                    name, gender, birth_year, height, weight, goal_weight
                )
            except (ValueError, StoreWriteError) as e:
                raise _http_error(e)

        @self.app.post("/profile/weight")
        async def check_in_weight(weight: float = Body(..., embed=True), date: Optional[str] = None):
            try:
                return await self.profiles.check_in_weight(weight, _day(date))
            except (ValueError, StoreWriteError) as e:
                raise _http_error(e)

        @self.app.get("/daily_logs/{date}")
        async def get_daily_log(date: str):
            log = await self.store.daily_logs.for_date(_day(date).isoformat())
            if log is None:
                raise HTTPException(status_code=404, detail=f"no log for {date}")
            return log

        @self.app.put("/daily_logs/{date}")
        async def upsert_daily_log(date: str, fields: Dict = Body(...)):
            key = _day(date).isoformat()
            fields.pop("date", None)
            try:
                await self.store.daily_logs.upsert(key, **fields)
            except (ValueError, StoreWriteError) as e:
                raise _http_error(e)
            return await self.store.daily_logs.for_date(key)

        @self.app.get("/active_routine")
        async def active_routine(date: Optional[str] = None, override_id: Optional[int] = None):
            override = await self.store.routines.get(override_id) if override_id else None
            return {"routine": await self.planner.resolve(_day(date), override)}

        @self.app.get("/days/{date}/status")
        async def day_status(date: str, routine_id: Optional[int] = None):
            day = _day(date)
            if routine_id is not None:
                routine = await self.store.routines.get(routine_id)
            else:
                routine = await self.planner.resolve(day)
            return await self.planner.day_status(day, routine)

        @self.app.get("/missed_day")
        async def missed_day():
            return {"routine": await self.planner.missed_day()}

        @self.app.get("/stats/overview")
        async def stats_overview(view: str = "month", date: Optional[str] = None):
            try:
                return await self.statistics.overview(view, _day(date))
            except ValueError as e:
                raise _http_error(e)

        @self.app.get("/stats/nutrition")
        async def stats_nutrition(start: str, end: str):
            return await self.statistics.nutrition(_day(start), _day(end))

        @self.app.get("/stats/plateau/{exercise_id}")
        async def stats_plateau(exercise_id: int):
            return {"plateau": await self.statistics.plateau(exercise_id)}

        @self.app.get("/stats/trend/{exercise_id}")
        async def stats_trend(
            exercise_id: int,
            view: str = "month",
            date: Optional[str] = None,
            mode: Optional[str] = None,
        ):
            try:
                return await self.statistics.trend(exercise_id, view, _day(date), mode)
            except ValueError as e:
                raise _http_error(e)

        @self.app.get("/stats/history")
        async def stats_history():
            return await self.statistics.history()

        @self.app.get("/stats/personal_record/{exercise_id}")
        async def stats_personal_record(exercise_id: int):
            return {"weight": await self.statistics.personal_record(exercise_id)}

        @self.app.get("/backup")
        async def export_backup():
            return await self.backups.export()

        @self.app.post("/backup")
        async def restore_backup(request: Request):
            try:
                await self.backups.restore(await request.body())
            except InvalidBackupError as e:
                raise _http_error(e)
            return {"status": "restored"}

        @self.app.post("/reset")
        async def factory_reset():
            try:
                await self.store.reset()
            except StoreWriteError as e:
                raise _http_error(e)
            return {"status": "reset"}

        for name in ("exercises", "routines", "sets", "daily_logs"):
            # sets are added through log_set above
            router = self._collection_router(
                name, getattr(self.store, name), include_add=name != "sets"
            )
            self.app.include_router(router)


def create_app(db_path: str | None = None, yaml_path: str = "settings.yaml") -> FastAPI:
    return IronLogAPI(db_path, yaml_path).app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_app())
