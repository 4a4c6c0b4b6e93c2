from __future__ import annotations
import datetime
import json
import logging
import os
from typing import Callable, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from db import COLLECTIONS, Store, StoreWriteError
from models import (
    DailyLog,
    Exercise,
    RecordValidationError,
    Routine,
    ScheduleEntry,
    SetLog,
    UserProfile,
    to_wire,
)
from tools import DateTools

logger = logging.getLogger(__name__)

BACKUP_VERSION = 1

MODELS = {
    "exercises": Exercise,
    "routines": Routine,
    "schedule": ScheduleEntry,
    "profile": UserProfile,
    "daily_logs": DailyLog,
    "sets": SetLog,
}


class InvalidBackupError(ValueError):
    """Raised for backup files that cannot be restored."""


class BackupEnvelope(BaseModel):
    """Top level of a backup file."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid"
    )

    version: Literal[1]
    timestamp: int = Field(ge=0)
    exercises: List[Exercise]
    sets: List[SetLog]
    profile: List[UserProfile] = Field(max_length=1)
    routines: List[Routine]
    schedule: List[ScheduleEntry]
    daily_logs: List[DailyLog]

    def collections(self) -> dict[str, list[dict]]:
        return {
            name: [record.model_dump() for record in getattr(self, name)]
            for name in COLLECTIONS
        }


class BackupService:
    """Exports the whole store to JSON and restores it from such a file."""

    def __init__(self, store: Store, app_name: str = "ironlog") -> None:
        self.store = store
        self.app_name = app_name

    async def export(self, now: datetime.datetime | None = None) -> dict:
        now = now or datetime.datetime.now()
        snapshot = await self.store.snapshot()
        data: dict = {"version": BACKUP_VERSION, "timestamp": DateTools.to_millis(now)}
        for name in ("exercises", "sets", "profile", "routines", "schedule", "daily_logs"):
            data[to_camel(name)] = [to_wire(MODELS[name], r) for r in snapshot[name]]
        return data

    async def dumps(self, now: datetime.datetime | None = None) -> str:
        return json.dumps(await self.export(now), indent=2)

    def filename(self, day: datetime.date | None = None) -> str:
        day = day or datetime.date.today()
        return f"{self.app_name}_backup_{day.isoformat()}.json"

    async def write(self, directory: str = ".", now: datetime.datetime | None = None) -> str:
        """Write a backup into ``directory`` and return its path."""
        now = now or datetime.datetime.now()
        path = os.path.join(directory, self.filename(now.date()))
        text = await self.dumps(now)
        with open(path, "w", encoding="utf-8") as f:
            f.write(text)
        logger.info("wrote backup %s", path)
        return path

    @staticmethod
    def parse(text: str | bytes) -> BackupEnvelope:
        try:
            data = json.loads(text)
        except (TypeError, ValueError) as e:
            raise InvalidBackupError(f"backup is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise InvalidBackupError("backup must be a JSON object")
        try:
            return BackupEnvelope.model_validate(data)
        except ValidationError as e:
            raise InvalidBackupError(str(e)) from e

    async def restore(
        self,
        text: str | bytes,
        confirm: Optional[Callable[[datetime.datetime], bool]] = None,
    ) -> bool:
        """Replace the store contents with the backup in ``text``.

        ``confirm`` receives the backup's creation time; a falsy answer
        leaves the store untouched and returns ``False``.
        """
        envelope = self.parse(text)
        if confirm is not None and not confirm(DateTools.from_millis(envelope.timestamp)):
            logger.info("restore declined")
            return False
        try:
            await self.store.replace_all(envelope.collections())
        except (StoreWriteError, RecordValidationError) as e:
            raise InvalidBackupError(f"backup could not be restored: {e}") from e
        logger.info("restored backup from %s", DateTools.from_millis(envelope.timestamp))
        return True
