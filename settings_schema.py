from typing import Literal

from pydantic import BaseModel, Field, ValidationError


class SettingsSchema(BaseModel):
    db_path: str = "ironlog.db"
    app_name: str = "ironlog"
    log_level: str = "INFO"
    plateau_weeks: int = Field(default=4, ge=1)
    plateau_min_weeks: int = Field(default=3, ge=2)
    plateau_threshold: float = Field(default=1.01, gt=0)
    trend_mode: Literal["peak", "average"] = "peak"
    backup_dir: str = "."


def validate_settings(data: dict) -> SettingsSchema:
    try:
        return SettingsSchema(**data)
    except ValidationError as e:
        raise ValueError(str(e))
