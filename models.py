from __future__ import annotations
import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel


Category = Literal["strength", "cardio", "isometric"]
Gender = Literal["male", "female"]
Goal = Literal["loss", "maintain", "gain"]


class RecordValidationError(ValueError):
    """Raised when a record does not satisfy its model."""


class _Schema(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


class Record(_Schema):
    id: Optional[int] = None


def _required_text(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("must not be empty")
    return value


class Exercise(Record):
    name: str
    target_muscle: str = "Custom"
    category: Category = "strength"
    is_custom: bool = False

    @field_validator("name")
    @classmethod
    def check_name(cls, value: str) -> str:
        return _required_text(value)


class RoutineElement(_Schema):
    """Target prescription for one exercise inside a routine.

    ``target_reps`` is reps for strength, seconds for isometric and minutes
    for cardio; ``target_weight`` is kg, or distance/incline for cardio.
    """

    exercise_id: int
    target_sets: int = Field(default=3, ge=1)
    target_reps: float = Field(default=10, ge=0)
    target_weight: float = Field(default=0, ge=0)
    target_speed: Optional[float] = Field(default=None, ge=0)


class Routine(Record):
    name: str
    elements: List[RoutineElement] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def check_name(cls, value: str) -> str:
        return _required_text(value)


class ScheduleEntry(Record):
    day_index: int = Field(ge=0, le=6)
    routine_id: Optional[int] = None


class UserProfile(Record):
    name: str = ""
    gender: Gender = "male"
    birth_year: int = Field(ge=1900)
    height: float = Field(gt=0)
    starting_weight: float = Field(gt=0)
    current_weight: float = Field(gt=0)
    goal_weight: float = Field(gt=0)
    goal: Goal = "maintain"
    daily_calorie_target: float = Field(default=2000, ge=0)
    daily_protein_target: float = Field(default=150, ge=0)
    onboarding_complete: bool = False


class DailyLog(Record):
    date: str
    calories: float = Field(default=0, ge=0)
    protein: float = Field(default=0, ge=0)
    logged_weight: Optional[float] = Field(default=None, gt=0)

    @field_validator("date")
    @classmethod
    def check_date(cls, value: str) -> str:
        try:
            canonical = datetime.date.fromisoformat(value).isoformat()
        except ValueError:
            canonical = None
        if canonical != value:
            raise ValueError("date must be formatted YYYY-MM-DD")
        return value


class SetLog(Record):
    """One performed set.

    ``weight`` doubles as distance for cardio; ``reps`` is minutes for cardio
    and seconds for isometric holds.
    """

    exercise_id: int
    weight: float = Field(default=0, ge=0)
    reps: float = Field(default=0, ge=0)
    calories: Optional[float] = Field(default=None, ge=0)
    is_warmup: bool = False
    timestamp: int = Field(ge=0)


def validate_record(model: type[Record], data: dict) -> dict:
    """Return ``data`` validated against ``model`` as a snake_case dict."""
    try:
        return model.model_validate(data).model_dump()
    except ValidationError as e:
        raise RecordValidationError(str(e)) from e


def to_wire(model: type[Record], record: dict) -> dict:
    """Return ``record`` with the camelCase keys used in backup files."""
    return model.model_validate(record).model_dump(by_alias=True)
