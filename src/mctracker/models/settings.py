"""Per-operator settings record: cycle target and weekly schedule."""

from __future__ import annotations

from datetime import date
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator
from pydantic.alias_generators import to_camel

DEFAULT_TARGET_PER_CYCLE = 50
ALL_DAYS_WEIGHTS: tuple[float, ...] = (1.0, 1.0, 1.0, 1.0, 1.0, 1.0, 1.0)
WEEKDAYS_ONLY_WEIGHTS: tuple[float, ...] = (0.0, 1.0, 1.0, 1.0, 1.0, 1.0, 0.0)  # Sun..Sat


class UserSchedule(BaseModel):
    """Days off plus a relative work weight for each weekday (Sun..Sat)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    days_off: frozenset[date] = frozenset()
    weekly_weights: tuple[float, float, float, float, float, float, float] = ALL_DAYS_WEIGHTS

    @field_validator("weekly_weights")
    @classmethod
    def _non_negative(cls, value: tuple[float, ...]) -> tuple[float, ...]:
        if any(w < 0 for w in value):
            raise ValueError("weekly weights must be non-negative")
        return value

    @field_serializer("days_off")
    def _sorted_days(self, value: frozenset[date]) -> list[date]:
        return sorted(value)


class UserSettings(BaseModel):
    """Settings record read at startup and written on operator change."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    target_per_cycle: int = Field(default=DEFAULT_TARGET_PER_CYCLE, ge=0)
    user_schedule: UserSchedule = UserSchedule()

    @model_validator(mode="before")
    @classmethod
    def _legacy_layout(cls, data: Any) -> Any:
        """Accept flat stored rows (``daysOff``/``weeklyWeights`` at top level).

        Rows written before weekly weights existed only carry ``excludeWeekends``.
        """
        if not isinstance(data, dict) or "userSchedule" in data or "user_schedule" in data:
            return data
        flat_keys = {"daysOff", "weeklyWeights", "excludeWeekends"}
        if not flat_keys & data.keys():
            return data
        weights = data.get("weeklyWeights")
        if not weights:
            weights = WEEKDAYS_ONLY_WEIGHTS if data.get("excludeWeekends") else ALL_DAYS_WEIGHTS
        out = {k: v for k, v in data.items() if k not in flat_keys and v is not None}
        out["userSchedule"] = {"daysOff": data.get("daysOff") or [], "weeklyWeights": weights}
        return out
