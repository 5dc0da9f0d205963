"""User preferences and activity history inputs for planning.

Both are read-only configuration supplied by collaborators. Malformed input
never fails a plan: it degrades to "no preference" / "no history".
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import time
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field, ValidationError, model_validator

from moveplan.domain.enums import ActivityKind, TimeOfDay, WorkoutType

# Preferred time-of-day windows as [start, end) wall-clock bounds
TIME_OF_DAY_WINDOWS: dict[TimeOfDay, tuple[time, time]] = {
    TimeOfDay.MORNING: (time(6, 0), time(12, 0)),
    TimeOfDay.AFTERNOON: (time(12, 0), time(17, 0)),
    TimeOfDay.EVENING: (time(17, 0), time(21, 0)),
}


def window_for(preference: TimeOfDay) -> tuple[time, time] | None:
    """Return the wall-clock window for a preference, or None for no preference."""
    return TIME_OF_DAY_WINDOWS.get(preference)


class UserPreferences(BaseModel):
    """User planning preferences."""

    daily_step_goal: int = Field(default=10000, ge=0)
    preferred_walk_time: TimeOfDay = TimeOfDay.NO_PREFERENCE
    preferred_workout_time: TimeOfDay = TimeOfDay.NO_PREFERENCE
    workout_duration_minutes: int | None = Field(default=None, gt=0)
    workout_frequency: int = Field(default=0, ge=0, le=7, description="Workouts per week; 0 means no goal")
    active_start: time | None = None
    active_end: time | None = None
    meal_times: list[time] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_active_hours(self) -> UserPreferences:
        if (self.active_start is None) != (self.active_end is None):
            raise ValueError("active_start and active_end must be set together")
        if self.active_start is not None and self.active_end is not None and self.active_start >= self.active_end:
            raise ValueError("active_start must be before active_end")
        return self

    @property
    def has_workout_goal(self) -> bool:
        return self.workout_frequency > 0 and self.workout_duration_minutes is not None


class ActivityHistory(BaseModel):
    """Per-weekday historical commit times, used only to bias slot ranking.

    ``commit_times[kind][weekday]`` lists wall-clock times, best first.
    Weekdays follow ``date.weekday()`` (Monday = 0).
    """

    commit_times: dict[ActivityKind, dict[int, list[time]]] = Field(default_factory=dict)
    last_workout_type: WorkoutType | None = None

    @model_validator(mode="after")
    def check_weekdays(self) -> ActivityHistory:
        for kind, by_weekday in self.commit_times.items():
            for weekday in by_weekday:
                if not 0 <= weekday <= 6:
                    raise ValueError(f"Invalid weekday {weekday} for {kind}")
        return self

    def times_for(self, kind: ActivityKind, weekday: int) -> list[time]:
        return list(self.commit_times.get(kind, {}).get(weekday, []))


def coerce_preferences(raw: UserPreferences | Mapping[str, Any] | None) -> UserPreferences:
    """Coerce caller input into preferences, degrading to defaults on bad input."""
    if raw is None:
        return UserPreferences()
    if isinstance(raw, UserPreferences):
        return raw
    try:
        return UserPreferences.model_validate(raw)
    except ValidationError as e:
        logger.warning(f"[PLANNER] Ignoring malformed preferences, using no preference: {e.error_count()} error(s)")
        return UserPreferences()


def coerce_history(raw: ActivityHistory | Mapping[str, Any] | None) -> ActivityHistory:
    """Coerce caller input into history, degrading to empty history on bad input."""
    if raw is None:
        return ActivityHistory()
    if isinstance(raw, ActivityHistory):
        return raw
    try:
        return ActivityHistory.model_validate(raw)
    except ValidationError as e:
        logger.warning(f"[PLANNER] Ignoring malformed history: {e.error_count()} error(s)")
        return ActivityHistory()
