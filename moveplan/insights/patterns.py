"""Rule-based learning of when the user actually moves.

Completed (or abandoned) activities are folded into per-weekday, per-hour
time patterns. The patterns are the only history kept; they are turned into
an ``ActivityHistory`` that biases slot ranking.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import datetime, time

from moveplan.domain.enums import ActivityKind, WorkoutType
from moveplan.domain.preferences import ActivityHistory

MIN_SUCCESS_RATE = 0.5
PATTERN_MINUTE_GRANULARITY = 15


@dataclass(frozen=True)
class ActivityTimePattern:
    """Success statistics for one (weekday, hour, kind) cell.

    Attributes:
        weekday: Monday = 0 ... Sunday = 6
        hour: Hour of day
        minute: Minute of the latest sample, rounded down to 15
        kind: Activity kind
        success_count: Number of successful sessions
        total_count: Number of recorded sessions
        average_duration: Mean duration in minutes
        workout_type: Latest workout type seen for this cell
    """

    weekday: int
    hour: int
    minute: int
    kind: ActivityKind
    success_count: int
    total_count: int
    average_duration: int
    workout_type: WorkoutType | None = None

    @property
    def success_rate(self) -> float:
        if self.total_count == 0:
            return 0.0
        return self.success_count / self.total_count

    @property
    def wall_clock(self) -> time:
        return time(self.hour, self.minute)


def record_outcome(
    patterns: Iterable[ActivityTimePattern],
    kind: ActivityKind,
    at: datetime,
    duration_minutes: int,
    successful: bool,
    workout_type: WorkoutType | None = None,
) -> tuple[ActivityTimePattern, ...]:
    """Fold one activity outcome into the pattern table.

    Args:
        patterns: Existing patterns
        kind: Activity kind
        at: Local start time of the activity
        duration_minutes: Actual or planned duration
        successful: Whether the activity was completed
        workout_type: Workout split, for workouts

    Returns:
        New pattern tuple (input is not modified)
    """
    weekday = at.weekday()
    minute = (at.minute // PATTERN_MINUTE_GRANULARITY) * PATTERN_MINUTE_GRANULARITY
    updated: list[ActivityTimePattern] = []
    found = False

    for pattern in patterns:
        if not found and pattern.weekday == weekday and pattern.hour == at.hour and pattern.kind == kind:
            new_total = pattern.total_count + 1
            updated.append(
                replace(
                    pattern,
                    minute=minute,
                    success_count=pattern.success_count + (1 if successful else 0),
                    total_count=new_total,
                    average_duration=(pattern.average_duration * pattern.total_count + duration_minutes) // new_total,
                    workout_type=workout_type or pattern.workout_type,
                )
            )
            found = True
        else:
            updated.append(pattern)

    if not found:
        updated.append(
            ActivityTimePattern(
                weekday=weekday,
                hour=at.hour,
                minute=minute,
                kind=kind,
                success_count=1 if successful else 0,
                total_count=1,
                average_duration=duration_minutes,
                workout_type=workout_type,
            )
        )
    return tuple(updated)


def best_times(
    patterns: Iterable[ActivityTimePattern],
    kind: ActivityKind,
    weekday: int,
    min_success_rate: float = MIN_SUCCESS_RATE,
) -> list[time]:
    """Wall-clock times for a kind on a weekday, best success rate first."""
    relevant = [
        p for p in patterns
        if p.weekday == weekday and p.kind == kind and p.success_rate >= min_success_rate
    ]
    relevant.sort(key=lambda p: (-p.success_rate, -p.total_count, p.hour, p.minute))
    return [p.wall_clock for p in relevant]


def build_history(
    patterns: Iterable[ActivityTimePattern],
    last_workout_type: WorkoutType | None = None,
) -> ActivityHistory:
    """Build the planner's history input from learned patterns."""
    patterns = tuple(patterns)
    commit_times: dict[ActivityKind, dict[int, list[time]]] = {}
    for kind in {p.kind for p in patterns}:
        by_weekday = {}
        for weekday in range(7):
            times = best_times(patterns, kind, weekday)
            if times:
                by_weekday[weekday] = times
        if by_weekday:
            commit_times[kind] = by_weekday

    return ActivityHistory(commit_times=commit_times, last_workout_type=last_workout_type)
