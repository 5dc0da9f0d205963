"""Availability planner.

Computes candidate step slots (free time and walkable meetings) and at most
one workout slot for a day from external busy blocks, already committed
activities, user preferences and learned history. Committed activities hold
their own time; the rest of a gap stays free around them.

The planner is pure: it never reads or writes engine state and it never
fails on bad preferences or history (they degrade to "no preference").
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, replace
from datetime import UTC, date, datetime, time, timedelta, tzinfo
from typing import Any, TypeVar

from loguru import logger

from moveplan.config.settings import Settings
from moveplan.domain.clock import at, day_bounds, ensure_aware, minutes_between
from moveplan.domain.enums import ActivityKind, RecommendationLabel, SlotKind, TimeOfDay, WorkoutType
from moveplan.domain.models import ExternalBusyBlock
from moveplan.domain.preferences import (
    ActivityHistory,
    UserPreferences,
    coerce_history,
    coerce_preferences,
    window_for,
)
from moveplan.domain.proximity import ProximityPolicy
from moveplan.planner.consolidation import dedupe_slots
from moveplan.planner.models import CommittedActivity, DayMovementPlan, StepSlot, WorkoutSlot, slot_id_for

Interval = tuple[datetime, datetime]
T = TypeVar("T")

# Rotation applied after the last completed workout type
WORKOUT_ROTATION: dict[WorkoutType, WorkoutType] = {
    WorkoutType.PUSH: WorkoutType.PULL,
    WorkoutType.PULL: WorkoutType.LEGS,
    WorkoutType.LEGS: WorkoutType.PUSH,
}


@dataclass(frozen=True)
class PlannerConfig:
    """Planner tunables.

    Attributes:
        steps_per_minute: Walking cadence used for step estimates
        min_walk_minutes: Shortest gap worth suggesting
        max_walk_minutes: Cap on a single free-time slot
        meal_buffer_minutes: No slot starts this close to a meal time
        active_start_hour: Default start of the planning window
        active_end_hour: Default end of the planning window (24 = midnight)
    """

    steps_per_minute: int = 100
    min_walk_minutes: int = 15
    max_walk_minutes: int = 45
    meal_buffer_minutes: int = 30
    active_start_hour: int = 7
    active_end_hour: int = 22

    @classmethod
    def from_settings(cls, settings: Settings) -> PlannerConfig:
        return cls(
            steps_per_minute=settings.steps_per_minute,
            min_walk_minutes=settings.min_walk_minutes,
            max_walk_minutes=settings.max_walk_minutes,
            meal_buffer_minutes=settings.meal_buffer_minutes,
            active_start_hour=settings.active_start_hour,
            active_end_hour=settings.active_end_hour,
        )


def next_workout_type(last: WorkoutType | None) -> WorkoutType:
    """Next type in the push -> pull -> legs rotation."""
    if last is None:
        return WorkoutType.PUSH
    return WORKOUT_ROTATION.get(last, WorkoutType.PUSH)


def time_of_day_label(start: datetime) -> str:
    hour = start.hour
    if hour < 10:
        return "Morning walk"
    if hour < 14:
        return "Midday walk"
    if hour < 17:
        return "Afternoon walk"
    return "Evening walk"


def merge_intervals(intervals: Iterable[Interval]) -> list[Interval]:
    """Sort intervals by start and merge overlapping or touching ones."""
    merged: list[Interval] = []
    for start, end in sorted(intervals):
        if end <= start:
            continue
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


def free_gaps(busy: Sequence[Interval], window_start: datetime, window_end: datetime) -> list[Interval]:
    """Gaps between merged busy intervals, clipped to [window_start, window_end)."""
    gaps: list[Interval] = []
    cursor = window_start
    for start, end in busy:
        if end <= cursor:
            continue
        if start >= window_end:
            break
        if start > cursor:
            gaps.append((cursor, min(start, window_end)))
        cursor = max(cursor, end)
    if cursor < window_end:
        gaps.append((cursor, window_end))
    return gaps


class AvailabilityPlanner:
    """Builds a ``DayMovementPlan`` from busy time and preferences."""

    def __init__(
        self,
        config: PlannerConfig | None = None,
        policy: ProximityPolicy | None = None,
        tz: tzinfo = UTC,
    ):
        self.config = config or PlannerConfig()
        self.policy = policy or ProximityPolicy()
        self.tz = tz

    def plan(
        self,
        day: date,
        busy_blocks: Iterable[ExternalBusyBlock],
        committed_starts: Iterable[datetime] = (),
        preferences: UserPreferences | Mapping[str, Any] | None = None,
        history: ActivityHistory | Mapping[str, Any] | None = None,
        current_steps: int = 0,
        committed: Iterable[CommittedActivity] = (),
        workouts_this_week: int = 0,
    ) -> DayMovementPlan:
        """Compute ranked step slots and an optional workout slot for ``day``.

        Committed activities are carved out of the free time like busy blocks,
        so the rest of a gap stays available around them.

        Args:
            day: Day to plan
            busy_blocks: External calendar blocks (self-authored ones are ignored)
            committed_starts: Starts of committed activities whose length is unknown
            preferences: User preferences (malformed input degrades to defaults)
            history: Learned commit times (malformed input degrades to none)
            current_steps: Steps already taken today
            committed: Committed occurrences / one-offs with bounds and kind
            workouts_this_week: Days this week that already have a completed workout

        Returns:
            DayMovementPlan with slots ranked best first
        """
        prefs = coerce_preferences(preferences)
        hist = coerce_history(history)
        activities = [
            CommittedActivity(a.kind, ensure_aware(a.start, self.tz), ensure_aware(a.end, self.tz)) for a in committed
        ]
        bare_starts = [ensure_aware(c, self.tz) for c in committed_starts]
        starts = bare_starts + [a.start for a in activities]

        window_start, window_end = self._active_window(day, prefs)
        third_party = [b for b in busy_blocks if not b.self_authored]
        busy = merge_intervals(
            [(ensure_aware(b.start, self.tz), ensure_aware(b.end, self.tz)) for b in third_party]
            + self._held_intervals(bare_starts, activities)
        )
        gaps = free_gaps(busy, window_start, window_end)
        meals = [at(day, meal, self.tz) for meal in prefs.meal_times]

        candidates = self._free_time_slots(day, gaps, meals, prefs.preferred_walk_time)
        candidates += self._walkable_slots(third_party, window_start, window_end)
        candidates = [
            slot for slot in candidates
            if not self._near_meal(slot.start, meals) and not self._is_committed(slot.start, slot.end, starts)
        ]
        step_slots = self._rank_steps(day, dedupe_slots(candidates, self.policy), prefs, hist)
        workout_slot = self._workout_slot(day, gaps, starts, meals, prefs, hist, activities, workouts_this_week)

        logger.debug(
            f"[PLANNER] day={day.isoformat()} gaps={len(gaps)} committed={len(starts)} "
            f"step_slots={len(step_slots)} workout={'yes' if workout_slot else 'no'}"
        )
        return DayMovementPlan(
            day=day,
            step_slots=tuple(step_slots),
            workout_slot=workout_slot,
            target_steps=prefs.daily_step_goal,
            current_steps=max(0, current_steps),
        )

    # -----------------------------
    # Window and filters
    # -----------------------------
    def _active_window(self, day: date, prefs: UserPreferences) -> Interval:
        day_start, _ = day_bounds(day, self.tz)
        if prefs.active_start is not None and prefs.active_end is not None:
            return at(day, prefs.active_start, self.tz), at(day, prefs.active_end, self.tz)
        return (
            day_start + timedelta(hours=self.config.active_start_hour),
            day_start + timedelta(hours=self.config.active_end_hour),
        )

    def _held_intervals(self, bare_starts: Sequence[datetime], activities: Sequence[CommittedActivity]) -> list[Interval]:
        """Time held by committed activities; each holds at least the dedup window."""
        hold = self.policy.dedup_window
        held = [(start, start + hold) for start in bare_starts]
        held += [(a.start, max(a.end, a.start + hold)) for a in activities]
        return held

    def _near_meal(self, start: datetime, meals: Sequence[datetime]) -> bool:
        buffer = timedelta(minutes=self.config.meal_buffer_minutes)
        return any(abs(start - meal) < buffer for meal in meals)

    def _after_meals(self, start: datetime, meals: Sequence[datetime]) -> datetime:
        """Move ``start`` past every meal buffer it falls into."""
        buffer = timedelta(minutes=self.config.meal_buffer_minutes)
        moved = True
        while moved:
            moved = False
            for meal in meals:
                if abs(start - meal) < buffer:
                    start = meal + buffer
                    moved = True
        return start

    def _is_committed(self, start: datetime, end: datetime, committed: Sequence[datetime]) -> bool:
        return any(start <= c < end or self.policy.is_duplicate(c, start) for c in committed)

    def _in_window(self, start: datetime, preference: TimeOfDay) -> bool:
        window = window_for(preference)
        if window is None:
            return True
        local = start.astimezone(self.tz).time()
        return window[0] <= local < window[1]

    def _anchors(self, day: date, gap_start: datetime, gap_end: datetime, preference: TimeOfDay) -> list[datetime]:
        """Candidate starts in a gap: its start, and the preferred window opening inside it."""
        anchors = [gap_start]
        window = window_for(preference)
        if window is not None:
            window_open = at(day, window[0], self.tz)
            if gap_start < window_open < gap_end:
                anchors.append(window_open)
        return anchors

    # -----------------------------
    # Step slots
    # -----------------------------
    def _steps_for(self, minutes: int) -> int:
        return minutes * self.config.steps_per_minute

    def _free_time_slots(
        self,
        day: date,
        gaps: Sequence[Interval],
        meals: Sequence[datetime],
        preference: TimeOfDay,
    ) -> list[StepSlot]:
        slots = []
        for gap_start, gap_end in gaps:
            for anchor in self._anchors(day, gap_start, gap_end, preference):
                start = self._after_meals(anchor, meals)
                available = minutes_between(start, gap_end) if start < gap_end else 0
                if available < self.config.min_walk_minutes:
                    continue
                length = min(available, self.config.max_walk_minutes)
                slots.append(
                    StepSlot(
                        slot_id=slot_id_for(SlotKind.FREE_TIME.value, start),
                        kind=SlotKind.FREE_TIME,
                        start=start,
                        end=start + timedelta(minutes=length),
                        target_steps=self._steps_for(length),
                        source=time_of_day_label(start.astimezone(self.tz)),
                    )
                )
        return slots

    def _walkable_slots(
        self,
        blocks: Iterable[ExternalBusyBlock],
        window_start: datetime,
        window_end: datetime,
    ) -> list[StepSlot]:
        slots = []
        for block in blocks:
            if not block.walkable:
                continue
            start = ensure_aware(block.start, self.tz)
            end = ensure_aware(block.end, self.tz)
            if start < window_start or end > window_end or end <= start:
                continue
            slots.append(
                StepSlot(
                    slot_id=slot_id_for(SlotKind.WALKABLE_MEETING.value, start),
                    kind=SlotKind.WALKABLE_MEETING,
                    start=start,
                    end=end,
                    target_steps=self._steps_for(minutes_between(start, end)),
                    source=block.title,
                )
            )
        return slots

    def _rank_steps(
        self,
        day: date,
        slots: Sequence[StepSlot],
        prefs: UserPreferences,
        hist: ActivityHistory,
    ) -> list[StepSlot]:
        if not slots:
            return []
        preference = prefs.preferred_walk_time
        ordered = sorted(slots, key=lambda s: (not self._in_window(s.start, preference), s.start))
        recommended, label = self._pick(
            day, ordered, preference, hist.times_for(ActivityKind.WALK, day.weekday()), key=lambda s: s.start
        )
        return [
            replace(
                slot,
                rank=rank,
                recommended=slot is recommended,
                recommendation=label if slot is recommended else None,
            )
            for rank, slot in enumerate(ordered, start=1)
        ]

    def _pick(
        self,
        day: date,
        ordered: Sequence[T],
        preference: TimeOfDay,
        best_times: Sequence[time],
        key: Callable[[T], datetime],
    ) -> tuple[T, RecommendationLabel | None]:
        """Choose the recommended candidate from an already ranked list.

        Returns:
            (candidate, label). History wins over the preference window; when
            neither applies the top-ranked candidate is returned unlabelled.
        """
        if best_times:
            target = at(day, best_times[0], self.tz)
            choice = min(ordered, key=lambda c: (abs(key(c) - target), key(c)))
            return choice, RecommendationLabel.YOUR_BEST_TIME
        if window_for(preference) is None:
            return ordered[0], None
        in_window = [c for c in ordered if self._in_window(key(c), preference)]
        if in_window:
            return min(in_window, key=key), RecommendationLabel.PREFERRED_TIME
        return ordered[0], None

    # -----------------------------
    # Workout slot
    # -----------------------------
    def _workout_slot(
        self,
        day: date,
        gaps: Sequence[Interval],
        committed: Sequence[datetime],
        meals: Sequence[datetime],
        prefs: UserPreferences,
        hist: ActivityHistory,
        activities: Sequence[CommittedActivity],
        workouts_this_week: int,
    ) -> WorkoutSlot | None:
        if not prefs.has_workout_goal:
            return None
        if any(a.kind == ActivityKind.WORKOUT for a in activities):
            logger.debug(f"[PLANNER] Workout already scheduled on {day.isoformat()}, no suggestion")
            return None
        if workouts_this_week >= prefs.workout_frequency:
            logger.debug(
                f"[PLANNER] Weekly workout goal met ({workouts_this_week}/{prefs.workout_frequency}), no suggestion"
            )
            return None
        duration = timedelta(minutes=prefs.workout_duration_minutes)
        preference = prefs.preferred_workout_time

        starts: list[datetime] = []
        for gap_start, gap_end in gaps:
            for anchor in self._anchors(day, gap_start, gap_end, preference):
                start = self._after_meals(anchor, meals)
                if start + duration <= gap_end and not self._is_committed(start, start + duration, committed):
                    starts.append(start)
        if not starts:
            logger.debug(f"[PLANNER] No gap fits a {prefs.workout_duration_minutes} min workout on {day.isoformat()}")
            return None

        ordered = sorted(set(starts), key=lambda s: (not self._in_window(s, preference), s))
        start, label = self._pick(
            day, ordered, preference, hist.times_for(ActivityKind.WORKOUT, day.weekday()), key=lambda s: s
        )
        return WorkoutSlot(
            slot_id=slot_id_for("workout", start),
            start=start,
            end=start + duration,
            workout_type=next_workout_type(hist.last_workout_type),
            recommended=True,
            recommendation=label,
        )
