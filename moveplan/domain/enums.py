"""Canonical enums for the scheduling engine.

All enums are string-based so they serialize to JSON and database columns
without translation tables.
"""

from enum import StrEnum


# -----------------------------
# Activities
# -----------------------------
class ActivityKind(StrEnum):
    """Kind of movement activity."""

    WALK = "walk"
    WORKOUT = "workout"
    STRETCHING = "stretching"
    MEDITATION = "meditation"
    CUSTOM = "custom"


class WorkoutType(StrEnum):
    """Strength / cardio split for workout activities."""

    PUSH = "push"
    PULL = "pull"
    LEGS = "legs"
    CARDIO = "cardio"
    FULL_BODY = "full_body"


# -----------------------------
# Recurrence
# -----------------------------
class RecurrenceRule(StrEnum):
    """How a template repeats from its anchor date."""

    ONCE = "once"
    DAILY = "daily"
    WEEKDAYS = "weekdays"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


class EditScope(StrEnum):
    """Which occurrences a template edit applies to."""

    THIS_OCCURRENCE = "this_occurrence"
    THIS_AND_FUTURE = "this_and_future"
    ALL_OCCURRENCES = "all_occurrences"


class OccurrenceStatus(StrEnum):
    """Lifecycle of a single occurrence.

    planned -> completed and planned -> skipped are the only transitions;
    both are reversible.
    """

    PLANNED = "planned"
    COMPLETED = "completed"
    SKIPPED = "skipped"


# -----------------------------
# Timeline / slots
# -----------------------------
class EntrySource(StrEnum):
    """Where a timeline entry comes from."""

    SCHEDULED = "scheduled"
    PLANNED = "planned"
    EXTERNAL = "external"


class SlotKind(StrEnum):
    """Kind of step slot recommendation."""

    FREE_TIME = "free_time"
    WALKABLE_MEETING = "walkable_meeting"
    BREAK_TIME = "break_time"


class RecommendationLabel(StrEnum):
    """Why a slot is recommended."""

    YOUR_BEST_TIME = "your_best_time"
    PREFERRED_TIME = "preferred_time"


class TimeOfDay(StrEnum):
    """Preferred time-of-day window."""

    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    NO_PREFERENCE = "no_preference"
