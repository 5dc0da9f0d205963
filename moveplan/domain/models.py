"""Core immutable data models for the scheduling engine.

This module defines the stored entities and their derived views:
- Activity templates (recurring definitions) and per-date overrides
- Occurrences (a template materialized on one date)
- One-off planned activities (independent store)
- External busy blocks (read-only calendar input)

All models are frozen; updates go through ``dataclasses.replace``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta

from moveplan.domain.enums import (
    ActivityKind,
    EntrySource,
    OccurrenceStatus,
    RecurrenceRule,
    WorkoutType,
)


def _now() -> datetime:
    return datetime.now(UTC)


def occurrence_id_for(template_id: str, day: date) -> str:
    """Stable occurrence identifier: ``{template_id}:{YYYY-MM-DD}``."""
    return f"{template_id}:{day.isoformat()}"


def parse_occurrence_id(occurrence_id: str) -> tuple[str, date] | None:
    """Split an occurrence id back into (template_id, day), or None if it is not one."""
    template_id, sep, day_str = occurrence_id.rpartition(":")
    if not sep or not template_id:
        return None
    try:
        return template_id, date.fromisoformat(day_str)
    except ValueError:
        return None


# -----------------------------
# Recurring templates
# -----------------------------
@dataclass(frozen=True)
class ActivityTemplate:
    """A recurring activity definition independent of any specific date.

    Attributes:
        template_id: Unique template identifier
        kind: Activity kind (walk, workout, ...)
        title: Display title
        duration_minutes: Duration of each occurrence
        start_time: Wall-clock start (not an absolute instant)
        recurrence: Recurrence rule
        anchor: First occurrence date
        month_day: Day-of-month a monthly template recurs on (defaults to the anchor's)
        workout_type: Optional workout split (workouts only)
        active: False once the template is deleted
        until: Last day the template may materialize (set by a this-and-future split)
        deactivated_on: Day from which a deleted template stops expanding
    """

    template_id: str
    kind: ActivityKind
    title: str
    duration_minutes: int
    start_time: time
    recurrence: RecurrenceRule
    anchor: date
    month_day: int | None = None
    workout_type: WorkoutType | None = None
    active: bool = True
    until: date | None = None
    deactivated_on: date | None = None
    created_at: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class OccurrenceOverride:
    """Date-scoped exception to a template's normal parameters."""

    template_id: str
    day: date
    start_time: time | None = None
    duration_minutes: int | None = None
    title: str | None = None
    skipped: bool = False

    @property
    def key(self) -> tuple[str, date]:
        return (self.template_id, self.day)

    @property
    def is_empty(self) -> bool:
        return (
            self.start_time is None
            and self.duration_minutes is None
            and self.title is None
            and not self.skipped
        )


@dataclass(frozen=True)
class Occurrence:
    """One concrete dated materialization of a template (derived, never stored)."""

    occurrence_id: str
    template_id: str
    day: date
    kind: ActivityKind
    title: str
    start: datetime
    end: datetime
    duration_minutes: int
    completed: bool
    status: OccurrenceStatus
    workout_type: WorkoutType | None = None
    source: EntrySource = EntrySource.SCHEDULED

    @property
    def ref(self) -> str:
        return self.occurrence_id


# -----------------------------
# One-off planned activities
# -----------------------------
@dataclass(frozen=True)
class OneOffActivity:
    """An independently created, non-recurring planned activity.

    ``repeat`` and ``series_id`` mark entries that were materialized eagerly
    as part of a bounded repeat series.
    """

    activity_id: str
    kind: ActivityKind
    title: str
    start: datetime
    duration_minutes: int
    workout_type: WorkoutType | None = None
    completed: bool = False
    notes: str = ""
    repeat: RecurrenceRule | None = None
    series_id: str | None = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    @property
    def end(self) -> datetime:
        return self.start + timedelta(minutes=self.duration_minutes)

    @property
    def ref(self) -> str:
        return self.activity_id

    @property
    def source(self) -> EntrySource:
        return EntrySource.PLANNED


# -----------------------------
# External calendar input
# -----------------------------
@dataclass(frozen=True)
class ExternalBusyBlock:
    """Read-only interval of unavailable time from the external calendar.

    ``self_authored`` marks events this system pushed itself; they are
    already represented by occurrences / one-offs and are never treated as
    third-party busy time.
    """

    block_id: str
    title: str
    start: datetime
    end: datetime
    walkable: bool = False
    self_authored: bool = False
    attendee_count: int = 0
    is_organizer: bool = False
    notes: str | None = None

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    @property
    def source(self) -> EntrySource:
        return EntrySource.EXTERNAL
