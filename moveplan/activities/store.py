"""One-off planned activity store.

Independently created, non-recurring entries. A bounded repeat series is
materialized eagerly into separate entries that share a ``series_id``.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import replace
from datetime import UTC, date, datetime, tzinfo
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from moveplan.core.errors import ActivityNotFoundError, InvalidActivityError
from moveplan.domain.clock import ensure_aware, local_day
from moveplan.domain.enums import ActivityKind, RecurrenceRule, WorkoutType
from moveplan.domain.models import OneOffActivity
from moveplan.planner.models import StepSlot, WorkoutSlot
from moveplan.recurrence.rules import iter_dates
from moveplan.state.snapshot import EngineSnapshot, SnapshotStore

DEFAULT_DURATIONS: dict[ActivityKind, int] = {
    ActivityKind.WALK: 30,
    ActivityKind.WORKOUT: 60,
    ActivityKind.STRETCHING: 15,
    ActivityKind.MEDITATION: 10,
    ActivityKind.CUSTOM: 30,
}

MAX_SERIES_LENGTH = 366


class ActivitySpec(BaseModel):
    """Validated input for a one-off activity."""

    model_config = ConfigDict(extra="forbid")

    kind: ActivityKind
    start: datetime
    title: str | None = None
    duration_minutes: int | None = Field(default=None, strict=True, gt=0, le=24 * 60)
    workout_type: WorkoutType | None = None
    notes: str = ""

    @model_validator(mode="after")
    def check_workout_type(self) -> ActivitySpec:
        if self.workout_type is not None and self.kind != ActivityKind.WORKOUT:
            raise ValueError("workout_type is only valid for workout activities")
        return self


class OneOffStore:
    """CRUD over one-off activities held in the snapshot store."""

    def __init__(self, store: SnapshotStore, tz: tzinfo = UTC):
        self.store = store
        self.tz = tz

    # -----------------------------
    # Queries
    # -----------------------------
    def get(self, activity_id: str, snapshot: EngineSnapshot | None = None) -> OneOffActivity:
        snap = snapshot or self.store.snapshot()
        activity = snap.one_offs.get(activity_id)
        if activity is None:
            raise ActivityNotFoundError(f"Could not locate activity {activity_id}")
        return activity

    def for_day(self, day: date, snapshot: EngineSnapshot | None = None) -> list[OneOffActivity]:
        snap = snapshot or self.store.snapshot()
        activities = [a for a in snap.one_offs.values() if local_day(a.start, self.tz) == day]
        return sorted(activities, key=lambda a: (a.start, a.activity_id))

    # -----------------------------
    # Mutations
    # -----------------------------
    def _build(self, spec: ActivitySpec | Mapping[str, Any]) -> OneOffActivity:
        if not isinstance(spec, ActivitySpec):
            try:
                spec = ActivitySpec.model_validate(spec)
            except ValidationError as e:
                raise InvalidActivityError(f"Invalid activity: {e}") from e
        return OneOffActivity(
            activity_id=str(uuid.uuid4()),
            kind=spec.kind,
            title=(spec.title or "").strip() or spec.kind.value.replace("_", " ").title(),
            start=ensure_aware(spec.start, self.tz),
            duration_minutes=spec.duration_minutes or DEFAULT_DURATIONS[spec.kind],
            workout_type=spec.workout_type,
            notes=spec.notes,
        )

    def add(self, spec: ActivitySpec | Mapping[str, Any]) -> str:
        activity = self._build(spec)
        self.store.mutate(lambda snap: (snap.with_one_off(activity), None), reason="add_one_off")
        logger.info(
            f"[ACTIVITIES] Added activity_id={activity.activity_id} kind={activity.kind.value} "
            f"start={activity.start.isoformat()}"
        )
        return activity.activity_id

    def add_series(self, spec: ActivitySpec | Mapping[str, Any], repeat: RecurrenceRule | str, count: int) -> list[str]:
        """Eagerly materialize a bounded repeat series.

        Args:
            spec: First activity of the series
            repeat: Recurrence rule used to generate the dates
            count: Number of entries to create

        Returns:
            Ids of the created activities in date order
        """
        try:
            rule = RecurrenceRule(repeat)
        except ValueError as e:
            raise InvalidActivityError(f"Unknown recurrence rule: {repeat!r}") from e
        if isinstance(count, bool) or not isinstance(count, int) or not 0 < count <= MAX_SERIES_LENGTH:
            raise InvalidActivityError(f"Series length must be within 1-{MAX_SERIES_LENGTH}, got {count!r}")

        first = self._build(spec)
        series_id = str(uuid.uuid4())
        local_start = first.start.astimezone(self.tz)
        members = []
        for day in iter_dates(rule, local_start.date(), count):
            start = datetime.combine(day, local_start.timetz())
            members.append(
                replace(first, activity_id=str(uuid.uuid4()), start=start, repeat=rule, series_id=series_id)
            )

        def apply(snap: EngineSnapshot) -> tuple[EngineSnapshot, None]:
            one_offs = dict(snap.one_offs)
            one_offs.update({m.activity_id: m for m in members})
            return replace(snap, one_offs=one_offs), None

        self.store.mutate(apply, reason="add_series")
        logger.info(f"[ACTIVITIES] Added series_id={series_id} repeat={rule.value} count={len(members)}")
        return [m.activity_id for m in members]

    def add_from_slot(self, slot: StepSlot | WorkoutSlot) -> str | None:
        """Commit a suggested slot as a one-off activity.

        Returns:
            The new activity id, or None if a same-kind activity already starts in that minute
        """
        if isinstance(slot, WorkoutSlot):
            kind = ActivityKind.WORKOUT
            title = f"{slot.workout_type.value.replace('_', ' ').title()} Workout"
            notes = ""
            workout_type = slot.workout_type
        else:
            kind = ActivityKind.WALK
            title = slot.source or "Walk Break"
            notes = f"Target: {slot.target_steps} steps"
            workout_type = None

        start = ensure_aware(slot.start, self.tz).replace(second=0, microsecond=0)
        activity = OneOffActivity(
            activity_id=str(uuid.uuid4()),
            kind=kind,
            title=title,
            start=start,
            duration_minutes=max(1, slot.duration_minutes),
            workout_type=workout_type,
            notes=notes,
        )

        def apply(snap: EngineSnapshot) -> tuple[EngineSnapshot, str | None]:
            exists = any(
                a.kind == kind and a.start.replace(second=0, microsecond=0) == start
                for a in snap.one_offs.values()
            )
            if exists:
                return snap, None
            return snap.with_one_off(activity), activity.activity_id

        created = self.store.mutate(apply, reason="add_from_slot")
        if created is None:
            logger.debug(f"[ACTIVITIES] Slot {slot.slot_id} already committed, skipping")
        return created

    def update(
        self,
        activity_id: str,
        *,
        new_start: datetime | None = None,
        new_duration: int | None = None,
        new_title: str | None = None,
    ) -> OneOffActivity:
        """Reschedule, resize or rename a one-off activity (duration is preserved on move)."""
        if new_start is None and new_duration is None and new_title is None:
            raise InvalidActivityError("Nothing to update")
        if new_duration is not None and (
            isinstance(new_duration, bool) or not isinstance(new_duration, int) or not 0 < new_duration <= 24 * 60
        ):
            raise InvalidActivityError(f"Duration must be a positive number of minutes, got {new_duration!r}")
        if new_title is not None and not new_title.strip():
            raise InvalidActivityError("Title must not be blank")

        def apply(snap: EngineSnapshot) -> tuple[EngineSnapshot, OneOffActivity]:
            activity = self.get(activity_id, snap)
            updated = replace(
                activity,
                start=ensure_aware(new_start, self.tz) if new_start is not None else activity.start,
                duration_minutes=new_duration or activity.duration_minutes,
                title=new_title.strip() if new_title is not None else activity.title,
                updated_at=datetime.now(UTC),
            )
            return snap.with_one_off(updated), updated

        updated = self.store.mutate(apply, reason="update_one_off")
        logger.info(f"[ACTIVITIES] Updated activity_id={activity_id} start={updated.start.isoformat()}")
        return updated

    def delete(self, activity_id: str) -> None:
        def apply(snap: EngineSnapshot) -> tuple[EngineSnapshot, None]:
            self.get(activity_id, snap)
            return snap.without_one_off(activity_id), None

        self.store.mutate(apply, reason="delete_one_off")
        logger.info(f"[ACTIVITIES] Deleted activity_id={activity_id}")

    def delete_series(self, series_id: str, from_day: date | None = None) -> int:
        """Delete the entries of a series (optionally only from ``from_day`` onward)."""

        def apply(snap: EngineSnapshot) -> tuple[EngineSnapshot, int]:
            doomed = [
                a.activity_id for a in snap.one_offs.values()
                if a.series_id == series_id and (from_day is None or local_day(a.start, self.tz) >= from_day)
            ]
            if not doomed:
                return snap, 0
            one_offs = {k: v for k, v in snap.one_offs.items() if k not in doomed}
            return replace(snap, one_offs=one_offs), len(doomed)

        removed = self.store.mutate(apply, reason="delete_series")
        logger.info(f"[ACTIVITIES] Deleted {removed} entries of series_id={series_id}")
        return removed

    def toggle_completion(self, activity_id: str) -> bool:
        def apply(snap: EngineSnapshot) -> tuple[EngineSnapshot, bool]:
            activity = self.get(activity_id, snap)
            updated = replace(activity, completed=not activity.completed, updated_at=datetime.now(UTC))
            return snap.with_one_off(updated), updated.completed

        completed = self.store.mutate(apply, reason="toggle_one_off")
        logger.info(f"[ACTIVITIES] activity_id={activity_id} completed={completed}")
        return completed

    def clear_past(self, before: datetime) -> int:
        """Remove completed activities that ended before ``before``."""
        before = ensure_aware(before, self.tz)

        def apply(snap: EngineSnapshot) -> tuple[EngineSnapshot, int]:
            keep = {k: v for k, v in snap.one_offs.items() if not (v.completed and v.end < before)}
            removed = len(snap.one_offs) - len(keep)
            if removed == 0:
                return snap, 0
            return replace(snap, one_offs=keep), removed

        return self.store.mutate(apply, reason="clear_past")
