"""Unified per-day timeline.

Merges three sources into one list a consumer can render and act on:

1. Occurrences of recurring templates (source ``scheduled``)
2. One-off planned activities (source ``planned``)
3. Third-party busy blocks (source ``external``); self-authored blocks are
   already represented by 1 or 2 and are dropped

Same-kind entries closer than the dedup window collapse to the first kept
one; occurrences are added first, so an occurrence always wins over a
one-off. Actions on a displayed entry are routed back to the record that
backs it: by stable id when the caller has one, otherwise by (kind, time).
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from typing import Generic, TypeVar

from loguru import logger

from moveplan.activities.store import OneOffStore
from moveplan.core.errors import ActivityNotFoundError, InvalidActivityError, TemplateNotFoundError
from moveplan.domain.clock import ensure_aware, local_day
from moveplan.domain.enums import ActivityKind, EditScope, EntrySource, OccurrenceStatus, WorkoutType
from moveplan.domain.models import ExternalBusyBlock, Occurrence, OneOffActivity, parse_occurrence_id
from moveplan.domain.proximity import ProximityPolicy
from moveplan.recurrence.engine import RecurrenceEngine
from moveplan.state.snapshot import EngineSnapshot

T = TypeVar("T", Occurrence, OneOffActivity)

_SOURCE_ORDER = {EntrySource.SCHEDULED: 0, EntrySource.PLANNED: 1, EntrySource.EXTERNAL: 2}


@dataclass(frozen=True)
class TimelineEntry:
    """One row of the day timeline.

    ``kind`` is None for external busy blocks. ``entry_id`` is the occurrence
    id, the one-off activity id or the block id depending on ``source``.
    """

    entry_id: str
    source: EntrySource
    title: str
    start: datetime
    end: datetime
    kind: ActivityKind | None = None
    workout_type: WorkoutType | None = None
    completed: bool = False
    status: OccurrenceStatus | None = None
    walkable: bool = False

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    @classmethod
    def from_occurrence(cls, occurrence: Occurrence) -> TimelineEntry:
        return cls(
            entry_id=occurrence.occurrence_id,
            source=EntrySource.SCHEDULED,
            title=occurrence.title,
            start=occurrence.start,
            end=occurrence.end,
            kind=occurrence.kind,
            workout_type=occurrence.workout_type,
            completed=occurrence.completed,
            status=occurrence.status,
        )

    @classmethod
    def from_one_off(cls, activity: OneOffActivity) -> TimelineEntry:
        return cls(
            entry_id=activity.activity_id,
            source=EntrySource.PLANNED,
            title=activity.title,
            start=activity.start,
            end=activity.end,
            kind=activity.kind,
            workout_type=activity.workout_type,
            completed=activity.completed,
        )

    @classmethod
    def from_block(cls, block: ExternalBusyBlock) -> TimelineEntry:
        return cls(
            entry_id=block.block_id,
            source=EntrySource.EXTERNAL,
            title=block.title,
            start=block.start,
            end=block.end,
            walkable=block.walkable,
        )


@dataclass(frozen=True)
class ResolvedActivity(Generic[T]):
    """The record backing a displayed timeline entry."""

    record: T

    @property
    def is_occurrence(self) -> bool:
        return isinstance(self.record, Occurrence)

    @property
    def ref(self) -> str:
        return self.record.ref

    @property
    def source(self) -> EntrySource:
        return self.record.source


class TimelineReconciler:
    """Builds the deduplicated timeline and routes actions back to their records."""

    def __init__(self, engine: RecurrenceEngine, one_offs: OneOffStore, policy: ProximityPolicy | None = None):
        self.engine = engine
        self.one_offs = one_offs
        self.policy = policy or ProximityPolicy()

    @property
    def tz(self) -> tzinfo:
        return self.engine.tz

    def timeline(
        self,
        day: date,
        busy_blocks: Iterable[ExternalBusyBlock] = (),
        include_skipped: bool = False,
        snapshot: EngineSnapshot | None = None,
    ) -> list[TimelineEntry]:
        """Merged, deduplicated entries for ``day`` ordered by start.

        Args:
            day: Day to render
            busy_blocks: External busy blocks for the day
            include_skipped: Keep skipped occurrences (they never suppress other entries)
            snapshot: Snapshot to read (defaults to the current one)
        """
        snap = snapshot or self.engine.store.snapshot()
        kept: list[TimelineEntry] = []
        dropped = 0

        candidates = [TimelineEntry.from_occurrence(o) for o in self.engine.occurrences(day, True, snap)]
        candidates += [TimelineEntry.from_one_off(a) for a in self.one_offs.for_day(day, snap)]
        skipped_entries = []
        for entry in candidates:
            if entry.status == OccurrenceStatus.SKIPPED:
                if include_skipped:
                    skipped_entries.append(entry)
                continue
            if self._has_duplicate(entry, kept):
                dropped += 1
                logger.debug(f"[TIMELINE] Suppressed duplicate {entry.source.value} entry_id={entry.entry_id}")
                continue
            kept.append(entry)

        kept += skipped_entries
        kept += [TimelineEntry.from_block(b) for b in busy_blocks if not b.self_authored]
        kept.sort(key=lambda e: (e.start, _SOURCE_ORDER[e.source], e.entry_id))
        if dropped:
            logger.info(f"[TIMELINE] day={day.isoformat()} suppressed {dropped} duplicate entr{'y' if dropped == 1 else 'ies'}")
        return kept

    def _has_duplicate(self, entry: TimelineEntry, kept: Iterable[TimelineEntry]) -> bool:
        return any(k.kind == entry.kind and self.policy.is_duplicate(k.start, entry.start) for k in kept)

    # -----------------------------
    # Resolution
    # -----------------------------
    def resolve(
        self,
        day: date,
        kind: ActivityKind,
        displayed_start: datetime,
        entry_id: str | None = None,
    ) -> ResolvedActivity:
        """Map a displayed entry back to the occurrence or one-off that backs it.

        Args:
            day: Day the entry is displayed on
            kind: Kind of the displayed entry
            displayed_start: Start time as displayed
            entry_id: Stable entry id, when the caller has one

        Returns:
            The backing record

        Raises:
            ActivityNotFoundError: No record matches, or two match equally well
        """
        snap = self.engine.store.snapshot()
        if entry_id is not None:
            return self._resolve_by_id(entry_id, snap)

        displayed_start = ensure_aware(displayed_start, self.tz)
        occurrences = [o for o in self.engine.occurrences(day, True, snap) if o.kind == kind]
        match = self._nearest(occurrences, displayed_start, self.policy.match_window)
        if match is not None:
            return ResolvedActivity(match)

        activities = [a for a in self.one_offs.for_day(day, snap) if a.kind == kind]
        match = self._nearest(activities, displayed_start, self.policy.fallback_window)
        if match is not None:
            return ResolvedActivity(match)

        logger.warning(
            f"[TIMELINE] Could not locate {kind.value} at {displayed_start.isoformat()} on {day.isoformat()}"
        )
        raise ActivityNotFoundError()

    def _resolve_by_id(self, entry_id: str, snap: EngineSnapshot) -> ResolvedActivity:
        activity = snap.one_offs.get(entry_id)
        if activity is not None:
            return ResolvedActivity(activity)
        parsed = parse_occurrence_id(entry_id)
        if parsed is not None:
            template_id, occurrence_day = parsed
            try:
                return ResolvedActivity(self.engine.occurrence(template_id, occurrence_day, snap))
            except TemplateNotFoundError as e:
                raise ActivityNotFoundError(f"Could not locate activity {entry_id}") from e
        raise ActivityNotFoundError(f"Could not locate activity {entry_id}")

    @staticmethod
    def _nearest(records: list[T], target: datetime, window: timedelta) -> T | None:
        scored = sorted(
            ((abs(r.start - target), r) for r in records if abs(r.start - target) <= window),
            key=lambda pair: pair[0],
        )
        if not scored:
            return None
        if len(scored) > 1 and scored[0][0] == scored[1][0]:
            raise ActivityNotFoundError("Could not locate activity: ambiguous match")
        return scored[0][1]

    # -----------------------------
    # Actions
    # -----------------------------
    def reschedule(
        self,
        day: date,
        kind: ActivityKind,
        displayed_start: datetime,
        new_start: datetime,
        entry_id: str | None = None,
        new_duration: int | None = None,
    ) -> ResolvedActivity:
        """Move the displayed entry; an occurrence gets a this-occurrence override."""
        resolved = self.resolve(day, kind, displayed_start, entry_id)
        new_start = ensure_aware(new_start, self.tz)

        if resolved.is_occurrence:
            occurrence = resolved.record
            if local_day(new_start, self.tz) != occurrence.day:
                raise InvalidActivityError("An occurrence can only be moved within its own day")
            self.engine.update_template(
                occurrence.template_id,
                occurrence.day,
                scope=EditScope.THIS_OCCURRENCE,
                new_time=new_start.astimezone(self.tz).time().replace(second=0, microsecond=0),
                new_duration=new_duration,
            )
            updated = self.engine.occurrence(occurrence.template_id, occurrence.day)
        else:
            updated = self.one_offs.update(resolved.ref, new_start=new_start, new_duration=new_duration)

        logger.info(f"[TIMELINE] Rescheduled {resolved.source.value} ref={resolved.ref} to {new_start.isoformat()}")
        return ResolvedActivity(updated)

    def delete(
        self,
        day: date,
        kind: ActivityKind,
        displayed_start: datetime,
        entry_id: str | None = None,
    ) -> ResolvedActivity:
        """Remove the displayed entry: skip an occurrence, delete a one-off."""
        resolved = self.resolve(day, kind, displayed_start, entry_id)
        if resolved.is_occurrence:
            occurrence = resolved.record
            if occurrence.status != OccurrenceStatus.SKIPPED:
                self.engine.skip_occurrence(occurrence.template_id, occurrence.day)
        else:
            self.one_offs.delete(resolved.ref)
        logger.info(f"[TIMELINE] Removed {resolved.source.value} ref={resolved.ref}")
        return resolved

    def toggle_completion(
        self,
        day: date,
        kind: ActivityKind,
        displayed_start: datetime,
        entry_id: str | None = None,
    ) -> bool:
        """Flip completion of the displayed entry and return the new state."""
        resolved = self.resolve(day, kind, displayed_start, entry_id)
        if resolved.is_occurrence:
            occurrence = resolved.record
            return self.engine.toggle_completion(occurrence.template_id, occurrence.day)
        return self.one_offs.toggle_completion(resolved.ref)
