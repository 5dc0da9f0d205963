"""Conflict detection between committed activities and calendar busy time.

Conflicts are data, not errors: they are surfaced to the caller, who either
reschedules the activity or dismisses the conflict for that day. Detection
never mutates state; dismissal goes through the snapshot store.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace
from datetime import UTC, date, datetime, timedelta, tzinfo
from typing import Literal

from loguru import logger
from pydantic import BaseModel, Field

from moveplan.domain.clock import ensure_aware, format_hm, minutes_between
from moveplan.domain.enums import OccurrenceStatus
from moveplan.domain.models import ExternalBusyBlock, Occurrence, OneOffActivity
from moveplan.state.snapshot import EngineSnapshot, SnapshotStore

CommittedActivity = Occurrence | OneOffActivity


class ScheduleConflict(BaseModel):
    """A committed activity that collides with external busy time."""

    activity_ref: str = Field(description="Occurrence id or one-off activity id")
    activity_title: str = Field(description="Title of the committed activity")
    day: date = Field(description="Day of the conflict")
    block_id: str = Field(description="ID of the conflicting busy block")
    block_title: str = Field(description="Title of the conflicting busy block")
    overlap_start: datetime = Field(description="Start of the overlap (or of the gap, for too_close)")
    overlap_end: datetime = Field(description="End of the overlap (or of the gap, for too_close)")
    overlap_minutes: int = Field(ge=0, description="Overlap length in minutes (0 for too_close)")
    description: str = Field(description="Human-readable summary")
    reason: Literal["overlap", "too_close"] = Field(default="overlap", description="Reason for the conflict")
    dismissed: bool = Field(default=False, description="Dismissed by the user for this day")


def _time_ranges_overlap(start1: datetime, end1: datetime, start2: datetime, end2: datetime) -> bool:
    """Half-open [start, end) intersection test."""
    return start1 < end2 and start2 < end1


def _gap_between(start1: datetime, end1: datetime, start2: datetime, end2: datetime) -> tuple[datetime, datetime]:
    """Bounds of the gap separating two non-overlapping ranges."""
    if end1 <= start2:
        return end1, start2
    return end2, start1


class ConflictDetector:
    """Finds overlaps between committed activities and third-party busy blocks."""

    def __init__(self, store: SnapshotStore, tz: tzinfo = UTC, buffer_minutes: int = 0):
        self.store = store
        self.tz = tz
        self.buffer = timedelta(minutes=max(0, buffer_minutes))

    def detect(
        self,
        day: date,
        committed: Iterable[CommittedActivity],
        busy_blocks: Iterable[ExternalBusyBlock],
        include_dismissed: bool = False,
        snapshot: EngineSnapshot | None = None,
    ) -> list[ScheduleConflict]:
        """Flag committed activities that intersect busy time on ``day``.

        Completed and skipped activities never conflict. Self-authored blocks
        are ignored.

        Args:
            day: Day being checked
            committed: Occurrences and one-off activities for the day
            busy_blocks: External busy blocks for the day
            include_dismissed: Return dismissed conflicts too (flagged ``dismissed``)
            snapshot: Snapshot to read the dismissed set from

        Returns:
            Conflicts ordered by overlap start, then activity ref
        """
        snap = snapshot or self.store.snapshot()
        blocks = [b for b in busy_blocks if not b.self_authored]
        conflicts: list[ScheduleConflict] = []

        for activity in committed:
            if activity.completed or getattr(activity, "status", None) == OccurrenceStatus.SKIPPED:
                continue
            start = ensure_aware(activity.start, self.tz)
            end = ensure_aware(activity.end, self.tz)
            dismissed = (activity.ref, day) in snap.dismissed
            if dismissed and not include_dismissed:
                continue

            for block in blocks:
                conflict = self._check(day, activity, start, end, block)
                if conflict is not None:
                    conflicts.append(conflict.model_copy(update={"dismissed": dismissed}))

        conflicts.sort(key=lambda c: (c.overlap_start, c.activity_ref, c.block_id))
        if conflicts:
            logger.info(f"[CONFLICTS] day={day.isoformat()} found {len(conflicts)} conflict(s)")
        return conflicts

    def _check(
        self,
        day: date,
        activity: CommittedActivity,
        start: datetime,
        end: datetime,
        block: ExternalBusyBlock,
    ) -> ScheduleConflict | None:
        block_start = ensure_aware(block.start, self.tz)
        block_end = ensure_aware(block.end, self.tz)

        if _time_ranges_overlap(start, end, block_start, block_end):
            overlap_start = max(start, block_start)
            overlap_end = min(end, block_end)
            minutes = minutes_between(overlap_start, overlap_end)
            return ScheduleConflict(
                activity_ref=activity.ref,
                activity_title=activity.title,
                day=day,
                block_id=block.block_id,
                block_title=block.title,
                overlap_start=overlap_start,
                overlap_end=overlap_end,
                overlap_minutes=minutes,
                description=(
                    f'Overlaps with "{block.title}" '
                    f"({format_hm(overlap_start, self.tz)}-{format_hm(overlap_end, self.tz)}, {minutes} min)"
                ),
                reason="overlap",
            )

        if not self.buffer:
            return None
        gap_start, gap_end = _gap_between(start, end, block_start, block_end)
        if gap_end - gap_start >= self.buffer:
            return None
        return ScheduleConflict(
            activity_ref=activity.ref,
            activity_title=activity.title,
            day=day,
            block_id=block.block_id,
            block_title=block.title,
            overlap_start=gap_start,
            overlap_end=gap_end,
            overlap_minutes=0,
            description=f'Too close to "{block.title}" ({minutes_between(gap_start, gap_end)} min apart)',
            reason="too_close",
        )

    # -----------------------------
    # Dismissal
    # -----------------------------
    def is_dismissed(self, activity_ref: str, day: date) -> bool:
        return (activity_ref, day) in self.store.snapshot().dismissed

    def dismiss(self, activity_ref: str, day: date) -> None:
        """Suppress conflicts of ``activity_ref`` on ``day`` only."""
        key = (activity_ref, day)

        def apply(snap: EngineSnapshot) -> tuple[EngineSnapshot, None]:
            if key in snap.dismissed:
                return snap, None
            return replace(snap, dismissed=snap.dismissed | {key}), None

        self.store.mutate(apply, reason="dismiss_conflict")
        logger.info(f"[CONFLICTS] Dismissed activity_ref={activity_ref} day={day.isoformat()}")

    def restore(self, activity_ref: str, day: date) -> None:
        key = (activity_ref, day)

        def apply(snap: EngineSnapshot) -> tuple[EngineSnapshot, None]:
            if key not in snap.dismissed:
                return snap, None
            return replace(snap, dismissed=snap.dismissed - {key}), None

        self.store.mutate(apply, reason="restore_conflict")
        logger.info(f"[CONFLICTS] Restored activity_ref={activity_ref} day={day.isoformat()}")
