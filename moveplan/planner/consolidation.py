"""Slot de-duplication and selection consolidation."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from moveplan.domain.proximity import ProximityPolicy
from moveplan.planner.models import StepSlot


@dataclass(frozen=True)
class ConsolidatedRange:
    """Contiguous time range built from one or more selected slots."""

    start: datetime
    end: datetime
    target_steps: int
    slot_ids: tuple[str, ...] = ()

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)


def dedupe_slots(slots: Iterable[StepSlot], policy: ProximityPolicy) -> list[StepSlot]:
    """Drop same-time duplicates, keeping the greatest step estimate per bucket.

    Each slot start is rounded to ``policy.slot_bucket``. Ties on steps keep
    the earlier-seen slot. The result is ordered by start.
    """
    best: dict[int, StepSlot] = {}
    for slot in slots:
        bucket = policy.bucket_of(slot.start)
        current = best.get(bucket)
        if current is None or slot.target_steps > current.target_steps:
            best[bucket] = slot
    return sorted(best.values(), key=lambda s: (s.start, s.slot_id))


def consolidate_selection(slots: Iterable[StepSlot], policy: ProximityPolicy) -> list[ConsolidatedRange]:
    """Merge a user's selection into as few contiguous ranges as possible.

    Slots are sorted by start and merged greedily while the next start lies
    within ``policy.consolidation_gap`` of the current range end. The result
    does not depend on the input order.

    Args:
        slots: Selected step slots in any order
        policy: Proximity policy supplying the consolidation gap

    Returns:
        Ranges ordered by start; each spans min start to max end of its
        members and carries the summed step estimate
    """
    ordered = sorted(slots, key=lambda s: (s.start, s.end, s.slot_id))
    ranges: list[ConsolidatedRange] = []
    for slot in ordered:
        if ranges and slot.start <= ranges[-1].end + policy.consolidation_gap:
            last = ranges[-1]
            ranges[-1] = ConsolidatedRange(
                start=last.start,
                end=max(last.end, slot.end),
                target_steps=last.target_steps + slot.target_steps,
                slot_ids=last.slot_ids + (slot.slot_id,),
            )
        else:
            ranges.append(
                ConsolidatedRange(
                    start=slot.start,
                    end=slot.end,
                    target_steps=slot.target_steps,
                    slot_ids=(slot.slot_id,),
                )
            )
    return ranges
