"""Single proximity policy for every "is this the same thing" decision.

One-off vs occurrence dedup, (kind, time) resolution and slot bucketing all
read their tolerances from here so they stay consistent.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from moveplan.config.settings import Settings


@dataclass(frozen=True)
class ProximityPolicy:
    """Tolerances used across the engine.

    Attributes:
        dedup_window: Same-kind entries closer than this are duplicates
        match_window: Tolerance when mapping a displayed time back to an occurrence
        fallback_window: Tolerance when mapping a displayed time back to a one-off
        slot_bucket: Bucket width used to drop same-time slot duplicates
        consolidation_gap: Max gap bridged when merging selected slots into ranges
    """

    dedup_window: timedelta = timedelta(minutes=15)
    match_window: timedelta = timedelta(seconds=60)
    fallback_window: timedelta = timedelta(minutes=30)
    slot_bucket: timedelta = timedelta(minutes=5)
    consolidation_gap: timedelta = timedelta(minutes=30)

    @classmethod
    def from_settings(cls, settings: Settings) -> ProximityPolicy:
        return cls(
            dedup_window=timedelta(minutes=settings.dedup_window_minutes),
            match_window=timedelta(seconds=settings.match_window_seconds),
            fallback_window=timedelta(minutes=settings.fallback_window_minutes),
            slot_bucket=timedelta(minutes=settings.slot_bucket_minutes),
            consolidation_gap=timedelta(minutes=settings.consolidation_gap_minutes),
        )

    def is_duplicate(self, a: datetime, b: datetime) -> bool:
        return abs(a - b) < self.dedup_window

    def bucket_of(self, dt: datetime) -> int:
        """Index of the bucket ``dt`` rounds to (nearest bucket boundary)."""
        width = self.slot_bucket.total_seconds()
        return int((dt.timestamp() + width / 2) // width)
