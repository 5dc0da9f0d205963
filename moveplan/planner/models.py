"""Ephemeral planning outputs.

Slots are candidate recommendations, never stored; they are recomputed on
every planning pass.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime

from moveplan.domain.enums import ActivityKind, RecommendationLabel, SlotKind, WorkoutType


def slot_id_for(prefix: str, start: datetime) -> str:
    """Deterministic slot id so repeated planning passes agree on identity."""
    return f"{prefix}:{start.isoformat()}"


@dataclass(frozen=True)
class CommittedActivity:
    """An occurrence or one-off already on the day; its time is not free."""

    kind: ActivityKind
    start: datetime
    end: datetime


@dataclass(frozen=True)
class StepSlot:
    """Candidate time window for a walk.

    Attributes:
        slot_id: Deterministic identifier (kind + start)
        kind: free_time, walkable_meeting or break_time
        start: Slot start
        end: Slot end
        target_steps: duration_minutes * steps_per_minute
        source: Meeting title or descriptive label ("Morning walk")
        rank: 1 = best; 0 when unranked
        recommended: True for the single recommended slot
        recommendation: Why it is recommended
    """

    slot_id: str
    kind: SlotKind
    start: datetime
    end: datetime
    target_steps: int
    source: str | None = None
    rank: int = 0
    recommended: bool = False
    recommendation: RecommendationLabel | None = None

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)


@dataclass(frozen=True)
class WorkoutSlot:
    """Candidate time window for the day's workout."""

    slot_id: str
    start: datetime
    end: datetime
    workout_type: WorkoutType
    recommended: bool = True
    recommendation: RecommendationLabel | None = None

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)


@dataclass(frozen=True)
class DayMovementPlan:
    """Ranked step slots and at most one workout slot for a day."""

    day: date
    step_slots: tuple[StepSlot, ...]
    workout_slot: WorkoutSlot | None
    target_steps: int
    current_steps: int = 0

    @property
    def total_slot_steps(self) -> int:
        return sum(slot.target_steps for slot in self.step_slots)

    @property
    def steps_remaining(self) -> int:
        return max(0, self.target_steps - self.current_steps)

    @property
    def projected_steps(self) -> int:
        return self.current_steps + self.total_slot_steps

    @property
    def recommended_step_slot(self) -> StepSlot | None:
        return next((slot for slot in self.step_slots if slot.recommended), None)

    def ranked_step_slots(self) -> list[StepSlot]:
        return sorted(self.step_slots, key=lambda s: (s.rank, s.start))
