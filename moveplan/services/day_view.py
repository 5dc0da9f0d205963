"""Day view orchestration.

Fetches busy time and steps from the async collaborators, then runs the
synchronous engine components against one snapshot:

    busy blocks -> occurrences -> conflicts -> plan -> timeline

Upstream failures degrade instead of failing the view: unknown busy time is
flagged (``busy_blocks_known=False``) rather than treated as a free day, and
an unavailable step count reads as 0.
"""

from __future__ import annotations

import asyncio
import threading
from collections import OrderedDict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, replace
from datetime import UTC, date, datetime, timedelta, tzinfo
from typing import Any

from loguru import logger

from moveplan.activities.store import OneOffStore
from moveplan.calendar.conflicts import ConflictDetector, ScheduleConflict
from moveplan.calendar.timeline import ResolvedActivity, TimelineEntry, TimelineReconciler
from moveplan.config.settings import Settings
from moveplan.core.errors import UpstreamUnavailableError
from moveplan.domain.clock import local_day, resolve_timezone
from moveplan.domain.enums import ActivityKind, SlotKind, WorkoutType
from moveplan.domain.models import ExternalBusyBlock
from moveplan.domain.preferences import ActivityHistory, UserPreferences, coerce_history, coerce_preferences
from moveplan.domain.proximity import ProximityPolicy
from moveplan.insights.patterns import build_history, record_outcome
from moveplan.integrations.sources import CalendarSource, HealthSource, SyncSink
from moveplan.planner.availability import AvailabilityPlanner, PlannerConfig
from moveplan.planner.consolidation import ConsolidatedRange, consolidate_selection
from moveplan.planner.models import CommittedActivity, DayMovementPlan, StepSlot, slot_id_for
from moveplan.recurrence.engine import RecurrenceEngine
from moveplan.state.snapshot import EngineSnapshot, SnapshotStore

CACHE_SIZE = 32


@dataclass(frozen=True)
class DayView:
    """Everything a consumer needs to render one day."""

    day: date
    version: int
    timeline: tuple[TimelineEntry, ...]
    plan: DayMovementPlan
    conflicts: tuple[ScheduleConflict, ...]
    busy_blocks_known: bool = True
    warnings: tuple[str, ...] = ()


def last_completed_workout_type(snap: EngineSnapshot, tz: tzinfo = UTC) -> WorkoutType | None:
    """Workout type of the most recent completed workout, if any."""
    latest: tuple[date, WorkoutType] | None = None
    for (template_id, day), completed in snap.completions.items():
        template = snap.templates.get(template_id)
        if not completed or template is None or template.workout_type is None:
            continue
        if latest is None or day > latest[0]:
            latest = (day, template.workout_type)
    for activity in snap.one_offs.values():
        if not activity.completed or activity.workout_type is None:
            continue
        activity_day = local_day(activity.start, tz)
        if latest is None or activity_day > latest[0]:
            latest = (activity_day, activity.workout_type)
    return latest[1] if latest else None


def workout_days_in_week(snap: EngineSnapshot, day: date, tz: tzinfo = UTC) -> int:
    """Number of days in ``day``'s Monday-Sunday week with a completed workout."""
    week_start = day - timedelta(days=day.weekday())
    week_end = week_start + timedelta(days=6)
    days: set[date] = set()
    for (template_id, completion_day), completed in snap.completions.items():
        template = snap.templates.get(template_id)
        if completed and template is not None and template.kind == ActivityKind.WORKOUT:
            days.add(completion_day)
    for activity in snap.one_offs.values():
        if activity.completed and activity.kind == ActivityKind.WORKOUT:
            days.add(local_day(activity.start, tz))
    return sum(1 for d in days if week_start <= d <= week_end)


class DayViewService:
    """Composes the engine components behind one async entry point."""

    def __init__(
        self,
        engine: RecurrenceEngine,
        one_offs: OneOffStore,
        planner: AvailabilityPlanner,
        detector: ConflictDetector,
        reconciler: TimelineReconciler,
        calendar: CalendarSource | None = None,
        health: HealthSource | None = None,
        sink: SyncSink | None = None,
        cache_size: int = CACHE_SIZE,
    ):
        self.engine = engine
        self.store = engine.store
        self.one_offs = one_offs
        self.planner = planner
        self.detector = detector
        self.reconciler = reconciler
        self.calendar = calendar
        self.health = health
        self.sink = sink
        self._cache: OrderedDict[tuple, DayView] = OrderedDict()
        self._cache_size = cache_size
        self._cache_lock = threading.Lock()
        self._generations: dict[date, int] = {}

    # -----------------------------
    # Upstream calls
    # -----------------------------
    async def _fetch_blocks(self, day: date) -> tuple[list[ExternalBusyBlock], bool]:
        if self.calendar is None:
            return [], False
        try:
            return list(await self.calendar.fetch_busy_blocks(day)), True
        except Exception as e:
            logger.warning(f"[DAY_VIEW] Calendar unavailable for {day.isoformat()}, busy time unknown: {e}")
            return [], False

    async def _fetch_steps(self) -> int:
        if self.health is None:
            return 0
        try:
            return max(0, int(await self.health.current_step_count()))
        except Exception as e:
            logger.warning(f"[DAY_VIEW] Step count unavailable, assuming 0: {e}")
            return 0

    # -----------------------------
    # Refresh
    # -----------------------------
    async def refresh(
        self,
        day: date,
        preferences: UserPreferences | Mapping[str, Any] | None = None,
        history: ActivityHistory | Mapping[str, Any] | None = None,
    ) -> DayView:
        """Build the day view for ``day``.

        Args:
            day: Day to render
            preferences: User preferences (malformed input degrades to defaults)
            history: Explicit history; learned patterns are used when omitted

        Returns:
            DayView computed against a single snapshot
        """
        generation = self._generations.get(day, 0) + 1
        self._generations[day] = generation

        (blocks, known), steps = await asyncio.gather(self._fetch_blocks(day), self._fetch_steps())

        snap = self.store.snapshot()
        prefs = coerce_preferences(preferences)
        hist = (
            coerce_history(history)
            if history is not None
            else build_history(snap.patterns, last_workout_type=last_completed_workout_type(snap, self.engine.tz))
        )
        key = (day, snap.version, tuple(blocks), known, steps, prefs.model_dump_json(), hist.model_dump_json())
        with self._cache_lock:
            cached = self._cache.get(key)
            if cached is not None:
                self._cache.move_to_end(key)
                logger.debug(f"[DAY_VIEW] Cache hit day={day.isoformat()} version={snap.version}")
                return cached

        view = self._compute(day, snap, blocks, known, steps, prefs, hist)

        if self._generations.get(day) != generation:
            logger.debug(f"[DAY_VIEW] Refresh for {day.isoformat()} superseded, not caching")
            return view
        with self._cache_lock:
            self._cache[key] = view
            while len(self._cache) > self._cache_size:
                self._cache.popitem(last=False)
        return view

    def _compute(
        self,
        day: date,
        snap: EngineSnapshot,
        blocks: list[ExternalBusyBlock],
        known: bool,
        steps: int,
        prefs: UserPreferences,
        hist: ActivityHistory,
    ) -> DayView:
        occurrences = self.engine.occurrences(day, snapshot=snap)
        one_offs = self.one_offs.for_day(day, snap)
        timeline = self.reconciler.timeline(day, blocks, snapshot=snap)

        # One-offs folded into an occurrence by the timeline are not committed twice
        shown = {entry.entry_id for entry in timeline}
        committed = [a for a in (*occurrences, *one_offs) if a.ref in shown]

        conflicts = self.detector.detect(day, committed, blocks, snapshot=snap)
        plan = self.planner.plan(
            day,
            blocks,
            preferences=prefs,
            history=hist,
            current_steps=steps,
            committed=[CommittedActivity(a.kind, a.start, a.end) for a in committed],
            workouts_this_week=workout_days_in_week(snap, day, self.engine.tz),
        )

        warnings = []
        if not known:
            warnings.append("Calendar unavailable: busy time unknown, suggestions may overlap meetings")
        logger.info(
            f"[DAY_VIEW] day={day.isoformat()} version={snap.version} entries={len(timeline)} "
            f"conflicts={len(conflicts)} slots={len(plan.step_slots)} busy_known={known}"
        )
        return DayView(
            day=day,
            version=snap.version,
            timeline=tuple(timeline),
            plan=plan,
            conflicts=tuple(conflicts),
            busy_blocks_known=known,
            warnings=tuple(warnings),
        )

    def invalidate(self) -> None:
        with self._cache_lock:
            self._cache.clear()

    # -----------------------------
    # Actions
    # -----------------------------
    def toggle_completion(
        self,
        day: date,
        kind: ActivityKind,
        displayed_start: datetime,
        entry_id: str | None = None,
    ) -> bool:
        """Toggle completion and fold the outcome into the learned patterns."""
        resolved = self.reconciler.resolve(day, kind, displayed_start, entry_id)
        completed = self.reconciler.toggle_completion(day, kind, displayed_start, entry_id=resolved.ref)
        if completed:
            self._record(resolved, successful=True)
        return completed

    def skip(
        self,
        day: date,
        kind: ActivityKind,
        displayed_start: datetime,
        entry_id: str | None = None,
    ) -> ResolvedActivity:
        """Remove the entry from the day and record the miss."""
        resolved = self.reconciler.delete(day, kind, displayed_start, entry_id)
        self._record(resolved, successful=False)
        return resolved

    def _record(self, resolved: ResolvedActivity, successful: bool) -> None:
        record = resolved.record
        local_start = record.start.astimezone(self.engine.tz)

        def apply(snap: EngineSnapshot) -> tuple[EngineSnapshot, None]:
            patterns = record_outcome(
                snap.patterns,
                record.kind,
                local_start,
                record.duration_minutes,
                successful,
                workout_type=record.workout_type,
            )
            return replace(snap, patterns=patterns), None

        self.store.mutate(apply, reason="record_pattern")

    async def sync_selection(
        self,
        slots: Iterable[StepSlot],
        calendar_ids: Sequence[str] = (),
        commit: bool = True,
    ) -> list[ConsolidatedRange]:
        """Consolidate a slot selection, push it to the sink and optionally commit it.

        Raises:
            UpstreamUnavailableError: If no sink is configured or a push fails
        """
        ranges = consolidate_selection(slots, self.planner.policy)
        if not ranges:
            return []
        if self.sink is None:
            raise UpstreamUnavailableError("No sync sink configured")

        for time_range in ranges:
            try:
                await self.sink.push(time_range, list(calendar_ids))
            except UpstreamUnavailableError:
                raise
            except Exception as e:
                logger.error(f"[DAY_VIEW] Sync push failed for {time_range.start.isoformat()}: {e}")
                raise UpstreamUnavailableError(f"Sync push failed: {e}") from e

            if commit:
                self.one_offs.add_from_slot(
                    StepSlot(
                        slot_id=slot_id_for("selection", time_range.start),
                        kind=SlotKind.FREE_TIME,
                        start=time_range.start,
                        end=time_range.end,
                        target_steps=time_range.target_steps,
                        source="Walk Break",
                    )
                )

        logger.info(f"[DAY_VIEW] Synced {len(ranges)} range(s) to {len(calendar_ids)} calendar(s)")
        return ranges


def build_day_view_service(
    store: SnapshotStore,
    config: Settings,
    calendar: CalendarSource | None = None,
    health: HealthSource | None = None,
    sink: SyncSink | None = None,
) -> DayViewService:
    """Wire all engine components from settings around one snapshot store."""
    tz = resolve_timezone(config.timezone)
    policy = ProximityPolicy.from_settings(config)
    engine = RecurrenceEngine(store, tz=tz)
    one_offs = OneOffStore(store, tz=tz)
    return DayViewService(
        engine=engine,
        one_offs=one_offs,
        planner=AvailabilityPlanner(PlannerConfig.from_settings(config), policy, tz=tz),
        detector=ConflictDetector(store, tz=tz, buffer_minutes=config.conflict_buffer_minutes),
        reconciler=TimelineReconciler(engine, one_offs, policy),
        calendar=calendar,
        health=health,
        sink=sink,
    )
