"""Tests for the day view service.

Upstream collaborators are replaced by small in-memory fakes.
"""

from datetime import UTC, date, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from moveplan.core.errors import UpstreamUnavailableError
from moveplan.domain.enums import ActivityKind, RecurrenceRule, SlotKind, WorkoutType
from moveplan.domain.models import ExternalBusyBlock
from moveplan.planner.models import StepSlot, slot_id_for
from moveplan.services.day_view import DayViewService, last_completed_workout_type, workout_days_in_week

DAY = date(2024, 1, 15)


def _at(hour: int, minute: int = 0) -> datetime:
    return datetime(2024, 1, 15, hour, minute, tzinfo=UTC)


class FakeCalendar:
    def __init__(self, blocks=None, error: Exception | None = None):
        self.blocks = blocks or []
        self.error = error
        self.calls = 0

    async def fetch_busy_blocks(self, day):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.blocks


class FakeHealth:
    def __init__(self, steps: int = 0, error: Exception | None = None):
        self.steps = steps
        self.error = error

    async def current_step_count(self):
        if self.error is not None:
            raise self.error
        return self.steps


class FakeSink:
    def __init__(self, error: Exception | None = None):
        self.pushed = []
        self.error = error

    async def push(self, time_range, calendar_ids):
        if self.error is not None:
            raise self.error
        self.pushed.append((time_range, tuple(calendar_ids)))


@pytest.fixture
def make_service(engine, one_offs, planner, detector, reconciler):
    def build(calendar=None, health=None, sink=None) -> DayViewService:
        return DayViewService(engine, one_offs, planner, detector, reconciler, calendar, health, sink)

    return build


def _lunch_walk(engine) -> str:
    return engine.add_template(
        {
            "kind": ActivityKind.WALK,
            "title": "Lunch Walk",
            "start_time": "12:00",
            "duration_minutes": 30,
            "recurrence": RecurrenceRule.DAILY,
            "anchor": date(2024, 1, 1),
        }
    )


class TestRefresh:
    """Test view assembly and upstream degradation."""

    @pytest.mark.asyncio
    async def test_full_view(self, make_service, engine):
        _lunch_walk(engine)
        calendar = FakeCalendar([ExternalBusyBlock(block_id="m", title="Sync", start=_at(12, 15), end=_at(13))])
        service = make_service(calendar=calendar, health=FakeHealth(4200))

        view = await service.refresh(DAY)
        assert view.busy_blocks_known is True
        assert view.warnings == ()
        assert [e.title for e in view.timeline] == ["Lunch Walk", "Sync"]
        assert len(view.conflicts) == 1
        assert view.plan.current_steps == 4200
        assert all(not (s.start <= _at(12) < s.end) for s in view.plan.step_slots)

    @pytest.mark.asyncio
    async def test_calendar_failure_flags_unknown_busy_time(self, make_service):
        service = make_service(calendar=FakeCalendar(error=RuntimeError("timeout")))
        view = await service.refresh(DAY)
        assert view.busy_blocks_known is False
        assert len(view.warnings) == 1
        assert view.plan.step_slots

    @pytest.mark.asyncio
    async def test_no_calendar_is_unknown(self, make_service):
        view = await make_service().refresh(DAY)
        assert view.busy_blocks_known is False

    @pytest.mark.asyncio
    async def test_health_failure_reads_zero(self, make_service):
        view = await make_service(calendar=FakeCalendar(), health=FakeHealth(error=OSError("offline"))).refresh(DAY)
        assert view.plan.current_steps == 0
        assert view.busy_blocks_known is True

    @pytest.mark.asyncio
    async def test_cache_keyed_on_version(self, make_service, one_offs):
        """Identical inputs return the cached view; a mutation produces a new one."""
        service = make_service(calendar=FakeCalendar())
        first = await service.refresh(DAY)
        assert await service.refresh(DAY) is first

        one_offs.add({"kind": ActivityKind.WALK, "start": _at(18)})
        second = await service.refresh(DAY)
        assert second is not first
        assert second.version == first.version + 1
        assert len(second.timeline) == 1

    @pytest.mark.asyncio
    async def test_invalidate(self, make_service):
        service = make_service(calendar=FakeCalendar())
        first = await service.refresh(DAY)
        service.invalidate()
        assert await service.refresh(DAY) is not first


class TestActions:
    """Test actions that feed learned patterns."""

    def test_toggle_records_success(self, make_service, engine):
        _lunch_walk(engine)
        service = make_service()
        assert service.toggle_completion(DAY, ActivityKind.WALK, _at(12)) is True
        [pattern] = service.store.snapshot().patterns
        assert (pattern.weekday, pattern.hour, pattern.success_count) == (0, 12, 1)

    def test_uncheck_records_nothing(self, make_service, engine):
        _lunch_walk(engine)
        service = make_service()
        service.toggle_completion(DAY, ActivityKind.WALK, _at(12))
        service.toggle_completion(DAY, ActivityKind.WALK, _at(12))
        assert service.store.snapshot().patterns[0].total_count == 1

    def test_skip_records_miss(self, make_service, engine):
        _lunch_walk(engine)
        service = make_service()
        service.skip(DAY, ActivityKind.WALK, _at(12))
        [pattern] = service.store.snapshot().patterns
        assert (pattern.success_count, pattern.total_count) == (0, 1)

    def test_last_completed_workout_type(self, make_service, one_offs):
        service = make_service()
        older = one_offs.add({"kind": ActivityKind.WORKOUT, "start": _at(7) - timedelta(days=2), "workout_type": "legs"})
        newer = one_offs.add({"kind": ActivityKind.WORKOUT, "start": _at(7) - timedelta(days=1), "workout_type": "push"})
        one_offs.toggle_completion(older)
        assert last_completed_workout_type(service.store.snapshot()) == WorkoutType.LEGS
        one_offs.toggle_completion(newer)
        assert last_completed_workout_type(service.store.snapshot()) == WorkoutType.PUSH


class TestSyncSelection:
    """Test pushing a selection to the sink."""

    @staticmethod
    def _slot(hour: int, minute: int, minutes: int) -> StepSlot:
        start = _at(hour, minute)
        return StepSlot(
            slot_id=slot_id_for("free_time", start),
            kind=SlotKind.FREE_TIME,
            start=start,
            end=start + timedelta(minutes=minutes),
            target_steps=minutes * 100,
        )

    @pytest.mark.asyncio
    async def test_consolidates_pushes_and_commits(self, make_service, one_offs):
        sink = FakeSink()
        service = make_service(sink=sink)
        ranges = await service.sync_selection(
            [self._slot(9, 15, 25), self._slot(9, 0, 20)], calendar_ids=["primary"]
        )
        assert len(ranges) == 1
        assert (ranges[0].start, ranges[0].end) == (_at(9), _at(9, 40))
        assert sink.pushed == [(ranges[0], ("primary",))]

        [activity] = one_offs.for_day(DAY)
        assert activity.title == "Walk Break"
        assert activity.duration_minutes == 40

    @pytest.mark.asyncio
    async def test_without_commit(self, make_service, one_offs):
        service = make_service(sink=FakeSink())
        await service.sync_selection([self._slot(9, 0, 20)], commit=False)
        assert one_offs.for_day(DAY) == []

    @pytest.mark.asyncio
    async def test_no_sink(self, make_service):
        with pytest.raises(UpstreamUnavailableError):
            await make_service().sync_selection([self._slot(9, 0, 20)])

    @pytest.mark.asyncio
    async def test_push_failure_commits_nothing(self, make_service, one_offs):
        service = make_service(sink=FakeSink(error=ConnectionError("refused")))
        with pytest.raises(UpstreamUnavailableError):
            await service.sync_selection([self._slot(9, 0, 20)])
        assert one_offs.for_day(DAY) == []

    @pytest.mark.asyncio
    async def test_empty_selection(self, make_service):
        assert await make_service().sync_selection([]) == []


class TestDisplayedEntries:
    """Conflicts and plans only see what the timeline shows."""

    @pytest.mark.asyncio
    async def test_conflicts_reference_displayed_entries(self, make_service, engine, one_offs):
        """A one-off folded into a nearby occurrence is neither shown nor flagged."""
        template_id = engine.add_template(
            {
                "kind": ActivityKind.WALK,
                "title": "Morning Walk",
                "start_time": "08:00",
                "duration_minutes": 20,
                "recurrence": RecurrenceRule.DAILY,
                "anchor": date(2024, 1, 1),
            }
        )
        one_offs.add({"kind": ActivityKind.WALK, "start": _at(8, 5)})
        calendar = FakeCalendar([ExternalBusyBlock(block_id="b1", title="Design Review", start=_at(8), end=_at(9))])

        view = await make_service(calendar=calendar).refresh(DAY)
        occurrence_id = f"{template_id}:{DAY.isoformat()}"
        assert {e.entry_id for e in view.timeline} == {occurrence_id, "b1"}
        assert [c.activity_ref for c in view.conflicts] == [occurrence_id]

    @pytest.mark.asyncio
    async def test_committed_walk_leaves_rest_of_day(self, make_service, one_offs):
        one_offs.add({"kind": ActivityKind.WALK, "start": _at(7), "duration_minutes": 20})
        view = await make_service(calendar=FakeCalendar()).refresh(DAY)
        assert view.plan.step_slots[0].start == _at(7, 20)


class TestWorkoutGoal:
    """Workout suggestions follow the weekly goal."""

    PREFS = {"workout_frequency": 2, "workout_duration_minutes": 45}

    def _complete_workout(self, one_offs, start: datetime) -> None:
        one_offs.toggle_completion(one_offs.add({"kind": ActivityKind.WORKOUT, "start": start}))

    @pytest.mark.asyncio
    async def test_weekly_goal_met(self, make_service, one_offs):
        self._complete_workout(one_offs, _at(7))
        self._complete_workout(one_offs, _at(7) + timedelta(days=1))
        service = make_service(calendar=FakeCalendar())

        wednesday = await service.refresh(date(2024, 1, 17), preferences=self.PREFS)
        assert wednesday.plan.workout_slot is None
        next_monday = await service.refresh(date(2024, 1, 22), preferences=self.PREFS)
        assert next_monday.plan.workout_slot is not None

    @pytest.mark.asyncio
    async def test_scheduled_workout_today(self, make_service, one_offs):
        one_offs.add({"kind": ActivityKind.WORKOUT, "start": _at(18)})
        view = await make_service(calendar=FakeCalendar()).refresh(DAY, preferences=self.PREFS)
        assert view.plan.workout_slot is None

    def test_workout_days_counted_once_per_local_day(self, store, one_offs):
        self._complete_workout(one_offs, _at(7))
        self._complete_workout(one_offs, _at(19))
        self._complete_workout(one_offs, _at(7) - timedelta(days=1))  # previous week
        assert workout_days_in_week(store.snapshot(), DAY) == 1

    def test_last_workout_uses_local_days(self, engine, one_offs):
        """A late-evening New York workout stored in UTC belongs to the local day."""
        template_id = engine.add_template(
            {
                "kind": ActivityKind.WORKOUT,
                "title": "Gym",
                "start_time": "18:00",
                "duration_minutes": 45,
                "recurrence": RecurrenceRule.DAILY,
                "anchor": date(2024, 1, 1),
                "workout_type": WorkoutType.LEGS,
            }
        )
        engine.toggle_completion(template_id, DAY)
        activity_id = one_offs.add(
            {"kind": ActivityKind.WORKOUT, "start": datetime(2024, 1, 16, 2, 0, tzinfo=UTC), "workout_type": "push"}
        )
        one_offs.toggle_completion(activity_id)

        snap = engine.store.snapshot()
        assert last_completed_workout_type(snap, ZoneInfo("America/New_York")) == WorkoutType.LEGS
        assert last_completed_workout_type(snap, UTC) == WorkoutType.PUSH
