"""Persistence tests against a temporary SQLite database."""

from contextlib import contextmanager
from datetime import UTC, date, datetime, time
from zoneinfo import ZoneInfo

import pytest

from moveplan.activities.store import OneOffStore
from moveplan.calendar.conflicts import ConflictDetector
from moveplan.db.repository import SqlSnapshotPersister, load_store
from moveplan.domain.enums import ActivityKind, EditScope, RecurrenceRule, WorkoutType
from moveplan.recurrence.engine import RecurrenceEngine
from moveplan.state.snapshot import SnapshotStore

DAY = date(2024, 1, 15)


def _components(store):
    engine = RecurrenceEngine(store, tz=UTC, today=lambda: DAY)
    return engine, OneOffStore(store, tz=UTC), ConflictDetector(store, tz=UTC)


class TestRoundTrip:
    """State written through one store is visible to a freshly loaded one."""

    def test_round_trip(self, sqlite_url):
        store = load_store()
        engine, one_offs, detector = _components(store)

        template_id = engine.add_template(
            {
                "kind": ActivityKind.WORKOUT,
                "title": "Gym",
                "start_time": "18:00",
                "duration_minutes": 60,
                "recurrence": RecurrenceRule.WEEKLY,
                "anchor": DAY,
                "workout_type": WorkoutType.LEGS,
            }
        )
        engine.update_template(template_id, DAY, scope=EditScope.THIS_OCCURRENCE, new_time="18:30")
        engine.toggle_completion(template_id, DAY)
        activity_id = one_offs.add(
            {"kind": ActivityKind.WALK, "start": datetime(2024, 1, 15, 12, 0, tzinfo=UTC), "notes": "park"}
        )
        detector.dismiss(activity_id, DAY)

        reloaded = load_store()
        engine2, one_offs2, detector2 = _components(reloaded)

        occurrence = engine2.occurrence(template_id, DAY)
        assert occurrence.start == datetime(2024, 1, 15, 18, 30, tzinfo=UTC)
        assert occurrence.completed is True
        assert occurrence.workout_type == WorkoutType.LEGS
        assert engine2.get_template(template_id).start_time == time(18, 0)

        activity = one_offs2.get(activity_id)
        assert activity.start == datetime(2024, 1, 15, 12, 0, tzinfo=UTC)
        assert activity.notes == "park"
        assert detector2.is_dismissed(activity_id, DAY)

    def test_delete_is_persisted(self, sqlite_url):
        store = load_store()
        _, one_offs, _ = _components(store)
        activity_id = one_offs.add({"kind": ActivityKind.WALK, "start": datetime(2024, 1, 15, 12, 0, tzinfo=UTC)})
        one_offs.delete(activity_id)
        assert load_store().snapshot().one_offs == {}

    def test_empty_database(self, sqlite_url):
        snap = load_store().snapshot()
        assert snap.version == 0
        assert snap.templates == {}


class TestFailedCommit:
    """A failed write never leaves the store ahead of the database."""

    def test_failing_session_keeps_previous_snapshot(self, sqlite_url):
        @contextmanager
        def broken_session():
            raise OSError("database is locked")
            yield  # pragma: no cover

        store = SnapshotStore(load_store().snapshot(), on_commit=SqlSnapshotPersister(broken_session))
        _, one_offs, _ = _components(store)

        with pytest.raises(OSError):
            one_offs.add({"kind": ActivityKind.WALK, "start": datetime(2024, 1, 15, 12, 0, tzinfo=UTC)})
        assert store.version == 0
        assert store.snapshot().one_offs == {}


class TestTimezoneRoundTrip:
    """Instants survive storage as naive UTC."""

    def test_new_york_state_round_trip(self, sqlite_url):
        ny = ZoneInfo("America/New_York")
        store = load_store()
        engine = RecurrenceEngine(store, tz=ny, today=lambda: DAY)
        one_offs = OneOffStore(store, tz=ny)

        template_id = engine.add_template(
            {
                "kind": ActivityKind.WALK,
                "title": "Payday Walk",
                "start_time": "21:30",
                "duration_minutes": 30,
                "recurrence": RecurrenceRule.MONTHLY,
                "anchor": date(2024, 1, 31),
            }
        )
        successor_id = engine.update_template(
            template_id, date(2024, 2, 29), scope=EditScope.THIS_AND_FUTURE, new_time="21:00"
        )
        activity_id = one_offs.add({"kind": ActivityKind.WALK, "start": datetime(2024, 1, 15, 21, 30)})

        reloaded = load_store()
        engine2 = RecurrenceEngine(reloaded, tz=ny, today=lambda: DAY)
        one_offs2 = OneOffStore(reloaded, tz=ny)

        activity = one_offs2.get(activity_id)
        assert activity.start == datetime(2024, 1, 15, 21, 30, tzinfo=ny)
        assert [a.activity_id for a in one_offs2.for_day(DAY)] == [activity_id]

        assert engine2.get_template(successor_id).month_day == 31
        [march] = engine2.occurrences(date(2024, 3, 31))
        assert march.template_id == successor_id
        assert march.start == datetime(2024, 3, 31, 21, 0, tzinfo=ny)
