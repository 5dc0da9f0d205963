"""Root conftest for all tests.

Shared fixtures wire the engine components around one in-memory
``SnapshotStore``; database tests get an isolated SQLite file per test.
"""

from datetime import UTC, date

import pytest

from moveplan.activities.store import OneOffStore
from moveplan.calendar.conflicts import ConflictDetector
from moveplan.calendar.timeline import TimelineReconciler
from moveplan.db import session as db_session
from moveplan.domain.proximity import ProximityPolicy
from moveplan.planner.availability import AvailabilityPlanner, PlannerConfig
from moveplan.recurrence.engine import RecurrenceEngine
from moveplan.state.snapshot import SnapshotStore

# Fixed "today" so deletion cut-offs are deterministic
TODAY = date(2024, 1, 15)


@pytest.fixture
def store() -> SnapshotStore:
    return SnapshotStore()


@pytest.fixture
def policy() -> ProximityPolicy:
    return ProximityPolicy()


@pytest.fixture
def engine(store) -> RecurrenceEngine:
    return RecurrenceEngine(store, tz=UTC, today=lambda: TODAY)


@pytest.fixture
def one_offs(store) -> OneOffStore:
    return OneOffStore(store, tz=UTC)


@pytest.fixture
def reconciler(engine, one_offs, policy) -> TimelineReconciler:
    return TimelineReconciler(engine, one_offs, policy)


@pytest.fixture
def detector(store) -> ConflictDetector:
    return ConflictDetector(store, tz=UTC)


@pytest.fixture
def planner(policy) -> AvailabilityPlanner:
    return AvailabilityPlanner(PlannerConfig(), policy, tz=UTC)


@pytest.fixture
def sqlite_url(tmp_path):
    """Point the session layer at a fresh SQLite file for one test."""
    url = f"sqlite:///{tmp_path / 'moveplan-test.db'}"
    db_session.configure(url)
    yield url
    db_session.configure(None)
