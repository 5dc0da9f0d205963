"""Snapshot persistence.

The whole ``EngineSnapshot`` is written in one transaction on every commit,
so the database always matches a published snapshot version.
"""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractContextManager
from datetime import UTC, datetime

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from moveplan.db.models import (
    ActivityTemplateRow,
    ActivityTimePatternRow,
    CompletionRecordRow,
    DismissedConflictRow,
    OccurrenceOverrideRow,
    OneOffActivityRow,
)
from moveplan.db.session import get_session, init_db
from moveplan.domain.enums import ActivityKind, RecurrenceRule, WorkoutType
from moveplan.domain.models import ActivityTemplate, OccurrenceOverride, OneOffActivity
from moveplan.insights.patterns import ActivityTimePattern
from moveplan.state.snapshot import EngineSnapshot, SnapshotStore

SessionFactory = Callable[[], AbstractContextManager[Session]]

_TABLES = (
    ActivityTemplateRow,
    OccurrenceOverrideRow,
    CompletionRecordRow,
    OneOffActivityRow,
    DismissedConflictRow,
    ActivityTimePatternRow,
)


def _to_utc(value: datetime) -> datetime:
    """Store instants as naive UTC (SQLite has no timezone support)."""
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def _from_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _workout(value: str | None) -> WorkoutType | None:
    return WorkoutType(value) if value else None


# -----------------------------
# Load
# -----------------------------
def load_snapshot(session: Session) -> EngineSnapshot:
    """Read all persisted state into a snapshot (version 0)."""
    templates = {
        row.id: ActivityTemplate(
            template_id=row.id,
            kind=ActivityKind(row.kind),
            title=row.title,
            duration_minutes=row.duration_minutes,
            start_time=row.start_time,
            recurrence=RecurrenceRule(row.recurrence),
            anchor=row.anchor,
            month_day=row.month_day,
            workout_type=_workout(row.workout_type),
            active=row.active,
            until=row.until,
            deactivated_on=row.deactivated_on,
            created_at=_from_utc(row.created_at),
        )
        for row in session.execute(select(ActivityTemplateRow)).scalars()
    }
    overrides = {
        (row.template_id, row.day): OccurrenceOverride(
            template_id=row.template_id,
            day=row.day,
            start_time=row.start_time,
            duration_minutes=row.duration_minutes,
            title=row.title,
            skipped=row.skipped,
        )
        for row in session.execute(select(OccurrenceOverrideRow)).scalars()
    }
    completions = {
        (row.template_id, row.day): row.completed
        for row in session.execute(select(CompletionRecordRow)).scalars()
    }
    one_offs = {
        row.id: OneOffActivity(
            activity_id=row.id,
            kind=ActivityKind(row.kind),
            title=row.title,
            start=_from_utc(row.start),
            duration_minutes=row.duration_minutes,
            workout_type=_workout(row.workout_type),
            completed=row.completed,
            notes=row.notes or "",
            repeat=RecurrenceRule(row.repeat) if row.repeat else None,
            series_id=row.series_id,
            created_at=_from_utc(row.created_at),
            updated_at=_from_utc(row.updated_at),
        )
        for row in session.execute(select(OneOffActivityRow)).scalars()
    }
    dismissed = frozenset(
        (row.activity_ref, row.day) for row in session.execute(select(DismissedConflictRow)).scalars()
    )
    patterns = tuple(
        ActivityTimePattern(
            weekday=row.weekday,
            hour=row.hour,
            minute=row.minute,
            kind=ActivityKind(row.kind),
            success_count=row.success_count,
            total_count=row.total_count,
            average_duration=row.average_duration,
            workout_type=_workout(row.workout_type),
        )
        for row in session.execute(
            select(ActivityTimePatternRow).order_by(ActivityTimePatternRow.id)
        ).scalars()
    )

    logger.info(
        f"[DB] Loaded templates={len(templates)} overrides={len(overrides)} "
        f"one_offs={len(one_offs)} patterns={len(patterns)}"
    )
    return EngineSnapshot(
        templates=templates,
        overrides=overrides,
        completions=completions,
        one_offs=one_offs,
        dismissed=dismissed,
        patterns=patterns,
    )


# -----------------------------
# Save
# -----------------------------
def save_snapshot(session: Session, snap: EngineSnapshot) -> None:
    """Replace all persisted state with ``snap`` (caller owns the transaction)."""
    for table in _TABLES:
        session.execute(delete(table))

    session.add_all(
        ActivityTemplateRow(
            id=t.template_id,
            kind=t.kind.value,
            title=t.title,
            duration_minutes=t.duration_minutes,
            start_time=t.start_time,
            recurrence=t.recurrence.value,
            anchor=t.anchor,
            month_day=t.month_day,
            workout_type=t.workout_type.value if t.workout_type else None,
            active=t.active,
            until=t.until,
            deactivated_on=t.deactivated_on,
            created_at=_to_utc(t.created_at),
        )
        for t in snap.templates.values()
    )
    session.add_all(
        OccurrenceOverrideRow(
            template_id=o.template_id,
            day=o.day,
            start_time=o.start_time,
            duration_minutes=o.duration_minutes,
            title=o.title,
            skipped=o.skipped,
        )
        for o in snap.overrides.values()
    )
    session.add_all(
        CompletionRecordRow(template_id=template_id, day=day, completed=completed)
        for (template_id, day), completed in snap.completions.items()
    )
    session.add_all(
        OneOffActivityRow(
            id=a.activity_id,
            kind=a.kind.value,
            title=a.title,
            start=_to_utc(a.start),
            duration_minutes=a.duration_minutes,
            workout_type=a.workout_type.value if a.workout_type else None,
            completed=a.completed,
            notes=a.notes,
            repeat=a.repeat.value if a.repeat else None,
            series_id=a.series_id,
            created_at=_to_utc(a.created_at),
            updated_at=_to_utc(a.updated_at),
        )
        for a in snap.one_offs.values()
    )
    session.add_all(DismissedConflictRow(activity_ref=ref, day=day) for ref, day in snap.dismissed)
    session.add_all(
        ActivityTimePatternRow(
            weekday=p.weekday,
            hour=p.hour,
            minute=p.minute,
            kind=p.kind.value,
            success_count=p.success_count,
            total_count=p.total_count,
            average_duration=p.average_duration,
            workout_type=p.workout_type.value if p.workout_type else None,
        )
        for p in snap.patterns
    )


class SqlSnapshotPersister:
    """Commit hook for ``SnapshotStore`` that writes each new snapshot to the database.

    If the write fails the exception propagates and the store keeps its
    previous snapshot.
    """

    def __init__(self, session_factory: SessionFactory = get_session):
        self.session_factory = session_factory

    def __call__(self, snap: EngineSnapshot) -> None:
        with self.session_factory() as session:
            save_snapshot(session, snap)
        logger.debug(f"[DB] Persisted snapshot version={snap.version}")


def load_store(session_factory: SessionFactory = get_session, create_schema: bool = True) -> SnapshotStore:
    """Build a persistent ``SnapshotStore`` from the database."""
    if create_schema:
        init_db()
    with session_factory() as session:
        snap = load_snapshot(session)
    return SnapshotStore(snap, on_commit=SqlSnapshotPersister(session_factory))
