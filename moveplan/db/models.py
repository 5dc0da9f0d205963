from __future__ import annotations

from datetime import UTC, date, datetime, time

from sqlalchemy import Boolean, Date, DateTime, Index, Integer, String, Text, Time, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models."""


class ActivityTemplateRow(Base):
    """Recurring activity template.

    Stores:
    - Definition: kind, title, duration, wall-clock start, recurrence, anchor
    - Lifecycle: active, until (set by a this-and-future split), deactivated_on
    """

    __tablename__ = "activity_templates"

    id: Mapped[str] = mapped_column(String, primary_key=True, index=True)
    kind: Mapped[str] = mapped_column(String, nullable=False)
    title: Mapped[str] = mapped_column(String, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    recurrence: Mapped[str] = mapped_column(String, nullable=False)
    anchor: Mapped[date] = mapped_column(Date, nullable=False)
    month_day: Mapped[int | None] = mapped_column(Integer, nullable=True)
    workout_type: Mapped[str | None] = mapped_column(String, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    until: Mapped[date | None] = mapped_column(Date, nullable=True)
    deactivated_on: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=lambda: datetime.now(UTC))


class OccurrenceOverrideRow(Base):
    """Per-date exception to a template (time / duration / title replacement or skip)."""

    __tablename__ = "occurrence_overrides"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    template_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    day: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    title: Mapped[str | None] = mapped_column(String, nullable=True)
    skipped: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (UniqueConstraint("template_id", "day", name="uq_override_template_day"),)


class CompletionRecordRow(Base):
    """Completion flag for one (template, date)."""

    __tablename__ = "completion_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    template_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    day: Mapped[date] = mapped_column(Date, nullable=False)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (UniqueConstraint("template_id", "day", name="uq_completion_template_day"),)


class OneOffActivityRow(Base):
    """Independently planned activity. Instants are stored in UTC."""

    __tablename__ = "one_off_activities"

    id: Mapped[str] = mapped_column(String, primary_key=True, index=True)
    kind: Mapped[str] = mapped_column(String, nullable=False)
    title: Mapped[str] = mapped_column(String, nullable=False)
    start: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    workout_type: Mapped[str | None] = mapped_column(String, nullable=True)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    repeat: Mapped[str | None] = mapped_column(String, nullable=True)
    series_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=lambda: datetime.now(UTC))

    __table_args__ = (Index("idx_one_off_start", "start"),)


class DismissedConflictRow(Base):
    """Conflict dismissed for one activity on one day."""

    __tablename__ = "dismissed_conflicts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    activity_ref: Mapped[str] = mapped_column(String, nullable=False)
    day: Mapped[date] = mapped_column(Date, nullable=False)

    __table_args__ = (UniqueConstraint("activity_ref", "day", name="uq_dismissed_ref_day"),)


class ActivityTimePatternRow(Base):
    """Learned success statistics for one (weekday, hour, kind) cell."""

    __tablename__ = "activity_time_patterns"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    weekday: Mapped[int] = mapped_column(Integer, nullable=False)
    hour: Mapped[int] = mapped_column(Integer, nullable=False)
    minute: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    kind: Mapped[str] = mapped_column(String, nullable=False)
    success_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    average_duration: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    workout_type: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (UniqueConstraint("weekday", "hour", "kind", name="uq_pattern_weekday_hour_kind"),)
