"""Recurrence engine: templates -> dated occurrences.

Expands activity templates into concrete occurrences for a day, applying
date-scoped overrides and completion records. All writes go through the
``SnapshotStore`` so each operation is atomic: it either publishes a new
snapshot or raises without changing anything.
"""

from __future__ import annotations

import re
import uuid
from collections.abc import Callable, Mapping
from dataclasses import replace
from datetime import UTC, date, datetime, time, timedelta, tzinfo
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from moveplan.core.errors import InvalidTemplateError, InvalidTransitionError, TemplateNotFoundError
from moveplan.domain.clock import at
from moveplan.domain.enums import ActivityKind, EditScope, OccurrenceStatus, RecurrenceRule, WorkoutType
from moveplan.domain.models import ActivityTemplate, Occurrence, OccurrenceOverride, occurrence_id_for
from moveplan.recurrence.rules import occurs_on
from moveplan.state.snapshot import EngineSnapshot, SnapshotStore

_HHMM = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")
MAX_DURATION_MINUTES = 24 * 60


def parse_wall_clock(value: Any) -> time:
    """Parse a wall-clock start time.

    Accepts a ``datetime.time`` or an ``"HH:MM"`` string within
    [00:00, 24:00). Anything else is rejected rather than coerced.
    """
    if isinstance(value, time):
        if value.tzinfo is not None:
            raise ValueError("Wall-clock start time must not carry a timezone")
        return value.replace(second=0, microsecond=0)
    if isinstance(value, str):
        match = _HHMM.match(value.strip())
        if match:
            return time(int(match.group(1)), int(match.group(2)))
    raise ValueError(f"Start time must be HH:MM within [00:00, 24:00), got {value!r}")


class TemplateSpec(BaseModel):
    """Validated input for creating a template."""

    model_config = ConfigDict(extra="forbid")

    kind: ActivityKind
    title: str = Field(min_length=1)
    duration_minutes: int = Field(strict=True, gt=0, le=MAX_DURATION_MINUTES)
    start_time: time
    recurrence: RecurrenceRule = RecurrenceRule.ONCE
    anchor: date
    workout_type: WorkoutType | None = None

    @field_validator("start_time", mode="before")
    @classmethod
    def validate_start_time(cls, value: Any) -> time:
        return parse_wall_clock(value)

    @field_validator("title")
    @classmethod
    def strip_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Title must not be blank")
        return value

    @model_validator(mode="after")
    def check_workout_type(self) -> TemplateSpec:
        if self.workout_type is not None and self.kind != ActivityKind.WORKOUT:
            raise ValueError("workout_type is only valid for workout templates")
        return self


def is_member(template: ActivityTemplate, day: date) -> bool:
    """Whether a template materializes on ``day`` (ignoring skip overrides)."""
    if not template.active and (template.deactivated_on is None or day >= template.deactivated_on):
        return False
    return occurs_on(template.recurrence, template.anchor, day, template.until, month_day=template.month_day)


class RecurrenceEngine:
    """Expands templates into occurrences and owns template mutations."""

    def __init__(
        self,
        store: SnapshotStore,
        tz: tzinfo = UTC,
        today: Callable[[], date] | None = None,
    ):
        self.store = store
        self.tz = tz
        self._today = today or (lambda: datetime.now(self.tz).date())

    # -----------------------------
    # Queries
    # -----------------------------
    def occurrences(
        self,
        day: date,
        include_skipped: bool = False,
        snapshot: EngineSnapshot | None = None,
    ) -> list[Occurrence]:
        """Materialize all occurrences on ``day``.

        Args:
            day: Day to expand
            include_skipped: Also return skipped occurrences (status=skipped)
            snapshot: Snapshot to read (defaults to the current one)

        Returns:
            Occurrences ordered by start time, ties broken by template id
        """
        snap = snapshot or self.store.snapshot()
        result: list[Occurrence] = []
        for template in snap.templates.values():
            if not is_member(template, day):
                continue
            occurrence = self._materialize(snap, template, day)
            if occurrence.status == OccurrenceStatus.SKIPPED and not include_skipped:
                continue
            result.append(occurrence)

        result.sort(key=lambda o: (o.start, o.template_id))
        return result

    def occurrence(self, template_id: str, day: date, snapshot: EngineSnapshot | None = None) -> Occurrence:
        """Materialize a single occurrence (skipped ones included)."""
        snap = snapshot or self.store.snapshot()
        template = self._require_member(snap, template_id, day)
        return self._materialize(snap, template, day)

    def templates(self, include_inactive: bool = False) -> list[ActivityTemplate]:
        snap = self.store.snapshot()
        templates = [t for t in snap.templates.values() if include_inactive or t.active]
        return sorted(templates, key=lambda t: (t.start_time, t.template_id))

    def get_template(self, template_id: str) -> ActivityTemplate:
        template = self.store.snapshot().templates.get(template_id)
        if template is None:
            raise TemplateNotFoundError(template_id)
        return template

    def _materialize(self, snap: EngineSnapshot, template: ActivityTemplate, day: date) -> Occurrence:
        override = snap.overrides.get((template.template_id, day))
        start_time = template.start_time
        duration = template.duration_minutes
        title = template.title
        skipped = False
        if override is not None:
            start_time = override.start_time or start_time
            duration = override.duration_minutes or duration
            title = override.title or title
            skipped = override.skipped

        completed = snap.completions.get((template.template_id, day), False)
        if skipped:
            status = OccurrenceStatus.SKIPPED
        elif completed:
            status = OccurrenceStatus.COMPLETED
        else:
            status = OccurrenceStatus.PLANNED

        start = at(day, start_time, self.tz)
        return Occurrence(
            occurrence_id=occurrence_id_for(template.template_id, day),
            template_id=template.template_id,
            day=day,
            kind=template.kind,
            workout_type=template.workout_type,
            title=title,
            start=start,
            end=start + timedelta(minutes=duration),
            duration_minutes=duration,
            completed=completed,
            status=status,
        )

    @staticmethod
    def _require_template(snap: EngineSnapshot, template_id: str) -> ActivityTemplate:
        template = snap.templates.get(template_id)
        if template is None:
            logger.warning(f"[RECURRENCE] Unknown template_id={template_id}")
            raise TemplateNotFoundError(template_id)
        return template

    def _require_member(self, snap: EngineSnapshot, template_id: str, day: date) -> ActivityTemplate:
        template = self._require_template(snap, template_id)
        if not is_member(template, day):
            raise TemplateNotFoundError(
                template_id, f"Template {template_id} has no occurrence on {day.isoformat()}"
            )
        return template

    # -----------------------------
    # Mutations
    # -----------------------------
    def add_template(self, spec: TemplateSpec | Mapping[str, Any]) -> str:
        """Validate and store a new template.

        Raises:
            InvalidTemplateError: If duration, start time or recurrence is malformed
        """
        if not isinstance(spec, TemplateSpec):
            try:
                spec = TemplateSpec.model_validate(spec)
            except ValidationError as e:
                raise InvalidTemplateError(f"Invalid template: {e}") from e

        template = ActivityTemplate(
            template_id=str(uuid.uuid4()),
            kind=spec.kind,
            title=spec.title,
            duration_minutes=spec.duration_minutes,
            start_time=spec.start_time,
            recurrence=spec.recurrence,
            anchor=spec.anchor,
            workout_type=spec.workout_type,
        )
        self.store.mutate(lambda snap: (snap.with_template(template), None), reason="add_template")
        logger.info(
            f"[RECURRENCE] Added template_id={template.template_id} kind={template.kind.value} "
            f"recurrence={template.recurrence.value} anchor={template.anchor.isoformat()}"
        )
        return template.template_id

    def update_template(
        self,
        template_id: str,
        day: date,
        *,
        scope: EditScope,
        new_time: time | str | None = None,
        new_duration: int | None = None,
        new_title: str | None = None,
        new_recurrence: RecurrenceRule | str | None = None,
    ) -> str:
        """Edit a template with a scope.

        Args:
            template_id: Template to edit
            day: Day the edit was initiated from
            scope: this_occurrence, this_and_future or all_occurrences
            new_time: Replacement wall-clock start
            new_duration: Replacement duration in minutes
            new_title: Replacement title
            new_recurrence: Replacement rule (not allowed for this_occurrence)

        Returns:
            Id of the template now carrying the edit (a new id for this_and_future)

        Raises:
            TemplateNotFoundError: Unknown template, or no occurrence on ``day``
            InvalidTemplateError: Malformed replacement values
        """
        try:
            scope = EditScope(scope)
        except ValueError as e:
            raise InvalidTemplateError(f"Unknown edit scope: {scope!r}") from e
        parsed_time, parsed_duration, parsed_title, parsed_rule = _validate_changes(
            new_time, new_duration, new_title, new_recurrence
        )
        if scope == EditScope.THIS_OCCURRENCE and parsed_rule is not None:
            raise InvalidTemplateError("Recurrence cannot be changed for a single occurrence")

        def apply(snap: EngineSnapshot) -> tuple[EngineSnapshot, str]:
            if scope == EditScope.ALL_OCCURRENCES:
                template = self._require_template(snap, template_id)
            else:
                template = self._require_member(snap, template_id, day)

            if scope == EditScope.THIS_OCCURRENCE:
                existing = snap.overrides.get((template_id, day)) or OccurrenceOverride(template_id=template_id, day=day)
                override = replace(
                    existing,
                    start_time=parsed_time or existing.start_time,
                    duration_minutes=parsed_duration or existing.duration_minutes,
                    title=parsed_title or existing.title,
                )
                return snap.with_override(override), template_id

            if scope == EditScope.ALL_OCCURRENCES or day <= template.anchor:
                updated = replace(
                    template,
                    start_time=parsed_time or template.start_time,
                    duration_minutes=parsed_duration or template.duration_minutes,
                    title=parsed_title or template.title,
                    recurrence=parsed_rule or template.recurrence,
                    month_day=template.month_day if parsed_rule in (None, template.recurrence) else None,
                )
                return snap.with_template(updated), template_id

            return _split_template(snap, template, day, parsed_time, parsed_duration, parsed_title, parsed_rule)

        result_id = self.store.mutate(apply, reason=f"update_template:{scope.value}")
        logger.info(
            f"[RECURRENCE] Updated template_id={template_id} scope={scope.value} "
            f"day={day.isoformat()} result_template_id={result_id}"
        )
        return result_id

    def delete_template(self, template_id: str, as_of: date | None = None) -> None:
        """Deactivate a template from ``as_of`` onward; history is retained."""
        cutoff = as_of or self._today()

        def apply(snap: EngineSnapshot) -> tuple[EngineSnapshot, None]:
            template = self._require_template(snap, template_id)
            if not template.active and template.deactivated_on is not None and template.deactivated_on <= cutoff:
                return snap, None
            return snap.with_template(replace(template, active=False, deactivated_on=cutoff)), None

        self.store.mutate(apply, reason="delete_template")
        logger.info(f"[RECURRENCE] Deactivated template_id={template_id} as_of={cutoff.isoformat()}")

    def toggle_completion(self, template_id: str, day: date) -> bool:
        """Flip the completion record for one occurrence.

        Returns:
            New completion state

        Raises:
            InvalidTransitionError: If the occurrence is skipped
        """

        def apply(snap: EngineSnapshot) -> tuple[EngineSnapshot, bool]:
            self._require_member(snap, template_id, day)
            override = snap.overrides.get((template_id, day))
            if override is not None and override.skipped:
                raise InvalidTransitionError("A skipped occurrence cannot be completed; unskip it first")
            completed = not snap.completions.get((template_id, day), False)
            return snap.with_completion((template_id, day), completed), completed

        completed = self.store.mutate(apply, reason="toggle_completion")
        logger.info(f"[RECURRENCE] template_id={template_id} day={day.isoformat()} completed={completed}")
        return completed

    def skip_occurrence(self, template_id: str, day: date) -> bool:
        """Toggle the skip marker for one occurrence.

        Returns:
            True if the occurrence is now skipped

        Raises:
            InvalidTransitionError: If the occurrence is completed
        """

        def apply(snap: EngineSnapshot) -> tuple[EngineSnapshot, bool]:
            self._require_member(snap, template_id, day)
            existing = snap.overrides.get((template_id, day)) or OccurrenceOverride(template_id=template_id, day=day)
            if not existing.skipped and snap.completions.get((template_id, day), False):
                raise InvalidTransitionError("A completed occurrence cannot be skipped; uncheck it first")
            skipped = not existing.skipped
            return snap.with_override(replace(existing, skipped=skipped)), skipped

        skipped = self.store.mutate(apply, reason="skip_occurrence")
        logger.info(f"[RECURRENCE] template_id={template_id} day={day.isoformat()} skipped={skipped}")
        return skipped


def _validate_changes(
    new_time: time | str | None,
    new_duration: int | None,
    new_title: str | None,
    new_recurrence: RecurrenceRule | str | None,
) -> tuple[time | None, int | None, str | None, RecurrenceRule | None]:
    if new_time is None and new_duration is None and new_title is None and new_recurrence is None:
        raise InvalidTemplateError("Nothing to update")

    parsed_time = None
    if new_time is not None:
        try:
            parsed_time = parse_wall_clock(new_time)
        except ValueError as e:
            raise InvalidTemplateError(str(e)) from e

    if new_duration is not None and (
        isinstance(new_duration, bool)
        or not isinstance(new_duration, int)
        or not 0 < new_duration <= MAX_DURATION_MINUTES
    ):
        raise InvalidTemplateError(f"Duration must be a positive number of minutes, got {new_duration!r}")

    parsed_title = None
    if new_title is not None:
        parsed_title = new_title.strip()
        if not parsed_title:
            raise InvalidTemplateError("Title must not be blank")

    parsed_rule = None
    if new_recurrence is not None:
        try:
            parsed_rule = RecurrenceRule(new_recurrence)
        except ValueError as e:
            raise InvalidTemplateError(f"Unknown recurrence rule: {new_recurrence!r}") from e

    return parsed_time, new_duration, parsed_title, parsed_rule


def _split_template(
    snap: EngineSnapshot,
    template: ActivityTemplate,
    day: date,
    new_time: time | None,
    new_duration: int | None,
    new_title: str | None,
    new_rule: RecurrenceRule | None,
) -> tuple[EngineSnapshot, str]:
    """End ``template`` the day before ``day`` and start a successor on ``day``.

    Completion records from ``day`` onward move to the successor; overrides
    from ``day`` onward are superseded by the new parameters and dropped. A
    monthly successor keeps the original day-of-month, so a split on a clamped
    day (Feb 29 for a 31st) does not move later months.
    """
    rule = new_rule or template.recurrence
    month_day = None
    if rule == RecurrenceRule.MONTHLY and template.recurrence == RecurrenceRule.MONTHLY:
        month_day = template.month_day or template.anchor.day
    successor = replace(
        template,
        template_id=str(uuid.uuid4()),
        anchor=day,
        month_day=month_day,
        start_time=new_time or template.start_time,
        duration_minutes=new_duration or template.duration_minutes,
        title=new_title or template.title,
        recurrence=rule,
        created_at=datetime.now(UTC),
    )
    ended = replace(template, until=day - timedelta(days=1))

    overrides = {
        key: value for key, value in snap.overrides.items()
        if not (key[0] == template.template_id and key[1] >= day)
    }
    completions = {}
    for (template_id, completion_day), completed in snap.completions.items():
        if template_id == template.template_id and completion_day >= day:
            completions[(successor.template_id, completion_day)] = completed
        else:
            completions[(template_id, completion_day)] = completed

    updated = replace(
        snap,
        templates={**snap.templates, ended.template_id: ended, successor.template_id: successor},
        overrides=overrides,
        completions=completions,
    )
    return updated, successor.template_id
