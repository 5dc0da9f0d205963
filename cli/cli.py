"""Developer CLI for moveplan.

Drives the same engine components as any other consumer against a local
SQLite database: add templates and activities, render a day, and act on
timeline entries.
"""

import asyncio
import json
from dataclasses import dataclass
from datetime import date, datetime, time, tzinfo
from pathlib import Path
from typing import NoReturn

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from moveplan.calendar.timeline import TimelineEntry
from moveplan.config.settings import settings
from moveplan.core.errors import MovePlanError
from moveplan.core.logger import setup_logger
from moveplan.db import session as db_session
from moveplan.db.repository import load_store
from moveplan.domain.clock import at, format_hm, resolve_timezone
from moveplan.domain.enums import ActivityKind, EditScope, RecurrenceRule, WorkoutType
from moveplan.domain.preferences import UserPreferences
from moveplan.integrations.sources import JsonCalendarSource
from moveplan.services.day_view import DayView, DayViewService, build_day_view_service

# Initialize Rich console for output
console = Console()

# Initialize Typer app
app = typer.Typer(
    name="moveplan",
    help="moveplan - movement scheduling and reconciliation engine",
    add_completion=False,
)


@dataclass
class CliContext:
    """Options shared by every command."""

    busy_file: Path | None = None
    service: DayViewService | None = None


_context = CliContext()


def _service() -> DayViewService:
    """Build the day view service lazily, once per invocation."""
    if _context.service is None:
        calendar = None
        if _context.busy_file is not None:
            calendar = JsonCalendarSource(_context.busy_file, tz=resolve_timezone(settings.timezone))
        _context.service = build_day_view_service(load_store(), settings, calendar=calendar)
    return _context.service


def _fail(message: str) -> NoReturn:
    console.print(f"[red]Error:[/red] {message}")
    raise typer.Exit(1)


def _parse_day(value: str | None) -> date:
    if value is None:
        return datetime.now(resolve_timezone(settings.timezone)).date()
    try:
        return date.fromisoformat(value)
    except ValueError:
        _fail(f"Invalid date {value!r}, expected YYYY-MM-DD")


def _parse_hm(value: str) -> time:
    try:
        return time.fromisoformat(value)
    except ValueError:
        _fail(f"Invalid time {value!r}, expected HH:MM")


@app.callback()
def main(
    db: str | None = typer.Option(None, "--db", help="SQLite file or database URL (overrides MOVEPLAN_DATABASE_URL)"),
    busy: Path | None = typer.Option(None, "--busy", help="JSON file with the external calendar's busy blocks"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
) -> None:
    """moveplan developer CLI."""
    setup_logger(
        level="DEBUG" if debug else settings.log_level,
        log_file=settings.log_file,
        json_logs=settings.log_json,
    )
    if db:
        db_session.configure(db if "://" in db else f"sqlite:///{Path(db).resolve()}")
    _context.busy_file = busy
    _context.service = None


# -----------------------------
# Creation
# -----------------------------
@app.command()
def add_template(
    title: str = typer.Option(..., "--title", "-t", help="Display title"),
    start: str = typer.Option(..., "--start", "-s", help="Wall-clock start (HH:MM)"),
    duration: int = typer.Option(..., "--duration", "-d", help="Duration in minutes"),
    kind: ActivityKind = typer.Option(ActivityKind.WALK, "--kind", "-k", help="Activity kind"),
    recurrence: RecurrenceRule = typer.Option(RecurrenceRule.DAILY, "--recurrence", "-r", help="Recurrence rule"),
    anchor: str | None = typer.Option(None, "--anchor", help="First occurrence date (YYYY-MM-DD, default today)"),
    workout_type: WorkoutType | None = typer.Option(None, "--workout-type", help="Workout split (workouts only)"),
) -> None:
    """Add a recurring activity template."""
    service = _service()
    try:
        template_id = service.engine.add_template(
            {
                "kind": kind,
                "title": title,
                "start_time": start,
                "duration_minutes": duration,
                "recurrence": recurrence,
                "anchor": _parse_day(anchor),
                "workout_type": workout_type,
            }
        )
    except MovePlanError as e:
        _fail(str(e))
    console.print(f"[green]✓ Template created:[/green] {template_id}")


@app.command()
def add_activity(
    day: str = typer.Argument(..., help="Day (YYYY-MM-DD)"),
    start: str = typer.Option(..., "--start", "-s", help="Start time (HH:MM)"),
    kind: ActivityKind = typer.Option(ActivityKind.WALK, "--kind", "-k", help="Activity kind"),
    title: str | None = typer.Option(None, "--title", "-t", help="Display title"),
    duration: int | None = typer.Option(None, "--duration", "-d", help="Duration in minutes"),
    repeat: RecurrenceRule | None = typer.Option(None, "--repeat", help="Materialize a repeat series"),
    count: int = typer.Option(1, "--count", help="Number of entries in the repeat series"),
) -> None:
    """Add a one-off planned activity (or a bounded repeat series)."""
    service = _service()
    spec = {
        "kind": kind,
        "title": title,
        "start": at(_parse_day(day), _parse_hm(start), service.engine.tz),
        "duration_minutes": duration,
    }
    try:
        if repeat is not None and repeat != RecurrenceRule.ONCE:
            ids = service.one_offs.add_series(spec, repeat, count)
            console.print(f"[green]✓ Created {len(ids)} activities[/green]")
            for activity_id in ids:
                console.print(f"  {activity_id}")
        else:
            console.print(f"[green]✓ Activity created:[/green] {service.one_offs.add(spec)}")
    except MovePlanError as e:
        _fail(str(e))


# -----------------------------
# Day view
# -----------------------------
def _timeline_table(view: DayView, tz: tzinfo) -> Table:
    table = Table(title=f"Timeline {view.day.isoformat()}")
    table.add_column("Time")
    table.add_column("Source")
    table.add_column("Kind")
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("ID", overflow="fold")
    for entry in view.timeline:
        table.add_row(
            f"{format_hm(entry.start, tz)}-{format_hm(entry.end, tz)}",
            entry.source.value,
            entry.kind.value if entry.kind else "-",
            entry.title,
            _status(entry),
            entry.entry_id,
        )
    return table


def _status(entry: TimelineEntry) -> str:
    if entry.status is not None:
        return entry.status.value
    if entry.kind is None:
        return "walkable" if entry.walkable else "busy"
    return "completed" if entry.completed else "planned"


@app.command()
def day(
    day_str: str | None = typer.Argument(None, metavar="DAY", help="Day (YYYY-MM-DD, default today)"),
    prefs: Path | None = typer.Option(None, "--prefs", help="JSON file with user preferences"),
    as_json: bool = typer.Option(False, "--json", help="Print the timeline as JSON"),
) -> None:
    """Show the timeline, conflicts and movement plan for a day."""
    service = _service()
    target = _parse_day(day_str)
    preferences = None
    if prefs is not None:
        try:
            preferences = json.loads(prefs.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable preferences file {prefs}: {e}")
    view = asyncio.run(service.refresh(target, preferences or UserPreferences()))
    tz = service.engine.tz

    if as_json:
        payload = [
            {
                "id": e.entry_id,
                "source": e.source.value,
                "kind": e.kind.value if e.kind else None,
                "title": e.title,
                "start": e.start.isoformat(),
                "end": e.end.isoformat(),
                "status": _status(e),
            }
            for e in view.timeline
        ]
        console.print_json(json.dumps(payload))
        return

    for warning in view.warnings:
        console.print(f"[yellow]⚠️  {warning}[/yellow]")
    console.print(_timeline_table(view, tz))

    if view.conflicts:
        console.print("\n[bold red]Conflicts:[/bold red]")
        for conflict in view.conflicts:
            console.print(f"  {conflict.activity_title}: {conflict.description}  [dim]{conflict.activity_ref}[/dim]")

    plan = view.plan
    console.print(
        f"\n[bold cyan]Plan:[/bold cyan] target {plan.target_steps} steps, "
        f"projected {plan.projected_steps}"
    )
    for slot in plan.ranked_step_slots():
        marker = f" [green]★ {slot.recommendation.value if slot.recommendation else 'recommended'}[/green]" if slot.recommended else ""
        console.print(
            f"  {slot.rank}. {format_hm(slot.start, tz)}-{format_hm(slot.end, tz)} "
            f"{slot.kind.value} ({slot.source}) ~{slot.target_steps} steps{marker}"
        )
    if plan.workout_slot is not None:
        workout = plan.workout_slot
        console.print(
            f"  Workout: {format_hm(workout.start, tz)}-{format_hm(workout.end, tz)} {workout.workout_type.value}"
        )


# -----------------------------
# Actions
# -----------------------------
@app.command()
def toggle(
    day_str: str = typer.Argument(..., metavar="DAY", help="Day (YYYY-MM-DD)"),
    at_time: str | None = typer.Option(None, "--at", help="Displayed start time (HH:MM)"),
    kind: ActivityKind = typer.Option(ActivityKind.WALK, "--kind", "-k", help="Activity kind"),
    entry_id: str | None = typer.Option(None, "--id", help="Timeline entry id"),
) -> None:
    """Toggle completion of a timeline entry."""
    service = _service()
    target = _parse_day(day_str)
    displayed = _displayed_start(service, target, at_time, entry_id)
    try:
        completed = service.toggle_completion(target, kind, displayed, entry_id=entry_id)
    except MovePlanError as e:
        _fail(str(e))
    console.print(f"[green]✓ {'Completed' if completed else 'Marked as planned'}[/green]")


@app.command()
def skip(
    day_str: str = typer.Argument(..., metavar="DAY", help="Day (YYYY-MM-DD)"),
    at_time: str | None = typer.Option(None, "--at", help="Displayed start time (HH:MM)"),
    kind: ActivityKind = typer.Option(ActivityKind.WALK, "--kind", "-k", help="Activity kind"),
    entry_id: str | None = typer.Option(None, "--id", help="Timeline entry id"),
) -> None:
    """Remove an entry from the day (skips an occurrence, deletes a one-off)."""
    service = _service()
    target = _parse_day(day_str)
    displayed = _displayed_start(service, target, at_time, entry_id)
    try:
        resolved = service.skip(target, kind, displayed, entry_id=entry_id)
    except MovePlanError as e:
        _fail(str(e))
    console.print(f"[green]✓ Removed {resolved.source.value} entry[/green] {resolved.ref}")


def _displayed_start(service: DayViewService, target: date, at_time: str | None, entry_id: str | None) -> datetime:
    if at_time is None:
        if entry_id is None:
            _fail("Provide --at or --id")
        return at(target, time.min, service.engine.tz)
    return at(target, _parse_hm(at_time), service.engine.tz)


@app.command()
def dismiss(
    activity_ref: str = typer.Argument(..., help="Occurrence id or activity id"),
    day_str: str = typer.Argument(..., metavar="DAY", help="Day (YYYY-MM-DD)"),
    restore: bool = typer.Option(False, "--restore", help="Show the conflict again"),
) -> None:
    """Dismiss (or restore) conflicts of an activity for one day."""
    service = _service()
    target = _parse_day(day_str)
    if restore:
        service.detector.restore(activity_ref, target)
        console.print(f"[green]✓ Conflicts restored for {activity_ref} on {target.isoformat()}[/green]")
    else:
        service.detector.dismiss(activity_ref, target)
        console.print(f"[green]✓ Conflicts dismissed for {activity_ref} on {target.isoformat()}[/green]")


@app.command()
def edit_template(
    template_id: str = typer.Argument(..., help="Template id"),
    day_str: str = typer.Argument(..., metavar="DAY", help="Day the edit applies from (YYYY-MM-DD)"),
    scope: EditScope = typer.Option(EditScope.THIS_OCCURRENCE, "--scope", help="Edit scope"),
    start: str | None = typer.Option(None, "--start", "-s", help="New start time (HH:MM)"),
    duration: int | None = typer.Option(None, "--duration", "-d", help="New duration in minutes"),
    title: str | None = typer.Option(None, "--title", "-t", help="New title"),
) -> None:
    """Edit one occurrence, this and future occurrences, or the whole template."""
    service = _service()
    try:
        result_id = service.engine.update_template(
            template_id,
            _parse_day(day_str),
            scope=scope,
            new_time=start,
            new_duration=duration,
            new_title=title,
        )
    except MovePlanError as e:
        _fail(str(e))
    console.print(f"[green]✓ Updated[/green] {result_id}")


@app.command()
def delete_template(
    template_id: str = typer.Argument(..., help="Template id"),
    as_of: str | None = typer.Option(None, "--as-of", help="First day without occurrences (default today)"),
) -> None:
    """Stop a template from producing occurrences."""
    service = _service()
    try:
        service.engine.delete_template(template_id, as_of=_parse_day(as_of) if as_of else None)
    except MovePlanError as e:
        _fail(str(e))
    console.print(f"[green]✓ Template deactivated:[/green] {template_id}")


if __name__ == "__main__":
    app()
