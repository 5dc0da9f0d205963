"""External collaborators.

The engine only talks to the outside world through these protocols. All
calls are async and may fail; ``DayViewService`` decides how failures
degrade.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import UTC, date, datetime, tzinfo
from pathlib import Path
from typing import Any, Protocol

from loguru import logger
from pydantic import BaseModel, Field, ValidationError, model_validator

from moveplan.calendar.walkable import classify_block
from moveplan.core.errors import UpstreamUnavailableError
from moveplan.domain.clock import ensure_aware, local_day
from moveplan.domain.models import ExternalBusyBlock
from moveplan.planner.consolidation import ConsolidatedRange


class CalendarSource(Protocol):
    """Read-only source of busy time."""

    async def fetch_busy_blocks(self, day: date) -> list[ExternalBusyBlock]: ...


class HealthSource(Protocol):
    """Numeric feed of today's step count."""

    async def current_step_count(self) -> int: ...


class SyncSink(Protocol):
    """Write-back target for committed ranges (e.g. an external calendar)."""

    async def push(self, time_range: ConsolidatedRange, calendar_ids: Sequence[str]) -> None: ...


# -----------------------------
# JSON file calendar source
# -----------------------------
class BusyBlockPayload(BaseModel):
    """One busy block as found in a JSON export."""

    id: str
    title: str = "Busy"
    start: datetime
    end: datetime
    walkable: bool | None = None
    self_authored: bool = False
    attendees: int = Field(default=0, ge=0)
    is_organizer: bool = False
    notes: str | None = None

    @model_validator(mode="after")
    def check_bounds(self) -> BusyBlockPayload:
        if self.end <= self.start:
            raise ValueError(f"Busy block {self.id} ends before it starts")
        return self

    def to_block(self, tz: tzinfo) -> ExternalBusyBlock:
        block = ExternalBusyBlock(
            block_id=self.id,
            title=self.title,
            start=ensure_aware(self.start, tz),
            end=ensure_aware(self.end, tz),
            self_authored=self.self_authored,
            attendee_count=self.attendees,
            is_organizer=self.is_organizer,
            notes=self.notes,
        )
        return classify_block(block, explicit_walkable=self.walkable)


def parse_busy_blocks(payload: list[dict[str, Any]], tz: tzinfo = UTC) -> list[ExternalBusyBlock]:
    """Validate raw JSON entries into classified busy blocks.

    Raises:
        UpstreamUnavailableError: If any entry is malformed
    """
    try:
        items = [BusyBlockPayload.model_validate(item) for item in payload]
    except ValidationError as e:
        raise UpstreamUnavailableError(f"Malformed busy block data: {e.error_count()} error(s)") from e
    return [item.to_block(tz) for item in items]


class JsonCalendarSource:
    """Calendar source backed by a JSON file holding a list of busy blocks."""

    def __init__(self, path: str | Path, tz: tzinfo = UTC):
        self.path = Path(path)
        self.tz = tz

    async def fetch_busy_blocks(self, day: date) -> list[ExternalBusyBlock]:
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise UpstreamUnavailableError(f"Cannot read busy blocks from {self.path}: {e}") from e
        if not isinstance(payload, list):
            raise UpstreamUnavailableError(f"Expected a JSON list in {self.path}")

        blocks = [b for b in parse_busy_blocks(payload, self.tz) if local_day(b.start, self.tz) == day]
        logger.debug(f"[CALENDAR] Loaded {len(blocks)} busy block(s) for {day.isoformat()} from {self.path}")
        return blocks
