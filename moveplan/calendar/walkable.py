"""Heuristics applied to raw calendar events.

- ``classify_walkable``: can the meeting be taken on foot?
- ``is_self_authored``: was the event pushed by our own calendar sync?
"""

from __future__ import annotations

from dataclasses import replace

from moveplan.domain.models import ExternalBusyBlock

# Meetings that need a screen or full attention are never walkable
NON_WALKABLE_KEYWORDS: tuple[str, ...] = (
    "interview",
    "presentation",
    "review",
    "demo",
    "standup",
    "stand-up",
    "all hands",
    "all-hands",
    "training",
    "workshop",
    "onsite",
    "on-site",
)

CALL_KEYWORDS: tuple[str, ...] = (
    "1:1",
    "1-1",
    "1 on 1",
    "one on one",
    "call",
    "catch up",
    "catch-up",
    "phone",
    "coffee chat",
)

# Titles our own sync writes to the external calendar
SELF_AUTHORED_TITLES: tuple[str, ...] = (
    "walk break",
    "morning walk",
    "midday walk",
    "afternoon walk",
    "evening walk",
    "workout",
    "moveplan",
)
SELF_AUTHORED_MARKER = "moveplan"

MAX_CALL_MINUTES = 45
MIN_LISTEN_ONLY_MINUTES = 20
MIN_LISTEN_ONLY_ATTENDEES = 4


def classify_walkable(
    title: str,
    duration_minutes: int,
    attendee_count: int = 0,
    is_organizer: bool = False,
    explicit: bool | None = None,
) -> bool:
    """Decide whether a calendar event can be taken as a walk.

    An explicit marking always wins. Otherwise the event is walkable when its
    title has no focus keyword and it is either a short 1:1 / call-style
    meeting, or a larger meeting (4+ attendees, 20+ minutes) the user only
    attends.

    Args:
        title: Event title
        duration_minutes: Event length
        attendee_count: Number of attendees (0 when unknown)
        is_organizer: Whether the user organizes the event
        explicit: Explicit walkable marking from the calendar, if any

    Returns:
        True if the event is walkable
    """
    if explicit is not None:
        return explicit

    lowered = title.lower()
    if any(keyword in lowered for keyword in NON_WALKABLE_KEYWORDS):
        return False

    call_style = any(keyword in lowered for keyword in CALL_KEYWORDS)
    if call_style and 0 < duration_minutes <= MAX_CALL_MINUTES and attendee_count <= 2:
        return True

    return (
        duration_minutes >= MIN_LISTEN_ONLY_MINUTES
        and attendee_count >= MIN_LISTEN_ONLY_ATTENDEES
        and not is_organizer
    )


def is_self_authored(title: str, notes: str | None = None) -> bool:
    """Whether an event was created by our own calendar sync."""
    if notes and SELF_AUTHORED_MARKER in notes.lower():
        return True
    lowered = title.lower()
    return any(marker in lowered for marker in SELF_AUTHORED_TITLES)


def classify_block(block: ExternalBusyBlock, explicit_walkable: bool | None = None) -> ExternalBusyBlock:
    """Return ``block`` with its walkable and self-authored flags derived from its fields.

    Flags already set on the block are kept.
    """
    walkable = block.walkable or classify_walkable(
        block.title,
        block.duration_minutes,
        attendee_count=block.attendee_count,
        is_organizer=block.is_organizer,
        explicit=explicit_walkable,
    )
    self_authored = block.self_authored or is_self_authored(block.title, block.notes)
    if walkable == block.walkable and self_authored == block.self_authored:
        return block
    return replace(block, walkable=walkable, self_authored=self_authored)
