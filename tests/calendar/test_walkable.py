"""Unit tests for calendar event heuristics."""

from datetime import UTC, datetime, timedelta

import pytest

from moveplan.calendar.walkable import classify_block, classify_walkable, is_self_authored
from moveplan.domain.models import ExternalBusyBlock


class TestClassifyWalkable:
    """Test the walkable meeting heuristic."""

    @pytest.mark.parametrize(
        ("title", "duration", "attendees", "expected"),
        [
            ("1:1 w/ Sam", 15, 2, True),
            ("Quick call with vendor", 30, 0, True),
            ("Coffee chat", 30, 2, True),
            ("1:1 w/ Sam", 60, 2, False),
            ("Call with whole team", 30, 6, True),
            ("Candidate interview", 30, 2, False),
            ("Sprint review", 60, 10, False),
            ("Daily standup", 15, 8, False),
            ("Company update", 60, 40, True),
            ("Company update", 15, 40, False),
            ("Deep work", 120, 0, False),
        ],
    )
    def test_heuristic(self, title, duration, attendees, expected):
        assert classify_walkable(title, duration, attendee_count=attendees) is expected

    def test_organizer_not_walkable_for_large_meeting(self):
        """The organizer of a big meeting has to present."""
        assert not classify_walkable("Company update", 60, attendee_count=40, is_organizer=True)

    def test_explicit_marking_wins(self):
        assert classify_walkable("Candidate interview", 30, explicit=True)
        assert not classify_walkable("1:1 w/ Sam", 15, explicit=False)


class TestSelfAuthored:
    """Test recognition of events written by our own sync."""

    @pytest.mark.parametrize("title", ["Walk Break", "Morning walk", "Push Workout", "MovePlan: steps"])
    def test_titles(self, title):
        assert is_self_authored(title)

    def test_marker_in_notes(self):
        assert is_self_authored("Blocked", notes="Created by moveplan")

    def test_third_party(self):
        assert not is_self_authored("Standup", notes="Zoom link")


class TestClassifyBlock:
    """Test block flag derivation."""

    def _block(self, title: str, **kwargs) -> ExternalBusyBlock:
        start = datetime(2024, 1, 15, 10, 0, tzinfo=UTC)
        return ExternalBusyBlock(block_id="b", title=title, start=start, end=start + timedelta(minutes=15), **kwargs)

    def test_derives_flags(self):
        block = classify_block(self._block("1:1 w/ Sam", attendee_count=2))
        assert block.walkable is True
        assert block.self_authored is False

    def test_unchanged_block_returned_as_is(self):
        block = self._block("Deep work")
        assert classify_block(block) is block

    def test_existing_flags_kept(self):
        block = classify_block(self._block("Deep work", walkable=True), explicit_walkable=False)
        assert block.walkable is True
