"""Unit tests for the JSON busy-block source."""

import json
from datetime import UTC, date, datetime

import pytest

from moveplan.core.errors import UpstreamUnavailableError
from moveplan.integrations.sources import JsonCalendarSource, parse_busy_blocks


def _entry(block_id: str, start: str, end: str, **kwargs) -> dict:
    return {"id": block_id, "start": start, "end": end, **kwargs}


class TestParseBusyBlocks:
    """Test payload validation and classification."""

    def test_classifies_blocks(self):
        blocks = parse_busy_blocks(
            [
                _entry("a", "2024-01-15T10:00:00", "2024-01-15T10:15:00", title="1:1 w/ Sam", attendees=2),
                _entry("b", "2024-01-15T12:00:00", "2024-01-15T12:30:00", title="Walk Break"),
            ]
        )
        assert blocks[0].walkable is True
        assert blocks[0].start == datetime(2024, 1, 15, 10, 0, tzinfo=UTC)
        assert blocks[1].self_authored is True

    def test_explicit_walkable_flag(self):
        [block] = parse_busy_blocks([_entry("a", "2024-01-15T10:00:00", "2024-01-15T11:00:00", walkable=True)])
        assert block.walkable is True

    @pytest.mark.parametrize(
        "payload",
        [
            [_entry("a", "2024-01-15T11:00:00", "2024-01-15T10:00:00")],
            [{"title": "no id", "start": "2024-01-15T10:00:00", "end": "2024-01-15T11:00:00"}],
            [_entry("a", "not a date", "2024-01-15T11:00:00")],
        ],
    )
    def test_malformed_payload(self, payload):
        with pytest.raises(UpstreamUnavailableError):
            parse_busy_blocks(payload)


class TestJsonCalendarSource:
    """Test the file-backed calendar source."""

    @pytest.mark.asyncio
    async def test_filters_by_day(self, tmp_path):
        path = tmp_path / "busy.json"
        path.write_text(
            json.dumps(
                [
                    _entry("a", "2024-01-15T09:00:00", "2024-01-15T09:30:00", title="Standup"),
                    _entry("b", "2024-01-16T09:00:00", "2024-01-16T09:30:00", title="Standup"),
                ]
            )
        )
        blocks = await JsonCalendarSource(path).fetch_busy_blocks(date(2024, 1, 15))
        assert [b.block_id for b in blocks] == ["a"]

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        with pytest.raises(UpstreamUnavailableError):
            await JsonCalendarSource(tmp_path / "missing.json").fetch_busy_blocks(date(2024, 1, 15))

    @pytest.mark.asyncio
    async def test_not_a_list(self, tmp_path):
        path = tmp_path / "busy.json"
        path.write_text(json.dumps({"blocks": []}))
        with pytest.raises(UpstreamUnavailableError):
            await JsonCalendarSource(path).fetch_busy_blocks(date(2024, 1, 15))
