"""Unit tests for slot de-duplication and selection consolidation."""

from datetime import UTC, datetime, timedelta

from moveplan.domain.enums import SlotKind
from moveplan.planner.consolidation import consolidate_selection, dedupe_slots
from moveplan.planner.models import StepSlot, slot_id_for


def _slot(hour: int, minute: int, minutes: int, steps: int | None = None) -> StepSlot:
    start = datetime(2024, 1, 15, hour, minute, tzinfo=UTC)
    return StepSlot(
        slot_id=slot_id_for("free_time", start),
        kind=SlotKind.FREE_TIME,
        start=start,
        end=start + timedelta(minutes=minutes),
        target_steps=steps if steps is not None else minutes * 100,
    )


class TestConsolidateSelection:
    """Test merging a selection into contiguous ranges."""

    def test_overlapping_slots_merge_regardless_of_order(self, policy):
        """[9:00-9:20, 9:15-9:40] yields a single 9:00-9:40 range in either order."""
        first = _slot(9, 0, 20)
        second = _slot(9, 15, 25)
        for selection in ([first, second], [second, first]):
            ranges = consolidate_selection(selection, policy)
            assert len(ranges) == 1
            assert ranges[0].start == first.start
            assert ranges[0].end == second.end
            assert ranges[0].target_steps == first.target_steps + second.target_steps
            assert ranges[0].slot_ids == (first.slot_id, second.slot_id)

    def test_nearby_slots_within_gap_merge(self, policy):
        """Slots separated by less than the consolidation gap merge."""
        ranges = consolidate_selection([_slot(9, 0, 15), _slot(9, 40, 15)], policy)
        assert len(ranges) == 1
        assert ranges[0].duration_minutes == 55

    def test_distant_slots_stay_apart(self, policy):
        """Slots further apart than the gap become separate ranges."""
        ranges = consolidate_selection([_slot(14, 0, 15), _slot(9, 0, 15)], policy)
        assert [r.start.hour for r in ranges] == [9, 14]

    def test_contained_slot_does_not_shrink_range(self, policy):
        """A slot inside an earlier one keeps the outer end."""
        ranges = consolidate_selection([_slot(9, 0, 60), _slot(9, 10, 10)], policy)
        assert ranges[0].end == datetime(2024, 1, 15, 10, 0, tzinfo=UTC)

    def test_empty_selection(self, policy):
        assert consolidate_selection([], policy) == []


class TestDedupeSlots:
    """Test same-bucket duplicate removal."""

    def test_keeps_highest_estimate_per_bucket(self, policy):
        """Two slots rounding to the same bucket collapse to the larger estimate."""
        small = _slot(7, 0, 15)
        large = _slot(7, 2, 30)
        assert dedupe_slots([small, large], policy) == [large]

    def test_distinct_buckets_kept_in_start_order(self, policy):
        later = _slot(8, 0, 15)
        earlier = _slot(7, 0, 15)
        assert dedupe_slots([later, earlier], policy) == [earlier, later]

    def test_tie_keeps_first_seen(self, policy):
        first = _slot(7, 0, 15, steps=1500)
        second = _slot(7, 1, 15, steps=1500)
        assert dedupe_slots([first, second], policy) == [first]
