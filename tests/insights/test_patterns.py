"""Unit tests for activity time pattern learning."""

from datetime import datetime, time

from moveplan.domain.enums import ActivityKind, WorkoutType
from moveplan.insights.patterns import best_times, build_history, record_outcome

MONDAY_7_40 = datetime(2024, 1, 15, 7, 40)


class TestRecordOutcome:
    """Test folding outcomes into patterns."""

    def test_new_cell(self):
        """The first outcome creates a pattern with minute rounded down to 15."""
        patterns = record_outcome((), ActivityKind.WALK, MONDAY_7_40, 20, True)
        assert len(patterns) == 1
        pattern = patterns[0]
        assert (pattern.weekday, pattern.hour, pattern.minute) == (0, 7, 30)
        assert pattern.success_rate == 1.0

    def test_same_cell_accumulates(self):
        """Outcomes in the same weekday/hour/kind update one pattern."""
        patterns = record_outcome((), ActivityKind.WALK, MONDAY_7_40, 20, True)
        patterns = record_outcome(patterns, ActivityKind.WALK, datetime(2024, 1, 22, 7, 5), 40, False)
        assert len(patterns) == 1
        assert patterns[0].total_count == 2
        assert patterns[0].success_count == 1
        assert patterns[0].average_duration == 30

    def test_kinds_kept_apart(self):
        """A workout in the same hour is a different cell."""
        patterns = record_outcome((), ActivityKind.WALK, MONDAY_7_40, 20, True)
        patterns = record_outcome(patterns, ActivityKind.WORKOUT, MONDAY_7_40, 45, True, WorkoutType.LEGS)
        assert len(patterns) == 2

    def test_input_not_modified(self):
        """Recording returns a new tuple."""
        original = record_outcome((), ActivityKind.WALK, MONDAY_7_40, 20, True)
        record_outcome(original, ActivityKind.WALK, MONDAY_7_40, 20, False)
        assert original[0].total_count == 1


class TestBestTimes:
    """Test ranking of learned times."""

    def test_filters_low_success_and_orders_by_rate(self):
        """Only cells with >= 50% success count, best first."""
        patterns = record_outcome((), ActivityKind.WALK, datetime(2024, 1, 15, 7, 0), 20, True)
        patterns = record_outcome(patterns, ActivityKind.WALK, datetime(2024, 1, 15, 12, 15), 20, True)
        patterns = record_outcome(patterns, ActivityKind.WALK, datetime(2024, 1, 22, 12, 15), 20, False)
        patterns = record_outcome(patterns, ActivityKind.WALK, datetime(2024, 1, 15, 18, 0), 20, False)
        assert best_times(patterns, ActivityKind.WALK, 0) == [time(7, 0), time(12, 15)]

    def test_build_history(self):
        """History lists best times per kind and weekday."""
        patterns = record_outcome((), ActivityKind.WALK, MONDAY_7_40, 20, True)
        history = build_history(patterns, last_workout_type=WorkoutType.PUSH)
        assert history.times_for(ActivityKind.WALK, 0) == [time(7, 30)]
        assert history.times_for(ActivityKind.WALK, 1) == []
        assert history.last_workout_type == WorkoutType.PUSH
