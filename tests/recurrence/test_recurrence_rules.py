"""Unit tests for recurrence rule matchers.

Tests cover:
- Weekly / biweekly stride from the anchor
- Weekdays-only rule
- Monthly day-of-month clamping
- Anchor and until bounds
- Eager date generation for repeat series
"""

from datetime import date, timedelta

import pytest

from moveplan.domain.enums import RecurrenceRule
from moveplan.recurrence.rules import RULE_MATCHERS, iter_dates, occurs_on


class TestWeeklyRules:
    """Test weekly and biweekly strides."""

    def test_weekly_occurs_iff_same_weekday_on_or_after_anchor(self):
        """Weekly templates occur exactly on the anchor's weekday, never before the anchor."""
        anchor = date(2024, 1, 3)  # Wednesday
        for offset in range(-14, 60):
            day = anchor + timedelta(days=offset)
            expected = day >= anchor and day.weekday() == anchor.weekday()
            assert occurs_on(RecurrenceRule.WEEKLY, anchor, day) is expected, day

    def test_biweekly_skips_alternate_weeks(self):
        """Biweekly occurs every 14 days from the anchor."""
        anchor = date(2024, 1, 1)
        assert occurs_on(RecurrenceRule.BIWEEKLY, anchor, date(2024, 1, 1))
        assert not occurs_on(RecurrenceRule.BIWEEKLY, anchor, date(2024, 1, 8))
        assert occurs_on(RecurrenceRule.BIWEEKLY, anchor, date(2024, 1, 15))
        assert not occurs_on(RecurrenceRule.BIWEEKLY, anchor, date(2024, 1, 22))


class TestDailyRules:
    """Test daily and weekday rules."""

    def test_daily_every_day_from_anchor(self):
        """Daily occurs on every day from the anchor onward."""
        anchor = date(2024, 1, 1)
        assert not occurs_on(RecurrenceRule.DAILY, anchor, date(2023, 12, 31))
        assert all(occurs_on(RecurrenceRule.DAILY, anchor, anchor + timedelta(days=i)) for i in range(30))

    def test_weekdays_excludes_weekend(self):
        """Weekdays rule only matches Monday to Friday."""
        anchor = date(2024, 1, 1)  # Monday
        week = [anchor + timedelta(days=i) for i in range(7)]
        matches = [occurs_on(RecurrenceRule.WEEKDAYS, anchor, d) for d in week]
        assert matches == [True, True, True, True, True, False, False]

    def test_once_only_on_anchor(self):
        """Once only occurs on its anchor day."""
        anchor = date(2024, 3, 10)
        assert occurs_on(RecurrenceRule.ONCE, anchor, anchor)
        assert not occurs_on(RecurrenceRule.ONCE, anchor, anchor + timedelta(days=7))


class TestMonthlyRule:
    """Test monthly clamping."""

    @pytest.mark.parametrize(
        ("day", "expected"),
        [
            (date(2024, 2, 29), True),  # leap year, clamped
            (date(2024, 2, 28), False),
            (date(2024, 3, 31), True),
            (date(2024, 4, 30), True),  # clamped to month length
            (date(2024, 4, 29), False),
        ],
    )
    def test_monthly_clamps_to_month_length(self, day, expected):
        """An anchor on the 31st occurs on the last day of shorter months."""
        assert occurs_on(RecurrenceRule.MONTHLY, date(2024, 1, 31), day) is expected

    def test_monthly_same_day_of_month(self):
        """Monthly occurs on the anchor's day-of-month."""
        anchor = date(2024, 1, 15)
        assert occurs_on(RecurrenceRule.MONTHLY, anchor, date(2024, 6, 15))
        assert not occurs_on(RecurrenceRule.MONTHLY, anchor, date(2024, 6, 16))

    def test_month_day_overrides_clamped_anchor(self):
        """An explicit day-of-month wins over the anchor's day."""
        anchor = date(2024, 2, 29)
        assert occurs_on(RecurrenceRule.MONTHLY, anchor, date(2024, 3, 31), month_day=31)
        assert not occurs_on(RecurrenceRule.MONTHLY, anchor, date(2024, 3, 29), month_day=31)
        assert occurs_on(RecurrenceRule.MONTHLY, anchor, date(2024, 4, 30), month_day=31)


class TestBounds:
    """Test until bounds and matcher table completeness."""

    def test_until_is_inclusive(self):
        """Days after ``until`` never match; ``until`` itself does."""
        anchor = date(2024, 1, 1)
        until = date(2024, 1, 9)
        assert occurs_on(RecurrenceRule.DAILY, anchor, until, until=until)
        assert not occurs_on(RecurrenceRule.DAILY, anchor, until + timedelta(days=1), until=until)

    def test_every_rule_has_a_matcher(self):
        """Each rule maps to exactly one matcher."""
        assert set(RULE_MATCHERS) == set(RecurrenceRule)


class TestIterDates:
    """Test eager series generation."""

    def test_weekly_series(self):
        """Generates ``count`` weekly dates starting at the anchor."""
        dates = list(iter_dates(RecurrenceRule.WEEKLY, date(2024, 1, 1), 3))
        assert dates == [date(2024, 1, 1), date(2024, 1, 8), date(2024, 1, 15)]

    def test_weekdays_series_skips_weekend(self):
        """A weekdays series starting Friday continues on Monday."""
        dates = list(iter_dates(RecurrenceRule.WEEKDAYS, date(2024, 1, 5), 2))
        assert dates == [date(2024, 1, 5), date(2024, 1, 8)]

    def test_monthly_series_clamps(self):
        """A monthly series anchored on the 31st uses month ends."""
        dates = list(iter_dates(RecurrenceRule.MONTHLY, date(2024, 1, 31), 3))
        assert dates == [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31)]

    def test_once_series_has_single_date(self):
        """A once rule yields only the anchor regardless of count."""
        assert list(iter_dates(RecurrenceRule.ONCE, date(2024, 1, 1), 5)) == [date(2024, 1, 1)]
