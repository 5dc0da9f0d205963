"""Recurrence rules as a tagged variant.

Each RecurrenceRule maps to one pure matcher ``(anchor, day) -> bool``.
Range checks (before anchor, after ``until``) live in ``occurs_on`` so the
matchers only encode the rule's own date math.
"""

from __future__ import annotations

import calendar
from collections.abc import Callable, Iterator
from datetime import date, timedelta

from moveplan.domain.enums import RecurrenceRule

Matcher = Callable[[date, date], bool]


def matches_once(anchor: date, day: date) -> bool:
    return day == anchor


def matches_daily(anchor: date, day: date) -> bool:
    return True


def matches_weekdays(anchor: date, day: date) -> bool:
    return day.weekday() < 5


def matches_weekly(anchor: date, day: date) -> bool:
    return (day - anchor).days % 7 == 0


def matches_biweekly(anchor: date, day: date) -> bool:
    return (day - anchor).days % 14 == 0


def matches_monthly(anchor: date, day: date, month_day: int | None = None) -> bool:
    """Same day-of-month as the anchor, clamped to the length of ``day``'s month.

    An anchor on the 31st occurs on Feb 28/29, Apr 30, etc. ``month_day``
    replaces the anchor's day when a series was re-anchored on a clamped date.
    """
    last_day = calendar.monthrange(day.year, day.month)[1]
    return day.day == min(month_day or anchor.day, last_day)


RULE_MATCHERS: dict[RecurrenceRule, Matcher] = {
    RecurrenceRule.ONCE: matches_once,
    RecurrenceRule.DAILY: matches_daily,
    RecurrenceRule.WEEKDAYS: matches_weekdays,
    RecurrenceRule.WEEKLY: matches_weekly,
    RecurrenceRule.BIWEEKLY: matches_biweekly,
    RecurrenceRule.MONTHLY: matches_monthly,
}


def occurs_on(
    rule: RecurrenceRule,
    anchor: date,
    day: date,
    until: date | None = None,
    month_day: int | None = None,
) -> bool:
    """Check whether a rule anchored on ``anchor`` produces ``day``.

    Args:
        rule: Recurrence rule
        anchor: First occurrence date
        day: Day to test
        until: Optional last day (inclusive)
        month_day: Day-of-month for monthly rules (defaults to the anchor's)

    Returns:
        True if the rule materializes on ``day``
    """
    if day < anchor:
        return False
    if until is not None and day > until:
        return False
    if rule == RecurrenceRule.MONTHLY:
        return matches_monthly(anchor, day, month_day)
    return RULE_MATCHERS[rule](anchor, day)


def iter_dates(rule: RecurrenceRule, anchor: date, count: int) -> Iterator[date]:
    """Yield the first ``count`` dates produced by a rule.

    Used to materialize bounded repeat series eagerly.
    """
    if count <= 0:
        return
    if rule == RecurrenceRule.ONCE:
        yield anchor
        return

    produced = 0
    day = anchor
    # Upper bound on days scanned for ``count`` matches
    horizon = anchor + timedelta(days=max(366, 31 * count + 31) if rule == RecurrenceRule.MONTHLY else 14 * count + 7)
    while produced < count and day <= horizon:
        if occurs_on(rule, anchor, day):
            yield day
            produced += 1
        day += timedelta(days=1)
