"""Tests for weekday enumeration and weekday-set helpers."""

from __future__ import annotations

from datetime import date

import pytest

from chime.weekdays import (
    EVERYDAY,
    WEEKDAYS,
    WEEKEND,
    Weekday,
    classify,
    describe,
    ordered_from,
    parse_day_tokens,
    sort_weekdays,
    to_ordinals,
    weekday_set,
)


class TestWeekday:
    def test_ordinals_start_at_sunday(self):
        assert int(Weekday.SUNDAY) == 1
        assert int(Weekday.SATURDAY) == 7

    def test_names(self):
        assert Weekday.MONDAY.short_name == "Mon"
        assert Weekday.THURSDAY.letter == "T"
        assert Weekday.WEDNESDAY.full_name == "Wednesday"

    def test_weekday_and_weekend_flags(self):
        assert Weekday.FRIDAY.is_weekday
        assert not Weekday.FRIDAY.is_weekend
        assert Weekday.SUNDAY.is_weekend

    @pytest.mark.parametrize(
        ("day", "expected"),
        [
            (date(2025, 1, 12), Weekday.SUNDAY),
            (date(2025, 1, 13), Weekday.MONDAY),
            (date(2025, 1, 17), Weekday.FRIDAY),
            (date(2025, 1, 18), Weekday.SATURDAY),
        ],
    )
    def test_from_date(self, day, expected):
        assert Weekday.from_date(day) is expected


class TestWeekdaySets:
    def test_constants_match_literal_sets(self):
        assert EVERYDAY == frozenset(Weekday)
        assert WEEKDAYS == weekday_set([2, 3, 4, 5, 6])
        assert WEEKEND == weekday_set([Weekday.SATURDAY, Weekday.SUNDAY])

    def test_weekday_set_rejects_bad_ordinal(self):
        with pytest.raises(ValueError):
            weekday_set([0, 1])

    def test_ordinals_are_sorted(self):
        assert to_ordinals({Weekday.SATURDAY, Weekday.SUNDAY, Weekday.TUESDAY}) == [1, 3, 7]

    def test_sort_weekdays(self):
        assert sort_weekdays({Weekday.FRIDAY, Weekday.MONDAY}) == [Weekday.MONDAY, Weekday.FRIDAY]

    def test_ordered_from_monday(self):
        order = ordered_from(Weekday.MONDAY)
        assert order[0] is Weekday.MONDAY
        assert order[-1] is Weekday.SUNDAY
        assert len(order) == 7

    def test_classify(self):
        assert classify(frozenset()) == "empty"
        assert classify(EVERYDAY) == "everyday"
        assert classify(WEEKDAYS) == "weekdays"
        assert classify(WEEKEND) == "weekend"
        assert classify(frozenset({Weekday.MONDAY})) == "custom"


class TestDescribe:
    def test_unfiltered_label(self):
        assert describe(WEEKDAYS, False) == "Everyday"
        assert describe(WEEKDAYS, False, unfiltered="Once") == "Once"

    def test_named_groups(self):
        assert describe(EVERYDAY, True) == "Everyday"
        assert describe(WEEKDAYS, True) == "Weekdays"
        assert describe(WEEKEND, True) == "Weekend"

    def test_custom_days_in_canonical_order(self):
        days = frozenset({Weekday.FRIDAY, Weekday.MONDAY, Weekday.WEDNESDAY})
        assert describe(days, True) == "Mon, Wed, Fri"


class TestParseDayTokens:
    def test_groups(self):
        assert parse_day_tokens("weekdays") == WEEKDAYS
        assert parse_day_tokens("weekends") == WEEKEND
        assert parse_day_tokens("daily") == EVERYDAY
        assert parse_day_tokens("every day") == EVERYDAY

    def test_lists(self):
        assert parse_day_tokens("mon, wed") == frozenset({Weekday.MONDAY, Weekday.WEDNESDAY})
        assert parse_day_tokens("Tuesday Thursday") == frozenset({Weekday.TUESDAY, Weekday.THURSDAY})

    def test_one_time_and_garbage(self):
        assert parse_day_tokens("once") is None
        assert parse_day_tokens("") is None
        assert parse_day_tokens("someday") is None
