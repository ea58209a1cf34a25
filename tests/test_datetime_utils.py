"""
Unit tests for ics_aggregator.calendar.datetime_utils

Covers:
- floating/aware normalization and UTC conversion
- date vs datetime handling for iCalendar values
- UNTIL bounds for timed and all-day series
- query date parsing and serialization
"""

from datetime import UTC, date, datetime, timedelta, timezone

import pytest

from ics_aggregator.calendar.datetime_utils import (
    coerce_ical_value,
    days_from_today,
    ensure_timezone_aware,
    is_date_only,
    parse_query_date,
    serialize_datetime_optional,
    serialize_datetime_utc,
    to_utc,
    until_to_datetime,
    utc_today,
)
from ics_aggregator.exceptions import InvalidQueryError

pytestmark = [pytest.mark.unit, pytest.mark.fast]

PLUS_TWO = timezone(timedelta(hours=2))


def test_ensure_timezone_aware_when_naive_then_utc_and_aware_untouched() -> None:
    aware = datetime(2024, 1, 1, 9, tzinfo=PLUS_TWO)

    assert ensure_timezone_aware(datetime(2024, 1, 1, 9)) == datetime(2024, 1, 1, 9, tzinfo=UTC)
    assert ensure_timezone_aware(aware) is aware


def test_to_utc_when_offset_then_converted() -> None:
    result = to_utc(datetime(2024, 1, 1, 9, tzinfo=PLUS_TWO))
    assert result == datetime(2024, 1, 1, 7, tzinfo=UTC)
    assert result.tzinfo == UTC


def test_coerce_ical_value_when_date_then_midnight_utc() -> None:
    assert coerce_ical_value(date(2024, 7, 4)) == datetime(2024, 7, 4, tzinfo=UTC)
    assert is_date_only(date(2024, 7, 4))
    assert not is_date_only(datetime(2024, 7, 4))


def test_coerce_ical_value_when_unsupported_then_type_error() -> None:
    with pytest.raises(TypeError):
        coerce_ical_value("20240704")


def test_until_to_datetime_when_date_then_depends_on_all_day() -> None:
    assert until_to_datetime(date(2024, 1, 10), all_day=True) == datetime(2024, 1, 10, tzinfo=UTC)
    assert until_to_datetime(date(2024, 1, 10), all_day=False) == datetime(2024, 1, 10, 23, 59, 59, tzinfo=UTC)
    assert until_to_datetime(datetime(2024, 1, 10, 12), all_day=False) == datetime(2024, 1, 10, 12, tzinfo=UTC)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("2024-01-05", datetime(2024, 1, 5, tzinfo=UTC)),
        ("2024-01-05T09:30:00Z", datetime(2024, 1, 5, 9, 30, tzinfo=UTC)),
        ("2024-01-05T09:30:00+02:00", datetime(2024, 1, 5, 7, 30, tzinfo=UTC)),
        (date(2024, 1, 5), datetime(2024, 1, 5, tzinfo=UTC)),
        (datetime(2024, 1, 5, 9), datetime(2024, 1, 5, 9, tzinfo=UTC)),
    ],
)
def test_parse_query_date_when_valid_then_utc(value, expected) -> None:
    assert parse_query_date(value) == expected


@pytest.mark.parametrize("value", ["", "yesterday", "2024-13-45", None, 20240105])
def test_parse_query_date_when_invalid_then_raises(value) -> None:
    with pytest.raises(InvalidQueryError):
        parse_query_date(value, "start_date")


def test_serialize_datetime_utc_when_offset_then_z_suffix() -> None:
    assert serialize_datetime_utc(datetime(2024, 11, 4, 18, 30, tzinfo=PLUS_TWO)) == "2024-11-04T16:30:00Z"
    assert serialize_datetime_optional(None) is None


def test_days_from_today_when_offset_then_relative_midnight() -> None:
    today = utc_today()

    assert today.hour == 0 and today.tzinfo == UTC
    assert days_from_today(3) - today == timedelta(days=3)
    assert today - days_from_today(-30) == timedelta(days=30)
