"""DateTime helpers for ICS calendar processing.

iCalendar values arrive as ``date`` (all-day), naive ``datetime`` (floating) or
zone-aware ``datetime``. Everything downstream compares aware datetimes, so the
helpers here fold the three shapes into one.
"""

import logging
from datetime import UTC, date, datetime, time, timedelta
from typing import Any, Optional

from dateutil import parser as date_parser

from ..exceptions import InvalidQueryError

logger = logging.getLogger(__name__)


def ensure_timezone_aware(dt: datetime) -> datetime:
    """Return ``dt`` unchanged if aware, otherwise interpret it as UTC.

    Floating times (no TZID, no ``Z`` suffix) are treated as UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def to_utc(dt: datetime) -> datetime:
    """Normalize any datetime to an aware UTC datetime."""
    return ensure_timezone_aware(dt).astimezone(UTC)


def date_to_datetime(value: date) -> datetime:
    """Convert a calendar date to midnight UTC of that date."""
    return datetime.combine(value, time.min, tzinfo=UTC)


def is_date_only(value: Any) -> bool:
    """True for ``date`` values that are not ``datetime`` instances."""
    return isinstance(value, date) and not isinstance(value, datetime)


def coerce_ical_value(value: Any) -> datetime:
    """Turn a decoded DTSTART/DTEND/EXDATE value into an aware datetime.

    Args:
        value: ``date`` or ``datetime`` as produced by icalendar

    Returns:
        Aware datetime; dates become midnight UTC

    Raises:
        TypeError: If the value is neither a date nor a datetime
    """
    if isinstance(value, datetime):
        return ensure_timezone_aware(value)
    if isinstance(value, date):
        return date_to_datetime(value)
    raise TypeError(f"Unsupported date value: {value!r}")


def until_to_datetime(value: Any, all_day: bool) -> datetime:
    """Convert an RRULE UNTIL value to an inclusive aware bound.

    A date-only UNTIL on a timed series covers the whole day.
    """
    if is_date_only(value):
        if all_day:
            return date_to_datetime(value)
        return datetime.combine(value, time(23, 59, 59), tzinfo=UTC)
    return to_utc(value)


def serialize_datetime_utc(dt: datetime) -> str:
    """Serialize datetime to ISO 8601 UTC string with Z suffix.

    Examples:
        >>> serialize_datetime_utc(datetime(2024, 11, 4, 16, 30, tzinfo=UTC))
        '2024-11-04T16:30:00Z'
    """
    if dt is None:
        raise ValueError("Cannot serialize None datetime")
    return to_utc(dt).isoformat().replace("+00:00", "Z")


def serialize_datetime_optional(dt: Optional[datetime]) -> Optional[str]:
    """Serialize an optional datetime, passing None through."""
    return serialize_datetime_utc(dt) if dt is not None else None


def parse_query_date(value: Any, field_name: str = "date") -> datetime:
    """Parse a caller-supplied range bound.

    Accepts ``date``/``datetime`` objects and ISO 8601 strings (``2024-01-05``,
    ``2024-01-05T09:00:00Z``). Date-only input means midnight UTC.

    Raises:
        InvalidQueryError: If the value is missing or unparseable
    """
    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, date):
        return date_to_datetime(value)
    if not isinstance(value, str) or not value.strip():
        raise InvalidQueryError(f"Invalid {field_name}: {value!r}")

    try:
        parsed = date_parser.isoparse(value.strip())
    except (ValueError, OverflowError) as e:
        raise InvalidQueryError(f"Invalid {field_name}: {value!r} ({e})") from e

    return to_utc(parsed)


def utc_today() -> datetime:
    """Midnight UTC of the current day."""
    return date_to_datetime(datetime.now(UTC).date())


def days_from_today(days: int) -> datetime:
    """Midnight UTC ``days`` days away from today (negative for the past)."""
    return utc_today() + timedelta(days=days)
