from collections.abc import AsyncIterator, Callable
from datetime import UTC, datetime
from types import SimpleNamespace

import pytest

from ics_aggregator.calendar.models import CalendarSource
from ics_aggregator.core.http_client import close_all_clients
from tests.fixtures.mock_ics_data import make_event, make_ics


@pytest.fixture
def simple_settings() -> SimpleNamespace:
    """Lightweight settings object used across tests.

    Fields:
      - request_timeout: HTTP timeout in seconds
      - max_occurrences_per_rule: expansion cap per recurring rule
      - refresh_interval_seconds: scheduler interval
      - retry_backoff_factor: base of the scheduler's retry delay
      - search_lookback_days / search_lookahead_days: default keyword window
    """
    return SimpleNamespace(
        sources=[],
        request_timeout=5,
        max_occurrences_per_rule=5000,
        refresh_interval_seconds=3600,
        retry_backoff_factor=2.0,
        search_lookback_days=30,
        search_lookahead_days=365,
    )


@pytest.fixture
def make_sources() -> Callable[..., list[CalendarSource]]:
    """Factory for CalendarSource lists named after the given arguments."""

    def _make(*names: str) -> list[CalendarSource]:
        return [CalendarSource(name=name, url=f"https://calendars.example.com/{name}.ics") for name in names]

    return _make


@pytest.fixture
def utc() -> Callable[..., datetime]:
    """Shorthand for building aware UTC datetimes."""

    def _utc(*args: int) -> datetime:
        return datetime(*args, tzinfo=UTC)

    return _utc


@pytest.fixture
def daily_standup_ics() -> str:
    """Daily 09:00 UTC standup, ten instances starting 2024-01-01."""
    return make_ics(
        make_event(
            "standup-1",
            "20240101T090000Z",
            summary="Daily Standup",
            DTEND="20240101T091500Z",
            RRULE="FREQ=DAILY;COUNT=10",
        )
    )


@pytest.fixture
def mixed_calendar_ics() -> str:
    """A single event, an all-day event and a weekly series with one EXDATE."""
    return make_ics(
        make_event(
            "single-1",
            "20240105T140000Z",
            summary="Design Review",
            DTEND="20240105T150000Z",
            LOCATION="Room 4",
        ),
        make_event("allday-1", ";VALUE=DATE:20240106", summary="Offsite", DTEND=";VALUE=DATE:20240107"),
        make_event(
            "weekly-1",
            "20240101T100000Z",
            summary="Weekly Sync",
            DTEND="20240101T103000Z",
            RRULE="FREQ=WEEKLY;BYDAY=MO",
            EXDATE="20240115T100000Z",
        ),
        calname="Team",
    )


@pytest.fixture(autouse=True)
async def cleanup_shared_http_clients() -> AsyncIterator[None]:
    """Close shared HTTP clients after every test to avoid leaking connections."""
    yield
    await close_all_clients()
