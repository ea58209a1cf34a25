"""Custom exception hierarchy for the calendar aggregation engine.

Per-source and per-event failures are absorbed by the event store and reported
as data; only caller input errors propagate out of it.
"""

from typing import Optional


class ICSAggregatorError(Exception):
    """Base exception for all aggregation engine errors."""


class SourceFetchError(ICSAggregatorError):
    """A calendar source could not be retrieved.

    Raised when:
    - The request timed out or the network was unreachable
    - The server answered with a non-success status
    - The URL is not an http(s) URL with a hostname
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ICSParseError(ICSAggregatorError):
    """A fetched document is not a parseable iCalendar document."""


class EventParseError(ICSParseError):
    """A single VEVENT is malformed (missing UID, missing DTSTART).

    Only the offending event is skipped; sibling events are still returned.
    """


class InvalidQueryError(ICSAggregatorError, ValueError):
    """Query input was rejected.

    Raised when:
    - A date string cannot be parsed
    - The end of the range is not after its start
    - The limit is not a positive integer
    - A keyword search is issued with an empty keyword
    """


class ConfigurationError(ICSAggregatorError, ValueError):
    """Configuration values from the environment are invalid."""
