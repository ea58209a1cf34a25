"""
Unit tests for ics_aggregator.exceptions

Covers:
- Every engine error derives from ICSAggregatorError
- Caller input errors are also ValueErrors
- SourceFetchError carries the HTTP status
"""

import pytest

from ics_aggregator.exceptions import (
    ConfigurationError,
    EventParseError,
    ICSAggregatorError,
    ICSParseError,
    InvalidQueryError,
    SourceFetchError,
)

pytestmark = [pytest.mark.unit, pytest.mark.fast]


@pytest.mark.parametrize(
    "exc_type",
    [SourceFetchError, ICSParseError, EventParseError, InvalidQueryError, ConfigurationError],
)
def test_exception_when_raised_then_caught_as_base(exc_type: type) -> None:
    with pytest.raises(ICSAggregatorError):
        raise exc_type("boom")


def test_event_parse_error_is_ics_parse_error() -> None:
    assert issubclass(EventParseError, ICSParseError)


@pytest.mark.parametrize("exc_type", [InvalidQueryError, ConfigurationError])
def test_input_errors_are_value_errors(exc_type: type) -> None:
    assert issubclass(exc_type, ValueError)


def test_source_fetch_error_when_status_given_then_kept() -> None:
    error = SourceFetchError("HTTP 404: Not Found", status_code=404)

    assert str(error) == "HTTP 404: Not Found"
    assert error.status_code == 404
    assert SourceFetchError("Network error").status_code is None
