"""Aggregated, periodically refreshed event store.

Refreshes fetch and parse every source concurrently and publish a new immutable
:class:`Snapshot` with a single attribute assignment. Queries read whichever
snapshot is current and never observe a partially built one.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Optional

from ..calendar.datetime_utils import days_from_today, parse_query_date, serialize_datetime_utc
from ..calendar.fetcher import ICSFetcher
from ..calendar.models import (
    CalendarSource,
    EventDefinition,
    Occurrence,
    ParseResult,
    QueryResult,
    SourceError,
)
from ..calendar.parser import ICSParser
from ..calendar.rrule_expander import RRuleExpander, overlaps
from ..core.config_manager import get_config_value
from ..exceptions import ICSAggregatorError, InvalidQueryError, SourceFetchError

logger = logging.getLogger(__name__)

DEFAULT_QUERY_LIMIT = 50


@dataclass(frozen=True)
class Snapshot:
    """Immutable view of all sources as of one refresh.

    ``occurrence_index`` holds the non-recurring events, sorted by start then
    uid; recurring definitions are expanded per query window.
    """

    occurrence_index: tuple[Occurrence, ...] = ()
    recurring_definitions: tuple[EventDefinition, ...] = ()
    source_errors: tuple[SourceError, ...] = ()
    refreshed_at: Optional[datetime] = None
    generation: int = 0
    source_count: int = 0

    @property
    def recurring_count(self) -> int:
        """Number of definitions carrying a recurrence rule."""
        return len(self.recurring_definitions)

    @property
    def definition_count(self) -> int:
        """Total number of definitions across all sources."""
        return len(self.occurrence_index) + len(self.recurring_definitions)


@dataclass(frozen=True)
class RefreshOutcome:
    """Summary of one refresh cycle."""

    published: bool
    source_count: int
    failed_sources: tuple[str, ...] = ()
    definition_count: int = 0
    duration_seconds: float = 0.0
    errors: tuple[SourceError, ...] = ()

    @property
    def total_failure(self) -> bool:
        """True when sources were configured and every one of them failed."""
        return self.source_count > 0 and len(self.failed_sources) == self.source_count


def _validate_limit(limit: Any) -> int:
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise InvalidQueryError(f"limit must be a positive integer, got {limit!r}")
    return limit


def _echo(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, datetime):
        return serialize_datetime_utc(value)
    return str(value)


class EventStore:
    """Aggregates events from all configured sources behind an atomic snapshot."""

    def __init__(
        self,
        settings: Any,
        fetcher: Optional[Any] = None,
        parser: Optional[ICSParser] = None,
        expander: Optional[RRuleExpander] = None,
    ):
        """Initialize the store.

        Args:
            settings: Settings object or dict providing ``sources`` and tuning values
            fetcher: Object with ``async fetch(source, timeout) -> FetchResponse``
            parser: ICS parser (defaults to :class:`ICSParser`)
            expander: Recurrence expander (defaults to one built from ``settings``)
        """
        self.settings = settings
        self.sources: tuple[CalendarSource, ...] = tuple(get_config_value(settings, "sources", []) or [])
        self.request_timeout = float(get_config_value(settings, "request_timeout", 30.0))
        self.search_lookback_days = int(get_config_value(settings, "search_lookback_days", 30))
        self.search_lookahead_days = int(get_config_value(settings, "search_lookahead_days", 365))

        self.fetcher = fetcher or ICSFetcher(settings)
        self.parser = parser or ICSParser()
        self.expander = expander or RRuleExpander(settings)

        self._snapshot = Snapshot(source_count=len(self.sources))
        self.last_outcome: Optional[RefreshOutcome] = None

        logger.debug("EventStore initialized with %d source(s)", len(self.sources))

    @property
    def snapshot(self) -> Snapshot:
        """The currently published snapshot."""
        return self._snapshot

    @property
    def source_count(self) -> int:
        """Number of configured sources, whether or not they are healthy."""
        return len(self.sources)

    async def refresh(self) -> RefreshOutcome:
        """Fetch and parse every source, then publish a new snapshot.

        A source that fails contributes no events and is recorded as a
        :class:`SourceError`. When every source fails the current snapshot is
        kept, unless nothing has been published yet.

        Returns:
            RefreshOutcome describing what happened
        """
        started = time.monotonic()
        previous = self._snapshot
        logger.debug("Starting refresh of %d source(s)", len(self.sources))

        results = await asyncio.gather(
            *(self._load_source(source) for source in self.sources),
            return_exceptions=True,
        )

        definitions: list[EventDefinition] = []
        errors: list[SourceError] = []
        for source, result in zip(self.sources, results):
            if isinstance(result, ParseResult):
                definitions.extend(result.definitions)
                continue
            if isinstance(result, ICSAggregatorError):
                message = str(result)
            elif isinstance(result, Exception):
                logger.error(
                    "Unexpected %s while loading source %s: %s",
                    type(result).__name__,
                    source.name,
                    result,
                )
                message = f"Unexpected error: {result}"
            else:
                # CancelledError and other BaseExceptions are not absorbed
                raise result
            logger.warning("Source %s failed: %s", source.name, message)
            errors.append(SourceError(source=source.name, message=message))

        failed = tuple(error.source for error in errors)
        duration = time.monotonic() - started
        all_failed = bool(self.sources) and len(errors) == len(self.sources)

        if all_failed and previous.generation > 0:
            logger.error(
                "All %d source(s) failed; keeping snapshot from generation %d",
                len(self.sources),
                previous.generation,
            )
            outcome = RefreshOutcome(
                published=False,
                source_count=len(self.sources),
                failed_sources=failed,
                definition_count=previous.definition_count,
                duration_seconds=duration,
                errors=tuple(errors),
            )
            self.last_outcome = outcome
            return outcome

        snapshot = self._build_snapshot(definitions, errors, previous.generation + 1)
        self._snapshot = snapshot

        if all_failed:
            logger.error("All %d source(s) failed on the initial refresh", len(self.sources))
        elif errors:
            logger.warning(
                "Refresh published with %d of %d source(s) failing",
                len(errors),
                len(self.sources),
            )

        logger.debug(
            "Published snapshot generation %d: %d single event(s), %d recurring definition(s) in %.2fs",
            snapshot.generation,
            len(snapshot.occurrence_index),
            snapshot.recurring_count,
            duration,
        )
        outcome = RefreshOutcome(
            published=True,
            source_count=len(self.sources),
            failed_sources=failed,
            definition_count=snapshot.definition_count,
            duration_seconds=duration,
            errors=tuple(errors),
        )
        self.last_outcome = outcome
        return outcome

    async def _load_source(self, source: CalendarSource) -> ParseResult:
        """Fetch and parse one source.

        Raises:
            SourceFetchError: If the fetch did not succeed
            ICSParseError: If the body is not an iCalendar document
        """
        response = await self.fetcher.fetch(source, self.request_timeout)
        if not response.success or response.content is None:
            raise SourceFetchError(response.error_message or "Fetch failed", response.status_code)
        return self.parser.parse(response.content, source.name)

    def _build_snapshot(
        self, definitions: Iterable[EventDefinition], errors: Sequence[SourceError], generation: int
    ) -> Snapshot:
        singles = []
        recurring = []
        for definition in definitions:
            if definition.is_recurring:
                recurring.append(definition)
            else:
                singles.append(RRuleExpander.to_occurrence(definition, definition.dtstart, recurring=False))
        singles.sort(key=Occurrence.sort_key)

        return Snapshot(
            occurrence_index=tuple(singles),
            recurring_definitions=tuple(recurring),
            source_errors=tuple(errors),
            refreshed_at=datetime.now(UTC),
            generation=generation,
            source_count=len(self.sources),
        )

    def _collect(
        self, snapshot: Snapshot, window_start: datetime, window_end: datetime
    ) -> tuple[list[Occurrence], int]:
        """All occurrences overlapping the window, plus the recurring-instance count."""
        occurrences = []
        for occurrence in snapshot.occurrence_index:
            if occurrence.dtstart >= window_end:
                break
            if overlaps(occurrence.dtstart, occurrence.dtend, window_start, window_end):
                occurrences.append(occurrence)

        expansion = self.expander.expand_all(snapshot.recurring_definitions, window_start, window_end)
        occurrences.extend(expansion.occurrences)
        return occurrences, expansion.expanded_count

    def query(self, start_date: Any, end_date: Any, limit: int = DEFAULT_QUERY_LIMIT) -> QueryResult:
        """Return occurrences overlapping ``[start_date, end_date)``.

        Args:
            start_date: Inclusive range start (ISO 8601 string, date or datetime)
            end_date: Exclusive range end
            limit: Maximum number of events to return

        Returns:
            QueryResult with events ordered by start, then uid

        Raises:
            InvalidQueryError: If a date is unparseable, the range is empty or
                the limit is not a positive integer
        """
        window_start = parse_query_date(start_date, "start_date")
        window_end = parse_query_date(end_date, "end_date")
        if window_end <= window_start:
            raise InvalidQueryError("end_date must be after start_date")
        limit = _validate_limit(limit)

        snapshot = self._snapshot
        occurrences, expanded_count = self._collect(snapshot, window_start, window_end)
        occurrences.sort(key=Occurrence.sort_key)

        return QueryResult(
            events=occurrences[:limit],
            total_sources=len(self.sources),
            errors=list(snapshot.source_errors),
            recurring_count=snapshot.recurring_count,
            expanded_count=expanded_count,
            start_date=_echo(start_date),
            end_date=_echo(end_date),
            limit=limit,
        )

    def search_by_keyword(
        self,
        keyword: str,
        start_date: Any = None,
        end_date: Any = None,
        limit: Optional[int] = None,
    ) -> list[Occurrence]:
        """Find occurrences whose summary contains ``keyword``, ignoring case.

        Missing bounds default to ``search_lookback_days`` before and
        ``search_lookahead_days`` after today (UTC).

        Raises:
            InvalidQueryError: If the keyword is empty or the range is invalid
        """
        if not isinstance(keyword, str) or not keyword.strip():
            raise InvalidQueryError("keyword must be a non-empty string")
        needle = keyword.strip().casefold()

        window_start = (
            parse_query_date(start_date, "start_date")
            if start_date is not None
            else days_from_today(-self.search_lookback_days)
        )
        window_end = (
            parse_query_date(end_date, "end_date")
            if end_date is not None
            else days_from_today(self.search_lookahead_days) + timedelta(days=1)
        )
        if window_end <= window_start:
            raise InvalidQueryError("end_date must be after start_date")
        if limit is not None:
            limit = _validate_limit(limit)

        occurrences, _ = self._collect(self._snapshot, window_start, window_end)
        matches = [o for o in occurrences if needle in o.summary.casefold()]
        matches.sort(key=Occurrence.sort_key)

        logger.debug("Keyword search %r matched %d occurrence(s)", keyword, len(matches))
        return matches[:limit] if limit is not None else matches
