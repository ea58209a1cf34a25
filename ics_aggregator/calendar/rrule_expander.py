"""RRULE expansion for the aggregation engine.

Recurring definitions are stored unexpanded in the snapshot and expanded per
query window here. Generation runs from the series start, or from a start moved
forward by whole periods for open-ended rules, so that patterns such as "every
3rd Tuesday" stay phase-aligned; candidates before the window are produced and
thrown away.
"""

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from dateutil.relativedelta import relativedelta
from dateutil.rrule import DAILY, MONTHLY, WEEKLY, YEARLY, rrule, weekday

from .datetime_utils import to_utc
from .models import WEEKDAY_CODES, EventDefinition, Frequency, Occurrence, RecurrenceRule

logger = logging.getLogger(__name__)

DEFAULT_MAX_OCCURRENCES_PER_RULE = 5000

_FREQUENCY_MAP = {
    Frequency.DAILY: DAILY,
    Frequency.WEEKLY: WEEKLY,
    Frequency.MONTHLY: MONTHLY,
    Frequency.YEARLY: YEARLY,
}

# Fixed-length periods; these can be skipped ahead without losing phase.
_FIXED_PERIODS = {
    Frequency.DAILY: timedelta(days=1),
    Frequency.WEEKLY: timedelta(weeks=1),
}


@dataclass
class RRuleExpanderConfig:
    """Configuration for RRULE expansion."""

    max_occurrences_per_rule: int = DEFAULT_MAX_OCCURRENCES_PER_RULE

    @classmethod
    def from_settings(cls, settings: Any) -> "RRuleExpanderConfig":
        """Extract expansion configuration from a settings object.

        Args:
            settings: Configuration object, or None for defaults

        Returns:
            RRuleExpanderConfig with values from settings or defaults
        """
        return cls(
            max_occurrences_per_rule=getattr(
                settings, "max_occurrences_per_rule", DEFAULT_MAX_OCCURRENCES_PER_RULE
            ),
        )


@dataclass
class ExpansionResult:
    """Occurrences for a window plus how many came from recurring series."""

    occurrences: list[Occurrence] = field(default_factory=list)
    expanded_count: int = 0


def overlaps(start: datetime, end: Optional[datetime], window_start: datetime, window_end: datetime) -> bool:
    """Half-open overlap test; zero-length events count when they start in the window."""
    if end is None or end <= start:
        return window_start <= start < window_end
    return start < window_end and end > window_start


def _to_dateutil_weekdays(rule: RecurrenceRule) -> Optional[list[weekday]]:
    if not rule.by_day:
        return None
    days = []
    for spec in rule.by_day:
        base = weekday(WEEKDAY_CODES.index(spec.weekday))
        days.append(base(spec.ordinal) if spec.ordinal else base)
    return days


def _anchored_parts(
    rule: RecurrenceRule, dtstart: datetime
) -> tuple[Optional[list[weekday]], Optional[tuple[int, ...]], Optional[tuple[int, ...]]]:
    """BYDAY/BYMONTHDAY/BYMONTH with the defaults dateutil would take from DTSTART.

    dateutil fills a bare MONTHLY rule with DTSTART's day and a bare YEARLY rule
    with its month and day. Pinning them here keeps a fast-forwarded start
    (which may land on a clamped day such as Feb 28) on the original anchor.
    """
    by_weekday = _to_dateutil_weekdays(rule)
    by_month_day = rule.by_month_day or None
    by_month = rule.by_month or None
    if by_weekday is None and by_month_day is None:
        if rule.frequency is Frequency.MONTHLY:
            by_month_day = (dtstart.day,)
        elif rule.frequency is Frequency.YEARLY:
            by_month_day = (dtstart.day,)
            by_month = by_month or (dtstart.month,)
    return by_weekday, by_month_day, by_month


class RRuleExpander:
    """Expands event definitions into concrete occurrences for a window."""

    def __init__(self, settings: Any = None):
        config = RRuleExpanderConfig.from_settings(settings)
        self.max_occurrences = max(1, int(config.max_occurrences_per_rule))

    def expand(
        self, definition: EventDefinition, window_start: datetime, window_end: datetime
    ) -> list[Occurrence]:
        """Expand one definition over ``[window_start, window_end)``.

        Recurring instances are kept when their span intersects the window, so
        an instance that started before ``window_start`` and is still running
        is included, the same overlap rule single events follow.

        Args:
            definition: Parsed event, recurring or not
            window_start: Inclusive window start (aware)
            window_end: Exclusive window end (aware)

        Returns:
            Occurrences in ascending start order, in UTC
        """
        if window_end <= window_start:
            return []

        if not definition.is_recurring:
            if overlaps(definition.dtstart, definition.dtend, window_start, window_end):
                return [self.to_occurrence(definition, definition.dtstart, recurring=False)]
            return []

        duration = definition.duration
        has_end = definition.dtend is not None
        occurrences = []
        for candidate in self._candidates(definition, window_start, window_end):
            if to_utc(candidate) in definition.exception_dates:
                continue
            end = candidate + duration if has_end else None
            if overlaps(candidate, end, window_start, window_end):
                occurrences.append(self.to_occurrence(definition, candidate, recurring=True))
        return occurrences

    def expand_all(
        self, definitions: Iterable[EventDefinition], window_start: datetime, window_end: datetime
    ) -> ExpansionResult:
        """Expand many definitions, counting recurring instances separately."""
        result = ExpansionResult()
        for definition in definitions:
            occurrences = self.expand(definition, window_start, window_end)
            if definition.is_recurring:
                result.expanded_count += len(occurrences)
            result.occurrences.extend(occurrences)
        return result

    def _candidates(
        self, definition: EventDefinition, window_start: datetime, window_end: datetime
    ) -> Iterator[datetime]:
        """Yield candidate starts until the first stop condition.

        Stops at the window end, past UNTIL, after COUNT candidates, at the
        per-rule cap, or as soon as the generator fails to advance.
        """
        rule = definition.recurrence_rule
        assert rule is not None
        dtstart = definition.dtstart

        if rule.frequency is None or rule.interval < 1:
            logger.debug(
                "Degenerate rule on event %s (frequency=%s, interval=%d); using series start only",
                definition.uid,
                rule.frequency,
                rule.interval,
            )
            if rule.until is None or dtstart <= rule.until:
                yield dtstart
            return

        generator_start = self._fast_forward(rule, dtstart, window_start - definition.duration)
        by_weekday, by_month_day, by_month = _anchored_parts(rule, dtstart)
        generator = rrule(
            _FREQUENCY_MAP[rule.frequency],
            dtstart=generator_start,
            interval=rule.interval,
            byweekday=by_weekday,
            bymonthday=by_month_day,
            bymonth=by_month,
        )

        generated = 0
        previous: Optional[datetime] = None
        for candidate in generator:
            if candidate >= window_end:
                return
            if rule.until is not None and candidate > rule.until:
                return
            if rule.count is not None and generated >= rule.count:
                return
            if generated >= self.max_occurrences:
                logger.warning(
                    "Event %s hit the %d occurrence cap; returning partial expansion",
                    definition.uid,
                    self.max_occurrences,
                )
                return
            if previous is not None and candidate <= previous:
                logger.warning("Recurrence for event %s stopped advancing; halting", definition.uid)
                return

            generated += 1
            previous = candidate
            yield candidate

    @staticmethod
    def _fast_forward(rule: RecurrenceRule, dtstart: datetime, horizon: datetime) -> datetime:
        """Move a long-running series start close to the window by whole periods.

        Only done for rules without COUNT, and the shift is a whole number of
        ``interval`` periods so the series stays on the same phase. ``horizon``
        is the window start minus the event duration; the new start lands at
        least one full period before it, so every skipped candidate ends before
        the window opens.
        """
        if rule.frequency is None or rule.count is not None:
            return dtstart

        period = _FIXED_PERIODS.get(rule.frequency)
        if period is not None:
            step = period * rule.interval
            skip = (horizon - dtstart) // step - 1
            if skip <= 0:
                return dtstart
            return dtstart + step * skip

        local_horizon = horizon.astimezone(dtstart.tzinfo)
        if rule.frequency is Frequency.YEARLY:
            skip = (local_horizon.year - dtstart.year) // rule.interval - 1
            shift = relativedelta(years=rule.interval * skip)
        else:
            months = (local_horizon.year - dtstart.year) * 12 + local_horizon.month - dtstart.month
            skip = months // rule.interval - 1
            shift = relativedelta(months=rule.interval * skip)
        if skip <= 0:
            return dtstart
        return dtstart + shift

    @staticmethod
    def to_occurrence(definition: EventDefinition, start: datetime, recurring: bool) -> Occurrence:
        """Materialize one instance of ``definition`` starting at ``start``, in UTC."""
        end = None
        if definition.dtend is not None:
            end = to_utc(start + definition.duration)
        return Occurrence(
            uid=definition.uid,
            summary=definition.summary,
            dtstart=to_utc(start),
            dtend=end,
            all_day=definition.all_day,
            source=definition.source,
            description=definition.description,
            location=definition.location,
            is_recurring_instance=recurring,
        )
