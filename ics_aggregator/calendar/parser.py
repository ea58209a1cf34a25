"""iCalendar parser producing event definitions for the aggregation engine."""

import logging
import re
from datetime import datetime, timedelta
from typing import Any, Optional

from dateutil import parser as date_parser
from icalendar import Calendar
from icalendar import Event as ICalEvent

from ..exceptions import EventParseError, ICSParseError
from .datetime_utils import coerce_ical_value, is_date_only, to_utc, until_to_datetime
from .models import (
    WEEKDAY_CODES,
    EventDefinition,
    Frequency,
    ParseResult,
    RecurrenceRule,
    WeekdaySpec,
)

logger = logging.getLogger(__name__)

DEFAULT_SUMMARY = "(No Summary)"

_BYDAY_PATTERN = re.compile(r"^([+-]?\d{1,2})?(MO|TU|WE|TH|FR|SA|SU)$")


def _parse_int(value: str, part: str) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.debug("Ignoring malformed RRULE %s=%r", part, value)
        return None


def _parse_int_list(value: str, part: str, low: int, high: int) -> tuple[int, ...]:
    numbers = []
    for item in value.split(","):
        number = _parse_int(item.strip(), part)
        if number is None or number == 0 or not low <= abs(number) <= high:
            continue
        numbers.append(number)
    return tuple(numbers)


def _parse_by_day(value: str) -> tuple[WeekdaySpec, ...]:
    specs = []
    for item in value.split(","):
        match = _BYDAY_PATTERN.match(item.strip().upper())
        if not match:
            logger.debug("Ignoring malformed BYDAY entry %r", item)
            continue
        ordinal = int(match.group(1)) if match.group(1) else None
        specs.append(WeekdaySpec(weekday=match.group(2), ordinal=ordinal or None))
    return tuple(specs)


def _parse_until(value: str, all_day: bool) -> Optional[datetime]:
    text = value.strip()
    try:
        parsed = date_parser.isoparse(text)
    except (ValueError, OverflowError):
        logger.debug("Ignoring malformed RRULE UNTIL=%r", value)
        return None
    if "T" not in text.upper():
        return until_to_datetime(parsed.date(), all_day)
    return until_to_datetime(parsed, all_day)


def parse_rrule(value: Any, all_day: bool = False) -> RecurrenceRule:
    """Parse an RRULE value into a structured rule.

    Only FREQ, INTERVAL, COUNT, UNTIL, BYDAY, BYMONTHDAY and BYMONTH are
    understood. Any other part is ignored, and a malformed part falls back to
    its default rather than rejecting the whole rule.

    Args:
        value: Raw rule text (``FREQ=WEEKLY;BYDAY=MO``) or an icalendar ``vRecur``
        all_day: Whether the owning event is date-only (affects a date UNTIL)

    Returns:
        RecurrenceRule; ``frequency`` is None for unsupported frequencies
    """
    if hasattr(value, "to_ical"):
        value = value.to_ical()
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    text = str(value).strip()
    if text.upper().startswith("RRULE:"):
        text = text[6:]

    fields: dict[str, Any] = {}
    for part in text.split(";"):
        if "=" not in part:
            continue
        key, _, raw = part.partition("=")
        key = key.strip().upper()
        raw = raw.strip()

        if key == "FREQ":
            try:
                fields["frequency"] = Frequency(raw.upper())
            except ValueError:
                logger.debug("Unsupported RRULE frequency %r", raw)
                fields["frequency"] = None
        elif key == "INTERVAL":
            interval = _parse_int(raw, key)
            if interval is not None:
                fields["interval"] = interval
        elif key == "COUNT":
            count = _parse_int(raw, key)
            if count is not None and count > 0:
                fields["count"] = count
        elif key == "UNTIL":
            until = _parse_until(raw, all_day)
            if until is not None:
                fields["until"] = until
        elif key == "BYDAY":
            fields["by_day"] = _parse_by_day(raw)
        elif key == "BYMONTHDAY":
            fields["by_month_day"] = _parse_int_list(raw, key, 1, 31)
        elif key == "BYMONTH":
            fields["by_month"] = tuple(m for m in _parse_int_list(raw, key, 1, 12) if m > 0)
        else:
            logger.debug("Ignoring unsupported RRULE part %s", key)

    return RecurrenceRule(**fields)


def _first(component: ICalEvent, name: str) -> Any:
    """Property value, taking the first entry when the property is repeated."""
    value = component.get(name)
    if isinstance(value, list):
        return value[0] if value else None
    return value


def _text(component: ICalEvent, name: str) -> Optional[str]:
    value = _first(component, name)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _collect_exdates(component: ICalEvent) -> frozenset[datetime]:
    """Gather every EXDATE value as a UTC instant.

    icalendar returns a single ``vDDDLists`` for one EXDATE line and a list of
    them when the property repeats.
    """
    props = component.get("EXDATE")
    if props is None:
        return frozenset()
    if not isinstance(props, list):
        props = [props]

    exdates = set()
    for prop in props:
        for item in getattr(prop, "dts", []):
            try:
                exdates.add(to_utc(coerce_ical_value(item.dt)))
            except TypeError:
                logger.debug("Ignoring EXDATE value %r", item)
    return frozenset(exdates)


class ICSParser:
    """Turns raw ICS text into :class:`EventDefinition` records."""

    def parse(self, raw_text: Any, source_name: str) -> ParseResult:
        """Parse one source document.

        Malformed events are skipped individually; the call only fails when the
        document as a whole is not an iCalendar document.

        Args:
            raw_text: ICS document body
            source_name: Name of the source the document came from

        Returns:
            ParseResult with the parsed definitions and skip statistics

        Raises:
            ICSParseError: If the input is not text or has no calendar structure
        """
        if isinstance(raw_text, bytes):
            try:
                raw_text = raw_text.decode("utf-8")
            except UnicodeDecodeError as e:
                raise ICSParseError(f"Content is not valid UTF-8 text: {e}") from e
        if not isinstance(raw_text, str):
            raise ICSParseError(f"Expected ICS text, got {type(raw_text).__name__}")
        if not raw_text.strip():
            raise ICSParseError("Empty ICS content")
        if "BEGIN:VCALENDAR" not in raw_text.upper():
            raise ICSParseError("Content does not contain a VCALENDAR")

        try:
            calendar = Calendar.from_ical(raw_text)
        except Exception as e:
            raise ICSParseError(f"Failed to parse ICS content: {e}") from e

        definitions: list[EventDefinition] = []
        overrides: list[EventDefinition] = []
        cancelled: list[tuple[str, datetime]] = []
        warnings: list[str] = []
        skipped = 0

        for component in calendar.walk("VEVENT"):
            try:
                definition = self.parse_event(component, source_name)
            except EventParseError as e:
                skipped += 1
                warnings.append(str(e))
                logger.debug("Skipping event from %s: %s", source_name, e)
                continue

            if definition.recurrence_id is None:
                definitions.append(definition)
            elif _text(component, "STATUS") == "CANCELLED":
                cancelled.append((definition.uid, definition.recurrence_id))
            else:
                overrides.append(definition)

        definitions = self._apply_overrides(definitions, overrides, cancelled)

        if skipped:
            logger.warning("Skipped %d malformed event(s) in source %s", skipped, source_name)

        result = ParseResult(
            source=source_name,
            definitions=definitions,
            skipped=skipped,
            warnings=warnings,
            calendar_name=_text(calendar, "X-WR-CALNAME"),
        )
        logger.debug(
            "Parsed %d event definitions (%d recurring) from %s",
            len(result.definitions),
            result.recurring_count,
            source_name,
        )
        return result

    def parse_event(self, component: ICalEvent, source_name: str) -> EventDefinition:
        """Parse a single VEVENT component.

        Raises:
            EventParseError: If UID or DTSTART is missing, repeated or unusable,
                or any property value cannot be interpreted
        """
        try:
            return self._parse_event(component, source_name)
        except EventParseError:
            raise
        except (AttributeError, TypeError, ValueError) as e:
            uid = _text(component, "UID") or "(no UID)"
            raise EventParseError(f"Event {uid} is malformed: {e}") from e

    def _parse_event(self, component: ICalEvent, source_name: str) -> EventDefinition:
        uid = _text(component, "UID")
        if not uid:
            raise EventParseError("VEVENT is missing a UID")

        dtstart_prop = component.get("DTSTART")
        if dtstart_prop is None:
            raise EventParseError(f"Event {uid} is missing a DTSTART")
        if isinstance(dtstart_prop, list):
            raise EventParseError(f"Event {uid} has {len(dtstart_prop)} DTSTART properties")

        raw_start = dtstart_prop.dt
        all_day = is_date_only(raw_start)
        try:
            dtstart = coerce_ical_value(raw_start)
        except TypeError as e:
            raise EventParseError(f"Event {uid} has an invalid DTSTART: {e}") from e

        dtend = self._parse_end(component, uid, dtstart, all_day)

        rule = None
        rrule_prop = _first(component, "RRULE")
        if rrule_prop is not None:
            rule = parse_rrule(rrule_prop, all_day=all_day)
        elif any(str(name).upper() == "RRULE" for name, _ in getattr(component, "errors", [])):
            logger.warning("Event %s has an unreadable RRULE; treating as a single event", uid)

        recurrence_id = None
        recurrence_prop = _first(component, "RECURRENCE-ID")
        if recurrence_prop is not None:
            try:
                recurrence_id = to_utc(coerce_ical_value(recurrence_prop.dt))
            except TypeError:
                logger.debug("Ignoring unusable RECURRENCE-ID on event %s", uid)
            else:
                rule = None

        return EventDefinition(
            uid=uid,
            summary=_text(component, "SUMMARY") or DEFAULT_SUMMARY,
            dtstart=dtstart,
            dtend=dtend,
            all_day=all_day,
            recurrence_rule=rule,
            exception_dates=_collect_exdates(component) if rule is not None else frozenset(),
            source=source_name,
            description=_text(component, "DESCRIPTION"),
            location=_text(component, "LOCATION"),
            recurrence_id=recurrence_id,
        )

    def _parse_end(
        self, component: ICalEvent, uid: str, dtstart: datetime, all_day: bool
    ) -> Optional[datetime]:
        dtend_prop = _first(component, "DTEND")
        if dtend_prop is not None:
            try:
                dtend = coerce_ical_value(dtend_prop.dt)
            except TypeError:
                logger.debug("Ignoring unusable DTEND on event %s", uid)
            else:
                if dtend < dtstart:
                    logger.debug("Event %s ends before it starts; clamping end to start", uid)
                    return dtstart
                return dtend

        duration_prop = _first(component, "DURATION")
        if duration_prop is not None and isinstance(duration_prop.dt, timedelta):
            return dtstart + max(duration_prop.dt, timedelta(0))

        if all_day:
            return dtstart
        return None

    def _apply_overrides(
        self,
        definitions: list[EventDefinition],
        overrides: list[EventDefinition],
        cancelled: list[tuple[str, datetime]],
    ) -> list[EventDefinition]:
        """Fold RECURRENCE-ID instances into their series.

        Each overridden or cancelled instant is excluded from the master series
        with the same UID; modified instances are kept as standalone events.
        """
        if not overrides and not cancelled:
            return definitions

        excluded: dict[str, set[datetime]] = {}
        for definition in overrides:
            if definition.recurrence_id is not None:
                excluded.setdefault(definition.uid, set()).add(definition.recurrence_id)
        for uid, instant in cancelled:
            excluded.setdefault(uid, set()).add(instant)

        merged = []
        for definition in definitions:
            extra = excluded.get(definition.uid)
            if extra and definition.is_recurring:
                definition = definition.model_copy(
                    update={"exception_dates": definition.exception_dates | frozenset(extra)}
                )
            merged.append(definition)

        merged.extend(overrides)
        return merged


__all__ = ["DEFAULT_SUMMARY", "ICSParser", "WEEKDAY_CODES", "parse_rrule"]
