"""Data models for ICS calendar aggregation."""

from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel

from .datetime_utils import serialize_datetime_utc


def _now_utc() -> datetime:
    return datetime.now(UTC)


class CalendarSource(BaseModel):
    """Configuration for one ICS calendar feed."""

    name: str = Field(..., description="Identifier for this calendar source, e.g. 'work'")
    url: str = Field(..., description="ICS calendar URL")
    custom_headers: dict[str, str] = Field(default_factory=dict, description="Custom HTTP headers")

    model_config = ConfigDict(frozen=True)


class FetchResponse(BaseModel):
    """Result of fetching one source. Failures are reported, never raised."""

    success: bool
    content: Optional[str] = None
    status_code: Optional[int] = None
    content_type: Optional[str] = None
    error_message: Optional[str] = None
    fetch_time: datetime = Field(default_factory=_now_utc)

    @property
    def content_length(self) -> Optional[int]:
        """Size of the buffered body in bytes."""
        if self.content is None:
            return None
        return len(self.content.encode("utf-8"))


class Frequency(str, Enum):
    """Recurrence frequencies understood by the expander."""

    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


WEEKDAY_CODES = ("MO", "TU", "WE", "TH", "FR", "SA", "SU")


class WeekdaySpec(BaseModel):
    """One BYDAY entry: a weekday with an optional ordinal (``2MO``, ``-1FR``)."""

    weekday: str
    ordinal: Optional[int] = None

    model_config = ConfigDict(frozen=True)


class RecurrenceRule(BaseModel):
    """Structured RRULE.

    ``frequency`` is None when the feed used a frequency the expander does not
    support; such a rule still parses, and expands to the series start only.
    """

    frequency: Optional[Frequency] = None
    interval: int = 1
    count: Optional[int] = None
    until: Optional[datetime] = None
    by_day: tuple[WeekdaySpec, ...] = ()
    by_month_day: tuple[int, ...] = ()
    by_month: tuple[int, ...] = ()

    model_config = ConfigDict(frozen=True)


class EventDefinition(BaseModel):
    """One parsed VEVENT: a single occurrence or a recurring series."""

    uid: str
    summary: str
    dtstart: datetime
    dtend: Optional[datetime] = None
    all_day: bool = False
    recurrence_rule: Optional[RecurrenceRule] = None
    exception_dates: frozenset[datetime] = frozenset()
    source: str
    description: Optional[str] = None
    location: Optional[str] = None
    recurrence_id: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)

    @property
    def is_recurring(self) -> bool:
        """True if the definition carries a recurrence rule."""
        return self.recurrence_rule is not None

    @property
    def duration(self) -> timedelta:
        """Length of each instance; zero when there is no end."""
        if self.dtend is None:
            return timedelta(0)
        return max(self.dtend - self.dtstart, timedelta(0))


class Occurrence(BaseModel):
    """One concrete dated instance of an event, in UTC."""

    uid: str
    summary: str
    dtstart: datetime
    dtend: Optional[datetime] = None
    all_day: bool = False
    source: str
    description: Optional[str] = None
    location: Optional[str] = None
    is_recurring_instance: bool = False

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    @field_serializer("dtstart")
    def serialize_start(self, dt: datetime) -> str:
        """Serialize start to ISO 8601 UTC."""
        return serialize_datetime_utc(dt)

    @field_serializer("dtend", when_used="unless-none")
    def serialize_end(self, dt: datetime) -> str:
        """Serialize end to ISO 8601 UTC."""
        return serialize_datetime_utc(dt)

    def sort_key(self) -> tuple[datetime, str, str, str]:
        """Ordering key: start, then uid; source and summary keep ties total."""
        return (self.dtstart, self.uid, self.source, self.summary)


class SourceError(BaseModel):
    """A source whose fetch or parse failed during a refresh."""

    source: str
    message: str

    model_config = ConfigDict(frozen=True)


class ParseResult(BaseModel):
    """Outcome of parsing one source document."""

    source: str
    definitions: list[EventDefinition] = Field(default_factory=list)
    skipped: int = 0
    warnings: list[str] = Field(default_factory=list)
    calendar_name: Optional[str] = None

    @property
    def recurring_count(self) -> int:
        """Number of definitions carrying a recurrence rule."""
        return sum(1 for d in self.definitions if d.is_recurring)


class QueryResult(BaseModel):
    """Answer to a range query; dumps with camelCase keys via ``by_alias=True``."""

    events: list[Occurrence]
    total_sources: int
    errors: list[SourceError]
    recurring_count: int
    expanded_count: int
    start_date: str
    end_date: str
    limit: int

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
