"""Data models for event processing."""
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import List, Optional
from zoneinfo import ZoneInfo


class EventKind(Enum):
    """Kinds of events rendered on the groupware month page."""
    TIMED = 'timed'
    BANNER = 'banner'


@dataclass(frozen=True)
class TimeRange:
    """Time prefix captured from an event title, e.g. ``14:00-15:30``."""
    start_hour: int
    start_minute: int
    end_hour: Optional[int] = None
    end_minute: Optional[int] = None


@dataclass(frozen=True)
class RawEvent:
    """Event as found in the month page markup."""
    source_id: str
    href_query: str
    title_text: str
    kind: EventKind
    title: str
    event_date: Optional[date] = None
    time_range: Optional[TimeRange] = None


@dataclass(frozen=True)
class DateRange:
    """Inclusive date range of a banner event."""
    start: date
    end: date


@dataclass(frozen=True)
class EventDateTime:
    """Start or end of an event: a plain date or a zoned timestamp."""
    timezone: str
    date: Optional[date] = None
    date_time: Optional[datetime] = None

    @property
    def is_all_day(self) -> bool:
        return self.date_time is None


@dataclass(frozen=True)
class NormalizedEvent:
    """Event ready to be written to the remote calendar."""
    event_id: str
    title: str
    start: EventDateTime
    end: EventDateTime


@dataclass(frozen=True)
class SyncWindow:
    """Rolling boundary separating past events from the upcoming slice we own."""
    boundary: date
    timezone: str

    @classmethod
    def for_today(cls, timezone: str, lookback_days: int = 0,
                  now: Optional[datetime] = None) -> 'SyncWindow':
        """
        Build the window for the current run.

        Args:
            timezone: IANA zone the groupware runs in
            lookback_days: Days before today that still count as upcoming
            now: Override of the wall clock (tests)

        Returns:
            SyncWindow whose boundary is today minus ``lookback_days``
        """
        zone = ZoneInfo(timezone)
        current = now.astimezone(zone) if now else datetime.now(zone)
        return cls(
            boundary=current.date() - timedelta(days=lookback_days),
            timezone=timezone
        )

    @property
    def start(self) -> datetime:
        return datetime.combine(self.boundary, time(), tzinfo=ZoneInfo(self.timezone))

    def contains_date(self, value: date) -> bool:
        return value >= self.boundary

    def contains_instant(self, value: datetime) -> bool:
        return value >= self.start


@dataclass
class SyncResult:
    """Result of sync operation."""
    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)
