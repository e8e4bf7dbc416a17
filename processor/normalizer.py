"""Normalization of raw groupware events into calendar-ready events."""
import logging
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from processor.errors import ExtractionError
from processor.models import (
    DateRange,
    EventDateTime,
    EventKind,
    NormalizedEvent,
    RawEvent,
    SyncWindow,
    TimeRange,
)

logger = logging.getLogger(__name__)


def generate_event_id(source_id: str, year: int, month: int, day: int) -> str:
    """
    Generate the remote id of an event occurrence.

    Digits only, so it is valid in Google's base32hex id alphabet, and
    zero-padded so different dates can never produce the same id.

    Args:
        source_id: Numeric sEID from the groupware
        year: Start year
        month: Start month
        day: Start day

    Returns:
        Deterministic event id
    """
    return f"{source_id}{year:04d}{month:02d}{day:02d}"


class EventNormalizer:
    """Converts RawEvent records to NormalizedEvent in a fixed time zone."""

    def __init__(self, timezone: str = 'Asia/Tokyo'):
        self.timezone = timezone
        self.zone = ZoneInfo(timezone)

    def is_current(self, raw: RawEvent, window: SyncWindow) -> bool:
        """
        Whether a timed event is recent enough to be synced.

        Banner events are always kept here; their dates are only known after
        the detail page is fetched.
        """
        if raw.kind is not EventKind.TIMED or raw.event_date is None:
            return True
        return window.contains_date(raw.event_date)

    def normalize_timed(self, raw: RawEvent) -> NormalizedEvent:
        """
        Normalize a single-day event.

        Args:
            raw: RawEvent of kind TIMED

        Returns:
            Timed event if the title carried a time range, all-day otherwise

        Raises:
            ExtractionError: If the date is missing or the time range is invalid
        """
        if raw.event_date is None:
            raise ExtractionError(f"Event {raw.source_id} has no date")

        day = raw.event_date
        event_id = generate_event_id(raw.source_id, day.year, day.month, day.day)

        if raw.time_range is None:
            all_day = EventDateTime(timezone=self.timezone, date=day)
            return NormalizedEvent(
                event_id=event_id,
                title=raw.title,
                start=all_day,
                end=all_day
            )

        start, end = self._time_bounds(day, raw.time_range)
        if end < start:
            raise ExtractionError(
                f"Event '{raw.title}' ends before it starts "
                f"({start:%H:%M}-{end:%H:%M})"
            )

        return NormalizedEvent(
            event_id=event_id,
            title=raw.title,
            start=EventDateTime(timezone=self.timezone, date_time=start),
            end=EventDateTime(timezone=self.timezone, date_time=end)
        )

    def normalize_banner(self, raw: RawEvent, date_range: DateRange) -> NormalizedEvent:
        """
        Normalize a multi-day banner event.

        Args:
            raw: RawEvent of kind BANNER
            date_range: Range resolved from the detail page

        Returns:
            All-day event spanning the range

        Raises:
            ExtractionError: If the range ends before it starts
        """
        if date_range.end < date_range.start:
            raise ExtractionError(
                f"Banner '{raw.title}' ends before it starts "
                f"({date_range.start} - {date_range.end})"
            )
        start = date_range.start
        return NormalizedEvent(
            event_id=generate_event_id(raw.source_id, start.year, start.month, start.day),
            title=raw.title,
            start=EventDateTime(timezone=self.timezone, date=date_range.start),
            end=EventDateTime(timezone=self.timezone, date=date_range.end)
        )

    def _time_bounds(self, day: date, time_range: TimeRange):
        self._check_clock(time_range.start_hour, time_range.start_minute)
        midnight = datetime.combine(day, time())
        start = midnight + timedelta(
            hours=time_range.start_hour, minutes=time_range.start_minute
        )

        end_hour = time_range.end_hour
        if end_hour is None:
            end_hour = time_range.start_hour + 1
        end_minute = time_range.end_minute
        if end_minute is None:
            end_minute = time_range.start_minute
        self._check_clock(end_hour, end_minute, allow_overflow=True)
        end = midnight + timedelta(hours=end_hour, minutes=end_minute)

        # Wall-clock arithmetic above; attach the zone last
        return start.replace(tzinfo=self.zone), end.replace(tzinfo=self.zone)

    @staticmethod
    def _check_clock(hour: int, minute: int, allow_overflow: bool = False) -> None:
        max_hour = 24 if allow_overflow else 23
        if not 0 <= hour <= max_hour or not 0 <= minute <= 59:
            raise ExtractionError(f"Invalid time {hour:02d}:{minute:02d}")
