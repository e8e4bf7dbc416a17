"""Google Calendar manager for mirroring events into the target calendar."""
import logging
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Union

import google_auth_httplib2
import httplib2
from google.auth.exceptions import TransportError
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from processor.errors import RateLimitError, RemoteError
from processor.models import EventDateTime, NormalizedEvent, SyncWindow

logger = logging.getLogger(__name__)

RATE_LIMIT_REASONS = {'rateLimitExceeded', 'userRateLimitExceeded'}
RATE_LIMIT_MESSAGE = 'Rate Limit Exceeded'
GONE_STATUSES = {404, 410}
# Raised below the API layer: sockets, httplib2, token refresh
TRANSPORT_ERRORS = (OSError, httplib2.HttpLib2Error, TransportError)


def http_status(exc: HttpError) -> Optional[int]:
    status = getattr(exc.resp, 'status', None)
    try:
        return int(status)
    except (TypeError, ValueError):
        return None


def is_rate_limited(exc: HttpError) -> bool:
    """
    Whether an API error means "slow down".

    Google reports throttling as 429, or as 403 with a rate limit reason.
    """
    status = http_status(exc)
    if status == 429:
        return True
    if status != 403:
        return False

    details = exc.error_details if isinstance(exc.error_details, list) else []
    reasons = {d.get('reason') for d in details if isinstance(d, dict)}
    return bool(reasons & RATE_LIMIT_REASONS) or RATE_LIMIT_MESSAGE in str(exc)


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-delay retry on rate limiting; unbounded when max_attempts is None."""
    delay_seconds: float = 10
    max_attempts: Optional[int] = None


def parse_remote_start(item: Dict[str, Any]) -> Optional[Union[datetime, date]]:
    """
    Parse the start of a remote event.

    Args:
        item: Event resource from the Calendar API

    Returns:
        Aware datetime for timed events, date for all-day events, or None
    """
    start = item.get('start') or {}
    if start.get('dateTime'):
        value = start['dateTime']
        if value.endswith('Z'):
            value = value[:-1] + '+00:00'
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    if start.get('date'):
        try:
            return date.fromisoformat(start['date'])
        except ValueError:
            return None
    return None


class GoogleCalendarManager:
    """Manager for Google Calendar operations on a single calendar."""

    def __init__(self, service, calendar_id: str,
                 retry_policy: Optional[RetryPolicy] = None,
                 http_factory: Optional[Callable[[], Any]] = None):
        """
        Initialize the manager.

        Args:
            service: Calendar v3 service resource from googleapiclient
            calendar_id: Target calendar, e.g. xxx@group.calendar.google.com
            retry_policy: Rate limit retry policy (default: 10s, unbounded)
            http_factory: Builds a fresh transport per request; httplib2
                transports must not be shared between threads
        """
        self.service = service
        self.calendar_id = calendar_id
        self.retry_policy = retry_policy or RetryPolicy()
        self.http_factory = http_factory
        logger.info(f"Initialized GoogleCalendarManager for calendar: {calendar_id}")

    @classmethod
    def from_credentials(cls, credentials, calendar_id: str,
                         retry_policy: Optional[RetryPolicy] = None) -> 'GoogleCalendarManager':
        """Build the Calendar API service for authorized credentials."""
        service = build('calendar', 'v3', credentials=credentials, cache_discovery=False)
        return cls(
            service,
            calendar_id,
            retry_policy=retry_policy,
            http_factory=lambda: google_auth_httplib2.AuthorizedHttp(
                credentials, http=httplib2.Http()
            )
        )

    def _execute(self, request):
        if self.http_factory is None:
            return request.execute()
        return request.execute(http=self.http_factory())

    def _with_retry(self, description: str, call: Callable[[], Any]) -> Any:
        """
        Run an API call, waiting and retrying while it is rate limited.

        Raises:
            RateLimitError: If max_attempts is set and exhausted
            HttpError: For any other API error
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return call()
            except HttpError as e:
                if not is_rate_limited(e):
                    raise
                max_attempts = self.retry_policy.max_attempts
                if max_attempts is not None and attempt >= max_attempts:
                    raise RateLimitError(
                        f"Gave up on {description} after {attempt} attempts: {e}"
                    ) from e
                logger.warning(
                    f"Rate limited on {description} (attempt {attempt}). "
                    f"Retrying in {self.retry_policy.delay_seconds} seconds..."
                )
                time.sleep(self.retry_policy.delay_seconds)

    def list_events(self, time_min: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """
        Retrieve all events of the calendar, following pagination.

        Args:
            time_min: Only events ending after this instant

        Returns:
            List of event resources

        Raises:
            RemoteError: If the API call fails
        """
        params = {'calendarId': self.calendar_id}
        if time_min is not None:
            params['timeMin'] = time_min.isoformat()

        items = []
        page_token = None
        try:
            while True:
                if page_token:
                    params['pageToken'] = page_token
                response = self._with_retry(
                    'list events',
                    lambda: self._execute(self.service.events().list(**params))
                )
                items.extend(response.get('items', []))
                page_token = response.get('nextPageToken')
                if not page_token:
                    break
        except HttpError as e:
            raise RemoteError(f"Error listing events: {e}") from e
        except TRANSPORT_ERRORS as e:
            raise RemoteError(f"Network error listing events: {e}") from e

        logger.info(f"Retrieved {len(items)} events from calendar")
        return items

    def upsert_event(self, event: NormalizedEvent) -> str:
        """
        Update the event by id, inserting it when it does not exist yet.

        Args:
            event: Event to write

        Returns:
            'updated' or 'inserted'

        Raises:
            RemoteError: On any API failure other than rate limiting
        """
        body = self._event_to_body(event)
        events = self.service.events()
        try:
            self._with_retry(
                f"update '{event.title}'",
                lambda: self._execute(events.update(
                    calendarId=self.calendar_id, eventId=event.event_id, body=body
                ))
            )
            return 'updated'
        except HttpError as e:
            if http_status(e) not in GONE_STATUSES:
                raise RemoteError(f"Unable to update event '{event.title}': {e}") from e
        except TRANSPORT_ERRORS as e:
            raise RemoteError(f"Network error updating event '{event.title}': {e}") from e

        try:
            self._with_retry(
                f"insert '{event.title}'",
                lambda: self._execute(events.insert(
                    calendarId=self.calendar_id, body=body
                ))
            )
        except HttpError as e:
            raise RemoteError(f"Unable to insert event '{event.title}': {e}") from e
        except TRANSPORT_ERRORS as e:
            raise RemoteError(f"Network error inserting event '{event.title}': {e}") from e
        return 'inserted'

    def delete_event(self, item: Dict[str, Any]) -> None:
        """
        Delete a remote event; an event that is already gone counts as deleted.

        Raises:
            RemoteError: On any API failure other than rate limiting
        """
        summary = item.get('summary', item['id'])
        try:
            self._with_retry(
                f"delete '{summary}'",
                lambda: self._execute(self.service.events().delete(
                    calendarId=self.calendar_id, eventId=item['id']
                ))
            )
        except HttpError as e:
            if http_status(e) in GONE_STATUSES:
                return
            raise RemoteError(f"Unable to delete event '{summary}': {e}") from e
        except TRANSPORT_ERRORS as e:
            raise RemoteError(f"Network error deleting event '{summary}': {e}") from e

    def upcoming_events(self, window: SyncWindow) -> List[Dict[str, Any]]:
        """
        Select the remote events the sync owns: those starting inside the window.

        Events whose start cannot be parsed are left alone.
        """
        upcoming = []
        for item in self.list_events(time_min=window.start):
            start = parse_remote_start(item)
            if start is None:
                logger.warning(f"Ignoring event with unreadable start: {item.get('id')}")
                continue
            if isinstance(start, datetime):
                in_window = window.contains_instant(start)
            else:
                in_window = window.contains_date(start)
            if in_window:
                upcoming.append(item)
        return upcoming

    def delete_upcoming_events(self, window: SyncWindow,
                               run_all: Optional[Callable] = None) -> int:
        """
        Delete every remote event starting inside the sync window.

        Args:
            window: Current sync window
            run_all: Runs a list of callables and returns their outcomes
                (results or exceptions); defaults to running them in order

        Returns:
            Count of deleted events

        Raises:
            RemoteError: If listing fails; per-event failures are logged
        """
        items = self.upcoming_events(window)
        logger.info(f"Deleting {len(items)} upcoming events")

        tasks = [lambda item=item: self.delete_event(item) for item in items]
        outcomes = (run_all or _run_in_order)(tasks)

        deleted_count = 0
        for item, outcome in zip(items, outcomes):
            if isinstance(outcome, Exception):
                logger.error(f"Unable to delete event: {outcome}")
                continue
            deleted_count += 1
            logger.info(f"Deleted upcoming event: {item.get('summary')}")

        logger.info(f"Successfully deleted {deleted_count} events")
        return deleted_count

    def _event_to_body(self, event: NormalizedEvent) -> Dict[str, Any]:
        """
        Convert NormalizedEvent to a Calendar API event resource.

        All-day ends are stored inclusive and sent exclusive.
        """
        return {
            'id': event.event_id,
            'summary': event.title,
            'status': 'confirmed',
            'start': self._date_to_body(event.start),
            'end': self._date_to_body(event.end, exclusive_end=True),
        }

    @staticmethod
    def _date_to_body(value: EventDateTime, exclusive_end: bool = False) -> Dict[str, str]:
        if value.is_all_day:
            day = value.date + timedelta(days=1) if exclusive_end else value.date
            return {'date': day.isoformat(), 'timeZone': value.timezone}
        return {'dateTime': value.date_time.isoformat(), 'timeZone': value.timezone}


def _run_in_order(tasks: List[Callable]) -> List[Any]:
    outcomes = []
    for task in tasks:
        try:
            outcomes.append(task())
        except Exception as e:
            outcomes.append(e)
    return outcomes
