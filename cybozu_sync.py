"""Sync job mirroring the Cybozu groupware calendar into Google Calendar."""
import argparse
import asyncio
import json
import logging
import os
import sys
import time
from datetime import date, datetime, timedelta
from typing import Any, Callable, List, Optional

from processor.errors import (
    ConfigError,
    ExtractionError,
    RemoteError,
    SyncError,
)
from processor.models import EventKind, RawEvent, SyncResult, SyncWindow
from processor.normalizer import EventNormalizer
from scraper.cybozu_session import CybozuSession
from scraper.extractor import EventExtractor, extract_banner_range
from storage.credentials import load_credentials
from storage.google_calendar_manager import GoogleCalendarManager, RetryPolicy
from sync_config import Config

logger = logging.getLogger(__name__)

# Attributes every LogRecord has; anything else was passed through ``extra``
_RECORD_ATTRS = set(vars(logging.makeLogRecord({})))


class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON, including any ``extra`` fields."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS and key not in log_data:
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def run_concurrently(tasks: List[Callable[[], Any]], max_workers: int) -> List[Any]:
    """
    Run blocking callables in worker threads and wait for all of them.

    Args:
        tasks: Zero-argument callables
        max_workers: Maximum number running at once

    Returns:
        Outcome per task in order: its return value or the exception it raised
    """
    if not tasks:
        return []
    return asyncio.run(_gather_bounded(tasks, max_workers))


async def _gather_bounded(tasks: List[Callable[[], Any]], max_workers: int) -> List[Any]:
    semaphore = asyncio.Semaphore(max_workers)

    async def run(task):
        async with semaphore:
            return await asyncio.to_thread(task)

    return await asyncio.gather(*(run(task) for task in tasks), return_exceptions=True)


def month_start(day: date, offset: int) -> date:
    """First day of the month ``offset`` months after ``day``'s month."""
    index = day.year * 12 + day.month - 1 + offset
    return date(index // 12, index % 12 + 1, 1)


def fetch_raw_events(session: CybozuSession, extractor: EventExtractor,
                     today: date, months_ahead: int) -> List[RawEvent]:
    """
    Fetch and extract the month pages starting with the current month.

    Events shown on more than one page are returned once.

    Raises:
        FetchError: If a month page cannot be fetched
    """
    seen = set()
    raw_events = []
    for offset in range(months_ahead):
        day = today if offset == 0 else month_start(today, offset)
        for raw in extractor.extract(session.fetch_month(day)):
            key = (raw.kind, raw.href_query)
            if key in seen:
                continue
            seen.add(key)
            raw_events.append(raw)
    return raw_events


def sync_raw_event(raw: RawEvent, session: CybozuSession, normalizer: EventNormalizer,
                   calendar: Optional[GoogleCalendarManager], window: SyncWindow,
                   dry_run: bool = False) -> str:
    """
    Normalize one raw event and write it to the remote calendar.

    Returns:
        'inserted', 'updated' or 'skipped'

    Raises:
        ExtractionError: If the event cannot be normalized
        FetchError: If a banner detail page cannot be fetched
        RemoteError: If the remote write fails
    """
    if raw.kind is EventKind.BANNER:
        date_range = extract_banner_range(session.fetch_banner_detail(raw.href_query))
        if not window.contains_date(date_range.end):
            logger.debug(f"Skipping past banner event '{raw.title}'")
            return 'skipped'
        event = normalizer.normalize_banner(raw, date_range)
    else:
        event = normalizer.normalize_timed(raw)

    if dry_run:
        logger.info(f"Would upsert event {event.event_id}: {event.title}")
        return 'skipped'

    outcome = calendar.upsert_event(event)
    logger.info(f"Event {outcome}: {event.event_id}, {event.title}")
    return outcome


def run_sync(config: Config, session: Optional[CybozuSession] = None,
             calendar: Optional[GoogleCalendarManager] = None,
             now: Optional[datetime] = None, dry_run: bool = False) -> SyncResult:
    """
    Mirror the upcoming groupware events into the remote calendar.

    Args:
        config: Run configuration
        session: Groupware session (built from config if omitted)
        calendar: Remote calendar manager (built from config if omitted)
        now: Override of the wall clock
        dry_run: Extract and normalize only, without remote writes

    Returns:
        SyncResult with counts and per-event errors

    Raises:
        AuthError: If login or Google authorization fails
        FetchError: If the month page cannot be fetched
    """
    window = SyncWindow.for_today(config.timezone, config.lookback_days, now)
    session = session or CybozuSession(
        base_url=config.base_url,
        user_id=config.user_id,
        password=config.password,
        encoding=config.encoding,
        timeout=config.timeout_seconds
    )
    if calendar is None and not dry_run:
        calendar = GoogleCalendarManager.from_credentials(
            load_credentials(config.config_dir),
            config.calendar_id,
            retry_policy=RetryPolicy(delay_seconds=config.rate_limit_delay)
        )

    session.login()
    today = window.boundary + timedelta(days=config.lookback_days)
    raw_events = fetch_raw_events(session, EventExtractor(), today, config.months_ahead)
    logger.info(f"Fetched {len(raw_events)} raw events from groupware")

    normalizer = EventNormalizer(config.timezone)
    current = [raw for raw in raw_events if normalizer.is_current(raw, window)]
    result = SyncResult(skipped=len(raw_events) - len(current))

    def run_all(tasks):
        return run_concurrently(tasks, config.max_workers)

    if not dry_run:
        try:
            result.deleted = calendar.delete_upcoming_events(window, run_all=run_all)
        except RemoteError as e:
            logger.error(f"Unable to delete upcoming events: {e}")
            result.errors.append(str(e))

    tasks = [
        lambda raw=raw: sync_raw_event(raw, session, normalizer, calendar, window, dry_run)
        for raw in current
    ]
    for raw, outcome in zip(current, run_all(tasks)):
        if outcome == 'inserted':
            result.inserted += 1
        elif outcome == 'updated':
            result.updated += 1
        elif outcome == 'skipped':
            result.skipped += 1
        elif isinstance(outcome, ExtractionError):
            logger.warning(f"Skipping event {raw.source_id} '{raw.title}': {outcome}")
            result.skipped += 1
        elif isinstance(outcome, SyncError):
            logger.error(f"Unable to sync event {raw.source_id} '{raw.title}': {outcome}")
            result.errors.append(f"{raw.source_id}: {outcome}")
        else:
            logger.error(
                f"Unexpected error syncing event {raw.source_id}: {outcome!r}",
                exc_info=outcome
            )
            result.errors.append(f"{raw.source_id}: {outcome!r}")

    return result


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description='Mirror the Cybozu groupware calendar into Google Calendar.'
    )
    parser.add_argument('--dry-run', action='store_true',
                        help='Extract and normalize events without writing to Google Calendar.')
    parser.add_argument('--log-level', default=None,
                        help='Logging level, overrides LOG_LEVEL.')
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Command line entry point.

    Returns:
        0 on completion, 1 if the run failed, 2 on configuration errors
    """
    args = parse_args(argv)

    try:
        config = Config.from_env()
    except ConfigError as e:
        setup_logging(args.log_level or os.environ.get('LOG_LEVEL', 'INFO'))
        logger.error(f"Configuration error: {e}")
        return 2

    setup_logging(args.log_level or config.log_level)
    start_time = time.time()
    logger.info(
        "Sync started",
        extra={
            'calendar_id': config.calendar_id,
            'months_ahead': config.months_ahead,
            'dry_run': args.dry_run
        }
    )

    try:
        result = run_sync(config, dry_run=args.dry_run)
    except SyncError as e:
        logger.error(
            f"Sync failed: {e}",
            extra={
                'duration_seconds': round(time.time() - start_time, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )
        return 1

    logger.info(
        "Sync completed",
        extra={
            'duration_seconds': round(time.time() - start_time, 2),
            'events_inserted': result.inserted,
            'events_updated': result.updated,
            'events_deleted': result.deleted,
            'events_skipped': result.skipped,
            'errors': result.errors
        }
    )
    return 0


if __name__ == '__main__':
    sys.exit(main())
