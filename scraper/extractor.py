"""Extraction of raw event records from Cybozu calendar markup."""
import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Callable, List, Optional, Tuple
from urllib.parse import urlsplit

from bs4 import BeautifulSoup, Tag

from processor.errors import ExtractionError
from processor.models import DateRange, EventKind, RawEvent, TimeRange

logger = logging.getLogger(__name__)

SOURCE_ID_RE = re.compile(r'sEID=(\d+)')
DATE_TOKEN_RE = re.compile(r'Date=da\.(\d{4})\.(\d{1,2})\.(\d{1,2})')
TITLE_TIME_RE = re.compile(r'^\s*(\d{2}):(\d{2})(?:-(\d{2}):(\d{2}))?')
LEADING_DIGITS_RE = re.compile(r'^\s*(\d+)')

START_DROPDOWNS = ('SetDate.Year', 'SetDate.Month', 'SetDate.Day')
END_DROPDOWNS = ('EndDate.Year', 'EndDate.Month', 'EndDate.Day')


def _text(element: Tag) -> str:
    return ' '.join(element.get_text(' ').split())


def _timed_title(element: Tag) -> str:
    title_elem = element.select_one('.eventTitle')
    return _text(title_elem if title_elem else element)


def _banner_title(element: Tag) -> str:
    anchor = _anchor(element)
    title = element.get('title') or (anchor.get('title') if anchor else None)
    return title.strip() if title else _text(element)


def _anchor(element: Tag) -> Optional[Tag]:
    if element.name == 'a' and element.has_attr('href'):
        return element
    return element.find('a', href=True)


@dataclass(frozen=True)
class ExtractionRule:
    """How one kind of event is located and read in the month page."""
    kind: EventKind
    selector: str
    title: Callable[[Tag], str]
    requires_date: bool


EXTRACTION_RULES = (
    ExtractionRule(
        kind=EventKind.TIMED,
        selector='.event',
        title=_timed_title,
        requires_date=True
    ),
    ExtractionRule(
        kind=EventKind.BANNER,
        selector='.bannerevent',
        title=_banner_title,
        requires_date=False
    ),
)


def split_title_time(text: str) -> Tuple[str, Optional[TimeRange]]:
    """
    Strip a leading ``HH:MM`` or ``HH:MM-HH:MM`` prefix from a title.

    Args:
        text: Visible title text

    Returns:
        Tuple of (title without the prefix, captured TimeRange or None)
    """
    match = TITLE_TIME_RE.match(text)
    if not match:
        return text.strip(), None

    start_hour, start_minute, end_hour, end_minute = match.groups()
    time_range = TimeRange(
        start_hour=int(start_hour),
        start_minute=int(start_minute),
        end_hour=int(end_hour) if end_hour is not None else None,
        end_minute=int(end_minute) if end_minute is not None else None
    )
    return text[match.end():].strip(), time_range


def parse_date_token(href: str) -> date:
    """
    Read the ``Date=da.YYYY.M.D`` token embedded in a link.

    Raises:
        ExtractionError: If the token is missing or not a real date
    """
    match = DATE_TOKEN_RE.search(href)
    if not match:
        raise ExtractionError(f"No date token in link: {href}")
    year, month, day = (int(part) for part in match.groups())
    try:
        return date(year, month, day)
    except ValueError as e:
        raise ExtractionError(f"Invalid date token in link {href}: {e}") from e


def parse_source_id(href: str) -> str:
    """
    Read the numeric ``sEID`` token embedded in a link.

    Raises:
        ExtractionError: If the token is missing
    """
    match = SOURCE_ID_RE.search(href)
    if not match:
        raise ExtractionError(f"No event id in link: {href}")
    return match.group(1)


class EventExtractor:
    """Turns a parsed month page into RawEvent records."""

    def __init__(self, rules=EXTRACTION_RULES):
        self.rules = rules

    def extract(self, doc: BeautifulSoup) -> List[RawEvent]:
        """
        Extract all events the rules match.

        Elements with malformed links are logged and skipped.

        Args:
            doc: Parsed month page

        Returns:
            List of RawEvent objects
        """
        events = []
        for rule in self.rules:
            elements = doc.select(rule.selector)
            for element in elements:
                try:
                    events.append(self.extract_element(element, rule))
                except ExtractionError as e:
                    logger.warning(f"Skipping {rule.kind.value} event: {e}")
                    continue

        logger.info(f"Extracted {len(events)} events from page")
        return events

    def extract_element(self, element: Tag, rule: ExtractionRule) -> RawEvent:
        """
        Extract a single element according to its rule.

        Raises:
            ExtractionError: If the element has no usable link
        """
        anchor = _anchor(element)
        if anchor is None:
            raise ExtractionError("Element has no link")
        href = anchor['href']

        source_id = parse_source_id(href)
        event_date = parse_date_token(href) if rule.requires_date else None
        title_text = rule.title(element)

        time_range = None
        title = title_text.strip()
        if rule.kind is EventKind.TIMED:
            title, time_range = split_title_time(title_text)

        return RawEvent(
            source_id=source_id,
            href_query=urlsplit(href).query,
            title_text=title_text,
            kind=rule.kind,
            title=title,
            event_date=event_date,
            time_range=time_range
        )


def selected_int(doc: BeautifulSoup, name: str) -> int:
    """
    Read the selected option of a named dropdown as an integer.

    The option text is used (e.g. ``2026年`` reads as 2026), falling back
    to its value attribute.

    Raises:
        ExtractionError: If no option is selected or it holds no number
    """
    for option in doc.select(f'select[name="{name}"] option'):
        if not option.has_attr('selected'):
            continue
        for candidate in (option.get_text(), option.get('value', '')):
            match = LEADING_DIGITS_RE.match(candidate)
            if match:
                return int(match.group(1))
        raise ExtractionError(f"Selected value of '{name}' is not a number")
    raise ExtractionError(f"Selected value doesn't exist for '{name}'")


def _dropdown_date(doc: BeautifulSoup, names: Tuple[str, str, str]) -> date:
    year, month, day = (selected_int(doc, name) for name in names)
    try:
        return date(year, month, day)
    except ValueError as e:
        raise ExtractionError(f"Invalid date in {names[0]}: {e}") from e


def extract_banner_range(doc: BeautifulSoup) -> DateRange:
    """
    Resolve a banner event's date range from its modify view.

    Args:
        doc: Parsed ScheduleBannerModify page

    Returns:
        Inclusive DateRange

    Raises:
        ExtractionError: If any of the six dropdowns cannot be resolved
    """
    return DateRange(
        start=_dropdown_date(doc, START_DROPDOWNS),
        end=_dropdown_date(doc, END_DROPDOWNS)
    )
