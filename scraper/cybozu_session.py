"""Authenticated access to the Cybozu groupware pages."""
import logging
import re
from datetime import date
from typing import Dict, Optional
from urllib.parse import urlsplit

import requests
from bs4 import BeautifulSoup
from bs4.builder import ParserRejectedMarkup

from processor.errors import AuthError, FetchError
from scraper.encoding import DEFAULT_ENCODING, decode_page

logger = logging.getLogger(__name__)

SESSION_COOKIE = 'AGSESSID'
LOGIN_COOKIE = 'AGLOGINID'

MONTH_PAGE = 'ScheduleUserMonth'
BANNER_DETAIL_PAGE = 'ScheduleBannerModify'
PAGE_PARAM_RE = re.compile(r'(^|&)page=[^&]*')

# Plain scripted requests get turned away by some installations
BROWSER_HEADERS = {
    'Pragma': 'no-cache',
    'Cache-Control': 'no-cache',
    'Upgrade-Insecure-Requests': '1',
    'User-Agent': (
        'Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 '
        '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'
    ),
    'Accept': (
        'text/html,application/xhtml+xml,application/xml;q=0.9,'
        'image/webp,*/*;q=0.8'
    ),
    'Connection': 'keep-alive',
}


def find_cookie(set_cookie: str, name: str) -> Optional[str]:
    """
    Scan a raw Set-Cookie header for a cookie value.

    Args:
        set_cookie: Header value, possibly several cookies folded together
        name: Cookie name to look for

    Returns:
        Cookie value or None if absent
    """
    for pair in re.split(r'[;,]', set_cookie or ''):
        key, sep, value = pair.partition('=')
        if sep and key.strip() == name:
            return value.strip()
    return None


class CybozuSession:
    """Logs into the groupware and fetches calendar pages as that user."""

    def __init__(self, base_url: str, user_id: str, password: str,
                 encoding: str = DEFAULT_ENCODING, timeout: int = 30):
        """
        Initialize the session.

        Args:
            base_url: URL of ag.cgi, e.g. http://example/cgi-bin/cbag/ag.cgi
            user_id: Login id, also the calendar owner
            password: Login password
            encoding: Encoding of the served pages
            timeout: HTTP request timeout in seconds (default: 30)
        """
        self.base_url = base_url
        self.user_id = user_id
        self.password = password
        self.encoding = encoding
        self.timeout = timeout
        self.session_id: Optional[str] = None

    def login(self) -> str:
        """
        Log in with a form POST and keep the issued session id.

        Returns:
            Value of the AGSESSID cookie

        Raises:
            AuthError: If the request fails or no session cookie comes back
        """
        form = {
            '_ID': self.user_id,
            'Password': self.password,
            'csrf_ticket': '',
            '_System': 'login',
            '_Login': '1',
            'LoginMethod': '0',
        }
        logger.info(f"Logging in to {self.base_url} as {self.user_id}")
        try:
            response = requests.post(
                self.base_url,
                data=form,
                timeout=self.timeout,
                allow_redirects=False
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise AuthError(f"Login request failed: {e}") from e

        session_id = find_cookie(response.headers.get('Set-Cookie', ''), SESSION_COOKIE)
        if not session_id:
            raise AuthError(f"Login response did not set {SESSION_COOKIE}")

        self.session_id = session_id
        return session_id

    def fetch_page(self, url: str, params: Optional[Dict[str, str]] = None) -> BeautifulSoup:
        """
        Fetch a page with the session cookie and parse it.

        Args:
            url: Page URL
            params: Extra query parameters

        Returns:
            Parsed document

        Raises:
            AuthError: If login() has not succeeded yet
            FetchError: On transport, HTTP status or parse failure
            DecodeError: If the body is not valid in the page encoding
        """
        if not self.session_id:
            raise AuthError("Not logged in")

        cookies = {SESSION_COOKIE: self.session_id, LOGIN_COOKIE: self.user_id}
        try:
            response = requests.get(
                url,
                params=params,
                headers=BROWSER_HEADERS,
                cookies=cookies,
                timeout=self.timeout
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise FetchError(f"Failed to fetch {url}: {e}") from e

        text = decode_page(response.content, self.encoding)
        try:
            return BeautifulSoup(text, 'html.parser')
        except ParserRejectedMarkup as e:
            raise FetchError(f"Unparseable page {url}: {e}") from e

    def fetch_month(self, day: date) -> BeautifulSoup:
        """Fetch the month view containing ``day``."""
        params = {
            'page': MONTH_PAGE,
            'UID': self.user_id,
            'Date': f"da.{day.year}.{day.month:02d}.{day.day:02d}",
        }
        logger.info(f"Fetching month page for {day:%Y-%m}")
        return self.fetch_page(self.base_url, params=params)

    def banner_detail_url(self, href_query: str) -> str:
        """
        Turn a banner event link into the URL of its modify view.

        Args:
            href_query: Query string of the anchor, or the whole href

        Returns:
            Absolute URL with the page selector rewritten

        Raises:
            FetchError: If the link has no query string
        """
        query = urlsplit(href_query).query if '?' in href_query else href_query
        if not query:
            raise FetchError(f"Banner link has no query string: {href_query}")
        # Other parameters may carry percent-escaped cp932 bytes; keep them as sent
        if PAGE_PARAM_RE.search(query):
            query = PAGE_PARAM_RE.sub(rf'\1page={BANNER_DETAIL_PAGE}', query, count=1)
        else:
            query = f"page={BANNER_DETAIL_PAGE}&{query}"
        return f"{self.base_url}?{query}"

    def fetch_banner_detail(self, href_query: str) -> BeautifulSoup:
        """Fetch the modify view that carries a banner event's date range."""
        return self.fetch_page(self.banner_detail_url(href_query))
