"""Unit tests for CybozuSession and page decoding."""
from datetime import date

import pytest
import requests
import responses

from processor.errors import AuthError, DecodeError, FetchError
from scraper.cybozu_session import CybozuSession, find_cookie
from scraper.encoding import decode_page

BASE_URL = 'http://cybozu.example.com/cgi-bin/cbag/ag.cgi'


@pytest.fixture
def session():
    """Session for a test user."""
    return CybozuSession(base_url=BASE_URL, user_id='taro', password='secret', timeout=5)


@pytest.fixture
def logged_in(session):
    """Session that already holds a session id."""
    session.session_id = 'sess-123'
    return session


class TestDecodePage:
    """Test cases for decode_page."""

    def test_decodes_shift_jis(self):
        """Test that cp932 bytes decode to text."""
        body = '<p>定例会議</p>'.encode('cp932')
        assert decode_page(body) == '<p>定例会議</p>'

    def test_malformed_bytes_raise(self):
        """Test that a truncated multibyte sequence is not silently dropped."""
        with pytest.raises(DecodeError):
            decode_page(b'<p>abc\x82')

    def test_unknown_encoding_raises(self):
        """Test that an unknown codec name is reported as a decode error."""
        with pytest.raises(DecodeError):
            decode_page(b'abc', encoding='no-such-codec')


class TestFindCookie:
    """Test cases for find_cookie."""

    def test_finds_cookie_among_attributes(self):
        header = 'AGSESSID=abc123; path=/; HttpOnly'
        assert find_cookie(header, 'AGSESSID') == 'abc123'

    def test_finds_cookie_in_folded_header(self):
        header = (
            'AGLOGINID=taro; expires=Thu, 01-Jan-2030 00:00:00 GMT; path=/, '
            'AGSESSID=xyz789; path=/'
        )
        assert find_cookie(header, 'AGSESSID') == 'xyz789'
        assert find_cookie(header, 'AGLOGINID') == 'taro'

    def test_missing_cookie(self):
        assert find_cookie('OTHER=1; path=/', 'AGSESSID') is None
        assert find_cookie('', 'AGSESSID') is None


class TestLogin:
    """Test cases for CybozuSession.login."""

    @responses.activate
    def test_login_success(self, session):
        """Test that login posts the form and keeps the session cookie."""
        responses.add(
            responses.POST,
            BASE_URL,
            status=302,
            headers={
                'Set-Cookie': 'AGSESSID=abc123; path=/; HttpOnly',
                'Location': BASE_URL
            }
        )

        assert session.login() == 'abc123'
        assert session.session_id == 'abc123'

        body = responses.calls[0].request.body
        assert '_ID=taro' in body
        assert 'Password=secret' in body
        assert '_System=login' in body
        assert '_Login=1' in body

    @responses.activate
    def test_login_without_cookie(self, session):
        """Test that a response without AGSESSID is an auth failure."""
        responses.add(responses.POST, BASE_URL, status=200, body='login page')

        with pytest.raises(AuthError):
            session.login()
        assert session.session_id is None

    @responses.activate
    def test_login_connection_error(self, session):
        """Test that transport errors are reported as auth failures."""
        responses.add(
            responses.POST,
            BASE_URL,
            body=requests.ConnectionError('connection refused')
        )

        with pytest.raises(AuthError):
            session.login()

    @responses.activate
    def test_login_server_error(self, session):
        responses.add(responses.POST, BASE_URL, status=500, body='Server Error')

        with pytest.raises(AuthError):
            session.login()


class TestFetchPage:
    """Test cases for page fetching."""

    def test_fetch_requires_login(self, session):
        with pytest.raises(AuthError):
            session.fetch_page(BASE_URL)

    @responses.activate
    def test_fetch_sends_cookies_and_decodes(self, logged_in):
        """Test that pages are fetched with the session and parsed."""
        responses.add(
            responses.GET,
            BASE_URL,
            body='<html><body><p class="x">予定</p></body></html>'.encode('cp932'),
            status=200
        )

        doc = logged_in.fetch_page(BASE_URL)

        assert doc.select_one('p.x').get_text() == '予定'
        request = responses.calls[0].request
        assert 'AGSESSID=sess-123' in request.headers['Cookie']
        assert 'AGLOGINID=taro' in request.headers['Cookie']
        assert 'Mozilla' in request.headers['User-Agent']

    @responses.activate
    def test_fetch_http_error(self, logged_in):
        responses.add(responses.GET, BASE_URL, status=404, body='Not Found')

        with pytest.raises(FetchError):
            logged_in.fetch_page(BASE_URL)

    @responses.activate
    def test_fetch_timeout(self, logged_in):
        responses.add(
            responses.GET,
            BASE_URL,
            body=requests.Timeout('Request timed out')
        )

        with pytest.raises(FetchError):
            logged_in.fetch_page(BASE_URL)

    @responses.activate
    def test_fetch_malformed_encoding(self, logged_in):
        """Test that undecodable pages fail with DecodeError."""
        responses.add(responses.GET, BASE_URL, body=b'<p>abc\x82', status=200)

        with pytest.raises(DecodeError):
            logged_in.fetch_page(BASE_URL)

    @responses.activate
    def test_fetch_month_query(self, logged_in):
        """Test the month view query parameters."""
        responses.add(responses.GET, BASE_URL, body=b'<html></html>', status=200)

        logged_in.fetch_month(date(2026, 10, 5))

        url = responses.calls[0].request.url
        assert 'page=ScheduleUserMonth' in url
        assert 'UID=taro' in url
        assert 'Date=da.2026.10.05' in url


class TestBannerDetailUrl:
    """Test cases for banner detail URL rewriting."""

    def test_rewrites_page_selector(self, session):
        url = session.banner_detail_url(
            'page=ScheduleView&UID=7&sEID=123&Date=da.2026.10.5'
        )
        assert url == (
            f'{BASE_URL}?page=ScheduleBannerModify&UID=7&sEID=123&Date=da.2026.10.5'
        )

    def test_accepts_full_href(self, session):
        url = session.banner_detail_url('ag.cgi?page=ScheduleView&sEID=55')
        assert url == f'{BASE_URL}?page=ScheduleBannerModify&sEID=55'

    def test_adds_missing_page_selector(self, session):
        url = session.banner_detail_url('sEID=55')
        assert url == f'{BASE_URL}?page=ScheduleBannerModify&sEID=55'

    def test_link_without_query(self, session):
        with pytest.raises(FetchError):
            session.banner_detail_url('')

    def test_keeps_other_parameters_byte_for_byte(self, session):
        # %82%A0 is cp932 for a hiragana "a" and is not valid UTF-8
        url = session.banner_detail_url('page=ScheduleView&sEID=1&Memo=%82%A0')
        assert url == f'{BASE_URL}?page=ScheduleBannerModify&sEID=1&Memo=%82%A0'

    def test_ignores_parameters_ending_in_page(self, session):
        url = session.banner_detail_url('subpage=x&sEID=1')
        assert url == f'{BASE_URL}?page=ScheduleBannerModify&subpage=x&sEID=1'
