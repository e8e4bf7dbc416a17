"""Shared fixtures for the sync tests."""
import json
import threading

import httplib2
import pytest
from googleapiclient.errors import HttpError


def make_http_error(status, reason='', message=''):
    """Build an HttpError shaped like the ones the Calendar API raises."""
    resp = httplib2.Response({'status': status})
    content = json.dumps({
        'error': {
            'code': status,
            'message': message,
            'errors': [{'domain': 'usageLimits', 'reason': reason, 'message': message}]
        }
    }).encode('utf-8')
    return HttpError(resp, content)


@pytest.fixture
def http_error():
    """Factory for Calendar API errors."""
    return make_http_error


@pytest.fixture
def rate_limit_error():
    """A 403 rate limit error as the Calendar API reports it."""
    return make_http_error(403, reason='rateLimitExceeded', message='Rate Limit Exceeded')


class _Request:
    def __init__(self, action):
        self._action = action

    def execute(self, http=None):
        return self._action()


class FakeEventsResource:
    """In-memory stand-in for ``service.events()`` of the Calendar API."""

    def __init__(self):
        self.items = {}
        self.lock = threading.Lock()

    def list(self, calendarId, timeMin=None, pageToken=None):
        def action():
            with self.lock:
                return {'items': [dict(item) for item in self.items.values()]}
        return _Request(action)

    def update(self, calendarId, eventId, body):
        def action():
            with self.lock:
                if eventId not in self.items:
                    raise make_http_error(404, reason='notFound', message='Not Found')
                self.items[eventId] = dict(body)
                return dict(body)
        return _Request(action)

    def insert(self, calendarId, body):
        def action():
            with self.lock:
                if body['id'] in self.items:
                    raise make_http_error(409, reason='duplicate', message='Duplicate')
                self.items[body['id']] = dict(body)
                return dict(body)
        return _Request(action)

    def delete(self, calendarId, eventId):
        def action():
            with self.lock:
                if eventId not in self.items:
                    raise make_http_error(410, reason='deleted', message='Resource has been deleted')
                del self.items[eventId]
                return ''
        return _Request(action)


class FakeCalendarService:
    """Minimal Calendar API service backed by FakeEventsResource."""

    def __init__(self):
        self.resource = FakeEventsResource()

    def events(self):
        return self.resource


@pytest.fixture
def fake_service():
    """In-memory Calendar API service."""
    return FakeCalendarService()
