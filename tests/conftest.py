"""Shared fixtures for request guard tests."""

import pytest

from requestguard.dispatcher import BackgroundDispatcher
from requestguard.request import GuardRequest


BROWSER_HEADERS = {
    'User-Agent': 'Mozilla/5.0 (X11; Linux x86_64) Firefox/120.0',
    'Accept': 'text/html,application/xhtml+xml',
}


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def dispatcher():
    dispatcher = BackgroundDispatcher(max_attempts=2, retry_delay=0)
    yield dispatcher
    dispatcher.close()


@pytest.fixture
def browser_request():
    """Factory for benign browser requests from a given identity."""
    def factory(identity='5.6.7.8', url='/search?q=weather', body=None, headers=None, **kwargs):
        request_headers = dict(BROWSER_HEADERS)
        request_headers.update(headers or {})
        request_headers.setdefault('X-Forwarded-For', identity)
        return GuardRequest(url=url, body=body, headers=request_headers, **kwargs)
    return factory
