import os
import tempfile

import pytest

# keep the import-time database of qssage.api out of the working tree
os.environ.setdefault("QSSAGE_DB", os.path.join(tempfile.mkdtemp(prefix="qssage-"), "test.db"))

from qssage.config import ScanSettings  # noqa: E402
from qssage.errors import NavigationFailed  # noqa: E402


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSession:
    """Stands in for BrowserSession: scripted navigations on a fake clock."""

    def __init__(self, tracker, observations, payload_threshold=8, *, clock, html="<html></html>",
                 goto_redirects=(), timed_redirects=(), nav_error=None, hidden_iframes=0,
                 source=None, observe=(), error_page=False, goto_exception=None, status=200):
        self.tracker = tracker
        self.observations = observations
        self.clock = clock
        self.html = html
        self.goto_redirects = list(goto_redirects)
        self.timed = sorted(timed_redirects)
        self.nav_error = nav_error
        self.hidden_iframes = hidden_iframes
        self.source = source
        self.observe = list(observe)
        self.error_page = error_page
        self.goto_exception = goto_exception
        self.status = status
        self.entered = False
        self.closed = False
        self.waited = 0.0
        self._start = None

    def __enter__(self):
        self.entered = True
        return self

    def __exit__(self, exc_type, exc, tb):
        self.closed = True

    def _fire_due(self):
        while self.timed and self._start + self.timed[0][0] <= self.clock():
            _, url = self.timed.pop(0)
            self.tracker.record(url)

    def goto(self, url, timeout):
        if self.goto_exception is not None:
            raise self.goto_exception
        if self.nav_error is not None:
            raise self.nav_error
        for hop in self.goto_redirects:
            self.tracker.record(hop)
        for kind, detail in self.observe:
            self.observations.observe(kind, detail)
        self._start = self.clock()
        return self.status

    def wait(self, seconds):
        self.waited += seconds
        self.clock.advance(seconds)
        self._fire_due()

    def content(self):
        if isinstance(self.html, Exception):
            raise self.html
        return self.html

    def evaluate(self, expression):
        if isinstance(self.hidden_iframes, Exception):
            raise self.hidden_iframes
        return self.hidden_iframes

    def document_source(self):
        return self.source

    def shows_error_page(self):
        return self.error_page


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return ScanSettings()


@pytest.fixture
def session_factory(clock):
    """Returns make(**script) -> factory; created sessions are kept in factory.sessions."""

    def make(**script):
        sessions = []

        def factory(tracker, observations, payload_threshold=8):
            session = FakeSession(tracker, observations, payload_threshold, clock=clock, **script)
            sessions.append(session)
            return session

        factory.sessions = sessions
        return factory

    return make


@pytest.fixture
def blocked_error():
    return NavigationFailed("http://evil.test/", "net::ERR_BLOCKED_BY_CLIENT at http://evil.test/", blocked=True)
