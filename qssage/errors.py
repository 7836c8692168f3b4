"""Exceptions raised by the scan pipeline.

Only InvalidURL and ScanTimeout are meant to reach the HTTP layer; navigation
failures are turned into verdicts by the scanner.
"""

from typing import Optional


class ScanError(Exception):
    """Base class for scan pipeline errors."""


class InvalidURL(ScanError):
    def __init__(self, raw: str, detail: Optional[str] = None):
        self.raw = raw
        self.detail = detail or "invalid url"
        super().__init__(f"{self.detail}: {raw!r}")


class NavigationFailed(ScanError):
    """The single navigation attempt of a scan failed.

    `blocked` is set when the browser reported a client-side block
    (ERR_BLOCKED_BY_CLIENT and friends) rather than a network failure.
    """

    def __init__(self, url: str, message: str, blocked: bool = False, timed_out: bool = False):
        self.url = url
        self.blocked = blocked
        self.timed_out = timed_out
        super().__init__(message)


class ScanTimeout(ScanError):
    """The overall per-request budget was exhausted before a verdict."""


class NotificationError(Exception):
    """Outbound e-mail / webhook delivery failed or is not configured."""
