"""Redirect-chain tracking and the settle protocol.

The tracker only records; `wait_for_settle` drives the waiting with a single
injected `sleep` and `clock`. With Playwright the sleep must be
`page.wait_for_timeout` so navigation events are dispatched while waiting.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

logger = logging.getLogger("navigation")

Clock = Callable[[], float]
Sleep = Callable[[float], None]


class NavigationTracker:
    """Append-only chain of distinct main-frame URLs."""

    def __init__(self, initial_url: str, clock: Clock = time.monotonic):
        self._clock = clock
        self._chain: List[str] = [initial_url]
        self.last_change = clock()

    def record(self, url: str) -> bool:
        if not url or url == self._chain[-1]:
            return False
        self._chain.append(url)
        self.last_change = self._clock()
        logger.debug("navigation #%d -> %s", len(self._chain) - 1, url)
        return True

    def touch(self) -> None:
        """Restart the quiet window without recording a navigation."""
        self.last_change = self._clock()

    @property
    def chain(self) -> List[str]:
        return list(self._chain)

    @property
    def redirects(self) -> int:
        return len(self._chain) - 1

    @property
    def final_url(self) -> str:
        return self._chain[-1]

    def __len__(self) -> int:
        return len(self._chain)


class SettleState(str, Enum):
    WAITING = "WAITING"
    GRACE = "GRACE"
    SETTLED = "SETTLED"
    CEILING = "CEILING"


@dataclass
class SettleResult:
    state: SettleState
    elapsed: float
    quiet_at: Optional[float] = None
    retried: bool = False

    @property
    def settled(self) -> bool:
        return self.state is SettleState.SETTLED


def wait_for_settle(tracker: NavigationTracker, sleep: Sleep, clock: Clock = time.monotonic,
                    poll_interval: float = 0.5, quiet_window: float = 2.0,
                    grace_period: float = 1.0, ceiling: float = 15.0) -> SettleResult:
    """Block until the redirect chain has been quiet for `quiet_window`.

    After the quiet window a grace period is waited once more; if the chain
    grew meanwhile the wait restarts, at most once. `ceiling` bounds the
    whole call.
    """
    start = clock()
    state = SettleState.WAITING
    retried = False
    quiet_at = None
    seen = len(tracker)

    while True:
        now = clock()
        if now - start >= ceiling:
            logger.info("settle ceiling reached after %.1fs (%d redirects)", now - start, tracker.redirects)
            return SettleResult(SettleState.CEILING, now - start, quiet_at, retried)

        if state is SettleState.WAITING:
            if now - tracker.last_change >= quiet_window:
                quiet_at = now
                seen = len(tracker)
                state = SettleState.GRACE
            else:
                sleep(min(poll_interval, max(0.0, ceiling - (now - start))))
            continue

        # GRACE
        sleep(min(grace_period, max(0.0, ceiling - (now - start))))
        if len(tracker) > seen and not retried:
            logger.debug("late redirect during grace period, waiting again")
            retried = True
            state = SettleState.WAITING
            continue
        now = clock()
        return SettleResult(SettleState.SETTLED, now - start, quiet_at, retried)
