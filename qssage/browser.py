"""Headless Chromium session used by one scan.

BrowserSession wraps Playwright's sync API behind the handful of calls the
scanner needs. It is a context manager: the browser and the Playwright
driver are closed on every exit path.
"""

import logging
from typing import Any, Optional

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeout
from playwright.sync_api import sync_playwright

from qssage.app.instrumentation import BINDING_NAME, ObservationContext, render_hook_script
from qssage.app.navigation import NavigationTracker
from qssage.errors import NavigationFailed

logger = logging.getLogger("browser")

USER_AGENT = (
    "Mozilla/5.0 (Linux; Android 14) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0 Mobile Safari/537.36 QSSAGE/1.0"
)
LAUNCH_ARGS = ["--no-sandbox", "--disable-setuid-sandbox"]

BLOCK_MARKERS = ("ERR_BLOCKED_BY_CLIENT", "ERR_BLOCKED_BY_ADMINISTRATOR", "ERR_BLOCKED_BY_RESPONSE")
ERROR_PAGE_PREFIXES = ("chrome-error://", "about:neterror")


def is_block_error(message: str) -> bool:
    return any(marker in (message or "") for marker in BLOCK_MARKERS)


class BrowserSession:
    def __init__(self, tracker: NavigationTracker, observations: ObservationContext,
                 payload_threshold: int = 8, headless: bool = True):
        self.tracker = tracker
        self.observations = observations
        self.payload_threshold = payload_threshold
        self.headless = headless
        self.response_status: Optional[int] = None
        self._playwright = None
        self._browser = None
        self._page = None
        self._document = None

    def __enter__(self) -> "BrowserSession":
        try:
            self._open()
        except BaseException:
            self.close()
            raise
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _open(self) -> None:
        self._playwright = sync_playwright().start()
        self._browser = self._playwright.chromium.launch(headless=self.headless, args=LAUNCH_ARGS)
        context = self._browser.new_context(user_agent=USER_AGENT, ignore_https_errors=True)
        context.expose_function(BINDING_NAME, self._on_observation)
        context.add_init_script(render_hook_script(self.observations.eval_min_length, self.payload_threshold))
        page = context.new_page()
        page.on("framenavigated", self._on_frame_navigated)
        page.on("response", self._on_response)
        self._page = page

    def close(self) -> None:
        if self._browser is not None:
            try:
                self._browser.close()
            except PlaywrightError as e:
                logger.warning("browser close failed: %s", e)
            self._browser = None
        if self._playwright is not None:
            try:
                self._playwright.stop()
            except PlaywrightError as e:
                logger.warning("playwright stop failed: %s", e)
            self._playwright = None
        self._page = None

    # event handlers
    def _on_observation(self, kind: str, detail: Any = None) -> None:
        self.observations.observe(kind, detail)

    def _on_frame_navigated(self, frame) -> None:
        if self._page is None or frame != self._page.main_frame:
            return
        if frame.url == "about:blank" or frame.url.startswith(ERROR_PAGE_PREFIXES):
            return
        self.tracker.record(frame.url)

    def _on_response(self, response) -> None:
        if self._page is None:
            return
        try:
            request = response.request
            if request.is_navigation_request() and request.frame == self._page.main_frame:
                self._document = response
        except PlaywrightError:
            logger.debug("response bookkeeping failed", exc_info=True)

    # operations used by the scanner
    def goto(self, url: str, timeout: float) -> Optional[int]:
        try:
            response = self._page.goto(url, wait_until="domcontentloaded", timeout=timeout * 1000)
        except PlaywrightTimeout as e:
            raise NavigationFailed(url, str(e), timed_out=True)
        except PlaywrightError as e:
            raise NavigationFailed(url, str(e), blocked=is_block_error(str(e)))
        self.response_status = response.status if response is not None else None
        return self.response_status

    def wait(self, seconds: float) -> None:
        self._page.wait_for_timeout(seconds * 1000)

    @property
    def url(self) -> str:
        return self._page.url if self._page is not None else ""

    def shows_error_page(self) -> bool:
        return self.url.startswith(ERROR_PAGE_PREFIXES)

    def content(self) -> str:
        return self._page.content()

    def evaluate(self, expression: str) -> Any:
        return self._page.evaluate(expression)

    def document_source(self) -> Optional[str]:
        if self._document is None:
            return None
        return self._document.text()
