"""
Scan orchestrator.

normalize -> whitelist short-circuit -> browse -> settle -> extract -> score
-> report side effect -> result dict.
"""

import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional

from qssage.app.heuristics import score_features
from qssage.app.instrumentation import ObservationContext
from qssage.app.navigation import NavigationTracker, SettleResult, wait_for_settle
from qssage.app.urls import hostname_of, is_ip_host, is_punycode_host, is_shortener, normalize_url
from qssage.app.whitelist import is_trusted_url
from qssage.config import ScanSettings, load_settings
from qssage.errors import NavigationFailed, ScanTimeout
from qssage.html_scanner import extract_dom_features
from qssage.models import PageFeatures, Risk, RiskAssessment

logger = logging.getLogger("scanner")

ReportSink = Callable[[str, Optional[str], RiskAssessment], None]


class ScanState(str, Enum):
    NORMALIZING = "NORMALIZING"
    WHITELIST_CHECK = "WHITELIST_CHECK"
    SHORT_CIRCUIT_SAFE = "SHORT_CIRCUIT_SAFE"
    NAVIGATING = "NAVIGATING"
    SETTLING = "SETTLING"
    EXTRACTING = "EXTRACTING"
    SCORING = "SCORING"
    SIDE_EFFECTING = "SIDE_EFFECTING"
    RESPONDING = "RESPONDING"
    FAILED = "FAILED"


def _default_session_factory(*args, **kwargs):
    # imported lazily so the scoring core does not need Playwright installed
    from qssage.browser import BrowserSession
    return BrowserSession(*args, **kwargs)


def is_error_status(status: Optional[int]) -> bool:
    """Main documents answered with 4xx or 5xx count as failed loads."""
    return status is not None and status >= 400


def url_features(original_url: str, final_url: str, redirects: int, settings: ScanSettings) -> PageFeatures:
    host = hostname_of(final_url)
    return PageFeatures(
        original_url=original_url,
        final_url=final_url,
        final_host=host,
        redirects=redirects,
        host_is_ip=is_ip_host(host),
        punycode_host=is_punycode_host(host),
        shortener=is_shortener(hostname_of(original_url), settings.shorteners) or is_shortener(host, settings.shorteners),
        https=final_url.lower().startswith("https://"),
    )


def navigation_failure_verdict(error: NavigationFailed, last_url: str, settings: ScanSettings) -> RiskAssessment:
    score = int(settings.weights["load_failed"])
    if error.blocked:
        return RiskAssessment(score=score, risk=Risk.DANGEROUS, reasons=("blocked by client",))
    if is_trusted_url(last_url, settings.whitelist, settings.whitelist_require_https):
        return RiskAssessment(score=0, risk=Risk.SAFE, reasons=("trusted domain, navigation blocked",))
    reason = "page unreachable (timeout)" if error.timed_out else "page unreachable"
    return RiskAssessment(score=score, risk=Risk.DANGEROUS, reasons=(reason,))


def _report(sink: Optional[ReportSink], url: str, location: Optional[str], assessment: RiskAssessment) -> bool:
    if sink is None or assessment.safe:
        return False
    try:
        sink(url, location, assessment)
        return True
    except Exception:
        logger.exception("Failed to queue report for %s", url)
        return False


def _result(raw_url: str, url: str, assessment: RiskAssessment, state: ScanState,
            features: Optional[PageFeatures] = None, chain=None, reported: bool = False) -> Dict[str, Any]:
    result = {"url": raw_url, "normalized_url": url}
    result.update(assessment.to_dict())
    result.update({
        "redirects": features.redirects if features else 0,
        "final_url": features.final_url if features else url,
        "chain": list(chain or [url]),
        "features": features.to_dict() if features else None,
        "state": state.value,
        "reported": reported,
    })
    return result


class ScanRun:
    """One pass through the scan state machine."""

    def __init__(self, settings: ScanSettings, session_factory=None,
                 report_sink: Optional[ReportSink] = None, clock: Callable[[], float] = time.monotonic):
        self.settings = settings
        self.session_factory = session_factory or _default_session_factory
        self.report_sink = report_sink
        self.clock = clock
        self.state = ScanState.NORMALIZING

    def _enter(self, state: ScanState) -> None:
        logger.debug("%s -> %s", self.state.value, state.value)
        self.state = state

    def run(self, raw_url: str, location: Optional[str] = None) -> Dict[str, Any]:
        settings = self.settings
        clock = self.clock
        deadline = clock() + settings.scan_budget

        url = normalize_url(raw_url)

        self._enter(ScanState.WHITELIST_CHECK)
        trusted = is_trusted_url(url, settings.whitelist, settings.whitelist_require_https)
        if trusted:
            logger.info("Whitelisted destination %s", hostname_of(url))
            self._enter(ScanState.SHORT_CIRCUIT_SAFE)
            assessment = RiskAssessment(score=0, risk=Risk.SAFE, reasons=("trusted domain",))
            return _result(raw_url, url, assessment, self.state)

        tracker = NavigationTracker(url, clock)
        observations = ObservationContext(eval_min_length=settings.eval_min_length)

        with self.session_factory(tracker, observations, settings.payload_threshold) as session:
            self._enter(ScanState.NAVIGATING)
            try:
                status = session.goto(url, settings.navigation_timeout)
            except NavigationFailed as e:
                logger.warning("Navigation to %s failed (blocked=%s): %s", url, e.blocked, e)
                assessment = navigation_failure_verdict(e, tracker.final_url, settings)
                self._enter(ScanState.SIDE_EFFECTING)
                reported = _report(self.report_sink, url, location, assessment)
                self._enter(ScanState.RESPONDING)
                return _result(raw_url, url, assessment, self.state, chain=tracker.chain, reported=reported)
            tracker.touch()

            self._enter(ScanState.SETTLING)
            settle: SettleResult = wait_for_settle(
                tracker, session.wait, clock,
                poll_interval=settings.poll_interval,
                quiet_window=settings.quiet_window,
                grace_period=settings.grace_period,
                ceiling=max(0.0, min(settings.settle_ceiling, deadline - clock())),
            )
            if clock() >= deadline:
                raise ScanTimeout(f"scan budget of {settings.scan_budget:.0f}s exhausted while settling")

            self._enter(ScanState.EXTRACTING)
            features = url_features(url, tracker.final_url, tracker.redirects, settings)
            extract_dom_features(session, features, settings.payload_threshold)
            features.dynamic_exec = observations.dynamic_exec
            features.decoded_payload = observations.decoded_payload
            try:
                features.load_failed = session.shows_error_page() or is_error_status(status)
            except Exception as e:
                logger.warning("feature load_failed unavailable, using default: %s", e)
            chain = tracker.chain

        if clock() >= deadline:
            raise ScanTimeout(f"scan budget of {settings.scan_budget:.0f}s exhausted while extracting")

        self._enter(ScanState.SCORING)
        whitelisted = is_trusted_url(features.final_url, settings.whitelist, settings.whitelist_require_https)
        assessment = score_features(features, whitelisted, settings.weights, settings.safe_max, settings.suspicious_max)
        logger.info("Scanned %s -> %s (score=%d, redirects=%d, settle=%s)",
                    url, assessment.risk.value, assessment.score, features.redirects, settle.state.value)

        self._enter(ScanState.SIDE_EFFECTING)
        reported = _report(self.report_sink, url, location, assessment)

        self._enter(ScanState.RESPONDING)
        return _result(raw_url, url, assessment, self.state, features, chain, reported)


def scan_url(raw_url: str, location: Optional[str] = None, settings: Optional[ScanSettings] = None,
             session_factory=None, report_sink: Optional[ReportSink] = None,
             clock: Callable[[], float] = time.monotonic) -> Dict[str, Any]:
    """Scan one URL and return a verdict dict.

    Raises InvalidURL when the input cannot be normalized and ScanTimeout
    when the overall budget runs out. Navigation failures are verdicts.
    """
    run = ScanRun(settings or load_settings(), session_factory, report_sink, clock)
    try:
        return run.run(raw_url, location)
    except Exception:
        logger.info("Scan of %r ended in %s from %s", raw_url, ScanState.FAILED.value, run.state.value)
        run.state = ScanState.FAILED
        raise
