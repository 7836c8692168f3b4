# html_scanner.py
"""
DOM feature extraction for a settled page.

Primary function:
    extract_dom_features(session, features) -> PageFeatures

Every field is read on its own; a field that fails is logged and left at its
empty value so one bad read never aborts the scan.
"""

import base64
import binascii
import logging
import re
from itertools import islice
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from qssage.app.instrumentation import PAYLOAD_THRESHOLD, payload_flagged
from qssage.models import PageFeatures

logger = logging.getLogger("html_scanner")

MAX_BASE64_BLOBS = 50

SUSPICIOUS_INLINE = re.compile(
    r"\beval\s*\(|\batob\s*\(|\bunescape\s*\(|String\s*\.\s*fromCharCode|document\s*\.\s*write\s*\("
    r"|(window|document|top)\s*\.\s*location\s*(=|\.\s*href\s*=|\.\s*replace\s*\()",
    re.I,
)
EVAL_OF_DECODE = re.compile(r"\beval\s*\(\s*(atob|unescape|decodeURIComponent|String\s*\.\s*fromCharCode)\s*\(", re.I)
BASE64_LITERAL = re.compile(r"['\"]([A-Za-z0-9+/]{40,}={0,2})['\"]")
HIDDEN_STYLE = re.compile(r"display\s*:\s*none|visibility\s*:\s*hidden|opacity\s*:\s*0(\.0+)?\s*(;|$)", re.I)

HIDDEN_IFRAMES_JS = """
() => Array.from(document.querySelectorAll('iframe')).filter((f) => {
  const s = window.getComputedStyle(f);
  const r = f.getBoundingClientRect();
  return s.display === 'none' || s.visibility === 'hidden' || parseFloat(s.opacity) === 0
    || r.width === 0 || r.height === 0;
}).length
"""


def _host(url: str) -> str:
    try:
        host = (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""
    return host[4:] if host.startswith("www.") else host


def _is_cross_host(ref: str, base_url: str) -> bool:
    full = urljoin(base_url, ref)
    parsed = urlparse(full)
    if parsed.scheme not in ("http", "https"):
        return False
    host = _host(full)
    return bool(host) and host != _host(base_url)


def analyze_forms(soup: BeautifulSoup, base_url: str) -> Dict[str, Any]:
    forms = soup.find_all("form")
    results: List[Dict[str, Any]] = []
    external_forms: List[str] = []
    for form in forms:
        action = form.get("action") or ""
        method = (form.get("method") or "GET").upper()
        action_full = urljoin(base_url, action)
        types = [(inp.get("type") or "").lower() for inp in form.find_all("input")]
        external = _is_cross_host(action, base_url)
        if external:
            external_forms.append(action_full)
        results.append({
            "action": action_full,
            "method": method,
            "has_password": "password" in types,
            "external": external,
        })
    return {"form_count": len(results), "forms": results, "external_forms": external_forms}


def has_password_input(soup: BeautifulSoup) -> bool:
    return soup.find("input", attrs={"type": re.compile(r"^\s*password\s*$", re.I)}) is not None


def count_hidden_iframes(soup: BeautifulSoup) -> int:
    """Markup-only estimate, used when the page cannot be queried."""
    hidden = 0
    for frame in soup.find_all("iframe"):
        width = (frame.get("width") or "").strip().lower()
        height = (frame.get("height") or "").strip().lower()
        style = frame.get("style") or ""
        if (frame.has_attr("hidden") or width in ("0", "0px") or height in ("0", "0px")
                or HIDDEN_STYLE.search(style)):
            hidden += 1
    return hidden


def count_suspicious_scripts(soup: BeautifulSoup, base_url: str) -> int:
    count = 0
    for script in soup.find_all("script"):
        src = script.get("src")
        if src:
            if _is_cross_host(src, base_url):
                count += 1
        elif SUSPICIOUS_INLINE.search(script.string or script.get_text() or ""):
            count += 1
    return count


def count_external_images(soup: BeautifulSoup, base_url: str) -> int:
    return sum(1 for img in soup.find_all("img") if img.get("src") and _is_cross_host(img["src"], base_url))


def static_scan(source: str, threshold: int = PAYLOAD_THRESHOLD) -> bool:
    """Look for decode-and-execute payloads that may never have run."""
    if not source:
        return False
    if EVAL_OF_DECODE.search(source):
        return True
    for match in islice(BASE64_LITERAL.finditer(source), MAX_BASE64_BLOBS):
        blob = match.group(1)
        try:
            decoded = base64.b64decode(blob + "=" * (-len(blob) % 4), validate=True).decode("utf-8")
        except (binascii.Error, ValueError):
            continue
        if payload_flagged(decoded, threshold):
            return True
    return False


def _read(name: str, fn: Callable[[], Any], default: Any) -> Any:
    try:
        return fn()
    except Exception as e:
        logger.warning("feature %s unavailable, using default: %s", name, e)
        return default


def extract_dom_features(session, features: PageFeatures,
                         payload_threshold: int = PAYLOAD_THRESHOLD) -> PageFeatures:
    """Fill the DOM-derived fields of `features` from a settled session.

    `session` needs `content()`, `evaluate(expression)` and
    `document_source()`; the latter returns the raw body of the last
    main-frame document or None.
    """
    base_url = features.final_url or features.original_url
    html = _read("content", session.content, "") or ""
    soup: Optional[BeautifulSoup] = _read("dom", lambda: BeautifulSoup(html, "html.parser"), None)

    if soup is not None:
        forms = _read("forms", lambda: analyze_forms(soup, base_url), {"external_forms": []})
        features.external_forms = list(forms["external_forms"])
        features.has_password_input = _read("password", lambda: has_password_input(soup), False)
        features.external_scripts = _read("scripts", lambda: count_suspicious_scripts(soup, base_url), 0)
        features.external_images = _read("images", lambda: count_external_images(soup, base_url), 0)

    hidden = _read("iframes", lambda: session.evaluate(HIDDEN_IFRAMES_JS), None)
    if isinstance(hidden, (int, float)):
        features.hidden_iframes = int(hidden)
    elif soup is not None:
        features.hidden_iframes = _read("iframes_markup", lambda: count_hidden_iframes(soup), 0)

    raw = _read("document_source", session.document_source, None) or ""
    features.static_suspicious = _read(
        "static_scan", lambda: static_scan(raw, payload_threshold) or static_scan(html, payload_threshold), False
    )
    return features
