"""Runtime hooks injected into the page and the decoded-payload sub-scorer.

The payload rules are declared once here. `payload_score` applies them in
Python (used by the static markup scan) and `render_hook_script` ships the
same regex sources to the browser, where the wrapped `atob` scores every
decoded string before handing it back to the page.

Known limitation: replacing `window.eval` turns every direct `eval` on the
page into an indirect one, so code that evals against its local scope sees
the global scope instead and may behave differently while instrumented.
"""

import json
import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import List, Tuple

logger = logging.getLogger("instrumentation")

BINDING_NAME = "__qssageObserve"

# vocabulary groups
EXEC = r"\beval\s*\(|new\s+Function\s*\(|set(Timeout|Interval)\s*\(\s*['\"]"
LOCATION = r"\blocation\s*\.\s*(href|replace|assign)|(window|document|top|self)\s*\.\s*location|\blocation\s*="
DOC_WRITE = r"document\s*\.\s*write(ln)?\s*\(|\.(inner|outer)HTML\s*=|document\s*\.\s*open\s*\("
COOKIE = r"document\s*\.\s*cookie"
FETCH = r"\bfetch\s*\(|XMLHttpRequest|sendBeacon|\$\s*\.\s*(ajax|post)\s*\("
IFRAME = r"<iframe|createElement\s*\(\s*['\"]iframe"
HIDDEN = r"display\s*:\s*none|visibility\s*:\s*hidden|opacity\s*:\s*0(\.0+)?\b|(width|height)\s*[=:]\s*['\"]?0(px)?\b"

COMBO_RULES: Tuple[Tuple[str, Tuple[str, ...], int], ...] = (
    ("exec_with_redirect", (EXEC, LOCATION), 15),
    ("exec_with_document_overwrite", (EXEC, DOC_WRITE), 15),
    ("cookie_exfiltration", (COOKIE, FETCH), 12),
    ("hidden_iframe_injection", (IFRAME, HIDDEN), 10),
)

PATTERN_RULES: Tuple[Tuple[str, str, int], ...] = (
    ("escape_sequences", r"\\x[0-9a-f]{2}|\\u[0-9a-f]{4}", 4),
    ("string_concatenation", r"(['\"][^'\"]{0,3}['\"]\s*\+\s*){3,}", 3),
    ("nested_decode", r"(atob|unescape|decodeURIComponent|escape|btoa)\s*\(\s*(atob|unescape|decodeURIComponent|escape|btoa)\s*\(", 8),
    ("obfuscated_identifier", r"\b_0x[0-9a-f]{3,}\b|\b[a-z_]{1,2}\d{2,}\b", 3),
    ("bracket_property_access", r"\[\s*['\"](eval|location|cookie|write|atob|href|innerHTML|constructor|fromCharCode)['\"]\s*\]", 5),
)

RISK_KEYWORDS: Tuple[str, ...] = (
    "eval", "location", "document.write", "<script", "iframe", "fetch",
    "xmlhttprequest", "localstorage", "sessionstorage", "cookie", "atob",
    "unescape", "window.open", "innerhtml",
)
KEYWORD_WEIGHT = 2
LENGTH_RULES: Tuple[Tuple[int, int], ...] = ((100, 2), (300, 4))

VENDOR = r"google-analytics|googletagmanager|gtag\s*\(|doubleclick|connect\.facebook\.net|fbq\s*\(|hotjar|segment\.(io|com)|adsbygoogle|mixpanel|amplitude|naver\.(net|com)/wcslog|kakao\.com/pixel"
VENDOR_DISCOUNT = 6

PAYLOAD_THRESHOLD = 8
EVAL_MIN_LENGTH = 50
MAX_EVENTS = 100

_COMBOS = [(name, [re.compile(p, re.I) for p in parts], w) for name, parts, w in COMBO_RULES]
_PATTERNS = [(name, re.compile(p, re.I), w) for name, p, w in PATTERN_RULES]
_VENDOR = re.compile(VENDOR, re.I)


def payload_score(text: str) -> Tuple[int, List[str]]:
    """Return the suspicion tally of a decoded string and the rules that fired."""
    score = 0
    hits: List[str] = []
    for name, parts, weight in _COMBOS:
        if all(p.search(text) for p in parts):
            score += weight
            hits.append(name)
    lower = text.lower()
    for keyword in RISK_KEYWORDS:
        if keyword in lower:
            score += KEYWORD_WEIGHT
            hits.append(f"keyword:{keyword}")
    for name, pattern, weight in _PATTERNS:
        if pattern.search(text):
            score += weight
            hits.append(name)
    for length, weight in LENGTH_RULES:
        if len(text) > length:
            score += weight
            hits.append(f"length>{length}")
    if _VENDOR.search(text):
        score = max(0, score - VENDOR_DISCOUNT)
        hits.append("vendor_discount")
    return score, hits


def payload_flagged(text, threshold: int = PAYLOAD_THRESHOLD) -> bool:
    """Never raises: anything that cannot be scored counts as not flagged."""
    try:
        score, _ = payload_score(str(text))
    except Exception:
        logger.debug("payload scoring failed", exc_info=True)
        return False
    return score >= threshold


@dataclass
class ObservationContext:
    """Flags raised by the in-page hooks during one browsing session."""

    eval_min_length: int = EVAL_MIN_LENGTH
    dynamic_exec: bool = False
    decoded_payload: bool = False
    events: List[Tuple[str, object]] = field(default_factory=list)
    counts: Counter = field(default_factory=Counter)
    max_events: int = MAX_EVENTS

    def observe(self, kind: str, detail=None) -> None:
        # events is capped, counts keeps the totals
        self.counts[kind] += 1
        if len(self.events) < self.max_events:
            self.events.append((kind, detail))
        if kind == "eval":
            self.dynamic_exec = True
        elif kind == "atob":
            self.decoded_payload = True
        else:
            logger.debug("ignoring unknown observation %r", kind)


_HOOK_TEMPLATE = r"""
(() => {
  if (window.__qssageHooked) return;
  try { Object.defineProperty(window, '__qssageHooked', { value: true }); } catch (e) { return; }
  const cfg = __CONFIG__;
  const report = (kind, detail) => {
    try {
      const sink = window[cfg.binding];
      if (typeof sink === 'function') sink(kind, detail);
    } catch (e) {}
  };
  const rx = (src) => new RegExp(src, 'i');
  const combos = cfg.combos.map((r) => ({ parts: r.patterns.map(rx), weight: r.weight }));
  const patterns = cfg.patterns.map((r) => ({ re: rx(r.pattern), weight: r.weight }));
  const vendor = rx(cfg.vendor);
  const tally = (text) => {
    let score = 0;
    for (const r of combos) if (r.parts.every((p) => p.test(text))) score += r.weight;
    const lower = text.toLowerCase();
    for (const kw of cfg.keywords) if (lower.indexOf(kw) !== -1) score += cfg.keywordWeight;
    for (const r of patterns) if (r.re.test(text)) score += r.weight;
    for (const [len, w] of cfg.lengths) if (text.length > len) score += w;
    if (vendor.test(text)) score = Math.max(0, score - cfg.vendorDiscount);
    return score;
  };

  const origEval = window.eval;
  window.eval = function (code) {
    try {
      if (typeof code === 'string' && code.length >= cfg.evalMinLength) report('eval', code.length);
    } catch (e) {}
    return origEval(code);
  };

  const origAtob = window.atob;
  window.atob = function () {
    const decoded = origAtob.apply(window, arguments);
    try {
      const score = tally(String(decoded));
      if (score >= cfg.threshold) report('atob', score);
    } catch (e) {}
    return decoded;
  };
})();
"""


def render_hook_script(eval_min_length: int = EVAL_MIN_LENGTH,
                       threshold: int = PAYLOAD_THRESHOLD) -> str:
    config = {
        "binding": BINDING_NAME,
        "evalMinLength": eval_min_length,
        "threshold": threshold,
        "combos": [{"name": n, "patterns": list(p), "weight": w} for n, p, w in COMBO_RULES],
        "patterns": [{"name": n, "pattern": p, "weight": w} for n, p, w in PATTERN_RULES],
        "keywords": list(RISK_KEYWORDS),
        "keywordWeight": KEYWORD_WEIGHT,
        "lengths": [list(rule) for rule in LENGTH_RULES],
        "vendor": VENDOR,
        "vendorDiscount": VENDOR_DISCOUNT,
    }
    return _HOOK_TEMPLATE.replace("__CONFIG__", json.dumps(config))
