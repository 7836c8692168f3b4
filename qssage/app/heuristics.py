"""Heuristic risk scorer.

score_features() turns the observations of one scan into a RiskAssessment:
- score: non-negative int
- risk: SAFE | SUSPICIOUS | DANGEROUS
- reasons: findings in the order they were evaluated

Weights live in qssage.config.DEFAULT_WEIGHTS and may be overridden with
QSSAGE_WEIGHTS. Signals only ever add points; the single subtraction is the
whitelist discount, floored at zero.
"""

from typing import Dict, List, Mapping, Optional

from qssage.config import DEFAULT_WEIGHTS
from qssage.models import PageFeatures, Risk, RiskAssessment

SAFE_MAX = 15
SUSPICIOUS_MAX = 35

MANY_SCRIPTS = 10
MANY_IMAGES = 5


def categorize(score: float, safe_max: float = SAFE_MAX, suspicious_max: float = SUSPICIOUS_MAX) -> Risk:
    if score <= safe_max:
        return Risk.SAFE
    if score <= suspicious_max:
        return Risk.SUSPICIOUS
    return Risk.DANGEROUS


def score_features(features: PageFeatures, whitelisted: bool = False,
                   weights: Optional[Mapping[str, float]] = None,
                   safe_max: float = SAFE_MAX, suspicious_max: float = SUSPICIOUS_MAX) -> RiskAssessment:
    w: Dict[str, float] = dict(DEFAULT_WEIGHTS)
    if weights:
        w.update(weights)

    score = 0.0
    reasons: List[str] = []

    def add(key: str, reason: str, amount: Optional[float] = None) -> None:
        nonlocal score
        score += w[key] if amount is None else amount
        reasons.append(reason)

    # dynamic / static code signals
    if features.dynamic_exec:
        add("dynamic_exec", "long string executed with eval at runtime")
    if features.decoded_payload:
        add("decoded_payload", "base64-decoded payload looks like malicious script")
    elif features.static_suspicious:
        add("static_content", "page source contains encoded or eval'd script")

    if features.load_failed:
        add("load_failed", "page failed to load or showed a browser error page")

    # transport
    if not features.https:
        add("no_https", "connection is not HTTPS")

    # redirect chain
    external_form = bool(features.external_forms)
    if features.redirects == 1:
        add("single_redirect", "redirected once")
    elif features.redirects > 1:
        if not features.https or external_form or features.has_password_input:
            add("redirect_chain_risky", f"redirect chain of {features.redirects} hops toward a risky page")
        else:
            add("redirect_chain", f"redirect chain of {features.redirects} hops")

    # hidden frames, escalated when combined with redirects
    if features.hidden_iframes > 0:
        add("hidden_iframe", f"{features.hidden_iframes} hidden iframe(s)")
        if features.redirects >= 2:
            add("redirect_chain_hidden_iframe", "hidden iframe reached through a redirect chain")
        elif features.redirects == 1:
            add("single_redirect_hidden_iframe", "hidden iframe reached through a redirect")

    if features.external_scripts > MANY_SCRIPTS:
        add("many_scripts", f"{features.external_scripts} external or suspicious scripts")
    if features.external_images > MANY_IMAGES:
        add("many_images", f"{features.external_images} images loaded from other hosts")

    # hostname shape
    if features.host_is_ip:
        add("ip_host", "host is a raw IP address")
    if features.punycode_host:
        add("punycode_host", "host uses punycode (possible look-alike domain)")
    if features.shortener:
        add("shortener", "URL uses a link shortener")

    # credential collection
    if external_form:
        hosts = ", ".join(sorted(set(features.external_forms)))
        add("external_form", f"form submits to another host: {hosts}",
            w["external_form"] * w["external_form_factor"])
    if features.has_password_input:
        add("password_field", "page asks for a password")
        if external_form:
            add("external_form_password", "password form posts to another host")

    if whitelisted and score > 0:
        discount = min(score, w["whitelist_discount"])
        score -= discount
        reasons.append(f"trusted domain (-{int(round(discount))})")
    elif whitelisted:
        reasons.append("trusted domain")

    final = max(0, int(round(score)))
    return RiskAssessment(score=final, risk=categorize(final, safe_max, suspicious_max), reasons=tuple(reasons))
