"""Runtime configuration for QSSAGE.

Every tunable of the scan pipeline is read from the environment when
`load_settings()` is called, so a deployment can retune timeouts, weights,
thresholds and the whitelist without code changes.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Optional

logger = logging.getLogger("config")

LOG_LEVEL = os.getenv("QSSAGE_LOG_LEVEL", "INFO").upper()

# Reference weight table (0..n points per signal)
DEFAULT_WEIGHTS: Dict[str, float] = {
    "dynamic_exec": 20,
    "decoded_payload": 30,
    "static_content": 15,
    "no_https": 4,
    "single_redirect": 2,
    "redirect_chain_risky": 6,
    "redirect_chain": 3,
    "hidden_iframe": 10,
    "redirect_chain_hidden_iframe": 40,
    "single_redirect_hidden_iframe": 20,
    "many_scripts": 4,
    "many_images": 5,
    "ip_host": 35,
    "punycode_host": 25,
    "shortener": 8,
    "external_form": 12,
    "external_form_factor": 0.5,
    "external_form_password": 30,
    "password_field": 8,
    "load_failed": 30,
    "whitelist_discount": 50,
}

DEFAULT_WHITELIST: FrozenSet[str] = frozenset({
    "google.com", "naver.com", "daum.net", "bing.com", "yahoo.com",
    "kakao.com", "facebook.com", "instagram.com", "twitter.com", "x.com",
    "youtube.com", "linkedin.com", "github.com", "stackoverflow.com",
    "amazon.com", "microsoft.com", "apple.com", "netflix.com", "spotify.com",
    "coupang.com", "11st.co.kr", "gmarket.co.kr", "auction.co.kr", "tistory.com",
})

DEFAULT_SHORTENERS: FrozenSet[str] = frozenset({
    "bit.ly", "tinyurl.com", "goo.gl", "t.co", "ow.ly", "is.gd", "buff.ly",
    "cutt.ly", "rebrand.ly", "shorturl.at", "t.ly", "rb.gy", "tiny.cc",
    "me2.kr", "han.gl", "vo.la", "url.kr", "qrco.de",
})


def _float_env(name: str, default: float) -> float:
    try:
        value = os.getenv(name)
        return float(value) if value is not None else default
    except ValueError:
        return default


def _bool_env(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _set_env(name: str) -> Optional[FrozenSet[str]]:
    value = os.getenv(name)
    if not value:
        return None
    return frozenset(h.strip().lower().lstrip(".") for h in value.split(",") if h.strip())


def _weights_env(name: str) -> Dict[str, float]:
    weights = dict(DEFAULT_WEIGHTS)
    raw = os.getenv(name)
    if not raw:
        return weights
    try:
        overrides = json.loads(raw)
    except ValueError:
        logger.warning("Ignoring %s: not valid JSON", name)
        return weights
    if not isinstance(overrides, dict):
        logger.warning("Ignoring %s: expected a JSON object", name)
        return weights
    for key, value in overrides.items():
        if key not in weights:
            logger.warning("Ignoring unknown weight %r in %s", key, name)
            continue
        try:
            weights[key] = float(value)
        except (TypeError, ValueError):
            logger.warning("Ignoring non-numeric weight %r=%r", key, value)
    return weights


@dataclass
class ScanSettings:
    """Timing, scoring and whitelist parameters of one scan."""

    navigation_timeout: float = 10.0
    poll_interval: float = 0.5
    quiet_window: float = 2.0
    grace_period: float = 1.0
    settle_ceiling: float = 15.0
    scan_budget: float = 60.0
    eval_min_length: int = 50
    payload_threshold: int = 8
    safe_max: float = 15
    suspicious_max: float = 35
    whitelist_require_https: bool = False
    weights: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    whitelist: FrozenSet[str] = DEFAULT_WHITELIST
    shorteners: FrozenSet[str] = DEFAULT_SHORTENERS

    def __post_init__(self):
        if self.safe_max >= self.suspicious_max:
            raise ValueError("safe_max must be lower than suspicious_max")

    @classmethod
    def from_env(cls) -> "ScanSettings":
        whitelist = _set_env("QSSAGE_WHITELIST") or DEFAULT_WHITELIST
        extra = _set_env("QSSAGE_WHITELIST_EXTRA")
        if extra:
            whitelist = whitelist | extra
        safe_max = _float_env("QSSAGE_SAFE_MAX", cls.safe_max)
        suspicious_max = _float_env("QSSAGE_SUSPICIOUS_MAX", cls.suspicious_max)
        if safe_max >= suspicious_max:
            logger.warning("Thresholds %s/%s are not increasing, using defaults", safe_max, suspicious_max)
            safe_max, suspicious_max = cls.safe_max, cls.suspicious_max
        return cls(
            navigation_timeout=_float_env("QSSAGE_NAV_TIMEOUT", cls.navigation_timeout),
            poll_interval=_float_env("QSSAGE_POLL_INTERVAL", cls.poll_interval),
            quiet_window=_float_env("QSSAGE_QUIET_WINDOW", cls.quiet_window),
            grace_period=_float_env("QSSAGE_GRACE_PERIOD", cls.grace_period),
            settle_ceiling=_float_env("QSSAGE_SETTLE_CEILING", cls.settle_ceiling),
            scan_budget=_float_env("QSSAGE_SCAN_BUDGET", cls.scan_budget),
            safe_max=safe_max,
            suspicious_max=suspicious_max,
            whitelist_require_https=_bool_env("QSSAGE_WHITELIST_REQUIRE_HTTPS", cls.whitelist_require_https),
            weights=_weights_env("QSSAGE_WEIGHTS"),
            whitelist=whitelist,
            shorteners=_set_env("QSSAGE_SHORTENERS") or DEFAULT_SHORTENERS,
        )


def load_settings() -> ScanSettings:
    return ScanSettings.from_env()


def setup_logging(level: Optional[str] = None) -> None:
    effective = (level or LOG_LEVEL).upper()
    logging.basicConfig(
        level=getattr(logging, effective, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
