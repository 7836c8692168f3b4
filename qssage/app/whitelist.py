"""Allow-list of destinations that skip (or are discounted in) scoring.

Policy: membership is decided on the hostname alone. Setting
QSSAGE_WHITELIST_REQUIRE_HTTPS additionally requires an https scheme.
"""

from typing import Iterable, Optional

from qssage.app.urls import host_matches, hostname_of
from qssage.config import DEFAULT_WHITELIST


def is_trusted_host(host: str, protocol: Optional[str] = None,
                    whitelist: Iterable[str] = DEFAULT_WHITELIST,
                    require_https: bool = False) -> bool:
    if require_https and (protocol or "").lower().rstrip(":") != "https":
        return False
    return host_matches(host, whitelist)


def is_trusted_url(url: str, whitelist: Iterable[str] = DEFAULT_WHITELIST,
                   require_https: bool = False) -> bool:
    protocol = url.split(":", 1)[0] if ":" in url else None
    return is_trusted_host(hostname_of(url), protocol, whitelist, require_https)
