"""URL normalization and host-shape helpers."""

import ipaddress
import re
from typing import Iterable, Optional
from urllib.parse import quote, urlsplit, urlunsplit

from qssage.errors import InvalidURL

ALLOWED_SCHEMES = ("http", "https")
_EXPLICIT_SCHEME = re.compile(r"^([a-zA-Z][a-zA-Z0-9+.-]*)://")
_LABEL = re.compile(r"^[a-z0-9_]([a-z0-9_-]*[a-z0-9_])?$")

# characters left untouched when re-quoting path/query
_PATH_SAFE = "/%:@!$&'()*+,;=-._~"
_QUERY_SAFE = _PATH_SAFE + "?"
_USERINFO_SAFE = "%:!$&'()*+,;=-._~"


def _encode_host(host: str) -> str:
    host = host.rstrip(".").lower()
    if not host:
        raise ValueError("empty host")
    try:
        ip = ipaddress.ip_address(host.strip("[]"))
        return f"[{ip.compressed}]" if ip.version == 6 else str(ip)
    except ValueError:
        pass
    try:
        ascii_host = host.encode("idna").decode("ascii")
    except UnicodeError as e:
        raise ValueError(f"bad hostname: {e}")
    for label in ascii_host.split("."):
        if not _LABEL.match(label):
            raise ValueError(f"bad hostname label: {label!r}")
    return ascii_host


def _try_parse(candidate: str) -> Optional[str]:
    try:
        parts = urlsplit(candidate)
    except ValueError:
        return None
    scheme = parts.scheme.lower()
    if scheme not in ALLOWED_SCHEMES or not parts.netloc:
        return None
    try:
        host = _encode_host(parts.hostname or "")
        port = parts.port
    except ValueError:
        return None
    netloc = host if port is None else f"{host}:{port}"
    if "@" in parts.netloc:
        userinfo = parts.netloc.rsplit("@", 1)[0]
        netloc = quote(userinfo, safe=_USERINFO_SAFE) + "@" + netloc
    path = quote(parts.path or "/", safe=_PATH_SAFE)
    query = quote(parts.query, safe=_QUERY_SAFE)
    fragment = quote(parts.fragment, safe=_QUERY_SAFE)
    return urlunsplit((scheme, netloc, path, query, fragment))


def normalize_url(raw: str) -> str:
    """Turn a scanned string into an absolute http(s) URL.

    The string is parsed as-is first and, failing that, once more with an
    ``http://`` prefix. Raises InvalidURL when neither form is usable.
    Whitespace is only fatal inside the host; in the path, query and
    fragment it is percent-encoded.

    >>> normalize_url("google.com")
    'http://google.com/'
    """
    if raw is None:
        raise InvalidURL("", "missing url")
    candidate = str(raw).strip()
    if not candidate:
        raise InvalidURL(raw, "empty url")

    explicit = _EXPLICIT_SCHEME.match(candidate)
    if explicit and explicit.group(1).lower() not in ALLOWED_SCHEMES:
        raise InvalidURL(raw, f"unsupported scheme {explicit.group(1)!r}")

    normalized = _try_parse(candidate)
    if normalized is None and not explicit:
        normalized = _try_parse("http://" + candidate)
    if normalized is None:
        raise InvalidURL(raw)
    return normalized


def hostname_of(url: str) -> str:
    try:
        return (urlsplit(url).hostname or "").lower().rstrip(".")
    except ValueError:
        return ""


def is_ip_host(host: str) -> bool:
    try:
        ipaddress.ip_address(host.strip("[]"))
        return True
    except ValueError:
        return False


def is_punycode_host(host: str) -> bool:
    return any(label.startswith("xn--") for label in host.lower().split("."))


def host_matches(host: str, domains: Iterable[str]) -> bool:
    """True when host equals one of domains or is a dot-boundary subdomain of one."""
    host = (host or "").lower().rstrip(".")
    if not host:
        return False
    for domain in domains:
        domain = domain.lower().strip(".")
        if host == domain or host.endswith("." + domain):
            return True
    return False


def is_shortener(host: str, shorteners: Iterable[str]) -> bool:
    return host_matches(host, shorteners)
