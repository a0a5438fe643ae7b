from __future__ import annotations
import ipaddress
import socket
from urllib.parse import parse_qs, parse_qsl, urlencode, urlsplit, urlunsplit

TRACKING_PARAMS = {
    "fbclid",
    "gclid",
    "dclid",
    "msclkid",
    "mc_cid",
    "mc_eid",
    "igshid",
    "ref",
    "ref_src",
    "_hsenc",
    "_hsmi",
    "yclid",
}
TRACKING_PREFIXES = ("utm_",)
DEFAULT_PORTS = {"http": 80, "https": 443}
GOOGLE_REDIRECT_HOSTS = {"google.com", "www.google.com", "news.google.com"}


def _is_tracking_param(key: str) -> bool:
    lowered = key.lower()
    if lowered in TRACKING_PARAMS:
        return True
    return any(lowered.startswith(prefix) for prefix in TRACKING_PREFIXES)


def normalize_url(raw_url: str) -> str:
    """Canonical form used as a dedup identity key.

    Lowercases scheme and host, drops default ports, fragments and tracking
    parameters, sorts the remaining query and strips a trailing slash.
    """
    parts = urlsplit(raw_url.strip())
    scheme = parts.scheme.lower()
    hostname = (parts.hostname or "").lower()
    port = parts.port

    netloc = f"[{hostname}]" if ":" in hostname else hostname
    if port and DEFAULT_PORTS.get(scheme) != port:
        netloc = f"{netloc}:{port}"

    path = parts.path or "/"
    if path != "/" and path.endswith("/"):
        path = path.rstrip("/")
    if path == "/":
        path = ""

    query_items = [
        (k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if not _is_tracking_param(k)
    ]
    query = urlencode(sorted(query_items), doseq=True)
    return urlunsplit((scheme, netloc, path, query, ""))


def resolve_google_redirect(url: str) -> str:
    """Unwrap google.com/url?url=... (and ?q=...) links found in Google Alerts feeds."""
    parts = urlsplit(url)
    host = (parts.hostname or "").lower()
    if host in GOOGLE_REDIRECT_HOSTS and parts.path == "/url":
        params = parse_qs(parts.query)
        for key in ("url", "q"):
            target = params.get(key)
            if target and target[0].startswith(("http://", "https://")):
                return target[0]
    return url


def is_public_http_url(url: str, resolve: bool = True) -> bool:
    """Only http(s) URLs pointing at public addresses may be fetched."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    if parts.scheme not in ("http", "https") or not parts.hostname:
        return False
    host = parts.hostname.lower()
    if host == "localhost" or host.endswith(".localhost") or host.endswith(".local"):
        return False

    candidates = []
    try:
        candidates.append(ipaddress.ip_address(host))
    except ValueError:
        if resolve:
            try:
                for info in socket.getaddrinfo(host, None):
                    candidates.append(ipaddress.ip_address(info[4][0]))
            except (socket.gaierror, UnicodeError, ValueError):
                return False

    for ip in candidates:
        if ip.is_private or ip.is_loopback or ip.is_link_local or ip.is_reserved or ip.is_multicast:
            return False
    return True
