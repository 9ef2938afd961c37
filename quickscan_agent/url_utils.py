from __future__ import annotations

import re
from collections.abc import Mapping
from urllib.parse import urlparse

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# Checked in order; the first header present wins.
_IP_HEADERS = ("x-forwarded-for", "x-real-ip", "cf-connecting-ip")


def normalize_url(raw: str) -> str:
    """Trim and add an ``https://`` scheme when no http(s) scheme is present."""
    value = raw.strip()
    if value.startswith("http://") or value.startswith("https://"):
        return value
    return "https://" + value


def is_valid_url(normalized: str) -> bool:
    try:
        parsed = urlparse(normalized)
        # Accessing .port raises ValueError on a malformed port.
        parsed.port
    except ValueError:
        return False
    if parsed.scheme not in ("http", "https"):
        return False
    host = parsed.hostname
    if not host:
        return False
    if any(ch.isspace() for ch in parsed.netloc):
        return False
    return True


def domain_of(url: str) -> str:
    host = (urlparse(url).hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    return host or url


def company_name_of(url: str) -> str:
    return domain_of(url).split(".")[0]


def normalize_email(raw: str) -> str:
    return raw.strip().lower()


def is_valid_email(raw: str) -> bool:
    return bool(_EMAIL_RE.match(raw.strip()))


def client_ip(headers: Mapping[str, str], peer: str | None = None) -> str | None:
    """Resolve the caller IP from proxy headers, falling back to the socket peer."""
    for name in _IP_HEADERS:
        value = headers.get(name)
        if not value:
            continue
        if name == "x-forwarded-for":
            value = value.split(",")[0]
        value = value.strip()
        if value:
            return value
    return peer or None
