"""
URL helpers: origin keys and canonical cache URLs.
"""

from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

TRACKING_PARAMS = {"fbclid", "gclid", "msclkid", "ref", "_ga", "mc_cid", "mc_eid"}


def normalize_origin(value: str) -> str:
    """Return the lowercase hostname of a URL or host string, without ``www.``.

    Examples:
        >>> normalize_origin("https://WWW.Example.com/p/1")
        'example.com'
        >>> normalize_origin("shop.example.com")
        'shop.example.com'
    """
    value = value.strip()
    if "://" in value:
        host = urlparse(value).hostname or ""
    else:
        host = value.split("/", 1)[0].split(":", 1)[0]
    host = host.lower().rstrip(".")
    if host.startswith("www."):
        host = host[4:]
    return host


def is_absolute_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def canonical_url(url: str) -> str:
    """Canonical form used for cache keys.

    Lowercases scheme and host, drops the fragment and tracking parameters,
    keeps the remaining query in its original order.
    """
    parsed = urlparse(url.strip())
    query = [
        (key, value)
        for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        if not key.lower().startswith("utm_") and key.lower() not in TRACKING_PARAMS
    ]
    path = parsed.path or "/"
    return urlunparse(
        (
            parsed.scheme.lower(),
            parsed.netloc.lower(),
            path,
            parsed.params,
            urlencode(query),
            "",
        )
    )


def host_matches(origin: str, pattern: str) -> bool:
    """True when ``origin`` is ``pattern`` or a subdomain of it."""
    pattern = normalize_origin(pattern)
    return origin == pattern or origin.endswith("." + pattern)
