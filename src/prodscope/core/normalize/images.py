"""
Image URL resolution, filtering and de-duplication.

A candidate is accepted when it resolves to an absolute http(s) URL, carries
no icon/logo/placeholder marker, and either ends in an image extension or
is served from an image CDN or media path with a non-trivial file name.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from urllib.parse import urljoin, urlparse

IMAGE_EXTENSION_RE = re.compile(r"\.(jpe?g|png|webp|avif|gif)(?:$|[?#])", re.IGNORECASE)
NON_PRODUCT_EXTENSION_RE = re.compile(r"\.(svg|ico)(?:$|[?#])", re.IGNORECASE)

CDN_MARKERS = (
    "cdn",
    "cloudfront",
    "cloudinary",
    "imgix",
    "scene7",
    "akamaized",
    "shopify",
    "/is/image/",
    "/images/",
    "/image/",
    "/media/",
    "/photos/",
    "/assets/",
)

REJECT_TOKENS = {
    "logo",
    "logos",
    "icon",
    "icons",
    "favicon",
    "sprite",
    "sprites",
    "placeholder",
    "spacer",
    "badge",
    "badges",
    "loader",
    "spinner",
    "payment",
    "payments",
}

REJECT_SUBSTRINGS = (
    "no-image",
    "noimage",
    "no_image",
    "default-image",
    "image-not-available",
    "transparent.gif",
    "coming-soon",
    "blank.gif",
    "pixel.gif",
    "loading.gif",
)

_TOKEN_SPLIT_RE = re.compile(r"[/\-_.]+")
_MALFORMED_SCHEME_RE = re.compile(r"^(https?):(?!//)/?(.+)$", re.IGNORECASE)
_SHOPIFY_SIZE_RE = re.compile(r"_(\d+x\d*|\d*x\d+)(?=[.@])")
_ONE_PIXEL_RE = re.compile(r"(?<!\d)1x1(?!\d)")

MIN_URL_LENGTH = 10


def resolve_image_url(candidate: object, base_url: str) -> str | None:
    """Resolve a raw image reference against the page URL.

    Handles protocol-relative (``//cdn/x.jpg``), root-relative, relative and
    malformed ``https:files/x.jpg`` references. Returns None for empty,
    ``data:``, ``javascript:`` and other non-http references.
    """
    if not isinstance(candidate, str):
        return None

    url = candidate.strip().strip("\"'")
    if not url:
        return None

    lowered = url.lower()
    if lowered.startswith(("data:", "javascript:", "about:", "blob:", "mailto:")):
        return None

    if url.startswith("//"):
        return "https:" + url

    malformed = _MALFORMED_SCHEME_RE.match(url)
    if malformed:
        host = urlparse(base_url).netloc
        return f"{malformed.group(1).lower()}://{host}/{malformed.group(2).lstrip('/')}"

    resolved = urljoin(base_url, url)
    if urlparse(resolved).scheme not in ("http", "https"):
        return None
    return resolved


def looks_like_placeholder(url: str) -> bool:
    """True for icons, logos, spacers and other non-product imagery."""
    if len(url) < MIN_URL_LENGTH:
        return True

    parsed = urlparse(url)
    path = parsed.path.lower()
    if NON_PRODUCT_EXTENSION_RE.search(path):
        return True
    if any(marker in path for marker in REJECT_SUBSTRINGS) or _ONE_PIXEL_RE.search(path):
        return True

    tokens = set(_TOKEN_SPLIT_RE.split(path))
    return bool(tokens & REJECT_TOKENS)


def is_product_image(url: str | None) -> bool:
    """Decide whether an absolute URL is plausibly a product image."""
    if not url or not url.lower().startswith(("http://", "https://")):
        return False
    if looks_like_placeholder(url):
        return False

    if IMAGE_EXTENSION_RE.search(url):
        return True

    lowered = url.lower()
    if any(marker in lowered for marker in CDN_MARKERS):
        last_segment = urlparse(url).path.rstrip("/").rsplit("/", 1)[-1]
        return len(last_segment) >= 8 or bool(urlparse(url).query)
    return False


def image_key(url: str) -> str:
    """Dedup key: scheme, lowercase host and path; query and fragment ignored."""
    parsed = urlparse(url)
    return f"{parsed.scheme.lower()}://{parsed.netloc.lower()}{parsed.path}"


def best_from_srcset(srcset: str) -> str | None:
    """Pick the largest candidate from a ``srcset`` attribute."""
    best: tuple[float, str] | None = None
    for entry in srcset.split(","):
        parts = entry.strip().split()
        if not parts:
            continue
        size = 0.0
        if len(parts) > 1:
            descriptor = parts[1].lower()
            try:
                size = float(descriptor.rstrip("wx"))
            except ValueError:
                size = 0.0
        if best is None or size > best[0]:
            best = (size, parts[0])
    return best[1] if best else None


def collect_images(
    candidates: Iterable[object],
    base_url: str,
    limit: int = 10,
    seen: set[str] | None = None,
) -> list[str]:
    """Resolve, filter and de-duplicate image candidates in first-seen order."""
    seen = set() if seen is None else seen
    images: list[str] = []
    for candidate in candidates:
        if len(images) >= limit:
            break
        url = resolve_image_url(candidate, base_url)
        if url is None or not is_product_image(url):
            continue
        key = image_key(url)
        if key in seen:
            continue
        seen.add(key)
        images.append(url)
    return images


def dedupe_images(urls: Iterable[str], limit: int | None = None) -> list[str]:
    """Drop repeats by origin+path keeping first-seen order."""
    seen: set[str] = set()
    result: list[str] = []
    for url in urls:
        key = image_key(url)
        if key in seen:
            continue
        seen.add(key)
        result.append(url)
        if limit is not None and len(result) >= limit:
            break
    return result


def upscale_image_url(url: str) -> str:
    """Rewrite well-known CDN URLs to request a high-resolution rendition."""
    lowered = url.lower()
    if "shopify" in lowered or "/cdn/shop/" in lowered:
        return _SHOPIFY_SIZE_RE.sub("_2048x2048", url)
    if "scene7" in lowered or "/is/image/" in lowered:
        base = url.split("?", 1)[0]
        return f"{base}?wid=2000&hei=2000&fmt=jpeg"
    if "zara" in lowered:
        return url + ("&w=1920" if "?" in url else "?w=1920")
    return url
