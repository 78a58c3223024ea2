"""
HTTP Backend implementation using httpx.

Performs the static acquisition step:
- Pooled async client with browser-like default headers
- Classified errors (timeout, rate limit, block, HTTP status)
- One-shot www/bare-host swap when DNS resolution fails

Retries are not performed here; the resilience layer wraps every call.
"""

from __future__ import annotations

import logging
import time
from urllib.parse import urlparse, urlunparse

import httpx

from .base import (
    Backend,
    BlockedError,
    FetchError,
    FetchResult,
    FetchTimeout,
    RateLimitError,
    RequestSpec,
)

logger = logging.getLogger(__name__)


USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
]

# Status codes that indicate blocking
BLOCKED_STATUS_CODES = {403, 406, 418, 451}

BLOCK_INDICATORS = [
    "captcha",
    "challenge-platform",
    "cf-browser-verification",
    "please verify you are human",
    "unusual traffic",
    "access denied",
]

DNS_ERROR_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "no address associated",
    "temporary failure in name resolution",
)


def swap_www(url: str) -> str:
    """Return the URL with a leading ``www.`` added or removed."""
    parsed = urlparse(url)
    host = parsed.netloc
    if host.startswith("www."):
        host = host[4:]
    else:
        host = f"www.{host}"
    return urlunparse(parsed._replace(netloc=host))


def _is_dns_error(error: Exception) -> bool:
    message = str(error).lower()
    return any(marker in message for marker in DNS_ERROR_MARKERS)


class HttpBackend(Backend):
    """HTTP backend using httpx for async requests."""

    def __init__(
        self,
        timeout: float = 10.0,
        user_agent: str | None = None,
        default_headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize HTTP backend.

        Args:
            timeout: Default request timeout in seconds
            user_agent: Custom user agent
            default_headers: Default headers for all requests
            transport: Optional httpx transport (used by tests)
        """
        self.timeout = timeout
        self.user_agent = user_agent or USER_AGENTS[0]
        self.transport = transport

        self.default_headers = {
            "User-Agent": self.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
            "Accept-Encoding": "gzip, deflate",
            "Upgrade-Insecure-Requests": "1",
            **(default_headers or {}),
        }

        self._client: httpx.AsyncClient | None = None

    @property
    def name(self) -> str:
        return "http"

    async def _ensure_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                headers=self.default_headers,
                transport=self.transport,
                limits=httpx.Limits(
                    max_connections=50,
                    max_keepalive_connections=20,
                ),
            )
        return self._client

    def _check_blocked(self, response: httpx.Response, html: str) -> None:
        """Check if response indicates blocking."""
        if response.status_code in BLOCKED_STATUS_CODES:
            raise BlockedError(
                f"Request blocked with status {response.status_code}",
                url=str(response.url),
                status_code=response.status_code,
                retryable=False,
            )

        # Challenge pages are small; real product pages mentioning these words are not
        if len(html) < 20000:
            html_lower = html.lower()
            for indicator in BLOCK_INDICATORS:
                if indicator in html_lower:
                    raise BlockedError(
                        f"Possible anti-bot block detected: '{indicator}' in response",
                        url=str(response.url),
                        status_code=response.status_code,
                        retryable=False,
                    )

    def _check_rate_limit(self, response: httpx.Response) -> None:
        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            retry_seconds = None

            if retry_after:
                try:
                    retry_seconds = float(retry_after)
                except ValueError:
                    retry_seconds = None

            raise RateLimitError(
                "Rate limit exceeded",
                url=str(response.url),
                retry_after=retry_seconds,
            )

    def _check_status(self, response: httpx.Response) -> None:
        if response.status_code >= 400:
            raise FetchError(
                f"HTTP {response.status_code}",
                url=str(response.url),
                status_code=response.status_code,
            )

    async def _get(self, url: str, request: RequestSpec) -> httpx.Response:
        client = await self._ensure_client()
        return await client.get(
            url,
            headers={**self.default_headers, **request.headers},
            timeout=request.timeout or self.timeout,
            follow_redirects=request.follow_redirects,
        )

    async def fetch(self, request: RequestSpec) -> FetchResult:
        """Fetch a URL once.

        Args:
            request: Request specification

        Returns:
            FetchResult with response data

        Raises:
            FetchTimeout: Request exceeded its timeout
            RateLimitError: Server answered 429
            BlockedError: Anti-bot response
            FetchError: Transport failure or any other HTTP error status
        """
        start = time.monotonic()
        url = request.url

        try:
            try:
                response = await self._get(url, request)
            except httpx.ConnectError as e:
                if not _is_dns_error(e):
                    raise
                url = swap_www(request.url)
                logger.info(f"DNS lookup failed for {request.url}, retrying as {url}")
                response = await self._get(url, request)
        except httpx.TimeoutException as e:
            raise FetchTimeout(f"Timeout after {request.timeout}s", url=url, cause=e) from e
        except httpx.TransportError as e:
            raise FetchError(f"Transport error: {e}", url=url, cause=e, retryable=True) from e

        elapsed_ms = (time.monotonic() - start) * 1000
        html = response.text

        self._check_rate_limit(response)
        self._check_blocked(response, html)
        self._check_status(response)

        logger.debug(
            f"Fetched {url} -> {response.status_code} ({len(html)} chars, {elapsed_ms:.0f}ms)"
        )

        return FetchResult(
            url=request.url,
            final_url=str(response.url),
            status_code=response.status_code,
            html=html,
            headers=dict(response.headers),
            elapsed_ms=elapsed_ms,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
