from __future__ import annotations

import httpx
import pytest

from prodscope.core.backends import (
    BlockedError,
    FetchError,
    FetchTimeout,
    HttpBackend,
    RateLimitError,
    RequestSpec,
)
from prodscope.core.backends.http_backend import swap_www

PRODUCT_HTML = "<html><head><title>Shirt</title></head><body><h1>Shirt</h1></body></html>"


def _backend(handler) -> HttpBackend:
    return HttpBackend(timeout=5.0, transport=httpx.MockTransport(handler))


async def test_fetch_returns_html_and_headers() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, text=PRODUCT_HTML, headers={"content-type": "text/html"})

    backend = _backend(handler)
    result = await backend.fetch(RequestSpec(url="https://shop.example.com/p/1", headers={"X-Test": "1"}))
    await backend.close()

    assert result.ok
    assert result.html == PRODUCT_HTML
    assert result.headers["content-type"] == "text/html"
    assert seen[0].headers["X-Test"] == "1"
    assert "Mozilla/5.0" in seen[0].headers["User-Agent"]


async def test_rate_limit_carries_retry_after() -> None:
    backend = _backend(lambda request: httpx.Response(429, headers={"Retry-After": "12"}, text="slow down"))

    with pytest.raises(RateLimitError) as exc_info:
        await backend.fetch(RequestSpec(url="https://shop.example.com/p/1"))

    assert exc_info.value.retry_after == 12.0
    assert exc_info.value.status_code == 429


@pytest.mark.parametrize("status", [403, 451])
async def test_blocking_status_is_not_retryable(status: int) -> None:
    backend = _backend(lambda request: httpx.Response(status, text="Forbidden"))

    with pytest.raises(BlockedError) as exc_info:
        await backend.fetch(RequestSpec(url="https://shop.example.com/p/1"))

    assert exc_info.value.retryable is False


async def test_small_challenge_page_is_blocked() -> None:
    html = "<html><body>Please verify you are human <div class='captcha'></div></body></html>"
    backend = _backend(lambda request: httpx.Response(200, text=html))

    with pytest.raises(BlockedError):
        await backend.fetch(RequestSpec(url="https://shop.example.com/p/1"))


async def test_large_page_mentioning_captcha_is_not_blocked() -> None:
    html = "<html><body>" + "<p>product copy</p>" * 2000 + "captcha</body></html>"
    backend = _backend(lambda request: httpx.Response(200, text=html))

    result = await backend.fetch(RequestSpec(url="https://shop.example.com/p/1"))
    assert result.status_code == 200


async def test_server_error_keeps_status() -> None:
    backend = _backend(lambda request: httpx.Response(503, text="down"))

    with pytest.raises(FetchError) as exc_info:
        await backend.fetch(RequestSpec(url="https://shop.example.com/p/1"))

    assert exc_info.value.status_code == 503


async def test_timeout_maps_to_fetch_timeout() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("read timed out", request=request)

    backend = _backend(handler)
    with pytest.raises(FetchTimeout) as exc_info:
        await backend.fetch(RequestSpec(url="https://shop.example.com/p/1"))

    assert exc_info.value.retryable is True
    assert isinstance(exc_info.value.cause, httpx.ReadTimeout)


async def test_dns_failure_retries_with_www_swapped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "shop.example.com":
            raise httpx.ConnectError("[Errno -2] Name or service not known", request=request)
        return httpx.Response(200, text=PRODUCT_HTML)

    backend = _backend(handler)
    result = await backend.fetch(RequestSpec(url="https://shop.example.com/p/1"))

    assert result.url == "https://shop.example.com/p/1"
    assert result.final_url == "https://www.shop.example.com/p/1"


async def test_connection_reset_is_retryable_fetch_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Connection reset by peer", request=request)

    backend = _backend(handler)
    with pytest.raises(FetchError) as exc_info:
        await backend.fetch(RequestSpec(url="https://shop.example.com/p/1"))

    assert exc_info.value.retryable is True


def test_swap_www() -> None:
    assert swap_www("https://www.example.com/a?b=1") == "https://example.com/a?b=1"
    assert swap_www("https://example.com/a") == "https://www.example.com/a"
