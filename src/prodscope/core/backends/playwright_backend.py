"""
Playwright Backend implementation for browser rendering.

Provides async browser-based acquisition with:
- One shared browser process, one context+page per request
- Bounded page concurrency
- Stealth mode for bot detection avoidance
- JSON network-response capture scoped to a single page navigation
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, AsyncIterator

from prodscope.core.errors import AcquisitionError

from .base import (
    Backend,
    BlockedError,
    InterceptedResponse,
    NavigationTimeout,
    ProxySettings,
    RenderError,
    RenderResult,
    RequestSpec,
)

if TYPE_CHECKING:
    from playwright.async_api import Browser, Page, Playwright, Response

logger = logging.getLogger(__name__)


BLOCKED_STATUS_CODES = {403, 406, 418, 451}

BLOCK_INDICATORS = [
    "captcha",
    "challenge-platform",
    "cf-browser-verification",
    "please verify you are human",
]

PRODUCT_READY_SELECTOR = "h1, [itemprop='name'], [data-testid*='product'], [class*='product-title']"


# =============================================================================
# Stealth Script
# =============================================================================


STEALTH_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', {
    get: () => undefined
});

Object.defineProperty(navigator, 'plugins', {
    get: () => [
        { name: 'Chrome PDF Plugin', filename: 'internal-pdf-viewer' },
        { name: 'Chrome PDF Viewer', filename: 'mhjfbmdgcfjbbpaeojofohoefgiehjai' },
        { name: 'Native Client', filename: 'internal-nacl-plugin' }
    ]
});

Object.defineProperty(navigator, 'languages', {
    get: () => ['en-US', 'en']
});

window.chrome = {
    runtime: {},
    loadTimes: function() {},
    csi: function() {},
    app: {}
};
"""


def _is_timeout(error: Exception) -> bool:
    from playwright.async_api import TimeoutError as PlaywrightTimeoutError

    return isinstance(error, (PlaywrightTimeoutError, asyncio.TimeoutError))


# =============================================================================
# PlaywrightBackend Implementation
# =============================================================================


class PlaywrightBackend(Backend):
    """Playwright-based rendering backend.

    The browser is launched lazily and shared. Every render gets its own
    context and page, which are closed on every exit path.
    """

    def __init__(
        self,
        headless: bool = True,
        browser_type: str = "chromium",
        max_pages: int = 4,
        viewport_width: int = 1920,
        viewport_height: int = 1080,
        user_agent: str | None = None,
        stealth: bool = True,
        settle_ms: int = 1500,
        scroll: bool = True,
    ):
        """Initialize Playwright backend.

        Args:
            headless: Run browser in headless mode
            browser_type: Browser to use (chromium, firefox, webkit)
            max_pages: Maximum pages open at once
            viewport_width: Browser viewport width
            viewport_height: Browser viewport height
            user_agent: Custom user agent string
            stealth: Enable stealth mode for bot detection avoidance
            settle_ms: Delay after load for late XHRs and lazy images
            scroll: Scroll once to trigger lazy-loaded images
        """
        self.headless = headless
        self.browser_type = browser_type
        self.viewport_width = viewport_width
        self.viewport_height = viewport_height
        self.stealth = stealth
        self.settle_ms = settle_ms
        self.scroll = scroll

        self.user_agent = user_agent or (
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
            "AppleWebKit/537.36 (KHTML, like Gecko) "
            "Chrome/124.0.0.0 Safari/537.36"
        )

        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._launch_lock = asyncio.Lock()
        self._pages = asyncio.Semaphore(max_pages)
        self._open_pages = 0

    @property
    def name(self) -> str:
        return "playwright"

    @property
    def supports_javascript(self) -> bool:
        return True

    @property
    def open_pages(self) -> int:
        return self._open_pages

    async def _ensure_browser(self) -> Browser:
        """Launch the shared browser if not already running."""
        async with self._launch_lock:
            if self._browser is not None and self._browser.is_connected():
                return self._browser

            try:
                from playwright.async_api import async_playwright
            except ImportError as e:
                raise RenderError(
                    "Playwright is not installed. Run: playwright install chromium",
                    cause=e,
                    retryable=False,
                ) from e

            self._playwright = await async_playwright().start()

            if self.browser_type == "firefox":
                launcher = self._playwright.firefox
            elif self.browser_type == "webkit":
                launcher = self._playwright.webkit
            else:
                launcher = self._playwright.chromium

            launch_args: list[str] = []
            if self.stealth and self.browser_type == "chromium":
                launch_args = [
                    "--disable-blink-features=AutomationControlled",
                    "--disable-dev-shm-usage",
                    "--no-sandbox",
                    "--disable-setuid-sandbox",
                    f"--window-size={self.viewport_width},{self.viewport_height}",
                ]

            try:
                self._browser = await launcher.launch(headless=self.headless, args=launch_args)
            except Exception as e:
                raise RenderError(
                    f"Failed to launch {self.browser_type} browser. Run: playwright install chromium",
                    cause=e,
                    retryable=False,
                ) from e

            logger.info(f"Launched {self.browser_type} browser (headless={self.headless})")
            return self._browser

    @asynccontextmanager
    async def page_session(self, proxy: ProxySettings | None = None) -> AsyncIterator[Page]:
        """Yield a fresh page in its own context; both are closed on exit."""
        async with self._pages:
            browser = await self._ensure_browser()

            context_options: dict[str, Any] = {
                "viewport": {"width": self.viewport_width, "height": self.viewport_height},
                "user_agent": self.user_agent,
                "locale": "en-US",
            }
            if proxy is not None:
                context_options["proxy"] = proxy.to_playwright()

            context = await browser.new_context(**context_options)
            self._open_pages += 1
            try:
                if self.stealth:
                    await context.add_init_script(STEALTH_SCRIPT)
                page = await context.new_page()
                try:
                    yield page
                finally:
                    await page.close()
            finally:
                self._open_pages -= 1
                await context.close()

    async def fetch(self, request: RequestSpec) -> RenderResult:
        return await self.render(request)

    async def render(self, request: RequestSpec) -> RenderResult:
        """Navigate to the URL, let scripts run, and capture matching API payloads.

        Args:
            request: Request specification; ``intercept_patterns`` selects which
                network responses are captured

        Returns:
            RenderResult with rendered HTML and intercepted JSON payloads

        Raises:
            NavigationTimeout: Navigation exceeded ``navigation_timeout``
            BlockedError: Anti-bot response
            RenderError: Any other browser failure or HTTP error status
        """
        start = time.monotonic()
        console_logs: list[str] = []
        captured: list[InterceptedResponse] = []
        pending: set[asyncio.Task[None]] = set()

        async def capture(response: Response) -> None:
            try:
                content_type = response.headers.get("content-type", "")
                if "json" not in content_type:
                    return
                data = await response.json()
            except Exception as e:
                logger.debug(f"Skipping unreadable API response {response.url}: {e}")
                return
            captured.append(InterceptedResponse(url=response.url, status=response.status, data=data))

        def on_response(response: Response) -> None:
            if not any(pattern.search(response.url) for pattern in request.intercept_patterns):
                return
            task = asyncio.ensure_future(capture(response))
            pending.add(task)
            task.add_done_callback(pending.discard)

        def on_console(message: Any) -> None:
            console_logs.append(f"[{message.type}] {message.text}")

        async with self.page_session(request.proxy) as page:
            page.on("response", on_response)
            page.on("console", on_console)
            try:
                try:
                    response = await page.goto(
                        request.url,
                        timeout=int(request.navigation_timeout * 1000),
                        wait_until="domcontentloaded",
                    )
                except Exception as e:
                    if _is_timeout(e):
                        raise NavigationTimeout(
                            f"Navigation timeout after {request.navigation_timeout}s",
                            url=request.url,
                            cause=e,
                        ) from e
                    raise RenderError(f"Navigation failed: {e}", url=request.url, cause=e, retryable=True) from e

                status_code = response.status if response is not None else 200
                if status_code in BLOCKED_STATUS_CODES:
                    raise BlockedError(
                        f"Request blocked with status {status_code}",
                        url=request.url,
                        status_code=status_code,
                        retryable=False,
                    )
                if status_code >= 400:
                    raise RenderError(f"HTTP {status_code}", url=request.url, status_code=status_code)

                await self._wait_for_product(page, request)

                html = await page.content()
                if len(html) < 20000:
                    html_lower = html.lower()
                    for indicator in BLOCK_INDICATORS:
                        if indicator in html_lower:
                            raise BlockedError(
                                f"Bot detection triggered: '{indicator}' found",
                                url=request.url,
                                status_code=status_code,
                                retryable=False,
                            )

                if pending:
                    await asyncio.wait(set(pending), timeout=2.0)

                elapsed_ms = (time.monotonic() - start) * 1000
                logger.debug(
                    f"Rendered {request.url} in {elapsed_ms:.0f}ms, {len(captured)} API payloads captured"
                )

                return RenderResult(
                    url=request.url,
                    final_url=page.url,
                    status_code=status_code,
                    html=html,
                    headers=dict(response.headers) if response is not None else {},
                    elapsed_ms=elapsed_ms,
                    console_logs=console_logs,
                    intercepted=list(captured),
                )
            except AcquisitionError:
                raise
            except Exception as e:
                if _is_timeout(e):
                    raise NavigationTimeout(f"Render timeout: {e}", url=request.url, cause=e) from e
                raise RenderError(f"Browser error: {e}", url=request.url, cause=e, retryable=True) from e
            finally:
                page.remove_listener("response", on_response)
                page.remove_listener("console", on_console)
                for task in list(pending):
                    task.cancel()

    async def _wait_for_product(self, page: Page, request: RequestSpec) -> None:
        """Give client-side rendering a chance to produce product markup."""
        selector = request.wait_for_selector or PRODUCT_READY_SELECTOR
        try:
            await page.wait_for_selector(selector, timeout=5000)
        except Exception as e:
            if not _is_timeout(e):
                raise
            logger.debug(f"Product marker '{selector}' not found on {request.url}, continuing")

        if self.scroll:
            await page.evaluate("window.scrollTo(0, document.body.scrollHeight / 2)")

        if self.settle_ms:
            await page.wait_for_timeout(self.settle_ms)

    async def close(self) -> None:
        """Close the shared browser and stop playwright."""
        if self._browser is not None:
            try:
                await self._browser.close()
            except Exception as e:
                logger.warning(f"Error closing browser: {e}")
            self._browser = None

        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
