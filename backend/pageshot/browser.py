"""
Playwright browser backend.

One Chromium process is shared by the whole service. Every request acquires
its own browser context + page (a PageSession) from the BrowserPool, so
cookies, storage and scroll state never leak between requests. The session
is closed on every exit path when the `session()` context manager unwinds.
"""

import asyncio
import re
from contextlib import asynccontextmanager

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    Playwright,
    Route,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from pageshot.config import Settings, get_settings
from pageshot.errors import CaptureTimeout, NavigationTimeout
from pageshot.models import CaptureRequest

try:
    from playwright_stealth import Stealth
    _stealth = Stealth()
except ImportError:
    _stealth = None


_MEDIA_RE = re.compile(r"\.(mp4|webm|gif|mov|avi)(\?|$)", re.IGNORECASE)

_SCROLL_TO_JS = "(y) => window.scrollTo(0, y)"
_SCROLL_BOTTOM_JS = "() => window.scrollTo(0, document.documentElement.scrollHeight)"
_SCROLL_Y_JS = "() => Math.round(window.scrollY || window.pageYOffset || 0)"


class PageSession:
    """A single browser tab bound to one capture request.

    Exposes only the operations the pipeline needs. Stages use it strictly
    one after another; it must never be shared between requests.
    """

    def __init__(self, context: BrowserContext, page: Page):
        self._context = context
        self._page = page
        self._closed = False
        self.scroll_y = 0
        # Seconds of the request deadline left once the session is open
        self.budget_s: float | None = None

    @property
    def supports_full_page(self) -> bool:
        # Chromium screenshots can always span the whole document
        return True

    @property
    def closed(self) -> bool:
        return self._closed

    async def navigate(self, url: str, timeout_ms: int, wait_until_netidle: bool = True,
                       load_state_cap_ms: int = 10000):
        """Load `url` until the DOM is ready. Any failure is a NavigationTimeout."""
        try:
            await self._page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise NavigationTimeout(f"navigation timeout: {url}: {e}")
        except PlaywrightError as e:
            raise NavigationTimeout(f"navigation timeout or error: {url}: {e}")

        if wait_until_netidle:
            # Beacons keep some pages from ever going idle; `load` is bounded and optional
            try:
                await self._page.wait_for_load_state("load", timeout=min(timeout_ms, load_state_cap_ms))
            except PlaywrightError:
                pass
            await self._page.wait_for_timeout(300)

    async def evaluate(self, script: str, arg=None):
        if arg is None:
            return await self._page.evaluate(script)
        return await self._page.evaluate(script, arg)

    async def add_style(self, css: str):
        await self._page.add_style_tag(content=css)

    async def scroll_to(self, y: int):
        await self._page.evaluate(_SCROLL_TO_JS, y)
        self.scroll_y = y

    async def scroll_to_bottom(self):
        await self._page.evaluate(_SCROLL_BOTTOM_JS)
        self.scroll_y = await self._page.evaluate(_SCROLL_Y_JS)

    async def settle(self, delay_ms: int):
        await self._page.wait_for_timeout(delay_ms)

    async def capture_viewport(self) -> bytes:
        """Raw PNG of the current viewport."""
        return await self._page.screenshot(type="png", full_page=False)

    async def capture_full_page(self) -> bytes:
        return await self._page.screenshot(type="png", full_page=True)

    async def title(self) -> str:
        return await self._page.title()

    async def current_url(self) -> str:
        return self._page.url

    async def close(self):
        if self._closed:
            return
        self._closed = True
        await self._context.close()


class BrowserPool:
    """
    Owns the shared Chromium process and hands out isolated sessions.
    Concurrency is bounded by `max_concurrent_sessions`; callers beyond
    the limit wait for a slot.
    """

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._lock = asyncio.Lock()
        self._slots = asyncio.Semaphore(self.settings.max_concurrent_sessions)
        self.active = 0

    @property
    def started(self) -> bool:
        return self._browser is not None

    async def start(self):
        """Launch Chromium. Safe to call more than once."""
        async with self._lock:
            if self._browser is not None:
                return
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.settings.headless,
                args=self.settings.browser_args,
            )
            print(f"[browser-pool] Chromium ready "
                  f"(max {self.settings.max_concurrent_sessions} concurrent sessions)")

    async def stop(self):
        async with self._lock:
            if self._browser is not None:
                try:
                    await self._browser.close()
                except PlaywrightError as e:
                    print(f"[browser-pool] Browser close failed: {e}")
                self._browser = None
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None
            print("[browser-pool] Stopped")

    @asynccontextmanager
    async def session(self, request: CaptureRequest):
        """
        Acquire an isolated PageSession for one request; always closed on exit.

        Opening the context counts against the request deadline, waiting for
        a free slot does not. The time left is exposed as `session.budget_s`.
        """
        async with self._slots:
            if self._browser is None:
                await self.start()
            loop = asyncio.get_running_loop()
            opened_at = loop.time()
            try:
                session = await asyncio.wait_for(self._open(request), timeout=request.timeout_s)
            except asyncio.TimeoutError:
                raise CaptureTimeout(f"browser session not ready within {request.timeout_ms}ms")
            session.budget_s = max(0.0, request.timeout_s - (loop.time() - opened_at))
            self.active += 1
            try:
                yield session
            finally:
                self.active -= 1
                await self._release(session)

    async def _open(self, request: CaptureRequest) -> PageSession:
        context = await self._browser.new_context(
            viewport={"width": request.viewport_width, "height": request.viewport_height},
            device_scale_factor=self.settings.device_scale_factor,
            user_agent=self.settings.user_agent,
        )
        try:
            page = await context.new_page()
            page.set_default_timeout(request.timeout_ms)
            page.set_default_navigation_timeout(request.timeout_ms)

            if self.settings.use_stealth and _stealth:
                await _stealth.apply_stealth_async(page)

            blocked = self.settings.blocked_domains if self.settings.block_analytics else []
            if blocked or request.block_media:
                await context.route("**/*", _request_filter(blocked, request.block_media))
        except BaseException:
            await context.close()
            raise
        return PageSession(context, page)

    async def _release(self, session: PageSession):
        try:
            await asyncio.wait_for(asyncio.shield(session.close()), timeout=self.settings.close_timeout_s)
        except (PlaywrightError, asyncio.TimeoutError) as e:
            print(f"[browser-pool] Session close failed: {e}")


def _request_filter(blocked_domains: list[str], block_media: bool):
    """Route handler aborting analytics beacons and, optionally, heavy media."""

    async def handle_route(route: Route):
        if is_blocked(route.request.url, blocked_domains, block_media):
            await route.abort()
            return
        await route.continue_()

    return handle_route


def is_blocked(url: str, blocked_domains: list[str], block_media: bool) -> bool:
    if any(domain in url for domain in blocked_domains):
        return True
    return bool(block_media and _MEDIA_RE.search(url))
