import asyncio

import pytest
from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError

from pageshot.browser import BrowserPool, PageSession, is_blocked
from pageshot.config import Settings
from pageshot.errors import CaptureTimeout, NavigationTimeout
from pageshot.models import CaptureRequest


BLOCKED = Settings().blocked_domains


@pytest.mark.parametrize("url,media,expected", [
    ("https://www.googletagmanager.com/gtm.js?id=1", False, True),
    ("https://www.facebook.com/tr?ev=PageView", False, True),
    ("https://www.facebook.com/profile", False, False),
    ("https://cdn.example.com/hero.mp4", False, False),
    ("https://cdn.example.com/hero.mp4", True, True),
    ("https://cdn.example.com/loop.GIF?v=2", True, True),
    ("https://cdn.example.com/photo.jpg", True, False),
])
def test_request_filtering(url, media, expected):
    assert is_blocked(url, BLOCKED, media) is expected


class StubPage:
    def __init__(self, goto_error=None, load_error=None):
        self.goto_error = goto_error
        self.load_error = load_error
        self.url = "about:blank"
        self.waits = []

    async def goto(self, url, wait_until, timeout):
        if self.goto_error:
            raise self.goto_error
        self.url = url

    async def wait_for_load_state(self, state, timeout):
        self.waits.append((state, timeout))
        if self.load_error:
            raise self.load_error

    async def wait_for_timeout(self, ms):
        pass


class StubContext:
    def __init__(self):
        self.closed = 0

    async def close(self):
        self.closed += 1


@pytest.mark.parametrize("error", [
    PlaywrightTimeoutError("Timeout 30000ms exceeded."),
    PlaywrightError("net::ERR_NAME_NOT_RESOLVED"),
])
def test_navigation_errors_become_navigation_timeout(error):
    session = PageSession(StubContext(), StubPage(goto_error=error))
    with pytest.raises(NavigationTimeout):
        asyncio.run(session.navigate("https://example.invalid", timeout_ms=30000))


def test_load_state_wait_is_bounded_and_optional():
    page = StubPage(load_error=PlaywrightTimeoutError("load never fired"))
    session = PageSession(StubContext(), page)
    asyncio.run(session.navigate("https://example.com", timeout_ms=30000, load_state_cap_ms=10000))
    assert page.waits == [("load", 10000)]
    assert asyncio.run(session.current_url()) == "https://example.com"


def test_session_close_is_idempotent():
    context = StubContext()
    session = PageSession(context, StubPage())
    asyncio.run(session.close())
    asyncio.run(session.close())
    assert context.closed == 1
    assert session.closed


def test_playwright_session_can_capture_full_page():
    assert PageSession(StubContext(), StubPage()).supports_full_page


def test_pool_starts_cold():
    pool = BrowserPool(Settings(max_concurrent_sessions=2))
    assert not pool.started
    assert pool.active == 0


class StubBrowserPage:
    def set_default_timeout(self, ms):
        pass

    def set_default_navigation_timeout(self, ms):
        pass


class StubBrowserContext(StubContext):
    async def new_page(self):
        return StubBrowserPage()


class StubBrowser:
    def __init__(self, open_delay=0.0):
        self.open_delay = open_delay
        self.contexts = []

    async def new_context(self, **kwargs):
        await asyncio.sleep(self.open_delay)
        context = StubBrowserContext()
        self.contexts.append(context)
        return context


def _pool(browser):
    pool = BrowserPool(Settings(block_analytics=False))
    pool._browser = browser
    return pool


def _request(timeout_ms):
    return CaptureRequest.parse({"url": "https://example.com", "timeout_ms": timeout_ms})


def test_stalled_context_creation_is_bounded_by_request_timeout():
    pool = _pool(StubBrowser(open_delay=2))

    async def acquire():
        async with pool.session(_request(100)):
            pass

    with pytest.raises(CaptureTimeout):
        asyncio.run(acquire())
    assert pool.active == 0


def test_session_reports_remaining_budget_and_is_released():
    browser = StubBrowser(open_delay=0.05)
    pool = _pool(browser)

    async def acquire():
        async with pool.session(_request(1000)) as session:
            assert pool.active == 1
            return session

    session = asyncio.run(acquire())
    assert 0 < session.budget_s < 1.0
    assert session.closed
    assert browser.contexts[0].closed == 1
    assert pool.active == 0
