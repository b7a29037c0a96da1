import asyncio
import io
from contextlib import asynccontextmanager

import pytest
from PIL import Image, ImageDraw
from playwright.async_api import Error as PlaywrightError

from pageshot.config import Settings
from pageshot.height import MEASURE_HEIGHT_JS
from pageshot.readiness import WAIT_ASSETS_JS


def make_page_image(height, width=64):
    """Tall synthetic page: every row gets a colour derived from its y."""
    img = Image.new("RGB", (width, height), "white")
    draw = ImageDraw.Draw(img)
    for y in range(height):
        draw.line([(0, y), (width - 1, y)], fill=(y % 256, (y // 256) % 256, 90))
    return img


def png_bytes(img):
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


_UNSET = object()


class FakeSession:
    """
    In-memory stand-in for PageSession. Viewport captures are crops of a
    synthetic page image at the current scroll position, clamped the way
    a browser clamps scrollTo.
    """

    def __init__(self, page_height=3000, viewport_height=1000, width=64,
                 measured_height=_UNSET, capture_widths=None, fail_capture_at=None,
                 asset_wait="ok", fail_style=False, delays=None, native=False,
                 budget_s=None):
        self.page = make_page_image(page_height, width)
        self.page_height = page_height
        self.viewport_height = viewport_height
        self.measured_height = page_height if measured_height is _UNSET else measured_height
        self.capture_widths = capture_widths or []
        self.fail_capture_at = fail_capture_at
        self.asset_wait = asset_wait
        self.fail_style = fail_style
        self.delays = delays or {}
        self.native = native
        self.budget_s = budget_s
        self.scroll_y = 0
        self.closed = False
        self.calls = []
        self.captured_offsets = []

    @property
    def supports_full_page(self):
        return self.native

    async def _delay(self, op):
        if op in self.delays:
            await asyncio.sleep(self.delays[op])

    async def navigate(self, url, timeout_ms, wait_until_netidle=True, load_state_cap_ms=10000):
        self.calls.append(("navigate", url))
        self.url = url
        await self._delay("navigate")

    async def add_style(self, css):
        self.calls.append(("add_style",))
        if self.fail_style:
            raise PlaywrightError("style injection blocked by CSP")

    async def evaluate(self, script, arg=None):
        if script == MEASURE_HEIGHT_JS:
            self.calls.append(("measure",))
            await self._delay("measure")
            return self.measured_height
        if script == WAIT_ASSETS_JS:
            self.calls.append(("wait_assets", arg))
            if self.asset_wait == "reject":
                raise PlaywrightError("assets-timeout")
            if self.asset_wait == "hang":
                await asyncio.sleep(10)
            return 3
        self.calls.append(("evaluate",))
        return 0

    def _max_scroll(self):
        return max(0, self.page_height - self.viewport_height)

    async def scroll_to(self, y):
        self.scroll_y = min(max(0, y), self._max_scroll())

    async def scroll_to_bottom(self):
        self.scroll_y = self._max_scroll()

    async def settle(self, delay_ms):
        self.calls.append(("settle", delay_ms))

    async def capture_viewport(self):
        index = len(self.captured_offsets)
        if self.fail_capture_at is not None and index == self.fail_capture_at:
            raise PlaywrightError("Target page, context or browser has been closed")
        self.captured_offsets.append(self.scroll_y)
        tile = self.page.crop((0, self.scroll_y, self.page.width, self.scroll_y + self.viewport_height))
        if index < len(self.capture_widths) and self.capture_widths[index] != tile.width:
            tile = tile.resize((self.capture_widths[index], tile.height))
        return png_bytes(tile)

    async def capture_full_page(self):
        self.calls.append(("full_page",))
        return png_bytes(self.page)

    async def title(self):
        return "Fake Page"

    async def current_url(self):
        return self.url + "#final"

    async def close(self):
        self.closed = True


class FakePool:
    def __init__(self, session):
        self.fake = session
        self.started = True
        self.active = 0
        self.acquired = 0

    @asynccontextmanager
    async def session(self, request):
        self.acquired += 1
        self.active += 1
        try:
            yield self.fake
        finally:
            self.active -= 1
            await self.fake.close()


@pytest.fixture
def fast_settings():
    return Settings(
        warmup_scroll=False,
        post_normalize_settle_ms=0,
        assets_wait_floor_ms=10,
        assets_wait_ceiling_ms=50,
    )
