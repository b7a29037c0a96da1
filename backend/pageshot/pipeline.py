"""
Capture pipeline: navigate -> normalize -> measure -> capture -> stitch -> encode.

One request owns one PageSession for its whole life and runs every stage
in sequence under a single deadline derived from `timeout_ms`. The session
is released by the pool on every exit path.
"""

import asyncio
import io

from PIL import Image, UnidentifiedImageError
from playwright.async_api import Error as PlaywrightError

from pageshot.config import Settings, get_settings
from pageshot.encoder import encode_composite
from pageshot.errors import CaptureFailed, CaptureTimeout, NavigationTimeout
from pageshot.height import measure_height
from pageshot.models import CaptureRequest, CaptureResult, CompositeImage, Viewport
from pageshot.readiness import normalize_page
from pageshot.scheduler import capture_tiles
from pageshot.stitcher import stitch_tiles


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

class TileStitchCapture:
    """Scroll through the page in overlapping tiles and stitch them."""
    name = "tile-stitch"

    def __init__(self, settings: Settings):
        self.settings = settings

    async def capture(self, session, request: CaptureRequest, total_height: int) -> CompositeImage:
        tiles = await capture_tiles(session, request, total_height, self.settings)
        return await asyncio.to_thread(
            stitch_tiles, tiles, request.overlap_px, self.settings.canvas_background,
        )


class NativeFullPageCapture:
    """Single atomic full-page raster from the backend; no scheduling or stitching."""
    name = "native-full-page"

    async def capture(self, session, request: CaptureRequest, total_height: int) -> CompositeImage:
        try:
            raw = await session.capture_full_page()
        except PlaywrightError as e:
            raise CaptureFailed(f"full-page capture failed: {e}")
        try:
            img = Image.open(io.BytesIO(raw))
            img.load()
        except (UnidentifiedImageError, OSError) as e:
            raise CaptureFailed(f"could not decode full-page capture: {e}")
        return CompositeImage(image=img)


def select_strategy(session, settings: Settings):
    if settings.native_full_page and session.supports_full_page:
        return NativeFullPageCapture()
    return TileStitchCapture(settings)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

async def _page_info(session) -> tuple[str, str]:
    title, final_url = "", ""
    try:
        title = await session.title()
    except PlaywrightError as e:
        print(f"  [capture] Title lookup failed: {e}")
    try:
        final_url = await session.current_url()
    except PlaywrightError as e:
        print(f"  [capture] URL lookup failed: {e}")
    return title, final_url


async def _run_stages(session, request: CaptureRequest, settings: Settings, progress: dict) -> CaptureResult:
    progress["stage"] = "navigate"
    print(f"[capture] Loading {request.url} "
          f"({request.viewport_width}x{request.viewport_height}, timeout {request.timeout_ms}ms)")
    await session.navigate(
        request.url,
        timeout_ms=request.timeout_ms,
        wait_until_netidle=request.wait_until_netidle,
        load_state_cap_ms=settings.load_state_cap_ms,
    )

    progress["stage"] = "normalize"
    await normalize_page(session, request, settings)

    progress["stage"] = "measure"
    total_height = await measure_height(session)
    print(f"[capture] Page height {total_height}px")

    progress["stage"] = "capture"
    strategy = select_strategy(session, settings)
    composite = await strategy.capture(session, request, total_height)

    progress["stage"] = "encode"
    encoded = await asyncio.to_thread(
        encode_composite, composite, request.image_format, request.jpeg_quality,
    )
    print(f"[capture] {strategy.name}: {composite.width}x{composite.height}px "
          f"{request.image_format} ({encoded.size_bytes // 1024}KB)")

    title, final_url = await _page_info(session)

    return CaptureResult(
        screenshot_base64=encoded.data_b64,
        content_type=encoded.content_type,
        title=title,
        final_url=final_url or request.url,
        viewport=Viewport(width=request.viewport_width, height=request.viewport_height),
        overlap_px=request.overlap_px,
        settle_delay_ms=request.settle_delay_ms,
        total_height_px=total_height,
    )


async def run_capture(request: CaptureRequest, pool, settings: Settings | None = None) -> CaptureResult:
    """
    Capture one full-height screenshot for `request` using a session from `pool`.

    Raises a CaptureError subclass on failure. The deadline starts when the
    pool begins opening the session and covers every stage; running out
    during navigation is a NavigationTimeout, anywhere else a CaptureTimeout.
    """
    settings = settings or get_settings()
    progress = {"stage": "acquire"}

    async with pool.session(request) as session:
        budget_s = session.budget_s if session.budget_s is not None else request.timeout_s
        try:
            return await asyncio.wait_for(
                _run_stages(session, request, settings, progress),
                timeout=budget_s,
            )
        except asyncio.TimeoutError:
            stage = progress["stage"]
            print(f"[capture] Deadline of {request.timeout_ms}ms exceeded during {stage}")
            if stage == "navigate":
                raise NavigationTimeout(f"navigation timed out after {request.timeout_ms}ms")
            raise CaptureTimeout(f"capture timed out after {request.timeout_ms}ms during {stage}")
