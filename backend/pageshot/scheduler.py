"""
Scroll-capture scheduling.

Walks the page top to bottom in viewport-sized steps that overlap by
`overlap_px`, capturing one raster tile per stop. The last tile is always
taken after scrolling to the document's real bottom, so the sequence
reaches the end even when the step does not divide the height.
"""

import io
import math

from PIL import Image, UnidentifiedImageError
from playwright.async_api import Error as PlaywrightError

from pageshot.config import Settings, get_settings
from pageshot.errors import CaptureFailed
from pageshot.models import CaptureRequest, Tile


def scroll_step(viewport_height: int, overlap_px: int, settings: Settings | None = None) -> int:
    """Distance between consecutive stops, never below the safety floor."""
    settings = settings or get_settings()
    step = viewport_height - overlap_px
    if step < settings.min_scroll_step_px:
        step = int(viewport_height * settings.fallback_step_ratio)
    return max(1, step)


def plan_offsets(total_height: int, viewport_height: int, step: int) -> list[int]:
    """
    Offsets captured by the stepping loop, in order. The forced bottom tile
    is not included; it follows whenever the page is taller than the viewport.
    """
    if total_height <= viewport_height:
        return [0]
    offsets = []
    cursor = 0
    while True:
        offsets.append(cursor)
        cursor += step
        if cursor + viewport_height >= total_height:
            return offsets


def expected_tile_count(total_height: int, viewport_height: int, step: int) -> int:
    if total_height <= viewport_height:
        return 1
    return math.ceil((total_height - viewport_height) / step) + 1


def decode_tile(raw: bytes, offset: int) -> Tile:
    try:
        img = Image.open(io.BytesIO(raw))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise CaptureFailed(f"could not decode tile at y={offset}: {e}")
    return Tile(image=img, offset=offset)


async def _capture_at(session, offset: int | None, settle_ms: int) -> Tile:
    """Scroll (to `offset`, or to the true bottom when None), settle, capture."""
    try:
        if offset is None:
            await session.scroll_to_bottom()
            offset = session.scroll_y
        else:
            await session.scroll_to(offset)
        await session.settle(settle_ms)
        raw = await session.capture_viewport()
    except PlaywrightError as e:
        where = "bottom" if offset is None else f"y={offset}"
        raise CaptureFailed(f"capture failed at {where}: {e}")
    return decode_tile(raw, offset)


async def capture_tiles(session, request: CaptureRequest, total_height: int,
                        settings: Settings | None = None) -> list[Tile]:
    """
    Capture the ordered tile sequence covering [0, total_height].

    Any scroll or capture error aborts with CaptureFailed; tiles taken so
    far are discarded with the exception.
    """
    settings = settings or get_settings()
    vh = request.viewport_height
    step = scroll_step(vh, request.overlap_px, settings)

    try:
        await session.scroll_to(0)
    except PlaywrightError as e:
        raise CaptureFailed(f"could not reset scroll position: {e}")
    await session.settle(request.settle_delay_ms)

    offsets = plan_offsets(total_height, vh, step)
    print(f"  [scheduler] height={total_height}px viewport={vh}px step={step}px "
          f"-> {expected_tile_count(total_height, vh, step)} tiles")

    tiles = []
    for offset in offsets:
        tiles.append(await _capture_at(session, offset, request.settle_delay_ms))

    if total_height > vh:
        tiles.append(await _capture_at(session, None, request.settle_delay_ms))

    return tiles
