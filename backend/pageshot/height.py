"""Total scrollable height of the rendered document."""

import math

from playwright.async_api import Error as PlaywrightError

from pageshot.errors import CaptureFailed, HeightDetectionFailed


MEASURE_HEIGHT_JS = (
    "() => Math.max("
    "document.documentElement ? document.documentElement.scrollHeight || 0 : 0, "
    "document.body ? document.body.scrollHeight || 0 : 0)"
)


async def measure_height(session) -> int:
    """Max of root and body scrollHeight in px. Raises HeightDetectionFailed below 1px."""
    try:
        raw = await session.evaluate(MEASURE_HEIGHT_JS)
    except PlaywrightError as e:
        raise CaptureFailed(f"height measurement failed: {e}")

    try:
        height = float(raw or 0)
    except (TypeError, ValueError):
        height = 0.0
    if math.isnan(height) or height < 1:
        raise HeightDetectionFailed("page height detection failed")
    return int(round(height))
