"""
Readiness normalization: make the live page deterministic before capture.

Only presentation state is touched: animations off, lazy media forced to
load, autoplay video paused. Every step here is advisory; a failure is
logged and capture continues with whatever the page has rendered.
"""

import asyncio

from playwright.async_api import Error as PlaywrightError

from pageshot.config import Settings, get_settings
from pageshot.models import CaptureRequest


# Motion and parallax break seams between tiles
DISABLE_MOTION_CSS = """
* { animation: none !important; transition: none !important; }
html, body, * {
  background-attachment: initial !important;
  background-position: 0 0 !important;
  scroll-behavior: auto !important;
}
"""

FORCE_EAGER_JS = '''() => {
    let forced = 0;
    document.querySelectorAll('img[loading], iframe[loading]').forEach(el => { el.loading = 'eager'; });
    document.querySelectorAll('img[decoding]').forEach(img => { img.decoding = 'sync'; });
    document.querySelectorAll('img[data-src]').forEach(img => {
        if (!img.getAttribute('src')) { img.src = img.getAttribute('data-src'); forced++; }
    });
    document.querySelectorAll('img[data-srcset]').forEach(img => {
        if (!img.getAttribute('srcset')) { img.srcset = img.getAttribute('data-srcset'); forced++; }
    });
    document.querySelectorAll('source[data-srcset]').forEach(s => {
        if (!s.getAttribute('srcset')) { s.srcset = s.getAttribute('data-srcset'); forced++; }
    });
    document.querySelectorAll('source[data-src]').forEach(s => {
        if (!s.getAttribute('src')) { s.src = s.getAttribute('data-src'); forced++; }
    });
    document.querySelectorAll('iframe[data-src]').forEach(f => {
        if (!f.getAttribute('src')) { f.src = f.getAttribute('data-src'); forced++; }
    });
    document.querySelectorAll('video[data-poster]').forEach(v => {
        if (!v.getAttribute('poster')) { v.poster = v.getAttribute('data-poster'); forced++; }
    });
    return forced;
}'''

PAUSE_VIDEO_JS = '''() => {
    let paused = 0;
    document.querySelectorAll('video').forEach(v => {
        try { v.preload = 'metadata'; v.autoplay = false; v.pause(); paused++; } catch (e) {}
    });
    return paused;
}'''

# Resolves once fonts and every <img> have loaded/decoded or errored,
# rejects with 'assets-timeout' after `timeout` ms.
WAIT_ASSETS_JS = '''async (timeout) => {
    const abort = new Promise((_, rej) => setTimeout(() => rej(new Error('assets-timeout')), timeout));
    const fontsReady = (typeof document.fonts !== 'undefined')
        ? document.fonts.ready.catch(() => {}) : Promise.resolve();
    const imgs = Array.from(document.images || []);
    const imgsReady = Promise.all(imgs.map(img => img.complete ? Promise.resolve()
        : (img.decode ? img.decode().catch(() => {})
          : new Promise(r => {
                img.addEventListener('load', r, {once: true});
                img.addEventListener('error', r, {once: true});
            }))));
    await Promise.race([Promise.all([fontsReady, imgsReady]), abort]);
    return imgs.length;
}'''

# Walk the page once so IntersectionObserver-driven content mounts,
# capped to avoid running forever on infinite-scroll pages.
WARMUP_SCROLL_JS = '''async ({distance, maxScroll, interval}) => {
    await new Promise(resolve => {
        let total = 0;
        let iterations = 0;
        const maxIterations = Math.ceil(maxScroll / distance) + 1;
        const timer = setInterval(() => {
            window.scrollBy(0, distance);
            total += distance;
            iterations++;
            const height = Math.max(document.body.scrollHeight, document.documentElement.scrollHeight);
            if (total >= height || total >= maxScroll || iterations >= maxIterations) {
                clearInterval(timer);
                window.scrollTo(0, 0);
                resolve();
            }
        }, interval);
    });
}'''


def assets_wait_budget_ms(timeout_ms: int, settings: Settings | None = None) -> int:
    """Sub-timeout for the asset wait: a fraction of the request budget, clamped."""
    settings = settings or get_settings()
    budget = timeout_ms // settings.assets_wait_divisor
    return max(settings.assets_wait_floor_ms, min(settings.assets_wait_ceiling_ms, budget))


async def _advisory(label: str, coro):
    try:
        return await coro
    except PlaywrightError as e:
        print(f"  [readiness] {label} failed (continuing): {e}")
        return None


async def wait_for_assets(session, budget_ms: int) -> bool:
    """Wait for fonts + images. Returns False on timeout; never raises for it."""
    try:
        count = await asyncio.wait_for(
            session.evaluate(WAIT_ASSETS_JS, budget_ms),
            timeout=budget_ms / 1000 + 0.5,
        )
    except asyncio.TimeoutError:
        print(f"  [readiness] Asset wait exceeded {budget_ms}ms, capturing best-effort")
        return False
    except PlaywrightError as e:
        print(f"  [readiness] Asset wait gave up after {budget_ms}ms ({e}), capturing best-effort")
        return False
    print(f"  [readiness] Fonts and {count} images ready")
    return True


async def warm_lazy_content(session, request: CaptureRequest, settings: Settings | None = None):
    """Scroll through the page once to mount lazy sections, then return to the top."""
    settings = settings or get_settings()
    distance = max(200, int(request.viewport_height * 0.8))
    await _advisory("Warm-up scroll", session.evaluate(WARMUP_SCROLL_JS, {
        "distance": distance,
        "maxScroll": settings.warmup_max_scroll_px,
        "interval": max(50, min(request.settle_delay_ms, 400)),
    }))
    await session.settle(max(400, request.settle_delay_ms))


async def normalize_page(session, request: CaptureRequest, settings: Settings | None = None) -> bool:
    """
    Prepare a navigated page for pixel-stable capture.

    Steps, in order: disable motion, force lazy media eager, pause video,
    optionally walk the page once, then wait (bounded) for fonts and images.
    Returns whether the asset wait completed in time.
    """
    settings = settings or get_settings()

    await _advisory("Style override", session.add_style(DISABLE_MOTION_CSS))

    forced = await _advisory("Lazy-load forcing", session.evaluate(FORCE_EAGER_JS))
    if forced:
        print(f"  [readiness] Forced {forced} deferred sources")

    await _advisory("Video pause", session.evaluate(PAUSE_VIDEO_JS))

    await session.settle(settings.post_normalize_settle_ms)

    if settings.warmup_scroll:
        await warm_lazy_content(session, request, settings)

    budget = assets_wait_budget_ms(request.timeout_ms, settings)
    return await wait_for_assets(session, budget)
