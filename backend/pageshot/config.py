from pydantic_settings import BaseSettings
from functools import lru_cache
import os


class Settings(BaseSettings):
    # Request defaults (substituted for absent or non-positive fields)
    default_timeout_ms: int = 30000
    default_viewport_width: int = 1280
    default_viewport_height: int = 1024
    default_settle_delay_ms: int = 300
    default_overlap_px: int = 140
    default_image_format: str = "jpeg"
    default_jpeg_quality: int = 85

    # Scroll scheduling
    min_scroll_step_px: int = 50
    fallback_step_ratio: float = 0.75
    post_normalize_settle_ms: int = 600

    # Readiness waits (milliseconds)
    assets_wait_floor_ms: int = 2000
    assets_wait_ceiling_ms: int = 8000
    assets_wait_divisor: int = 4
    load_state_cap_ms: int = 10000
    warmup_scroll: bool = True
    warmup_max_scroll_px: int = 15000

    # Browser
    headless: bool = True
    browser_args: list[str] = ["--no-sandbox", "--disable-gpu"]
    user_agent: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/131.0.0.0 Safari/537.36"
    )
    device_scale_factor: float = 1.0
    max_concurrent_sessions: int = 4
    close_timeout_s: float = 10.0
    use_stealth: bool = False

    # Requests that keep the network busy without affecting the render
    block_analytics: bool = True
    blocked_domains: list[str] = [
        "googletagmanager.com",
        "google-analytics.com",
        "facebook.com/tr",
        "hotjar.com",
        "segment.com",
        "mixpanel.com",
        "fullstory.com",
    ]

    # Use the backend's atomic full-page capture instead of tile+stitch
    native_full_page: bool = False

    canvas_background: str = "#ffffff"

    host: str = "0.0.0.0"
    port: int = 8080

    class Config:
        # Look for .env in the repo root (two levels up from backend/pageshot/)
        # In containers, env vars are injected directly, .env is optional
        _env_path = os.path.join(os.path.dirname(__file__), "..", "..", ".env")
        env_file = _env_path if os.path.exists(_env_path) else None
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings():
    return Settings()
