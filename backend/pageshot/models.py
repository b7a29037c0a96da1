from dataclasses import dataclass
from typing import Any

from PIL import Image
from pydantic import BaseModel, ConfigDict, ValidationError, ValidationInfo, field_validator, model_validator

from pageshot.config import get_settings
from pageshot.errors import InvalidInput


JPEG_QUALITY_MAX = 95

_FORMAT_ALIASES = {"jpeg": "jpeg", "jpg": "jpeg", "png": "png"}

# request field -> Settings attribute holding its default
_NUMERIC_DEFAULTS = {
    "timeout_ms": "default_timeout_ms",
    "viewport_width": "default_viewport_width",
    "viewport_height": "default_viewport_height",
    "settle_delay_ms": "default_settle_delay_ms",
    "overlap_px": "default_overlap_px",
    "jpeg_quality": "default_jpeg_quality",
}


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------

class CaptureRequest(BaseModel):
    """Per-call capture configuration. Immutable once validated."""

    model_config = ConfigDict(frozen=True)

    url: str
    timeout_ms: int
    viewport_width: int
    viewport_height: int
    settle_delay_ms: int
    overlap_px: int
    image_format: str
    jpeg_quality: int
    block_media: bool = False
    wait_until_netidle: bool = True

    @model_validator(mode="before")
    @classmethod
    def _fill_absent(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        settings = get_settings()
        data = dict(data)
        for field, setting in _NUMERIC_DEFAULTS.items():
            if data.get(field) is None:
                data[field] = getattr(settings, setting)
        if not data.get("image_format"):
            data["image_format"] = settings.default_image_format
        for flag in ("block_media", "wait_until_netidle"):
            if data.get(flag) is None:
                data.pop(flag, None)
        return data

    @field_validator(*_NUMERIC_DEFAULTS, mode="after")
    @classmethod
    def _replace_non_positive(cls, v: int, info: ValidationInfo) -> int:
        # Runs on the coerced value, so "0", "-5" and false are caught too
        if v <= 0:
            v = getattr(get_settings(), _NUMERIC_DEFAULTS[info.field_name])
        if info.field_name == "jpeg_quality":
            v = max(1, min(JPEG_QUALITY_MAX, v))
        return v

    @field_validator("url")
    @classmethod
    def _normalize_url(cls, v: str) -> str:
        url = v.strip()
        if not url:
            raise ValueError("url is required")
        if "://" not in url:
            url = "https://" + url
        if not url.startswith(("http://", "https://")):
            raise ValueError(f"unsupported url scheme: {url}")
        return url

    @field_validator("image_format")
    @classmethod
    def _normalize_format(cls, v: str) -> str:
        fmt = _FORMAT_ALIASES.get(v.strip().lower())
        if fmt is None:
            raise ValueError(f"image_format must be 'jpeg' or 'png', got {v!r}")
        return fmt

    @classmethod
    def parse(cls, payload: Any) -> "CaptureRequest":
        """Validate a decoded JSON body, raising InvalidInput on any problem."""
        if not isinstance(payload, dict):
            raise InvalidInput("request body must be a JSON object")
        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            raise InvalidInput(describe_validation_errors(e.errors()))

    @property
    def timeout_s(self) -> float:
        return self.timeout_ms / 1000

    @property
    def settle_delay_s(self) -> float:
        return self.settle_delay_ms / 1000


def describe_validation_errors(errors: list) -> str:
    """Flatten pydantic error dicts into one readable line."""
    parts = []
    for err in errors:
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        msg = err.get("msg", "invalid value")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "invalid request: " + "; ".join(parts)


# ---------------------------------------------------------------------------
# Pipeline values
# ---------------------------------------------------------------------------

@dataclass
class Tile:
    """One viewport raster taken at a fixed scroll offset."""
    image: Image.Image
    offset: int

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height


@dataclass(frozen=True)
class CompositeImage:
    image: Image.Image

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height


@dataclass(frozen=True)
class EncodedImage:
    data_b64: str
    content_type: str
    size_bytes: int


# ---------------------------------------------------------------------------
# Response
# ---------------------------------------------------------------------------

class Viewport(BaseModel):
    width: int
    height: int


class CaptureResult(BaseModel):
    screenshot_base64: str
    content_type: str
    title: str
    final_url: str
    viewport: Viewport
    overlap_px: int
    settle_delay_ms: int
    total_height_px: int


class CaptureResponse(BaseModel):
    ok: bool = True
    data: CaptureResult


class ErrorResponse(BaseModel):
    ok: bool = False
    error: str
