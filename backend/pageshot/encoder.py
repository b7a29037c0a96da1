"""Final encode of the composite: one compression pass, then base64 for transport."""
from PIL import Image
import io
import base64

from pageshot.errors import EncodeFailed
from pageshot.models import CompositeImage, EncodedImage, JPEG_QUALITY_MAX


CONTENT_TYPES = {
    "jpeg": "image/jpeg",
    "png": "image/png",
}


def encode_image(img: Image.Image, image_format: str, quality: int = 85) -> bytes:
    """
    Serialize `img` as JPEG (quality clamped to 1..95) or lossless PNG.
    The image is never resized here.
    """
    buf = io.BytesIO()
    try:
        if image_format == "png":
            img.save(buf, format='PNG', optimize=True)
        elif image_format == "jpeg":
            # JPEG doesn't support alpha
            if img.mode != 'RGB':
                img = img.convert('RGB')
            q = max(1, min(JPEG_QUALITY_MAX, quality))
            img.save(buf, format='JPEG', quality=q, optimize=True)
        else:
            raise EncodeFailed(f"unsupported image format: {image_format}")
    except (OSError, ValueError) as e:
        raise EncodeFailed(f"encode failed: {e}")
    return buf.getvalue()


def encode_composite(composite: CompositeImage, image_format: str, quality: int = 85) -> EncodedImage:
    """Encode the stitched image and wrap it as base64 with its content type."""
    data = encode_image(composite.image, image_format, quality)
    return EncodedImage(
        data_b64=base64.b64encode(data).decode(),
        content_type=CONTENT_TYPES[image_format],
        size_bytes=len(data),
    )
