"""
Vertical tile stitching.

Tiles arrive in capture order (top to bottom) and are pasted in that
order; each tile after the first is shifted up by `overlap_px` so it
covers the band it shares with its predecessor. The later capture wins
inside the overlap band.
"""

from PIL import Image

from pageshot.models import CompositeImage, Tile


def _to_rgb(img: Image.Image, background=(255, 255, 255)) -> Image.Image:
    # Flatten alpha onto an opaque background
    if img.mode == 'RGBA':
        bg = Image.new('RGB', img.size, background)
        bg.paste(img, mask=img.split()[3])
        return bg
    if img.mode != 'RGB':
        return img.convert('RGB')
    return img


def normalize_widths(images: list[Image.Image]) -> list[Image.Image]:
    """Shrink any image wider than the narrowest one, keeping its aspect ratio."""
    target_width = min(img.width for img in images)
    normalized = []
    for img in images:
        w, h = img.size
        if w > target_width:
            ratio = target_width / w
            img = img.resize((target_width, max(1, int(h * ratio))), Image.LANCZOS)
        normalized.append(img)
    return normalized


def composite_height(heights: list[int], overlap_px: int) -> int:
    """First tile at full height, each later one minus the overlap (never negative)."""
    if not heights:
        raise ValueError("composite_height needs at least one tile")
    return heights[0] + sum(max(0, h - overlap_px) for h in heights[1:])


def paste_positions(heights: list[int], overlap_px: int) -> list[int]:
    """Top edge of every tile on the canvas."""
    positions = []
    cursor_y = 0
    for i, h in enumerate(heights):
        paste_y = 0 if i == 0 else cursor_y - overlap_px
        positions.append(paste_y)
        cursor_y = paste_y + h
    return positions


def stitch_tiles(tiles: list[Tile], overlap_px: int, background: str = "#ffffff") -> CompositeImage:
    """
    Combine an ordered, non-empty tile sequence into one image.

    The canvas is as wide as the narrowest tile. A tile whose real overlap
    with its predecessor is smaller than `overlap_px` (the forced bottom
    tile) is still shifted by the full overlap; the small seam error that
    can cause is accepted.
    """
    if not tiles:
        raise ValueError("stitch_tiles called with an empty tile sequence")

    canvas = Image.new('RGB', (1, 1), background)
    fill = canvas.getpixel((0, 0))

    images = normalize_widths([_to_rgb(t.image, fill) for t in tiles])
    heights = [img.height for img in images]
    width = images[0].width
    height = composite_height(heights, overlap_px)

    canvas = Image.new('RGB', (width, height), fill)
    for img, y in zip(images, paste_positions(heights, overlap_px)):
        canvas.paste(img, (0, y))

    print(f"  [stitch] {len(tiles)} tiles -> {width}x{height}px (overlap {overlap_px}px)")
    return CompositeImage(image=canvas)
