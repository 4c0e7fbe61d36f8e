"""Watermark compositing.

Implements:
 - Decoding of the source photo and the logo (EXIF orientation applied)
 - Three placement modes: tiled brick pattern, centered, bottom-right corner
 - Alpha blending of the logo at the mode's opacity
 - JPEG encoding of the result

Everything here is pure Pillow work on its inputs, so it can run for several
images at once (see ``composite_async``).
"""

from __future__ import annotations

import asyncio
import io
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from PIL import Image, ImageOps

from app_logging import get_logger

logger = get_logger("compositor")

# ---------------------------- Configuration ---------------------------- #
TILE_WIDTH_RATIO = 0.15
TILE_SPACING_X = 2.0  # times the tile width
TILE_SPACING_Y = 1.5  # times the tile height
TILE_ANGLE_DEG = -30.0  # screen coordinates (y down), i.e. 30 deg counter-clockwise
CENTER_WIDTH_RATIO = 0.25
CORNER_WIDTH_RATIO = 0.45
CORNER_INSET_RATIO = 0.01
JPEG_QUALITY = 90


class WatermarkMode(str, Enum):
    TILED = "tiled"
    CENTERED = "centered"
    CORNER_BOTTOM_RIGHT = "corner"

    @property
    def label(self) -> str:
        return {
            WatermarkMode.TILED: "Mosaïque / Tiled",
            WatermarkMode.CENTERED: "Centré / Centered",
            WatermarkMode.CORNER_BOTTOM_RIGHT: "Coin bas droit / Bottom-right corner",
        }[self]


DEFAULT_OPACITY: Dict[WatermarkMode, float] = {
    WatermarkMode.TILED: 0.85,
    WatermarkMode.CENTERED: 0.30,
    WatermarkMode.CORNER_BOTTOM_RIGHT: 1.0,
}


# ---------------------------- Errors ---------------------------- #
class WatermarkError(Exception):
    """Base class for compositing failures."""


class DecodeError(WatermarkError):
    """The source photo or the watermark asset could not be loaded."""


class EncodeError(WatermarkError):
    """The composited surface could not be encoded as JPEG."""


# ---------------------------- Data Models ---------------------------- #
@dataclass(frozen=True)
class WatermarkConfig:
    mode: WatermarkMode = WatermarkMode.CENTERED
    logo: Optional[bytes] = field(default=None, repr=False)
    # Optional separate asset for the centered mode (lighter logo, usually)
    centered_logo: Optional[bytes] = field(default=None, repr=False)
    opacity: Optional[float] = None  # None -> DEFAULT_OPACITY[mode]

    def __post_init__(self) -> None:
        object.__setattr__(self, "mode", WatermarkMode(self.mode))
        if self.opacity is not None and not 0.0 <= self.opacity <= 1.0:
            raise ValueError(f"opacity must be within [0, 1], got {self.opacity!r}")

    @property
    def effective_opacity(self) -> float:
        if self.opacity is not None:
            return self.opacity
        return DEFAULT_OPACITY[self.mode]

    def asset_for(self, mode: Optional[WatermarkMode] = None) -> bytes:
        mode = WatermarkMode(mode or self.mode)
        if mode is WatermarkMode.CENTERED and self.centered_logo:
            return self.centered_logo
        if not self.logo:
            raise DecodeError("no watermark asset configured")
        return self.logo


@dataclass(frozen=True)
class Placement:
    """Where one copy of the logo lands, before rotation (floats, image pixels)."""

    left: float
    top: float
    width: float
    height: float
    angle: float = 0.0

    @property
    def right(self) -> float:
        return self.left + self.width

    @property
    def bottom(self) -> float:
        return self.top + self.height

    @property
    def center(self) -> Tuple[float, float]:
        return (self.left + self.width / 2.0, self.top + self.height / 2.0)


# ---------------------------- Image Utilities ---------------------------- #
def load_image_bytes(data: bytes, mode: str = "RGBA") -> Image.Image:
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
        img = ImageOps.exif_transpose(img)
        return img.convert(mode)
    except (OSError, ValueError, SyntaxError, Image.DecompressionBombError) as e:
        raise DecodeError(f"cannot decode image: {e}") from e


def encode_jpeg(img: Image.Image, quality: int = JPEG_QUALITY) -> bytes:
    buf = io.BytesIO()
    try:
        img.convert("RGB").save(buf, format="JPEG", quality=quality)
    except (OSError, ValueError) as e:
        raise EncodeError(f"cannot encode JPEG: {e}") from e
    return buf.getvalue()


def apply_opacity(img: Image.Image, opacity: float) -> Image.Image:
    if img.mode != "RGBA":
        img = img.convert("RGBA")
    factor = max(0.0, min(1.0, opacity))
    if factor >= 1.0:
        return img
    alpha = img.split()[3].point(lambda p: int(p * factor))
    img.putalpha(alpha)
    return img


# ---------------------------- Placement Geometry ---------------------------- #
def scaled_size(
    image_width: float, logo_size: Tuple[int, int], width_ratio: float
) -> Tuple[float, float]:
    """Logo size at ``width_ratio`` of the image width, aspect ratio kept."""
    lw, lh = logo_size
    if lw <= 0 or lh <= 0:
        raise DecodeError(f"invalid watermark size {logo_size}")
    w = image_width * width_ratio
    return w, w * lh / lw


def placements(
    image_size: Tuple[int, int], logo_size: Tuple[int, int], mode: WatermarkMode
) -> List[Placement]:
    W, H = image_size
    mode = WatermarkMode(mode)

    if mode is WatermarkMode.CENTERED:
        w, h = scaled_size(W, logo_size, CENTER_WIDTH_RATIO)
        return [Placement((W - w) / 2.0, (H - h) / 2.0, w, h)]

    if mode is WatermarkMode.CORNER_BOTTOM_RIGHT:
        w, h = scaled_size(W, logo_size, CORNER_WIDTH_RATIO)
        return [Placement(W - w - W * CORNER_INSET_RATIO, H - h, w, h)]

    # Tiled brick pattern. The grid starts and ends one full step outside the
    # image so the rotated tiles still cover every corner.
    w, h = scaled_size(W, logo_size, TILE_WIDTH_RATIO)
    step_x = max(w * TILE_SPACING_X, 1.0)
    step_y = max(h * TILE_SPACING_Y, 1.0)
    out: List[Placement] = []
    row = 0
    y = -step_y
    while y < H + step_y:
        x = -step_x + (step_x / 2.0 if row % 2 else 0.0)
        while x < W + step_x:
            out.append(Placement(x, y, w, h, TILE_ANGLE_DEG))
            x += step_x
        y += step_y
        row += 1
    return out


# ---------------------------- Watermark Rendering ---------------------------- #
def _prepare_tile(
    logo: Image.Image, size: Tuple[int, int], angle: float, opacity: float
) -> Image.Image:
    tile = logo.resize(size, Image.Resampling.LANCZOS)
    tile = apply_opacity(tile, opacity)
    if angle % 360 != 0:
        # Pillow rotates counter-clockwise for positive angles
        tile = tile.rotate(-angle, resample=Image.Resampling.BICUBIC, expand=True)
    return tile


def build_watermark_layer(
    image_size: Tuple[int, int],
    logo: Image.Image,
    mode: WatermarkMode,
    opacity: float,
) -> Image.Image:
    """Return a transparent RGBA layer of ``image_size`` carrying every logo copy."""
    W, H = image_size
    logo = logo.convert("RGBA")
    cache: Dict[Tuple[int, int, float], Image.Image] = {}
    items = []
    for p in placements(image_size, logo.size, mode):
        if p.angle:
            size = (max(1, round(p.width)), max(1, round(p.height)))
        else:
            # Round edges rather than sizes so flush edges stay exact
            size = (
                max(1, round(p.right) - round(p.left)),
                max(1, round(p.bottom) - round(p.top)),
            )
        key = (size[0], size[1], p.angle)
        if key not in cache:
            cache[key] = _prepare_tile(logo, size, p.angle, opacity)
        tile = cache[key]
        if p.angle:
            cx, cy = p.center
            x = math.floor(cx - tile.width / 2.0)
            y = math.floor(cy - tile.height / 2.0)
        else:
            x, y = round(p.left), round(p.top)
        items.append((tile, x, y))

    if not items:
        return Image.new("RGBA", (W, H), (0, 0, 0, 0))

    # alpha_composite refuses negative offsets: draw on a padded layer, then crop
    ox = max(0, -min(x for _, x, _ in items))
    oy = max(0, -min(y for _, _, y in items))
    lw = max(W, max(x + t.width for t, x, _ in items)) + ox
    lh = max(H, max(y + t.height for t, _, y in items)) + oy
    layer = Image.new("RGBA", (lw, lh), (0, 0, 0, 0))
    for tile, x, y in items:
        layer.alpha_composite(tile, (x + ox, y + oy))
    return layer.crop((ox, oy, ox + W, oy + H))


def render_watermark(
    base: Image.Image,
    logo: Image.Image,
    mode: WatermarkMode,
    opacity: Optional[float] = None,
) -> Image.Image:
    mode = WatermarkMode(mode)
    if opacity is None:
        opacity = DEFAULT_OPACITY[mode]
    out = base.convert("RGBA")
    layer = build_watermark_layer(out.size, logo, mode, opacity)
    out.alpha_composite(layer)
    return out


def composite(source: Union[bytes, Image.Image], config: WatermarkConfig) -> bytes:
    """Watermark one photo and return it as JPEG bytes.

    The output keeps the source's pixel dimensions. Raises DecodeError when the
    photo or the logo cannot be loaded and EncodeError when JPEG encoding fails.
    """
    if isinstance(source, Image.Image):
        base = source.convert("RGBA")
    else:
        base = load_image_bytes(source)
    logo = load_image_bytes(config.asset_for())
    out = render_watermark(base, logo, config.mode, config.effective_opacity)
    data = encode_jpeg(out)
    logger.debug(
        "composited %dx%d image (%s, %d bytes)", base.width, base.height, config.mode.value, len(data)
    )
    return data


async def decode_image_async(data: bytes) -> Image.Image:
    return await asyncio.to_thread(load_image_bytes, data)


async def composite_async(source: Union[bytes, Image.Image], config: WatermarkConfig) -> bytes:
    return await asyncio.to_thread(composite, source, config)
