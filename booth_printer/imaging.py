"""
Image preprocessing for the thermal printer.

Takes whatever the booth hands us (file path, raw bytes or a data: URL),
flattens it onto white, converts to grayscale at the printer's pixel width
and optionally sharpens / gamma-corrects before dithering.
"""

import asyncio
import base64
import binascii
import io
import logging
import os
from typing import Optional, Union

from PIL import Image, ImageDraw, ImageFont, UnidentifiedImageError

from .config import DEFAULT_PRINT_WIDTH, IMAGE_LOAD_TIMEOUT, OutputSettings
from .errors import ImageDecodeError
from .halftone import RasterImage

logger = logging.getLogger(__name__)

ImageSource = Union[str, bytes, bytearray, os.PathLike, Image.Image]


def decode_image(source: ImageSource) -> Image.Image:
    if isinstance(source, Image.Image):
        return source

    try:
        if isinstance(source, (bytes, bytearray)):
            img = Image.open(io.BytesIO(source))
        elif isinstance(source, str) and source.startswith("data:"):
            header, sep, payload = source.partition(",")
            if not sep or not header.endswith(";base64"):
                raise ImageDecodeError("Only base64 data URLs are supported")
            img = Image.open(io.BytesIO(base64.b64decode(payload)))
        else:
            img = Image.open(source)
        img.load()
    except ImageDecodeError:
        raise
    except (OSError, UnidentifiedImageError, binascii.Error, ValueError) as e:
        raise ImageDecodeError(f"Failed to load image: {e}") from e
    return img


async def load_image(source: ImageSource, timeout: float = IMAGE_LOAD_TIMEOUT) -> Image.Image:
    try:
        return await asyncio.wait_for(asyncio.to_thread(decode_image, source), timeout)
    except asyncio.TimeoutError as e:
        raise ImageDecodeError(f"Image conversion timeout after {timeout:g} seconds") from e


def flatten(img: Image.Image) -> Image.Image:
    """Composite any transparency onto white; transparent areas must not print."""
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        img = img.convert("RGBA")
        background = Image.new("RGBA", img.size, (255, 255, 255, 255))
        return Image.alpha_composite(background, img).convert("RGB")
    return img


def to_grayscale(img: Image.Image, width: int = DEFAULT_PRINT_WIDTH) -> RasterImage:
    if width <= 0:
        raise ValueError(f"Target width must be positive, got {width}")

    img = flatten(img).convert("L")
    height = max(1, (img.height * width) // img.width)
    if img.size != (width, height):
        # Nearest neighbour: smoothing blurs edges that should stay crisp on paper
        img = img.resize((width, height), Image.Resampling.NEAREST)
    return RasterImage(width, height, bytearray(img.tobytes()))


def sharpen(raster: RasterImage, amount: float) -> None:
    """3x3 unsharp-style kernel, edge pixels sample the clamped border."""
    s = min(max(amount, 0.0), 1.0)
    if s <= 0:
        return

    width, height = raster.width, raster.height
    src = bytes(raster.pixels)
    dst = raster.pixels
    centre = 1 + 4 * s

    for y in range(height):
        up = max(y - 1, 0) * width
        row = y * width
        down = min(y + 1, height - 1) * width
        for x in range(width):
            left = max(x - 1, 0)
            right = min(x + 1, width - 1)
            value = (
                src[row + x] * centre
                - s * (src[up + x] + src[down + x] + src[row + left] + src[row + right])
            )
            dst[row + x] = min(255, max(0, int(value + 0.5)))


def apply_gamma(raster: RasterImage, gamma: float) -> None:
    if gamma == 1:
        return
    if gamma <= 0:
        raise ValueError(f"Gamma must be positive, got {gamma}")
    lut = [min(255, int(((v / 255) ** gamma) * 255 + 0.5)) for v in range(256)]
    img = Image.frombytes("L", (raster.width, raster.height), bytes(raster.pixels))
    raster.pixels[:] = img.point(lut).tobytes()


def prepare(
    img: Image.Image,
    width: Optional[int] = None,
    settings: Optional[OutputSettings] = None,
) -> RasterImage:
    settings = settings or OutputSettings()
    raster = to_grayscale(img, width or settings.width)
    if settings.sharpen > 0:
        sharpen(raster, settings.sharpen)
    if settings.gamma != 1:
        apply_gamma(raster, settings.gamma)
    logger.debug(
        "Prepared %dx%d raster (sharpen=%s, gamma=%s)",
        raster.width, raster.height, settings.sharpen, settings.gamma,
    )
    return raster


def render_test_receipt(width: int = DEFAULT_PRINT_WIDTH) -> Image.Image:
    """A small receipt with text and a gradient bar, for checking a fresh printer."""
    try:
        title_font = ImageFont.truetype("DejaVuSans-Bold.ttf", 32)
        font = ImageFont.truetype("DejaVuSans.ttf", 20)
    except IOError:
        title_font = font = ImageFont.load_default()

    lines = [
        ("PHOTO BOOTH", title_font),
        ("Printer test", font),
        (f"{width} dots wide", font),
        ("-" * 24, font),
        ("Thank you!", font),
    ]

    dummy = ImageDraw.Draw(Image.new("L", (1, 1)))
    heights = []
    for text, f in lines:
        bbox = dummy.textbbox((0, 0), text, font=f)
        heights.append(bbox[3] - bbox[1] + 12)
    gradient_h = 48
    height = sum(heights) + gradient_h + 40

    img = Image.new("L", (width, height), color=255)
    draw = ImageDraw.Draw(img)
    y = 10
    for (text, f), h in zip(lines, heights):
        bbox = draw.textbbox((0, 0), text, font=f)
        x = (width - (bbox[2] - bbox[0])) // 2
        draw.text((x, y), text, font=f, fill=0)
        y += h

    y += 10
    for x in range(width):
        shade = int(255 * x / max(width - 1, 1))
        draw.line([(x, y), (x, y + gradient_h - 1)], fill=shade)
    draw.rectangle([0, 0, width - 1, height - 1], outline=0, width=2)
    return img
