"""
Halftone engine: grayscale RasterImage -> 1-bit BitBitmap.

Three algorithms:
    ordered    - 4x4 Bayer matrix, stateless per pixel (fast path)
    floyd      - Floyd-Steinberg error diffusion (quality path for composites)
    threshold  - single global cutoff, no dithering (logos/text)

All of them write the quantized value (0 or 255) back into the source
image, and return bits where 1 = black.
"""

import base64
import binascii
import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

logger = logging.getLogger(__name__)

BAYER_4X4 = [
    [0, 8, 2, 10],
    [12, 4, 14, 6],
    [3, 11, 1, 9],
    [15, 7, 13, 5],
]

DEFAULT_THRESHOLD = 128


class DitherMode(str, Enum):
    ORDERED = "ordered"
    FLOYD_STEINBERG = "floyd"
    THRESHOLD = "threshold"


@dataclass
class RasterImage:
    width: int
    height: int
    pixels: bytearray

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Invalid raster size {self.width}x{self.height}")
        if len(self.pixels) != self.width * self.height:
            raise ValueError(
                f"Pixel buffer is {len(self.pixels)} bytes, expected {self.width * self.height}"
            )
        if not isinstance(self.pixels, bytearray):
            self.pixels = bytearray(self.pixels)

    @classmethod
    def from_rgba(cls, data: bytes, width: int, height: int) -> "RasterImage":
        """Build from an already-equalized RGBA buffer (R=G=B) by reading the red channel."""
        if len(data) != width * height * 4:
            raise ValueError(f"RGBA buffer is {len(data)} bytes, expected {width * height * 4}")
        return cls(width, height, bytearray(data[0::4]))


@dataclass
class BitBitmap:
    width: int
    height: int
    bits: bytearray

    def __post_init__(self):
        if len(self.bits) != self.width * self.height:
            raise ValueError(
                f"Bitmap buffer is {len(self.bits)} bytes, expected {self.width * self.height}"
            )

    @property
    def black_pixels(self) -> int:
        return sum(self.bits)

    def to_base64(self) -> str:
        return base64.b64encode(bytes(self.bits)).decode("ascii")

    @classmethod
    def from_base64(cls, data: str, width: int, height: int) -> "BitBitmap":
        try:
            raw = base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Bitmap payload is not valid base64: {e}") from e
        # One byte per pixel, 1 = black
        if any(b > 1 for b in raw):
            raise ValueError("Bitmap payload holds values other than 0 and 1")
        return cls(width, height, bytearray(raw))


@dataclass
class DiffusionStats:
    """Bookkeeping for Floyd-Steinberg: how much error was pushed where."""
    quantization_error: float = 0.0
    distributed_error: float = 0.0
    dropped_error: float = 0.0
    clamped_error: float = 0.0


def ordered_dither(image: RasterImage) -> BitBitmap:
    n = len(BAYER_4X4)
    scale = 255 / (n * n)
    width, height = image.width, image.height
    pixels = image.pixels
    bits = bytearray(width * height)

    for y in range(height):
        row = BAYER_4X4[y % n]
        base = y * width
        for x in range(width):
            i = base + x
            # Strict: a pixel exactly on the threshold stays white
            if pixels[i] < row[x % n] * scale:
                bits[i] = 1
                pixels[i] = 0
            else:
                pixels[i] = 255

    return BitBitmap(width, height, bits)


def threshold_dither(image: RasterImage, threshold: int = DEFAULT_THRESHOLD) -> BitBitmap:
    width, height = image.width, image.height
    pixels = image.pixels
    bits = bytearray(width * height)

    for i in range(width * height):
        if pixels[i] < threshold:
            bits[i] = 1
            pixels[i] = 0
        else:
            pixels[i] = 255

    return BitBitmap(width, height, bits)


def floyd_steinberg_dither(
    image: RasterImage,
    threshold: int = DEFAULT_THRESHOLD,
    stats: Optional[DiffusionStats] = None,
) -> BitBitmap:
    """
    Classic Floyd-Steinberg. Rows are processed strictly top to bottom since
    every decision depends on error carried from earlier pixels.

    Error that would land outside the canvas is dropped, and error that
    pushes a pixel past 0 or 255 is clamped away. With a collector passed
    these show up as ``stats.dropped_error`` and ``stats.clamped_error``.
    """
    width, height = image.width, image.height
    pixels = image.pixels
    bits = bytearray(width * height)
    error: List[float] = [0.0] * (width * height)

    # (dx, dy, weight)
    kernel = ((1, 0, 7 / 16), (-1, 1, 3 / 16), (0, 1, 5 / 16), (1, 1, 1 / 16))

    for y in range(height):
        for x in range(width):
            i = y * width + x
            raw = pixels[i] + error[i]
            old = min(max(raw, 0.0), 255.0)

            if old < threshold:
                new = 0
                bits[i] = 1
            else:
                new = 255
            pixels[i] = new

            quant = old - new
            if stats is not None:
                stats.quantization_error += quant
                stats.clamped_error += raw - old
            if quant == 0:
                continue

            for dx, dy, weight in kernel:
                nx, ny = x + dx, y + dy
                share = quant * weight
                if 0 <= nx < width and ny < height:
                    error[ny * width + nx] += share
                    if stats is not None:
                        stats.distributed_error += share
                elif stats is not None:
                    stats.dropped_error += share

    return BitBitmap(width, height, bits)


def dither(
    image: RasterImage,
    mode: DitherMode = DitherMode.ORDERED,
    threshold: int = DEFAULT_THRESHOLD,
    stats: Optional[DiffusionStats] = None,
) -> BitBitmap:
    mode = DitherMode(mode)
    if mode is DitherMode.ORDERED:
        bitmap = ordered_dither(image)
    elif mode is DitherMode.FLOYD_STEINBERG:
        bitmap = floyd_steinberg_dither(image, threshold, stats)
    else:
        bitmap = threshold_dither(image, threshold)

    logger.debug(
        "Dithered %dx%d (%s): %d black pixels",
        bitmap.width, bitmap.height, mode.value, bitmap.black_pixels,
    )
    return bitmap
