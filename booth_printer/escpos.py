"""
ESC/POS raster encoder.

Stream layout:
    [1B 40]                         initialize
    [1B 61 01]                      center alignment
    per 8-row block:
        [1B 2A 00] [wL] [wH]        ESC * m=0 (8-dot single density), width LE
        [col 0] ... [col w-1]       one byte per column, bit 7 = top row
        [0A]                        flush the block
    [0A 0A 0A]                      feed
    [1D 56 00]                      cut
"""

import logging
from dataclasses import dataclass

from .halftone import BitBitmap

logger = logging.getLogger(__name__)

ESC_INIT = b"\x1B\x40"
ESC_ALIGN_CENTER = b"\x1B\x61\x01"
ESC_RASTER_8DOT = b"\x1B\x2A\x00"
LF = b"\x0A"
FEED = b"\x0A\x0A\x0A"
GS_CUT = b"\x1D\x56\x00"

BLOCK_ROWS = 8
MAX_WIDTH = 0xFFFF


@dataclass(frozen=True)
class CommandSet:
    init: bytes = ESC_INIT
    center: bytes = ESC_ALIGN_CENTER
    raster: bytes = ESC_RASTER_8DOT
    feed: bytes = FEED
    cut: bytes = GS_CUT


DEFAULT_COMMANDS = CommandSet()


def block_length(width: int, commands: CommandSet = DEFAULT_COMMANDS) -> int:
    return len(commands.raster) + 2 + width + len(LF)


def encoded_length(width: int, height: int, commands: CommandSet = DEFAULT_COMMANDS) -> int:
    blocks = (height + BLOCK_ROWS - 1) // BLOCK_ROWS
    return (
        len(commands.init)
        + len(commands.center)
        + blocks * block_length(width, commands)
        + len(commands.feed)
        + len(commands.cut)
    )


def pack_column(bits: bytearray, width: int, height: int, x: int, y: int) -> int:
    """Pack rows y..y+7 of column x, MSB = row y. Rows past the bottom are white."""
    value = 0
    for bit in range(BLOCK_ROWS):
        row = y + bit
        if row >= height:
            break
        if bits[row * width + x]:
            value |= 0x80 >> bit
    return value


def encode_block(bitmap: BitBitmap, y: int, commands: CommandSet = DEFAULT_COMMANDS) -> bytes:
    width = bitmap.width
    out = bytearray(commands.raster)
    out.append(width & 0xFF)
    out.append((width >> 8) & 0xFF)
    for x in range(width):
        out.append(pack_column(bitmap.bits, width, bitmap.height, x, y))
    out += LF
    return bytes(out)


def encode(bitmap: BitBitmap, commands: CommandSet = DEFAULT_COMMANDS) -> bytes:
    if not 0 < bitmap.width <= MAX_WIDTH:
        raise ValueError(f"Bitmap width {bitmap.width} does not fit the raster width field")

    out = bytearray()
    out += commands.init
    out += commands.center
    for y in range(0, bitmap.height, BLOCK_ROWS):
        out += encode_block(bitmap, y, commands)
    out += commands.feed
    out += commands.cut

    logger.debug(
        "Encoded %dx%d bitmap into %d bytes (%d blocks)",
        bitmap.width, bitmap.height, len(out),
        (bitmap.height + BLOCK_ROWS - 1) // BLOCK_ROWS,
    )
    return bytes(out)
