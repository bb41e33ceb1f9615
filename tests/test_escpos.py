import pytest

from booth_printer import escpos
from booth_printer.escpos import CommandSet, encode, encoded_length
from booth_printer.halftone import BitBitmap

from .conftest import make_bitmap

HEADER = b"\x1b\x40\x1b\x61\x01"
TRAILER = b"\x0a\x0a\x0a\x1d\x56\x00"


@pytest.mark.parametrize("width,height", [(1, 1), (8, 8), (384, 1), (384, 9), (576, 24), (300, 17)])
def test_length_formula(width, height):
    data = encode(make_bitmap(width, height))
    blocks = (height + 7) // 8
    assert len(data) == 5 + blocks * (3 + 2 + width + 1) + 6
    assert len(data) == encoded_length(width, height)


def test_stream_framing():
    data = encode(make_bitmap(4, 8))
    assert data.startswith(HEADER)
    assert data.endswith(TRAILER)
    assert data[5:8] == b"\x1b\x2a\x00"
    assert data[-7] == 0x0A  # block terminator


def test_width_is_little_endian():
    data = encode(make_bitmap(384, 1))
    assert data[8:10] == bytes([0x80, 0x01])
    data = encode(make_bitmap(0x1234, 1))
    assert data[8:10] == bytes([0x34, 0x12])


def test_top_row_is_msb():
    bits = bytearray(2 * 8)
    bits[0] = 1          # (0, 0)
    bits[7 * 2 + 1] = 1  # (1, 7)
    data = encode(BitBitmap(2, 8, bits))
    assert data[10:12] == bytes([0x80, 0x01])


def test_checkerboard():
    width, height = 8, 8
    bits = bytearray((x + y) % 2 for y in range(height) for x in range(width))
    data = encode(BitBitmap(width, height, bits))
    columns = data[10:10 + width]
    assert list(columns) == [0x55, 0xAA] * 4


def test_rows_past_bottom_are_white():
    data = encode(make_bitmap(3, 10, fill=1))
    first_block = data[5:5 + 3 + 2 + 3 + 1]
    second_block = data[5 + 9:5 + 18]
    assert first_block[5:8] == b"\xff\xff\xff"
    # Only rows 8 and 9 exist in the second block
    assert second_block[5:8] == b"\xc0\xc0\xc0"


def test_width_out_of_range():
    with pytest.raises(ValueError):
        encode(make_bitmap(0x10000, 1))


def test_custom_command_set():
    commands = CommandSet(center=b"", cut=b"\x1d\x56\x41\x00")
    data = encode(make_bitmap(2, 1), commands)
    assert data.startswith(b"\x1b\x40\x1b\x2a\x00")
    assert data.endswith(b"\x0a\x0a\x0a\x1d\x56\x41\x00")
    assert len(data) == encoded_length(2, 1, commands)


def test_pack_column_partial_block():
    bits = bytearray([1, 1, 1])
    assert escpos.pack_column(bits, 1, 3, 0, 0) == 0xE0
