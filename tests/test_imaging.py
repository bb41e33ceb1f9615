import base64
import io
import time

import pytest
from PIL import Image

from booth_printer import imaging
from booth_printer.config import OutputSettings
from booth_printer.errors import ImageDecodeError
from booth_printer.imaging import (
    apply_gamma,
    decode_image,
    flatten,
    load_image,
    prepare,
    render_test_receipt,
    sharpen,
    to_grayscale,
)

from .conftest import make_raster


def png_bytes(img):
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


@pytest.mark.parametrize("size,width,height", [
    ((800, 600), 384, 288),
    ((100, 100), 384, 384),
    ((1000, 1), 384, 1),
    ((384, 50), 384, 50),
])
def test_grayscale_size_keeps_aspect(size, width, height):
    raster = to_grayscale(Image.new("RGB", size, (120, 120, 120)), width)
    assert (raster.width, raster.height) == (width, height)
    assert set(raster.pixels) == {120}


def test_grayscale_rejects_bad_width():
    with pytest.raises(ValueError):
        to_grayscale(Image.new("L", (10, 10)), 0)


def test_transparent_pixels_become_white():
    img = Image.new("RGBA", (4, 4), (0, 0, 0, 0))
    img.putpixel((0, 0), (0, 0, 0, 255))
    flat = flatten(img)
    assert flat.mode == "RGB"
    assert flat.getpixel((1, 1)) == (255, 255, 255)
    assert flat.getpixel((0, 0)) == (0, 0, 0)


def test_opaque_images_pass_through():
    img = Image.new("RGB", (2, 2))
    assert flatten(img) is img


def test_gamma_lut():
    raster = make_raster(3, 1, 0)
    raster.pixels[:] = bytes([0, 128, 255])
    apply_gamma(raster, 2.0)
    assert list(raster.pixels) == [0, 64, 255]


def test_gamma_identity_and_errors():
    raster = make_raster(2, 1, 77)
    apply_gamma(raster, 1)
    assert list(raster.pixels) == [77, 77]
    with pytest.raises(ValueError):
        apply_gamma(raster, 0)


def test_gamma_keeps_pixel_positions():
    raster = make_raster(2, 2, 0)
    raster.pixels[:] = bytes([255, 0, 128, 255])
    apply_gamma(raster, 2.0)
    assert list(raster.pixels) == [255, 0, 64, 255]
    assert isinstance(raster.pixels, bytearray)


def test_sharpen_leaves_flat_areas_alone():
    raster = make_raster(5, 5, 90)
    sharpen(raster, 0.45)
    assert set(raster.pixels) == {90}


def test_sharpen_boosts_edges():
    raster = make_raster(3, 1, 100)
    raster.pixels[1] = 200
    sharpen(raster, 1.0)
    # centre: 200 * 5 - (200 + 200 + 100 + 100) = 400 -> clamped
    assert raster.pixels[1] == 255
    # left edge: 100 * 5 - (100 + 100 + 100 + 200) = 0
    assert raster.pixels[0] == 0


def test_sharpen_zero_is_noop():
    raster = make_raster(3, 1, 100)
    raster.pixels[1] = 200
    sharpen(raster, 0)
    assert list(raster.pixels) == [100, 200, 100]


def test_prepare_applies_settings():
    img = Image.new("L", (10, 5), 128)
    plain = prepare(img, 20, OutputSettings(sharpen=0, gamma=1))
    assert (plain.width, plain.height) == (20, 10)
    assert set(plain.pixels) == {128}
    darker = prepare(img, 20, OutputSettings(sharpen=0, gamma=2.0))
    assert set(darker.pixels) == {64}


def test_decode_sources(tmp_path):
    img = Image.new("RGB", (6, 3), (10, 20, 30))
    data = png_bytes(img)
    path = tmp_path / "strip.png"
    path.write_bytes(data)
    url = "data:image/png;base64," + base64.b64encode(data).decode()

    for source in (data, str(path), path, url):
        assert decode_image(source).size == (6, 3)
    assert decode_image(img) is img


@pytest.mark.parametrize("source", [
    b"definitely not an image",
    "data:image/png,rawdata",
    "data:image/png;base64,@@@@",
])
def test_decode_errors(source):
    with pytest.raises(ImageDecodeError):
        decode_image(source)


def test_decode_missing_file(tmp_path):
    with pytest.raises(ImageDecodeError):
        decode_image(str(tmp_path / "missing.png"))


@pytest.mark.asyncio
async def test_load_image_off_thread():
    img = await load_image(png_bytes(Image.new("L", (4, 4), 0)))
    assert img.size == (4, 4)


@pytest.mark.asyncio
async def test_load_image_timeout(monkeypatch):
    def slow_decode(source):
        time.sleep(0.2)
        return Image.new("L", (4, 4), 0)

    monkeypatch.setattr(imaging, "decode_image", slow_decode)
    with pytest.raises(ImageDecodeError, match="timeout after 0.01 seconds"):
        await imaging.load_image(b"ignored", timeout=0.01)


def test_test_receipt():
    img = render_test_receipt(384)
    assert img.width == 384
    assert img.height > 48
    assert img.getpixel((0, 0)) == 0
