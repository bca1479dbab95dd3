"""
Tests for upload-time image compression.
"""
import io
import random

import pytest
from PIL import Image

from services.image_service import (
    MAX_BYTES, MAX_DIMENSION, ImageDecodeError, compress_image, jpeg_filename,
)


def encode(img, fmt="JPEG", **kwargs):
    buf = io.BytesIO()
    img.save(buf, format=fmt, **kwargs)
    return buf.getvalue()


def noisy_image(width, height, seed=7):
    """Random pixels compress badly, which forces the size loop to work."""
    rng = random.Random(seed)
    return Image.frombytes("RGB", (width, height), rng.randbytes(width * height * 3))


class TestCompressImage:

    def test_small_image_keeps_dimensions(self):
        data, media_type = compress_image(encode(Image.new("RGB", (640, 480), "white")))
        assert media_type == "image/jpeg"
        with Image.open(io.BytesIO(data)) as out:
            assert out.format == "JPEG"
            assert out.size == (640, 480)

    def test_long_side_capped(self):
        data, _ = compress_image(encode(Image.new("RGB", (4000, 3000), "white")))
        with Image.open(io.BytesIO(data)) as out:
            assert max(out.size) == MAX_DIMENSION
            assert out.size == (1920, 1440)

    def test_portrait_long_side_capped(self):
        data, _ = compress_image(encode(Image.new("RGB", (1000, 3000), "white")))
        with Image.open(io.BytesIO(data)) as out:
            assert out.size == (640, 1920)

    def test_noisy_image_fits_byte_budget(self):
        data, _ = compress_image(encode(noisy_image(1200, 900), "PNG"))
        assert len(data) <= MAX_BYTES

    def test_quality_floor_then_downscale(self):
        data, _ = compress_image(encode(noisy_image(300, 200), "PNG"), max_bytes=5 * 1024)
        with Image.open(io.BytesIO(data)) as out:
            assert out.size[0] < 300
            assert out.size[1] < 200

    def test_transparent_png_converted(self):
        data, _ = compress_image(encode(Image.new("RGBA", (50, 50), (0, 0, 0, 0)), "PNG"))
        with Image.open(io.BytesIO(data)) as out:
            assert out.mode == "RGB"

    def test_exif_orientation_applied(self):
        img = Image.new("RGB", (200, 100), "white")
        exif = Image.Exif()
        exif[0x0112] = 6  # rotate 90° CW on display
        data, _ = compress_image(encode(img, exif=exif.tobytes()))
        with Image.open(io.BytesIO(data)) as out:
            assert out.size == (100, 200)

    def test_garbage_rejected(self):
        with pytest.raises(ImageDecodeError):
            compress_image(b"definitely not an image")


class TestJpegFilename:

    @pytest.mark.parametrize("name,expected", [
        ("IMG_0001.HEIC", "IMG_0001.jpg"),
        ("scan.png", "scan.jpg"),
        ("receipt", "receipt.jpg"),
        (None, "receipt.jpg"),
        ("", "receipt.jpg"),
    ])
    def test_extension_swapped(self, name, expected):
        assert jpeg_filename(name) == expected
