"""
Image Service — shrinks receipt photos before they are stored.

Phone photos are routinely 4-12 MB.  Everything that reaches the image store
is re-encoded as JPEG with the long side capped at 1920px and the file
squeezed under ~0.8 MB, which keeps uploads fast and stays well within the
vision model's input limits.
"""
import io
import logging

from PIL import Image, ImageOps
from pillow_heif import register_heif_opener

logger = logging.getLogger("hearthbook.image")

# HEIC/HEIF straight from iPhones
register_heif_opener()

MAX_DIMENSION = 1920
MAX_BYTES = 800 * 1024
START_QUALITY = 92
MIN_QUALITY = 50
QUALITY_STEP = 8
DOWNSCALE_FACTOR = 0.85
MAX_DOWNSCALES = 6


class ImageDecodeError(ValueError):
    """The uploaded bytes are not an image Pillow can open."""


def _encode_jpeg(img: "Image.Image", quality: int) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=quality, optimize=True)
    return buf.getvalue()


def _fit(img: "Image.Image", max_dim: int) -> "Image.Image":
    """Scale down so the long side is at most max_dim, keeping aspect ratio."""
    w, h = img.size
    long_side = max(w, h)
    if long_side <= max_dim:
        return img
    scale = max_dim / long_side
    new_size = (max(1, round(w * scale)), max(1, round(h * scale)))
    logger.debug("Resized image %d×%d → %d×%d", w, h, *new_size)
    return img.resize(new_size, Image.LANCZOS)


def compress_image(
    image_bytes: bytes,
    max_dimension: int = MAX_DIMENSION,
    max_bytes: int = MAX_BYTES,
) -> tuple[bytes, str]:
    """
    Normalise orientation, cap the long side, and lower JPEG quality (then
    size) until the result fits in max_bytes.
    Returns (jpeg_bytes, "image/jpeg").  Raises ImageDecodeError for
    unreadable input.
    """
    try:
        img = Image.open(io.BytesIO(image_bytes))
        img = ImageOps.exif_transpose(img)
    except Exception as e:
        raise ImageDecodeError(f"Cannot open image: {e}") from e

    if img.mode not in ("RGB", "L"):
        img = img.convert("RGB")

    img = _fit(img, max_dimension)

    quality = START_QUALITY
    data = _encode_jpeg(img, quality)
    while len(data) > max_bytes and quality - QUALITY_STEP >= MIN_QUALITY:
        quality -= QUALITY_STEP
        data = _encode_jpeg(img, quality)

    # Quality floor reached, shrink dimensions
    for _ in range(MAX_DOWNSCALES):
        if len(data) <= max_bytes:
            break
        w, h = img.size
        img = img.resize(
            (max(1, int(w * DOWNSCALE_FACTOR)), max(1, int(h * DOWNSCALE_FACTOR))),
            Image.LANCZOS,
        )
        data = _encode_jpeg(img, quality)

    logger.debug("Image size: %d KB → %d KB (q=%d)",
                 len(image_bytes) // 1024, len(data) // 1024, quality)
    return data, "image/jpeg"


def jpeg_filename(filename: str | None) -> str:
    """Swap the extension for .jpg since compress_image always re-encodes."""
    stem = (filename or "receipt").rsplit(".", 1)[0] or "receipt"
    return f"{stem}.jpg"
