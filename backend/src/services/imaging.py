"""Image helpers: download generated output and compress it for cover upload."""

import base64
import io
import logging

from PIL import Image

logger = logging.getLogger(__name__)

COVER_DIMENSIONS = 640
JPEG_QUALITY = 40
QUALITY_STEP = 5
MIN_QUALITY = 5
COVER_MAX_BYTES = 192 * 1024


def _encode_jpeg(img: Image.Image, quality: int) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=quality, optimize=True)
    return buf.getvalue()


def compress_for_cover(image_bytes: bytes) -> str:
    """Resize to 640×640, encode as JPEG and return base64 without a data-URI prefix.

    Starts at quality 40 and steps down by 5 until the JPEG is within
    192 KiB. Raises ValueError if even the lowest quality is too large.
    """
    with Image.open(io.BytesIO(image_bytes)) as src:
        resized = src.convert("RGB").resize(
            (COVER_DIMENSIONS, COVER_DIMENSIONS), Image.Resampling.LANCZOS
        )

    quality = JPEG_QUALITY
    while True:
        jpeg = _encode_jpeg(resized, quality)
        if len(jpeg) <= COVER_MAX_BYTES:
            return base64.b64encode(jpeg).decode("ascii")
        if quality <= MIN_QUALITY:
            raise ValueError(
                f"Cannot compress image under {COVER_MAX_BYTES} bytes (got {len(jpeg)})"
            )
        logger.info(
            "JPEG at quality %d is %d bytes (limit %d), reducing", quality, len(jpeg), COVER_MAX_BYTES
        )
        quality = max(quality - QUALITY_STEP, MIN_QUALITY)
