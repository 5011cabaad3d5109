"""DCT-based perceptual hashing for cover images."""

import io
import logging

import numpy as np
from PIL import Image

logger = logging.getLogger(__name__)

HASH_SIZE = 32
LOW_FREQ_SIZE = 8
# Two covers whose hashes differ by at most this many bits are the same cover.
PHASH_MATCH_THRESHOLD = 10


def _dct_matrix(n: int) -> np.ndarray:
    """Orthonormal DCT-II basis: row u holds C(u)·cos((2x+1)uπ / 2n)."""
    x = np.arange(n)
    u = x.reshape(-1, 1)
    matrix = np.cos((2 * x + 1) * u * np.pi / (2 * n))
    matrix[0, :] *= np.sqrt(1 / n)
    matrix[1:, :] *= np.sqrt(2 / n)
    return matrix


_DCT = _dct_matrix(HASH_SIZE)


def _grayscale_pixels(image_bytes: bytes) -> np.ndarray:
    with Image.open(io.BytesIO(image_bytes)) as img:
        gray = img.convert("L").resize((HASH_SIZE, HASH_SIZE), Image.Resampling.LANCZOS)
        return np.asarray(gray, dtype=np.float64)


def compute_perceptual_hash(image_bytes: bytes) -> str:
    """Return the 64-bit pHash of *image_bytes* as 16 lowercase hex characters.

    The image is reduced to a 32×32 grayscale grid, transformed with a 2D
    DCT-II and the top-left 8×8 block is kept. The DC coefficient is excluded
    from the median and its bit is always 0; every other bit is 1 when its
    coefficient is at or above the median of the remaining 63.

    Raises PIL.UnidentifiedImageError if the bytes are not a decodable image.
    """
    pixels = _grayscale_pixels(image_bytes)
    coefficients = _DCT @ pixels @ _DCT.T
    block = coefficients[:LOW_FREQ_SIZE, :LOW_FREQ_SIZE].flatten()
    median = float(np.median(block[1:]))

    value = 0
    for i, coef in enumerate(block):
        bit = 1 if i > 0 and coef >= median else 0
        value = (value << 1) | bit
    return f"{value:016x}"


def hamming_distance(a: str, b: str) -> int:
    """Count the differing bits between two 16-hex-character hashes."""
    if len(a) != 16 or len(b) != 16:
        raise ValueError(f"pHash must be 16 hex characters, got {len(a)} and {len(b)}")
    return (int(a, 16) ^ int(b, 16)).bit_count()


def is_same_cover(a: str, b: str, threshold: int = PHASH_MATCH_THRESHOLD) -> bool:
    return hamming_distance(a, b) <= threshold
