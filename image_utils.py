import base64
import binascii
import io
import logging

import cv2
import imagehash
import numpy as np
from PIL import Image, UnidentifiedImageError

from config import GRID_SIZE, RESIZE_INTERPOLATION, GRAYSCALE_CONVERSION
from errors import DecodeError, DimensionError

logger = logging.getLogger(__name__)


def decode_image(image_bytes: bytes) -> np.ndarray:
    """
    Decode raw file bytes (PNG, JPEG, GIF, ...) into an RGB pixel array.

    The alpha channel, if any, is dropped: only the color channels take
    part in the fingerprint.
    """
    if not image_bytes:
        raise DecodeError("Empty image data")
    try:
        with Image.open(io.BytesIO(image_bytes)) as image:
            image.load()
            width, height = image.size
            if width == 0 or height == 0:
                raise DimensionError(f"Image has degenerate size {width}x{height}")
            rgb = np.array(image.convert("RGB"))
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError, SyntaxError) as exc:
        raise DecodeError(f"Failed to load image: {exc}") from exc

    rgb.flags.writeable = False
    return rgb


def decode_data_url(data_url: str) -> bytes:
    """
    Return the file bytes of a 'data:image/png;base64,...' URL.
    """
    try:
        header, encoded = data_url.split(",", 1)
    except ValueError as exc:
        raise DecodeError("Not a data URL") from exc
    if not header.startswith("data:") or ";base64" not in header:
        raise DecodeError(f"Unsupported data URL header: {header[:40]}")
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecodeError(f"Invalid base64 payload: {exc}") from exc


def normalize(image: np.ndarray, size: int = GRID_SIZE) -> np.ndarray:
    """
    Downsample an RGB image to a size x size grid of luma values.

    Resize happens first and grayscale second, both with the methods pinned
    in config. The returned grid is a fresh read-only uint8 array; nothing
    is shared between calls.
    """
    if image.ndim < 2 or image.shape[0] == 0 or image.shape[1] == 0:
        raise DimensionError(f"Image has degenerate shape {image.shape}")

    resized = cv2.resize(
        np.ascontiguousarray(image),
        (size, size),
        interpolation=getattr(cv2, RESIZE_INTERPOLATION),
    )
    if resized.ndim == 3:
        grid = cv2.cvtColor(resized, getattr(cv2, GRAYSCALE_CONVERSION))
    else:
        grid = resized.copy()

    grid = grid.astype(np.uint8)
    grid.flags.writeable = False
    return grid


def bits_to_hex(bits: str) -> str:
    """Pack a '0'/'1' string into hex, four bits per digit, MSB first."""
    if len(bits) % 4:
        raise ValueError(f"Bit string length {len(bits)} is not a multiple of 4")
    return "".join(
        format(int(bits[i:i + 4], 2), "x") for i in range(0, len(bits), 4)
    )


def average_hash(grid: np.ndarray) -> str:
    """
    Average hash (aHash) of a normalized grid.

    One bit per cell in row-major order: 1 when the cell is >= the grid
    mean, else 0. Ties go to 1, so a uniform grid hashes to all ones.
    """
    values = np.asarray(grid, dtype=np.float64)
    mean = float(values.mean())
    bits = "".join("1" if v >= mean else "0" for v in values.flatten())
    return bits_to_hex(bits)


def normalize_and_hash(image_bytes: bytes) -> str:
    """Fingerprint of an encoded image: decode, normalize, average-hash."""
    fingerprint = average_hash(normalize(decode_image(image_bytes)))
    logger.debug("Fingerprint %s for %d bytes of image data", fingerprint, len(image_bytes))
    return fingerprint


def hamming_distance(fingerprint1: str, fingerprint2: str) -> int:
    """
    Number of differing bits between two hex fingerprints of equal length.

    Only for diagnostics; verification compares fingerprints exactly.
    """
    if len(fingerprint1) != len(fingerprint2):
        raise ValueError("Fingerprints have different lengths")
    return int(imagehash.hex_to_hash(fingerprint1) - imagehash.hex_to_hash(fingerprint2))
