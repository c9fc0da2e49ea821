"""
Transcode engine — decode, downscale by an integer factor, re-encode.

This is the most tangible step of the pipeline: a raw upload goes in,
a smaller copy in the same format comes out.

    decode  → full in-memory image (registry decoder for the content-type)
    scale   → floor(width / k) x floor(height / k), nearest-neighbour
    encode  → same format, default encoder settings, written to `sink`

The output is written to a file-like `sink` as the encoder produces it.
The worker passes the write end of a StreamingBridge pipe, so the encoded
image is never held in memory as a whole.

Nearest-neighbour: every destination pixel copies exactly one source pixel
(no averaging, no anti-aliasing). A 200x100 image with k=2 becomes 100x50.
"""

import logging
from typing import BinaryIO

from PIL import Image

from imaging.codecs import lookup
from models.errors import EncodeError

logger = logging.getLogger(__name__)


def scaled_size(size: tuple[int, int], k: int) -> tuple[int, int]:
    if k < 1:
        raise ValueError(f"Scale factor must be >= 1, got {k}")
    width, height = size
    return width // k, height // k


def downscale(image: Image.Image, k: int) -> Image.Image:
    """Nearest-neighbour resample to floor(w/k) x floor(h/k)."""
    width, height = scaled_size(image.size, k)
    if width == 0 or height == 0:
        raise EncodeError(
            f"Image of size {image.size[0]}x{image.size[1]} is too small to downscale by {k}"
        )
    return image.resize((width, height), resample=Image.Resampling.NEAREST)


def transcode(source: BinaryIO, content_type: str, k: int, sink: BinaryIO) -> tuple[int, int]:
    """
    Decode `source`, downscale by `k`, encode into `sink`.

    Args:
        source: readable stream with the raw image bytes
        content_type: the raw object's content-type, picks the codec pair
        k: integer divisor (already defaulted by the caller)
        sink: writable stream receiving the encoded bytes

    Returns:
        (width, height) of the encoded image

    Raises:
        UnsupportedFormatError, DecodeError or EncodeError (never swallowed).
    """
    codec = lookup(content_type)

    src = codec.decode(source)
    original_size = src.size
    try:
        dst = downscale(src, k)
    finally:
        src.close()

    with dst:
        codec.encode(dst, sink)
        logger.debug(
            f"Transcoded {codec.format} {original_size[0]}x{original_size[1]} "
            f"→ {dst.size[0]}x{dst.size[1]} (k={k})"
        )
        return dst.size
