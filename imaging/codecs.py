"""
Codec registry — maps content-type strings to a decode/encode pair.

When a worker fetches a raw object it knows its content-type ("image/png",
"image/jpeg", ...) but needs the Pillow format that can read and write it.
This registry does that lookup.

The set is closed: a content-type that is not listed here is rejected with
UnsupportedFormatError, it is never handed to a "guess the format" decoder.
To add a format, add one entry to _FORMATS. No other code needs to change.
"""

from dataclasses import dataclass
from typing import BinaryIO, Callable

from PIL import Image, UnidentifiedImageError

from models.errors import DecodeError, EncodeError, UnsupportedFormatError


@dataclass(frozen=True)
class CodecPair:
    """Decode/encode functions for one Pillow format."""
    format: str
    decode: Callable[[BinaryIO], Image.Image]
    encode: Callable[[Image.Image, BinaryIO], None]


def _decoder(fmt: str) -> Callable[[BinaryIO], Image.Image]:
    def decode(stream: BinaryIO) -> Image.Image:
        try:
            image = Image.open(stream, formats=[fmt])
            # Image.open is lazy; load() forces the full decode so
            # corrupt pixel data fails here and not halfway through encode.
            image.load()
        except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
            raise DecodeError(f"Cannot decode {fmt} image: {e}") from e
        return image
    return decode


def _encoder(fmt: str) -> Callable[[Image.Image, BinaryIO], None]:
    def encode(image: Image.Image, sink: BinaryIO) -> None:
        try:
            image.save(sink, format=fmt)
        except (OSError, KeyError, ValueError) as e:
            raise EncodeError(f"Cannot encode image as {fmt}: {e}") from e
    return encode


def _pair(fmt: str) -> CodecPair:
    return CodecPair(format=fmt, decode=_decoder(fmt), encode=_encoder(fmt))


# content-type → Pillow format
_FORMATS: dict[str, str] = {
    "image/jpeg": "JPEG",
    "image/jpg": "JPEG",
    "image/png": "PNG",
    "image/gif": "GIF",
    "image/bmp": "BMP",
    "image/x-ms-bmp": "BMP",
    "image/tiff": "TIFF",
    "image/tif": "TIFF",
}

# Each pair is built once and reused (they're stateless)
_REGISTRY: dict[str, CodecPair] = {}


def _register_defaults() -> None:
    pairs: dict[str, CodecPair] = {}
    for content_type, fmt in _FORMATS.items():
        if fmt not in pairs:
            pairs[fmt] = _pair(fmt)
        _REGISTRY[content_type] = pairs[fmt]


_register_defaults()


def normalize_content_type(content_type: str) -> str:
    """'Image/PNG; charset=binary' → 'image/png'"""
    return (content_type or "").split(";", 1)[0].strip().lower()


def lookup(content_type: str) -> CodecPair:
    """Look up a codec pair by content-type. Raises UnsupportedFormatError if unknown."""
    pair = _REGISTRY.get(normalize_content_type(content_type))
    if pair is None:
        raise UnsupportedFormatError(
            f"Unsupported content type: '{content_type}'. Available: {supported_content_types()}"
        )
    return pair


def supported_content_types() -> list[str]:
    return sorted(_REGISTRY)
