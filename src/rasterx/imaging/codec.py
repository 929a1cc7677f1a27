"""Pillow-backed raster decoding and encoding."""

from __future__ import annotations

import logging
from typing import IO

import numpy as np
from PIL import Image, UnidentifiedImageError

from rasterx.errors import EncodeUnsupportedError, InvalidImageError
from rasterx.imaging.raster import ImageRaster

logger = logging.getLogger(__name__)

FALLBACK_FORMAT: str = "png"

_DECODE_ERRORS = (UnidentifiedImageError, OSError, SyntaxError, ValueError, Image.DecompressionBombError)
_ENCODE_ERRORS = (KeyError, OSError, ValueError)


def decode(stream: IO[bytes], fmt: str) -> ImageRaster:
    """Decode ``stream`` with the ``fmt`` decoder into an RGB or RGBA raster.

    Raises:
        InvalidImageError: If the bytes do not decode to a usable raster.
    """
    try:
        with Image.open(stream, formats=[fmt.upper()]) as image:
            image.load()
            has_alpha = image.has_transparency_data
            converted = image.convert("RGBA" if has_alpha else "RGB")
    except _DECODE_ERRORS as exc:
        raise InvalidImageError(f"Failed to decode {fmt} image: {exc}") from exc

    pixels = np.array(converted, dtype=np.uint8)
    if pixels.ndim != 3 or pixels.shape[0] == 0 or pixels.shape[1] == 0:
        raise InvalidImageError(f"Decoded {fmt} image has no pixels")
    return ImageRaster(pixels=pixels, has_alpha=has_alpha)


def encode(raster: ImageRaster, fmt: str, fp: IO[bytes]) -> None:
    """Encode ``raster`` as ``fmt`` into ``fp``.

    On failure ``fp`` is truncated back to its starting position so the caller
    can retry with another format.

    Raises:
        EncodeUnsupportedError: If the encoder rejects the format or raster.
    """
    start = fp.tell()
    image = Image.fromarray(raster.pixels)
    try:
        image.save(fp, format=fmt.upper())
    except _ENCODE_ERRORS as exc:
        fp.seek(start)
        fp.truncate()
        raise EncodeUnsupportedError(f"Cannot encode {raster.mode} raster as {fmt}: {exc}") from exc


def content_type_for(fmt: str) -> str:
    """Return the MIME type Pillow associates with ``fmt``."""
    Image.init()
    return Image.MIME.get(fmt.upper(), "application/octet-stream")
