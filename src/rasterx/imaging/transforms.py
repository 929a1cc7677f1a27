"""Pixel transforms applied by the pipeline.

Each transform is a pure ``ImageRaster -> ImageRaster`` function with fixed
parameters. One transform is deployed per process, chosen from
``TRANSFORM_REGISTRY`` at configuration time.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

import numpy as np

from rasterx.imaging.raster import ImageRaster

if TYPE_CHECKING:
    from numpy.typing import NDArray

LUMINOSITY_WEIGHTS: tuple[float, float, float] = (0.21, 0.72, 0.07)
RESIZE_TARGET: int = 128
GRAYSCALE_BAND_PIXELS: int = 1 << 16


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class Transform(Protocol):
    """A deterministic raster-to-raster transform."""

    @property
    def prefix(self) -> str:
        """Prefix used to derive the output object key."""
        ...

    def apply(self, raster: ImageRaster) -> ImageRaster:
        """Return a new raster; the input is left untouched."""
        ...


def _round_half_away(values: NDArray[np.float64]) -> NDArray[np.uint8]:
    # Inputs are non-negative, so floor(x + 0.5) rounds ties away from zero.
    return np.clip(np.floor(values + 0.5), 0, 255).astype(np.uint8)


# ---------------------------------------------------------------------------
# Implementations
# ---------------------------------------------------------------------------


class Grayscale:
    """Luminosity grayscale: ``0.21 R + 0.72 G + 0.07 B``, alpha preserved.

    Works in row bands so the float64 working copy stays bounded by
    ``GRAYSCALE_BAND_PIXELS`` regardless of the raster size.
    """

    prefix = "grayscale"

    def apply(self, raster: ImageRaster) -> ImageRaster:
        pixels = raster.pixels
        red, green, blue = LUMINOSITY_WEIGHTS
        band_rows = max(1, GRAYSCALE_BAND_PIXELS // raster.width)

        out = np.empty_like(pixels)
        for top in range(0, raster.height, band_rows):
            rows = slice(top, top + band_rows)
            rgb = pixels[rows, :, :3].astype(np.float64)
            gray = _round_half_away(red * rgb[..., 0] + green * rgb[..., 1] + blue * rgb[..., 2])
            out[rows, :, :3] = gray[..., None]
        if raster.has_alpha:
            out[..., 3] = pixels[..., 3]
        return ImageRaster(pixels=out, has_alpha=raster.has_alpha)


class Rotate90CW:
    """Exact 90° clockwise rotation by index permutation.

    Output ``(x, y)`` is input ``(y, H - 1 - x)``; no resampling takes place.
    """

    prefix = "rotated"

    def apply(self, raster: ImageRaster) -> ImageRaster:
        rotated = np.ascontiguousarray(np.rot90(raster.pixels, k=-1))
        return ImageRaster(pixels=rotated, has_alpha=raster.has_alpha)


class ResizeBilinear:
    """Bilinear resize to a fixed 128x128 raster.

    Output ``(x, y)`` samples the input at ``(x * W / 128, y * H / 128)``,
    blending the four surrounding pixels per channel (alpha included).
    Neighbours past the last row or column are clamped to the edge.
    """

    prefix = "resized"

    def apply(self, raster: ImageRaster) -> ImageRaster:
        pixels = raster.pixels
        x0, x1, fx = self._axis(raster.width)
        y0, y1, fy = self._axis(raster.height)

        # Only the four 128x128 neighbour grids are widened to float64.
        def corner(rows: NDArray[np.intp], cols: NDArray[np.intp]) -> NDArray[np.float64]:
            return pixels[rows[:, None], cols[None, :]].astype(np.float64)

        wx = fx[None, :, None]
        wy = fy[:, None, None]
        top = corner(y0, x0) * (1.0 - wx) + corner(y0, x1) * wx
        bottom = corner(y1, x0) * (1.0 - wx) + corner(y1, x1) * wx
        blended = top * (1.0 - wy) + bottom * wy

        return ImageRaster(pixels=_round_half_away(blended), has_alpha=raster.has_alpha)

    @staticmethod
    def _axis(size: int) -> tuple[NDArray[np.intp], NDArray[np.intp], NDArray[np.float64]]:
        coords = np.arange(RESIZE_TARGET, dtype=np.float64) * (size / RESIZE_TARGET)
        lower = np.floor(coords).astype(np.intp)
        upper = np.minimum(lower + 1, size - 1)
        return lower, upper, coords - lower


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TransformKind(StrEnum):
    GRAYSCALE = "grayscale"
    ROTATE = "rotate"
    RESIZE = "resize"


@dataclass(frozen=True)
class TransformSpec:
    """Static metadata for a deployable transform."""

    kind: TransformKind
    factory: type[Transform]
    description: str


TRANSFORM_REGISTRY: dict[TransformKind, TransformSpec] = {
    TransformKind.GRAYSCALE: TransformSpec(
        kind=TransformKind.GRAYSCALE,
        factory=Grayscale,
        description="Luminosity grayscale conversion",
    ),
    TransformKind.ROTATE: TransformSpec(
        kind=TransformKind.ROTATE,
        factory=Rotate90CW,
        description="90 degree clockwise rotation",
    ),
    TransformKind.RESIZE: TransformSpec(
        kind=TransformKind.RESIZE,
        factory=ResizeBilinear,
        description="Bilinear resize to 128x128",
    ),
}


def get_transform(kind: str) -> Transform:
    """Instantiate the transform registered under ``kind``."""
    try:
        spec = TRANSFORM_REGISTRY[TransformKind(kind)]
    except ValueError:
        raise KeyError(f"Unknown transform: {kind}") from None
    return spec.factory()
