"""In-memory raster representation passed between pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray


@dataclass(frozen=True)
class ImageRaster:
    """A decoded image as an HxWxC uint8 array.

    ``C`` is 4 when ``has_alpha`` is set (RGBA) and 3 otherwise (RGB).
    """

    pixels: NDArray[np.uint8]
    has_alpha: bool

    def __post_init__(self) -> None:
        channels = 4 if self.has_alpha else 3
        if self.pixels.ndim != 3 or self.pixels.shape[2] != channels:
            raise ValueError(f"Expected HxWx{channels} pixel array, got shape {self.pixels.shape}")
        if self.pixels.dtype != np.uint8:
            raise ValueError(f"Expected uint8 pixels, got {self.pixels.dtype}")
        if self.pixels.shape[0] < 1 or self.pixels.shape[1] < 1:
            raise ValueError("Raster must be at least 1x1")

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def mode(self) -> str:
        """Pillow mode name matching the channel layout."""
        return "RGBA" if self.has_alpha else "RGB"
