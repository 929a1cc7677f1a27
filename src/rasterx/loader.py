"""Materializes a source object and decodes it into a raster.

Small objects are decoded straight from the storage stream. Objects the
spool plan marks as large are first copied to a temporary file, which is
registered with the request's ``TemporaryResources`` for removal.
"""

from __future__ import annotations

import logging
import shutil
from contextlib import closing
from typing import IO, TYPE_CHECKING

from rasterx.errors import InvalidImageError, UnsupportedFormatError
from rasterx.imaging import codec
from rasterx.imaging.sniffer import sniff_stream

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from rasterx.imaging.raster import ImageRaster
    from rasterx.spool import SpoolPlan, TemporaryResources
    from rasterx.storage.base import ObjectStorage

logger = logging.getLogger(__name__)

COPY_CHUNK_BYTES: int = 8192


class SourceLoader:
    """Loads source objects for one request according to its spool plan."""

    def __init__(self, storage: ObjectStorage, resources: TemporaryResources) -> None:
        self._storage = storage
        self._resources = resources

    def load(self, bucket: str, key: str, plan: SpoolPlan) -> tuple[ImageRaster, str]:
        """Return the decoded raster and its detected format.

        Raises:
            UnsupportedFormatError: If no registered decoder claims the header.
            InvalidImageError: If the bytes cannot be decoded, or the object is
                too short for any decoder to claim.
        """
        return self.decode(self.materialize(bucket, key, plan), key)

    def materialize(self, bucket: str, key: str, plan: SpoolPlan) -> Callable[[], IO[bytes]]:
        """Return a callable that opens a fresh stream over the source bytes."""
        if plan.use_temporary_storage:
            spooled = self.spool(bucket, key)
            return lambda: spooled.open("rb")
        return lambda: self._storage.get(bucket, key)

    def spool(self, bucket: str, key: str) -> Path:
        """Copy the object byte-for-byte into a new temporary file."""
        path = self._resources.create("rasterx-input-", key)
        with closing(self._storage.get(bucket, key)) as source, path.open("wb") as target:
            shutil.copyfileobj(source, target, COPY_CHUNK_BYTES)
        logger.info("Spooled %s/%s to %s (%d bytes)", bucket, key, path, path.stat().st_size)
        return path

    def decode(self, open_source: Callable[[], IO[bytes]], key: str) -> tuple[ImageRaster, str]:
        """Sniff the source format, then decode with the matching codec."""
        with closing(open_source()) as stream:
            sniffed = sniff_stream(stream)
            fmt = sniffed.format_name
            if fmt is None:
                if sniffed.truncated:
                    raise InvalidImageError(
                        f"Object too short to hold an image header ({sniffed.header_size} bytes) for key: {key}"
                    )
                raise UnsupportedFormatError(f"Unsupported or unknown image format for key: {key}")
            if sniffed.rewound:
                return codec.decode(stream, fmt), fmt

        # The header was consumed from a forward-only stream; start over.
        with closing(open_source()) as stream:
            return codec.decode(stream, fmt), fmt
