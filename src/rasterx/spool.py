"""Memory-aware spooling: the in-memory vs temporary-file decision and the
per-request scope that owns spooled files."""

from __future__ import annotations

import logging
import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import psutil

if TYPE_CHECKING:
    from types import TracebackType

logger = logging.getLogger(__name__)

MIN_SPOOL_THRESHOLD: int = 5 * 1024 * 1024

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")

# Keeps prefix + random part + key suffix under common 255-byte name limits.
MAX_KEY_SUFFIX: int = 128


@dataclass(frozen=True)
class SpoolPlan:
    """Outcome of the spool decision for one request."""

    use_temporary_storage: bool
    threshold_bytes: int


def decide(declared_size_bytes: int, available_memory_bytes: int) -> SpoolPlan:
    """Decide whether a source of ``declared_size_bytes`` must be spooled to disk.

    The threshold is half the available memory, never less than 5 MiB. A size
    of zero or less means "unknown" and is processed in memory.
    """
    threshold = max(MIN_SPOOL_THRESHOLD, available_memory_bytes // 2)
    use_tmp = declared_size_bytes > 0 and declared_size_bytes > threshold
    return SpoolPlan(use_temporary_storage=use_tmp, threshold_bytes=threshold)


def available_memory() -> int:
    """Bytes of memory currently available to the process host."""
    return int(psutil.virtual_memory().available)


def sanitize_filename(name: str) -> str:
    """Replace every character outside ``[A-Za-z0-9._-]`` with ``_``."""
    return _UNSAFE_FILENAME_CHARS.sub("_", name)


class TemporaryResources:
    """Owns the temporary files created for a single request.

    Use as a context manager; every file handed out by :meth:`create` is
    removed on exit, whether the block succeeded or raised.
    """

    def __init__(self, directory: str | os.PathLike[str] | None = None) -> None:
        self._directory = directory
        self._paths: list[Path] = []

    def __enter__(self) -> TemporaryResources:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.cleanup()

    @property
    def paths(self) -> list[Path]:
        return list(self._paths)

    def create(self, prefix: str, key: str) -> Path:
        """Create an empty, uniquely named file whose name embeds ``key``."""
        suffix = f"-{sanitize_filename(key)[-MAX_KEY_SUFFIX:]}"
        fd, name = tempfile.mkstemp(prefix=prefix, suffix=suffix, dir=self._directory)
        os.close(fd)
        path = Path(name)
        self._paths.append(path)
        logger.debug("Created temporary file %s", path)
        return path

    def cleanup(self) -> None:
        """Delete every registered file, logging (not raising) on failure."""
        while self._paths:
            path = self._paths.pop()
            try:
                path.unlink(missing_ok=True)
            except OSError:
                logger.warning("Failed to remove temporary file %s", path, exc_info=True)
            else:
                logger.debug("Removed temporary file %s", path)
