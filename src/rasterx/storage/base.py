"""Object storage contract consumed by the pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from typing import IO, Protocol


@dataclass(frozen=True)
class ObjectHead:
    """Metadata returned by a HEAD request.

    ``content_length`` is ``-1`` when the backend did not report a size.
    """

    content_length: int
    content_type: str | None = None


class ObjectStorage(Protocol):
    """Protocol for the three storage operations the pipeline needs.

    Implementations raise ``NotFoundError`` for missing objects and
    ``StorageError`` for any other backend failure.
    """

    def head(self, bucket: str, key: str) -> ObjectHead:
        """Return size and content type of an object."""
        ...

    def get(self, bucket: str, key: str) -> IO[bytes]:
        """Open a readable binary stream over an object's content.

        The caller closes the stream.
        """
        ...

    def put(self, bucket: str, key: str, body: bytes | IO[bytes], content_type: str) -> None:
        """Write ``body`` to an object with the given content type."""
        ...
