"""Error taxonomy for the transformation pipeline.

Every failure raised inside a pipeline run is a ``PipelineError`` subclass.
The ``kind`` attribute is the stable name reported to callers in the
``errorKind`` field of an error envelope.
"""

from __future__ import annotations

from typing import ClassVar


class PipelineError(Exception):
    """Base class for request-level pipeline failures."""

    kind: ClassVar[str] = "InternalError"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(PipelineError):
    """Missing or empty bucket/key, or an inline image payload."""

    kind = "ValidationError"


class NotFoundError(PipelineError):
    kind = "NotFound"


class StorageError(PipelineError):
    """Any storage failure other than a missing object."""

    kind = "StorageError"


class UnsupportedFormatError(PipelineError):
    """No registered codec claims the source header."""

    kind = "UnsupportedFormat"


class InvalidImageError(PipelineError):
    """The source bytes could not be decoded into a raster."""

    kind = "InvalidImage"


class EncodeUnsupportedError(PipelineError):
    kind = "EncodeUnsupported"


class InternalError(PipelineError):
    kind = "InternalError"
