"""Request and result types shared by the pipeline and its entry points."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from rasterx.errors import ValidationError

if TYPE_CHECKING:
    from rasterx.imaging.raster import ImageRaster

INLINE_PAYLOAD_FIELDS: tuple[str, ...] = ("imageBytes", "imageBase64")


class PipelineStage(StrEnum):
    VALIDATING = "validating"
    PROBING = "probing"
    LOADING = "loading"
    DECODING = "decoding"
    TRANSFORMING = "transforming"
    ENCODING = "encoding"
    STORING = "storing"
    FINALIZING = "finalizing"
    FAILED = "failed"


class ImageRequest(BaseModel):
    """A validated reference to the source object. Unknown fields are ignored."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    bucket: str = Field(min_length=1)
    key: str = Field(min_length=1)

    @classmethod
    def from_event(cls, event: object) -> ImageRequest:
        """Validate a raw invocation payload.

        Raises:
            ValidationError: If the payload is not a mapping, lacks a non-empty
                ``bucket`` or ``key``, or carries an inline image payload.
        """
        if not isinstance(event, Mapping):
            raise ValidationError("Request must be a mapping with 'bucket' and 'key'")

        inline = [name for name in INLINE_PAYLOAD_FIELDS if name in event]
        if inline:
            raise ValidationError(
                f"Inline image payloads are not supported ({', '.join(inline)}). Provide bucket/key only."
            )

        try:
            return cls.model_validate(dict(event))
        except pydantic.ValidationError as exc:
            details = "; ".join(
                f"{'.'.join(str(part) for part in error['loc']) or 'request'}: {error['msg']}" for error in exc.errors()
            )
            raise ValidationError(f"Missing or invalid 'bucket' or 'key' ({details})") from None


@dataclass(frozen=True)
class TransformResult:
    """Transformed raster and the format it was actually encoded in."""

    raster: ImageRaster
    target_format: str
    fallback_used: bool = False
