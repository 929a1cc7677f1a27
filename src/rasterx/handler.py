"""AWS Lambda entry point.

The pipeline (and its S3 client) is built on first invocation and reused by
warm invocations of the same process.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import TYPE_CHECKING, Any

from rasterx.config import Settings, get_settings
from rasterx.imaging.transforms import get_transform
from rasterx.log import configure_logging
from rasterx.pipeline import Pipeline
from rasterx.storage.s3 import S3Storage

if TYPE_CHECKING:
    from rasterx.metrics import Scalar

logger = logging.getLogger(__name__)


def build_pipeline(settings: Settings) -> Pipeline:
    """Wire the configured transform to S3 storage."""
    return Pipeline(
        S3Storage.from_settings(settings),
        get_transform(settings.transform),
        spool_dir=settings.spool_dir,
    )


@lru_cache(maxsize=1)
def _get_pipeline() -> Pipeline:
    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info("Initializing RasterX Lambda (transform=%s)", settings.transform)
    return build_pipeline(settings)


def lambda_handler(event: dict[str, Any], context: object) -> dict[str, Scalar]:
    """Transform the object referenced by ``event`` and return the envelope."""
    return _get_pipeline().run(event)
