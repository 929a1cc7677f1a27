"""Amazon S3 implementation of the object storage contract."""

from __future__ import annotations

import logging
from typing import IO, TYPE_CHECKING, Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from rasterx.errors import NotFoundError, StorageError
from rasterx.storage.base import ObjectHead

if TYPE_CHECKING:
    from rasterx.config import Settings

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound", "NoSuchBucket"})


class S3Storage:
    """boto3-backed storage; the client is injected or built from settings."""

    def __init__(self, client: Any) -> None:
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> S3Storage:
        client = boto3.client(
            "s3",
            region_name=settings.aws_region,
            endpoint_url=settings.s3_endpoint_url,
        )
        return cls(client)

    # -- Public API ---------------------------------------------------------

    def head(self, bucket: str, key: str) -> ObjectHead:
        try:
            response = self._client.head_object(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise self._translate(exc, "head", bucket, key) from exc
        return ObjectHead(
            content_length=int(response.get("ContentLength", -1)),
            content_type=response.get("ContentType"),
        )

    def get(self, bucket: str, key: str) -> IO[bytes]:
        try:
            response = self._client.get_object(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise self._translate(exc, "get", bucket, key) from exc
        body: IO[bytes] = response["Body"]
        return body

    def put(self, bucket: str, key: str, body: bytes | IO[bytes], content_type: str) -> None:
        try:
            self._client.put_object(Bucket=bucket, Key=key, Body=body, ContentType=content_type)
        except (ClientError, BotoCoreError) as exc:
            raise self._translate(exc, "put", bucket, key) from exc
        logger.info("Uploaded s3://%s/%s (%s)", bucket, key, content_type)

    # -- Internal -----------------------------------------------------------

    @staticmethod
    def _translate(exc: ClientError | BotoCoreError, operation: str, bucket: str, key: str) -> Exception:
        location = f"s3://{bucket}/{key}"
        if isinstance(exc, ClientError):
            error = exc.response.get("Error", {})
            code = str(error.get("Code", ""))
            if code in _NOT_FOUND_CODES:
                return NotFoundError(f"S3 object not found: {location}")
            message = error.get("Message") or code
            return StorageError(f"S3 {operation} failed for {location}: {code} - {message}")
        return StorageError(f"S3 {operation} failed for {location}: {exc}")
