"""Shared fixtures: an in-memory object store and generated images."""

from __future__ import annotations

import io
from collections.abc import Callable
from dataclasses import dataclass
from typing import IO

import pytest
from PIL import Image

from rasterx.errors import NotFoundError, StorageError
from rasterx.storage.base import ObjectHead

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_image_bytes(
    fmt: str = "PNG",
    size: tuple[int, int] = (8, 6),
    mode: str = "RGB",
    color: tuple[int, ...] = (200, 40, 10),
) -> bytes:
    """Render a solid-color image in ``fmt`` and return its encoded bytes."""
    buffer = io.BytesIO()
    Image.new(mode, size, color).save(buffer, format=fmt)
    return buffer.getvalue()


def open_image(data: bytes) -> Image.Image:
    image = Image.open(io.BytesIO(data))
    image.load()
    return image


class ForwardOnlyStream(io.RawIOBase):
    """A readable stream that cannot seek, like an HTTP response body."""

    def __init__(self, data: bytes) -> None:
        self._inner = io.BytesIO(data)

    def readable(self) -> bool:
        return True

    def readinto(self, buffer: bytearray) -> int:  # type: ignore[override]
        chunk = self._inner.read(len(buffer))
        buffer[: len(chunk)] = chunk
        return len(chunk)


@dataclass
class StoredObject:
    data: bytes
    content_type: str | None
    declared_size: int | None = None


@dataclass
class Upload:
    bucket: str
    key: str
    data: bytes
    content_type: str
    from_file: bool


class FakeStorage:
    """In-memory implementation of the ObjectStorage protocol."""

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str], StoredObject] = {}
        self.uploads: list[Upload] = []
        self.get_calls: int = 0
        self.forward_only: bool = False
        self.fail_with: Exception | None = None
        self.on_put: Callable[[], None] | None = None

    def add(
        self,
        bucket: str,
        key: str,
        data: bytes,
        content_type: str | None = None,
        declared_size: int | None = None,
    ) -> None:
        self.objects[(bucket, key)] = StoredObject(data, content_type, declared_size)

    def _lookup(self, bucket: str, key: str) -> StoredObject:
        if self.fail_with is not None:
            raise self.fail_with
        try:
            return self.objects[(bucket, key)]
        except KeyError:
            raise NotFoundError(f"Object not found: {bucket}/{key}") from None

    def head(self, bucket: str, key: str) -> ObjectHead:
        stored = self._lookup(bucket, key)
        size = stored.declared_size if stored.declared_size is not None else len(stored.data)
        return ObjectHead(content_length=size, content_type=stored.content_type)

    def get(self, bucket: str, key: str) -> IO[bytes]:
        stored = self._lookup(bucket, key)
        self.get_calls += 1
        if self.forward_only:
            return io.BufferedReader(ForwardOnlyStream(stored.data))
        return io.BytesIO(stored.data)

    def put(self, bucket: str, key: str, body: bytes | IO[bytes], content_type: str) -> None:
        if self.on_put is not None:
            self.on_put()
        from_file = not isinstance(body, bytes)
        data = body if isinstance(body, bytes) else body.read()
        self.uploads.append(Upload(bucket, key, data, content_type, from_file))
        self.objects[(bucket, key)] = StoredObject(data, content_type)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture()
def failing_storage() -> FakeStorage:
    fake = FakeStorage()
    fake.fail_with = StorageError("S3 head failed for s3://b/k: AccessDenied - Access Denied")
    return fake
