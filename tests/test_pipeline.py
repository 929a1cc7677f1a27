"""End-to-end tests for the pipeline against in-memory storage."""

from __future__ import annotations

import io
from pathlib import Path
from typing import IO

import numpy as np
import pydantic
import pytest
from conftest import FakeStorage, make_image_bytes, open_image

from rasterx.errors import EncodeUnsupportedError, StorageError
from rasterx.imaging import codec
from rasterx.imaging.raster import ImageRaster
from rasterx.imaging.transforms import Grayscale, ResizeBilinear, Rotate90CW, Transform
from rasterx.models import ImageRequest
from rasterx.pipeline import Pipeline

PLENTY_OF_MEMORY = 1 << 34
LARGE_DECLARED_SIZE = 10_000_000

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _pipeline(
    storage: FakeStorage,
    tmp_path: Path,
    transform: Transform | None = None,
    memory: int = PLENTY_OF_MEMORY,
) -> Pipeline:
    return Pipeline(
        storage,
        transform or Grayscale(),
        spool_dir=str(tmp_path),
        memory_probe=lambda: memory,
    )


class _ExplodingTransform:
    prefix = "broken"

    def apply(self, raster: ImageRaster) -> ImageRaster:
        raise RuntimeError("unexpected raster state")


def _assert_exactly_one_outcome(envelope: dict[str, object]) -> None:
    assert ("outputKey" in envelope) != ("error" in envelope)
    assert "runtimeMs" in envelope


# ---------------------------------------------------------------------------
# Request validation
# ---------------------------------------------------------------------------


class TestImageRequest:
    def test_valid_request(self) -> None:
        request = ImageRequest.from_event({"bucket": "b", "key": "k.png", "extra": 1})
        assert (request.bucket, request.key) == ("b", "k.png")

    def test_request_is_immutable(self) -> None:
        request = ImageRequest.from_event({"bucket": "b", "key": "k"})
        with pytest.raises(pydantic.ValidationError):
            request.key = "other"  # type: ignore[misc]


class TestValidation:
    @pytest.mark.parametrize(
        "event",
        [
            {"bucket": "b"},
            {"key": "k.png"},
            {"bucket": "", "key": "k.png"},
            {"bucket": "b", "key": ""},
            {"bucket": "b", "key": None},
            None,
            ["b", "k.png"],
        ],
    )
    def test_invalid_requests(self, storage: FakeStorage, tmp_path: Path, event: object) -> None:
        envelope = _pipeline(storage, tmp_path).run(event)
        _assert_exactly_one_outcome(envelope)
        assert envelope["errorKind"] == "ValidationError"
        assert "outputKey" not in envelope
        assert envelope["failedStage"] == "validating"

    @pytest.mark.parametrize("field", ["imageBytes", "imageBase64"])
    def test_inline_payload_rejected(self, storage: FakeStorage, tmp_path: Path, field: str) -> None:
        storage.add("b", "k.png", make_image_bytes())
        envelope = _pipeline(storage, tmp_path).run({"bucket": "b", "key": "k.png", field: "AAAA"})
        assert envelope["errorKind"] == "ValidationError"
        assert "Inline image payloads" in str(envelope["error"])
        assert storage.uploads == []


# ---------------------------------------------------------------------------
# Successful runs
# ---------------------------------------------------------------------------


class TestSuccess:
    def test_grayscale_png(self, storage: FakeStorage, tmp_path: Path) -> None:
        storage.add("b", "img/a.png", make_image_bytes("PNG", (8, 6)), content_type="image/png")
        envelope = _pipeline(storage, tmp_path).run({"bucket": "b", "key": "img/a.png"})

        _assert_exactly_one_outcome(envelope)
        assert envelope["outputKey"] == "grayscale-img/a.png"
        [upload] = storage.uploads
        assert (upload.bucket, upload.key) == ("b", "grayscale-img/a.png")
        assert upload.content_type == "image/png"
        assert upload.from_file is False
        image = open_image(upload.data)
        assert image.format == "PNG"
        r, g, b = image.convert("RGB").getpixel((0, 0))
        assert r == g == b == round(0.21 * 200 + 0.72 * 40 + 0.07 * 10)

    def test_rotate_swaps_dimensions(self, storage: FakeStorage, tmp_path: Path) -> None:
        storage.add("b", "wide.jpg", make_image_bytes("JPEG", (20, 10)), content_type="image/jpeg")
        envelope = _pipeline(storage, tmp_path, Rotate90CW()).run({"bucket": "b", "key": "wide.jpg"})

        assert envelope["outputKey"] == "rotated-wide.jpg"
        image = open_image(storage.uploads[0].data)
        assert image.format == "JPEG"
        assert image.size == (10, 20)
        assert storage.uploads[0].content_type == "image/jpeg"

    def test_resize_to_128(self, storage: FakeStorage, tmp_path: Path) -> None:
        storage.add("b", "tiny.gif", make_image_bytes("GIF", (3, 5)))
        envelope = _pipeline(storage, tmp_path, ResizeBilinear()).run({"bucket": "b", "key": "tiny.gif"})

        assert envelope["outputKey"] == "resized-tiny.gif"
        image = open_image(storage.uploads[0].data)
        assert image.size == (128, 128)
        assert storage.uploads[0].content_type == "image/gif"

    def test_alpha_survives(self, storage: FakeStorage, tmp_path: Path) -> None:
        data = make_image_bytes("PNG", (4, 4), mode="RGBA", color=(10, 200, 30, 77))
        storage.add("b", "alpha.png", data)
        _pipeline(storage, tmp_path).run({"bucket": "b", "key": "alpha.png"})

        image = open_image(storage.uploads[0].data)
        assert image.mode == "RGBA"
        assert image.getpixel((1, 1)) == (148, 148, 148, 77)

    def test_non_image_content_type_is_not_mirrored(self, storage: FakeStorage, tmp_path: Path) -> None:
        storage.add("b", "k", make_image_bytes("PNG"), content_type="binary/octet-stream")
        _pipeline(storage, tmp_path).run({"bucket": "b", "key": "k"})
        assert storage.uploads[0].content_type == "image/png"

    def test_metrics_present(self, storage: FakeStorage, tmp_path: Path) -> None:
        storage.add("b", "a.png", make_image_bytes("PNG", (8, 6)))
        envelope = _pipeline(storage, tmp_path).run({"bucket": "b", "key": "a.png"})

        for name in ("runtimeMs", "memoryRssBytes", "memoryAvailableBytes", "decodingMs", "storingMs"):
            assert name in envelope
        assert envelope["transform"] == "grayscale"
        assert envelope["sourceFormat"] == "png"
        assert envelope["outputFormat"] == "png"
        assert envelope["formatFallback"] is False
        assert envelope["spooled"] is False
        assert (envelope["width"], envelope["height"]) == (8, 6)

    def test_unknown_size_is_processed_in_memory(self, storage: FakeStorage, tmp_path: Path) -> None:
        storage.add("b", "a.png", make_image_bytes(), declared_size=-1)
        envelope = _pipeline(storage, tmp_path, memory=0).run({"bucket": "b", "key": "a.png"})
        assert envelope["spooled"] is False
        assert "outputKey" in envelope


# ---------------------------------------------------------------------------
# Spooling
# ---------------------------------------------------------------------------


class TestSpooling:
    def test_large_object_is_spooled_and_cleaned_up(self, storage: FakeStorage, tmp_path: Path) -> None:
        storage.add("b", "big/photo.png", make_image_bytes("PNG", (16, 16)), declared_size=LARGE_DECLARED_SIZE)
        seen_during_upload: list[str] = []
        storage.on_put = lambda: seen_during_upload.extend(p.name for p in tmp_path.iterdir())

        envelope = _pipeline(storage, tmp_path, memory=4_000_000).run({"bucket": "b", "key": "big/photo.png"})

        assert envelope["outputKey"] == "grayscale-big/photo.png"
        assert envelope["spooled"] is True
        assert storage.uploads[0].from_file is True
        assert open_image(storage.uploads[0].data).size == (16, 16)
        assert any(name.startswith("rasterx-input-") for name in seen_during_upload)
        assert any(name.startswith("rasterx-output-") for name in seen_during_upload)
        assert list(tmp_path.iterdir()) == []

    def test_spooled_files_removed_after_failure(self, storage: FakeStorage, tmp_path: Path) -> None:
        storage.add("b", "broken.png", b"\x89PNG\r\n\x1a\n\x00\x00", declared_size=LARGE_DECLARED_SIZE)
        envelope = _pipeline(storage, tmp_path, memory=0).run({"bucket": "b", "key": "broken.png"})

        assert envelope["errorKind"] == "InvalidImage"
        assert envelope["spooled"] is True
        assert list(tmp_path.iterdir()) == []

    def test_spooled_files_removed_after_transform_crash(self, storage: FakeStorage, tmp_path: Path) -> None:
        storage.add("b", "a.png", make_image_bytes(), declared_size=LARGE_DECLARED_SIZE)
        envelope = _pipeline(storage, tmp_path, _ExplodingTransform(), memory=0).run({"bucket": "b", "key": "a.png"})

        assert envelope["errorKind"] == "InternalError"
        assert "unexpected raster state" in str(envelope["error"])
        assert envelope["failedStage"] == "transforming"
        assert list(tmp_path.iterdir()) == []

    def test_spooled_files_removed_after_upload_failure(self, storage: FakeStorage, tmp_path: Path) -> None:
        storage.add("b", "a.png", make_image_bytes("PNG", (16, 16)), declared_size=LARGE_DECLARED_SIZE)
        seen_during_upload: list[str] = []

        def reject_upload() -> None:
            seen_during_upload.extend(p.name for p in tmp_path.iterdir())
            raise StorageError("S3 put failed for s3://b/grayscale-a.png: SlowDown - Reduce your request rate")

        storage.on_put = reject_upload
        envelope = _pipeline(storage, tmp_path, memory=0).run({"bucket": "b", "key": "a.png"})

        assert envelope["errorKind"] == "StorageError"
        assert envelope["failedStage"] == "storing"
        assert any(name.startswith("rasterx-output-") for name in seen_during_upload)
        assert list(tmp_path.iterdir()) == []


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestFailures:
    def test_missing_object(self, storage: FakeStorage, tmp_path: Path) -> None:
        envelope = _pipeline(storage, tmp_path).run({"bucket": "b", "key": "nope.png"})
        _assert_exactly_one_outcome(envelope)
        assert envelope["errorKind"] == "NotFound"
        assert envelope["failedStage"] == "probing"

    def test_storage_failure(self, failing_storage: FakeStorage, tmp_path: Path) -> None:
        envelope = _pipeline(failing_storage, tmp_path).run({"bucket": "b", "key": "k.png"})
        assert envelope["errorKind"] == "StorageError"
        assert "AccessDenied" in str(envelope["error"])

    def test_unsupported_format(self, storage: FakeStorage, tmp_path: Path) -> None:
        storage.add("b", "a.jxl", b"\x00\x00\x00\x0cJXL \r\n\x87\n" + b"\x00" * 32)
        envelope = _pipeline(storage, tmp_path).run({"bucket": "b", "key": "a.jxl"})
        assert envelope["errorKind"] == "UnsupportedFormat"
        assert envelope["failedStage"] == "decoding"

    def test_invalid_image(self, storage: FakeStorage, tmp_path: Path) -> None:
        storage.add("b", "a.png", b"\x89PNG\r\n\x1a\n\x00\x00")
        envelope = _pipeline(storage, tmp_path).run({"bucket": "b", "key": "a.png"})
        assert envelope["errorKind"] == "InvalidImage"
        assert storage.uploads == []

    @pytest.mark.parametrize("data", [b"", b"\n", b"II"])
    def test_empty_or_tiny_object_is_invalid_image(self, storage: FakeStorage, tmp_path: Path, data: bytes) -> None:
        storage.add("b", "tiny.png", data)
        envelope = _pipeline(storage, tmp_path).run({"bucket": "b", "key": "tiny.png"})
        _assert_exactly_one_outcome(envelope)
        assert envelope["errorKind"] == "InvalidImage"
        assert envelope["failedStage"] == "decoding"
        assert "too short" in str(envelope["error"])


# ---------------------------------------------------------------------------
# Encoding fallback
# ---------------------------------------------------------------------------


class TestEncodingFallback:
    def test_falls_back_to_png(
        self, storage: FakeStorage, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        real_encode = codec.encode

        def reject_jpeg(raster: ImageRaster, fmt: str, fp: IO[bytes]) -> None:
            if fmt == "jpeg":
                raise EncodeUnsupportedError("jpeg encoder unavailable")
            real_encode(raster, fmt, fp)

        monkeypatch.setattr(codec, "encode", reject_jpeg)
        storage.add("b", "a.jpg", make_image_bytes("JPEG", (5, 5)), content_type="image/jpeg")
        envelope = _pipeline(storage, tmp_path).run({"bucket": "b", "key": "a.jpg"})

        assert envelope["outputKey"] == "grayscale-a.jpg"
        assert envelope["formatFallback"] is True
        assert envelope["outputFormat"] == "png"
        assert storage.uploads[0].content_type == "image/png"
        assert open_image(storage.uploads[0].data).format == "PNG"

    def test_fails_when_fallback_also_fails(
        self, storage: FakeStorage, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def reject_all(raster: ImageRaster, fmt: str, fp: IO[bytes]) -> None:
            raise EncodeUnsupportedError(f"{fmt} encoder unavailable")

        monkeypatch.setattr(codec, "encode", reject_all)
        storage.add("b", "a.jpg", make_image_bytes("JPEG"))
        envelope = _pipeline(storage, tmp_path).run({"bucket": "b", "key": "a.jpg"})

        assert envelope["errorKind"] == "EncodeUnsupported"
        assert envelope["failedStage"] == "encoding"
        assert storage.uploads == []

    def test_real_encoder_rejection_uses_fallback(self) -> None:
        # Pillow cannot write RGBA as JPEG.
        raster = ImageRaster(pixels=np.zeros((2, 2, 4), dtype=np.uint8), has_alpha=True)
        sink = io.BytesIO()
        result = Pipeline._encode(raster, "jpeg", sink)
        assert result.target_format == "png"
        assert result.fallback_used is True
        assert open_image(sink.getvalue()).format == "PNG"
