"""Transformation pipeline: storage read, decode, transform, encode, storage write.

A run moves through the ``PipelineStage`` states in order. Any failure jumps
to ``FAILED``; ``FINALIZING`` (temporary file cleanup, metrics snapshot)
always runs, and the caller always receives an envelope, never an exception.
"""

from __future__ import annotations

import io
import logging
import time
from contextlib import ExitStack, contextmanager
from typing import IO, TYPE_CHECKING

from rasterx.errors import EncodeUnsupportedError, InternalError, PipelineError
from rasterx.imaging import codec
from rasterx.loader import SourceLoader
from rasterx.metrics import RuntimeMetrics
from rasterx.models import ImageRequest, PipelineStage, TransformResult
from rasterx.spool import TemporaryResources, available_memory, decide

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from rasterx.imaging.raster import ImageRaster
    from rasterx.imaging.transforms import Transform
    from rasterx.metrics import MetricsCollector, Scalar
    from rasterx.storage.base import ObjectHead, ObjectStorage

logger = logging.getLogger(__name__)


class _StageTracker:
    """Tracks the current stage and records per-stage durations."""

    def __init__(self, metrics: MetricsCollector) -> None:
        self._metrics = metrics
        self.current = PipelineStage.VALIDATING

    @contextmanager
    def stage(self, stage: PipelineStage) -> Iterator[None]:
        self.current = stage
        logger.debug("Entering stage %s", stage)
        started = time.perf_counter()
        yield
        self._metrics.record_duration(stage.value, (time.perf_counter() - started) * 1000)

    def fail(self) -> PipelineStage:
        """Move to FAILED and return the stage that failed."""
        failed = self.current
        self._metrics.record("failedStage", failed.value)
        self.current = PipelineStage.FAILED
        return failed


class Pipeline:
    """Runs the deployed transform against one storage object per call.

    Args:
        storage: Object storage used for head/get/put.
        transform: The transform deployed for this process.
        spool_dir: Directory for spooled files (system temp dir when None).
        memory_probe: Returns currently available memory in bytes.
        metrics_factory: Builds a fresh metrics collector per run.
    """

    def __init__(
        self,
        storage: ObjectStorage,
        transform: Transform,
        *,
        spool_dir: str | None = None,
        memory_probe: Callable[[], int] = available_memory,
        metrics_factory: Callable[[], MetricsCollector] = RuntimeMetrics,
    ) -> None:
        self._storage = storage
        self._transform = transform
        self._spool_dir = spool_dir
        self._memory_probe = memory_probe
        self._metrics_factory = metrics_factory

    @property
    def transform(self) -> Transform:
        return self._transform

    def run(self, event: object) -> dict[str, Scalar]:
        """Process one request payload and return its response envelope."""
        metrics = self._metrics_factory()
        metrics.record("transform", self._transform.prefix)
        tracker = _StageTracker(metrics)
        resources = TemporaryResources(self._spool_dir)

        output_key: str | None = None
        error: PipelineError | None = None
        try:
            output_key = self._execute(event, metrics, tracker, resources)
        except PipelineError as exc:
            error = exc
            failed = tracker.fail()
            logger.warning("Request failed during %s (%s): %s", failed, exc.kind, exc.message)
        except OSError as exc:
            error = InternalError(f"I/O error: {exc}")
            tracker.fail()
            logger.exception("I/O failure while processing request")
        except Exception as exc:
            error = InternalError(f"Unexpected error: {exc}")
            tracker.fail()
            logger.exception("Unexpected failure while processing request")
        finally:
            tracker.current = PipelineStage.FINALIZING
            resources.cleanup()

        envelope = dict(metrics.snapshot())
        if error is None:
            envelope["outputKey"] = output_key
            logger.info("Wrote %s in %s ms", output_key, envelope.get("runtimeMs"))
        else:
            envelope["error"] = error.message
            envelope["errorKind"] = error.kind
        return envelope

    # -- Internal -----------------------------------------------------------

    def _execute(
        self,
        event: object,
        metrics: MetricsCollector,
        tracker: _StageTracker,
        resources: TemporaryResources,
    ) -> str:
        with tracker.stage(PipelineStage.VALIDATING):
            request = ImageRequest.from_event(event)
        bucket, key = request.bucket, request.key
        output_key = f"{self._transform.prefix}-{key}"

        with tracker.stage(PipelineStage.PROBING):
            head = self._storage.head(bucket, key)
            plan = decide(head.content_length, self._memory_probe())
        metrics.record("sourceBytes", head.content_length)
        metrics.record("spooled", plan.use_temporary_storage)
        logger.debug(
            "Source %s/%s is %d bytes; spool threshold %d (spool=%s)",
            bucket,
            key,
            head.content_length,
            plan.threshold_bytes,
            plan.use_temporary_storage,
        )

        loader = SourceLoader(self._storage, resources)
        with tracker.stage(PipelineStage.LOADING):
            open_source = loader.materialize(bucket, key, plan)

        with tracker.stage(PipelineStage.DECODING):
            source, source_format = loader.decode(open_source, key)
        metrics.record("sourceFormat", source_format)
        metrics.record("width", source.width)
        metrics.record("height", source.height)

        with tracker.stage(PipelineStage.TRANSFORMING):
            transformed = self._transform.apply(source)
        del source

        with ExitStack() as stack:
            sink: IO[bytes]
            if plan.use_temporary_storage:
                sink = stack.enter_context(resources.create("rasterx-output-", output_key).open("w+b"))
            else:
                sink = stack.enter_context(io.BytesIO())

            with tracker.stage(PipelineStage.ENCODING):
                result = self._encode(transformed, source_format, sink)
            metrics.record("outputFormat", result.target_format)
            metrics.record("formatFallback", result.fallback_used)
            metrics.record("outputBytes", sink.tell())

            content_type = self._content_type(head, source_format, result)
            with tracker.stage(PipelineStage.STORING):
                sink.seek(0)
                body = sink if plan.use_temporary_storage else sink.read()
                self._storage.put(bucket, output_key, body, content_type)

        return output_key

    @staticmethod
    def _encode(raster: ImageRaster, fmt: str, sink: IO[bytes]) -> TransformResult:
        try:
            codec.encode(raster, fmt, sink)
        except EncodeUnsupportedError as exc:
            if fmt == codec.FALLBACK_FORMAT:
                raise
            logger.warning("Encoding as %s failed, falling back to %s: %s", fmt, codec.FALLBACK_FORMAT, exc.message)
        else:
            return TransformResult(raster=raster, target_format=fmt)

        try:
            codec.encode(raster, codec.FALLBACK_FORMAT, sink)
        except EncodeUnsupportedError as exc:
            raise EncodeUnsupportedError(
                f"Encoding failed as {fmt} and as fallback {codec.FALLBACK_FORMAT}: {exc.message}"
            ) from exc
        return TransformResult(raster=raster, target_format=codec.FALLBACK_FORMAT, fallback_used=True)

    @staticmethod
    def _content_type(head: ObjectHead, source_format: str, result: TransformResult) -> str:
        # The source type is only trusted when it names an image and the format survived encoding.
        known = head.content_type is not None and head.content_type.startswith("image/")
        if known and not result.fallback_used and result.target_format == source_format:
            return str(head.content_type)
        return codec.content_type_for(result.target_format)
