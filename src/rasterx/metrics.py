"""Per-request execution metrics merged into every response envelope."""

from __future__ import annotations

import os
import time
from typing import Protocol

import psutil

Scalar = str | int | float | bool | None


class MetricsCollector(Protocol):
    """Protocol for the metrics facility consumed by the pipeline."""

    def record_duration(self, name: str, duration_ms: float) -> None:
        """Record how long a named stage took."""
        ...

    def record(self, name: str, value: Scalar) -> None:
        """Record a scalar fact about the request."""
        ...

    def snapshot(self) -> dict[str, Scalar]:
        """Return all metrics gathered so far as a flat mapping."""
        ...


class RuntimeMetrics:
    """Wall-clock and memory metrics for one pipeline run."""

    def __init__(self) -> None:
        self._started = time.perf_counter()
        self._values: dict[str, Scalar] = {}

    def record_duration(self, name: str, duration_ms: float) -> None:
        self._values[f"{name}Ms"] = round(duration_ms, 3)

    def record(self, name: str, value: Scalar) -> None:
        self._values[name] = value

    def snapshot(self) -> dict[str, Scalar]:
        process = psutil.Process(os.getpid())
        snapshot: dict[str, Scalar] = {
            "runtimeMs": round((time.perf_counter() - self._started) * 1000, 3),
            "memoryRssBytes": int(process.memory_info().rss),
            "memoryAvailableBytes": int(psutil.virtual_memory().available),
        }
        snapshot.update(self._values)
        return snapshot
