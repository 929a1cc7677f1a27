"""Bounded execution of pipeline runs for the HTTP service.

Architecture:
    FastAPI (async) -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> Pipeline.run

Requests beyond the semaphore limit wait up to 5s, then get 503.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")

ACQUIRE_TIMEOUT_SECONDS: float = 5.0


class TransformPool:
    """Runs blocking pipeline calls off the event loop with a concurrency cap."""

    def __init__(self, max_concurrent: int) -> None:
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=max_concurrent,
            thread_name_prefix="rasterx-transform",
        )
        self._active: int = 0
        self._waiting: int = 0
        self._lock = threading.Lock()

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Run ``func(*args)`` in the pool once a slot is free.

        Raises:
            TimeoutError: If no slot frees up within ``ACQUIRE_TIMEOUT_SECONDS``.
        """
        with self._lock:
            self._waiting += 1
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=ACQUIRE_TIMEOUT_SECONDS)
        finally:
            with self._lock:
                self._waiting -= 1

        with self._lock:
            self._active += 1
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, func, *args)
        finally:
            self._semaphore.release()
            with self._lock:
                self._active -= 1

    @property
    def active_count(self) -> int:
        """Number of pipeline runs in progress."""
        with self._lock:
            return self._active

    @property
    def queue_depth(self) -> int:
        """Number of requests waiting for a slot."""
        with self._lock:
            return self._waiting

    def shutdown(self) -> None:
        """Wait for in-flight runs and stop the executor."""
        self._executor.shutdown(wait=True)
        logger.info("Transform pool shut down")
