"""Worker pool for everything a recognition request does off the event loop.

A request's model load, base64 and image decoding, resize and normalization,
ONNX forward pass and softmax ranking all run as one call on this pool:

    route -> RecognitionService -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N)

Calls beyond ``max_concurrent`` queue on the semaphore until a worker frees
up, and are counted in ``queue_depth`` for the health endpoint. Nothing here
times out; callers that need a deadline wrap ``run`` in ``asyncio.wait_for``.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

    from visionx.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InferencePool:
    """Bounded executor shared by every recognition request of one app instance."""

    def __init__(self, settings: Settings) -> None:
        self._semaphore = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="onnx-inference",
        )
        self._active_count: int = 0
        self._queue_depth: int = 0
        self._counter_lock = threading.Lock()

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Run ``func(*args)`` on a worker once a slot is free.

        Typed pipeline errors (``PrepError``, ``InferError``, ...) raised in the
        worker propagate to the awaiting request unchanged.
        """
        with self._counter_lock:
            self._queue_depth += 1
        try:
            await self._semaphore.acquire()
        finally:
            with self._counter_lock:
                self._queue_depth -= 1

        with self._counter_lock:
            self._active_count += 1
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, func, *args)
        finally:
            self._semaphore.release()
            with self._counter_lock:
                self._active_count -= 1

    @property
    def active_count(self) -> int:
        """Number of currently running tasks."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of requests waiting for a semaphore slot."""
        with self._counter_lock:
            return self._queue_depth

    def shutdown(self) -> None:
        """Shut down the thread pool executor."""
        self._executor.shutdown(wait=True)
        logger.info("Inference pool shut down")
