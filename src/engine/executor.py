"""Bounded worker pool for blocking inference calls.

Request handlers await results from here instead of blocking the event loop.
Admission is bounded (workers + queue depth) and every call gets a timeout.
When a call times out its cancel event is set: a job that has not started yet
is skipped, and a running job can poll the event to abort early.
"""

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable

from .errors import GenerationCancelledError, InferenceQueueFullError, InferenceTimeoutError

logger = logging.getLogger(__name__)


class InferenceExecutor:
    """Runs ``fn(cancel_event)`` jobs on a small thread pool."""

    def __init__(self, max_workers: int = 2, queue_depth: int = 10, thread_name_prefix: str = "image-gen"):
        self.max_workers = max_workers
        self.queue_depth = queue_depth
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=thread_name_prefix)
        self._slots = threading.BoundedSemaphore(max_workers + queue_depth)
        self._shutdown = False

    async def run(self, fn: Callable[[threading.Event], Any], timeout: float, operation: str = "inference") -> Any:
        """
        Run a blocking job on the pool and await its result.

        Args:
            fn: Job taking a cancel event; it should stop early once the event is set
            timeout: Seconds to wait before giving up on the job
            operation: Name used in errors and logs

        Returns:
            Whatever ``fn`` returns

        Raises:
            InferenceQueueFullError: if the pool and its queue are saturated
            InferenceTimeoutError: if the job did not finish within ``timeout``
        """
        if self._shutdown or not self._slots.acquire(blocking=False):
            raise InferenceQueueFullError()

        cancel_event = threading.Event()

        def job():
            if cancel_event.is_set():
                raise GenerationCancelledError(f"{operation} cancelled before start")
            return fn(cancel_event)

        try:
            future = self._pool.submit(job)
        except RuntimeError:
            # pool already shut down
            self._slots.release()
            raise InferenceQueueFullError()
        future.add_done_callback(lambda _: self._slots.release())

        try:
            return await asyncio.wait_for(asyncio.wrap_future(future), timeout=timeout)
        except asyncio.TimeoutError:
            cancel_event.set()
            logger.error(f"{operation} timed out after {timeout:.0f}s, cancelling")
            raise InferenceTimeoutError(operation, timeout)

    def shutdown(self, wait: bool = False):
        """Stop accepting work. Running jobs are only waited for if ``wait`` is set."""
        if self._shutdown:
            return
        self._shutdown = True
        self._pool.shutdown(wait=wait, cancel_futures=True)
        logger.info("Inference worker pool shut down")
