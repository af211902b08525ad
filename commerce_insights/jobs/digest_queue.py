"""
Bounded background queue for digest dispatch.

Scheduled runs hand their digest to DigestQueue instead of awaiting the
transport inline. A single worker task drains the queue in FIFO order and
logs every outcome:
- sent: the dispatch coroutine returned True
- failed: it returned False or raised
- dropped: the queue was full when the job was submitted

The queue is created in the FastAPI lifespan, started on startup and closed
on shutdown; close() lets queued jobs finish before the worker exits.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Tuple

logger = logging.getLogger(__name__)

DigestJob = Callable[[], Awaitable[bool]]


class DigestQueue:
    """Single-worker bounded queue of digest jobs."""

    def __init__(self, maxsize: int = 100):
        self._queue: "asyncio.Queue[Optional[Tuple[str, DigestJob]]]" = asyncio.Queue(maxsize=maxsize)
        self._worker: Optional[asyncio.Task] = None
        self.sent = 0
        self.failed = 0
        self.dropped = 0

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        if not self.running:
            self._worker = asyncio.create_task(self._run())

    def submit(self, label: str, job: DigestJob) -> bool:
        """
        Enqueue a job without blocking.

        Args:
            label: Identifier used in log lines (e.g. the run's run_at).
            job: Zero-argument coroutine factory returning delivered: bool.

        Returns:
            True if queued, False if the queue was full and the job dropped.
        """
        try:
            self._queue.put_nowait((label, job))
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(f"Digest queue full, dropping digest for {label}")
            return False
        logger.info(f"Queued digest for {label} ({self._queue.qsize()} pending)")
        return True

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        await self._queue.join()

    async def close(self) -> None:
        """Drain pending jobs, then stop the worker."""
        if self._worker is None:
            return
        await self._queue.put(None)
        await self._worker
        self._worker = None

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if item is None:
                    return
                label, job = item
                try:
                    delivered = await job()
                except Exception:
                    logger.exception(f"Digest job for {label} raised")
                    delivered = False

                if delivered:
                    self.sent += 1
                    logger.info(f"Digest for {label} delivered")
                else:
                    self.failed += 1
                    logger.warning(f"Digest for {label} not delivered")
            finally:
                self._queue.task_done()
