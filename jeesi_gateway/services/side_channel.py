"""
Side Channel - Best-effort background task queue.

Work that must not delay the streamed response (credit debits, usage log
inserts, API key touches, webhooks) is submitted here instead of being
awaited by the request handler.

Delivery is at-most-once:
- A full queue drops the job (logged and counted).
- A failing job is logged and counted, never retried.
- On shutdown pending jobs get a bounded drain window; leftovers are dropped.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from structlog import get_logger

from jeesi_gateway.config import settings
from jeesi_gateway.observability.metrics import metrics

logger = get_logger(__name__)

JobFactory = Callable[[], Awaitable[None]]


@dataclass(frozen=True)
class SideChannelJob:
    """A named unit of deferred work."""

    name: str
    run: JobFactory


class SideChannel:
    """Bounded asyncio queue drained by a fixed pool of worker tasks."""

    def __init__(
        self,
        max_pending: int | None = None,
        workers: int | None = None,
        drain_timeout: float | None = None,
    ) -> None:
        self.max_pending = max_pending or settings.side_channel_max_pending
        self.worker_count = workers or settings.side_channel_workers
        self.drain_timeout = (
            drain_timeout
            if drain_timeout is not None
            else settings.side_channel_drain_timeout_seconds
        )
        self._queue: asyncio.Queue[SideChannelJob] | None = None
        self._workers: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def start(self) -> None:
        """Create the queue and spawn workers. Idempotent."""
        if self.running:
            return

        self._queue = asyncio.Queue(maxsize=self.max_pending)
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"side-channel-{i}")
            for i in range(self.worker_count)
        ]
        logger.info(
            "side_channel_started",
            workers=self.worker_count,
            max_pending=self.max_pending,
        )

    def submit(self, name: str, run: JobFactory) -> bool:
        """
        Enqueue a job without waiting.

        Args:
            name: Job label used in logs and metrics
            run: Zero-argument coroutine function performing the work

        Returns:
            True if the job was accepted, False if it was dropped
        """
        if self._queue is None or not self.running:
            logger.warning("side_channel_job_dropped", job=name, reason="not_running")
            metrics.record_side_channel_job(name, "dropped")
            return False

        try:
            self._queue.put_nowait(SideChannelJob(name=name, run=run))
        except asyncio.QueueFull:
            logger.warning(
                "side_channel_job_dropped",
                job=name,
                reason="queue_full",
                max_pending=self.max_pending,
            )
            metrics.record_side_channel_job(name, "dropped")
            return False

        metrics.side_channel_pending.set(self._queue.qsize())
        return True

    async def _worker(self, index: int) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            job = await queue.get()
            try:
                await job.run()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(
                    "side_channel_job_failed",
                    job=job.name,
                    worker=index,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                metrics.record_side_channel_job(job.name, "failed")
            else:
                metrics.record_side_channel_job(job.name, "succeeded")
            finally:
                queue.task_done()
                metrics.side_channel_pending.set(queue.qsize())

    async def stop(self) -> None:
        """Drain pending jobs within the drain timeout, then cancel workers."""
        if self._queue is None or not self.running:
            return

        try:
            await asyncio.wait_for(self._queue.join(), timeout=self.drain_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "side_channel_drain_timeout",
                abandoned=self._queue.qsize(),
                timeout_seconds=self.drain_timeout,
            )

        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)

        self._workers = []
        self._queue = None
        metrics.side_channel_pending.set(0)
        logger.info("side_channel_stopped")


# Global side channel - started and stopped by the application lifespan
side_channel = SideChannel()


def get_side_channel() -> SideChannel:
    """Get the process-wide side channel."""
    return side_channel
