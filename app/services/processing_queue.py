"""Bounded dispatch of video processing jobs.

``ProcessingQueue`` runs jobs on a fixed number of asyncio workers and refuses
new work once the workers are busy and the waiting line is full, so uploads
get backpressure instead of piling up unbounded transcodes.
"""
import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import AsyncSessionLocal
from app.services.pipeline import VideoProcessingPipeline, sweep_stale_videos
from app.services.video_store import PipelineVideoStore

logger = logging.getLogger(__name__)

JobHandler = Callable[[str], Awaitable[object]]


class ProcessingQueueFull(Exception):
    """No worker is free and the waiting line is at capacity."""


class ProcessingQueue:
    """In-process worker pool with a bounded backlog."""

    def __init__(
        self,
        handler: JobHandler,
        concurrency: int = 2,
        max_queued: int = 50,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.handler = handler
        self.concurrency = concurrency
        self.max_queued = max(0, max_queued)
        self._queue: asyncio.Queue = asyncio.Queue()
        self._workers: List[asyncio.Task] = []
        self._active = 0

    @property
    def capacity(self) -> int:
        return self.concurrency + self.max_queued

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def active(self) -> int:
        return self._active

    @property
    def is_running(self) -> bool:
        return bool(self._workers)

    @property
    def is_saturated(self) -> bool:
        return self.pending + self._active >= self.capacity

    def submit(self, video_id: str) -> None:
        """
        Enqueue a job without waiting for it.

        Raises:
            ProcessingQueueFull: All workers are busy and the backlog is full
        """
        if self.is_saturated:
            raise ProcessingQueueFull(
                f"Processing queue is full ({self._active} running, {self.pending} waiting)"
            )
        self._queue.put_nowait(str(video_id))
        logger.debug(f"Queued video {video_id} ({self.pending} waiting)")

    async def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"video-worker-{i}")
            for i in range(self.concurrency)
        ]
        logger.info(f"Started {self.concurrency} processing workers")

    async def stop(self) -> None:
        workers, self._workers = self._workers, []
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        if workers:
            logger.info(f"Stopped processing workers ({self.pending} jobs left waiting)")

    async def join(self) -> None:
        """Wait until every queued job has finished."""
        await self._queue.join()

    async def _worker(self, index: int) -> None:
        while True:
            video_id = await self._queue.get()
            self._active += 1
            try:
                await self.handler(video_id)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Worker {index} failed on video {video_id}: {e}", exc_info=True)
            finally:
                self._active -= 1
                self._queue.task_done()


async def run_pipeline(video_id: str) -> Optional[str]:
    return await VideoProcessingPipeline().run(video_id)


class ProcessingDispatcher:
    """
    Sends uploads to the local worker pool or to Celery.

    With the local backend the dispatcher also owns recovery: on start it
    fails videos that went stale while the service was down and requeues the
    pending ones, then keeps sweeping stale videos every
    ``settings.stale_sweep_interval_seconds``. Celery deployments get the
    same sweep from beat.
    """

    def __init__(
        self,
        queue: ProcessingQueue,
        backend: str = "local",
        session_factory: Optional[Callable[[], AsyncSession]] = None,
        sweep_interval: Optional[float] = None,
    ):
        self.queue = queue
        self.backend = backend
        self.session_factory = session_factory or AsyncSessionLocal
        self.sweep_interval = settings.stale_sweep_interval_seconds if sweep_interval is None else sweep_interval
        self._sweeper: Optional[asyncio.Task] = None

    @property
    def is_saturated(self) -> bool:
        if self.backend == "celery":
            return False
        return self.queue.is_saturated

    def dispatch(self, video_id) -> None:
        if self.backend == "celery":
            from app.tasks.video_processing import process_video

            process_video.delay(str(video_id))
            return
        self.queue.submit(str(video_id))

    async def start(self) -> None:
        if self.backend != "local":
            return
        await self.queue.start()
        await self.recover()
        if self.sweep_interval > 0:
            self._sweeper = asyncio.create_task(self._sweep_periodically(), name="stale-video-sweeper")

    async def stop(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            await asyncio.gather(self._sweeper, return_exceptions=True)
            self._sweeper = None
        await self.queue.stop()

    async def recover(self) -> int:
        """
        Fail stale videos, then requeue pending ones left by a previous run.

        Returns:
            Number of videos put back on the queue
        """
        await sweep_stale_videos(self.session_factory)

        async with self.session_factory() as db:
            pending = await PipelineVideoStore(db).find_pending()

        requeued = 0
        for video in pending:
            try:
                self.queue.submit(str(video.id))
            except ProcessingQueueFull:
                logger.warning(
                    f"Queue full while recovering, {len(pending) - requeued} pending videos left for the sweeper"
                )
                break
            requeued += 1

        if requeued:
            logger.info(f"Requeued {requeued} pending videos")
        return requeued

    async def _sweep_periodically(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                await sweep_stale_videos(self.session_factory)
            except Exception as e:
                logger.error(f"Stale video sweep failed: {e}", exc_info=True)


processing_queue = ProcessingQueue(
    handler=run_pipeline,
    concurrency=settings.max_concurrent_jobs,
    max_queued=settings.max_queued_jobs,
)
dispatcher = ProcessingDispatcher(processing_queue, backend=settings.processing_backend)


def get_dispatcher() -> ProcessingDispatcher:
    """FastAPI dependency for the processing dispatcher."""
    return dispatcher
