"""Video processing Celery tasks."""
import asyncio
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.tasks.celery_app import celery_app
from app.config import settings
from app.services.pipeline import VideoProcessingPipeline, sweep_stale_videos as sweep


def _session_factory():
    # Each task runs its own event loop, so it needs its own engine
    engine = create_async_engine(settings.database_url, echo=False)
    return engine, async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@celery_app.task(bind=True, name="process_video")
def process_video(self, video_id: str):
    """
    Run the processing pipeline for one video.

    Args:
        video_id: Video ID
    """
    return asyncio.run(_process_video_async(video_id))


async def _process_video_async(video_id: str) -> Optional[str]:
    engine, session_factory = _session_factory()
    try:
        pipeline = VideoProcessingPipeline(session_factory=session_factory)
        return await pipeline.run(video_id)
    finally:
        await engine.dispose()


@celery_app.task(name="sweep_stale_videos")
def sweep_stale_videos():
    """Fail videos stuck in a processing state or never picked up."""
    return asyncio.run(_sweep_stale_videos_async())


async def _sweep_stale_videos_async(session_factory=None, now: Optional[datetime] = None) -> int:
    engine = None
    if session_factory is None:
        engine, session_factory = _session_factory()
    try:
        return await sweep(session_factory, now=now)
    finally:
        if engine is not None:
            await engine.dispose()
