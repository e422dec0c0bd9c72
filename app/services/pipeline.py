"""Video processing pipeline.

Runs thumbnail extraction, probing, optional HLS segmentation and
multi-resolution transcoding for a single video, moving it through
``pending -> thumbnailing -> probing -> transcoding -> completed | failed``.
"""
import asyncio
import logging
import os
from datetime import datetime, timedelta
from typing import Callable, Optional

import aiofiles.os
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import AsyncSessionLocal
from app.models.video import VideoStatus
from app.services.transcoder import RESOLUTIONS, FFmpegTranscoder, TranscodeProfile
from app.services.usage import UsageLedger
from app.services.video_store import PipelineVideoStore
from app.utils.error_handling import NotFoundError, log_error, log_info
from app.utils.helpers import remove_tree

logger = logging.getLogger(__name__)

ALL_VARIANTS_FAILED = "All resolutions failed to transcode"
INTERRUPTED_MESSAGE = "Processing was interrupted"
STALE_MESSAGE = "Processing timed out"


class VideoDeleted(Exception):
    """The video was deleted while it was being processed."""


def video_output_dir(organization_id, video_id, root: Optional[str] = None) -> str:
    """Directory holding every derived file of one video."""
    return os.path.join(root or settings.output_dir, str(organization_id), str(video_id))


class VideoProcessingPipeline:
    """Processes one video end to end. ``run`` only raises when cancelled."""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        transcoder: Optional[FFmpegTranscoder] = None,
        output_dir: Optional[str] = None,
        generate_hls: Optional[bool] = None,
    ):
        self.session_factory = session_factory
        self.transcoder = transcoder or FFmpegTranscoder()
        self.output_dir = output_dir or settings.output_dir
        self.generate_hls = settings.generate_hls if generate_hls is None else generate_hls

    async def run(self, video_id) -> Optional[str]:
        """
        Process a video.

        Returns:
            The final status, or None when the video does not exist (or was
            deleted while processing)
        """
        async with self.session_factory() as db:
            store = PipelineVideoStore(db)
            ledger = UsageLedger(db)

            video = await store.get(video_id)
            if video is None:
                logger.error(f"Video {video_id} not found, nothing to process")
                return None
            if video.status != VideoStatus.PENDING:
                logger.warning(f"Video {video.id} is {video.status}, skipping")
                return video.status

            video_id = video.id
            organization_id = video.organization_id
            input_path = video.file_path
            work_dir = video_output_dir(organization_id, video_id, self.output_dir)

            try:
                # Thumbnail
                await store.transition(video_id, VideoStatus.THUMBNAILING)
                thumbnail_path = await self.transcoder.extract_thumbnail(
                    input_path, os.path.join(work_dir, "thumbnail.jpg")
                )

                # Metadata
                await store.transition(video_id, VideoStatus.PROBING)
                metadata = await self.transcoder.probe(input_path)
                await store.update_streaming_info(
                    video_id,
                    thumbnail_path=thumbnail_path,
                    duration=metadata.duration,
                    width=metadata.width,
                    height=metadata.height,
                )

                if self.generate_hls:
                    playlist_path = await self.transcoder.generate_hls(
                        input_path, os.path.join(work_dir, "hls")
                    )
                    await store.update_streaming_info(video_id, hls_path=playlist_path)

                # Renditions
                await store.transition(video_id, VideoStatus.TRANSCODING)
                completed = 0
                for profile in RESOLUTIONS:
                    if await self._transcode_variant(store, ledger, organization_id, video_id, input_path, work_dir, profile):
                        completed += 1

                await self._ensure_exists(store, video_id)
                if metadata.duration:
                    await ledger.record_processing_minutes(organization_id, metadata.duration)

                if completed == 0:
                    await store.transition(video_id, VideoStatus.FAILED, ALL_VARIANTS_FAILED)
                    logger.error(f"Video {video_id}: {ALL_VARIANTS_FAILED}")
                    return VideoStatus.FAILED

                await store.transition(video_id, VideoStatus.COMPLETED)
                log_info(
                    f"Video {video_id} processed ({completed}/{len(RESOLUTIONS)} renditions)",
                    context="video_processing",
                    extra={"organization_id": str(organization_id)},
                )
                return VideoStatus.COMPLETED

            except (VideoDeleted, NotFoundError):
                logger.info(f"Video {video_id} was deleted during processing, discarding its outputs")
                await db.rollback()
                await remove_tree(work_dir)
                return None

            except asyncio.CancelledError:
                logger.warning(f"Processing of video {video_id} was cancelled")
                await self._mark_failed(db, store, video_id, INTERRUPTED_MESSAGE)
                raise

            except Exception as e:
                log_error(
                    e,
                    context="video_processing",
                    organization_id=str(organization_id),
                    extra={"video_id": str(video_id)},
                )
                await self._mark_failed(db, store, video_id, str(e) or type(e).__name__)
                return VideoStatus.FAILED

    @staticmethod
    async def _ensure_exists(store: PipelineVideoStore, video_id) -> None:
        if await store.get(video_id) is None:
            raise VideoDeleted(video_id)

    async def _transcode_variant(
        self,
        store: PipelineVideoStore,
        ledger: UsageLedger,
        organization_id,
        video_id,
        input_path: str,
        work_dir: str,
        profile: TranscodeProfile,
    ) -> bool:
        """Encode one rendition. A failure only affects this variant's row."""
        output_path = os.path.join(work_dir, f"{profile.resolution}.mp4")
        await self._ensure_exists(store, video_id)
        await store.upsert_transcoded_variant(
            video_id,
            profile.resolution,
            file_path=output_path,
            status="processing",
            error_message=None,
        )

        try:
            await self.transcoder.transcode(input_path, output_path, profile)
            file_size = await aiofiles.os.path.getsize(output_path)
        except Exception as e:
            logger.warning(f"Video {video_id}: {profile.resolution} failed: {e}")
            await self._ensure_exists(store, video_id)
            await store.upsert_transcoded_variant(
                video_id,
                profile.resolution,
                status="failed",
                error_message=str(e)[:1000],
            )
            return False

        # Storage is only charged for renditions of videos that still exist
        await self._ensure_exists(store, video_id)
        await store.upsert_transcoded_variant(
            video_id,
            profile.resolution,
            status="completed",
            file_size=file_size,
            codec=profile.video_codec,
            bitrate=profile.bitrate_kbps,
        )
        await ledger.record_storage(organization_id, file_size)
        return True

    async def _mark_failed(self, db: AsyncSession, store: PipelineVideoStore, video_id, message: str) -> None:
        try:
            await db.rollback()
            video = await store.get(video_id)
            if video is not None and video.status not in VideoStatus.TERMINAL:
                await store.transition(video_id, VideoStatus.FAILED, message)
        except Exception as e:
            log_error(e, context="video_processing.mark_failed", extra={"video_id": str(video_id)})


async def sweep_stale_videos(session_factory: Callable[[], AsyncSession], now: Optional[datetime] = None) -> int:
    """
    Fail videos that have not finished within ``settings.stale_processing_minutes``.

    Covers videos stuck mid-processing (worker crash, cancelled job) as well as
    videos that were never picked up and are still pending.

    Returns:
        Number of videos marked failed
    """
    cutoff = (now or datetime.utcnow()) - timedelta(minutes=settings.stale_processing_minutes)
    swept = 0
    async with session_factory() as db:
        store = PipelineVideoStore(db)
        for video in await store.find_stale(cutoff):
            await store.transition(video.id, VideoStatus.FAILED, STALE_MESSAGE)
            swept += 1
            logger.warning(f"Video {video.id} exceeded processing window ({video.status}), marked failed")

    if swept:
        logger.info(f"Swept {swept} stale videos")
    return swept
