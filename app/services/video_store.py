"""Video record persistence.

``VideoRepository`` is the only way request handlers reach video rows and is
bound to a single organization. ``PipelineVideoStore`` is the internal store
used by background processing, keyed by video id alone.
"""
import logging
import uuid
from datetime import datetime
from typing import List, Optional, Union

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.transcoded_video import TranscodedVideo
from app.models.video import ALLOWED_TRANSITIONS, Video, VideoStatus
from app.utils.error_handling import NotFoundError
from app.utils.helpers import to_uuid

logger = logging.getLogger(__name__)

VideoId = Union[str, uuid.UUID]


class InvalidStatusTransition(Exception):
    """Raised when a video is moved to a status its current one cannot reach."""

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move video from '{current}' to '{requested}'")


def _parse_id(video_id: VideoId) -> Optional[uuid.UUID]:
    try:
        return to_uuid(video_id)
    except (ValueError, TypeError, AttributeError):
        return None


class VideoRepository:
    """Tenant-scoped access to videos of one organization."""

    def __init__(self, db: AsyncSession, organization_id: VideoId):
        self.db = db
        self.organization_id = to_uuid(organization_id)

    def _scoped(self):
        return (
            select(Video)
            .where(Video.organization_id == self.organization_id)
            .options(selectinload(Video.transcoded_videos))
        )

    async def create(
        self,
        original_filename: str,
        storage_path: str,
        byte_size: int,
        mime_type: str,
        title: Optional[str] = None,
    ) -> Video:
        video = Video(
            organization_id=self.organization_id,
            original_filename=original_filename,
            title=title,
            file_path=storage_path,
            file_size=byte_size,
            mime_type=mime_type,
            status=VideoStatus.PENDING,
        )
        self.db.add(video)
        await self.db.commit()

        # Reload with variants so the object is safe to serialize outside the session
        return await self.get(video.id)

    async def find_all(self) -> List[Video]:
        result = await self.db.execute(self._scoped().order_by(Video.created_at.desc()))
        return list(result.scalars().all())

    async def find_by_id(self, video_id: VideoId) -> Optional[Video]:
        parsed = _parse_id(video_id)
        if parsed is None:
            return None
        result = await self.db.execute(
            self._scoped()
            .where(Video.id == parsed)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get(self, video_id: VideoId) -> Video:
        video = await self.find_by_id(video_id)
        if video is None:
            raise NotFoundError("Video not found", resource="video")
        return video

    async def delete_cascade(self, video: Video) -> int:
        """
        Delete a video and all of its transcoded variants.

        Returns:
            Bytes the deletion frees (original plus every variant)
        """
        if video.organization_id != self.organization_id:
            raise NotFoundError("Video not found", resource="video")

        variants = list(video.transcoded_videos)
        total_bytes = (video.file_size or 0) + sum(v.file_size or 0 for v in variants)

        # Variants go with the row through the delete-orphan cascade
        await self.db.delete(video)
        await self.db.commit()

        logger.info(
            f"Deleted video {video.id} with {len(variants)} variants",
            extra={"organization_id": str(self.organization_id), "bytes_released": total_bytes},
        )
        return total_bytes


class PipelineVideoStore:
    """Unscoped video access for the processing pipeline."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, video_id: VideoId) -> Optional[Video]:
        parsed = _parse_id(video_id)
        if parsed is None:
            return None
        result = await self.db.execute(
            select(Video)
            .where(Video.id == parsed)
            .options(selectinload(Video.transcoded_videos))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _require(self, video_id: VideoId) -> Video:
        video = await self.get(video_id)
        if video is None:
            raise NotFoundError("Video not found", resource="video")
        return video

    async def transition(
        self,
        video_id: VideoId,
        new_status: str,
        error_message: Optional[str] = None,
    ) -> Video:
        """Move a video to ``new_status`` if the state machine allows it."""
        video = await self._require(video_id)
        allowed = ALLOWED_TRANSITIONS.get(video.status, set())
        if new_status not in allowed:
            raise InvalidStatusTransition(video.status, new_status)

        now = datetime.utcnow()
        video.status = new_status
        if new_status == VideoStatus.THUMBNAILING:
            video.processing_started_at = now
        if new_status in VideoStatus.TERMINAL:
            video.completed_at = now
        if error_message is not None:
            video.error_message = error_message

        await self.db.commit()
        logger.debug(f"Video {video.id} -> {new_status}")
        return video

    async def update_status(
        self,
        video_id: VideoId,
        status: str,
        error_message: Optional[str] = None,
    ) -> Video:
        return await self.transition(video_id, status, error_message)

    async def update_streaming_info(
        self,
        video_id: VideoId,
        hls_path: Optional[str] = None,
        thumbnail_path: Optional[str] = None,
        duration: Optional[float] = None,
        width: Optional[int] = None,
        height: Optional[int] = None,
    ) -> Video:
        """Store derived metadata. Never changes the video status."""
        video = await self._require(video_id)
        if hls_path is not None:
            video.hls_playlist_path = hls_path
        if thumbnail_path is not None:
            video.thumbnail_path = thumbnail_path
        if duration is not None:
            video.duration = duration
        if width is not None:
            video.width = width
        if height is not None:
            video.height = height
        await self.db.commit()
        return video

    async def upsert_transcoded_variant(
        self,
        video_id: VideoId,
        resolution: str,
        **fields,
    ) -> TranscodedVideo:
        """Create or update the variant row for (video, resolution)."""
        parsed = to_uuid(video_id)
        result = await self.db.execute(
            select(TranscodedVideo)
            .where(TranscodedVideo.video_id == parsed)
            .where(TranscodedVideo.resolution == resolution)
        )
        variant = result.scalar_one_or_none()

        if variant is None:
            variant = TranscodedVideo(
                video_id=parsed,
                resolution=resolution,
                file_path=fields.pop("file_path", ""),
            )
            self.db.add(variant)

        for key, value in fields.items():
            setattr(variant, key, value)

        await self.db.commit()
        return variant

    async def find_stale(self, older_than: datetime) -> List[Video]:
        """
        Videos that should have finished by ``older_than``.

        In-progress videos are aged from when processing started, pending ones
        from when they were uploaded.
        """
        result = await self.db.execute(
            select(Video).where(
                or_(
                    and_(
                        Video.status.in_(VideoStatus.IN_PROGRESS),
                        Video.processing_started_at < older_than,
                    ),
                    and_(
                        Video.status == VideoStatus.PENDING,
                        Video.created_at < older_than,
                    ),
                )
            )
        )
        return list(result.scalars().all())

    async def find_pending(self, limit: Optional[int] = None) -> List[Video]:
        """Pending videos, oldest first."""
        query = (
            select(Video)
            .where(Video.status == VideoStatus.PENDING)
            .order_by(Video.created_at.asc())
        )
        if limit is not None:
            query = query.limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())
