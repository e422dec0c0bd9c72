"""Upload intake: validation, streaming to disk, quota gating, dispatch."""
import logging
import mimetypes
import os
from dataclasses import dataclass
from typing import Optional

import aiofiles
import aiofiles.os
from fastapi import Request, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.video import Video
from app.services.audit import record_event
from app.services.processing_queue import ProcessingDispatcher, ProcessingQueueFull
from app.services.usage import UsageLedger
from app.services.video_store import VideoRepository
from app.utils.error_handling import (
    ProcessingError,
    QuotaExceededError,
    ServiceUnavailableError,
    ValidationError,
    log_error,
)
from app.utils.helpers import generate_upload_filename, get_file_extension, remove_file

logger = logging.getLogger(__name__)

QUEUE_FULL_MESSAGE = "Processing capacity is exhausted, please retry later"
DISPATCH_FAILED_MESSAGE = "Processing backend is unavailable, please retry later"


@dataclass
class StoredUpload:
    """An upload that has been written to local storage."""

    path: str
    size: int
    original_filename: str
    mime_type: str


def validate_extension(filename: Optional[str]) -> str:
    """
    Check the upload's extension against the allowed formats.

    Raises:
        ValidationError: Extension missing or not allowed
    """
    ext = get_file_extension(filename or "")
    allowed = settings.allowed_format_list
    if ext not in allowed:
        raise ValidationError(
            f"Invalid file type. Allowed formats: {', '.join(allowed)}",
            field="video",
        )
    return ext


async def save_upload(
    file: UploadFile,
    upload_dir: Optional[str] = None,
    max_size: Optional[int] = None,
    chunk_size: Optional[int] = None,
) -> StoredUpload:
    """
    Stream an upload to disk in chunks.

    Raises:
        ValidationError: The upload exceeded ``max_size`` (partial file removed)
    """
    upload_dir = upload_dir or settings.upload_dir
    max_size = max_size or settings.max_file_size
    chunk_size = chunk_size or settings.upload_chunk_size

    await aiofiles.os.makedirs(upload_dir, exist_ok=True)
    path = os.path.join(upload_dir, generate_upload_filename(file.filename))

    size = 0
    try:
        async with aiofiles.open(path, "wb") as out:
            while True:
                chunk = await file.read(chunk_size)
                if not chunk:
                    break
                size += len(chunk)
                if size > max_size:
                    raise ValidationError(
                        f"File too large. Maximum size is {max_size} bytes",
                        field="video",
                        details={"max_size": max_size},
                    )
                await out.write(chunk)
    except Exception:
        await remove_file(path)
        raise

    mime_type = file.content_type
    if not mime_type or mime_type == "application/octet-stream":
        mime_type = mimetypes.guess_type(file.filename)[0] or "application/octet-stream"

    return StoredUpload(path=path, size=size, original_filename=file.filename, mime_type=mime_type)


class UploadService:
    """Accepts one upload on behalf of an organization."""

    def __init__(
        self,
        db: AsyncSession,
        organization_id,
        dispatcher: ProcessingDispatcher,
        user_id=None,
    ):
        self.db = db
        self.organization_id = organization_id
        self.user_id = user_id
        self.dispatcher = dispatcher
        self.ledger = UsageLedger(db)
        self.videos = VideoRepository(db, organization_id)

    async def accept(
        self,
        file: Optional[UploadFile],
        title: Optional[str] = None,
        request: Optional[Request] = None,
    ) -> Video:
        """
        Validate, store and register an upload, then hand it to processing.

        Nothing is left behind on rejection: the stored file is removed and
        any quota reservation is released.
        """
        if file is None or not file.filename:
            raise ValidationError("No file uploaded", field="video")

        validate_extension(file.filename)
        stored = await save_upload(file)

        try:
            if self.dispatcher.is_saturated:
                raise ServiceUnavailableError(QUEUE_FULL_MESSAGE)

            decision = await self.ledger.can_upload_video(self.organization_id)
            if not decision.allowed:
                raise QuotaExceededError(decision.reason)

            decision = await self.ledger.has_storage_capacity(self.organization_id, stored.size)
            if not decision.allowed:
                raise QuotaExceededError(decision.reason)

            decision = await self.ledger.try_record_upload(self.organization_id, stored.size)
            if not decision.allowed:
                raise QuotaExceededError(decision.reason)
        except Exception:
            await remove_file(stored.path)
            raise

        try:
            video = await self.videos.create(
                original_filename=stored.original_filename,
                storage_path=stored.path,
                byte_size=stored.size,
                mime_type=stored.mime_type,
                title=title,
            )
        except Exception as e:
            log_error(e, context="video_upload", organization_id=str(self.organization_id))
            await self.db.rollback()
            await self.ledger.release_upload(self.organization_id, stored.size)
            await remove_file(stored.path)
            raise ProcessingError("Failed to create video record") from e

        try:
            self.dispatcher.dispatch(video.id)
        except ProcessingQueueFull:
            # Lost the race for the last slot after the capacity check
            await self._undo(video, stored)
            raise ServiceUnavailableError(QUEUE_FULL_MESSAGE)
        except Exception as e:
            # Broker unreachable or similar; the job was never handed off
            log_error(
                e,
                context="video_upload.dispatch",
                organization_id=str(self.organization_id),
                extra={"video_id": str(video.id)},
            )
            await self._undo(video, stored)
            raise ServiceUnavailableError(DISPATCH_FAILED_MESSAGE) from e

        await record_event(
            self.db,
            self.organization_id,
            "video.uploaded",
            user_id=self.user_id,
            resource_type="video",
            resource_id=video.id,
            details={"filename": stored.original_filename, "size": stored.size},
            request=request,
        )

        logger.info(
            f"Accepted upload {video.id} ({stored.size} bytes)",
            extra={"organization_id": str(self.organization_id)},
        )
        return video

    async def _undo(self, video: Video, stored: StoredUpload) -> None:
        """Drop the row, the quota reservation and the stored file of an undispatched upload."""
        await self.videos.delete_cascade(video)
        await self.ledger.release_upload(self.organization_id, stored.size)
        await remove_file(stored.path)
