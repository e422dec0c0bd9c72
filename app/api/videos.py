"""Video upload, listing, delivery and deletion endpoints."""
import os
from typing import Optional

import aiofiles.os
from fastapi import APIRouter, Depends, File, Form, Header, Request, UploadFile, status
from fastapi.responses import FileResponse, Response, StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import TenantContext, get_tenant_context, get_user_context, require_role
from app.database import get_db
from app.models.video import VideoStatus
from app.services.audit import record_event
from app.services.processing_queue import ProcessingDispatcher, get_dispatcher
from app.services.streaming import (
    HLS_MEDIA_TYPES,
    RangeNotSatisfiable,
    iter_file,
    parse_range_header,
    read_playlist,
    resolve_child_path,
)
from app.services.uploads import UploadService
from app.services.usage import UsageLedger
from app.services.video_store import VideoRepository
from app.schemas.video import (
    MessageResponse,
    VideoDetailResponse,
    VideoListResponse,
    VideoResponse,
    VideoSummary,
    VideoUploadResponse,
)
from app.utils.error_handling import ConflictError, NotFoundError
from app.utils.helpers import remove_file, remove_tree

router = APIRouter(prefix="/videos", tags=["Videos"])


@router.post("/upload", response_model=VideoUploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_video(
    request: Request,
    video: Optional[UploadFile] = File(None, description="Video file"),
    title: Optional[str] = Form(None),
    context: TenantContext = Depends(require_role("member")),
    dispatcher: ProcessingDispatcher = Depends(get_dispatcher),
    db: AsyncSession = Depends(get_db)
):
    """
    Upload a video for processing.

    The file is validated and stored, counted against the monthly quota and
    queued for thumbnailing, probing and transcoding. The response returns
    immediately; poll `GET /videos/{id}` for the processing status.
    """
    service = UploadService(db, context.organization_id, dispatcher, user_id=context.user_id)
    created = await service.accept(video, title=title, request=request)

    return VideoUploadResponse(
        message="Video uploaded successfully",
        video=VideoSummary.model_validate(created),
    )


@router.get("", response_model=VideoListResponse)
async def list_videos(
    context: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db)
):
    """List the organization's videos, newest first."""
    videos = await VideoRepository(db, context.organization_id).find_all()
    return VideoListResponse(videos=[VideoResponse.from_video(v) for v in videos])


@router.get("/{video_id}", response_model=VideoDetailResponse)
async def get_video(
    video_id: str,
    context: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db)
):
    """Get one video with its renditions."""
    video = await VideoRepository(db, context.organization_id).get(video_id)
    return VideoDetailResponse(video=VideoResponse.from_video(video))


@router.delete("/{video_id}", response_model=MessageResponse)
async def delete_video(
    video_id: str,
    request: Request,
    context: TenantContext = Depends(require_role("member")),
    db: AsyncSession = Depends(get_db)
):
    """
    Delete a video, its renditions and every derived file.

    The freed bytes (original plus renditions) are released from the
    organization's storage usage. Videos still being processed cannot be
    deleted until they complete or fail.
    """
    repo = VideoRepository(db, context.organization_id)
    video = await repo.get(video_id)

    if video.status in VideoStatus.IN_PROGRESS:
        raise ConflictError(
            "Video is still being processed, retry once it has completed or failed",
            details={"status": video.status},
        )

    await remove_file(video.file_path)
    for variant in video.transcoded_videos:
        await remove_file(variant.file_path)
    await remove_file(video.thumbnail_path)
    if video.hls_playlist_path:
        await remove_tree(os.path.dirname(video.hls_playlist_path))

    deleted_id = video.id
    original_filename = video.original_filename
    released = await repo.delete_cascade(video)
    await UsageLedger(db).record_deletion(context.organization_id, released)

    await record_event(
        db,
        context.organization_id,
        "video.deleted",
        user_id=context.user_id,
        resource_type="video",
        resource_id=deleted_id,
        details={"filename": original_filename, "bytes_released": released},
        request=request,
    )

    return MessageResponse(message="Video deleted successfully")


@router.get("/{video_id}/stream")
async def stream_video(
    video_id: str,
    range_header: Optional[str] = Header(None, alias="Range"),
    context: TenantContext = Depends(get_user_context),
    db: AsyncSession = Depends(get_db)
):
    """
    Stream a video.

    Serves the HLS playlist when one exists, otherwise the original file with
    HTTP range support (206 partial content, 416 when unsatisfiable). Segment
    references in the playlist point at `/videos/{id}/hls/`.
    """
    video = await VideoRepository(db, context.organization_id).get(video_id)

    if video.hls_playlist_path and await aiofiles.os.path.isfile(video.hls_playlist_path):
        playlist = await read_playlist(video.hls_playlist_path, segment_prefix="hls/")
        return Response(content=playlist, media_type=HLS_MEDIA_TYPES[".m3u8"])

    if not video.file_path or not await aiofiles.os.path.isfile(video.file_path):
        raise NotFoundError("Video file not found", resource="video_file")

    file_size = await aiofiles.os.path.getsize(video.file_path)
    try:
        byte_range = parse_range_header(range_header, file_size)
    except RangeNotSatisfiable as e:
        return Response(
            status_code=status.HTTP_416_REQUESTED_RANGE_NOT_SATISFIABLE,
            headers={"Content-Range": e.content_range},
        )

    if byte_range is None:
        return StreamingResponse(
            iter_file(video.file_path),
            media_type=video.mime_type,
            headers={"Content-Length": str(file_size), "Accept-Ranges": "bytes"},
        )

    return StreamingResponse(
        iter_file(video.file_path, start=byte_range.start, length=byte_range.length),
        status_code=status.HTTP_206_PARTIAL_CONTENT,
        media_type=video.mime_type,
        headers={
            "Content-Range": byte_range.content_range,
            "Accept-Ranges": "bytes",
            "Content-Length": str(byte_range.length),
        },
    )


@router.get("/{video_id}/hls/{segment}")
async def get_hls_segment(
    video_id: str,
    segment: str,
    context: TenantContext = Depends(get_user_context),
    db: AsyncSession = Depends(get_db)
):
    """Serve an HLS playlist or segment from the video's HLS directory."""
    video = await VideoRepository(db, context.organization_id).get(video_id)
    ext = os.path.splitext(segment)[1].lower()

    if not video.hls_playlist_path or ext not in HLS_MEDIA_TYPES:
        raise NotFoundError("Segment not found", resource="hls_segment")

    path = resolve_child_path(os.path.dirname(video.hls_playlist_path), segment)
    if path is None or not await aiofiles.os.path.isfile(path):
        raise NotFoundError("Segment not found", resource="hls_segment")

    return FileResponse(path, media_type=HLS_MEDIA_TYPES[ext])


@router.get("/{video_id}/thumbnail")
async def get_thumbnail(
    video_id: str,
    context: TenantContext = Depends(get_user_context),
    db: AsyncSession = Depends(get_db)
):
    """Return the video's JPEG thumbnail."""
    video = await VideoRepository(db, context.organization_id).get(video_id)
    if not video.thumbnail_path or not await aiofiles.os.path.isfile(video.thumbnail_path):
        raise NotFoundError("Thumbnail not found", resource="thumbnail")
    return FileResponse(video.thumbnail_path, media_type="image/jpeg")


@router.get("/{video_id}/download")
async def download_video(
    video_id: str,
    context: TenantContext = Depends(get_user_context),
    db: AsyncSession = Depends(get_db)
):
    """Download the original upload under its original filename."""
    video = await VideoRepository(db, context.organization_id).get(video_id)
    if not video.file_path or not await aiofiles.os.path.isfile(video.file_path):
        raise NotFoundError("Video file not found", resource="video_file")
    return FileResponse(
        video.file_path,
        media_type=video.mime_type,
        filename=video.original_filename,
    )
