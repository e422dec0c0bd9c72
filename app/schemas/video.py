"""Video schemas."""
from datetime import datetime
from typing import List, Optional
from uuid import UUID
from pydantic import BaseModel


class TranscodedVideoResponse(BaseModel):
    """One resolution-specific rendition."""
    id: UUID
    resolution: str
    file_size: int
    bitrate: Optional[int] = None
    codec: Optional[str] = None
    status: str
    error_message: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class VideoResponse(BaseModel):
    """Video with its renditions."""
    id: UUID
    organization_id: UUID
    original_filename: str
    title: Optional[str] = None
    file_size: int
    mime_type: str
    duration: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None
    status: str
    error_message: Optional[str] = None
    has_thumbnail: bool = False
    has_hls: bool = False
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    transcoded_videos: List[TranscodedVideoResponse] = []

    class Config:
        from_attributes = True

    @classmethod
    def from_video(cls, video) -> "VideoResponse":
        response = cls.model_validate(video)
        response.has_thumbnail = bool(video.thumbnail_path)
        response.has_hls = bool(video.hls_playlist_path)
        return response


class VideoSummary(BaseModel):
    """Fields returned right after upload."""
    id: UUID
    original_filename: str
    title: Optional[str] = None
    file_size: int
    status: str
    created_at: datetime

    class Config:
        from_attributes = True


class VideoUploadResponse(BaseModel):
    message: str
    video: VideoSummary


class VideoDetailResponse(BaseModel):
    video: VideoResponse


class VideoListResponse(BaseModel):
    videos: List[VideoResponse]


class MessageResponse(BaseModel):
    message: str
