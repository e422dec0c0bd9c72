"""Pydantic schemas for API requests and responses."""
from app.schemas.video import (
    VideoDetailResponse,
    VideoListResponse,
    VideoResponse,
    VideoUploadResponse,
)
from app.schemas.usage import UsageResponse, CurrentUsage

__all__ = [
    "VideoDetailResponse",
    "VideoListResponse",
    "VideoResponse",
    "VideoUploadResponse",
    "UsageResponse",
    "CurrentUsage",
]
