"""Database models."""
from app.models.organization import Organization
from app.models.user import User
from app.models.api_key import APIKey
from app.models.video import Video, VideoStatus
from app.models.transcoded_video import TranscodedVideo
from app.models.usage_record import UsageRecord
from app.models.audit_log import AuditLog

__all__ = [
    "Organization",
    "User",
    "APIKey",
    "Video",
    "VideoStatus",
    "TranscodedVideo",
    "UsageRecord",
    "AuditLog",
]
