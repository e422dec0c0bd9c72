"""Video model."""
from datetime import datetime
from sqlalchemy import Column, String, DateTime, ForeignKey, Integer, BigInteger, Float, Text, Uuid
from sqlalchemy.orm import relationship
import uuid

from app.database import Base


class VideoStatus:
    """Processing states of a video."""

    PENDING = "pending"
    THUMBNAILING = "thumbnailing"
    PROBING = "probing"
    TRANSCODING = "transcoding"
    COMPLETED = "completed"
    FAILED = "failed"

    TERMINAL = (COMPLETED, FAILED)
    IN_PROGRESS = (THUMBNAILING, PROBING, TRANSCODING)


# Forward path of the pipeline; any non-terminal state may also move to FAILED.
ALLOWED_TRANSITIONS = {
    VideoStatus.PENDING: {VideoStatus.THUMBNAILING, VideoStatus.FAILED},
    VideoStatus.THUMBNAILING: {VideoStatus.PROBING, VideoStatus.FAILED},
    VideoStatus.PROBING: {VideoStatus.TRANSCODING, VideoStatus.FAILED},
    VideoStatus.TRANSCODING: {VideoStatus.COMPLETED, VideoStatus.FAILED},
    VideoStatus.COMPLETED: set(),
    VideoStatus.FAILED: set(),
}


class Video(Base):
    """An uploaded video asset."""

    __tablename__ = "videos"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)

    # Source file
    original_filename = Column(String(500), nullable=False)
    title = Column(String(500), nullable=True)
    file_path = Column(String(1024), nullable=False)
    file_size = Column(BigInteger, nullable=False)
    mime_type = Column(String(100), nullable=False)

    # Probed metadata
    duration = Column(Float, nullable=True)  # seconds
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)

    # Status
    status = Column(String(50), default=VideoStatus.PENDING, nullable=False, index=True)
    error_message = Column(Text, nullable=True)

    # Derived artifacts
    thumbnail_path = Column(String(1024), nullable=True)
    hls_playlist_path = Column(String(1024), nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    processing_started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    # Relationships
    organization = relationship("Organization", back_populates="videos")
    transcoded_videos = relationship(
        "TranscodedVideo",
        back_populates="video",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="TranscodedVideo.created_at",
    )

    def __repr__(self):
        return f"<Video {self.id} ({self.status})>"
