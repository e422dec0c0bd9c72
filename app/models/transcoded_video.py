"""Transcoded variant model."""
from datetime import datetime
from sqlalchemy import Column, String, DateTime, ForeignKey, Integer, BigInteger, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
import uuid

from app.database import Base


class TranscodedVideo(Base):
    """One resolution-specific encode of a video."""

    __tablename__ = "transcoded_videos"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    video_id = Column(Uuid, ForeignKey("videos.id", ondelete="CASCADE"), nullable=False, index=True)

    resolution = Column(String(20), nullable=False)  # 720p, 1080p
    file_path = Column(String(1024), nullable=False)
    file_size = Column(BigInteger, default=0, nullable=False)
    bitrate = Column(Integer, nullable=True)  # kbps
    codec = Column(String(50), nullable=True)

    status = Column(String(20), default="pending", nullable=False, index=True)
    # pending, processing, completed, failed
    error_message = Column(String(1000), nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("video_id", "resolution", name="uq_transcoded_videos_video_resolution"),
    )

    # Relationships
    video = relationship("Video", back_populates="transcoded_videos")

    def __repr__(self):
        return f"<TranscodedVideo {self.video_id} {self.resolution} ({self.status})>"
