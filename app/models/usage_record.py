"""Monthly usage counters model."""
from datetime import datetime
from sqlalchemy import Column, String, DateTime, ForeignKey, Integer, BigInteger, Float, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
import uuid

from app.database import Base


class UsageRecord(Base):
    """Per-organization usage for one calendar month."""

    __tablename__ = "usage_records"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    month = Column(String(7), nullable=False)  # YYYY-MM

    # Counters
    videos_uploaded = Column(Integer, default=0, nullable=False)
    minutes_processed = Column(Float, default=0.0, nullable=False)
    storage_used = Column(BigInteger, default=0, nullable=False)  # bytes
    api_calls = Column(Integer, default=0, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("organization_id", "month", name="uq_usage_records_org_month"),
    )

    # Relationships
    organization = relationship("Organization", back_populates="usage_records")

    def __repr__(self):
        return f"<UsageRecord {self.organization_id} {self.month}>"
