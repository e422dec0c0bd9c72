"""API key management schemas."""
from datetime import datetime
from typing import List, Optional
from uuid import UUID
from pydantic import BaseModel, Field


class APIKeyCreate(BaseModel):
    """Create a new API key."""
    name: str = Field(..., min_length=1, max_length=255, description="Human-readable name")
    environment: str = Field(default="live", pattern="^(live|test)$")
    expires_at: Optional[datetime] = None


class APIKeyResponse(BaseModel):
    """API key metadata. The key itself is never returned after creation."""
    id: UUID
    name: str
    key_prefix: str
    is_active: bool
    total_requests: int
    last_used_at: Optional[datetime] = None
    created_at: datetime
    expires_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class APIKeyCreatedResponse(BaseModel):
    """Response to key creation, carrying the raw key once."""
    message: str = "API key created. Store it now; it will not be shown again."
    key: str
    api_key: APIKeyResponse


class APIKeyListResponse(BaseModel):
    api_keys: List[APIKeyResponse]
