"""Pydantic models for auth domain."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class Session(BaseModel):
    """An active user session, scoped to one organization."""

    token: str = Field(..., description="Session token (opaque string)")
    user_id: UUID
    organization_id: UUID
    created_at: datetime
    expires_at: datetime
    last_activity_at: datetime
