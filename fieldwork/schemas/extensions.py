import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel

from ..models.enums import ExtensionStatus, ObstacleType


class ExtensionCreate(BaseModel):
    reason: Optional[str] = None
    duration_minutes: Optional[int] = None
    obstacle_type: Optional[str] = None
    photo_url: Optional[str] = None


class ExtensionResolve(BaseModel):
    decision: str  # Approved|Rejected
    note: Optional[str] = None
    rejection_reason: Optional[str] = None


class ExtensionResponse(BaseModel):
    id: uuid.UUID
    job_id: uuid.UUID
    requester_id: uuid.UUID
    reason: str
    photo_url: Optional[str] = None
    duration_minutes: int
    obstacle_type: ObstacleType
    previous_end_date: Optional[date] = None
    new_end_date: Optional[date] = None
    status: ExtensionStatus
    supervisor_note: Optional[str] = None
    rejection_reason: Optional[str] = None
    resolved_by: Optional[uuid.UUID] = None
    resolved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ExtensionResolved(BaseModel):
    request: ExtensionResponse
    end_date: Optional[date] = None
