import uuid
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from ..models.enums import ProgressStatus, ValidationStatus


class EvidencePhoto(BaseModel):
    photo_url: Optional[str] = None
    taken_at: Optional[datetime] = None


class EvidencePairIn(BaseModel):
    pair_key: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    before: Optional[EvidencePhoto] = None
    after: Optional[EvidencePhoto] = None


class ToolPhoto(BaseModel):
    item_id: Optional[uuid.UUID] = None
    photo_url: Optional[str] = None


class ReportCreate(BaseModel):
    progress_status: str
    progress_percent: Optional[int] = None
    photo_url: Optional[str] = None
    report_date: Optional[date] = None
    note: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    pairs: List[EvidencePairIn] = Field(default_factory=list)
    pickup_photos: List[ToolPhoto] = Field(default_factory=list)
    return_tools: bool = False
    return_photos: List[ToolPhoto] = Field(default_factory=list)


class ReportValidate(BaseModel):
    decision: str  # Approve|Reject
    note: Optional[str] = None


class EvidencePairResponse(BaseModel):
    id: uuid.UUID
    pair_key: str
    title: Optional[str] = None
    description: Optional[str] = None
    before_photo_url: str
    after_photo_url: str
    taken_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ReportResponse(BaseModel):
    id: uuid.UUID
    job_id: uuid.UUID
    reporter_id: uuid.UUID
    report_date: date
    progress_percent: Optional[int] = None
    progress_status: ProgressStatus
    photo_url: str
    note: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    off_site: bool = False
    validation_status: ValidationStatus
    validator_id: Optional[uuid.UUID] = None
    validated_at: Optional[datetime] = None
    validation_note: Optional[str] = None
    created_at: Optional[datetime] = None
    evidence_pairs: List[EvidencePairResponse] = Field(default_factory=list)

    class Config:
        from_attributes = True


class ReportSubmitted(BaseModel):
    report: ReportResponse
    warning: Optional[str] = None
    total_reports: int
    locked: bool
    auto_returned_tools: int
    saved_pair_count: int


class ReportValidated(BaseModel):
    report: ReportResponse
    job_status: str
    advanced_to_manager_validation: bool
