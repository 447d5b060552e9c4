import uuid
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from ..models.enums import JobCategory, JobStatus, ReportFrequency


class Location(BaseModel):
    latitude: float
    longitude: float


class EquipmentLine(BaseModel):
    item_id: uuid.UUID
    quantity: int


class JobCreate(BaseModel):
    title: str
    category: JobCategory
    report_frequency: Optional[str] = None
    location: Location
    start_date: date
    end_date: Optional[date] = None
    technician_ids: List[uuid.UUID] = Field(default_factory=list)
    equipment: List[EquipmentLine] = Field(default_factory=list)

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, v):
        return v.strip() if isinstance(v, str) else v


class JobUpdate(BaseModel):
    title: Optional[str] = None
    category: Optional[JobCategory] = None
    report_frequency: Optional[ReportFrequency] = None
    location: Optional[Location] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class TechnicianAssign(BaseModel):
    technician_ids: List[uuid.UUID]


class EquipmentAssign(BaseModel):
    equipment: List[EquipmentLine]


class ManagerDecision(BaseModel):
    decision: str  # Completed|Rejected
    note: Optional[str] = None


class TechnicianResponse(BaseModel):
    technician_id: uuid.UUID
    name: Optional[str] = None
    assigned_at: Optional[datetime] = None


class LoanResponse(BaseModel):
    id: uuid.UUID
    job_id: uuid.UUID
    item_id: uuid.UUID
    item_name: Optional[str] = None
    quantity: int
    outstanding: int
    is_returned: bool
    returned_at: Optional[datetime] = None
    pickup_photo_url: Optional[str] = None
    return_photo_url: Optional[str] = None


class JobSummary(BaseModel):
    id: uuid.UUID
    title: str
    category: JobCategory
    report_frequency: ReportFrequency
    status: JobStatus
    supervisor_id: uuid.UUID
    location: Location
    start_date: date
    end_date: Optional[date] = None
    is_extended: bool
    technician_count: int = 0
    open_loan_count: int = 0
    created_at: Optional[datetime] = None


class JobDetail(JobSummary):
    manager_id: Optional[uuid.UUID] = None
    manager_note: Optional[str] = None
    manager_validated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    technicians: List[TechnicianResponse] = Field(default_factory=list)
    loans: List[LoanResponse] = Field(default_factory=list)
    reports: list = Field(default_factory=list)


class JobList(BaseModel):
    data: List[JobSummary]
    total: int
    page: int
    limit: int
