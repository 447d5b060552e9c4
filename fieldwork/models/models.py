import uuid
from datetime import datetime, date, timezone
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Integer,
    Float,
    Text,
    Uuid,
    Enum,
    UniqueConstraint,
    CheckConstraint,
    Index,
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base
from .enums import (
    Role,
    JobCategory,
    ReportFrequency,
    JobStatus,
    ProgressStatus,
    ValidationStatus,
    ObstacleType,
    ExtensionStatus,
)


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def enum_column(enum_cls, **kwargs):
    # Stored as the human label ("Active", "Daily", ...) in a plain VARCHAR
    return mapped_column(
        Enum(enum_cls, native_enum=False, length=40, values_callable=lambda e: [m.value for m in e]),
        **kwargs,
    )


class Profile(Base):
    """Identity as seen by the engine: id, display name and role."""
    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(150), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True)
    role: Mapped[Role] = enum_column(Role, nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Job(Base):
    __tablename__ = "jobs"

    id: Mapped[uuid.UUID] = uuid_pk()
    title: Mapped[str] = mapped_column(String(150), nullable=False)
    category: Mapped[JobCategory] = enum_column(JobCategory, nullable=False)
    report_frequency: Mapped[ReportFrequency] = enum_column(ReportFrequency, nullable=False)
    supervisor_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("profiles.id"), nullable=False, index=True)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    is_extended: Mapped[bool] = mapped_column(Boolean, default=False)
    status: Mapped[JobStatus] = enum_column(JobStatus, nullable=False, default=JobStatus.active, index=True)
    # Manager final validation
    manager_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), ForeignKey("profiles.id"))
    manager_note: Mapped[Optional[str]] = mapped_column(Text)
    manager_validated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    supervisor = relationship("Profile", foreign_keys=[supervisor_id])
    technicians = relationship("JobTechnician", back_populates="job", cascade="all, delete-orphan")
    loans = relationship("EquipmentLoan", back_populates="job", cascade="all, delete-orphan")
    reports = relationship("ProgressReport", back_populates="job", cascade="all, delete-orphan")
    extension_requests = relationship("ExtensionRequest", back_populates="job", cascade="all, delete-orphan")

    @property
    def technician_ids(self) -> list:
        return [t.technician_id for t in self.technicians]


class JobTechnician(Base):
    __tablename__ = "job_technicians"

    id: Mapped[uuid.UUID] = uuid_pk()
    job_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False)
    technician_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("profiles.id"), nullable=False, index=True)
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    job = relationship("Job", back_populates="technicians")
    technician = relationship("Profile")

    __table_args__ = (UniqueConstraint("job_id", "technician_id", name="uq_job_technician"),)


class EquipmentItem(Base):
    __tablename__ = "equipment_items"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(150), nullable=False)
    kind: Mapped[Optional[str]] = mapped_column(String(100))
    description: Mapped[Optional[str]] = mapped_column(Text)
    photo_url: Mapped[Optional[str]] = mapped_column(String(1000))
    total_stock: Mapped[int] = mapped_column(Integer, nullable=False)
    available_stock: Mapped[int] = mapped_column(Integer, nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        CheckConstraint("available_stock >= 0", name="ck_item_available_non_negative"),
        CheckConstraint("available_stock <= total_stock", name="ck_item_available_le_total"),
    )

    @property
    def borrowed(self) -> int:
        return self.total_stock - self.available_stock


class EquipmentLoan(Base):
    __tablename__ = "equipment_loans"

    id: Mapped[uuid.UUID] = uuid_pk()
    job_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    item_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("equipment_items.id"), nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)  # total ever borrowed on this loan
    outstanding: Mapped[int] = mapped_column(Integer, nullable=False)  # still out in the field
    borrower_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), ForeignKey("profiles.id"))
    is_returned: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    returned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    pickup_photo_url: Mapped[Optional[str]] = mapped_column(String(1000))
    return_photo_url: Mapped[Optional[str]] = mapped_column(String(1000))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    job = relationship("Job", back_populates="loans")
    item = relationship("EquipmentItem")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_loan_quantity_positive"),
        CheckConstraint("outstanding >= 0 AND outstanding <= quantity", name="ck_loan_outstanding_range"),
    )


class ProgressReport(Base):
    __tablename__ = "progress_reports"

    id: Mapped[uuid.UUID] = uuid_pk()
    job_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    reporter_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("profiles.id"), nullable=False)
    report_date: Mapped[date] = mapped_column(Date, nullable=False)
    progress_percent: Mapped[Optional[int]] = mapped_column(Integer)
    progress_status: Mapped[ProgressStatus] = enum_column(ProgressStatus, nullable=False)
    photo_url: Mapped[str] = mapped_column(String(1000), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text)
    latitude: Mapped[Optional[float]] = mapped_column(Float)
    longitude: Mapped[Optional[float]] = mapped_column(Float)
    off_site: Mapped[bool] = mapped_column(Boolean, default=False)
    validation_status: Mapped[ValidationStatus] = enum_column(
        ValidationStatus, nullable=False, default=ValidationStatus.pending, index=True
    )
    validator_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), ForeignKey("profiles.id"))
    validated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    validation_note: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    job = relationship("Job", back_populates="reports")
    evidence_pairs = relationship("ReportEvidencePair", back_populates="report", cascade="all, delete-orphan")

    __table_args__ = (Index("idx_reports_job_date", "job_id", "report_date"),)


class ReportEvidencePair(Base):
    """Before/after photo pair attached to a progress report"""
    __tablename__ = "report_evidence_pairs"

    id: Mapped[uuid.UUID] = uuid_pk()
    report_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("progress_reports.id", ondelete="CASCADE"), nullable=False, index=True)
    pair_key: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[Optional[str]] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(Text)
    before_photo_url: Mapped[str] = mapped_column(String(1000), nullable=False)
    after_photo_url: Mapped[str] = mapped_column(String(1000), nullable=False)
    taken_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    taken_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), ForeignKey("profiles.id"))

    report = relationship("ProgressReport", back_populates="evidence_pairs")


class ExtensionRequest(Base):
    """Obstacle claim asking for a deadline extension"""
    __tablename__ = "extension_requests"

    id: Mapped[uuid.UUID] = uuid_pk()
    job_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    requester_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("profiles.id"), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    photo_url: Mapped[Optional[str]] = mapped_column(String(1000))
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    obstacle_type: Mapped[ObstacleType] = enum_column(ObstacleType, nullable=False, default=ObstacleType.other)
    previous_end_date: Mapped[Optional[date]] = mapped_column(Date)
    new_end_date: Mapped[Optional[date]] = mapped_column(Date)
    status: Mapped[ExtensionStatus] = enum_column(ExtensionStatus, nullable=False, default=ExtensionStatus.pending, index=True)
    supervisor_note: Mapped[Optional[str]] = mapped_column(Text)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text)
    resolved_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), ForeignKey("profiles.id"))
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    job = relationship("Job", back_populates="extension_requests")


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = uuid_pk()
    recipient_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (Index("idx_notifications_recipient_read", "recipient_id", "is_read"),)


class ActivityLog(Base):
    """Append-only record of who did what"""
    __tablename__ = "activity_logs"

    id: Mapped[uuid.UUID] = uuid_pk()
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), ForeignKey("profiles.id", ondelete="SET NULL"), index=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    entity_type: Mapped[Optional[str]] = mapped_column(String(50))  # job|report|loan|extension|item
    entity_id: Mapped[Optional[str]] = mapped_column(String(64))
    timestamp_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    integrity_hash: Mapped[Optional[str]] = mapped_column(String(64))

    __table_args__ = (Index("idx_activity_entity", "entity_type", "entity_id"),)
