"""
SQLAlchemy ORM Models for the Identity Verification Aggregate

This module defines the schema for a subject's verification record and
its dependent rows:
- UUID primary keys
- Foreign keys from every child table to the owning record
- Enum-typed columns restricted to the canonical value sets
- Timestamps for all records (created_at, updated_at)
- Version counter on the aggregate root for optimistic locking

Tables:
1. directory_users - Subject/actor directory (read-only for this package)
2. verification_records - Aggregate root, one per subject
3. verification_documents - Identity documents attached to a record
4. verification_checks - Compliance checklist entries
5. verification_watchers - Stakeholders tracking a record
6. verification_events - Append-only audit trail
"""

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    String, Integer, DateTime, Text, ForeignKey, Index,
    UniqueConstraint, Enum, JSON, Uuid
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship, declarative_base, Mapped, mapped_column

# Base class for all models
Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


# ============================================
# ENUMS
# ============================================

class VerificationStatus(str, PyEnum):
    """Lifecycle status of a verification record"""
    PENDING = "pending"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    SUSPENDED = "suspended"
    EXPIRED = "expired"


class RiskRating(str, PyEnum):
    """Risk assessment of the subject"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class VerificationLevel(str, PyEnum):
    """Depth of verification requested"""
    STANDARD = "standard"
    ENHANCED = "enhanced"
    EXPEDITED = "expedited"


class DocumentType(str, PyEnum):
    """Type of identity document"""
    PASSPORT = "passport"
    DRIVING_LICENSE = "driving_license"
    WORK_PERMIT = "work_permit"
    NATIONAL_ID = "national_id"
    INSURANCE_CERTIFICATE = "insurance_certificate"
    OTHER = "other"


class DocumentStatus(str, PyEnum):
    """Review status of a single document"""
    PENDING = "pending"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


class CheckStatus(str, PyEnum):
    """Progress of a compliance checklist entry"""
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    COMPLETED = "completed"


class WatcherRole(str, PyEnum):
    """Role of a stakeholder watching a record"""
    OPERATIONS_LEAD = "operations_lead"
    COMPLIANCE_SPECIALIST = "compliance_specialist"
    SAFETY_MANAGER = "safety_manager"
    ACCOUNT_MANAGER = "account_manager"
    OTHER = "other"


class EventType(str, PyEnum):
    """Type of audit event"""
    NOTE = "note"
    STATUS_CHANGE = "status_change"
    DOCUMENT_UPDATE = "document_update"
    CHECK_UPDATE = "check_update"
    WATCHER_UPDATE = "watcher_update"
    ESCALATION = "escalation"
    REVIEW_REQUEST = "review_request"
    EXPIRY = "expiry"


def enum_column(enum_cls: type, name: str) -> Enum:
    """Enum column type storing the lower-case values rather than member names."""
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


# ============================================
# MIXIN CLASSES
# ============================================

class TimestampMixin:
    """Mixin for created_at and updated_at timestamps"""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False
    )


# ============================================
# DIRECTORY
# ============================================

class DirectoryUser(Base, TimestampMixin):
    """
    People known to the wider system.

    Subjects (whose identity is verified) and actors/reviewers both live
    here. The verification package only reads this table.
    """
    __tablename__ = "directory_users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    first_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True, index=True)

    # Eligibility for verification is decided on this value
    user_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<DirectoryUser(id={self.id}, email='{self.email}', type='{self.user_type}')>"


# ============================================
# AGGREGATE ROOT
# ============================================

class VerificationRecord(Base, TimestampMixin):
    """
    Verification record for a single subject.

    Owns documents, checks, watchers and events. Created lazily on first
    access and never deleted by this package.
    """
    __tablename__ = "verification_records"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # Exactly one record per subject
    subject_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("directory_users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True
    )

    status: Mapped[VerificationStatus] = mapped_column(
        enum_column(VerificationStatus, "verification_status"),
        nullable=False,
        default=VerificationStatus.PENDING,
        index=True
    )
    risk_rating: Mapped[RiskRating] = mapped_column(
        enum_column(RiskRating, "risk_rating"),
        nullable=False,
        default=RiskRating.MEDIUM
    )
    verification_level: Mapped[VerificationLevel] = mapped_column(
        enum_column(VerificationLevel, "verification_level"),
        nullable=False,
        default=VerificationLevel.STANDARD
    )

    requested_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Weak reference: reviewer removal leaves the record intact
    reviewer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("directory_users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    # "metadata" is reserved on declarative classes
    extra_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSONType, nullable=True)

    # Version for optimistic locking
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # Subject and reviewer are looked up through DirectoryRepository by id
    documents: Mapped[List["VerificationDocument"]] = relationship(
        "VerificationDocument",
        back_populates="record",
        lazy="select"
    )
    checks: Mapped[List["VerificationCheck"]] = relationship(
        "VerificationCheck",
        back_populates="record",
        lazy="select"
    )
    watchers: Mapped[List["VerificationWatcher"]] = relationship(
        "VerificationWatcher",
        back_populates="record",
        lazy="select"
    )
    events: Mapped[List["VerificationEvent"]] = relationship(
        "VerificationEvent",
        back_populates="record",
        lazy="select"
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<VerificationRecord(id={self.id}, subject_id={self.subject_id}, status={self.status})>"


# ============================================
# CHILD ENTITIES
# ============================================

class VerificationDocument(Base, TimestampMixin):
    """
    Identity documents submitted for a verification record.
    """
    __tablename__ = "verification_documents"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    record_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("verification_records.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    document_type: Mapped[DocumentType] = mapped_column(
        enum_column(DocumentType, "verification_document_type"),
        nullable=False
    )
    status: Mapped[DocumentStatus] = mapped_column(
        enum_column(DocumentStatus, "verification_document_status"),
        nullable=False,
        default=DocumentStatus.PENDING
    )
    document_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    issuing_country: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    issued_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    file_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    record: Mapped["VerificationRecord"] = relationship(
        "VerificationRecord",
        back_populates="documents"
    )

    __table_args__ = (
        Index('ix_verification_document_record_created', 'record_id', 'created_at'),
    )

    def __repr__(self) -> str:
        return f"<VerificationDocument(record_id={self.record_id}, type='{self.document_type}')>"


class VerificationCheck(Base, TimestampMixin):
    """
    Compliance checklist entry for a verification record.
    """
    __tablename__ = "verification_checks"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    record_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("verification_records.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    label: Mapped[str] = mapped_column(String(500), nullable=False)
    status: Mapped[CheckStatus] = mapped_column(
        enum_column(CheckStatus, "verification_check_status"),
        nullable=False,
        default=CheckStatus.NOT_STARTED
    )
    owner: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    due_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    record: Mapped["VerificationRecord"] = relationship(
        "VerificationRecord",
        back_populates="checks"
    )

    __table_args__ = (
        Index('ix_verification_check_record_created', 'record_id', 'created_at'),
    )

    def __repr__(self) -> str:
        return f"<VerificationCheck(record_id={self.record_id}, label='{self.label}')>"


class VerificationWatcher(Base, TimestampMixin):
    """
    Stakeholder who should be kept informed about a verification record.

    Email is stored lower-cased so the unique constraint is case-insensitive.
    """
    __tablename__ = "verification_watchers"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    record_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("verification_records.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    email: Mapped[str] = mapped_column(String(320), nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    role: Mapped[WatcherRole] = mapped_column(
        enum_column(WatcherRole, "verification_watcher_role"),
        nullable=False,
        default=WatcherRole.OPERATIONS_LEAD
    )
    notified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_seen_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    record: Mapped["VerificationRecord"] = relationship(
        "VerificationRecord",
        back_populates="watchers"
    )

    __table_args__ = (
        UniqueConstraint('record_id', 'email', name='uq_verification_watcher_email'),
    )

    def __repr__(self) -> str:
        return f"<VerificationWatcher(record_id={self.record_id}, email='{self.email}')>"


class VerificationEvent(Base):
    """
    Audit trail entry for a verification record.

    Immutable - no updates or deletes allowed.
    """
    __tablename__ = "verification_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    record_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("verification_records.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    event_type: Mapped[EventType] = mapped_column(
        enum_column(EventType, "verification_event_type"),
        nullable=False,
        index=True
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("directory_users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    extra_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSONType, nullable=True)

    # No updated_at - events are immutable
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    record: Mapped["VerificationRecord"] = relationship(
        "VerificationRecord",
        back_populates="events"
    )

    __table_args__ = (
        Index('ix_verification_event_record_occurred', 'record_id', 'occurred_at'),
    )

    def __repr__(self) -> str:
        return f"<VerificationEvent(id={self.id}, type={self.event_type}, title='{self.title}')>"


# ============================================
# HELPER FUNCTIONS
# ============================================

def normalize_email(email: Optional[str]) -> str:
    """
    Normalize an email address for storage and case-insensitive comparison.

    Args:
        email: The address to normalize (can be None)

    Returns:
        Trimmed lower-case address, or empty string if email is None/empty
    """
    if not email:
        return ""
    return email.strip().lower()


def humanize(value: str) -> str:
    """Render an enum value for people: underscores become spaces."""
    return str(getattr(value, "value", value)).replace("_", " ")
