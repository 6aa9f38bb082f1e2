"""
Repository Pattern for Identity Verification Data Access

Each repository wraps the caller's session and never commits. Child
lookups are always scoped to the owning record so an identifier belonging
to another subject's record is treated as missing.
"""

import logging
from typing import Any, Dict, List, Optional, Type
from uuid import UUID
from datetime import datetime

from sqlalchemy import select, func, and_
from sqlalchemy.orm import Session

from verification.models import (
    DirectoryUser,
    VerificationRecord,
    VerificationDocument,
    VerificationCheck,
    VerificationWatcher,
    VerificationEvent,
    VerificationStatus,
    RiskRating,
    VerificationLevel,
    EventType,
    normalize_email,
    utcnow,
)

logger = logging.getLogger(__name__)


# ============================================
# DIRECTORY REPOSITORY
# ============================================

class DirectoryRepository:
    """Read-only access to subjects and actors."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, user_id: UUID) -> Optional[DirectoryUser]:
        return self.session.get(DirectoryUser, user_id)

    def find_by_email(self, email: str) -> Optional[DirectoryUser]:
        """
        Find a directory user by email, ignoring case and surrounding whitespace.

        Returns:
            The first match ordered by creation time, or None
        """
        normalized = normalize_email(email)
        if not normalized:
            return None

        query = (
            select(DirectoryUser)
            .where(func.lower(DirectoryUser.email) == normalized)
            .order_by(DirectoryUser.created_at.asc(), DirectoryUser.id.asc())
            .limit(1)
        )
        return self.session.execute(query).scalars().first()


# ============================================
# RECORD REPOSITORY
# ============================================

class RecordRepository:
    """Repository for the aggregate root."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_subject(self, subject_id: UUID) -> Optional[VerificationRecord]:
        query = select(VerificationRecord).where(VerificationRecord.subject_id == subject_id)
        return self.session.execute(query).scalar_one_or_none()

    def create(self, subject_id: UUID) -> VerificationRecord:
        """
        Create a record with default status, risk rating and level.

        Flushes so the new id is available to child inserts in the same
        transaction. A concurrent insert for the same subject surfaces as
        IntegrityError from the unique index.
        """
        record = VerificationRecord(
            subject_id=subject_id,
            status=VerificationStatus.PENDING,
            risk_rating=RiskRating.MEDIUM,
            verification_level=VerificationLevel.STANDARD,
            requested_at=utcnow(),
            extra_metadata={},
        )
        self.session.add(record)
        self.session.flush()

        logger.debug(f"Created verification record {record.id} for subject {subject_id}")
        return record

    def update(self, record: VerificationRecord, changes: Dict[str, Any]) -> VerificationRecord:
        """Apply attribute changes and flush. The version counter advances on flush."""
        for key, value in changes.items():
            setattr(record, key, value)
        self.session.flush()

        logger.debug(f"Updated verification record {record.id}: {sorted(changes)}")
        return record


# ============================================
# CHILD ENTITY REPOSITORIES
# ============================================

class RecordScopedRepository:
    """
    Shared queries for tables owned by a verification record.

    Subclasses set `model` to the mapped class.
    """
    model: Type = None

    def __init__(self, session: Session):
        self.session = session

    def list_for_record(self, record_id: UUID) -> List[Any]:
        """Children of a record, oldest first with id as tie-breaker."""
        query = (
            select(self.model)
            .where(self.model.record_id == record_id)
            .order_by(self.model.created_at.asc(), self.model.id.asc())
        )
        return list(self.session.execute(query).scalars().all())

    def get_for_record(self, child_id: UUID, record_id: UUID) -> Optional[Any]:
        """Fetch a child only if it belongs to the given record."""
        query = select(self.model).where(
            and_(
                self.model.id == child_id,
                self.model.record_id == record_id
            )
        )
        return self.session.execute(query).scalar_one_or_none()

    def create(self, record_id: UUID, fields: Dict[str, Any]) -> Any:
        entity = self.model(record_id=record_id, **fields)
        self.session.add(entity)
        self.session.flush()

        logger.debug(f"Created {self.model.__tablename__} row {entity.id} on record {record_id}")
        return entity

    def update(self, entity: Any, changes: Dict[str, Any]) -> Any:
        for key, value in changes.items():
            setattr(entity, key, value)
        self.session.flush()

        logger.debug(f"Updated {self.model.__tablename__} row {entity.id}: {sorted(changes)}")
        return entity

    def delete(self, entity: Any) -> None:
        self.session.delete(entity)
        self.session.flush()

        logger.debug(f"Deleted {self.model.__tablename__} row {entity.id}")


class DocumentRepository(RecordScopedRepository):
    """Identity documents of a record."""
    model = VerificationDocument


class CheckRepository(RecordScopedRepository):
    """Checklist entries of a record."""
    model = VerificationCheck


class WatcherRepository(RecordScopedRepository):
    """Watchers of a record."""
    model = VerificationWatcher

    def get_by_email(self, record_id: UUID, email: str) -> Optional[VerificationWatcher]:
        query = select(VerificationWatcher).where(
            and_(
                VerificationWatcher.record_id == record_id,
                VerificationWatcher.email == normalize_email(email)
            )
        )
        return self.session.execute(query).scalar_one_or_none()


# ============================================
# EVENT REPOSITORY
# ============================================

class EventRepository:
    """
    Append-only access to the audit trail.

    There is no update or delete method.
    """

    def __init__(self, session: Session):
        self.session = session

    def append(
        self,
        record_id: UUID,
        event_type: EventType,
        title: str,
        description: Optional[str] = "",
        occurred_at: Optional[datetime] = None,
        actor_id: Optional[UUID] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> VerificationEvent:
        event = VerificationEvent(
            record_id=record_id,
            event_type=event_type,
            title=title,
            description=description or "",
            occurred_at=occurred_at or utcnow(),
            actor_id=actor_id,
            extra_metadata=metadata or {},
        )
        self.session.add(event)
        self.session.flush()

        logger.debug(f"Appended {event_type.value} event {event.id} to record {record_id}")
        return event

    def list_recent(
        self,
        record_id: UUID,
        limit: int = 50,
        offset: int = 0
    ) -> List[VerificationEvent]:
        """Most recent events first, by occurrence then insertion time."""
        query = (
            select(VerificationEvent)
            .where(VerificationEvent.record_id == record_id)
            .order_by(
                VerificationEvent.occurred_at.desc(),
                VerificationEvent.created_at.desc(),
                VerificationEvent.id.desc()
            )
            .offset(offset)
            .limit(limit)
        )
        return list(self.session.execute(query).scalars().all())
