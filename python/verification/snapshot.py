"""
Snapshot assembly for a subject's verification record.

The snapshot is the read model returned by every operation: the record
with reviewer and subject resolved, its documents, checks, watchers, the
most recent window of events and the reference data catalog. Every key
is always present; unset values are rendered as None.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from verification.lifecycle import RecordLifecycleManager
from verification.models import (
    DirectoryUser,
    VerificationRecord,
    VerificationDocument,
    VerificationCheck,
    VerificationWatcher,
    VerificationEvent,
)
from verification.reference_data import catalog
from verification.repositories import (
    DirectoryRepository,
    DocumentRepository,
    CheckRepository,
    WatcherRepository,
    EventRepository,
)

logger = logging.getLogger(__name__)

DEFAULT_EVENT_LIMIT = 50


# ============================================
# VALUE RENDERING
# ============================================

def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Render a datetime as UTC ISO-8601 with milliseconds, e.g. 2025-01-31T09:15:00.000Z"""
    value = as_utc(value)
    if value is None:
        return None
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def enum_value(value: Any) -> Optional[str]:
    if value is None:
        return None
    return getattr(value, "value", value)


def display_name(user: DirectoryUser, fallback: Optional[str] = "Reviewer") -> Optional[str]:
    name = " ".join(part for part in (user.first_name, user.last_name) if part).strip()
    return name or user.email or fallback


def person_payload(user: Optional[DirectoryUser]) -> Optional[Dict[str, Any]]:
    """Display payload {id, name, email} for a reviewer or actor."""
    if user is None:
        return None
    return {
        "id": str(user.id),
        "name": display_name(user),
        "email": user.email or None,
    }


def subject_payload(subject: DirectoryUser) -> Dict[str, Any]:
    return {
        "id": str(subject.id),
        "name": display_name(subject, fallback=None),
        "email": subject.email or None,
    }


# ============================================
# ENTITY SERIALIZERS
# ============================================

def serialize_record(
    record: VerificationRecord,
    subject: DirectoryUser,
    reviewer: Optional[DirectoryUser]
) -> Dict[str, Any]:
    return {
        "id": str(record.id),
        "subjectId": str(record.subject_id),
        "status": enum_value(record.status),
        "riskRating": enum_value(record.risk_rating),
        "verificationLevel": enum_value(record.verification_level),
        "requestedAt": to_iso(record.requested_at),
        "submittedAt": to_iso(record.submitted_at),
        "approvedAt": to_iso(record.approved_at),
        "expiresAt": to_iso(record.expires_at),
        "notes": record.notes or "",
        "version": record.version,
        "reviewer": person_payload(reviewer),
        "subject": subject_payload(subject),
    }


def serialize_document(document: VerificationDocument) -> Dict[str, Any]:
    return {
        "id": str(document.id),
        "documentType": enum_value(document.document_type),
        "status": enum_value(document.status),
        "documentNumber": document.document_number or None,
        "issuingCountry": document.issuing_country or None,
        "issuedAt": to_iso(document.issued_at),
        "expiresAt": to_iso(document.expires_at),
        "fileUrl": document.file_url or None,
        "notes": document.notes or "",
    }


def serialize_check(check: VerificationCheck) -> Dict[str, Any]:
    return {
        "id": str(check.id),
        "label": check.label,
        "status": enum_value(check.status),
        "owner": check.owner or None,
        "dueAt": to_iso(check.due_at),
        "completedAt": to_iso(check.completed_at),
    }


def serialize_watcher(watcher: VerificationWatcher) -> Dict[str, Any]:
    return {
        "id": str(watcher.id),
        "email": watcher.email,
        "name": watcher.name or watcher.email,
        "role": enum_value(watcher.role),
        "notifiedAt": to_iso(watcher.notified_at),
        "lastSeenAt": to_iso(watcher.last_seen_at),
    }


def serialize_event(event: VerificationEvent, actor: Optional[DirectoryUser]) -> Dict[str, Any]:
    return {
        "id": str(event.id),
        "eventType": enum_value(event.event_type),
        "title": event.title,
        "description": event.description or "",
        "occurredAt": to_iso(event.occurred_at),
        "metadata": dict(event.extra_metadata or {}),
        "actor": person_payload(actor),
    }


# ============================================
# ASSEMBLER
# ============================================

class SnapshotAssembler:
    """Builds the read model for a subject on the caller's session."""

    def __init__(
        self,
        session: Session,
        lifecycle: RecordLifecycleManager,
        event_limit: int = DEFAULT_EVENT_LIMIT
    ):
        self.session = session
        self.lifecycle = lifecycle
        self.event_limit = event_limit
        self.directory = DirectoryRepository(session)
        self.documents = DocumentRepository(session)
        self.checks = CheckRepository(session)
        self.watchers = WatcherRepository(session)
        self.events = EventRepository(session)

    def event_window(
        self,
        record: VerificationRecord,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[Dict[str, Any]]:
        """Serialized events of a record, newest first."""
        events = self.events.list_recent(
            record.id,
            limit=self.event_limit if limit is None else limit,
            offset=offset
        )
        return [serialize_event(event, self._lookup(event.actor_id)) for event in events]

    def assemble(
        self,
        subject_id,
        event_limit: Optional[int] = None,
        event_offset: int = 0
    ) -> Dict[str, Any]:
        """
        Assemble the full snapshot for a subject.

        Creates the record with defaults on first access. Otherwise the
        call has no side effects.
        """
        record, subject = self.lifecycle.ensure_record(subject_id)

        return {
            "verification": serialize_record(record, subject, self._lookup(record.reviewer_id)),
            "documents": [serialize_document(d) for d in self.documents.list_for_record(record.id)],
            "checks": [serialize_check(c) for c in self.checks.list_for_record(record.id)],
            "watchers": [serialize_watcher(w) for w in self.watchers.list_for_record(record.id)],
            "events": self.event_window(record, limit=event_limit, offset=event_offset),
            "referenceData": catalog(),
        }

    def _lookup(self, user_id) -> Optional[DirectoryUser]:
        if user_id is None:
            return None
        return self.directory.get_by_id(user_id)
