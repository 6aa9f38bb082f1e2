"""
Identity Verification Service

Exposes every operation on a subject's verification record. Each mutation
runs in a single transaction covering record resolution, validation, the
write, the audit event and the snapshot returned to the caller.

Usage:
    provider = init_db()
    service = IdentityVerificationService(provider, get_config())

    snapshot = service.create_document(subject_id, {"documentType": "passport"})

    # Several mutations in one caller-owned transaction
    with provider.get_unit_of_work() as uow:
        service.create_check(subject_id, {"label": "Right to work"}, session=uow.session)
        service.add_watcher(subject_id, {"email": "ops@example.com"}, session=uow.session)
        uow.commit()
"""

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from audit_logger import AuditTrailLogger, get_audit_logger, LOOKUP_FAILED, VALIDATION_FAILED
from config_manager import ConfigManager, get_config
from verification.connection import DatabaseSessionProvider
from verification.errors import (
    IdentityVerificationError,
    ValidationError,
    NotFoundError,
    ConflictError,
)
from verification.lifecycle import RecordLifecycleManager
from verification.models import (
    DirectoryUser,
    VerificationRecord,
    VerificationStatus,
    RiskRating,
    VerificationLevel,
    DocumentType,
    DocumentStatus,
    CheckStatus,
    WatcherRole,
    EventType,
    humanize,
    normalize_email,
    utcnow,
)
from verification.repositories import (
    DirectoryRepository,
    RecordRepository,
    DocumentRepository,
    CheckRepository,
    WatcherRepository,
    EventRepository,
)
from verification.schemas import (
    ProfileUpdate,
    DocumentCreate,
    DocumentUpdate,
    CheckCreate,
    CheckUpdate,
    WatcherCreate,
    WatcherUpdate,
    EventCreate,
)
from verification.snapshot import SnapshotAssembler, as_utc

logger = logging.getLogger(__name__)


# ============================================
# CHANGE-SET HELPERS
# ============================================

def same_value(current: Any, proposed: Any) -> bool:
    """Field equality used for no-op detection. Datetimes compare in UTC."""
    if isinstance(current, datetime) or isinstance(proposed, datetime):
        return as_utc(current) == as_utc(proposed)
    return current == proposed


def diff_fields(entity: Any, proposed: Dict[str, Any]) -> Dict[str, Any]:
    """Subset of `proposed` whose values differ from the entity's attributes."""
    return {
        name: value
        for name, value in proposed.items()
        if not same_value(getattr(entity, name), value)
    }


def coerce_enum(enum_cls, value: Any, message: str, field: str):
    """Map a payload string onto an enum member or raise ValidationError."""
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(message, field=field)


def require_child_id(value: Any, label: str, field: str) -> Any:
    if value is None or not str(value).strip():
        raise ValidationError(f"{label} identifier is required", field=field)
    return value


def as_uuid(value: Any) -> Optional[uuid.UUID]:
    """UUID from a payload identifier, or None when it cannot be one."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value).strip())
    except (TypeError, ValueError):
        return None


def blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None or not value.strip():
        return None
    return value


# ============================================
# MUTATION CONTEXT
# ============================================

class MutationContext:
    """Repositories bound to one transaction plus the outcome of the mutation."""

    def __init__(self, session: Session, config: ConfigManager):
        self.session = session
        self.lifecycle = RecordLifecycleManager(
            session, config.verification.eligible_subject_types
        )
        self.directory = DirectoryRepository(session)
        self.records = RecordRepository(session)
        self.documents = DocumentRepository(session)
        self.checks = CheckRepository(session)
        self.watchers = WatcherRepository(session)
        self.events = EventRepository(session)
        self.assembler = SnapshotAssembler(session, self.lifecycle, config.snapshot.event_limit)

        self.record: Optional[VerificationRecord] = None
        self.changed_fields: List[str] = []
        self.event_type: Optional[EventType] = None
        self.actor_id: Optional[uuid.UUID] = None
        self.snapshot: Optional[Dict[str, Any]] = None

    def ensure_record(self, subject_id: Any) -> VerificationRecord:
        self.record, _ = self.lifecycle.ensure_record(subject_id)
        return self.record

    def lookup_user(self, value: Any) -> Optional[DirectoryUser]:
        user_id = as_uuid(value)
        if user_id is None:
            return None
        return self.directory.get_by_id(user_id)

    def append_event(
        self,
        event_type: EventType,
        title: str,
        description: str = "",
        changed_fields=(),
        **kwargs
    ) -> None:
        """Insert the single audit event for this mutation."""
        self.events.append(self.record.id, event_type, title, description, **kwargs)
        self.event_type = event_type
        self.actor_id = kwargs.get("actor_id")
        self.changed_fields = list(changed_fields)

    @property
    def changed(self) -> bool:
        return self.event_type is not None or bool(self.changed_fields)


# ============================================
# SERVICE
# ============================================

class IdentityVerificationService:
    """
    Facade over the verification aggregate.

    Every operation returns the full snapshot (list_events excepted). Pass
    `session` to run inside a caller-owned transaction; otherwise the
    service opens one with session_scope() and commits it. On a caller-owned
    session each mutation runs in a SAVEPOINT, so a failure undoes only that
    mutation.
    """

    def __init__(
        self,
        db_provider: DatabaseSessionProvider,
        config: Optional[ConfigManager] = None,
        audit: Optional[AuditTrailLogger] = None
    ):
        self.db_provider = db_provider
        self.config = config or get_config()
        self.audit = audit or get_audit_logger(log_file=self.config.audit.log_file)

    # ------------------------------------------
    # Transaction plumbing
    # ------------------------------------------

    @contextmanager
    def _transaction(self, session: Optional[Session]) -> Iterator[Session]:
        """Own transaction, or a SAVEPOINT inside the caller's session."""
        if session is not None:
            with session.begin_nested():
                yield session
            return
        with self.db_provider.session_scope() as owned:
            yield owned

    @contextmanager
    def _mutation(
        self,
        operation: str,
        subject_id: Any,
        session: Optional[Session]
    ) -> Iterator[MutationContext]:
        """Run a mutation body, then assemble the snapshot in the same transaction."""
        try:
            with self._transaction(session) as tx:
                ctx = MutationContext(tx, self.config)
                yield ctx
                ctx.snapshot = ctx.assembler.assemble(subject_id)
        except IdentityVerificationError as exc:
            self._log_failure(operation, subject_id, exc)
            raise

        self._log_outcome(operation, subject_id, ctx, committed=session is None)

    def _log_failure(self, operation: str, subject_id: Any, exc: IdentityVerificationError) -> None:
        logger.warning(f"{operation} rejected for subject {subject_id}: {exc.message}")
        if not self.config.audit.log_validation_failures:
            return
        entry_type = LOOKUP_FAILED if isinstance(exc, NotFoundError) else VALIDATION_FAILED
        self.audit.log_failure(
            entry_type,
            operation,
            subject_id,
            error_code=exc.code,
            message=exc.message,
            field=exc.field,
            additional_context={"status_code": exc.status_code}
        )

    def _log_outcome(self, operation: str, subject_id: Any, ctx: MutationContext, committed: bool) -> None:
        record_id = ctx.record.id if ctx.record is not None else None
        if not ctx.changed:
            logger.debug(f"{operation} for subject {subject_id} changed nothing")
            if self.config.audit.log_mutations:
                self.audit.log_noop(operation, subject_id, record_id)
            return

        logger.info(f"{operation} applied to verification record {record_id}")
        if self.config.audit.log_mutations:
            self.audit.log_mutation(
                operation,
                subject_id,
                record_id,
                ctx.event_type.value if ctx.event_type else "",
                ctx.changed_fields,
                committed=committed,
                actor_id=ctx.actor_id
            )

    # ------------------------------------------
    # Reads
    # ------------------------------------------

    def get_snapshot(
        self,
        subject_id: Any,
        session: Optional[Session] = None,
        event_limit: Optional[int] = None,
        event_offset: int = 0
    ) -> Dict[str, Any]:
        """Full snapshot for a subject. Creates the record on first access."""
        limit, offset = self._window(event_limit, event_offset)
        try:
            with self._transaction(session) as tx:
                ctx = MutationContext(tx, self.config)
                return ctx.assembler.assemble(subject_id, event_limit=limit, event_offset=offset)
        except IdentityVerificationError as exc:
            self._log_failure("get_snapshot", subject_id, exc)
            raise

    def list_events(
        self,
        subject_id: Any,
        offset: int = 0,
        limit: Optional[int] = None,
        session: Optional[Session] = None
    ) -> List[Dict[str, Any]]:
        """A window of the subject's audit events, newest first."""
        limit, offset = self._window(limit, offset)
        try:
            with self._transaction(session) as tx:
                ctx = MutationContext(tx, self.config)
                record = ctx.ensure_record(subject_id)
                return ctx.assembler.event_window(record, limit=limit, offset=offset)
        except IdentityVerificationError as exc:
            self._log_failure("list_events", subject_id, exc)
            raise

    def _window(self, limit: Optional[int], offset: int):
        max_limit = self.config.snapshot.max_event_limit
        if limit is None:
            limit = self.config.snapshot.event_limit
        if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= max_limit:
            raise ValidationError(f"limit must be between 1 and {max_limit}", field="limit")
        if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
            raise ValidationError("offset must be zero or greater", field="offset")
        return limit, offset

    # ------------------------------------------
    # Profile
    # ------------------------------------------

    def update_profile(self, subject_id: Any, payload: Any = None, session: Optional[Session] = None) -> Dict[str, Any]:
        """
        Update status, risk rating, level, expiry, notes and reviewer.

        A status change appends one status_change event. Other field changes
        are persisted silently unless audit.record_profile_field_changes is on.
        """
        with self._mutation("update_profile", subject_id, session) as ctx:
            data = ProfileUpdate.parse(payload)
            record = ctx.ensure_record(subject_id)

            proposed: Dict[str, Any] = {}
            if data.status:
                proposed["status"] = coerce_enum(
                    VerificationStatus, data.status, "Unsupported verification status", "status")
            if data.risk_rating:
                proposed["risk_rating"] = coerce_enum(
                    RiskRating, data.risk_rating, "Unsupported risk rating", "riskRating")
            if data.verification_level:
                proposed["verification_level"] = coerce_enum(
                    VerificationLevel, data.verification_level,
                    "Unsupported verification level", "verificationLevel")
            if data.supplied("expires_at"):
                proposed["expires_at"] = data.expires_at
            if data.supplied("notes"):
                proposed["notes"] = blank_to_none(data.notes)

            reviewer_email = (data.reviewer_email or "").strip()
            if data.reviewer_id:
                reviewer = ctx.lookup_user(data.reviewer_id)
                if reviewer is None:
                    raise NotFoundError("Reviewer user not found", field="reviewerId")
                proposed["reviewer_id"] = reviewer.id
            elif reviewer_email:
                reviewer = ctx.directory.find_by_email(reviewer_email)
                if reviewer is None:
                    raise NotFoundError(
                        "No user found for the provided reviewer email", field="reviewerEmail")
                proposed["reviewer_id"] = reviewer.id
            elif data.supplied("reviewer_id") and data.reviewer_id is None:
                proposed["reviewer_id"] = None

            changes = diff_fields(record, proposed)
            if changes:
                self._apply_profile_changes(ctx, record, changes)
        return ctx.snapshot

    def _apply_profile_changes(self, ctx: MutationContext, record: VerificationRecord, changes: Dict[str, Any]) -> None:
        ctx.records.update(record, changes)
        if "status" in changes:
            ctx.append_event(
                EventType.STATUS_CHANGE,
                "Verification status updated",
                f"Status changed to {humanize(changes['status'])}",
                changed_fields=changes
            )
        elif self.config.audit.record_profile_field_changes:
            ctx.append_event(
                EventType.NOTE,
                "Verification profile updated",
                "Updated " + ", ".join(humanize(name) for name in sorted(changes)),
                changed_fields=changes
            )
        else:
            ctx.changed_fields = list(changes)

    # ------------------------------------------
    # Documents
    # ------------------------------------------

    def create_document(self, subject_id: Any, payload: Any = None, session: Optional[Session] = None) -> Dict[str, Any]:
        with self._mutation("create_document", subject_id, session) as ctx:
            data = DocumentCreate.parse(payload)
            record = ctx.ensure_record(subject_id)

            if not data.document_type:
                raise ValidationError("documentType is required and must be supported", field="documentType")
            document_type = coerce_enum(
                DocumentType, data.document_type,
                "documentType is required and must be supported", "documentType")
            status = DocumentStatus.PENDING
            if data.status:
                status = coerce_enum(DocumentStatus, data.status, "Unsupported document status", "status")

            fields = {
                "document_type": document_type,
                "status": status,
                "document_number": blank_to_none(data.document_number),
                "issuing_country": blank_to_none(data.issuing_country),
                "issued_at": data.issued_at,
                "expires_at": data.expires_at,
                "file_url": blank_to_none(data.file_url),
                "notes": blank_to_none(data.notes),
            }
            ctx.documents.create(record.id, fields)
            ctx.append_event(
                EventType.DOCUMENT_UPDATE,
                "Identity document added",
                f"{humanize(document_type)} added to verification record",
                changed_fields=fields
            )
        return ctx.snapshot

    def update_document(
        self,
        subject_id: Any,
        document_id: Any,
        payload: Any = None,
        session: Optional[Session] = None
    ) -> Dict[str, Any]:
        with self._mutation("update_document", subject_id, session) as ctx:
            require_child_id(document_id, "Document", "documentId")
            data = DocumentUpdate.parse(payload)
            record = ctx.ensure_record(subject_id)

            proposed: Dict[str, Any] = {}
            if data.document_type:
                proposed["document_type"] = coerce_enum(
                    DocumentType, data.document_type, "Unsupported document type", "documentType")
            if data.status:
                proposed["status"] = coerce_enum(
                    DocumentStatus, data.status, "Unsupported document status", "status")
            for name in ("document_number", "issuing_country", "file_url", "notes"):
                if data.supplied(name):
                    proposed[name] = blank_to_none(getattr(data, name))
            for name in ("issued_at", "expires_at"):
                if data.supplied(name):
                    proposed[name] = getattr(data, name)

            document = self._scoped_child(ctx.documents, document_id, record, "Identity document not found")
            changes = diff_fields(document, proposed)
            if changes:
                ctx.documents.update(document, changes)
                ctx.append_event(
                    EventType.DOCUMENT_UPDATE,
                    "Identity document updated",
                    f"{humanize(document.document_type)} updated",
                    changed_fields=changes
                )
        return ctx.snapshot

    def delete_document(self, subject_id: Any, document_id: Any, session: Optional[Session] = None) -> Dict[str, Any]:
        with self._mutation("delete_document", subject_id, session) as ctx:
            require_child_id(document_id, "Document", "documentId")
            record = ctx.ensure_record(subject_id)
            document = self._scoped_child(ctx.documents, document_id, record, "Identity document not found")

            document_type = document.document_type
            ctx.documents.delete(document)
            ctx.append_event(
                EventType.DOCUMENT_UPDATE,
                "Identity document removed",
                f"{humanize(document_type)} deleted from record"
            )
        return ctx.snapshot

    # ------------------------------------------
    # Checks
    # ------------------------------------------

    def create_check(self, subject_id: Any, payload: Any = None, session: Optional[Session] = None) -> Dict[str, Any]:
        with self._mutation("create_check", subject_id, session) as ctx:
            data = CheckCreate.parse(payload)
            record = ctx.ensure_record(subject_id)

            label = (data.label or "").strip()
            if not label:
                raise ValidationError("Checklist label is required", field="label")
            status = CheckStatus.NOT_STARTED
            if data.status:
                status = coerce_enum(CheckStatus, data.status, "Unsupported checklist status", "status")

            fields = {
                "label": label,
                "status": status,
                "owner": blank_to_none(data.owner),
                "due_at": data.due_at,
                "completed_at": data.completed_at,
            }
            ctx.checks.create(record.id, fields)
            ctx.append_event(
                EventType.CHECK_UPDATE,
                "Verification checklist entry created",
                label,
                changed_fields=fields
            )
        return ctx.snapshot

    def update_check(
        self,
        subject_id: Any,
        check_id: Any,
        payload: Any = None,
        session: Optional[Session] = None
    ) -> Dict[str, Any]:
        with self._mutation("update_check", subject_id, session) as ctx:
            require_child_id(check_id, "Checklist", "checkId")
            data = CheckUpdate.parse(payload)
            record = ctx.ensure_record(subject_id)

            proposed: Dict[str, Any] = {}
            if data.status:
                proposed["status"] = coerce_enum(
                    CheckStatus, data.status, "Unsupported checklist status", "status")
            if data.supplied("label"):
                label = (data.label or "").strip()
                if not label:
                    raise ValidationError("Checklist label is required", field="label")
                proposed["label"] = label
            if data.supplied("owner"):
                proposed["owner"] = blank_to_none(data.owner)
            for name in ("due_at", "completed_at"):
                if data.supplied(name):
                    proposed[name] = getattr(data, name)

            check = self._scoped_child(ctx.checks, check_id, record, "Checklist entry not found")
            changes = diff_fields(check, proposed)
            if changes:
                ctx.checks.update(check, changes)
                ctx.append_event(
                    EventType.CHECK_UPDATE,
                    "Verification checklist updated",
                    check.label,
                    changed_fields=changes
                )
        return ctx.snapshot

    def delete_check(self, subject_id: Any, check_id: Any, session: Optional[Session] = None) -> Dict[str, Any]:
        with self._mutation("delete_check", subject_id, session) as ctx:
            require_child_id(check_id, "Checklist", "checkId")
            record = ctx.ensure_record(subject_id)
            check = self._scoped_child(ctx.checks, check_id, record, "Checklist entry not found")

            label = check.label
            ctx.checks.delete(check)
            ctx.append_event(EventType.CHECK_UPDATE, "Verification checklist removed", label)
        return ctx.snapshot

    # ------------------------------------------
    # Watchers
    # ------------------------------------------

    def add_watcher(self, subject_id: Any, payload: Any = None, session: Optional[Session] = None) -> Dict[str, Any]:
        with self._mutation("add_watcher", subject_id, session) as ctx:
            data = WatcherCreate.parse(payload)
            record = ctx.ensure_record(subject_id)

            email = normalize_email(data.email)
            if not email:
                raise ValidationError("Watcher email is required", field="email")
            role = WatcherRole.OPERATIONS_LEAD
            if data.role:
                role = coerce_enum(WatcherRole, data.role, "Unsupported watcher role", "role")

            if ctx.watchers.get_by_email(record.id, email) is not None:
                raise ConflictError("Watcher already exists for this email address", field="email")

            fields = {
                "email": email,
                "name": blank_to_none(data.name),
                "role": role,
                "notified_at": data.notified_at,
                "last_seen_at": data.last_seen_at,
            }
            try:
                ctx.watchers.create(record.id, fields)
            except IntegrityError as exc:
                raise ConflictError(
                    "Watcher already exists for this email address", field="email") from exc

            ctx.append_event(EventType.WATCHER_UPDATE, "Watcher added", email, changed_fields=fields)
        return ctx.snapshot

    def update_watcher(
        self,
        subject_id: Any,
        watcher_id: Any,
        payload: Any = None,
        session: Optional[Session] = None
    ) -> Dict[str, Any]:
        with self._mutation("update_watcher", subject_id, session) as ctx:
            require_child_id(watcher_id, "Watcher", "watcherId")
            data = WatcherUpdate.parse(payload)
            record = ctx.ensure_record(subject_id)

            proposed: Dict[str, Any] = {}
            if data.role:
                proposed["role"] = coerce_enum(WatcherRole, data.role, "Unsupported watcher role", "role")
            if data.supplied("name"):
                proposed["name"] = blank_to_none(data.name)
            for name in ("notified_at", "last_seen_at"):
                if data.supplied(name):
                    proposed[name] = getattr(data, name)

            watcher = self._scoped_child(ctx.watchers, watcher_id, record, "Watcher not found")
            changes = diff_fields(watcher, proposed)
            if changes:
                ctx.watchers.update(watcher, changes)
                ctx.append_event(EventType.WATCHER_UPDATE, "Watcher updated", watcher.email, changed_fields=changes)
        return ctx.snapshot

    def remove_watcher(self, subject_id: Any, watcher_id: Any, session: Optional[Session] = None) -> Dict[str, Any]:
        with self._mutation("remove_watcher", subject_id, session) as ctx:
            require_child_id(watcher_id, "Watcher", "watcherId")
            record = ctx.ensure_record(subject_id)
            watcher = self._scoped_child(ctx.watchers, watcher_id, record, "Watcher not found")

            email = watcher.email
            ctx.watchers.delete(watcher)
            ctx.append_event(EventType.WATCHER_UPDATE, "Watcher removed", email)
        return ctx.snapshot

    # ------------------------------------------
    # Events
    # ------------------------------------------

    def append_event(self, subject_id: Any, payload: Any = None, session: Optional[Session] = None) -> Dict[str, Any]:
        """Append a free-form audit event without touching any other entity."""
        with self._mutation("append_event", subject_id, session) as ctx:
            data = EventCreate.parse(payload)
            record = ctx.ensure_record(subject_id)

            if not data.event_type:
                raise ValidationError("Unsupported event type", field="eventType")
            event_type = coerce_enum(EventType, data.event_type, "Unsupported event type", "eventType")
            title = data.title or ""
            if not title.strip():
                raise ValidationError("Event title is required", field="title")

            actor_id = None
            if data.actor_id:
                actor = ctx.lookup_user(data.actor_id)
                if actor is None:
                    raise NotFoundError("Event actor not found", field="actorId")
                actor_id = actor.id

            ctx.append_event(
                event_type,
                title,
                data.description or "",
                occurred_at=data.occurred_at or utcnow(),
                actor_id=actor_id,
                metadata=data.metadata or {}
            )
        return ctx.snapshot

    # ------------------------------------------
    # Helpers
    # ------------------------------------------

    @staticmethod
    def _scoped_child(repository, child_id: Any, record: VerificationRecord, missing_message: str):
        """Child entity owned by `record`, or NotFoundError."""
        parsed = as_uuid(child_id)
        child = repository.get_for_record(parsed, record.id) if parsed is not None else None
        if child is None:
            raise NotFoundError(missing_message)
        return child


# ============================================
# DEPENDENCY INJECTION HELPERS
# ============================================

_identity_service_factory = None


def configure_identity_service(db_provider, config=None):
    """
    Configure the identity service factory for dependency injection.

    Call this during application startup.

    Args:
        db_provider: DatabaseSessionProvider instance
        config: Optional ConfigManager instance
    """
    global _identity_service_factory
    _identity_service_factory = (db_provider, config)


def get_identity_service() -> IdentityVerificationService:
    """
    Build an IdentityVerificationService from the configured factory.

    Raises:
        RuntimeError: If the identity service is not configured
    """
    if _identity_service_factory is None:
        raise RuntimeError(
            "Identity service not configured. Call configure_identity_service() first."
        )

    db_provider, config = _identity_service_factory
    return IdentityVerificationService(db_provider, config)


def reset_identity_service() -> None:
    """Forget the configured factory (for testing)"""
    global _identity_service_factory
    _identity_service_factory = None
