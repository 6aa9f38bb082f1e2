"""
Tests for record lifecycle, repositories and snapshot rendering helpers.
"""

import sys
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest

from verification.errors import ValidationError, NotFoundError, UnprocessableEntityError
from verification.lifecycle import RecordLifecycleManager, parse_identifier
from verification.models import (
    DirectoryUser,
    EventType,
    VerificationDocument,
    VerificationRecord,
    VerificationStatus,
    VerificationWatcher,
    DocumentType,
)
from verification.repositories import (
    DirectoryRepository,
    DocumentRepository,
    EventRepository,
    RecordRepository,
    WatcherRepository,
)
from verification.snapshot import (
    SnapshotAssembler,
    display_name,
    serialize_document,
    serialize_watcher,
    to_iso,
)


# ============================================
# LIFECYCLE
# ============================================

class TestParseIdentifier:
    def test_uuid_passthrough(self):
        value = uuid.uuid4()
        assert parse_identifier(value, "Serviceman", "subjectId") is value

    def test_string_is_trimmed(self):
        value = uuid.uuid4()
        assert parse_identifier(f"  {value} ", "Serviceman", "subjectId") == value

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_missing(self, value):
        with pytest.raises(ValidationError) as exc_info:
            parse_identifier(value, "Serviceman", "subjectId")
        assert exc_info.value.message == "Serviceman identifier is required"
        assert exc_info.value.field == "subjectId"

    def test_malformed(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_identifier("12345", "Serviceman", "subjectId")
        assert exc_info.value.message == "Invalid serviceman identifier"


class TestRecordLifecycleManager:
    """ensure_record()"""

    def test_creates_record_with_defaults(self, db_provider, directory):
        with db_provider.session_scope() as session:
            record, subject = RecordLifecycleManager(session).ensure_record(directory["subject"])

            assert subject.id == directory["subject"]
            assert record.subject_id == directory["subject"]
            assert record.status == VerificationStatus.PENDING
            assert record.requested_at is not None
            assert record.extra_metadata == {}

    def test_is_idempotent(self, db_provider, directory, count_rows):
        with db_provider.session_scope() as session:
            first, _ = RecordLifecycleManager(session).ensure_record(directory["subject"])
        with db_provider.session_scope() as session:
            second, _ = RecordLifecycleManager(session).ensure_record(str(directory["subject"]))

        assert first.id == second.id
        assert count_rows(VerificationRecord) == 1

    def test_unknown_subject(self, db_provider, directory):
        with db_provider.session_scope() as session:
            with pytest.raises(NotFoundError) as exc_info:
                RecordLifecycleManager(session).ensure_record(uuid.uuid4())
        assert exc_info.value.message == "Serviceman record not found"

    def test_ineligible_subject(self, db_provider, directory, count_rows):
        with db_provider.session_scope() as session:
            with pytest.raises(UnprocessableEntityError) as exc_info:
                RecordLifecycleManager(session).ensure_record(directory["customer"])
        assert exc_info.value.message == "Identity verification is only available for servicemen profiles"
        assert count_rows(VerificationRecord) == 0

    def test_configurable_eligibility(self, db_provider, directory):
        with db_provider.session_scope() as session:
            manager = RecordLifecycleManager(session, ["servicemen", "user"])
            record, subject = manager.ensure_record(directory["customer"])
        assert subject.user_type == "user"
        assert record.subject_id == directory["customer"]


# ============================================
# REPOSITORIES
# ============================================

class TestRepositories:
    """Record-scoped queries."""

    def test_find_by_email_ignores_case(self, db_provider, directory):
        with db_provider.session_scope() as session:
            repo = DirectoryRepository(session)
            assert repo.find_by_email(" RILEY.quinn@example.COM").id == directory["reviewer"]
            assert repo.find_by_email("nobody@example.com") is None
            assert repo.find_by_email("") is None

    def test_find_by_email_prefers_oldest(self, db_provider, directory):
        with db_provider.session_scope() as session:
            session.add(DirectoryUser(
                email="riley.quinn@example.com",
                user_type="admin",
                created_at=datetime.now(timezone.utc) + timedelta(days=1),
            ))
        with db_provider.session_scope() as session:
            assert DirectoryRepository(session).find_by_email("riley.quinn@example.com").id == directory["reviewer"]

    def test_get_for_record_is_scoped(self, db_provider, directory):
        with db_provider.session_scope() as session:
            records = RecordRepository(session)
            mine = records.create(directory["subject"])
            theirs = records.create(directory["other_subject"])
            document = DocumentRepository(session).create(
                theirs.id, {"document_type": DocumentType.PASSPORT})

            repo = DocumentRepository(session)
            assert repo.get_for_record(document.id, theirs.id) is document
            assert repo.get_for_record(document.id, mine.id) is None

    def test_watcher_lookup_normalizes_email(self, db_provider, directory):
        with db_provider.session_scope() as session:
            record = RecordRepository(session).create(directory["subject"])
            WatcherRepository(session).create(record.id, {"email": "ops@x.com"})

            found = WatcherRepository(session).get_by_email(record.id, " OPS@X.com")
            assert isinstance(found, VerificationWatcher)

    def test_events_newest_first_with_paging(self, db_provider, directory):
        base = datetime(2025, 1, 1, tzinfo=timezone.utc)
        with db_provider.session_scope() as session:
            record = RecordRepository(session).create(directory["subject"])
            events = EventRepository(session)
            for day in range(5):
                events.append(record.id, EventType.NOTE, f"Day {day}", occurred_at=base + timedelta(days=day))

            assert len(events.list_recent(record.id)) == 5
            assert [e.title for e in events.list_recent(record.id, limit=2)] == ["Day 4", "Day 3"]
            assert [e.title for e in events.list_recent(record.id, limit=2, offset=3)] == ["Day 1", "Day 0"]

    def test_event_repository_is_append_only(self):
        assert not hasattr(EventRepository, "update")
        assert not hasattr(EventRepository, "delete")


# ============================================
# SNAPSHOT RENDERING
# ============================================

class TestRendering:
    def test_to_iso_aware(self):
        value = datetime(2025, 1, 31, 11, 15, tzinfo=timezone(timedelta(hours=2)))
        assert to_iso(value) == "2025-01-31T09:15:00.000Z"

    def test_to_iso_naive_taken_as_utc(self):
        assert to_iso(datetime(2025, 1, 31, 9, 15, 0, 123456)) == "2025-01-31T09:15:00.123Z"

    def test_to_iso_none(self):
        assert to_iso(None) is None

    @pytest.mark.parametrize("first,last,email,expected", [
        ("Riley", "Quinn", "r@x.com", "Riley Quinn"),
        ("Riley", None, "r@x.com", "Riley"),
        (None, None, "r@x.com", "r@x.com"),
        (None, None, None, "Reviewer"),
    ])
    def test_display_name(self, first, last, email, expected):
        user = DirectoryUser(first_name=first, last_name=last, email=email)
        assert display_name(user) == expected

    def test_document_defaults(self):
        document = VerificationDocument(
            id=uuid.uuid4(), document_type=DocumentType.OTHER, status="pending")
        data = serialize_document(document)

        assert data["documentType"] == "other"
        assert data["status"] == "pending"
        assert data["notes"] == ""
        assert data["issuedAt"] is None
        assert data["fileUrl"] is None

    def test_watcher_name_falls_back_to_email(self):
        watcher = VerificationWatcher(id=uuid.uuid4(), email="ops@x.com", role="other")
        assert serialize_watcher(watcher)["name"] == "ops@x.com"


class TestSnapshotAssembler:
    def test_read_has_no_side_effects_after_creation(self, db_provider, directory, count_rows):
        with db_provider.session_scope() as session:
            assembler = SnapshotAssembler(session, RecordLifecycleManager(session))
            first = assembler.assemble(directory["subject"])
        with db_provider.session_scope() as session:
            assembler = SnapshotAssembler(session, RecordLifecycleManager(session))
            second = assembler.assemble(directory["subject"])

        assert first == second
        assert count_rows(VerificationRecord) == 1

    def test_event_limit(self, db_provider, directory):
        with db_provider.session_scope() as session:
            lifecycle = RecordLifecycleManager(session)
            record, _ = lifecycle.ensure_record(directory["subject"])
            for index in range(3):
                EventRepository(session).append(record.id, EventType.NOTE, f"Note {index}")

            snapshot = SnapshotAssembler(session, lifecycle, event_limit=2).assemble(directory["subject"])
            assert len(snapshot["events"]) == 2


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
