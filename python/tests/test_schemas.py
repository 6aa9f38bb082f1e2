"""
Tests for payload schemas and lenient date parsing.
"""

import sys
import uuid
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest

from verification.errors import ValidationError
from verification.schemas import (
    CheckUpdate,
    DocumentCreate,
    EventCreate,
    ProfileUpdate,
    WatcherCreate,
    parse_datetime,
)


class TestParseDatetime:
    def test_zulu_string(self):
        assert parse_datetime("2025-01-31T09:15:00Z") == datetime(2025, 1, 31, 9, 15, tzinfo=timezone.utc)

    def test_offset_converted_to_utc(self):
        parsed = parse_datetime("2025-01-31T11:15:00+02:00")
        assert parsed == datetime(2025, 1, 31, 9, 15, tzinfo=timezone.utc)
        assert parsed.utcoffset() == timedelta(0)

    def test_date_only(self):
        assert parse_datetime("2025-01-31") == datetime(2025, 1, 31, tzinfo=timezone.utc)
        assert parse_datetime(date(2025, 1, 31)) == datetime(2025, 1, 31, tzinfo=timezone.utc)

    def test_naive_datetime_taken_as_utc(self):
        assert parse_datetime(datetime(2025, 1, 31, 9, 15)).tzinfo == timezone.utc

    @pytest.mark.parametrize("value", [None, "", "  ", "not a date", 12345, ["2025-01-01"]])
    def test_unparsable_becomes_none(self, value):
        assert parse_datetime(value) is None


class TestPayloadParsing:
    def test_camel_case_keys(self):
        data = DocumentCreate.parse({"documentType": "passport", "issuingCountry": "FR"})
        assert data.document_type == "passport"
        assert data.issuing_country == "FR"

    def test_snake_case_keys(self):
        data = DocumentCreate.parse({"document_type": "passport"})
        assert data.document_type == "passport"

    def test_unknown_keys_ignored(self):
        data = CheckUpdate.parse({"label": "Insurance", "colour": "red"})
        assert data.label == "Insurance"

    def test_none_payload_is_empty(self):
        data = ProfileUpdate.parse(None)
        assert data.model_fields_set == set()

    def test_supplied_tracks_explicit_null(self):
        data = ProfileUpdate.parse({"reviewerId": None, "status": "approved"})
        assert data.supplied("reviewer_id")
        assert data.reviewer_id is None
        assert not data.supplied("notes")

    def test_uuid_identifiers_become_text(self):
        actor = uuid.uuid4()
        assert EventCreate.parse({"actorId": actor}).actor_id == str(actor)
        assert ProfileUpdate.parse({"reviewerId": actor}).reviewer_id == str(actor)

    def test_unparsable_date_is_supplied_as_none(self):
        data = ProfileUpdate.parse({"expiresAt": "soon"})
        assert data.supplied("expires_at")
        assert data.expires_at is None

    def test_metadata_mapping(self):
        data = EventCreate.parse({"eventType": "note", "metadata": {"ticket": 7}})
        assert data.metadata == {"ticket": 7}

    @pytest.mark.parametrize("payload", [["passport"], "passport", 42])
    def test_non_mapping_payload(self, payload):
        with pytest.raises(ValidationError) as exc_info:
            WatcherCreate.parse(payload)
        assert exc_info.value.message == "Payload must be an object"
        assert exc_info.value.code == "INVALID_PAYLOAD"

    def test_wrong_field_type(self):
        with pytest.raises(ValidationError) as exc_info:
            EventCreate.parse({"metadata": "not a mapping"})
        assert exc_info.value.field == "metadata"
        assert exc_info.value.message.startswith("Invalid value for metadata")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
