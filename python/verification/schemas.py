"""
Pydantic payload schemas for verification mutations.

Payloads arrive as dicts with camelCase (or snake_case) keys. Fields left
out of the payload are absent from `model_fields_set`, which is how the
handlers tell "no change requested" apart from an explicit null.

Enum-typed fields are kept as plain strings here; the service checks them
against the canonical sets so it can report the first unsupported value.
"""

import uuid
from datetime import date, datetime, time, timezone
from typing import Any, Dict, Optional, Type, TypeVar

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from verification.errors import ValidationError

SchemaT = TypeVar("SchemaT", bound="PayloadModel")


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Lenient date parsing for payload fields.

    Accepts datetime, date and ISO-8601 strings (a trailing "Z" is UTC).
    Anything unparsable becomes None. Naive values are taken as UTC.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class PayloadModel(BaseModel):
    """Base for mutation payloads: camelCase aliases, unknown keys ignored."""

    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "extra": "ignore",
    }

    def supplied(self, field_name: str) -> bool:
        """True when the caller put this field in the payload, even as null."""
        return field_name in self.model_fields_set

    @classmethod
    def parse(cls: Type[SchemaT], payload: Any) -> SchemaT:
        """
        Build a schema instance from a dict or pass an instance through.

        Raises:
            ValidationError: payload is not a mapping or a field has the wrong type
        """
        if isinstance(payload, cls):
            return payload
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise ValidationError("Payload must be an object", code="INVALID_PAYLOAD")
        try:
            return cls.model_validate(payload)
        except PydanticValidationError as exc:
            first = exc.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ())) or None
            raise ValidationError(f"Invalid value for {field}: {first.get('msg')}", field=field)


def _identifier_text(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    return value


# ============================================
# PROFILE
# ============================================

class ProfileUpdate(PayloadModel):
    """Fields of the verification record a caller may change."""
    status: Optional[str] = Field(default=None, description="New verification status")
    risk_rating: Optional[str] = Field(default=None, description="New risk rating")
    verification_level: Optional[str] = Field(default=None, description="New verification level")
    expires_at: Optional[datetime] = Field(default=None, description="Verification expiry")
    notes: Optional[str] = Field(default=None, description="Free-form reviewer notes")
    reviewer_id: Optional[str] = Field(default=None, description="Reviewer directory id; wins over reviewerEmail")
    reviewer_email: Optional[str] = Field(default=None, description="Reviewer email, matched case-insensitively")

    @field_validator("expires_at", mode="before")
    @classmethod
    def _lenient_dates(cls, value: Any) -> Optional[datetime]:
        return parse_datetime(value)

    @field_validator("reviewer_id", mode="before")
    @classmethod
    def _reviewer_id_text(cls, value: Any) -> Any:
        return _identifier_text(value)


# ============================================
# DOCUMENTS
# ============================================

class DocumentFields(PayloadModel):
    document_type: Optional[str] = Field(default=None, description="Document type")
    status: Optional[str] = Field(default=None, description="Document review status")
    document_number: Optional[str] = Field(default=None, max_length=100)
    issuing_country: Optional[str] = Field(default=None, max_length=100)
    issued_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    file_url: Optional[str] = Field(default=None, max_length=1000)
    notes: Optional[str] = None

    @field_validator("issued_at", "expires_at", mode="before")
    @classmethod
    def _lenient_dates(cls, value: Any) -> Optional[datetime]:
        return parse_datetime(value)


class DocumentCreate(DocumentFields):
    """documentType is required; status defaults to pending."""


class DocumentUpdate(DocumentFields):
    """Every field optional; only supplied fields are diffed."""


# ============================================
# CHECKS
# ============================================

class CheckFields(PayloadModel):
    label: Optional[str] = Field(default=None, max_length=500)
    status: Optional[str] = None
    owner: Optional[str] = Field(default=None, max_length=200)
    due_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @field_validator("due_at", "completed_at", mode="before")
    @classmethod
    def _lenient_dates(cls, value: Any) -> Optional[datetime]:
        return parse_datetime(value)


class CheckCreate(CheckFields):
    """label is required; status defaults to not_started."""


class CheckUpdate(CheckFields):
    pass


# ============================================
# WATCHERS
# ============================================

class WatcherFields(PayloadModel):
    name: Optional[str] = Field(default=None, max_length=200)
    role: Optional[str] = None
    notified_at: Optional[datetime] = None
    last_seen_at: Optional[datetime] = None

    @field_validator("notified_at", "last_seen_at", mode="before")
    @classmethod
    def _lenient_dates(cls, value: Any) -> Optional[datetime]:
        return parse_datetime(value)


class WatcherCreate(WatcherFields):
    """email is required and is stored trimmed and lower-cased."""
    email: Optional[str] = Field(default=None, max_length=320)


class WatcherUpdate(WatcherFields):
    """The email of an existing watcher cannot be changed."""


# ============================================
# EVENTS
# ============================================

class EventCreate(PayloadModel):
    """Free-form audit entry."""
    event_type: Optional[str] = None
    title: Optional[str] = Field(default=None, max_length=500)
    description: Optional[str] = None
    occurred_at: Optional[datetime] = None
    actor_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("occurred_at", mode="before")
    @classmethod
    def _lenient_dates(cls, value: Any) -> Optional[datetime]:
        return parse_datetime(value)

    @field_validator("actor_id", mode="before")
    @classmethod
    def _actor_id_text(cls, value: Any) -> Any:
        return _identifier_text(value)
