"""
Aggregate lifecycle management.

Resolves a subject in the directory, checks that it may be verified and
finds or creates its verification record on the caller's session.
"""

import logging
import uuid
from typing import Iterable, Optional, Tuple, Union

from sqlalchemy.orm import Session

from verification.errors import ValidationError, NotFoundError, UnprocessableEntityError
from verification.models import DirectoryUser, VerificationRecord
from verification.repositories import DirectoryRepository, RecordRepository

logger = logging.getLogger(__name__)

DEFAULT_ELIGIBLE_SUBJECT_TYPES = ("servicemen",)


def parse_identifier(value: Union[str, uuid.UUID, None], label: str, field: str) -> uuid.UUID:
    """
    Parse a UUID identifier supplied by a caller.

    Raises:
        ValidationError: "<label> identifier is required" when empty, or
            "Invalid <label> identifier" when the value is not a UUID
    """
    if isinstance(value, uuid.UUID):
        return value
    if value is None or not str(value).strip():
        raise ValidationError(f"{label} identifier is required", field=field)
    try:
        return uuid.UUID(str(value).strip())
    except ValueError:
        raise ValidationError(f"Invalid {label.lower()} identifier", field=field)


class RecordLifecycleManager:
    """Finds or creates the verification record owned by a subject."""

    def __init__(
        self,
        session: Session,
        eligible_subject_types: Optional[Iterable[str]] = None
    ):
        self.session = session
        self.eligible_subject_types = frozenset(
            eligible_subject_types or DEFAULT_ELIGIBLE_SUBJECT_TYPES
        )
        self.directory = DirectoryRepository(session)
        self.records = RecordRepository(session)

    def ensure_record(
        self,
        subject_id: Union[str, uuid.UUID, None]
    ) -> Tuple[VerificationRecord, DirectoryUser]:
        """
        Return the subject's record, creating it with defaults on first access.

        Raises:
            ValidationError: subject_id missing or malformed
            NotFoundError: no directory user with that id
            UnprocessableEntityError: the user's type is not eligible
        """
        parsed_id = parse_identifier(subject_id, "Serviceman", "subjectId")

        subject = self.directory.get_by_id(parsed_id)
        if subject is None:
            raise NotFoundError("Serviceman record not found", field="subjectId")

        if subject.user_type not in self.eligible_subject_types:
            raise UnprocessableEntityError(
                "Identity verification is only available for servicemen profiles",
                field="subjectId"
            )

        record = self.records.get_by_subject(subject.id)
        if record is None:
            record = self.records.create(subject.id)
            logger.info(f"Created verification record {record.id} for subject {subject.id}")

        return record, subject
