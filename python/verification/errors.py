"""
Error taxonomy for the identity verification aggregate.

Every domain error carries an HTTP-like status code so an outer layer can
map it onto a response without knowing the individual classes.
"""

from typing import Any, Dict, Optional


class IdentityVerificationError(Exception):
    """Base class for domain errors raised by the verification core

    Attributes:
        message: Human-readable error message
        field: The payload field that caused the error, if any
        code: Error code for programmatic handling
        status_code: Suggested HTTP status
    """
    status_code = 500
    default_code = "IDENTITY_VERIFICATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None, code: Optional[str] = None):
        self.message = message
        self.field = field
        self.code = code or self.default_code
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "error": self.code,
            "message": self.message,
            "statusCode": self.status_code,
        }
        if self.field:
            data["field"] = self.field
        return data


class ValidationError(IdentityVerificationError):
    """Malformed payload, missing identifier or unsupported enum value"""
    status_code = 400
    default_code = "VALIDATION_ERROR"


class NotFoundError(IdentityVerificationError):
    """Subject, reviewer, actor or child entity does not exist"""
    status_code = 404
    default_code = "NOT_FOUND"


class UnprocessableEntityError(IdentityVerificationError):
    """Subject exists but is not eligible for verification"""
    status_code = 422
    default_code = "UNPROCESSABLE_ENTITY"


class ConflictError(IdentityVerificationError):
    """Write would violate a uniqueness rule"""
    status_code = 409
    default_code = "CONFLICT"
