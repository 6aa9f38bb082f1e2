"""
Reference data catalog.

Exposes the canonical enumeration sets to callers. Each call builds new
lists so a caller mutating its copy cannot affect the canonical values.
"""

from typing import Dict, List

from verification.models import (
    VerificationStatus,
    RiskRating,
    VerificationLevel,
    DocumentType,
    DocumentStatus,
    CheckStatus,
    WatcherRole,
    EventType,
)

CATALOG_ENUMS = {
    "statuses": VerificationStatus,
    "riskRatings": RiskRating,
    "verificationLevels": VerificationLevel,
    "documentTypes": DocumentType,
    "documentStatuses": DocumentStatus,
    "checkStatuses": CheckStatus,
    "watcherRoles": WatcherRole,
    "eventTypes": EventType,
}


def values_of(enum_cls) -> List[str]:
    """Values of an enum class in declaration order."""
    return [member.value for member in enum_cls]


def catalog() -> Dict[str, List[str]]:
    """Return a fresh copy of every enumeration set keyed by its camelCase name."""
    return {key: values_of(enum_cls) for key, enum_cls in CATALOG_ENUMS.items()}
