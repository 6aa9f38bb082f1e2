"""
Identity Verification Aggregate

This package provides:
- SQLAlchemy ORM models for verification records and their dependents
- Unit of Work and session_scope() transaction boundaries
- Repository pattern for record-scoped data access
- Snapshot read model and reference data catalog
- IdentityVerificationService with one transactional operation per mutation
"""

from verification.models import (
    Base,
    DirectoryUser,
    VerificationRecord,
    VerificationDocument,
    VerificationCheck,
    VerificationWatcher,
    VerificationEvent,
    VerificationStatus,
    RiskRating,
    VerificationLevel,
    DocumentType,
    DocumentStatus,
    CheckStatus,
    WatcherRole,
    EventType,
)
from verification.connection import (
    DatabaseSessionProvider,
    DatabaseSettings,
    UnitOfWork,
    get_db_provider,
    init_db,
    close_db,
    create_test_provider,
)
from verification.errors import (
    IdentityVerificationError,
    ValidationError,
    NotFoundError,
    UnprocessableEntityError,
    ConflictError,
)
from verification.reference_data import catalog
from verification.lifecycle import RecordLifecycleManager
from verification.snapshot import SnapshotAssembler
from verification.identity_service import (
    IdentityVerificationService,
    configure_identity_service,
    get_identity_service,
)

__all__ = [
    # Base
    'Base',
    # Models
    'DirectoryUser',
    'VerificationRecord',
    'VerificationDocument',
    'VerificationCheck',
    'VerificationWatcher',
    'VerificationEvent',
    # Enumerations
    'VerificationStatus',
    'RiskRating',
    'VerificationLevel',
    'DocumentType',
    'DocumentStatus',
    'CheckStatus',
    'WatcherRole',
    'EventType',
    # Database provider
    'DatabaseSessionProvider',
    'DatabaseSettings',
    'UnitOfWork',
    'get_db_provider',
    'init_db',
    'close_db',
    'create_test_provider',
    # Errors
    'IdentityVerificationError',
    'ValidationError',
    'NotFoundError',
    'UnprocessableEntityError',
    'ConflictError',
    # Aggregate
    'catalog',
    'RecordLifecycleManager',
    'SnapshotAssembler',
    'IdentityVerificationService',
    'configure_identity_service',
    'get_identity_service',
]
