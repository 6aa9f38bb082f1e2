"""Initial schema - Baseline migration

Revision ID: 001_initial
Revises:
Create Date: 2025-03-01 00:00:00.000000

Creates the directory table and the five verification tables. Column types
are dialect-neutral so the same migration runs on PostgreSQL and SQLite.
For existing databases, use `alembic stamp 001_initial` to mark as applied.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')

VERIFICATION_STATUS = ('pending', 'in_review', 'approved', 'rejected', 'suspended', 'expired')
RISK_RATING = ('low', 'medium', 'high', 'critical')
VERIFICATION_LEVEL = ('standard', 'enhanced', 'expedited')
DOCUMENT_TYPE = ('passport', 'driving_license', 'work_permit', 'national_id',
                 'insurance_certificate', 'other')
DOCUMENT_STATUS = ('pending', 'in_review', 'approved', 'rejected', 'expired')
CHECK_STATUS = ('not_started', 'in_progress', 'blocked', 'completed')
WATCHER_ROLE = ('operations_lead', 'compliance_specialist', 'safety_manager',
                'account_manager', 'other')
EVENT_TYPE = ('note', 'status_change', 'document_update', 'check_update',
              'watcher_update', 'escalation', 'review_request', 'expiry')

ENUM_NAMES = (
    'verification_event_type',
    'verification_watcher_role',
    'verification_check_status',
    'verification_document_status',
    'verification_document_type',
    'verification_level',
    'risk_rating',
    'verification_status',
)


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now()),
    ]


def _record_fk():
    return sa.Column('record_id', sa.Uuid,
                     sa.ForeignKey('verification_records.id', ondelete='CASCADE'),
                     nullable=False)


def upgrade() -> None:
    """Create verification schema."""

    op.create_table(
        'directory_users',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('first_name', sa.String(200)),
        sa.Column('last_name', sa.String(200)),
        sa.Column('email', sa.String(320)),
        sa.Column('user_type', sa.String(50), nullable=False),
        *_timestamps()
    )
    op.create_index('ix_directory_users_email', 'directory_users', ['email'])
    op.create_index('ix_directory_users_user_type', 'directory_users', ['user_type'])

    # Aggregate root
    op.create_table(
        'verification_records',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('subject_id', sa.Uuid,
                  sa.ForeignKey('directory_users.id', ondelete='CASCADE'),
                  nullable=False, unique=True),
        sa.Column('status', sa.Enum(*VERIFICATION_STATUS, name='verification_status'),
                  nullable=False, server_default='pending'),
        sa.Column('risk_rating', sa.Enum(*RISK_RATING, name='risk_rating'),
                  nullable=False, server_default='medium'),
        sa.Column('verification_level', sa.Enum(*VERIFICATION_LEVEL, name='verification_level'),
                  nullable=False, server_default='standard'),
        sa.Column('requested_at', sa.DateTime(timezone=True)),
        sa.Column('submitted_at', sa.DateTime(timezone=True)),
        sa.Column('approved_at', sa.DateTime(timezone=True)),
        sa.Column('expires_at', sa.DateTime(timezone=True)),
        sa.Column('notes', sa.Text),
        sa.Column('reviewer_id', sa.Uuid,
                  sa.ForeignKey('directory_users.id', ondelete='SET NULL')),
        sa.Column('metadata', JSON_TYPE),
        sa.Column('version', sa.Integer, nullable=False, server_default='1'),
        *_timestamps()
    )
    op.create_index('ix_verification_records_status', 'verification_records', ['status'])
    op.create_index('ix_verification_records_reviewer_id', 'verification_records', ['reviewer_id'])

    op.create_table(
        'verification_documents',
        sa.Column('id', sa.Uuid, primary_key=True),
        _record_fk(),
        sa.Column('document_type', sa.Enum(*DOCUMENT_TYPE, name='verification_document_type'),
                  nullable=False),
        sa.Column('status', sa.Enum(*DOCUMENT_STATUS, name='verification_document_status'),
                  nullable=False, server_default='pending'),
        sa.Column('document_number', sa.String(100)),
        sa.Column('issuing_country', sa.String(100)),
        sa.Column('issued_at', sa.DateTime(timezone=True)),
        sa.Column('expires_at', sa.DateTime(timezone=True)),
        sa.Column('file_url', sa.String(1000)),
        sa.Column('notes', sa.Text),
        *_timestamps()
    )
    op.create_index('ix_verification_documents_record_id', 'verification_documents', ['record_id'])
    op.create_index('ix_verification_document_record_created', 'verification_documents',
                    ['record_id', 'created_at'])

    op.create_table(
        'verification_checks',
        sa.Column('id', sa.Uuid, primary_key=True),
        _record_fk(),
        sa.Column('label', sa.String(500), nullable=False),
        sa.Column('status', sa.Enum(*CHECK_STATUS, name='verification_check_status'),
                  nullable=False, server_default='not_started'),
        sa.Column('owner', sa.String(200)),
        sa.Column('due_at', sa.DateTime(timezone=True)),
        sa.Column('completed_at', sa.DateTime(timezone=True)),
        *_timestamps()
    )
    op.create_index('ix_verification_checks_record_id', 'verification_checks', ['record_id'])
    op.create_index('ix_verification_check_record_created', 'verification_checks',
                    ['record_id', 'created_at'])

    op.create_table(
        'verification_watchers',
        sa.Column('id', sa.Uuid, primary_key=True),
        _record_fk(),
        sa.Column('email', sa.String(320), nullable=False),
        sa.Column('name', sa.String(200)),
        sa.Column('role', sa.Enum(*WATCHER_ROLE, name='verification_watcher_role'),
                  nullable=False, server_default='operations_lead'),
        sa.Column('notified_at', sa.DateTime(timezone=True)),
        sa.Column('last_seen_at', sa.DateTime(timezone=True)),
        *_timestamps(),
        sa.UniqueConstraint('record_id', 'email', name='uq_verification_watcher_email')
    )
    op.create_index('ix_verification_watchers_record_id', 'verification_watchers', ['record_id'])

    # Append-only audit trail: no updated_at
    op.create_table(
        'verification_events',
        sa.Column('id', sa.Uuid, primary_key=True),
        _record_fk(),
        sa.Column('event_type', sa.Enum(*EVENT_TYPE, name='verification_event_type'),
                  nullable=False),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now()),
        sa.Column('actor_id', sa.Uuid,
                  sa.ForeignKey('directory_users.id', ondelete='SET NULL')),
        sa.Column('metadata', JSON_TYPE),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now())
    )
    op.create_index('ix_verification_events_record_id', 'verification_events', ['record_id'])
    op.create_index('ix_verification_events_event_type', 'verification_events', ['event_type'])
    op.create_index('ix_verification_events_actor_id', 'verification_events', ['actor_id'])
    op.create_index('ix_verification_event_record_occurred', 'verification_events',
                    ['record_id', 'occurred_at'])


def downgrade() -> None:
    """Drop all tables and types."""
    # Drop tables in reverse order
    op.drop_table('verification_events')
    op.drop_table('verification_watchers')
    op.drop_table('verification_checks')
    op.drop_table('verification_documents')
    op.drop_table('verification_records')
    op.drop_table('directory_users')

    if op.get_bind().dialect.name == 'postgresql':
        for name in ENUM_NAMES:
            op.execute(f'DROP TYPE IF EXISTS {name}')
