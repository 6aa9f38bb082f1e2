"""
Shared fixtures: an in-memory SQLite database with the verification schema,
a small directory of subjects and reviewers, and a service wired to both.
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.pool import StaticPool

from audit_logger import AuditTrailLogger
from config_manager import ConfigManager
from verification.connection import create_test_provider
from verification.identity_service import IdentityVerificationService
from verification.models import DirectoryUser


@pytest.fixture
def engine():
    """Single shared in-memory SQLite connection."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield engine
    engine.dispose()


@pytest.fixture
def db_provider(engine):
    provider = create_test_provider(engine)
    provider.init()
    provider.create_tables()
    yield provider
    provider.close()


@pytest.fixture
def directory(db_provider):
    """Seed directory users and return their ids by role."""
    users = {
        "subject": DirectoryUser(
            first_name="Sam", last_name="Carter",
            email="sam.carter@example.com", user_type="servicemen"),
        "other_subject": DirectoryUser(
            first_name="Alex", last_name="Reid",
            email="alex.reid@example.com", user_type="servicemen"),
        "customer": DirectoryUser(
            first_name="Casey", last_name="Lee",
            email="casey.lee@example.com", user_type="user"),
        "reviewer": DirectoryUser(
            first_name="Riley", last_name="Quinn",
            email="Riley.Quinn@Example.com", user_type="admin"),
        "unnamed_reviewer": DirectoryUser(
            first_name=None, last_name=None,
            email="audit.desk@example.com", user_type="admin"),
    }
    with db_provider.session_scope() as session:
        session.add_all(users.values())
        session.flush()
        ids = {role: user.id for role, user in users.items()}
    return ids


@pytest.fixture
def config(tmp_path):
    """Defaults only; the path does not exist."""
    return ConfigManager.create(config_path=str(tmp_path / "config.yaml"))


@pytest.fixture
def audit():
    return AuditTrailLogger()


@pytest.fixture
def service(db_provider, config, audit):
    return IdentityVerificationService(db_provider, config, audit)


@pytest.fixture
def count_rows(db_provider):
    """Count committed rows of a model, optionally filtered."""
    def _count(model, *criteria):
        with db_provider.session_scope() as session:
            query = select(func.count()).select_from(model)
            if criteria:
                query = query.where(*criteria)
            return session.execute(query).scalar()
    return _count
