"""
Tests for database settings, the session provider and transaction boundaries.
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm.exc import StaleDataError

from verification.connection import DatabaseSettings, create_test_provider
from verification.identity_service import IdentityVerificationService
from verification.models import DirectoryUser, VerificationRecord


class TestDatabaseSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        settings = DatabaseSettings()
        assert settings.get_url() == (
            "postgresql+psycopg2://verification_user:verification_password"
            "@localhost:5432/identity_verification"
        )

    def test_from_env(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.setenv("DB_HOST", "db.internal")
        monkeypatch.setenv("DB_PORT", "6543")
        monkeypatch.setenv("DB_NAME", "kyc")
        monkeypatch.setenv("DB_POOL_SIZE", "12")
        monkeypatch.setenv("DB_ECHO", "TRUE")

        settings = DatabaseSettings.from_env()

        assert settings.host == "db.internal"
        assert settings.port == 6543
        assert settings.echo is True
        assert settings.pool_options()["pool_size"] == 12
        assert settings.get_url().endswith("@db.internal:6543/kyc")

    def test_database_url_override(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite:///verification.db")
        assert DatabaseSettings().get_url() == "sqlite:///verification.db"

    def test_pool_options(self):
        options = DatabaseSettings().pool_options()
        assert options["pool_pre_ping"] is True
        assert options["max_overflow"] == 10


class TestSessionProvider:
    def test_session_scope_commits(self, db_provider):
        with db_provider.session_scope() as session:
            session.add(DirectoryUser(email="new@example.com", user_type="servicemen"))

        with db_provider.session_scope() as session:
            found = session.execute(
                select(DirectoryUser).where(DirectoryUser.email == "new@example.com")
            ).scalar_one_or_none()
        assert found is not None

    def test_session_scope_rolls_back_on_error(self, db_provider):
        with pytest.raises(RuntimeError):
            with db_provider.session_scope() as session:
                session.add(DirectoryUser(email="ghost@example.com", user_type="servicemen"))
                session.flush()
                raise RuntimeError("abort")

        with db_provider.session_scope() as session:
            found = session.execute(
                select(DirectoryUser).where(DirectoryUser.email == "ghost@example.com")
            ).scalar_one_or_none()
        assert found is None

    def test_savepoint_rollback_keeps_outer_work(self, db_provider):
        with db_provider.get_unit_of_work() as uow:
            uow.session.add(DirectoryUser(email="kept@example.com", user_type="servicemen"))
            uow.session.flush()
            with pytest.raises(RuntimeError):
                with uow.session.begin_nested():
                    uow.session.add(DirectoryUser(email="undone@example.com", user_type="servicemen"))
                    uow.session.flush()
                    raise RuntimeError("abort")
            uow.commit()

        with db_provider.session_scope() as session:
            emails = set(session.execute(select(DirectoryUser.email)).scalars())
        assert "kept@example.com" in emails
        assert "undone@example.com" not in emails

    def test_released_savepoint_does_not_commit(self, db_provider):
        with db_provider.get_unit_of_work() as uow:
            with uow.session.begin_nested():
                uow.session.add(DirectoryUser(email="pending@example.com", user_type="servicemen"))

        with db_provider.session_scope() as session:
            found = session.execute(
                select(DirectoryUser).where(DirectoryUser.email == "pending@example.com")
            ).scalar_one_or_none()
        assert found is None

    def test_unit_of_work_requires_context(self, db_provider):
        uow = db_provider.get_unit_of_work()
        with pytest.raises(RuntimeError):
            uow.session

    def test_health_check(self, db_provider):
        assert db_provider.health_check() is True

    def test_engine_requires_init(self):
        provider = create_test_provider()
        with pytest.raises(RuntimeError):
            provider.engine


class TestOptimisticLocking:
    """Concurrent writers to the same record."""

    @pytest.fixture
    def file_provider(self, tmp_path):
        engine = create_engine(f"sqlite:///{tmp_path / 'verification.db'}")
        provider = create_test_provider(engine)
        provider.init()
        provider.create_tables()
        yield provider
        provider.close()

    def test_stale_write_is_rejected(self, file_provider, config, audit):
        with file_provider.session_scope() as session:
            subject = DirectoryUser(first_name="Sam", email="sam@example.com", user_type="servicemen")
            session.add(subject)
            session.flush()
            subject_id = subject.id

        service = IdentityVerificationService(file_provider, config, audit)
        service.get_snapshot(subject_id)

        stale = file_provider.session_factory()
        try:
            record = stale.execute(
                select(VerificationRecord).where(VerificationRecord.subject_id == subject_id)
            ).scalar_one()
            assert record.version == 1
            # Keep the loaded copy but release the read lock
            stale.commit()

            snapshot = service.update_profile(subject_id, {"status": "in_review"})
            assert snapshot["verification"]["version"] == 2

            record.notes = "written from an out-of-date copy"
            with pytest.raises(StaleDataError):
                stale.flush()
        finally:
            stale.rollback()
            stale.close()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
