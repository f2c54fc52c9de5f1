"""
Tests for the credential stores backing the API key.
"""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from app_models import AppSetting, StorageError
from app_services import CredentialManager
from app_storage import (
    DatabaseCredentialStore,
    MemoryCredentialStore,
    create_credential_store,
)


class TestDatabaseCredentialStore:
    """SQLAlchemy-backed store."""

    def test_read_missing(self, session_factory):
        store = DatabaseCredentialStore(session_factory=session_factory)
        assert store.read() is None

    def test_save_then_read(self, session_factory):
        store = DatabaseCredentialStore(session_factory=session_factory)
        store.save("AIzaSyExampleKey123")
        assert store.read() == "AIzaSyExampleKey123"

    def test_save_overwrites_single_row(self, session_factory):
        store = DatabaseCredentialStore(session_factory=session_factory)
        store.save("first")
        store.save("second")

        assert store.read() == "second"
        session = session_factory()
        try:
            assert session.query(AppSetting).count() == 1
        finally:
            session.close()

    def test_delete(self, session_factory):
        store = DatabaseCredentialStore(session_factory=session_factory)
        store.save("AIzaSyExampleKey123")
        store.delete()
        assert store.read() is None

    def test_delete_missing_is_ok(self, session_factory):
        store = DatabaseCredentialStore(session_factory=session_factory)
        store.delete()
        assert store.read() is None

    def test_read_after_write_from_other_store(self, session_factory):
        """A second writer's value is visible to the next read."""
        reader = DatabaseCredentialStore(session_factory=session_factory)
        writer = DatabaseCredentialStore(session_factory=session_factory)

        assert reader.read() is None
        writer.save("AIzaSyWrittenElsewhere")
        assert reader.read() == "AIzaSyWrittenElsewhere"

    def test_missing_table_raises_storage_error(self):
        engine = create_engine("sqlite://", poolclass=StaticPool)
        store = DatabaseCredentialStore(session_factory=sessionmaker(bind=engine))

        with pytest.raises(StorageError):
            store.read()
        with pytest.raises(StorageError):
            store.save("AIzaSyExampleKey123")
        with pytest.raises(StorageError):
            store.delete()
        engine.dispose()

    def test_manager_sees_settings_screen_write(self, session_factory, stub_factory):
        """Settings written by another component are picked up on initialize()."""
        manager = CredentialManager(
            DatabaseCredentialStore(session_factory=session_factory),
            client_factory=stub_factory,
        )
        manager.initialize()
        assert manager.is_ready is False

        DatabaseCredentialStore(session_factory=session_factory).save("AIzaSyFromSettings01")
        manager.initialize()

        assert manager.is_ready is True
        assert manager.masked_credential == "AIzaSyFrom..."

    def test_manager_degrades_when_table_missing(self, stub_factory):
        engine = create_engine("sqlite://", poolclass=StaticPool)
        manager = CredentialManager(
            DatabaseCredentialStore(session_factory=sessionmaker(bind=engine)),
            client_factory=stub_factory,
        )

        manager.initialize()

        assert manager.is_ready is False
        engine.dispose()


class TestMemoryCredentialStore:
    """Process-lifetime store."""

    def test_round_trip(self):
        store = MemoryCredentialStore()
        assert store.read() is None
        store.save("key")
        assert store.read() == "key"
        store.delete()
        assert store.read() is None


def test_create_credential_store():
    assert isinstance(create_credential_store("database"), DatabaseCredentialStore)
    assert isinstance(create_credential_store(" Memory "), MemoryCredentialStore)
    assert isinstance(create_credential_store(None), DatabaseCredentialStore)

    with pytest.raises(ValueError):
        create_credential_store("redis")
