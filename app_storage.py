"""
Credential persistence backends.

The database store keeps the API key in the ``app_settings`` table and opens
a new session on every call, so each read sees the latest committed value.
The memory store keeps it for the lifetime of the process, like browser
session storage.
"""

import logging
from typing import Optional
from sqlalchemy.exc import SQLAlchemyError
from app_models import AppSetting, SessionLocal, StorageError, API_KEY_STORAGE_KEY

logger = logging.getLogger(__name__)


class CredentialStore:
    """Interface for a single-entry key-value credential store."""

    def read(self) -> Optional[str]:
        raise NotImplementedError

    def save(self, value: str) -> None:
        raise NotImplementedError

    def delete(self) -> None:
        raise NotImplementedError


class DatabaseCredentialStore(CredentialStore):
    """Store the credential in the app_settings table via SQLAlchemy."""

    def __init__(self, key: str = API_KEY_STORAGE_KEY, session_factory=SessionLocal):
        self.key = key
        self.session_factory = session_factory

    def read(self) -> Optional[str]:
        session = self.session_factory()
        try:
            setting = session.query(AppSetting).filter(AppSetting.key == self.key).first()
            return setting.value if setting else None
        except SQLAlchemyError as e:
            logger.error(f"Settings read failed for '{self.key}': {str(e)}")
            raise StorageError("Failed to read stored settings", details=str(e))
        finally:
            session.close()

    def save(self, value: str) -> None:
        session = self.session_factory()
        try:
            setting = session.query(AppSetting).filter(AppSetting.key == self.key).first()
            if setting:
                setting.value = value
            else:
                session.add(AppSetting(key=self.key, value=value))
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Settings write failed for '{self.key}': {str(e)}")
            raise StorageError("Failed to save settings", details=str(e))
        finally:
            session.close()

    def delete(self) -> None:
        session = self.session_factory()
        try:
            session.query(AppSetting).filter(AppSetting.key == self.key).delete()
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Settings delete failed for '{self.key}': {str(e)}")
            raise StorageError("Failed to delete stored settings", details=str(e))
        finally:
            session.close()


class MemoryCredentialStore(CredentialStore):
    """Process-lifetime store; nothing survives a restart."""

    def __init__(self, value: Optional[str] = None):
        self._value = value

    def read(self) -> Optional[str]:
        return self._value

    def save(self, value: str) -> None:
        self._value = value

    def delete(self) -> None:
        self._value = None


def create_credential_store(backend: str = "database") -> CredentialStore:
    """
    Pick a credential store by name.

    Args:
        backend: "database" (default) or "memory"

    Raises:
        ValueError: For an unknown backend name
    """
    backend = (backend or "database").strip().lower()
    if backend == "database":
        return DatabaseCredentialStore()
    if backend == "memory":
        return MemoryCredentialStore()
    raise ValueError(f"Unknown credential store backend: {backend}")
