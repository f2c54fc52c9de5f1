"""Shared pytest fixtures: in-memory database and stub Gemini clients."""

import os

# Must be set before app_models creates its engine
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("CREDENTIAL_STORE", "database")

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app_models import init_db  # noqa: E402
from app_services import CredentialManager  # noqa: E402
from app_storage import MemoryCredentialStore  # noqa: E402


class StubModelClient:
    """Stands in for GeminiModelClient; records every payload it receives."""

    def __init__(self, factory, api_key, model_name):
        self.factory = factory
        self.api_key = api_key
        self.model = model_name

    def generate_content(self, contents):
        self.factory.calls.append(contents)
        if self.factory.error is not None:
            raise self.factory.error
        return self.factory.reply


class StubClientFactory:
    """Client factory that counts constructions and shares reply/error settings."""

    def __init__(self):
        self.reply = "ok"
        self.error = None
        self.fail_on_build = False
        self.built = []
        self.calls = []

    def __call__(self, api_key, model_name):
        if self.fail_on_build:
            raise ValueError("invalid api key format")
        self.built.append((api_key, model_name))
        return StubModelClient(self, api_key, model_name)


@pytest.fixture
def stub_factory():
    return StubClientFactory()


@pytest.fixture
def memory_store():
    return MemoryCredentialStore()


@pytest.fixture
def manager(memory_store, stub_factory):
    return CredentialManager(memory_store, client_factory=stub_factory, model_name="gemini-1.5-flash")


@pytest.fixture
def session_factory():
    """Fresh in-memory SQLite database with the settings table."""
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    init_db(engine)
    yield sessionmaker(bind=engine)
    engine.dispose()
