"""
Pytest configuration and shared fixtures.

Every test gets its own in-memory SQLite database, engine and repository.
Settings are reloaded with test env vars before any app imports.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

import pytest
from fastapi.testclient import TestClient

# Clear settings cache before any app imports to ensure test env vars are used
from chatdrop.config import get_settings
get_settings.cache_clear()

from chatdrop.entities import ChatDropMessage, Direction, MessageType, Status, TextMessage
from chatdrop.main import create_app
from chatdrop.repository import SqlChatDropMessageRepository
from chatdrop.storage import Base, build_engine, build_session_factory, init_db


NOW = 1_700_000_000_000


@pytest.fixture(scope="function")
def engine():
    """Fresh in-memory database with the schema applied."""
    engine = build_engine("sqlite://")
    init_db(engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def repo(engine):
    return SqlChatDropMessageRepository(build_session_factory(engine))


@pytest.fixture
def client(engine, repo):
    """Test client serving ``repo``."""
    app = create_app(repository=repo, engine=engine)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_message():
    """
    Factory for unsaved messages.

    Defaults to a READ incoming text message from contact 1 to identity 10,
    created at NOW. Keyword arguments override fields; ``text`` sets the
    payload text.
    """
    def _make(text: str = "foobar", **overrides) -> ChatDropMessage:
        fields = {
            "contact_id": 1,
            "identity_id": 10,
            "direction": Direction.INCOMING,
            "status": Status.READ,
            "message_type": MessageType.BOX_MESSAGE,
            "payload": TextMessage(text=text),
            "created_on": NOW,
        }
        fields.update(overrides)
        return ChatDropMessage(**fields)

    return _make
