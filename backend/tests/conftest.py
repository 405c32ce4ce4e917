"""Shared test fixtures and configuration for backend tests."""
import pytest

from chatnest.ai.provider import set_provider
from chatnest.config import AppSettings, DatabaseSettings, reset_config, set_config
from chatnest.store.feed import reset_feed
from chatnest.store.service import ChatStore


@pytest.fixture(autouse=True)
def chat_env():
    """Give every test in-memory settings, a fresh store and a fresh feed.

    Keeps tests away from chatnest.duckdb and from a real OpenRouter key in
    a local chatnest.secrets.yaml.
    """
    set_config(AppSettings(database=DatabaseSettings(path=":memory:")))
    ChatStore.reset_instance()
    reset_feed()
    set_provider(None)
    yield
    ChatStore.reset_instance()
    reset_feed()
    set_provider(None)
    reset_config()


@pytest.fixture
def store() -> ChatStore:
    """The process-wide store, backed by an in-memory DuckDB."""
    return ChatStore.get_instance(db_path=":memory:")


@pytest.fixture
def alice(store):
    return store.create_profile("alice", "alice@example.com")


@pytest.fixture
def bob(store):
    return store.create_profile("bob")


@pytest.fixture
def room(store, alice):
    return store.create_room("General", "open-sesame", created_by=alice.id)
