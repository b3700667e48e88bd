"""Shared fixtures: every test gets its own LanceDB directory."""

import pytest

import embedding
import memory_store
from models import CONFIG, Session


class FakeSession:
    """Stands in for the MCP ServerSession a Context points at."""


class FakeContext:
    """Minimal FastMCP Context: tools only read `.session`."""

    def __init__(self):
        self.session = FakeSession()


@pytest.fixture(autouse=True)
def isolated_db(tmp_path):
    """Point CONFIG at a fresh database and drop cached connections.

    Config is frozen, so the path is swapped with object.__setattr__.
    """
    original = CONFIG.db_path
    object.__setattr__(CONFIG, "db_path", tmp_path / "lancedb-memory-test")
    memory_store.reset_connection()
    embedding.reset_embedder()
    yield CONFIG.db_path
    memory_store.reset_connection()
    object.__setattr__(CONFIG, "db_path", original)


@pytest.fixture
def session():
    return Session()


@pytest.fixture
def ctx():
    return FakeContext()
