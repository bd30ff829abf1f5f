"""
Shared fixtures: SQLite in-memory store, in-memory search index and an
in-memory configuration.
"""

import sys
from concurrent.futures import Executor, Future
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

sys.path.insert(0, str(Path(__file__).parent.parent))

from config_manager import ConfigManager
from database.connection import create_test_provider
from indexer import Indexer
from search_index import InMemorySearchIndex


class InlineExecutor(Executor):
    """Executor running submitted work synchronously in the caller."""

    def submit(self, fn, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except BaseException as e:
            future.set_exception(e)
        return future


@pytest.fixture
def config(tmp_path):
    return ConfigManager.from_dict({
        'data': {'un_url': 'https://feed.test/consolidated.xml', 'request_timeout_seconds': 5},
        'search': {'backend': 'memory', 'data_source': 'Both'},
        'ingestion': {
            'index_batch_size': 2,
            'max_upload_size_mb': 1,
            'max_files': 3,
            'upload_directory': str(tmp_path / 'uploads'),
        },
    })


@pytest.fixture
def db_provider():
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    provider = create_test_provider(engine=engine)
    provider.init()
    provider.create_tables()
    yield provider
    provider.close()


@pytest.fixture
def session(db_provider):
    with db_provider.session_scope() as session:
        yield session


@pytest.fixture
def search_index():
    return InMemorySearchIndex()


@pytest.fixture
def indexer(search_index):
    idx = Indexer(search_index)
    idx.ensure_index()
    return idx


@pytest.fixture
def write_csv(tmp_path):
    """Write CSV text to a temp file and return its path."""
    def _write(text, name="upload.csv"):
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return path
    return _write


@pytest.fixture
def inline_executor():
    return InlineExecutor()
