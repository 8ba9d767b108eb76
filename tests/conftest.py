"""
Shared fixtures for the lesson quality test suite.
"""

import pytest

from storage.record_store import InMemoryRecordStore, SQLiteRecordStore

from .factories import CURRICULUM


@pytest.fixture
def curriculum():
    return dict(CURRICULUM)


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    """Every store implementation must behave the same."""
    if request.param == "memory":
        yield InMemoryRecordStore()
    else:
        sqlite_store = SQLiteRecordStore(str(tmp_path / "records.db"))
        yield sqlite_store
        sqlite_store.close()


@pytest.fixture
def memory_store():
    return InMemoryRecordStore()
