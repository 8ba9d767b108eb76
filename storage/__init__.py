"""
Record storage for evaluation audits and regression history.

Usage:
    from storage import get_record_store

    store = get_record_store()  # SQLite at settings.DATABASE_PATH
"""

from typing import Optional

from shared.config import settings

from .record_store import (
    BaselineRecord,
    EvaluationRecord,
    InMemoryRecordStore,
    RecordStore,
    RegressionRunRecord,
    SQLiteRecordStore,
)

__all__ = [
    "BaselineRecord",
    "EvaluationRecord",
    "InMemoryRecordStore",
    "RecordStore",
    "RegressionRunRecord",
    "SQLiteRecordStore",
    "get_record_store",
]


def get_record_store(path: Optional[str] = None) -> RecordStore:
    """Create the configured record store (":memory:" for an in-memory one)."""
    path = path or settings.DATABASE_PATH
    if path == ":memory:":
        return InMemoryRecordStore()
    return SQLiteRecordStore(path)
