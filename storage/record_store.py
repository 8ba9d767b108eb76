"""
Record stores for baselines, regression runs and evaluation audits.

Three logical tables:
- evaluation_baselines: upsert keyed by test_name
- regression_runs: append-only, references a baseline id
- lesson_evaluations: immutable audit rows keyed by lesson id

InMemoryRecordStore is for tests and single-process use.
SQLiteRecordStore is the durable default.
"""

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class BaselineRecord:
    """Stored regression baseline."""

    id: str
    test_name: str
    input_context: Dict[str, Any]
    expected_output: Optional[str] = None
    expected_topics: List[str] = field(default_factory=list)
    forbidden_terms: List[str] = field(default_factory=list)
    created_at: str = field(default_factory=utc_now)


@dataclass
class RegressionRunRecord:
    """One regression run. Never mutated after insert."""

    baseline_id: str
    generated_output: str
    metrics: Dict[str, Any]
    passed: bool
    run_at: str = field(default_factory=utc_now)
    id: Optional[int] = None


@dataclass
class EvaluationRecord:
    """Audit row for one lesson evaluation."""

    id: str
    lesson_id: str
    scores: Dict[str, int]
    details: Dict[str, Any]
    word_count: int
    has_examples: bool
    has_quiz: bool
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    created_at: str = field(default_factory=utc_now)


class RecordStore(ABC):
    """Storage interface used by the evaluator and the regression tester."""

    @abstractmethod
    def upsert_baseline(self, baseline: BaselineRecord) -> None:
        """Insert, replacing any baseline with the same test_name."""

    @abstractmethod
    def get_baseline(self, baseline_id: str) -> Optional[BaselineRecord]:
        """Fetch a baseline by id."""

    @abstractmethod
    def list_baselines(self) -> List[BaselineRecord]:
        """All baselines in creation order."""

    @abstractmethod
    def append_run(self, run: RegressionRunRecord) -> RegressionRunRecord:
        """Append a run and return it with its id assigned."""

    @abstractmethod
    def get_runs(self, baseline_id: str, limit: int = 10) -> List[RegressionRunRecord]:
        """Most recent runs first."""

    @abstractmethod
    def save_evaluation(self, record: EvaluationRecord) -> None:
        """Insert an evaluation audit row."""

    @abstractmethod
    def list_evaluations(self, since: str = None) -> List[EvaluationRecord]:
        """Evaluations created at or after `since` (ISO timestamp)."""


class InMemoryRecordStore(RecordStore):
    """
    Simple in-memory record store.
    Use for tests or single-instance deployments.
    """

    def __init__(self):
        self._baselines: Dict[str, BaselineRecord] = {}  # keyed by test_name
        self._runs: List[RegressionRunRecord] = []
        self._evaluations: List[EvaluationRecord] = []
        self._lock = threading.Lock()

    def upsert_baseline(self, baseline: BaselineRecord) -> None:
        with self._lock:
            self._baselines.pop(baseline.test_name, None)
            self._baselines[baseline.test_name] = baseline

    def get_baseline(self, baseline_id: str) -> Optional[BaselineRecord]:
        return next((b for b in self._baselines.values() if b.id == baseline_id), None)

    def list_baselines(self) -> List[BaselineRecord]:
        return list(self._baselines.values())

    def append_run(self, run: RegressionRunRecord) -> RegressionRunRecord:
        with self._lock:
            run.id = len(self._runs) + 1
            self._runs.append(run)
        return run

    def get_runs(self, baseline_id: str, limit: int = 10) -> List[RegressionRunRecord]:
        runs = [r for r in self._runs if r.baseline_id == baseline_id]
        runs.sort(key=lambda r: (r.run_at, r.id), reverse=True)
        return runs[:limit]

    def save_evaluation(self, record: EvaluationRecord) -> None:
        with self._lock:
            self._evaluations.append(record)

    def list_evaluations(self, since: str = None) -> List[EvaluationRecord]:
        if since is None:
            return list(self._evaluations)
        return [e for e in self._evaluations if e.created_at >= since]


_SCHEMA = """
CREATE TABLE IF NOT EXISTS evaluation_baselines (
    id TEXT PRIMARY KEY,
    test_name TEXT NOT NULL UNIQUE,
    input_context TEXT NOT NULL,
    expected_output TEXT,
    expected_topics TEXT,
    forbidden_terms TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS regression_runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    baseline_id TEXT NOT NULL,
    generated_output TEXT,
    metrics TEXT,
    passed INTEGER NOT NULL,
    run_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_runs_baseline ON regression_runs (baseline_id, run_at);

CREATE TABLE IF NOT EXISTS lesson_evaluations (
    id TEXT PRIMARY KEY,
    lesson_id TEXT NOT NULL,
    session_id TEXT,
    user_id TEXT,
    faithfulness_score INTEGER,
    relevance_score INTEGER,
    length_score INTEGER,
    structure_score INTEGER,
    no_hallucination_score INTEGER,
    overall_score INTEGER,
    details TEXT,
    word_count INTEGER,
    has_examples INTEGER,
    has_quiz INTEGER,
    created_at TEXT NOT NULL
);
"""


class SQLiteRecordStore(RecordStore):
    """
    SQLite-backed record store.

    One connection shared across threads, serialized by a lock.
    The connection is opened lazily on first use.
    """

    def __init__(self, path: str):
        self.path = path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    @property
    def conn(self) -> sqlite3.Connection:
        """Lazy open the database and create tables."""
        if self._conn is None:
            if self.path != ":memory:":
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.executescript(_SCHEMA)
            logger.info(f"Opened record store at {self.path}")
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def upsert_baseline(self, baseline: BaselineRecord) -> None:
        with self._lock, self.conn:
            self.conn.execute(
                """
                INSERT INTO evaluation_baselines
                    (id, test_name, input_context, expected_output,
                     expected_topics, forbidden_terms, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(test_name) DO UPDATE SET
                    id = excluded.id,
                    input_context = excluded.input_context,
                    expected_output = excluded.expected_output,
                    expected_topics = excluded.expected_topics,
                    forbidden_terms = excluded.forbidden_terms,
                    created_at = excluded.created_at
                """,
                (
                    baseline.id,
                    baseline.test_name,
                    json.dumps(baseline.input_context),
                    baseline.expected_output,
                    json.dumps(baseline.expected_topics),
                    json.dumps(baseline.forbidden_terms),
                    baseline.created_at,
                ),
            )

    def get_baseline(self, baseline_id: str) -> Optional[BaselineRecord]:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM evaluation_baselines WHERE id = ?", (baseline_id,)
            ).fetchone()
        return self._row_to_baseline(row) if row else None

    def list_baselines(self) -> List[BaselineRecord]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM evaluation_baselines ORDER BY created_at, rowid"
            ).fetchall()
        return [self._row_to_baseline(r) for r in rows]

    def append_run(self, run: RegressionRunRecord) -> RegressionRunRecord:
        with self._lock, self.conn:
            cursor = self.conn.execute(
                """
                INSERT INTO regression_runs
                    (baseline_id, generated_output, metrics, passed, run_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    run.baseline_id,
                    run.generated_output,
                    json.dumps(run.metrics),
                    1 if run.passed else 0,
                    run.run_at,
                ),
            )
            run.id = cursor.lastrowid
        return run

    def get_runs(self, baseline_id: str, limit: int = 10) -> List[RegressionRunRecord]:
        with self._lock:
            rows = self.conn.execute(
                """
                SELECT * FROM regression_runs
                WHERE baseline_id = ?
                ORDER BY run_at DESC, id DESC
                LIMIT ?
                """,
                (baseline_id, limit),
            ).fetchall()
        return [
            RegressionRunRecord(
                id=r["id"],
                baseline_id=r["baseline_id"],
                generated_output=r["generated_output"] or "",
                metrics=json.loads(r["metrics"] or "{}"),
                passed=bool(r["passed"]),
                run_at=r["run_at"],
            )
            for r in rows
        ]

    def save_evaluation(self, record: EvaluationRecord) -> None:
        scores = record.scores
        with self._lock, self.conn:
            self.conn.execute(
                """
                INSERT INTO lesson_evaluations (
                    id, lesson_id, session_id, user_id,
                    faithfulness_score, relevance_score, length_score,
                    structure_score, no_hallucination_score, overall_score,
                    details, word_count, has_examples, has_quiz, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.lesson_id,
                    record.session_id,
                    record.user_id,
                    scores["faithfulness"],
                    scores["relevance"],
                    scores["length"],
                    scores["structure"],
                    scores["no_hallucination"],
                    scores["overall"],
                    json.dumps(record.details),
                    record.word_count,
                    1 if record.has_examples else 0,
                    1 if record.has_quiz else 0,
                    record.created_at,
                ),
            )

    def list_evaluations(self, since: str = None) -> List[EvaluationRecord]:
        query = "SELECT * FROM lesson_evaluations"
        params: tuple = ()
        if since is not None:
            query += " WHERE created_at >= ?"
            params = (since,)
        with self._lock:
            rows = self.conn.execute(query + " ORDER BY created_at", params).fetchall()
        return [
            EvaluationRecord(
                id=r["id"],
                lesson_id=r["lesson_id"],
                session_id=r["session_id"],
                user_id=r["user_id"],
                scores={
                    "faithfulness": r["faithfulness_score"],
                    "relevance": r["relevance_score"],
                    "length": r["length_score"],
                    "structure": r["structure_score"],
                    "no_hallucination": r["no_hallucination_score"],
                    "overall": r["overall_score"],
                },
                details=json.loads(r["details"] or "{}"),
                word_count=r["word_count"],
                has_examples=bool(r["has_examples"]),
                has_quiz=bool(r["has_quiz"]),
                created_at=r["created_at"],
            )
            for r in rows
        ]

    def _row_to_baseline(self, row: sqlite3.Row) -> BaselineRecord:
        return BaselineRecord(
            id=row["id"],
            test_name=row["test_name"],
            input_context=json.loads(row["input_context"]),
            expected_output=row["expected_output"],
            expected_topics=json.loads(row["expected_topics"] or "[]"),
            forbidden_terms=json.loads(row["forbidden_terms"] or "[]"),
            created_at=row["created_at"],
        )
