"""Append-only knowledge base of verified fix attempts.

Every verified attempt, successful or not, is recorded against an issue
signature.  Later runs use the record to re-propose fixes that worked and to
bias candidate confidence.  Entries are never updated or deleted.

The SQLite store lives at ``{project_root}/.pixelmend/knowledge.db`` and is
read fully into memory when opened; each append is committed before it
returns.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Protocol, runtime_checkable

from pixelmend.core.errors import FatalAttemptError
from pixelmend.core.models import Classification, KnowledgeBaseEntry, Outcome

logger = logging.getLogger(__name__)

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS entries (
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    issue_signature       TEXT NOT NULL,
    fix_description       TEXT NOT NULL DEFAULT '',
    outcome               TEXT NOT NULL,
    diff_percentage_after REAL NOT NULL,
    timestamp             TEXT NOT NULL,
    file_path             TEXT NOT NULL DEFAULT '',
    line_number           INTEGER NOT NULL DEFAULT 0,
    original_content      TEXT NOT NULL DEFAULT '',
    suggested_content     TEXT NOT NULL DEFAULT ''
);

CREATE INDEX IF NOT EXISTS idx_entries_sig ON entries(issue_signature);
"""


def issue_signature(
    classification: Classification, selector: str, file_path: Path | str
) -> str:
    """``"<CLASSIFICATION>|<selector or '-'>|<file name>"``."""
    return f"{classification.value}|{selector or '-'}|{Path(file_path).name}"


@runtime_checkable
class KnowledgeStore(Protocol):
    def append(self, entry: KnowledgeBaseEntry) -> None:
        ...

    def query_by_signature(self, signature: str) -> list[KnowledgeBaseEntry]:
        ...

    def entries(self) -> list[KnowledgeBaseEntry]:
        ...


def outcome_counts(entries: list[KnowledgeBaseEntry]) -> tuple[int, int]:
    """Return ``(successes, failures)``."""
    counts = Counter(e.outcome for e in entries)
    return counts[Outcome.SUCCESS], counts[Outcome.FAILURE]


class InMemoryKnowledgeStore:
    """Knowledge store that lives only as long as the process."""

    def __init__(self, entries: list[KnowledgeBaseEntry] | None = None):
        self._entries: list[KnowledgeBaseEntry] = list(entries or [])
        self._lock = threading.Lock()

    def append(self, entry: KnowledgeBaseEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def query_by_signature(self, signature: str) -> list[KnowledgeBaseEntry]:
        with self._lock:
            return [e for e in self._entries if e.issue_signature == signature]

    def entries(self) -> list[KnowledgeBaseEntry]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


class SqliteKnowledgeStore(InMemoryKnowledgeStore):
    """Knowledge store persisted to an insert-only SQLite table.

    Usage::

        store = SqliteKnowledgeStore(project / ".pixelmend" / "knowledge.db")
        store.append(entry)
        store.query_by_signature("COLOR|#header|site.css")
    """

    def __init__(self, db_path: Path):
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        super().__init__()
        self._init_db()
        self._entries = self._load()
        logger.debug("Loaded %d knowledge-base entries from %s", len(self._entries), self._db_path)

    # ------------------------------------------------------------------
    # Database bootstrap
    # ------------------------------------------------------------------

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.executescript(_SCHEMA_SQL)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=10)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.row_factory = sqlite3.Row
        return conn

    def _load(self) -> list[KnowledgeBaseEntry]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM entries ORDER BY id").fetchall()
        return [self._row_to_entry(row) for row in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def append(self, entry: KnowledgeBaseEntry) -> None:
        """Insert *entry*; raises :class:`FatalAttemptError` if the write fails."""
        with self._lock:
            try:
                conn = self._connect()
                try:
                    conn.execute(
                        """INSERT INTO entries
                        (issue_signature, fix_description, outcome, diff_percentage_after,
                         timestamp, file_path, line_number, original_content, suggested_content)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                        (
                            entry.issue_signature,
                            entry.fix_description,
                            entry.outcome.value,
                            entry.diff_percentage_after,
                            entry.timestamp.isoformat(),
                            entry.file_path,
                            entry.line_number,
                            entry.original_content,
                            entry.suggested_content,
                        ),
                    )
                    conn.commit()
                finally:
                    conn.close()
            except sqlite3.Error as e:
                logger.error("Knowledge-base append failed: %s", e)
                raise FatalAttemptError("knowledge_base_write_failed", str(e)) from e
            self._entries.append(entry)

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> KnowledgeBaseEntry:
        return KnowledgeBaseEntry(
            issue_signature=row["issue_signature"],
            fix_description=row["fix_description"],
            outcome=Outcome(row["outcome"]),
            diff_percentage_after=row["diff_percentage_after"],
            timestamp=datetime.fromisoformat(row["timestamp"]),
            file_path=row["file_path"],
            line_number=row["line_number"],
            original_content=row["original_content"],
            suggested_content=row["suggested_content"],
        )
