"""
SQLite-backed relational store for memory data.

Tables:
- memories: one row per memory record
- extraction_jobs: one row per extraction job
- context_cache: one row per owner (pre-built prompt context)

Access is generic CRUD over column dicts. Each call is a single statement
committed immediately, so every store operation is atomic on its own.
"""

import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union


SCHEMA = """
CREATE TABLE IF NOT EXISTS memories (
    id TEXT PRIMARY KEY,
    owner TEXT NOT NULL,
    memory_type TEXT NOT NULL,
    category TEXT NOT NULL DEFAULT 'general',
    content TEXT NOT NULL,
    source_entry_ids TEXT,
    confidence REAL NOT NULL DEFAULT 1.0,
    importance INTEGER NOT NULL DEFAULT 5,
    first_observed_at TEXT NOT NULL,
    last_confirmed_at TEXT NOT NULL,
    mention_count INTEGER NOT NULL DEFAULT 1,
    is_active INTEGER NOT NULL DEFAULT 1,
    superseded_by TEXT,
    user_confirmed INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_memories_owner_type ON memories(owner, memory_type, is_active);
CREATE INDEX IF NOT EXISTS idx_memories_owner_category ON memories(owner, category, is_active);
CREATE INDEX IF NOT EXISTS idx_memories_owner_importance ON memories(owner, importance DESC, is_active);
CREATE INDEX IF NOT EXISTS idx_memories_owner_recent ON memories(owner, last_confirmed_at DESC, is_active);

CREATE TABLE IF NOT EXISTS extraction_jobs (
    id TEXT PRIMARY KEY,
    owner TEXT NOT NULL,
    source_entry_id TEXT NOT NULL,
    status TEXT NOT NULL,
    extracted_memories TEXT,
    notes TEXT,
    created_at TEXT NOT NULL,
    processed_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_extraction_jobs_status ON extraction_jobs(status, created_at);
CREATE INDEX IF NOT EXISTS idx_extraction_jobs_owner ON extraction_jobs(owner, created_at DESC);
CREATE INDEX IF NOT EXISTS idx_extraction_jobs_entry ON extraction_jobs(owner, source_entry_id);

CREATE TABLE IF NOT EXISTS context_cache (
    owner TEXT PRIMARY KEY,
    context_summary TEXT NOT NULL,
    memory_snapshot TEXT NOT NULL,
    last_updated_at TEXT NOT NULL,
    invalidated_at TEXT
);
"""

TABLES = ("memories", "extraction_jobs", "context_cache")

Where = Optional[Dict[str, Any]]


def _where_clause(where: Where, like: Optional[Dict[str, str]] = None) -> tuple[str, list]:
    """
    Build a WHERE clause.

    Values map to ``col = ?``; ``None`` maps to ``col IS NULL``; lists and
    tuples map to ``col IN (...)``. ``like`` adds ``col LIKE ? ESCAPE '\\'``.
    """
    parts: List[str] = []
    params: list = []

    for col, value in (where or {}).items():
        if value is None:
            parts.append(f"{col} IS NULL")
        elif isinstance(value, (list, tuple, set)):
            values = list(value)
            if not values:
                parts.append("0")
                continue
            placeholders = ", ".join("?" for _ in values)
            parts.append(f"{col} IN ({placeholders})")
            params.extend(values)
        else:
            parts.append(f"{col} = ?")
            params.append(value)

    for col, pattern in (like or {}).items():
        parts.append(f"{col} LIKE ? ESCAPE '\\'")
        params.append(pattern)

    if not parts:
        return "", params
    return " WHERE " + " AND ".join(parts), params


def escape_like(text: str) -> str:
    """Escape LIKE wildcards so ``text`` matches literally."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SQLiteStore:
    """
    File-backed (or in-memory) SQLite store.

    Thread-safe with WAL mode; pass ``":memory:"`` for an ephemeral database.
    """

    def __init__(self, db_path: Union[str, Path]):
        """
        Open (and initialize) the database.

        Args:
            db_path: Path to SQLite database file, or ":memory:"
        """
        self.in_memory = str(db_path) == ":memory:"
        self.db_path = db_path if self.in_memory else Path(db_path)

        if not self.in_memory:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(
            str(db_path),
            check_same_thread=False,
            timeout=10.0,
        )
        self._conn.row_factory = sqlite3.Row

        if not self.in_memory:
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA synchronous=NORMAL")

        self._init_tables()

    def _init_tables(self) -> None:
        """Create tables and indexes if they don't exist."""
        self._conn.executescript(SCHEMA)
        self._conn.commit()

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def insert(self, table: str, row: Dict[str, Any]) -> None:
        """Insert a row; fails on primary key conflict."""
        cols = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        self._conn.execute(
            f"INSERT INTO {table} ({cols}) VALUES ({placeholders})",
            tuple(row.values()),
        )
        self._conn.commit()

    def upsert(self, table: str, row: Dict[str, Any], key: str) -> None:
        """Insert a row, or replace every column of the row with the same ``key``."""
        cols = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        updates = ", ".join(f"{c} = excluded.{c}" for c in row if c != key)
        self._conn.execute(
            f"INSERT INTO {table} ({cols}) VALUES ({placeholders}) "
            f"ON CONFLICT({key}) DO UPDATE SET {updates}",
            tuple(row.values()),
        )
        self._conn.commit()

    def fetch_one(self, table: str, where: Where) -> Optional[Dict[str, Any]]:
        clause, params = _where_clause(where)
        cursor = self._conn.execute(f"SELECT * FROM {table}{clause} LIMIT 1", params)
        row = cursor.fetchone()
        return dict(row) if row else None

    def fetch_all(
        self,
        table: str,
        where: Where = None,
        order_by: Sequence[str] = (),
        limit: Optional[int] = None,
        like: Optional[Dict[str, str]] = None,
        before: Optional[Dict[str, str]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Select rows.

        Args:
            table: Table name
            where: Equality / IN / IS NULL filters
            order_by: ORDER BY terms, e.g. ["importance DESC"]
            limit: Maximum rows
            like: LIKE filters (patterns must already be escaped)
            before: ``col < value`` filters

        Returns:
            List of row dicts
        """
        clause, params = _where_clause(where, like)
        for col, value in (before or {}).items():
            clause += (" AND " if clause else " WHERE ") + f"{col} < ?"
            params.append(value)

        sql = f"SELECT * FROM {table}{clause}"
        if order_by:
            sql += " ORDER BY " + ", ".join(order_by)
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))

        return [dict(r) for r in self._conn.execute(sql, params).fetchall()]

    def update(
        self,
        table: str,
        values: Dict[str, Any],
        where: Where,
        increments: Optional[Dict[str, int]] = None,
    ) -> int:
        """
        Update matching rows in one statement.

        ``increments`` are applied server-side (``col = col + n``) so
        concurrent increments never lose updates.

        Returns:
            Number of rows changed
        """
        sets = [f"{col} = ?" for col in values]
        params: list = list(values.values())
        for col, delta in (increments or {}).items():
            sets.append(f"{col} = {col} + ?")
            params.append(delta)

        clause, where_params = _where_clause(where)
        cursor = self._conn.execute(
            f"UPDATE {table} SET {', '.join(sets)}{clause}",
            params + where_params,
        )
        self._conn.commit()
        return cursor.rowcount

    def delete(self, table: str, where: Where, before: Optional[Dict[str, str]] = None) -> int:
        """Delete matching rows; returns number of rows removed."""
        clause, params = _where_clause(where)
        for col, value in (before or {}).items():
            clause += (" AND " if clause else " WHERE ") + f"{col} < ?"
            params.append(value)
        cursor = self._conn.execute(f"DELETE FROM {table}{clause}", params)
        self._conn.commit()
        return cursor.rowcount

    def count(self, table: str, where: Where = None) -> int:
        clause, params = _where_clause(where)
        cursor = self._conn.execute(f"SELECT COUNT(*) FROM {table}{clause}", params)
        return cursor.fetchone()[0]

    def distinct(self, table: str, column: str, where: Where = None) -> List[Any]:
        clause, params = _where_clause(where)
        cursor = self._conn.execute(
            f"SELECT DISTINCT {column} FROM {table}{clause} ORDER BY {column}", params
        )
        return [row[0] for row in cursor.fetchall()]

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def stats(self, table: str) -> dict:
        """
        Get statistics for a table.

        Returns:
            Dict with count and total_bytes (approximate payload size)
        """
        cursor = self._conn.execute(f"SELECT * FROM {table} LIMIT 0")
        columns = [d[0] for d in cursor.description]
        size_expr = " + ".join(f"COALESCE(LENGTH({c}), 0)" for c in columns)
        row = self._conn.execute(
            f"SELECT COUNT(*), SUM({size_expr}) FROM {table}"
        ).fetchone()
        return {"count": row[0] or 0, "total_bytes": row[1] or 0}

    def purge_table(self, table: str) -> int:
        """Delete all rows from a table; returns number of rows deleted."""
        count = self.count(table)
        self._conn.execute(f"DELETE FROM {table}")
        self._conn.commit()
        return count

    def vacuum(self) -> None:
        """Reclaim space after large deletions."""
        self._conn.execute("VACUUM")
        self._conn.commit()

    def close(self) -> None:
        """Close database connection."""
        self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
