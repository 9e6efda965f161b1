"""SQLite implementation of SikgStore.

All SQL, schema management, and low-level persistence lives here.
Application code should depend on the ports, not on this module directly.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import timezone
from pathlib import Path
from typing import Any

from sikg import defaults
from sikg.models import CommitRecord, Event, TestResult, TestStatus, now_iso, parse_iso


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_SCHEMA = """
CREATE TABLE IF NOT EXISTS events (
    id          TEXT PRIMARY KEY,
    timestamp   TEXT NOT NULL,
    event_type  TEXT NOT NULL,
    payload     TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_events_type ON events(event_type);
CREATE INDEX IF NOT EXISTS idx_events_time ON events(timestamp);

CREATE TABLE IF NOT EXISTS commits (
    hash        TEXT PRIMARY KEY,
    timestamp   TEXT NOT NULL,
    author      TEXT NOT NULL DEFAULT '',
    message     TEXT NOT NULL DEFAULT '',
    files       TEXT NOT NULL DEFAULT '[]'
);
CREATE INDEX IF NOT EXISTS idx_commits_time ON commits(timestamp);

CREATE TABLE IF NOT EXISTS test_results (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    test_id           TEXT NOT NULL,
    status            TEXT NOT NULL,
    timestamp         TEXT NOT NULL,
    execution_time_ms REAL NOT NULL DEFAULT 0,
    commit_hash       TEXT,
    predicted_impact  REAL,
    changed_node_ids  TEXT NOT NULL DEFAULT '[]',
    change_types      TEXT NOT NULL DEFAULT '{}',
    error_message     TEXT
);
CREATE INDEX IF NOT EXISTS idx_results_test ON test_results(test_id);
CREATE INDEX IF NOT EXISTS idx_results_time ON test_results(timestamp);

CREATE TABLE IF NOT EXISTS policy_state (
    id          INTEGER PRIMARY KEY CHECK (id = 1),
    data        TEXT NOT NULL,
    version     INTEGER NOT NULL,
    updated_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS rl_sessions (
    session_id  TEXT PRIMARY KEY,
    status      TEXT NOT NULL,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL,
    data        TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_sessions_status ON rl_sessions(status, created_at);
"""


def _utc(ts: str) -> str:
    """Normalize an ISO timestamp to UTC so string comparison orders correctly."""
    return parse_iso(ts).astimezone(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# SqliteStore
# ---------------------------------------------------------------------------

class SqliteStore:
    """SikgStore backed by a single SQLite file."""

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        with sqlite3.connect(str(self._db_path)) as conn:
            conn.executescript(_SCHEMA)

    @property
    def db_path(self) -> Path:
        return self._db_path

    def close(self) -> None:
        pass  # connections are per-call; nothing to tear down

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    # ------------------------------------------------------------------
    # EventStorePort
    # ------------------------------------------------------------------

    def append(self, event: Event) -> Event:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO events (id, timestamp, event_type, payload) VALUES (?, ?, ?, ?)",
                (event.id, event.timestamp, event.event_type, json.dumps(event.payload, default=str)),
            )
        return event

    def query(
        self,
        *,
        event_type: str | None = None,
        since: str | None = None,
        limit: int = defaults.QUERY_LIMIT_SMALL,
    ) -> list[dict[str, Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if event_type:
            clauses.append("event_type = ?")
            params.append(event_type)
        if since:
            clauses.append("timestamp >= ?")
            params.append(since)
        where = (" WHERE " + " AND ".join(clauses)) if clauses else ""
        params.append(limit)
        sql = f"SELECT * FROM events{where} ORDER BY timestamp DESC LIMIT ?"
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [
            {
                "id": r["id"],
                "timestamp": r["timestamp"],
                "event_type": r["event_type"],
                "payload": json.loads(r["payload"]),
            }
            for r in rows
        ]

    def count(self, event_type: str | None = None) -> int:
        with self._connect() as conn:
            if event_type:
                row = conn.execute(
                    "SELECT COUNT(*) FROM events WHERE event_type = ?", (event_type,),
                ).fetchone()
            else:
                row = conn.execute("SELECT COUNT(*) FROM events").fetchone()
        return row[0]

    # ------------------------------------------------------------------
    # HistoryStorePort
    # ------------------------------------------------------------------

    def add_commits(self, commits: list[CommitRecord]) -> int:
        """Insert commits not yet known by hash; return how many were new."""
        added = 0
        with self._connect() as conn:
            for c in commits:
                cur = conn.execute(
                    "INSERT OR IGNORE INTO commits (hash, timestamp, author, message, files) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (c.hash, _utc(c.timestamp), c.author, c.message, json.dumps(c.files)),
                )
                added += cur.rowcount
        return added

    def list_commits(
        self, *, since: str | None = None, limit: int = defaults.QUERY_LIMIT_LARGE,
    ) -> list[CommitRecord]:
        sql = "SELECT * FROM commits"
        params: list[Any] = []
        if since:
            sql += " WHERE timestamp >= ?"
            params.append(_utc(since))
        sql += " ORDER BY timestamp DESC LIMIT ?"
        params.append(limit)
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [
            CommitRecord(
                hash=r["hash"],
                timestamp=r["timestamp"],
                author=r["author"],
                message=r["message"],
                files=json.loads(r["files"]),
            )
            for r in rows
        ]

    def add_test_results(self, results: list[TestResult]) -> int:
        with self._connect() as conn:
            conn.executemany(
                "INSERT INTO test_results (test_id, status, timestamp, execution_time_ms, "
                "commit_hash, predicted_impact, changed_node_ids, change_types, error_message) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        r.test_id,
                        r.status.value,
                        _utc(r.timestamp),
                        r.execution_time_ms,
                        r.commit_hash,
                        r.predicted_impact,
                        json.dumps(r.changed_node_ids),
                        json.dumps(r.change_types),
                        r.error_message,
                    )
                    for r in results
                ],
            )
        return len(results)

    def list_test_results(
        self,
        *,
        since: str | None = None,
        test_id: str | None = None,
        limit: int = defaults.QUERY_LIMIT_LARGE,
    ) -> list[TestResult]:
        clauses: list[str] = []
        params: list[Any] = []
        if since:
            clauses.append("timestamp >= ?")
            params.append(_utc(since))
        if test_id:
            clauses.append("test_id = ?")
            params.append(test_id)
        where = (" WHERE " + " AND ".join(clauses)) if clauses else ""
        params.append(limit)
        sql = f"SELECT * FROM test_results{where} ORDER BY timestamp DESC, id DESC LIMIT ?"
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [
            TestResult(
                test_id=r["test_id"],
                status=TestStatus(r["status"]),
                timestamp=r["timestamp"],
                execution_time_ms=r["execution_time_ms"],
                commit_hash=r["commit_hash"],
                predicted_impact=r["predicted_impact"],
                changed_node_ids=json.loads(r["changed_node_ids"]),
                change_types=json.loads(r["change_types"]),
                error_message=r["error_message"],
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # PolicyStatePort
    # ------------------------------------------------------------------

    def load_policy_state(self) -> dict[str, Any] | None:
        with self._connect() as conn:
            row = conn.execute("SELECT data FROM policy_state WHERE id = 1").fetchone()
        return json.loads(row["data"]) if row else None

    def save_policy_state(self, data: dict[str, Any], version: int) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO policy_state (id, data, version, updated_at) VALUES (1, ?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET data = excluded.data, "
                "version = excluded.version, updated_at = excluded.updated_at",
                (json.dumps(data), version, now_iso()),
            )

    def delete_policy_state(self) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM policy_state")

    def save_rl_session(self, session_id: str, data: dict[str, Any], status: str = "open") -> None:
        now = now_iso()
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO rl_sessions (session_id, status, created_at, updated_at, data) "
                "VALUES (?, ?, ?, ?, ?) "
                "ON CONFLICT(session_id) DO UPDATE SET status = excluded.status, "
                "updated_at = excluded.updated_at, data = excluded.data",
                (session_id, status, data.get("created_at", now), now, json.dumps(data)),
            )

    def get_rl_session(self, session_id: str) -> dict[str, Any] | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT data, status FROM rl_sessions WHERE session_id = ?", (session_id,),
            ).fetchone()
        return _session_row(row)

    def latest_rl_session(self, status: str = "open") -> dict[str, Any] | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT data, status FROM rl_sessions WHERE status = ? "
                "ORDER BY created_at DESC, rowid DESC LIMIT 1",
                (status,),
            ).fetchone()
        return _session_row(row)


def _session_row(row: sqlite3.Row | None) -> dict[str, Any] | None:
    if row is None:
        return None
    data = json.loads(row["data"])
    data["status"] = row["status"]
    return data
