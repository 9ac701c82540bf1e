"""Append-only run journal using SQLite.

The journal is the only state fleetguard keeps across runs. Every entry is
committed with ``synchronous=FULL`` before ``record`` returns, so after a
crash the journal agrees with the host up to the last recorded entry.

One connection is shared by all host workers; appends are serialized by a
lock and numbered per run, so entries of different runs never interleave
within a run's sequence. A host may have at most one open run at a time.

Example:
-------
    >>> from fleetguard.journal import Journal
    >>> journal = Journal("/var/lib/fleetguard/journal.db")
    >>> run_id = journal.begin_run("web-01", baseline="cis-debian-l1")
    >>> journal.record(entry)
    >>> journal.finish_run(run_id, RunStatus.SUCCESS)
    >>> journal.close()

"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from fleetguard._types import (
    ActionKind,
    JournalEntry,
    Outcome,
    ReconciliationRun,
    RunKind,
    RunStatus,
    Snapshot,
    utcnow,
)
from fleetguard.errors import JournalWriteError, RunNotFoundError

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS runs (
    id TEXT PRIMARY KEY,
    host TEXT NOT NULL,
    run_kind TEXT NOT NULL,
    baseline TEXT DEFAULT '',
    started_at TEXT NOT NULL,
    completed_at TEXT,
    status TEXT,
    parent_run_id TEXT
);

CREATE TABLE IF NOT EXISTS entries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id TEXT NOT NULL,
    seq INTEGER NOT NULL,
    timestamp TEXT NOT NULL,
    host TEXT NOT NULL,
    item_id TEXT NOT NULL,
    item_kind TEXT,
    action_kind TEXT NOT NULL,
    new_value TEXT,
    prior TEXT,
    outcome TEXT NOT NULL,
    reason TEXT DEFAULT '',
    item TEXT,
    UNIQUE (run_id, seq),
    FOREIGN KEY (run_id) REFERENCES runs(id)
);

CREATE INDEX IF NOT EXISTS idx_entries_run ON entries(run_id);
CREATE INDEX IF NOT EXISTS idx_runs_host ON runs(host);
CREATE INDEX IF NOT EXISTS idx_runs_started ON runs(started_at);
"""


def _dumps(value: Any) -> str | None:
    return None if value is None else json.dumps(value, sort_keys=True)


def _loads(text: str | None) -> Any:
    return None if text is None else json.loads(text)


def _parse_time(text: str | None) -> datetime | None:
    return datetime.fromisoformat(text) if text else None


class Journal:
    """SQLite-backed, append-only history of reconciliation runs.

    Attributes:
        path: Database file path, or ``":memory:"``.

    """

    SCHEMA_VERSION = 1

    def __init__(self, path: str | Path = ":memory:"):
        self.path = str(path)
        self._lock = threading.Lock()
        self._open_hosts: dict[str, str] = {}
        self._conn: sqlite3.Connection | None = None
        try:
            self._init_db()
        except (sqlite3.Error, OSError) as exc:
            raise JournalWriteError(f"Cannot open journal {self.path}: {exc}") from exc

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            if self.path != ":memory:":
                Path(self.path).expanduser().parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(
                str(Path(self.path).expanduser()) if self.path != ":memory:" else self.path,
                check_same_thread=False,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA synchronous=FULL")
        return self._conn

    def _init_db(self) -> None:
        """Initialize database schema."""
        conn = self._get_conn()
        conn.executescript(_SCHEMA)
        if conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone() is None:
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,))
        conn.commit()

    def _write(self, sql: str, params: tuple) -> sqlite3.Cursor:
        """Execute and commit one statement; caller holds the lock."""
        conn = self._get_conn()
        try:
            cursor = conn.execute(sql, params)
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise JournalWriteError(f"Journal write failed: {exc}") from exc
        return cursor

    def _read(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            try:
                return self._get_conn().execute(sql, params).fetchall()
            except sqlite3.Error as exc:
                raise JournalWriteError(f"Journal read failed: {exc}") from exc

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> Journal:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ── Runs ──────────────────────────────────────────────────────────────

    def begin_run(
        self,
        host: str,
        *,
        run_kind: RunKind = RunKind.APPLY,
        baseline: str = "",
        parent_run_id: str | None = None,
    ) -> str:
        """Open a new run for a host and return its id.

        Raises:
            JournalWriteError: The host already has an open run, or the
                run could not be stored.

        """
        run_id = uuid.uuid4().hex
        with self._lock:
            if host in self._open_hosts:
                raise JournalWriteError(f"Host {host} already has an open run {self._open_hosts[host]}")
            self._write(
                """
                INSERT INTO runs (id, host, run_kind, baseline, started_at, parent_run_id)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (run_id, host, run_kind.value, baseline, utcnow().isoformat(), parent_run_id),
            )
            self._open_hosts[host] = run_id
        logger.debug("Began %s run %s on %s", run_kind.value, run_id, host)
        return run_id

    def finish_run(self, run_id: str, status: RunStatus) -> None:
        """Close a run with its terminal status."""
        with self._lock:
            cursor = self._write(
                "UPDATE runs SET completed_at = ?, status = ? WHERE id = ?",
                (utcnow().isoformat(), status.value, run_id),
            )
            if cursor.rowcount == 0:
                raise RunNotFoundError(f"Run {run_id} not found")
            for host, open_id in list(self._open_hosts.items()):
                if open_id == run_id:
                    del self._open_hosts[host]
        logger.debug("Finished run %s: %s", run_id, status.value)

    def release(self, run_id: str) -> None:
        """Forget an open run without finishing it, leaving its status empty."""
        with self._lock:
            for host, open_id in list(self._open_hosts.items()):
                if open_id == run_id:
                    del self._open_hosts[host]

    def get_run(self, run_id: str) -> ReconciliationRun | None:
        """Get run by ID, or None if not found."""
        rows = self._read("SELECT * FROM runs WHERE id = ?", (run_id,))
        return self._row_to_run(rows[0]) if rows else None

    def list_runs(self, host: str | None = None, limit: int = 20) -> list[ReconciliationRun]:
        """List recent runs, most recent first."""
        if host:
            rows = self._read(
                "SELECT * FROM runs WHERE host = ? ORDER BY started_at DESC, rowid DESC LIMIT ?",
                (host, limit),
            )
        else:
            rows = self._read("SELECT * FROM runs ORDER BY started_at DESC, rowid DESC LIMIT ?", (limit,))
        return [self._row_to_run(row) for row in rows]

    @staticmethod
    def _row_to_run(row: sqlite3.Row) -> ReconciliationRun:
        return ReconciliationRun(
            run_id=row["id"],
            host=row["host"],
            run_kind=RunKind(row["run_kind"]),
            started_at=datetime.fromisoformat(row["started_at"]),
            completed_at=_parse_time(row["completed_at"]),
            status=RunStatus(row["status"]) if row["status"] else None,
            baseline=row["baseline"] or "",
            parent_run_id=row["parent_run_id"],
        )

    # ── Entries ───────────────────────────────────────────────────────────

    def record(self, entry: JournalEntry) -> int:
        """Append one entry and return its sequence number within the run.

        The entry is durable when this returns.

        Raises:
            JournalWriteError: The entry could not be stored.

        """
        item_kind = entry.item.get("kind") if entry.item else None
        with self._lock:
            try:
                seq = self._get_conn().execute(
                    "SELECT COALESCE(MAX(seq), 0) + 1 FROM entries WHERE run_id = ?",
                    (entry.run_id,),
                ).fetchone()[0]
            except sqlite3.Error as exc:
                raise JournalWriteError(f"Journal write failed: {exc}") from exc
            self._write(
                """
                INSERT INTO entries (
                    run_id, seq, timestamp, host, item_id, item_kind, action_kind,
                    new_value, prior, outcome, reason, item
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.run_id,
                    seq,
                    entry.timestamp.isoformat(),
                    entry.host,
                    entry.item_id,
                    item_kind,
                    entry.action.value,
                    _dumps(entry.new_value),
                    _dumps(entry.prior.to_dict() if entry.prior else None),
                    entry.outcome.value,
                    entry.reason,
                    _dumps(entry.item),
                ),
            )
        entry.seq = seq
        return seq

    def entries(self, run_id: str) -> list[JournalEntry]:
        """Get all entries for a run, ordered by sequence number."""
        rows = self._read("SELECT * FROM entries WHERE run_id = ? ORDER BY seq", (run_id,))
        return [
            JournalEntry(
                run_id=row["run_id"],
                host=row["host"],
                item_id=row["item_id"],
                action=ActionKind(row["action_kind"]),
                outcome=Outcome(row["outcome"]),
                reason=row["reason"] or "",
                prior=Snapshot.from_dict(_loads(row["prior"])),
                new_value=_loads(row["new_value"]),
                item=_loads(row["item"]),
                timestamp=datetime.fromisoformat(row["timestamp"]),
                seq=row["seq"],
            )
            for row in rows
        ]

    # ── Maintenance ───────────────────────────────────────────────────────

    def prune(self, days: int) -> int:
        """Delete completed runs older than ``days`` and their entries.

        Returns:
            Number of runs deleted.

        """
        cutoff = (utcnow() - timedelta(days=days)).isoformat()
        with self._lock:
            conn = self._get_conn()
            try:
                conn.execute(
                    """
                    DELETE FROM entries WHERE run_id IN (
                        SELECT id FROM runs WHERE started_at < ? AND completed_at IS NOT NULL
                    )
                    """,
                    (cutoff,),
                )
                cursor = conn.execute(
                    "DELETE FROM runs WHERE started_at < ? AND completed_at IS NOT NULL",
                    (cutoff,),
                )
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                raise JournalWriteError(f"Journal prune failed: {exc}") from exc
        logger.info("Pruned %d run(s) older than %d day(s)", cursor.rowcount, days)
        return cursor.rowcount
