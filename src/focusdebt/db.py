"""SQLite persistence for sessions, intervals and context switches."""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable, Iterator, Optional, Union

from .models import (
    AppSubject,
    ContextSwitchEvent,
    DomainSubject,
    Session,
    Subject,
    UsageInterval,
)


DATETIME_FMT = "%Y-%m-%d %H:%M:%S.%f"

POLICY_TABLES = {
    "focus_apps": "focus_apps",
    "focus_sites": "focus_sites",
    "ignored_apps": "ignored_apps",
}


class PersistenceError(RuntimeError):
    """A database operation failed."""


def open_database(path: Union[Path, str], *, check_same_thread: bool = True) -> sqlite3.Connection:
    """Open (and initialize) the SQLite database."""
    if str(path) != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(
        path,
        isolation_level=None,
        check_same_thread=check_same_thread,
    )
    conn.row_factory = sqlite3.Row
    enable_foreign_keys(conn)
    initialize_schema(conn)
    return conn


def enable_foreign_keys(conn: sqlite3.Connection) -> None:
    conn.execute("PRAGMA foreign_keys = ON;")


def initialize_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS sessions (
            id INTEGER PRIMARY KEY,
            name TEXT NOT NULL UNIQUE,
            start_time TEXT NOT NULL,
            end_time TEXT
        );

        CREATE TABLE IF NOT EXISTS usage_intervals (
            id INTEGER PRIMARY KEY,
            session_id INTEGER NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
            subject_kind TEXT NOT NULL,
            app_name TEXT NOT NULL,
            domain TEXT,
            start_time TEXT NOT NULL,
            end_time TEXT NOT NULL,
            is_focus INTEGER NOT NULL
        );

        CREATE TABLE IF NOT EXISTS context_switches (
            id INTEGER PRIMARY KEY,
            session_id INTEGER NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
            timestamp TEXT NOT NULL,
            from_kind TEXT,
            from_app TEXT,
            from_domain TEXT,
            to_kind TEXT NOT NULL,
            to_app TEXT NOT NULL,
            to_domain TEXT,
            recovery_seconds REAL
        );

        CREATE TABLE IF NOT EXISTS focus_apps (
            value TEXT PRIMARY KEY,
            added_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS focus_sites (
            value TEXT PRIMARY KEY,
            added_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS ignored_apps (
            value TEXT PRIMARY KEY,
            added_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_intervals_session
            ON usage_intervals(session_id, start_time);
        CREATE INDEX IF NOT EXISTS idx_switches_session
            ON context_switches(session_id, timestamp);
        """
    )


def _format(value: datetime) -> str:
    return value.strftime(DATETIME_FMT)


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.strptime(value, DATETIME_FMT) if value else None


def _subject_columns(subject: Optional[Subject]) -> tuple[Optional[str], Optional[str], Optional[str]]:
    if subject is None:
        return None, None, None
    if isinstance(subject, DomainSubject):
        return "domain", subject.browser, subject.domain
    return "app", subject.app_name, None


def _subject_from_columns(
    kind: Optional[str], app_name: Optional[str], domain: Optional[str]
) -> Optional[Subject]:
    if kind is None or app_name is None:
        return None
    if kind == "domain" and domain:
        return DomainSubject(browser=app_name, domain=domain)
    return AppSubject(app_name=app_name)


class SqliteStore:
    """Persistence collaborator backed by a single SQLite connection.

    Safe to share between the flush thread and the caller's thread.
    """

    def __init__(self, db_path: Union[Path, str]) -> None:
        self.db_path = db_path
        self._lock = threading.Lock()
        try:
            self._conn = open_database(db_path, check_same_thread=False)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not open {db_path}: {exc}") from exc

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> "SqliteStore":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @contextmanager
    def _cursor(self, *, transaction: bool = False) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                if transaction:
                    self._conn.execute("BEGIN")
                try:
                    yield self._conn
                except BaseException:
                    if transaction:
                        self._conn.execute("ROLLBACK")
                    raise
                if transaction:
                    self._conn.execute("COMMIT")
            except sqlite3.Error as exc:
                raise PersistenceError(str(exc)) from exc

    # -- write path used by the tracking engine --------------------------------

    def open_session(self, name: str, start: Optional[datetime] = None) -> int:
        start = start or datetime.now()
        try:
            with self._cursor() as conn:
                cur = conn.execute(
                    "INSERT INTO sessions (name, start_time) VALUES (?, ?)",
                    (name, _format(start)),
                )
        except PersistenceError as exc:
            if isinstance(exc.__cause__, sqlite3.IntegrityError):
                raise PersistenceError(f"Session name {name!r} already exists") from exc
            raise
        return int(cur.lastrowid)

    def close_session(self, session_id: int, end_time: datetime) -> None:
        with self._cursor() as conn:
            cur = conn.execute(
                "UPDATE sessions SET end_time = ? WHERE id = ?",
                (_format(end_time), session_id),
            )
        if cur.rowcount == 0:
            raise PersistenceError(f"No session found for id={session_id}")

    def append_intervals(self, session_id: int, intervals: Iterable[UsageInterval]) -> None:
        rows = []
        for interval in intervals:
            kind, app_name, domain = _subject_columns(interval.subject)
            rows.append(
                (
                    session_id,
                    kind,
                    app_name,
                    domain,
                    _format(interval.start),
                    _format(interval.end),
                    1 if interval.is_focus else 0,
                )
            )
        if not rows:
            return
        with self._cursor(transaction=True) as conn:
            conn.executemany(
                """
                INSERT INTO usage_intervals (
                    session_id,
                    subject_kind,
                    app_name,
                    domain,
                    start_time,
                    end_time,
                    is_focus
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )

    def append_switches(self, session_id: int, switches: Iterable[ContextSwitchEvent]) -> None:
        rows = []
        for switch in switches:
            rows.append(
                (
                    session_id,
                    _format(switch.timestamp),
                    *_subject_columns(switch.from_subject),
                    *_subject_columns(switch.to_subject),
                    (
                        switch.recovery_time.total_seconds()
                        if switch.recovery_time is not None
                        else None
                    ),
                )
            )
        if not rows:
            return
        with self._cursor(transaction=True) as conn:
            conn.executemany(
                """
                INSERT INTO context_switches (
                    session_id,
                    timestamp,
                    from_kind,
                    from_app,
                    from_domain,
                    to_kind,
                    to_app,
                    to_domain,
                    recovery_seconds
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )

    # -- read path for reporting -------------------------------------------------

    def session_name_exists(self, name: str) -> bool:
        with self._cursor() as conn:
            row = conn.execute("SELECT 1 FROM sessions WHERE name = ?", (name,)).fetchone()
        return row is not None

    def list_sessions(self) -> list[Session]:
        """Session headers (without intervals or switches), newest first."""
        with self._cursor() as conn:
            rows = conn.execute(
                "SELECT id, name, start_time, end_time FROM sessions ORDER BY start_time DESC, id DESC"
            ).fetchall()
        return [self._header(row) for row in rows]

    def latest_session(self) -> Optional[Session]:
        with self._cursor() as conn:
            row = conn.execute(
                "SELECT id FROM sessions ORDER BY start_time DESC, id DESC LIMIT 1"
            ).fetchone()
        return self.load_session(int(row["id"])) if row else None

    def load_session(self, key: Union[int, str]) -> Optional[Session]:
        """Load a session with all of its records by id or by name."""
        column = "id" if isinstance(key, int) else "name"
        with self._cursor() as conn:
            row = conn.execute(
                f"SELECT id, name, start_time, end_time FROM sessions WHERE {column} = ?",
                (key,),
            ).fetchone()
            if row is None:
                return None
            interval_rows = conn.execute(
                """
                SELECT subject_kind, app_name, domain, start_time, end_time, is_focus
                FROM usage_intervals
                WHERE session_id = ?
                ORDER BY start_time, id
                """,
                (row["id"],),
            ).fetchall()
            switch_rows = conn.execute(
                """
                SELECT timestamp, from_kind, from_app, from_domain,
                       to_kind, to_app, to_domain, recovery_seconds
                FROM context_switches
                WHERE session_id = ?
                ORDER BY timestamp, id
                """,
                (row["id"],),
            ).fetchall()

        session = self._header(row)
        session.intervals = [
            UsageInterval(
                subject=_subject_from_columns(r["subject_kind"], r["app_name"], r["domain"]),
                start=_parse(r["start_time"]),
                end=_parse(r["end_time"]),
                is_focus=bool(r["is_focus"]),
            )
            for r in interval_rows
        ]
        session.switches = [
            ContextSwitchEvent(
                timestamp=_parse(r["timestamp"]),
                from_subject=_subject_from_columns(r["from_kind"], r["from_app"], r["from_domain"]),
                to_subject=_subject_from_columns(r["to_kind"], r["to_app"], r["to_domain"]),
                recovery_time=(
                    timedelta(seconds=r["recovery_seconds"])
                    if r["recovery_seconds"] is not None
                    else None
                ),
            )
            for r in switch_rows
        ]
        return session

    @staticmethod
    def _header(row: sqlite3.Row) -> Session:
        return Session(
            id=int(row["id"]),
            name=row["name"],
            start=_parse(row["start_time"]),
            end=_parse(row["end_time"]),
        )

    # -- classification entries managed from the CLI -----------------------------

    def add_policy_entry(self, kind: str, value: str) -> bool:
        table = POLICY_TABLES[kind]
        with self._cursor() as conn:
            cur = conn.execute(
                f"INSERT OR IGNORE INTO {table} (value, added_at) VALUES (?, ?)",
                (value, _format(datetime.now())),
            )
        return cur.rowcount > 0

    def remove_policy_entry(self, kind: str, value: str) -> bool:
        table = POLICY_TABLES[kind]
        with self._cursor() as conn:
            cur = conn.execute(f"DELETE FROM {table} WHERE value = ?", (value,))
        return cur.rowcount > 0

    def list_policy_entries(self, kind: str) -> list[str]:
        table = POLICY_TABLES[kind]
        with self._cursor() as conn:
            rows = conn.execute(f"SELECT value FROM {table} ORDER BY value").fetchall()
        return [row["value"] for row in rows]

    # -- maintenance --------------------------------------------------------------

    def clear_all(self) -> None:
        with self._cursor(transaction=True) as conn:
            conn.execute("DELETE FROM context_switches")
            conn.execute("DELETE FROM usage_intervals")
            conn.execute("DELETE FROM sessions")

    def cleanup(self) -> int:
        """Delete sessions that were never closed and recorded nothing."""
        with self._cursor() as conn:
            cur = conn.execute(
                """
                DELETE FROM sessions
                WHERE end_time IS NULL
                  AND NOT EXISTS (
                      SELECT 1 FROM usage_intervals WHERE usage_intervals.session_id = sessions.id
                  )
                """
            )
        return cur.rowcount

    def vacuum(self) -> None:
        with self._cursor() as conn:
            conn.execute("VACUUM")
