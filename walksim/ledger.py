"""Step ledgers: where synced step batches and walk sessions are recorded."""

import hashlib
import sqlite3
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

import requests

from .config import CONFIG
from .errors import SyncFailure


def to_utc_iso(moment: datetime) -> str:
    """ISO timestamp in UTC. Naive datetimes are taken as local time."""
    return moment.astimezone(timezone.utc).isoformat()


def batch_key(start: datetime) -> str:
    """Stable identifier for a batch.

    A failed batch is resent with the same start and a later end, so only
    the start identifies it.
    """
    key = to_utc_iso(start)
    return hashlib.md5(key.encode()).hexdigest()


class StepLedger(ABC):
    """External store for step batches and walk sessions.

    Writes return True on success, False when there was nothing to write,
    and raise SyncFailure when the ledger could not be reached. A batch
    resubmitted for the same window start must replace the earlier count,
    never add to it. A retry carries every step of the failed batch plus
    those recorded since.
    """

    @abstractmethod
    def write_step_batch(self, start: datetime, end: datetime, count: int) -> bool:
        ...

    @abstractmethod
    def write_session_record(self, start: datetime, end: datetime,
                             title: Optional[str] = None) -> bool:
        ...

    @abstractmethod
    def aggregate_steps_between(self, start: datetime, end: datetime) -> int:
        ...

    def close(self):
        pass


class SQLiteStepLedger(StepLedger):
    """Local SQLite step ledger"""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or CONFIG["ledger_db_path"]
        self.conn = sqlite3.connect(
            self.db_path, timeout=CONFIG["ledger_timeout"], check_same_thread=False
        )
        self._lock = threading.Lock()
        self._init_schema()

    def _init_schema(self):
        """Create database tables"""
        with self._lock:
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS step_batches (
                    start_time TEXT NOT NULL,
                    end_time TEXT NOT NULL,
                    count INTEGER NOT NULL,
                    recorded_at TEXT NOT NULL,
                    PRIMARY KEY (start_time)
                )
            """)
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS sessions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    start_time TEXT NOT NULL,
                    end_time TEXT NOT NULL,
                    title TEXT,
                    recorded_at TEXT NOT NULL
                )
            """)
            self.conn.commit()

    def write_step_batch(self, start: datetime, end: datetime, count: int) -> bool:
        """Record a step batch. A batch with the same start replaces the earlier one."""
        if count <= 0:
            return False
        now = datetime.now(timezone.utc).isoformat()
        try:
            with self._lock:
                self.conn.execute(
                    "INSERT INTO step_batches (start_time, end_time, count, recorded_at) "
                    "VALUES (?, ?, ?, ?) "
                    "ON CONFLICT(start_time) DO UPDATE SET "
                    "end_time = excluded.end_time, count = excluded.count, "
                    "recorded_at = excluded.recorded_at",
                    (to_utc_iso(start), to_utc_iso(end), int(count), now)
                )
                self.conn.commit()
        except sqlite3.Error as e:
            raise SyncFailure(f"Could not write step batch: {e}") from e
        return True

    def write_session_record(self, start: datetime, end: datetime,
                             title: Optional[str] = None) -> bool:
        now = datetime.now(timezone.utc).isoformat()
        try:
            with self._lock:
                self.conn.execute(
                    "INSERT INTO sessions (start_time, end_time, title, recorded_at) VALUES (?, ?, ?, ?)",
                    (to_utc_iso(start), to_utc_iso(end), title or CONFIG["session_title"], now)
                )
                self.conn.commit()
        except sqlite3.Error as e:
            raise SyncFailure(f"Could not write session record: {e}") from e
        return True

    def aggregate_steps_between(self, start: datetime, end: datetime) -> int:
        """Total steps of batches lying entirely inside [start, end]"""
        try:
            with self._lock:
                cursor = self.conn.execute(
                    "SELECT COALESCE(SUM(count), 0) FROM step_batches "
                    "WHERE start_time >= ? AND end_time <= ?",
                    (to_utc_iso(start), to_utc_iso(end))
                )
                row = cursor.fetchone()
        except sqlite3.Error as e:
            raise SyncFailure(f"Could not read step batches: {e}") from e
        return int(row[0] or 0)

    def get_sessions(self) -> list[dict]:
        try:
            with self._lock:
                cursor = self.conn.execute(
                    "SELECT id, start_time, end_time, title FROM sessions ORDER BY id"
                )
                rows = cursor.fetchall()
        except sqlite3.Error as e:
            raise SyncFailure(f"Could not read sessions: {e}") from e
        return [
            {"id": row[0], "start_time": row[1], "end_time": row[2], "title": row[3]}
            for row in rows
        ]

    def close(self):
        self.conn.close()


class HttpStepLedger(StepLedger):
    """Step ledger behind a small JSON HTTP API.

    POST {base_url}/steps      {"start", "end", "count"}
    POST {base_url}/sessions   {"start", "end", "title"}
    GET  {base_url}/steps/aggregate?start=..&end=..  -> {"count": n}

    Batch writes carry an Idempotency-Key derived from the window start so the
    server can replace the count of a resubmitted batch instead of adding it.
    """

    def __init__(self, base_url: str, timeout: Optional[float] = None,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout if timeout is not None else CONFIG["ledger_timeout"]
        self.session = session or requests.Session()

    def _post(self, path: str, payload: dict, headers: Optional[dict] = None):
        try:
            response = self.session.post(
                f"{self.base_url}{path}", json=payload, headers=headers, timeout=self.timeout
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise SyncFailure(f"Ledger request to {path} failed: {e}") from e

    def write_step_batch(self, start: datetime, end: datetime, count: int) -> bool:
        if count <= 0:
            return False
        self._post(
            "/steps",
            {"start": to_utc_iso(start), "end": to_utc_iso(end), "count": int(count)},
            headers={"Idempotency-Key": batch_key(start)},
        )
        return True

    def write_session_record(self, start: datetime, end: datetime,
                             title: Optional[str] = None) -> bool:
        self._post("/sessions", {
            "start": to_utc_iso(start),
            "end": to_utc_iso(end),
            "title": title or CONFIG["session_title"],
        })
        return True

    def aggregate_steps_between(self, start: datetime, end: datetime) -> int:
        try:
            response = self.session.get(
                f"{self.base_url}/steps/aggregate",
                params={"start": to_utc_iso(start), "end": to_utc_iso(end)},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return int(response.json().get("count", 0))
        except (requests.RequestException, ValueError) as e:
            raise SyncFailure(f"Ledger aggregate failed: {e}") from e

    def close(self):
        self.session.close()
