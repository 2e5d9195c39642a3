"""Persisted walk state, so an interrupted walk can be resumed."""

import json
import sqlite3
import threading
from datetime import datetime
from typing import Iterable, Optional

from .config import CONFIG
from .errors import PersistenceFailure
from .models import Progress, RoutePoint, SavedWalk
from .remaining import follow_path
from .route import Route


class ProgressStore:
    """SQLite store holding at most one active walk.

    The walk record (route + speed) is overwritten by save(); the walked
    path is kept in its own append-only table so each tick costs one insert.
    """

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or CONFIG["state_db_path"]
        self._lock = threading.Lock()
        try:
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._init_schema()
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Could not open progress store {self.db_path}: {e}") from e

    def _init_schema(self):
        """Create database tables"""
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS active_walk (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                route TEXT NOT NULL,
                speed_kmh REAL NOT NULL,
                started_at TEXT NOT NULL
            )
        """)
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS walked_path (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                lat REAL NOT NULL,
                lon REAL NOT NULL
            )
        """)
        self.conn.commit()

    def save(self, route: Iterable[RoutePoint], path_history: Iterable[RoutePoint],
             speed_kmh: float):
        """Replace the active walk record"""
        route_json = json.dumps([p.to_pair() for p in route])
        path_rows = [(p.lat, p.lon) for p in path_history]
        now = datetime.now().isoformat()
        try:
            with self._lock:
                with self.conn:
                    self.conn.execute(
                        "INSERT OR REPLACE INTO active_walk (id, route, speed_kmh, started_at) "
                        "VALUES (1, ?, ?, ?)",
                        (route_json, float(speed_kmh), now)
                    )
                    self.conn.execute("DELETE FROM walked_path")
                    self.conn.executemany(
                        "INSERT INTO walked_path (lat, lon) VALUES (?, ?)", path_rows
                    )
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Could not save walk state: {e}") from e

    def append_to_path(self, point: RoutePoint):
        try:
            with self._lock:
                with self.conn:
                    self.conn.execute(
                        "INSERT INTO walked_path (lat, lon) VALUES (?, ?)",
                        (point.lat, point.lon)
                    )
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Could not append to walked path: {e}") from e

    def clear(self):
        try:
            with self._lock:
                with self.conn:
                    self.conn.execute("DELETE FROM active_walk")
                    self.conn.execute("DELETE FROM walked_path")
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Could not clear walk state: {e}") from e

    def is_walking(self) -> bool:
        try:
            with self._lock:
                row = self.conn.execute("SELECT COUNT(*) FROM active_walk").fetchone()
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Could not read walk state: {e}") from e
        return bool(row[0])

    def restore(self) -> Optional[SavedWalk]:
        """Load the active walk, or None if there is none"""
        try:
            with self._lock:
                row = self.conn.execute(
                    "SELECT route, speed_kmh FROM active_walk WHERE id = 1"
                ).fetchone()
                if row is None:
                    return None
                path_rows = self.conn.execute(
                    "SELECT lat, lon FROM walked_path ORDER BY seq"
                ).fetchall()
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Could not read walk state: {e}") from e

        try:
            route = [RoutePoint.from_pair(p) for p in json.loads(row[0])]
        except (json.JSONDecodeError, TypeError, ValueError) as e:
            raise PersistenceFailure(f"Saved route is corrupt: {e}") from e

        return SavedWalk(
            route=route,
            path_history=[RoutePoint(lat, lon) for lat, lon in path_rows],
            speed_kmh=row[1] if row[1] is not None else CONFIG["default_speed_kmh"],
        )

    def close(self):
        self.conn.close()


def restore_progress(saved: SavedWalk) -> tuple[Route, Progress]:
    """Rebuild the route and the cursor for a saved walk.

    Cumulative distances are recomputed from the saved points. The cursor
    is placed at the last walked point, found by following the walked path
    along the route, or at the start if nothing was walked.
    """
    route = Route(saved.route)
    return route, route.locate(follow_path(route, saved.path_history))
