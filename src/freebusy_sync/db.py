"""
SQLite connection wrapper shared by the stores, ledger and run log.
"""

import sqlite3
from datetime import datetime
from datetime import timezone
from pathlib import Path

from freebusy_sync.models import PersistenceError


def utc_now() -> str:
    """Timestamp format used for every *_at column."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class Database:
    """One connection per process, autocommit, parameterized queries only."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.conn: sqlite3.Connection | None = None

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def connect(self):
        """Open the database file, creating its parent directory if needed."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            # isolation_level=None: every statement commits on its own.
            self.conn = sqlite3.connect(str(self.db_path), isolation_level=None)
            self.conn.row_factory = sqlite3.Row  # Enable column access by name
            self.conn.execute("PRAGMA foreign_keys = ON")
        except (OSError, sqlite3.Error) as e:
            self.conn = None
            raise PersistenceError(f"Cannot open database {self.db_path}: {e}") from e

    def _require_conn(self) -> sqlite3.Connection:
        if self.conn is None:
            raise PersistenceError("Database not connected")
        return self.conn

    def query(self, sql: str, params: tuple | list = ()) -> sqlite3.Cursor:
        """Execute one statement and return its cursor."""
        conn = self._require_conn()
        try:
            return conn.execute(sql, params)
        except sqlite3.Error as e:
            raise PersistenceError(f"Query failed: {e}") from e

    def execute_script(self, script: str):
        conn = self._require_conn()
        try:
            conn.executescript(script)
        except sqlite3.Error as e:
            raise PersistenceError(f"Script failed: {e}") from e

    def fetch_one(self, sql: str, params: tuple | list = ()) -> sqlite3.Row | None:
        return self.query(sql, params).fetchone()

    def fetch_all(self, sql: str, params: tuple | list = ()) -> list[sqlite3.Row]:
        return self.query(sql, params).fetchall()

    def last_insert_id(self) -> int:
        row = self.fetch_one("SELECT last_insert_rowid()")
        return int(row[0])

    def insert(self, sql: str, params: tuple | list = ()) -> int:
        """Run an INSERT and return the new row id."""
        self.query(sql, params)
        return self.last_insert_id()

    def table_columns(self, table: str) -> set[str]:
        return {row["name"] for row in self.fetch_all(f"PRAGMA table_info({table})")}

    def index_names(self, table: str) -> set[str]:
        return {row["name"] for row in self.fetch_all(f"PRAGMA index_list({table})")}

    def ping(self):
        """Cheap liveness check used by preflight."""
        self.fetch_one("SELECT 1")

    def close(self):
        """Close the database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
