"""
Users and sync configurations, the operator-managed side of the schema.
"""

import re
import sqlite3

from freebusy_sync.db import Database
from freebusy_sync.db import utc_now
from freebusy_sync.models import PROVIDER_TYPES
from freebusy_sync.models import SYNC_DIRECTIONS
from freebusy_sync.models import PersistenceError
from freebusy_sync.models import SyncConfiguration
from freebusy_sync.models import User
from freebusy_sync.models import ValidationError

MIN_FREQUENCY_MINUTES = 5
MAX_FREQUENCY_MINUTES = 1440

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _row_to_configuration(row: sqlite3.Row) -> SyncConfiguration:
    return SyncConfiguration(
        id=row["id"],
        user_id=row["user_id"],
        source_email=row["source_email"],
        target_email=row["target_email"],
        source_type=row["source_type"],
        target_type=row["target_type"],
        sync_direction=row["sync_direction"],
        is_active=bool(row["is_active"]),
        sync_frequency_minutes=row["sync_frequency_minutes"],
        last_sync_at=row["last_sync_at"],
        created_at=row["created_at"],
    )


class ConfigurationStore:
    """CRUD over users and sync_configurations. Nothing is ever deleted."""

    def __init__(self, db: Database):
        self.db = db

    # ------------------------------------------------------------------ #
    # Users                                                                #
    # ------------------------------------------------------------------ #

    def add_user(self, email: str, display_name: str) -> int:
        email = (email or "").strip()
        display_name = (display_name or "").strip()
        if not _EMAIL_RE.match(email):
            raise ValidationError(f"Invalid email address: {email!r}")
        if not display_name:
            raise ValidationError("Display name is required")
        if self.db.fetch_one("SELECT id FROM users WHERE email = ?", (email,)):
            raise ValidationError(f"User {email} already exists")
        return self.db.insert(
            "INSERT INTO users (email, display_name, created_at) VALUES (?, ?, ?)",
            (email, display_name, utc_now()),
        )

    def get_user(self, user_id: int) -> User | None:
        row = self.db.fetch_one("SELECT * FROM users WHERE id = ?", (user_id,))
        if row is None:
            return None
        return User(row["id"], row["email"], row["display_name"], row["created_at"])

    def list_users(self) -> list[User]:
        rows = self.db.fetch_all("SELECT * FROM users ORDER BY email")
        return [User(r["id"], r["email"], r["display_name"], r["created_at"]) for r in rows]

    # ------------------------------------------------------------------ #
    # Sync configurations                                                  #
    # ------------------------------------------------------------------ #

    def add_configuration(
        self,
        user_id: int,
        source_email: str,
        target_email: str,
        source_type: str,
        target_type: str,
        sync_direction: str,
        sync_frequency_minutes: int = 15,
    ) -> int:
        source_email = (source_email or "").strip()
        target_email = (target_email or "").strip()
        if not source_email or not target_email:
            raise ValidationError("Source and target calendars are required")
        if source_email == target_email:
            raise ValidationError("Source and target must be different calendars")
        for kind in (source_type, target_type):
            if kind not in PROVIDER_TYPES:
                raise ValidationError(f"Unknown calendar type: {kind!r}")
        if sync_direction not in SYNC_DIRECTIONS:
            raise ValidationError(f"Unknown sync direction: {sync_direction!r}")
        if not MIN_FREQUENCY_MINUTES <= sync_frequency_minutes <= MAX_FREQUENCY_MINUTES:
            raise ValidationError(
                f"Sync frequency must be between {MIN_FREQUENCY_MINUTES} and "
                f"{MAX_FREQUENCY_MINUTES} minutes"
            )
        if self.get_user(user_id) is None:
            raise ValidationError(f"Unknown user id: {user_id}")

        return self.db.insert(
            "INSERT INTO sync_configurations "
            "(user_id, source_email, target_email, source_type, target_type, "
            " sync_direction, sync_frequency_minutes, is_active, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, 1, ?)",
            (
                user_id,
                source_email,
                target_email,
                source_type,
                target_type,
                sync_direction,
                sync_frequency_minutes,
                utc_now(),
            ),
        )

    def get_configuration(self, config_id: int) -> SyncConfiguration | None:
        row = self.db.fetch_one("SELECT * FROM sync_configurations WHERE id = ?", (config_id,))
        return _row_to_configuration(row) if row else None

    def list_configurations(self, active_only: bool = False) -> list[SyncConfiguration]:
        sql = "SELECT * FROM sync_configurations"
        if active_only:
            sql += " WHERE is_active = 1"
        sql += " ORDER BY id"
        return [_row_to_configuration(row) for row in self.db.fetch_all(sql)]

    def list_configurations_with_users(self) -> list:
        """Rows joined with their owner, newest first (web/status views)."""
        return self.db.fetch_all(
            "SELECT sc.*, u.display_name, u.email AS user_email "
            "FROM sync_configurations sc "
            "JOIN users u ON sc.user_id = u.id "
            "ORDER BY sc.created_at DESC, sc.id DESC"
        )

    def set_active(self, config_id: int, active: bool):
        cursor = self.db.query(
            "UPDATE sync_configurations SET is_active = ? WHERE id = ?",
            (1 if active else 0, config_id),
        )
        if cursor.rowcount == 0:
            raise ValidationError(f"Unknown sync configuration id: {config_id}")

    def touch_last_sync(self, config_id: int, when: str | None = None):
        cursor = self.db.query(
            "UPDATE sync_configurations SET last_sync_at = ? WHERE id = ?",
            (when or utc_now(), config_id),
        )
        if cursor.rowcount == 0:
            raise PersistenceError(f"Sync configuration {config_id} vanished during sync")
