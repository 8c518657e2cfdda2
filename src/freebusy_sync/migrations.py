"""
Versioned schema evolution tracked in the schema_migrations table.

Each migration checks the live schema (PRAGMA table_info / index_list) before
altering it, so re-running against a partially migrated database is safe.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from freebusy_sync.db import Database
from freebusy_sync.db import utc_now
from freebusy_sync.models import PersistenceError

logger = logging.getLogger(__name__)

INITIAL_VERSION = "0.0.0"


@dataclass(frozen=True)
class Migration:
    version: str
    description: str
    apply: Callable[[Database], None]


def _version_key(version: str) -> tuple[int, ...]:
    return tuple(int(part) for part in version.split("."))


def _create_base_tables(db: Database):
    db.execute_script("""
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            email TEXT NOT NULL UNIQUE,
            display_name TEXT NOT NULL,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        );
        CREATE TABLE IF NOT EXISTS sync_configurations (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL REFERENCES users(id),
            source_email TEXT NOT NULL,
            target_email TEXT NOT NULL,
            sync_direction TEXT NOT NULL DEFAULT 'bidirectional'
                CHECK (sync_direction IN ('source_to_target', 'target_to_source', 'bidirectional')),
            is_active INTEGER NOT NULL DEFAULT 1,
            sync_frequency_minutes INTEGER NOT NULL DEFAULT 15,
            last_sync_at TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        );
        CREATE TABLE IF NOT EXISTS calendar_events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            sync_config_id INTEGER NOT NULL REFERENCES sync_configurations(id),
            origin_event_id TEXT NOT NULL,
            mirror_event_id TEXT NOT NULL,
            subject TEXT,
            start_time TEXT NOT NULL,
            end_time TEXT NOT NULL,
            is_all_day INTEGER NOT NULL DEFAULT 0,
            show_as TEXT NOT NULL DEFAULT 'busy',
            source_email TEXT NOT NULL,
            target_email TEXT NOT NULL,
            sync_direction TEXT NOT NULL,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        );
        CREATE TABLE IF NOT EXISTS sync_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            sync_config_id INTEGER NOT NULL REFERENCES sync_configurations(id),
            sync_type TEXT NOT NULL DEFAULT 'incremental',
            status TEXT NOT NULL CHECK (status IN ('success', 'error')),
            events_processed INTEGER NOT NULL DEFAULT 0,
            events_created INTEGER NOT NULL DEFAULT 0,
            events_updated INTEGER NOT NULL DEFAULT 0,
            events_deleted INTEGER NOT NULL DEFAULT 0,
            error_message TEXT,
            started_at TEXT NOT NULL,
            completed_at TEXT
        );
    """)


def _add_calendar_types(db: Database):
    """Google support: store the operator-selected provider type per endpoint."""
    columns = db.table_columns("sync_configurations")
    for column in ("source_type", "target_type"):
        if column not in columns:
            db.query(
                f"ALTER TABLE sync_configurations ADD COLUMN {column} TEXT NOT NULL "
                f"DEFAULT 'microsoft' CHECK ({column} IN ('google', 'microsoft'))"
            )
            logger.info("Added %s column", column)


def _add_calendar_type_indexes(db: Database):
    existing = db.index_names("sync_configurations")
    wanted = {
        "idx_source_type": "(source_type)",
        "idx_target_type": "(target_type)",
        "idx_calendar_types": "(source_type, target_type)",
    }
    for name, columns in wanted.items():
        if name not in existing:
            db.query(f"CREATE INDEX {name} ON sync_configurations {columns}")
            logger.info("Added index %s", name)


def _add_ledger_dedup_key(db: Database):
    """The (origin event, configuration, direction) triple identifies a mirror."""
    if "idx_calendar_events_dedup" not in db.index_names("calendar_events"):
        db.query(
            "CREATE UNIQUE INDEX idx_calendar_events_dedup "
            "ON calendar_events (origin_event_id, sync_config_id, sync_direction)"
        )
    if "idx_calendar_events_mirror" not in db.index_names("calendar_events"):
        db.query(
            "CREATE INDEX idx_calendar_events_mirror "
            "ON calendar_events (sync_config_id, mirror_event_id)"
        )


def _add_update_skipped_counter(db: Database):
    if "events_update_skipped" not in db.table_columns("sync_logs"):
        db.query(
            "ALTER TABLE sync_logs ADD COLUMN events_update_skipped INTEGER NOT NULL DEFAULT 0"
        )


MIGRATIONS: tuple[Migration, ...] = (
    Migration("0.9.0", "Create base schema", _create_base_tables),
    Migration("1.0.0", "Add Google Calendar support", _add_calendar_types),
    Migration("1.0.1", "Add calendar type indexes", _add_calendar_type_indexes),
    Migration("1.1.0", "Add ledger dedup key", _add_ledger_dedup_key),
    Migration("1.2.0", "Track skipped updates in sync logs", _add_update_skipped_counter),
)

LATEST_VERSION = MIGRATIONS[-1].version


def _create_migrations_table(db: Database):
    db.query("""
        CREATE TABLE IF NOT EXISTS schema_migrations (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            version TEXT NOT NULL UNIQUE,
            description TEXT,
            executed_at TEXT NOT NULL
        )
    """)


def current_version(db: Database) -> str:
    """Highest applied version, or 0.0.0 on a fresh database."""
    if "version" not in db.table_columns("schema_migrations"):
        return INITIAL_VERSION
    rows = db.fetch_all("SELECT version FROM schema_migrations")
    if not rows:
        return INITIAL_VERSION
    return max((row["version"] for row in rows), key=_version_key)


def applied_migrations(db: Database) -> list:
    """Applied migrations, newest first."""
    if "version" not in db.table_columns("schema_migrations"):
        return []
    rows = db.fetch_all("SELECT version, description, executed_at FROM schema_migrations")
    return sorted(rows, key=lambda row: _version_key(row["version"]), reverse=True)


def pending_migrations(db: Database) -> list[Migration]:
    version = _version_key(current_version(db))
    return [m for m in MIGRATIONS if _version_key(m.version) > version]


def migrate(db: Database) -> list[Migration]:
    """Apply every pending migration in order and return the ones applied."""
    _create_migrations_table(db)
    logger.info("Current database version: %s", current_version(db))

    applied = []
    for migration in pending_migrations(db):
        logger.info("Running migration %s: %s", migration.version, migration.description)
        try:
            migration.apply(db)
        except PersistenceError as e:
            logger.error("Migration %s failed: %s", migration.version, e)
            raise
        db.query(
            "INSERT INTO schema_migrations (version, description, executed_at) VALUES (?, ?, ?)",
            (migration.version, migration.description, utc_now()),
        )
        applied.append(migration)

    if applied:
        logger.info("Database migrated to version %s", current_version(db))
    else:
        logger.debug("Database schema already up to date (%s)", current_version(db))
    return applied


def ensure_schema(db: Database):
    """Migrate when needed; the engine and web app call this on startup."""
    if pending_migrations(db):
        migrate(db)
