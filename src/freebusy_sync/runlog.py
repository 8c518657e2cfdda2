"""
Run log: one sync_logs row per engine invocation per configuration.
"""

import sqlite3

from freebusy_sync.db import Database
from freebusy_sync.db import utc_now
from freebusy_sync.models import STATUS_SUCCESS
from freebusy_sync.models import SYNC_TYPE_INCREMENTAL
from freebusy_sync.models import SyncStats


class RunLog:
    def __init__(self, db: Database):
        self.db = db

    def open(self, config_id: int, sync_type: str = SYNC_TYPE_INCREMENTAL) -> int:
        """Insert the provisional row (status success, zero counts)."""
        return self.db.insert(
            "INSERT INTO sync_logs "
            "(sync_config_id, sync_type, status, events_processed, events_created, "
            " events_updated, events_update_skipped, events_deleted, started_at) "
            "VALUES (?, ?, ?, 0, 0, 0, 0, 0, ?)",
            (config_id, sync_type, STATUS_SUCCESS, utc_now()),
        )

    def close(
        self,
        run_id: int,
        status: str,
        stats: SyncStats,
        error_message: str | None = None,
    ):
        self.db.query(
            "UPDATE sync_logs SET status = ?, events_processed = ?, events_created = ?, "
            "events_updated = ?, events_update_skipped = ?, events_deleted = ?, "
            "error_message = ?, completed_at = ? WHERE id = ?",
            (
                status,
                stats.processed,
                stats.created,
                stats.updated,
                stats.update_skipped,
                stats.deleted,
                error_message,
                utc_now(),
                run_id,
            ),
        )

    def get(self, run_id: int) -> sqlite3.Row | None:
        return self.db.fetch_one("SELECT * FROM sync_logs WHERE id = ?", (run_id,))

    def for_configuration(self, config_id: int) -> list[sqlite3.Row]:
        return self.db.fetch_all(
            "SELECT * FROM sync_logs WHERE sync_config_id = ? ORDER BY id",
            (config_id,),
        )

    def recent(self, limit: int = 20) -> list[sqlite3.Row]:
        """Latest runs joined with their configuration endpoints."""
        return self.db.fetch_all(
            "SELECT sl.*, sc.source_email, sc.target_email "
            "FROM sync_logs sl "
            "JOIN sync_configurations sc ON sl.sync_config_id = sc.id "
            "ORDER BY sl.started_at DESC, sl.id DESC LIMIT ?",
            (limit,),
        )
