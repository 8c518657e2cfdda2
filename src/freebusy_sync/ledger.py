"""
Event ledger: which origin events already have a mirror, per configuration
and direction.
"""

import sqlite3

from freebusy_sync.db import Database
from freebusy_sync.db import utc_now
from freebusy_sync.models import CalendarEvent


class EventLedger:
    """Dedup table over calendar_events.

    The key is (origin_event_id, sync_config_id, sync_direction). Lookup and
    insert are separate statements; the UNIQUE index added by migration 1.1.0
    is what stops a racing second process from recording a duplicate.
    """

    def __init__(self, db: Database):
        self.db = db

    def find(self, origin_event_id: str, config_id: int, direction: str) -> sqlite3.Row | None:
        return self.db.fetch_one(
            "SELECT * FROM calendar_events "
            "WHERE origin_event_id = ? AND sync_config_id = ? AND sync_direction = ? LIMIT 1",
            (origin_event_id, config_id, direction),
        )

    def is_mirror(self, event_id: str, config_id: int) -> bool:
        """True when event_id is an event this configuration created."""
        row = self.db.fetch_one(
            "SELECT 1 FROM calendar_events "
            "WHERE mirror_event_id = ? AND sync_config_id = ? LIMIT 1",
            (event_id, config_id),
        )
        return row is not None

    def record(
        self,
        config_id: int,
        direction: str,
        origin_event: CalendarEvent,
        mirror_event_id: str,
        origin_identity: str,
        mirror_identity: str,
    ) -> int:
        """Insert a ledger row after a successful create."""
        return self.db.insert(
            "INSERT INTO calendar_events "
            "(sync_config_id, origin_event_id, mirror_event_id, subject, "
            " start_time, end_time, is_all_day, show_as, "
            " source_email, target_email, sync_direction, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                config_id,
                origin_event.id,
                mirror_event_id,
                origin_event.subject,
                origin_event.start.isoformat(),
                origin_event.end.isoformat(),
                1 if origin_event.all_day else 0,
                origin_event.show_as,
                origin_identity,
                mirror_identity,
                direction,
                utc_now(),
            ),
        )

    def entries_for(self, config_id: int) -> list[sqlite3.Row]:
        return self.db.fetch_all(
            "SELECT * FROM calendar_events WHERE sync_config_id = ? ORDER BY id",
            (config_id,),
        )

    def remove(self, entry_id: int):
        self.db.query("DELETE FROM calendar_events WHERE id = ?", (entry_id,))

    def count_by_configuration(self) -> dict[tuple[int, str], int]:
        """Tracked mirrors per (configuration, direction), for status output."""
        rows = self.db.fetch_all(
            "SELECT sync_config_id, sync_direction, COUNT(*) AS count "
            "FROM calendar_events GROUP BY sync_config_id, sync_direction"
        )
        return {(row["sync_config_id"], row["sync_direction"]): row["count"] for row in rows}
