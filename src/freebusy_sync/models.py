"""
Pure data models and the error taxonomy. No sqlite or provider SDK imports.
"""

from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from pathlib import Path

DEFAULT_DATABASE = Path.home() / ".local/share/freebusy-sync.db"
DEFAULT_CONFIG = Path.home() / ".config/freebusy-sync.conf"

GOOGLE = "google"
MICROSOFT = "microsoft"
PROVIDER_TYPES = (GOOGLE, MICROSOFT)

SOURCE_TO_TARGET = "source_to_target"
TARGET_TO_SOURCE = "target_to_source"
BIDIRECTIONAL = "bidirectional"
SYNC_DIRECTIONS = (SOURCE_TO_TARGET, TARGET_TO_SOURCE, BIDIRECTIONAL)

STATUS_SUCCESS = "success"
STATUS_ERROR = "error"
SYNC_TYPE_INCREMENTAL = "incremental"

# Mirrors carry this prefix so people looking at the target calendar can tell
# them apart from their own events.
SYNC_SUBJECT_PREFIX = "[SYNC] "
SYNC_DESCRIPTION = "Synced from external calendar"


class CalendarSyncError(Exception):
    """Base exception for calendar sync errors."""

    pass


class ConfigurationError(CalendarSyncError):
    """Missing or invalid settings/credentials."""

    pass


class ProviderError(CalendarSyncError):
    """A calendar provider rejected a request or could not be reached."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status
        self.message = message

    def __str__(self) -> str:
        if self.status is None:
            return self.message
        return f"{self.message} (HTTP {self.status})"


class AuthError(ProviderError):
    """Token acquisition/refresh failed, or the provider answered 401."""

    pass


class ProviderUnavailable(CalendarSyncError):
    """No adapter is configured for the provider type an identity needs."""

    pass


class PersistenceError(CalendarSyncError):
    """The relational store is unavailable or rejected a statement."""

    pass


class ValidationError(CalendarSyncError):
    """Operator input (web form / CLI) failed validation."""

    pass


@dataclass
class CalendarEvent:
    """Provider-neutral view of one event in a calendar window."""

    id: str
    subject: str
    start: datetime
    end: datetime
    all_day: bool = False
    show_as: str = "busy"
    raw: dict | None = field(default=None, repr=False)


@dataclass
class User:
    id: int
    email: str
    display_name: str
    created_at: str | None = None


@dataclass
class SyncConfiguration:
    """A persisted pairing of two calendars."""

    id: int
    user_id: int
    source_email: str
    target_email: str
    source_type: str = MICROSOFT
    target_type: str = MICROSOFT
    sync_direction: str = BIDIRECTIONAL
    is_active: bool = True
    sync_frequency_minutes: int = 15
    last_sync_at: str | None = None
    created_at: str | None = None

    def endpoints(self, direction: str) -> tuple[str, str]:
        """Return (origin identity, mirror identity) for a single-direction pass."""
        if direction == SOURCE_TO_TARGET:
            return self.source_email, self.target_email
        if direction == TARGET_TO_SOURCE:
            return self.target_email, self.source_email
        raise ValueError(f"Not a single-pass direction: {direction!r}")


@dataclass
class SyncStats:
    """Statistics for one sync run (one or two reconciliation passes)."""

    processed: int = 0
    created: int = 0
    updated: int = 0
    # Every "updated" event is currently a skipped update; kept separate so the
    # gap shows up in the run log instead of hiding behind "updated".
    update_skipped: int = 0
    deleted: int = 0
    mirrors_skipped: int = 0

    def __add__(self, other: "SyncStats") -> "SyncStats":
        return SyncStats(
            processed=self.processed + other.processed,
            created=self.created + other.created,
            updated=self.updated + other.updated,
            update_skipped=self.update_skipped + other.update_skipped,
            deleted=self.deleted + other.deleted,
            mirrors_skipped=self.mirrors_skipped + other.mirrors_skipped,
        )


@dataclass
class SyncResult:
    """Outcome of one configuration inside a sync_all batch."""

    config_id: int
    status: str
    stats: SyncStats
    error: str | None = None
