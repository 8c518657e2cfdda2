"""
Provider-neutral calendar adapter contract.
"""

from abc import ABC
from abc import abstractmethod
from collections.abc import Iterator
from datetime import date
from datetime import datetime
from datetime import timedelta
from datetime import tzinfo

from freebusy_sync.models import SYNC_SUBJECT_PREFIX
from freebusy_sync.models import CalendarEvent

# Safety guard against a provider that keeps handing out next-page cursors.
MAX_PAGES = 50


def mirror_subject(subject: str) -> str:
    """Subject written on a mirror; never double-prefixed."""
    subject = subject or "Busy"
    if subject.startswith(SYNC_SUBJECT_PREFIX):
        return subject
    return SYNC_SUBJECT_PREFIX + subject


def all_day_bounds(start: datetime, end: datetime) -> tuple[date, date]:
    """Date range for an all-day event; end is exclusive and at least one day later."""
    start_day = start.date()
    end_day = end.date()
    if end_day <= start_day:
        end_day = start_day + timedelta(days=1)
    return start_day, end_day


def as_aware(value: datetime, tz: tzinfo) -> datetime:
    """Attach tz to naive datetimes; leave aware ones alone."""
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value


class CalendarProvider(ABC):
    """Capability interface the sync engine depends on.

    Subclasses own authentication and translate native events into
    CalendarEvent. Every method raises ProviderError (AuthError for credential
    problems) instead of leaking SDK or HTTP exceptions.
    """

    kind: str = ""

    @abstractmethod
    def iter_event_pages(
        self, identity: str, start: datetime, end: datetime
    ) -> Iterator[list[CalendarEvent]]:
        """Yield events in [start, end) one provider page at a time."""

    def list_events(self, identity: str, start: datetime, end: datetime) -> list[CalendarEvent]:
        events: list[CalendarEvent] = []
        for page in self.iter_event_pages(identity, start, end):
            events.extend(page)
        return events

    @abstractmethod
    def create_event(
        self, identity: str, subject: str, start: datetime, end: datetime, all_day: bool = False
    ) -> str:
        """Create a busy placeholder and return the provider's event id."""

    @abstractmethod
    def delete_event(self, identity: str, event_id: str) -> None:
        """Delete one event."""

    @abstractmethod
    def validate_calendar(self, identity: str) -> bool:
        """Return True when the calendar exists and the credentials can reach it."""
