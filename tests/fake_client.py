"""
In-memory fake calendar provider for testing.

Satisfies the CalendarProvider contract without any network access; events are
kept in plain dicts keyed by identity and event id.
"""

from collections.abc import Iterator
from datetime import datetime

from freebusy_sync.models import CalendarEvent
from freebusy_sync.providers.base import CalendarProvider
from freebusy_sync.providers.base import mirror_subject


class FakeProvider(CalendarProvider):
    """In-memory stub that satisfies the CalendarProvider interface."""

    def __init__(
        self,
        kind: str,
        events: dict[str, list[CalendarEvent]] | None = None,
        page_size: int = 2,
    ):
        self.kind = kind
        self.page_size = page_size
        # identity → {event_id: CalendarEvent}
        self._events: dict[str, dict[str, CalendarEvent]] = {
            identity: {e.id: e for e in evs} for identity, evs in (events or {}).items()
        }
        self.creates: list[tuple[str, str]] = []
        self.removes: list[tuple[str, str]] = []
        self.list_calls: list[str] = []
        # method name → exception raised on the next call
        self.fail_on: dict[str, Exception] = {}
        self._next_id = 0

    def _maybe_fail(self, method: str):
        if method in self.fail_on:
            raise self.fail_on[method]

    # ------------------------------------------------------------------ #
    # CalendarProvider interface                                           #
    # ------------------------------------------------------------------ #

    def iter_event_pages(
        self, identity: str, start: datetime, end: datetime
    ) -> Iterator[list[CalendarEvent]]:
        self._maybe_fail("list_events")
        self.list_calls.append(identity)
        in_window = [
            e
            for e in self._events.get(identity, {}).values()
            if e.start < end and e.end > start
        ]
        in_window.sort(key=lambda e: e.start)
        for i in range(0, len(in_window), self.page_size):
            yield in_window[i : i + self.page_size]

    def create_event(
        self, identity: str, subject: str, start: datetime, end: datetime, all_day: bool = False
    ) -> str:
        self._maybe_fail("create_event")
        self._next_id += 1
        event_id = f"{self.kind}-mirror-{self._next_id}"
        self._events.setdefault(identity, {})[event_id] = CalendarEvent(
            id=event_id,
            subject=mirror_subject(subject),
            start=start,
            end=end,
            all_day=all_day,
        )
        self.creates.append((identity, event_id))
        return event_id

    def delete_event(self, identity: str, event_id: str) -> None:
        self._maybe_fail("delete_event")
        self._events.get(identity, {}).pop(event_id, None)
        self.removes.append((identity, event_id))

    def validate_calendar(self, identity: str) -> bool:
        return identity in self._events

    # ------------------------------------------------------------------ #
    # Test helpers                                                         #
    # ------------------------------------------------------------------ #

    def add_event(self, identity: str, event: CalendarEvent):
        self._events.setdefault(identity, {})[event.id] = event

    def events_in(self, identity: str) -> list[CalendarEvent]:
        return list(self._events.get(identity, {}).values())

    def reset_counters(self):
        """Clear the create/remove lists between sync runs."""
        self.creates.clear()
        self.removes.clear()
        self.list_calls.clear()
