"""
Shared pytest fixtures and event helpers.
"""

import logging
from datetime import datetime
from datetime import timedelta
from datetime import timezone

import pytest

from freebusy_sync.config import Settings
from freebusy_sync.db import Database
from freebusy_sync.ledger import EventLedger
from freebusy_sync.migrations import migrate
from freebusy_sync.models import GOOGLE
from freebusy_sync.models import MICROSOFT
from freebusy_sync.models import SOURCE_TO_TARGET
from freebusy_sync.models import CalendarEvent
from freebusy_sync.providers import ProviderRegistry
from freebusy_sync.runlog import RunLog
from freebusy_sync.store import ConfigurationStore
from tests.fake_client import FakeProvider

WORK_CAL = "a@company.com"
GOOGLE_CAL = "cal123@group.calendar.google.com"
PERSONAL_CAL = "someone@gmail.com"

# Fixed "now" for every engine test; the window runs 30 days from here.
NOW = datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)


def make_event(
    event_id: str,
    subject: str = "Test Event",
    start: datetime | None = None,
    minutes: int = 30,
    all_day: bool = False,
) -> CalendarEvent:
    """Return a CalendarEvent starting one hour after NOW unless told otherwise."""
    start = start or NOW + timedelta(hours=1)
    return CalendarEvent(
        id=event_id,
        subject=subject,
        start=start,
        end=start + timedelta(minutes=minutes),
        all_day=all_day,
    )


def add_config(
    store: ConfigurationStore,
    user_id: int,
    source: str = WORK_CAL,
    target: str = GOOGLE_CAL,
    direction: str = SOURCE_TO_TARGET,
    source_type: str = MICROSOFT,
    target_type: str = GOOGLE,
):
    """Insert a sync configuration and return it as a SyncConfiguration."""
    config_id = store.add_configuration(
        user_id, source, target, source_type, target_type, direction
    )
    return store.get_configuration(config_id)


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "test_sync.db"


@pytest.fixture
def db(db_path):
    with Database(db_path) as database:
        migrate(database)
        yield database


@pytest.fixture
def store(db):
    return ConfigurationStore(db)


@pytest.fixture
def ledger(db):
    return EventLedger(db)


@pytest.fixture
def runlog(db):
    return RunLog(db)


@pytest.fixture
def user_id(store):
    return store.add_user("owner@company.com", "Owner")


@pytest.fixture
def settings(db_path):
    return Settings(database_path=db_path, max_sync_range_days=30)


@pytest.fixture
def microsoft():
    return FakeProvider(MICROSOFT)


@pytest.fixture
def google():
    return FakeProvider(GOOGLE)


@pytest.fixture
def registry(microsoft, google):
    return ProviderRegistry({MICROSOFT: microsoft, GOOGLE: google})


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def sync_logger():
    return logging.getLogger("test_sync")
