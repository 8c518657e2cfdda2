"""
Unit tests for the provider layer: identity classification, the registry, the
shared helpers and both HTTP adapters (with their SDK/HTTP clients mocked).
"""

import json
from datetime import datetime
from datetime import timedelta
from datetime import timezone
from unittest.mock import MagicMock
from zoneinfo import ZoneInfo

import httplib2
import pytest
import requests
from googleapiclient.errors import HttpError

from freebusy_sync.config import Settings
from freebusy_sync.models import GOOGLE
from freebusy_sync.models import MICROSOFT
from freebusy_sync.models import AuthError
from freebusy_sync.models import ConfigurationError
from freebusy_sync.models import ProviderError
from freebusy_sync.models import ProviderUnavailable
from freebusy_sync.providers import ProviderRegistry
from freebusy_sync.providers import classify_identity
from freebusy_sync.providers.base import all_day_bounds
from freebusy_sync.providers.base import mirror_subject
from freebusy_sync.providers.google import GoogleCalendarProvider
from freebusy_sync.providers.microsoft import GRAPH_ROOT
from freebusy_sync.providers.microsoft import MicrosoftGraphProvider
from freebusy_sync.providers.microsoft import parse_graph_datetime
from tests.conftest import NOW
from tests.fake_client import FakeProvider

START = NOW
END = NOW + timedelta(days=30)


# ---------------------------------------------------------------------------
# Classification and registry
# ---------------------------------------------------------------------------


class TestClassifyIdentity:
    @pytest.mark.parametrize(
        "identity",
        [
            "someone@gmail.com",
            "old@googlemail.com",
            "primary",
            "abc123calendarid",
            "",
        ],
    )
    def test_google(self, identity):
        assert classify_identity(identity) == GOOGLE

    @pytest.mark.parametrize(
        "identity",
        [
            "a@company.com",
            "x@outlook.com",
            "someone@gmail.co.uk",
            "Someone@GMAIL.com",
            "a@GMAIL.COM",
            "x@GoogleMail.com",
        ],
    )
    def test_microsoft(self, identity):
        assert classify_identity(identity) == MICROSOFT


class TestProviderRegistry:
    def test_get_unavailable_reports_reason(self):
        registry = ProviderRegistry({MICROSOFT: FakeProvider(MICROSOFT)}, {GOOGLE: "no key file"})

        with pytest.raises(ProviderUnavailable, match="no key file"):
            registry.get(GOOGLE)
        assert registry.available == [MICROSOFT]

    def test_from_settings_without_credentials(self, tmp_path):
        registry = ProviderRegistry.from_settings(Settings(database_path=tmp_path / "x.db"))

        assert registry.available == []
        assert set(registry.unavailable) == {GOOGLE, MICROSOFT}

    def test_from_settings_microsoft_only(self, tmp_path):
        settings = Settings(
            database_path=tmp_path / "x.db",
            microsoft_tenant_id="tenant",
            microsoft_client_id="client",
            microsoft_client_secret="secret",
            google_credentials_path=tmp_path / "missing.json",
        )
        registry = ProviderRegistry.from_settings(settings)

        assert registry.available == [MICROSOFT]
        with pytest.raises(ProviderUnavailable, match="not found"):
            registry.get(GOOGLE)


class TestHelpers:
    def test_mirror_subject_prefix_not_doubled(self):
        assert mirror_subject("Standup") == "[SYNC] Standup"
        assert mirror_subject("[SYNC] Standup") == "[SYNC] Standup"
        assert mirror_subject("") == "[SYNC] Busy"

    def test_all_day_bounds_at_least_one_day(self):
        day = datetime(2026, 3, 2, tzinfo=timezone.utc)
        start, end = all_day_bounds(day, day)
        assert (end - start).days == 1


# ---------------------------------------------------------------------------
# Microsoft Graph
# ---------------------------------------------------------------------------


def _response(status: int = 200, body: dict | list | None = None) -> MagicMock:
    response = MagicMock()
    response.status_code = status
    response.json.return_value = body or {}
    response.text = json.dumps(body or {})
    return response


def _graph_event(event_id: str, subject: str = "Standup") -> dict:
    return {
        "id": event_id,
        "subject": subject,
        "start": {"dateTime": "2026-03-01T09:00:00.0000000", "timeZone": "UTC"},
        "end": {"dateTime": "2026-03-01T09:30:00.0000000", "timeZone": "UTC"},
        "isAllDay": False,
        "showAs": "busy",
    }


@pytest.fixture
def msal_app():
    app = MagicMock()
    app.acquire_token_for_client.return_value = {"access_token": "tok", "expires_in": 3600}
    return app


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def graph(msal_app, session):
    return MicrosoftGraphProvider(
        "tenant",
        "client",
        "secret",
        tz=ZoneInfo("Europe/Amsterdam"),
        session=session,
        app=msal_app,
    )


class TestMicrosoftGraph:
    def test_missing_credentials(self):
        with pytest.raises(ConfigurationError):
            MicrosoftGraphProvider("tenant", None, "secret")

    def test_parse_graph_datetime_trims_fraction(self):
        value = {"dateTime": "2026-03-01T09:00:00.1234567", "timeZone": "UTC"}
        parsed = parse_graph_datetime(value)
        assert parsed == datetime(2026, 3, 1, 9, 0, 0, 123456, tzinfo=timezone.utc)

    def test_list_events_uses_calendar_view(self, graph, session):
        session.request.return_value = _response(body={"value": [_graph_event("evt1")]})

        [event] = graph.list_events("a@company.com", START, END)

        assert event.id == "evt1"
        assert event.start == datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
        method, url = session.request.call_args.args
        assert method == "GET"
        assert url == f"{GRAPH_ROOT}/users/a@company.com/calendarView"
        kwargs = session.request.call_args.kwargs
        assert kwargs["headers"]["Authorization"] == "Bearer tok"
        assert kwargs["params"]["startDateTime"] == START.isoformat()
        assert kwargs["timeout"] == 30.0

    def test_list_events_follows_next_link(self, graph, session):
        next_link = f"{GRAPH_ROOT}/users/a@company.com/calendarView?$skip=100"
        session.request.side_effect = [
            _response(body={"value": [_graph_event("e1")], "@odata.nextLink": next_link}),
            _response(body={"value": [_graph_event("e2")]}),
        ]

        events = graph.list_events("a@company.com", START, END)

        assert [e.id for e in events] == ["e1", "e2"]
        second = session.request.call_args_list[1]
        assert second.args[1] == next_link
        assert second.kwargs["params"] is None

    def test_cancelled_events_dropped(self, graph, session):
        cancelled = dict(_graph_event("gone"), isCancelled=True)
        session.request.return_value = _response(body={"value": [cancelled, _graph_event("e1")]})

        assert [e.id for e in graph.list_events("a@company.com", START, END)] == ["e1"]

    def test_token_cached_between_calls(self, graph, session, msal_app):
        session.request.return_value = _response(body={"value": []})

        graph.list_events("a@company.com", START, END)
        graph.list_events("a@company.com", START, END)

        assert msal_app.acquire_token_for_client.call_count == 1

    def test_token_refreshed_near_expiry(self, graph, session, msal_app):
        # Expiry inside the refresh margin: every call needs a fresh token.
        msal_app.acquire_token_for_client.return_value = {"access_token": "tok", "expires_in": 60}
        session.request.return_value = _response(body={"value": []})

        graph.list_events("a@company.com", START, END)
        graph.list_events("a@company.com", START, END)

        assert msal_app.acquire_token_for_client.call_count == 2

    def test_token_failure_is_auth_error(self, graph, msal_app):
        msal_app.acquire_token_for_client.return_value = {
            "error": "invalid_client",
            "error_description": "AADSTS7000215: Invalid client secret",
        }

        with pytest.raises(AuthError, match="Invalid client secret"):
            graph.list_events("a@company.com", START, END)

    def test_401_is_auth_error(self, graph, session):
        session.request.return_value = _response(
            401, {"error": {"code": "InvalidAuthenticationToken", "message": "expired"}}
        )

        with pytest.raises(AuthError) as excinfo:
            graph.list_events("a@company.com", START, END)
        assert excinfo.value.status == 401

    def test_non_2xx_carries_status_and_message(self, graph, session):
        session.request.return_value = _response(
            404, {"error": {"code": "ErrorItemNotFound", "message": "mailbox not found"}}
        )

        with pytest.raises(ProviderError) as excinfo:
            graph.list_events("nobody@company.com", START, END)
        assert excinfo.value.status == 404
        assert excinfo.value.message == "mailbox not found"

    @pytest.mark.parametrize(
        "body, message",
        [
            ({"error": "invalid_request"}, "invalid_request"),
            (["unexpected"], '["unexpected"]'),
            ({"error": ["nested"]}, '{"error": ["nested"]}'),
        ],
    )
    def test_odd_error_bodies_still_provider_error(self, graph, session, body, message):
        session.request.return_value = _response(500, body)

        with pytest.raises(ProviderError) as excinfo:
            graph.list_events("a@company.com", START, END)
        assert excinfo.value.status == 500
        assert excinfo.value.message == message

    def test_network_failure_is_provider_error(self, graph, session):
        session.request.side_effect = requests.ConnectionError("connection reset")

        with pytest.raises(ProviderError, match="connection reset"):
            graph.list_events("a@company.com", START, END)

    def test_create_event_body(self, graph, session):
        session.request.return_value = _response(201, {"id": "new-id"})
        start = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

        event_id = graph.create_event("a@company.com", "Standup", start, start + timedelta(hours=1))

        assert event_id == "new-id"
        method, url = session.request.call_args.args
        assert (method, url) == ("POST", f"{GRAPH_ROOT}/users/a@company.com/events")
        body = session.request.call_args.kwargs["json"]
        assert body["subject"] == "[SYNC] Standup"
        assert body["showAs"] == "busy"
        assert body["isAllDay"] is False
        # 09:00 UTC is 10:00 in Amsterdam in March.
        assert body["start"] == {"dateTime": "2026-03-01T10:00:00", "timeZone": "Europe/Amsterdam"}

    def test_create_all_day_event_uses_midnights(self, graph, session):
        session.request.return_value = _response(201, {"id": "new-id"})
        day = datetime(2026, 3, 2, tzinfo=timezone.utc)

        graph.create_event("a@company.com", "Off", day, day + timedelta(days=1), all_day=True)

        body = session.request.call_args.kwargs["json"]
        assert body["isAllDay"] is True
        assert body["start"]["dateTime"] == "2026-03-02T00:00:00"
        assert body["end"]["dateTime"] == "2026-03-03T00:00:00"

    def test_delete_event(self, graph, session):
        session.request.return_value = _response(204)

        graph.delete_event("a@company.com", "evt1")

        method, url = session.request.call_args.args
        assert (method, url) == ("DELETE", f"{GRAPH_ROOT}/users/a@company.com/events/evt1")

    def test_validate_calendar(self, graph, session):
        session.request.return_value = _response(200, {"id": "cal"})
        assert graph.validate_calendar("a@company.com") is True

        session.request.return_value = _response(404, {"error": {"message": "not found"}})
        assert graph.validate_calendar("nobody@company.com") is False


# ---------------------------------------------------------------------------
# Google Calendar
# ---------------------------------------------------------------------------


def _http_error(status: int, message: str = "Forbidden") -> HttpError:
    resp = httplib2.Response({"status": status})
    content = json.dumps({"error": {"code": status, "message": message}}).encode()
    return HttpError(resp, content)


def _google_event(event_id: str, **fields) -> dict:
    event = {
        "id": event_id,
        "summary": "Dentist",
        "start": {"dateTime": "2026-03-01T09:00:00+01:00"},
        "end": {"dateTime": "2026-03-01T10:00:00+01:00"},
    }
    event.update(fields)
    return event


@pytest.fixture
def service():
    return MagicMock()


@pytest.fixture
def gcal(service):
    return GoogleCalendarProvider(None, tz=ZoneInfo("Europe/Amsterdam"), service=service)


class TestGoogleCalendar:
    def test_missing_credentials(self, tmp_path):
        with pytest.raises(ConfigurationError):
            GoogleCalendarProvider(None)
        with pytest.raises(ConfigurationError):
            GoogleCalendarProvider(tmp_path / "missing.json")

    def test_list_events_follows_page_token(self, gcal, service):
        events_api = service.events.return_value
        events_api.list.return_value.execute.side_effect = [
            {"items": [_google_event("g1")], "nextPageToken": "page-2"},
            {"items": [_google_event("g2")]},
        ]

        events = gcal.list_events("cal123", START, END)

        assert [e.id for e in events] == ["g1", "g2"]
        first, second = events_api.list.call_args_list
        assert first.kwargs["singleEvents"] is True
        assert first.kwargs["orderBy"] == "startTime"
        assert first.kwargs["pageToken"] is None
        assert second.kwargs["pageToken"] == "page-2"

    def test_all_day_and_transparent_events(self, gcal, service):
        all_day = _google_event(
            "g1",
            start={"date": "2026-03-02"},
            end={"date": "2026-03-03"},
            transparency="transparent",
        )
        service.events.return_value.list.return_value.execute.return_value = {"items": [all_day]}

        [event] = gcal.list_events("cal123", START, END)

        assert event.all_day is True
        assert event.show_as == "free"
        assert event.start == datetime(2026, 3, 2, tzinfo=ZoneInfo("Europe/Amsterdam"))

    def test_cancelled_events_dropped(self, gcal, service):
        service.events.return_value.list.return_value.execute.return_value = {
            "items": [_google_event("gone", status="cancelled"), _google_event("g1")]
        }

        assert [e.id for e in gcal.list_events("cal123", START, END)] == ["g1"]

    def test_http_error_maps_to_provider_error(self, gcal, service):
        service.events.return_value.list.return_value.execute.side_effect = _http_error(403)

        with pytest.raises(ProviderError) as excinfo:
            gcal.list_events("cal123", START, END)
        assert excinfo.value.status == 403
        assert not isinstance(excinfo.value, AuthError)

    def test_http_401_maps_to_auth_error(self, gcal, service):
        service.events.return_value.insert.return_value.execute.side_effect = _http_error(
            401, "Invalid Credentials"
        )

        with pytest.raises(AuthError):
            gcal.create_event("cal123", "Standup", START, START + timedelta(hours=1))

    def test_create_event_body(self, gcal, service):
        events_api = service.events.return_value
        events_api.insert.return_value.execute.return_value = {"id": "created-1"}
        start = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

        event_id = gcal.create_event("cal123", "Standup", start, start + timedelta(minutes=30))

        assert event_id == "created-1"
        kwargs = events_api.insert.call_args.kwargs
        assert kwargs["calendarId"] == "cal123"
        body = kwargs["body"]
        assert body["summary"] == "[SYNC] Standup"
        assert body["description"] == "Synced from external calendar"
        assert body["transparency"] == "opaque"
        assert body["start"] == {"dateTime": start.isoformat(), "timeZone": "Europe/Amsterdam"}

    def test_create_all_day_event_uses_dates(self, gcal, service):
        events_api = service.events.return_value
        events_api.insert.return_value.execute.return_value = {"id": "created-1"}
        day = datetime(2026, 3, 2, tzinfo=timezone.utc)

        gcal.create_event("cal123", "Off", day, day, all_day=True)

        body = events_api.insert.call_args.kwargs["body"]
        assert body["start"] == {"date": "2026-03-02"}
        assert body["end"] == {"date": "2026-03-03"}

    def test_delete_event(self, gcal, service):
        events_api = service.events.return_value

        gcal.delete_event("cal123", "g1")

        events_api.delete.assert_called_once_with(calendarId="cal123", eventId="g1")
        events_api.delete.return_value.execute.assert_called_once()

    def test_validate_calendar(self, gcal, service):
        calendars_api = service.calendars.return_value
        calendars_api.get.return_value.execute.return_value = {"id": "cal123"}
        assert gcal.validate_calendar("cal123") is True

        calendars_api.get.return_value.execute.side_effect = _http_error(404, "Not Found")
        assert gcal.validate_calendar("missing") is False
