"""
Google Calendar adapter (service-account credentials, googleapiclient).
"""

import logging
from collections.abc import Iterator
from datetime import date
from datetime import datetime
from datetime import time
from datetime import timezone
from datetime import tzinfo
from pathlib import Path

import httplib2
from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from freebusy_sync.models import GOOGLE
from freebusy_sync.models import SYNC_DESCRIPTION
from freebusy_sync.models import AuthError
from freebusy_sync.models import CalendarEvent
from freebusy_sync.models import ConfigurationError
from freebusy_sync.models import ProviderError
from freebusy_sync.providers.base import MAX_PAGES
from freebusy_sync.providers.base import CalendarProvider
from freebusy_sync.providers.base import all_day_bounds
from freebusy_sync.providers.base import as_aware
from freebusy_sync.providers.base import mirror_subject

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar"]
PAGE_SIZE = 250


def _parse_google_time(value: dict, tz: tzinfo) -> tuple[datetime, bool]:
    """Return (datetime, is_all_day) for a Google start/end object."""
    if "dateTime" in value:
        parsed = datetime.fromisoformat(value["dateTime"])
        return as_aware(parsed, tz), False
    day = date.fromisoformat(value["date"])
    return datetime.combine(day, time.min, tzinfo=tz), True


def event_from_google(item: dict, tz: tzinfo) -> CalendarEvent:
    start, all_day = _parse_google_time(item["start"], tz)
    end, _ = _parse_google_time(item["end"], tz)
    return CalendarEvent(
        id=item["id"],
        subject=item.get("summary") or "",
        start=start,
        end=end,
        all_day=all_day,
        show_as="free" if item.get("transparency") == "transparent" else "busy",
        raw=item,
    )


class GoogleCalendarProvider(CalendarProvider):
    """Calendar adapter for Google calendars shared with a service account."""

    kind = GOOGLE

    def __init__(
        self,
        credentials_path: Path | None,
        tz: tzinfo = timezone.utc,
        timeout: float = 30.0,
        service=None,
    ):
        self.tz = tz
        if service is not None:
            self.service = service
            return

        if credentials_path is None:
            raise ConfigurationError("Google credentials not configured (GOOGLE_CREDENTIALS_PATH)")
        if not credentials_path.exists():
            raise ConfigurationError(f"Google credentials file not found: {credentials_path}")

        try:
            creds = service_account.Credentials.from_service_account_file(
                str(credentials_path), scopes=SCOPES
            )
        except (ValueError, OSError) as e:
            raise ConfigurationError(
                f"{credentials_path} is not a valid service account key: {e}"
            ) from e

        http = AuthorizedHttp(creds, http=httplib2.Http(timeout=timeout))
        self.service = build("calendar", "v3", http=http, cache_discovery=False)

    def _execute(self, request, action: str):
        """Run a googleapiclient request, translating failures to ProviderError."""
        try:
            return request.execute()
        except HttpError as e:
            status = e.resp.status
            message = f"Google {action} failed: {e.reason}"
            if status == 401:
                raise AuthError(message, status=status) from e
            raise ProviderError(message, status=status) from e
        except GoogleAuthError as e:
            raise AuthError(f"Google authentication failed: {e}") from e
        except (httplib2.HttpLib2Error, OSError) as e:
            raise ProviderError(f"Google {action} failed: {e}") from e

    def iter_event_pages(
        self, identity: str, start: datetime, end: datetime
    ) -> Iterator[list[CalendarEvent]]:
        page_token = None
        for _ in range(MAX_PAGES):
            request = self.service.events().list(
                calendarId=identity,
                timeMin=as_aware(start, self.tz).isoformat(),
                timeMax=as_aware(end, self.tz).isoformat(),
                singleEvents=True,
                orderBy="startTime",
                maxResults=PAGE_SIZE,
                pageToken=page_token,
            )
            data = self._execute(request, "events.list")
            items = [i for i in data.get("items", []) if i.get("status") != "cancelled"]
            yield [event_from_google(item, self.tz) for item in items]
            page_token = data.get("nextPageToken")
            if not page_token:
                return
        logger.warning(
            "Stopped after %d pages for %s; remaining events were not fetched",
            MAX_PAGES,
            identity,
        )

    def create_event(
        self, identity: str, subject: str, start: datetime, end: datetime, all_day: bool = False
    ) -> str:
        if all_day:
            start_day, end_day = all_day_bounds(start, end)
            start_body = {"date": start_day.isoformat()}
            end_body = {"date": end_day.isoformat()}
        else:
            tz_name = getattr(self.tz, "key", "UTC")
            start_body = {"dateTime": as_aware(start, self.tz).isoformat(), "timeZone": tz_name}
            end_body = {"dateTime": as_aware(end, self.tz).isoformat(), "timeZone": tz_name}

        body = {
            "summary": mirror_subject(subject),
            "description": SYNC_DESCRIPTION,
            "start": start_body,
            "end": end_body,
            "transparency": "opaque",
        }
        created = self._execute(
            self.service.events().insert(calendarId=identity, body=body), "events.insert"
        )
        return created["id"]

    def delete_event(self, identity: str, event_id: str) -> None:
        self._execute(
            self.service.events().delete(calendarId=identity, eventId=event_id),
            "events.delete",
        )

    def validate_calendar(self, identity: str) -> bool:
        try:
            self._execute(self.service.calendars().get(calendarId=identity), "calendars.get")
        except AuthError:
            raise
        except ProviderError as e:
            logger.debug("Calendar %s not reachable: %s", identity, e)
            return False
        return True
