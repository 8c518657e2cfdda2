"""
Microsoft Graph adapter (client-credentials OAuth2 via MSAL, REST via requests).
"""

import logging
import time
import urllib.parse
from collections.abc import Iterator
from datetime import datetime
from datetime import timezone
from datetime import tzinfo
from zoneinfo import ZoneInfo

import msal
import requests

from freebusy_sync.models import MICROSOFT
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

GRAPH_ROOT = "https://graph.microsoft.com/v1.0"
GRAPH_SCOPES = ["https://graph.microsoft.com/.default"]
AUTHORITY_TEMPLATE = "https://login.microsoftonline.com/{tenant_id}"

# Refresh this long before the token's advertised expiry.
TOKEN_REFRESH_MARGIN = 300

PAGE_SIZE = 100
_SELECT_FIELDS = "id,subject,start,end,isAllDay,showAs,isCancelled"
_GRAPH_TS_FORMAT = "%Y-%m-%dT%H:%M:%S"


def parse_graph_datetime(value: dict) -> datetime:
    """Parse a Graph dateTimeTimeZone object.

    Graph returns seven fractional digits ("2026-03-01T09:00:00.0000000"),
    which fromisoformat does not accept, so trim to microseconds first.
    """
    raw = value["dateTime"]
    if "." in raw:
        head, frac = raw.split(".", 1)
        raw = f"{head}.{frac[:6]}"
    parsed = datetime.fromisoformat(raw)
    tz_name = value.get("timeZone") or "UTC"
    if parsed.tzinfo is None:
        if tz_name.upper() == "UTC":
            parsed = parsed.replace(tzinfo=timezone.utc)
        else:
            parsed = parsed.replace(tzinfo=ZoneInfo(tz_name))
    return parsed


def event_from_graph(item: dict) -> CalendarEvent:
    return CalendarEvent(
        id=item["id"],
        subject=item.get("subject") or "",
        start=parse_graph_datetime(item["start"]),
        end=parse_graph_datetime(item["end"]),
        all_day=bool(item.get("isAllDay", False)),
        show_as=item.get("showAs") or "busy",
        raw=item,
    )


class MicrosoftGraphProvider(CalendarProvider):
    """Calendar adapter for Microsoft 365 mailboxes addressed by UPN/email."""

    kind = MICROSOFT

    def __init__(
        self,
        tenant_id: str | None,
        client_id: str | None,
        client_secret: str | None,
        tz: tzinfo = timezone.utc,
        timeout: float = 30.0,
        session: requests.Session | None = None,
        app=None,
    ):
        if not tenant_id or not client_id or not client_secret:
            raise ConfigurationError(
                "Microsoft Graph credentials not configured "
                "(MICROSOFT_TENANT_ID, MICROSOFT_CLIENT_ID, MICROSOFT_CLIENT_SECRET)"
            )
        self.tenant_id = tenant_id
        self.client_id = client_id
        self._client_secret = client_secret
        self.tz = tz
        self.timeout = timeout
        self.session = session or requests.Session()
        # Built lazily: MSAL performs authority discovery over the network.
        self._app = app
        self._token: str | None = None
        self._token_expires_at = 0.0

    # ------------------------------------------------------------------ #
    # Authentication                                                       #
    # ------------------------------------------------------------------ #

    def _msal_app(self):
        if self._app is None:
            try:
                self._app = msal.ConfidentialClientApplication(
                    client_id=self.client_id,
                    client_credential=self._client_secret,
                    authority=AUTHORITY_TEMPLATE.format(tenant_id=self.tenant_id),
                )
            except (ValueError, requests.RequestException) as e:
                raise AuthError(f"Cannot initialise Microsoft identity client: {e}") from e
        return self._app

    def _access_token(self) -> str:
        """Return the cached bearer token, acquiring a new one near expiry."""
        if self._token and time.time() < self._token_expires_at - TOKEN_REFRESH_MARGIN:
            return self._token

        logger.debug("Acquiring Microsoft Graph token for tenant %s", self.tenant_id)
        try:
            result = self._msal_app().acquire_token_for_client(scopes=GRAPH_SCOPES)
        except (ValueError, requests.RequestException) as e:
            raise AuthError(f"Token request failed: {e}") from e

        if not result or "access_token" not in result:
            result = result or {}
            detail = result.get("error_description") or result.get("error") or "no token returned"
            raise AuthError(f"Could not obtain Microsoft Graph access token: {detail}")

        self._token = result["access_token"]
        self._token_expires_at = time.time() + int(result.get("expires_in", 3600))
        return self._token

    # ------------------------------------------------------------------ #
    # HTTP                                                                 #
    # ------------------------------------------------------------------ #

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        headers = {
            "Authorization": f"Bearer {self._access_token()}",
            "Prefer": 'outlook.timezone="UTC"',
        }
        headers.update(kwargs.pop("headers", {}))
        try:
            response = self.session.request(
                method, url, headers=headers, timeout=self.timeout, **kwargs
            )
        except requests.RequestException as e:
            raise ProviderError(f"Microsoft Graph {method} {url} failed: {e}") from e

        if response.status_code == 401:
            self._token = None
            raise AuthError(_error_message(response), status=401)
        if not 200 <= response.status_code < 300:
            raise ProviderError(_error_message(response), status=response.status_code)
        return response

    @staticmethod
    def _user_url(identity: str) -> str:
        return f"{GRAPH_ROOT}/users/{urllib.parse.quote(identity, safe='@')}"

    # ------------------------------------------------------------------ #
    # CalendarProvider                                                     #
    # ------------------------------------------------------------------ #

    def iter_event_pages(
        self, identity: str, start: datetime, end: datetime
    ) -> Iterator[list[CalendarEvent]]:
        url = f"{self._user_url(identity)}/calendarView"
        params = {
            "startDateTime": as_aware(start, self.tz).isoformat(),
            "endDateTime": as_aware(end, self.tz).isoformat(),
            "$select": _SELECT_FIELDS,
            "$orderby": "start/dateTime",
            "$top": PAGE_SIZE,
        }
        pages = 0
        while url and pages < MAX_PAGES:
            # nextLink already carries the query string.
            response = self._request("GET", url, params=params if pages == 0 else None)
            data = response.json()
            pages += 1
            items = [item for item in data.get("value", []) if not item.get("isCancelled")]
            yield [event_from_graph(item) for item in items]
            url = data.get("@odata.nextLink")
            if url:
                logger.debug("Fetching next page of events for %s", identity)
        if url:
            logger.warning(
                "Stopped after %d pages for %s; remaining events were not fetched",
                MAX_PAGES,
                identity,
            )

    def create_event(
        self, identity: str, subject: str, start: datetime, end: datetime, all_day: bool = False
    ) -> str:
        tz_name = getattr(self.tz, "key", "UTC")
        if all_day:
            start_day, end_day = all_day_bounds(start, end)
            start_str = f"{start_day.isoformat()}T00:00:00"
            end_str = f"{end_day.isoformat()}T00:00:00"
        else:
            start_str = as_aware(start, self.tz).astimezone(self.tz).strftime(_GRAPH_TS_FORMAT)
            end_str = as_aware(end, self.tz).astimezone(self.tz).strftime(_GRAPH_TS_FORMAT)

        body = {
            "subject": mirror_subject(subject),
            "body": {"contentType": "text", "content": SYNC_DESCRIPTION},
            "start": {"dateTime": start_str, "timeZone": tz_name},
            "end": {"dateTime": end_str, "timeZone": tz_name},
            "isAllDay": all_day,
            "showAs": "busy",
            "isReminderOn": False,
        }
        response = self._request("POST", f"{self._user_url(identity)}/events", json=body)
        event_id = response.json().get("id")
        if not event_id:
            raise ProviderError("Microsoft Graph created an event but returned no id")
        return event_id

    def delete_event(self, identity: str, event_id: str) -> None:
        url = f"{self._user_url(identity)}/events/{urllib.parse.quote(event_id, safe='')}"
        self._request("DELETE", url)

    def validate_calendar(self, identity: str) -> bool:
        try:
            self._request("GET", f"{self._user_url(identity)}/calendar")
        except AuthError:
            raise
        except ProviderError as e:
            logger.debug("Calendar %s not reachable: %s", identity, e)
            return False
        return True


def _error_message(response: requests.Response) -> str:
    """Pull Graph's error.message out of a failed response, falling back to text."""
    message = None
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            message = error.get("message") or error.get("code")
        elif isinstance(error, str):
            message = error
    return message or (response.text or "")[:200] or f"HTTP {response.status_code}"
