"""
Calendar provider adapters and the registry that picks one per identity.
"""

import logging

from freebusy_sync.config import Settings
from freebusy_sync.models import GOOGLE
from freebusy_sync.models import MICROSOFT
from freebusy_sync.models import ConfigurationError
from freebusy_sync.models import ProviderUnavailable
from freebusy_sync.providers.base import CalendarProvider

logger = logging.getLogger(__name__)

_GOOGLE_DOMAINS = ("@gmail.com", "@googlemail.com")


def classify_identity(identity: str) -> str:
    """Map a calendar identity to its provider type.

    Consumer Google addresses and bare calendar ids (no "@") are Google;
    everything else is treated as a Microsoft 365 mailbox. Matching is
    case-sensitive.
    """
    if "@" not in identity or any(domain in identity for domain in _GOOGLE_DOMAINS):
        return GOOGLE
    return MICROSOFT


class ProviderRegistry:
    """Adapters keyed by provider type, plus why any type is missing."""

    def __init__(
        self,
        providers: dict[str, CalendarProvider],
        unavailable: dict[str, str] | None = None,
    ):
        self.providers = dict(providers)
        self.unavailable = dict(unavailable or {})

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProviderRegistry":
        """Build every adapter the settings allow; record the rest as unavailable."""
        # Imported here so a registry built from fakes never loads the SDKs.
        from freebusy_sync.providers.google import GoogleCalendarProvider
        from freebusy_sync.providers.microsoft import MicrosoftGraphProvider

        providers: dict[str, CalendarProvider] = {}
        unavailable: dict[str, str] = {}

        try:
            providers[MICROSOFT] = MicrosoftGraphProvider(
                settings.microsoft_tenant_id,
                settings.microsoft_client_id,
                settings.microsoft_client_secret,
                tz=settings.tz,
                timeout=settings.http_timeout,
            )
        except ConfigurationError as e:
            logger.warning(f"Microsoft provider unavailable: {e}")
            unavailable[MICROSOFT] = str(e)

        try:
            providers[GOOGLE] = GoogleCalendarProvider(
                settings.google_credentials_path,
                tz=settings.tz,
                timeout=settings.http_timeout,
            )
        except ConfigurationError as e:
            logger.warning(f"Google provider unavailable: {e}")
            unavailable[GOOGLE] = str(e)

        return cls(providers, unavailable)

    @property
    def available(self) -> list[str]:
        return sorted(self.providers)

    def get(self, kind: str) -> CalendarProvider:
        try:
            return self.providers[kind]
        except KeyError:
            reason = self.unavailable.get(kind, "not configured")
            raise ProviderUnavailable(f"No {kind} provider available: {reason}") from None
