"""
Settings loading: built once at process start and passed down explicitly.

Precedence (lowest first): defaults, the ``[freebusy-sync]`` section of the
INI config file, a ``.env`` file, the process environment.
"""

import os
from configparser import ConfigParser
from dataclasses import dataclass
from datetime import tzinfo
from pathlib import Path
from zoneinfo import ZoneInfo
from zoneinfo import ZoneInfoNotFoundError

from dotenv import dotenv_values

from freebusy_sync.models import DEFAULT_CONFIG
from freebusy_sync.models import DEFAULT_DATABASE
from freebusy_sync.models import ConfigurationError

CONFIG_SECTION = "freebusy-sync"

_KEYS = (
    "DATABASE_PATH",
    "MICROSOFT_TENANT_ID",
    "MICROSOFT_CLIENT_ID",
    "MICROSOFT_CLIENT_SECRET",
    "GOOGLE_CREDENTIALS_PATH",
    "DEFAULT_TIMEZONE",
    "MAX_SYNC_RANGE_DAYS",
    "HTTP_TIMEOUT",
    "LOG_DIR",
    "WEB_HOST",
    "WEB_PORT",
    "WEB_SECRET_KEY",
)


@dataclass(frozen=True)
class Settings:
    """Immutable process-wide settings."""

    database_path: Path = DEFAULT_DATABASE
    microsoft_tenant_id: str | None = None
    microsoft_client_id: str | None = None
    microsoft_client_secret: str | None = None
    google_credentials_path: Path | None = None
    default_timezone: str = "UTC"
    max_sync_range_days: int = 30
    http_timeout: float = 30.0
    log_dir: Path | None = None
    web_host: str = "127.0.0.1"
    web_port: int = 8080
    web_secret_key: str = "freebusy-sync-dev"

    @property
    def tz(self) -> tzinfo:
        return ZoneInfo(self.default_timezone)

    @property
    def has_microsoft_credentials(self) -> bool:
        return bool(
            self.microsoft_tenant_id and self.microsoft_client_id and self.microsoft_client_secret
        )


def _load_config_file(config_path: Path | None) -> dict[str, str]:
    if config_path is None or not config_path.exists():
        return {}
    parser = ConfigParser()
    parser.optionxform = str.upper
    parser.read(config_path)
    if CONFIG_SECTION not in parser:
        return {}
    return dict(parser[CONFIG_SECTION])


def _positive_int(raw: str, key: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise ConfigurationError(f"{key} must be positive, got {value}")
    return value


def _positive_float(raw: str, key: str) -> float:
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ConfigurationError(f"{key} must be positive, got {value}")
    return value


def load_settings(
    config_path: Path | None = DEFAULT_CONFIG,
    env_file: Path | None = Path(".env"),
    environ: dict[str, str] | None = None,
    database_override: Path | None = None,
) -> Settings:
    """Merge every settings source into one frozen Settings object."""
    values: dict[str, str] = {}
    values.update(_load_config_file(config_path))
    if env_file is not None and env_file.exists():
        values.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
    env = os.environ if environ is None else environ
    values.update({k: env[k] for k in _KEYS if env.get(k)})

    # Empty strings mean "unset" whatever the source.
    values = {k: v.strip() for k, v in values.items() if v and v.strip()}

    timezone_name = values.get("DEFAULT_TIMEZONE", "UTC")
    try:
        ZoneInfo(timezone_name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ConfigurationError(f"DEFAULT_TIMEZONE is not a known timezone: {timezone_name!r}")

    database_path = database_override or Path(
        values.get("DATABASE_PATH", str(DEFAULT_DATABASE))
    ).expanduser()
    google_path = values.get("GOOGLE_CREDENTIALS_PATH")
    log_dir = values.get("LOG_DIR")

    return Settings(
        database_path=database_path,
        microsoft_tenant_id=values.get("MICROSOFT_TENANT_ID"),
        microsoft_client_id=values.get("MICROSOFT_CLIENT_ID"),
        microsoft_client_secret=values.get("MICROSOFT_CLIENT_SECRET"),
        google_credentials_path=Path(google_path).expanduser() if google_path else None,
        default_timezone=timezone_name,
        max_sync_range_days=_positive_int(
            values.get("MAX_SYNC_RANGE_DAYS", "30"), "MAX_SYNC_RANGE_DAYS"
        ),
        http_timeout=_positive_float(values.get("HTTP_TIMEOUT", "30"), "HTTP_TIMEOUT"),
        log_dir=Path(log_dir).expanduser() if log_dir else None,
        web_host=values.get("WEB_HOST", "127.0.0.1"),
        web_port=_positive_int(values.get("WEB_PORT", "8080"), "WEB_PORT"),
        web_secret_key=values.get("WEB_SECRET_KEY", "freebusy-sync-dev"),
    )
