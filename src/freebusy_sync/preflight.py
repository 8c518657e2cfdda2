"""
Preflight checks run before sync to catch common misconfigurations early.
"""

import logging

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from freebusy_sync.config import Settings
from freebusy_sync.db import Database
from freebusy_sync.models import PROVIDER_TYPES
from freebusy_sync.models import PersistenceError
from freebusy_sync.providers import ProviderRegistry

logger = logging.getLogger(__name__)


def run_preflight_checks(settings: Settings, providers: ProviderRegistry, console: Console) -> bool:
    """Return True if sync may proceed; print issues and return False otherwise."""
    issues: list[tuple[str, str, str]] = []  # (label, detail, hint)

    # 1. Database reachable and writable
    db_path = settings.database_path
    try:
        with Database(db_path) as db:
            db.ping()
            # BEGIN IMMEDIATE needs a write lock and a journal file next to the DB.
            db.query("BEGIN IMMEDIATE")
            db.query("ROLLBACK")
    except PersistenceError as e:
        logger.error("Database not usable (%s): %s", db_path, e)
        issues.append(
            (
                "Database",
                f"{db_path}: {e}",
                f"Check DATABASE_PATH and permissions on {db_path.parent}",
            )
        )

    # 2. At least one provider configured
    if not providers.available:
        logger.error("No calendar provider configured")
        for kind in PROVIDER_TYPES:
            reason = providers.unavailable.get(kind, "not configured")
            issues.append((f"{kind.capitalize()} provider", reason, _PROVIDER_HINTS[kind]))

    if issues:
        _print_issues(issues, console)
        return False

    for kind, reason in sorted(providers.unavailable.items()):
        console.print(f"[yellow]Warning:[/] {kind} provider unavailable ({reason})")
    return True


_PROVIDER_HINTS = {
    "google": "Set GOOGLE_CREDENTIALS_PATH to a service account JSON key",
    "microsoft": "Set MICROSOFT_TENANT_ID, MICROSOFT_CLIENT_ID and MICROSOFT_CLIENT_SECRET",
}


def _print_issues(issues: list[tuple[str, str, str]], console: Console) -> None:
    body = Text()
    for i, (label, detail, hint) in enumerate(issues):
        if i:
            body.append("\n")
        body.append(f"  ✗  {label}: ", style="bold red")
        body.append(detail, style="bold red")
        body.append(f"\n       → {hint}", style="yellow")

    console.print(Panel(body, title="[bold red]Preflight checks failed[/bold red]"))
