"""
One directional reconciliation pass: origin calendar -> mirror calendar.
"""

import logging
from datetime import datetime

from freebusy_sync.ledger import EventLedger
from freebusy_sync.models import CalendarEvent
from freebusy_sync.models import SyncConfiguration
from freebusy_sync.models import SyncStats
from freebusy_sync.providers.base import CalendarProvider


def _process_create(
    config: SyncConfiguration,
    direction: str,
    stats: SyncStats,
    logger: logging.Logger,
    event: CalendarEvent,
    origin_identity: str,
    mirror_identity: str,
    mirror_provider: CalendarProvider,
    ledger: EventLedger,
    dry_run: bool,
):
    """Create the busy placeholder and record it in the ledger."""
    if dry_run:
        logger.info(f"[DRY RUN] Would CREATE mirror of {event.id} on {mirror_identity}")
        stats.created += 1
        return

    mirror_id = mirror_provider.create_event(
        mirror_identity, event.subject, event.start, event.end, all_day=event.all_day
    )
    ledger.record(config.id, direction, event, mirror_id, origin_identity, mirror_identity)
    stats.created += 1
    logger.debug(f"Created {mirror_id} on {mirror_identity} for {event.id}")


def run_reconcile_pass(
    config: SyncConfiguration,
    direction: str,
    window: tuple[datetime, datetime],
    logger: logging.Logger,
    origin_provider: CalendarProvider,
    mirror_provider: CalendarProvider,
    ledger: EventLedger,
    dry_run: bool = False,
) -> SyncStats:
    """Mirror every untracked origin event in the window.

    Provider and persistence errors propagate; the caller decides how the run
    ends.
    """
    origin_identity, mirror_identity = config.endpoints(direction)
    start, end = window
    stats = SyncStats()

    logger.info(f"Config {config.id} {direction}: {origin_identity} -> {mirror_identity}")

    for page in origin_provider.iter_event_pages(origin_identity, start, end):
        for event in page:
            # Our own placeholders show up when the reverse pass reads this side.
            if ledger.is_mirror(event.id, config.id):
                stats.mirrors_skipped += 1
                continue

            stats.processed += 1
            existing = ledger.find(event.id, config.id, direction)
            if existing is not None:
                # Update propagation is not implemented.
                logger.info(
                    f"Would update {existing['mirror_event_id']} for {event.id}; skipped"
                )
                stats.updated += 1
                stats.update_skipped += 1
                continue

            _process_create(
                config,
                direction,
                stats,
                logger,
                event,
                origin_identity,
                mirror_identity,
                mirror_provider,
                ledger,
                dry_run,
            )

    logger.info(
        f"Config {config.id} {direction}: processed={stats.processed} "
        f"created={stats.created} updated={stats.updated} "
        f"mirrors_skipped={stats.mirrors_skipped}"
    )

    return stats
