"""
Operator cleanup: delete the mirrors a configuration created.

Not part of a sync run. The engine itself never deletes anything.
"""

import logging

from freebusy_sync.ledger import EventLedger
from freebusy_sync.models import SOURCE_TO_TARGET
from freebusy_sync.models import CalendarSyncError
from freebusy_sync.models import ProviderError
from freebusy_sync.models import SyncConfiguration
from freebusy_sync.providers.base import CalendarProvider


def perform_clear(
    config: SyncConfiguration,
    logger: logging.Logger,
    source_provider: CalendarProvider,
    target_provider: CalendarProvider,
    ledger: EventLedger,
    dry_run: bool = False,
) -> tuple[int, int]:
    """Delete every tracked mirror and its ledger row; return (deleted, errors).

    A mirror already gone from the calendar (404) still has its ledger row
    dropped. Other failures leave the row in place so a later clear can retry.
    """
    entries = ledger.entries_for(config.id)
    logger.warning(f"CLEAR: removing {len(entries)} mirror(s) for configuration {config.id}")

    deleted = 0
    errors = 0
    for entry in entries:
        # The ledger's target_email column holds the mirror's calendar.
        mirror_identity = entry["target_email"]
        mirror_id = entry["mirror_event_id"]
        if entry["sync_direction"] == SOURCE_TO_TARGET:
            provider = target_provider
        else:
            provider = source_provider

        if dry_run:
            logger.info(f"[DRY RUN] Would DELETE {mirror_id} from {mirror_identity}")
            deleted += 1
            continue

        try:
            provider.delete_event(mirror_identity, mirror_id)
        except ProviderError as e:
            if e.status != 404:
                logger.error(f"Failed to delete {mirror_id} from {mirror_identity}: {e}")
                errors += 1
                continue
            logger.debug(f"{mirror_id} already gone from {mirror_identity}")
        except CalendarSyncError as e:
            logger.error(f"Failed to delete {mirror_id} from {mirror_identity}: {e}")
            errors += 1
            continue

        ledger.remove(entry["id"])
        deleted += 1

    logger.info(f"CLEAR: deleted {deleted}, errors {errors}")
    return deleted, errors
