"""
SyncEngine, a thin orchestrator that delegates to the reconcile pass.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from datetime import timezone

from freebusy_sync.config import Settings
from freebusy_sync.db import Database
from freebusy_sync.ledger import EventLedger
from freebusy_sync.models import PROVIDER_TYPES
from freebusy_sync.models import SOURCE_TO_TARGET
from freebusy_sync.models import STATUS_ERROR
from freebusy_sync.models import STATUS_SUCCESS
from freebusy_sync.models import PersistenceError
from freebusy_sync.models import SyncConfiguration
from freebusy_sync.models import SyncResult
from freebusy_sync.models import SyncStats
from freebusy_sync.providers import ProviderRegistry
from freebusy_sync.providers import classify_identity
from freebusy_sync.runlog import RunLog
from freebusy_sync.store import ConfigurationStore
from freebusy_sync.sync.clear import perform_clear
from freebusy_sync.sync.reconcile import run_reconcile_pass
from freebusy_sync.sync.utils import compute_window
from freebusy_sync.sync.utils import passes_for


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SyncEngine:
    """Main synchronization engine."""

    def __init__(
        self,
        db: Database,
        providers: ProviderRegistry,
        settings: Settings,
        clock: Callable[[], datetime] | None = None,
        dry_run: bool = False,
    ):
        self.db = db
        self.providers = providers
        self.settings = settings
        self.clock = clock or _utc_now
        self.dry_run = dry_run
        self.logger = logging.getLogger(__name__)
        self.store = ConfigurationStore(db)
        self.ledger = EventLedger(db)
        self.runlog = RunLog(db)

    def sync_configuration(self, config: SyncConfiguration) -> SyncStats:
        """Run every pass for one configuration inside a single run-log row.

        Any failure closes the row as an error with zero counts and is then
        re-raised.
        """
        self.logger.info(
            f"Syncing configuration {config.id}: {config.source_email} "
            f"<-> {config.target_email} ({config.sync_direction})"
        )
        run_id = None if self.dry_run else self.runlog.open(config.id)

        try:
            source_kind = self._provider_type(config.source_email, config.source_type)
            target_kind = self._provider_type(config.target_email, config.target_type)

            # Resolve both sides before touching any event.
            source_provider = self.providers.get(source_kind)
            target_provider = self.providers.get(target_kind)

            window = compute_window(self.clock(), self.settings.max_sync_range_days)
            stats = SyncStats()
            for direction in passes_for(config.sync_direction):
                if direction == SOURCE_TO_TARGET:
                    origin, mirror = source_provider, target_provider
                else:
                    origin, mirror = target_provider, source_provider
                stats = stats + run_reconcile_pass(
                    config,
                    direction,
                    window,
                    self.logger,
                    origin,
                    mirror,
                    self.ledger,
                    dry_run=self.dry_run,
                )

            if not self.dry_run:
                self.store.touch_last_sync(config.id)
        except Exception as e:
            self.logger.error(f"Configuration {config.id} failed: {e}")
            if run_id is not None:
                self._close_failed_run(run_id, e)
            raise

        if run_id is not None:
            self.runlog.close(run_id, STATUS_SUCCESS, stats)
        self.logger.info(
            f"Configuration {config.id} done: processed={stats.processed} "
            f"created={stats.created} updated={stats.updated} deleted={stats.deleted}"
        )
        return stats

    def clear_configuration(self, config: SyncConfiguration) -> tuple[int, int]:
        """Delete every mirror recorded for config; return (deleted, errors)."""
        source_provider = self.providers.get(
            self._provider_type(config.source_email, config.source_type)
        )
        target_provider = self.providers.get(
            self._provider_type(config.target_email, config.target_type)
        )
        return perform_clear(
            config,
            self.logger,
            source_provider,
            target_provider,
            self.ledger,
            dry_run=self.dry_run,
        )

    def _provider_type(self, identity: str, stored: str | None) -> str:
        """Operator-selected type when valid, otherwise the classifier's guess."""
        detected = classify_identity(identity)
        if stored in PROVIDER_TYPES:
            if stored != detected:
                self.logger.debug(f"{identity}: using stored type {stored} (looks like {detected})")
            return stored
        self.logger.debug(f"{identity}: no stored type, classified as {detected}")
        return detected

    def _close_failed_run(self, run_id: int, error: Exception):
        try:
            self.runlog.close(run_id, STATUS_ERROR, SyncStats(), error_message=str(error))
        except PersistenceError as close_error:
            # The original error is what propagates.
            self.logger.error(f"Could not record failure for run {run_id}: {close_error}")

    def sync_all(self) -> list[SyncResult]:
        """Sync every active configuration in turn.

        A failing configuration is logged and recorded, and the batch moves on.
        PersistenceError stops the whole batch.
        """
        configs = self.store.list_configurations(active_only=True)
        self.logger.info(f"Found {len(configs)} active sync configuration(s)")

        results: list[SyncResult] = []
        for config in configs:
            try:
                stats = self.sync_configuration(config)
            except PersistenceError:
                raise
            except Exception as e:
                results.append(SyncResult(config.id, STATUS_ERROR, SyncStats(), str(e)))
                continue
            results.append(SyncResult(config.id, STATUS_SUCCESS, stats))
        return results
