"""
Sync Orchestrator.
Runs one batch: categories -> products -> orders -> inventory.

Steps run strictly in sequence under a run-level lock. A step that fails as a
whole (e.g. the remote listing is unreachable) is recorded and the next step
still runs; item failures are absorbed inside each step. The run succeeds
only if every step completed.
"""

import os
import socket
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from .results import (
    PhaseResult, SyncReport, Deadline,
    STATUS_FAILED, STATUS_SKIPPED,
)
from ..catalog.synchronizer import CatalogSynchronizer, DEFAULT_BRAND
from ..core.config import Config, get_config
from ..core.database import Database, get_database
from ..core.exceptions import SyncDeadlineExceeded
from ..customers.matcher import IdentityMatcher, DEFAULT_COUNTRY_CODE
from ..inventory.reconciler import InventoryReconciler
from ..orders.importer import OrderImporter
from ..platform.client import PlatformClient, DEFAULT_ORDER_STATUSES

logger = logging.getLogger(__name__)

RUN_LOCK = "store-sync"

Step = Tuple[str, Callable[[Optional[Deadline]], PhaseResult]]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SyncOrchestrator:
    """Sequences the sync phases for one run."""

    def __init__(
        self,
        db: Database,
        catalog: CatalogSynchronizer,
        importer: OrderImporter,
        reconciler: InventoryReconciler,
        run_deadline_seconds: Optional[float] = None,
        lock_stale_seconds: int = 3600
    ):
        self.db = db
        self.catalog = catalog
        self.importer = importer
        self.reconciler = reconciler
        self.run_deadline_seconds = run_deadline_seconds
        self.lock_stale_seconds = lock_stale_seconds
        self.owner = f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"

    def steps(self) -> List[Step]:
        return [
            ("categories", self.catalog.sync_categories),
            ("products", self.catalog.sync_products),
            ("orders", self.importer.run),
            ("inventory", self.reconciler.run),
        ]

    def run(self) -> SyncReport:
        """
        Execute all steps once.

        Raises:
            SyncInProgressError: another run holds the lock
        """
        self.db.acquire_lock(RUN_LOCK, self.owner, self.lock_stale_seconds)
        report = SyncReport(started_at=_now())
        deadline = Deadline(self.run_deadline_seconds)
        logger.info(f"Sync run started (owner {self.owner})")

        try:
            halted = False
            for name, step in self.steps():
                if halted:
                    report.phases.append(PhaseResult(name, status=STATUS_SKIPPED))
                    continue

                logger.info(f"[{name}] starting")
                try:
                    report.phases.append(step(deadline))
                except SyncDeadlineExceeded as e:
                    logger.error(f"[{name}] aborted: run deadline exceeded")
                    report.phases.append(e.result)
                    halted = True
                except Exception as e:
                    logger.error(f"[{name}] failed: {e}")
                    report.phases.append(PhaseResult(name, status=STATUS_FAILED, error=str(e)))
        finally:
            self.db.release_lock(RUN_LOCK, self.owner)
            report.finished_at = _now()

        for phase in report.phases:
            logger.info(phase.summary())
        logger.info(f"Sync run finished: {'success' if report.success else 'FAILED'}")
        return report


def build_orchestrator(
    config: Optional[Config] = None,
    db: Optional[Database] = None,
    client: Optional[PlatformClient] = None
) -> SyncOrchestrator:
    """
    Wire the engine from configuration.

    Raises:
        ConfigurationError: store credentials missing or invalid
    """
    config = config or get_config()
    if client is None:
        client = PlatformClient.from_settings(config.platform_settings())
    db = db or get_database()

    default_brand = config.get('sync', 'default_brand', default=DEFAULT_BRAND)
    prefix = config.get('sync', 'external_prefix', default='EXT')
    matcher = IdentityMatcher(db, country_code=str(config.get('sync', 'country_code', default=DEFAULT_COUNTRY_CODE)))

    return SyncOrchestrator(
        db=db,
        catalog=CatalogSynchronizer(db, client, default_brand=default_brand, sku_prefix=prefix),
        importer=OrderImporter(
            db, client, matcher,
            statuses=config.get_list('sync', 'order_statuses', default=list(DEFAULT_ORDER_STATUSES)),
            order_prefix=prefix,
            default_brand=default_brand,
        ),
        reconciler=InventoryReconciler(db, client),
        run_deadline_seconds=config.get_float('sync', 'run_deadline_seconds', default=1800) or None,
        lock_stale_seconds=config.get_int('sync', 'lock_stale_seconds', default=3600),
    )
