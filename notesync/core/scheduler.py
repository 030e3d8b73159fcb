"""Background connectivity monitoring and periodic syncing.

This module provides APScheduler integration: a connectivity probe that
flips the sync engine online/offline and starts a sync when the network
comes back, plus an optional fixed-interval sync job.
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from notesync.core.sync import NotesSyncEngine

logger = logging.getLogger(__name__)

CONNECTIVITY_JOB_ID = "connectivity_check"
AUTO_SYNC_JOB_ID = "auto_sync"


class SyncScheduler:
    """Runs connectivity checks and periodic syncs for a sync engine.

    Features:
    - Probes the remote collection every ``check_seconds``
    - Triggers a sync on every offline -> online transition
    - Optionally triggers a sync every ``auto_sync_minutes``
    """

    def __init__(
        self,
        engine: NotesSyncEngine,
        *,
        check_seconds: int = 30,
        auto_sync_minutes: int = 0,
        scheduler: AsyncIOScheduler | None = None,
    ):
        """Initialize the scheduler.

        Args:
            engine: Sync engine to drive
            check_seconds: Connectivity probe interval (0 disables probing)
            auto_sync_minutes: Periodic sync interval (0 disables it)
            scheduler: Custom APScheduler instance
        """
        self.engine = engine
        self.check_seconds = check_seconds
        self.auto_sync_minutes = auto_sync_minutes
        self.scheduler = scheduler or AsyncIOScheduler()
        self._running = False

    @property
    def is_running(self) -> bool:
        """Return True if the scheduler is actively running."""
        return self._running

    async def check_connectivity(self) -> bool:
        """Probe the remote and record the result on the engine.

        Returns:
            True if the remote is reachable
        """
        online = await self.engine.client.check_connection()
        came_back = self.engine.set_online(online)
        if came_back:
            logger.info("Network restored, starting sync")
            await self.engine.trigger()
        return online

    async def _periodic_sync(self) -> None:
        result = await self.engine.trigger()
        if result is None:
            logger.debug("Periodic sync skipped")

    async def start(self) -> None:
        """Run an initial probe and start the background jobs."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        await self.check_connectivity()

        if self.check_seconds > 0:
            self.scheduler.add_job(
                self.check_connectivity,
                trigger=IntervalTrigger(seconds=self.check_seconds),
                id=CONNECTIVITY_JOB_ID,
                replace_existing=True,
                name="Connectivity check",
                max_instances=1,
                coalesce=True,
            )

        if self.auto_sync_minutes > 0:
            self.scheduler.add_job(
                self._periodic_sync,
                trigger=IntervalTrigger(minutes=self.auto_sync_minutes),
                id=AUTO_SYNC_JOB_ID,
                replace_existing=True,
                name="Periodic sync",
                max_instances=1,
                coalesce=True,
            )

        self.scheduler.start()
        self._running = True

        logger.info(
            f"Scheduler started (connectivity every {self.check_seconds}s, "
            f"sync every {self.auto_sync_minutes or '-'} min)"
        )

    async def stop(self) -> None:
        """Stop the scheduler."""
        if not self._running:
            return

        self.scheduler.shutdown(wait=False)
        self._running = False

        logger.info("Scheduler stopped")
