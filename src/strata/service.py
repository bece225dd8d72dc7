"""Service wiring.

Builds the engine, its snapshot store and the background scheduler from
settings, and owns their startup and shutdown order.
"""

import asyncio
from collections.abc import Callable

from strata.core.config import Settings
from strata.core.errors import SnapshotIOError
from strata.core.logging import get_logger
from strata.core.scheduler import Scheduler, TaskPriority
from strata.features.base import FeatureExtractor
from strata.features.heuristic import HeuristicExtractor
from strata.memory.engine import MemoryEngine
from strata.memory.snapshot import SQLiteSnapshotStore

logger = get_logger("service")


class MemoryService:
    """Engine plus SQLite persistence and periodic maintenance.

    An unavailable snapshot database does not stop the service: the engine
    runs in memory and each scheduled snapshot tries to reopen the store.
    """

    def __init__(
        self,
        settings: Settings,
        extractor: FeatureExtractor | None = None,
        scheduler: Scheduler | None = None,
    ):
        self.settings = settings
        self.store = SQLiteSnapshotStore(settings.db_path, backups=settings.snapshot_backups)
        self.engine = MemoryEngine(
            extractor or HeuristicExtractor(),
            config=settings.engine,
            snapshots=self.store,
            snapshot_name=settings.snapshot_name,
        )
        self.scheduler = scheduler or Scheduler()
        self._shutdown_event = asyncio.Event()

    async def start(self, background: bool = False) -> None:
        """Open storage and restore state; optionally start the scheduler."""
        await self._connect_store()
        await self.engine.start()
        if background:
            register_background_tasks(self.scheduler, self.engine, persist=self.persist)
            await self.scheduler.start()

    async def stop(self) -> None:
        """Stop maintenance, persist and close storage."""
        if self.scheduler.running:
            await self.scheduler.stop()
        try:
            await self.engine.stop()
        finally:
            await self.store.close()
        logger.info("Memory service stopped")

    async def _connect_store(self) -> bool:
        try:
            await self.store.connect()
        except SnapshotIOError as e:
            logger.error(f"Snapshot store unavailable, running in memory: {e}")
            return False
        return True

    async def persist(self) -> bool:
        """Save a snapshot, reopening the store first if it is not connected."""
        if not self.store.connected and not await self._connect_store():
            self.engine.metrics.snapshot_failures += 1
            return False
        return await self.engine.persist()

    def status(self) -> dict:
        status = self.engine.status()
        status["snapshots"] = {
            "path": str(self.store.db_path),
            "connected": self.store.connected,
        }
        status["scheduler"] = {
            "running": self.scheduler.running,
            "tasks": self.scheduler.status(),
        }
        return status

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    async def wait_for_shutdown(self) -> None:
        await self._shutdown_event.wait()


def register_background_tasks(
    scheduler: Scheduler,
    engine: MemoryEngine,
    persist: Callable | None = None,
) -> None:
    """Schedule consolidation, snapshot and cache sweep for an engine.

    ``persist`` replaces ``engine.persist`` as the snapshot callback.
    """
    config = engine.config
    scheduler.schedule_task(
        task_id="consolidation",
        name="Consolidate memory layers",
        callback=engine.consolidate,
        interval=config.consolidation_interval,
        priority=TaskPriority.HIGH,
        delay=config.consolidation_interval,
    )
    scheduler.schedule_task(
        task_id="snapshot",
        name="Persist snapshot",
        callback=persist or engine.persist,
        interval=config.snapshot_interval,
        delay=config.snapshot_interval,
    )
    if engine.cache is not None:
        scheduler.schedule_task(
            task_id="cache_sweep",
            name="Sweep expired cache entries",
            callback=engine.sweep_cache,
            interval=config.cache_sweep_interval,
            priority=TaskPriority.LOW,
            delay=config.cache_sweep_interval,
        )
