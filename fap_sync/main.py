"""FAP Sync - headless runner that keeps offline queues flushed."""

import logging
import signal
import threading
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from . import __version__
from .auth import KeychainManager, SessionManager
from .config import Config, setup_logging
from .sync import (
    BackendClient,
    KeyValueStore,
    LocalCache,
    OfflineQueue,
    SyncEngine,
    SyncResult,
    SyncStatusRegister,
)

logger = logging.getLogger(__name__)


class SyncCoordinator:
    """Owns the sync scheduler and runs passes for the signed-in member."""

    def __init__(
        self,
        config: Config,
        engine: SyncEngine,
        session: SessionManager,
        scheduler: Optional[BackgroundScheduler] = None,
    ) -> None:
        self.config = config
        self.engine = engine
        self.session = session
        self.scheduler = scheduler or BackgroundScheduler()
        self.last_result: Optional[SyncResult] = None

        # Set while the backend is unreachable; records keep queueing locally
        self.paused_by_network = False

        # Optional callback wired by the app for an expired session
        self._on_auth_error: Optional[Callable[[], None]] = None

    def start(self) -> None:
        """Run the initial sync and start the periodic scheduler."""
        self.run_sync()

        self.scheduler.add_job(
            self.run_sync,
            trigger=IntervalTrigger(seconds=self.config.sync.interval_seconds),
            id="sync_job",
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info(f"Sync loop started (interval: {self.config.sync.interval_seconds}s)")

    def stop(self) -> None:
        """Shut down the scheduler if running."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    def reschedule(self, interval_seconds: int) -> None:
        """Change the sync interval on the fly."""
        self.config.sync.interval_seconds = interval_seconds
        if self.scheduler.running:
            self.scheduler.reschedule_job(
                "sync_job",
                trigger=IntervalTrigger(seconds=interval_seconds),
            )

    def trigger_sync(self, job_id: str = "immediate_sync") -> None:
        """Schedule a one-off sync (app resume, explicit user action)."""
        if self.scheduler.running:
            self.scheduler.add_job(self.run_sync, id=job_id, replace_existing=True)

    def run_sync(self) -> Optional[SyncResult]:
        """Perform one sync pass for the current member, if any."""
        user_id = self.session.user_id
        if not user_id:
            logger.debug("Not logged in, skipping sync")
            return None

        result = self.engine.sync_offline_data(user_id)
        self.last_result = result

        if result.offline:
            if not self.paused_by_network:
                logger.info("Backend unreachable, records stay queued until it is back")
            self.paused_by_network = True
            return result
        if self.paused_by_network:
            logger.info("Backend reachable again, resuming sync")
            self.paused_by_network = False

        if result.auth_error:
            logger.warning(f"Auth error during sync: {result.error}, session expired")
            if self._on_auth_error:
                self._on_auth_error()
        elif not result.success and not result.already_syncing:
            logger.warning(f"Sync failed: {result.error}")
        return result


class FapSyncApp:
    """Wires the store, backend, session and coordinator together."""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or Config.load()
        setup_logging(self.config.debug_mode)

        keys = self.config.keys
        self.store = KeyValueStore(self.config.get_store_path())
        self.cache = LocalCache(self.store)
        self.queue = OfflineQueue(self.cache, keys, self.config.sync.queue_ttl_minutes)
        self.status = SyncStatusRegister(self.store, keys)
        self.backend = BackendClient.from_config(self.config)
        self.session = SessionManager(self.backend, self.store, KeychainManager(), keys)
        self.engine = SyncEngine(
            self.backend,
            self.queue,
            self.status,
            max_sync_attempts=self.config.sync.max_sync_attempts,
        )
        self.coordinator = SyncCoordinator(self.config, self.engine, self.session)
        self.coordinator._on_auth_error = self.session.expire
        self._stop_event = threading.Event()

    def run(self) -> None:
        """Restore the session, start syncing and block until signalled."""
        logger.info(f"FAP Sync {__version__} starting")
        state = self.session.try_auto_login()
        if not state.logged_in:
            logger.warning(
                f"No usable session ({state.error or 'not logged in'}); "
                "queued records will sync after login"
            )

        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)
        self.coordinator.start()
        self._stop_event.wait()

    def _signal_handler(self, signum, frame) -> None:
        logger.info(f"Received signal {signum}, shutting down")
        self._stop_event.set()

    def shutdown(self) -> None:
        self.coordinator.stop()
        self.backend.close()
        self.store.close()
        logger.info("FAP Sync stopped")

    def __enter__(self) -> "FapSyncApp":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()


def main() -> None:
    """Main entry point."""
    with FapSyncApp() as app:
        app.run()


if __name__ == "__main__":
    main()
