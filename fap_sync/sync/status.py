"""Persisted sync status and last-successful-sync time."""

import json
import logging
from enum import Enum
from typing import Callable, Optional

from ..config import StorageKeys
from .cache import now_ms
from .kv_store import StorageError
from .protocols import KeyValueStoreProtocol

__all__ = ["SyncState", "SyncStatusRegister"]

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    COMPLETED = "completed"
    ERROR = "error"


class SyncStatusRegister:
    """Stores the synchronizer's state.

    Writes are synchronous: when set_sync_status() returns the new state is
    persisted. Store failures are logged and never raised.
    """

    def __init__(
        self,
        store: KeyValueStoreProtocol,
        keys: Optional[StorageKeys] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.keys = keys or StorageKeys()
        self.clock = clock

    def set_sync_status(self, status: str) -> None:
        status = SyncState(status)
        try:
            self.store.set_item(
                self.keys.sync_status,
                json.dumps({"status": status.value, "timestamp": self.clock()}),
            )
        except StorageError as e:
            logger.error(f"Error setting sync status: {e}")

    def get_sync_status(self) -> dict:
        """Return {"status", "timestamp"}, idle with no timestamp by default."""
        default = {"status": SyncState.IDLE.value, "timestamp": None}
        try:
            raw = self.store.get_item(self.keys.sync_status)
            return json.loads(raw) if raw else default
        except (StorageError, ValueError) as e:
            logger.error(f"Error getting sync status: {e}")
            return default

    def set_last_sync(self, timestamp: int) -> None:
        try:
            self.store.set_item(self.keys.last_sync, str(int(timestamp)))
        except StorageError as e:
            logger.error(f"Error setting last sync: {e}")

    def get_last_sync(self) -> Optional[int]:
        """Epoch-ms of the last completed sync, or None."""
        try:
            raw = self.store.get_item(self.keys.last_sync)
            return int(raw) if raw else None
        except (StorageError, ValueError) as e:
            logger.error(f"Error getting last sync: {e}")
            return None
