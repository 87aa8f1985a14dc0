"""Sync module - local cache, offline queues and replay to the backend."""

from .kv_store import KeyValueStore, StorageError
from .cache import CacheEntry, LocalCache
from .queue import OfflineQueue, RecordKind
from .status import SyncState, SyncStatusRegister
from .retry import RetryConfig, retry_with_backoff
from .backend_client import BackendClient
from .http_client import BackendClientError, BackendAuthError, BackendUnavailableError
from .sync_engine import SyncEngine, SyncResult
from .protocols import (
    BackendProtocol,
    KeyValueStoreProtocol,
    OfflineQueueProtocol,
    SyncStatusProtocol,
)

__all__ = [
    "KeyValueStore",
    "StorageError",
    "CacheEntry",
    "LocalCache",
    "OfflineQueue",
    "RecordKind",
    "SyncState",
    "SyncStatusRegister",
    "RetryConfig",
    "retry_with_backoff",
    "BackendClient",
    "BackendClientError",
    "BackendAuthError",
    "BackendUnavailableError",
    "SyncEngine",
    "SyncResult",
    "BackendProtocol",
    "KeyValueStoreProtocol",
    "OfflineQueueProtocol",
    "SyncStatusProtocol",
]
